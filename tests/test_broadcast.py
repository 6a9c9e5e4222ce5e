import pytest

from tensorcore.core.broadcast import BroadcastEvaluator, broadcast_to
from tensorcore.core.storage import TensorStorage
from tensorcore.core.tensor import Tensor
from tensorcore.exceptions import ShapeError
from tensorcore.types import ScalarType


class TestBroadcastEvaluator:
    def setup_method(self):
        self.evaluator = BroadcastEvaluator()

    def test_row_vector_to_matrix(self):
        tensor = Tensor((1, 3), TensorStorage.from_iterable([1, 2, 3], dtype=ScalarType.INT32))
        result = self.evaluator.broadcast_to(tensor, (2, 3))

        assert result.shape == (2, 3)
        assert result.storage.tolist() == [1, 2, 3, 1, 2, 3]
        assert result.dtype is ScalarType.INT32

    def test_column_vector_to_matrix(self):
        tensor = Tensor.from_data([[1.0], [2.0]])
        result = self.evaluator.broadcast_to(tensor, (2, 3))
        assert result.tolist() == [[1.0, 1.0, 1.0], [2.0, 2.0, 2.0]]

    def test_lower_rank_source(self):
        tensor = Tensor.from_data([4, 5])
        result = self.evaluator.broadcast_to(tensor, (2, 2, 2))
        assert result.storage.tolist() == [4, 5] * 4

    def test_scalar_source(self):
        tensor = Tensor.from_data(7.5)
        result = self.evaluator.broadcast_to(tensor, (3,))
        assert result.tolist() == [7.5, 7.5, 7.5]

    def test_same_shape_returns_same_tensor(self):
        tensor = Tensor.zeros((2, 3))
        assert self.evaluator.broadcast_to(tensor, (2, 3)) is tensor

    def test_result_owns_fresh_storage(self):
        tensor = Tensor.from_data([[1, 2, 3]])
        result = self.evaluator.broadcast_to(tensor, (2, 3))
        result[0, 0] = 42
        assert tensor[0, 0] == 1

    def test_incompatible_target(self):
        tensor = Tensor.zeros((2, 3))
        with pytest.raises(ShapeError):
            self.evaluator.broadcast_to(tensor, (4, 2))

    def test_compatible_but_not_result_shape(self):
        tensor = Tensor.zeros((2, 3))
        with pytest.raises(ShapeError):
            self.evaluator.broadcast_to(tensor, (1, 3))

    def test_empty_target(self):
        tensor = Tensor.zeros((1, 3))
        result = self.evaluator.broadcast_to(tensor, (0, 3))
        assert result.shape == (0, 3)
        assert result.size == 0

    def test_compute_broadcast_shape(self):
        assert self.evaluator.compute_broadcast_shape((4, 1), (3,)) == (4, 3)
        with pytest.raises(ShapeError):
            self.evaluator.compute_broadcast_shape((2,), (3,))

    def test_module_helper(self):
        tensor = Tensor.from_data([1, 2])
        assert broadcast_to(tensor, (2, 2)).tolist() == [[1, 2], [1, 2]]
