"""
Tensor operations built on the shape and storage layers.

Binary operations broadcast both operands to a common shape and write
into fresh storage of the promoted element type. ``matmul`` splits the
output rows into tiles computed concurrently; tiles write disjoint rows
of the result, so no synchronization beyond joining the workers is needed.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional

import numpy as np

from ..config import get_config
from ..exceptions import ShapeError
from ..types.enums import ScalarType
from .broadcast import BroadcastEvaluator
from .dtype import is_floating_point, promote_types, to_numpy
from .shape import broadcast_shape, num_elements
from .storage import TensorStorage
from .tensor import Tensor

logger = logging.getLogger(__name__)

_evaluator = BroadcastEvaluator()


def _scalar_dtype(value: Any, like: ScalarType) -> Optional[ScalarType]:
    """``like`` when ``value`` is representable in it, otherwise None."""
    natural = np.asarray(value)
    target = to_numpy(like)
    if not np.can_cast(natural.dtype, target, 'same_kind'):
        return None
    if target.kind in 'iu':
        info = np.iinfo(target)
        return like if info.min <= natural.item() <= info.max else None
    if target.kind == 'f' and np.isfinite(natural):
        return like if abs(natural.item()) <= np.finfo(target).max else None
    return like


def _as_tensor(value: Any, like: Any = None) -> Tensor:
    if isinstance(value, Tensor):
        return value
    dtype = None
    if isinstance(like, Tensor) and np.isscalar(value):
        dtype = _scalar_dtype(value, like.dtype)
    return Tensor.from_data(value, dtype=dtype)


def _binary(lhs: Any, rhs: Any, ufunc: Callable[..., Any], result_type: Optional[ScalarType] = None) -> Tensor:
    left = _as_tensor(lhs, like=rhs)
    right = _as_tensor(rhs, like=lhs)

    shape = broadcast_shape(left.shape, right.shape)
    left = _evaluator.broadcast_to(left, shape)
    right = _evaluator.broadcast_to(right, shape)

    dtype = result_type or promote_types(left.dtype, right.dtype)
    np_dtype = to_numpy(dtype)
    result = TensorStorage(num_elements(shape), dtype=dtype)

    with np.errstate(divide='ignore', invalid='ignore'):
        ufunc(
            left.storage.numpy().astype(np_dtype, copy=False),
            right.storage.numpy().astype(np_dtype, copy=False),
            out=result.numpy(),
        )
    return Tensor(shape, result)


def add(lhs: Any, rhs: Any) -> Tensor:
    return _binary(lhs, rhs, np.add)


def subtract(lhs: Any, rhs: Any) -> Tensor:
    return _binary(lhs, rhs, np.subtract)


def multiply(lhs: Any, rhs: Any) -> Tensor:
    return _binary(lhs, rhs, np.multiply)


def divide(lhs: Any, rhs: Any) -> Tensor:
    left = _as_tensor(lhs, like=rhs)
    right = _as_tensor(rhs, like=lhs)
    dtype = promote_types(left.dtype, right.dtype)
    if not is_floating_point(dtype):
        dtype = ScalarType.FLOAT64
    return _binary(left, right, np.true_divide, result_type=dtype)


def _validate_matmul_shapes(lhs: Tensor, rhs: Tensor) -> None:
    if lhs.ndim != 2 or rhs.ndim != 2:
        raise ShapeError("Matrix multiplication requires 2D tensors", shapes=(lhs.shape, rhs.shape))
    if lhs.shape[1] != rhs.shape[0]:
        raise ShapeError(
            f"Matrix dimensions do not match for multiplication: {lhs.shape} @ {rhs.shape}",
            shapes=(lhs.shape, rhs.shape),
        )


def matmul(lhs: Tensor, rhs: Tensor, num_threads: Optional[int] = None) -> Tensor:
    _validate_matmul_shapes(lhs, rhs)
    rows, _ = lhs.shape
    cols = rhs.shape[1]

    dtype = promote_types(lhs.dtype, rhs.dtype)
    np_dtype = to_numpy(dtype)
    a = lhs.numpy().astype(np_dtype, copy=False)
    b = rhs.numpy().astype(np_dtype, copy=False)

    result = TensorStorage(rows * cols, dtype=dtype)
    out = result.numpy().reshape(rows, cols)

    def compute_tile(start: int, stop: int) -> None:
        np.matmul(a[start:stop], b, out=out[start:stop])

    workers = num_threads or get_config().num_threads
    tile_rows = max(1, -(-rows // workers))

    if workers == 1 or rows <= tile_rows:
        compute_tile(0, rows)
    else:
        logger.debug("matmul %s @ %s across %d tiles", lhs.shape, rhs.shape, -(-rows // tile_rows))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="tensorcore_matmul") as executor:
            futures = [
                executor.submit(compute_tile, start, min(start + tile_rows, rows))
                for start in range(0, rows, tile_rows)
            ]
            for future in futures:
                future.result()

    return Tensor((rows, cols), result)


def sum(tensor: Tensor, axis: Optional[int] = None) -> Tensor:
    data = tensor.numpy()
    accumulator = None if is_floating_point(tensor.dtype) else np.int64
    if axis is None:
        return Tensor((), TensorStorage.from_numpy(np.asarray(data.sum(dtype=accumulator))))

    if not -tensor.ndim <= axis < tensor.ndim:
        raise ShapeError(f"Axis {axis} out of range for shape {tensor.shape}", shapes=(tensor.shape,))
    reduced = data.sum(axis=axis, dtype=accumulator)
    return Tensor(reduced.shape, TensorStorage.from_numpy(reduced))


__all__ = ["add", "subtract", "multiply", "divide", "matmul", "sum"]
