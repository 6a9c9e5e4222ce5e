from __future__ import annotations

import logging
from typing import Iterable

from ..exceptions import ShapeError
from ..types.aliases import Shape
from .shape import (
    are_broadcastable,
    broadcast_shape,
    broadcast_source_index,
    iter_multi_index,
    normalize_shape,
    num_elements,
)
from .storage import TensorStorage
from .tensor import Tensor

logger = logging.getLogger(__name__)


class BroadcastEvaluator:
    """
    Materializes tensors broadcast to a larger shape.

    The result always owns fresh storage; nothing aliases the source
    except when no broadcast is needed, in which case the source itself
    is returned.
    """

    def broadcast_to(self, tensor: Tensor, target_shape: Iterable[int]) -> Tensor:
        target = normalize_shape(target_shape)
        source_shape = tensor.shape
        if source_shape == target:
            return tensor

        # the target must already be the broadcast result, not merely compatible
        if not are_broadcastable(source_shape, target) or broadcast_shape(source_shape, target) != target:
            raise ShapeError(
                f"Cannot broadcast tensor of shape {source_shape} to {target}",
                shapes=(source_shape, target),
            )

        source = tensor.storage
        result = TensorStorage(num_elements(target), dtype=tensor.dtype)
        for linear, coords in enumerate(iter_multi_index(target)):
            result[linear] = source[broadcast_source_index(coords, source_shape)]

        logger.debug("Materialized broadcast %s -> %s", source_shape, target)
        return Tensor(target, result)

    def compute_broadcast_shape(self, a: Iterable[int], b: Iterable[int]) -> Shape:
        return broadcast_shape(a, b)


_default_evaluator = BroadcastEvaluator()


def broadcast_to(tensor: Tensor, target_shape: Iterable[int]) -> Tensor:
    return _default_evaluator.broadcast_to(tensor, target_shape)


__all__ = ["BroadcastEvaluator", "broadcast_to"]
