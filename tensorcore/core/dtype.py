from __future__ import annotations

from typing import Any, Dict

import numpy as np

from ..types.enums import ScalarType

_TO_NUMPY: Dict[ScalarType, np.dtype] = {
    ScalarType.UINT8: np.dtype(np.uint8),
    ScalarType.INT8: np.dtype(np.int8),
    ScalarType.INT16: np.dtype(np.int16),
    ScalarType.INT32: np.dtype(np.int32),
    ScalarType.INT64: np.dtype(np.int64),
    ScalarType.FLOAT32: np.dtype(np.float32),
    ScalarType.FLOAT64: np.dtype(np.float64),
    ScalarType.BOOL: np.dtype(np.bool_),
}
_FROM_NUMPY: Dict[np.dtype, ScalarType] = {dtype: scalar for scalar, dtype in _TO_NUMPY.items()}

_FLOATING = frozenset({ScalarType.FLOAT32, ScalarType.FLOAT64})


def as_scalar_type(dtype: Any) -> ScalarType:
    """Accept a ScalarType, a numpy dtype-like, or a name such as ``"float32"``."""
    if isinstance(dtype, ScalarType):
        return dtype
    if isinstance(dtype, str) and dtype.upper() in ScalarType.__members__:
        return ScalarType[dtype.upper()]
    if dtype is None:
        raise TypeError("Element type must not be None")
    try:
        return _FROM_NUMPY[np.dtype(dtype)]
    except (KeyError, TypeError):
        raise TypeError(f"Unsupported element type: {dtype!r}") from None


def to_numpy(dtype: Any) -> np.dtype:
    return _TO_NUMPY[as_scalar_type(dtype)]


def itemsize(dtype: Any) -> int:
    return to_numpy(dtype).itemsize


def is_floating_point(dtype: Any) -> bool:
    return as_scalar_type(dtype) in _FLOATING


def is_integral(dtype: Any) -> bool:
    scalar = as_scalar_type(dtype)
    return scalar not in _FLOATING and scalar is not ScalarType.BOOL


def promote_types(a: Any, b: Any) -> ScalarType:
    """
    Common element type of a binary operation.

    Equal types are kept. Any floating operand promotes to float64, an
    int64 operand to int64, and every other mix to int32.
    """
    a, b = as_scalar_type(a), as_scalar_type(b)
    if a is b:
        return a
    if a in _FLOATING or b in _FLOATING:
        return ScalarType.FLOAT64
    if ScalarType.INT64 in (a, b):
        return ScalarType.INT64
    return ScalarType.INT32


__all__ = [
    "as_scalar_type",
    "is_floating_point",
    "is_integral",
    "itemsize",
    "promote_types",
    "to_numpy",
]
