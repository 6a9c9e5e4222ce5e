"""
Shape inference for tensorcore.

Pure functions implementing NumPy-style broadcasting, row-major stride
computation and conversion between flat offsets and per-dimension
coordinates. Shapes are plain tuples of non-negative ints; the empty
tuple is the scalar shape and holds exactly one element.
"""

from __future__ import annotations

import operator
from functools import reduce
from itertools import product
from typing import Iterable, Iterator, Sequence, Tuple

from ..exceptions import IndexError, ShapeError
from ..types.aliases import Shape, Strides


def normalize_shape(shape: Iterable[int]) -> Shape:
    """Validate a shape-like iterable and return it as a tuple."""
    if isinstance(shape, int):
        shape = (shape,)

    raw = tuple(shape)
    try:
        if any(isinstance(dim, bool) for dim in raw):
            raise TypeError("bool dimension")
        dims = tuple(operator.index(dim) for dim in raw)
    except TypeError:
        raise ShapeError(f"Shape dimensions must be integers: {raw}", shapes=(raw,)) from None

    for dim in dims:
        if dim < 0:
            raise ShapeError(f"Shape dimensions must be non-negative: {dims}", shapes=(dims,))
    return dims


def num_elements(shape: Sequence[int]) -> int:
    result = 1
    for dim in shape:
        result *= dim
    return result


def _pad_left(shape: Shape, rank: int) -> Shape:
    return (1,) * (rank - len(shape)) + shape


def _broadcast_pair(a: Shape, b: Shape) -> Tuple[Shape, bool]:
    rank = max(len(a), len(b))
    padded_a = _pad_left(a, rank)
    padded_b = _pad_left(b, rank)

    result = []
    for dim_a, dim_b in zip(padded_a, padded_b):
        if dim_a == dim_b or dim_b == 1:
            result.append(dim_a)
        elif dim_a == 1:
            result.append(dim_b)
        else:
            return (), False
    return tuple(result), True


def broadcast_shape(a: Iterable[int], b: Iterable[int]) -> Shape:
    """
    Compute the shape two operands broadcast to.

    Both shapes are right-aligned and the shorter one is padded with
    leading 1s. Each result dimension is the non-1 member of the pair.
    A 0 paired with a 1 propagates as 0, producing an empty result.
    """
    shape_a = normalize_shape(a)
    shape_b = normalize_shape(b)

    result, ok = _broadcast_pair(shape_a, shape_b)
    if not ok:
        raise ShapeError(
            f"Shapes {shape_a} and {shape_b} are not broadcastable",
            shapes=(shape_a, shape_b),
        )
    return result


def broadcast_shapes(*shapes: Iterable[int]) -> Shape:
    if not shapes:
        return ()
    return reduce(broadcast_shape, shapes[1:], normalize_shape(shapes[0]))


def are_broadcastable(a: Iterable[int], b: Iterable[int]) -> bool:
    try:
        shape_a = normalize_shape(a)
        shape_b = normalize_shape(b)
    except ShapeError:
        return False
    return _broadcast_pair(shape_a, shape_b)[1]


def row_major_strides(shape: Iterable[int]) -> Strides:
    """Element strides of a C-contiguous layout: the last axis has stride 1."""
    dims = normalize_shape(shape)
    strides = [1] * len(dims)
    for i in range(len(dims) - 2, -1, -1):
        strides[i] = strides[i + 1] * dims[i + 1]
    return tuple(strides)


def linear_to_multi_index(index: int, shape: Iterable[int]) -> Tuple[int, ...]:
    dims = normalize_shape(shape)
    size = num_elements(dims)
    if index < 0 or index >= size:
        raise IndexError(
            f"Linear index {index} out of range for shape {dims}",
            index=index, size=size,
        )

    coords = []
    for stride in row_major_strides(dims):
        coord, index = divmod(index, stride)
        coords.append(coord)
    return tuple(coords)


def multi_to_linear(coords: Sequence[int], shape: Iterable[int]) -> int:
    dims = normalize_shape(shape)
    if len(coords) != len(dims):
        raise ShapeError(
            f"Index rank {len(coords)} does not match shape rank {len(dims)}",
            shapes=(dims,),
        )

    offset = 0
    for coord, dim, stride in zip(coords, dims, row_major_strides(dims)):
        if coord < 0 or coord >= dim:
            raise IndexError(f"Index {tuple(coords)} out of range for shape {dims}", index=coord, size=dim)
        offset += coord * stride
    return offset


def broadcast_source_index(coords: Sequence[int], source_shape: Iterable[int]) -> int:
    """
    Map an output coordinate back to a flat offset into a broadcast source.

    The source may have lower rank than the output; its dimensions line up
    with the trailing output axes. Any source dimension of size 1 is read
    at coordinate 0.
    """
    source = normalize_shape(source_shape)
    if len(source) > len(coords):
        raise ShapeError(
            f"Source rank {len(source)} exceeds output rank {len(coords)}",
            shapes=(source,),
        )

    trailing = coords[len(coords) - len(source):]
    offset = 0
    for coord, dim, stride in zip(trailing, source, row_major_strides(source)):
        if dim != 1:
            offset += coord * stride
    return offset


def iter_multi_index(shape: Iterable[int]) -> Iterator[Tuple[int, ...]]:
    """Yield every coordinate of ``shape`` in row-major order."""
    dims = normalize_shape(shape)
    return product(*(range(dim) for dim in dims))


__all__ = [
    "normalize_shape",
    "num_elements",
    "broadcast_shape",
    "broadcast_shapes",
    "are_broadcastable",
    "row_major_strides",
    "linear_to_multi_index",
    "multi_to_linear",
    "broadcast_source_index",
    "iter_multi_index",
]
