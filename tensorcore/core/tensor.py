"""
Tensor handle for tensorcore.

A `Tensor` pairs a shape with a `TensorStorage`. Copying a handle aliases
the same storage; every operation produces a tensor with fresh storage.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable, Optional, Tuple, Union
from weakref import finalize

import numpy as np

from ..exceptions import ShapeError
from ..types.aliases import Shape, Strides
from ..types.enums import ScalarType
from .device import CPU, DeviceDescriptor
from .dtype import to_numpy
from .shape import multi_to_linear, normalize_shape, num_elements, row_major_strides
from .storage import TensorStorage

if TYPE_CHECKING:
    from ..memory.allocator import DeviceMemoryAllocator
    from ..memory.buffer import ScopedBuffer

Index = Union[int, Tuple[int, ...]]


class Tensor:
    __slots__ = ('_shape', '_storage', '_finalizer', '__weakref__')

    def __init__(self, shape: Iterable[int], storage: Optional[TensorStorage] = None,
                 dtype: Any = ScalarType.FLOAT32):
        self._shape = normalize_shape(shape)
        size = num_elements(self._shape)

        if storage is None:
            storage = TensorStorage(size, dtype=dtype)
        elif storage.size != size:
            raise ShapeError(
                f"Storage of {storage.size} elements cannot back shape {self._shape}",
                shapes=(self._shape,),
            )

        self._storage = storage.share()
        self._finalizer = finalize(self, storage.release)

    @classmethod
    def from_data(cls, data: Any, dtype: Any = None) -> Tensor:
        array = np.asarray(data, dtype=None if dtype is None else to_numpy(dtype))
        return cls(array.shape, TensorStorage.from_numpy(array))

    @classmethod
    def zeros(cls, shape: Iterable[int], dtype: Any = ScalarType.FLOAT32) -> Tensor:
        return cls(shape, dtype=dtype)

    @classmethod
    def full(cls, shape: Iterable[int], value: Any, dtype: Any = ScalarType.FLOAT32) -> Tensor:
        dims = normalize_shape(shape)
        return cls(dims, TensorStorage(num_elements(dims), fill=value, dtype=dtype))

    @classmethod
    def from_buffer(cls, buffer: ScopedBuffer, shape: Iterable[int],
                    dtype: Any = ScalarType.FLOAT32,
                    allocator: Optional[DeviceMemoryAllocator] = None) -> Tensor:
        """Read a tensor back out of a device buffer written by ``to_buffer``."""
        tensor = cls(shape, dtype=dtype)
        if tensor.storage.nbytes > buffer.size:
            raise ShapeError(
                f"Buffer of {buffer.size} bytes is too small for shape {tensor.shape}",
                shapes=(tensor.shape,),
            )
        tensor.storage.copy_from_buffer(buffer.ptr, buffer.device, allocator)
        return tensor

    @property
    def shape(self) -> Shape:
        return self._shape

    @property
    def ndim(self) -> int:
        return len(self._shape)

    @property
    def size(self) -> int:
        return self._storage.size

    @property
    def dtype(self) -> ScalarType:
        return self._storage.dtype

    @property
    def device(self) -> DeviceDescriptor:
        return CPU

    @property
    def storage(self) -> TensorStorage:
        return self._storage

    @property
    def strides(self) -> Strides:
        return row_major_strides(self._shape)

    def _offset(self, index: Index) -> int:
        coords = index if isinstance(index, tuple) else (index,)
        return multi_to_linear(coords, self._shape)

    def __getitem__(self, index: Index) -> Any:
        return self._storage[self._offset(index)].item()

    def __setitem__(self, index: Index, value: Any) -> None:
        self._storage[self._offset(index)] = value

    def item(self) -> Any:
        if self.size != 1:
            raise ShapeError(f"Only single-element tensors convert to a scalar, shape is {self._shape}",
                             shapes=(self._shape,))
        return self._storage.at(0)

    def numpy(self) -> np.ndarray:
        return self._storage.numpy().reshape(self._shape)

    def tolist(self) -> Any:
        return self.numpy().tolist()

    def share(self) -> Tensor:
        """A new handle aliasing this tensor's storage."""
        return Tensor(self._shape, self._storage)

    def clone(self) -> Tensor:
        return Tensor(self._shape, self._storage.clone())

    def to_buffer(self, device: DeviceDescriptor,
                  allocator: Optional[DeviceMemoryAllocator] = None,
                  retain: bool = False) -> ScopedBuffer:
        """Copy the tensor's bytes into a freshly allocated buffer on ``device``."""
        from ..memory.buffer import ScopedBuffer

        buffer = ScopedBuffer(self._storage.nbytes, device, allocator=allocator, retain=retain)
        try:
            self._storage.copy_to_buffer(buffer.ptr, device, allocator)
        except Exception:
            buffer.close()
            raise
        return buffer

    def __copy__(self) -> Tensor:
        return self.share()

    def __len__(self) -> int:
        if not self._shape:
            raise TypeError("len() of a 0-d tensor")
        return self._shape[0]

    def __add__(self, other: Any) -> Tensor:
        from . import ops
        return ops.add(self, other)

    def __radd__(self, other: Any) -> Tensor:
        from . import ops
        return ops.add(other, self)

    def __sub__(self, other: Any) -> Tensor:
        from . import ops
        return ops.subtract(self, other)

    def __rsub__(self, other: Any) -> Tensor:
        from . import ops
        return ops.subtract(other, self)

    def __mul__(self, other: Any) -> Tensor:
        from . import ops
        return ops.multiply(self, other)

    def __rmul__(self, other: Any) -> Tensor:
        from . import ops
        return ops.multiply(other, self)

    def __truediv__(self, other: Any) -> Tensor:
        from . import ops
        return ops.divide(self, other)

    def __rtruediv__(self, other: Any) -> Tensor:
        from . import ops
        return ops.divide(other, self)

    def __matmul__(self, other: Tensor) -> Tensor:
        from . import ops
        return ops.matmul(self, other)

    def __repr__(self) -> str:
        return f"Tensor(shape={self._shape}, dtype={self.dtype.name.lower()}, device={self.device})"


__all__ = ["Tensor"]
