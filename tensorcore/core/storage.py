"""
Contiguous typed storage for tensorcore.

`TensorStorage` owns a flat, CPU-resident numpy buffer of exactly ``size``
elements. Tensor handles that alias one storage register with ``share()``
and drop out with ``release()``; ``ref_count`` counts the live handles.
The buffer itself lives as long as the storage object is reachable.
"""

from __future__ import annotations

from threading import Lock
from typing import TYPE_CHECKING, Any, Iterable, Iterator, Optional

import numpy as np

from ..exceptions import IndexError, MemoryError
from ..types.aliases import ByteSize, MemoryPtr
from ..types.enums import ScalarType
from .dtype import as_scalar_type, to_numpy

if TYPE_CHECKING:
    from ..memory.allocator import DeviceMemoryAllocator
    from .device import DeviceDescriptor


class TensorStorage:
    __slots__ = ('_data', '_dtype', '_ref_count', '_lock')

    def __init__(self, size: int, fill: Any = None, dtype: Any = ScalarType.FLOAT32):
        if size < 0:
            raise ValueError(f"Storage size must be non-negative: {size}")

        self._dtype = as_scalar_type(dtype)
        np_dtype = to_numpy(self._dtype)
        if fill is None:
            self._data = np.zeros(size, dtype=np_dtype)
        else:
            self._data = np.full(size, fill, dtype=np_dtype)
        self._ref_count = 0
        self._lock = Lock()

    @classmethod
    def from_iterable(cls, values: Iterable[Any], dtype: Any = None) -> TensorStorage:
        array = np.asarray(list(values), dtype=None if dtype is None else to_numpy(dtype))
        return cls.from_numpy(array, copy=False)

    @classmethod
    def from_numpy(cls, array: np.ndarray, copy: bool = True) -> TensorStorage:
        """Wrap the flattened contents of ``array``; the result never aliases it when ``copy``."""
        array = np.asarray(array)
        scalar = as_scalar_type(array.dtype)
        if copy:
            flat = np.array(array, dtype=to_numpy(scalar), copy=True).reshape(-1)
        else:
            flat = np.ascontiguousarray(array, dtype=to_numpy(scalar)).reshape(-1)

        storage = cls.__new__(cls)
        storage._data = flat
        storage._dtype = scalar
        storage._ref_count = 0
        storage._lock = Lock()
        return storage

    @property
    def dtype(self) -> ScalarType:
        return self._dtype

    @property
    def size(self) -> int:
        return self._data.shape[0]

    @property
    def itemsize(self) -> int:
        return self._data.itemsize

    @property
    def nbytes(self) -> ByteSize:
        return ByteSize(self._data.nbytes)

    @property
    def data_ptr(self) -> MemoryPtr:
        return MemoryPtr(self._data.ctypes.data)

    @property
    def ref_count(self) -> int:
        with self._lock:
            return self._ref_count

    def share(self) -> TensorStorage:
        """Register one more owning handle."""
        with self._lock:
            self._ref_count += 1
        return self

    def release(self) -> int:
        """Drop one owning handle and return how many remain."""
        with self._lock:
            if self._ref_count == 0:
                raise MemoryError("Storage released more times than it was shared")
            self._ref_count -= 1
            return self._ref_count

    def __len__(self) -> int:
        return self.size

    def __getitem__(self, index: int) -> Any:
        return self._data[index]

    def __setitem__(self, index: int, value: Any) -> None:
        self._data[index] = value

    def _check_index(self, index: int) -> None:
        if index < 0 or index >= self.size:
            raise IndexError(
                f"Storage index {index} out of range for size {self.size}",
                index=index, size=self.size,
            )

    def at(self, index: int) -> Any:
        self._check_index(index)
        return self._data[index].item()

    def put(self, index: int, value: Any) -> None:
        self._check_index(index)
        self._data[index] = value

    def __iter__(self) -> Iterator[Any]:
        return iter(self._data.tolist())

    def tolist(self) -> list:
        return self._data.tolist()

    def fill(self, value: Any) -> None:
        self._data.fill(value)

    def resize(self, size: int) -> None:
        """Grow or shrink in place, keeping the common prefix; new elements are zero."""
        if size < 0:
            raise ValueError(f"Storage size must be non-negative: {size}")
        resized = np.zeros(size, dtype=self._data.dtype)
        keep = min(size, self.size)
        resized[:keep] = self._data[:keep]
        self._data = resized

    def numpy(self) -> np.ndarray:
        """The backing array itself; writes through it are visible to the storage."""
        return self._data

    def clone(self) -> TensorStorage:
        return TensorStorage.from_numpy(self._data, copy=True)

    def copy_to_buffer(self, ptr: Optional[MemoryPtr], device: DeviceDescriptor,
                       allocator: Optional[DeviceMemoryAllocator] = None) -> None:
        """Bulk-copy the whole buffer into device memory at ``ptr``."""
        allocator = allocator if allocator is not None else _default_allocator()
        allocator.copy_to_device(ptr, self.data_ptr, self.nbytes, device)

    def copy_from_buffer(self, ptr: Optional[MemoryPtr], device: DeviceDescriptor,
                         allocator: Optional[DeviceMemoryAllocator] = None) -> None:
        allocator = allocator if allocator is not None else _default_allocator()
        allocator.copy_to_host(self.data_ptr, ptr, self.nbytes, device)

    def __repr__(self) -> str:
        return f"TensorStorage(size={self.size}, dtype={self._dtype.name.lower()}, refs={self.ref_count})"


def _default_allocator() -> DeviceMemoryAllocator:
    from ..factory import get_default_allocator
    return get_default_allocator()


__all__ = ["TensorStorage"]
