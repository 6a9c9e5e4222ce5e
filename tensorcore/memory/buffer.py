from __future__ import annotations
import ctypes
from typing import TYPE_CHECKING, Any, Optional
from weakref import finalize

from ..exceptions import DeviceError
from ..types.aliases import ByteSize, MemoryPtr
from .allocator import DeviceMemoryAllocator

if TYPE_CHECKING:
    from ..core.device import DeviceDescriptor


def _release(allocator: DeviceMemoryAllocator, ptr: Optional[MemoryPtr], size: int,
             device: DeviceDescriptor, retain: bool) -> None:
    if retain:
        allocator.return_to_pool(ptr, size, device)
    else:
        allocator.deallocate(ptr, device)


class ScopedBuffer:
    """
    Exclusive owner of one allocator buffer.

    The buffer is released exactly once: on ``close()``, on leaving a
    ``with`` block, or when the object is garbage collected. By default the
    memory is deallocated; ``retain=True`` hands it back to the device pool
    instead. Copies are refused; use ``transfer()`` to move ownership.
    """

    __slots__ = ('_allocator', '_ptr', '_size', '_device', '_retain', '_finalizer', '__weakref__')

    def __init__(
        self,
        size: int,
        device: DeviceDescriptor,
        allocator: Optional[DeviceMemoryAllocator] = None,
        retain: bool = False,
    ):
        if allocator is None:
            from ..factory import get_default_allocator
            allocator = get_default_allocator()

        self._allocator = allocator
        self._size = ByteSize(size)
        self._device = device
        self._retain = retain
        self._ptr = allocator.allocate(size, device)
        self._finalizer = finalize(self, _release, allocator, self._ptr, size, device, retain)

    @classmethod
    def _adopt(cls, allocator: DeviceMemoryAllocator, ptr: Optional[MemoryPtr], size: int,
               device: DeviceDescriptor, retain: bool) -> ScopedBuffer:
        buffer = cls.__new__(cls)
        buffer._allocator = allocator
        buffer._ptr = ptr
        buffer._size = ByteSize(size)
        buffer._device = device
        buffer._retain = retain
        buffer._finalizer = finalize(buffer, _release, allocator, ptr, size, device, retain)
        return buffer

    @property
    def ptr(self) -> Optional[MemoryPtr]:
        return self._ptr

    @property
    def size(self) -> ByteSize:
        return self._size

    @property
    def device(self) -> DeviceDescriptor:
        return self._device

    @property
    def retain(self) -> bool:
        return self._retain

    @property
    def closed(self) -> bool:
        return not self._finalizer.alive

    def close(self) -> None:
        self._finalizer()
        self._ptr = None

    def transfer(self) -> ScopedBuffer:
        """Move ownership into a new buffer; this one is left empty and closed."""
        if self.closed:
            raise DeviceError("Cannot transfer a closed buffer", device=str(self._device))

        self._finalizer.detach()
        moved = ScopedBuffer._adopt(self._allocator, self._ptr, self._size, self._device, self._retain)
        self._ptr = None
        self._size = ByteSize(0)
        return moved

    def write(self, data: bytes | bytearray | memoryview, offset: int = 0) -> None:
        payload = bytes(data)
        self._check_range(offset, len(payload))
        if not payload:
            return
        host = (ctypes.c_ubyte * len(payload)).from_buffer_copy(payload)
        self._allocator.copy_to_device(
            MemoryPtr(self._ptr + offset), MemoryPtr(ctypes.addressof(host)), len(payload), self._device
        )

    def read(self, size: Optional[int] = None, offset: int = 0) -> bytes:
        length = self._size - offset if size is None else size
        self._check_range(offset, length)
        if length == 0:
            return b""
        host = (ctypes.c_ubyte * length)()
        self._allocator.copy_to_host(
            MemoryPtr(ctypes.addressof(host)), MemoryPtr(self._ptr + offset), length, self._device
        )
        return bytes(host)

    def _check_range(self, offset: int, length: int) -> None:
        if self.closed:
            raise DeviceError("Buffer has been released", device=str(self._device))
        if offset < 0 or length < 0 or offset + length > self._size:
            raise ValueError(f"Access beyond buffer bounds: {offset + length} > {self._size}")

    def __enter__(self) -> ScopedBuffer:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def __copy__(self):
        raise TypeError("ScopedBuffer cannot be copied; use transfer() to move ownership")

    def __deepcopy__(self, memo):
        raise TypeError("ScopedBuffer cannot be copied; use transfer() to move ownership")

    def __reduce__(self):
        raise TypeError("ScopedBuffer cannot be pickled")

    def __repr__(self) -> str:
        state = "closed" if self.closed else f"ptr={self._ptr:#x}" if self._ptr else "ptr=None"
        return f"ScopedBuffer(size={self._size}, device={self._device}, {state})"
