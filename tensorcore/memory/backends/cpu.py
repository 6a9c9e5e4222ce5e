from __future__ import annotations
import builtins
import ctypes
import os
import platform
from threading import RLock
from typing import Any, Dict

from .base import DeviceBackend
from ...types.aliases import ByteSize, MemoryPtr
from ...types.enums import DeviceKind
from ...exceptions import DeviceError, MemoryError

CPU_ALIGNMENT = 64


class CpuBackend(DeviceBackend):
    """Host memory carved out of over-allocated ctypes arrays."""

    def __init__(self, alignment: int = CPU_ALIGNMENT):
        if alignment <= 0 or (alignment & (alignment - 1)) != 0:
            raise ValueError(f"Alignment must be a positive power of 2: {alignment}")
        super().__init__(DeviceKind.CPU)
        self._alignment = alignment
        self._buffers: Dict[int, ctypes.Array] = {}
        self._lock = RLock()

    @property
    def alignment(self) -> int:
        return self._alignment

    @property
    def live_allocations(self) -> int:
        with self._lock:
            return len(self._buffers)

    def allocate(self, size: ByteSize, index: int = -1) -> MemoryPtr:
        try:
            raw_buffer = (ctypes.c_ubyte * (size + self._alignment))()
        except (builtins.MemoryError, OverflowError, ValueError) as e:
            raise DeviceError(f"Failed to allocate memory on the CPU: {e}", device="cpu",
                              requested_size=size) from e

        raw_addr = ctypes.addressof(raw_buffer)
        aligned_addr = (raw_addr + self._alignment - 1) & ~(self._alignment - 1)

        with self._lock:
            self._buffers[aligned_addr] = raw_buffer
        return MemoryPtr(aligned_addr)

    def free(self, ptr: MemoryPtr, index: int = -1) -> None:
        with self._lock:
            raw_buffer = self._buffers.pop(ptr, None)
        if raw_buffer is None:
            raise MemoryError(f"Pointer {ptr:#x} was not allocated by the CPU backend", ptr=ptr)

    def copy_to_host(self, dst: MemoryPtr, src: MemoryPtr, size: ByteSize, index: int = -1) -> None:
        ctypes.memmove(dst, src, size)

    def copy_to_device(self, dst: MemoryPtr, src: MemoryPtr, size: ByteSize, index: int = -1) -> None:
        ctypes.memmove(dst, src, size)

    def view(self, ptr: MemoryPtr, size: ByteSize) -> memoryview:
        """Writable byte view over ``size`` bytes of host memory at ``ptr``."""
        return memoryview((ctypes.c_ubyte * size).from_address(ptr)).cast('B')

    def is_available(self) -> bool:
        return True

    def device_count(self) -> int:
        return 1

    def memory_capacity(self, index: int = -1) -> ByteSize:
        try:
            return ByteSize(os.sysconf('SC_PAGE_SIZE') * os.sysconf('SC_PHYS_PAGES'))
        except (ValueError, OSError, AttributeError):
            return ByteSize(0)

    def detect_capabilities(self) -> Dict[str, Any]:
        return {
            'alignment': self._alignment,
            'cpu_count': os.cpu_count() or 1,
            'machine': platform.machine(),
            'memory_capacity': self.memory_capacity(),
        }
