from .backends import (
    CPU_ALIGNMENT,
    AcceleratorBackend,
    CpuBackend,
    DeviceBackend,
    accelerator_available,
    accelerator_device_count,
    default_backends,
)
from .allocator import DeviceMemoryAllocator, MemoryPool, size_class
from .buffer import ScopedBuffer

__all__ = [
    "CPU_ALIGNMENT",
    "AcceleratorBackend",
    "CpuBackend",
    "DeviceBackend",
    "DeviceMemoryAllocator",
    "MemoryPool",
    "ScopedBuffer",
    "accelerator_available",
    "accelerator_device_count",
    "default_backends",
    "size_class",
]
