from __future__ import annotations

from .aliases import ByteSize, MemoryPtr, Shape, Strides
from .descriptors import DeviceInfo, MemoryBlock
from .enums import DeviceKind, ScalarType

__all__ = [
    "ByteSize",
    "DeviceInfo",
    "DeviceKind",
    "MemoryBlock",
    "MemoryPtr",
    "ScalarType",
    "Shape",
    "Strides",
]
