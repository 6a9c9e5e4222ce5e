"""
Enumeration types for tensorcore.

This module defines the enumeration types used to identify compute
devices and element types.
"""

from enum import IntEnum


class DeviceKind(IntEnum):
    """Kinds of compute targets a buffer can live on."""
    CPU = 0
    ACCELERATOR = 1


class ScalarType(IntEnum):
    """Element types a tensor storage can hold."""
    UINT8 = 0
    INT8 = 1
    INT16 = 2
    INT32 = 3
    INT64 = 4
    FLOAT32 = 5
    FLOAT64 = 6
    BOOL = 7
