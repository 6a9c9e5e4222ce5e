from __future__ import annotations

import builtins
from typing import Optional, Tuple


class TensorCoreError(Exception):
    def __init__(self, message: str, **kwargs):
        super().__init__(message)
        self.message = message
        self.context = kwargs


class ShapeError(TensorCoreError):
    def __init__(self, message: str, shapes: Optional[Tuple[tuple, ...]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.shapes = shapes


class DeviceError(TensorCoreError):
    def __init__(self, message: str, device: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.device = device


class IndexError(TensorCoreError, builtins.IndexError):
    def __init__(self, message: str, index: Optional[int] = None,
                 size: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.index = index
        self.size = size


class MemoryError(TensorCoreError):
    pass


__all__ = [
    'TensorCoreError',
    'ShapeError',
    'DeviceError',
    'IndexError',
    'MemoryError',
]
