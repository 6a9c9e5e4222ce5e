from __future__ import annotations
from functools import lru_cache
from typing import Optional

from .config import Configuration, get_config
from .memory.allocator import DeviceMemoryAllocator


class TensorContext:
    """Top-level owner of the allocator and configuration handed to operations."""

    __slots__ = ('_allocator', '_config')

    def __init__(self, allocator: Optional[DeviceMemoryAllocator] = None,
                 config: Optional[Configuration] = None):
        self._config = config if config is not None else get_config()
        self._allocator = allocator if allocator is not None else DeviceMemoryAllocator(config=self._config)

    @property
    def allocator(self) -> DeviceMemoryAllocator:
        return self._allocator

    @property
    def config(self) -> Configuration:
        return self._config

    def close(self) -> int:
        return self._allocator.release_all()

    def __enter__(self) -> TensorContext:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


@lru_cache(maxsize=1)
def get_default_context() -> TensorContext:
    return TensorContext()


def get_default_allocator() -> DeviceMemoryAllocator:
    return get_default_context().allocator


def create_allocator(**kwargs) -> DeviceMemoryAllocator:
    return DeviceMemoryAllocator(**kwargs)


def create_strict_allocator() -> DeviceMemoryAllocator:
    return DeviceMemoryAllocator(strict=True)


def create_context(**kwargs) -> TensorContext:
    return TensorContext(**kwargs)
