from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property
from typing import Tuple

from .aliases import ByteSize, MemoryPtr


@dataclass(slots=True)
class MemoryBlock:
    ptr: MemoryPtr
    size: ByteSize
    in_use: bool = False


@dataclass(frozen=True)
class DeviceInfo:
    name: str
    memory_capacity: ByteSize
    max_threads_per_block: int
    warp_size: int
    max_shared_memory: int
    max_grid_size: Tuple[int, int, int]
    max_block_size: Tuple[int, int, int]
    compute_capability: Tuple[int, int]
    unified_addressing: bool

    @cached_property
    def compute_capability_score(self) -> float:
        major, minor = self.compute_capability
        return major * 10 + minor
