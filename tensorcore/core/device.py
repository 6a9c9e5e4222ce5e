"""
Device identification for tensorcore.

`DeviceDescriptor` names a compute target by kind and index and validates
the pairing against the runtime: the CPU has no index (``-1``), an
accelerator index must name a device the CUDA runtime reports.
"""

from __future__ import annotations

import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from threading import RLock
from typing import Dict, Iterator, Optional

from ..config import get_config
from ..exceptions import DeviceError
from ..memory.backends import accelerator as _accelerator
from ..types.aliases import ByteSize
from ..types.descriptors import DeviceInfo
from ..types.enums import DeviceKind

CPU_INDEX = -1


@dataclass(frozen=True)
class DeviceDescriptor:
    kind: DeviceKind = DeviceKind.CPU
    index: int = CPU_INDEX

    def __post_init__(self):
        try:
            object.__setattr__(self, 'kind', DeviceKind(self.kind))
        except ValueError:
            raise DeviceError(f"Unknown device kind: {self.kind!r}") from None
        self._validate()

    def _validate(self) -> None:
        if self.kind is DeviceKind.CPU:
            if self.index != CPU_INDEX:
                raise DeviceError(f"CPU device index must be -1, got {self.index}", device="cpu")
            return

        if self.index < 0:
            raise DeviceError(
                f"Accelerator device index must be non-negative, got {self.index}",
                device=f"accelerator:{self.index}",
            )
        if not _accelerator.accelerator_available():
            raise DeviceError("Accelerator support is not available", device=f"accelerator:{self.index}")

        device_count = _accelerator.accelerator_device_count()
        if self.index >= device_count:
            raise DeviceError(
                f"Invalid accelerator device index: {self.index} (found {device_count} devices)",
                device=f"accelerator:{self.index}",
            )

    @classmethod
    def cpu(cls) -> DeviceDescriptor:
        return cls(DeviceKind.CPU, CPU_INDEX)

    @classmethod
    def accelerator(cls, index: int = 0) -> DeviceDescriptor:
        return cls(DeviceKind.ACCELERATOR, index)

    @property
    def is_cpu(self) -> bool:
        return self.kind is DeviceKind.CPU

    @property
    def is_accelerator(self) -> bool:
        return self.kind is DeviceKind.ACCELERATOR

    def to_string(self) -> str:
        if self.is_cpu:
            return "cpu"
        return f"accelerator:{self.index}"

    def __str__(self) -> str:
        return self.to_string()

    def __repr__(self) -> str:
        return f"DeviceDescriptor('{self.to_string()}')"


CPU = DeviceDescriptor.cpu()

_info_cache: Dict[DeviceDescriptor, DeviceInfo] = {}
_info_lock = RLock()


def _cpu_info() -> DeviceInfo:
    return DeviceInfo(
        name="CPU",
        memory_capacity=ByteSize(0),
        max_threads_per_block=os.cpu_count() or 1,
        warp_size=1,
        max_shared_memory=0,
        max_grid_size=(1, 1, 1),
        max_block_size=(1, 1, 1),
        compute_capability=(0, 0),
        unified_addressing=False,
    )


def _accelerator_info(index: int) -> DeviceInfo:
    import torch

    try:
        props = torch.cuda.get_device_properties(index)
    except RuntimeError as e:
        raise DeviceError(f"Failed to get accelerator device properties: {e}",
                          device=f"accelerator:{index}") from e

    return DeviceInfo(
        name=props.name,
        memory_capacity=ByteSize(props.total_memory),
        max_threads_per_block=getattr(props, 'max_threads_per_block', 1024),
        warp_size=getattr(props, 'warp_size', 32),
        max_shared_memory=getattr(props, 'shared_memory_per_block', 48 * 1024),
        max_grid_size=(2**31 - 1, 65535, 65535),
        max_block_size=(1024, 1024, 64),
        compute_capability=(props.major, props.minor),
        unified_addressing=True,
    )


def get_device_info(device: DeviceDescriptor) -> DeviceInfo:
    """Return the properties of ``device``, querying the runtime once per device."""
    with _info_lock:
        info = _info_cache.get(device)
        if info is None:
            info = _cpu_info() if device.is_cpu else _accelerator_info(device.index)
            _info_cache[device] = info
        return info


_context = threading.local()


def _default_device() -> DeviceDescriptor:
    if get_config().default_device is DeviceKind.ACCELERATOR:
        return DeviceDescriptor.accelerator(0)
    return CPU


def current_device() -> DeviceDescriptor:
    """The device operations on this thread target when none is given."""
    device: Optional[DeviceDescriptor] = getattr(_context, 'device', None)
    if device is None:
        device = _default_device()
        _context.device = device
    return device


def set_device(device: DeviceDescriptor) -> None:
    if not isinstance(device, DeviceDescriptor):
        raise TypeError(f"Expected DeviceDescriptor, got {type(device).__name__}")
    _context.device = device


@contextmanager
def device_guard(device: DeviceDescriptor) -> Iterator[DeviceDescriptor]:
    previous = current_device()
    set_device(device)
    try:
        yield device
    finally:
        _context.device = previous


__all__ = [
    "CPU",
    "CPU_INDEX",
    "DeviceDescriptor",
    "current_device",
    "device_guard",
    "get_device_info",
    "set_device",
]
