from __future__ import annotations
from typing import Dict

from .base import DeviceBackend
from .cpu import CPU_ALIGNMENT, CpuBackend
from .accelerator import AcceleratorBackend, accelerator_available, accelerator_device_count
from ...types.enums import DeviceKind


def default_backends() -> Dict[DeviceKind, DeviceBackend]:
    return {
        DeviceKind.CPU: CpuBackend(),
        DeviceKind.ACCELERATOR: AcceleratorBackend(),
    }


__all__ = [
    "AcceleratorBackend",
    "CPU_ALIGNMENT",
    "CpuBackend",
    "DeviceBackend",
    "accelerator_available",
    "accelerator_device_count",
    "default_backends",
]
