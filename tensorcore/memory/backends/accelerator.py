from __future__ import annotations
import ctypes
import logging
from threading import RLock
from typing import Any, Dict, Tuple

import torch

from .base import DeviceBackend
from ...types.aliases import ByteSize, MemoryPtr
from ...types.enums import DeviceKind
from ...exceptions import DeviceError, MemoryError

logger = logging.getLogger(__name__)


def accelerator_available() -> bool:
    try:
        return torch.cuda.is_available()
    except RuntimeError:
        return False


def accelerator_device_count() -> int:
    if not accelerator_available():
        return 0
    return torch.cuda.device_count()


class AcceleratorBackend(DeviceBackend):
    """
    CUDA device memory obtained through PyTorch.

    Each allocation is a flat ``uint8`` device tensor kept alive by the
    backend; the handle given out is its device address. Transfers wrap
    host addresses with ``torch.frombuffer`` and copy through ``Tensor.copy_``.
    """

    def __init__(self):
        super().__init__(DeviceKind.ACCELERATOR)
        self._tensors: Dict[int, torch.Tensor] = {}
        self._lock = RLock()

    @property
    def live_allocations(self) -> int:
        with self._lock:
            return len(self._tensors)

    def _require_available(self, index: int) -> None:
        if not self.is_available():
            raise DeviceError("Accelerator support is not available", device=f"accelerator:{index}")

    def allocate(self, size: ByteSize, index: int) -> MemoryPtr:
        self._require_available(index)
        try:
            tensor = torch.empty(size, dtype=torch.uint8, device=torch.device('cuda', index))
        except RuntimeError as e:
            raise DeviceError(f"Failed to allocate memory on the accelerator: {e}",
                              device=f"accelerator:{index}", requested_size=size) from e

        ptr = tensor.data_ptr()
        with self._lock:
            self._tensors[ptr] = tensor
        return MemoryPtr(ptr)

    def free(self, ptr: MemoryPtr, index: int) -> None:
        with self._lock:
            tensor = self._tensors.pop(ptr, None)
        if tensor is None:
            raise MemoryError(f"Pointer {ptr:#x} was not allocated by the accelerator backend", ptr=ptr)
        del tensor

    def _locate(self, ptr: MemoryPtr, size: ByteSize) -> torch.Tensor:
        with self._lock:
            for base, tensor in self._tensors.items():
                if base <= ptr < base + tensor.numel():
                    offset = ptr - base
                    if offset + size > tensor.numel():
                        raise DeviceError(
                            f"Transfer of {size} bytes at {ptr:#x} overruns its device allocation",
                            device=str(tensor.device),
                        )
                    return tensor[offset:offset + size]
        raise DeviceError(f"Pointer {ptr:#x} is not a live accelerator allocation")

    @staticmethod
    def _host_view(ptr: MemoryPtr, size: ByteSize) -> torch.Tensor:
        host_buffer = (ctypes.c_ubyte * size).from_address(ptr)
        return torch.frombuffer(host_buffer, dtype=torch.uint8)

    def copy_to_host(self, dst: MemoryPtr, src: MemoryPtr, size: ByteSize, index: int) -> None:
        self._require_available(index)
        device_view = self._locate(src, size)
        try:
            self._host_view(dst, size).copy_(device_view)
        except RuntimeError as e:
            raise DeviceError(f"Accelerator to host memory copy failed: {e}",
                              device=f"accelerator:{index}") from e

    def copy_to_device(self, dst: MemoryPtr, src: MemoryPtr, size: ByteSize, index: int) -> None:
        self._require_available(index)
        device_view = self._locate(dst, size)
        try:
            device_view.copy_(self._host_view(src, size))
            torch.cuda.synchronize(device_view.device)
        except RuntimeError as e:
            raise DeviceError(f"Host to accelerator memory copy failed: {e}",
                              device=f"accelerator:{index}") from e

    def copy_peer(self, dst: MemoryPtr, dst_index: int, src: MemoryPtr, src_index: int,
                  size: ByteSize) -> None:
        self._require_available(src_index)
        self._require_available(dst_index)
        dst_view = self._locate(dst, size)
        src_view = self._locate(src, size)
        try:
            dst_view.copy_(src_view)
            torch.cuda.synchronize(dst_view.device)
        except RuntimeError as e:
            raise DeviceError(f"Accelerator peer copy failed: {e}",
                              device=f"accelerator:{dst_index}") from e

    def is_available(self) -> bool:
        return accelerator_available()

    def device_count(self) -> int:
        return accelerator_device_count()

    def memory_capacity(self, index: int) -> ByteSize:
        self._require_available(index)
        return ByteSize(torch.cuda.get_device_properties(index).total_memory)

    def device_properties(self, index: int) -> Dict[str, Any]:
        self._require_available(index)
        props = torch.cuda.get_device_properties(index)
        compute_capability: Tuple[int, int] = (props.major, props.minor)
        return {
            'name': props.name,
            'total_memory': props.total_memory,
            'multiprocessor_count': props.multi_processor_count,
            'compute_capability': compute_capability,
        }

    def detect_capabilities(self) -> Dict[str, Any]:
        capabilities: Dict[str, Any] = {
            'accelerator_available': False,
            'device_count': 0,
            'devices': [],
        }

        if not accelerator_available():
            return capabilities

        capabilities['accelerator_available'] = True
        capabilities['device_count'] = accelerator_device_count()
        try:
            capabilities['devices'] = [
                dict(id=i, **self.device_properties(i))
                for i in range(capabilities['device_count'])
            ]
        except RuntimeError as e:
            logger.warning("Could not query accelerator properties: %s", e)
        return capabilities
