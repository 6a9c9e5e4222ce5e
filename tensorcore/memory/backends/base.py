from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Dict

from ...types.aliases import ByteSize, MemoryPtr
from ...types.enums import DeviceKind


class DeviceBackend(ABC):
    """Raw allocate/free/copy primitives for one kind of device."""

    def __init__(self, kind: DeviceKind):
        self._kind = kind
        self._capabilities: Dict[str, Any] = {}
        self._initialized = False

    @property
    def kind(self) -> DeviceKind:
        return self._kind

    @property
    def capabilities(self) -> Dict[str, Any]:
        if not self._initialized:
            self.initialize()
        return self._capabilities.copy()

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @abstractmethod
    def allocate(self, size: ByteSize, index: int) -> MemoryPtr:
        pass

    @abstractmethod
    def free(self, ptr: MemoryPtr, index: int) -> None:
        pass

    @abstractmethod
    def copy_to_host(self, dst: MemoryPtr, src: MemoryPtr, size: ByteSize, index: int) -> None:
        pass

    @abstractmethod
    def copy_to_device(self, dst: MemoryPtr, src: MemoryPtr, size: ByteSize, index: int) -> None:
        pass

    @abstractmethod
    def is_available(self) -> bool:
        pass

    @abstractmethod
    def device_count(self) -> int:
        pass

    @abstractmethod
    def memory_capacity(self, index: int) -> ByteSize:
        pass

    @abstractmethod
    def detect_capabilities(self) -> Dict[str, Any]:
        pass

    def initialize(self) -> None:
        if not self._initialized:
            self._capabilities = self.detect_capabilities()
            self._initialized = True

    def get_backend_info(self) -> Dict[str, Any]:
        return {
            'kind': self._kind.name,
            'available': self.is_available(),
            'device_count': self.device_count(),
            'capabilities': self.capabilities,
        }
