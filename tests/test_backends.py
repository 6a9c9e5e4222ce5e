import ctypes
from unittest.mock import patch

import pytest
import torch

from tensorcore.exceptions import DeviceError, MemoryError
from tensorcore.memory.backends import AcceleratorBackend, CpuBackend, default_backends
from tensorcore.types import DeviceKind


class TestCpuBackend:
    def setup_method(self):
        self.backend = CpuBackend()

    def test_backend_initialization(self):
        assert self.backend.kind is DeviceKind.CPU
        assert not self.backend.is_initialized
        assert self.backend.capabilities['alignment'] == 64
        assert self.backend.is_initialized

    def test_invalid_alignment(self):
        with pytest.raises(ValueError):
            CpuBackend(alignment=48)

    def test_aligned_allocation(self):
        backend = CpuBackend(alignment=256)
        ptr = backend.allocate(100, -1)
        assert ptr % 256 == 0
        backend.free(ptr, -1)

    def test_view_and_copy(self):
        src = self.backend.allocate(8, -1)
        dst = self.backend.allocate(8, -1)
        self.backend.view(src, 8)[:] = b"12345678"
        self.backend.copy_to_host(dst, src, 8)
        assert bytes(self.backend.view(dst, 8)) == b"12345678"

    def test_free_unknown_pointer(self):
        with pytest.raises(MemoryError):
            self.backend.free(0xdead, -1)

    def test_allocation_failure_becomes_device_error(self):
        with patch.object(ctypes, "c_ubyte") as c_ubyte:
            c_ubyte.__mul__.side_effect = OverflowError("too large")
            with pytest.raises(DeviceError):
                self.backend.allocate(1 << 62, -1)

    def test_backend_info(self):
        info = self.backend.get_backend_info()
        assert info['kind'] == "CPU"
        assert info['available'] is True
        assert info['device_count'] == 1


class TestAcceleratorBackend:
    def setup_method(self):
        self.backend = AcceleratorBackend()

    def test_default_backends(self):
        backends = default_backends()
        assert isinstance(backends[DeviceKind.CPU], CpuBackend)
        assert isinstance(backends[DeviceKind.ACCELERATOR], AcceleratorBackend)

    def test_capabilities_without_runtime(self):
        with patch.object(torch.cuda, "is_available", return_value=False):
            capabilities = self.backend.detect_capabilities()
        assert capabilities == {'accelerator_available': False, 'device_count': 0, 'devices': []}

    def test_allocate_without_runtime(self):
        with patch.object(torch.cuda, "is_available", return_value=False):
            with pytest.raises(DeviceError) as exc_info:
                self.backend.allocate(64, 0)
        assert "not available" in str(exc_info.value)

    @pytest.mark.skipif(not torch.cuda.is_available(), reason="CUDA not available")
    def test_device_round_trip(self):
        ptr = self.backend.allocate(16, 0)
        host_src = (ctypes.c_ubyte * 16).from_buffer_copy(bytes(range(16)))
        host_dst = (ctypes.c_ubyte * 16)()

        self.backend.copy_to_device(ptr, ctypes.addressof(host_src), 16, 0)
        self.backend.copy_to_host(ctypes.addressof(host_dst), ptr, 16, 0)
        assert bytes(host_dst) == bytes(range(16))

        self.backend.free(ptr, 0)
        assert self.backend.live_allocations == 0

    @pytest.mark.skipif(not torch.cuda.is_available(), reason="CUDA not available")
    def test_interior_pointer_copy(self):
        ptr = self.backend.allocate(32, 0)
        host = (ctypes.c_ubyte * 8).from_buffer_copy(b"abcdefgh")
        out = (ctypes.c_ubyte * 8)()

        self.backend.copy_to_device(ptr + 8, ctypes.addressof(host), 8, 0)
        self.backend.copy_to_host(ctypes.addressof(out), ptr + 8, 8, 0)
        assert bytes(out) == b"abcdefgh"

        with pytest.raises(DeviceError):
            self.backend.copy_to_host(ctypes.addressof(out), ptr + 28, 8, 0)
        self.backend.free(ptr, 0)

    @pytest.mark.skipif(not torch.cuda.is_available(), reason="CUDA not available")
    def test_free_unknown_pointer(self):
        with pytest.raises(MemoryError):
            self.backend.free(0xdead, 0)
