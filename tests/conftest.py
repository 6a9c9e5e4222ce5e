import pytest

from tensorcore.memory import CpuBackend, DeviceMemoryAllocator
from tensorcore.memory.backends import accelerator as accelerator_module
from tensorcore.types import DeviceKind


@pytest.fixture
def fake_accelerators(monkeypatch):
    """Pretend two accelerators are present without touching the runtime."""
    monkeypatch.setattr(accelerator_module, "accelerator_available", lambda: True)
    monkeypatch.setattr(accelerator_module, "accelerator_device_count", lambda: 2)


@pytest.fixture
def no_accelerators(monkeypatch):
    monkeypatch.setattr(accelerator_module, "accelerator_available", lambda: False)
    monkeypatch.setattr(accelerator_module, "accelerator_device_count", lambda: 0)


@pytest.fixture
def cpu_backend():
    return CpuBackend()


@pytest.fixture
def allocator(cpu_backend):
    allocator = DeviceMemoryAllocator(backends={DeviceKind.CPU: cpu_backend})
    yield allocator
    allocator.release_all()
