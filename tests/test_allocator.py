import ctypes
import itertools
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import Mock

import pytest

from tensorcore.config import Configuration
from tensorcore.core.device import CPU, DeviceDescriptor
from tensorcore.exceptions import DeviceError, MemoryError
from tensorcore.memory import DeviceBackend, DeviceMemoryAllocator, MemoryPool, size_class
from tensorcore.types import DeviceKind


class TestSizeClass:
    @pytest.mark.parametrize("size,expected", [
        (1, 64),
        (64, 64),
        (65, 128),
        (1000, 1024),
        (1024, 1024),
        (1025, 2048),
    ])
    def test_power_of_two_rounding(self, size, expected):
        assert size_class(size) == expected

    def test_custom_alignment(self):
        assert size_class(10, alignment=256) == 256


class TestMemoryPool:
    def setup_method(self):
        self.pool = MemoryPool(CPU)

    def test_first_fit(self):
        self.pool.adopt(0x1000, 128)
        self.pool.adopt(0x2000, 64)
        assert self.pool.acquire(32) == 0x1000
        assert self.pool.acquire(32) == 0x2000
        assert self.pool.acquire(32) is None

    def test_release_marks_free(self):
        self.pool.adopt(0x1000, 128)
        self.pool.acquire(100)
        assert self.pool.in_use_count == 1
        assert self.pool.release(0x1000)
        assert self.pool.in_use_count == 0
        assert not self.pool.release(0x9999)

    def test_take_free_keeps_in_use(self):
        self.pool.adopt(0x1000, 128)
        self.pool.adopt(0x2000, 256)
        self.pool.acquire(200)
        freed = self.pool.take_free()
        assert [block.ptr for block in freed] == [0x1000]
        assert len(self.pool) == 1
        assert self.pool.total_bytes == 256
        assert self.pool.free_bytes == 0


class TestAllocation:
    def test_zero_size_returns_none(self, allocator):
        assert allocator.allocate(0, CPU) is None

    def test_negative_size_rejected(self, allocator):
        with pytest.raises(ValueError):
            allocator.allocate(-1, CPU)

    def test_allocation_is_aligned(self, allocator):
        ptr = allocator.allocate(100, CPU)
        assert ptr is not None
        assert ptr % 64 == 0
        allocator.deallocate(ptr, CPU)

    def test_raw_allocation_uses_size_class(self, allocator, cpu_backend):
        allocator.allocate(100, CPU)
        stats = allocator.stats()
        assert stats['raw_allocations'] == 1
        assert stats['bytes_allocated'] == 128
        assert stats['outstanding'] == 1
        assert cpu_backend.live_allocations == 1

    def test_deallocate_none_is_noop(self, allocator):
        allocator.deallocate(None, CPU)
        assert allocator.stats()['raw_frees'] == 0

    def test_deallocate_frees(self, allocator, cpu_backend):
        ptr = allocator.allocate(100, CPU)
        allocator.deallocate(ptr, CPU)
        assert cpu_backend.live_allocations == 0
        assert allocator.stats()['outstanding'] == 0
        assert allocator.stats()['raw_frees'] == 1

    def test_deallocate_pooled_block_removes_it(self, allocator, cpu_backend):
        ptr = allocator.allocate(100, CPU)
        allocator.return_to_pool(ptr, 100, CPU)
        allocator.deallocate(ptr, CPU)
        assert allocator.pool_blocks(CPU) == []
        assert cpu_backend.live_allocations == 0

    def test_missing_backend(self):
        allocator = DeviceMemoryAllocator(backends={})
        with pytest.raises(DeviceError):
            allocator.allocate(16, CPU)


class TestPooling:
    def test_returned_block_is_reused(self, allocator):
        ptr = allocator.allocate(100, CPU)
        allocator.return_to_pool(ptr, 100, CPU)
        assert allocator.allocate(100, CPU) == ptr
        stats = allocator.stats()
        assert stats['pool_hits'] == 1
        assert stats['raw_allocations'] == 1

    def test_smaller_request_fits_larger_block(self, allocator):
        ptr = allocator.allocate(100, CPU)
        allocator.return_to_pool(ptr, 100, CPU)
        assert allocator.allocate(120, CPU) == ptr

    def test_first_fit_in_pool_order(self, allocator):
        small = allocator.allocate(100, CPU)
        large = allocator.allocate(1000, CPU)
        allocator.return_to_pool(small, 100, CPU)
        allocator.return_to_pool(large, 1000, CPU)

        assert allocator.allocate(10, CPU) == small
        assert allocator.allocate(10, CPU) == large

    def test_in_use_block_not_handed_out_twice(self, allocator):
        ptr = allocator.allocate(100, CPU)
        allocator.return_to_pool(ptr, 100, CPU)
        first = allocator.allocate(100, CPU)
        second = allocator.allocate(100, CPU)
        assert first == ptr
        assert second != ptr

    def test_return_none_is_noop(self, allocator):
        allocator.return_to_pool(None, 0, CPU)
        assert allocator.stats()['returns'] == 0

    def test_pool_records_capacity(self, allocator):
        ptr = allocator.allocate(100, CPU)
        allocator.return_to_pool(ptr, 100, CPU)
        [block] = allocator.pool_blocks(CPU)
        assert block.ptr == ptr
        assert block.size == 128
        assert not block.in_use

    def test_foreign_pointer_is_adopted(self, allocator, cpu_backend, caplog):
        foreign = cpu_backend.allocate(256, -1)
        with caplog.at_level(logging.WARNING, logger="tensorcore.memory.allocator"):
            allocator.return_to_pool(foreign, 256, CPU)

        [block] = allocator.pool_blocks(CPU)
        assert block.ptr == foreign
        assert block.size == 256
        assert allocator.stats()['adopted_blocks'] == 1
        assert "Adopting foreign pointer" in caplog.text
        assert allocator.allocate(200, CPU) == foreign

    def test_pools_are_per_device(self, fake_accelerators):
        backend = Mock(spec=DeviceBackend)
        counter = itertools.count(0x10000, 0x1000)
        backend.allocate.side_effect = lambda size, index: next(counter)
        backend.memory_capacity.return_value = 1 << 30

        allocator = DeviceMemoryAllocator(backends={DeviceKind.ACCELERATOR: backend})
        first = DeviceDescriptor.accelerator(0)
        second = DeviceDescriptor.accelerator(1)

        ptr = allocator.allocate(64, first)
        allocator.return_to_pool(ptr, 64, first)
        assert allocator.allocate(64, second) != ptr
        assert allocator.allocate(64, first) == ptr


class TestStrictMode:
    def setup_method(self):
        from tensorcore.memory import CpuBackend
        self.backend = CpuBackend()
        self.allocator = DeviceMemoryAllocator(backends={DeviceKind.CPU: self.backend}, strict=True)

    def teardown_method(self):
        self.allocator.release_all()

    def test_foreign_return_rejected(self):
        foreign = self.backend.allocate(256, -1)
        with pytest.raises(MemoryError):
            self.allocator.return_to_pool(foreign, 256, CPU)
        assert self.allocator.pool_blocks(CPU) == []
        self.backend.free(foreign, -1)

    def test_foreign_deallocate_rejected_before_free(self):
        foreign = self.backend.allocate(256, -1)
        with pytest.raises(MemoryError):
            self.allocator.deallocate(foreign, CPU)
        assert self.backend.live_allocations == 1
        self.backend.free(foreign, -1)

    def test_own_pointers_accepted(self):
        ptr = self.allocator.allocate(100, CPU)
        self.allocator.return_to_pool(ptr, 100, CPU)
        assert self.allocator.allocate(100, CPU) == ptr
        assert self.allocator.strict


class TestTrimming:
    def test_trim_frees_idle_blocks(self, allocator, cpu_backend):
        idle = allocator.allocate(100, CPU)
        busy = allocator.allocate(1000, CPU)
        allocator.return_to_pool(idle, 100, CPU)
        allocator.return_to_pool(busy, 1000, CPU)
        assert allocator.allocate(1000, CPU) == busy

        assert allocator.trim() == 128
        assert [block.ptr for block in allocator.pool_blocks(CPU)] == [busy]
        assert cpu_backend.live_allocations == 1

    def test_trim_single_device(self, allocator):
        ptr = allocator.allocate(100, CPU)
        allocator.return_to_pool(ptr, 100, CPU)
        assert allocator.trim(CPU) == 128

    def test_trim_unknown_device_is_noop(self, allocator, fake_accelerators):
        assert allocator.trim(DeviceDescriptor.accelerator(0)) == 0

    def test_release_all(self, allocator, cpu_backend):
        for size in (10, 100, 1000):
            ptr = allocator.allocate(size, CPU)
            allocator.return_to_pool(ptr, size, CPU)
        allocator.allocate(10, CPU)

        assert allocator.release_all() == 64 + 128 + 1024
        assert allocator.pool_blocks(CPU) == []
        assert cpu_backend.live_allocations == 0


class TestBackendFailures:
    def setup_method(self):
        self.backend = Mock(spec=DeviceBackend)
        self.allocator = DeviceMemoryAllocator(backends={DeviceKind.CPU: self.backend})

    def test_failed_allocation_leaves_no_trace(self):
        self.backend.allocate.side_effect = DeviceError("out of memory", device="cpu")

        with pytest.raises(DeviceError):
            self.allocator.allocate(100, CPU)

        assert self.allocator.pool_blocks(CPU) == []
        stats = self.allocator.stats()
        assert stats['outstanding'] == 0
        assert stats['raw_allocations'] == 0

    def test_budget_enforced_on_accelerator(self, fake_accelerators):
        self.backend.memory_capacity.return_value = 1000
        self.backend.allocate.return_value = 0x4000
        allocator = DeviceMemoryAllocator(
            backends={DeviceKind.ACCELERATOR: self.backend},
            config=Configuration(memory_fraction=0.5),
        )
        device = DeviceDescriptor.accelerator(0)

        assert allocator.allocate(256, device) == 0x4000
        with pytest.raises(DeviceError) as exc_info:
            allocator.allocate(256, device)
        assert exc_info.value.context['requested_size'] == 256
        assert self.backend.allocate.call_count == 1

    def test_failed_allocation_returns_reservation(self, fake_accelerators):
        self.backend.memory_capacity.return_value = 1000
        self.backend.allocate.side_effect = [DeviceError("out of memory", device="accelerator:0"), 0x4000]
        allocator = DeviceMemoryAllocator(
            backends={DeviceKind.ACCELERATOR: self.backend},
            config=Configuration(memory_fraction=0.5),
        )
        device = DeviceDescriptor.accelerator(0)

        with pytest.raises(DeviceError):
            allocator.allocate(256, device)
        assert allocator.allocate(256, device) == 0x4000

    def test_budget_holds_across_concurrent_allocations(self, fake_accelerators):
        entered = threading.Event()
        proceed = threading.Event()

        def slow_allocate(size, index):
            entered.set()
            assert proceed.wait(timeout=5)
            return 0x4000

        self.backend.memory_capacity.return_value = 1000
        self.backend.allocate.side_effect = slow_allocate
        allocator = DeviceMemoryAllocator(
            backends={DeviceKind.ACCELERATOR: self.backend},
            config=Configuration(memory_fraction=0.5),
        )
        device = DeviceDescriptor.accelerator(0)

        with ThreadPoolExecutor(max_workers=1) as executor:
            first = executor.submit(allocator.allocate, 256, device)
            assert entered.wait(timeout=5)
            try:
                with pytest.raises(DeviceError):
                    allocator.allocate(256, device)
            finally:
                proceed.set()
            assert first.result(timeout=5) == 0x4000

        assert self.backend.allocate.call_count == 1
        assert allocator.stats()['outstanding'] == 1


class TestCopies:
    def test_round_trip_through_cpu_buffer(self, allocator):
        payload = bytes(range(32))
        src = (ctypes.c_ubyte * 32).from_buffer_copy(payload)
        dst = (ctypes.c_ubyte * 32)()

        ptr = allocator.allocate(32, CPU)
        allocator.copy_to_device(ptr, ctypes.addressof(src), 32, CPU)
        allocator.copy_to_host(ctypes.addressof(dst), ptr, 32, CPU)
        assert bytes(dst) == payload
        allocator.deallocate(ptr, CPU)

    def test_zero_size_copy_is_noop(self, allocator):
        allocator.copy_to_host(None, None, 0, CPU)
        allocator.copy_to_device(None, None, 0, CPU)

    def test_null_pointer_rejected(self, allocator):
        ptr = allocator.allocate(16, CPU)
        with pytest.raises(DeviceError):
            allocator.copy_to_device(ptr, None, 16, CPU)
        with pytest.raises(DeviceError):
            allocator.copy_to_host(None, ptr, 16, CPU)

    def test_peer_copy_between_cpu_buffers(self, allocator, cpu_backend):
        src = allocator.allocate(8, CPU)
        dst = allocator.allocate(8, CPU)
        cpu_backend.view(src, 8)[:] = b"abcdefgh"

        allocator.peer_copy(dst, CPU, src, CPU, 8)
        assert bytes(cpu_backend.view(dst, 8)) == b"abcdefgh"


class TestConcurrency:
    def test_concurrent_allocate_and_return(self, allocator, cpu_backend):
        sizes = [16, 100, 1000, 4000]

        def worker(worker_id):
            errors = 0
            for i in range(200):
                size = sizes[(worker_id + i) % len(sizes)]
                ptr = allocator.allocate(size, CPU)
                view = cpu_backend.view(ptr, size)
                view[:] = bytes([worker_id]) * size
                if bytes(view) != bytes([worker_id]) * size:
                    errors += 1
                allocator.return_to_pool(ptr, size, CPU)
            return errors

        with ThreadPoolExecutor(max_workers=8) as executor:
            results = list(executor.map(worker, range(8)))

        assert results == [0] * 8
        blocks = allocator.pool_blocks(CPU)
        assert not any(block.in_use for block in blocks)
        assert len({block.ptr for block in blocks}) == len(blocks)
        assert allocator.stats()['outstanding'] == 0


class TestStats:
    def test_stats_layout(self, allocator):
        ptr = allocator.allocate(100, CPU)
        allocator.return_to_pool(ptr, 100, CPU)
        stats = allocator.stats()

        assert stats['returns'] == 1
        assert stats['strict'] is False
        assert stats['pools']['cpu'] == {
            'blocks': 1,
            'in_use': 0,
            'total_bytes': 128,
            'free_bytes': 128,
        }

    def test_repr(self, allocator):
        assert "DeviceMemoryAllocator" in repr(allocator)
