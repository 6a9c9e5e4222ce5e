"""
Pooled device memory allocator for tensorcore.

The allocator hands out raw buffers for any device it has a backend for
and keeps a per-device pool of returned blocks for reuse. Pool bookkeeping
is serialized by one lock per allocator; raw backend allocations, frees
and copies run outside it.
"""

from __future__ import annotations
import logging
from threading import RLock
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple

from ..config import Configuration, get_config
from ..exceptions import DeviceError, MemoryError
from ..types.aliases import ByteSize, MemoryPtr
from ..types.descriptors import MemoryBlock
from ..types.enums import DeviceKind
from .backends import CPU_ALIGNMENT, DeviceBackend, default_backends

if TYPE_CHECKING:
    from ..core.device import DeviceDescriptor

logger = logging.getLogger(__name__)


def size_class(size: int, alignment: int = CPU_ALIGNMENT) -> ByteSize:
    """Round ``size`` up to the next power of two, never below ``alignment``."""
    if size <= alignment:
        return ByteSize(alignment)
    return ByteSize(1 << (size - 1).bit_length())


class MemoryPool:
    """Ordered blocks owned by one device. Callers hold the allocator lock."""

    __slots__ = ('_device', '_blocks')

    def __init__(self, device: DeviceDescriptor):
        self._device = device
        self._blocks: List[MemoryBlock] = []

    @property
    def device(self) -> DeviceDescriptor:
        return self._device

    def acquire(self, size: int) -> Optional[MemoryPtr]:
        for block in self._blocks:
            if not block.in_use and block.size >= size:
                block.in_use = True
                return block.ptr
        return None

    def release(self, ptr: MemoryPtr) -> bool:
        for block in self._blocks:
            if block.ptr == ptr:
                block.in_use = False
                return True
        return False

    def adopt(self, ptr: MemoryPtr, size: ByteSize) -> None:
        self._blocks.append(MemoryBlock(ptr, size, False))

    def remove(self, ptr: MemoryPtr) -> Optional[MemoryBlock]:
        for i, block in enumerate(self._blocks):
            if block.ptr == ptr:
                return self._blocks.pop(i)
        return None

    def take_free(self) -> List[MemoryBlock]:
        free = [block for block in self._blocks if not block.in_use]
        self._blocks = [block for block in self._blocks if block.in_use]
        return free

    def take_all(self) -> List[MemoryBlock]:
        blocks, self._blocks = self._blocks, []
        return blocks

    def snapshot(self) -> List[MemoryBlock]:
        return [MemoryBlock(block.ptr, block.size, block.in_use) for block in self._blocks]

    @property
    def total_bytes(self) -> int:
        return sum(block.size for block in self._blocks)

    @property
    def free_bytes(self) -> int:
        return sum(block.size for block in self._blocks if not block.in_use)

    @property
    def in_use_count(self) -> int:
        return sum(1 for block in self._blocks if block.in_use)

    def __len__(self) -> int:
        return len(self._blocks)


class DeviceMemoryAllocator:
    """
    Allocates, pools and copies raw buffers across devices.

    ``allocate`` serves from the device pool first (first fit) and falls
    back to a raw backend allocation rounded up to a power-of-two size
    class. Memory given back with ``return_to_pool`` is kept for reuse;
    ``deallocate`` frees it for real.

    Pointers returned to the pool that this allocator never handed out are
    adopted as new blocks, unless the allocator was created with
    ``strict=True``, in which case they raise MemoryError.
    """

    __slots__ = ('_backends', '_pools', '_outstanding', '_pending', '_lock', '_strict',
                 '_config', '_statistics')

    def __init__(
        self,
        backends: Optional[Mapping[DeviceKind, DeviceBackend]] = None,
        strict: bool = False,
        config: Optional[Configuration] = None,
    ):
        self._backends: Dict[DeviceKind, DeviceBackend] = dict(
            default_backends() if backends is None else backends
        )
        self._pools: Dict[DeviceDescriptor, MemoryPool] = {}
        self._outstanding: Dict[Tuple[DeviceDescriptor, MemoryPtr], ByteSize] = {}
        self._pending: Dict[DeviceDescriptor, int] = {}
        self._lock = RLock()
        self._strict = strict
        self._config = config
        self._statistics = {
            'pool_hits': 0,
            'pool_misses': 0,
            'raw_allocations': 0,
            'raw_frees': 0,
            'returns': 0,
            'adopted_blocks': 0,
            'bytes_allocated': 0,
        }

    @property
    def strict(self) -> bool:
        return self._strict

    @property
    def config(self) -> Configuration:
        return self._config if self._config is not None else get_config()

    def backend(self, kind: DeviceKind) -> DeviceBackend:
        try:
            return self._backends[kind]
        except KeyError:
            raise DeviceError(f"No memory backend registered for {DeviceKind(kind).name}") from None

    def _pool(self, device: DeviceDescriptor) -> MemoryPool:
        pool = self._pools.get(device)
        if pool is None:
            pool = self._pools[device] = MemoryPool(device)
        return pool

    def _device_bytes(self, device: DeviceDescriptor) -> int:
        pooled = self._pools[device].total_bytes if device in self._pools else 0
        outstanding = sum(size for (dev, _), size in self._outstanding.items() if dev == device)
        return pooled + outstanding + self._pending.get(device, 0)

    def _reserve(self, device: DeviceDescriptor, size: int) -> None:
        """Hold ``size`` bytes against the device budget until the raw allocation settles."""
        limit = None
        if device.kind is DeviceKind.ACCELERATOR:
            capacity = self.backend(device.kind).memory_capacity(device.index)
            limit = int(capacity * self.config.memory_fraction)

        with self._lock:
            in_use = self._device_bytes(device)
            if limit is not None and in_use + size > limit:
                raise DeviceError(
                    f"Allocating {size} bytes on {device} would exceed the memory budget "
                    f"({in_use} of {limit} bytes held)",
                    device=str(device), requested_size=size,
                )
            self._pending[device] = self._pending.get(device, 0) + size

    def _unreserve(self, device: DeviceDescriptor, size: int) -> None:
        remaining = self._pending[device] - size
        if remaining:
            self._pending[device] = remaining
        else:
            del self._pending[device]

    def allocate(self, size: int, device: DeviceDescriptor) -> Optional[MemoryPtr]:
        if size < 0:
            raise ValueError(f"Allocation size must be non-negative: {size}")
        if size == 0:
            return None

        ptr = self.get_from_pool(size, device)
        if ptr is not None:
            logger.debug("Pool hit on %s for %d bytes at %#x", device, size, ptr)
            return ptr

        capacity = size_class(size)
        self._reserve(device, capacity)
        try:
            ptr = self.backend(device.kind).allocate(capacity, device.index)
        except BaseException:
            with self._lock:
                self._unreserve(device, capacity)
            raise

        with self._lock:
            self._unreserve(device, capacity)
            self._outstanding[(device, ptr)] = capacity
            self._statistics['raw_allocations'] += 1
            self._statistics['bytes_allocated'] += capacity

        logger.debug("Raw allocation of %d bytes (%d requested) on %s at %#x",
                     capacity, size, device, ptr)
        return ptr

    def deallocate(self, ptr: Optional[MemoryPtr], device: DeviceDescriptor) -> None:
        if ptr is None:
            return

        with self._lock:
            capacity = self._outstanding.pop((device, ptr), None)
            if capacity is None:
                pool = self._pools.get(device)
                block = pool.remove(ptr) if pool is not None else None
                if block is None and self._strict:
                    raise MemoryError(
                        f"Pointer {ptr:#x} was not allocated by this allocator on {device}",
                        ptr=ptr, device=str(device),
                    )

        self.backend(device.kind).free(ptr, device.index)

        with self._lock:
            self._statistics['raw_frees'] += 1
        logger.debug("Freed %#x on %s", ptr, device)

    def copy_to_host(self, dst: Optional[MemoryPtr], src: Optional[MemoryPtr], size: int,
                     device: DeviceDescriptor) -> None:
        if size == 0:
            return
        self._check_pointers(dst, src, device)
        self.backend(device.kind).copy_to_host(dst, src, size, device.index)

    def copy_to_device(self, dst: Optional[MemoryPtr], src: Optional[MemoryPtr], size: int,
                       device: DeviceDescriptor) -> None:
        if size == 0:
            return
        self._check_pointers(dst, src, device)
        self.backend(device.kind).copy_to_device(dst, src, size, device.index)

    def peer_copy(self, dst: Optional[MemoryPtr], dst_device: DeviceDescriptor,
                  src: Optional[MemoryPtr], src_device: DeviceDescriptor, size: int) -> None:
        """Copy ``size`` bytes between buffers that may live on different devices."""
        if size == 0:
            return
        self._check_pointers(dst, src, dst_device)

        if src_device.is_cpu and dst_device.is_cpu:
            self.backend(DeviceKind.CPU).copy_to_host(dst, src, size, -1)
        elif src_device.is_cpu:
            self.copy_to_device(dst, src, size, dst_device)
        elif dst_device.is_cpu:
            self.copy_to_host(dst, src, size, src_device)
        else:
            backend = self.backend(DeviceKind.ACCELERATOR)
            copy_peer = getattr(backend, 'copy_peer', None)
            if copy_peer is not None:
                copy_peer(dst, dst_device.index, src, src_device.index, size)
                return

            from ..core.device import CPU
            staging = self.allocate(size, CPU)
            try:
                self.copy_to_host(staging, src, size, src_device)
                self.copy_to_device(dst, staging, size, dst_device)
            finally:
                self.return_to_pool(staging, size, CPU)

    @staticmethod
    def _check_pointers(dst: Optional[MemoryPtr], src: Optional[MemoryPtr],
                        device: DeviceDescriptor) -> None:
        if dst is None or src is None:
            raise DeviceError("Cannot copy through a null pointer", device=str(device))

    def get_from_pool(self, size: int, device: DeviceDescriptor) -> Optional[MemoryPtr]:
        with self._lock:
            ptr = self._pool(device).acquire(size)
            self._statistics['pool_hits' if ptr is not None else 'pool_misses'] += 1
            return ptr

    def return_to_pool(self, ptr: Optional[MemoryPtr], size: int, device: DeviceDescriptor) -> None:
        if ptr is None:
            return

        with self._lock:
            pool = self._pool(device)
            capacity = self._outstanding.pop((device, ptr), None)
            self._statistics['returns'] += 1

            if pool.release(ptr):
                return

            if capacity is None:
                if self._strict:
                    raise MemoryError(
                        f"Pointer {ptr:#x} was not obtained from this allocator on {device}",
                        ptr=ptr, device=str(device),
                    )
                logger.warning("Adopting foreign pointer %#x (%d bytes) into the %s pool",
                               ptr, size, device)
                self._statistics['adopted_blocks'] += 1
                capacity = ByteSize(size)

            pool.adopt(ptr, capacity)

    def trim(self, device: Optional[DeviceDescriptor] = None) -> int:
        """Free every pooled block not currently in use; return the bytes released."""
        with self._lock:
            pools = [self._pools[device]] if device in self._pools else (
                [] if device is not None else list(self._pools.values())
            )
            released = [(pool.device, block) for pool in pools for block in pool.take_free()]

        freed = self._free_blocks(released)
        if freed:
            logger.info("Trimmed %d bytes from %d pooled blocks", freed, len(released))
        return freed

    def release_all(self) -> int:
        """Free every pooled block, in use or not. Outstanding raw allocations are untouched."""
        with self._lock:
            released = [(pool.device, block) for pool in self._pools.values()
                        for block in pool.take_all()]
            self._pools.clear()
        return self._free_blocks(released)

    def _free_blocks(self, blocks: List[Tuple[DeviceDescriptor, MemoryBlock]]) -> int:
        freed = 0
        for device, block in blocks:
            self.backend(device.kind).free(block.ptr, device.index)
            freed += block.size
        with self._lock:
            self._statistics['raw_frees'] += len(blocks)
        return freed

    def pool_blocks(self, device: DeviceDescriptor) -> List[MemoryBlock]:
        with self._lock:
            pool = self._pools.get(device)
            return pool.snapshot() if pool is not None else []

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                **self._statistics,
                'outstanding': len(self._outstanding),
                'strict': self._strict,
                'pools': {
                    str(device): {
                        'blocks': len(pool),
                        'in_use': pool.in_use_count,
                        'total_bytes': pool.total_bytes,
                        'free_bytes': pool.free_bytes,
                    }
                    for device, pool in self._pools.items()
                },
            }

    def __repr__(self) -> str:
        with self._lock:
            return (f"DeviceMemoryAllocator(pools={len(self._pools)}, "
                    f"outstanding={len(self._outstanding)}, strict={self._strict})")
