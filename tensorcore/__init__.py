"""
tensorcore - N-dimensional tensor storage and device memory substrate

Provides the layers tensor operations are built on:
- NumPy-style broadcasting, stride computation and index conversion
- Validated CPU/accelerator device descriptors
- Thread-safe pooled device memory allocation and host/device transfer
- Scoped buffers released exactly once
- Contiguous typed tensor storage with shared ownership
- Materialized broadcasting and a small operation layer on top
"""

from __future__ import annotations

__version__ = "1.0.0"
__license__ = "MIT"

# Configuration
from .config import Configuration, get_config

# Memory
from .memory import (
    AcceleratorBackend,
    CpuBackend,
    DeviceBackend,
    DeviceMemoryAllocator,
    MemoryPool,
    ScopedBuffer,
)

# Core components
from .core import (
    CPU,
    BroadcastEvaluator,
    DeviceDescriptor,
    Tensor,
    TensorStorage,
    are_broadcastable,
    broadcast_shape,
    broadcast_shapes,
    broadcast_to,
    current_device,
    device_guard,
    get_device_info,
    linear_to_multi_index,
    multi_to_linear,
    num_elements,
    ops,
    promote_types,
    row_major_strides,
)
from .factory import (
    TensorContext,
    create_allocator,
    create_context,
    create_strict_allocator,
    get_default_allocator,
    get_default_context,
)

# Types
from .types import DeviceInfo, DeviceKind, MemoryBlock, ScalarType

# Exceptions
from .exceptions import (
    DeviceError,
    IndexError,
    MemoryError,
    ShapeError,
    TensorCoreError,
)

__all__ = [
    # Configuration
    "Configuration",
    "get_config",

    # Memory
    "AcceleratorBackend",
    "CpuBackend",
    "DeviceBackend",
    "DeviceMemoryAllocator",
    "MemoryPool",
    "ScopedBuffer",

    # Core
    "CPU",
    "BroadcastEvaluator",
    "DeviceDescriptor",
    "Tensor",
    "TensorStorage",
    "are_broadcastable",
    "broadcast_shape",
    "broadcast_shapes",
    "broadcast_to",
    "current_device",
    "device_guard",
    "get_device_info",
    "linear_to_multi_index",
    "multi_to_linear",
    "num_elements",
    "ops",
    "promote_types",
    "row_major_strides",

    # Factory
    "TensorContext",
    "create_allocator",
    "create_context",
    "create_strict_allocator",
    "get_default_allocator",
    "get_default_context",

    # Types
    "DeviceInfo",
    "DeviceKind",
    "MemoryBlock",
    "ScalarType",

    # Exceptions
    "DeviceError",
    "IndexError",
    "MemoryError",
    "ShapeError",
    "TensorCoreError",
]


def get_version() -> str:
    """Get the current version string."""
    return __version__
