from .shape import (
    are_broadcastable,
    broadcast_shape,
    broadcast_shapes,
    broadcast_source_index,
    iter_multi_index,
    linear_to_multi_index,
    multi_to_linear,
    normalize_shape,
    num_elements,
    row_major_strides,
)
from .device import (
    CPU,
    DeviceDescriptor,
    current_device,
    device_guard,
    get_device_info,
    set_device,
)
from .dtype import as_scalar_type, is_floating_point, is_integral, itemsize, promote_types, to_numpy
from .storage import TensorStorage
from .tensor import Tensor
from .broadcast import BroadcastEvaluator, broadcast_to
from . import ops

__all__ = [
    "BroadcastEvaluator",
    "CPU",
    "DeviceDescriptor",
    "Tensor",
    "TensorStorage",
    "are_broadcastable",
    "as_scalar_type",
    "broadcast_shape",
    "broadcast_shapes",
    "broadcast_source_index",
    "broadcast_to",
    "current_device",
    "device_guard",
    "get_device_info",
    "is_floating_point",
    "is_integral",
    "itemsize",
    "iter_multi_index",
    "linear_to_multi_index",
    "multi_to_linear",
    "normalize_shape",
    "num_elements",
    "ops",
    "promote_types",
    "row_major_strides",
    "set_device",
    "to_numpy",
]
