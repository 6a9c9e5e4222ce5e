"""
Type aliases for tensorcore.

Raw device addresses and byte counts are distinct NewTypes over int;
shapes and strides are plain tuples of ints.
"""

from typing import NewType, Tuple, TypeAlias

MemoryPtr = NewType('MemoryPtr', int)
ByteSize = NewType('ByteSize', int)

Shape: TypeAlias = Tuple[int, ...]
Strides: TypeAlias = Tuple[int, ...]
