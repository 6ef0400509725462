"""
Core abstractions for PySyncedMem.
"""

from pysyncedmem.core.accelerator import Accelerator, Mode, configure
from pysyncedmem.core.allocator import Allocation, AllocationKind, DeviceAllocator, HostAllocator
from pysyncedmem.core.memory_pool import MemoryPool
from pysyncedmem.core.private import (
    ChannelsLastDescriptor,
    PlainLayoutDescriptor,
    PrivateDescriptor,
    PrivateFormat,
)
from pysyncedmem.core.synced_memory import Authority, Borrowed, Owned, SyncedMemory
from pysyncedmem.core.tensor import SyncedTensor

__all__ = [
    "Accelerator",
    "Mode",
    "configure",
    "Allocation",
    "AllocationKind",
    "HostAllocator",
    "DeviceAllocator",
    "MemoryPool",
    "PrivateDescriptor",
    "PrivateFormat",
    "PlainLayoutDescriptor",
    "ChannelsLastDescriptor",
    "SyncedMemory",
    "Authority",
    "Owned",
    "Borrowed",
    "SyncedTensor",
]
