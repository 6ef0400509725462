"""
PySyncedMem - lazily synchronized host/device memory for tensor frameworks.

A SyncedMemory tracks one logical byte buffer that may live in host
memory, accelerator device memory and a vendor private layout, and copies
the authoritative version between them only when a view is requested in a
stale location.

Core Features:
    - Lazy Synchronization: Copies happen on demand, at most once per change
    - Explicit Ownership: Owned and borrowed memory per location
    - Pinned Host Memory: Page-locked allocations in GPU mode via CuPy
    - Private Layouts: Pluggable descriptors decode vendor formats
    - CPU Emulation: Full device path without a GPU for testing

Quick Start:
    >>> import numpy as np
    >>> from pysyncedmem import SyncedTensor
    >>>
    >>> t = SyncedTensor((4, 4), dtype=np.float32)
    >>> t.mutable_host_data()[:] = 1.0
    >>> d = t.device_data()  # copied to the device (needs a backend)
    >>> t.host_data().sum()  # no copy: host copy is still current
    16.0
"""

from pysyncedmem.core.accelerator import Accelerator, Mode, configure, get_accelerator
from pysyncedmem.core.memory_pool import MemoryPool, get_memory_pool
from pysyncedmem.core.private import PrivateDescriptor, PrivateFormat
from pysyncedmem.core.synced_memory import Authority, SyncedMemory
from pysyncedmem.core.tensor import SyncedTensor

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Configuration
    "Accelerator",
    "Mode",
    "configure",
    "get_accelerator",
    "MemoryPool",
    "get_memory_pool",
    # Buffers
    "SyncedMemory",
    "Authority",
    "SyncedTensor",
    # Private layouts
    "PrivateDescriptor",
    "PrivateFormat",
]
