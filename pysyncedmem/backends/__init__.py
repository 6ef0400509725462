"""
Device runtime backends for PySyncedMem.
"""

from pysyncedmem.backends.base import Backend, BackendType
from pysyncedmem.backends.cpu import CPUBackend, HostStream, TransferStatistics

__all__ = [
    "Backend",
    "BackendType",
    "CPUBackend",
    "HostStream",
    "TransferStatistics",
]

# Conditionally export CUDA backend if available
try:
    from pysyncedmem.backends.cuda import CUDABackend  # noqa: F401

    __all__.append("CUDABackend")
except ImportError:
    pass
