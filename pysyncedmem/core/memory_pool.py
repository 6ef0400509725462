"""
Allocation accounting and memory pooling.

Records every host and device allocation made for synchronized buffers,
and wraps CuPy's built-in device and pinned memory pools.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pysyncedmem.core.allocator import AllocationKind

logger = logging.getLogger(__name__)


@dataclass
class PoolStatistics:
    """Statistics for one kind of allocation."""

    allocations: int = 0
    releases: int = 0
    bytes_in_use: int = 0
    peak_bytes: int = 0

    @property
    def live_allocations(self) -> int:
        """Get the number of allocations not yet released."""
        return self.allocations - self.releases

    @property
    def used_mb(self) -> float:
        """Get used memory in MB."""
        return self.bytes_in_use / (1024 * 1024)

    @property
    def peak_mb(self) -> float:
        """Get peak memory in MB."""
        return self.peak_bytes / (1024 * 1024)


class MemoryPool:
    """
    Process-wide allocation accounting.

    Wraps CuPy's built-in memory pools for GPU and pinned memory, and keeps
    per-kind statistics for allocations made by the buffer allocators.

    Example:
        >>> pool = MemoryPool()
        >>> pool.enable()
        >>> stats = pool.get_stats(AllocationKind.DEVICE)
        >>> print(f"Used: {stats.used_mb:.2f} MB")
    """

    _instance: MemoryPool | None = None

    def __new__(cls) -> MemoryPool:
        """Singleton pattern for memory pool."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self) -> None:
        """Initialize the memory pool."""
        if getattr(self, "_initialized", False):
            return

        self._lock = threading.Lock()
        self._stats: dict[AllocationKind, PoolStatistics] = {}
        self._cuda_available = False
        self._pool = None
        self._pinned_pool = None
        self._enabled = False

        try:
            import cupy as cp

            self._cuda_available = cp.cuda.runtime.getDeviceCount() > 0
            if self._cuda_available:
                self._pool = cp.cuda.MemoryPool()
                self._pinned_pool = cp.cuda.PinnedMemoryPool()
        except ImportError:
            pass
        except Exception as e:
            logger.warning(f"CuPy memory pools unavailable: {e}")

        self._initialized = True

    def record_allocation(self, kind: AllocationKind, nbytes: int) -> None:
        """Record a successful allocation."""
        with self._lock:
            stats = self._stats.setdefault(kind, PoolStatistics())
            stats.allocations += 1
            stats.bytes_in_use += nbytes
            stats.peak_bytes = max(stats.peak_bytes, stats.bytes_in_use)

    def record_release(self, kind: AllocationKind, nbytes: int) -> None:
        """Record a release."""
        with self._lock:
            stats = self._stats.setdefault(kind, PoolStatistics())
            stats.releases += 1
            stats.bytes_in_use -= nbytes

    def get_stats(self, kind: AllocationKind) -> PoolStatistics:
        """
        Get statistics for one allocation kind.

        Returns:
            A snapshot of the counters.
        """
        with self._lock:
            stats = self._stats.get(kind, PoolStatistics())
            return PoolStatistics(
                allocations=stats.allocations,
                releases=stats.releases,
                bytes_in_use=stats.bytes_in_use,
                peak_bytes=stats.peak_bytes,
            )

    @property
    def bytes_in_use(self) -> int:
        """Get bytes held across all allocation kinds."""
        with self._lock:
            return sum(stats.bytes_in_use for stats in self._stats.values())

    def reset_stats(self) -> None:
        """Clear all counters."""
        with self._lock:
            self._stats.clear()

    def enable(self) -> None:
        """Enable the CuPy pools as the default allocators."""
        if not self._cuda_available or self._pool is None:
            self._enabled = True
            return

        import cupy as cp

        cp.cuda.set_allocator(self._pool.malloc)
        if self._pinned_pool is not None:
            cp.cuda.set_pinned_memory_allocator(self._pinned_pool.malloc)
        self._enabled = True
        logger.info("CuPy device and pinned memory pools enabled")

    def disable(self) -> None:
        """Disable the CuPy pools and use the default allocators."""
        if not self._cuda_available:
            self._enabled = False
            return

        import cupy as cp

        cp.cuda.set_allocator(None)
        cp.cuda.set_pinned_memory_allocator(None)
        self._enabled = False

    @property
    def enabled(self) -> bool:
        """Check if the memory pool is enabled."""
        return self._enabled

    def free_all_blocks(self) -> None:
        """Free all unused blocks in the CuPy pools."""
        if self._pool is not None:
            self._pool.free_all_blocks()
        if self._pinned_pool is not None:
            self._pinned_pool.free_all_blocks()

    def set_limit(self, size_mb: int | None) -> None:
        """
        Set the device memory limit for the pool.

        Args:
            size_mb: Maximum pool size in MB (None for unlimited).
        """
        if self._pool is None:
            return

        if size_mb is None:
            self._pool.set_limit(size=0)
        else:
            self._pool.set_limit(size=size_mb * 1024 * 1024)

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"MemoryPool(enabled={self._enabled}, "
            f"in_use={self.bytes_in_use}B, "
            f"cuda={self._cuda_available})"
        )


# Convenience functions
def get_memory_pool() -> MemoryPool:
    """Get the global memory pool instance."""
    return MemoryPool()


def configure_memory_pool(
    max_size_mb: int | None = None,
    enable: bool = True,
) -> MemoryPool:
    """
    Configure and optionally enable the global memory pool.

    Args:
        max_size_mb: Maximum device pool size in MB.
        enable: Whether to enable the pool immediately.

    Returns:
        Configured MemoryPool instance.
    """
    pool = MemoryPool()
    pool.set_limit(max_size_mb)
    if enable:
        pool.enable()
    return pool
