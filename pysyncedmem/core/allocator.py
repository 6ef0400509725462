"""
Host and device allocators for synchronized buffers.

Every allocation remembers how it was made so that it is always released
through the matching routine.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Any

import numpy as np

from pysyncedmem.core.accelerator import Accelerator, get_accelerator
from pysyncedmem.core.memory_pool import MemoryPool, get_memory_pool
from pysyncedmem.exceptions import AllocationError, BackendError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from pysyncedmem.backends.base import Backend

logger = logging.getLogger(__name__)


class AllocationKind(Enum):
    """How a block of memory was obtained."""

    PLAIN = auto()
    ALIGNED = auto()
    PINNED = auto()
    DEVICE = auto()


@dataclass(frozen=True)
class Allocation:
    """A block of memory owned by a buffer slot."""

    data: Any
    kind: AllocationKind
    nbytes: int
    device: int = -1
    backend: Backend | None = None

    @property
    def used_fast_path(self) -> bool:
        """Whether the host block is page-locked."""
        return self.kind is AllocationKind.PINNED


def _aligned_empty(nbytes: int, alignment: int) -> NDArray[np.uint8]:
    """Allocate ``nbytes`` whose first byte sits on an ``alignment`` boundary."""
    raw = np.empty(nbytes + alignment, dtype=np.uint8)
    offset = (-raw.ctypes.data) % alignment
    return raw[offset : offset + nbytes]


def _fatal(nbytes: int, location: str, cause: Exception) -> AllocationError:
    logger.critical(f"{location} allocation of size {nbytes} failed: {cause}")
    return AllocationError(nbytes, location, cause)


class HostAllocator:
    """
    Allocates host memory for synchronized buffers.

    Uses page-locked memory when the accelerator runs in GPU mode with a
    backend that supports it, otherwise an aligned or plain NumPy
    allocation. New blocks are zero-filled.
    """

    def __init__(
        self,
        accelerator: Accelerator | None = None,
        pool: MemoryPool | None = None,
    ) -> None:
        self._accelerator = accelerator or get_accelerator()
        self._pool = pool or get_memory_pool()

    def allocate(self, nbytes: int) -> Allocation:
        """
        Allocate ``nbytes`` of zeroed host memory.

        Raises:
            AllocationError: If the allocation fails. Fatal.
        """
        accelerator = self._accelerator
        backend = accelerator.backend
        try:
            if nbytes > 0 and accelerator.use_pinned_host_memory and backend is not None:
                data = backend.allocate_pinned(nbytes)
                kind = AllocationKind.PINNED
            elif accelerator.aligned_host_alloc:
                data = _aligned_empty(nbytes, accelerator.alignment)
                kind = AllocationKind.ALIGNED
                backend = None
            else:
                data = np.empty(nbytes, dtype=np.uint8)
                kind = AllocationKind.PLAIN
                backend = None
        except (MemoryError, BackendError) as e:
            raise _fatal(nbytes, "host", e) from e

        data.fill(0)
        self._pool.record_allocation(kind, nbytes)
        logger.debug(f"Allocated {nbytes} host bytes ({kind.name})")
        return Allocation(data=data, kind=kind, nbytes=nbytes, backend=backend)

    def release(self, allocation: Allocation) -> None:
        """Release a block through the routine that allocated it."""
        if allocation.kind is AllocationKind.PINNED:
            if allocation.backend is None:
                raise ValueError("Pinned allocation does not record its backend")
            allocation.backend.free_pinned(allocation.data)
        elif allocation.kind is AllocationKind.DEVICE:
            raise ValueError("HostAllocator cannot release device memory")
        self._pool.record_release(allocation.kind, allocation.nbytes)
        logger.debug(f"Released {allocation.nbytes} host bytes ({allocation.kind.name})")


class DeviceAllocator:
    """Allocates device memory on a backend's current device."""

    def __init__(self, pool: MemoryPool | None = None) -> None:
        self._pool = pool or get_memory_pool()

    def allocate(self, nbytes: int, backend: Backend) -> Allocation:
        """
        Allocate ``nbytes`` of zeroed device memory.

        Raises:
            AllocationError: If the allocation fails. Fatal.
        """
        device = backend.get_device()
        try:
            data = backend.allocate(nbytes)
            backend.memset(data, 0)
        except (MemoryError, BackendError) as e:
            raise _fatal(nbytes, f"device {device}", e) from e

        self._pool.record_allocation(AllocationKind.DEVICE, nbytes)
        logger.debug(f"Allocated {nbytes} bytes on device {device}")
        return Allocation(
            data=data,
            kind=AllocationKind.DEVICE,
            nbytes=nbytes,
            device=device,
            backend=backend,
        )

    def release(self, allocation: Allocation) -> None:
        """Free device memory through the backend that allocated it."""
        if allocation.kind is not AllocationKind.DEVICE or allocation.backend is None:
            raise ValueError(f"Not a device allocation: {allocation.kind.name}")
        with allocation.backend.device_scope(allocation.device):
            allocation.backend.free(allocation.data)
        self._pool.record_release(AllocationKind.DEVICE, allocation.nbytes)
        logger.debug(f"Released {allocation.nbytes} bytes on device {allocation.device}")
