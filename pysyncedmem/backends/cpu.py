"""
CPU backend for PySyncedMem.

Emulates device memory with ordinary host memory so the full host/device
synchronization path can be exercised without a GPU. Useful for testing
and development; it is never selected implicitly.
"""

from __future__ import annotations

import logging
import threading
import weakref
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

from pysyncedmem.backends.base import Backend, BackendType

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


class EmulatedDeviceArray(np.ndarray):
    """NumPy array tagged with the emulated device that holds it."""

    device_id: int

    def __array_finalize__(self, obj: object) -> None:
        self.device_id = getattr(obj, "device_id", 0)


@dataclass
class TransferStatistics:
    """Counters for emulated device traffic."""

    host_to_device: int = 0
    device_to_host: int = 0
    async_host_to_device: int = 0
    bytes_host_to_device: int = 0
    bytes_device_to_host: int = 0
    device_allocations: int = 0
    device_frees: int = 0
    pinned_allocations: int = 0
    pinned_frees: int = 0

    @property
    def total_copies(self) -> int:
        """Get the number of copies in either direction."""
        return self.host_to_device + self.device_to_host + self.async_host_to_device

    def reset(self) -> None:
        """Reset all counters."""
        for name in self.__dataclass_fields__:
            setattr(self, name, 0)


class HostStream:
    """
    Emulated execution stream.

    Work is queued and runs when the stream (or its backend) is
    synchronized, in submission order.
    """

    def __init__(self, device_id: int) -> None:
        self.device_id = device_id
        self._pending: deque[Callable[[], None]] = deque()
        self._lock = threading.Lock()

    @property
    def pending(self) -> int:
        """Get the number of queued operations."""
        return len(self._pending)

    def enqueue(self, operation: Callable[[], None]) -> None:
        """Queue an operation."""
        with self._lock:
            self._pending.append(operation)

    def synchronize(self) -> None:
        """Run every queued operation."""
        with self._lock:
            while self._pending:
                self._pending.popleft()()

    def __repr__(self) -> str:
        """String representation."""
        return f"HostStream(device={self.device_id}, pending={self.pending})"


class CPUBackend(Backend):
    """
    CPU backend implementation.

    Device arrays are :class:`EmulatedDeviceArray` instances living in host
    memory. Synchronous copies behave like the CUDA legacy default stream:
    they first drain all pending stream work. As in CUDA, the current
    device is tracked per host thread and starts at 0.

    Example:
        >>> backend = CPUBackend(device_count=2)
        >>> with backend.device_scope(1):
        ...     arr = backend.allocate(1024)
        >>> backend.device_of(arr)
        1
    """

    def __init__(self, device_count: int = 1, *, emulate_pinned: bool = False) -> None:
        """
        Initialize the CPU backend.

        Args:
            device_count: Number of emulated devices.
            emulate_pinned: Whether to serve pinned host allocations.
        """
        if device_count < 1:
            raise ValueError(f"device_count must be at least 1, got {device_count}")

        self._device_count = device_count
        self._emulate_pinned = emulate_pinned
        self._local = threading.local()
        self._streams: weakref.WeakSet[HostStream] = weakref.WeakSet()
        self.stats = TransferStatistics()

    @property
    def backend_type(self) -> BackendType:
        """Get the backend type."""
        return BackendType.CPU

    @property
    def is_available(self) -> bool:
        """Check if this backend is available."""
        return True  # CPU is always available

    @property
    def device_count(self) -> int:
        """Get the number of emulated devices."""
        return self._device_count

    @property
    def supports_pinned(self) -> bool:
        """Whether pinned allocations are emulated."""
        return self._emulate_pinned

    @property
    def _current_device(self) -> int:
        return getattr(self._local, "device", 0)

    def get_device(self) -> int:
        """Get the current emulated device of the calling thread."""
        return self._current_device

    def set_device(self, device_id: int) -> None:
        """Set the current emulated device of the calling thread."""
        if device_id < 0 or device_id >= self._device_count:
            raise ValueError(
                f"Invalid device_id: {device_id}. Valid range: 0-{self._device_count - 1}"
            )
        self._local.device = device_id

    def allocate(self, nbytes: int) -> EmulatedDeviceArray:
        """Allocate emulated device memory on the current device."""
        array = np.empty(nbytes, dtype=np.uint8).view(EmulatedDeviceArray)
        array.device_id = self._current_device
        self.stats.device_allocations += 1
        return array

    def free(self, array: Any) -> None:
        """Free emulated device memory (NumPy handles the memory)."""
        self.stats.device_frees += 1

    def allocate_pinned(self, nbytes: int) -> NDArray[np.uint8]:
        """Allocate emulated pinned host memory."""
        if not self._emulate_pinned:
            return super().allocate_pinned(nbytes)
        self.stats.pinned_allocations += 1
        return np.empty(nbytes, dtype=np.uint8)

    def free_pinned(self, array: NDArray[np.uint8]) -> None:
        """Free emulated pinned host memory."""
        if not self._emulate_pinned:
            super().free_pinned(array)
        self.stats.pinned_frees += 1

    def memset(self, array: Any, value: int) -> None:
        """Fill emulated device memory with a byte value."""
        self.synchronize()
        array.fill(value)

    def copy_to_device(self, host_array: NDArray[np.uint8], device_array: Any) -> None:
        """Copy host bytes into emulated device memory."""
        self.synchronize()
        np.copyto(device_array, host_array, casting="no")
        self.stats.host_to_device += 1
        self.stats.bytes_host_to_device += host_array.nbytes

    def copy_to_host(self, device_array: Any, host_array: NDArray[np.uint8]) -> None:
        """Copy emulated device bytes into host memory."""
        self.synchronize()
        np.copyto(host_array, np.asarray(device_array), casting="no")
        self.stats.device_to_host += 1
        self.stats.bytes_device_to_host += host_array.nbytes

    def copy_to_device_async(
        self,
        host_array: NDArray[np.uint8],
        device_array: Any,
        stream: Any,
    ) -> None:
        """Queue a host to device copy on an emulated stream."""
        if not isinstance(stream, HostStream):
            raise TypeError(f"Expected HostStream, got {type(stream).__name__}")

        def _copy() -> None:
            np.copyto(device_array, host_array, casting="no")
            self.stats.bytes_host_to_device += host_array.nbytes

        stream.enqueue(_copy)
        self.stats.async_host_to_device += 1

    def device_of(self, device_array: Any) -> int:
        """Get the emulated device that holds an array."""
        return getattr(device_array, "device_id", self._current_device)

    def create_stream(self) -> HostStream:
        """Create an emulated stream on the current device."""
        stream = HostStream(self._current_device)
        self._streams.add(stream)
        return stream

    def synchronize(self) -> None:
        """Drain every pending stream."""
        for stream in list(self._streams):
            stream.synchronize()

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"CPUBackend(devices={self._device_count}, "
            f"current={self._current_device}, pinned={self._emulate_pinned})"
        )
