"""
Backend base classes and interfaces.

Defines the device runtime interface that synchronized buffers consume:
raw byte allocation, host/device transfers, streams and device selection.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum, auto
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray


class BackendType(Enum):
    """Type of device runtime."""

    CPU = auto()
    CUDA = auto()


class Backend(ABC):
    """
    Abstract base class for device runtimes.

    All backends must implement this interface to provide a consistent
    API for device memory management. Device arrays are flat ``uint8``
    arrays of the requested number of bytes; host arrays are NumPy arrays.
    """

    @property
    @abstractmethod
    def backend_type(self) -> BackendType:
        """Get the backend type."""
        ...

    @property
    @abstractmethod
    def is_available(self) -> bool:
        """Check if this backend is available."""
        ...

    @property
    @abstractmethod
    def device_count(self) -> int:
        """Get the number of available devices."""
        ...

    @property
    def supports_pinned(self) -> bool:
        """Whether this backend can allocate page-locked host memory."""
        return False

    @abstractmethod
    def get_device(self) -> int:
        """Get the ordinal of the current device."""
        ...

    @abstractmethod
    def set_device(self, device_id: int) -> None:
        """
        Make a device current for this process.

        Args:
            device_id: Device ordinal.
        """
        ...

    @contextmanager
    def device_scope(self, device_id: int) -> Iterator[int]:
        """
        Run a block with ``device_id`` as the current device.

        The previously current device is restored on exit. A negative
        ordinal leaves the current device untouched.

        Args:
            device_id: Device ordinal.

        Yields:
            The ordinal that is current inside the block.
        """
        previous = self.get_device()
        if device_id < 0 or device_id == previous:
            yield previous
            return

        self.set_device(device_id)
        try:
            yield device_id
        finally:
            self.set_device(previous)

    @abstractmethod
    def allocate(self, nbytes: int) -> Any:
        """
        Allocate raw device memory on the current device.

        Args:
            nbytes: Number of bytes.

        Returns:
            Flat ``uint8`` device array.
        """
        ...

    @abstractmethod
    def free(self, array: Any) -> None:
        """
        Free device memory allocated by this backend.

        Args:
            array: Device array to free.
        """
        ...

    def allocate_pinned(self, nbytes: int) -> NDArray[np.uint8]:
        """
        Allocate page-locked host memory.

        Args:
            nbytes: Number of bytes.

        Returns:
            Flat ``uint8`` NumPy array backed by pinned memory.
        """
        raise NotImplementedError(f"{type(self).__name__} does not support pinned memory")

    def free_pinned(self, array: NDArray[np.uint8]) -> None:
        """
        Free page-locked host memory allocated by this backend.

        Args:
            array: Pinned array to free.
        """
        raise NotImplementedError(f"{type(self).__name__} does not support pinned memory")

    @abstractmethod
    def memset(self, array: Any, value: int) -> None:
        """
        Fill device memory with a byte value.

        Args:
            array: Device array.
            value: Byte value.
        """
        ...

    @abstractmethod
    def copy_to_device(self, host_array: NDArray[np.uint8], device_array: Any) -> None:
        """
        Copy host bytes into an existing device array, blocking.

        Args:
            host_array: Source host array.
            device_array: Destination device array of the same size.
        """
        ...

    @abstractmethod
    def copy_to_host(self, device_array: Any, host_array: NDArray[np.uint8]) -> None:
        """
        Copy device bytes into an existing host array, blocking.

        Args:
            device_array: Source device array.
            host_array: Destination host array of the same size.
        """
        ...

    @abstractmethod
    def copy_to_device_async(
        self,
        host_array: NDArray[np.uint8],
        device_array: Any,
        stream: Any,
    ) -> None:
        """
        Enqueue a host to device copy on a stream without blocking.

        Completion is ordered by the stream.

        Args:
            host_array: Source host array.
            device_array: Destination device array of the same size.
            stream: Stream created by :meth:`create_stream`.
        """
        ...

    @abstractmethod
    def device_of(self, device_array: Any) -> int:
        """
        Get the ordinal of the device that holds an array.

        Args:
            device_array: Device array.
        """
        ...

    @abstractmethod
    def create_stream(self) -> Any:
        """Create an execution stream on the current device."""
        ...

    @abstractmethod
    def synchronize(self) -> None:
        """Synchronize all pending operations."""
        ...
