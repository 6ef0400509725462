"""
CUDA backend for PySyncedMem.

Provides CUDA device memory, pinned host memory and transfers using CuPy.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import numpy as np

from pysyncedmem.backends.base import Backend, BackendType
from pysyncedmem.exceptions import BackendNotAvailableError, CUDAError

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


def _check_cuda_available() -> bool:
    """Check if CUDA is available."""
    try:
        import cupy as cp

        return cp.cuda.runtime.getDeviceCount() > 0
    except ImportError:
        return False
    except Exception:
        return False


class CUDABackend(Backend):
    """
    CUDA backend implementation using CuPy.

    Device arrays are flat ``cupy.ndarray`` objects of dtype ``uint8``.
    Pinned host arrays are NumPy views over CuPy pinned memory, so the
    allocation stays alive as long as the array does.

    Example:
        >>> backend = CUDABackend()
        >>> if backend.is_available:
        ...     arr = backend.allocate(1024)
    """

    def __init__(self, device_id: int | None = None) -> None:
        """
        Initialize the CUDA backend.

        Args:
            device_id: CUDA device to make current, or None to keep the
                current one.

        Raises:
            BackendNotAvailableError: If CUDA is not available.
        """
        self._cuda_available = _check_cuda_available()
        self._cp: Any = None

        if not self._cuda_available:
            raise BackendNotAvailableError("CUDA", "no CUDA device found or CuPy not installed")

        import cupy as cp

        self._cp = cp
        if device_id is not None:
            cp.cuda.Device(device_id).use()
        logger.info(f"CUDA backend initialized with {self.device_count} device(s)")

    @property
    def backend_type(self) -> BackendType:
        """Get the backend type."""
        return BackendType.CUDA

    @property
    def is_available(self) -> bool:
        """Check if this backend is available."""
        return self._cuda_available

    @property
    def device_count(self) -> int:
        """Get the number of available CUDA devices."""
        try:
            return self._cp.cuda.runtime.getDeviceCount()
        except Exception:
            return 0

    @property
    def supports_pinned(self) -> bool:
        """CUDA can always allocate page-locked host memory."""
        return True

    def get_device(self) -> int:
        """Get the current CUDA device."""
        return self._cp.cuda.runtime.getDevice()

    def set_device(self, device_id: int) -> None:
        """
        Set the current CUDA device.

        Args:
            device_id: Device ID to use.
        """
        self._cp.cuda.Device(device_id).use()

    def allocate(self, nbytes: int) -> Any:  # Returns cp.ndarray
        """
        Allocate raw bytes on the current GPU.

        Raises:
            CUDAError: If allocation fails.
        """
        try:
            return self._cp.empty(nbytes, dtype=self._cp.uint8)
        except Exception as e:
            raise CUDAError(f"Failed to allocate GPU memory: {e}") from e

    def free(self, array: Any) -> None:
        """
        Free a CuPy array.

        CuPy returns the memory to its pool once the last reference is
        dropped; the caller drops its reference after this call.
        """
        del array

    def allocate_pinned(self, nbytes: int) -> NDArray[np.uint8]:
        """
        Allocate page-locked host memory.

        Raises:
            CUDAError: If allocation fails.
        """
        if nbytes == 0:
            return np.empty(0, dtype=np.uint8)
        try:
            memory = self._cp.cuda.alloc_pinned_memory(nbytes)
        except Exception as e:
            raise CUDAError(f"Failed to allocate pinned memory: {e}") from e
        return np.frombuffer(memory, dtype=np.uint8, count=nbytes)

    def free_pinned(self, array: NDArray[np.uint8]) -> None:
        """Release pinned memory back to CuPy's pinned pool."""
        del array

    def memset(self, array: Any, value: int) -> None:
        """Fill device memory with a byte value."""
        array.fill(value)

    def copy_to_device(self, host_array: NDArray[np.uint8], device_array: Any) -> None:
        """Copy host bytes into a CuPy array, blocking."""
        device_array.set(host_array)

    def copy_to_host(self, device_array: Any, host_array: NDArray[np.uint8]) -> None:
        """Copy CuPy bytes into a host array, blocking."""
        device_array.get(out=host_array)

    def copy_to_device_async(
        self,
        host_array: NDArray[np.uint8],
        device_array: Any,
        stream: Any,
    ) -> None:
        """
        Enqueue a host to device copy on a CUDA stream.

        The copy only overlaps with the caller when ``host_array`` is
        pinned; otherwise CUDA stages it synchronously.
        """
        device_array.set(host_array, stream=stream)

    def device_of(self, device_array: Any) -> int:
        """Get the CUDA device that holds an array."""
        return device_array.device.id

    def create_stream(self) -> Any:
        """
        Create a CUDA stream.

        Returns:
            CuPy CUDA stream.
        """
        return self._cp.cuda.Stream(non_blocking=True)

    def synchronize(self) -> None:
        """Synchronize the current CUDA device."""
        self._cp.cuda.Device().synchronize()

    def get_memory_info(self) -> dict[str, int]:
        """
        Get GPU memory information.

        Returns:
            Dictionary with free and total memory in bytes.
        """
        mem_info = self._cp.cuda.runtime.memGetInfo()
        return {
            "free": mem_info[0],
            "total": mem_info[1],
            "used": mem_info[1] - mem_info[0],
        }

    def __repr__(self) -> str:
        """String representation."""
        mem = self.get_memory_info()
        return (
            f"CUDABackend(device={self.get_device()}, "
            f"devices={self.device_count}, "
            f"memory_free={mem['free'] // 1024**2}MB)"
        )
