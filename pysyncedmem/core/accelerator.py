"""
Accelerator abstraction and process-wide configuration.

Provides device discovery, the execution mode, the device runtime used by
synchronized buffers and the host allocation policy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING

from pysyncedmem.exceptions import InvalidConfigurationError

if TYPE_CHECKING:
    from pysyncedmem.backends.base import Backend

logger = logging.getLogger(__name__)


class DeviceType(Enum):
    """Type of compute device."""

    CPU = auto()
    CUDA = auto()


class Mode(Enum):
    """
    Execution mode.

    In GPU mode host memory is allocated page-locked when the backend
    supports it, so transfers to the device can skip staging.
    """

    CPU = auto()
    GPU = auto()


@dataclass(frozen=True)
class DeviceProperties:
    """Properties of a compute device."""

    device_id: int
    device_type: DeviceType
    name: str
    compute_capability: tuple[int, int] | None  # (major, minor) for CUDA
    total_memory: int  # bytes
    is_available: bool

    @property
    def compute_capability_str(self) -> str:
        """Get compute capability as string (e.g., '8.9')."""
        if self.compute_capability is None:
            return "N/A"
        return f"{self.compute_capability[0]}.{self.compute_capability[1]}"

    @property
    def total_memory_gb(self) -> float:
        """Get total memory in GB."""
        return self.total_memory / (1024**3)


class Accelerator:
    """
    Process-wide accelerator state.

    Holds the execution mode, the selected device runtime and the host
    allocation policy. A CUDA backend is selected automatically when CuPy
    finds a device; otherwise no backend is configured and device views
    fail until one is installed with :meth:`use_backend`.
    """

    _instance: Accelerator | None = None
    _initialized: bool = False

    def __new__(cls) -> Accelerator:
        """Singleton pattern for accelerator."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        """Initialize the accelerator."""
        if Accelerator._initialized:
            return

        self._devices: list[DeviceProperties] = []
        self._cuda_available: bool = False
        self._backend: Backend | None = None
        self._mode = Mode.CPU
        self._aligned_host_alloc = True
        self._alignment = 64
        self._discover_devices()
        Accelerator._initialized = True

    def _discover_devices(self) -> None:
        """Discover available compute devices."""
        try:
            import cupy as cp

            num_devices = cp.cuda.runtime.getDeviceCount()
            self._cuda_available = num_devices > 0

            for i in range(num_devices):
                props = cp.cuda.runtime.getDeviceProperties(i)
                self._devices.append(
                    DeviceProperties(
                        device_id=i,
                        device_type=DeviceType.CUDA,
                        name=props["name"].decode()
                        if isinstance(props["name"], bytes)
                        else props["name"],
                        compute_capability=(props["major"], props["minor"]),
                        total_memory=props["totalGlobalMem"],
                        is_available=True,
                    )
                )

        except ImportError:
            # CuPy not available, use CPU only
            pass
        except Exception as e:
            # CUDA error, fall back to CPU
            logger.warning(f"CUDA device discovery failed: {e}")
            self._cuda_available = False
            self._devices.clear()

        if self._cuda_available:
            from pysyncedmem.backends.cuda import CUDABackend

            self._backend = CUDABackend()

        if not self._devices:
            self._devices.append(
                DeviceProperties(
                    device_id=0,
                    device_type=DeviceType.CPU,
                    name="CPU",
                    compute_capability=None,
                    total_memory=0,
                    is_available=True,
                )
            )

    @property
    def cuda_available(self) -> bool:
        """Check if CUDA is available."""
        return self._cuda_available

    @property
    def mode(self) -> Mode:
        """Get the execution mode."""
        return self._mode

    def set_mode(self, mode: Mode) -> None:
        """Set the execution mode."""
        if not isinstance(mode, Mode):
            raise InvalidConfigurationError("mode", mode, "expected a Mode member")
        if mode is Mode.GPU and self._backend is None:
            raise InvalidConfigurationError("mode", mode, "no device backend configured")
        if mode != self._mode:
            logger.info(f"Execution mode set to {mode.name}")
        self._mode = mode

    @property
    def backend(self) -> Backend | None:
        """Get the device runtime, or None when device memory is unsupported."""
        return self._backend

    def use_backend(self, backend: Backend | None) -> None:
        """
        Install the device runtime used by newly materialized device copies.

        Buffers that already hold device memory keep the backend that
        allocated it.

        Args:
            backend: Device runtime, or None to disable device memory.
        """
        if backend is not None and not backend.is_available:
            raise InvalidConfigurationError(
                "backend", backend, "backend reports it is not available"
            )
        self._backend = backend
        logger.info(f"Device backend set to {backend!r}")
        if backend is None and self._mode is Mode.GPU:
            logger.warning("Device backend removed, falling back to CPU mode")
            self._mode = Mode.CPU

    @property
    def device_available(self) -> bool:
        """Whether device views can be served."""
        return self._backend is not None

    @property
    def use_pinned_host_memory(self) -> bool:
        """Whether host allocations should currently be page-locked."""
        return (
            self._mode == Mode.GPU
            and self._backend is not None
            and self._backend.supports_pinned
        )

    @property
    def aligned_host_alloc(self) -> bool:
        """Whether pageable host allocations are aligned."""
        return self._aligned_host_alloc

    @property
    def alignment(self) -> int:
        """Byte alignment of aligned host allocations."""
        return self._alignment

    def set_host_alloc_policy(
        self,
        *,
        aligned: bool | None = None,
        alignment: int | None = None,
    ) -> None:
        """
        Configure pageable host allocations.

        Args:
            aligned: Whether to align pageable host allocations.
            alignment: Alignment in bytes; must be a power of two.
        """
        if alignment is not None:
            if alignment <= 0 or alignment & (alignment - 1):
                raise InvalidConfigurationError(
                    "alignment", alignment, "must be a positive power of two"
                )
            self._alignment = alignment
        if aligned is not None:
            self._aligned_host_alloc = aligned

    @property
    def device_count(self) -> int:
        """Get the number of devices served by the backend."""
        if self._backend is None:
            return 0
        return self._backend.device_count

    @property
    def devices(self) -> list[DeviceProperties]:
        """Get all discovered devices."""
        return self._devices.copy()

    def get_device(self, device_id: int) -> DeviceProperties:
        """Get properties for a specific device."""
        if device_id < 0 or device_id >= len(self._devices):
            raise ValueError(
                f"Invalid device_id: {device_id}. Valid range: 0-{len(self._devices) - 1}"
            )
        return self._devices[device_id]

    @property
    def current_device(self) -> int:
        """Get the current device ordinal, or -1 without a backend."""
        if self._backend is None:
            return -1
        return self._backend.get_device()

    def set_device(self, device_id: int) -> None:
        """Set the current device."""
        if self._backend is None:
            raise InvalidConfigurationError("device_id", device_id, "no device backend configured")
        if device_id < 0 or device_id >= self._backend.device_count:
            raise ValueError(
                f"Invalid device_id: {device_id}. "
                f"Valid range: 0-{self._backend.device_count - 1}"
            )
        self._backend.set_device(device_id)

    def synchronize(self) -> None:
        """Synchronize the current device."""
        if self._backend is not None:
            self._backend.synchronize()

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"Accelerator(mode={self._mode.name}, "
            f"cuda_available={self._cuda_available}, "
            f"backend={self._backend!r})"
        )


# Convenience functions
def get_accelerator() -> Accelerator:
    """Get the global accelerator instance."""
    return Accelerator()


def cuda_available() -> bool:
    """Check if CUDA is available."""
    return get_accelerator().cuda_available


def configure(
    *,
    mode: Mode | None = None,
    backend: Backend | None = None,
    aligned_host_alloc: bool | None = None,
    alignment: int | None = None,
) -> Accelerator:
    """
    Configure the global accelerator.

    Args:
        mode: Execution mode.
        backend: Device runtime to install.
        aligned_host_alloc: Whether pageable host allocations are aligned.
        alignment: Alignment of pageable host allocations in bytes.

    Returns:
        Configured Accelerator instance.
    """
    accelerator = get_accelerator()
    if backend is not None:
        accelerator.use_backend(backend)
    if mode is not None:
        accelerator.set_mode(mode)
    accelerator.set_host_alloc_policy(aligned=aligned_host_alloc, alignment=alignment)
    return accelerator
