"""
Synchronized memory with lazy host/device/private propagation.

A :class:`SyncedMemory` tracks one logical byte buffer that may exist in
host memory, device memory and a vendor private layout at the same time.
It records which copies are current and copies on demand when a view is
requested in a location that is stale.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Union

import numpy as np

from pysyncedmem.core.accelerator import Accelerator, get_accelerator
from pysyncedmem.core.allocator import (
    Allocation,
    AllocationKind,
    DeviceAllocator,
    HostAllocator,
)
from pysyncedmem.exceptions import (
    BackendNotAvailableError,
    BufferSyncError,
    ContractViolationError,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from numpy.typing import NDArray

    from pysyncedmem.backends.base import Backend
    from pysyncedmem.core.private import PrivateDescriptor

logger = logging.getLogger(__name__)


class Authority(Enum):
    """Which physical copies of a buffer are current."""

    UNINITIALIZED = auto()
    HOST_AUTHORITATIVE = auto()
    DEVICE_AUTHORITATIVE = auto()
    BOTH_SYNCED = auto()
    PRIVATE_AUTHORITATIVE = auto()
    PRIVATE_AND_HOST_SYNCED = auto()


# States whose device copy must be refreshed through the host copy.
_HOST_STAGED = (
    Authority.HOST_AUTHORITATIVE,
    Authority.PRIVATE_AUTHORITATIVE,
    Authority.PRIVATE_AND_HOST_SYNCED,
)
_PRIVATE_CURRENT = (Authority.PRIVATE_AUTHORITATIVE, Authority.PRIVATE_AND_HOST_SYNCED)


@dataclass(frozen=True)
class Owned:
    """Slot contents allocated by the buffer, released with it."""

    allocation: Allocation

    @property
    def data(self) -> Any:
        return self.allocation.data


@dataclass(frozen=True)
class Borrowed:
    """Slot contents supplied by the caller, never released by the buffer."""

    data: Any


Slot = Union[Owned, Borrowed]


def _violation(message: str) -> ContractViolationError:
    logger.critical(message)
    return ContractViolationError(message)


def _slot_data(slot: Slot | None, location: str) -> Any:
    """Get the contents of a slot that must have been materialized."""
    if slot is None:
        raise _violation(f"No {location} copy where one is required")
    return slot.data


def _readonly(data: Any) -> Any:
    """Return a read-only view where the array type supports one."""
    if isinstance(data, np.ndarray):
        view = data.view()
        view.flags.writeable = False
        return view
    return data


def _as_bytes(data: Any, nbytes: int, location: str) -> Any:
    """Reinterpret the first ``nbytes`` of a contiguous array as flat bytes."""
    if data is None:
        raise _violation(f"Cannot install a null {location} pointer")
    if not data.flags.c_contiguous:
        raise _violation(f"{location} data must be C-contiguous")
    if data.nbytes < nbytes:
        raise _violation(f"{location} data holds {data.nbytes} bytes, buffer needs {nbytes}")
    return data.reshape(-1).view(np.uint8)[:nbytes]


class SyncedMemory:
    """
    One logical buffer with up to three physical copies.

    Host and device copies materialize on first access. Const views never
    change which copies are current beyond what the copy itself made
    current; mutable views make the requested location the only
    authoritative one. Stale copies keep their storage so later requests
    only pay for the transfer.

    All state transitions on one buffer are serialized by an internal lock.

    Example:
        >>> mem = SyncedMemory(16)
        >>> mem.mutable_host_view()[:] = 7
        >>> dev = mem.device_view()  # copies host to device
        >>> mem.authority
        <Authority.BOTH_SYNCED: 4>
    """

    def __init__(
        self,
        size: int = 0,
        *,
        accelerator: Accelerator | None = None,
        host_allocator: HostAllocator | None = None,
        device_allocator: DeviceAllocator | None = None,
    ) -> None:
        """
        Initialize a synchronized buffer.

        Args:
            size: Buffer length in bytes, fixed for the buffer's lifetime.
            accelerator: Accelerator supplying mode and device backend.
            host_allocator: Allocator for host copies.
            device_allocator: Allocator for device copies.
        """
        if size < 0:
            raise ValueError(f"size must be non-negative, got {size}")

        self._size = int(size)
        self._accelerator = accelerator or get_accelerator()
        self._host_allocator = host_allocator or HostAllocator(self._accelerator)
        self._device_allocator = device_allocator or DeviceAllocator()

        self._host: Slot | None = None
        self._device: Slot | None = None
        self._private: Slot | None = None
        self._backend: Backend | None = None
        self._device_ordinal = -1
        self._private_descriptor: PrivateDescriptor | None = None
        self._authority = Authority.UNINITIALIZED
        self._lock = threading.Lock()

    @property
    def size(self) -> int:
        """Get the buffer length in bytes."""
        return self._size

    @property
    def authority(self) -> Authority:
        """Get which copies are current."""
        return self._authority

    @property
    def device_ordinal(self) -> int:
        """Get the device that holds the device copy, or -1."""
        return self._device_ordinal

    @property
    def backend(self) -> Backend | None:
        """Get the backend that serves this buffer's device copy."""
        return self._backend

    @property
    def owns_host(self) -> bool:
        return isinstance(self._host, Owned)

    @property
    def owns_device(self) -> bool:
        return isinstance(self._device, Owned)

    @property
    def owns_private(self) -> bool:
        return isinstance(self._private, Owned)

    @property
    def host_allocated_pinned(self) -> bool:
        """Whether the owned host copy is page-locked."""
        return isinstance(self._host, Owned) and self._host.allocation.used_fast_path

    @property
    def private_descriptor(self) -> PrivateDescriptor | None:
        """Get the descriptor that decodes the private copy."""
        return self._private_descriptor

    @private_descriptor.setter
    def private_descriptor(self, descriptor: PrivateDescriptor | None) -> None:
        with self._lock:
            if descriptor is None and self._authority in _PRIVATE_CURRENT:
                raise _violation("Cannot clear the descriptor of a buffer holding private data")
            self._private_descriptor = descriptor

    # Views

    def host_view(self) -> NDArray[np.uint8]:
        """
        Get a read-only view of the current host copy.

        Copies from the device or decodes the private copy when the host
        copy is stale.
        """
        with self._lock:
            self._to_host()
            return _readonly(_slot_data(self._host, "host"))

    def mutable_host_view(self) -> NDArray[np.uint8]:
        """Get a writable host view; the host copy becomes the only current one."""
        with self._lock:
            self._to_host()
            data = _slot_data(self._host, "host")
            self._set_authority(Authority.HOST_AUTHORITATIVE)
            return data

    def device_view(self) -> Any:
        """
        Get a view of the current device copy.

        Raises:
            BackendNotAvailableError: If no device backend is configured.
        """
        with self._lock:
            self._to_device()
            return _readonly(_slot_data(self._device, "device"))

    def mutable_device_view(self) -> Any:
        """Get a writable device view; the device copy becomes the only current one."""
        with self._lock:
            self._to_device()
            data = _slot_data(self._device, "device")
            self._set_authority(Authority.DEVICE_AUTHORITATIVE)
            return data

    def private_view(self) -> Any | None:
        """Get the private copy if it is current, else None."""
        with self._lock:
            if self._authority not in _PRIVATE_CURRENT:
                return None
            return _slot_data(self._private, "private")

    def mutable_private_view(self) -> Any:
        """
        Get the private copy for writing; it becomes the only current one.

        Raises:
            ContractViolationError: If the private copy is not current.
        """
        with self._lock:
            if self._authority not in _PRIVATE_CURRENT:
                raise _violation(
                    f"No current private copy to write (authority is {self._authority.name})"
                )
            data = _slot_data(self._private, "private")
            self._set_authority(Authority.PRIVATE_AUTHORITATIVE)
            return data

    # External data

    def set_host_pointer(self, data: NDArray[Any]) -> None:
        """
        Install caller-owned host memory; it becomes the only current copy.

        The buffer never releases borrowed memory. A previously owned host
        copy is released first.
        """
        if data is not None and not isinstance(data, np.ndarray):
            raise _violation(f"Host data must be a NumPy array, got {type(data).__name__}")
        if data is not None and not data.flags.writeable:
            raise _violation("Host data must be writable")
        flat = _as_bytes(data, self._size, "host")
        with self._lock:
            self._release(self._host)
            self._host = Borrowed(flat)
            self._set_authority(Authority.HOST_AUTHORITATIVE)

    def set_device_pointer(self, data: Any) -> None:
        """
        Install caller-owned device memory; it becomes the only current copy.

        The device ordinal is taken from the array.
        """
        with self._lock:
            backend = self._require_backend()
            flat = _as_bytes(data, self._size, "device")
            self._release(self._device)
            self._device = Borrowed(flat)
            self._device_ordinal = backend.device_of(data)
            self._set_authority(Authority.DEVICE_AUTHORITATIVE)

    def set_private_pointer(
        self,
        data: Any,
        same_data: bool,
        descriptor: PrivateDescriptor | None = None,
    ) -> None:
        """
        Install caller-owned private data.

        Args:
            data: Private data.
            same_data: The caller asserts the host copy already matches.
            descriptor: Descriptor decoding ``data``; may be omitted when
                one is already installed.
        """
        if data is None:
            raise _violation("Cannot install a null private pointer")
        with self._lock:
            if descriptor is not None:
                self._private_descriptor = descriptor
            if self._private_descriptor is None:
                raise _violation("Private data installed without a descriptor")
            self._release(self._private)
            self._private = Borrowed(data)
            self._set_authority(
                Authority.PRIVATE_AND_HOST_SYNCED if same_data else Authority.PRIVATE_AUTHORITATIVE
            )

    # Transfers

    def async_device_push(self, stream: Any) -> None:
        """
        Enqueue a host to device copy on ``stream`` and return immediately.

        Meant for prefetching ahead of a kernel launched on the same stream;
        the stream orders completion. The host copy must be authoritative.

        Raises:
            ContractViolationError: If the host copy is not authoritative.
        """
        with self._lock:
            if self._authority is not Authority.HOST_AUTHORITATIVE:
                raise _violation(
                    f"async_device_push requires HOST_AUTHORITATIVE, "
                    f"buffer is {self._authority.name}"
                )
            backend = self._require_backend()
            if self._device is None:
                self._allocate_device(backend)
            host = _slot_data(self._host, "host")
            device = _slot_data(self._device, "device")
            with backend.device_scope(self._device_ordinal):
                self._transfer(
                    "host->device (async)",
                    lambda: backend.copy_to_device_async(host, device, stream),
                )
            self._set_authority(Authority.DEVICE_AUTHORITATIVE)

    async def ensure_on_host(self) -> NDArray[np.uint8]:
        """Async variant of :meth:`host_view`, run in a worker thread."""
        return await asyncio.to_thread(self.host_view)

    async def ensure_on_device(self) -> Any:
        """Async variant of :meth:`device_view`, run in a worker thread."""
        return await asyncio.to_thread(self.device_view)

    # Lifecycle

    def free(self) -> None:
        """Release owned copies and return to UNINITIALIZED."""
        with self._lock:
            for slot in (self._host, self._device, self._private):
                self._release(slot)
            self._host = self._device = self._private = None
            self._backend = None
            self._device_ordinal = -1
            self._private_descriptor = None
            self._authority = Authority.UNINITIALIZED

    def check_invariants(self) -> None:
        """
        Verify the authority state against the slots.

        Raises:
            ContractViolationError: If any invariant is broken.
        """
        state = self._authority
        problems = []
        if (state is Authority.UNINITIALIZED) != (
            self._host is None and self._device is None and self._private is None
        ):
            problems.append("UNINITIALIZED must hold exactly when no copy exists")
        if state in (Authority.HOST_AUTHORITATIVE, Authority.BOTH_SYNCED) and self._host is None:
            problems.append(f"{state.name} without a host copy")
        if (
            state in (Authority.DEVICE_AUTHORITATIVE, Authority.BOTH_SYNCED)
            and self._device is None
        ):
            problems.append(f"{state.name} without a device copy")
        if state in _PRIVATE_CURRENT and (
            self._private is None or self._private_descriptor is None
        ):
            problems.append(f"{state.name} without private data and descriptor")
        for name, slot in (("host", self._host), ("device", self._device)):
            if slot is not None and slot.data.nbytes != self._size:
                problems.append(f"{name} copy holds {slot.data.nbytes} bytes, expected {self._size}")
        if problems:
            raise ContractViolationError("; ".join(problems))

    def __enter__(self) -> SyncedMemory:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.free()

    def __del__(self) -> None:
        """Release owned copies."""
        with contextlib.suppress(Exception):
            self.free()

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"SyncedMemory(size={self._size}, authority={self._authority.name}, "
            f"host={type(self._host).__name__ if self._host else None}, "
            f"device={type(self._device).__name__ if self._device else None}, "
            f"private={type(self._private).__name__ if self._private else None})"
        )

    # Internals, called with the lock held

    def _set_authority(self, authority: Authority) -> None:
        if authority is not self._authority:
            logger.debug(f"SyncedMemory {id(self):#x}: {self._authority.name} -> {authority.name}")
        self._authority = authority

    def _require_backend(self) -> Backend:
        if self._backend is None:
            backend = self._accelerator.backend
            if backend is None:
                logger.critical("Device memory requested but no device backend is configured")
                raise BackendNotAvailableError("device", "no device backend configured")
            self._backend = backend
        return self._backend

    def _allocate_device(self, backend: Backend) -> None:
        allocation = self._device_allocator.allocate(self._size, backend)
        self._device = Owned(allocation)
        self._device_ordinal = allocation.device

    def _ensure_host_slot(self) -> None:
        if self._host is None:
            self._host = Owned(self._host_allocator.allocate(self._size))

    def _release(self, slot: Slot | None) -> None:
        if not isinstance(slot, Owned):
            return
        if slot.allocation.kind is AllocationKind.DEVICE:
            self._device_allocator.release(slot.allocation)
        else:
            self._host_allocator.release(slot.allocation)

    def _transfer(self, direction: str, copy: Callable[[], None]) -> None:
        try:
            copy()
        except Exception as e:
            raise BufferSyncError(direction, e) from e
        logger.debug(f"SyncedMemory {id(self):#x}: copied {self._size} bytes {direction}")

    def _convert_private(self) -> None:
        descriptor = self._private_descriptor
        if descriptor is None or self._private is None:
            raise _violation("Private copy requested without private data and descriptor")
        private, host = self._private.data, _slot_data(self._host, "host")
        self._transfer("private->host", lambda: descriptor.convert_to_host(private, host))

    def _to_host(self) -> None:
        state = self._authority
        if state is Authority.UNINITIALIZED:
            self._ensure_host_slot()
            self._set_authority(Authority.HOST_AUTHORITATIVE)
        elif state is Authority.DEVICE_AUTHORITATIVE:
            self._ensure_host_slot()
            backend = self._require_backend()
            device = _slot_data(self._device, "device")
            host = _slot_data(self._host, "host")
            with backend.device_scope(self._device_ordinal):
                self._transfer("device->host", lambda: backend.copy_to_host(device, host))
            self._set_authority(Authority.BOTH_SYNCED)
        elif state is Authority.PRIVATE_AUTHORITATIVE or (
            state is Authority.PRIVATE_AND_HOST_SYNCED and self._host is None
        ):
            self._ensure_host_slot()
            self._convert_private()
            self._set_authority(Authority.PRIVATE_AND_HOST_SYNCED)

    def _to_device(self) -> None:
        backend = self._require_backend()
        state = self._authority
        if state is Authority.UNINITIALIZED:
            self._allocate_device(backend)
            self._set_authority(Authority.DEVICE_AUTHORITATIVE)
        elif state in _HOST_STAGED:
            self._to_host()
            if self._device is None:
                self._allocate_device(backend)
            host = _slot_data(self._host, "host")
            device = _slot_data(self._device, "device")
            with backend.device_scope(self._device_ordinal):
                self._transfer("host->device", lambda: backend.copy_to_device(host, device))
            self._set_authority(Authority.BOTH_SYNCED)
