"""
PySyncedMem exception hierarchy.

This module defines the complete exception hierarchy for PySyncedMem,
providing specific exception types for different error categories:

- BufferError: Memory allocation, synchronization and usage contracts
- BackendError: Device runtime availability and execution
- ValidationError: Configuration validation errors

Allocation failures and contract violations are fatal: they signal either
memory exhaustion or a defect in the calling code, and the buffer that
raised them must not be used again.

All exceptions inherit from PySyncedMemError for easy catching.
"""

from __future__ import annotations


class PySyncedMemError(Exception):
    """Base exception for all PySyncedMem errors."""

    pass


class BufferError(PySyncedMemError):
    """Base exception for buffer-related errors."""

    pass


class AllocationError(BufferError):
    """Raised when a host or device allocation fails. Fatal."""

    def __init__(self, nbytes: int, location: str, cause: Exception | None = None) -> None:
        self.nbytes = nbytes
        self.location = location
        self.cause = cause
        msg = f"{location} allocation of size {nbytes} failed"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)


class ContractViolationError(BufferError):
    """Raised when a buffer is used in a way its contract forbids. Fatal."""

    pass


class BufferSyncError(BufferError):
    """Raised when buffer synchronization fails."""

    def __init__(self, direction: str, cause: Exception) -> None:
        self.direction = direction
        self.cause = cause
        super().__init__(f"Failed to sync buffer {direction}: {cause}")


class BackendError(PySyncedMemError):
    """Base exception for backend-related errors."""

    pass


class BackendNotAvailableError(BackendError):
    """Raised when a requested backend is not available."""

    def __init__(self, backend_name: str, reason: str) -> None:
        self.backend_name = backend_name
        self.reason = reason
        super().__init__(f"Backend '{backend_name}' is not available: {reason}")


class CUDAError(BackendError):
    """Raised for CUDA-specific errors."""

    pass


class ValidationError(PySyncedMemError):
    """Base exception for validation-related errors."""

    pass


class InvalidConfigurationError(ValidationError):
    """Raised when configuration is invalid."""

    def __init__(self, parameter: str, value: object, reason: str) -> None:
        self.parameter = parameter
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid configuration: {parameter}={value!r} - {reason}")
