"""
Typed tensor container over synchronized memory.

Holds a value buffer and a gradient buffer and presents them as shaped,
typed arrays on the host or the device.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import numpy as np

from pysyncedmem.core.synced_memory import SyncedMemory

if TYPE_CHECKING:
    from numpy.typing import DTypeLike, NDArray

    from pysyncedmem.core.accelerator import Accelerator

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=np.generic)


class SyncedTensor(Generic[T]):
    """
    Shaped, typed view over a pair of synchronized buffers.

    ``data`` holds values and ``diff`` holds gradients. Reshaping to a
    larger element count replaces both buffers; shrinking keeps them.

    Example:
        >>> t = SyncedTensor((2, 3), dtype=np.float32)
        >>> t.mutable_host_data()[:] = 1.0
        >>> t.device_data().shape
        (2, 3)
    """

    def __init__(
        self,
        shape: tuple[int, ...] | int = 0,
        dtype: DTypeLike = np.float32,
        *,
        accelerator: Accelerator | None = None,
    ) -> None:
        """
        Initialize a tensor.

        Args:
            shape: Tensor shape.
            dtype: Element type.
            accelerator: Accelerator passed to the underlying buffers.
        """
        self._dtype = np.dtype(dtype)
        self._accelerator = accelerator
        self._shape: tuple[int, ...] = ()
        self._count = 0
        self._capacity = 0
        self._data = SyncedMemory(0, accelerator=accelerator)
        self._diff = SyncedMemory(0, accelerator=accelerator)
        self.reshape(shape)

    @property
    def shape(self) -> tuple[int, ...]:
        """Get the tensor shape."""
        return self._shape

    @property
    def dtype(self) -> np.dtype[T]:
        """Get the element type."""
        return self._dtype  # type: ignore[return-value]

    @property
    def count(self) -> int:
        """Get the number of elements."""
        return self._count

    @property
    def nbytes(self) -> int:
        """Get the size of the elements in bytes."""
        return self._count * self._dtype.itemsize

    @property
    def capacity(self) -> int:
        """Get the number of elements the current buffers can hold."""
        return self._capacity

    @property
    def data(self) -> SyncedMemory:
        """Get the value buffer."""
        return self._data

    @property
    def diff(self) -> SyncedMemory:
        """Get the gradient buffer."""
        return self._diff

    def reshape(self, shape: tuple[int, ...] | int) -> SyncedTensor[T]:
        """
        Change the tensor shape.

        The buffers are replaced only when the new element count exceeds
        the capacity; their contents are not preserved in that case.
        """
        if isinstance(shape, int):
            shape = (shape,)
        if any(dim < 0 for dim in shape):
            raise ValueError(f"Negative dimension in shape {shape}")

        self._shape = tuple(shape)
        self._count = math.prod(self._shape)
        if self._count > self._capacity:
            self._capacity = self._count
            nbytes = self._capacity * self._dtype.itemsize
            self._data = SyncedMemory(nbytes, accelerator=self._accelerator)
            self._diff = SyncedMemory(nbytes, accelerator=self._accelerator)
            logger.debug(f"SyncedTensor reallocated for {self._capacity} elements")
        return self

    def _typed(self, raw: Any) -> Any:
        return raw[: self.nbytes].view(self._dtype).reshape(self._shape)

    def host_data(self) -> NDArray[T]:
        """Get a read-only host array of the values."""
        return self._typed(self._data.host_view())

    def mutable_host_data(self) -> NDArray[T]:
        """Get a writable host array of the values."""
        return self._typed(self._data.mutable_host_view())

    def device_data(self) -> Any:
        """Get a device array of the values."""
        return self._typed(self._data.device_view())

    def mutable_device_data(self) -> Any:
        """Get a writable device array of the values."""
        return self._typed(self._data.mutable_device_view())

    def host_diff(self) -> NDArray[T]:
        """Get a read-only host array of the gradients."""
        return self._typed(self._diff.host_view())

    def mutable_host_diff(self) -> NDArray[T]:
        """Get a writable host array of the gradients."""
        return self._typed(self._diff.mutable_host_view())

    def device_diff(self) -> Any:
        """Get a device array of the gradients."""
        return self._typed(self._diff.device_view())

    def mutable_device_diff(self) -> Any:
        """Get a writable device array of the gradients."""
        return self._typed(self._diff.mutable_device_view())

    def set_host_data(self, array: NDArray[T]) -> None:
        """
        Use a caller-owned host array as the value storage.

        The array must hold at least ``count`` elements of this dtype.
        A value buffer left oversized by an earlier shrink is replaced by
        one of exactly this tensor's size first.
        """
        if array.dtype != self._dtype:
            raise TypeError(f"Expected dtype {self._dtype}, got {array.dtype}")
        if self._data.size != self.nbytes:
            self._data = SyncedMemory(self.nbytes, accelerator=self._accelerator)
        self._data.set_host_pointer(array)

    def share_data(self, other: SyncedTensor[T]) -> None:
        """Use ``other``'s value buffer; dtypes and element counts must match."""
        self._check_shareable(other, "data")
        self._data = other.data

    def share_diff(self, other: SyncedTensor[T]) -> None:
        """Use ``other``'s gradient buffer; dtypes and element counts must match."""
        self._check_shareable(other, "diff")
        self._diff = other.diff

    def _check_shareable(self, other: SyncedTensor[Any], what: str) -> None:
        if other.dtype != self._dtype:
            raise TypeError(f"Cannot share {what} of dtype {other.dtype} with {self._dtype}")
        if other.count != self._count:
            raise ValueError(f"Cannot share {what} of {other.count} elements with {self._count}")

    def copy_from(self, array: NDArray[T]) -> None:
        """
        Copy values from a host array.

        Args:
            array: Source array with this tensor's element count.
        """
        np.copyto(self.mutable_host_data(), np.asarray(array).reshape(self._shape))

    def copy_to(self, array: NDArray[T]) -> None:
        """
        Copy values into a host array.

        Args:
            array: Destination array.
        """
        np.copyto(array, self.host_data())

    def fill(self, value: Any) -> SyncedTensor[T]:
        """Fill the values with ``value`` on the host."""
        self.mutable_host_data().fill(value)
        return self

    def zeros(self) -> SyncedTensor[T]:
        """Fill the values with zeros."""
        return self.fill(0)

    def __len__(self) -> int:
        """Get the length of the first dimension."""
        return self._shape[0] if self._shape else 0

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"SyncedTensor(shape={self._shape}, dtype={self._dtype}, "
            f"data={self._data.authority.name}, diff={self._diff.authority.name})"
        )
