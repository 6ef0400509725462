"""
Private-format descriptors.

A private format is a vendor-specific memory layout that some engines
compute in directly. Synchronized buffers never interpret it themselves;
they ask the buffer's descriptor to convert it back to the standard
layout when a host view is requested.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from enum import Enum, auto
from typing import TYPE_CHECKING, Any

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import DTypeLike, NDArray


class PrivateFormat(Enum):
    """Known private layouts."""

    PLAIN = auto()
    CHANNELS_LAST = auto()
    MKL2017 = auto()  # supplied by vendor plug-ins


class PrivateDescriptor(ABC):
    """
    Conversion capability for one private layout.

    A descriptor may be shared by several buffers; it must not hold
    per-buffer state.
    """

    @property
    @abstractmethod
    def descriptor_type(self) -> PrivateFormat:
        """Get the layout this descriptor decodes."""
        ...

    @abstractmethod
    def element_count(self) -> int:
        """Get the number of elements the private data holds."""
        ...

    @abstractmethod
    def convert_to_host(self, private: Any, host: NDArray[np.uint8]) -> None:
        """
        Decode private data into the standard host layout.

        Args:
            private: Private data as installed on the buffer.
            host: Flat host byte buffer to write ``element_count()``
                elements into.
        """
        ...


class PlainLayoutDescriptor(PrivateDescriptor):
    """Private data already in the standard layout."""

    def __init__(self, dtype: DTypeLike, count: int) -> None:
        self._dtype = np.dtype(dtype)
        self._count = count

    @property
    def descriptor_type(self) -> PrivateFormat:
        return PrivateFormat.PLAIN

    def element_count(self) -> int:
        return self._count

    def convert_to_host(self, private: Any, host: NDArray[np.uint8]) -> None:
        nbytes = self._count * self._dtype.itemsize
        source = np.ascontiguousarray(private).reshape(-1).view(np.uint8)
        host[:nbytes] = source[:nbytes]

    def __repr__(self) -> str:
        return f"PlainLayoutDescriptor(dtype={self._dtype}, count={self._count})"


class ChannelsLastDescriptor(PrivateDescriptor):
    """
    NHWC private data for an NCHW tensor.

    Args:
        shape: Standard (N, C, H, W) shape.
        dtype: Element type.
    """

    def __init__(self, shape: tuple[int, int, int, int], dtype: DTypeLike = np.float32) -> None:
        if len(shape) != 4:
            raise ValueError(f"Expected an (N, C, H, W) shape, got {shape}")
        self._shape = tuple(shape)
        self._dtype = np.dtype(dtype)

    @property
    def descriptor_type(self) -> PrivateFormat:
        return PrivateFormat.CHANNELS_LAST

    def element_count(self) -> int:
        return math.prod(self._shape)

    def convert_to_host(self, private: Any, host: NDArray[np.uint8]) -> None:
        n, c, h, w = self._shape
        nbytes = self.element_count() * self._dtype.itemsize
        nhwc = np.asarray(private).reshape(-1).view(self._dtype).reshape(n, h, w, c)
        target = host[:nbytes].view(self._dtype).reshape(n, c, h, w)
        np.copyto(target, nhwc.transpose(0, 3, 1, 2))

    def __repr__(self) -> str:
        return f"ChannelsLastDescriptor(shape={self._shape}, dtype={self._dtype})"
