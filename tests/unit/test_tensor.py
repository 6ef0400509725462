"""
Unit tests for SyncedTensor.
"""

from __future__ import annotations

import numpy as np
import pytest

from pysyncedmem.backends.cpu import CPUBackend
from pysyncedmem.core.synced_memory import Authority
from pysyncedmem.core.tensor import SyncedTensor


class TestSyncedTensorCreation:
    """Tests for tensor construction and shape handling."""

    def test_create(self, cpu_backend: CPUBackend) -> None:
        """Test basic creation."""
        tensor = SyncedTensor((2, 3), dtype=np.float32)

        assert tensor.shape == (2, 3)
        assert tensor.count == 6
        assert tensor.nbytes == 24
        assert tensor.dtype == np.float32
        assert len(tensor) == 2
        assert tensor.data.size == 24
        assert tensor.data.authority == Authority.UNINITIALIZED

    def test_int_shape(self, cpu_backend: CPUBackend) -> None:
        """Test an integer shape means one dimension."""
        tensor = SyncedTensor(5, dtype=np.int64)

        assert tensor.shape == (5,)
        assert tensor.nbytes == 40

    def test_empty(self, cpu_backend: CPUBackend) -> None:
        """Test the default tensor holds nothing."""
        tensor = SyncedTensor()

        assert tensor.count == 0
        assert len(tensor) == 0

    def test_negative_dimension(self, cpu_backend: CPUBackend) -> None:
        """Test negative dimensions are rejected."""
        with pytest.raises(ValueError):
            SyncedTensor((2, -1))

    def test_shrink_keeps_buffers(self, cpu_backend: CPUBackend) -> None:
        """Test shrinking keeps the existing buffers."""
        tensor = SyncedTensor((4, 4))
        data = tensor.data

        tensor.reshape((2, 2))

        assert tensor.data is data
        assert tensor.capacity == 16
        assert tensor.host_data().shape == (2, 2)

    def test_grow_replaces_buffers(self, cpu_backend: CPUBackend) -> None:
        """Test growing past capacity allocates new buffers."""
        tensor = SyncedTensor((2, 2))
        data = tensor.data

        tensor.reshape((3, 3))

        assert tensor.data is not data
        assert tensor.capacity == 9
        assert tensor.data.size == 36


class TestSyncedTensorViews:
    """Tests for typed views."""

    def test_host_round_trip(self, cpu_backend: CPUBackend) -> None:
        """Test values written on the host reach the device and back."""
        tensor = SyncedTensor((2, 3), dtype=np.float32)
        values = np.arange(6, dtype=np.float32).reshape(2, 3)

        tensor.mutable_host_data()[:] = values
        device = tensor.device_data()

        assert device.shape == (2, 3)
        np.testing.assert_array_equal(np.asarray(device), values)
        np.testing.assert_array_equal(tensor.host_data(), values)
        assert tensor.data.authority == Authority.BOTH_SYNCED

    def test_device_write(self, cpu_backend: CPUBackend) -> None:
        """Test device writes are visible on the host."""
        tensor = SyncedTensor(4, dtype=np.int32)

        tensor.mutable_device_data()[:] = 7

        np.testing.assert_array_equal(tensor.host_data(), np.full(4, 7, dtype=np.int32))

    def test_host_data_read_only(self, cpu_backend: CPUBackend) -> None:
        """Test const views cannot be written."""
        tensor = SyncedTensor(4)

        with pytest.raises(ValueError):
            tensor.host_data()[0] = 1.0

    def test_diff_independent(self, cpu_backend: CPUBackend) -> None:
        """Test gradients live in their own buffer."""
        tensor = SyncedTensor(3)

        tensor.mutable_host_diff()[:] = 2.0
        tensor.mutable_device_diff()[0] = 5.0

        np.testing.assert_array_equal(tensor.host_diff(), [5.0, 2.0, 2.0])
        np.testing.assert_array_equal(np.asarray(tensor.device_diff()), [5.0, 2.0, 2.0])
        assert tensor.data.authority == Authority.UNINITIALIZED

    def test_fill_and_zeros(self, cpu_backend: CPUBackend) -> None:
        """Test fill helpers."""
        tensor = SyncedTensor((2, 2)).fill(3.0)
        np.testing.assert_array_equal(tensor.host_data(), np.full((2, 2), 3.0))

        tensor.zeros()
        np.testing.assert_array_equal(tensor.host_data(), np.zeros((2, 2)))

    def test_copy_from_and_to(self, cpu_backend: CPUBackend) -> None:
        """Test copying values in and out."""
        tensor = SyncedTensor((2, 2), dtype=np.float64)
        out = np.empty((2, 2), dtype=np.float64)

        tensor.copy_from([1.0, 2.0, 3.0, 4.0])
        tensor.copy_to(out)

        np.testing.assert_array_equal(out, [[1.0, 2.0], [3.0, 4.0]])


class TestSyncedTensorSharing:
    """Tests for external and shared storage."""

    def test_set_host_data(self, cpu_backend: CPUBackend) -> None:
        """Test a caller-owned array becomes the value storage."""
        tensor = SyncedTensor(4, dtype=np.float32)
        external = np.arange(4, dtype=np.float32)

        tensor.set_host_data(external)
        tensor.mutable_host_data()[0] = 10.0

        assert external[0] == 10.0
        assert not tensor.data.owns_host

    def test_set_host_data_dtype_mismatch(self, cpu_backend: CPUBackend) -> None:
        """Test the dtype must match."""
        tensor = SyncedTensor(4, dtype=np.float32)

        with pytest.raises(TypeError):
            tensor.set_host_data(np.zeros(4, dtype=np.float64))

    def test_set_host_data_after_shrink(self, cpu_backend: CPUBackend) -> None:
        """Test an oversized buffer is replaced by an exact one."""
        tensor = SyncedTensor(8, dtype=np.float32)
        tensor.reshape(2)

        tensor.set_host_data(np.ones(2, dtype=np.float32))

        assert tensor.data.size == 8
        np.testing.assert_array_equal(tensor.host_data(), [1.0, 1.0])

    def test_share_data(self, cpu_backend: CPUBackend) -> None:
        """Test sharing a value buffer between tensors."""
        weights = SyncedTensor((2, 2))
        alias = SyncedTensor(4)
        weights.fill(1.5)

        alias.share_data(weights)

        assert alias.data is weights.data
        np.testing.assert_array_equal(alias.host_data(), np.full(4, 1.5))

    def test_share_count_mismatch(self, cpu_backend: CPUBackend) -> None:
        """Test sharing needs equal element counts."""
        with pytest.raises(ValueError):
            SyncedTensor(3).share_data(SyncedTensor(4))
        with pytest.raises(ValueError):
            SyncedTensor(3).share_diff(SyncedTensor(4))

    def test_share_dtype_mismatch(self, cpu_backend: CPUBackend) -> None:
        """Test sharing needs equal dtypes, even with equal counts."""
        target = SyncedTensor(4, dtype=np.float32)
        half = SyncedTensor(4, dtype=np.float16)
        data = target.data

        with pytest.raises(TypeError):
            target.share_data(half)
        with pytest.raises(TypeError):
            target.share_diff(half)

        assert target.data is data
        assert target.host_data().shape == (4,)

    def test_share_diff(self, cpu_backend: CPUBackend) -> None:
        """Test sharing a gradient buffer."""
        first = SyncedTensor(2)
        second = SyncedTensor(2)

        second.share_diff(first)

        assert second.diff is first.diff

    def test_repr(self, cpu_backend: CPUBackend) -> None:
        """Test string representation."""
        assert "SyncedTensor" in repr(SyncedTensor(2))
