"""
Unit tests for Accelerator.
"""

from __future__ import annotations

import pytest

from pysyncedmem.backends.cpu import CPUBackend
from pysyncedmem.core.accelerator import (
    Accelerator,
    DeviceProperties,
    DeviceType,
    Mode,
    configure,
    cuda_available,
    get_accelerator,
)
from pysyncedmem.exceptions import InvalidConfigurationError


class TestDeviceProperties:
    """Tests for DeviceProperties dataclass."""

    def test_cpu_properties(self) -> None:
        """Test CPU device properties."""
        props = DeviceProperties(
            device_id=0,
            device_type=DeviceType.CPU,
            name="CPU",
            compute_capability=None,
            total_memory=0,
            is_available=True,
        )

        assert props.compute_capability_str == "N/A"
        assert props.total_memory_gb == 0.0

    def test_cuda_properties(self) -> None:
        """Test CUDA device properties."""
        props = DeviceProperties(
            device_id=0,
            device_type=DeviceType.CUDA,
            name="Test GPU",
            compute_capability=(8, 9),
            total_memory=8 * 1024**3,
            is_available=True,
        )

        assert props.compute_capability_str == "8.9"
        assert props.total_memory_gb == 8.0


class TestAccelerator:
    """Tests for the Accelerator singleton."""

    def test_singleton(self) -> None:
        """Test accelerator is a singleton."""
        assert Accelerator() is Accelerator()
        assert get_accelerator() is Accelerator()

    def test_defaults(self, host_only: Accelerator) -> None:
        """Test default configuration."""
        assert host_only.mode == Mode.CPU
        assert host_only.aligned_host_alloc
        assert host_only.alignment == 64
        assert not host_only.device_available
        assert host_only.device_count == 0
        assert host_only.current_device == -1
        assert not host_only.use_pinned_host_memory

    def test_devices_never_empty(self, accelerator: Accelerator) -> None:
        """Test at least one device entry is reported."""
        assert len(accelerator.devices) >= 1
        assert accelerator.get_device(0).device_id == 0

    def test_get_device_out_of_range(self, accelerator: Accelerator) -> None:
        """Test invalid device lookups raise."""
        with pytest.raises(ValueError):
            accelerator.get_device(len(accelerator.devices))

    def test_cuda_available_function(self, accelerator: Accelerator) -> None:
        """Test module-level CUDA check agrees with the instance."""
        assert cuda_available() == accelerator.cuda_available

    def test_use_backend(self, accelerator: Accelerator) -> None:
        """Test installing a backend."""
        backend = CPUBackend(device_count=2)

        accelerator.use_backend(backend)

        assert accelerator.backend is backend
        assert accelerator.device_available
        assert accelerator.device_count == 2
        assert accelerator.current_device == 0

    def test_set_device(self, cpu_backend: CPUBackend, accelerator: Accelerator) -> None:
        """Test device selection is forwarded to the backend."""
        accelerator.set_device(1)

        assert cpu_backend.get_device() == 1
        assert accelerator.current_device == 1

    def test_set_device_out_of_range(self, cpu_backend: CPUBackend) -> None:
        """Test invalid device ordinals raise."""
        with pytest.raises(ValueError):
            get_accelerator().set_device(5)

    def test_set_device_without_backend(self, host_only: Accelerator) -> None:
        """Test device selection needs a backend."""
        with pytest.raises(InvalidConfigurationError):
            host_only.set_device(0)

    def test_synchronize_without_backend(self, host_only: Accelerator) -> None:
        """Test synchronize is a no-op without a backend."""
        host_only.synchronize()

    def test_repr(self, host_only: Accelerator) -> None:
        """Test string representation."""
        assert "mode=CPU" in repr(host_only)


class TestMode:
    """Tests for the execution mode."""

    def test_gpu_mode_needs_backend(self, host_only: Accelerator) -> None:
        """Test GPU mode is refused without a backend."""
        with pytest.raises(InvalidConfigurationError):
            host_only.set_mode(Mode.GPU)
        assert host_only.mode == Mode.CPU

    def test_invalid_mode(self, accelerator: Accelerator) -> None:
        """Test non-Mode values are rejected."""
        with pytest.raises(InvalidConfigurationError):
            accelerator.set_mode("GPU")  # type: ignore[arg-type]

    def test_pinned_follows_mode(self, accelerator: Accelerator) -> None:
        """Test pinned host memory is used only in GPU mode."""
        accelerator.use_backend(CPUBackend(emulate_pinned=True))
        assert not accelerator.use_pinned_host_memory

        accelerator.set_mode(Mode.GPU)
        assert accelerator.use_pinned_host_memory

    def test_pinned_needs_backend_support(self, cpu_backend: CPUBackend) -> None:
        """Test GPU mode on a backend without pinned memory stays pageable."""
        accelerator = get_accelerator()
        accelerator.set_mode(Mode.GPU)

        assert not accelerator.use_pinned_host_memory

    def test_removing_backend_reverts_mode(self, cpu_backend: CPUBackend) -> None:
        """Test removing the backend falls back to CPU mode."""
        accelerator = get_accelerator()
        accelerator.set_mode(Mode.GPU)

        accelerator.use_backend(None)

        assert accelerator.mode == Mode.CPU


class TestHostAllocPolicy:
    """Tests for the host allocation policy."""

    def test_set_policy(self, accelerator: Accelerator) -> None:
        """Test updating the policy."""
        accelerator.set_host_alloc_policy(aligned=False, alignment=4096)

        assert not accelerator.aligned_host_alloc
        assert accelerator.alignment == 4096

    @pytest.mark.parametrize("alignment", [0, -8, 3, 48])
    def test_alignment_power_of_two(self, accelerator: Accelerator, alignment: int) -> None:
        """Test alignment must be a positive power of two."""
        with pytest.raises(InvalidConfigurationError):
            accelerator.set_host_alloc_policy(alignment=alignment)
        assert accelerator.alignment == 64


class TestConfigure:
    """Tests for configure()."""

    def test_configure_all(self) -> None:
        """Test backend, mode and policy are applied together."""
        backend = CPUBackend(emulate_pinned=True)

        accelerator = configure(
            backend=backend, mode=Mode.GPU, aligned_host_alloc=True, alignment=128
        )

        assert accelerator.backend is backend
        assert accelerator.mode == Mode.GPU
        assert accelerator.alignment == 128

    def test_configure_keeps_unset_values(self, accelerator: Accelerator) -> None:
        """Test omitted arguments leave settings alone."""
        accelerator.set_host_alloc_policy(alignment=256)

        configure(aligned_host_alloc=False)

        assert accelerator.alignment == 256
        assert not accelerator.aligned_host_alloc
