"""
Pytest configuration and shared fixtures.
"""

from __future__ import annotations

from typing import Generator

import numpy as np
import pytest

from pysyncedmem.backends.cpu import CPUBackend
from pysyncedmem.core.accelerator import Accelerator
from pysyncedmem.core.memory_pool import MemoryPool
from pysyncedmem.core.private import PlainLayoutDescriptor
from pysyncedmem.core.synced_memory import SyncedMemory

# Configure pytest-asyncio
pytest_plugins = ["pytest_asyncio"]


def _reset() -> None:
    Accelerator._instance = None
    Accelerator._initialized = False
    MemoryPool._instance = None


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Give every test a fresh accelerator and memory pool."""
    _reset()
    yield
    _reset()


@pytest.fixture
def accelerator() -> Accelerator:
    """Provide the fresh accelerator instance."""
    return Accelerator()


@pytest.fixture
def cpu_backend(accelerator: Accelerator) -> CPUBackend:
    """Install an emulated two-device backend."""
    backend = CPUBackend(device_count=2)
    accelerator.use_backend(backend)
    return backend


@pytest.fixture
def host_only(accelerator: Accelerator) -> Accelerator:
    """Provide an accelerator with no device backend."""
    accelerator.use_backend(None)
    return accelerator


@pytest.fixture
def memory_pool() -> MemoryPool:
    """Provide the fresh memory pool instance."""
    return MemoryPool()


@pytest.fixture
def synced_memory(cpu_backend: CPUBackend) -> Generator[SyncedMemory, None, None]:
    """Provide a 64-byte buffer on the emulated backend."""
    mem = SyncedMemory(64)
    yield mem
    mem.free()


@pytest.fixture
def plain_descriptor() -> PlainLayoutDescriptor:
    """Provide a descriptor for 16 float32 elements (64 bytes)."""
    return PlainLayoutDescriptor(np.float32, 16)


# Markers for CUDA tests
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "cuda: mark test as requiring CUDA"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def pytest_collection_modifyitems(
    config: pytest.Config,
    items: list[pytest.Item],
) -> None:
    """Skip CUDA tests if CUDA is not available."""
    cuda_available = False
    try:
        import cupy as cp

        cuda_available = cp.cuda.runtime.getDeviceCount() > 0
    except ImportError:
        pass
    except Exception:
        pass

    if not cuda_available:
        skip_cuda = pytest.mark.skip(reason="CUDA not available")
        for item in items:
            if "cuda" in item.keywords:
                item.add_marker(skip_cuda)
