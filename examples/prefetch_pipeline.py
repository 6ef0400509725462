"""
Prefetch Pipeline Example for PySyncedMem.

Demonstrates asynchronous host to device pushes: the host fills the next
batch while earlier batches are still queued on a stream.
"""

from __future__ import annotations

import asyncio

import numpy as np

from pysyncedmem import SyncedMemory, get_accelerator
from pysyncedmem.backends.cpu import CPUBackend

BATCH_BYTES = 4096


async def run_prefetch_pipeline_example(num_batches: int = 4) -> None:
    """Run the prefetch pipeline example."""
    print("=" * 60)
    print("PySyncedMem Prefetch Pipeline Example")
    print("=" * 60)

    accelerator = get_accelerator()
    backend = accelerator.backend
    if backend is None:
        backend = CPUBackend()
        accelerator.use_backend(backend)
    stream = backend.create_stream()

    print(f"\n1. Staging {num_batches} batches...")
    batches = []
    rng = np.random.default_rng(0)
    for index in range(num_batches):
        batch = SyncedMemory(BATCH_BYTES)
        batch.mutable_host_view()[:] = rng.integers(0, 255, BATCH_BYTES, dtype=np.uint8)
        batch.async_device_push(stream)
        batches.append(batch)
        print(f"   batch {index} pushed ({batch.authority.name})")

    print("\n2. Waiting for the stream...")
    await asyncio.to_thread(stream.synchronize)

    print("\n3. Reading results back...")
    for index, batch in enumerate(batches):
        host = await batch.ensure_on_host()
        print(f"   batch {index}: checksum {int(host.sum())}")
        batch.free()

    print("\n" + "=" * 60)
    print("Example completed successfully!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(run_prefetch_pipeline_example())
