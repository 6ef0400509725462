"""
Shared Weights Example for PySyncedMem.

Demonstrates lazy host/device synchronization with two layers sharing one
weight buffer. Runs on the emulated CPU backend when no GPU is present.
"""

from __future__ import annotations

import numpy as np

from pysyncedmem import Authority, SyncedTensor, get_accelerator
from pysyncedmem.backends.cpu import CPUBackend


def _device_step(weights: SyncedTensor, grads: SyncedTensor, lr: float) -> None:
    """Stand-in for an optimizer kernel running on the device."""
    w = weights.mutable_device_data()
    w -= lr * grads.device_data()


def run_shared_weights_example() -> None:
    """Run the shared weights example."""
    print("=" * 60)
    print("PySyncedMem Shared Weights Example")
    print("=" * 60)

    accelerator = get_accelerator()
    backend = accelerator.backend
    if backend is None:
        backend = CPUBackend()
        accelerator.use_backend(backend)
    print(f"\nBackend: {backend!r}")

    print("\n1. Creating two layers that share weights...")
    encoder = SyncedTensor((4, 4), dtype=np.float32)
    decoder = SyncedTensor(16, dtype=np.float32)
    decoder.share_data(encoder)
    encoder.copy_from(np.eye(4, dtype=np.float32))
    print(f"   encoder: {encoder}")
    print(f"   decoder: {decoder}")

    grads = SyncedTensor((4, 4), dtype=np.float32).fill(0.5)

    print("\n2. Running three device updates...")
    for step in range(3):
        _device_step(encoder, grads, lr=0.1)
        state = encoder.data.authority
        print(f"   step {step}: weights are {state.name}")
        assert state == Authority.DEVICE_AUTHORITATIVE

    print("\n3. Reading the shared weights on the host...")
    host = decoder.host_data()
    print(f"   decoder sees diagonal {host.reshape(4, 4).diagonal()}")
    print(f"   authority now {decoder.data.authority.name}")

    if isinstance(backend, CPUBackend):
        print("\n4. Transfer counts...")
        print(f"   host->device copies: {backend.stats.host_to_device}")
        print(f"   device->host copies: {backend.stats.device_to_host}")

    print("\n" + "=" * 60)
    print("Example completed successfully!")
    print("=" * 60)


if __name__ == "__main__":
    run_shared_weights_example()
