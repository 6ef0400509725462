"""
PySyncedMem examples.

This module contains example programs demonstrating lazily
synchronized host/device buffers.
"""

from examples.prefetch_pipeline import run_prefetch_pipeline_example
from examples.shared_weights import run_shared_weights_example

__all__ = [
    "run_prefetch_pipeline_example",
    "run_shared_weights_example",
]
