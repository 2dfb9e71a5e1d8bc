"""
Burst-Stack Runner Package

Runtime layer of the burst align-and-merge pipeline: compute context,
frame loading, orchestration, events, logging and error handling.
"""

from .compute import ComputeContext
from .errors import (
    AllocationError,
    BurstProcessingError,
    ComputeError,
    DecodeError,
    InsufficientFramesError,
)
from .loader import load_burst
from .orchestrator import BurstMerger, MergeResult, align_and_merge, select_reference_index

__all__ = [
    "ComputeContext",
    "AllocationError",
    "BurstProcessingError",
    "ComputeError",
    "DecodeError",
    "InsufficientFramesError",
    "load_burst",
    "BurstMerger",
    "MergeResult",
    "align_and_merge",
    "select_reference_index",
]
