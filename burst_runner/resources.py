"""
Memory checks for burst-stack

Allocation requests are checked against available system memory before the
pipeline creates accumulators, pyramids and cost volumes.
"""

import logging
from typing import Any, Dict, Tuple

import numpy as np
import psutil

from .errors import AllocationError


class ResourceManager:
    """
    Checks allocation requests against a memory threshold
    """
    def __init__(self, memory_threshold_percent: float = 95.0):
        """
        Args:
            memory_threshold_percent: Maximum share of total memory that may
                be in use after the allocation
        """
        if not 0.0 < memory_threshold_percent <= 100.0:
            raise ValueError(
                f"memory_threshold_percent must be in (0, 100], got {memory_threshold_percent}"
            )
        self.logger = logging.getLogger(__name__)
        self.memory_threshold_percent = float(memory_threshold_percent)
        self.peak_request_bytes = 0

    def check_allocation(self, nbytes: int, what: str = "buffer") -> None:
        """
        Raise AllocationError if ``nbytes`` would push memory use over the threshold

        Args:
            nbytes: Requested size in bytes
            what: Label used in log and error messages
        """
        memory = psutil.virtual_memory()
        budget = memory.total * self.memory_threshold_percent / 100.0
        used_after = (memory.total - memory.available) + nbytes
        self.peak_request_bytes = max(self.peak_request_bytes, int(nbytes))

        if used_after > budget:
            self.logger.warning(
                f"Allocation of {what} refused: "
                f"requested={nbytes / 1e6:.1f} MB, "
                f"available={memory.available / 1e6:.1f} MB, "
                f"threshold={self.memory_threshold_percent}%"
            )
            raise AllocationError(
                f"Not enough memory for {what} ({nbytes / 1e6:.1f} MB requested)"
            )

    def allocate(
        self,
        shape: Tuple[int, ...],
        dtype: Any = np.float32,
        fill: float = 0.0,
        what: str = "buffer",
    ) -> np.ndarray:
        """
        Checked allocation of a filled array

        Returns:
            New array of ``shape`` and ``dtype`` filled with ``fill``
        """
        nbytes = int(np.prod(shape, dtype=np.int64)) * np.dtype(dtype).itemsize
        self.check_allocation(nbytes, what)
        try:
            return np.full(shape, fill, dtype=dtype)
        except MemoryError as e:
            raise AllocationError(f"Allocation of {what} failed", original_error=e) from e

    def get_resource_status(self) -> Dict[str, Any]:
        """
        Memory status snapshot

        Returns:
            Dict with memory details
        """
        memory = psutil.virtual_memory()
        return {
            'memory_total_gb': memory.total / (1024**3),
            'memory_used_percent': memory.percent,
            'memory_available_gb': memory.available / (1024**3),
            'peak_request_mb': self.peak_request_bytes / 1e6,
        }
