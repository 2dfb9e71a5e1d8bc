"""
Explicit compute context for burst-stack

The context owns the worker pool used for frame decoding and for
data-parallel kernels, and the resource manager used for checked
allocations. It is constructed by the caller and passed to every
operation; there is no process-wide state.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Iterable, List, Optional, Tuple

import numpy as np

from .errors import BurstProcessingError, robust_processing
from .resources import ResourceManager

logger = logging.getLogger(__name__)


def default_worker_count() -> int:
    return max(1, min(8, os.cpu_count() or 1))


class ComputeContext:
    """Worker pool plus checked allocation.

    NumPy releases the GIL inside its kernels, so a thread pool gives real
    parallelism for the per-candidate and per-frame work dispatched here.
    """

    def __init__(
        self,
        max_workers: Optional[int] = None,
        resources: Optional[ResourceManager] = None,
    ):
        self.max_workers = int(max_workers) if max_workers else default_worker_count()
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.resources = resources if resources is not None else ResourceManager()
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix="burst-stack",
            )
        return self._executor

    def map(self, kernel: Callable[[Any], Any], items: Iterable[Any]) -> List[Any]:
        """Run ``kernel`` over ``items`` on the pool.

        Results keep the order of ``items``. The first failure is raised
        after every dispatched task has finished, mapped onto the burst
        error taxonomy.
        """
        wrapped = robust_processing(kernel)
        items = list(items)
        if self.max_workers == 1 or len(items) <= 1:
            return [wrapped(item) for item in items]

        futures = [self.executor.submit(wrapped, item) for item in items]
        results = []
        first_error: Optional[BurstProcessingError] = None
        for future in futures:
            try:
                results.append(future.result())
            except BurstProcessingError as e:
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error
        return results

    def allocate(
        self,
        shape: Tuple[int, ...],
        dtype: Any = np.float32,
        fill: float = 0.0,
        what: str = "buffer",
    ) -> np.ndarray:
        return self.resources.allocate(shape, dtype=dtype, fill=fill, what=what)

    def check_allocation(self, nbytes: int, what: str = "buffer") -> None:
        self.resources.check_allocation(nbytes, what)

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> "ComputeContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"ComputeContext(max_workers={self.max_workers})"
