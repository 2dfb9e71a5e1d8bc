"""
Coarse-to-fine image pyramids for tile alignment.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List

import numpy as np

from burst_stack_backend.frame import Frame
from burst_stack_backend.tile_grid import AlignmentSchedule


def average_pool(data: np.ndarray, factor: int) -> np.ndarray:
    """Non-overlapping ``factor`` x ``factor`` block mean.

    Rows and columns that do not fill a whole block are dropped.
    """
    if factor < 1:
        raise ValueError(f"pooling factor must be >= 1, got {factor}")
    if factor == 1:
        return data.astype(np.float32, copy=True)
    h, w = data.shape
    h2, w2 = h // factor, w // factor
    if h2 == 0 or w2 == 0:
        raise ValueError(f"cannot pool {data.shape} by {factor}")
    blocks = data[: h2 * factor, : w2 * factor].reshape(h2, factor, w2, factor)
    return blocks.mean(axis=(1, 3), dtype=np.float64).astype(np.float32)


@dataclass
class Pyramid:
    """``levels[0]`` is the full resolution frame, ``levels[k]`` is
    ``levels[k-1]`` pooled by ``schedule.downscale_factors[k-1]``."""
    levels: List[Frame]
    schedule: AlignmentSchedule

    def alignment_level(self, level: int) -> Frame:
        """Frame searched at alignment level ``level`` (0 = finest)."""
        return self.levels[level + 1]

    @property
    def num_alignment_levels(self) -> int:
        return len(self.levels) - 1


def build_pyramid(frame: Frame, schedule: AlignmentSchedule) -> Pyramid:
    levels = [frame]
    current = frame.data
    for factor in schedule.downscale_factors:
        current = average_pool(current, factor)
        levels.append(frame.like(current))
    return Pyramid(levels, schedule)


def pyramid_nbytes(shape, schedule: AlignmentSchedule) -> int:
    """Memory needed for the pooled levels of one pyramid (float32)."""
    h, w = shape
    total = 0
    for factor in schedule.downscale_factors:
        h, w = h // factor, w // factor
        total += h * w * 4
    return total
