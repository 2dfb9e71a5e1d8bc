"""
Sensor frame container.

A frame is a 2D grid of linear sensor counts laid out as a colour filter
mosaic with a repeating period (2 for a Bayer sensor).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np

UINT16_MAX = 65535


@dataclass
class Frame:
    data: np.ndarray
    mosaic_period: int = 2

    def __post_init__(self):
        if self.data.ndim != 2:
            raise ValueError(f"frame data must be 2D, got shape {self.data.shape}")
        if self.mosaic_period < 1:
            raise ValueError(f"mosaic_period must be >= 1, got {self.mosaic_period}")

    @classmethod
    def from_bayer(cls, grid: np.ndarray, mosaic_period: int = 2) -> "Frame":
        """Promote an unsigned integer mosaic to float32 sensor counts."""
        grid = np.asarray(grid)
        if grid.ndim != 2:
            raise ValueError(f"bayer grid must be 2D, got shape {grid.shape}")
        return cls(grid.astype(np.float32, copy=True), mosaic_period)

    @property
    def height(self) -> int:
        return int(self.data.shape[0])

    @property
    def width(self) -> int:
        return int(self.data.shape[1])

    @property
    def shape(self) -> Tuple[int, int]:
        return self.height, self.width

    def like(self, data: np.ndarray) -> "Frame":
        """New frame with the same mosaic period."""
        return Frame(data, self.mosaic_period)

    def as_uint16(self) -> np.ndarray:
        """Round and clip to the 16-bit sensor range."""
        return np.clip(np.rint(self.data), 0, UINT16_MAX).astype(np.uint16)


def check_burst_consistency(frames: Sequence[Frame]) -> None:
    """Every frame of a burst must share shape and mosaic period."""
    if not frames:
        return
    shape = frames[0].shape
    period = frames[0].mosaic_period
    for i, frame in enumerate(frames):
        if frame.shape != shape:
            raise ValueError(f"frame {i} has shape {frame.shape}, expected {shape}")
        if frame.mosaic_period != period:
            raise ValueError(
                f"frame {i} has mosaic period {frame.mosaic_period}, expected {period}"
            )


def mean_frame(frames: List[Frame]) -> Frame:
    """Pixelwise arithmetic mean of a list of frames."""
    check_burst_consistency(frames)
    stack = np.stack([f.data for f in frames], axis=0).astype(np.float64)
    return frames[0].like(stack.mean(axis=0).astype(np.float32))
