"""
Tile-wise warping of an alternate frame onto the reference.

Each full resolution pixel is covered by up to two tiles per axis (50%
overlap). The pixel is drawn from the alternate frame at its own position
plus each covering tile's offset, and the samples are blended with a raised
cosine window so there are no seams between tiles.
"""
from __future__ import annotations

import math
from typing import Any, Tuple

import numpy as np

from burst_stack_backend.frame import Frame
from burst_stack_backend.tile_grid import TileGeometry

EPS = 1e-12


def tile_window(tile_size: int) -> np.ndarray:
    """Raised cosine window; windows of tiles at half-tile stride sum to 1."""
    u = np.arange(tile_size, dtype=np.float64)
    return 0.5 - 0.5 * np.cos(2.0 * math.pi * (u + 0.5) / tile_size)


def _axis_weights(length: int, n_tiles: int, tile_size: int) -> Tuple[np.ndarray, np.ndarray]:
    """Covering tile indices (2, length) and normalised weights (2, length) along one axis."""
    stride = tile_size // 2
    window = tile_window(tile_size)
    pos = np.arange(length)
    first = pos // stride
    idx = np.clip(np.stack([first - 1, first]), 0, n_tiles - 1)
    local = pos[None, :] - idx * stride
    inside = (local >= 0) & (local < tile_size)
    weights = np.where(inside, window[np.clip(local, 0, tile_size - 1)], 0.0)

    total = weights.sum(axis=0)
    # pixels past the last tile take the nearest tile
    orphan = total < EPS
    weights[:, orphan] = 0.5
    total[orphan] = 1.0
    return idx, weights / total


def warp_frame(
    alternate: Frame,
    field: np.ndarray,
    geometry: TileGeometry,
    context: Any = None,
) -> Frame:
    """
    Resample ``alternate`` according to the finest alignment field.

    Args:
        alternate: Full resolution alternate frame
        field: int alignment field (n_tiles_y, n_tiles_x, 2) of the finest
            alignment level
        geometry: Tile geometry of the finest alignment level
        context: Optional compute context for the checked allocation

    Returns:
        Warped frame, same shape as ``alternate``
    """
    if field.shape != (geometry.n_tiles_y, geometry.n_tiles_x, 2):
        raise ValueError(
            f"alignment field {field.shape[:2]} does not match tile grid {geometry.grid_shape}"
        )
    period = alternate.mosaic_period
    full = geometry.scaled(period)
    offsets = field.astype(np.int64) * period

    data = alternate.data
    h, w = data.shape
    if context is not None:
        context.check_allocation(h * w * 8 * 3, "warp buffers")

    ty, wy = _axis_weights(h, full.n_tiles_y, full.tile_size)
    tx, wx = _axis_weights(w, full.n_tiles_x, full.tile_size)
    rows = np.arange(h)[:, None]
    cols = np.arange(w)[None, :]

    out = np.zeros((h, w), dtype=np.float64)
    for a in range(2):
        for b in range(2):
            tile_off = offsets[ty[a][:, None], tx[b][None, :]]
            yi = np.clip(rows + tile_off[..., 0], 0, h - 1)
            xi = np.clip(cols + tile_off[..., 1], 0, w - 1)
            out += (wy[a][:, None] * wx[b][None, :]) * data[yi, xi]

    return alternate.like(out.astype(np.float32))
