"""
Hierarchical tile alignment (coarse-to-fine block matching).

For every pyramid level, from the coarsest to the finest:

1. the alignment field of the next-coarser level is upsampled to the
   current tile grid (nearest neighbour) and scaled by the pooling factor,
2. a cost volume of sums of absolute differences is computed for every
   tile and every integer candidate offset in the search window,
3. the cheapest candidate is added to the upsampled estimate.

Offsets are integer ``(dy, dx)`` pairs: the alternate frame sampled at
``p + (dy, dx)`` matches the reference at ``p``.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional, Sequence, Tuple

import numpy as np

from burst_stack_backend.pyramid import Pyramid
from burst_stack_backend.tile_grid import AlignmentSchedule, TileGeometry

logger = logging.getLogger(__name__)


def _dispatch(context: Any, kernel: Callable, items: Sequence) -> List:
    if context is None:
        return [kernel(item) for item in items]
    return context.map(kernel, items)


def candidate_offsets(radius: int) -> np.ndarray:
    """(n_pos_2d, 2) array of ``(dy, dx)`` in candidate-index order.

    Candidate ``c`` has ``dy = c // n - r`` and ``dx = c % n - r`` with
    ``n = 2r + 1``.
    """
    d = np.arange(-radius, radius + 1, dtype=np.int32)
    dy, dx = np.meshgrid(d, d, indexing="ij")
    return np.stack([dy.ravel(), dx.ravel()], axis=1)


def candidate_priority(radius: int) -> np.ndarray:
    """Candidate indices sorted by tie-break rank.

    Smallest squared magnitude first, then ``(dy, dx)`` ascending.
    """
    offsets = candidate_offsets(radius)
    magnitude = (offsets.astype(np.int64) ** 2).sum(axis=1)
    # lexsort: last key is the primary key
    return np.lexsort((offsets[:, 1], offsets[:, 0], magnitude))


def zero_field(n_tiles_y: int, n_tiles_x: int) -> np.ndarray:
    return np.zeros((n_tiles_y, n_tiles_x, 2), dtype=np.int32)


def upsample_alignment(field: Optional[np.ndarray], n_tiles_y: int, n_tiles_x: int) -> np.ndarray:
    """Nearest-neighbour resize of an alignment field to a new tile grid."""
    if field is None:
        return zero_field(n_tiles_y, n_tiles_x)
    in_y, in_x = field.shape[:2]
    iy = (np.arange(n_tiles_y) * in_y) // n_tiles_y
    ix = (np.arange(n_tiles_x) * in_x) // n_tiles_x
    return field[iy[:, None], ix[None, :]].astype(np.int32, copy=True)


def _tile_axes(geometry: TileGeometry) -> Tuple[np.ndarray, np.ndarray]:
    u = np.arange(geometry.tile_size)
    ys = (np.arange(geometry.n_tiles_y) * geometry.stride)[:, None] + u[None, :]
    xs = (np.arange(geometry.n_tiles_x) * geometry.stride)[:, None] + u[None, :]
    return ys, xs


def extract_tiles(data: np.ndarray, geometry: TileGeometry) -> np.ndarray:
    """(n_tiles_y, n_tiles_x, T, T) view of the overlapping tiles, edge-clamped."""
    h, w = data.shape
    ys, xs = _tile_axes(geometry)
    yi = np.clip(ys, 0, h - 1)
    xi = np.clip(xs, 0, w - 1)
    return data[yi[:, None, :, None], xi[None, :, None, :]]


def tile_differences(
    reference: np.ndarray,
    alternate: np.ndarray,
    previous: np.ndarray,
    geometry: TileGeometry,
    downscale_factor: int,
    context: Any = None,
) -> np.ndarray:
    """
    Cost volume of one level.

    Args:
        reference: Reference level (2D)
        alternate: Alternate level, same shape
        previous: Upsampled coarser estimate, (n_tiles_y, n_tiles_x, 2)
        geometry: Tile geometry of this level
        downscale_factor: Factor relating this level to the next-coarser one
            (0 at the coarsest level)
        context: Optional compute context; candidates run as parallel kernels

    Returns:
        float32 array (n_tiles_y, n_tiles_x, n_pos_2d) of sums of absolute
        differences, candidate axis in ``candidate_offsets`` order.
    """
    if reference.shape != alternate.shape:
        raise ValueError(f"level shapes differ: {reference.shape} vs {alternate.shape}")
    if previous.shape != (geometry.n_tiles_y, geometry.n_tiles_x, 2):
        raise ValueError(
            f"alignment field {previous.shape[:2]} does not match tile grid {geometry.grid_shape}"
        )

    ny, nx = geometry.grid_shape
    T = geometry.tile_size
    if context is not None:
        # each running kernel holds two int64 index arrays plus the gathered
        # samples and their float32 differences, all of shape (ny, nx, T, T)
        per_kernel = ny * nx * T * T * (8 * 2 + 4 * 2)
        concurrent = min(context.max_workers, geometry.n_pos_2d)
        context.check_allocation(
            ny * nx * T * T * 4 + per_kernel * concurrent + ny * nx * geometry.n_pos_2d * 4,
            "tile difference buffers",
        )

    h, w = alternate.shape
    ref_tiles = extract_tiles(reference, geometry)

    ys, xs = _tile_axes(geometry)
    base = previous.astype(np.int64) * int(downscale_factor)
    base_y = ys[:, None, :, None] + base[:, :, 0, None, None]
    base_x = xs[None, :, None, :] + base[:, :, 1, None, None]

    offsets = candidate_offsets(geometry.search_radius)

    def kernel(candidate: int) -> np.ndarray:
        dy, dx = offsets[candidate]
        yi = np.clip(base_y + dy, 0, h - 1)
        xi = np.clip(base_x + dx, 0, w - 1)
        diff = np.abs(ref_tiles - alternate[yi, xi])
        return diff.sum(axis=(2, 3), dtype=np.float64).astype(np.float32)

    planes = _dispatch(context, kernel, range(len(offsets)))
    return np.stack(planes, axis=-1)


def select_alignment(
    costs: np.ndarray,
    previous: np.ndarray,
    geometry: TileGeometry,
    downscale_factor: int,
) -> np.ndarray:
    """
    Pick the cheapest candidate per tile and compose it with the coarse estimate.

    Ties go to the candidate of smallest magnitude, then to the smallest
    ``(dy, dx)`` in lexicographic order.

    Returns:
        int32 alignment field (n_tiles_y, n_tiles_x, 2)
    """
    if costs.shape != (geometry.n_tiles_y, geometry.n_tiles_x, geometry.n_pos_2d):
        raise ValueError(f"cost volume shape {costs.shape} does not match tile geometry")
    order = candidate_priority(geometry.search_radius)
    best = order[np.argmin(costs[..., order], axis=-1)]
    delta = candidate_offsets(geometry.search_radius)[best]
    return (previous.astype(np.int32) * int(downscale_factor) + delta).astype(np.int32)


def align_frame(
    reference: Pyramid,
    alternate: Pyramid,
    schedule: AlignmentSchedule,
    context: Any = None,
) -> Tuple[np.ndarray, TileGeometry]:
    """
    Coarse-to-fine alignment of one alternate frame against the reference.

    Returns:
        (alignment field of the finest level, tile geometry of that level)
    """
    if alternate.num_alignment_levels != schedule.num_levels:
        raise ValueError("alternate pyramid was not built with the reference schedule")

    field: Optional[np.ndarray] = None
    geometry: Optional[TileGeometry] = None
    coarsest = schedule.num_levels - 1

    for level in range(coarsest, -1, -1):
        ref_level = reference.alignment_level(level).data
        alt_level = alternate.alignment_level(level).data
        geometry = schedule.geometry(level, ref_level.shape)

        factor = 0 if level == coarsest else schedule.downscale_factors[level + 1]
        previous = upsample_alignment(field, geometry.n_tiles_y, geometry.n_tiles_x)

        costs = tile_differences(ref_level, alt_level, previous, geometry, factor, context)
        field = select_alignment(costs, previous, geometry, factor)
        logger.debug(
            "level %d: %dx%d tiles of %d px, mean |offset| %.2f",
            level, geometry.n_tiles_x, geometry.n_tiles_y, geometry.tile_size,
            float(np.abs(field).mean()),
        )

    return field, geometry
