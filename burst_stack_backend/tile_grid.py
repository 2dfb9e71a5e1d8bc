import numpy as np
from dataclasses import dataclass
from typing import Tuple

DEFAULT_TILE_SIZE = 16
DEFAULT_MIN_TILE_SIZE = 8
DEFAULT_SEARCH_RADIUS = 2
DEFAULT_SEARCH_BOUND = 64


def compute_tile_size(
    image_width: int,
    image_height: int,
    base_size: int = DEFAULT_TILE_SIZE,
    min_size: int = DEFAULT_MIN_TILE_SIZE,
    max_divisor: int = 4
) -> int:
    """
    Derive the finest-level tile size when no override is configured.

    Formula:
        T = floor(clip(T_base, T_min, floor(min(W, H) / D)))
    rounded down to an even value so the half-tile stride is integral.

    Args:
        image_width: Width of the finest alignment level (W)
        image_height: Height of the finest alignment level (H)
        base_size: Preferred tile size (T_base), default 16
        min_size: Minimum tile size (T_min), default 8
        max_divisor: Divisor for the upper bound (D), default 4

    Returns:
        Tile size T
    """
    T_max = int(min(image_width, image_height) // max_divisor)
    T = int(np.floor(np.clip(base_size, min_size, max(T_max, min_size))))
    return T - (T % 2)


def compute_stride(tile_size: int) -> int:
    """
    Tiles overlap by half their size.

    Returns:
        Step S = T / 2
    """
    if tile_size < 2 or tile_size % 2:
        raise ValueError(f"tile_size must be an even number >= 2, got {tile_size}")
    return tile_size // 2


@dataclass(frozen=True)
class TileGeometry:
    tile_size: int
    search_radius: int
    n_tiles_x: int
    n_tiles_y: int

    @property
    def stride(self) -> int:
        return self.tile_size // 2

    @property
    def n_pos_1d(self) -> int:
        return 2 * self.search_radius + 1

    @property
    def n_pos_2d(self) -> int:
        return self.n_pos_1d * self.n_pos_1d

    @property
    def grid_shape(self) -> Tuple[int, int]:
        return self.n_tiles_y, self.n_tiles_x

    def scaled(self, factor: int) -> "TileGeometry":
        """Same tile grid expressed at a resolution ``factor`` times finer."""
        return TileGeometry(
            tile_size=self.tile_size * factor,
            search_radius=self.search_radius,
            n_tiles_x=self.n_tiles_x,
            n_tiles_y=self.n_tiles_y,
        )


def tile_geometry(shape: Tuple[int, int], tile_size: int, search_radius: int) -> TileGeometry:
    """
    Tile grid for one pyramid level.

    With stride S = T / 2 the grid holds floor(dim / S) - 1 tiles per axis,
    never fewer than one.
    """
    if search_radius < 0:
        raise ValueError(f"search_radius must be >= 0, got {search_radius}")
    h, w = shape
    step = compute_stride(tile_size)
    n_x = max(1, w // step - 1)
    n_y = max(1, h // step - 1)
    return TileGeometry(tile_size, search_radius, n_x, n_y)


@dataclass(frozen=True)
class AlignmentSchedule:
    """
    Per-level parameters of the coarse-to-fine search.

    Index 0 is the finest alignment level (the frame pooled by the mosaic
    period); the last index is the coarsest.
    """
    downscale_factors: Tuple[int, ...]
    tile_sizes: Tuple[int, ...]
    search_radii: Tuple[int, ...]
    search_bound: int = DEFAULT_SEARCH_BOUND

    def __post_init__(self):
        n = len(self.downscale_factors)
        if n == 0 or len(self.tile_sizes) != n or len(self.search_radii) != n:
            raise ValueError("schedule lists must be non-empty and of equal length")

    @property
    def num_levels(self) -> int:
        return len(self.downscale_factors)

    @property
    def mosaic_period(self) -> int:
        return self.downscale_factors[0]

    def geometry(self, level: int, shape: Tuple[int, int]) -> TileGeometry:
        return tile_geometry(shape, self.tile_sizes[level], self.search_radii[level])

    def to_dict(self) -> dict:
        return {
            "downscale_factors": list(self.downscale_factors),
            "tile_sizes": list(self.tile_sizes),
            "search_radii": list(self.search_radii),
            "search_bound": self.search_bound,
            "num_levels": self.num_levels,
        }


def build_schedule(
    image_width: int,
    image_height: int,
    tile_size: int = DEFAULT_TILE_SIZE,
    mosaic_period: int = 2,
    search_bound: int = DEFAULT_SEARCH_BOUND,
    search_radius: int = DEFAULT_SEARCH_RADIUS,
    min_tile_size: int = DEFAULT_MIN_TILE_SIZE,
) -> AlignmentSchedule:
    """
    Derive the pyramid schedule from the reference frame resolution.

    The first level pools by the mosaic period. Further levels pool by 2
    until the shorter side of the current level is <= ``search_bound``;
    each added level halves the tile size, floored at ``min_tile_size``.

    Args:
        image_width: Full resolution width
        image_height: Full resolution height
        tile_size: Finest-level tile size, 0 derives it from the resolution
        mosaic_period: Colour filter period
        search_bound: Shorter side at which pyramid growth stops
        search_radius: Search radius used on every level
        min_tile_size: Floor for the per-level tile size

    Returns:
        AlignmentSchedule
    """
    if mosaic_period < 1:
        raise ValueError(f"mosaic_period must be >= 1, got {mosaic_period}")

    resolution = min(image_width, image_height) // mosaic_period
    if tile_size == 0:
        tile_size = compute_tile_size(
            image_width // mosaic_period,
            image_height // mosaic_period,
            min_size=min_tile_size,
        )
    compute_stride(tile_size)

    factors = [mosaic_period]
    radii = [search_radius]
    tiles = [tile_size]
    while resolution > search_bound:
        factors.append(2)
        radii.append(search_radius)
        tiles.append(max(tiles[-1] // 2, min_tile_size))
        resolution //= 2

    return AlignmentSchedule(tuple(factors), tuple(tiles), tuple(radii), search_bound)
