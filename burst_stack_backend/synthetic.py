"""
Synthetic bursts for tests and demos.
"""
from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy.ndimage import gaussian_filter

from burst_stack_backend.frame import UINT16_MAX


def textured_scene(
    shape: Tuple[int, int],
    seed: int = 0,
    level: float = 1000.0,
    contrast: float = 400.0,
    sigma: float = 3.0,
) -> np.ndarray:
    """Smooth random texture, float64, roughly ``level +- contrast``."""
    rng = np.random.default_rng(seed)
    base = gaussian_filter(rng.standard_normal(shape), sigma=sigma, mode="reflect")
    base /= max(float(np.abs(base).max()), 1e-12)
    return level + contrast * base


def generate_burst(
    shape: Tuple[int, int],
    n_frames: int,
    shifts: Optional[Sequence[Tuple[int, int]]] = None,
    noise_sigma: float = 0.0,
    seed: int = 0,
    level: float = 1000.0,
    contrast: float = 400.0,
) -> List[np.ndarray]:
    """
    Generate a burst of 16-bit mosaics of one static scene.

    Frame ``i`` shows the scene translated by ``shifts[i] = (dy, dx)``: its
    pixel at ``p + (dy, dx)`` shows what the unshifted scene shows at ``p``.
    The scene extends past the frame so translations bring in real content.

    Args:
        shape: (height, width) of every frame
        n_frames: Number of frames
        shifts: Integer translation per frame (default: none)
        noise_sigma: Standard deviation of additive Gaussian noise
        seed: Seed for scene and noise
        level: Mean intensity
        contrast: Texture amplitude

    Returns:
        List of uint16 arrays
    """
    if shifts is None:
        shifts = [(0, 0)] * n_frames
    if len(shifts) != n_frames:
        raise ValueError(f"expected {n_frames} shifts, got {len(shifts)}")

    h, w = shape
    margin = max([abs(int(v)) for s in shifts for v in s] + [0])
    scene = textured_scene((h + 2 * margin, w + 2 * margin), seed, level, contrast)
    rng = np.random.default_rng(seed + 1)

    frames = []
    for dy, dx in shifts:
        y0 = margin - int(dy)
        x0 = margin - int(dx)
        img = scene[y0:y0 + h, x0:x0 + w].copy()
        if noise_sigma > 0:
            img += rng.normal(0.0, noise_sigma, size=img.shape)
        frames.append(np.clip(np.rint(img), 0, UINT16_MAX).astype(np.uint16))
    return frames
