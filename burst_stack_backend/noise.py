"""
Mosaic-aware blur, colour difference and noise floor estimation.

All operations work per colour plane of the mosaic so that samples of
different colour filters are never mixed.
"""
import numpy as np
import cv2

DEFAULT_KERNEL_SIZE = 5


def mosaic_blur(data: np.ndarray, kernel_size: int = DEFAULT_KERNEL_SIZE, mosaic_period: int = 2) -> np.ndarray:
    """
    Separable box blur of each colour plane.

    Args:
        data: Mosaic frame (2D)
        kernel_size: Box width in samples of the same colour
        mosaic_period: Colour filter period

    Returns:
        Blurred mosaic, float32, same shape
    """
    if kernel_size < 1:
        raise ValueError(f"kernel_size must be >= 1, got {kernel_size}")
    out = np.empty(data.shape, dtype=np.float32)
    for oy in range(mosaic_period):
        for ox in range(mosaic_period):
            plane = np.ascontiguousarray(data[oy::mosaic_period, ox::mosaic_period], dtype=np.float32)
            if plane.size == 0:
                continue
            out[oy::mosaic_period, ox::mosaic_period] = cv2.blur(
                plane, (kernel_size, kernel_size), borderType=cv2.BORDER_REPLICATE
            )
    return out


def color_difference(a: np.ndarray, b: np.ndarray, mosaic_period: int = 2) -> np.ndarray:
    """
    Absolute difference summed over each mosaic cell.

    Returns:
        float32 array (H // p, W // p)
    """
    if a.shape != b.shape:
        raise ValueError(f"shapes differ: {a.shape} vs {b.shape}")
    h, w = a.shape
    h2, w2 = h // mosaic_period, w // mosaic_period
    diff = np.abs(
        a[: h2 * mosaic_period, : w2 * mosaic_period].astype(np.float32)
        - b[: h2 * mosaic_period, : w2 * mosaic_period].astype(np.float32)
    )
    cells = diff.reshape(h2, mosaic_period, w2, mosaic_period)
    return cells.sum(axis=(1, 3), dtype=np.float64).astype(np.float32)


def estimate_noise(reference: np.ndarray, reference_blurred: np.ndarray, mosaic_period: int = 2) -> float:
    """
    Noise floor of the burst: mean colour difference between the raw and the
    blurred reference.
    """
    diff = color_difference(reference, reference_blurred, mosaic_period)
    return float(np.mean(diff, dtype=np.float64))
