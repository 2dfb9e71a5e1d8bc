"""
Robust, noise-aware merging of an aligned alternate frame.

The weight of the alternate frame falls off linearly with the colour
difference between the blurred reference and the blurred alternate,
measured in units of the noise floor times the robustness:

    w = clip(1 - d / (sigma * r), 0, 1)

Content that diverges from the reference by more than the tolerated
difference (ghosting, misalignment) is replaced by the reference.
"""
from typing import Tuple, Union

import numpy as np
import cv2

from burst_stack_backend.frame import Frame
from burst_stack_backend.noise import DEFAULT_KERNEL_SIZE, color_difference, mosaic_blur

EPS = 1e-12


def merge_weight(
    diff: Union[np.ndarray, float],
    noise: float,
    robustness: float,
) -> np.ndarray:
    """
    Trust weight of the alternate frame.

    Args:
        diff: Colour difference (scalar or array)
        noise: Noise floor of the burst
        robustness: r in [0, 1]; 0 disables rejection

    Returns:
        float32 weights in [0, 1]; non-increasing in ``diff`` and
        non-decreasing in ``robustness``
    """
    if not 0.0 <= robustness <= 1.0:
        raise ValueError(f"robustness must be in [0, 1], got {robustness}")
    diff = np.asarray(diff, dtype=np.float64)
    if robustness == 0.0:
        return np.ones(diff.shape, dtype=np.float32)
    max_diff = max(float(noise) * float(robustness), EPS)
    weight = 1.0 - np.maximum(diff, 0.0) / max_diff
    return np.clip(weight, 0.0, 1.0).astype(np.float32)


def upsample_weights(weights: np.ndarray, shape: Tuple[int, int]) -> np.ndarray:
    """Bilinear resize of a weight field to ``shape`` (height, width)."""
    h, w = shape
    if weights.shape == (h, w):
        return weights.astype(np.float32, copy=False)
    up = cv2.resize(weights.astype(np.float32), (w, h), interpolation=cv2.INTER_LINEAR)
    return np.clip(up, 0.0, 1.0)


def blend(reference: np.ndarray, alternate: np.ndarray, weights: np.ndarray) -> np.ndarray:
    """``reference * (1 - w) + alternate * w``"""
    ref = reference.astype(np.float64)
    return (ref + weights * (alternate.astype(np.float64) - ref)).astype(np.float32)


def robust_merge(
    reference: Frame,
    reference_blurred: np.ndarray,
    aligned: Frame,
    noise: float,
    robustness: float,
    kernel_size: int = DEFAULT_KERNEL_SIZE,
) -> Frame:
    """
    Merge an aligned alternate frame against the reference.

    Args:
        reference: Reference frame
        reference_blurred: ``mosaic_blur`` of the reference
        aligned: Warped alternate frame
        noise: Noise floor from ``estimate_noise``
        robustness: r in [0, 1]; 0 returns ``aligned`` unchanged
        kernel_size: Blur width, same as used for ``reference_blurred``

    Returns:
        Frame to be added to the accumulator
    """
    if not 0.0 <= robustness <= 1.0:
        raise ValueError(f"robustness must be in [0, 1], got {robustness}")
    if robustness == 0.0:
        return aligned
    if aligned.shape != reference.shape:
        raise ValueError(f"shapes differ: {aligned.shape} vs {reference.shape}")

    period = reference.mosaic_period
    aligned_blurred = mosaic_blur(aligned.data, kernel_size, period)
    diff = color_difference(reference_blurred, aligned_blurred, period)
    weights = upsample_weights(merge_weight(diff, noise, robustness), reference.shape)
    return reference.like(blend(reference.data, aligned.data, weights))
