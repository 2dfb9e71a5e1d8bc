import numpy as np
import pytest

from burst_stack_backend.noise import color_difference, estimate_noise, mosaic_blur
from burst_stack_backend.synthetic import generate_burst


def _mosaic(shape, values):
    """Mosaic with a constant value per colour plane."""
    data = np.zeros(shape, dtype=np.float32)
    data[0::2, 0::2] = values[0]
    data[0::2, 1::2] = values[1]
    data[1::2, 0::2] = values[2]
    data[1::2, 1::2] = values[3]
    return data


class TestMosaicBlur:
    def test_constant_frame_unchanged(self):
        data = np.full((32, 32), 123.0, dtype=np.float32)
        np.testing.assert_allclose(mosaic_blur(data, 5), data, atol=1e-3)

    def test_colour_planes_not_mixed(self):
        data = _mosaic((32, 32), (100.0, 200.0, 300.0, 400.0))
        np.testing.assert_allclose(mosaic_blur(data, 5), data, atol=1e-3)

    def test_kernel_size_one_is_identity(self):
        np.random.seed(0)
        data = np.random.uniform(0, 100, (16, 16)).astype(np.float32)
        np.testing.assert_allclose(mosaic_blur(data, 1), data, atol=1e-4)

    def test_smooths_noise(self):
        np.random.seed(0)
        data = np.random.normal(1000.0, 50.0, (64, 64)).astype(np.float32)
        assert mosaic_blur(data, 5).std() < data.std() / 2


class TestColorDifference:
    def test_cell_sum(self):
        a = np.ones((4, 6), dtype=np.float32)
        b = np.zeros((4, 6), dtype=np.float32)
        diff = color_difference(a, b)
        assert diff.shape == (2, 3)
        np.testing.assert_allclose(diff, 4.0)

    def test_absolute(self):
        a = _mosaic((4, 4), (1.0, -2.0, 3.0, -4.0))
        diff = color_difference(a, np.zeros_like(a))
        np.testing.assert_allclose(diff, 10.0)


class TestEstimateNoise:
    def test_flat_frame_has_no_noise(self):
        data = np.full((32, 32), 500.0, dtype=np.float32)
        assert estimate_noise(data, mosaic_blur(data)) == pytest.approx(0.0, abs=1e-3)

    def test_grows_with_noise_level(self):
        estimates = []
        for sigma in (2.0, 8.0, 32.0):
            raw, = generate_burst((64, 64), 1, noise_sigma=sigma, seed=5, contrast=0.0)
            data = raw.astype(np.float32)
            estimates.append(estimate_noise(data, mosaic_blur(data)))
        assert estimates[0] < estimates[1] < estimates[2]
        assert isinstance(estimates[0], float)
