import numpy as np
import pytest

from burst_stack_backend.frame import Frame
from burst_stack_backend.synthetic import generate_burst
from burst_stack_backend.tile_grid import tile_geometry
from burst_stack_backend.warp import tile_window, warp_frame


def _field(geometry, dy, dx):
    field = np.zeros((geometry.n_tiles_y, geometry.n_tiles_x, 2), dtype=np.int32)
    field[..., 0] = dy
    field[..., 1] = dx
    return field


class TestTileWindow:
    def test_half_overlap_sums_to_one(self):
        for size in (8, 16, 32):
            w = tile_window(size)
            half = size // 2
            np.testing.assert_allclose(w[:half] + w[half:], 1.0, atol=1e-12)

    def test_symmetric_and_positive(self):
        w = tile_window(16)
        np.testing.assert_allclose(w, w[::-1], atol=1e-12)
        assert np.all(w > 0)


class TestWarpFrame:
    def setup_method(self):
        np.random.seed(42)
        self.frame = Frame(np.random.uniform(0, 4000, (128, 128)).astype(np.float32))
        self.geometry = tile_geometry((64, 64), tile_size=16, search_radius=2)

    def test_zero_field_is_identity(self):
        out = warp_frame(self.frame, _field(self.geometry, 0, 0), self.geometry)
        assert out.shape == self.frame.shape
        assert out.data.dtype == np.float32
        np.testing.assert_allclose(out.data, self.frame.data, atol=1e-3)

    def test_uniform_field_is_translation(self):
        out = warp_frame(self.frame, _field(self.geometry, 1, -1), self.geometry)
        rows = np.clip(np.arange(128) + 2, 0, 127)
        cols = np.clip(np.arange(128) - 2, 0, 127)
        expected = self.frame.data[rows[:, None], cols[None, :]]
        np.testing.assert_allclose(out.data, expected, atol=1e-3)

    def test_pixels_past_last_tile(self):
        frame = Frame(np.random.uniform(0, 4000, (70, 66)).astype(np.float32))
        geometry = tile_geometry((35, 33), tile_size=16, search_radius=2)
        out = warp_frame(frame, _field(geometry, 0, 0), geometry)
        np.testing.assert_allclose(out.data, frame.data, atol=1e-3)

    def test_no_seams_between_tiles(self):
        field = _field(self.geometry, 0, 0)
        field[:, 4:] = (0, 1)
        ramp = np.tile(np.arange(128, dtype=np.float32) * 10.0, (128, 1))
        out = warp_frame(Frame(ramp), field, self.geometry)
        # horizontal steps never exceed the ramp step plus the one pixel offset
        steps = np.diff(out.data[:, 4:-4], axis=1)
        assert steps.min() >= 10.0 - 1e-3
        assert steps.max() <= 30.0 + 1e-3

    def test_realigns_shifted_frame(self):
        ref_raw, alt_raw = generate_burst((128, 128), 2, shifts=[(0, 0), (4, -2)], seed=1)
        ref = Frame.from_bayer(ref_raw)
        alt = Frame.from_bayer(alt_raw)
        out = warp_frame(alt, _field(self.geometry, 2, -1), self.geometry)
        np.testing.assert_allclose(out.data[:-4, 2:], ref.data[:-4, 2:], atol=1e-3)

    def test_field_mismatch(self):
        with pytest.raises(ValueError):
            warp_frame(self.frame, np.zeros((2, 2, 2), dtype=np.int32), self.geometry)
