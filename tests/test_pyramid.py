import numpy as np
import pytest

from burst_stack_backend.frame import Frame
from burst_stack_backend.pyramid import average_pool, build_pyramid, pyramid_nbytes
from burst_stack_backend.tile_grid import build_schedule


class TestAveragePool:
    def test_block_mean(self):
        data = np.arange(16, dtype=np.float32).reshape(4, 4)
        pooled = average_pool(data, 2)
        np.testing.assert_allclose(pooled, [[2.5, 4.5], [10.5, 12.5]])
        assert pooled.dtype == np.float32

    def test_incomplete_blocks_dropped(self):
        data = np.ones((5, 7), dtype=np.float32)
        assert average_pool(data, 2).shape == (2, 3)

    def test_factor_one_copies(self):
        data = np.ones((4, 4), dtype=np.float32)
        pooled = average_pool(data, 1)
        assert pooled is not data
        np.testing.assert_array_equal(pooled, data)

    def test_too_small(self):
        with pytest.raises(ValueError):
            average_pool(np.ones((1, 4), dtype=np.float32), 2)


class TestBuildPyramid:
    def setup_method(self):
        np.random.seed(42)
        self.frame = Frame(np.random.uniform(0, 1000, (256, 256)).astype(np.float32))
        self.schedule = build_schedule(256, 256)

    def test_level_shapes(self):
        pyramid = build_pyramid(self.frame, self.schedule)
        assert [lvl.shape for lvl in pyramid.levels] == [(256, 256), (128, 128), (64, 64)]
        assert pyramid.num_alignment_levels == self.schedule.num_levels

    def test_level_zero_is_full_resolution(self):
        pyramid = build_pyramid(self.frame, self.schedule)
        assert pyramid.levels[0] is self.frame
        assert pyramid.alignment_level(0).shape == (128, 128)

    def test_mean_preserved(self):
        pyramid = build_pyramid(self.frame, self.schedule)
        for lvl in pyramid.levels:
            assert abs(float(lvl.data.mean(dtype=np.float64)) - float(self.frame.data.mean(dtype=np.float64))) < 0.05

    def test_mosaic_period_carried(self):
        pyramid = build_pyramid(self.frame, self.schedule)
        assert all(lvl.mosaic_period == 2 for lvl in pyramid.levels)

    def test_nbytes(self):
        # 128*128 + 64*64 float32
        assert pyramid_nbytes((256, 256), self.schedule) == (128 * 128 + 64 * 64) * 4
