import numpy as np
import pytest

from burst_runner.compute import ComputeContext
from burst_runner.resources import ResourceManager
from burst_stack_backend.alignment import (
    align_frame,
    candidate_offsets,
    candidate_priority,
    select_alignment,
    tile_differences,
    upsample_alignment,
    zero_field,
)
from burst_stack_backend.frame import Frame
from burst_stack_backend.pyramid import build_pyramid
from burst_stack_backend.synthetic import generate_burst
from burst_stack_backend.tile_grid import build_schedule, tile_geometry


@pytest.fixture
def context():
    with ComputeContext(max_workers=2, resources=ResourceManager(100.0)) as ctx:
        yield ctx


def _pyramids(shape, shift):
    ref_raw, alt_raw = generate_burst(shape, 2, shifts=[(0, 0), shift], seed=7)
    ref = Frame.from_bayer(ref_raw)
    alt = Frame.from_bayer(alt_raw)
    schedule = build_schedule(shape[1], shape[0])
    return build_pyramid(ref, schedule), build_pyramid(alt, schedule), schedule


class TestCandidates:
    def test_index_order(self):
        offsets = candidate_offsets(1)
        assert offsets.shape == (9, 2)
        assert tuple(offsets[0]) == (-1, -1)
        assert tuple(offsets[4]) == (0, 0)
        # c = (dy + r) * (2r + 1) + (dx + r)
        assert tuple(candidate_offsets(2)[(1 + 2) * 5 + (-2 + 2)]) == (1, -2)

    def test_priority_prefers_small_magnitude(self):
        order = candidate_priority(1)
        assert order[0] == 4
        # |d|^2 == 1, then (dy, dx) ascending: (-1,0), (0,-1), (0,1), (1,0)
        assert list(order[1:5]) == [1, 3, 5, 7]


class TestSelectAlignment:
    def setup_method(self):
        self.geometry = tile_geometry((32, 32), tile_size=8, search_radius=1)
        self.shape = (self.geometry.n_tiles_y, self.geometry.n_tiles_x, self.geometry.n_pos_2d)
        self.previous = zero_field(self.geometry.n_tiles_y, self.geometry.n_tiles_x)

    def test_minimum_cost(self):
        costs = np.ones(self.shape, dtype=np.float32)
        costs[..., 2] = 0.0  # (-1, 1)
        field = select_alignment(costs, self.previous, self.geometry, 0)
        assert np.all(field[..., 0] == -1)
        assert np.all(field[..., 1] == 1)

    def test_flat_costs_give_zero_offset(self):
        costs = np.ones(self.shape, dtype=np.float32)
        field = select_alignment(costs, self.previous, self.geometry, 0)
        assert np.all(field == 0)

    def test_tie_prefers_lexicographic_order(self):
        costs = np.ones(self.shape, dtype=np.float32)
        costs[..., 5] = 0.0  # (0, 1)
        costs[..., 7] = 0.0  # (1, 0)
        field = select_alignment(costs, self.previous, self.geometry, 0)
        assert np.all(field[..., 0] == 0)
        assert np.all(field[..., 1] == 1)

    def test_tie_prefers_smaller_magnitude(self):
        costs = np.ones(self.shape, dtype=np.float32)
        costs[..., 0] = 0.0  # (-1, -1)
        costs[..., 1] = 0.0  # (-1, 0)
        field = select_alignment(costs, self.previous, self.geometry, 0)
        assert np.all(field[..., 0] == -1)
        assert np.all(field[..., 1] == 0)

    def test_composes_with_coarse_estimate(self):
        costs = np.ones(self.shape, dtype=np.float32)
        costs[..., 4] = 0.0
        previous = self.previous.copy()
        previous[..., 0] = 1
        previous[..., 1] = 2
        field = select_alignment(costs, previous, self.geometry, 2)
        assert np.all(field[..., 0] == 2)
        assert np.all(field[..., 1] == 4)
        assert field.dtype == np.int32

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            select_alignment(np.ones((2, 2, 9)), self.previous, self.geometry, 0)


class TestUpsampleAlignment:
    def test_none_gives_zero_field(self):
        field = upsample_alignment(None, 3, 4)
        assert field.shape == (3, 4, 2)
        assert np.all(field == 0)

    def test_nearest_neighbour(self):
        field = np.zeros((2, 2, 2), dtype=np.int32)
        field[0, 1] = (1, 2)
        field[1, 0] = (3, 4)
        up = upsample_alignment(field, 4, 4)
        assert up.shape == (4, 4, 2)
        assert tuple(up[0, 3]) == (1, 2)
        assert tuple(up[1, 2]) == (1, 2)
        assert tuple(up[3, 0]) == (3, 4)
        assert tuple(up[3, 3]) == (0, 0)


class TestTileDifferences:
    def setup_method(self):
        ref_raw, = generate_burst((64, 64), 1, seed=3)
        self.level = ref_raw.astype(np.float32)
        self.geometry = tile_geometry(self.level.shape, tile_size=8, search_radius=2)
        self.previous = zero_field(self.geometry.n_tiles_y, self.geometry.n_tiles_x)

    def test_identical_levels(self):
        costs = tile_differences(self.level, self.level, self.previous, self.geometry, 0)
        assert costs.shape == (15, 15, 25)
        assert costs.dtype == np.float32
        assert np.all(costs[..., 12] == 0)
        assert np.all(costs[2:-2, 2:-2, :12] > 0)

    def test_context_matches_serial(self, context):
        alt = np.roll(self.level, (1, -1), axis=(0, 1))
        serial = tile_differences(self.level, alt, self.previous, self.geometry, 0)
        parallel = tile_differences(self.level, alt, self.previous, self.geometry, 0, context)
        np.testing.assert_array_equal(serial, parallel)

    def test_field_mismatch(self):
        with pytest.raises(ValueError):
            tile_differences(self.level, self.level, zero_field(2, 2), self.geometry, 0)

    @pytest.mark.parametrize("workers", [1, 4])
    def test_allocation_check_scales_with_workers(self, workers):
        requests = []

        class RecordingContext(ComputeContext):
            def check_allocation(self, nbytes, what="buffer"):
                requests.append(nbytes)

        with RecordingContext(max_workers=workers, resources=ResourceManager(100.0)) as ctx:
            tile_differences(self.level, self.level, self.previous, self.geometry, 0, ctx)

        tile_elems = 15 * 15 * 8 * 8
        # int64 row and column indices plus float32 samples and differences per running kernel
        assert sum(requests) >= tile_elems * (2 * 8 + 2 * 4) * workers


class TestAlignFrame:
    def test_single_level_shift(self):
        ref_pyr, alt_pyr, schedule = _pyramids((128, 128), (4, -2))
        assert schedule.num_levels == 1
        field, geometry = align_frame(ref_pyr, alt_pyr, schedule)
        assert field.shape == (geometry.n_tiles_y, geometry.n_tiles_x, 2)
        interior = field[1:-1, 1:-1]
        assert np.all(interior[..., 0] == 2)
        assert np.all(interior[..., 1] == -1)

    def test_identical_frames_zero_field(self):
        ref_pyr, alt_pyr, schedule = _pyramids((256, 256), (0, 0))
        field, _ = align_frame(ref_pyr, alt_pyr, schedule)
        assert np.all(field == 0)

    def test_multi_level_shift(self, context):
        ref_pyr, alt_pyr, schedule = _pyramids((512, 512), (16, -8))
        assert schedule.num_levels == 3
        field, geometry = align_frame(ref_pyr, alt_pyr, schedule, context)
        assert geometry.tile_size == 16
        interior = field[2:-2, 2:-2]
        assert np.all(interior[..., 0] == 8)
        assert np.all(interior[..., 1] == -4)

    def test_schedule_mismatch(self):
        ref_pyr, _, schedule = _pyramids((256, 256), (0, 0))
        alt_pyr = build_pyramid(ref_pyr.levels[0], build_schedule(128, 128))
        with pytest.raises(ValueError):
            align_frame(ref_pyr, alt_pyr, schedule)
