import logging
import sys
from pathlib import Path

import numpy as np
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(PROJECT_ROOT / "code"))
from bin_geometry import PolygonGeometry  # noqa: E402
from overflow import OverflowRegion  # noqa: E402
from polyprofile import PolyProfile  # noqa: E402
from statbin import ErrorMode  # noqa: E402


def make_quadrants(cells: int = 25) -> PolyProfile:
    """Domain [0, 10]^2 split into four square bins, numbered row by row from the bottom."""
    profile = PolyProfile(0.0, 10.0, 0.0, 10.0, cells_x=cells, cells_y=cells)
    profile.add_rectangle(0, 0, 5, 5)
    profile.add_rectangle(5, 0, 10, 5)
    profile.add_rectangle(0, 5, 5, 10)
    profile.add_rectangle(5, 5, 10, 10)
    return profile


def make_triangles(n: int = 4) -> PolyProfile:
    """Domain [0, 10]^2 tiled by n*n squares, each cut into two triangles."""
    profile = PolyProfile(0.0, 10.0, 0.0, 10.0, cells_x=7, cells_y=5)
    step = 10.0 / n
    for j in range(n):
        for i in range(n):
            x0, y0 = i * step, j * step
            x1, y1 = x0 + step, y0 + step
            profile.add_polygon([[x0, y0], [x1, y0], [x1, y1]])
            profile.add_polygon([[x0, y0], [x1, y1], [x0, y1]])
    return profile


# =============================================================================
# Construction
# =============================================================================

class TestConstruction:
    def test_bins_are_numbered_from_one(self):
        profile = make_quadrants()
        assert profile.number_of_bins == 4
        assert [b.index for b in profile.bins] == [1, 2, 3, 4]

    def test_add_bin_returns_the_bin(self):
        profile = PolyProfile(0, 1, 0, 1)
        b = profile.add_polygon([[0, 0], [1, 0], [0, 1]])
        assert b is profile.bins[0]
        assert isinstance(b.geometry, PolygonGeometry)

    def test_invalid_domain(self):
        with pytest.raises(ValueError):
            PolyProfile(1.0, 1.0, 0.0, 1.0)
        with pytest.raises(ValueError):
            PolyProfile(0.0, 1.0, 2.0, 1.0)

    def test_invalid_partition(self):
        with pytest.raises(ValueError):
            PolyProfile(0, 1, 0, 1, cells_x=0)

    def test_bin_registered_in_every_overlapping_cell(self):
        profile = PolyProfile(0.0, 10.0, 0.0, 10.0, cells_x=4, cells_y=4)
        profile.add_rectangle(0, 0, 10, 10)
        profile.add_rectangle(0, 0, 2, 2)
        assert profile.candidates(9.9, 9.9) == [0]
        assert profile.candidates(0.1, 0.1) == [0, 1]
        assert profile.candidates(3.0, 0.1) == [0]

    def test_outside_bins_registered_in_edge_cells(self):
        profile = PolyProfile(0.0, 10.0, 0.0, 10.0, cells_x=4, cells_y=4)
        profile.add_rectangle(-10, -10, -1, -1)
        assert profile.candidates(0.0, 0.0) == [0]
        assert profile.candidates(-5.0, -5.0) == [0]


# =============================================================================
# Filling
# =============================================================================

class TestFill:
    def test_single_bin_average_and_entries(self):
        profile = PolyProfile(0.0, 10.0, 0.0, 10.0)
        profile.add_rectangle(0, 0, 10, 10)
        assert profile.fill(1, 1, 10, 1) is OverflowRegion.INSIDE
        assert profile.fill(1, 1, 20, 1) == -5
        assert profile.bin_average(1) == pytest.approx(15.0)
        assert profile.bin_entries(1) == 2
        assert profile.bin_content(1) == pytest.approx(15.0)
        assert profile.entries == 2

    def test_empty_profile_only_updates_global_sums(self):
        profile = PolyProfile(0.0, 10.0, 0.0, 10.0)
        region = profile.fill(3.0, 4.0, 2.0, 0.5)
        assert region is OverflowRegion.NONE
        assert region == 0
        assert profile.entries == 0
        np.testing.assert_allclose(profile.overflow_contents(), np.zeros((3, 3)))
        assert profile.stats()[0] == 0.5
        assert profile.stats()[7] == 1.0

    def test_far_outside_point_goes_to_compass_overflow(self):
        profile = make_quadrants()
        region = profile.fill(10.0 + 1000.0, 5.0, 3.0)
        assert region is OverflowRegion.RIGHT
        assert profile.overflow_bin(OverflowRegion.RIGHT).entries == 1
        assert profile.bin_entries(-6) == 1
        assert profile.bin_average(-6) == pytest.approx(3.0)
        assert all(b.entries == 0 for b in profile.bins)
        assert profile.entries == 0
        assert profile.stats()[0] == 1

    def test_in_domain_fill_also_counts_in_inside_region(self):
        profile = make_quadrants()
        profile.fill(2.0, 2.0, 1.0)
        assert profile.bin_entries(1) == 1
        assert profile.bin_entries(OverflowRegion.INSIDE) == 1

    def test_point_outside_every_polygon_is_dropped(self):
        profile = PolyProfile(0.0, 10.0, 0.0, 10.0)
        profile.add_polygon([[0, 0], [10, 0], [0, 10]])
        region = profile.fill(9.0, 9.0, 4.0)
        assert region is OverflowRegion.INSIDE
        assert profile.bin_entries(1) == 0
        assert profile.entries == 0
        assert profile.stats()[0] == 1

    def test_overlapping_bins_all_receive_the_sample(self):
        profile = PolyProfile(0.0, 10.0, 0.0, 10.0)
        profile.add_rectangle(0, 0, 6, 6)
        profile.add_rectangle(4, 4, 10, 10)
        profile.fill(5.0, 5.0, 7.0)
        assert profile.bin_entries(1) == 1
        assert profile.bin_entries(2) == 1
        assert profile.entries == 2

    def test_outside_coordinates_use_nearest_edge_cell(self):
        profile = PolyProfile(0.0, 10.0, 0.0, 10.0, cells_x=4, cells_y=4)
        profile.add_rectangle(-10, -10, -1, -1)
        assert profile.fill(-5.0, -5.0, 2.0) is OverflowRegion.BELOW_LEFT
        assert profile.bin_entries(1) == 1
        assert profile.bin_entries(-7) == 1

    def test_global_stats_order(self):
        profile = make_quadrants()
        profile.fill(2.0, 3.0, 4.0, weight=2.0)
        np.testing.assert_allclose(
            profile.stats(), [2.0, 4.0, 4.0, 8.0, 6.0, 18.0, 12.0, 8.0, 32.0]
        )

    def test_stats_returns_a_copy(self):
        profile = make_quadrants()
        stats = profile.stats()
        stats[0] = 99.0
        assert profile.stats()[0] == 0.0

    def test_mean_and_std(self):
        profile = make_quadrants()
        profile.fill(1.0, 2.0, 10.0)
        profile.fill(3.0, 2.0, 20.0)
        assert profile.mean("x") == pytest.approx(2.0)
        assert profile.std("x") == pytest.approx(1.0)
        assert profile.mean("y") == pytest.approx(2.0)
        assert profile.std("y") == pytest.approx(0.0, abs=1e-7)
        assert profile.mean("z") == pytest.approx(15.0)
        assert profile.std("z") == pytest.approx(5.0)
        with pytest.raises(ValueError):
            profile.mean("w")

    def test_mean_of_empty_profile(self):
        profile = make_quadrants()
        assert profile.mean("x") == 0.0
        assert profile.std("z") == 0.0

    def test_fill_many_matches_repeated_fill(self):
        rng = np.random.default_rng(11)
        x = rng.uniform(-2, 12, 200)
        y = rng.uniform(-2, 12, 200)
        v = rng.normal(5, 2, 200)
        w = rng.uniform(0.5, 1.5, 200)

        batch = make_quadrants()
        regions = batch.fill_many(x, y, v, w)
        single = make_quadrants()
        expected = [single.fill(*args) for args in zip(x, y, v, w)]

        np.testing.assert_array_equal(regions, expected)
        np.testing.assert_allclose(batch.stats(), single.stats())
        for a, b in zip(batch.bins, single.bins):
            assert a.sumw == pytest.approx(b.sumw)
            assert a.average == pytest.approx(b.average)

    def test_fill_many_shape_mismatch(self):
        with pytest.raises(ValueError):
            make_quadrants().fill_many([1.0, 2.0], [1.0], [1.0, 2.0])

    def test_fill_many_keeps_input_shape(self):
        profile = make_quadrants()
        x = np.array([[1.0, 7.0], [1.0, 20.0]])
        y = np.full((2, 2), 1.0)
        regions = profile.fill_many(x, y, np.full((2, 2), 3.0))
        assert regions.shape == (2, 2)
        np.testing.assert_array_equal(regions, [[-5, -5], [-5, -6]])
        assert profile.bin_entries(1) == 2.0
        assert profile.bin_entries(2) == 1.0
        assert profile.entries == 3

    def test_fill_many_scalar_input(self):
        profile = make_quadrants()
        regions = profile.fill_many(7.0, 7.0, 2.0)
        assert regions.shape == ()
        assert int(regions) == OverflowRegion.INSIDE
        assert profile.bin_entries(4) == 1.0

    def test_point_on_shared_vertical_edge_fills_one_bin(self):
        profile = PolyProfile(0.0, 10.0, 0.0, 10.0)
        profile.add_rectangle(0, 0, 5, 10)
        profile.add_rectangle(5, 0, 10, 10)
        profile.fill(5.0, 3.0, 1.0)
        assert profile.entries == 1
        assert profile.bin_entries(1) + profile.bin_entries(2) == 1.0
        assert profile.bin_entries(2) == 1.0

    def test_point_on_shared_diagonal_fills_one_bin(self):
        profile = PolyProfile(0.0, 10.0, 0.0, 10.0)
        profile.add_polygon([[0, 0], [10, 0], [10, 10]])
        profile.add_polygon([[0, 0], [10, 10], [0, 10]])
        profile.fill(4.0, 4.0, 1.0)
        assert profile.entries == 1
        assert profile.bin_entries(1) + profile.bin_entries(2) == 1.0

    def test_tiling_vertices_fill_one_bin_each(self):
        profile = make_triangles()
        grid = np.arange(0.0, 10.0, 2.5)
        xx, yy = np.meshgrid(grid, grid)
        profile.fill_many(xx, yy, np.ones_like(xx))
        assert profile.entries == xx.size
        assert sum(b.entries for b in profile.bins) == xx.size

    def test_grid_lookup_matches_brute_force(self):
        profile = make_triangles()
        rng = np.random.default_rng(5)
        pts = rng.uniform(0.0, 10.0, size=(500, 2))
        profile.fill_many(pts[:, 0], pts[:, 1], np.ones(len(pts)))

        expected = np.zeros(profile.number_of_bins)
        for x, y in pts:
            for b in profile.bins:
                if b.geometry.contains(x, y):
                    expected[b.index - 1] += 1
        np.testing.assert_array_equal([b.entries for b in profile.bins], expected)
        assert expected.sum() == len(pts)

    def test_change_partition_keeps_lookup(self):
        profile = make_triangles()
        rng = np.random.default_rng(8)
        pts = rng.uniform(0.0, 10.0, size=(100, 2))
        before = [profile.find_bin(x, y) for x, y in pts]
        profile.change_partition(2, 3)
        assert (profile.cells_x, profile.cells_y) == (2, 3)
        assert [profile.find_bin(x, y) for x, y in pts] == before


# =============================================================================
# Lookup and accessors
# =============================================================================

class TestAccessors:
    def test_find_bin(self):
        profile = make_quadrants()
        assert profile.find_bin(2.0, 2.0) == 1
        assert profile.find_bin(7.0, 2.0) == 2
        assert profile.find_bin(7.0, 7.0) == 4
        assert profile.find_bin(20.0, 5.0) == OverflowRegion.RIGHT

    def test_find_bin_inside_domain_without_polygon(self):
        profile = PolyProfile(0.0, 10.0, 0.0, 10.0)
        profile.add_rectangle(0, 0, 1, 1)
        assert profile.find_bin(5.0, 5.0) == OverflowRegion.INSIDE

    def test_out_of_range_indices_return_zero(self):
        profile = make_quadrants()
        profile.fill(1.0, 1.0, 3.0)
        profile.fill(1.0, 1.0, 5.0)
        for bad in (0, 5, 100, -10, -1000):
            assert profile.bin_entries(bad) == 0.0
            assert profile.bin_effective_entries(bad) == 0.0
            assert profile.bin_entries_w2(bad) == 0.0
            assert profile.bin_entries_vw(bad) == 0.0
            assert profile.bin_entries_wv2(bad) == 0.0
            assert profile.bin_error(bad) == 0.0
            assert profile.bin_average(bad) == 0.0
            assert profile.bin_content(bad) == 0.0

    def test_bin_accessors(self):
        profile = make_quadrants()
        profile.fill(1.0, 1.0, 3.0, weight=2.0)
        profile.fill(1.0, 1.0, 5.0, weight=1.0)
        assert profile.bin_entries(1) == 3.0
        assert profile.bin_entries_w2(1) == 5.0
        assert profile.bin_entries_vw(1) == 11.0
        assert profile.bin_entries_wv2(1) == 2 * 9 + 25
        assert profile.bin_effective_entries(1) == pytest.approx(9.0 / 5.0)
        mean = 11.0 / 3.0
        assert profile.bin_error(1) == pytest.approx(np.sqrt(43.0 / 3.0 - mean ** 2))

    def test_overflow_accessors(self):
        profile = make_quadrants()
        profile.fill(-1.0, 20.0, 4.0)
        assert profile.bin_entries(-1) == 1.0
        assert profile.bin_effective_entries(-1) == 1.0
        assert profile.bin_entries_vw(-1) == 4.0
        assert profile.bin_error(-1) == 0.0

    def test_bin_records(self):
        profile = make_quadrants()
        profile.fill(7.0, 7.0, 2.0)
        records = list(profile.bin_records())
        assert len(records) == 4
        assert records[3] == (4, 2.0, 0.0, 1.0)


# =============================================================================
# Error mode, content and reset
# =============================================================================

class TestConfiguration:
    def test_set_error_mode_applies_to_existing_and_new_bins(self):
        profile = make_quadrants()
        for v in (1.0, 2.0, 3.0, 4.0):
            profile.fill(1.0, 1.0, v)
        spread = profile.bin_error(1)

        profile.set_error_mode(ErrorMode.MEAN)
        profile.set_content_to_error()
        assert profile.bin_error(1) == pytest.approx(spread / 2.0)
        assert profile.bin_content(1) == pytest.approx(spread / 2.0)
        assert all(b.error_mode is ErrorMode.MEAN for b in profile.bins)
        assert profile.overflow_bin(OverflowRegion.INSIDE).error_mode is ErrorMode.MEAN

        added = profile.add_rectangle(20, 20, 30, 30)
        assert added.error_mode is ErrorMode.MEAN

    def test_set_content_to_average(self):
        profile = make_quadrants()
        profile.fill(1.0, 1.0, 2.0)
        profile.fill(1.0, 1.0, 4.0)
        profile.set_content_to_error()
        assert profile.bin_content(1) == pytest.approx(1.0)
        profile.set_content_to_average()
        assert profile.bin_content(1) == pytest.approx(3.0)

    def test_reset_keeps_bins_and_grid(self):
        profile = make_quadrants()
        profile.fill(1.0, 1.0, 2.0)
        profile.fill(20.0, 1.0, 2.0)
        profile.reset()

        assert profile.number_of_bins == 4
        assert profile.entries == 0
        np.testing.assert_allclose(profile.stats(), np.zeros(9))
        np.testing.assert_allclose(profile.overflow_contents(), np.zeros((3, 3)))
        assert all(b.sumw == 0 and b.content == 0 for b in profile.bins)

        profile.fill(7.0, 7.0, 9.0)
        assert profile.bin_average(4) == pytest.approx(9.0)


# =============================================================================
# Overflow summary
# =============================================================================

def test_overflow_contents_layout() -> None:
    profile = make_quadrants()
    profile.fill(-1.0, 11.0, 1.0)          # above-left
    profile.fill(11.0, -1.0, 1.0, 2.0)     # below-right
    profile.fill(5.0, 5.0, 1.0)            # inside
    table = profile.overflow_contents()
    assert table.shape == (3, 3)
    assert table[0, 0] == 1.0
    assert table[2, 2] == 2.0
    assert table[1, 1] == 1.0
    assert table.sum() == 4.0


def test_log_overflow_regions(caplog) -> None:
    profile = make_quadrants()
    profile.fill(-1.0, 5.0, 1.0)
    profile.fill(5.0, 20.0, 1.0)
    with caplog.at_level(logging.INFO, logger="polyprofile"):
        total = profile.log_overflow_regions()
    assert total == 2.0
    assert "Total: 2" in caplog.text
