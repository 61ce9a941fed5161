"""Tests for GridModel and TimeSeriesStack."""

from __future__ import annotations

import numpy as np
import pytest
import xarray as xr

from climvelocity._types import DistanceFunction
from climvelocity.exceptions import GridError
from climvelocity.geodesy import haversine_km
from climvelocity.grid import GridModel, TimeSeriesStack, to_decimal_years

# ── GridModel construction ──────────────────────────────────────────


@pytest.mark.unit
class TestGridConstruction:
    """Verify grid validation and derived attributes."""

    def test_regular_south_to_north(self) -> None:
        grid = GridModel.regular(nrows=3, ncols=4, x0=0.5, y0=0.5, res=1.0)
        np.testing.assert_allclose(grid.x, [0.5, 1.5, 2.5, 3.5])
        np.testing.assert_allclose(grid.y, [0.5, 1.5, 2.5])
        assert grid.shape == (3, 4)
        assert grid.size == 12
        assert not grid.north_up

    def test_regular_north_up(self) -> None:
        grid = GridModel.regular(nrows=3, ncols=2, x0=0.5, y0=10.5, res=1.0, north_up=True)
        np.testing.assert_allclose(grid.y, [10.5, 9.5, 8.5])
        assert grid.north_up

    def test_default_mask_all_valid(self, planar_grid: GridModel) -> None:
        assert planar_grid.valid.all()

    def test_arrays_read_only(self, planar_grid: GridModel) -> None:
        with pytest.raises(ValueError):
            planar_grid.valid[0, 0] = False
        with pytest.raises(ValueError):
            planar_grid.x[0] = 99.0

    def test_non_increasing_x_rejected(self) -> None:
        with pytest.raises(GridError, match="strictly increasing"):
            GridModel([0.0, 2.0, 1.0], [0.0, 1.0])

    def test_non_monotonic_y_rejected(self) -> None:
        with pytest.raises(GridError, match="strictly monotonic"):
            GridModel([0.0, 1.0], [0.0, 1.0, 0.5])

    def test_latitude_out_of_range_rejected(self) -> None:
        with pytest.raises(GridError, match="Latitudes"):
            GridModel([0.0, 1.0], [89.0, 91.0])

    def test_projected_allows_large_y(self) -> None:
        grid = GridModel([0.0, 1.0], [5000.0, 6000.0], lonlat=False)
        assert grid.distance_function is DistanceFunction.PLANAR

    def test_mask_shape_mismatch_rejected(self) -> None:
        with pytest.raises(GridError, match="mask shape"):
            GridModel([0.0, 1.0], [0.0, 1.0], valid=np.ones((3, 2), dtype=bool))

    def test_empty_coordinates_rejected(self) -> None:
        with pytest.raises(GridError):
            GridModel([], [0.0])

    def test_single_column_needs_explicit_res(self) -> None:
        with pytest.raises(GridError, match="Cannot infer"):
            GridModel([0.0], [0.0, 1.0])
        grid = GridModel([0.0], [0.0, 1.0], res_x=1.0)
        assert grid.res_x == 1.0

    def test_global_grid_wraps(self) -> None:
        grid = GridModel.regular(nrows=2, ncols=36, x0=-175.0, y0=-5.0, res=10.0)
        assert grid.wraps
        regional = GridModel.regular(nrows=2, ncols=10, x0=-175.0, y0=-5.0, res=10.0)
        assert not regional.wraps

    def test_with_mask_combines(self, planar_grid: GridModel) -> None:
        mask = np.ones(planar_grid.shape, dtype=bool)
        mask[2, 2] = False
        masked = planar_grid.with_mask(mask)
        assert not masked.is_valid(2, 2)
        assert masked.is_valid(0, 0)
        assert planar_grid.is_valid(2, 2)

    def test_repr(self, planar_grid: GridModel) -> None:
        text = repr(planar_grid)
        assert "(5, 5)" in text
        assert "projected" in text
        assert "25/25" in text


# ── Adjacency ───────────────────────────────────────────────────────


@pytest.mark.unit
class TestNeighbours:
    """Verify rook/queen adjacency, edges and anti-meridian wrap."""

    def test_rook_corner(self) -> None:
        grid = GridModel.regular(nrows=3, ncols=4, x0=0.5, y0=0.5, res=1.0)
        assert grid.neighbours(0, 0, neighbourhood=4) == [(0, 1), (1, 0)]

    def test_queen_interior(self, planar_grid: GridModel) -> None:
        assert len(planar_grid.neighbours(2, 2)) == 8

    def test_queen_corner(self, planar_grid: GridModel) -> None:
        assert planar_grid.neighbours(4, 4) == [(3, 3), (3, 4), (4, 3)]

    def test_grid_default_neighbourhood(self) -> None:
        grid = GridModel.regular(nrows=3, ncols=3, x0=0.5, y0=0.5, res=1.0, neighbourhood=4)
        assert len(grid.neighbours(1, 1)) == 4

    def test_wrap_across_antimeridian(self) -> None:
        grid = GridModel.regular(nrows=3, ncols=36, x0=-175.0, y0=-10.0, res=10.0)
        assert (1, 35) in grid.neighbours(1, 0, neighbourhood=4)
        assert (1, 0) in grid.neighbours(1, 35, neighbourhood=4)

    def test_no_wrap_across_poles(self) -> None:
        grid = GridModel.regular(nrows=3, ncols=36, x0=-175.0, y0=-80.0, res=10.0)
        rows = {r for r, _ in grid.neighbours(0, 5)}
        assert rows == {0, 1}

    def test_mask_not_applied(self) -> None:
        valid = np.ones((3, 3), dtype=bool)
        valid[0, 1] = False
        grid = GridModel.regular(nrows=3, ncols=3, x0=0.5, y0=0.5, res=1.0, valid=valid)
        assert (0, 1) in grid.neighbours(0, 0)

    def test_axis_neighbours_south_to_north(self) -> None:
        grid = GridModel.regular(nrows=3, ncols=3, x0=0.5, y0=0.5, res=1.0)
        east, west, north, south = grid.axis_neighbours(1, 1)
        assert (east, west, north, south) == ((1, 2), (1, 0), (2, 1), (0, 1))

    def test_axis_neighbours_north_up(self) -> None:
        grid = GridModel.regular(nrows=3, ncols=3, x0=0.5, y0=2.5, res=1.0, north_up=True)
        _, _, north, south = grid.axis_neighbours(1, 1)
        assert north == (0, 1)
        assert south == (2, 1)

    def test_axis_neighbours_edges(self) -> None:
        grid = GridModel.regular(nrows=2, ncols=2, x0=0.5, y0=0.5, res=1.0)
        assert grid.axis_neighbours(0, 0) == ((0, 1), None, (1, 0), None)


# ── Distances and lookups ───────────────────────────────────────────


@pytest.mark.unit
class TestGridGeometry:
    """Verify distances, extents, lookups and areas."""

    def test_planar_distance(self, planar_grid: GridModel) -> None:
        assert planar_grid.distance((0, 0), (3, 4)) == pytest.approx(50.0)

    def test_lonlat_distance(self, lonlat_grid: GridModel) -> None:
        expected = haversine_km(10.5, 45.5, 11.5, 45.5)
        assert lonlat_grid.distance((0, 0), (0, 1)) == pytest.approx(expected)

    def test_extent(self, planar_grid: GridModel) -> None:
        assert planar_grid.extent == (0.0, 50.0, 0.0, 50.0)

    def test_contains(self, planar_grid: GridModel) -> None:
        assert planar_grid.contains(25.0, 25.0)
        assert planar_grid.contains(50.0, 0.0)
        assert not planar_grid.contains(-0.1, 25.0)
        assert not planar_grid.contains(25.0, 50.1)

    def test_nearest_cell(self, planar_grid: GridModel) -> None:
        assert planar_grid.nearest_cell(12.0, 38.0) == (3, 1)

    def test_nearest_cell_outside_is_none(self, planar_grid: GridModel) -> None:
        assert planar_grid.nearest_cell(60.0, 10.0) is None

    def test_nearest_cell_wraps_longitude(self) -> None:
        grid = GridModel.regular(nrows=2, ncols=36, x0=-175.0, y0=-5.0, res=10.0)
        assert grid.nearest_cell(184.0, 0.0) == grid.nearest_cell(-176.0, 0.0)

    def test_flat_index_round_trip(self, lonlat_grid: GridModel) -> None:
        idx = lonlat_grid.flat_index(3, 5)
        assert idx == 3 * 8 + 5
        assert lonlat_grid.cell_from_flat(idx) == (3, 5)

    def test_cell_area_shrinks_poleward(self) -> None:
        grid = GridModel.regular(nrows=3, ncols=2, x0=0.5, y0=0.5, res=30.0)
        assert grid.cell_area(0) > grid.cell_area(1) > grid.cell_area(2)

    def test_global_area_matches_sphere(self) -> None:
        grid = GridModel.regular(nrows=18, ncols=36, x0=-175.0, y0=-85.0, res=10.0)
        total = sum(grid.cell_area(r) for r in range(grid.nrows)) * grid.ncols
        assert total == pytest.approx(4 * np.pi * 6371.0088**2)

    def test_planar_cell_area(self, planar_grid: GridModel) -> None:
        assert planar_grid.cell_area(0) == 100.0

    def test_check_field_shape(self, planar_grid: GridModel) -> None:
        with pytest.raises(GridError, match="does not match grid"):
            planar_grid.check_field(np.zeros((4, 5)), "mean")


@pytest.mark.unit
class TestFromDataArray:
    """Verify the xarray adapter."""

    def test_detects_lonlat_dims(self) -> None:
        data = np.arange(6, dtype=float).reshape(2, 3)
        data[1, 2] = np.nan
        da = xr.DataArray(
            data,
            dims=("lat", "lon"),
            coords={"lat": [10.0, 11.0], "lon": [0.0, 1.0, 2.0]},
        )
        grid = GridModel.from_dataarray(da)
        assert grid.lonlat
        assert grid.shape == (2, 3)
        assert not grid.is_valid(1, 2)

    def test_projected_dims(self) -> None:
        da = xr.DataArray(
            np.zeros((2, 2, 2)),
            dims=("time", "y", "x"),
            coords={"time": [0, 1], "y": [100.0, 200.0], "x": [0.0, 100.0]},
        )
        grid = GridModel.from_dataarray(da)
        assert not grid.lonlat
        assert grid.valid.all()

    def test_unknown_dims_rejected(self) -> None:
        da = xr.DataArray(np.zeros((2, 2)), dims=("a", "b"))
        with pytest.raises(GridError, match="spatial dimensions"):
            GridModel.from_dataarray(da)


# ── TimeSeriesStack ─────────────────────────────────────────────────


@pytest.mark.unit
class TestTimeSeriesStack:
    """Verify stack validation, accessors and mean field."""

    def test_shape_mismatch_rejected(self, planar_grid: GridModel) -> None:
        with pytest.raises(GridError, match="does not match grid"):
            TimeSeriesStack(np.zeros((3, 4, 5)), [0, 1, 2], planar_grid)

    def test_time_length_mismatch_rejected(self, planar_grid: GridModel) -> None:
        with pytest.raises(GridError, match="Time axis"):
            TimeSeriesStack(np.zeros((3, 5, 5)), [0, 1], planar_grid)

    def test_unsorted_times_rejected(self, planar_grid: GridModel) -> None:
        with pytest.raises(GridError, match="strictly increasing"):
            TimeSeriesStack(np.zeros((3, 5, 5)), [0, 2, 1], planar_grid)

    def test_series_and_len(self, linear_stack: TimeSeriesStack) -> None:
        assert len(linear_stack) == 20
        series = linear_stack.series(0, 1)
        assert series[0] == pytest.approx(1.0)
        assert series[1] == pytest.approx(1.2)

    def test_mean_field_skips_nan(self, planar_grid: GridModel) -> None:
        values = np.ones((3, 5, 5))
        values[0, 0, 0] = np.nan
        values[1, 0, 0] = 4.0
        values[:, 1, 1] = np.nan
        stack = TimeSeriesStack(values, [2000, 2001, 2002], planar_grid)
        mean = stack.mean_field()
        assert mean[0, 0] == pytest.approx(2.5)
        assert np.isnan(mean[1, 1])
        assert mean[2, 2] == pytest.approx(1.0)

    def test_mean_field_respects_mask(self) -> None:
        valid = np.array([[True, False]])
        grid = GridModel([0.0, 1.0], [0.0], lonlat=False, valid=valid, res_y=1.0)
        stack = TimeSeriesStack(np.ones((2, 1, 2)), [0, 1], grid)
        assert np.isnan(stack.mean_field()[0, 1])

    def test_datetime_times(self, planar_grid: GridModel) -> None:
        times = np.array(["2000-01-01", "2001-01-01"], dtype="datetime64[D]")
        stack = TimeSeriesStack(np.zeros((2, 5, 5)), times, planar_grid)
        np.testing.assert_allclose(stack.times, [2000.0, 2001.0])

    def test_from_dataarray_orders_dims(self) -> None:
        da = xr.DataArray(
            np.arange(12, dtype=float).reshape(3, 2, 2),
            dims=("time", "lon", "lat"),
            coords={"time": [2000, 2001, 2002], "lon": [0.0, 1.0], "lat": [5.0, 6.0]},
        )
        stack = TimeSeriesStack.from_dataarray(da)
        assert stack.values.shape == (3, 2, 2)
        # value at lon=1, lat=0 index in the source order
        assert stack.values[0, 0, 1] == da.isel(time=0, lon=1, lat=0).item()


@pytest.mark.unit
def test_to_decimal_years_mid_year() -> None:
    times = np.array(["2000-01-01", "2000-07-02"], dtype="datetime64[D]")
    np.testing.assert_allclose(to_decimal_years(times), [2000.0, 2000.5])


@pytest.mark.unit
def test_to_decimal_years_numeric_passthrough() -> None:
    np.testing.assert_array_equal(to_decimal_years([1990, 1991]), [1990.0, 1991.0])
