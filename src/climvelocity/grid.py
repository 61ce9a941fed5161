"""Grid model shared by every climate-velocity component.

``GridModel`` describes a regular rectilinear grid of cell centres with a
validity mask, adjacency rules and distance functions. ``TimeSeriesStack``
binds a ``(time, row, col)`` array of observations to a grid. Both are
immutable once constructed; every component receives them explicitly.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any

import numpy as np
import numpy.typing as npt
import pandas as pd

from climvelocity._types import CellIndex, DistanceFunction, FloatArray
from climvelocity.exceptions import GridError
from climvelocity.geodesy import EARTH_RADIUS_KM, haversine_km, planar_distance

if TYPE_CHECKING:
    import xarray as xr

logger = logging.getLogger(__name__)

_ROOK_OFFSETS: tuple[CellIndex, ...] = ((-1, 0), (0, -1), (0, 1), (1, 0))
_QUEEN_OFFSETS: tuple[CellIndex, ...] = (
    (-1, -1),
    (-1, 0),
    (-1, 1),
    (0, -1),
    (0, 1),
    (1, -1),
    (1, 0),
    (1, 1),
)
_X_NAMES = ("lon", "longitude", "x")
_Y_NAMES = ("lat", "latitude", "y")


def _readonly(array: npt.NDArray[Any]) -> npt.NDArray[Any]:
    array = np.array(array, copy=True)
    array.setflags(write=False)
    return array


def _spacing(coords: FloatArray, name: str, explicit: float | None) -> float:
    """Return the cell size along one axis, checking monotonicity."""
    if explicit is not None:
        if explicit <= 0:
            raise GridError(
                what=f"Invalid cell size along {name}",
                cause=f"Got {explicit}",
                fix="Provide a positive cell size",
            )
        return float(explicit)
    if coords.size < 2:
        raise GridError(
            what=f"Cannot infer cell size along {name}",
            cause="Only one coordinate is available",
            fix=f"Pass res_{name} explicitly",
        )
    return float(np.abs(np.diff(coords)).mean())


class GridModel:
    """Regular grid of cell centres with a validity mask.

    Args:
        x: Cell-centre longitudes (or eastings), one per column,
            strictly increasing.
        y: Cell-centre latitudes (or northings), one per row, strictly
            increasing or strictly decreasing.
        lonlat: ``True`` for geographic degrees, ``False`` for projected
            map units.
        valid: Optional boolean mask of shape ``(len(y), len(x))``;
            ``False`` marks cells without data (e.g. land in an ocean
            grid). Defaults to all cells valid.
        res_x: Explicit cell width; inferred from ``x`` if omitted.
        res_y: Explicit cell height; inferred from ``y`` if omitted.
        neighbourhood: Default adjacency, 4 (rook) or 8 (queen).

    Raises:
        GridError: If coordinates are not monotonic, latitudes fall
            outside ``[-90, 90]`` or the mask has the wrong shape.

    Example:
        >>> grid = GridModel.regular(nrows=3, ncols=4, x0=0.5, y0=0.5, res=1.0)
        >>> grid.shape
        (3, 4)
        >>> grid.neighbours(0, 0, neighbourhood=4)
        [(0, 1), (1, 0)]
    """

    def __init__(
        self,
        x: npt.ArrayLike,
        y: npt.ArrayLike,
        *,
        lonlat: bool = True,
        valid: npt.ArrayLike | None = None,
        res_x: float | None = None,
        res_y: float | None = None,
        neighbourhood: int = 8,
    ) -> None:
        x_arr = np.asarray(x, dtype=np.float64)
        y_arr = np.asarray(y, dtype=np.float64)
        if x_arr.ndim != 1 or y_arr.ndim != 1 or x_arr.size == 0 or y_arr.size == 0:
            raise GridError(
                what="Grid coordinates must be non-empty 1-D arrays",
                cause=f"Got x with shape {x_arr.shape}, y with shape {y_arr.shape}",
                fix="Pass one coordinate per column (x) and per row (y)",
            )
        if x_arr.size > 1 and not np.all(np.diff(x_arr) > 0):
            raise GridError(
                what="Column coordinates are not strictly increasing",
                cause="x must run west to east (or left to right)",
                fix="Sort the grid columns by longitude/easting",
            )
        dy = np.diff(y_arr)
        if y_arr.size > 1 and not (np.all(dy > 0) or np.all(dy < 0)):
            raise GridError(
                what="Row coordinates are not strictly monotonic",
                cause="y must run consistently north-south or south-north",
                fix="Sort the grid rows by latitude/northing",
            )
        if lonlat and (np.any(y_arr < -90.0) or np.any(y_arr > 90.0)):
            raise GridError(
                what="Latitudes outside [-90, 90]",
                cause=f"Row coordinates span {y_arr.min()} to {y_arr.max()}",
                fix="Use lonlat=False for projected coordinates",
            )
        if neighbourhood not in (4, 8):
            raise GridError(
                what=f"Unsupported neighbourhood: {neighbourhood}",
                fix="Use 4 (rook) or 8 (queen) adjacency",
            )

        shape = (y_arr.size, x_arr.size)
        if valid is None:
            valid_arr = np.ones(shape, dtype=bool)
        else:
            valid_arr = np.asarray(valid, dtype=bool)
            if valid_arr.shape != shape:
                raise GridError(
                    what="Validity mask shape does not match grid",
                    cause=f"Mask is {valid_arr.shape}, grid is {shape}",
                    fix="Build the mask on the same rows and columns as the grid",
                )

        self._x = _readonly(x_arr)
        self._y = _readonly(y_arr)
        self._valid = _readonly(valid_arr)
        self.lonlat = lonlat
        self.res_x = _spacing(x_arr, "x", res_x)
        self.res_y = _spacing(y_arr, "y", res_y)
        self.neighbourhood = neighbourhood
        self.north_up = bool(y_arr.size < 2 or y_arr[0] > y_arr[-1])
        self.wraps = bool(
            lonlat and math.isclose(self.res_x * x_arr.size, 360.0, rel_tol=1e-6)
        )

    # ── Construction helpers ────────────────────────────────────────

    @classmethod
    def regular(
        cls,
        nrows: int,
        ncols: int,
        x0: float,
        y0: float,
        res: float,
        *,
        res_y: float | None = None,
        lonlat: bool = True,
        north_up: bool = False,
        valid: npt.ArrayLike | None = None,
        neighbourhood: int = 8,
    ) -> GridModel:
        """Build a grid from the centre of the first cell and a cell size.

        Args:
            nrows: Number of rows.
            ncols: Number of columns.
            x0: Centre x of column 0.
            y0: Centre y of row 0.
            res: Cell width (and height unless *res_y* is given).
            res_y: Optional distinct cell height.
            lonlat: Geographic (``True``) or projected coordinates.
            north_up: If ``True`` rows run from *y0* southwards.
            valid: Optional validity mask.
            neighbourhood: Default adjacency.

        Returns:
            A new ``GridModel``.
        """
        ry = res if res_y is None else res_y
        x = x0 + res * np.arange(ncols)
        step = -ry if north_up else ry
        y = y0 + step * np.arange(nrows)
        return cls(
            x,
            y,
            lonlat=lonlat,
            valid=valid,
            res_x=res,
            res_y=ry,
            neighbourhood=neighbourhood,
        )

    @classmethod
    def from_dataarray(
        cls,
        da: xr.DataArray,
        *,
        x_dim: str | None = None,
        y_dim: str | None = None,
        lonlat: bool | None = None,
        neighbourhood: int = 8,
    ) -> GridModel:
        """Build a grid from the spatial coordinates of an xarray object.

        The validity mask marks cells that hold at least one finite value
        across any non-spatial dimension.

        Args:
            da: DataArray with two spatial dimensions.
            x_dim: Name of the column dimension (auto-detected from
                ``lon``/``longitude``/``x``).
            y_dim: Name of the row dimension (auto-detected from
                ``lat``/``latitude``/``y``).
            lonlat: Override geographic detection (defaults to ``True``
                when the dimensions are named like lon/lat).
            neighbourhood: Default adjacency.

        Returns:
            A new ``GridModel``.

        Raises:
            GridError: If spatial dimensions cannot be identified.
        """
        xd = x_dim or next((d for d in _X_NAMES if d in da.dims), None)
        yd = y_dim or next((d for d in _Y_NAMES if d in da.dims), None)
        if xd is None or yd is None:
            raise GridError(
                what="Cannot identify spatial dimensions",
                cause=f"DataArray dims are {tuple(da.dims)}",
                fix="Pass x_dim and y_dim explicitly",
            )
        if lonlat is None:
            lonlat = xd in ("lon", "longitude")
        other = [d for d in da.dims if d not in (xd, yd)]
        values = da.transpose(*other, yd, xd).values
        finite = np.isfinite(values)
        valid = finite.any(axis=tuple(range(len(other)))) if other else finite
        return cls(
            da[xd].values,
            da[yd].values,
            lonlat=lonlat,
            valid=valid,
            neighbourhood=neighbourhood,
        )

    def with_mask(self, valid: npt.ArrayLike) -> GridModel:
        """Return a copy of this grid with *valid* combined into the mask."""
        return GridModel(
            self._x,
            self._y,
            lonlat=self.lonlat,
            valid=self._valid & np.asarray(valid, dtype=bool),
            res_x=self.res_x,
            res_y=self.res_y,
            neighbourhood=self.neighbourhood,
        )

    # ── Shape and coordinates ───────────────────────────────────────

    @property
    def x(self) -> FloatArray:
        """Column centre coordinates (read-only)."""
        return self._x

    @property
    def y(self) -> FloatArray:
        """Row centre coordinates (read-only)."""
        return self._y

    @property
    def valid(self) -> npt.NDArray[np.bool_]:
        """Validity mask of shape ``(nrows, ncols)`` (read-only)."""
        return self._valid

    @property
    def shape(self) -> tuple[int, int]:
        """``(nrows, ncols)``."""
        return (self._y.size, self._x.size)

    @property
    def nrows(self) -> int:
        return self._y.size

    @property
    def ncols(self) -> int:
        return self._x.size

    @property
    def size(self) -> int:
        return self._y.size * self._x.size

    @property
    def distance_function(self) -> DistanceFunction:
        """Native distance metric of the grid's coordinates."""
        if self.lonlat:
            return DistanceFunction.GREAT_CIRCLE
        return DistanceFunction.PLANAR

    def coords(self, row: int, col: int) -> tuple[float, float]:
        """Return the ``(x, y)`` centre of a cell."""
        return float(self._x[col]), float(self._y[row])

    def mesh(self) -> tuple[FloatArray, FloatArray]:
        """Return 2-D ``(x, y)`` centre arrays of the grid's shape."""
        xx, yy = np.meshgrid(self._x, self._y)
        return xx, yy

    def flat_index(self, row: int, col: int) -> int:
        return row * self.ncols + col

    def cell_from_flat(self, index: int) -> CellIndex:
        return divmod(int(index), self.ncols)

    def is_valid(self, row: int, col: int) -> bool:
        return bool(self._valid[row, col])

    def check_field(self, field: npt.ArrayLike, name: str = "field") -> FloatArray:
        """Return *field* as a float array, checking it matches the grid.

        Raises:
            GridError: If the shape differs from the grid's shape.
        """
        arr = np.asarray(field, dtype=np.float64)
        if arr.shape != self.shape:
            raise GridError(
                what=f"{name} shape does not match grid",
                cause=f"{name} is {arr.shape}, grid is {self.shape}",
                fix="Regrid the field onto the analysis grid first",
            )
        return arr

    # ── Adjacency ───────────────────────────────────────────────────

    def _wrap_col(self, col: int) -> int | None:
        if 0 <= col < self.ncols:
            return col
        if self.wraps:
            return col % self.ncols
        return None

    def neighbours(
        self,
        row: int,
        col: int,
        neighbourhood: int | None = None,
    ) -> list[CellIndex]:
        """Adjacent cells of ``(row, col)`` inside the grid.

        Columns wrap across the anti-meridian on global lon/lat grids;
        rows never wrap across the poles. The validity mask is not
        applied.

        Args:
            row: Cell row.
            col: Cell column.
            neighbourhood: 4 or 8; defaults to the grid's setting.

        Returns:
            Neighbour indices in row-major order of their offsets.
        """
        offsets = _ROOK_OFFSETS if (neighbourhood or self.neighbourhood) == 4 else _QUEEN_OFFSETS
        result: list[CellIndex] = []
        for dr, dc in offsets:
            r = row + dr
            if not 0 <= r < self.nrows:
                continue
            c = self._wrap_col(col + dc)
            if c is None or (r, c) == (row, col):
                continue
            result.append((r, c))
        return result

    def axis_neighbours(
        self,
        row: int,
        col: int,
    ) -> tuple[CellIndex | None, CellIndex | None, CellIndex | None, CellIndex | None]:
        """Return the ``(east, west, north, south)`` neighbours of a cell.

        Entries are ``None`` at the grid edge. The validity mask is not
        applied.
        """
        east_c = self._wrap_col(col + 1)
        west_c = self._wrap_col(col - 1)
        east = (row, east_c) if east_c is not None and east_c != col else None
        west = (row, west_c) if west_c is not None and west_c != col else None
        north_r = row - 1 if self.north_up else row + 1
        south_r = row + 1 if self.north_up else row - 1
        north = (north_r, col) if 0 <= north_r < self.nrows else None
        south = (south_r, col) if 0 <= south_r < self.nrows else None
        return east, west, north, south

    # ── Distances and lookups ───────────────────────────────────────

    def distance(self, a: CellIndex, b: CellIndex) -> float:
        """Ground distance between two cell centres (km or map units)."""
        ax, ay = self.coords(*a)
        bx, by = self.coords(*b)
        if self.lonlat:
            return float(haversine_km(ax, ay, bx, by))
        return float(planar_distance(ax, ay, bx, by))

    @property
    def extent(self) -> tuple[float, float, float, float]:
        """Outer cell edges ``(xmin, xmax, ymin, ymax)``."""
        return (
            float(self._x.min() - self.res_x / 2),
            float(self._x.max() + self.res_x / 2),
            float(self._y.min() - self.res_y / 2),
            float(self._y.max() + self.res_y / 2),
        )

    def normalise_x(self, x: float) -> float:
        """Bring a longitude into the grid's column range on global grids."""
        if not self.wraps:
            return x
        xmin = self.extent[0]
        return xmin + ((x - xmin) % 360.0)

    def contains(self, x: float, y: float) -> bool:
        """Whether ``(x, y)`` lies inside the grid's outer edges."""
        xmin, xmax, ymin, ymax = self.extent
        if not ymin <= y <= ymax:
            return False
        return self.wraps or xmin <= x <= xmax

    def nearest_cell(self, x: float, y: float) -> CellIndex | None:
        """Cell whose centre is nearest to ``(x, y)``, or ``None`` outside."""
        if not self.contains(x, y):
            return None
        x = self.normalise_x(x)
        col = int(np.abs(self._x - x).argmin())
        row = int(np.abs(self._y - y).argmin())
        return row, col

    def cell_area(self, row: int) -> float:
        """Area of a cell in row *row* (km² for lon/lat, map units² otherwise)."""
        if not self.lonlat:
            return self.res_x * self.res_y
        lat = float(self._y[row])
        north = math.radians(min(lat + self.res_y / 2, 90.0))
        south = math.radians(max(lat - self.res_y / 2, -90.0))
        return (
            EARTH_RADIUS_KM**2
            * math.radians(self.res_x)
            * abs(math.sin(north) - math.sin(south))
        )

    def __repr__(self) -> str:
        kind = "lonlat" if self.lonlat else "projected"
        n_valid = int(self._valid.sum())
        return (
            f"GridModel(shape={self.shape}, {kind}, res=({self.res_x:g}, {self.res_y:g}), "
            f"valid={n_valid}/{self.size})"
        )


def to_decimal_years(times: Any) -> npt.NDArray[np.float64]:
    """Convert time stamps to decimal years.

    Numeric input is returned as float (already in years or indices).
    Datetime-like input maps to ``year + elapsed fraction of the year``.

    Example:
        >>> to_decimal_years(np.array(["2000-01-01", "2000-07-02"], dtype="datetime64[D]"))
        array([2000. , 2000.5])
    """
    arr = np.asarray(times)
    if np.issubdtype(arr.dtype, np.number):
        return arr.astype(np.float64)
    index = pd.DatetimeIndex(pd.to_datetime(arr))
    days_in_year = np.where(index.is_leap_year, 366.0, 365.0)
    return (index.year + (index.dayofyear - 1) / days_in_year).to_numpy(dtype=np.float64)


class TimeSeriesStack:
    """Per-cell time series on a grid.

    Args:
        values: Array of shape ``(time, nrows, ncols)``; NaN marks a
            missing observation.
        times: Observation times, numeric (years) or datetime-like.
        grid: Grid the stack lives on.

    Raises:
        GridError: If shapes disagree or times are not increasing.
    """

    def __init__(self, values: npt.ArrayLike, times: Any, grid: GridModel) -> None:
        arr = np.asarray(values, dtype=np.float64)
        if arr.ndim != 3 or arr.shape[1:] != grid.shape:
            raise GridError(
                what="Time-series stack does not match grid",
                cause=f"Stack is {arr.shape}, grid is {grid.shape}",
                fix="Stack observations as (time, rows, cols) on the grid",
            )
        t = to_decimal_years(times)
        if t.shape != (arr.shape[0],):
            raise GridError(
                what="Time axis length does not match stack",
                cause=f"{t.size} times for {arr.shape[0]} layers",
                fix="Pass one time stamp per layer",
            )
        if t.size > 1 and not np.all(np.diff(t) > 0):
            raise GridError(
                what="Time stamps are not strictly increasing",
                fix="Sort layers by time and drop duplicates",
            )
        self._values = _readonly(arr)
        self._times = _readonly(t)
        self.grid = grid

    @classmethod
    def from_dataarray(
        cls,
        da: xr.DataArray,
        *,
        time_dim: str = "time",
        grid: GridModel | None = None,
    ) -> TimeSeriesStack:
        """Build a stack (and, if needed, its grid) from an xarray object."""
        if grid is None:
            grid = GridModel.from_dataarray(da)
        spatial = [d for d in da.dims if d != time_dim]
        ordered = da.transpose(time_dim, *sorted(spatial, key=lambda d: d not in _Y_NAMES))
        return cls(ordered.values, da[time_dim].values, grid)

    @property
    def values(self) -> FloatArray:
        """Observation array ``(time, nrows, ncols)`` (read-only)."""
        return self._values

    @property
    def times(self) -> FloatArray:
        """Observation times in decimal years (read-only)."""
        return self._times

    def series(self, row: int, col: int) -> FloatArray:
        """Observations of one cell, in time order."""
        return self._values[:, row, col]

    def mean_field(self) -> FloatArray:
        """Temporal mean per cell; NaN where a cell has no observation."""
        finite = np.isfinite(self._values)
        counts = finite.sum(axis=0)
        totals = np.where(finite, self._values, 0.0).sum(axis=0)
        with np.errstate(invalid="ignore", divide="ignore"):
            mean = totals / counts
        mean[counts == 0] = np.nan
        mean[~self.grid.valid] = np.nan
        return mean

    def __len__(self) -> int:
        return int(self._times.size)
