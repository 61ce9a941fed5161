"""Spatial gradients of a scalar field over true ground distances.

Finite differences along the east-west and north-south axes of the
grid. Centred differences use the ground distance between the two
neighbours; cells at an edge or next to missing data fall back to a
one-sided difference against the cell itself. On lon/lat grids the
east-west spacing is the haversine distance along the cell's parallel,
so it shrinks with the cosine of latitude.
"""

from __future__ import annotations

import logging

import numpy as np
import numpy.typing as npt

from climvelocity._pipeline import run_row_batches
from climvelocity._types import CellStatus, FloatArray
from climvelocity.config import Config, resolve_config
from climvelocity.geodesy import compass_bearing, haversine_km
from climvelocity.grid import GridModel
from climvelocity.results import GradientResult, metadata_for

logger = logging.getLogger(__name__)


def _shift(
    array: FloatArray,
    drow: int,
    dcol: int,
    wrap_cols: bool,
) -> FloatArray:
    """Return ``out[r, c] = array[r + drow, c + dcol]``, NaN outside the grid."""
    out = np.full(array.shape, np.nan)
    nrows, ncols = array.shape
    src = array
    if dcol:
        if wrap_cols:
            src = np.roll(array, -dcol, axis=1)
        else:
            src = np.full(array.shape, np.nan)
            if dcol > 0:
                src[:, : ncols - dcol] = array[:, dcol:]
            else:
                src[:, -dcol:] = array[:, : ncols + dcol]
    if drow > 0:
        out[: nrows - drow, :] = src[drow:, :]
    elif drow < 0:
        out[-drow:, :] = src[: nrows + drow, :]
    else:
        out = src.copy()
    return out


def _axis_spacing(grid: GridModel) -> tuple[FloatArray, FloatArray]:
    """Ground distance from each cell to its east and to its north neighbour.

    Returns:
        ``(to_east, to_north)`` arrays of the grid's shape; NaN where the
        neighbour does not exist.
    """
    xx, yy = grid.mesh()
    north_step = -1 if grid.north_up else 1
    east_x = _shift(xx, 0, 1, grid.wraps)
    north_y = _shift(yy, north_step, 0, False)
    if grid.lonlat:
        with np.errstate(invalid="ignore"):
            to_east = haversine_km(xx, yy, east_x, yy)
            to_north = haversine_km(xx, yy, xx, north_y)
    else:
        to_east = np.abs(east_x - xx)
        to_north = np.abs(north_y - yy)
    return np.asarray(to_east, dtype=np.float64), np.asarray(to_north, dtype=np.float64)


def _difference(
    centre: FloatArray,
    plus: FloatArray,
    minus: FloatArray,
    d_plus: FloatArray,
    d_minus: FloatArray,
) -> FloatArray:
    """Centred difference where both neighbours exist, one-sided otherwise."""
    plus_ok = np.isfinite(plus) & np.isfinite(d_plus) & (d_plus > 0)
    minus_ok = np.isfinite(minus) & np.isfinite(d_minus) & (d_minus > 0)
    with np.errstate(invalid="ignore", divide="ignore"):
        centred = (plus - minus) / (d_plus + d_minus)
        forward = (plus - centre) / d_plus
        backward = (centre - minus) / d_minus
    return np.where(
        plus_ok & minus_ok,
        centred,
        np.where(plus_ok, forward, np.where(minus_ok, backward, np.nan)),
    )


def estimate_gradient(
    field: npt.ArrayLike,
    grid: GridModel,
    config: Config | None = None,
    *,
    max_workers: int | None = None,
) -> GradientResult:
    """Compute the local spatial gradient of a scalar field.

    The gradient components are ``d/dx`` (eastward) and ``d/dy``
    (northward) in value units per km (lon/lat grids) or per map unit
    (projected grids). The grid's explicit cell size fixes the distances,
    so results are tied to the resolution of the input, not a default.

    Args:
        field: 2-D array on *grid*; NaN marks missing values.
        grid: Grid describing coordinates, spacing and validity.
        config: Run configuration (module default if ``None``).
        max_workers: Override ``config.max_workers``.

    Returns:
        ``GradientResult``. Cells without data are ``NO_DATA``; cells
        lacking a usable neighbour on either axis are
        ``UNDEFINED_GRADIENT``; exactly flat cells are ``ZERO_GRADIENT``
        (magnitude 0, no bearing).

    Raises:
        GridError: If the field does not match the grid's shape.

    Example:
        >>> grid = GridModel.regular(3, 3, 0.0, 0.0, 1.0, lonlat=False)
        >>> field = np.tile([0.0, 1.0, 2.0], (3, 1))
        >>> result = estimate_gradient(field, grid)
        >>> result.magnitude_at(1, 1), result.bearing_at(1, 1)
        (1.0, 90.0)
    """
    cfg = resolve_config(config, max_workers=max_workers)
    values = grid.check_field(field).copy()
    values[~grid.valid] = np.nan

    north_step = -1 if grid.north_up else 1
    east = _shift(values, 0, 1, grid.wraps)
    west = _shift(values, 0, -1, grid.wraps)
    north = _shift(values, north_step, 0, False)
    south = _shift(values, -north_step, 0, False)
    to_east, to_north = _axis_spacing(grid)
    to_west = _shift(to_east, 0, -1, grid.wraps)
    to_south = _shift(to_north, -north_step, 0, False)

    shape = grid.shape
    d_east = np.full(shape, np.nan)
    d_north = np.full(shape, np.nan)
    magnitude = np.full(shape, np.nan)
    bearing = np.full(shape, np.nan)
    status = np.full(shape, CellStatus.NO_DATA, dtype=np.int8)

    def _batch(rows: range) -> None:
        sl = slice(rows.start, rows.stop)
        centre = values[sl]
        gx = _difference(centre, east[sl], west[sl], to_east[sl], to_west[sl])
        gy = _difference(centre, north[sl], south[sl], to_north[sl], to_south[sl])
        has_data = np.isfinite(centre)
        measurable = has_data & np.isfinite(gx) & np.isfinite(gy)
        mag = np.hypot(gx, gy)
        flat = measurable & (mag == 0)
        sloped = measurable & (mag > 0)

        cell_status = np.full(centre.shape, CellStatus.NO_DATA, dtype=np.int8)
        cell_status[has_data] = CellStatus.UNDEFINED_GRADIENT
        cell_status[flat] = CellStatus.ZERO_GRADIENT
        cell_status[sloped] = CellStatus.OK

        status[sl] = cell_status
        d_east[sl] = np.where(measurable, gx, np.nan)
        d_north[sl] = np.where(measurable, gy, np.nan)
        magnitude[sl] = np.where(measurable, mag, np.nan)
        bearing[sl] = np.where(sloped, compass_bearing(gx, gy), np.nan)

    run_row_batches(_batch, grid.nrows, cfg.max_workers, label="gradient batches")

    units = "units/km" if grid.lonlat else "units/map unit"
    result = GradientResult(
        grid=grid,
        status=status,
        metadata=metadata_for(grid, "spatial_gradient", units, res_x=grid.res_x, res_y=grid.res_y),
        magnitude=magnitude,
        bearing=bearing,
        east=d_east,
        north=d_north,
    )
    logger.info("Estimated gradients on %s: %s", grid.shape, result.status_counts())
    if not result.valid.any():
        result.warnings.append("No cell has a positive, measurable gradient")
        logger.warning("Gradient is zero or undefined in every cell")
    return result
