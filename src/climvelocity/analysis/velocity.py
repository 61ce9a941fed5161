"""Gradient-based climate velocity (gVoCC) and residence time.

Velocity is the ratio of the temporal trend to the spatial gradient:
``(units / yr) / (units / km) = km / yr``. It is defined only where the
trend is valid and the gradient magnitude is strictly positive; every
other cell is ``UNDEFINED_VELOCITY`` and never an infinite value.
"""

from __future__ import annotations

import logging
import math

import numpy as np

from climvelocity._types import CellStatus
from climvelocity.exceptions import GridError
from climvelocity.geodesy import reverse_bearing
from climvelocity.results import (
    GradientResult,
    ResidenceTimeResult,
    TrendResult,
    VelocityField,
    metadata_for,
)

logger = logging.getLogger(__name__)


def compute_velocity(trend: TrendResult, gradient: GradientResult) -> VelocityField:
    """Combine trends and gradients into a velocity field.

    Per cell: ``magnitude = slope / gradient magnitude`` (signed like the
    slope). The bearing is the gradient bearing for non-negative slopes
    and the reverse bearing for negative slopes.

    Args:
        trend: Output of ``estimate_trends``.
        gradient: Output of ``estimate_gradient`` on the same grid.

    Returns:
        ``VelocityField`` with the input statuses kept for diagnosis.

    Raises:
        GridError: If the two inputs are on differently shaped grids.
    """
    if trend.grid.shape != gradient.grid.shape:
        raise GridError(
            what="Trend and gradient grids differ",
            cause=f"Trend is {trend.grid.shape}, gradient is {gradient.grid.shape}",
            fix="Compute both from the same grid",
        )

    defined = (trend.status == CellStatus.OK) & (gradient.status == CellStatus.OK)
    with np.errstate(invalid="ignore", divide="ignore"):
        ratio = trend.slope / gradient.magnitude
    magnitude = np.where(defined, ratio, np.nan)
    bearing = np.where(
        defined,
        np.where(trend.slope >= 0, gradient.bearing, reverse_bearing(gradient.bearing)),
        np.nan,
    )

    status = np.where(defined, CellStatus.OK, CellStatus.UNDEFINED_VELOCITY).astype(np.int8)
    both_missing = (trend.status == CellStatus.NO_DATA) & (gradient.status == CellStatus.NO_DATA)
    status[both_missing] = CellStatus.NO_DATA

    grid = gradient.grid
    units = "km/yr" if grid.lonlat else "map units/yr"
    result = VelocityField(
        grid=grid,
        status=status,
        metadata=metadata_for(grid, "gradient_velocity", units),
        magnitude=magnitude,
        bearing=bearing,
        trend_status=trend.status.copy(),
        gradient_status=gradient.status.copy(),
    )
    n_zero = int(np.count_nonzero(
        (trend.status == CellStatus.OK) & (gradient.status == CellStatus.ZERO_GRADIENT)
    ))
    if n_zero:
        result.warnings.append(f"{n_zero} cell(s) have a valid trend but a zero gradient")
    logger.info(
        "Computed velocity: %d defined of %d cells (%d on zero gradients)",
        int(defined.sum()),
        grid.size,
        n_zero,
    )
    return result


def residence_time(velocity: VelocityField) -> ResidenceTimeResult:
    """Years for the local velocity to carry a climate across each cell.

    The characteristic length of a cell is the diameter of the circle
    with the cell's area, ``2 * sqrt(area / pi)``; residence time is that
    length divided by the absolute velocity.

    Args:
        velocity: Output of ``compute_velocity``.

    Returns:
        ``ResidenceTimeResult``; cells with undefined or zero velocity are
        ``UNDEFINED_VELOCITY``.
    """
    grid = velocity.grid
    areas = np.array([grid.cell_area(r) for r in range(grid.nrows)])
    diameter = np.repeat((2.0 * np.sqrt(areas / math.pi))[:, np.newaxis], grid.ncols, axis=1)

    speed = velocity.speed()
    moving = velocity.valid & (speed > 0)
    with np.errstate(invalid="ignore", divide="ignore"):
        years = np.where(moving, diameter / speed, np.nan)

    status = np.where(moving, CellStatus.OK, CellStatus.UNDEFINED_VELOCITY).astype(np.int8)
    status[velocity.status == CellStatus.NO_DATA] = CellStatus.NO_DATA
    return ResidenceTimeResult(
        grid=grid,
        status=status,
        metadata=metadata_for(grid, "residence_time", "yr"),
        years=years,
        diameter=np.where(grid.valid, diameter, np.nan),
    )
