"""Top-level pipeline functions for climvelocity.

Convenience wrappers that chain the analysis stages the way a typical
climate-velocity study uses them. Each accepts either the package's own
``TimeSeriesStack``/``GridModel`` inputs or ``xarray.DataArray`` objects.

Example:
    >>> import climvelocity as cv
    >>> run = cv.gradient_velocity(stack, config=cv.Config(min_observations=10))
    >>> run.velocity.magnitude_at(12, 40)
    3.7
    >>> trajectories = cv.velocity_trajectories(run, total_years=50, step_years=0.25)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING, Any

import numpy as np
import numpy.typing as npt

from climvelocity.analysis.analogue import search_analogues
from climvelocity.analysis.gradient import estimate_gradient
from climvelocity.analysis.trajectory import trace_trajectories
from climvelocity.analysis.trend import estimate_trends
from climvelocity.analysis.velocity import compute_velocity
from climvelocity.config import Config, resolve_config
from climvelocity.grid import GridModel, TimeSeriesStack
from climvelocity.results import AnalogueField, Trajectory, VelocityRun

if TYPE_CHECKING:
    import xarray as xr

    from climvelocity._types import CellIndex

logger = logging.getLogger(__name__)


def _as_stack(stack: TimeSeriesStack | xr.DataArray, config: Config) -> TimeSeriesStack:
    """Wrap an xarray DataArray as a ``TimeSeriesStack`` if needed.

    Geographic detection follows the DataArray's dimension names unless
    ``lonlat`` was set on *config*.
    """
    if isinstance(stack, TimeSeriesStack):
        return stack
    lonlat = config.lonlat if "lonlat" in config.model_fields_set else None
    grid = GridModel.from_dataarray(stack, lonlat=lonlat, neighbourhood=config.neighbourhood)
    return TimeSeriesStack.from_dataarray(stack, grid=grid)


def gradient_velocity(
    stack: TimeSeriesStack | xr.DataArray,
    config: Config | None = None,
    *,
    mean_field: npt.ArrayLike | None = None,
    max_workers: int | None = None,
) -> VelocityRun:
    """Compute trends, gradients and gradient-based velocity (gVoCC).

    The trend and gradient stages both finish before the velocity is
    computed from them.

    Args:
        stack: Time series on a grid, or a ``(time, lat, lon)`` DataArray.
        config: Run configuration (module default if ``None``).
        mean_field: Field whose gradient is used; defaults to the
            temporal mean of *stack*.
        max_workers: Override ``config.max_workers``.

    Returns:
        ``VelocityRun`` holding every intermediate result.
    """
    cfg = resolve_config(config, max_workers=max_workers)
    series = _as_stack(stack, cfg)
    grid = series.grid
    mean = series.mean_field() if mean_field is None else grid.check_field(mean_field, "mean_field")

    trend = estimate_trends(series, cfg)
    gradient = estimate_gradient(mean, grid, cfg)
    velocity = compute_velocity(trend, gradient)
    return VelocityRun(trend=trend, gradient=gradient, velocity=velocity, mean_field=mean)


def velocity_trajectories(
    run: VelocityRun,
    seeds: Iterable[CellIndex] | None = None,
    config: Config | None = None,
    **overrides: Any,
) -> list[Trajectory]:
    """Trace trajectories through the velocity of a ``VelocityRun``.

    Args:
        run: Output of ``gradient_velocity``.
        seeds: Starting cells; every cell with a defined velocity if ``None``.
        config: Run configuration (module default if ``None``).
        **overrides: ``total_years``, ``step_years``, ``stall_steps``,
            ``boundary_policy`` or ``max_workers``.

    Returns:
        Trajectories in seed order.
    """
    return trace_trajectories(run.velocity, run.mean_field, seeds, config=config, **overrides)


def distance_velocity(
    baseline: npt.ArrayLike | Sequence[npt.ArrayLike],
    future: npt.ArrayLike | Sequence[npt.ArrayLike],
    grid: GridModel,
    elapsed_years: float,
    config: Config | None = None,
    **overrides: Any,
) -> AnalogueField:
    """Compute distance-based velocity (dVoCC) from two climatologies.

    Args:
        baseline: Baseline climate, one 2-D array per variable.
        future: Future climate, same layout as *baseline*.
        grid: Grid of the climate arrays.
        elapsed_years: Years between the two periods.
        config: Run configuration (module default if ``None``).
        **overrides: ``tolerances``, ``geo_tolerance`` or ``max_workers``.

    Returns:
        ``AnalogueField`` of matches, distances and velocities.
    """
    result = search_analogues(baseline, future, grid, elapsed_years, config=config, **overrides)
    finite = result.velocity[result.valid]
    if finite.size:
        logger.info(
            "Distance velocity: median %.3g, max %.3g over %d cells",
            float(np.median(finite)),
            float(finite.max()),
            finite.size,
        )
    return result
