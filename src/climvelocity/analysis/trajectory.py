"""Climate-velocity trajectories.

A trajectory starts at a seed cell centre and is advanced in fixed time
steps: each step reads the velocity of the current cell, moves the
position by ``|velocity| * step`` along the velocity bearing and
re-samples the nearest cell. Integration ends in one of four terminal
states, always reported on the returned ``Trajectory``:

* ``COMPLETED``: the time budget is used up.
* ``OUT_OF_BOUNDS``: the next position leaves the grid extent.
* ``NO_DATA``: the next cell has no velocity or no mean value.
* ``STALLED``: the trajectory stopped making progress. Either more than
  ``stall_steps`` consecutive steps moved less than a millionth of a
  cell, or the trajectory entered a cell whose velocity reverses the
  step that brought it there (a convergent sink).

Trajectories are independent, so ``trace_trajectories`` runs one task
per seed on the worker pool.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

import numpy as np
import numpy.typing as npt

from climvelocity._pipeline import run_tasks
from climvelocity._types import BoundaryPolicy, CellIndex, FloatArray, TrajectoryState
from climvelocity.config import Config, resolve_config
from climvelocity.exceptions import ConfigurationError
from climvelocity.geodesy import EARTH_RADIUS_KM, destination_point, planar_destination
from climvelocity.grid import GridModel
from climvelocity.results import Trajectory, VelocityField, Waypoint

if TYPE_CHECKING:
    import pandas as pd

logger = logging.getLogger(__name__)

_TIME_EPS = 1e-9
# Fraction of a cell below which a step counts as standing still.
_STALL_FRACTION = 1e-6
# Turn between the entering step and the new cell's bearing that counts as a reversal.
_REVERSAL_DEGREES = 90.0


class _Sampler:
    """Read-only view of the fields a trajectory samples."""

    def __init__(self, velocity: VelocityField, mean_field: FloatArray) -> None:
        self.grid = velocity.grid
        self.speed = velocity.speed()
        self.bearing = velocity.bearing
        self.ok = velocity.valid & np.isfinite(mean_field)
        if self.grid.lonlat:
            cell_size = math.radians(abs(self.grid.res_y)) * EARTH_RADIUS_KM
        else:
            cell_size = min(abs(self.grid.res_x), abs(self.grid.res_y))
        self.min_move = _STALL_FRACTION * cell_size

    def usable(self, cell: CellIndex) -> bool:
        return bool(self.ok[cell])

    def move(self, x: float, y: float, bearing: float, distance: float) -> tuple[float, float]:
        if self.grid.lonlat:
            nx, ny = destination_point(x, y, bearing, distance)
            return self.grid.normalise_x(nx), ny
        return planar_destination(x, y, bearing, distance)

    def reverses(self, cell: CellIndex, heading: float) -> bool:
        """Whether the velocity of *cell* turns back against *heading*."""
        if not self.speed[cell] > 0:
            return False
        turn = abs((float(self.bearing[cell]) - heading + 180.0) % 360.0 - 180.0)
        return turn > _REVERSAL_DEGREES


def _reflected_bearings(bearing: float) -> tuple[float, float]:
    """Bearings with the east-west, then the north-south component mirrored."""
    return (360.0 - bearing) % 360.0, (180.0 - bearing) % 360.0


def _step(
    sampler: _Sampler,
    x: float,
    y: float,
    cell: CellIndex,
    dt: float,
    policy: BoundaryPolicy,
) -> tuple[TrajectoryState, float, float, CellIndex | None, float]:
    """Advance one step from ``(x, y)`` in *cell*.

    Returns:
        ``(state, x, y, cell, heading)``; ``state`` is ``RUNNING`` when
        the step landed on usable data, ``heading`` is the bearing
        actually travelled (mirrored after a reflection).
    """
    grid = sampler.grid
    distance = float(sampler.speed[cell]) * dt
    bearing = float(sampler.bearing[cell])

    nx, ny = sampler.move(x, y, bearing, distance)
    target = grid.nearest_cell(nx, ny)
    if target is None:
        return TrajectoryState.OUT_OF_BOUNDS, x, y, None, bearing
    if sampler.usable(target):
        return TrajectoryState.RUNNING, nx, ny, target, bearing

    if policy is BoundaryPolicy.REFLECT:
        for mirrored in _reflected_bearings(bearing):
            rx, ry = sampler.move(x, y, mirrored, distance)
            alt = grid.nearest_cell(rx, ry)
            if alt is not None and sampler.usable(alt):
                return TrajectoryState.RUNNING, rx, ry, alt, mirrored
    return TrajectoryState.NO_DATA, x, y, None, bearing


def _trace(
    seed: CellIndex,
    sampler: _Sampler,
    total_years: float,
    step_years: float,
    stall_steps: int,
    policy: BoundaryPolicy,
) -> Trajectory:
    grid = sampler.grid
    row, col = seed
    x, y = grid.coords(row, col)
    trajectory = Trajectory(seed=(row, col), waypoints=[Waypoint(x, y, row, col, 0.0)])
    if not sampler.usable((row, col)):
        trajectory.state = TrajectoryState.NO_DATA
        return trajectory

    n_steps = max(1, math.ceil(total_years / step_years - _TIME_EPS))
    elapsed = 0.0
    still = 0
    for i in range(n_steps):
        dt = min(step_years, total_years - elapsed)
        moved = float(sampler.speed[row, col]) * dt
        state, x, y, cell, heading = _step(sampler, x, y, (row, col), dt, policy)
        if cell is None:
            trajectory.state = state
            return trajectory

        elapsed = min((i + 1) * step_years, total_years)
        entered = cell != (row, col)
        still = still + 1 if moved <= sampler.min_move else 0
        row, col = cell
        trajectory.waypoints.append(Waypoint(x, y, row, col, elapsed))
        if still > stall_steps or (entered and sampler.reverses(cell, heading)):
            trajectory.state = TrajectoryState.STALLED
            return trajectory

    trajectory.state = TrajectoryState.COMPLETED
    return trajectory


def trace_trajectory(
    seed: CellIndex,
    velocity: VelocityField,
    mean_field: npt.ArrayLike,
    total_years: float | None = None,
    step_years: float | None = None,
    *,
    config: Config | None = None,
    stall_steps: int | None = None,
    boundary_policy: BoundaryPolicy | str | None = None,
) -> Trajectory:
    """Integrate one trajectory from *seed* through a velocity field.

    Args:
        seed: Starting cell ``(row, col)``.
        velocity: Output of ``compute_velocity``.
        mean_field: Climatological mean on the velocity's grid; cells
            where it is NaN count as no data.
        total_years: Integration horizon (``config.total_years``).
        step_years: Step length (``config.step_years``).
        config: Run configuration (module default if ``None``).
        stall_steps: Override ``config.stall_steps``.
        boundary_policy: Override ``config.boundary_policy``.

    Returns:
        ``Trajectory`` whose first waypoint is the seed centre at elapsed
        0 and whose ``state`` is terminal. Positions that would leave the
        grid or land on no data are not recorded.

    Raises:
        ValidationError: For non-positive or non-finite step settings.
        ConfigurationError: For a seed outside the grid.
        GridError: If *mean_field* does not match the grid.
    """
    cfg = resolve_config(
        config,
        total_years=total_years,
        step_years=step_years,
        stall_steps=stall_steps,
        boundary_policy=boundary_policy,
    )
    sampler = _Sampler(velocity, velocity.grid.check_field(mean_field, "mean_field"))
    _check_seeds([seed], velocity.grid)
    return _trace(
        seed,
        sampler,
        cfg.total_years,
        cfg.step_years,
        cfg.stall_steps,
        cfg.boundary_policy,
    )


def _check_seeds(seeds: Sequence[CellIndex], grid: GridModel) -> None:
    for row, col in seeds:
        if not (0 <= row < grid.nrows and 0 <= col < grid.ncols):
            raise ConfigurationError(
                what=f"Seed {(row, col)} is outside the grid",
                cause=f"Grid shape is {grid.shape}",
                fix="Pass seeds as (row, col) indices inside the grid",
            )


def trace_trajectories(
    velocity: VelocityField,
    mean_field: npt.ArrayLike,
    seeds: Iterable[CellIndex] | None = None,
    *,
    config: Config | None = None,
    total_years: float | None = None,
    step_years: float | None = None,
    stall_steps: int | None = None,
    boundary_policy: BoundaryPolicy | str | None = None,
    max_workers: int | None = None,
) -> list[Trajectory]:
    """Trace trajectories from many seeds, one independent task per seed.

    Args:
        velocity: Output of ``compute_velocity``.
        mean_field: Climatological mean on the velocity's grid.
        seeds: Starting cells; defaults to every cell with a defined
            velocity, in row-major order.
        config: Run configuration (module default if ``None``).
        total_years: Override ``config.total_years``.
        step_years: Override ``config.step_years``.
        stall_steps: Override ``config.stall_steps``.
        boundary_policy: Override ``config.boundary_policy``.
        max_workers: Override ``config.max_workers``.

    Returns:
        Trajectories in seed order.
    """
    cfg = resolve_config(
        config,
        total_years=total_years,
        step_years=step_years,
        stall_steps=stall_steps,
        boundary_policy=boundary_policy,
        max_workers=max_workers,
    )
    grid = velocity.grid
    sampler = _Sampler(velocity, grid.check_field(mean_field, "mean_field"))
    if seeds is None:
        seed_list = [(int(r), int(c)) for r, c in zip(*np.nonzero(velocity.valid))]
    else:
        seed_list = [(int(r), int(c)) for r, c in seeds]
    _check_seeds(seed_list, grid)

    trajectories = run_tasks(
        lambda s: _trace(
            s,
            sampler,
            cfg.total_years,
            cfg.step_years,
            cfg.stall_steps,
            cfg.boundary_policy,
        ),
        seed_list,
        cfg.max_workers,
        label="trajectories",
    )
    if trajectories:
        counts: dict[str, int] = {}
        for traj in trajectories:
            counts[traj.state.value] = counts.get(traj.state.value, 0) + 1
        logger.info("Traced %d trajectories: %s", len(trajectories), counts)
    return trajectories


def endpoint_counts(trajectories: Iterable[Trajectory], grid: GridModel) -> npt.NDArray[np.int64]:
    """Number of trajectories ending in each cell.

    High counts mark climate sinks, where many trajectories converge.
    """
    counts = np.zeros(grid.shape, dtype=np.int64)
    for traj in trajectories:
        counts[traj.end_cell] += 1
    return counts


def trajectories_to_dataframe(trajectories: Iterable[Trajectory]) -> pd.DataFrame:
    """Concatenate trajectory waypoints with a ``trajectory_id`` column."""
    import pandas as pd

    frames = []
    for i, traj in enumerate(trajectories):
        df = traj.to_dataframe()
        df.insert(0, "trajectory_id", i)
        frames.append(df)
    if not frames:
        return pd.DataFrame(
            columns=[
                "trajectory_id", "x", "y", "row", "col", "elapsed",
                "seed_row", "seed_col", "state",
            ]
        )
    return pd.concat(frames, ignore_index=True)
