"""Distance-based climate velocity (dVoCC) via nearest climate analogues.

For a focal cell with baseline values ``b[i]``, a cell ``c`` is a
candidate analogue when every variable of its future climate satisfies
``|future_i(c) - b_i| <= tolerance_i``. The analogue is the candidate
nearest to the focal cell within the geographic tolerance; velocity is
that distance divided by the years between the two periods.

A k-d tree over the cells with complete future data is built once per
search and only read afterwards, so focal cells can be processed in
parallel. Great-circle searches use chord distances on the unit sphere,
which are monotonic in great-circle distance; exact distances are then
recomputed for every candidate the tree returns.

Decisions on ambiguous cases:

* Equidistant candidates resolve to the lowest row-major cell index.
* A focal cell may be its own analogue unless ``exclude_self`` is set.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from typing import Any

import numpy as np
import numpy.typing as npt
from scipy.spatial import cKDTree

from climvelocity._pipeline import run_row_batches
from climvelocity._types import (
    CellIndex,
    CellStatus,
    DistanceFunction,
    FixedTolerance,
    FloatArray,
    PerCellTolerance,
    ThresholdMode,
    Tolerance,
)
from climvelocity.config import Config, resolve_config
from climvelocity.exceptions import ConfigurationError
from climvelocity.geodesy import haversine_km, km_to_chord, planar_distance, unit_sphere_xyz
from climvelocity.grid import GridModel
from climvelocity.results import AnalogueField, AnalogueMatch, metadata_for

logger = logging.getLogger(__name__)

_RADIUS_PAD = 1e-9  # relative padding so boundary candidates survive the tree query
_TIE_RTOL = 1e-12


def _stack_variables(
    data: npt.ArrayLike | Sequence[npt.ArrayLike],
    grid: GridModel,
    name: str,
) -> FloatArray:
    """Return climate variables as a ``(n_variables, nrows, ncols)`` array."""
    arr = np.asarray(data, dtype=np.float64)
    if arr.ndim == 2:
        arr = arr[np.newaxis]
    if arr.ndim != 3 or arr.shape[1:] != grid.shape:
        raise ConfigurationError(
            what=f"{name} climate does not match the grid",
            cause=f"{name} has shape {arr.shape}, grid is {grid.shape}",
            fix="Pass one 2-D array per variable on the analysis grid",
        )
    return arr


def resolve_tolerances(
    tolerances: Sequence[Any] | None,
    n_variables: int,
    grid: GridModel,
    mode: ThresholdMode | str = ThresholdMode.SINGLE,
) -> list[Tolerance]:
    """Resolve raw tolerance inputs into one ``Tolerance`` per variable.

    In ``single`` mode each entry must be a non-negative number. In
    ``variable`` mode entries may also be arrays of the grid's shape
    holding a tolerance per focal cell (NaN where none is available).
    Already-resolved ``FixedTolerance``/``PerCellTolerance`` values pass
    through.

    Args:
        tolerances: One entry per variable.
        n_variables: Number of climate variables compared.
        grid: Grid the per-cell arrays must match.
        mode: Threshold mode.

    Returns:
        Resolved tolerances, in variable order.

    Raises:
        ConfigurationError: On a count mismatch, a negative tolerance, an
            array in ``single`` mode or a wrongly shaped array.

    Example:
        >>> grid = GridModel.regular(2, 2, 0.0, 0.0, 1.0)
        >>> resolve_tolerances([0.5], 1, grid)
        [FixedTolerance(value=0.5)]
    """
    mode = ThresholdMode(mode)
    if tolerances is None or len(tolerances) != n_variables:
        given = 0 if tolerances is None else len(tolerances)
        raise ConfigurationError(
            what="Tolerance count does not match variable count",
            cause=f"{given} tolerance(s) for {n_variables} variable(s)",
            fix="Provide one tolerance per climate variable",
        )

    resolved: list[Tolerance] = []
    for i, tol in enumerate(tolerances):
        if isinstance(tol, (FixedTolerance, PerCellTolerance)):
            candidate: Any = tol.value if isinstance(tol, FixedTolerance) else tol.values
        else:
            candidate = tol
        arr = np.asarray(candidate, dtype=np.float64)
        if arr.ndim == 0:
            value = float(arr)
            if not (math.isfinite(value) and value >= 0):
                raise ConfigurationError(
                    what=f"Invalid tolerance for variable {i}: {value}",
                    cause="Tolerances must be finite non-negative numbers",
                    fix="Use a finite tolerance >= 0",
                )
            resolved.append(FixedTolerance(value))
            continue
        if mode is ThresholdMode.SINGLE:
            raise ConfigurationError(
                what=f"Per-cell tolerance given for variable {i} in 'single' mode",
                cause="Single threshold mode expects one number per variable",
                fix="Use threshold_mode='variable' for per-cell tolerances",
            )
        if arr.shape != grid.shape:
            raise ConfigurationError(
                what=f"Per-cell tolerance for variable {i} does not match the grid",
                cause=f"Tolerance is {arr.shape}, grid is {grid.shape}",
                fix="Supply the tolerance on the same grid as the baseline",
            )
        if np.any(arr[np.isfinite(arr)] < 0):
            raise ConfigurationError(
                what=f"Negative per-cell tolerance for variable {i}",
                fix="Use tolerances >= 0 (NaN for cells without one)",
            )
        frozen = arr.copy()
        frozen.setflags(write=False)
        resolved.append(PerCellTolerance(frozen))
    return resolved


class AnalogueIndex:
    """Spatial index over cells that can serve as analogues.

    Built once from the future climate; read-only afterwards.

    Args:
        future: ``(n_variables, nrows, ncols)`` future climate.
        grid: Grid of the climate arrays.
        distance_function: Great-circle (km) or planar (map units).
    """

    def __init__(
        self,
        future: FloatArray,
        grid: GridModel,
        distance_function: DistanceFunction = DistanceFunction.GREAT_CIRCLE,
    ) -> None:
        self.grid = grid
        self.distance_function = DistanceFunction(distance_function)
        if self.distance_function is DistanceFunction.GREAT_CIRCLE and not grid.lonlat:
            raise ConfigurationError(
                what="Great-circle distances need a lon/lat grid",
                cause="The grid has projected coordinates",
                fix="Use distance_function='planar' for projected grids",
            )
        usable = grid.valid & np.all(np.isfinite(future), axis=0)
        self.flat = np.flatnonzero(usable)
        xx, yy = grid.mesh()
        self.x = xx.ravel()[self.flat]
        self.y = yy.ravel()[self.flat]
        self.values = future.reshape(future.shape[0], -1)[:, self.flat]
        if self.distance_function is DistanceFunction.GREAT_CIRCLE:
            points = unit_sphere_xyz(self.x, self.y)
        else:
            points = np.column_stack((self.x, self.y))
        self._points = points
        self._tree = cKDTree(points) if self.flat.size else None
        logger.debug("Built analogue index over %d candidate cells", self.flat.size)

    def __len__(self) -> int:
        return int(self.flat.size)

    def _query_points(self, x: FloatArray, y: FloatArray) -> FloatArray:
        if self.distance_function is DistanceFunction.GREAT_CIRCLE:
            return unit_sphere_xyz(x, y)
        return np.column_stack((x, y))

    def _tree_radius(self, geo_tolerance: float) -> float:
        if self.distance_function is DistanceFunction.GREAT_CIRCLE:
            radius = km_to_chord(geo_tolerance)
        else:
            radius = geo_tolerance
        return radius * (1.0 + _RADIUS_PAD) + _RADIUS_PAD

    def within(
        self,
        x: FloatArray,
        y: FloatArray,
        geo_tolerance: float,
    ) -> list[npt.NDArray[np.intp]]:
        """Candidate positions within the tree radius of each query point."""
        if self._tree is None:
            return [np.empty(0, dtype=np.intp) for _ in range(np.size(x))]
        hits = self._tree.query_ball_point(
            self._query_points(np.atleast_1d(x), np.atleast_1d(y)),
            r=self._tree_radius(geo_tolerance),
        )
        return [np.asarray(sorted(h), dtype=np.intp) for h in hits]

    def distances(self, x: float, y: float, positions: npt.NDArray[np.intp]) -> FloatArray:
        """Exact distances from ``(x, y)`` to candidates at *positions*."""
        if self.distance_function is DistanceFunction.GREAT_CIRCLE:
            return np.atleast_1d(haversine_km(x, y, self.x[positions], self.y[positions]))
        return np.atleast_1d(planar_distance(x, y, self.x[positions], self.y[positions]))


def _select(
    index: AnalogueIndex,
    focal_flat: int,
    fx: float,
    fy: float,
    baseline: FloatArray,
    tols: FloatArray,
    positions: npt.NDArray[np.intp],
    geo_tolerance: float,
    exclude_self: bool,
) -> tuple[int, float] | None:
    """Pick the analogue among tree hits, or ``None``.

    Args:
        baseline: Focal baseline values, one per variable.
        tols: Focal tolerances, one per variable.
        positions: Candidate positions in the index.

    Returns:
        ``(flat cell index, distance)`` of the analogue.
    """
    if positions.size == 0:
        return None
    if exclude_self:
        positions = positions[index.flat[positions] != focal_flat]
        if positions.size == 0:
            return None

    diffs = np.abs(index.values[:, positions] - baseline[:, np.newaxis])
    matches = np.all(diffs <= tols[:, np.newaxis], axis=0)
    positions = positions[matches]
    if positions.size == 0:
        return None

    dist = index.distances(fx, fy, positions)
    reachable = dist <= geo_tolerance
    if not reachable.any():
        return None
    positions = positions[reachable]
    dist = dist[reachable]

    best = float(dist.min())
    ties = dist <= best * (1.0 + _TIE_RTOL) + _TIE_RTOL
    flats = index.flat[positions[ties]]
    winner = int(np.argmin(flats))
    return int(flats[winner]), float(dist[ties][winner])


def _focal_tolerances(tolerances: Sequence[Tolerance], row: int, col: int) -> FloatArray:
    return np.array([t.at(row, col) for t in tolerances], dtype=np.float64)


def _check_search_args(geo_tolerance: float, elapsed_years: float) -> None:
    if not (math.isfinite(geo_tolerance) and geo_tolerance >= 0):
        raise ConfigurationError(
            what=f"Invalid geographic tolerance: {geo_tolerance}",
            fix="Use a finite geo_tolerance >= 0",
        )
    if not (elapsed_years > 0 and math.isfinite(elapsed_years)):
        raise ConfigurationError(
            what=f"Invalid elapsed time: {elapsed_years}",
            cause="Velocity divides distance by the years between periods",
            fix="Use a positive elapsed_years",
        )


def find_analogue(
    focal: CellIndex,
    baseline: npt.ArrayLike | Sequence[npt.ArrayLike],
    future: npt.ArrayLike | Sequence[npt.ArrayLike],
    grid: GridModel,
    elapsed_years: float,
    tolerances: Sequence[Any] | None = None,
    geo_tolerance: float | None = None,
    *,
    config: Config | None = None,
    index: AnalogueIndex | None = None,
) -> AnalogueMatch:
    """Find the nearest climate analogue of a single focal cell.

    Args:
        focal: Focal cell ``(row, col)``.
        baseline: Baseline climate, one 2-D array per variable.
        future: Future climate, same layout as *baseline*.
        grid: Grid of the climate arrays.
        elapsed_years: Years between baseline and future periods.
        tolerances: One tolerance per variable (``config.tolerances``).
        geo_tolerance: Distance budget (``config.geo_tolerance``).
        config: Run configuration (module default if ``None``).
        index: Prebuilt ``AnalogueIndex`` over *future* to reuse.

    Returns:
        ``AnalogueMatch``; ``NO_ANALOGUE_FOUND`` when no cell within the
        distance budget satisfies every tolerance, ``NO_DATA`` when the
        focal cell has no baseline.

    Raises:
        ConfigurationError: For mismatched inputs or invalid tolerances.

    Example:
        >>> grid = GridModel.regular(1, 3, 0.0, 0.0, 50.0, lonlat=False)
        >>> match = find_analogue(
        ...     (0, 0), [[10.0, 20.0, 30.0]], [[0.0, 9.8, 10.1]], grid,
        ...     elapsed_years=10.0, tolerances=[0.5], geo_tolerance=200.0,
        ...     config=Config(lonlat=False, distance_function="planar"),
        ... )
        >>> match.match, match.velocity
        ((0, 1), 5.0)
    """
    cfg = resolve_config(config, geo_tolerance=geo_tolerance)
    base = _stack_variables(baseline, grid, "Baseline")
    fut = _stack_variables(future, grid, "Future")
    if base.shape != fut.shape:
        raise ConfigurationError(
            what="Baseline and future variable counts differ",
            cause=f"Baseline {base.shape[0]}, future {fut.shape[0]}",
            fix="Pass the same variables for both periods",
        )
    tols = resolve_tolerances(
        tolerances if tolerances is not None else cfg.tolerances,
        base.shape[0],
        grid,
        cfg.threshold_mode,
    )
    _check_search_args(cfg.geo_tolerance, elapsed_years)
    if index is None:
        index = AnalogueIndex(fut, grid, cfg.distance_function)

    row, col = focal
    tol_values = _focal_tolerances(tols, row, col)
    focal_base = base[:, row, col]
    if not (grid.is_valid(row, col) and np.all(np.isfinite(focal_base)) and np.all(np.isfinite(tol_values))):
        return AnalogueMatch(focal, None, None, elapsed_years, None, CellStatus.NO_DATA)

    fx, fy = grid.coords(row, col)
    (positions,) = index.within(np.array([fx]), np.array([fy]), cfg.geo_tolerance)
    picked = _select(
        index,
        grid.flat_index(row, col),
        fx,
        fy,
        focal_base,
        tol_values,
        positions,
        cfg.geo_tolerance,
        cfg.exclude_self,
    )
    if picked is None:
        return AnalogueMatch(focal, None, None, elapsed_years, None, CellStatus.NO_ANALOGUE_FOUND)
    flat, dist = picked
    return AnalogueMatch(
        focal=focal,
        match=grid.cell_from_flat(flat),
        distance=dist,
        elapsed_years=elapsed_years,
        velocity=dist / elapsed_years,
        status=CellStatus.OK,
    )


def search_analogues(
    baseline: npt.ArrayLike | Sequence[npt.ArrayLike],
    future: npt.ArrayLike | Sequence[npt.ArrayLike],
    grid: GridModel,
    elapsed_years: float,
    tolerances: Sequence[Any] | None = None,
    geo_tolerance: float | None = None,
    *,
    config: Config | None = None,
    max_workers: int | None = None,
) -> AnalogueField:
    """Find the nearest climate analogue of every focal cell.

    All inputs are validated before any search starts. The spatial
    index is built once, then focal rows are searched in batches on the
    worker pool.

    Args:
        baseline: Baseline climate, one 2-D array per variable.
        future: Future climate, same layout as *baseline*.
        grid: Grid of the climate arrays.
        elapsed_years: Years between baseline and future periods.
        tolerances: One tolerance per variable (``config.tolerances``);
            per-cell arrays require ``threshold_mode='variable'``.
        geo_tolerance: Distance budget (``config.geo_tolerance``).
        config: Run configuration (module default if ``None``).
        max_workers: Override ``config.max_workers``.

    Returns:
        ``AnalogueField`` with match cell, distance and velocity per cell.

    Raises:
        ConfigurationError: For mismatched inputs or invalid tolerances.
    """
    cfg = resolve_config(config, geo_tolerance=geo_tolerance, max_workers=max_workers)
    base = _stack_variables(baseline, grid, "Baseline")
    fut = _stack_variables(future, grid, "Future")
    if base.shape != fut.shape:
        raise ConfigurationError(
            what="Baseline and future variable counts differ",
            cause=f"Baseline {base.shape[0]}, future {fut.shape[0]}",
            fix="Pass the same variables for both periods",
        )
    tols = resolve_tolerances(
        tolerances if tolerances is not None else cfg.tolerances,
        base.shape[0],
        grid,
        cfg.threshold_mode,
    )
    _check_search_args(cfg.geo_tolerance, elapsed_years)
    index = AnalogueIndex(fut, grid, cfg.distance_function)

    shape = grid.shape
    status = np.full(shape, CellStatus.NO_DATA, dtype=np.int8)
    match_row = np.full(shape, -1, dtype=np.int64)
    match_col = np.full(shape, -1, dtype=np.int64)
    distance = np.full(shape, np.nan)
    velocity = np.full(shape, np.nan)
    xs = grid.x

    def _batch(rows: range) -> None:
        for row in rows:
            fy = float(grid.y[row])
            hits = index.within(xs, np.full(xs.shape, fy), cfg.geo_tolerance)
            for col in range(grid.ncols):
                focal_base = base[:, row, col]
                tol_values = _focal_tolerances(tols, row, col)
                if not (
                    grid.valid[row, col]
                    and np.all(np.isfinite(focal_base))
                    and np.all(np.isfinite(tol_values))
                ):
                    continue
                picked = _select(
                    index,
                    grid.flat_index(row, col),
                    float(xs[col]),
                    fy,
                    focal_base,
                    tol_values,
                    hits[col],
                    cfg.geo_tolerance,
                    cfg.exclude_self,
                )
                if picked is None:
                    status[row, col] = CellStatus.NO_ANALOGUE_FOUND
                    continue
                flat, dist = picked
                match_row[row, col], match_col[row, col] = grid.cell_from_flat(flat)
                distance[row, col] = dist
                velocity[row, col] = dist / elapsed_years
                status[row, col] = CellStatus.OK

    run_row_batches(_batch, grid.nrows, cfg.max_workers, label="analogue batches")

    great_circle = index.distance_function is DistanceFunction.GREAT_CIRCLE
    distance_units = "km" if great_circle else "map units"
    result = AnalogueField(
        grid=grid,
        status=status,
        metadata=metadata_for(
            grid,
            "distance_velocity",
            f"{distance_units}/yr",
            distance_units=distance_units,
            geo_tolerance=cfg.geo_tolerance,
            distance_function=index.distance_function.value,
            threshold_mode=cfg.threshold_mode.value,
            exclude_self=cfg.exclude_self,
            n_variables=int(base.shape[0]),
        ),
        match_row=match_row,
        match_col=match_col,
        distance=distance,
        velocity=velocity,
        elapsed_years=float(elapsed_years),
    )
    n_none = result.count(CellStatus.NO_ANALOGUE_FOUND)
    if n_none:
        result.warnings.append(
            f"{n_none} focal cell(s) have no analogue within {cfg.geo_tolerance:g}"
        )
    logger.info(
        "Analogue search over %d candidates: %s",
        len(index),
        result.status_counts(),
    )
    return result
