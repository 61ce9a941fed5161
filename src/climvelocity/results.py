"""Result object model for climate-velocity outputs.

Every gridded result pairs numpy value arrays with an ``int8`` status
array of ``CellStatus`` codes. Value arrays hold NaN where nothing could
be computed, but callers should read the status (or use the per-cell
accessors, which return ``None``) rather than test for NaN.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np
import numpy.typing as npt
from pydantic import BaseModel, Field

from climvelocity._types import CellIndex, CellStatus, FloatArray, TrajectoryState

if TYPE_CHECKING:
    import pandas as pd
    import xarray as xr

    from climvelocity.grid import GridModel


class FieldMetadata(BaseModel):
    """Metadata for gridded results.

    Uses Pydantic (not dataclass) for JSON serialization at export
    boundaries.

    Attributes:
        quantity: What the field measures (e.g. ``"trend"``).
        units: Units of the primary value (e.g. ``"degC/yr"``).
        distance_units: ``"km"`` for lon/lat grids, ``"map units"`` otherwise.
        bounds: Outer grid edges ``{"minx", "miny", "maxx", "maxy"}``.
        parameters: Run parameters that produced the field.

    Example:
        >>> meta = FieldMetadata(quantity="trend", units="degC/yr")
        >>> meta.distance_units
        'km'
    """

    quantity: str = ""
    units: str = ""
    distance_units: str = "km"
    bounds: dict[str, float] = Field(default_factory=dict)
    parameters: dict[str, Any] = Field(default_factory=dict)


def metadata_for(
    grid: GridModel,
    quantity: str,
    units: str = "",
    distance_units: str | None = None,
    **parameters: Any,
) -> FieldMetadata:
    """Build ``FieldMetadata`` describing a field on *grid*.

    *distance_units* defaults to the grid's native unit (km on lon/lat
    grids).
    """
    xmin, xmax, ymin, ymax = grid.extent
    if distance_units is None:
        distance_units = "km" if grid.lonlat else "map units"
    return FieldMetadata(
        quantity=quantity,
        units=units,
        distance_units=distance_units,
        bounds={"minx": xmin, "miny": ymin, "maxx": xmax, "maxy": ymax},
        parameters=parameters,
    )


def _optional(value: float) -> float | None:
    return None if np.isnan(value) else float(value)


@dataclass
class FieldResult:
    """Base class for per-cell results on a grid.

    Dataclass (not Pydantic) because numpy arrays are the payload.

    Attributes:
        grid: Grid the field is defined on.
        status: ``CellStatus`` codes, shape ``grid.shape``.
        metadata: Quantity, units and run parameters.
        warnings: Human-readable notes about the computation.
    """

    grid: GridModel
    status: npt.NDArray[np.int8]
    metadata: FieldMetadata = field(default_factory=FieldMetadata)
    warnings: list[str] = field(default_factory=list)

    @property
    def valid(self) -> npt.NDArray[np.bool_]:
        """Cells with status ``OK``."""
        return self.status == CellStatus.OK

    def status_at(self, row: int, col: int) -> CellStatus:
        return CellStatus(int(self.status[row, col]))

    def count(self, status: CellStatus) -> int:
        """Number of cells with the given status."""
        return int(np.count_nonzero(self.status == status))

    def status_counts(self) -> dict[str, int]:
        """Cell counts keyed by status name, omitting absent statuses."""
        codes, counts = np.unique(self.status, return_counts=True)
        return {CellStatus(int(c)).name: int(n) for c, n in zip(codes, counts)}

    def _value_arrays(self) -> dict[str, FloatArray]:
        return {}

    def __repr__(self) -> str:
        """Return a summary: shape, quantity and valid-cell count."""
        cls_name = type(self).__name__
        parts = [
            f"shape={self.grid.shape}",
            f"valid={int(self.valid.sum())}/{self.grid.size}",
        ]
        if self.metadata.quantity:
            parts.insert(0, f"quantity={self.metadata.quantity!r}")
        if self.warnings:
            parts.append(f"warnings={len(self.warnings)}")
        return f"{cls_name}({', '.join(parts)})"

    def to_dataframe(self, *, valid_only: bool = False) -> pd.DataFrame:
        """Export the field as one row per cell.

        Columns: ``row``, ``col``, ``x``, ``y``, ``status`` (status name)
        and one column per value array.

        Args:
            valid_only: Keep only cells with status ``OK``.

        Returns:
            pandas DataFrame.
        """
        import pandas as pd

        rows, cols = np.indices(self.grid.shape)
        xx, yy = self.grid.mesh()
        data: dict[str, Any] = {
            "row": rows.ravel(),
            "col": cols.ravel(),
            "x": xx.ravel(),
            "y": yy.ravel(),
            "status": [CellStatus(int(s)).name for s in self.status.ravel()],
        }
        for name, values in self._value_arrays().items():
            data[name] = np.asarray(values).ravel()
        df = pd.DataFrame(data)
        if valid_only:
            df = df[self.valid.ravel()].reset_index(drop=True)
        return df

    def to_dataset(self) -> xr.Dataset:
        """Export the field as an xarray Dataset on the grid's coordinates."""
        import xarray as xr

        ydim, xdim = ("lat", "lon") if self.grid.lonlat else ("y", "x")
        coords = {ydim: self.grid.y, xdim: self.grid.x}
        variables = {
            name: ((ydim, xdim), np.asarray(values))
            for name, values in self._value_arrays().items()
        }
        variables["status"] = ((ydim, xdim), self.status)
        ds = xr.Dataset(variables, coords=coords)
        ds.attrs.update(
            {
                "quantity": self.metadata.quantity,
                "units": self.metadata.units,
                "distance_units": self.metadata.distance_units,
            }
        )
        return ds


# ── Trend ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CellTrend:
    """Linear trend fitted to one cell's series.

    Attributes:
        slope: Rate of change per year, ``None`` unless valid.
        mean: Fitted value at the centred time (the series mean).
        std_error: Standard error of the slope (needs 3+ observations).
        p_value: Two-sided p-value of the slope.
        n_obs: Number of non-missing observations used.
        status: ``OK``, ``INSUFFICIENT_DATA``, ``NOT_SIGNIFICANT`` or
            ``NO_DATA``.
    """

    slope: float | None
    mean: float | None
    std_error: float | None
    p_value: float | None
    n_obs: int
    status: CellStatus

    @property
    def valid(self) -> bool:
        return self.status is CellStatus.OK


@dataclass(repr=False)
class TrendResult(FieldResult):
    """Per-cell linear trends.

    Attributes:
        slope: Trend per year (NaN where no fit was possible).
        mean: Series mean (fitted value at the centred time).
        std_error: Standard error of the slope.
        p_value: Two-sided p-value of the slope.
        n_obs: Non-missing observation count per cell.
    """

    slope: FloatArray = field(default_factory=lambda: np.empty((0, 0)))
    mean: FloatArray = field(default_factory=lambda: np.empty((0, 0)))
    std_error: FloatArray = field(default_factory=lambda: np.empty((0, 0)))
    p_value: FloatArray = field(default_factory=lambda: np.empty((0, 0)))
    n_obs: npt.NDArray[np.int64] = field(default_factory=lambda: np.empty((0, 0), dtype=np.int64))

    def _value_arrays(self) -> dict[str, FloatArray]:
        return {
            "slope": self.slope,
            "mean": self.mean,
            "std_error": self.std_error,
            "p_value": self.p_value,
            "n_obs": self.n_obs,
        }

    def at(self, row: int, col: int) -> CellTrend:
        """Trend of one cell as a ``CellTrend``."""
        status = self.status_at(row, col)
        ok = status is CellStatus.OK
        return CellTrend(
            slope=_optional(self.slope[row, col]) if ok else None,
            mean=_optional(self.mean[row, col]),
            std_error=_optional(self.std_error[row, col]),
            p_value=_optional(self.p_value[row, col]),
            n_obs=int(self.n_obs[row, col]),
            status=status,
        )

    def slope_at(self, row: int, col: int) -> float | None:
        """Slope of one cell, ``None`` unless the fit is valid."""
        if self.status[row, col] != CellStatus.OK:
            return None
        return float(self.slope[row, col])


# ── Gradient ────────────────────────────────────────────────────────


@dataclass(repr=False)
class GradientResult(FieldResult):
    """Per-cell spatial gradients.

    ``ZERO_GRADIENT`` cells have a defined magnitude of 0 and no bearing;
    ``UNDEFINED_GRADIENT`` cells have neither.

    Attributes:
        magnitude: Gradient magnitude (value units per km or map unit).
        bearing: Compass bearing towards increasing values, degrees.
        east: Eastward component of the gradient.
        north: Northward component of the gradient.
    """

    magnitude: FloatArray = field(default_factory=lambda: np.empty((0, 0)))
    bearing: FloatArray = field(default_factory=lambda: np.empty((0, 0)))
    east: FloatArray = field(default_factory=lambda: np.empty((0, 0)))
    north: FloatArray = field(default_factory=lambda: np.empty((0, 0)))

    def _value_arrays(self) -> dict[str, FloatArray]:
        return {
            "magnitude": self.magnitude,
            "bearing": self.bearing,
            "east": self.east,
            "north": self.north,
        }

    def magnitude_at(self, row: int, col: int) -> float | None:
        """Gradient magnitude; 0.0 on flat cells, ``None`` if unmeasurable."""
        status = self.status[row, col]
        if status == CellStatus.ZERO_GRADIENT:
            return 0.0
        if status != CellStatus.OK:
            return None
        return float(self.magnitude[row, col])

    def bearing_at(self, row: int, col: int) -> float | None:
        """Gradient bearing; ``None`` unless the magnitude is positive."""
        if self.status[row, col] != CellStatus.OK:
            return None
        return float(self.bearing[row, col])


# ── Velocity ────────────────────────────────────────────────────────


@dataclass(repr=False)
class VelocityField(FieldResult):
    """Gradient-based climate velocity (gVoCC).

    Attributes:
        magnitude: Signed velocity (km/yr or map units/yr), sign of the
            trend.
        bearing: Compass direction of displacement, degrees.
        trend_status: Status of the input trend per cell.
        gradient_status: Status of the input gradient per cell.
    """

    magnitude: FloatArray = field(default_factory=lambda: np.empty((0, 0)))
    bearing: FloatArray = field(default_factory=lambda: np.empty((0, 0)))
    trend_status: npt.NDArray[np.int8] = field(default_factory=lambda: np.empty((0, 0), dtype=np.int8))
    gradient_status: npt.NDArray[np.int8] = field(default_factory=lambda: np.empty((0, 0), dtype=np.int8))

    def _value_arrays(self) -> dict[str, FloatArray]:
        return {"magnitude": self.magnitude, "bearing": self.bearing}

    def magnitude_at(self, row: int, col: int) -> float | None:
        """Signed velocity, ``None`` where undefined."""
        if self.status[row, col] != CellStatus.OK:
            return None
        return float(self.magnitude[row, col])

    def bearing_at(self, row: int, col: int) -> float | None:
        """Displacement bearing, ``None`` where undefined."""
        if self.status[row, col] != CellStatus.OK:
            return None
        return float(self.bearing[row, col])

    def cause_at(self, row: int, col: int) -> CellStatus:
        """Why a cell's velocity is undefined (``OK`` if it is defined).

        Returns the upstream trend status if that is not ``OK``,
        otherwise the gradient status.
        """
        if self.status[row, col] == CellStatus.OK:
            return CellStatus.OK
        trend = CellStatus(int(self.trend_status[row, col]))
        if trend is not CellStatus.OK:
            return trend
        return CellStatus(int(self.gradient_status[row, col]))

    def speed(self) -> FloatArray:
        """Unsigned velocity; NaN where undefined."""
        return np.where(self.valid, np.abs(self.magnitude), np.nan)


@dataclass(repr=False)
class ResidenceTimeResult(FieldResult):
    """Years for the velocity to cross each cell's characteristic length.

    Attributes:
        years: Residence time in years.
        diameter: Equivalent-circle diameter of the cell.
    """

    years: FloatArray = field(default_factory=lambda: np.empty((0, 0)))
    diameter: FloatArray = field(default_factory=lambda: np.empty((0, 0)))

    def _value_arrays(self) -> dict[str, FloatArray]:
        return {"years": self.years, "diameter": self.diameter}


# ── Trajectories ────────────────────────────────────────────────────


@dataclass(frozen=True)
class Waypoint:
    """A trajectory position with its cell and elapsed time in years."""

    x: float
    y: float
    row: int
    col: int
    elapsed: float


@dataclass
class Trajectory:
    """Path traced from a seed cell through a velocity field.

    Attributes:
        seed: Starting cell.
        waypoints: Positions, first is the seed centre at elapsed 0.
        state: Terminal state of the integration.

    Example:
        >>> traj = Trajectory(seed=(0, 0), waypoints=[Waypoint(0.5, 0.5, 0, 0, 0.0)])
        >>> traj.elapsed
        0.0
    """

    seed: CellIndex
    waypoints: list[Waypoint] = field(default_factory=list)
    state: TrajectoryState = TrajectoryState.RUNNING

    @property
    def elapsed(self) -> float:
        """Elapsed years at the last waypoint."""
        return self.waypoints[-1].elapsed if self.waypoints else 0.0

    @property
    def end_cell(self) -> CellIndex:
        last = self.waypoints[-1]
        return last.row, last.col

    def __len__(self) -> int:
        return len(self.waypoints)

    def __repr__(self) -> str:
        return (
            f"Trajectory(seed={self.seed}, state={self.state.value}, "
            f"waypoints={len(self.waypoints)}, elapsed={self.elapsed:g})"
        )

    def to_dataframe(self) -> pd.DataFrame:
        """Export waypoints, one row each, with the terminal state."""
        import pandas as pd

        df = pd.DataFrame(
            [
                {"x": w.x, "y": w.y, "row": w.row, "col": w.col, "elapsed": w.elapsed}
                for w in self.waypoints
            ],
            columns=["x", "y", "row", "col", "elapsed"],
        )
        df["seed_row"], df["seed_col"] = self.seed
        df["state"] = self.state.value
        return df


# ── Analogues ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class AnalogueMatch:
    """Nearest climate analogue of one focal cell.

    Attributes:
        focal: Focal cell.
        match: Matched cell, ``None`` when no analogue was found.
        distance: Distance to the match (km or map units).
        elapsed_years: Time between baseline and future periods.
        velocity: ``distance / elapsed_years``, ``None`` without a match.
        status: ``OK``, ``NO_ANALOGUE_FOUND`` or ``NO_DATA``.
    """

    focal: CellIndex
    match: CellIndex | None
    distance: float | None
    elapsed_years: float
    velocity: float | None
    status: CellStatus

    @property
    def found(self) -> bool:
        return self.match is not None


@dataclass(repr=False)
class AnalogueField(FieldResult):
    """Distance-based climate velocity (dVoCC) for every focal cell.

    Attributes:
        match_row: Row of the matched cell (meaningful where ``OK``).
        match_col: Column of the matched cell (meaningful where ``OK``).
        distance: Distance to the matched cell.
        velocity: Distance divided by elapsed years.
        elapsed_years: Time between baseline and future periods.
    """

    match_row: npt.NDArray[np.int64] = field(default_factory=lambda: np.empty((0, 0), dtype=np.int64))
    match_col: npt.NDArray[np.int64] = field(default_factory=lambda: np.empty((0, 0), dtype=np.int64))
    distance: FloatArray = field(default_factory=lambda: np.empty((0, 0)))
    velocity: FloatArray = field(default_factory=lambda: np.empty((0, 0)))
    elapsed_years: float = 1.0

    def _value_arrays(self) -> dict[str, FloatArray]:
        return {
            "match_row": self.match_row,
            "match_col": self.match_col,
            "distance": self.distance,
            "velocity": self.velocity,
        }

    def at(self, row: int, col: int) -> AnalogueMatch:
        """Analogue match of one focal cell."""
        status = self.status_at(row, col)
        if status is not CellStatus.OK:
            return AnalogueMatch(
                focal=(row, col),
                match=None,
                distance=None,
                elapsed_years=self.elapsed_years,
                velocity=None,
                status=status,
            )
        return AnalogueMatch(
            focal=(row, col),
            match=(int(self.match_row[row, col]), int(self.match_col[row, col])),
            distance=float(self.distance[row, col]),
            elapsed_years=self.elapsed_years,
            velocity=float(self.velocity[row, col]),
            status=status,
        )


@dataclass
class VelocityRun:
    """Every stage of a gradient-velocity run, kept for reuse.

    Attributes:
        trend: Per-cell trends.
        gradient: Spatial gradient of the mean field.
        velocity: Gradient-based velocity.
        mean_field: Climatological mean the gradient was computed on.
    """

    trend: TrendResult
    gradient: GradientResult
    velocity: VelocityField
    mean_field: FloatArray

    @property
    def grid(self) -> GridModel:
        return self.velocity.grid

    def __repr__(self) -> str:
        return (
            f"VelocityRun(shape={self.grid.shape}, "
            f"valid_velocity={int(self.velocity.valid.sum())}/{self.grid.size})"
        )
