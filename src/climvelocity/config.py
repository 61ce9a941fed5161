"""Run configuration for climate-velocity computations.

A single frozen ``Config`` captures every knob of a run: the trend
observation policy, trajectory integration steps, analogue tolerances
and the worker pool size. Components receive the config explicitly;
the module-level default only backs calls that omit it.
"""

from __future__ import annotations

import logging
import math
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from climvelocity._types import BoundaryPolicy, DistanceFunction, ThresholdMode

logger = logging.getLogger("climvelocity")


class Config(BaseModel):
    """Climate-velocity run configuration.

    Immutable pydantic model. Field-level problems (negative tolerances,
    non-positive steps) are rejected at construction; checks that need
    the input arrays happen when a computation is called.

    Args:
        min_observations: Minimum non-missing observations for a trend fit.
        significance: Optional p-value level; trends above it are
            flagged ``NOT_SIGNIFICANT``.
        step_years: Trajectory integration step in years.
        total_years: Trajectory integration horizon in years.
        stall_steps: Consecutive steps moving less than a millionth of a
            cell tolerated before a trajectory is declared stalled.
        boundary_policy: Trajectory behaviour on stepping into no-data.
        threshold_mode: ``single`` (one tolerance per variable) or
            ``variable`` (per-cell tolerance grids).
        tolerances: Per-variable tolerances for ``single`` mode.
        geo_tolerance: Maximum analogue distance (km for great-circle,
            map units for planar).
        distance_function: ``great_circle`` or ``planar``.
        lonlat: Whether grid coordinates are longitude/latitude degrees.
            Only used when a grid is built from an ``xarray.DataArray``,
            and only if set explicitly; otherwise the dimension names
            decide. A ``GridModel`` carries its own ``lonlat``.
        exclude_self: Whether a focal cell may be its own analogue.
        neighbourhood: 4 (rook) or 8 (queen) cell adjacency for grids
            built from an ``xarray.DataArray``.
        max_workers: Worker threads for per-cell work (1 = serial).

    Example:
        >>> cfg = Config(tolerances=[0.5], geo_tolerance=1000.0)
        >>> cfg.distance_function
        <DistanceFunction.GREAT_CIRCLE: 'great_circle'>
    """

    model_config = ConfigDict(frozen=True, validate_default=True, extra="forbid")

    min_observations: int = 3
    significance: float | None = None
    step_years: float = 1.0 / 12.0
    total_years: float = 50.0
    stall_steps: int = 50
    boundary_policy: BoundaryPolicy = BoundaryPolicy.ABSORB
    threshold_mode: ThresholdMode = ThresholdMode.SINGLE
    tolerances: list[float] = [0.5]
    geo_tolerance: float = 500.0
    distance_function: DistanceFunction = DistanceFunction.GREAT_CIRCLE
    lonlat: bool = True
    exclude_self: bool = False
    neighbourhood: int = 8
    max_workers: int = 1

    @field_validator("min_observations")
    @classmethod
    def _validate_min_observations(cls, v: int) -> int:
        """A line needs at least two points."""
        if v < 2:
            msg = "min_observations must be at least 2"
            raise ValueError(msg)
        return v

    @field_validator("significance")
    @classmethod
    def _validate_significance(cls, v: float | None) -> float | None:
        """Ensure the significance level is a probability."""
        if v is not None and not (0.0 < v <= 1.0):
            msg = "significance must be in (0, 1]"
            raise ValueError(msg)
        return v

    @field_validator("step_years", "total_years")
    @classmethod
    def _validate_positive_years(cls, v: float) -> float:
        """Ensure integration times are finite and positive."""
        if not (math.isfinite(v) and v > 0):
            msg = "step_years and total_years must be finite and greater than 0"
            raise ValueError(msg)
        return v

    @field_validator("stall_steps", "max_workers")
    @classmethod
    def _validate_at_least_one(cls, v: int) -> int:
        """Ensure counters are at least 1."""
        if v < 1:
            msg = "stall_steps and max_workers must be at least 1"
            raise ValueError(msg)
        return v

    @field_validator("tolerances")
    @classmethod
    def _validate_tolerances(cls, v: list[float]) -> list[float]:
        """Ensure every tolerance is a finite non-negative number."""
        if not all(math.isfinite(t) and t >= 0 for t in v):
            msg = "tolerances must be finite and non-negative"
            raise ValueError(msg)
        return v

    @field_validator("geo_tolerance")
    @classmethod
    def _validate_geo_tolerance(cls, v: float) -> float:
        """Ensure the geographic budget is finite and non-negative."""
        if not (math.isfinite(v) and v >= 0):
            msg = "geo_tolerance must be finite and non-negative"
            raise ValueError(msg)
        return v

    @field_validator("neighbourhood")
    @classmethod
    def _validate_neighbourhood(cls, v: int) -> int:
        """Only rook and queen adjacency are supported."""
        if v not in (4, 8):
            msg = "neighbourhood must be 4 or 8"
            raise ValueError(msg)
        return v

    @model_validator(mode="after")
    def _validate_distance_for_projection(self) -> Config:
        """Great-circle distances need geographic coordinates."""
        if not self.lonlat and self.distance_function is DistanceFunction.GREAT_CIRCLE:
            msg = "distance_function 'great_circle' requires lonlat=True"
            raise ValueError(msg)
        return self


_default_config = Config()


def configure(**kwargs: Any) -> None:
    """Set module-level default configuration.

    Creates a new ``Config`` from the current defaults merged with
    the provided keyword arguments.

    Args:
        **kwargs: Any ``Config`` field (e.g. ``min_observations``,
            ``geo_tolerance``, ``max_workers``).

    Raises:
        ValidationError: If a provided value fails pydantic validation.

    Example:
        >>> configure(min_observations=10, max_workers=4)
    """
    global _default_config  # noqa: PLW0603
    current = _default_config.model_dump(exclude_unset=True)
    current.update(kwargs)
    _default_config = Config(**current)
    logger.debug("Default configuration updated: %s", sorted(kwargs))


def get_default_config() -> Config:
    """Return the current module-level default configuration.

    Returns:
        The active ``Config`` instance.
    """
    return _default_config


def resolve_config(config: Config | None, **overrides: Any) -> Config:
    """Return *config* (or the default) with *overrides* applied.

    ``None`` values in *overrides* are ignored so callers can forward
    optional keyword arguments unchanged. Fields left at their defaults
    stay unset on the result (see ``Config.model_fields_set``).

    Args:
        config: Explicit configuration, or ``None`` for the default.
        **overrides: Field values replacing those of the base config.

    Returns:
        A validated ``Config``.
    """
    base = config if config is not None else get_default_config()
    updates = {k: v for k, v in overrides.items() if v is not None}
    if not updates:
        return base
    merged = base.model_dump(exclude_unset=True)
    merged.update(updates)
    return Config(**merged)
