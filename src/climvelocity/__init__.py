"""climvelocity: climate-velocity metrics from gridded climate time series.

Example:
    >>> import climvelocity as cv
    >>>
    >>> grid = cv.GridModel(lon, lat, valid=ocean_mask)
    >>> stack = cv.TimeSeriesStack(sst, years, grid)
    >>>
    >>> # Gradient-based velocity and trajectories
    >>> run = cv.gradient_velocity(stack, config=cv.Config(min_observations=10))
    >>> paths = cv.velocity_trajectories(run, total_years=50)
    >>>
    >>> # Distance-based velocity from two climatologies
    >>> dvocc = cv.distance_velocity(baseline, future, grid, elapsed_years=50)
"""

from climvelocity.__about__ import __version__
from climvelocity._types import (
    BoundaryPolicy,
    CellStatus,
    DistanceFunction,
    FixedTolerance,
    PerCellTolerance,
    ThresholdMode,
    TrajectoryState,
)
from climvelocity.analysis import (
    aggregate_series,
    compute_velocity,
    endpoint_counts,
    estimate_gradient,
    estimate_trend,
    estimate_trends,
    find_analogue,
    period_mean,
    residence_time,
    search_analogues,
    trace_trajectories,
    trace_trajectory,
)
from climvelocity.api import distance_velocity, gradient_velocity, velocity_trajectories
from climvelocity.config import Config, configure
from climvelocity.exceptions import ClimVelocityError, ConfigurationError, GridError
from climvelocity.grid import GridModel, TimeSeriesStack
from climvelocity.results import (
    AnalogueField,
    AnalogueMatch,
    CellTrend,
    FieldMetadata,
    GradientResult,
    Trajectory,
    TrendResult,
    VelocityField,
    VelocityRun,
)

__all__ = [
    # Version
    "__version__",
    # Pipelines
    "distance_velocity",
    "gradient_velocity",
    "velocity_trajectories",
    # Components
    "aggregate_series",
    "compute_velocity",
    "endpoint_counts",
    "estimate_gradient",
    "estimate_trend",
    "estimate_trends",
    "find_analogue",
    "period_mean",
    "residence_time",
    "search_analogues",
    "trace_trajectories",
    "trace_trajectory",
    # Grid
    "GridModel",
    "TimeSeriesStack",
    # Configuration
    "Config",
    "configure",
    # Types
    "BoundaryPolicy",
    "CellStatus",
    "DistanceFunction",
    "FixedTolerance",
    "PerCellTolerance",
    "ThresholdMode",
    "TrajectoryState",
    # Results
    "AnalogueField",
    "AnalogueMatch",
    "CellTrend",
    "FieldMetadata",
    "GradientResult",
    "Trajectory",
    "TrendResult",
    "VelocityField",
    "VelocityRun",
    # Exceptions
    "ClimVelocityError",
    "ConfigurationError",
    "GridError",
]
