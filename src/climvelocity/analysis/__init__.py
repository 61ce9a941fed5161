"""Climate-velocity computations: trends, gradients, velocities, analogues."""

from climvelocity.analysis.analogue import (
    AnalogueIndex,
    find_analogue,
    resolve_tolerances,
    search_analogues,
)
from climvelocity.analysis.gradient import estimate_gradient
from climvelocity.analysis.series import aggregate_series, period_mean
from climvelocity.analysis.trajectory import (
    endpoint_counts,
    trace_trajectories,
    trace_trajectory,
    trajectories_to_dataframe,
)
from climvelocity.analysis.trend import estimate_trend, estimate_trends
from climvelocity.analysis.velocity import compute_velocity, residence_time

__all__ = [
    "AnalogueIndex",
    "aggregate_series",
    "compute_velocity",
    "endpoint_counts",
    "estimate_gradient",
    "estimate_trend",
    "estimate_trends",
    "find_analogue",
    "period_mean",
    "residence_time",
    "resolve_tolerances",
    "search_analogues",
    "trace_trajectories",
    "trace_trajectory",
    "trajectories_to_dataframe",
]
