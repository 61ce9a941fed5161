"""Temporal aggregation and climatologies of time-series stacks.

Helpers that prepare inputs for the velocity calculations: collapsing
monthly series into annual ones before fitting trends, and averaging a
time window into a baseline or future climatology for the analogue
search.
"""

from __future__ import annotations

import logging
from typing import Any, Literal

import numpy as np
import pandas as pd

from climvelocity._types import FloatArray
from climvelocity.exceptions import ConfigurationError
from climvelocity.grid import TimeSeriesStack

logger = logging.getLogger(__name__)

_AGGREGATIONS = ("mean", "sum", "min", "max")


def aggregate_series(
    stack: TimeSeriesStack,
    dates: Any,
    freq: str = "YS",
    how: Literal["mean", "sum", "min", "max"] = "mean",
    min_count: int = 1,
) -> TimeSeriesStack:
    """Aggregate a stack to a coarser time step (e.g. monthly to annual).

    Missing observations are skipped. A period with fewer than
    *min_count* observations in a cell becomes missing for that cell.

    Args:
        stack: Input stack.
        dates: Datetime-like time stamps of the stack's layers.
        freq: pandas offset alias of the output step (``"YS"`` for
            calendar years, ``"QS"`` for quarters, ...).
        how: Aggregation applied within each period.
        min_count: Minimum observations per period and cell.

    Returns:
        New ``TimeSeriesStack`` on the same grid, one layer per period,
        stamped with the period start.

    Raises:
        ConfigurationError: For an unknown aggregation or mismatched dates.

    Example:
        >>> annual = aggregate_series(monthly, dates, freq="YS", how="mean")  # doctest: +SKIP
    """
    if how not in _AGGREGATIONS:
        raise ConfigurationError(
            what=f"Unknown aggregation: {how!r}",
            fix=f"Use one of {', '.join(_AGGREGATIONS)}",
        )
    index = pd.DatetimeIndex(pd.to_datetime(np.asarray(dates)))
    if len(index) != len(stack):
        raise ConfigurationError(
            what="Date count does not match the stack",
            cause=f"{len(index)} dates for {len(stack)} layers",
            fix="Pass one date per layer",
        )

    nrows, ncols = stack.grid.shape
    frame = pd.DataFrame(stack.values.reshape(len(stack), -1), index=index)
    resampled = frame.resample(freq)
    counts = resampled.count()
    if how == "sum":
        aggregated = resampled.sum(min_count=1)
    else:
        aggregated = getattr(resampled, how)()
    aggregated = aggregated.where(counts >= min_count)

    values = aggregated.to_numpy(dtype=np.float64).reshape(-1, nrows, ncols)
    logger.debug(
        "Aggregated %d layers to %d periods (freq=%s, how=%s)",
        len(stack),
        values.shape[0],
        freq,
        how,
    )
    return TimeSeriesStack(values, aggregated.index.to_numpy(), stack.grid)


def period_mean(
    stack: TimeSeriesStack,
    start: float,
    end: float,
    min_count: int = 1,
) -> FloatArray:
    """Mean climate over the time window ``start <= t <= end``.

    Args:
        stack: Input stack (times in decimal years).
        start: Window start in decimal years.
        end: Window end in decimal years.
        min_count: Minimum observations in the window per cell.

    Returns:
        2-D array of the grid's shape; NaN where a cell has fewer than
        *min_count* observations or is masked.

    Raises:
        ConfigurationError: If the window is empty or reversed.
    """
    if end < start:
        raise ConfigurationError(
            what=f"Reversed time window: {start} to {end}",
            fix="Pass start <= end",
        )
    in_window = (stack.times >= start) & (stack.times <= end)
    if not in_window.any():
        raise ConfigurationError(
            what=f"No layers between {start} and {end}",
            cause=f"Stack covers {stack.times.min():g} to {stack.times.max():g}",
            fix="Choose a window inside the stack's time span",
        )
    window = stack.values[in_window]
    finite = np.isfinite(window)
    counts = finite.sum(axis=0)
    with np.errstate(invalid="ignore", divide="ignore"):
        mean = np.where(finite, window, 0.0).sum(axis=0) / counts
    mean[counts < max(min_count, 1)] = np.nan
    mean[~stack.grid.valid] = np.nan
    return mean
