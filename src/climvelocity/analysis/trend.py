"""Per-cell linear trends of climate time series.

Ordinary least squares of value on time, fitted independently for
every cell over its non-missing observations only. Time is centred on
the mean of each cell's observed time points before fitting, so the
intercept is the series mean and the normal equations stay well
conditioned for calendar-year time axes.

Pure computation module: numpy arrays in, ``TrendResult`` out.
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np
import numpy.typing as npt
from scipy import stats

from climvelocity._pipeline import run_row_batches
from climvelocity._types import CellStatus, FloatArray
from climvelocity.config import Config, resolve_config
from climvelocity.exceptions import ConfigurationError
from climvelocity.grid import TimeSeriesStack, to_decimal_years
from climvelocity.results import CellTrend, TrendResult, metadata_for

logger = logging.getLogger(__name__)


def _fit_block(
    values: FloatArray,
    times: FloatArray,
    usable: npt.NDArray[np.bool_],
) -> dict[str, Any]:
    """Fit OLS trends to a block of series.

    Args:
        values: Array ``(time, ...)`` of observations.
        times: Time axis ``(time,)``.
        usable: Boolean mask, same shape as *values*.

    Returns:
        Dict of arrays shaped like ``values.shape[1:]``: ``n``, ``slope``,
        ``mean``, ``std_error``, ``p_value``, ``sxx``.
    """
    t = times.reshape((-1,) + (1,) * (values.ndim - 1))
    n = usable.sum(axis=0)

    with np.errstate(invalid="ignore", divide="ignore"):
        t_mean = np.where(usable, t, 0.0).sum(axis=0) / n
        y_mean = np.where(usable, values, 0.0).sum(axis=0) / n
        tc = np.where(usable, t - t_mean, 0.0)
        yc = np.where(usable, values - y_mean, 0.0)

        sxx = (tc * tc).sum(axis=0)
        sxy = (tc * yc).sum(axis=0)
        slope = sxy / sxx

        resid = np.where(usable, yc - slope * tc, 0.0)
        rss = (resid * resid).sum(axis=0)
        dof = n - 2
        std_error = np.where(dof > 0, np.sqrt(rss / np.maximum(dof, 1) / sxx), np.nan)

        t_stat = np.abs(slope) / std_error
        p_value = np.where(
            dof > 0,
            2.0 * stats.t.sf(t_stat, np.maximum(dof, 1)),
            np.nan,
        )
    # A perfect fit has zero standard error: significant unless the slope is zero.
    perfect = (dof > 0) & (std_error == 0)
    p_value = np.where(perfect, np.where(slope == 0, 1.0, 0.0), p_value)

    return {
        "n": n,
        "slope": slope,
        "mean": y_mean,
        "std_error": std_error,
        "p_value": p_value,
        "sxx": sxx,
    }


def _classify(
    fit: dict[str, Any],
    min_observations: int,
    significance: float | None,
    in_grid: npt.NDArray[np.bool_] | bool = True,
) -> npt.NDArray[np.int8]:
    n = fit["n"]
    status = np.full(np.shape(n), CellStatus.OK, dtype=np.int8)
    insufficient = (n < min_observations) | ~(fit["sxx"] > 0)
    status[insufficient] = CellStatus.INSUFFICIENT_DATA
    if significance is not None:
        weak = ~insufficient & ~(fit["p_value"] <= significance)
        status[weak] = CellStatus.NOT_SIGNIFICANT
    status[(n == 0) | ~np.asarray(in_grid)] = CellStatus.NO_DATA
    return status


def estimate_trend(
    series: npt.ArrayLike,
    times: Any,
    min_observations: int = 3,
    significance: float | None = None,
) -> CellTrend:
    """Fit a linear trend to a single time series.

    Missing observations (NaN) are ignored. With fewer than
    *min_observations* usable points the result is ``INSUFFICIENT_DATA``
    with no slope, never a zero slope.

    Args:
        series: Observations in time order.
        times: Observation times (decimal years or datetimes).
        min_observations: Minimum usable observations for a valid fit.
        significance: Optional p-value level for ``NOT_SIGNIFICANT``.

    Returns:
        ``CellTrend`` for the series.

    Raises:
        ConfigurationError: If lengths differ or *min_observations* < 2.

    Example:
        >>> trend = estimate_trend([1.0, 3.0, 5.0, 7.0], [2000, 2001, 2002, 2003])
        >>> trend.slope
        2.0
    """
    values = np.asarray(series, dtype=np.float64)
    t = to_decimal_years(times)
    if values.ndim != 1 or values.shape != t.shape:
        raise ConfigurationError(
            what="Series and time axis lengths differ",
            cause=f"{values.size} values for {t.size} times",
            fix="Pass one time stamp per observation",
        )
    if min_observations < 2:
        raise ConfigurationError(
            what=f"Invalid min_observations: {min_observations}",
            cause="A line needs at least two points",
            fix="Use min_observations >= 2",
        )

    fit = _fit_block(values, t, np.isfinite(values))
    status = CellStatus(int(_classify(fit, min_observations, significance)))
    fitted = status in (CellStatus.OK, CellStatus.NOT_SIGNIFICANT)

    def _scalar(name: str) -> float | None:
        value = float(fit[name])
        return None if np.isnan(value) else value

    return CellTrend(
        slope=_scalar("slope") if status is CellStatus.OK else None,
        mean=_scalar("mean") if int(fit["n"]) > 0 else None,
        std_error=_scalar("std_error") if fitted else None,
        p_value=_scalar("p_value") if fitted else None,
        n_obs=int(fit["n"]),
        status=status,
    )


def estimate_trends(
    stack: TimeSeriesStack,
    config: Config | None = None,
    *,
    min_observations: int | None = None,
    significance: float | None = None,
    max_workers: int | None = None,
) -> TrendResult:
    """Fit linear trends to every cell of a time-series stack.

    Cells masked out by the grid are ``NO_DATA``; cells below the
    observation minimum are ``INSUFFICIENT_DATA``; with a significance
    level, fitted but non-significant cells are ``NOT_SIGNIFICANT``.
    A bad cell never aborts the grid.

    Args:
        stack: Observations on a grid.
        config: Run configuration (module default if ``None``).
        min_observations: Override ``config.min_observations``.
        significance: Override ``config.significance``.
        max_workers: Override ``config.max_workers``.

    Returns:
        ``TrendResult`` with slope (units per year), mean, standard error,
        p-value and observation count per cell.
    """
    cfg = resolve_config(
        config,
        min_observations=min_observations,
        significance=significance,
        max_workers=max_workers,
    )
    grid = stack.grid
    shape = grid.shape
    slope = np.full(shape, np.nan)
    mean = np.full(shape, np.nan)
    std_error = np.full(shape, np.nan)
    p_value = np.full(shape, np.nan)
    n_obs = np.zeros(shape, dtype=np.int64)
    status = np.full(shape, CellStatus.NO_DATA, dtype=np.int8)

    values = stack.values
    times = stack.times

    def _batch(rows: range) -> None:
        sl = slice(rows.start, rows.stop)
        block = values[:, sl, :]
        in_grid = grid.valid[sl, :]
        usable = np.isfinite(block) & in_grid[np.newaxis, :, :]
        fit = _fit_block(block, times, usable)
        cell_status = _classify(fit, cfg.min_observations, cfg.significance, in_grid)
        fitted = (cell_status == CellStatus.OK) | (cell_status == CellStatus.NOT_SIGNIFICANT)

        status[sl] = cell_status
        n_obs[sl] = fit["n"]
        mean[sl] = np.where(fit["n"] > 0, fit["mean"], np.nan)
        slope[sl] = np.where(fitted, fit["slope"], np.nan)
        std_error[sl] = np.where(fitted, fit["std_error"], np.nan)
        p_value[sl] = np.where(fitted, fit["p_value"], np.nan)

    run_row_batches(_batch, grid.nrows, cfg.max_workers, label="trend batches")

    result = TrendResult(
        grid=grid,
        status=status,
        metadata=metadata_for(
            grid,
            "trend",
            "units/yr",
            min_observations=cfg.min_observations,
            significance=cfg.significance,
            n_times=len(stack),
        ),
        slope=slope,
        mean=mean,
        std_error=std_error,
        p_value=p_value,
        n_obs=n_obs,
    )
    n_valid = int(result.valid.sum())
    logger.info(
        "Fitted trends: %d valid of %d cells (%s)",
        n_valid,
        grid.size,
        result.status_counts(),
    )
    if n_valid == 0:
        result.warnings.append("No cell has enough observations for a trend")
        logger.warning("No valid trend in any cell; check min_observations")
    return result
