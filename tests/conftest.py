"""Shared test fixtures for the climvelocity test suite."""

from __future__ import annotations

import numpy as np
import pytest

from climvelocity.config import Config
from climvelocity.grid import GridModel, TimeSeriesStack


@pytest.fixture
def test_config() -> Config:
    """Return a fresh default Config instance for test isolation."""
    return Config()


@pytest.fixture
def planar_config() -> Config:
    """Config for projected grids measured in map units."""
    return Config(lonlat=False, distance_function="planar")


@pytest.fixture
def planar_grid() -> GridModel:
    """5 x 5 projected grid with 10-unit cells, rows running south to north."""
    return GridModel.regular(nrows=5, ncols=5, x0=5.0, y0=5.0, res=10.0, lonlat=False)


@pytest.fixture
def lonlat_grid() -> GridModel:
    """6 x 8 one-degree grid in the mid latitudes, north-up rows."""
    return GridModel.regular(
        nrows=6, ncols=8, x0=10.5, y0=45.5, res=1.0, lonlat=True, north_up=True
    )


@pytest.fixture
def linear_stack(planar_grid: GridModel) -> TimeSeriesStack:
    """Noise-free series: value = 0.1 * col * year offset + col, 20 years."""
    years = np.arange(2000, 2020, dtype=float)
    cols = np.arange(planar_grid.ncols, dtype=float)
    slopes = np.broadcast_to(0.1 * (cols + 1), planar_grid.shape)
    values = (
        slopes[np.newaxis] * (years - 2000)[:, np.newaxis, np.newaxis]
        + np.broadcast_to(cols, planar_grid.shape)[np.newaxis]
    )
    return TimeSeriesStack(values, years, planar_grid)
