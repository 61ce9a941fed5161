"""Tests for the climvelocity internal types."""

from __future__ import annotations

import numpy as np
import pytest

from climvelocity._types import (
    BoundaryPolicy,
    CellStatus,
    DistanceFunction,
    FixedTolerance,
    PerCellTolerance,
    ThresholdMode,
    TrajectoryState,
)


@pytest.mark.unit
class TestEnums:
    """Verify enum values used in configs and exports."""

    def test_cell_status_fits_int8(self) -> None:
        assert all(-128 <= s.value <= 127 for s in CellStatus)
        assert CellStatus.OK == 0

    def test_string_enums_accept_values(self) -> None:
        assert ThresholdMode("variable") is ThresholdMode.VARIABLE
        assert DistanceFunction("planar") is DistanceFunction.PLANAR
        assert BoundaryPolicy("reflect") is BoundaryPolicy.REFLECT

    def test_trajectory_terminal_states_distinct(self) -> None:
        terminal = {
            TrajectoryState.COMPLETED,
            TrajectoryState.OUT_OF_BOUNDS,
            TrajectoryState.NO_DATA,
            TrajectoryState.STALLED,
        }
        assert len(terminal) == 4
        assert TrajectoryState.RUNNING not in terminal


@pytest.mark.unit
class TestTolerances:
    """Verify the fixed and per-cell tolerance variants."""

    def test_fixed_same_everywhere(self) -> None:
        tol = FixedTolerance(2.5)
        assert tol.at(0, 0) == tol.at(9, 9) == 2.5

    def test_per_cell_reads_array(self) -> None:
        values = np.array([[1.0, 2.0], [3.0, np.nan]])
        tol = PerCellTolerance(values)
        assert tol.at(1, 0) == 3.0
        assert np.isnan(tol.at(1, 1))

    def test_fixed_is_frozen(self) -> None:
        tol = FixedTolerance(1.0)
        with pytest.raises(AttributeError):
            tol.value = 2.0  # type: ignore[misc]
