"""Internal shared types for cross-component data contracts.

These types describe per-cell outcomes, trajectory terminal states and
the resolved tolerance variants of the analogue search. They are
re-exported selectively from ``climvelocity.__init__``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any

import numpy as np
import numpy.typing as npt

CellIndex = tuple[int, int]
"""``(row, col)`` position of a grid cell."""

FloatArray = npt.NDArray[np.floating[Any]]
"""Floating-point numpy array (fields, stacks, coordinates)."""


class CellStatus(IntEnum):
    """Outcome of a per-cell computation.

    Stored as ``int8`` arrays alongside the numeric result arrays so that
    undefined values are never confused with computed NaN or infinity.
    """

    OK = 0
    NO_DATA = 1
    INSUFFICIENT_DATA = 2
    NOT_SIGNIFICANT = 3
    UNDEFINED_GRADIENT = 4
    ZERO_GRADIENT = 5
    UNDEFINED_VELOCITY = 6
    NO_ANALOGUE_FOUND = 7


class TrajectoryState(str, Enum):
    """Terminal (or running) state of a traced trajectory."""

    RUNNING = "running"
    COMPLETED = "completed"
    OUT_OF_BOUNDS = "out_of_bounds"
    NO_DATA = "no_data"
    STALLED = "stalled"


class ThresholdMode(str, Enum):
    """How analogue tolerances are supplied."""

    SINGLE = "single"
    VARIABLE = "variable"


class DistanceFunction(str, Enum):
    """Distance metric between cell centres."""

    GREAT_CIRCLE = "great_circle"
    PLANAR = "planar"


class BoundaryPolicy(str, Enum):
    """What a trajectory does when a step lands on a cell without data."""

    ABSORB = "absorb"
    REFLECT = "reflect"


@dataclass(frozen=True)
class FixedTolerance:
    """One tolerance shared by every focal cell.

    Args:
        value: Maximum absolute difference between future and baseline.

    Example:
        >>> FixedTolerance(0.5).at(3, 4)
        0.5
    """

    value: float

    def at(self, row: int, col: int) -> float:
        """Return the tolerance for the focal cell ``(row, col)``."""
        return self.value


@dataclass(frozen=True)
class PerCellTolerance:
    """A tolerance supplied per focal cell alongside the baseline.

    Args:
        values: Array with the grid's shape; NaN marks cells with no
            tolerance (such focal cells cannot find an analogue).
    """

    values: FloatArray

    def at(self, row: int, col: int) -> float:
        """Return the tolerance for the focal cell ``(row, col)``."""
        return float(self.values[row, col])


Tolerance = FixedTolerance | PerCellTolerance
"""Resolved tolerance for one climate variable."""
