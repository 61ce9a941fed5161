"""climvelocity exception hierarchy.

All exceptions follow a three-part message pattern: what failed,
likely cause, and suggested fix.

Per-cell outcomes (insufficient data, zero gradient, no analogue) are
never raised; they are recorded as ``CellStatus`` values on the result
objects. Exceptions are reserved for whole-call failures detected
before any per-cell work starts.
"""

from __future__ import annotations


class ClimVelocityError(Exception):
    """Base exception for all climvelocity errors.

    Args:
        what: Description of what failed.
        cause: Likely cause of the failure.
        fix: Suggested action to resolve the issue.

    Example:
        >>> raise ClimVelocityError(
        ...     what="Operation failed",
        ...     cause="Unexpected internal state",
        ...     fix="Please report this issue",
        ... )
    """

    def __init__(
        self,
        what: str,
        cause: str = "",
        fix: str = "",
    ) -> None:
        """Initialize with structured error context.

        Args:
            what: Description of what failed.
            cause: Likely cause of the failure.
            fix: Suggested action to resolve the issue.
        """
        self.what = what
        self.cause = cause
        self.fix = fix
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Build the multi-line error message from parts.

        Returns:
            Formatted message with optional Cause and Fix lines.
        """
        parts = [self.what]
        if self.cause:
            parts.append(f"Cause: {self.cause}")
        if self.fix:
            parts.append(f"Fix: {self.fix}")
        return "\n".join(parts)


class ConfigurationError(ClimVelocityError):
    """Raised for invalid run configuration detected at call time.

    Example:
        >>> raise ConfigurationError(
        ...     what="Tolerance count does not match variable count",
        ...     cause="2 tolerances given for 3 variables",
        ...     fix="Provide one tolerance per climate variable",
        ... )
    """


class GridError(ClimVelocityError):
    """Raised when a grid or field cannot be constructed or aligned.

    Example:
        >>> raise GridError(
        ...     what="Field shape does not match grid",
        ...     cause="Field is (10, 12), grid is (10, 10)",
        ...     fix="Regrid the field onto the analysis grid first",
        ... )
    """
