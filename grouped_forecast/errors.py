"""Error taxonomy shared by every stage of the pipeline.

Errors that point at a caller mistake (a malformed model specification) are
raised immediately and stop the whole call.  Errors that depend on the data
of a single series are returned as values so that one bad series does not
invalidate a batch of many.
"""

from __future__ import annotations

from typing import Optional


class ForecastError(Exception):
    """Base class for every error raised by ``grouped_forecast``."""


class SpecificationError(ForecastError, ValueError):
    """The model specification is malformed or does not match the table."""


class MissingRegressorError(ForecastError, KeyError):
    """A regressor value needed for decomposition or simulation is absent."""

    def __init__(self, column: str, detail: Optional[str] = None) -> None:
        super().__init__(column, detail)
        self.column = column
        self.detail = detail

    def __str__(self) -> str:
        msg = f"Regressor '{self.column}' has no value for the requested timestamps"
        if self.detail:
            msg = f"{msg}: {self.detail}"
        return msg


class ConvergenceError(ForecastError, RuntimeError):
    """The numerical optimizer stopped without converging."""


class FitError(ForecastError):
    """Fitting one series failed.

    ``fit`` returns instances of this class rather than raising them, and the
    orchestrator stores them in the failed key's slot.

    Parameters
    ----------
    reason : str
        One of :attr:`REASONS`.
    detail : str, optional
        Free-text description of the failure.
    """

    INSUFFICIENT_OBSERVATIONS = "insufficient_observations"
    DUPLICATE_TIMESTAMPS = "duplicate_timestamps"
    MISSING_REGRESSOR_VALUES = "missing_regressor_values"
    NON_FINITE_VALUES = "non_finite_values"
    NON_POSITIVE_FOR_LOGISTIC = "non_positive_values_for_logistic_without_capacity"
    OPTIMIZER_FAILED = "optimizer_failed"
    TIMEOUT = "timeout"

    REASONS = (
        INSUFFICIENT_OBSERVATIONS,
        DUPLICATE_TIMESTAMPS,
        MISSING_REGRESSOR_VALUES,
        NON_FINITE_VALUES,
        NON_POSITIVE_FOR_LOGISTIC,
        OPTIMIZER_FAILED,
        TIMEOUT,
    )

    def __init__(self, reason: str, detail: str = "") -> None:
        if reason not in self.REASONS:
            raise ValueError(f"Unknown fit failure reason: {reason!r}")
        # Both values go to args so the error survives pickling between workers
        super().__init__(reason, detail)
        self.reason = reason
        self.detail = detail

    def __str__(self) -> str:
        return f"{self.reason}: {self.detail}" if self.detail else self.reason

    def __repr__(self) -> str:
        return f"FitError({self.reason!r}, {self.detail!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FitError):
            return NotImplemented
        return (self.reason, self.detail) == (other.reason, other.detail)

    def __hash__(self) -> int:
        return hash((self.reason, self.detail))
