"""
Survival-specific exceptions.

Each one specializes a core exception so callers can catch either the
precise survival condition or the broad category (ValidationError,
SingularMatrixError, ConvergenceError, CohortSurvError).
"""

from __future__ import annotations

from typing import Any

import numpy as np
from numpy.typing import NDArray

from cohortsurv.core.exceptions import (
    ConvergenceError,
    SingularMatrixError,
    ValidationError,
)


class InsufficientDataError(ValidationError):
    """
    A stratum or cause lacks enough distinct times or events to estimate.

    Attributes:
        stratum: Stratum label, or None for the pooled table
        cause: Cause label, or None when any cause counts as the event
        n_times: Number of distinct observed times
        n_events: Number of events
    """

    def __init__(
        self,
        message: str,
        stratum: Any = None,
        cause: Any = None,
        n_times: int | None = None,
        n_events: int | None = None,
    ):
        super().__init__(message)
        self.stratum = stratum
        self.cause = cause
        self.n_times = n_times
        self.n_events = n_events


class UnknownCauseError(ValidationError):
    """
    A requested cause label is not in the table's cause vocabulary.

    Attributes:
        cause: The requested label
        available: The labels the table declares
    """

    def __init__(self, cause: Any, available: tuple[Any, ...]):
        super().__init__(
            f"Unknown cause {cause!r}. Available causes: {list(available)}"
        )
        self.cause = cause
        self.available = available


class InvalidCovariateError(ValidationError):
    """
    A covariate is non-finite, constant, unknown, or violates the schema.

    Attributes:
        covariate: Covariate name (None if the problem is table-wide)
        reason: Short machine-readable reason ('non_finite', 'constant',
            'unknown', 'schema', 'unseen_level', 'duplicate', 'missing')
    """

    def __init__(
        self,
        message: str,
        covariate: str | None = None,
        reason: str | None = None,
    ):
        super().__init__(message)
        self.covariate = covariate
        self.reason = reason


class SingularInformationError(SingularMatrixError):
    """
    The Cox information matrix is not invertible.

    Typically perfect collinearity among covariates or complete
    separation. Retrying with the same inputs cannot succeed; the caller
    decides which covariates to drop.

    Attributes:
        coefficients: Last Newton-Raphson iterate before the failure
        iterations: Number of completed iterations
    """

    def __init__(
        self,
        message: str,
        coefficients: NDArray | None = None,
        iterations: int = 0,
    ):
        super().__init__(message, matrix_name="information")
        self.coefficients = (
            None if coefficients is None else np.array(coefficients, copy=True)
        )
        self.iterations = iterations


class NonConvergenceError(ConvergenceError):
    """
    Newton-Raphson reached its iteration cap without meeting tolerance.

    Attributes:
        coefficients: Last iterate
    """

    def __init__(
        self,
        message: str,
        iterations: int,
        coefficients: NDArray | None = None,
        final_change: float | None = None,
        threshold: float | None = None,
    ):
        super().__init__(
            message,
            iterations=iterations,
            final_change=final_change,
            reason="max_iterations",
            threshold=threshold,
        )
        self.coefficients = (
            None if coefficients is None else np.array(coefficients, copy=True)
        )
