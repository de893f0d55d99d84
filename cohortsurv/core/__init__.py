"""
Core infrastructure for cohortsurv.

Shared abstractions and utilities used by the survival estimators.

Key components:
    result: Generic Result[P] envelope
    exceptions: Exception hierarchy
    validation: Input validators
    compute: Timing utilities
"""

from cohortsurv.core.result import Result
from cohortsurv.core.exceptions import (
    CohortSurvError,
    ValidationError,
    DimensionError,
    NumericalError,
    SingularMatrixError,
    ConvergenceError,
)

__all__ = [
    # Result
    "Result",
    # Exceptions
    "CohortSurvError",
    "ValidationError",
    "DimensionError",
    "NumericalError",
    "SingularMatrixError",
    "ConvergenceError",
]
