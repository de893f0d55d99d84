"""
cohortsurv: survival analysis for right-censored cohort data.

Kaplan-Meier curves, Aalen-Johansen cumulative incidence with Gray's test,
log-rank tests, and Cox proportional hazards regression with the scaled
Schoenfeld residual diagnostic, all over one immutable EventTable.

Submodules:
    core: Result envelope, exceptions, validation, timing
    survival: Estimators and their solutions
"""

__version__ = "0.1.0"

from cohortsurv import survival
from cohortsurv.survival import (
    EventRecord,
    EventTable,
    cox_zph,
    coxph,
    cumulative_incidence,
    gray_test,
    kaplan_meier,
    survdiff,
)

__all__ = [
    "__version__",
    "survival",
    "EventRecord",
    "EventTable",
    "kaplan_meier",
    "cumulative_incidence",
    "gray_test",
    "survdiff",
    "coxph",
    "cox_zph",
]
