"""
Survival analysis.

Public API:
    EventTable.from_arrays / from_records / from_dataframe
    kaplan_meier(...) -> KMSolution
    cumulative_incidence(...) -> CIFSolution
    gray_test(...) -> GrayTestSolution
    survdiff(...) -> LogRankSolution
    coxph(...) -> CoxSolution
    cox_zph(...) -> ZphSolution
"""

from cohortsurv.survival._common import (
    CumulativeIncidenceCurve,
    FitStatus,
    HazardTerm,
    SurvivalCurve,
    TestResult,
)
from cohortsurv.survival.design import ALL_STRATA, EventRecord, EventTable
from cohortsurv.survival.exceptions import (
    InsufficientDataError,
    InvalidCovariateError,
    NonConvergenceError,
    SingularInformationError,
    UnknownCauseError,
)
from cohortsurv.survival.solution import (
    CIFSolution,
    CoxSolution,
    GrayTestSolution,
    KMSolution,
    LogRankSolution,
    ZphSolution,
)
from cohortsurv.survival.solvers import (
    cox_zph,
    coxph,
    cumulative_incidence,
    gray_test,
    kaplan_meier,
    survdiff,
)

__all__ = [
    # Data
    "ALL_STRATA",
    "EventRecord",
    "EventTable",
    # Estimators
    "kaplan_meier",
    "cumulative_incidence",
    "gray_test",
    "survdiff",
    "coxph",
    "cox_zph",
    # Results
    "SurvivalCurve",
    "CumulativeIncidenceCurve",
    "FitStatus",
    "HazardTerm",
    "TestResult",
    "KMSolution",
    "CIFSolution",
    "GrayTestSolution",
    "LogRankSolution",
    "CoxSolution",
    "ZphSolution",
    # Errors
    "InsufficientDataError",
    "UnknownCauseError",
    "InvalidCovariateError",
    "SingularInformationError",
    "NonConvergenceError",
]
