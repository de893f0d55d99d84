"""
Parameter payloads and defaults for survival analysis results.

Each dataclass is a frozen payload carried inside a Result[P] envelope, or a
per-stratum value object held by such a payload.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, NamedTuple

import numpy as np
from numpy.typing import ArrayLike, NDArray


DEFAULT_CONF_LEVEL = 0.95
DEFAULT_TOL = 1e-9
DEFAULT_MAX_ITER = 25

# Newton-Raphson safeguards: max-norm cap on a single step, and how many
# times a step is halved while the log-likelihood keeps decreasing.
MAX_STEP = 5.0
MAX_HALVING = 10

VALID_CONF_TYPES = ("log-log", "log", "plain")
VALID_TIES = ("breslow", "efron")
VALID_TRANSFORMS = ("rank", "log", "identity", "km")
VALID_GLOBAL_METHODS = ("sum", "score")


class FitStatus(str, enum.Enum):
    """Newton-Raphson state: FITTING -> CONVERGED | NON_CONVERGED | SINGULAR."""

    FITTING = "fitting"
    CONVERGED = "converged"
    NON_CONVERGED = "non_converged"
    SINGULAR = "singular"


class TestResult(NamedTuple):
    """A chi-squared test: statistic, degrees of freedom, p-value."""

    statistic: float
    df: int
    p_value: float


class HazardTerm(NamedTuple):
    """One row of a fitted hazard model."""

    coefficient: float
    standard_error: float
    z_statistic: float
    hazard_ratio: float


def _step_lookup(
    grid: NDArray,
    values: NDArray,
    t: ArrayLike,
    before: float,
    max_time: float,
) -> NDArray | float:
    """Right-continuous step function on ``grid``.

    ``before`` applies left of the first grid point; the last value is held
    up to ``max_time``; beyond ``max_time`` the estimate is undefined (nan).
    """
    t_arr = np.asarray(t, dtype=np.float64)
    idx = np.searchsorted(grid, t_arr, side="right") - 1
    safe = np.clip(idx, 0, max(len(values) - 1, 0))
    out = np.where(idx >= 0, values[safe] if len(values) else before, before)
    out = np.where(t_arr > max_time, np.nan, out).astype(np.float64)
    return float(out) if out.ndim == 0 else out


@dataclass(frozen=True)
class SurvivalCurve:
    """Kaplan-Meier survival curve for one stratum.

    One entry per distinct event time. S(t) is right-continuous, 1 before
    the first event, held flat from the last event time to ``max_time`` (the
    last observed time, event or censoring), and undefined beyond it.
    """

    time: NDArray                # (m,) distinct event times
    survival: NDArray            # (m,) S(t)
    n_risk: NDArray              # (m,) number at risk just before each time
    n_events: NDArray            # (m,) events at each time
    n_censored: NDArray          # (m,) censored in [t_i, t_{i+1})
    variance: NDArray            # (m,) Greenwood variance of S(t)
    se: NDArray                  # (m,) sqrt(variance)
    var_log_survival: NDArray    # (m,) Greenwood sum, Var(log S(t))
    ci_lower: NDArray
    ci_upper: NDArray
    conf_level: float
    conf_type: str
    n_observations: int
    n_events_total: int
    max_time: float
    stratum: Any = None
    degenerate: bool = False

    def survival_at(self, t: ArrayLike) -> NDArray | float:
        """S(t) at arbitrary times (nan beyond ``max_time``)."""
        return _step_lookup(self.time, self.survival, t, 1.0, self.max_time)

    def median(self) -> float | None:
        """Median survival time (smallest t where S(t) <= 0.5)."""
        idx = self.survival <= 0.5
        if not idx.any():
            return None
        return float(self.time[idx][0])


@dataclass(frozen=True)
class CumulativeIncidenceCurve:
    """Aalen-Johansen cumulative incidence of one cause in one stratum.

    Defined on the stratum's grid of distinct any-cause event times, so the
    curves of all causes and the overall survival curve line up.
    """

    time: NDArray                # (m,) distinct any-cause event times
    incidence: NDArray           # (m,) CIF_k(t)
    variance: NDArray            # (m,) delta-method variance
    se: NDArray
    ci_lower: NDArray
    ci_upper: NDArray
    n_events: NDArray            # (m,) cause-k events at each time
    cause: Any
    stratum: Any
    conf_level: float
    conf_type: str
    max_time: float
    degenerate: bool = False

    def incidence_at(self, t: ArrayLike) -> NDArray | float:
        """CIF_k(t) at arbitrary times (nan beyond ``max_time``)."""
        return _step_lookup(self.time, self.incidence, t, 0.0, self.max_time)

    @property
    def final(self) -> float:
        """Incidence at the last grid time (0 for an empty curve)."""
        return float(self.incidence[-1]) if len(self.incidence) else 0.0


@dataclass(frozen=True)
class KMParams:
    """Kaplan-Meier fit: one curve per stratum."""

    curves: dict[Any, SurvivalCurve]
    cause: Any                   # None = any cause is the event
    conf_level: float
    conf_type: str
    n_observations: int


@dataclass(frozen=True)
class GrayTestParams:
    """Gray's K-sample test for equality of one cause's incidence curves."""

    cause: Any
    statistic: float
    df: int
    p_value: float
    n_groups: int
    observed: NDArray            # (n_groups,) weighted cause-k events
    expected: NDArray            # (n_groups,) weighted expected events
    variance: NDArray            # (n_groups, n_groups)
    n_per_group: NDArray
    rho: float
    group_labels: tuple[Any, ...]


@dataclass(frozen=True)
class CIFParams:
    """Competing-risks fit: incidence per (stratum, cause), survival per stratum."""

    curves: dict[tuple[Any, Any], CumulativeIncidenceCurve]
    overall: dict[Any, SurvivalCurve]
    tests: dict[Any, GrayTestParams]
    causes: tuple[Any, ...]
    strata: tuple[Any, ...]
    conf_level: float
    conf_type: str
    n_observations: int


@dataclass(frozen=True)
class LogRankParams:
    """Log-rank test parameters.

    Matches the output of R's survival::survdiff().
    """

    statistic: float             # chi-squared statistic
    df: int                      # degrees of freedom (n_groups - 1)
    p_value: float
    n_groups: int
    observed: NDArray            # (n_groups,) observed events per group
    expected: NDArray            # (n_groups,) expected events per group
    n_per_group: NDArray         # (n_groups,) subjects per group
    rho: float                   # weight parameter (0=log-rank, 1=Peto-Peto)
    group_labels: tuple[Any, ...]
    cause: Any = None


@dataclass(frozen=True)
class CoxParams:
    """Cox proportional hazards model parameters.

    Matches the output of R's survival::coxph().
    """

    covariate_names: tuple[str, ...]
    coefficients: NDArray        # (p,) log hazard ratios
    standard_errors: NDArray     # (p,) from observed information matrix
    z_statistics: NDArray        # (p,) coef / se
    p_values: NDArray            # (p,) two-sided Wald test
    hazard_ratios: NDArray       # (p,) exp(coef)
    hr_ci_lower: NDArray
    hr_ci_upper: NDArray
    variance: NDArray            # (p, p) inverse information
    loglik: tuple[float, float]  # (null log-lik, model log-lik)
    lr_test: TestResult
    wald_test: TestResult
    score_test: TestResult
    concordance: float           # Harrell's C-statistic
    n_events: int
    n_observations: int
    n_iter: int                  # Newton-Raphson iterations
    status: FitStatus
    ties: str                    # "breslow" or "efron"
    tol: float
    max_iter: int
    conf_level: float
    strata: tuple[Any, ...] = field(default_factory=tuple)
    strata_key: str | None = None

    @property
    def converged(self) -> bool:
        return self.status is FitStatus.CONVERGED

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe dict; ``from_dict`` restores it exactly."""
        def arr(a):
            return np.asarray(a, dtype=np.float64).tolist()

        return {
            "covariate_names": list(self.covariate_names),
            "coefficients": dict(zip(self.covariate_names, arr(self.coefficients))),
            "standard_errors": dict(zip(self.covariate_names, arr(self.standard_errors))),
            "z_statistics": arr(self.z_statistics),
            "p_values": arr(self.p_values),
            "hazard_ratios": arr(self.hazard_ratios),
            "hr_ci_lower": arr(self.hr_ci_lower),
            "hr_ci_upper": arr(self.hr_ci_upper),
            "variance": arr(self.variance),
            "loglik": list(self.loglik),
            "lr_test": list(self.lr_test),
            "wald_test": list(self.wald_test),
            "score_test": list(self.score_test),
            "concordance": self.concordance,
            "n_events": self.n_events,
            "n_observations": self.n_observations,
            "n_iter": self.n_iter,
            "status": self.status.value,
            "ties": self.ties,
            "tol": self.tol,
            "max_iter": self.max_iter,
            "conf_level": self.conf_level,
            "strata": list(self.strata),
            "strata_key": self.strata_key,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> CoxParams:
        names = tuple(d["covariate_names"])

        def arr(a):
            return np.asarray(a, dtype=np.float64)

        return cls(
            covariate_names=names,
            coefficients=arr([d["coefficients"][k] for k in names]),
            standard_errors=arr([d["standard_errors"][k] for k in names]),
            z_statistics=arr(d["z_statistics"]),
            p_values=arr(d["p_values"]),
            hazard_ratios=arr(d["hazard_ratios"]),
            hr_ci_lower=arr(d["hr_ci_lower"]),
            hr_ci_upper=arr(d["hr_ci_upper"]),
            variance=arr(d["variance"]).reshape(len(names), len(names)),
            loglik=(float(d["loglik"][0]), float(d["loglik"][1])),
            lr_test=TestResult(*d["lr_test"]),
            wald_test=TestResult(*d["wald_test"]),
            score_test=TestResult(*d["score_test"]),
            concordance=float(d["concordance"]),
            n_events=int(d["n_events"]),
            n_observations=int(d["n_observations"]),
            n_iter=int(d["n_iter"]),
            status=FitStatus(d["status"]),
            ties=d["ties"],
            tol=float(d["tol"]),
            max_iter=int(d["max_iter"]),
            conf_level=float(d["conf_level"]),
            strata=tuple(d.get("strata", ())),
            strata_key=d.get("strata_key"),
        )


@dataclass(frozen=True)
class ZphParams:
    """Scaled Schoenfeld residual test of proportional hazards.

    Matches R's survival::cox.zph() (Grambsch-Therneau approximation).
    """

    covariate_names: tuple[str, ...]
    transform: str
    time: NDArray                # (D,) event time of each residual row
    transformed_time: NDArray    # (D,) g(time)
    schoenfeld_residuals: NDArray  # (D, p) x_i - risk-set mean
    scaled_residuals: NDArray    # (D, p) D * V r_i + beta
    rho: NDArray                 # (p,) correlation of g(t) with scaled residual
    chisq: NDArray               # (p,) per-covariate statistic
    df: NDArray                  # (p,) 1 each
    p_values: NDArray
    global_test: TestResult
    global_method: str
    n_events: int
