"""
Solution wrappers for survival analysis results.

Each Solution wraps a Result[Params] and exposes user-friendly properties
with R-style summary() methods.
"""

from __future__ import annotations

from typing import Any

from numpy.typing import ArrayLike, NDArray

from cohortsurv.core.exceptions import ValidationError
from cohortsurv.core.result import Result
from cohortsurv.survival._common import (
    CIFParams,
    CoxParams,
    CumulativeIncidenceCurve,
    FitStatus,
    GrayTestParams,
    HazardTerm,
    KMParams,
    LogRankParams,
    SurvivalCurve,
    TestResult,
    ZphParams,
)
from cohortsurv.survival.exceptions import NonConvergenceError

_MAX_ROWS = 20


class _Solution:
    """Shared accessors for the Result envelope."""

    __slots__ = ('_result',)

    def __init__(self, _result: Result) -> None:
        self._result = _result

    @property
    def params(self):
        return self._result.params

    @property
    def info(self) -> dict[str, Any]:
        return self._result.info

    @property
    def warnings(self) -> tuple[str, ...]:
        return self._result.warnings

    @property
    def backend_name(self) -> str:
        return self._result.backend_name

    @property
    def timing(self):
        return self._result.timing


def _pick(mapping: dict, key: Any, what: str):
    if key not in mapping:
        raise ValidationError(
            f"Unknown {what} {key!r}. Available: {list(mapping)}"
        )
    return mapping[key]


class KMSolution(_Solution):
    """Kaplan-Meier survival curve solution.

    Properties mirror R's survfit() output. With a single stratum the
    curve's columns are available directly (``time``, ``survival``, ...);
    with several, use ``curve(stratum)``.
    """

    __slots__ = ()

    _result: Result[KMParams]

    @property
    def curves(self) -> dict[Any, SurvivalCurve]:
        return self._result.params.curves

    @property
    def strata(self) -> tuple[Any, ...]:
        return tuple(self.curves)

    def curve(self, stratum: Any = None) -> SurvivalCurve:
        """The curve of one stratum (may be omitted when there is one)."""
        if stratum is None:
            if len(self.curves) != 1:
                raise ValidationError(
                    f"fit has {len(self.curves)} strata {list(self.curves)}; "
                    f"pass stratum="
                )
            return next(iter(self.curves.values()))
        return _pick(self.curves, stratum, "stratum")

    # -- Single-curve shortcuts --

    @property
    def time(self):
        """Unique event times."""
        return self.curve().time

    @property
    def survival(self):
        """S(t) at each event time."""
        return self.curve().survival

    @property
    def n_risk(self):
        """Number at risk just before each event time."""
        return self.curve().n_risk

    @property
    def n_events(self):
        """Number of events at each event time."""
        return self.curve().n_events

    @property
    def n_censored(self):
        """Number censored in [t_i, t_{i+1})."""
        return self.curve().n_censored

    @property
    def variance(self):
        """Greenwood variance of S(t)."""
        return self.curve().variance

    @property
    def se(self):
        """Greenwood standard error of S(t)."""
        return self.curve().se

    @property
    def var_log_survival(self):
        return self.curve().var_log_survival

    @property
    def ci_lower(self):
        """Lower confidence bound for S(t)."""
        return self.curve().ci_lower

    @property
    def ci_upper(self):
        """Upper confidence bound for S(t)."""
        return self.curve().ci_upper

    @property
    def degenerate(self) -> bool:
        """True if any stratum's curve is degenerate."""
        return any(c.degenerate for c in self.curves.values())

    @property
    def conf_level(self) -> float:
        return self._result.params.conf_level

    @property
    def conf_type(self) -> str:
        return self._result.params.conf_type

    @property
    def cause(self) -> Any:
        return self._result.params.cause

    @property
    def n_observations(self) -> int:
        return self._result.params.n_observations

    @property
    def n_events_total(self) -> int:
        return sum(c.n_events_total for c in self.curves.values())

    @property
    def median_survival(self) -> float | None:
        """Median survival time (smallest t where S(t) <= 0.5)."""
        return self.curve().median()

    def medians(self) -> dict[Any, float | None]:
        return {label: c.median() for label, c in self.curves.items()}

    def survival_at(self, t: ArrayLike, stratum: Any = None) -> NDArray | float:
        """S(t) at arbitrary times; nan beyond the last observed time."""
        return self.curve(stratum).survival_at(t)

    def summary(self) -> str:
        """R-style summary of Kaplan-Meier fit."""
        lines = []
        lines.append("Call: kaplan_meier()")
        lines.append("")
        ci_pct = int(round(self.conf_level * 100))

        for label, c in self.curves.items():
            if len(self.curves) > 1:
                lines.append(f"  stratum={label}")
            median = c.median()
            median_str = f"{median:.4g}" if median is not None else "NA"
            flag = "  (degenerate)" if c.degenerate else ""
            lines.append(
                f"  n={c.n_observations}, events={c.n_events_total}, "
                f"median survival = {median_str}{flag}"
            )
            lines.append("")

            lines.append(
                f"  {'time':>8s}  {'n.risk':>8s}  {'n.event':>8s}  "
                f"{'survival':>10s}  {'std.err':>10s}  "
                f"{f'lower {ci_pct}%':>10s}  {f'upper {ci_pct}%':>10s}"
            )
            m = len(c.time)
            for i in range(min(m, _MAX_ROWS)):
                lines.append(
                    f"  {c.time[i]:8.4g}  {c.n_risk[i]:8.0f}  "
                    f"{c.n_events[i]:8.0f}  "
                    f"{c.survival[i]:10.6f}  {c.se[i]:10.6f}  "
                    f"{c.ci_lower[i]:10.6f}  {c.ci_upper[i]:10.6f}"
                )
            if m > _MAX_ROWS:
                lines.append(f"  ... ({m - _MAX_ROWS} more rows)")
            lines.append("")

        return "\n".join(lines).rstrip()

    def __repr__(self) -> str:
        medians = self.medians()
        median = next(iter(medians.values())) if len(medians) == 1 else medians
        return (
            f"KMSolution(n={self.n_observations}, "
            f"events={self.n_events_total}, "
            f"strata={len(self.curves)}, median={median})"
        )


class GrayTestSolution(_Solution):
    """Gray's test solution.

    Properties mirror cmprsk::cuminc()$Tests.
    """

    __slots__ = ()

    _result: Result[GrayTestParams]

    @property
    def cause(self) -> Any:
        return self._result.params.cause

    @property
    def statistic(self) -> float:
        return self._result.params.statistic

    @property
    def df(self) -> int:
        return self._result.params.df

    @property
    def p_value(self) -> float:
        return self._result.params.p_value

    @property
    def n_groups(self) -> int:
        return self._result.params.n_groups

    @property
    def observed(self):
        return self._result.params.observed

    @property
    def expected(self):
        return self._result.params.expected

    @property
    def variance(self):
        return self._result.params.variance

    @property
    def group_labels(self):
        return self._result.params.group_labels

    def summary(self) -> str:
        """R-style summary of Gray's test."""
        return _gray_lines(self._result.params)

    def __repr__(self) -> str:
        return (
            f"GrayTestSolution(cause={self.cause!r}, chisq={self.statistic:.4f}, "
            f"df={self.df}, p={self.p_value:.4g})"
        )


def _gray_lines(params: GrayTestParams) -> str:
    lines = [f"  Gray's test, cause {params.cause!r} (rho={params.rho:g})"]
    lines.append(f"  {'':>12s}  {'N':>6s}  {'Observed':>10s}  {'Expected':>10s}")
    for i, label in enumerate(params.group_labels):
        lines.append(
            f"  {str(label):>12s}  {params.n_per_group[i]:6.0f}  "
            f"{params.observed[i]:10.2f}  {params.expected[i]:10.2f}"
        )
    lines.append(
        f"  Chisq= {params.statistic:.4f} on {params.df} degrees of freedom, "
        f"p= {params.p_value:.4g}"
    )
    return "\n".join(lines)


class CIFSolution(_Solution):
    """Competing-risks solution: cumulative incidence per cause and stratum."""

    __slots__ = ()

    _result: Result[CIFParams]

    @property
    def curves(self) -> dict[tuple[Any, Any], CumulativeIncidenceCurve]:
        return self._result.params.curves

    @property
    def causes(self) -> tuple[Any, ...]:
        return self._result.params.causes

    @property
    def strata(self) -> tuple[Any, ...]:
        return self._result.params.strata

    @property
    def tests(self) -> dict[Any, GrayTestParams]:
        """Gray's test per cause (empty with a single stratum)."""
        return self._result.params.tests

    @property
    def conf_level(self) -> float:
        return self._result.params.conf_level

    @property
    def n_observations(self) -> int:
        return self._result.params.n_observations

    def _stratum(self, stratum: Any) -> Any:
        if stratum is None:
            if len(self.strata) != 1:
                raise ValidationError(
                    f"fit has {len(self.strata)} strata {list(self.strata)}; "
                    f"pass stratum="
                )
            return self.strata[0]
        if stratum not in self.strata:
            raise ValidationError(
                f"Unknown stratum {stratum!r}. Available: {list(self.strata)}"
            )
        return stratum

    def curve(self, cause: Any, stratum: Any = None) -> CumulativeIncidenceCurve:
        """Incidence curve of one cause in one stratum."""
        return _pick(self.curves, (self._stratum(stratum), cause), "(stratum, cause)")

    def overall_survival(self, stratum: Any = None) -> SurvivalCurve:
        """All-cause Kaplan-Meier curve on the same time grid."""
        return self._result.params.overall[self._stratum(stratum)]

    def incidence_at(
        self, t: ArrayLike, cause: Any, stratum: Any = None,
    ) -> NDArray | float:
        return self.curve(cause, stratum).incidence_at(t)

    def test(self, cause: Any) -> GrayTestParams:
        return _pick(self.tests, cause, "cause for Gray's test")

    def summary(self) -> str:
        """Summary of final incidences and tests."""
        lines = ["Call: cumulative_incidence()", ""]
        lines.append(
            f"  {'stratum':>12s}  {'cause':>10s}  {'events':>8s}  "
            f"{'final CIF':>10s}  {'std.err':>10s}"
        )
        for (stratum, cause), c in self.curves.items():
            se = float(c.se[-1]) if len(c.se) else 0.0
            flag = "  (degenerate)" if c.degenerate else ""
            lines.append(
                f"  {str(stratum):>12s}  {str(cause):>10s}  "
                f"{c.n_events.sum():8.0f}  {c.final:10.6f}  {se:10.6f}{flag}"
            )
        for params in self.tests.values():
            lines.append("")
            lines.append(_gray_lines(params))
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"CIFSolution(n={self.n_observations}, causes={list(self.causes)}, "
            f"strata={len(self.strata)})"
        )


class LogRankSolution(_Solution):
    """Log-rank test solution.

    Properties mirror R's survdiff() output.
    """

    __slots__ = ()

    _result: Result[LogRankParams]

    @property
    def statistic(self) -> float:
        return self._result.params.statistic

    @property
    def df(self) -> int:
        return self._result.params.df

    @property
    def p_value(self) -> float:
        return self._result.params.p_value

    @property
    def n_groups(self) -> int:
        return self._result.params.n_groups

    @property
    def observed(self):
        return self._result.params.observed

    @property
    def expected(self):
        return self._result.params.expected

    @property
    def n_per_group(self):
        return self._result.params.n_per_group

    @property
    def rho(self) -> float:
        return self._result.params.rho

    @property
    def group_labels(self):
        return self._result.params.group_labels

    def summary(self) -> str:
        """R-style summary of log-rank test."""
        lines = []
        lines.append("Call: survdiff()")
        lines.append("")

        lines.append(f"  {'':>12s}  {'N':>6s}  {'Observed':>10s}  {'Expected':>10s}  {'(O-E)^2/E':>10s}")
        for i in range(self.n_groups):
            oe = ((self.observed[i] - self.expected[i]) ** 2
                  / self.expected[i]) if self.expected[i] > 0 else 0
            label = str(self.group_labels[i])
            lines.append(
                f"  {label:>12s}  {self.n_per_group[i]:6.0f}  "
                f"{self.observed[i]:10.1f}  {self.expected[i]:10.1f}  "
                f"{oe:10.3f}"
            )

        lines.append("")
        lines.append(
            f"  Chisq= {self.statistic:.4f} on {self.df} degrees of freedom, "
            f"p= {self.p_value:.4g}"
        )

        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"LogRankSolution(chisq={self.statistic:.4f}, "
            f"df={self.df}, p={self.p_value:.4g})"
        )


class CoxSolution(_Solution):
    """Cox proportional hazards solution (the fitted hazard model).

    Properties mirror R's coxph() output.
    """

    __slots__ = ()

    _result: Result[CoxParams]

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> CoxSolution:
        """Restore a fit serialized with ``to_dict()``."""
        params = CoxParams.from_dict(d)
        result = Result(
            params=params,
            info={
                "method": "Cox PH",
                "ties": params.ties,
                "status": params.status.value,
                "n_iter": params.n_iter,
                "restored": True,
            },
            timing=None,
            backend_name="cpu_cox",
        )
        return cls(_result=result)

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe dict of the fitted model."""
        return self._result.params.to_dict()

    @property
    def covariate_names(self) -> tuple[str, ...]:
        return self._result.params.covariate_names

    @property
    def coefficients(self):
        return self._result.params.coefficients

    @property
    def hazard_ratios(self):
        return self._result.params.hazard_ratios

    @property
    def standard_errors(self):
        return self._result.params.standard_errors

    @property
    def z_statistics(self):
        return self._result.params.z_statistics

    @property
    def p_values(self):
        return self._result.params.p_values

    @property
    def hr_ci_lower(self):
        return self._result.params.hr_ci_lower

    @property
    def hr_ci_upper(self):
        return self._result.params.hr_ci_upper

    @property
    def variance(self):
        """Inverse observed information at the final iterate."""
        return self._result.params.variance

    @property
    def terms(self) -> dict[str, HazardTerm]:
        """Covariate name -> (coefficient, se, z, hazard ratio)."""
        p = self._result.params
        return {
            name: HazardTerm(
                float(p.coefficients[j]),
                float(p.standard_errors[j]),
                float(p.z_statistics[j]),
                float(p.hazard_ratios[j]),
            )
            for j, name in enumerate(p.covariate_names)
        }

    @property
    def loglik(self):
        return self._result.params.loglik

    @property
    def lr_test(self) -> TestResult:
        return self._result.params.lr_test

    @property
    def wald_test(self) -> TestResult:
        return self._result.params.wald_test

    @property
    def score_test(self) -> TestResult:
        return self._result.params.score_test

    @property
    def concordance(self) -> float:
        return self._result.params.concordance

    @property
    def n_events(self) -> int:
        return self._result.params.n_events

    @property
    def n_observations(self) -> int:
        return self._result.params.n_observations

    @property
    def n_iter(self) -> int:
        return self._result.params.n_iter

    @property
    def status(self) -> FitStatus:
        return self._result.params.status

    @property
    def converged(self) -> bool:
        return self._result.params.converged

    @property
    def ties(self) -> str:
        return self._result.params.ties

    @property
    def strata(self) -> tuple[Any, ...]:
        return self._result.params.strata

    def raise_for_status(self) -> CoxSolution:
        """Raise NonConvergenceError unless the fit converged."""
        p = self._result.params
        if p.status is not FitStatus.CONVERGED:
            raise NonConvergenceError(
                f"Newton-Raphson did not converge in {p.max_iter} iterations",
                iterations=p.n_iter,
                coefficients=p.coefficients,
                threshold=p.tol,
            )
        return self

    def summary(self) -> str:
        """R-style summary of Cox PH fit."""
        p = self._result.params
        lines = []
        lines.append("Call: coxph()")
        lines.append("")
        lines.append(
            f"  n= {self.n_observations}, "
            f"number of events= {self.n_events}"
        )
        if p.strata:
            lines.append(f"  strata: {list(p.strata)}")
        lines.append("")

        lines.append(
            f"  {'':>10s}  {'coef':>10s}  {'exp(coef)':>10s}  "
            f"{'se(coef)':>10s}  {'z':>10s}  {'Pr(>|z|)':>12s}"
        )
        for name, term in self.terms.items():
            pval = p.p_values[p.covariate_names.index(name)]
            lines.append(
                f"  {name:>10s}  {term.coefficient:10.6f}  "
                f"{term.hazard_ratio:10.6f}  "
                f"{term.standard_error:10.6f}  "
                f"{term.z_statistic:10.4f}  "
                f"{pval:12.4g}"
            )

        ci_pct = int(round(p.conf_level * 100))
        lines.append("")
        lines.append(
            f"  {'':>10s}  {'exp(coef)':>10s}  {f'lower .{ci_pct}':>10s}  "
            f"{f'upper .{ci_pct}':>10s}"
        )
        for j, name in enumerate(p.covariate_names):
            lines.append(
                f"  {name:>10s}  {p.hazard_ratios[j]:10.6f}  "
                f"{p.hr_ci_lower[j]:10.6f}  {p.hr_ci_upper[j]:10.6f}"
            )

        lines.append("")
        lines.append(f"  Concordance= {self.concordance:.4f}")
        for label, test in (
            ("Likelihood ratio test", p.lr_test),
            ("Wald test", p.wald_test),
            ("Score (logrank) test", p.score_test),
        ):
            lines.append(
                f"  {label}= {test.statistic:.4f} on {test.df} df, "
                f"p={test.p_value:.4g}"
            )
        if p.status is not FitStatus.CONVERGED:
            lines.append(f"  WARNING: fit status {p.status.value}")

        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"CoxSolution(n={self.n_observations}, "
            f"events={self.n_events}, "
            f"status={self.status.value}, "
            f"concordance={self.concordance:.4f})"
        )


class ZphSolution(_Solution):
    """Proportional hazards test solution (the residual diagnostic).

    Properties mirror R's cox.zph() output.
    """

    __slots__ = ()

    _result: Result[ZphParams]

    @property
    def covariate_names(self) -> tuple[str, ...]:
        return self._result.params.covariate_names

    @property
    def transform(self) -> str:
        return self._result.params.transform

    @property
    def time(self):
        """Event time of each residual row."""
        return self._result.params.time

    @property
    def transformed_time(self):
        return self._result.params.transformed_time

    @property
    def schoenfeld_residuals(self):
        return self._result.params.schoenfeld_residuals

    @property
    def scaled_residuals(self):
        """(D, p) scaled Schoenfeld residuals plus coefficients, i.e. β(t)."""
        return self._result.params.scaled_residuals

    @property
    def rho(self):
        return self._result.params.rho

    @property
    def chisq(self):
        return self._result.params.chisq

    @property
    def p_values(self):
        return self._result.params.p_values

    @property
    def tests(self) -> dict[str, TestResult]:
        """Covariate name -> per-covariate test."""
        p = self._result.params
        return {
            name: TestResult(float(p.chisq[j]), int(p.df[j]), float(p.p_values[j]))
            for j, name in enumerate(p.covariate_names)
        }

    @property
    def global_test(self) -> TestResult:
        return self._result.params.global_test

    @property
    def n_events(self) -> int:
        return self._result.params.n_events

    def residuals(self, name: str) -> NDArray:
        """Scaled residual series (β(t)) of one covariate."""
        names = self.covariate_names
        if name not in names:
            raise ValidationError(f"Unknown covariate {name!r}. Available: {list(names)}")
        return self.scaled_residuals[:, names.index(name)]

    def summary(self) -> str:
        """R-style table of per-covariate and global tests."""
        p = self._result.params
        lines = [f"Call: cox_zph(transform='{p.transform}')", ""]
        lines.append(f"  {'':>10s}  {'rho':>8s}  {'chisq':>10s}  {'df':>3s}  {'p':>10s}")
        for j, name in enumerate(p.covariate_names):
            lines.append(
                f"  {name:>10s}  {p.rho[j]:8.4f}  {p.chisq[j]:10.4f}  "
                f"{int(p.df[j]):3d}  {p.p_values[j]:10.4g}"
            )
        g = p.global_test
        lines.append(
            f"  {'GLOBAL':>10s}  {'NA':>8s}  {g.statistic:10.4f}  "
            f"{g.df:3d}  {g.p_value:10.4g}"
        )
        return "\n".join(lines)

    def __repr__(self) -> str:
        g = self.global_test
        return (
            f"ZphSolution(events={self.n_events}, global chisq={g.statistic:.4f}, "
            f"df={g.df}, p={g.p_value:.4g})"
        )
