"""
Cox Proportional Hazards model via Newton-Raphson.

Implements Breslow's (default) and Efron's methods for tied event times,
matching R's survival::coxph(ties=...).

Algorithm:
    Initialize β = 0 (or init)
    State FITTING; each iteration:
        Compute: partial log-likelihood L(β), score U(β), information H(β)
        step = H^{-1} U via Cholesky        (failure -> SINGULAR)
        cap the step at MAX_STEP in max norm, halve it while L decreases
        CONVERGED when |L_new - L_old| <= tol (|L_old| + 0.1) or max|U| <= tol
    Iteration cap reached -> NON_CONVERGED (last iterate is reported)
    Any diag H(β) below 1e-6 of diag H(0) at the end -> SINGULAR (separation)

Efron's partial likelihood:
    L(β) = Σ_{j: event times} [ Σ_{i ∈ D_j} x_i @ β
            - Σ_{s=0}^{d_j-1} log(Σ_{l ∈ R_j} exp(x_l @ β)
                - (s/d_j) * Σ_{i ∈ D_j} exp(x_i @ β)) ]

    where D_j = set of events at time t_j, d_j = |D_j|,
          R_j = risk set at time t_j (time >= t_j, same stratum).
    Breslow's approximation is the same expression with s/d_j replaced by 0,
    so both methods share one vectorised code path: every event time is
    expanded into d_j rows carrying their fraction s/d_j.

References:
    Cox, D. R. (1972). Regression models and life-tables. JRSS-B, 34(2), 187-220.
    Breslow, N. (1974). Covariance analysis of censored survival data.
        Biometrics, 30(1), 89-99.
    Efron, B. (1977). The efficiency of Cox's likelihood function for
        censored data. JASA, 72(359), 557-565.
    R Core Team. survival::coxph, coxph.fit
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np
from numpy.typing import NDArray
from scipy import linalg, stats

from cohortsurv.core.exceptions import ValidationError
from cohortsurv.survival._common import (
    MAX_HALVING,
    MAX_STEP,
    CoxParams,
    FitStatus,
    TestResult,
)
from cohortsurv.survival.design import EventTable
from cohortsurv.survival.exceptions import (
    InsufficientDataError,
    InvalidCovariateError,
    SingularInformationError,
)

# Smallest accepted ratio of Cholesky pivots (min / max).
_PIVOT_RATIO = 1e-7

# A coefficient whose information has shrunk below this fraction of its
# value at beta = 0 is diverging (monotone likelihood, separated data).
_INFO_COLLAPSE = 1e-6


@dataclass(frozen=True)
class RiskSets:
    """Subjects sorted by (stratum, time) with event-time bookkeeping.

    Attributes
    ----------
    X : (n, p) centred covariates, sorted
    time, stratum : (n,) sorted
    event_rows : (D,) sorted-row index of each event
    event_group : (D,) tied-event group of each event
    start, stop : (G,) risk set of group j is rows [start_j, stop_j)
    n_tied : (G,) events per group
    row_group : (D,) group of each expanded (Efron) row
    frac : (D,) s / d_j for Efron, 0 for Breslow
    """

    X: NDArray
    time: NDArray
    stratum: NDArray
    event_rows: NDArray
    event_group: NDArray
    start: NDArray
    stop: NDArray
    n_tied: NDArray
    row_group: NDArray
    frac: NDArray

    @classmethod
    def build(
        cls,
        time: NDArray,
        event: NDArray,
        X: NDArray,
        stratum: NDArray | None,
        ties: str,
    ) -> RiskSets:
        n = len(time)
        if stratum is None:
            stratum = np.zeros(n, dtype=np.int64)
        order = np.lexsort((time, stratum))
        t = time[order]
        s = stratum[order]
        e = event[order] > 0
        Xs = X[order] - X.mean(axis=0)

        # Runs of equal (stratum, time); a run's first row opens its risk set.
        new_run = np.r_[True, (s[1:] != s[:-1]) | (t[1:] != t[:-1])]
        run_id = np.cumsum(new_run) - 1
        run_first = np.flatnonzero(new_run)
        block_stop = np.searchsorted(s, s, side="right")

        event_rows = np.flatnonzero(e)
        runs, event_group, n_tied = np.unique(
            run_id[event_rows], return_inverse=True, return_counts=True,
        )
        first_row = run_first[runs]

        row_group = np.repeat(np.arange(len(runs)), n_tied)
        if ties == "efron":
            offset = np.repeat(np.cumsum(n_tied) - n_tied, n_tied)
            frac = (np.arange(len(row_group)) - offset) / n_tied[row_group]
        else:
            frac = np.zeros(len(row_group))

        return cls(
            X=Xs,
            time=t,
            stratum=s,
            event_rows=event_rows,
            event_group=event_group.ravel(),
            start=first_row,
            stop=block_stop[first_row],
            n_tied=n_tied,
            row_group=row_group,
            frac=frac,
        )

    @property
    def n_events(self) -> int:
        return len(self.event_rows)

    def _risk_sum(self, values: NDArray) -> NDArray:
        """Σ over each group's risk set, via reverse cumulative sums."""
        tail = np.cumsum(values[::-1], axis=0)[::-1]
        tail = np.concatenate([tail, np.zeros((1,) + values.shape[1:])])
        return tail[self.start] - tail[self.stop]

    def _group_sum(self, values: NDArray) -> NDArray:
        """Σ over each group's tied events."""
        out = np.zeros((len(self.n_tied),) + values.shape[1:])
        np.add.at(out, self.event_group, values[self.event_rows])
        return out

    def expanded_means(self, beta: NDArray) -> tuple[NDArray, NDArray, NDArray, NDArray]:
        """Per expanded row: denominator, a1, a2 and the weighted mean."""
        eta = self.X @ beta
        w = np.exp(eta - eta.max())
        wX = w[:, None] * self.X
        wXX = wX[:, :, None] * self.X[:, None, :]

        S0, S1, S2 = self._risk_sum(w), self._risk_sum(wX), self._risk_sum(wXX)
        dS0, dS1, dS2 = self._group_sum(w), self._group_sum(wX), self._group_sum(wXX)

        g, f = self.row_group, self.frac
        denom = S0[g] - f * dS0[g]
        a1 = S1[g] - f[:, None] * dS1[g]
        a2 = S2[g] - f[:, None, None] * dS2[g]
        mean = a1 / denom[:, None]
        return denom, a1, a2, mean

    def derivatives(self, beta: NDArray) -> tuple[float, NDArray, NDArray]:
        """Log partial likelihood, score vector and observed information.

        Returns
        -------
        (loglik, score, info_matrix)
            loglik : float
            score : (p,) gradient of log-likelihood
            info_matrix : (p, p) negative Hessian (observed information)
        """
        eta = self.X @ beta
        shift = eta.max()
        denom, _, a2, mean = self.expanded_means(beta)
        ev = self.event_rows

        # The shift cancels: one log(denom) term per event.
        loglik = float(np.sum(eta[ev] - shift) - np.sum(np.log(denom)))
        score = self.X[ev].sum(axis=0) - mean.sum(axis=0)
        info = (a2 / denom[:, None, None]).sum(axis=0) - mean.T @ mean
        return loglik, score, info

    def schoenfeld(self, beta: NDArray) -> NDArray:
        """(D, p) residuals x_i - x̄(t_i) in sorted event order.

        For Efron ties x̄ is the average of the d_j fractional means.
        """
        _, _, _, mean = self.expanded_means(beta)
        group_mean = np.zeros((len(self.n_tied), self.X.shape[1]))
        np.add.at(group_mean, self.row_group, mean)
        group_mean /= self.n_tied[:, None]
        return self.X[self.event_rows] - group_mean[self.event_group]


def _cholesky(H: NDArray):
    """Cholesky factor, rejecting numerically singular matrices."""
    c, lower = linalg.cho_factor(H)
    pivots = np.abs(np.diag(c))
    if pivots.min() <= _PIVOT_RATIO * pivots.max():
        raise np.linalg.LinAlgError("information matrix is numerically singular")
    return c, lower


def _solve(H: NDArray, b: NDArray) -> NDArray:
    return linalg.cho_solve(_cholesky(H), b)


def newton_raphson(
    risk: RiskSets,
    beta0: NDArray,
    tol: float,
    max_iter: int,
) -> tuple[NDArray, FitStatus, int, float]:
    """Run the FITTING -> CONVERGED | NON_CONVERGED | SINGULAR state machine.

    Returns
    -------
    (beta, status, n_iter, final_change)

    Raises
    ------
    SingularInformationError
        If the information matrix cannot be factored at some iterate.
    """
    beta = beta0.copy()
    loglik, score, info = risk.derivatives(beta)
    status = FitStatus.FITTING
    n_iter = 0
    change = np.inf

    if np.max(np.abs(score)) <= tol:
        status = FitStatus.CONVERGED

    while status is FitStatus.FITTING:
        if n_iter >= max_iter:
            status = FitStatus.NON_CONVERGED
            break

        try:
            step = _solve(info, score)
        except np.linalg.LinAlgError as e:
            status = FitStatus.SINGULAR
            raise SingularInformationError(
                f"Information matrix is singular at iteration {n_iter} "
                f"(collinear covariates or complete separation): {e}",
                coefficients=beta,
                iterations=n_iter,
            ) from e

        max_step = np.max(np.abs(step))
        if max_step > MAX_STEP:
            step = step * (MAX_STEP / max_step)

        for _ in range(MAX_HALVING):
            loglik_new, score_new, info_new = risk.derivatives(beta + step)
            if np.isfinite(loglik_new) and loglik_new >= loglik:
                break
            step = step / 2.0
        else:
            loglik_new, score_new, info_new = risk.derivatives(beta + step)

        n_iter += 1
        change = abs(loglik_new - loglik)
        converged = (
            change <= tol * (abs(loglik) + 0.1)
            or np.max(np.abs(score_new)) <= tol
        )
        beta = beta + step
        loglik, score, info = loglik_new, score_new, info_new
        if converged:
            status = FitStatus.CONVERGED

    return beta, status, n_iter, float(change)


def check_covariates(
    X: NDArray,
    names: tuple[str, ...],
    stratum: NDArray | None,
) -> None:
    """Reject missing, non-finite, or constant-within-every-stratum columns."""
    if X is None or X.shape[1] == 0:
        raise InvalidCovariateError(
            "at least one covariate is required for coxph()", reason="missing",
        )
    groups = [np.arange(len(X))] if stratum is None else [
        np.flatnonzero(stratum == k) for k in np.unique(stratum)
    ]
    for j, name in enumerate(names):
        col = X[:, j]
        if not np.all(np.isfinite(col)):
            raise InvalidCovariateError(
                f"covariate '{name}' contains non-finite values",
                covariate=name, reason="non_finite",
            )
        if all(np.ptp(col[rows]) == 0 for rows in groups):
            raise InvalidCovariateError(
                f"covariate '{name}' is constant within every risk set "
                f"and cannot be estimated",
                covariate=name, reason="constant",
            )


def concordance(
    time: NDArray,
    event: NDArray,
    eta: NDArray,
    stratum: NDArray | None = None,
) -> float:
    """Harrell's concordance statistic (C-statistic).

    C = P(risk_i > risk_j | T_i < T_j, event_i = 1), pairs within strata.
    """
    if stratum is None:
        stratum = np.zeros(len(time), dtype=np.int64)

    concordant = 0.0
    discordant = 0.0
    tied_risk = 0.0
    for i in np.flatnonzero(event > 0):
        comparable = (stratum == stratum[i]) & (time > time[i])
        others = eta[comparable]
        concordant += np.sum(eta[i] > others)
        discordant += np.sum(eta[i] < others)
        tied_risk += np.sum(eta[i] == others)

    total = concordant + discordant + tied_risk
    if total == 0:
        return 0.5
    return float((concordant + 0.5 * tied_risk) / total)


def _chisq(statistic: float, df: int) -> TestResult:
    return TestResult(float(statistic), df, float(stats.chi2.sf(statistic, df)))


def cox_fit(
    data: EventTable,
    ties: str = "breslow",
    tol: float = 1e-9,
    max_iter: int = 25,
    conf_level: float = 0.95,
    init: NDArray | None = None,
    strata_key: str | None = None,
) -> tuple[CoxParams, list[str]]:
    """Fit Cox proportional hazards model.

    Parameters
    ----------
    data : EventTable
        Single-cause table; its covariates are the model terms and its
        strata (if any) define separate baseline hazards.
    ties : str
        Method for handling tied event times: "breslow" or "efron".
    tol : float
        Convergence tolerance on the relative log-likelihood change.
    max_iter : int
        Maximum Newton-Raphson iterations.
    conf_level : float
        Confidence level for hazard-ratio intervals.
    init : NDArray or None
        Starting coefficients (default zeros).
    strata_key : str or None
        Name of the covariate the strata were derived from, if any.

    Returns
    -------
    (CoxParams, warning messages)
    """
    if data.n_causes > 1:
        raise ValidationError(
            f"coxph() needs a single event definition; the table has causes "
            f"{list(data.causes)}. Use EventTable.collapse_causes() first."
        )
    names = data.covariate_names
    X = data.X
    check_covariates(X, names, data.stratum_code)
    n, p = X.shape

    event = data.event_indicator()
    n_events = int(event.sum())
    if n_events == 0:
        raise InsufficientDataError(
            "no events: the Cox model cannot be fitted", n_events=0,
        )

    risk = RiskSets.build(data.time, event, X, data.stratum_code, ties)

    zero = np.zeros(p, dtype=np.float64)
    null_loglik, score0, info0 = risk.derivatives(zero)
    try:
        score_stat = float(score0 @ _solve(info0, score0))
    except np.linalg.LinAlgError as e:
        raise SingularInformationError(
            f"Information matrix is singular at beta = 0 "
            f"(collinear covariates): {e}",
            coefficients=zero,
        ) from e

    if init is None:
        beta0 = zero
    else:
        beta0 = np.asarray(init, dtype=np.float64).ravel()
        if beta0.shape != (p,):
            raise ValidationError(
                f"init must have {p} elements to match covariates, "
                f"got {beta0.size}"
            )

    beta, status, n_iter, change = newton_raphson(risk, beta0, tol, max_iter)

    messages: list[str] = []
    if status is FitStatus.NON_CONVERGED:
        messages.append(
            f"Newton-Raphson did not converge in {max_iter} iterations "
            f"(last log-likelihood change {change:.3g}); coefficients are "
            f"the last iterate"
        )

    model_loglik, _, info = risk.derivatives(beta)
    try:
        variance = _solve(info, np.eye(p))
    except np.linalg.LinAlgError as e:
        raise SingularInformationError(
            f"Information matrix is singular at the final iterate: {e}",
            coefficients=beta,
            iterations=n_iter,
        ) from e

    collapsed = np.diag(info) < _INFO_COLLAPSE * np.diag(info0)
    if np.any(collapsed):
        diverging = [names[j] for j in np.flatnonzero(collapsed)]
        raise SingularInformationError(
            f"Coefficients for {diverging} are diverging (information fell "
            f"below {_INFO_COLLAPSE:g} of its value at beta = 0); the "
            f"covariates separate events from survivors",
            coefficients=beta,
            iterations=n_iter,
        )

    se = np.sqrt(np.maximum(np.diag(variance), 0.0))
    z = np.where(se > 0, beta / se, 0.0)
    p_values = 2.0 * stats.norm.sf(np.abs(z))
    q = stats.norm.ppf((1.0 + conf_level) / 2.0)
    with np.errstate(over="ignore"):
        hazard_ratios = np.exp(beta)
        hr_ci_lower = np.exp(beta - q * se)
        hr_ci_upper = np.exp(beta + q * se)

    eta = X @ beta

    params = CoxParams(
        covariate_names=names,
        coefficients=beta,
        standard_errors=se,
        z_statistics=z,
        p_values=p_values,
        hazard_ratios=hazard_ratios,
        hr_ci_lower=hr_ci_lower,
        hr_ci_upper=hr_ci_upper,
        variance=variance,
        loglik=(null_loglik, model_loglik),
        lr_test=_chisq(2.0 * (model_loglik - null_loglik), p),
        wald_test=_chisq(float(beta @ info @ beta), p),
        score_test=_chisq(score_stat, p),
        concordance=concordance(data.time, event, eta, data.stratum_code),
        n_events=n_events,
        n_observations=n,
        n_iter=n_iter,
        status=status,
        ties=ties,
        tol=tol,
        max_iter=max_iter,
        conf_level=conf_level,
        strata=_present_strata(data),
        strata_key=strata_key,
    )
    return params, messages


def _present_strata(data: EventTable) -> tuple[Any, ...]:
    if data.stratum_code is None:
        return ()
    return tuple(data.strata_labels[int(k)] for k in np.unique(data.stratum_code))
