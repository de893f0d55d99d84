"""
Kaplan-Meier product-limit estimator.

Matches R's survival::survfit(Surv(time, event) ~ strata):
- Product-limit survival estimate: S(t) = ∏(1 - d_j / n_j)
- Greenwood variance: Var(S(t)) = S(t)^2 * Σ(d_j / (n_j * (n_j - d_j)))
- Confidence intervals via log-log (default), log, or plain transformation

Conventions:
    n_j counts subjects with time >= t_j, so a subject censored at t_j is
    still at risk for that time's events. S(t) is 1 before the first event,
    held flat from the last event time to the last observed time, and
    undefined (nan) beyond it.

References:
    Kaplan, E. L., & Meier, P. (1958). Nonparametric estimation from
        incomplete observations. JASA, 53(282), 457-481.
    Greenwood, M. (1926). The natural duration of cancer. Reports on
        Public Health and Medical Subjects, 33, 1-26.
"""

from __future__ import annotations

from typing import Any

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from cohortsurv.survival._common import KMParams, SurvivalCurve
from cohortsurv.survival._tabulate import RiskTable, risk_table
from cohortsurv.survival.design import EventTable
from cohortsurv.survival.exceptions import InsufficientDataError


def normal_quantile(conf_level: float) -> float:
    return float(stats.norm.ppf((1.0 + conf_level) / 2.0))


def confidence_band(
    estimate: NDArray,
    se: NDArray,
    z: float,
    conf_type: str,
) -> tuple[NDArray, NDArray]:
    """Pointwise CI for a probability estimate.

    Parameters
    ----------
    estimate : S(t) or CIF(t) values
    se : standard errors of the estimate
    z : normal quantile (e.g. 1.96 for 95%)
    conf_type : "log-log", "log", or "plain"

    Returns
    -------
    (ci_lower, ci_upper) clipped to [0, 1]; equal to the estimate where
    se == 0 or the transformation is undefined.
    """
    with np.errstate(divide="ignore", invalid="ignore"):
        if conf_type == "plain":
            lower = estimate - z * se
            upper = estimate + z * se
            defined = np.ones_like(estimate, dtype=bool)

        elif conf_type == "log":
            # exp(log(p) ± z * se / p)
            se_log = se / estimate
            lower = estimate * np.exp(-z * se_log)
            upper = estimate * np.exp(z * se_log)
            defined = estimate > 0

        elif conf_type == "log-log":
            # exp(-exp(log(-log(p)) ± z * se / (p |log p|))) = p ** exp(±...)
            se_loglog = se / (estimate * np.abs(np.log(estimate)))
            lower = estimate ** np.exp(z * se_loglog)
            upper = estimate ** np.exp(-z * se_loglog)
            defined = (estimate > 0) & (estimate < 1)

        else:
            raise ValueError(
                f"Unknown conf_type '{conf_type}'. "
                f"Choose from 'log-log', 'log', 'plain'."
            )

    flat = (se <= 0) | ~defined | ~np.isfinite(lower) | ~np.isfinite(upper)
    lower = np.where(flat, estimate, np.clip(lower, 0.0, 1.0))
    upper = np.where(flat, estimate, np.clip(upper, 0.0, 1.0))
    return lower, upper


def greenwood_terms(n_risk: NDArray, n_events: NDArray) -> NDArray:
    """d / (n (n - d)) per time; 0 where the whole risk set fails."""
    denom = n_risk * (n_risk - n_events)
    return np.divide(
        n_events, denom,
        out=np.zeros_like(n_events, dtype=np.float64),
        where=denom > 0,
    )


def is_degenerate(time: NDArray, n_events: int) -> bool:
    """No events, or fewer than two distinct observed times."""
    return n_events == 0 or len(np.unique(time)) < 2


def product_limit(
    table: RiskTable,
    conf_level: float,
    conf_type: str,
    stratum: Any = None,
    degenerate: bool = False,
) -> SurvivalCurve:
    """Survival curve from a tabulated risk table (any column of events)."""
    d = table.d
    n_risk = table.n_risk

    survival = np.cumprod(1.0 - d / n_risk) if len(d) else np.empty(0)
    var_log = np.cumsum(greenwood_terms(n_risk, d))
    variance = survival ** 2 * var_log
    se = np.sqrt(variance)

    ci_lower, ci_upper = confidence_band(
        survival, se, normal_quantile(conf_level), conf_type,
    )

    return SurvivalCurve(
        time=table.time,
        survival=survival,
        n_risk=n_risk,
        n_events=d,
        n_censored=table.n_censored,
        variance=variance,
        se=se,
        var_log_survival=var_log,
        ci_lower=ci_lower,
        ci_upper=ci_upper,
        conf_level=conf_level,
        conf_type=conf_type,
        n_observations=table.n_observations,
        n_events_total=int(d.sum()),
        max_time=table.max_time,
        stratum=stratum,
        degenerate=degenerate,
    )


def kaplan_meier_fit(
    data: EventTable,
    cause: Any,
    conf_level: float,
    conf_type: str,
    strict: bool = False,
) -> tuple[KMParams, list[str]]:
    """Compute one Kaplan-Meier curve per stratum.

    Parameters
    ----------
    data : EventTable
    cause : label or None
        Cause treated as the event; None means any cause.
    conf_level : float
        Confidence level for CI (e.g. 0.95).
    conf_type : str
        CI type: "log-log", "log", "plain".
    strict : bool
        Raise InsufficientDataError for degenerate strata instead of
        flagging them.

    Returns
    -------
    (KMParams, warning messages)
    """
    messages: list[str] = []
    curves: dict[Any, SurvivalCurve] = {}

    for label, part in data.by_stratum().items():
        event = part.event_indicator(cause).astype(np.int64)
        n_events = int(event.sum())
        degenerate = is_degenerate(part.time, n_events)
        if degenerate:
            msg = (
                f"stratum {label!r}: {n_events} events over "
                f"{len(np.unique(part.time))} distinct times; curve is "
                f"degenerate"
            )
            if strict:
                raise InsufficientDataError(
                    msg, stratum=label, cause=cause,
                    n_times=len(np.unique(part.time)), n_events=n_events,
                )
            messages.append(msg)

        curves[label] = product_limit(
            risk_table(part.time, event, 1),
            conf_level, conf_type,
            stratum=label, degenerate=degenerate,
        )

    for label in data.empty_strata():
        messages.append(f"stratum {label!r} is declared but has no subjects")

    params = KMParams(
        curves=curves,
        cause=cause,
        conf_level=conf_level,
        conf_type=conf_type,
        n_observations=data.n,
    )
    return params, messages
