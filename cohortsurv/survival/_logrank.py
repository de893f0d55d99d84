"""
Log-rank test (G-rho family) for comparing survival curves across groups.

Matches R's survival::survdiff(Surv(time, event) ~ group, rho=0):
- Standard log-rank test (rho=0): Mantel-Haenszel / Cochran-Mantel
- G-rho family (rho>0): Fleming-Harrington weighted variant
  When rho=1, gives the Peto & Peto modification of the Gehan-Wilcoxon test.

Algorithm:
    At each distinct event time t_j:
       - n_kj = number at risk in group k at t_j
       - d_kj = observed events in group k at t_j
       - N_j = total at risk, D_j = total events
       - Expected events in group k: E_kj = n_kj * D_j / N_j
       - Weight w_j = S_hat(t_j-)^rho (pooled KM estimate just before t_j)
    Test statistic: chi-squared based on (O - E) with the hypergeometric
    covariance, dropping the last group.

References:
    Harrington, D. P. & Fleming, T. R. (1982). A class of rank test
        procedures for censored survival data. Biometrika, 69(3), 553-566.
    R Core Team. survival::survdiff
"""

from __future__ import annotations

from typing import Any

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from cohortsurv.core.exceptions import SingularMatrixError, ValidationError
from cohortsurv.survival._common import LogRankParams
from cohortsurv.survival._tabulate import group_counts
from cohortsurv.survival.design import EventTable
from cohortsurv.survival.exceptions import InsufficientDataError


def group_codes(data: EventTable) -> tuple[NDArray, tuple[Any, ...]]:
    """Dense 0..G-1 codes over the non-empty strata, and their labels."""
    if data.stratum_code is None:
        raise ValidationError(
            "Need at least 2 groups for a K-sample test, got 1 "
            "(the table is not stratified)"
        )
    present = np.unique(data.stratum_code)
    if len(present) < 2:
        raise ValidationError(
            f"Need at least 2 groups for a K-sample test, got {len(present)}"
        )
    codes = np.searchsorted(present, data.stratum_code)
    labels = tuple(data.strata_labels[int(k)] for k in present)
    return codes, labels


def k_sample_statistic(
    d: NDArray,
    n_risk: NDArray,
    weights: NDArray,
) -> tuple[float, NDArray, NDArray, NDArray]:
    """Weighted O - E statistic shared by the log-rank and Gray tests.

    Parameters
    ----------
    d : (m, G) events per group at each time
    n_risk : (m, G) (possibly fractional) risk sets per group
    weights : (m,) time weights

    Returns
    -------
    (statistic, observed, expected, V)

    Raises
    ------
    SingularMatrixError
        If the (G-1) x (G-1) covariance block is not invertible.
    """
    n_groups = d.shape[1]
    D = d.sum(axis=1)
    N = n_risk.sum(axis=1)
    valid = N > 0

    share = np.divide(
        n_risk, N[:, None],
        out=np.zeros_like(n_risk), where=valid[:, None],
    )
    observed = weights @ d
    expected = (weights * D) @ share

    # V_kl = Σ_j w_j^2 * D_j * (N_j - D_j) / (N_j - 1) * p_kj * (δ_kl - p_lj)
    factor = np.divide(
        weights ** 2 * D * (N - D), N - 1,
        out=np.zeros_like(N), where=N > 1,
    )
    V = np.diag(factor @ share) - (share * factor[:, None]).T @ share

    df = n_groups - 1
    diff = (observed - expected)[:df]
    V_sub = V[:df, :df]
    try:
        statistic = float(diff @ np.linalg.solve(V_sub, diff))
    except np.linalg.LinAlgError as e:
        raise SingularMatrixError(
            f"Test covariance matrix is singular: {e}",
            matrix_name="V",
            rank=int(np.linalg.matrix_rank(V_sub)),
            expected_rank=df,
        ) from e
    return statistic, observed, expected, V


def logrank_test(
    data: EventTable,
    cause: Any = None,
    rho: float = 0.0,
) -> LogRankParams:
    """Compute log-rank test (G-rho family) across the table's strata.

    Parameters
    ----------
    data : EventTable
        Groups are the non-empty strata.
    cause : label or None
        Event definition; other causes are censored. None = any cause.
    rho : float
        G-rho weight parameter: rho=0 is standard log-rank,
        rho=1 is Peto & Peto / Gehan-Wilcoxon.

    Returns
    -------
    LogRankParams
    """
    group, labels = group_codes(data)
    n_groups = len(labels)
    event = data.event_indicator(cause)

    event_times = np.unique(data.time[event > 0])
    if len(event_times) == 0:
        raise InsufficientDataError(
            "no events: the log-rank test is undefined",
            cause=cause, n_events=0,
        )

    n_kg, d_kg = group_counts(data.time, event, group, n_groups, event_times)

    if rho == 0.0:
        weights = np.ones(len(event_times), dtype=np.float64)
    else:
        # S_hat(t_j-) from the pooled Kaplan-Meier estimate
        D = d_kg.sum(axis=1)
        N = n_kg.sum(axis=1)
        surv = np.cumprod(1.0 - D / N)
        s_before = np.concatenate([[1.0], surv[:-1]])
        weights = s_before ** rho

    statistic, observed, expected, _ = k_sample_statistic(d_kg, n_kg, weights)
    df = n_groups - 1

    return LogRankParams(
        statistic=statistic,
        df=df,
        p_value=float(stats.chi2.sf(statistic, df)),
        n_groups=n_groups,
        observed=observed,
        expected=expected,
        n_per_group=np.bincount(group, minlength=n_groups).astype(np.float64),
        rho=rho,
        group_labels=labels,
        cause=cause,
    )
