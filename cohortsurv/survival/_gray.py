"""
Gray's K-sample test for equality of cumulative incidence functions.

For cause k and groups g = 1..G, at each pooled cause-k event time t:

    R_g(t) = Y_g(t) (1 - F_kg(t-)) / S_g(t-)     subdistribution risk set
    w(t)   = (1 - F_k(t-))^rho                    pooled incidence weight
    z_g    = Σ_t w(t) [d_kg(t) - R_g(t) d_k(t) / R(t)]

Y_g is the ordinary risk set; F_kg and S_g are the group's Aalen-Johansen
incidence and all-cause survival. R_g inflates Y_g by the subjects who
already failed from a competing cause. The covariance is the hypergeometric
form on subdistribution risk sets, so with a single cause the test is the
(G-rho) log-rank test.

References:
    Gray, R. J. (1988). A class of K-sample tests for comparing the
        cumulative incidence of a competing risk. Ann. Statist., 16(3),
        1141-1154.
"""

from __future__ import annotations

from typing import Any

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from cohortsurv.survival._cif import aalen_johansen
from cohortsurv.survival._common import GrayTestParams
from cohortsurv.survival._logrank import group_codes, k_sample_statistic
from cohortsurv.survival._tabulate import risk_table
from cohortsurv.survival.design import EventTable
from cohortsurv.survival.exceptions import InsufficientDataError


def _left_limits(
    grid: NDArray,
    S: NDArray,
    F_k: NDArray,
    t: NDArray,
) -> tuple[NDArray, NDArray]:
    """S(t-) and F_k(t-) of step functions on ``grid``."""
    idx = np.searchsorted(grid, t, side="left") - 1
    safe = np.clip(idx, 0, None)
    if len(grid) == 0:
        return np.ones(len(t)), np.zeros(len(t))
    S_left = np.where(idx >= 0, S[safe], 1.0)
    F_left = np.where(idx >= 0, F_k[safe], 0.0)
    return S_left, F_left


def _incidence(time: NDArray, cause_code: NDArray, n_causes: int, k: int):
    table = risk_table(time, cause_code, n_causes)
    S, F = aalen_johansen(table)
    return table.time, S, F[:, k - 1]


def gray_fit(data: EventTable, cause: Any, rho: float = 0.0) -> GrayTestParams:
    """Gray's test of one cause across the table's strata.

    Parameters
    ----------
    data : EventTable
        Groups are the non-empty strata.
    cause : label
        Cause of interest; other causes are competing events.
    rho : float
        Weight exponent; rho=0 weights every time equally.

    Returns
    -------
    GrayTestParams

    Raises
    ------
    ValidationError
        If fewer than 2 groups are present.
    UnknownCauseError
        If the cause is not in the table's vocabulary.
    InsufficientDataError
        If the cause has no events.
    SingularMatrixError
        If the score covariance is singular.
    """
    group, labels = group_codes(data)
    n_groups = len(labels)
    k = data.cause_index(cause)

    is_k = data.cause_code == k
    event_times = np.unique(data.time[is_k])
    m = len(event_times)
    if m == 0:
        raise InsufficientDataError(
            f"cause {cause!r} has no events; Gray's test is undefined",
            cause=cause, n_events=0,
        )

    grid0, S0, F0 = _incidence(data.time, data.cause_code, data.n_causes, k)
    _, F0_left = _left_limits(grid0, S0, F0, event_times)
    weights = (1.0 - F0_left) ** rho

    R = np.zeros((m, n_groups), dtype=np.float64)
    d = np.zeros((m, n_groups), dtype=np.float64)
    for g in range(n_groups):
        in_g = group == g
        t_g = data.time[in_g]
        grid, S, F_k = _incidence(t_g, data.cause_code[in_g], data.n_causes, k)
        S_left, F_left = _left_limits(grid, S, F_k, event_times)

        Y = len(t_g) - np.searchsorted(np.sort(t_g), event_times, side="left")
        R[:, g] = np.divide(
            Y * (1.0 - F_left), S_left,
            out=np.zeros(m), where=S_left > 0,
        )
        hit = in_g & is_k
        if np.any(hit):
            d[:, g] = np.bincount(
                np.searchsorted(event_times, data.time[hit]), minlength=m,
            )

    statistic, observed, expected, V = k_sample_statistic(d, R, weights)
    df = n_groups - 1

    return GrayTestParams(
        cause=cause,
        statistic=statistic,
        df=df,
        p_value=float(stats.chi2.sf(statistic, df)),
        n_groups=n_groups,
        observed=observed,
        expected=expected,
        variance=V,
        n_per_group=np.bincount(group, minlength=n_groups).astype(np.float64),
        rho=rho,
        group_labels=labels,
    )
