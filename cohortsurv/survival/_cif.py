"""
Aalen-Johansen cumulative incidence under competing risks.

Matches cmprsk::cuminc point estimates:
    S(t_i)     = S(t_{i-1}) (1 - d_i / n_i)            all-cause KM
    CIF_k(t_i) = CIF_k(t_{i-1}) + S(t_{i-1}) d_ki / n_i

on the grid of distinct any-cause event times, so that at every grid time
S(t) + Σ_k CIF_k(t) = 1.

Variance by the delta method for multinomial counts at each time
(Marubini & Valsecchi 1995, eq. 10.15):

    Var F_k(t) = Σ (F_k(t) - F_k(t_j))^2 d_j / (n_j (n_j - d_j))
               + Σ S(t_{j-1})^2 d_kj (n_j - d_kj) / n_j^3
               - 2 Σ (F_k(t) - F_k(t_j)) S(t_{j-1}) d_kj / n_j^2

with all sums over t_j <= t, expanded into cumulative sums.

References:
    Aalen, O. O. & Johansen, S. (1978). An empirical transition matrix for
        non-homogeneous Markov chains based on censored observations.
        Scand. J. Statist., 5, 141-150.
    Marubini, E. & Valsecchi, M. G. (1995). Analysing Survival Data from
        Clinical Trials and Observational Studies. Wiley.
"""

from __future__ import annotations

from typing import Any

import numpy as np
from numpy.typing import NDArray

from cohortsurv.survival._common import (
    CIFParams,
    CumulativeIncidenceCurve,
    SurvivalCurve,
)
from cohortsurv.survival._km import (
    confidence_band,
    greenwood_terms,
    is_degenerate,
    normal_quantile,
    product_limit,
)
from cohortsurv.survival._tabulate import RiskTable, risk_table
from cohortsurv.survival.design import EventTable
from cohortsurv.survival.exceptions import InsufficientDataError


def aalen_johansen(table: RiskTable) -> tuple[NDArray, NDArray]:
    """All-cause survival and per-cause incidence on the table's grid.

    Returns
    -------
    (S, F) with S of shape (m,) and F of shape (m, K)
    """
    n = table.n_risk
    S = np.cumprod(1.0 - table.d / n)
    S_prev = np.concatenate([[1.0], S])[:-1]
    F = np.cumsum(S_prev[:, None] * table.n_events / n[:, None], axis=0)
    return S, F


def incidence_variance(
    table: RiskTable,
    S: NDArray,
    F_k: NDArray,
    d_k: NDArray,
) -> NDArray:
    """Delta-method variance of one cause's incidence at each grid time."""
    n = table.n_risk
    S_prev = np.concatenate([[1.0], S])[:-1]

    a = greenwood_terms(n, table.d)
    b = S_prev ** 2 * d_k * (n - d_k) / n ** 3
    c = S_prev * d_k / n ** 2

    A = np.cumsum(a)
    AF = np.cumsum(a * F_k)
    AF2 = np.cumsum(a * F_k ** 2)
    C = np.cumsum(c)
    CF = np.cumsum(c * F_k)

    var = F_k ** 2 * A - 2.0 * F_k * AF + AF2 + np.cumsum(b) - 2.0 * F_k * C + 2.0 * CF
    # Cancellation can leave tiny negatives.
    return np.maximum(var, 0.0)


def cumulative_incidence_fit(
    data: EventTable,
    causes: tuple[Any, ...],
    conf_level: float,
    conf_type: str,
    strict: bool = False,
) -> tuple[CIFParams, list[str]]:
    """Estimate the incidence of each requested cause in each stratum.

    Parameters
    ----------
    data : EventTable
        Multi-cause table; every non-censored cause is an event for the
        all-cause risk sets.
    causes : tuple
        Cause labels to report (validated by the caller).
    conf_level, conf_type :
        Pointwise CI settings.
    strict : bool
        Raise InsufficientDataError for degenerate (stratum, cause) pairs.

    Returns
    -------
    (CIFParams, warning messages)
    """
    z = normal_quantile(conf_level)
    messages: list[str] = []
    curves: dict[tuple[Any, Any], CumulativeIncidenceCurve] = {}
    overall: dict[Any, SurvivalCurve] = {}

    parts = data.by_stratum()
    for label, part in parts.items():
        table = risk_table(part.time, part.cause_code, data.n_causes)
        n_distinct = len(np.unique(part.time))

        overall[label] = product_limit(
            table, conf_level, conf_type,
            stratum=label,
            degenerate=is_degenerate(part.time, part.n_events),
        )
        S, F = aalen_johansen(table)

        for cause in causes:
            k = data.cause_index(cause) - 1
            d_k = table.n_events[:, k]
            n_events_k = int(d_k.sum())
            degenerate = n_events_k == 0 or n_distinct < 2
            if degenerate:
                msg = (
                    f"stratum {label!r}, cause {cause!r}: {n_events_k} events "
                    f"over {n_distinct} distinct times; incidence is degenerate"
                )
                if strict:
                    raise InsufficientDataError(
                        msg, stratum=label, cause=cause,
                        n_times=n_distinct, n_events=n_events_k,
                    )
                messages.append(msg)

            F_k = F[:, k]
            variance = incidence_variance(table, S, F_k, d_k)
            se = np.sqrt(variance)
            lower, upper = confidence_band(F_k, se, z, conf_type)

            curves[(label, cause)] = CumulativeIncidenceCurve(
                time=table.time,
                incidence=F_k,
                variance=variance,
                se=se,
                ci_lower=lower,
                ci_upper=upper,
                n_events=d_k,
                cause=cause,
                stratum=label,
                conf_level=conf_level,
                conf_type=conf_type,
                max_time=table.max_time,
                degenerate=degenerate,
            )

    for label in data.empty_strata():
        messages.append(f"stratum {label!r} is declared but has no subjects")

    params = CIFParams(
        curves=curves,
        overall=overall,
        tests={},
        causes=tuple(causes),
        strata=tuple(parts),
        conf_level=conf_level,
        conf_type=conf_type,
        n_observations=data.n,
    )
    return params, messages
