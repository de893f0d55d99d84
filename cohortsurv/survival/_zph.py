"""
Test of the proportional hazards assumption via scaled Schoenfeld residuals.

Matches the Grambsch-Therneau approximation of R's survival::cox.zph()
(survival < 3.0):

    r_i    = x_i - x̄(t_i)                   Schoenfeld residual, event i
    r*_i   = D V r_i                          scaled residual (D events,
                                              V = inverse information)
    c_i    = g(t_i) - mean(g)                 centred transformed time
    T_j    = Σ_i c_i r*_ij
    chisq_j = T_j^2 / (V_jj D Σ c_i^2)        1 df per covariate

Global test, ``"sum"``: Σ_j chisq_j on p df. ``"score"``:
(cᵀ r) V (rᵀ c) D / Σ c^2 on p df, which accounts for correlation
between the coefficient estimates.

References:
    Grambsch, P. M. & Therneau, T. M. (1994). Proportional hazards tests
        and diagnostics based on weighted residuals. Biometrika, 81(3),
        515-526.
    Therneau, T. M. & Grambsch, P. M. (2000). Modeling Survival Data.
        Springer, ch. 6.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from cohortsurv.core.exceptions import ValidationError
from cohortsurv.survival._common import CoxParams, TestResult, ZphParams
from cohortsurv.survival._cox import RiskSets
from cohortsurv.survival.design import EventTable
from cohortsurv.survival.exceptions import InsufficientDataError


def transform_time(
    time: NDArray,
    transform: str,
    all_time: NDArray,
    all_event: NDArray,
) -> NDArray:
    """g(t) at each event time.

    ``"km"`` uses 1 - S(t-) from the pooled Kaplan-Meier curve of
    (all_time, all_event).
    """
    if transform == "rank":
        return stats.rankdata(time)
    if transform == "identity":
        return time.astype(np.float64)
    if transform == "log":
        if np.any(time <= 0):
            raise ValidationError(
                "transform='log' requires positive event times, "
                f"got min={float(np.min(time))}"
            )
        return np.log(time)
    if transform == "km":
        grid, d = np.unique(all_time[all_event > 0], return_counts=True)
        n_risk = len(all_time) - np.searchsorted(np.sort(all_time), grid, side="left")
        surv = np.cumprod(1.0 - d / n_risk)
        idx = np.searchsorted(grid, time, side="left") - 1
        s_left = np.where(idx >= 0, surv[np.clip(idx, 0, None)], 1.0)
        return 1.0 - s_left
    raise ValueError(
        f"Unknown transform '{transform}'. "
        f"Choose from 'rank', 'log', 'identity', 'km'."
    )


def zph_fit(
    fit: CoxParams,
    data: EventTable,
    transform: str = "rank",
    global_method: str = "sum",
) -> ZphParams:
    """Scaled Schoenfeld residual test for a fitted Cox model.

    Parameters
    ----------
    fit : CoxParams
        The fitted model.
    data : EventTable
        Table the model was fitted on, already restricted to the fitted
        covariates and carrying the fit's strata.
    transform : str
        Time transform: "rank", "log", "identity", "km".
    global_method : str
        "sum" or "score".

    Returns
    -------
    ZphParams
    """
    event = data.event_indicator()
    risk = RiskSets.build(data.time, event, data.X, data.stratum_code, fit.ties)
    beta = fit.coefficients
    V = fit.variance
    n_events = risk.n_events
    p = len(beta)

    resid = risk.schoenfeld(beta)
    scaled = n_events * resid @ V

    time = risk.time[risk.event_rows]
    g = transform_time(time, transform, data.time, event)
    c = g - g.mean()
    sum_c2 = float(c @ c)
    if sum_c2 <= 0.0:
        raise InsufficientDataError(
            "all events occur at one transformed time; the residual trend "
            "test is undefined",
            n_times=1, n_events=n_events,
        )

    T = c @ scaled
    chisq = T ** 2 / (np.diag(V) * n_events * sum_c2)

    centred = scaled - scaled.mean(axis=0)
    spread = np.sqrt(sum_c2 * np.sum(centred ** 2, axis=0))
    rho = np.divide(T, spread, out=np.zeros(p), where=spread > 0)

    if global_method == "sum":
        global_stat = float(np.sum(chisq))
    elif global_method == "score":
        u = c @ resid
        global_stat = float(u @ V @ u) * n_events / sum_c2
    else:
        raise ValueError(
            f"Unknown global_method '{global_method}'. Choose from 'sum', 'score'."
        )

    return ZphParams(
        covariate_names=fit.covariate_names,
        transform=transform,
        time=time,
        transformed_time=g,
        schoenfeld_residuals=resid,
        scaled_residuals=scaled + beta,
        rho=rho,
        chisq=chisq,
        df=np.ones(p, dtype=np.int64),
        p_values=stats.chi2.sf(chisq, 1),
        global_test=TestResult(
            global_stat, p, float(stats.chi2.sf(global_stat, p)),
        ),
        global_method=global_method,
        n_events=n_events,
    )
