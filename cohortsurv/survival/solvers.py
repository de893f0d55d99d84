"""
Public API for survival analysis.

    kaplan_meier(data, event) → KMSolution
    cumulative_incidence(data, cause) → CIFSolution
    gray_test(data, cause, cause_of_interest=...) → GrayTestSolution
    survdiff(data, event, strata=...) → LogRankSolution
    coxph(data, event, X) → CoxSolution
    cox_zph(fit, data) → ZphSolution

Each function accepts either an EventTable or raw arrays, validates its
options, runs the computation under a Timer, and wraps the Result in a
Solution. Non-fatal conditions are raised as RuntimeWarning and recorded
in Result.warnings.
"""

from __future__ import annotations

import warnings
from dataclasses import replace
from typing import Any, Literal, Sequence

from cohortsurv.core.compute.timing import Timer
from cohortsurv.core.exceptions import ValidationError
from cohortsurv.core.result import Result
from cohortsurv.core.validation import check_choice, check_probability
from cohortsurv.survival._cif import cumulative_incidence_fit
from cohortsurv.survival._common import (
    DEFAULT_CONF_LEVEL,
    DEFAULT_MAX_ITER,
    DEFAULT_TOL,
    VALID_CONF_TYPES,
    VALID_GLOBAL_METHODS,
    VALID_TIES,
    VALID_TRANSFORMS,
    CoxParams,
    FitStatus,
    GrayTestParams,
)
from cohortsurv.survival._cox import cox_fit
from cohortsurv.survival._gray import gray_fit
from cohortsurv.survival._km import kaplan_meier_fit
from cohortsurv.survival._logrank import logrank_test
from cohortsurv.survival._zph import zph_fit
from cohortsurv.survival.design import EventTable
from cohortsurv.survival.exceptions import InsufficientDataError, NonConvergenceError
from cohortsurv.survival.solution import (
    CIFSolution,
    CoxSolution,
    GrayTestSolution,
    KMSolution,
    LogRankSolution,
    ZphSolution,
)


def _as_table(data, event, X=None, strata=None) -> EventTable:
    """EventTable from a table or from raw (time, event, X, strata) arrays.

    A string ``strata`` names a covariate to stratify by.
    """
    if isinstance(data, EventTable):
        if event is not None or X is not None:
            raise ValidationError(
                "event/X must not be given together with an EventTable"
            )
        table = data
        if strata is not None and not isinstance(strata, str):
            raise ValidationError(
                "with an EventTable, strata must be a covariate name; "
                "build the table with strata= instead"
            )
    else:
        if event is None:
            raise ValidationError(
                "event (or cause) is required when data is a time array"
            )
        table = EventTable.from_arrays(
            data, event, X,
            strata=None if isinstance(strata, str) else strata,
        )

    if isinstance(strata, str):
        table = table.stratify_by(strata)
    return table


def _emit(messages: Sequence[str]) -> None:
    for msg in messages:
        warnings.warn(msg, RuntimeWarning, stacklevel=3)


def kaplan_meier(
    data,
    event=None,
    *,
    strata=None,
    cause: Any = None,
    conf_level: float = DEFAULT_CONF_LEVEL,
    conf_type: Literal["log-log", "log", "plain"] = "log-log",
    strict: bool = False,
) -> KMSolution:
    """Kaplan-Meier survival curve estimation.

    Matches R's survival::survfit(Surv(time, event) ~ strata).

    Parameters
    ----------
    data : EventTable or array-like
        An event table, or the time to event or censoring.
    event : array-like or None
        Event indicator / cause labels when ``data`` is a time array.
    strata : array-like, str, or None
        Stratum labels (with raw arrays) or a covariate name to stratify by.
    cause : label or None
        Cause treated as the event; other causes are folded into
        censoring. None means any cause.
    conf_level : float
        Confidence level for CI (default 0.95).
    conf_type : str
        CI transformation: "log-log" (default), "log", "plain".
    strict : bool
        Raise InsufficientDataError instead of flagging degenerate strata.

    Returns
    -------
    KMSolution
    """
    check_probability(conf_level, "conf_level")
    check_choice(conf_type, VALID_CONF_TYPES, "conf_type")
    table = _as_table(data, event, strata=strata)
    if cause is not None:
        table.cause_index(cause)

    timer = Timer()
    timer.start()

    params, messages = kaplan_meier_fit(
        table, cause,
        conf_level=conf_level,
        conf_type=conf_type,
        strict=strict,
    )

    timer.stop()
    _emit(messages)

    result = Result(
        params=params,
        info={
            "method": "Kaplan-Meier",
            "cause": cause,
            "n_strata": len(params.curves),
        },
        timing=timer.result(),
        backend_name="cpu_km",
        warnings=tuple(messages),
    )

    return KMSolution(_result=result)


def cumulative_incidence(
    data,
    cause=None,
    *,
    strata=None,
    causes: Sequence[Any] | None = None,
    conf_level: float = DEFAULT_CONF_LEVEL,
    conf_type: Literal["log-log", "log", "plain"] = "log-log",
    rho: float = 0.0,
    strict: bool = False,
) -> CIFSolution:
    """Aalen-Johansen cumulative incidence under competing risks.

    Matches cmprsk::cuminc(ftime, fstatus, group). With two or more strata,
    Gray's test is run for every requested cause.

    Parameters
    ----------
    data : EventTable or array-like
        An event table, or the time to event or censoring.
    cause : array-like or None
        Cause labels (0 = censored) when ``data`` is a time array.
    strata : array-like, str, or None
        Stratum labels (with raw arrays) or a covariate name.
    causes : sequence or None
        Causes to report (default: every cause in the vocabulary).
    conf_level : float
        Confidence level for pointwise CI.
    conf_type : str
        CI transformation: "log-log" (default), "log", "plain".
    rho : float
        Weight exponent for Gray's test.
    strict : bool
        Raise InsufficientDataError for degenerate (stratum, cause) pairs.

    Returns
    -------
    CIFSolution
    """
    check_probability(conf_level, "conf_level")
    check_choice(conf_type, VALID_CONF_TYPES, "conf_type")
    table = _as_table(data, cause, strata=strata)

    if causes is None:
        requested = table.causes
    else:
        requested = tuple(causes)
        for c in requested:
            table.cause_index(c)

    timer = Timer()
    timer.start()

    with timer.section("aalen_johansen"):
        params, messages = cumulative_incidence_fit(
            table, requested,
            conf_level=conf_level,
            conf_type=conf_type,
            strict=strict,
        )

    tests: dict[Any, GrayTestParams] = {}
    if len(params.strata) >= 2:
        with timer.section("gray_test"):
            for c in requested:
                try:
                    tests[c] = gray_fit(table, c, rho)
                except InsufficientDataError as e:
                    if strict:
                        raise
                    messages.append(f"Gray's test skipped for cause {c!r}: {e}")
        params = replace(params, tests=tests)

    timer.stop()
    _emit(messages)

    result = Result(
        params=params,
        info={
            "method": "Aalen-Johansen",
            "causes": requested,
            "n_strata": len(params.strata),
            "rho": rho,
        },
        timing=timer.result(),
        backend_name="cpu_cif",
        warnings=tuple(messages),
    )

    return CIFSolution(_result=result)


def gray_test(
    data,
    cause=None,
    *,
    cause_of_interest: Any = None,
    strata=None,
    rho: float = 0.0,
) -> GrayTestSolution:
    """Gray's K-sample test for equal cumulative incidence across strata.

    The score is Gray's (1988) weighted difference on subdistribution risk
    sets. Its variance is the hypergeometric (log-rank) form on those risk
    sets, not the influence-function variance of cmprsk::cuminc, so
    statistics and p-values differ slightly from cmprsk when competing
    events are present. Without competing events the test is the
    log-rank test exactly.

    Parameters
    ----------
    data : EventTable or array-like
        An event table, or the time to event or censoring.
    cause : array-like or None
        Cause labels when ``data`` is a time array.
    cause_of_interest : label or None
        Cause whose incidence is compared. May be omitted for a
        single-cause table.
    strata : array-like, str, or None
        Group labels (with raw arrays) or a covariate name.
    rho : float
        Weight exponent: each time is weighted by (1 - F(t-))^rho.

    Returns
    -------
    GrayTestSolution
    """
    table = _as_table(data, cause, strata=strata)
    if cause_of_interest is None:
        if table.n_causes != 1:
            raise ValidationError(
                f"cause_of_interest is required for a table with causes "
                f"{list(table.causes)}"
            )
        cause_of_interest = table.causes[0]

    timer = Timer()
    timer.start()

    params = gray_fit(table, cause_of_interest, rho)

    timer.stop()

    result = Result(
        params=params,
        info={"method": "Gray's test", "cause": cause_of_interest, "rho": rho},
        timing=timer.result(),
        backend_name="cpu_gray",
        warnings=(),
    )

    return GrayTestSolution(_result=result)


def survdiff(
    data,
    event=None,
    *,
    strata=None,
    cause: Any = None,
    rho: float = 0.0,
) -> LogRankSolution:
    """Log-rank test (and G-rho family).

    Matches R's survival::survdiff().

    Parameters
    ----------
    data : EventTable or array-like
        An event table, or the time to event or censoring.
    event : array-like or None
        Event indicator when ``data`` is a time array.
    strata : array-like, str, or None
        Group labels (e.g. treatment vs control) or a covariate name.
    cause : label or None
        Event definition for multi-cause tables (None = any cause).
    rho : float
        G-rho weight parameter. rho=0 (default) gives the standard
        log-rank test. rho=1 gives Peto & Peto / Gehan-Wilcoxon.

    Returns
    -------
    LogRankSolution
    """
    table = _as_table(data, event, strata=strata)
    if cause is not None:
        table.cause_index(cause)

    timer = Timer()
    timer.start()

    params = logrank_test(table, cause, rho=rho)

    timer.stop()

    result = Result(
        params=params,
        info={"method": "Log-rank test", "rho": rho},
        timing=timer.result(),
        backend_name="cpu_logrank",
        warnings=(),
    )

    return LogRankSolution(_result=result)


def coxph(
    data,
    event=None,
    X=None,
    *,
    covariates: Sequence[str] | None = None,
    strata=None,
    ties: Literal["breslow", "efron"] = "breslow",
    tol: float = DEFAULT_TOL,
    max_iter: int = DEFAULT_MAX_ITER,
    conf_level: float = DEFAULT_CONF_LEVEL,
    init=None,
) -> CoxSolution:
    """Cox proportional hazards model.

    CPU only. Matches R's survival::coxph() with the chosen ties method.

    Parameters
    ----------
    data : EventTable or array-like
        A single-cause event table, or the time to event or censoring.
    event : array-like or None
        Event indicator (1=event, 0=censored) when ``data`` is a time array.
    X : array-like, mapping, or None
        Covariate matrix (n, p) with raw arrays. No intercept.
    covariates : sequence of str or None
        Subset of the table's covariates to fit (default: all).
    strata : array-like, str, or None
        Stratum labels (with raw arrays) or a covariate name; each stratum
        gets its own baseline hazard.
    ties : str
        Method for handling tied event times: "breslow" (default) or
        "efron".
    tol : float
        Convergence tolerance for Newton-Raphson.
    max_iter : int
        Maximum Newton-Raphson iterations.
    conf_level : float
        Confidence level for hazard-ratio intervals.
    init : array-like or None
        Starting coefficients.

    Returns
    -------
    CoxSolution
    """
    check_choice(ties, VALID_TIES, "ties")
    check_probability(conf_level, "conf_level")
    if not tol > 0:
        raise ValidationError(f"tol must be positive, got {tol}")
    if int(max_iter) != max_iter or max_iter < 1:
        raise ValidationError(f"max_iter must be a positive integer, got {max_iter}")

    table = _as_table(data, event, X, strata)
    if covariates is not None:
        table = table.select_covariates(covariates)

    timer = Timer()
    timer.start()

    params, messages = cox_fit(
        table,
        ties=ties,
        tol=tol,
        max_iter=int(max_iter),
        conf_level=conf_level,
        init=init,
        strata_key=strata if isinstance(strata, str) else None,
    )

    timer.stop()
    _emit(messages)

    result = Result(
        params=params,
        info={
            "method": "Cox PH",
            "ties": ties,
            "status": params.status.value,
            "n_iter": params.n_iter,
        },
        timing=timer.result(),
        backend_name="cpu_cox",
        warnings=tuple(messages),
    )

    return CoxSolution(_result=result)


def cox_zph(
    fit: CoxSolution | CoxParams,
    data: EventTable,
    *,
    transform: Literal["rank", "log", "identity", "km"] = "rank",
    global_method: Literal["sum", "score"] = "sum",
    allow_nonconverged: bool = False,
) -> ZphSolution:
    """Test the proportional hazards assumption of a fitted Cox model.

    Matches R's survival::cox.zph() (Grambsch-Therneau approximation).

    Parameters
    ----------
    fit : CoxSolution or CoxParams
        A converged Cox fit.
    data : EventTable
        The table the model was fitted on.
    transform : str
        Time transform: "rank" (default), "log", "identity", "km".
    global_method : str
        "sum" (default) adds the per-covariate statistics; "score" uses
        the joint score form.
    allow_nonconverged : bool
        Run on a non-converged fit with a warning instead of raising.

    Returns
    -------
    ZphSolution

    Raises
    ------
    NonConvergenceError
        If the fit did not converge and ``allow_nonconverged`` is False.
    """
    check_choice(transform, VALID_TRANSFORMS, "transform")
    check_choice(global_method, VALID_GLOBAL_METHODS, "global_method")
    params = fit.params if isinstance(fit, CoxSolution) else fit
    if not isinstance(data, EventTable):
        raise ValidationError(
            f"data must be the EventTable the model was fitted on, "
            f"got {type(data).__name__}"
        )

    messages: list[str] = []
    if params.status is not FitStatus.CONVERGED:
        msg = (
            f"Cox fit status is {params.status.value} after "
            f"{params.n_iter} iterations"
        )
        if not allow_nonconverged:
            raise NonConvergenceError(
                msg + "; the residual diagnostic needs a converged fit",
                iterations=params.n_iter,
                coefficients=params.coefficients,
                threshold=params.tol,
            )
        messages.append(msg + "; residual diagnostic may be unreliable")

    table = data
    if params.strata_key is not None and params.strata_key in table.covariate_names:
        table = table.stratify_by(params.strata_key)
    if table.n_causes > 1:
        raise ValidationError(
            f"data has causes {list(table.causes)}; pass the single-cause "
            f"table the model was fitted on"
        )
    table = table.select_covariates(params.covariate_names)
    if table.n != params.n_observations or table.n_events != params.n_events:
        raise ValidationError(
            f"data has {table.n} observations and {table.n_events} events, "
            f"the fit used {params.n_observations} and {params.n_events}"
        )

    timer = Timer()
    timer.start()

    zph = zph_fit(params, table, transform=transform, global_method=global_method)

    timer.stop()
    _emit(messages)

    result = Result(
        params=zph,
        info={
            "method": "Scaled Schoenfeld residuals",
            "transform": transform,
            "global_method": global_method,
        },
        timing=timer.result(),
        backend_name="cpu_zph",
        warnings=tuple(messages),
    )

    return ZphSolution(_result=result)
