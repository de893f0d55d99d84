"""
Risk-set tabulation shared by the product-limit estimators and the tests.

At each distinct event time t_j:
    n_j   = #{i : time_i >= t_j}   (censoring at t_j is still at risk)
    d_kj  = events of cause k at t_j
    c_j   = censored in [t_j, t_{j+1})
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray


@dataclass(frozen=True)
class RiskTable:
    time: NDArray            # (m,) distinct event times (any cause)
    n_risk: NDArray          # (m,)
    n_events: NDArray        # (m, K) events per cause
    n_censored: NDArray      # (m,)
    n_observations: int
    max_time: float

    @property
    def d(self) -> NDArray:
        """(m,) events of any cause."""
        return self.n_events.sum(axis=1)

    def __len__(self) -> int:
        return len(self.time)


def risk_table(time: NDArray, cause_code: NDArray, n_causes: int) -> RiskTable:
    """Tabulate one stratum.

    Parameters
    ----------
    time : NDArray
        (n,) observed times.
    cause_code : NDArray
        (n,) 0 = censored, k = cause k.
    n_causes : int
        Size K of the cause vocabulary.
    """
    n = len(time)
    is_event = cause_code > 0
    event_times = np.unique(time[is_event])
    m = len(event_times)

    sorted_time = np.sort(time)
    n_risk = (n - np.searchsorted(sorted_time, event_times, side="left")).astype(np.float64)

    n_events = np.zeros((m, max(n_causes, 1)), dtype=np.float64)
    if m:
        row = np.searchsorted(event_times, time[is_event])
        flat = row * n_events.shape[1] + (cause_code[is_event] - 1)
        n_events = np.bincount(flat, minlength=n_events.size).astype(
            np.float64
        ).reshape(n_events.shape)

    n_censored = np.zeros(m, dtype=np.float64)
    if m:
        slot = np.searchsorted(event_times, time[~is_event], side="right") - 1
        slot = slot[slot >= 0]
        n_censored = np.bincount(slot, minlength=m).astype(np.float64)

    return RiskTable(
        time=event_times,
        n_risk=n_risk,
        n_events=n_events,
        n_censored=n_censored,
        n_observations=n,
        max_time=float(np.max(time)) if n else 0.0,
    )


def group_counts(
    time: NDArray,
    event: NDArray,
    group: NDArray,
    n_groups: int,
    event_times: NDArray,
) -> tuple[NDArray, NDArray]:
    """Per-group risk sets and event counts on a shared time grid.

    Parameters
    ----------
    time, event : NDArray
        (n,) times and 0/1 event indicators.
    group : NDArray
        (n,) integer group codes 0..G-1.
    event_times : NDArray
        (m,) sorted grid.

    Returns
    -------
    (n_risk, d) each of shape (m, G)
    """
    m = len(event_times)
    n_risk = np.zeros((m, n_groups), dtype=np.float64)
    d = np.zeros((m, n_groups), dtype=np.float64)
    for g in range(n_groups):
        in_g = group == g
        t_g = np.sort(time[in_g])
        n_risk[:, g] = len(t_g) - np.searchsorted(t_g, event_times, side="left")
        hit = in_g & (event > 0)
        if np.any(hit):
            row = np.searchsorted(event_times, time[hit])
            d[:, g] = np.bincount(row, minlength=m)
    return n_risk, d
