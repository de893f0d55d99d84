"""
Simulated cohorts shared by the survival tests.
"""

import numpy as np
import pytest


def _simulate_ph(rng, n, beta, censor_rate=0.3):
    """Exponential proportional-hazards data with standard-normal covariates.

    Returns (time, event, X) with hazard exp(X @ beta) and independent
    exponential censoring.
    """
    beta = np.atleast_1d(np.asarray(beta, dtype=np.float64))
    X = rng.standard_normal((n, len(beta)))
    t_event = rng.exponential(1.0 / np.exp(X @ beta))
    t_censor = rng.exponential(1.0 / censor_rate, n)
    time = np.minimum(t_event, t_censor)
    event = (t_event <= t_censor).astype(int)
    return time, event, X


def _simulate_competing(rng, n, rates=(1.0, 0.5), censor_rate=0.2):
    """Two constant-hazard competing causes plus exponential censoring.

    Returns (time, cause) with cause 0 = censored, 1 or 2 = the first
    cause to occur.
    """
    latent = np.column_stack([rng.exponential(1.0 / r, n) for r in rates])
    first = latent.min(axis=1)
    which = latent.argmin(axis=1) + 1
    t_censor = rng.exponential(1.0 / censor_rate, n)
    time = np.minimum(first, t_censor)
    cause = np.where(first <= t_censor, which, 0)
    return time, cause


@pytest.fixture
def ph_data(rng):
    """n=2000 single-covariate PH cohort with beta = 0.7."""
    return _simulate_ph(rng, 2000, [0.7])


@pytest.fixture
def competing_data(rng):
    """n=500 two-cause cohort."""
    return _simulate_competing(rng, 500)


@pytest.fixture
def simulate_ph():
    """The PH simulator, for tests that need their own cohort."""
    return _simulate_ph


@pytest.fixture
def simulate_competing():
    """The competing-risks simulator."""
    return _simulate_competing
