"""
Tests for gray_test() matching cmprsk::cuminc(ftime, fstatus, group)$Tests.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from cohortsurv.core.exceptions import ValidationError
from cohortsurv.survival import (
    EventTable,
    GrayTestSolution,
    InsufficientDataError,
    UnknownCauseError,
    gray_test,
    survdiff,
)


class TestGrayBasic:
    """Gray's K-sample test."""

    def test_identical_groups(self, competing_data):
        """Two copies of the same cohort have identical incidence."""
        time, cause = competing_data
        t2 = np.concatenate([time, time])
        c2 = np.concatenate([cause, cause])
        group = np.repeat(["x", "y"], len(time))

        result = gray_test(t2, c2, strata=group, cause_of_interest=1)

        assert isinstance(result, GrayTestSolution)
        assert result.statistic == pytest.approx(0.0, abs=1e-8)
        assert result.p_value == pytest.approx(1.0, abs=1e-6)
        assert_allclose(result.observed, result.expected, rtol=1e-10)

    def test_single_cause_equals_logrank(self, rng):
        """Without competing causes Gray's test is the log-rank test."""
        time = rng.exponential(1.0, 120)
        event = rng.binomial(1, 0.7, 120)
        group = rng.integers(0, 3, 120)

        gray = gray_test(time, event, strata=group)
        logrank = survdiff(time, event, strata=group)

        assert gray.df == logrank.df == 2
        assert gray.statistic == pytest.approx(logrank.statistic, rel=1e-8)
        assert_allclose(gray.observed, logrank.observed)
        assert_allclose(gray.expected, logrank.expected, rtol=1e-8)

    def test_single_cause_rho_one_equals_peto(self, rng):
        time = rng.exponential(1.0, 100)
        event = rng.binomial(1, 0.7, 100)
        group = rng.integers(0, 2, 100)

        gray = gray_test(time, event, strata=group, rho=1.0)
        peto = survdiff(time, event, strata=group, rho=1.0)
        assert gray.statistic == pytest.approx(peto.statistic, rel=1e-8)

    def test_detects_difference(self, rng, simulate_competing):
        """Group b has four times the cause-1 hazard."""
        ta, ca = simulate_competing(rng, 300, rates=(0.5, 0.5))
        tb, cb = simulate_competing(rng, 300, rates=(2.0, 0.5))
        time = np.concatenate([ta, tb])
        cause = np.concatenate([ca, cb])
        group = np.repeat(["a", "b"], 300)

        result = gray_test(time, cause, strata=group, cause_of_interest=1)
        assert result.p_value < 0.001
        # Excess cause-1 events in group b
        assert result.observed[1] > result.expected[1]

    def test_conservation(self, competing_data):
        time, cause = competing_data
        group = np.arange(len(time)) % 3
        result = gray_test(time, cause, strata=group, cause_of_interest=2)

        assert result.df == 2
        assert np.sum(result.observed - result.expected) == pytest.approx(0.0, abs=1e-8)
        assert result.statistic >= 0

    def test_table_input(self, competing_data):
        time, cause = competing_data
        group = np.arange(len(time)) % 2
        table = EventTable.from_arrays(time, cause, strata=group)

        result = gray_test(table, cause_of_interest=2)
        expected = gray_test(time, cause, strata=group, cause_of_interest=2)
        assert result.statistic == pytest.approx(expected.statistic)
        assert result.group_labels == (0, 1)


class TestGrayErrors:
    """Invalid requests."""

    def test_cause_required_for_multi_cause(self, competing_data):
        time, cause = competing_data
        group = np.arange(len(time)) % 2
        with pytest.raises(ValidationError, match="cause_of_interest"):
            gray_test(time, cause, strata=group)

    def test_unknown_cause(self, competing_data):
        time, cause = competing_data
        group = np.arange(len(time)) % 2
        with pytest.raises(UnknownCauseError):
            gray_test(time, cause, strata=group, cause_of_interest=5)

    def test_single_group(self, competing_data):
        time, cause = competing_data
        with pytest.raises(ValidationError, match="2 groups"):
            gray_test(time, cause, strata=np.zeros(len(time)), cause_of_interest=1)

    def test_cause_without_events(self):
        table = EventTable.from_arrays(
            [1, 2, 3, 4], [1, 0, 1, 0], strata=[0, 0, 1, 1], causes=[1, 2],
        )
        with pytest.raises(InsufficientDataError):
            gray_test(table, cause_of_interest=2)


class TestGraySolution:
    def test_summary(self, competing_data):
        time, cause = competing_data
        group = np.arange(len(time)) % 2
        result = gray_test(time, cause, strata=group, cause_of_interest=1)

        s = result.summary()
        assert "Gray's test" in s
        assert "Chisq=" in s
        assert "GrayTestSolution" in repr(result)
        assert result.backend_name == "cpu_gray"

    def test_docstring_states_variance_form(self):
        """Callers are told the variance differs from cmprsk's."""
        assert "hypergeometric" in gray_test.__doc__
        assert "cmprsk" in gray_test.__doc__
