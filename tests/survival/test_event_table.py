"""
Tests for EventTable construction, closed vocabularies, and views.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from cohortsurv.core.exceptions import DimensionError, ValidationError
from cohortsurv.survival import (
    EventRecord,
    EventTable,
    InvalidCovariateError,
    UnknownCauseError,
)
from cohortsurv.survival.design import ALL_STRATA


@pytest.fixture
def table():
    """Six subjects, two causes, two strata, two covariates."""
    return EventTable.from_arrays(
        [1.0, 2.0, 3.0, 4.0, 5.0, 6.0],
        [1, 0, 2, 1, 0, 2],
        {"age": [50, 61, 47, 70, 58, 66], "dose": [1.0, 2.0, 1.5, 0.5, 2.5, 1.0]},
        strata=["a", "a", "a", "b", "b", "b"],
    )


class TestFromArrays:
    """Construction and validation."""

    def test_basic(self, table):
        assert table.n == 6
        assert len(table) == 6
        assert table.p == 2
        assert table.causes == (1, 2)
        assert table.n_causes == 2
        assert table.n_events == 4
        assert table.n_censored == 2
        assert table.covariate_names == ("age", "dose")
        assert table.strata_labels == ("a", "b")
        assert table.is_stratified
        assert_array_equal(table.cause_code, [1, 0, 2, 1, 0, 2])
        assert_array_equal(table.stratum_code, [0, 0, 0, 1, 1, 1])

    def test_binary_event(self):
        t = EventTable.from_arrays([3.0, 1.0, 2.0], [1, 0, 1])
        assert t.causes == (1,)
        assert t.X is None
        assert t.p == 0
        assert not t.is_stratified

    def test_boolean_event(self):
        t = EventTable.from_arrays([1.0, 2.0], [True, False])
        assert t.causes == (1,)
        assert_array_equal(t.cause_code, [1, 0])

    def test_matrix_default_names(self):
        X = np.arange(6, dtype=np.float64).reshape(3, 2)
        t = EventTable.from_arrays([1, 2, 3], [1, 1, 0], X)
        assert t.covariate_names == ("x0", "x1")
        assert_allclose(t.X, X)

    def test_matrix_names(self):
        t = EventTable.from_arrays([1, 2, 3], [1, 1, 0], [1.0, 2.0, 3.0],
                                   covariate_names=["z"])
        assert t.covariate_names == ("z",)
        assert t.X.shape == (3, 1)

    def test_negative_time(self):
        with pytest.raises(ValidationError):
            EventTable.from_arrays([1.0, -1.0], [1, 0])

    def test_nan_time(self):
        with pytest.raises(ValidationError):
            EventTable.from_arrays([1.0, np.nan], [1, 0])

    def test_length_mismatch(self):
        with pytest.raises(DimensionError):
            EventTable.from_arrays([1.0, 2.0, 3.0], [1, 0])

    def test_covariate_length_mismatch(self):
        with pytest.raises(DimensionError):
            EventTable.from_arrays([1.0, 2.0], [1, 0], {"x": [1.0, 2.0, 3.0]})

    def test_three_dimensional_covariates(self):
        with pytest.raises(DimensionError, match="expected 2D"):
            EventTable.from_arrays([1.0, 2.0], [1, 0], np.ones((2, 2, 2)))

    def test_non_finite_covariate(self):
        with pytest.raises(InvalidCovariateError) as exc_info:
            EventTable.from_arrays([1.0, 2.0], [1, 0], {"x": [1.0, np.inf]})
        assert exc_info.value.covariate == "x"
        assert exc_info.value.reason == "non_finite"

    def test_name_count_mismatch(self):
        with pytest.raises(InvalidCovariateError) as exc_info:
            EventTable.from_arrays([1.0, 2.0], [1, 0], np.ones((2, 2)),
                                   covariate_names=["a"])
        assert exc_info.value.reason == "schema"

    def test_names_with_mapping(self):
        with pytest.raises(InvalidCovariateError):
            EventTable.from_arrays([1.0, 2.0], [1, 0], {"x": [1.0, 2.0]},
                                   covariate_names=["x"])


class TestVocabularies:
    """Closed cause, stratum, and level vocabularies."""

    def test_declared_causes_kept(self):
        """A declared cause with no subjects stays in the vocabulary."""
        t = EventTable.from_arrays([1.0, 2.0], [1, 0], causes=[1, 2, 3])
        assert t.causes == (1, 2, 3)
        assert t.n_causes == 3

    def test_unseen_cause_label(self):
        with pytest.raises(ValidationError, match="vocabulary"):
            EventTable.from_arrays([1.0, 2.0, 3.0], [0, 1, 3], causes=[1, 2])

    def test_duplicate_causes(self):
        with pytest.raises(ValidationError, match="unique"):
            EventTable.from_arrays([1.0, 2.0], [1, 0], causes=[1, 1])

    def test_censored_clashes_with_cause(self):
        with pytest.raises(ValidationError, match="censoring label"):
            EventTable.from_arrays([1.0, 2.0], [0, 1], causes=[0, 1])

    def test_string_labels(self):
        t = EventTable.from_arrays(
            [1.0, 2.0, 3.0], ["death", "alive", "relapse"], censored="alive",
        )
        assert t.causes == ("death", "relapse")
        assert t.censored == "alive"
        assert_array_equal(t.cause_code, [1, 0, 2])

    def test_unseen_stratum(self):
        with pytest.raises(ValidationError, match="strata"):
            EventTable.from_arrays([1.0, 2.0], [1, 0], strata=["a", "c"],
                                   strata_labels=["a", "b"])

    def test_strata_labels_without_strata(self):
        with pytest.raises(ValidationError):
            EventTable.from_arrays([1.0, 2.0], [1, 0], strata_labels=["a"])

    def test_empty_declared_stratum(self):
        t = EventTable.from_arrays([1.0, 2.0], [1, 0], strata=["a", "a"],
                                   strata_labels=["a", "b"])
        assert t.strata_labels == ("a", "b")
        assert t.empty_strata() == ("b",)
        assert list(t.by_stratum()) == ["a"]

    def test_levels(self):
        t = EventTable.from_arrays(
            [1.0, 2.0, 3.0], [1, 0, 1], {"grade": [0, 2, 1]},
            levels={"grade": ("low", "mid", "high")},
        )
        assert t.levels == {"grade": ("low", "mid", "high")}

    def test_level_code_out_of_range(self):
        with pytest.raises(InvalidCovariateError) as exc_info:
            EventTable.from_arrays(
                [1.0, 2.0], [1, 0], {"grade": [0, 3]},
                levels={"grade": ("low", "high")},
            )
        assert exc_info.value.reason == "unseen_level"

    def test_levels_for_unknown_covariate(self):
        with pytest.raises(InvalidCovariateError) as exc_info:
            EventTable.from_arrays([1.0, 2.0], [1, 0], {"x": [0.0, 1.0]},
                                   levels={"grade": ("a", "b")})
        assert exc_info.value.reason == "unknown"


class TestImmutability:
    def test_arrays_read_only(self, table):
        with pytest.raises(ValueError):
            table.time[0] = 10.0
        with pytest.raises(ValueError):
            table.cause_code[0] = 2
        with pytest.raises(ValueError):
            table.X[0, 0] = 0.0

    def test_input_not_aliased(self):
        time = np.array([1.0, 2.0, 3.0])
        t = EventTable.from_arrays(time, [1, 0, 1])
        time[0] = 99.0
        assert t.time[0] == 1.0

    def test_frozen(self, table):
        with pytest.raises(AttributeError):
            table.causes = (1,)


class TestRecords:
    """EventRecord input and output."""

    def test_from_records(self):
        records = [
            EventRecord(1.0, 1, {"age": 50.0}, "a"),
            EventRecord(2.0, 0, {"age": 61.0}, "b"),
            EventRecord(3.0, 2, {"age": 47.0}, "a"),
        ]
        t = EventTable.from_records(records)
        assert t.causes == (1, 2)
        assert t.covariate_names == ("age",)
        assert t.strata_labels == ("a", "b")
        assert_allclose(t.X[:, 0], [50.0, 61.0, 47.0])

    def test_round_trip(self, table):
        rebuilt = EventTable.from_records(table.records())
        assert_allclose(rebuilt.time, table.time)
        assert_array_equal(rebuilt.cause_code, table.cause_code)
        assert_allclose(rebuilt.X, table.X)
        assert rebuilt.covariate_names == table.covariate_names
        assert rebuilt.strata_labels == table.strata_labels

    def test_records_fields(self, table):
        first = next(table.records())
        assert first == EventRecord(1.0, 1, {"age": 50.0, "dose": 1.0}, "a")
        second = list(table.records())[1]
        assert second.cause == 0

    def test_no_covariates(self):
        t = EventTable.from_records([EventRecord(1.0, 1), EventRecord(2.0, 0)])
        assert t.X is None
        assert not t.is_stratified

    def test_empty(self):
        with pytest.raises(ValidationError):
            EventTable.from_records([])

    def test_schema_mismatch(self):
        records = [
            EventRecord(1.0, 1, {"age": 50.0}),
            EventRecord(2.0, 0, {"weight": 70.0}),
        ]
        with pytest.raises(InvalidCovariateError) as exc_info:
            EventTable.from_records(records)
        assert exc_info.value.reason == "schema"

    def test_partial_strata(self):
        records = [EventRecord(1.0, 1, stratum="a"), EventRecord(2.0, 0)]
        with pytest.raises(ValidationError, match="stratum"):
            EventTable.from_records(records)


class TestFromDataFrame:
    """pandas input."""

    @pytest.fixture
    def df(self):
        pd = pytest.importorskip("pandas")
        return pd.DataFrame({
            "t": [1.0, 2.0, 3.0, 4.0],
            "status": ["death", "censored", "relapse", "death"],
            "age": [50, 61, 47, 70],
            "grade": ["low", "high", "mid", "low"],
            "site": ["x", "y", "x", "y"],
        })

    def test_basic(self, df):
        t = EventTable.from_dataframe(
            df, time="t", cause="status", covariates=["age", "grade"],
            stratum="site", censored="censored",
            levels={"grade": ("low", "mid", "high")},
        )
        assert t.causes == ("death", "relapse")
        assert t.covariate_names == ("age", "grade")
        assert_allclose(t.X[:, 1], [0, 2, 1, 0])
        assert t.levels["grade"] == ("low", "mid", "high")
        assert t.strata_labels == ("x", "y")

    def test_unseen_level(self, df):
        with pytest.raises(InvalidCovariateError) as exc_info:
            EventTable.from_dataframe(
                df, time="t", cause="status", covariates=["grade"],
                censored="censored", levels={"grade": ("low", "mid")},
            )
        assert exc_info.value.reason == "unseen_level"
        assert "high" in str(exc_info.value)

    def test_non_numeric_without_levels(self, df):
        with pytest.raises(InvalidCovariateError):
            EventTable.from_dataframe(
                df, time="t", cause="status", covariates=["grade"],
                censored="censored",
            )

    def test_missing_column(self, df):
        with pytest.raises(ValidationError, match="no columns"):
            EventTable.from_dataframe(df, time="t", cause="outcome",
                                      censored="censored")

    def test_declared_causes(self, df):
        t = EventTable.from_dataframe(
            df, time="t", cause="status", censored="censored",
            causes=["death", "relapse", "transplant"],
        )
        assert t.causes == ("death", "relapse", "transplant")


class TestViews:
    """Derived tables."""

    def test_event_indicator(self, table):
        assert_array_equal(table.event_indicator(), [1, 0, 1, 1, 0, 1])
        assert_array_equal(table.event_indicator(2), [0, 0, 1, 0, 0, 1])

    def test_cause_index(self, table):
        assert table.cause_index(2) == 2
        with pytest.raises(UnknownCauseError) as exc_info:
            table.cause_index(9)
        assert exc_info.value.available == (1, 2)

    def test_collapse_to_cause(self, table):
        single = table.collapse_causes(2)
        assert single.causes == (2,)
        assert_array_equal(single.cause_code, [0, 0, 1, 0, 0, 1])
        assert single.strata_labels == table.strata_labels

    def test_collapse_any(self, table):
        single = table.collapse_causes()
        assert single.causes == ("any",)
        assert single.n_events == table.n_events

    def test_select_covariates(self, table):
        t = table.select_covariates(["dose", "age"])
        assert t.covariate_names == ("dose", "age")
        assert_allclose(t.X[:, 1], table.X[:, 0])
        assert_allclose(table.covariate_matrix(["dose"])[:, 0], table.X[:, 1])

    def test_select_unknown(self, table):
        with pytest.raises(InvalidCovariateError) as exc_info:
            table.select_covariates(["weight"])
        assert exc_info.value.reason == "unknown"

    def test_select_duplicate(self, table):
        with pytest.raises(InvalidCovariateError) as exc_info:
            table.select_covariates(["age", "age"])
        assert exc_info.value.reason == "duplicate"

    def test_covariate_matrix_missing(self):
        t = EventTable.from_arrays([1.0, 2.0], [1, 0])
        with pytest.raises(InvalidCovariateError):
            t.covariate_matrix()

    def test_stratify_by(self):
        t = EventTable.from_arrays(
            [1.0, 2.0, 3.0, 4.0], [1, 0, 1, 1],
            {"x": [0.1, 0.2, 0.3, 0.4], "site": [3, 1, 3, 1]},
        )
        s = t.stratify_by("site")
        assert s.covariate_names == ("x",)
        assert s.strata_labels == (1, 3)
        assert_array_equal(s.stratum_code, [1, 0, 1, 0])

    def test_stratify_by_levels(self):
        t = EventTable.from_arrays(
            [1.0, 2.0, 3.0], [1, 0, 1], {"arm": [0, 1, 1]},
            levels={"arm": ("control", "treated")},
        )
        s = t.stratify_by("arm")
        assert s.strata_labels == ("control", "treated")
        assert s.X is None
        assert s.levels == {}

    def test_subset(self, table):
        sub = table.subset(table.time > 3.0)
        assert sub.n == 3
        assert sub.causes == table.causes
        assert sub.strata_labels == ("a", "b")
        assert sub.empty_strata() == ("a",)

    def test_subset_bad_mask(self, table):
        with pytest.raises(DimensionError):
            table.subset(np.array([True, False]))

    def test_by_stratum(self, table):
        parts = table.by_stratum()
        assert list(parts) == ["a", "b"]
        assert parts["b"].n == 3
        assert_allclose(parts["b"].time, [4.0, 5.0, 6.0])

    def test_by_stratum_unstratified(self):
        t = EventTable.from_arrays([1.0, 2.0], [1, 0])
        assert list(t.by_stratum()) == [ALL_STRATA]
        assert t.empty_strata() == ()

    def test_repr(self, table):
        r = repr(table)
        assert "EventTable" in r
        assert "n=6" in r
