"""
EventTable: immutable container for (time, cause, covariates, stratum) data.

Wraps time, a closed cause vocabulary, optional covariates, and optional
strata. Validates inputs at construction time; every estimator downstream
trusts clean data and never mutates it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Mapping, Sequence, TYPE_CHECKING

import numpy as np
from numpy.typing import ArrayLike, NDArray

from cohortsurv.core.exceptions import DimensionError, ValidationError
from cohortsurv.core.validation import (
    check_1d,
    check_2d,
    check_array,
    check_consistent_length,
    check_finite,
    check_min_samples,
    check_non_negative,
)
from cohortsurv.survival.exceptions import InvalidCovariateError, UnknownCauseError

if TYPE_CHECKING:
    import pandas as pd


# Key used for the single curve of an unstratified table.
ALL_STRATA = "all"


@dataclass(frozen=True)
class EventRecord:
    """One subject.

    Parameters
    ----------
    time : float
        Time to event or censoring (non-negative).
    cause : label
        The table's censoring label, or one of its cause labels.
    covariates : mapping
        Ordered covariate name -> numeric (or ordinal-encoded) value.
    stratum : label or None
        Optional grouping key.
    """

    time: float
    cause: Any
    covariates: Mapping[str, float] = field(default_factory=dict)
    stratum: Any = None


def _read_only(array: NDArray) -> NDArray:
    out = np.array(array, copy=True)
    out.setflags(write=False)
    return out


def _normalize_labels(values: ArrayLike, name: str) -> NDArray:
    """Labels as a 1-D array; integral floats and booleans become ints."""
    arr = np.asarray(values)
    if arr.ndim != 1:
        arr = arr.ravel()
    if arr.dtype == np.bool_:
        return arr.astype(np.int64)
    if np.issubdtype(arr.dtype, np.floating):
        if not np.all(np.isfinite(arr)):
            raise ValidationError(f"{name}: contains non-finite labels")
        if np.all(arr == np.round(arr)):
            return arr.astype(np.int64)
    return arr


def _matches(values: NDArray, label: Any) -> NDArray:
    """Elementwise ``values == label``, also when the dtypes are incomparable."""
    result = values == label
    if np.ndim(result) == 0:
        return np.full(len(values), bool(result))
    return np.asarray(result, dtype=bool)


def _encode(
    values: NDArray,
    vocabulary: tuple[Any, ...],
    name: str,
    skip: NDArray | None = None,
) -> NDArray:
    """Map each value to 1 + its index in vocabulary (0 where skipped).

    Values outside the vocabulary are a schema violation.
    """
    codes = np.zeros(len(values), dtype=np.int64)
    for k, label in enumerate(vocabulary):
        codes[_matches(values, label)] = k + 1
    unmatched = codes == 0
    if skip is not None:
        unmatched &= ~skip
    if np.any(unmatched):
        unseen = sorted({str(v) for v in values[unmatched]})
        raise ValidationError(
            f"{name}: labels {unseen} are not in the declared vocabulary "
            f"{list(vocabulary)}"
        )
    return codes


def _unique_labels(values: NDArray) -> tuple[Any, ...]:
    return tuple(np.unique(values).tolist())


@dataclass(frozen=True)
class EventTable:
    """Immutable event table.

    Construct via the ``from_*`` classmethods, not directly.

    Attributes
    ----------
    time : NDArray
        (n,) time to event or censoring, non-negative and finite.
    cause_code : NDArray
        (n,) integer codes: 0 = censored, k = causes[k - 1].
    causes : tuple
        Closed vocabulary of (non-censoring) cause labels.
    censored : label
        The censoring label.
    X : NDArray or None
        (n, p) covariate matrix.
    covariate_names : tuple of str
        Column names of X.
    stratum_code : NDArray or None
        (n,) integer codes into strata_labels.
    strata_labels : tuple
        Closed vocabulary of stratum labels (empty when unstratified).
    levels : dict
        Covariate name -> declared categorical levels (ordinal encoding).
    """

    time: NDArray
    cause_code: NDArray
    causes: tuple[Any, ...]
    censored: Any
    X: NDArray | None
    covariate_names: tuple[str, ...]
    stratum_code: NDArray | None
    strata_labels: tuple[Any, ...]
    levels: dict[str, tuple[Any, ...]]

    # -- Construction --

    @classmethod
    def from_arrays(
        cls,
        time,
        cause,
        X=None,
        *,
        covariate_names: Sequence[str] | None = None,
        strata=None,
        censored: Any = 0,
        causes: Sequence[Any] | None = None,
        strata_labels: Sequence[Any] | None = None,
        levels: Mapping[str, Sequence[Any]] | None = None,
    ) -> EventTable:
        """Create and validate an event table from arrays.

        Parameters
        ----------
        time : array-like
            Time to event or censoring.
        cause : array-like
            Cause labels. A 0/1 vector gives the single-event table with
            ``causes=(1,)``.
        X : array-like, mapping, or None
            (n, p) covariate matrix, or mapping name -> (n,) column.
        covariate_names : sequence of str or None
            Names for the columns of a 2-D X (default ``x0, x1, ...``).
        strata : array-like or None
            Stratum label per subject.
        censored : label
            The censoring label (default 0).
        causes : sequence or None
            Closed cause vocabulary. Inferred (sorted) from the data if None.
        strata_labels : sequence or None
            Closed stratum vocabulary. Inferred (sorted) if None.
        levels : mapping or None
            Covariate name -> declared categorical levels. Values of such
            columns must already be integer codes 0..L-1.

        Returns
        -------
        EventTable

        Raises
        ------
        ValidationError
            If times are invalid or labels fall outside a vocabulary.
        DimensionError
            If lengths are inconsistent.
        InvalidCovariateError
            If covariates are non-finite or misnamed.
        """
        time_arr = check_array(time, "time").ravel()
        check_1d(time_arr, "time")
        check_min_samples(time_arr, 1, "time")
        check_finite(time_arr, "time")
        check_non_negative(time_arr, "time")
        n = len(time_arr)

        cause_arr = _normalize_labels(cause, "cause")
        check_consistent_length(time_arr, cause_arr, names=("time", "cause"))

        censored_mask = _matches(cause_arr, censored)
        if causes is None:
            vocab = _unique_labels(cause_arr[~censored_mask])
        else:
            vocab = tuple(causes)
            if len(set(vocab)) != len(vocab):
                raise ValidationError(f"causes must be unique, got {list(vocab)}")
        if any(c == censored for c in vocab):
            raise ValidationError(
                f"censoring label {censored!r} cannot also be a cause"
            )
        cause_code = _encode(cause_arr, vocab, "cause", skip=censored_mask)

        X_arr, names = _covariates(X, covariate_names, n)

        stratum_code = None
        stratum_vocab: tuple[Any, ...] = ()
        if strata is not None:
            strata_arr = _normalize_labels(strata, "strata")
            check_consistent_length(time_arr, strata_arr, names=("time", "strata"))
            if strata_labels is None:
                stratum_vocab = _unique_labels(strata_arr)
            else:
                stratum_vocab = tuple(strata_labels)
            stratum_code = _encode(strata_arr, stratum_vocab, "strata") - 1
        elif strata_labels is not None:
            raise ValidationError("strata_labels given without strata")

        level_map: dict[str, tuple[Any, ...]] = {}
        for col, col_levels in (levels or {}).items():
            if col not in names:
                raise InvalidCovariateError(
                    f"levels declared for unknown covariate '{col}'",
                    covariate=col, reason="unknown",
                )
            col_levels = tuple(col_levels)
            values = X_arr[:, names.index(col)]
            valid = (values == np.round(values)) & (values >= 0) & (values < len(col_levels))
            if not np.all(valid):
                raise InvalidCovariateError(
                    f"covariate '{col}': values must be level codes "
                    f"0..{len(col_levels) - 1}",
                    covariate=col, reason="unseen_level",
                )
            level_map[col] = col_levels

        return cls(
            time=_read_only(time_arr),
            cause_code=_read_only(cause_code),
            causes=vocab,
            censored=censored,
            X=None if X_arr is None else _read_only(X_arr),
            covariate_names=names,
            stratum_code=None if stratum_code is None else _read_only(stratum_code),
            strata_labels=stratum_vocab,
            levels=level_map,
        )

    @classmethod
    def from_records(
        cls,
        records: Iterable[EventRecord],
        *,
        censored: Any = 0,
        causes: Sequence[Any] | None = None,
        strata_labels: Sequence[Any] | None = None,
    ) -> EventTable:
        """Create an event table from EventRecords sharing one covariate schema."""
        records = list(records)
        if not records:
            raise ValidationError("records: requires at least 1 record, got 0")

        schema = tuple(records[0].covariates.keys())
        rows = []
        for i, rec in enumerate(records):
            keys = tuple(rec.covariates.keys())
            if keys != schema:
                raise InvalidCovariateError(
                    f"record {i}: covariates {list(keys)} do not match "
                    f"schema {list(schema)}",
                    reason="schema",
                )
            rows.append([rec.covariates[k] for k in schema])

        has_stratum = [rec.stratum is not None for rec in records]
        if any(has_stratum) and not all(has_stratum):
            raise ValidationError(
                "records: stratum must be set on every record or on none"
            )

        X = None
        if schema:
            try:
                X = np.asarray(rows, dtype=np.float64)
            except (TypeError, ValueError) as e:
                raise InvalidCovariateError(
                    f"records: covariate values must be numeric: {e}",
                    reason="schema",
                ) from e

        return cls.from_arrays(
            [rec.time for rec in records],
            np.array([rec.cause for rec in records], dtype=object),
            X,
            covariate_names=schema or None,
            strata=[rec.stratum for rec in records] if all(has_stratum) else None,
            censored=censored,
            causes=causes,
            strata_labels=strata_labels,
        )

    @classmethod
    def from_dataframe(
        cls,
        df: 'pd.DataFrame',
        *,
        time: str,
        cause: str,
        covariates: Sequence[str] = (),
        stratum: str | None = None,
        censored: Any = 0,
        causes: Sequence[Any] | None = None,
        strata_labels: Sequence[Any] | None = None,
        levels: Mapping[str, Sequence[Any]] | None = None,
    ) -> EventTable:
        """Create an event table from a cleaned pandas DataFrame.

        Columns named in ``levels`` are categorical: each value is encoded to
        its index in the declared level tuple. An unseen level is a schema
        violation, never silently coerced.
        """
        import pandas as pd

        levels = dict(levels or {})
        missing = [c for c in (time, cause, *covariates) if c not in df.columns]
        if stratum is not None and stratum not in df.columns:
            missing.append(stratum)
        if missing:
            raise ValidationError(
                f"DataFrame has no columns {missing}. Available: {list(df.columns)}"
            )
        extra = [c for c in levels if c not in covariates]
        if extra:
            raise InvalidCovariateError(
                f"levels declared for columns {extra} that are not covariates",
                covariate=extra[0], reason="unknown",
            )

        columns: dict[str, NDArray] = {}
        for col in covariates:
            if col in levels:
                cat = pd.Categorical(df[col], categories=list(levels[col]))
                codes = np.asarray(cat.codes, dtype=np.int64)
                if np.any(codes < 0):
                    unseen = sorted({str(v) for v in df[col][codes < 0]})
                    raise InvalidCovariateError(
                        f"covariate '{col}': values {unseen} are not declared "
                        f"levels {list(levels[col])}",
                        covariate=col, reason="unseen_level",
                    )
                columns[col] = codes.astype(np.float64)
            else:
                try:
                    columns[col] = df[col].to_numpy(dtype=np.float64)
                except (TypeError, ValueError) as e:
                    raise InvalidCovariateError(
                        f"covariate '{col}' is not numeric; declare its levels",
                        covariate=col, reason="schema",
                    ) from e

        return cls.from_arrays(
            df[time].to_numpy(),
            df[cause].to_numpy(),
            columns or None,
            strata=None if stratum is None else df[stratum].to_numpy(),
            censored=censored,
            causes=causes,
            strata_labels=strata_labels,
            levels=levels,
        )

    # -- Sizes --

    def __len__(self) -> int:
        return len(self.time)

    @property
    def n(self) -> int:
        """Number of subjects."""
        return len(self.time)

    @property
    def p(self) -> int:
        """Number of covariates (0 if none)."""
        return 0 if self.X is None else self.X.shape[1]

    @property
    def n_causes(self) -> int:
        return len(self.causes)

    @property
    def n_events(self) -> int:
        """Number of subjects with an event of any cause."""
        return int(np.sum(self.cause_code > 0))

    @property
    def n_censored(self) -> int:
        return int(np.sum(self.cause_code == 0))

    @property
    def is_stratified(self) -> bool:
        return self.stratum_code is not None

    # -- Cause access --

    def cause_index(self, cause: Any) -> int:
        """Code (1..K) of a cause label.

        Raises
        ------
        UnknownCauseError
            If the label is not in the cause vocabulary.
        """
        for k, label in enumerate(self.causes):
            if label == cause:
                return k + 1
        raise UnknownCauseError(cause, self.causes)

    def event_indicator(self, cause: Any = None) -> NDArray:
        """(n,) 0/1 float indicator of the event.

        With ``cause=None`` any cause is the event; otherwise the requested
        cause is the event and all other causes are folded into censoring.
        """
        if cause is None:
            return (self.cause_code > 0).astype(np.float64)
        return (self.cause_code == self.cause_index(cause)).astype(np.float64)

    def collapse_causes(self, cause: Any = None) -> EventTable:
        """Single-event table: ``cause`` is the event, other causes censored.

        With ``cause=None`` every cause becomes the single event.
        """
        if cause is None:
            label = self.causes[0] if self.n_causes == 1 else "any"
        else:
            label = self.causes[self.cause_index(cause) - 1]
        if label == self.censored:
            raise ValidationError(
                f"collapsed cause label {label!r} clashes with the censoring label"
            )
        return EventTable(
            time=self.time,
            cause_code=_read_only(self.event_indicator(cause).astype(np.int64)),
            causes=(label,),
            censored=self.censored,
            X=self.X,
            covariate_names=self.covariate_names,
            stratum_code=self.stratum_code,
            strata_labels=self.strata_labels,
            levels=self.levels,
        )

    # -- Covariate access --

    def covariate_matrix(self, names: Sequence[str] | None = None) -> NDArray:
        """(n, q) matrix of the named covariates (all when None)."""
        if names is None:
            if self.X is None:
                raise InvalidCovariateError(
                    "table has no covariates", reason="missing",
                )
            return self.X
        return self.X[:, self._covariate_indices(names)]

    def select_covariates(self, names: Sequence[str]) -> EventTable:
        """Table restricted to the named covariates, in the given order."""
        idx = self._covariate_indices(names)
        names = tuple(self.covariate_names[i] for i in idx)
        return EventTable(
            time=self.time,
            cause_code=self.cause_code,
            causes=self.causes,
            censored=self.censored,
            X=_read_only(self.X[:, idx]),
            covariate_names=names,
            stratum_code=self.stratum_code,
            strata_labels=self.strata_labels,
            levels={k: v for k, v in self.levels.items() if k in names},
        )

    def stratify_by(self, name: str) -> EventTable:
        """Use a covariate as the stratum key and drop it from the covariates.

        Declared categorical levels become the stratum vocabulary; otherwise
        the sorted distinct values do.
        """
        j = self._covariate_indices([name])[0]
        values = self.X[:, j]
        if name in self.levels:
            labels = self.levels[name]
            codes = values.astype(np.int64)
        else:
            labels = _unique_labels(_normalize_labels(values, name))
            codes = np.searchsorted(np.asarray(labels, dtype=np.float64), values)
        keep = [i for i in range(self.p) if i != j]
        kept_names = tuple(self.covariate_names[i] for i in keep)
        return EventTable(
            time=self.time,
            cause_code=self.cause_code,
            causes=self.causes,
            censored=self.censored,
            X=_read_only(self.X[:, keep]) if keep else None,
            covariate_names=kept_names,
            stratum_code=_read_only(codes),
            strata_labels=tuple(labels),
            levels={k: v for k, v in self.levels.items() if k in kept_names},
        )

    def _covariate_indices(self, names: Sequence[str]) -> list[int]:
        if isinstance(names, str):
            names = [names]
        if len(set(names)) != len(names):
            raise InvalidCovariateError(
                f"duplicate covariate names in {list(names)}", reason="duplicate",
            )
        idx = []
        for name in names:
            if name not in self.covariate_names:
                raise InvalidCovariateError(
                    f"unknown covariate '{name}'. Available: "
                    f"{list(self.covariate_names)}",
                    covariate=name, reason="unknown",
                )
            idx.append(self.covariate_names.index(name))
        return idx

    # -- Row access --

    def subset(self, mask) -> EventTable:
        """Rows selected by a boolean mask or index array; vocabularies kept."""
        mask = np.asarray(mask)
        if mask.dtype == np.bool_ and len(mask) != self.n:
            raise DimensionError(
                f"mask must have {self.n} elements, got {len(mask)}"
            )
        return EventTable(
            time=_read_only(self.time[mask]),
            cause_code=_read_only(self.cause_code[mask]),
            causes=self.causes,
            censored=self.censored,
            X=None if self.X is None else _read_only(self.X[mask]),
            covariate_names=self.covariate_names,
            stratum_code=(
                None if self.stratum_code is None
                else _read_only(self.stratum_code[mask])
            ),
            strata_labels=self.strata_labels,
            levels=self.levels,
        )

    def by_stratum(self) -> dict[Any, EventTable]:
        """Non-empty strata in vocabulary order ({ALL_STRATA: self} if none)."""
        if self.stratum_code is None:
            return {ALL_STRATA: self}
        out = {}
        for k, label in enumerate(self.strata_labels):
            mask = self.stratum_code == k
            if np.any(mask):
                out[label] = self.subset(mask)
        return out

    def empty_strata(self) -> tuple[Any, ...]:
        """Declared stratum labels with no subjects."""
        if self.stratum_code is None:
            return ()
        counts = np.bincount(self.stratum_code, minlength=len(self.strata_labels))
        return tuple(
            label for label, c in zip(self.strata_labels, counts) if c == 0
        )

    def records(self) -> Iterator[EventRecord]:
        """Iterate the rows as EventRecords."""
        for i in range(self.n):
            code = int(self.cause_code[i])
            yield EventRecord(
                time=float(self.time[i]),
                cause=self.censored if code == 0 else self.causes[code - 1],
                covariates=(
                    {} if self.X is None
                    else dict(zip(self.covariate_names, self.X[i].tolist()))
                ),
                stratum=(
                    None if self.stratum_code is None
                    else self.strata_labels[int(self.stratum_code[i])]
                ),
            )

    def __repr__(self) -> str:
        return (
            f"EventTable(n={self.n}, events={self.n_events}, "
            f"causes={list(self.causes)}, covariates={list(self.covariate_names)}, "
            f"strata={list(self.strata_labels)})"
        )


def _covariates(
    X,
    covariate_names: Sequence[str] | None,
    n: int,
) -> tuple[NDArray | None, tuple[str, ...]]:
    """Validate covariates; returns (X, names)."""
    if X is None:
        if covariate_names:
            raise InvalidCovariateError(
                "covariate_names given without X", reason="missing",
            )
        return None, ()

    if isinstance(X, Mapping):
        if covariate_names is not None:
            raise InvalidCovariateError(
                "covariate_names must not be given when X is a mapping",
                reason="schema",
            )
        names = tuple(str(k) for k in X.keys())
        columns = [check_array(v, f"X['{k}']").ravel() for k, v in X.items()]
        for name, col in zip(names, columns):
            if len(col) != n:
                raise DimensionError(
                    f"covariate '{name}' must have {n} elements to match time, "
                    f"got {len(col)}"
                )
        X_arr = np.column_stack(columns) if columns else np.empty((n, 0))
    else:
        X_arr = check_array(X, "X")
        if X_arr.ndim == 1:
            X_arr = X_arr.reshape(-1, 1)
        check_2d(X_arr, "X")
        if X_arr.shape[0] != n:
            raise DimensionError(
                f"X must have {n} rows to match time, got {X_arr.shape[0]}"
            )
        if covariate_names is None:
            names = tuple(f"x{j}" for j in range(X_arr.shape[1]))
        else:
            names = tuple(covariate_names)
            if len(names) != X_arr.shape[1]:
                raise InvalidCovariateError(
                    f"covariate_names has {len(names)} names for "
                    f"{X_arr.shape[1]} columns",
                    reason="schema",
                )

    if len(set(names)) != len(names):
        raise InvalidCovariateError(
            f"covariate names must be unique, got {list(names)}",
            reason="duplicate",
        )

    for j, name in enumerate(names):
        col = X_arr[:, j]
        if not np.all(np.isfinite(col)):
            raise InvalidCovariateError(
                f"covariate '{name}' contains {int(np.sum(~np.isfinite(col)))} "
                f"non-finite values",
                covariate=name, reason="non_finite",
            )

    return X_arr, names
