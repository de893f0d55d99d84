"""
Input validation utilities for cohortsurv.

These validators follow the "fail fast, fail loud" principle. They raise
immediately with clear error messages rather than silently correcting
or making assumptions about user intent.

Design principles:
    - No silent type coercion (except np.asarray on array-likes)
    - No default handling of edge cases
    - Clear, actionable error messages with actual values
    - Each function validates ONE thing
    - Parameter names included in all error messages
"""

import numpy as np
from numpy.typing import ArrayLike, NDArray
from typing import Any

from cohortsurv.core.exceptions import ValidationError, DimensionError


def check_array(
    array: ArrayLike,
    name: str,
) -> NDArray[np.floating[Any]]:
    """
    Validate and convert input to a float64 numpy array.

    Accepts any array-like and converts to numpy array. Rejects inputs
    that result in object dtype (indicating mixed types or non-numeric data).
    Booleans are accepted and promoted to 0.0/1.0.

    Args:
        array: Input to validate
        name: Parameter name for error messages

    Returns:
        numpy.ndarray with floating dtype

    Raises:
        ValidationError: If input cannot be converted to numeric array
    """
    try:
        result = np.asarray(array)
    except (ValueError, TypeError) as e:
        raise ValidationError(f"{name}: cannot convert to array: {e}") from e

    if result.dtype == object:
        raise ValidationError(
            f"{name}: converted to object dtype, indicating mixed types or non-numeric data"
        )

    if not (np.issubdtype(result.dtype, np.number) or result.dtype == np.bool_):
        raise ValidationError(
            f"{name}: non-numeric dtype {result.dtype}, expected numeric data"
        )

    if not np.issubdtype(result.dtype, np.floating):
        result = result.astype(np.float64)

    return result


def check_finite(array: NDArray[np.floating[Any]], name: str) -> None:
    """
    Verify array contains no NaN or Inf values.

    Args:
        array: Array to check
        name: Parameter name for error messages

    Raises:
        ValidationError: If array contains non-finite values
    """
    if not np.all(np.isfinite(array)):
        n_nan = int(np.sum(np.isnan(array)))
        n_inf = int(np.sum(np.isinf(array)))
        raise ValidationError(
            f"{name}: contains non-finite values ({n_nan} NaN, {n_inf} Inf)"
        )


def check_non_negative(array: NDArray[np.floating[Any]], name: str) -> None:
    """
    Verify array contains no negative values.

    Args:
        array: Array to check
        name: Parameter name for error messages

    Raises:
        ValidationError: If any element is negative
    """
    n_negative = int(np.sum(array < 0))
    if n_negative > 0:
        raise ValidationError(
            f"{name}: must be non-negative, found {n_negative} negative "
            f"values (min={float(np.min(array))})"
        )


def check_ndim(array: NDArray[np.floating[Any]], ndim: int, name: str) -> None:
    """
    Verify array has exactly the specified number of dimensions.

    Args:
        array: Array to check
        ndim: Required number of dimensions
        name: Parameter name for error messages

    Raises:
        DimensionError: If array has wrong number of dimensions
    """
    if array.ndim != ndim:
        raise DimensionError(
            f"{name}: expected {ndim}D array, got {array.ndim}D with shape {array.shape}"
        )


def check_1d(array: NDArray[np.floating[Any]], name: str) -> None:
    """Verify array is 1-dimensional."""
    check_ndim(array, 1, name)


def check_2d(array: NDArray[np.floating[Any]], name: str) -> None:
    """Verify array is 2-dimensional."""
    check_ndim(array, 2, name)


def check_consistent_length(
    *arrays: NDArray[Any],
    names: tuple[str, ...]
) -> None:
    """
    Verify all arrays have the same length (first dimension).

    Args:
        *arrays: Arrays to check
        names: Parameter names for error messages (must match number of arrays)

    Raises:
        ValueError: If number of names doesn't match number of arrays
        DimensionError: If arrays have inconsistent lengths
    """
    if len(arrays) != len(names):
        raise ValueError(
            f"Number of arrays ({len(arrays)}) must match number of names ({len(names)})"
        )

    if len(arrays) < 2:
        return

    lengths = [arr.shape[0] for arr in arrays]
    if len(set(lengths)) > 1:
        details = ", ".join(f"{name}={length}" for name, length in zip(names, lengths))
        raise DimensionError(f"Inconsistent lengths: {details}")


def check_min_samples(array: NDArray[Any], min_samples: int, name: str) -> None:
    """
    Verify array has at least the minimum number of samples.

    Args:
        array: Array to check
        min_samples: Minimum required samples (first dimension)
        name: Parameter name for error messages

    Raises:
        ValidationError: If array has fewer than min_samples
    """
    n = array.shape[0]
    if n < min_samples:
        raise ValidationError(
            f"{name}: requires at least {min_samples} samples, got {n}"
        )


def check_probability(value: float, name: str) -> None:
    """
    Verify a scalar lies strictly inside (0, 1).

    Used for confidence levels.

    Raises:
        ValidationError: If value is outside the open unit interval
    """
    if not (0.0 < value < 1.0):
        raise ValidationError(f"{name} must be in (0, 1), got {value}")


def check_choice(value: str, choices: tuple[str, ...], name: str) -> None:
    """
    Verify a string option is one of the allowed choices.

    Raises:
        ValidationError: If value is not in choices
    """
    if value not in choices:
        allowed = ", ".join(f"'{c}'" for c in choices)
        raise ValidationError(f"{name} must be one of {allowed}, got '{value}'")
