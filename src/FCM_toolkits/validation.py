"""Input and output validation for the clustering pipeline.

Every component checks its inputs at its own boundary so that downstream
stages never have to re-validate assumptions established upstream:

- feature matrices are checked before partitioning,
- cluster counts and fit parameters are checked before fitting,
- membership matrices and hard labels are checked before profiling.

Errors
------
InvalidInput
    Malformed input. Always raised, never silently coerced.
NotConverged
    Only raised when a fit is requested with ``strict=True``.

Warnings
--------
ConvergenceWarning
    The iteration cap was reached; the result is still usable.
DegenerateClusterWarning
    A cluster ended with zero or one primary member.
"""

import numpy as np
import pandas as pd
from typing import Iterable, List, Optional, Sequence
import logging

logger = logging.getLogger('FCM_toolkits.validation')

#: Tolerance used when checking that membership rows sum to one.
MEMBERSHIP_TOLERANCE = 1e-9


class InvalidInput(ValueError):
    """Raised when a feature matrix, parameter or membership matrix is malformed."""


class NotConverged(RuntimeError):
    """Raised by strict fits that hit ``max_iter`` before converging."""

    def __init__(self, message: str, n_iter: int, delta: float):
        super().__init__(message)
        self.n_iter = n_iter
        self.delta = delta


class ConvergenceWarning(UserWarning):
    """Issued when a fit stops at ``max_iter`` without meeting the tolerance."""


class DegenerateClusterWarning(UserWarning):
    """Issued when a cluster has zero or one primary (hard-label) member."""


def validate_elements(elements: Sequence[str]) -> List[str]:
    """Check that the element list is non-empty and free of duplicates."""
    if elements is None:
        raise InvalidInput("Element list must be provided")
    elements = [str(e) for e in elements]
    if len(elements) == 0:
        raise InvalidInput("Element list cannot be empty")
    duplicated = pd.Index(elements)[pd.Index(elements).duplicated()].unique().tolist()
    if duplicated:
        raise InvalidInput(f"Duplicated element names: {', '.join(duplicated)}")
    return elements


def validate_matrix(values, elements: Optional[Sequence[str]] = None,
                    index: Optional[Iterable] = None,
                    name: str = "feature matrix") -> np.ndarray:
    """
    Validate a 2-D numeric matrix of events x elements.

    Parameters
    ----------
    values : array-like
        Matrix with one row per event and one column per element.
    elements : sequence of str, optional
        Column names used in error messages.
    index : iterable, optional
        Row labels used in error messages.
    name : str
        Name of the matrix used in error messages.

    Returns
    -------
    np.ndarray
        The matrix as a float array.

    Raises
    ------
    InvalidInput
        If the matrix is not 2-D, is empty, has a column count that does not
        match ``elements`` or holds missing / non-finite values.
    """
    try:
        arr = np.asarray(values, dtype=float)
    except (TypeError, ValueError) as e:
        raise InvalidInput(f"The {name} must be numeric: {e}") from e

    if arr.ndim != 2:
        raise InvalidInput(f"The {name} must be 2-dimensional, got shape {arr.shape}")
    if arr.shape[0] == 0 or arr.shape[1] == 0:
        raise InvalidInput(f"The {name} cannot be empty, got shape {arr.shape}")
    if elements is not None and len(elements) != arr.shape[1]:
        raise InvalidInput(
            f"The {name} has {arr.shape[1]} columns but {len(elements)} elements were given"
        )

    bad = ~np.isfinite(arr)
    if bad.any():
        row, col = np.argwhere(bad)[0]
        row_label = list(index)[row] if index is not None else int(row)
        col_label = elements[col] if elements is not None else int(col)
        raise InvalidInput(
            f"The {name} contains {int(bad.sum())} missing or non-finite value(s); "
            f"first at row {row_label!r}, column {col_label!r}. "
            "Resolve missing values before clustering."
        )
    return arr


def count_distinct_rows(values: np.ndarray) -> int:
    """Number of distinct event vectors in a matrix."""
    return int(np.unique(np.asarray(values), axis=0).shape[0])


def validate_fit_parameters(values: np.ndarray, k: int, fuzziness: float,
                            max_iter: int, tolerance: float) -> None:
    """Check the partitioner parameters against the feature matrix."""
    if isinstance(k, bool) or not isinstance(k, (int, np.integer)):
        raise InvalidInput(f"Cluster count k must be an integer, got {k!r}")
    if k < 2:
        raise InvalidInput(f"Cluster count k must be >= 2, got {k}")
    n_distinct = count_distinct_rows(values)
    if k > n_distinct:
        raise InvalidInput(
            f"Cluster count k={k} exceeds the number of distinct events ({n_distinct})"
        )
    if not np.isfinite(fuzziness) or fuzziness <= 1:
        raise InvalidInput(f"Fuzziness exponent must be > 1, got {fuzziness}")
    if max_iter < 1:
        raise InvalidInput(f"max_iter must be >= 1, got {max_iter}")
    if not tolerance > 0:
        raise InvalidInput(f"tolerance must be > 0, got {tolerance}")


def validate_k_range(k_range: Iterable[int], n_events: int) -> List[int]:
    """
    Validate the candidate cluster counts of a selection run.

    The range must be a non-empty set of contiguous integers, each >= 2, and
    the matrix must hold at least ``2 * max(k_range)`` events.
    """
    ks = sorted(int(k) for k in k_range)
    if not ks:
        raise InvalidInput("k_range cannot be empty")
    if ks[0] < 2:
        raise InvalidInput(f"Every candidate k must be >= 2, got {ks[0]}")
    if ks != list(range(ks[0], ks[-1] + 1)):
        raise InvalidInput(f"k_range must be contiguous, got {ks}")
    if n_events < 2 * ks[-1]:
        raise InvalidInput(
            f"Selection over k up to {ks[-1]} needs at least {2 * ks[-1]} events, "
            f"got {n_events}"
        )
    return ks


def validate_membership(membership, n_events: Optional[int] = None,
                        k: Optional[int] = None) -> np.ndarray:
    """
    Check the membership matrix invariant.

    Each row must be non-negative, finite, not entirely zero and sum to one
    within ``MEMBERSHIP_TOLERANCE``.
    """
    u = validate_matrix(membership, name="membership matrix")
    if n_events is not None and u.shape[0] != n_events:
        raise InvalidInput(
            f"Membership matrix has {u.shape[0]} rows but there are {n_events} events"
        )
    if k is not None and u.shape[1] != k:
        raise InvalidInput(f"Membership matrix has {u.shape[1]} columns, expected k={k}")
    if (u < 0).any():
        row = int(np.argwhere(u < 0)[0][0])
        raise InvalidInput(f"Membership matrix has negative values (row {row})")
    zero_rows = np.flatnonzero(~u.any(axis=1))
    if zero_rows.size:
        raise InvalidInput(f"Membership matrix row {int(zero_rows[0])} is entirely zero")
    deviation = np.abs(u.sum(axis=1) - 1.0)
    if (deviation > MEMBERSHIP_TOLERANCE).any():
        row = int(np.argmax(deviation))
        raise InvalidInput(
            f"Membership rows must sum to 1; row {row} deviates by {deviation[row]:.3e}"
        )
    return u


def validate_hard_labels(labels, n_events: int, k: int) -> np.ndarray:
    """Check that hard labels are integers in ``0..k-1``, one per event."""
    arr = np.asarray(labels)
    if arr.ndim != 1 or arr.shape[0] != n_events:
        raise InvalidInput(
            f"Expected {n_events} hard labels, got an array of shape {arr.shape}"
        )
    if arr.size and not np.issubdtype(arr.dtype, np.integer):
        if not np.all(np.mod(arr, 1) == 0):
            raise InvalidInput("Hard labels must be integer cluster ids")
        arr = arr.astype(int)
    if arr.size and (arr.min() < 0 or arr.max() >= k):
        raise InvalidInput(f"Hard labels must lie in 0..{k - 1}, got {arr.min()}..{arr.max()}")
    return arr
