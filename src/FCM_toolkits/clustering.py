"""
Fuzzy C-Means partitioning of pollution events.

The algorithm alternates between two exact minimization steps of the
objective

    J(U, V) = Σᵢ Σc uᵢc^m · D(xᵢ, vc)

where:
    xᵢ: feature vector of event i
    vc: center of cluster c
    uᵢc: membership of event i in cluster c (Σc uᵢc = 1)
    m: fuzziness exponent (m > 1)
    D: dissimilarity of the chosen distance metric

1. Membership step, for fixed centers:

    uᵢc = 1 / Σl (D(xᵢ, vc) / D(xᵢ, vl))^(1/(m-1))

2. Center step, for fixed memberships, with weights wᵢc = uᵢc^m:
    - "euclidean": D is the squared Euclidean distance, so the membership
      is an inverse power law of the distance with exponent 2/(m-1) and the
      center is the weighted mean (Bezdek, 1981).
    - "manhattan": D is the sum of absolute differences and the center is
      the per-element weighted median, the L1 location estimate.
    - "manhattan_mean": D is the squared sum of absolute differences, so the
      membership follows the L1 distance with exponent 2/(m-1), and the
      center is the weighted mean. These are the Bezdek update formulas
      applied to L1 distances.

For "euclidean" and "manhattan" both steps are exact minimizers, so J never
increases between iterations. The weighted mean does not minimize the
squared L1 dissimilarity, so "manhattan_mean" carries no such guarantee.

References
----------
[1] Bezdek, J.C., Ehrlich, R., Full, W., 1984. FCM: The fuzzy c-means clustering
    algorithm. Computers & Geosciences 10, 191-203.
[2] Kersten, P.R., 1999. Fuzzy order statistics and their application to fuzzy
    clustering. IEEE Transactions on Fuzzy Systems 7, 708-712.
"""

import numpy as np
import pandas as pd
from scipy.spatial.distance import cdist
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union
import warnings
import logging

from .validation import (
    ConvergenceWarning,
    DegenerateClusterWarning,
    InvalidInput,
    NotConverged,
    validate_fit_parameters,
    validate_matrix,
    validate_membership,
)
from .preprocessing import FeatureMatrix
from .utils import cluster_names, to_plain

logger = logging.getLogger('FCM_toolkits.clustering')

DEFAULT_FUZZINESS = 2.0
DEFAULT_MAX_ITER = 100
DEFAULT_TOLERANCE = 1e-5
DEFAULT_METRIC = "manhattan"
DEFAULT_SEED = 321


# =====================================================
# Distance metrics
# =====================================================

def weighted_mean_centers(X: np.ndarray, weights: np.ndarray,
                          previous: np.ndarray) -> np.ndarray:
    """Centers as weighted means; a cluster without weight keeps its previous center."""
    total = weights.sum(axis=0)
    numerator = weights.T @ X
    centers = previous.copy()
    nonzero = total > 0
    centers[nonzero] = numerator[nonzero] / total[nonzero, None]
    return centers


def weighted_median_centers(X: np.ndarray, weights: np.ndarray,
                            previous: np.ndarray) -> np.ndarray:
    """Centers as per-element weighted medians (lower median on exact halves)."""
    order = np.argsort(X, axis=0, kind='stable')
    X_sorted = np.take_along_axis(X, order, axis=0)
    centers = previous.copy()

    for c in range(weights.shape[1]):
        w = weights[:, c]
        total = w.sum()
        if total <= 0:
            continue
        cum = np.cumsum(w[order], axis=0)
        idx = np.argmax(cum >= 0.5 * total, axis=0)
        centers[c] = X_sorted[idx, np.arange(X.shape[1])]
    return centers


@dataclass(frozen=True)
class DistanceMetric:
    """
    Distance metric used consistently by the partitioner and the validity score.

    Attributes
    ----------
    name : str
        Public name.
    scipy_name : str
        Metric name for ``scipy.spatial.distance.cdist``, also understood by
        ``sklearn.metrics.silhouette_score``.
    power : float
        Exponent turning the distance into the dissimilarity minimized by FCM.
    center : callable
        ``(X, weights, previous_centers) -> centers`` minimizing the weighted
        dissimilarity for fixed memberships.
    """
    name: str
    scipy_name: str
    power: float
    center: Callable[[np.ndarray, np.ndarray, np.ndarray], np.ndarray]

    def distances(self, X: np.ndarray, centers: np.ndarray) -> np.ndarray:
        return cdist(X, centers, metric=self.scipy_name)

    def dissimilarity(self, X: np.ndarray, centers: np.ndarray) -> np.ndarray:
        d = self.distances(X, centers)
        return d if self.power == 1 else d ** self.power


METRICS: Dict[str, DistanceMetric] = {
    "manhattan": DistanceMetric("manhattan", "cityblock", 1.0, weighted_median_centers),
    "euclidean": DistanceMetric("euclidean", "euclidean", 2.0, weighted_mean_centers),
    "manhattan_mean": DistanceMetric("manhattan_mean", "cityblock", 2.0, weighted_mean_centers),
}


def get_metric(metric: Union[str, DistanceMetric]) -> DistanceMetric:
    """Look up a distance metric by name."""
    if isinstance(metric, DistanceMetric):
        return metric
    try:
        return METRICS[str(metric).lower()]
    except KeyError:
        raise InvalidInput(
            f"Unknown distance metric '{metric}'. Supported metrics: {', '.join(METRICS)}"
        ) from None


def resolve_metric(metric: Union[str, DistanceMetric] = DEFAULT_METRIC,
                   distance_metric: Optional[Union[str, DistanceMetric]] = None) -> DistanceMetric:
    """
    Resolve the ``metric`` argument and its ``distance_metric`` alias.

    The alias wins when given. Naming two different metrics raises
    ``InvalidInput``, unless ``metric`` is left at its default.
    """
    if distance_metric is None:
        return get_metric(metric)
    alias = get_metric(distance_metric)
    chosen = get_metric(metric)
    if chosen.name != alias.name and chosen.name != DEFAULT_METRIC:
        raise InvalidInput(
            f"Conflicting distance metrics: metric='{chosen.name}', "
            f"distance_metric='{alias.name}'"
        )
    return alias


# =====================================================
# Pure building blocks
# =====================================================

def hard_labels(membership) -> np.ndarray:
    """
    Project a membership matrix onto hard labels.

    Each event gets the cluster with its highest membership; ties go to the
    lowest cluster index.
    """
    return np.argmax(np.asarray(membership, dtype=float), axis=1)


def compute_membership(dissimilarity: np.ndarray, fuzziness: float) -> np.ndarray:
    """
    Membership matrix from an events x clusters dissimilarity matrix.

    An event with zero dissimilarity to a center belongs fully to that center
    (the lowest such index if several centers coincide with it).
    """
    D = np.asarray(dissimilarity, dtype=float)
    u = np.zeros_like(D)

    zero = D <= 0
    coincident = zero.any(axis=1)
    if coincident.any():
        rows = np.flatnonzero(coincident)
        u[rows, np.argmax(zero[rows], axis=1)] = 1.0

    regular = ~coincident
    if regular.any():
        Dr = D[regular]
        # Scaling by the row minimum keeps every ratio >= 1 and avoids overflow
        ratio = Dr / Dr.min(axis=1, keepdims=True)
        inv = ratio ** (-1.0 / (fuzziness - 1.0))
        u[regular] = inv / inv.sum(axis=1, keepdims=True)
    return u


def compute_objective(X: np.ndarray, membership: np.ndarray, centers: np.ndarray,
                      fuzziness: float, metric: Union[str, DistanceMetric] = DEFAULT_METRIC) -> float:
    """Weighted intra-cluster dispersion J = Σ u^m · D(x, v)."""
    metric = get_metric(metric)
    D = metric.dissimilarity(np.asarray(X, dtype=float), np.asarray(centers, dtype=float))
    return float(np.sum(np.asarray(membership) ** fuzziness * D))


def initial_centers(X: np.ndarray, k: int, seed: Optional[int],
                    metric: Union[str, DistanceMetric] = DEFAULT_METRIC,
                    method: str = "maxmin") -> np.ndarray:
    """
    Pick ``k`` distinct events as initial centers, reproducibly for a given seed.

    Parameters
    ----------
    X : np.ndarray
        Events x elements matrix.
    k : int
        Number of centers.
    seed : int, optional
        Seed of the random generator.
    metric : str or DistanceMetric
        Distance used by the "maxmin" strategy.
    method : str, default="maxmin"
        - "maxmin": the first center is a random distinct event, every next
          center is the distinct event farthest from the centers chosen so
          far (lowest index on ties).
        - "random": ``k`` distinct events drawn without replacement.
    """
    distinct = np.unique(X, axis=0)
    if k > distinct.shape[0]:
        raise InvalidInput(
            f"Cluster count k={k} exceeds the number of distinct events ({distinct.shape[0]})"
        )
    rng = np.random.default_rng(seed)

    if method == "random":
        chosen = rng.choice(distinct.shape[0], size=k, replace=False)
        return distinct[np.sort(chosen)].copy()
    elif method == "maxmin":
        metric = get_metric(metric)
        chosen = [int(rng.integers(distinct.shape[0]))]
        nearest = metric.distances(distinct, distinct[chosen]).ravel()
        while len(chosen) < k:
            # Chosen rows sit at distance 0, distinct rows elsewhere are > 0
            nxt = int(np.argmax(nearest))
            chosen.append(nxt)
            nearest = np.minimum(nearest, metric.distances(distinct, distinct[[nxt]]).ravel())
        return distinct[chosen].copy()
    else:
        raise InvalidInput(f"Unknown initialization method '{method}'. Use 'maxmin' or 'random'.")


def as_feature_array(feature_matrix) -> np.ndarray:
    """Normalized values of a ``FeatureMatrix``, DataFrame or array, validated."""
    if isinstance(feature_matrix, FeatureMatrix):
        return validate_matrix(feature_matrix.values, feature_matrix.elements,
                               feature_matrix.index)
    if isinstance(feature_matrix, pd.DataFrame):
        elements = [str(c) for c in feature_matrix.columns]
        return validate_matrix(feature_matrix.to_numpy(dtype=float), elements,
                               feature_matrix.index)
    return validate_matrix(feature_matrix)


# =====================================================
# Result object
# =====================================================

def _frozen(arr, dtype=float) -> np.ndarray:
    arr = np.array(arr, dtype=dtype, copy=True)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class FitResult:
    """
    Immutable outcome of a fuzzy partitioning run.

    Attributes
    ----------
    centers : np.ndarray
        Cluster centers, shape (k, n_elements).
    membership : np.ndarray
        Membership matrix, shape (n_events, k), rows summing to 1.
    hard_labels : np.ndarray
        Primary cluster of each event (0-based).
    objective : float
        Final value of the objective J.
    objective_history : tuple of float
        J after each iteration; non-increasing for "manhattan" and "euclidean".
    n_iter : int
        Number of iterations run.
    converged : bool
        False if ``max_iter`` was reached before the tolerance was met.
    degenerate_clusters : tuple of int
        Clusters with zero or one primary member.
    """
    centers: np.ndarray
    membership: np.ndarray
    hard_labels: np.ndarray
    objective: float
    objective_history: Tuple[float, ...]
    n_iter: int
    converged: bool
    k: int
    fuzziness: float
    metric: str
    seed: Optional[int] = None
    degenerate_clusters: Tuple[int, ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, 'centers', _frozen(self.centers))
        object.__setattr__(self, 'membership', _frozen(self.membership))
        object.__setattr__(self, 'hard_labels', _frozen(self.hard_labels, dtype=int))
        object.__setattr__(self, 'objective_history', tuple(float(j) for j in self.objective_history))
        object.__setattr__(self, 'degenerate_clusters', tuple(int(c) for c in self.degenerate_clusters))

    @property
    def cluster_sizes(self) -> np.ndarray:
        """Number of primary members of each cluster."""
        return np.bincount(self.hard_labels, minlength=self.k)

    def membership_frame(self, index: Optional[Sequence] = None) -> pd.DataFrame:
        """Membership matrix as a DataFrame (events x ``Cluster 1..k``)."""
        return pd.DataFrame(np.array(self.membership), index=index,
                            columns=cluster_names(self.k))

    def centers_frame(self, elements: Optional[Sequence[str]] = None) -> pd.DataFrame:
        """Cluster centers as a DataFrame (``Cluster 1..k`` x elements)."""
        return pd.DataFrame(np.array(self.centers), index=cluster_names(self.k),
                            columns=list(elements) if elements is not None else None)

    def to_dict(self) -> Dict:
        """Plain-Python representation suitable for JSON or YAML."""
        return {
            'centers': to_plain(self.centers),
            'membership': to_plain(self.membership),
            'hard_labels': to_plain(self.hard_labels),
            'objective': float(self.objective),
            'objective_history': list(self.objective_history),
            'n_iter': int(self.n_iter),
            'converged': bool(self.converged),
            'k': int(self.k),
            'fuzziness': float(self.fuzziness),
            'metric': self.metric,
            'seed': self.seed,
            'degenerate_clusters': list(self.degenerate_clusters),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "FitResult":
        """Rebuild a result from ``to_dict`` output."""
        return cls(**data)


# =====================================================
# Partitioner
# =====================================================

class FuzzyPartitioner:
    """
    Fuzzy C-Means partitioner.

    Parameters
    ----------
    n_clusters : int
        The number of clusters to form.
    fuzziness : float, default=2.0
        The fuzziness exponent m. Must be > 1; larger values give more even
        memberships.
    max_iter : int, default=100
        Maximum number of iterations.
    tolerance : float, default=1e-5
        Convergence tolerance on the maximum absolute change of the
        membership matrix between iterations.
    metric : str, default="manhattan"
        Distance metric, one of ``METRICS``: "manhattan", "euclidean" or
        "manhattan_mean".
    seed : int, optional
        Seed of the center initialization. Equal seeds and inputs give equal
        results.
    init : str, default="maxmin"
        Center initialization strategy, see ``initial_centers``.
    strict : bool, default=False
        Raise ``NotConverged`` instead of warning when ``max_iter`` is reached.

    Examples
    --------
    >>> partitioner = FuzzyPartitioner(n_clusters=3, seed=321)
    >>> result = partitioner.fit(feature_matrix)
    >>> result.membership.sum(axis=1)
    array([1., 1., ...])
    """

    def __init__(self, n_clusters: int, fuzziness: float = DEFAULT_FUZZINESS,
                 max_iter: int = DEFAULT_MAX_ITER, tolerance: float = DEFAULT_TOLERANCE,
                 metric: str = DEFAULT_METRIC, seed: Optional[int] = DEFAULT_SEED,
                 init: str = "maxmin", strict: bool = False):
        self.n_clusters = n_clusters
        self.fuzziness = float(fuzziness)
        self.max_iter = max_iter
        self.tolerance = tolerance
        self.metric = get_metric(metric)
        self.seed = seed
        self.init = init
        self.strict = strict

        self.result_ = None

    def fit(self, feature_matrix) -> FitResult:
        """
        Run the alternating optimization until convergence or ``max_iter``.

        Parameters
        ----------
        feature_matrix : FeatureMatrix, pd.DataFrame or np.ndarray
            Normalized events x elements matrix.

        Returns
        -------
        FitResult
        """
        X = as_feature_array(feature_matrix)
        validate_fit_parameters(X, self.n_clusters, self.fuzziness,
                                self.max_iter, self.tolerance)
        m = self.fuzziness

        centers = initial_centers(X, self.n_clusters, self.seed, self.metric, self.init)
        u_prev = None
        history: List[float] = []
        delta = np.inf
        converged = False
        n_iter = 0

        for iteration in range(1, self.max_iter + 1):
            n_iter = iteration

            u = compute_membership(self.metric.dissimilarity(X, centers), m)
            centers = self.metric.center(X, u ** m, centers)
            history.append(compute_objective(X, u, centers, m, self.metric))

            if u_prev is not None:
                delta = float(np.max(np.abs(u - u_prev)))
                logger.debug(f"Iteration {iteration}: J={history[-1]:.6g}, max |dU|={delta:.3e}")
                if delta < self.tolerance:
                    converged = True
                    break
            u_prev = u

        if not converged:
            message = (f"Fuzzy partitioning (k={self.n_clusters}) did not converge within "
                       f"{self.max_iter} iterations (last max |dU|={delta:.3e}, "
                       f"tolerance={self.tolerance:g})")
            if self.strict:
                raise NotConverged(message, n_iter=n_iter, delta=delta)
            logger.warning(message)
            warnings.warn(message, ConvergenceWarning)

        # Output boundary: downstream profiling relies on this invariant
        validate_membership(u, n_events=X.shape[0], k=self.n_clusters)

        labels = hard_labels(u)
        sizes = np.bincount(labels, minlength=self.n_clusters)
        degenerate = tuple(int(c) for c in np.flatnonzero(sizes <= 1))
        if degenerate:
            message = (f"Degenerate cluster(s) {list(degenerate)} with k={self.n_clusters}: "
                       f"primary member counts {sizes[list(degenerate)].tolist()}")
            logger.warning(message)
            warnings.warn(message, DegenerateClusterWarning)

        logger.info(f"FCM fit k={self.n_clusters}, m={m:g}, metric={self.metric.name}: "
                    f"J={history[-1]:.6g} after {n_iter} iteration(s), converged={converged}")

        self.result_ = FitResult(
            centers=centers,
            membership=u,
            hard_labels=labels,
            objective=history[-1],
            objective_history=history,
            n_iter=n_iter,
            converged=converged,
            k=self.n_clusters,
            fuzziness=m,
            metric=self.metric.name,
            seed=self.seed,
            degenerate_clusters=degenerate,
        )
        return self.result_

    def fit_predict(self, feature_matrix) -> np.ndarray:
        """Fit the model and return hard cluster labels."""
        return np.array(self.fit(feature_matrix).hard_labels)


def fit(feature_matrix, k: int, fuzziness: float = DEFAULT_FUZZINESS,
        max_iter: int = DEFAULT_MAX_ITER, tolerance: float = DEFAULT_TOLERANCE,
        metric: str = DEFAULT_METRIC, seed: Optional[int] = DEFAULT_SEED,
        init: str = "maxmin", strict: bool = False,
        distance_metric: Optional[str] = None) -> FitResult:
    """
    Fit a fuzzy partition with ``k`` clusters. See ``FuzzyPartitioner``.

    ``distance_metric`` is an alias of ``metric``.
    """
    metric = resolve_metric(metric, distance_metric)
    partitioner = FuzzyPartitioner(n_clusters=k, fuzziness=fuzziness, max_iter=max_iter,
                                   tolerance=tolerance, metric=metric, seed=seed,
                                   init=init, strict=strict)
    return partitioner.fit(feature_matrix)
