"""
Selection of the number of source clusters.

For every candidate k the fuzzy partition is fitted, projected onto hard
labels and scored with the average silhouette width, computed with the same
distance metric as the partition:

    s(i) = (b(i) - a(i)) / max(a(i), b(i))

where:
    a(i): mean distance from event i to the other members of its cluster
    b(i): mean distance from event i to the members of the nearest other cluster

Events alone in their cluster score 0. The selected k maximizes the mean of
s(i); the first k wins on ties. The selection is advisory: any k can be used
for the final fit.

References
----------
Rousseeuw, P.J., 1987. Silhouettes: A graphical aid to the interpretation and
validation of cluster analysis. Journal of Computational and Applied
Mathematics 20, 53-65.
"""

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.metrics import silhouette_score
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple
import logging

from .clustering import (
    DEFAULT_FUZZINESS,
    DEFAULT_MAX_ITER,
    DEFAULT_METRIC,
    DEFAULT_SEED,
    DEFAULT_TOLERANCE,
    FitResult,
    as_feature_array,
    fit,
    get_metric,
    resolve_metric,
)
from .validation import InvalidInput, validate_k_range

logger = logging.getLogger('FCM_toolkits.selection')

DEFAULT_K_RANGE = range(2, 7)


@dataclass(frozen=True)
class ValidityCurve:
    """
    Silhouette score of each candidate cluster count.

    Attributes
    ----------
    scores : tuple of (k, score)
        Score of each candidate k, in increasing k. NaN marks a k whose hard
        labels collapsed into a single cluster.
    best_k : int
        Candidate with the highest score (first on ties).
    metric : str
        Distance metric shared by the partitions and the score.
    fuzziness : float
    seed : int, optional
    """
    scores: Tuple[Tuple[int, float], ...]
    best_k: int
    metric: str
    fuzziness: float
    seed: Optional[int] = None

    @property
    def score_by_k(self) -> Dict[int, float]:
        return dict(self.scores)

    def __iter__(self):
        # Allows ``scores, best_k = select_k(...)``
        return iter((self.score_by_k, self.best_k))

    def to_series(self) -> pd.Series:
        """Scores as a Series indexed by k."""
        ks, values = zip(*self.scores)
        return pd.Series(values, index=pd.Index(ks, name='k'), name='silhouette')

    def to_dict(self) -> Dict:
        return {
            'scores': {int(k): float(s) for k, s in self.scores},
            'best_k': int(self.best_k),
            'metric': self.metric,
            'fuzziness': float(self.fuzziness),
            'seed': self.seed,
        }


def silhouette_validity(X: np.ndarray, labels: np.ndarray,
                        metric: str = DEFAULT_METRIC) -> float:
    """
    Average silhouette width of a hard partition.

    Returns NaN when the labels contain a single cluster (or as many clusters
    as events), for which the silhouette is undefined.
    """
    metric = get_metric(metric)
    n_labels = len(np.unique(labels))
    if n_labels < 2 or n_labels > len(labels) - 1:
        return np.nan
    return float(silhouette_score(X, labels, metric=metric.scipy_name))


def best_k_from_scores(scores: Dict[int, float]) -> int:
    """Candidate k with the highest score; first occurrence wins, NaN is ignored."""
    best_k, best_score = None, -np.inf
    for k in sorted(scores):
        score = scores[k]
        if np.isnan(score):
            continue
        if score > best_score:
            best_k, best_score = k, score
    if best_k is None:
        raise InvalidInput("No candidate k produced a defined silhouette score")
    return best_k


def _score_k(X: np.ndarray, k: int, metric: str, fuzziness: float, seed: Optional[int],
             max_iter: int, tolerance: float) -> Tuple[int, float, FitResult]:
    result = fit(X, k, fuzziness=fuzziness, max_iter=max_iter, tolerance=tolerance,
                 metric=metric, seed=seed)
    score = silhouette_validity(X, result.hard_labels, metric)
    if np.isnan(score):
        logger.warning(f"Silhouette undefined for k={k}: hard labels form "
                       f"{len(np.unique(result.hard_labels))} cluster(s)")
    return k, score, result


def select_k(feature_matrix, k_range: Iterable[int] = DEFAULT_K_RANGE,
             metric: str = DEFAULT_METRIC, fuzziness: float = DEFAULT_FUZZINESS,
             seed: Optional[int] = DEFAULT_SEED, max_iter: int = DEFAULT_MAX_ITER,
             tolerance: float = DEFAULT_TOLERANCE, n_jobs: int = 1,
             distance_metric: Optional[str] = None) -> ValidityCurve:
    """
    Scan candidate cluster counts with the silhouette score.

    Parameters
    ----------
    feature_matrix : FeatureMatrix, pd.DataFrame or np.ndarray
        Normalized events x elements matrix, with at least
        ``2 * max(k_range)`` events.
    k_range : iterable of int, default=range(2, 7)
        Contiguous candidate cluster counts, each >= 2.
    metric : str, default="manhattan"
        Distance metric of both the partitions and the silhouette.
    fuzziness : float, default=2.0
        Fuzziness exponent of the partitions.
    seed : int, optional
        Seed shared by every candidate fit.
    max_iter, tolerance
        Convergence parameters of the partitions.
    n_jobs : int, default=1
        Number of parallel workers (joblib). Results do not depend on it.
    distance_metric : str, optional
        Alias of ``metric``; takes precedence when given.

    Returns
    -------
    ValidityCurve
    """
    X = as_feature_array(feature_matrix)
    metric = resolve_metric(metric, distance_metric).name
    ks = validate_k_range(k_range, X.shape[0])

    logger.info(f"Scanning k={ks[0]}..{ks[-1]} with {metric} silhouette")

    if n_jobs == 1:
        outcomes = [_score_k(X, k, metric, fuzziness, seed, max_iter, tolerance) for k in ks]
    else:
        # Each worker gets its own copy of X and the same explicit seed
        outcomes = Parallel(n_jobs=n_jobs)(
            delayed(_score_k)(X.copy(), k, metric, fuzziness, seed, max_iter, tolerance)
            for k in ks
        )

    scores = {k: score for k, score, _ in outcomes}
    best_k = best_k_from_scores(scores)

    for k in ks:
        logger.info(f"k={k}: silhouette={scores[k]:.4f}")
    logger.info(f"Optimal number of clusters (highest silhouette): {best_k}")

    return ValidityCurve(
        scores=tuple((k, scores[k]) for k in ks),
        best_k=best_k,
        metric=metric,
        fuzziness=float(fuzziness),
        seed=seed,
    )
