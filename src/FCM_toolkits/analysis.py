import numpy as np
import pandas as pd
from scipy import stats
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple
import logging

from .preprocessing import FeatureMatrix
from .utils import cluster_names, to_plain
from .validation import (
    InvalidInput,
    validate_elements,
    validate_hard_labels,
    validate_matrix,
    validate_membership,
)

# Configure logger
logger = logging.getLogger('FCM_toolkits.analysis')


def compute_similarity_metrics(p1: pd.Series, p2: pd.Series) -> Dict[str, float]:
    """
    Compute similarity metrics between two source profiles.

    Parameters
    ----------
    p1 : pd.Series
        First profile
    p2 : pd.Series
        Second profile

    Returns
    -------
    Dict[str, float]
        Dictionary containing similarity metrics:
        - SID: Standardized Identity Distance
        - PD: Pearson Distance
        - COD: Coefficient of Divergence
    """
    p1 = p1.dropna()
    p2 = p2.dropna()
    common = p1.index.intersection(p2.index)
    # Elements absent from both profiles carry no information
    common = common[(p1[common] + p2[common]) != 0]
    n_elements = len(common)

    if n_elements == 0:
        return {"SID": np.nan, "PD": np.nan, "COD": np.nan, "n_elements": 0}

    p1_common = p1[common]
    p2_common = p2[common]

    diff_square = np.square((p1_common - p2_common) / (p1_common + p2_common))
    sid = np.sqrt(2) / n_elements * np.sqrt(diff_square).sum()

    if n_elements > 1 and p1_common.nunique() > 1 and p2_common.nunique() > 1:
        corr, _ = stats.pearsonr(p1_common, p2_common)
        pd_value = 1 - np.power(corr, 2)
    else:
        pd_value = np.nan

    cod = np.sqrt(np.mean(diff_square))

    return {
        "SID": float(sid),
        "PD": float(pd_value),
        "COD": float(cod),
        "n_elements": n_elements
    }


# =====================================================
# Membership-weighted source profiles
# =====================================================

@dataclass(frozen=True, eq=False)
class ProfileTable:
    """
    Source profile of every cluster.

    Attributes
    ----------
    weighted_mean : pd.DataFrame
        Clusters x elements mean of ``concentration * membership`` over the
        cluster's primary members.
    contribution : pd.DataFrame
        Clusters x elements fractional contribution. Each row sums to 1
        when the cluster has primary members and a positive weighted mean.
        Rows of clusters without primary members are zero.
    cluster_sizes : pd.Series
        Number of primary members per cluster.
    empty_clusters : tuple of int
        Clusters without primary members.
    """
    weighted_mean: pd.DataFrame
    contribution: pd.DataFrame
    cluster_sizes: pd.Series
    empty_clusters: Tuple[int, ...] = field(default_factory=tuple)

    @property
    def elements(self) -> List[str]:
        return self.weighted_mean.columns.tolist()

    @property
    def k(self) -> int:
        return len(self.weighted_mean.index)

    def as_mapping(self) -> Dict[int, Dict[str, Tuple[float, float]]]:
        """``{cluster: {element: (weighted_mean, contribution)}}``"""
        return {
            int(c): {
                el: (float(self.weighted_mean.loc[c, el]), float(self.contribution.loc[c, el]))
                for el in self.elements
            }
            for c in self.weighted_mean.index
        }

    def to_long(self) -> pd.DataFrame:
        """Long table with one row per cluster and element."""
        def melt(df: pd.DataFrame, name: str) -> pd.DataFrame:
            df = df.copy()
            df.index.name = 'cluster'
            df.columns.name = None
            return df.reset_index().melt(id_vars='cluster', var_name='element', value_name=name)

        long = melt(self.weighted_mean, 'weighted_mean')
        long['contribution'] = melt(self.contribution, 'contribution')['contribution'].values
        return long

    def to_dict(self) -> Dict:
        return {
            'elements': self.elements,
            'weighted_mean': to_plain(self.weighted_mean.values),
            'contribution': to_plain(self.contribution.values),
            'cluster_sizes': to_plain(self.cluster_sizes.values),
            'empty_clusters': list(self.empty_clusters),
        }


def _raw_matrix(feature_matrix_raw, elements: Optional[Sequence[str]]) -> Tuple[np.ndarray, List[str]]:
    if isinstance(feature_matrix_raw, FeatureMatrix):
        return np.array(feature_matrix_raw.raw), list(feature_matrix_raw.elements)
    if isinstance(feature_matrix_raw, pd.DataFrame):
        cols = list(elements) if elements is not None else [str(c) for c in feature_matrix_raw.columns]
        missing = [c for c in cols if c not in feature_matrix_raw.columns]
        if missing:
            raise InvalidInput(f"Element column(s) not found in data: {', '.join(missing)}")
        values = validate_matrix(feature_matrix_raw[cols].to_numpy(dtype=float), cols,
                                 feature_matrix_raw.index, name="raw feature matrix")
        return values, cols
    values = validate_matrix(feature_matrix_raw, elements, name="raw feature matrix")
    if elements is None:
        elements = [f"element_{j + 1}" for j in range(values.shape[1])]
    return values, validate_elements(elements)


def profile(feature_matrix_raw, membership, hard_labels, k: int,
            elements: Optional[Sequence[str]] = None) -> ProfileTable:
    """
    Membership-weighted source profiles.

    For each cluster c, only its primary members (hard label == c) are used:

    1. weighted_mean[c, e] = mean over members of (x[e] * u[c])
    2. each element's weighted means are min-max normalized across all k
       clusters, empty ones included at 0 (an element with min == max
       normalizes to 0)
    3. contribution[c, e] = normalized[c, e] / Σe normalized[c, e]

    Clusters without primary members report 0 for every weighted mean and
    contribution. A populated cluster at the minimum of every element has
    no normalized mass, so its contributions are the shares of its own
    weighted means instead.

    Parameters
    ----------
    feature_matrix_raw : FeatureMatrix, pd.DataFrame or np.ndarray
        Concentrations. For a ``FeatureMatrix`` the raw (pre-normalization)
        values are used.
    membership : array-like
        Events x k membership matrix.
    hard_labels : array-like
        Primary cluster of each event (0-based).
    k : int
        Number of clusters.
    elements : sequence of str, optional
        Element names of the array columns.

    Returns
    -------
    ProfileTable
    """
    X, elements = _raw_matrix(feature_matrix_raw, elements)
    n_events = X.shape[0]
    if isinstance(k, bool) or not isinstance(k, (int, np.integer)) or k < 1:
        raise InvalidInput(f"Cluster count k must be a positive integer, got {k!r}")
    u = validate_membership(membership, n_events=n_events, k=k)
    labels = validate_hard_labels(hard_labels, n_events=n_events, k=k)

    weighted = np.zeros((k, X.shape[1]))
    sizes = np.bincount(labels, minlength=k)
    for c in range(k):
        members = labels == c
        if members.any():
            weighted[c] = np.mean(X[members] * u[members, c][:, None], axis=0)

    populated = sizes > 0
    # Empty clusters take part in the normalization with their zero profile
    col_min = weighted.min(axis=0)
    col_range = weighted.max(axis=0) - col_min
    spread = col_range > 0
    normalized = np.zeros_like(weighted)
    normalized[:, spread] = (weighted[:, spread] - col_min[spread]) / col_range[spread]
    normalized[~populated] = 0.0

    # A populated cluster sitting at the minimum of every element falls back
    # to the shares of its own weighted means
    totals = normalized.sum(axis=1)
    positive = np.clip(weighted, 0.0, None)
    fallback = populated & (totals <= 0) & (positive.sum(axis=1) > 0)
    if fallback.any():
        logger.info(f"Cluster(s) {np.flatnonzero(fallback).tolist()} are at the minimum of "
                    "every element; using weighted-mean shares")
        normalized[fallback] = positive[fallback]

    totals = normalized.sum(axis=1, keepdims=True)
    contribution = np.divide(normalized, totals, out=np.zeros_like(normalized),
                             where=totals > 0)

    empty = tuple(int(c) for c in np.flatnonzero(~populated))
    if empty:
        logger.warning(f"Cluster(s) {list(empty)} have no primary members; "
                       "their profiles are zero")

    index = pd.Index(range(k), name='cluster')
    columns = pd.Index(elements, name='element')
    return ProfileTable(
        weighted_mean=pd.DataFrame(weighted, index=index, columns=columns),
        contribution=pd.DataFrame(contribution, index=index, columns=columns),
        cluster_sizes=pd.Series(sizes, index=index, name='n_events'),
        empty_clusters=empty,
    )


# =====================================================
# Main analysis class
# =====================================================

class ClusterAnalysis:
    """
    Statistical interpretation of a fitted source clustering.

    Provides methods for:
    - Membership confidence summaries
    - Per-cluster element correlations
    - Testing element differences between clusters
    - Comparing cluster source profiles
    """

    def __init__(self, regimes):
        self.regimes = regimes

    def _require_fit(self):
        if self.regimes.fit_result is None:
            raise ValueError("No clustering available. Call fit() first.")
        return self.regimes.fit_result

    def membership_summary(self, ambiguity_threshold: float = 0.5) -> pd.DataFrame:
        """
        Summarize the membership of each cluster's primary members.

        Parameters
        ----------
        ambiguity_threshold : float, default=0.5
            Events whose primary membership is below this value are counted
            as ambiguous.

        Returns
        -------
        pd.DataFrame
            One row per cluster with the member count and the mean, min and
            max primary membership.
        """
        result = self._require_fit()
        u = np.asarray(result.membership)
        labels = np.asarray(result.hard_labels)
        primary = u[np.arange(len(labels)), labels]

        rows = []
        for c in range(result.k):
            members = primary[labels == c]
            rows.append({
                'n_events': len(members),
                'mean_membership': members.mean() if len(members) else np.nan,
                'min_membership': members.min() if len(members) else np.nan,
                'max_membership': members.max() if len(members) else np.nan,
                'n_ambiguous': int((members < ambiguity_threshold).sum()),
            })
        return pd.DataFrame(rows, index=pd.Index(range(result.k), name='cluster'))

    def cluster_correlations(self, method: str = "pearson",
                             raw: bool = False) -> Dict[int, pd.DataFrame]:
        """
        Element correlation matrix within each cluster's primary members.

        Parameters
        ----------
        method : str, default="pearson"
            Any method accepted by ``pd.DataFrame.corr``.
        raw : bool, default False
            Use raw concentrations instead of normalized values.

        Returns
        -------
        dict
            Cluster id -> correlation matrix. Clusters with fewer than two
            members are skipped.
        """
        result = self._require_fit()
        data = self.regimes.feature_matrix.to_frame(raw=raw)
        labels = np.asarray(result.hard_labels)

        correlations = {}
        for c in range(result.k):
            members = data[labels == c]
            if len(members) < 2:
                logger.warning(f"Cluster {c} has {len(members)} member(s); correlation skipped")
                continue
            correlations[c] = members.corr(method=method)
        return correlations

    def test_cluster_differences(self) -> pd.DataFrame:
        """
        Kruskal-Wallis test of each element across clusters.

        Returns
        -------
        pd.DataFrame
            Statistic and p-value per element. NaN where the test is undefined
            (fewer than two populated clusters or identical values).
        """
        result = self._require_fit()
        data = self.regimes.feature_matrix.to_frame()
        labels = np.asarray(result.hard_labels)
        populated = [c for c in range(result.k) if (labels == c).any()]

        rows = {}
        for element in data.columns:
            groups = [data.loc[labels == c, element].values for c in populated]
            if len(groups) < 2:
                rows[element] = {'statistic': np.nan, 'p_value': np.nan}
                continue
            try:
                statistic, p_value = stats.kruskal(*groups)
            except ValueError as e:
                logger.warning(f"Kruskal-Wallis undefined for {element}: {e}")
                statistic, p_value = np.nan, np.nan
            rows[element] = {'statistic': statistic, 'p_value': p_value}

        table = pd.DataFrame.from_dict(rows, orient='index')
        table.index.name = 'element'
        table['significant'] = table['p_value'] < 0.05
        return table

    def profile_similarity(self, metric: str = "PD") -> pd.DataFrame:
        """
        Pairwise distance between cluster source profiles.

        Parameters
        ----------
        metric : str, default="PD"
            "SID", "PD" or "COD", see ``compute_similarity_metrics``.

        Returns
        -------
        pd.DataFrame
            Clusters x clusters distance matrix.
        """
        if metric not in ("SID", "PD", "COD"):
            raise ValueError(f"Unknown similarity metric '{metric}'. Use SID, PD or COD.")
        table = self.regimes.profile_table
        if table is None:
            raise ValueError("No source profiles available. Call profile() first.")

        profiles = table.weighted_mean
        names = profiles.index
        distance = pd.DataFrame(index=names, columns=names, dtype=float)
        for i in names:
            for j in names:
                distance.loc[i, j] = compute_similarity_metrics(profiles.loc[i], profiles.loc[j])[metric]
        return distance
