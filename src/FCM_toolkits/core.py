import numpy as np
import pandas as pd
from pathlib import Path
from typing import Iterable, Optional, Sequence, Union
import logging

from .preprocessing import FeatureMatrix, FeatureMatrixBuilder
from .clustering import (
    DEFAULT_FUZZINESS,
    DEFAULT_MAX_ITER,
    DEFAULT_METRIC,
    DEFAULT_SEED,
    DEFAULT_TOLERANCE,
    FitResult,
    fit,
    get_metric,
)
from .selection import DEFAULT_K_RANGE, ValidityCurve, select_k
from .analysis import ClusterAnalysis, ProfileTable, profile
from .visualization import ClusterVisualization
from .utils import cluster_names

logger = logging.getLogger('FCM_toolkits.core')


class SourceRegimes:
    """
    Fuzzy source-regime analysis of multi-element particulate-matter events.

    This class ties together the three stages of the analysis:

    1. ``select_k``: silhouette scan of candidate cluster counts (advisory)
    2. ``fit``: fuzzy c-means partition with a fixed k
    3. ``profile``: membership-weighted source profiles

    Every stage returns an immutable result object which is also kept on the
    instance (``validity``, ``fit_result``, ``profile_table``). Re-fitting
    clears the downstream profile.

    Attributes
    ----------
    feature_matrix : FeatureMatrix
        Normalized events x elements matrix (raw values kept for profiling).
    plot : ClusterVisualization
        Plotting interface:
        >>> regimes.plot.plot_validity_curve()
        >>> regimes.plot.plot_source_profiles()
    visualization : ClusterVisualization
        Same as plot, provided for compatibility.
    analysis : ClusterAnalysis
        Statistical interpretation tools.

    Examples
    --------
    >>> from FCM_toolkits import SourceRegimes, load_concentration_data
    >>> events = load_concentration_data("coarse_events.csv")
    >>> regimes = SourceRegimes(events)
    >>> regimes.select_k(range(2, 7)).best_k
    3
    >>> regimes.fit(k=3)
    >>> regimes.profile().contribution
    """

    def __init__(self, data: Optional[pd.DataFrame] = None,
                 elements: Optional[Sequence[str]] = None,
                 savedir: str = "./",
                 metric: str = DEFAULT_METRIC,
                 fuzziness: float = DEFAULT_FUZZINESS,
                 seed: Optional[int] = DEFAULT_SEED,
                 max_iter: int = DEFAULT_MAX_ITER,
                 tolerance: float = DEFAULT_TOLERANCE,
                 missing: Optional[str] = None,
                 feature_matrix: Optional[FeatureMatrix] = None):
        """
        Parameters
        ----------
        data : pd.DataFrame, optional
            Event table, events as rows (timestamp index), elements as columns.
        elements : sequence of str, optional
            Elements to cluster on, see ``FeatureMatrixBuilder``.
        savedir : str, default current path
            Directory to save figures and result tables.
        metric : str, default "manhattan"
            Distance metric shared by selection and fitting: "manhattan",
            "euclidean" or "manhattan_mean".
        fuzziness : float, default 2.0
            Fuzziness exponent m.
        seed : int, default 321
            Seed of every center initialization.
        max_iter : int, default 100
        tolerance : float, default 1e-5
        missing : str, optional
            Missing value method of ``FeatureMatrixBuilder.build``. If None,
            missing values raise ``InvalidInput``.
        feature_matrix : FeatureMatrix, optional
            Prebuilt matrix, used instead of ``data``.
        """
        if feature_matrix is None:
            if data is None:
                raise ValueError("Either data or feature_matrix must be provided")
            feature_matrix = FeatureMatrixBuilder(data, elements=elements).build(missing=missing)
        elif not isinstance(feature_matrix, FeatureMatrix):
            raise TypeError("feature_matrix must be a FeatureMatrix")

        self.feature_matrix = feature_matrix
        self.elements = list(feature_matrix.elements)
        self.savedir = savedir

        self.metric = get_metric(metric).name
        self.fuzziness = fuzziness
        self.seed = seed
        self.max_iter = max_iter
        self.tolerance = tolerance

        self.analysis = ClusterAnalysis(self)
        self.visualization = ClusterVisualization(self, savedir=savedir)
        # Use visualization as the plotting backend but expose it through plot
        self.plot = self.visualization

        self._init_results()

    def _init_results(self):
        """Initialize result containers with None values."""
        self.validity = self.fit_result = self.profile_table = None

    @classmethod
    def from_feature_matrix(cls, feature_matrix: FeatureMatrix, **kwargs) -> "SourceRegimes":
        """Create an instance from an already built ``FeatureMatrix``."""
        return cls(feature_matrix=feature_matrix, **kwargs)

    @property
    def k(self) -> Optional[int]:
        return self.fit_result.k if self.fit_result is not None else None

    def select_k(self, k_range: Iterable[int] = DEFAULT_K_RANGE, n_jobs: int = 1) -> ValidityCurve:
        """
        Scan candidate cluster counts with the silhouette score.

        Parameters
        ----------
        k_range : iterable of int, default range(2, 7)
        n_jobs : int, default 1
            Parallel workers for the independent fits.

        Returns
        -------
        ValidityCurve
        """
        self.validity = select_k(self.feature_matrix, k_range=k_range, metric=self.metric,
                                 fuzziness=self.fuzziness, seed=self.seed,
                                 max_iter=self.max_iter, tolerance=self.tolerance,
                                 n_jobs=n_jobs)
        return self.validity

    def fit(self, k: Optional[int] = None, strict: bool = False) -> FitResult:
        """
        Fit the fuzzy partition.

        Parameters
        ----------
        k : int, optional
            Number of clusters. Defaults to the best k of the last
            ``select_k`` run; the selection is advisory and any k may be
            given instead.
        strict : bool, default False
            Raise ``NotConverged`` when ``max_iter`` is reached.

        Returns
        -------
        FitResult
        """
        if k is None:
            if self.validity is None:
                raise ValueError("k must be given when select_k() has not been run")
            k = self.validity.best_k
            logger.info(f"Using the selected number of clusters k={k}")
        elif self.validity is not None and k != self.validity.best_k:
            logger.info(f"Fitting k={k} instead of the selected k={self.validity.best_k}")

        self.fit_result = fit(self.feature_matrix, k, fuzziness=self.fuzziness,
                              max_iter=self.max_iter, tolerance=self.tolerance,
                              metric=self.metric, seed=self.seed, strict=strict)
        self.profile_table = None
        return self.fit_result

    def profile(self) -> ProfileTable:
        """Compute the membership-weighted source profiles of the current fit."""
        if self.fit_result is None:
            raise ValueError("No clustering available. Call fit() first.")
        self.profile_table = profile(self.feature_matrix, self.fit_result.membership,
                                     self.fit_result.hard_labels, self.fit_result.k)
        return self.profile_table

    def run(self, k: Optional[int] = None, k_range: Iterable[int] = DEFAULT_K_RANGE,
            n_jobs: int = 1) -> ProfileTable:
        """
        Run selection, fit and profiling in sequence.

        The selection always runs (its curve is kept for reporting); ``k``
        overrides its recommendation for the final fit.
        """
        self.select_k(k_range=k_range, n_jobs=n_jobs)
        self.fit(k=k)
        return self.profile()

    def results_frame(self) -> pd.DataFrame:
        """
        Events with their normalized concentrations, primary cluster and memberships.

        The ``cluster`` column is 1-based to match the ``Cluster 1..k``
        membership column names.
        """
        if self.fit_result is None:
            raise ValueError("No clustering available. Call fit() first.")
        df = self.feature_matrix.to_frame()
        df['cluster'] = np.asarray(self.fit_result.hard_labels) + 1
        memberships = self.fit_result.membership_frame(index=df.index)
        return pd.concat([df, memberships], axis=1)

    def save_results(self, path: Union[str, Path]) -> Path:
        """
        Save the result tables.

        Parameters
        ----------
        path : str or Path
            An ``.xlsx`` file (one sheet per table) or a directory (one csv
            per table).

        Returns
        -------
        Path
            The written file or directory.
        """
        tables = {}
        if self.validity is not None:
            tables['validity'] = self.validity.to_series().to_frame()
        if self.fit_result is not None:
            tables['events'] = self.results_frame()
            tables['centers'] = self.fit_result.centers_frame(self.elements)
        if self.profile_table is not None:
            tables['profiles'] = self.profile_table.to_long()
        if not tables:
            raise ValueError("Nothing to save. Run select_k(), fit() or profile() first.")

        path = Path(path)
        if path.suffix.lower() == '.xlsx':
            path.parent.mkdir(parents=True, exist_ok=True)
            with pd.ExcelWriter(path, engine='openpyxl') as writer:
                for name, table in tables.items():
                    table.to_excel(writer, sheet_name=name)
        else:
            path.mkdir(parents=True, exist_ok=True)
            for name, table in tables.items():
                table.to_csv(path / f"{name}.csv")

        logger.info(f"Saved {', '.join(tables)} to {path}")
        return path

    def summary(self) -> pd.DataFrame:
        """Cluster sizes, mean primary membership and dominant elements."""
        if self.fit_result is None:
            raise ValueError("No clustering available. Call fit() first.")
        table = self.profile_table if self.profile_table is not None else self.profile()
        summary = self.analysis.membership_summary()[['n_events', 'mean_membership']].copy()
        summary['top_elements'] = [
            ', '.join(table.contribution.loc[c].nlargest(3).index) for c in summary.index
        ]
        summary.index = cluster_names(self.fit_result.k)
        return summary
