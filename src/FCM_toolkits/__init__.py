"""
FCM_toolkits: fuzzy c-means source-regime tools for particulate-matter data.

This package groups multi-element coarse-PM events into a small number of
fuzzy source clusters and summarizes the elemental signature of each cluster.

Theory
------
Fuzzy c-means partitions the n × p event matrix X into k clusters by
minimizing:
    J = Σᵢ Σc uᵢc^m · d(xᵢ, vc)

where:
    uᵢc: membership of event i in cluster c, Σc uᵢc = 1
    vc: center of cluster c
    d: dissimilarity (L1 distance for "manhattan", squared L2 for "euclidean",
       squared L1 for "manhattan_mean")
    m: fuzziness exponent (m > 1)

The number of clusters is chosen with the average silhouette width of the
hard labels argmax_c uᵢc. Source profiles are membership-weighted mean
concentrations of each cluster's primary members, min-max normalized across
clusters and expressed as fractional contributions.

Key Features
-----------
- Data preparation:
    - Element selection and missing value handling
    - Min-max normalization
- Clustering:
    - Silhouette selection of the number of clusters
    - Seeded, deterministic fuzzy c-means
- Interpretation:
    - Weighted source profiles
    - Membership summaries and ambiguous events
    - Per-cluster element correlations and similarity metrics
- Visualization:
    - Silhouette curve
    - Stacked and side by side source profiles
    - Membership heatmap

Example
-------
>>> from FCM_toolkits import SourceRegimes, load_concentration_data
>>> events = load_concentration_data("coarse_events.csv")
>>> regimes = SourceRegimes(events, savedir="figures/")
>>> regimes.run()
>>> regimes.plot.plot_source_profiles(kind="stacked")

References
----------
1. Bezdek, J.C., 1981. Pattern Recognition with Fuzzy Objective Function
   Algorithms. Plenum Press, New York.
2. Rousseeuw, P.J., 1987. Silhouettes: A graphical aid to the interpretation and
   validation of cluster analysis. Journal of Computational and Applied
   Mathematics 20, 53-65.
"""

from .core import SourceRegimes
from .visualization import ClusterVisualization
from .analysis import ClusterAnalysis, ProfileTable, compute_similarity_metrics, profile
from .clustering import METRICS, FitResult, FuzzyPartitioner, fit, hard_labels
from .selection import ValidityCurve, select_k
from .preprocessing import (
    FeatureMatrix,
    FeatureMatrixBuilder,
    load_concentration_data,
    min_max_normalize,
    summarize_dataset,
)
from .validation import (
    ConvergenceWarning,
    DegenerateClusterWarning,
    InvalidInput,
    NotConverged,
)
from .utils import (
    DEFAULT_ELEMENTS,
    cluster_names,
    get_elementColor,
)

__version__ = "0.1.0"

__all__ = [
    # Core
    'SourceRegimes',
    # Modules
    'ClusterAnalysis',
    'ClusterVisualization',
    'FeatureMatrixBuilder',
    'FuzzyPartitioner',
    # Result types
    'FeatureMatrix',
    'FitResult',
    'ValidityCurve',
    'ProfileTable',
    # Functions
    'fit',
    'select_k',
    'profile',
    'hard_labels',
    'compute_similarity_metrics',
    'load_concentration_data',
    'summarize_dataset',
    'min_max_normalize',
    'METRICS',
    # Errors
    'InvalidInput',
    'NotConverged',
    'ConvergenceWarning',
    'DegenerateClusterWarning',
    # Utils
    'DEFAULT_ELEMENTS',
    'cluster_names',
    'get_elementColor',
]

# Configure logging
import logging
logging.getLogger('FCM_toolkits').addHandler(logging.NullHandler())
