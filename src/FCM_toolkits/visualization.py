"""
Plotting interface for fuzzy source clustering results.

This class renders the tables produced by the clustering core. It is
accessible through either regimes.plot or regimes.visualization.

Examples
--------
>>> regimes = SourceRegimes(events)
>>> regimes.run(k=3)
>>> # Silhouette curve of the cluster count scan
>>> regimes.plot.plot_validity_curve()
>>> # Stacked source profiles
>>> regimes.plot.plot_source_profiles(kind="stacked")
"""

import numpy as np
import matplotlib.pyplot as plt
import matplotlib.ticker as mticker
import seaborn as sns
from typing import Dict, Optional, Tuple
import os

from .utils import cluster_names, get_elementColor


class ClusterVisualization:
    """
    Visualization interface for source clustering results.

    Parameters
    ----------
    regimes : SourceRegimes
        Parent object holding the results to visualize
    savedir : str, default="./"
        Directory to save plot files
    """

    def __init__(self, regimes, savedir: str = "./"):
        self.regimes = regimes
        self.savedir = savedir
        os.makedirs(savedir, exist_ok=True)

    def _save_figure(self, fig: plt.Figure, filename: str, close: bool = True, **kwargs) -> None:
        kwargs.setdefault('bbox_inches', 'tight')
        kwargs.setdefault('dpi', 300)
        kwargs.setdefault('facecolor', 'white')

        if not any(filename.endswith(ext) for ext in ['.png', '.pdf', '.jpg', '.svg']):
            filename += '.png'

        fig.savefig(os.path.join(self.savedir, filename), **kwargs)

        if close:
            plt.close(fig)

    def plot_validity_curve(self, figsize: Tuple[float, float] = (6, 4),
                            title: Optional[str] = None,
                            filename: Optional[str] = None) -> plt.Figure:
        """Plot the silhouette score of every candidate k, marking the best one."""
        validity = self.regimes.validity
        if validity is None:
            raise ValueError("No validity curve available. Call select_k() first.")

        scores = validity.to_series()
        fig, ax = plt.subplots(figsize=figsize)
        ax.plot(scores.index, scores.values, marker='o', color='tab:blue')
        ax.axvline(validity.best_k, linestyle='--', color='grey')
        ax.xaxis.set_major_locator(mticker.MaxNLocator(integer=True))
        ax.set_xlabel('Number of clusters k')
        ax.set_ylabel(f'Average silhouette width ({validity.metric})')
        ax.grid(axis='y', linestyle='--', alpha=0.3)
        ax.set_title(title or f'Silhouette analysis (best k = {validity.best_k})')

        if filename:
            self._save_figure(fig, filename)

        return fig

    def plot_source_profiles(self, kind: str = "stacked",
                             figsize: Optional[Tuple[float, float]] = None,
                             colors: Optional[Dict[str, str]] = None,
                             label_threshold: float = 0.10,
                             title: Optional[str] = None,
                             filename: Optional[str] = None) -> plt.Figure:
        """
        Plot the fractional contribution of each element to each cluster.

        Parameters
        ----------
        kind : str, default="stacked"
            "stacked" for one 100 % bar per cluster, "dodge" for side by side
            bars per element.
        figsize : tuple, optional
            Figure size (width, height) in inches.
        colors : dict, optional
            Element -> color mapping. Defaults to ``get_elementColor``.
        label_threshold : float, default=0.10
            Stacked bars label elements contributing more than this fraction.
        title : str, optional
            Figure title.
        filename : str, optional
            File name to save the figure under ``savedir``.

        Returns
        -------
        plt.Figure
        """
        table = self.regimes.profile_table
        if table is None:
            raise ValueError("No source profiles available. Call profile() first.")
        if kind not in ("stacked", "dodge"):
            raise ValueError(f"Unknown kind '{kind}'. Use 'stacked' or 'dodge'.")

        contribution = table.contribution.copy()
        contribution.index = cluster_names(table.k)
        if colors is None:
            colors = get_elementColor(elements=table.elements)
        palette = [colors.get(el, '#808080') for el in contribution.columns]

        if figsize is None:
            figsize = (10, 7) if kind == "stacked" else (12, 7)
        fig, ax = plt.subplots(figsize=figsize)

        if kind == "stacked":
            contribution.plot(kind='bar', stacked=True, ax=ax, color=palette,
                              width=0.7, edgecolor='black', linewidth=0.2)
            for i, cluster in enumerate(contribution.index):
                bottom = 0.0
                for el in contribution.columns:
                    value = contribution.loc[cluster, el]
                    if value > label_threshold:
                        ax.text(i, bottom + value / 2, el,
                                ha='center', va='center', fontsize=8)
                    bottom += value
        else:
            contribution.plot(kind='bar', ax=ax, color=palette, alpha=0.8, width=0.85)
            for x in np.arange(0.5, table.k - 1):
                ax.axvline(x, linestyle='--', color='grey')

        ax.yaxis.set_major_formatter(mticker.PercentFormatter(1.0))
        ax.set_xlabel('Cluster')
        ax.set_ylabel('Contribution')
        ax.tick_params(axis='x', rotation=0)
        ax.legend(contribution.columns.tolist(),
                  bbox_to_anchor=(1.02, 1), loc='upper left', title='Element')
        ax.set_title(title or f"Source profiles: {'stacked' if kind == 'stacked' else 'side by side'} (weighted)")
        fig.tight_layout()

        if filename:
            self._save_figure(fig, filename)

        return fig

    def plot_membership_heatmap(self, figsize: Tuple[float, float] = (8, 6),
                                sort: bool = True,
                                filename: Optional[str] = None) -> plt.Figure:
        """Heatmap of the membership matrix, events grouped by primary cluster."""
        result = self.regimes.fit_result
        if result is None:
            raise ValueError("No clustering available. Call fit() first.")

        membership = result.membership_frame(index=self.regimes.feature_matrix.index)
        if sort:
            order = np.lexsort((-np.max(result.membership, axis=1), result.hard_labels))
            membership = membership.iloc[order]

        fig, ax = plt.subplots(figsize=figsize)
        sns.heatmap(membership, ax=ax, cmap='viridis', vmin=0, vmax=1,
                    yticklabels=False, cbar_kws={'label': 'Membership'})
        ax.set_ylabel('Events')
        ax.set_title(f'Fuzzy membership (k = {result.k})')

        if filename:
            self._save_figure(fig, filename)

        return fig

    def plot_cluster_correlations(self, method: str = "pearson",
                                  figsize: Optional[Tuple[float, float]] = None,
                                  filename: Optional[str] = None) -> plt.Figure:
        """Element correlation heatmap of each cluster's primary members."""
        correlations = self.regimes.analysis.cluster_correlations(method=method)
        if not correlations:
            raise ValueError("No cluster has enough members to compute correlations")

        n = len(correlations)
        if figsize is None:
            figsize = (6 * n, 5)
        fig, axes = plt.subplots(1, n, figsize=figsize, squeeze=False)

        for ax, (cluster, corr) in zip(axes[0], correlations.items()):
            mask = np.triu(np.ones_like(corr, dtype=bool), k=1)
            sns.heatmap(corr, mask=mask, ax=ax, cmap='RdBu_r', vmin=-1, vmax=1,
                        square=True, cbar=ax is axes[0][-1],
                        xticklabels=list(corr.columns),
                        yticklabels=list(corr.index))
            ax.set_title(f'Cluster {cluster + 1}')

        fig.tight_layout()

        if filename:
            self._save_figure(fig, filename)

        return fig
