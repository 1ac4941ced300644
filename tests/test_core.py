import pytest
import pandas as pd
import numpy as np
import matplotlib.pyplot as plt
from FCM_toolkits import (
    ClusterVisualization,
    FeatureMatrixBuilder,
    InvalidInput,
    SourceRegimes,
)


@pytest.fixture
def regimes(events, tmp_path):
    return SourceRegimes(events, savedir=str(tmp_path / "figures"))


@pytest.fixture
def fitted(regimes):
    regimes.run(k_range=range(2, 5))
    return regimes


# ================ CORE FUNCTIONALITY TESTS ================

def test_initialization(regimes, tmp_path):
    assert regimes.feature_matrix.n_events == 30
    assert regimes.metric == "manhattan"
    assert regimes.k is None
    assert regimes.validity is None and regimes.fit_result is None
    assert isinstance(regimes.plot, ClusterVisualization)
    assert regimes.plot is regimes.visualization
    assert (tmp_path / "figures").is_dir()


def test_initialization_errors(events):
    with pytest.raises(ValueError):
        SourceRegimes()
    with pytest.raises(TypeError):
        SourceRegimes(feature_matrix=events)
    with pytest.raises(InvalidInput):
        SourceRegimes(events, metric="cosine")


def test_from_feature_matrix(events):
    fm = FeatureMatrixBuilder(events, elements=['Cl', 'Ca', 'Cu']).build()
    regimes = SourceRegimes.from_feature_matrix(fm, metric="euclidean")
    assert regimes.elements == ['Cl', 'Ca', 'Cu']
    assert regimes.metric == "euclidean"


def test_run_pipeline(fitted):
    assert fitted.validity.best_k == 3
    assert fitted.k == 3
    assert fitted.profile_table.k == 3
    assert sorted(fitted.fit_result.cluster_sizes.tolist()) == [10, 10, 10]


def test_fit_requires_k_or_selection(regimes):
    with pytest.raises(ValueError, match="select_k"):
        regimes.fit()
    with pytest.raises(ValueError, match="fit"):
        regimes.profile()


def test_fit_overrides_selected_k(fitted):
    """The selection is advisory: an explicit k wins."""
    profiles = fitted.profile_table
    result = fitted.fit(k=2)
    assert result.k == 2
    assert fitted.validity.best_k == 3
    # Re-fitting invalidates the previous profile
    assert fitted.profile_table is None
    assert fitted.profile() is not profiles
    assert fitted.profile_table.k == 2


def test_run_with_fixed_k(regimes):
    table = regimes.run(k=4, k_range=range(2, 5))
    assert regimes.validity.best_k == 3
    assert table.k == 4


def test_results_frame(fitted):
    df = fitted.results_frame()
    assert len(df) == 30
    assert df.index.equals(fitted.feature_matrix.index)
    assert set(df['cluster']) == {1, 2, 3}
    members = df[['Cluster 1', 'Cluster 2', 'Cluster 3']]
    np.testing.assert_allclose(members.sum(axis=1), 1.0, atol=1e-9)


def test_summary(fitted):
    summary = fitted.summary()
    assert list(summary.index) == ['Cluster 1', 'Cluster 2', 'Cluster 3']
    assert list(summary.columns) == ['n_events', 'mean_membership', 'top_elements']
    assert summary['n_events'].sum() == 30
    assert all(len(top.split(', ')) == 3 for top in summary['top_elements'])


def test_save_results_csv(fitted, tmp_path):
    out = fitted.save_results(tmp_path / "results")
    for name in ['validity', 'events', 'centers', 'profiles']:
        assert (out / f"{name}.csv").exists()

    profiles = pd.read_csv(out / "profiles.csv", index_col=0)
    assert len(profiles) == 3 * 13
    contributions = profiles.groupby('cluster')['contribution'].sum()
    np.testing.assert_allclose(contributions, 1.0, atol=1e-9)


def test_save_results_excel(fitted, tmp_path):
    out = fitted.save_results(tmp_path / "results.xlsx")
    assert out.exists()
    sheets = pd.read_excel(out, sheet_name=None)
    assert set(sheets) == {'validity', 'events', 'centers', 'profiles'}


def test_save_results_requires_results(regimes, tmp_path):
    with pytest.raises(ValueError):
        regimes.save_results(tmp_path / "results")


# ================ VISUALIZATION TESTS ================

def test_plot_validity_curve(fitted, tmp_path):
    fig = fitted.plot.plot_validity_curve(filename="validity")
    assert isinstance(fig, plt.Figure)
    assert (tmp_path / "figures" / "validity.png").exists()


@pytest.mark.parametrize("kind", ["stacked", "dodge"])
def test_plot_source_profiles(fitted, kind):
    fig = fitted.plot.plot_source_profiles(kind=kind)
    assert isinstance(fig, plt.Figure)
    ax = fig.axes[0]
    assert len(ax.get_xticklabels()) == 3
    plt.close(fig)


def test_plot_source_profiles_labels_elements_verbatim(fitted):
    fig = fitted.plot.plot_source_profiles(kind="stacked")
    legend = [t.get_text() for t in fig.axes[0].get_legend().get_texts()]
    assert legend == fitted.elements
    assert not any('$' in label for label in legend)
    plt.close(fig)


def test_plot_source_profiles_invalid_kind(fitted):
    with pytest.raises(ValueError):
        fitted.plot.plot_source_profiles(kind="pie")


def test_plot_membership_heatmap(fitted):
    fig = fitted.plot.plot_membership_heatmap()
    assert isinstance(fig, plt.Figure)
    plt.close(fig)


def test_plot_cluster_correlations(fitted, tmp_path):
    fig = fitted.plot.plot_cluster_correlations(filename="correlations.pdf")
    assert isinstance(fig, plt.Figure)
    assert (tmp_path / "figures" / "correlations.pdf").exists()


def test_plots_require_results(regimes):
    with pytest.raises(ValueError):
        regimes.plot.plot_validity_curve()
    with pytest.raises(ValueError):
        regimes.plot.plot_source_profiles()
    with pytest.raises(ValueError):
        regimes.plot.plot_membership_heatmap()
