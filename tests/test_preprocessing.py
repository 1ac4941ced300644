import pytest
import pandas as pd
import numpy as np
from FCM_toolkits import (
    DEFAULT_ELEMENTS,
    FeatureMatrix,
    FeatureMatrixBuilder,
    InvalidInput,
    load_concentration_data,
    min_max_normalize,
    summarize_dataset,
)


def test_builder_uses_default_elements(events):
    """All tracked elements present: they are used in their canonical order."""
    builder = FeatureMatrixBuilder(events)
    assert builder.elements == DEFAULT_ELEMENTS

    fm = builder.build()
    assert isinstance(fm, FeatureMatrix)
    assert fm.n_events == len(events)
    assert fm.n_elements == len(DEFAULT_ELEMENTS)
    assert fm.index.equals(events.index)


def test_builder_falls_back_to_numeric_columns(small_events):
    builder = FeatureMatrixBuilder(small_events.assign(site='urban'))
    assert builder.elements == ['Cl', 'Fe', 'Zn']


def test_builder_custom_elements(events):
    fm = FeatureMatrixBuilder(events, elements=['Fe', 'Cl']).build()
    assert fm.elements == ('Fe', 'Cl')
    np.testing.assert_allclose(fm.raw[:, 0], events['Fe'].values)


def test_builder_missing_element_column(events):
    with pytest.raises(InvalidInput, match="Xe"):
        FeatureMatrixBuilder(events, elements=['Fe', 'Xe'])


def test_builder_rejects_bad_input():
    with pytest.raises(InvalidInput):
        FeatureMatrixBuilder([[1, 2], [3, 4]])
    with pytest.raises(InvalidInput):
        FeatureMatrixBuilder(pd.DataFrame())
    with pytest.raises(InvalidInput, match="unique"):
        FeatureMatrixBuilder(pd.DataFrame({'Fe': [1.0, 2.0]}, index=['a', 'a']))
    with pytest.raises(InvalidInput, match="Duplicated"):
        FeatureMatrixBuilder(pd.DataFrame({'Fe': [1.0, 2.0]}), elements=['Fe', 'Fe'])


def test_missing_values_are_never_silent(small_events):
    """Without an explicit method, the first missing cell is reported."""
    builder = FeatureMatrixBuilder(small_events)
    with pytest.raises(InvalidInput) as excinfo:
        builder.build()
    message = str(excinfo.value)
    assert "'Cl'" in message
    assert "2022-03-03" in message


def test_handle_missing_values(small_events):
    builder = FeatureMatrixBuilder(small_events)

    removed = builder.handle_missing_values(method="remove")
    assert len(removed) == 4
    assert not removed.isna().any().any()

    filled = builder.handle_missing_values(method="median")
    assert filled.loc[pd.Timestamp('2022-03-03'), 'Cl'] == pytest.approx(8.0)

    interpolated = builder.handle_missing_values(method="interpolate")
    assert interpolated.loc[pd.Timestamp('2022-03-03'), 'Cl'] == pytest.approx(6.0)
    assert interpolated.loc[pd.Timestamp('2022-03-04'), 'Fe'] == pytest.approx(2.0)

    with pytest.raises(InvalidInput):
        builder.handle_missing_values(method="drop_everything")


def test_build_normalizes_to_unit_range(small_events):
    fm = FeatureMatrixBuilder(small_events).build(missing="remove")
    assert fm.n_events == 4
    np.testing.assert_allclose(fm.values.min(axis=0), 0.0)
    np.testing.assert_allclose(fm.values.max(axis=0), 1.0)
    np.testing.assert_allclose(fm.values[:, 0], [0.0, 0.2, 0.8, 1.0])
    # Raw values are kept for profiling
    np.testing.assert_allclose(fm.raw[:, 0], [2.0, 4.0, 10.0, 12.0])


def test_build_without_normalization(small_events):
    fm = FeatureMatrixBuilder(small_events).build(normalize=False, missing="median")
    np.testing.assert_array_equal(fm.values, fm.raw)


def test_non_numeric_value_is_reported(small_events):
    data = small_events.fillna(1.0).astype(object)
    data.iloc[1, 1] = 'n/a'
    with pytest.raises(InvalidInput, match="n/a"):
        FeatureMatrixBuilder(data, elements=['Cl', 'Fe', 'Zn']).build()


def test_min_max_normalize_constant_column():
    df = pd.DataFrame({'Cl': [1.0, 3.0, 5.0], 'Pd': [0.2, 0.2, 0.2]})
    scaled = min_max_normalize(df)
    np.testing.assert_allclose(scaled['Cl'], [0.0, 0.5, 1.0])
    np.testing.assert_allclose(scaled['Pd'], [0.0, 0.0, 0.0])
    # Input is left untouched
    assert df['Pd'].iloc[0] == 0.2


def test_feature_matrix_is_immutable(small_events):
    fm = FeatureMatrixBuilder(small_events).build(missing="remove")
    assert not fm.values.flags.writeable
    with pytest.raises(ValueError):
        fm.values[0, 0] = 42.0
    with pytest.raises(AttributeError):
        fm.elements = ('Fe',)


def test_feature_matrix_validation():
    with pytest.raises(InvalidInput, match="columns"):
        FeatureMatrix(values=np.zeros((3, 2)), raw=np.zeros((3, 2)), elements=('Fe',))
    with pytest.raises(InvalidInput, match="non-finite"):
        FeatureMatrix(values=np.array([[0.0, np.inf]]), raw=np.zeros((1, 2)),
                      elements=('Fe', 'Zn'))
    with pytest.raises(InvalidInput, match="empty"):
        FeatureMatrix(values=np.zeros((0, 2)), raw=np.zeros((0, 2)), elements=('Fe', 'Zn'))
    with pytest.raises(InvalidInput):
        FeatureMatrix(values=np.zeros((2, 1)), raw=np.zeros((2, 1)), elements=())


def test_feature_matrix_round_trip_frame(events):
    fm = FeatureMatrix.from_frame(events, elements=['Cl', 'Ca'])
    frame = fm.to_frame(raw=True)
    pd.testing.assert_frame_equal(frame, events[['Cl', 'Ca']], check_freq=False)


def test_load_concentration_data(tmp_path, small_events):
    path = tmp_path / "events.csv"
    small_events.rename_axis('date').reset_index().to_csv(path, index=False)

    loaded = load_concentration_data(path)
    assert isinstance(loaded.index, pd.DatetimeIndex)
    assert list(loaded.columns) == ['Cl', 'Fe', 'Zn']
    assert len(loaded) == len(small_events)

    with pytest.raises(InvalidInput):
        load_concentration_data(tmp_path / "events.parquet")


def test_summarize_dataset(small_events):
    summary = summarize_dataset(small_events)
    assert list(summary.index) == ['Cl', 'Fe', 'Zn']
    assert 'missing_pct' in summary.columns
    assert summary.loc['Cl', 'missing_pct'] == pytest.approx(100 / 6, abs=1e-3)
    assert summary.loc['Zn', 'count'] == 6
