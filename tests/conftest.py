import os
import sys
import pytest
import pandas as pd
import numpy as np
import matplotlib

# Add src directory to Python path
src_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src'))
sys.path.insert(0, src_dir)

from FCM_toolkits import DEFAULT_ELEMENTS

# Use non-interactive backend for testing
matplotlib.use('Agg')


@pytest.fixture
def scenario_matrix():
    """Two tight groups of three events, far apart."""
    return np.array([[0, 0], [0, 1], [1, 0],
                     [10, 10], [10, 11], [11, 10]], dtype=float)


@pytest.fixture
def three_blobs():
    """Three well separated Gaussian blobs of 20 points each."""
    rng = np.random.default_rng(0)
    centers = np.array([[0.0, 0.0], [10.0, 0.0], [5.0, 8.66]])
    X = np.vstack([c + rng.normal(0, 0.3, size=(20, 2)) for c in centers])
    truth = np.repeat([0, 1, 2], 20)
    return X, truth


@pytest.fixture
def events():
    """
    Coarse-PM event table with three source types:
    sea salt (Cl), mineral dust (Ca, Si, Al, Fe, Ti) and traffic (Cu, Zn, Ba, Br).
    """
    rng = np.random.default_rng(42)
    signatures = [
        ['Cl'],
        ['Ca', 'Si', 'Al', 'Fe', 'Ti'],
        ['Cu', 'Zn', 'Ba', 'Br'],
    ]
    rows = []
    for high in signatures:
        for _ in range(10):
            row = {el: 0.1 + rng.uniform(0, 0.02) for el in DEFAULT_ELEMENTS}
            for el in high:
                row[el] = 1.0 + rng.uniform(0, 0.1)
            rows.append(row)

    index = pd.date_range(start='2021-01-01', periods=len(rows), freq='D', name='date')
    return pd.DataFrame(rows, index=index, columns=DEFAULT_ELEMENTS)


@pytest.fixture
def small_events():
    """Small event table with a few missing values."""
    dates = pd.date_range(start='2022-03-01', periods=6, freq='D')
    return pd.DataFrame({
        'Cl': [2.0, 4.0, np.nan, 8.0, 10.0, 12.0],
        'Fe': [0.5, 0.5, 1.5, np.nan, 2.5, 3.5],
        'Zn': [0.01, 0.02, 0.03, 0.04, 0.05, 0.06],
    }, index=dates)
