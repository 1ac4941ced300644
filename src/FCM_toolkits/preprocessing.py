"""Feature matrix preparation for fuzzy source clustering.

This module is the thin boundary between event tables produced upstream
(seasonal splitting, percentile-threshold event extraction and multi-source
merging happen elsewhere) and the clustering core. It provides:

- Selection of the tracked element columns
- Explicit handling of missing values (never silent)
- Per-element min-max normalization to [0, 1]
- The immutable ``FeatureMatrix`` value object consumed by the core

Example
-------
>>> from FCM_toolkits import FeatureMatrixBuilder
>>> builder = FeatureMatrixBuilder(events, elements=["Cl", "Ca", "Fe"])
>>> fm = builder.build()
>>> fm.values.min(axis=0), fm.values.max(axis=0)
(array([0., 0., 0.]), array([1., 1., 1.]))
"""

import numpy as np
import pandas as pd
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Union
from pathlib import Path
import logging

from .validation import InvalidInput, validate_elements, validate_matrix
from .utils import DEFAULT_ELEMENTS

logger = logging.getLogger('FCM_toolkits.preprocessing')


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr = np.array(arr, dtype=float, copy=True)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class FeatureMatrix:
    """
    Events x elements matrix handed to the clustering core.

    Attributes
    ----------
    values : np.ndarray
        Min-max normalized concentrations, shape (n_events, n_elements).
    raw : np.ndarray
        Concentrations before normalization, same shape as ``values``.
    elements : tuple of str
        Element names; their order is the column order of both arrays.
    index : pd.Index
        Event keys (usually timestamps), one per row.
    """
    values: np.ndarray
    raw: np.ndarray
    elements: tuple
    index: pd.Index = field(default=None)

    def __post_init__(self):
        elements = tuple(validate_elements(self.elements))
        index = self.index
        values = validate_matrix(self.values, elements, index, name="feature matrix")
        raw = validate_matrix(self.raw, elements, index, name="raw feature matrix")
        if raw.shape != values.shape:
            raise InvalidInput(
                f"Raw matrix shape {raw.shape} does not match normalized shape {values.shape}"
            )
        if index is None:
            index = pd.RangeIndex(values.shape[0])
        else:
            index = pd.Index(index)
        if len(index) != values.shape[0]:
            raise InvalidInput(
                f"Index has {len(index)} labels but the matrix has {values.shape[0]} rows"
            )
        object.__setattr__(self, 'values', _readonly(values))
        object.__setattr__(self, 'raw', _readonly(raw))
        object.__setattr__(self, 'elements', elements)
        object.__setattr__(self, 'index', index)

    @property
    def n_events(self) -> int:
        return self.values.shape[0]

    @property
    def n_elements(self) -> int:
        return self.values.shape[1]

    def to_frame(self, raw: bool = False) -> pd.DataFrame:
        """Return the normalized (or raw) matrix as a DataFrame."""
        data = self.raw if raw else self.values
        return pd.DataFrame(np.array(data), index=self.index, columns=list(self.elements))

    @classmethod
    def from_frame(cls, data: pd.DataFrame, elements: Optional[Sequence[str]] = None,
                   normalize: bool = True) -> "FeatureMatrix":
        """
        Build a feature matrix from an already cleaned DataFrame.

        Parameters
        ----------
        data : pd.DataFrame
            Events as rows, elements as columns.
        elements : sequence of str, optional
            Columns to use, in order. Defaults as in ``FeatureMatrixBuilder``.
        normalize : bool, default True
            Min-max normalize each column. If False, ``values`` equals ``raw``.
        """
        return FeatureMatrixBuilder(data, elements=elements).build(normalize=normalize)


def min_max_normalize(data: pd.DataFrame) -> pd.DataFrame:
    """
    Scale each column independently to [0, 1].

    Constant columns have no range and are mapped to 0.

    Parameters
    ----------
    data : pd.DataFrame
        Numeric data without missing values.

    Returns
    -------
    pd.DataFrame
        Normalized copy of ``data``.
    """
    col_min = data.min()
    col_range = data.max() - col_min
    constant = col_range == 0
    if constant.any():
        logger.warning(
            f"Constant column(s) {', '.join(map(str, col_range[constant].index))} "
            "cannot be min-max scaled; set to 0"
        )
    scaled = (data - col_min) / col_range.where(~constant, 1.0)
    scaled.loc[:, constant[constant].index] = 0.0
    return scaled


class FeatureMatrixBuilder:
    """
    Prepares an event table for clustering.

    This class handles:
    - Selection and ordering of element columns
    - Conversion to numeric values
    - Explicit missing value handling
    - Min-max normalization

    Parameters
    ----------
    data : pd.DataFrame
        Event table with events as rows (indexed by timestamp) and element
        concentrations as columns, in µg/m³.
    elements : sequence of str, optional
        Elements to cluster on. Defaults to ``DEFAULT_ELEMENTS`` when all of
        them are present, otherwise to every numeric column.
    """

    def __init__(self, data: pd.DataFrame, elements: Optional[Sequence[str]] = None):
        self.data = data
        self._validate_input()
        self.elements = self._resolve_elements(elements)

    def _validate_input(self) -> None:
        """Validate input data format and content."""
        if not isinstance(self.data, pd.DataFrame):
            raise InvalidInput("Input data must be a pandas DataFrame")
        if self.data.empty:
            raise InvalidInput("Input data cannot be empty")
        if self.data.index.has_duplicates:
            dup = self.data.index[self.data.index.duplicated()][0]
            raise InvalidInput(f"Event keys must be unique; {dup!r} appears more than once")

    def _resolve_elements(self, elements: Optional[Sequence[str]]) -> List[str]:
        if elements is None:
            if all(el in self.data.columns for el in DEFAULT_ELEMENTS):
                elements = DEFAULT_ELEMENTS
            else:
                elements = self.data.select_dtypes(include=[np.number]).columns.tolist()
        elements = validate_elements(elements)
        missing = [el for el in elements if el not in self.data.columns]
        if missing:
            raise InvalidInput(f"Element column(s) not found in data: {', '.join(missing)}")
        return elements

    def select(self) -> pd.DataFrame:
        """Return the element columns as numeric data, in element order."""
        subset = self.data[self.elements]
        numeric = subset.apply(pd.to_numeric, errors='coerce')
        coerced = numeric.isna() & subset.notna()
        if coerced.any().any():
            col = coerced.any()[coerced.any()].index[0]
            row = coerced.index[coerced[col]][0]
            raise InvalidInput(
                f"Non-numeric value {subset.loc[row, col]!r} at row {row!r}, column {col!r}"
            )
        return numeric.astype(float)

    def handle_missing_values(self, method: str = "remove", **kwargs) -> pd.DataFrame:
        """
        Resolve missing values explicitly.

        Parameters
        ----------
        method : str
            Method to handle missing values:
            - "remove": Remove events with any missing element
            - "interpolate": Interpolate missing values along the event axis
            - "median": Fill with element medians
        **kwargs : dict
            Additional parameters specific to each method

        Returns
        -------
        pd.DataFrame
            Element data with missing values handled.
        """
        data = self.select()
        n_missing = int(data.isna().sum().sum())

        if method == "remove":
            result = data.dropna(**kwargs)
        elif method == "interpolate":
            result = data.interpolate(method=kwargs.get('interpolation_method', 'linear'))
            result = result.bfill().ffill()
        elif method == "median":
            result = data.fillna(data.median())
        else:
            raise InvalidInput(f"Unknown missing value handling method: {method}")

        if n_missing:
            logger.info(
                f"Resolved {n_missing} missing value(s) with method '{method}' "
                f"({len(data) - len(result)} event(s) removed)"
            )
        return result

    def build(self, normalize: bool = True, missing: Optional[str] = None,
              **kwargs) -> FeatureMatrix:
        """
        Build the feature matrix.

        Parameters
        ----------
        normalize : bool, default True
            Min-max normalize each element to [0, 1].
        missing : str, optional
            Missing value method passed to ``handle_missing_values``. If None,
            any missing value raises ``InvalidInput``.

        Returns
        -------
        FeatureMatrix
        """
        if missing is None:
            raw = self.select()
        else:
            raw = self.handle_missing_values(method=missing, **kwargs)
            if raw.empty:
                raise InvalidInput("No events left after handling missing values")

        # FeatureMatrix reports the first offending cell
        validate_matrix(raw.values, self.elements, raw.index)

        values = min_max_normalize(raw) if normalize else raw
        logger.debug(f"Built feature matrix: {raw.shape[0]} events x {raw.shape[1]} elements")
        return FeatureMatrix(values=values.values, raw=raw.values,
                             elements=tuple(self.elements), index=raw.index)


def load_concentration_data(file_path: Union[str, Path],
                            date_column: str = 'date',
                            date_format: Optional[str] = None,
                            sep: str = ',') -> pd.DataFrame:
    """
    Load an event table from a CSV or Excel file with proper date parsing.

    Parameters
    ----------
    file_path : str or Path
        Path to the data file (CSV or Excel)
    date_column : str, default='date'
        Name of the column containing event timestamps
    date_format : str, optional
        Date format string for parsing, if None, tries to infer
    sep : str, default=','
        Separator for CSV files

    Returns
    -------
    pd.DataFrame
        DataFrame with events as rows and elements as columns, with a DatetimeIndex

    Examples
    --------
    >>> events = load_concentration_data("02_XACT_Coarse_Events.csv")
    >>> events.head()
    """
    file_path = Path(file_path)

    try:
        if file_path.suffix.lower() == '.csv':
            df = pd.read_csv(file_path, sep=sep)
        elif file_path.suffix.lower() in ['.xlsx', '.xls']:
            df = pd.read_excel(file_path)
        else:
            raise InvalidInput(f"Unsupported file format: {file_path.suffix}")

        if date_column in df.columns:
            if date_format:
                df[date_column] = pd.to_datetime(df[date_column], format=date_format)
            else:
                df[date_column] = pd.to_datetime(df[date_column])
            df = df.set_index(date_column)
        else:
            logger.warning(f"Date column '{date_column}' not found in data")

        return df

    except Exception as e:
        logger.error(f"Error loading data: {str(e)}")
        raise


def summarize_dataset(data: pd.DataFrame) -> pd.DataFrame:
    """
    Generate a summary of an event table.

    Parameters
    ----------
    data : pd.DataFrame
        Input data with events as rows and elements as columns

    Returns
    -------
    pd.DataFrame
        Summary statistics for each element, including the share of missing
        values and the coefficient of variation.
    """
    numeric = data.select_dtypes(include=[np.number])
    summary = numeric.describe().T
    summary['missing_pct'] = numeric.isna().mean() * 100
    summary['cv'] = summary['std'] / summary['mean']

    cols = ['count', 'mean', 'std', 'cv', 'min', '25%', '50%', '75%', 'max', 'missing_pct']
    return summary[cols].round(4)
