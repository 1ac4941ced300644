import numpy as np
import logging
from typing import List, Dict, Optional, Union

logger = logging.getLogger('FCM_toolkits')

#: Elements tracked in the reference XACT coarse-PM dataset.
DEFAULT_ELEMENTS = ['Cl', 'Ca', 'Si', 'Fe', 'Al', 'K', 'Ti',
                    'Cu', 'Ba', 'Zn', 'Te', 'Br', 'Pd']

# Palette used for element bars in source profile charts
ELEMENT_PALETTE = [
    "#E31A1C", "#008B00", "#6A3D9A", "#FF7F00", "#FFD700",
    "#7EC0EE", "#FB9A99", "#90EE90", "#CAB2D6", "#8B0000",
    "#FDBF6F", "#B3B3B3", "#EEE685", "#B03060", "#FF83FA",
    "#FF1493", "#0000FF", "#36648B", "#00CED1", "#00FF00",
    "#8B8B00", "#CDCD00", "#8B4500",
]


def cluster_names(k: int) -> List[str]:
    """Display names for cluster ids ``0..k-1``.

    >>> cluster_names(3)
    ['Cluster 1', 'Cluster 2', 'Cluster 3']
    """
    return [f"Cluster {i + 1}" for i in range(k)]


def get_elementColor(element: Optional[str] = None,
                     elements: Optional[List[str]] = None) -> Union[str, Dict[str, str]]:
    """
    Get the bar color of an element or the complete element -> color mapping.

    Colors are assigned by position in ``elements`` (default
    ``DEFAULT_ELEMENTS``) so that the same element keeps the same color in
    every chart of a run.

    Parameters
    ----------
    element : str, optional
        Element to get the color for.
    elements : list of str, optional
        Ordered element list of the run.

    Returns
    -------
    str or dict
        A color code if ``element`` is given, otherwise the full mapping.
    """
    elements = list(elements) if elements is not None else list(DEFAULT_ELEMENTS)
    color_dict = {el: ELEMENT_PALETTE[i % len(ELEMENT_PALETTE)]
                  for i, el in enumerate(elements)}

    if element is not None:
        if element in color_dict:
            return color_dict[element]
        logger.warning(f"No specific color found for element '{element}'. Using default gray.")
        return '#808080'

    return color_dict


def to_plain(value):
    """Convert numpy containers and scalars to plain Python objects."""
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, dict):
        return {to_plain(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value
