"""
Datasets for pdlnm

This module loads daily temperature-mortality time series used by the analysis
workflow. The London series (1993-2006) is expected as ``london.csv`` in this
directory or at a caller-supplied path.
"""

import numpy as np
import pandas as pd
from pathlib import Path
from typing import Optional, Sequence, Union

from ..exceptions import InvalidArgument

# Get the data directory path
_DATA_DIR = Path(__file__).parent

REQUIRED_COLUMNS = ('date', 'tmean', 'death', 'dow')


def load_timeseries(path: Union[str, Path],
                    required: Sequence[str] = REQUIRED_COLUMNS,
                    sep: str = ',') -> pd.DataFrame:
    """
    Load a daily time series from a delimited file.

    Parameters
    ----------
    path : str or Path
        File to read
    required : sequence of str
        Columns that must be present
    sep : str, default ','
        Field delimiter

    Returns
    -------
    pd.DataFrame
        The series in file order, with ``date`` parsed as datetime and a
        1-based ``time`` index added when the file has none

    Raises
    ------
    FileNotFoundError
        If the file does not exist
    InvalidArgument
        If required columns are missing
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Dataset file not found: {path}")

    df = pd.read_csv(path, sep=sep)

    # Files written by R keep the row names as an unnamed first column
    unnamed = [c for c in df.columns if str(c).startswith('Unnamed')]
    df = df.drop(columns=unnamed)

    missing = [c for c in required if c not in df.columns]
    if missing:
        raise InvalidArgument(f"{path.name} is missing required columns {missing}")

    if 'date' in df.columns:
        df['date'] = pd.to_datetime(df['date'])

    if 'time' not in df.columns:
        df['time'] = np.arange(1, len(df) + 1)

    return df


def london(path: Optional[Union[str, Path]] = None) -> pd.DataFrame:
    """
    Load the London daily temperature and mortality series.

    Returns
    -------
    pd.DataFrame
        Columns date, time, tmean (mean temperature, Celsius), death
        (daily all-cause deaths) and dow (day of week)

    Examples
    --------
    >>> data = london()
    >>> data[['tmean', 'death']].describe()
    """
    data_file = Path(path) if path is not None else _DATA_DIR / 'london.csv'
    return load_timeseries(data_file)


# Convenience function for loading any dataset
def load_dataset(name: str) -> pd.DataFrame:
    """
    Load a dataset by name.

    Parameters
    ----------
    name : str
        Dataset name: 'london'

    Returns
    -------
    pd.DataFrame
        Requested dataset

    Raises
    ------
    InvalidArgument
        If dataset name is not recognized
    """
    datasets = {
        'london': london,
    }

    if name not in datasets:
        available = list(datasets.keys())
        raise InvalidArgument(f"Unknown dataset '{name}'. Available: {available}")

    return datasets[name]()


__all__ = [
    'load_timeseries',
    'london',
    'load_dataset',
]
