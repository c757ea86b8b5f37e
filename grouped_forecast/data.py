"""Reading and shaping grouped observation tables.

Everything here works on plain DataFrames: reading a table, clipping
outliers per series, splitting a table by key and checking one series before
it is fit.  The extension of a series past its last timestamp lives here too,
since it only depends on the sampling rate of the data.
"""

from typing import Any, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy import stats

from .errors import FitError


def load_data(file_path: str, index: str = "ds") -> pd.DataFrame:
    """Read an observation table from CSV with ``index`` parsed as datetimes.

    Rows come back as stored; gaps in the response are handled per series by
    :func:`prepare_series`.
    """
    return pd.read_csv(file_path, parse_dates=[index])


def key_columns(key: Union[None, str, Sequence[str]]) -> List[str]:
    """Normalise a key argument to a list of column names."""
    if key is None:
        return []
    if isinstance(key, str):
        return [key]
    return list(key)


def winsorize_per_key(
    df: pd.DataFrame,
    key: Union[str, Sequence[str]],
    column: str = "y",
    limits: Tuple[float, float] = (0.0, 0.05),
) -> pd.DataFrame:
    """Clip the tails of ``column`` separately within every series.

    Parameters
    ----------
    df : pd.DataFrame
        Observation table.
    key : str or sequence of str
        Column(s) identifying each series.
    column : str, default "y"
        Column to clip, usually the response.
    limits : tuple of float, default ``(0.0, 0.05)``
        Share of each series replaced at the low and at the high end.

    Returns
    -------
    pd.DataFrame
        Copy of ``df`` with ``column`` clipped per series.
    """

    def clip(values: pd.Series) -> pd.Series:
        clipped = stats.mstats.winsorize(values.to_numpy(dtype=float), limits=limits)
        return pd.Series(np.ma.getdata(clipped), index=values.index)

    out = df.copy()
    out[column] = out.groupby(key_columns(key), sort=False)[column].transform(clip)
    return out


def partition_by_key(
    df: pd.DataFrame,
    key: Union[None, str, Sequence[str]],
    index: str = "ds",
) -> Iterator[Tuple[Any, pd.DataFrame]]:
    """Yield ``(key, rows)`` pairs in order of first appearance.

    The key is a scalar for one key column, a tuple for several and ``()``
    when the table holds a single series.  Each slice is sorted by time.
    """
    cols = key_columns(key)
    if not cols:
        yield (), df.sort_values(index, kind="stable").reset_index(drop=True)
        return
    grouper = cols[0] if len(cols) == 1 else cols
    for k, group in df.groupby(grouper, sort=False, dropna=False):
        yield k, group.sort_values(index, kind="stable").reset_index(drop=True)


def prepare_series(
    series: pd.DataFrame,
    index: str,
    response: str,
    columns: Sequence[str] = (),
) -> pd.DataFrame:
    """Return the rows of one series ready for fitting.

    Keeps the time, response and ``columns``, parses times, drops rows with
    a missing response and sorts by time.

    Raises
    ------
    FitError
        If timestamps repeat, fewer than two observations remain, a model
        column has missing values or any kept value is infinite.
    """
    out = series[[index, response, *columns]].copy()
    out[index] = pd.to_datetime(out[index])
    out[response] = pd.to_numeric(out[response], errors="coerce")
    out = out.dropna(subset=[response])
    out = out.sort_values(index, kind="stable").reset_index(drop=True)
    if out[index].duplicated().any():
        dupes = out.loc[out[index].duplicated(), index].iloc[0]
        raise FitError(FitError.DUPLICATE_TIMESTAMPS, f"timestamp {dupes} appears more than once")
    if len(out) < 2:
        raise FitError(
            FitError.INSUFFICIENT_OBSERVATIONS,
            f"{len(out)} observation(s), at least 2 are needed",
        )
    for col in columns:
        if out[col].isna().any():
            raise FitError(FitError.MISSING_REGRESSOR_VALUES, f"column '{col}' has missing values")
    for col in (response, *columns):
        values = pd.to_numeric(out[col], errors="coerce")
        if np.isinf(values).any():
            raise FitError(FitError.NON_FINITE_VALUES, f"column '{col}' has infinite values")
    return out


def infer_interval(ds: pd.Series) -> Tuple[Optional[str], pd.Timedelta]:
    """Infer the sampling frequency of sorted timestamps.

    Returns the pandas frequency alias when one can be inferred (so calendar
    frequencies such as month starts extend correctly) and the median spacing.
    """
    ds = pd.DatetimeIndex(pd.to_datetime(ds))
    if len(ds) < 2:
        return None, pd.Timedelta(days=1)
    freq = pd.infer_freq(ds) if len(ds) >= 3 else None
    interval = pd.Series(ds).diff().dropna().median()
    return freq, interval


def finest_interval(df: pd.DataFrame, key: Union[None, str, Sequence[str]], index: str = "ds") -> Optional[pd.Timedelta]:
    """Smallest positive spacing between consecutive timestamps of any series."""
    intervals = []
    for _, group in partition_by_key(df, key, index):
        diffs = pd.to_datetime(group[index]).diff().dropna()
        diffs = diffs[diffs > pd.Timedelta(0)]
        if not diffs.empty:
            intervals.append(diffs.min())
    return min(intervals) if intervals else None


def future_timestamps(
    last: pd.Timestamp,
    h: int,
    freq: Optional[str] = None,
    interval: Optional[pd.Timedelta] = None,
) -> pd.DatetimeIndex:
    """The ``h`` timestamps following ``last`` at the series' sampling rate."""
    if h < 1:
        raise ValueError(f"Horizon must be a positive number of periods, got {h}")
    last = pd.Timestamp(last)
    if freq is not None:
        dates = pd.date_range(last, periods=h + 1, freq=freq)
        return dates[dates > last][:h]
    if interval is None:
        raise ValueError("Either freq or interval is needed to extend a series")
    return pd.DatetimeIndex([last + interval * (i + 1) for i in range(h)])
