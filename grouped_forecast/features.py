"""Design-matrix assembly and trend functions.

Everything here is a pure function of timestamps, term descriptors and
coefficients.  The fit engine uses it to build the regression problem and the
decomposition and simulation engines use it to evaluate a fitted model at new
timestamps, so both sides always agree on column layout.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .errors import MissingRegressorError
from .terms import Growth, Holiday, Regressor, Season

_EPOCH = pd.Timestamp("1970-01-01")


@dataclass(frozen=True)
class FeatureColumn:
    """Metadata of one design-matrix column."""

    name: str
    term: str
    mode: str
    prior_scale: float


# ---------------------------------------------------------------------------
# Time handling
# ---------------------------------------------------------------------------


def days_since_epoch(ds: Union[pd.Series, pd.DatetimeIndex]) -> np.ndarray:
    ds = pd.DatetimeIndex(pd.to_datetime(ds))
    return np.asarray((ds - _EPOCH) / pd.Timedelta(days=1), dtype=float)


def scale_time(ds: Union[pd.Series, pd.DatetimeIndex], start: pd.Timestamp, t_scale: pd.Timedelta) -> np.ndarray:
    """Map timestamps to model time: 0 at the first and 1 at the last observation."""
    ds = pd.DatetimeIndex(pd.to_datetime(ds))
    return np.asarray((ds - start) / t_scale, dtype=float)


def changepoint_grid(ds: pd.Series, growth: Growth) -> pd.DatetimeIndex:
    """Place candidate changepoints evenly over the first part of the history.

    ``ds`` must be sorted.  The number of changepoints is reduced when the
    covered part of the history has too few rows to hold them.
    """
    ds = pd.Series(pd.to_datetime(ds)).reset_index(drop=True)
    hist_size = int(np.floor(len(ds) * growth.changepoint_range))
    count = min(growth.changepoint_count, max(hist_size - 1, 0))
    if growth.kind == "flat" or count <= 0:
        return pd.DatetimeIndex([])
    idx = np.linspace(0, hist_size - 1, count + 1).round().astype(int)
    return pd.DatetimeIndex(ds.iloc[idx[1:]].to_numpy())


# ---------------------------------------------------------------------------
# Seasonal, holiday and regressor columns
# ---------------------------------------------------------------------------


def fourier_series(ds: Union[pd.Series, pd.DatetimeIndex], period: float, order: int) -> np.ndarray:
    """Return ``2 * order`` columns ``sin, cos`` of each harmonic of ``period`` days."""
    t = days_since_epoch(ds)
    return np.column_stack(
        [
            fun(2.0 * (i + 1) * np.pi * t / period)
            for i in range(order)
            for fun in (np.sin, np.cos)
        ]
    )


def season_features(ds, term: Season) -> Tuple[np.ndarray, List[FeatureColumn]]:
    values = fourier_series(ds, term.period, term.fourier_order)
    names = [
        f"{term.name}_{fun}{i + 1}"
        for i in range(term.fourier_order)
        for fun in ("sin", "cos")
    ]
    cols = [FeatureColumn(n, term.name, term.type, term.prior_scale) for n in names]
    return values, cols


def holiday_features(ds, term: Holiday) -> Tuple[np.ndarray, List[FeatureColumn]]:
    """One indicator column per day offset in the holiday window."""
    days = pd.DatetimeIndex(pd.to_datetime(ds)).normalize()
    dates = pd.DatetimeIndex(term.dates)
    values = np.column_stack(
        [days.isin(dates + pd.Timedelta(days=offset)).astype(float) for offset in term.offsets]
    )
    cols = [
        FeatureColumn(f"{term.name}_{offset:+d}", term.name, term.mode, term.prior_scale)
        for offset in term.offsets
    ]
    return values, cols


def regressor_stats(values: pd.Series, term: Regressor) -> Tuple[float, float]:
    """Centering and scaling constants for a regressor column."""
    values = pd.Series(values, dtype=float)
    standardize = term.standardize
    if standardize == "auto":
        standardize = not set(values.unique()).issubset({0.0, 1.0})
    if not standardize:
        return 0.0, 1.0
    mu = float(values.mean())
    std = float(values.std())
    if not np.isfinite(std) or std == 0:
        return mu, 1.0
    return mu, std


def regressor_values(frame: pd.DataFrame, column: str) -> np.ndarray:
    """Read a regressor (or capacity) column, refusing missing values."""
    if column not in frame.columns:
        raise MissingRegressorError(column, "column not supplied")
    values = pd.to_numeric(frame[column], errors="coerce")
    if values.isna().any():
        missing = int(values.isna().sum())
        raise MissingRegressorError(column, f"{missing} row(s) without a value")
    return values.to_numpy(dtype=float)


def design_matrix(
    frame: pd.DataFrame,
    terms: Sequence[Union[Season, Holiday, Regressor]],
    stats: Dict[str, Tuple[float, float]],
    index: str = "ds",
) -> Tuple[np.ndarray, List[FeatureColumn]]:
    """Build the seasonal, holiday and regressor columns for ``frame``.

    Parameters
    ----------
    frame : pandas.DataFrame
        Rows to evaluate, with the time column ``index`` and one column per
        regressor term.
    terms : sequence of Season, Holiday or Regressor
        Non-growth terms, in model order.
    stats : dict
        Regressor column to ``(mean, std)`` from :func:`regressor_stats`.

    Raises
    ------
    MissingRegressorError
        When a regressor column is absent or incomplete.
    """
    ds = frame[index]
    blocks: List[np.ndarray] = []
    cols: List[FeatureColumn] = []
    for term in terms:
        if isinstance(term, Season):
            values, names = season_features(ds, term)
        elif isinstance(term, Holiday):
            values, names = holiday_features(ds, term)
        else:
            mu, std = stats[term.column]
            raw = regressor_values(frame, term.column)
            values = ((raw - mu) / std)[:, None]
            names = [FeatureColumn(term.column, term.column, term.mode, term.prior_scale)]
        blocks.append(values)
        cols.extend(names)
    if not blocks:
        return np.zeros((len(frame), 0)), cols
    return np.hstack(blocks), cols


# ---------------------------------------------------------------------------
# Trend
# ---------------------------------------------------------------------------


def linear_basis(t: np.ndarray, changepoints_t: np.ndarray) -> np.ndarray:
    """Columns ``[t, 1, (t - s_j)^+]``: the piecewise-linear trend is linear in ``(k, m, delta)``."""
    after = t[:, None] >= changepoints_t[None, :]
    return np.column_stack([t, np.ones_like(t), after * (t[:, None] - changepoints_t[None, :])])


def piecewise_linear(t: np.ndarray, deltas: np.ndarray, k: float, m: float, changepoints_t: np.ndarray) -> np.ndarray:
    deltas_t = (changepoints_t[None, :] <= t[:, None]) * deltas
    k_t = deltas_t.sum(axis=1) + k
    m_t = (deltas_t * -changepoints_t).sum(axis=1) + m
    return k_t * t + m_t


def logistic_offsets(deltas: np.ndarray, k: float, m: float, changepoints_t: np.ndarray) -> np.ndarray:
    """Offset adjustments keeping the logistic trend continuous at changepoints."""
    k_cum = np.concatenate(([k], np.cumsum(deltas) + k))
    gammas = np.zeros(len(changepoints_t))
    for i, t_s in enumerate(changepoints_t):
        gammas[i] = (t_s - m - gammas[:i].sum()) * (1 - k_cum[i] / k_cum[i + 1])
    return gammas


def piecewise_logistic(
    t: np.ndarray,
    cap: np.ndarray,
    deltas: np.ndarray,
    k: float,
    m: float,
    changepoints_t: np.ndarray,
) -> np.ndarray:
    gammas = logistic_offsets(deltas, k, m, changepoints_t)
    after = changepoints_t[None, :] <= t[:, None]
    k_t = k + (after * deltas).sum(axis=1)
    m_t = m + (after * gammas).sum(axis=1)
    return cap / (1 + np.exp(-k_t * (t - m_t)))


def trend(
    kind: str,
    t: np.ndarray,
    deltas: np.ndarray,
    k: float,
    m: float,
    changepoints_t: np.ndarray,
    cap: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Evaluate the scaled trend for any growth kind."""
    if kind == "linear":
        return piecewise_linear(t, deltas, k, m, changepoints_t)
    if kind == "logistic":
        return piecewise_logistic(t, cap, deltas, k, m, changepoints_t)
    return np.full_like(t, m, dtype=float)
