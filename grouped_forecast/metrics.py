"""Accuracy metrics for point forecasts.

Point forecasts are scored with MAE, RMSE, R², MAPE and SMAPE.  Pairs where
either the observation or the forecast is missing are left out of every
metric.  ``compute_metrics`` aggregates them into a dictionary and
``accuracy`` applies it per series to a forecast table paired with held-out
observations.
"""

from typing import Dict, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from sklearn.metrics import mean_absolute_error, mean_squared_error, r2_score

from .data import key_columns, partition_by_key


def _paired(y_true: Sequence[float], y_pred: Sequence[float]) -> Tuple[np.ndarray, np.ndarray]:
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    keep = ~(np.isnan(y_true) | np.isnan(y_pred))
    return y_true[keep], y_pred[keep]


def mape(y_true: Sequence[float], y_pred: Sequence[float]) -> float:
    """Mean absolute percentage error (MAPE).

    Observations equal to zero have no percentage error and are skipped;
    NaN is returned when nothing is left to score.
    """
    y_true, y_pred = _paired(y_true, y_pred)
    nonzero = y_true != 0
    if not nonzero.any():
        return float("nan")
    return float(np.mean(np.abs((y_true[nonzero] - y_pred[nonzero]) / y_true[nonzero])) * 100.0)


def smape(y_true: Sequence[float], y_pred: Sequence[float]) -> float:
    """Symmetric mean absolute percentage error (SMAPE), in ``[0, 200]``."""
    y_true, y_pred = _paired(y_true, y_pred)
    if len(y_true) == 0:
        return float("nan")
    denom = np.abs(y_true) + np.abs(y_pred)
    ratio = np.divide(
        2.0 * np.abs(y_pred - y_true), denom, out=np.zeros_like(denom), where=denom > 0
    )
    return float(np.mean(ratio) * 100.0)


def compute_metrics(y_true: Sequence[float], y_pred: Sequence[float]) -> Dict[str, Optional[float]]:
    """Compute a suite of regression metrics.

    The returned dictionary contains MAE, RMSE, R², MAPE and SMAPE.  Every
    value is ``None`` when no complete pair exists; R² is ``None`` with
    fewer than two pairs because it is undefined in that case.

    Parameters
    ----------
    y_true : sequence of float
        The observed values.
    y_pred : sequence of float
        The point forecasts.

    Returns
    -------
    dict
        A dictionary with keys ``MAE``, ``RMSE``, ``R2``, ``MAPE``, ``SMAPE``.
    """
    y_true, y_pred = _paired(y_true, y_pred)
    if len(y_true) == 0:
        return {"MAE": None, "RMSE": None, "R2": None, "MAPE": None, "SMAPE": None}
    r2 = float(r2_score(y_true, y_pred)) if len(y_true) > 1 else None
    return {
        "MAE": float(mean_absolute_error(y_true, y_pred)),
        "RMSE": float(np.sqrt(mean_squared_error(y_true, y_pred))),
        "R2": r2,
        "MAPE": mape(y_true, y_pred),
        "SMAPE": smape(y_true, y_pred),
    }


def accuracy(
    forecast: pd.DataFrame,
    actual: pd.DataFrame,
    key: Union[None, str, Sequence[str]] = None,
    index: str = "ds",
    response: str = "y",
) -> pd.DataFrame:
    """Per-series accuracy of point forecasts against held-out actuals.

    Rows are paired on the key column(s) and the time column; only
    timestamps present in both tables are scored.

    Parameters
    ----------
    forecast : pd.DataFrame
        Forecast table with a ``yhat`` column.
    actual : pd.DataFrame
        Observations with the response column.
    key : str or sequence of str, optional
        Column(s) identifying each series.
    index : str, default "ds"
        Name of the time column.
    response : str, default "y"
        Name of the response column in ``actual``.

    Returns
    -------
    pd.DataFrame
        One row per series with the key column(s), ``n`` and the metrics of
        :func:`compute_metrics`.
    """
    cols = key_columns(key)
    left = forecast[cols + [index, "yhat"]].copy()
    right = actual[cols + [index, response]].copy()
    left[index] = pd.to_datetime(left[index])
    right[index] = pd.to_datetime(right[index])
    paired = left.merge(right, on=cols + [index], how="inner")
    rows = []
    for k, group in partition_by_key(paired, cols, index):
        keys = dict(zip(cols, k if len(cols) > 1 else (k,))) if cols else {}
        rows.append({**keys, "n": len(group), **compute_metrics(group[response], group["yhat"])})
    return pd.DataFrame(rows)
