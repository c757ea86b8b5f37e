"""Reconstruct the components of a fitted model at arbitrary timestamps.

Each term's contribution is evaluated from the fitted coefficients and the
terms are reconciled into a total::

    yhat = trend * (1 + multiplicative_terms) + additive_terms

Additive contributions are in response units; multiplicative contributions
are relative factors.  A term's mode is fixed when the model is fit.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import numpy as np
import pandas as pd

from . import features
from .model import FittedModel


@dataclass(frozen=True)
class Components:
    """Evaluated components on one set of rows; all arrays have one entry per row."""

    frame: pd.DataFrame
    t: np.ndarray
    cap: Optional[np.ndarray]
    trend: np.ndarray
    terms: Dict[str, np.ndarray]
    additive: np.ndarray
    multiplicative: np.ndarray
    X: np.ndarray
    columns: Tuple[features.FeatureColumn, ...]

    @property
    def yhat(self) -> np.ndarray:
        return reconcile(self.trend, self.multiplicative, self.additive)


def reconcile(trend: np.ndarray, multiplicative: np.ndarray, additive: np.ndarray) -> np.ndarray:
    return trend * (1 + multiplicative) + additive


def as_frame(fitted: FittedModel, timestamps: Any = None) -> pd.DataFrame:
    """Normalise requested timestamps into a sorted frame.

    ``None`` selects the training history; a DataFrame must hold the time
    column (plus any regressor columns); anything else is read as a
    sequence of timestamps.
    """
    index = fitted.index
    if timestamps is None:
        frame = fitted.history.copy()
    elif isinstance(timestamps, pd.DataFrame):
        if index not in timestamps.columns:
            raise ValueError(f"Timestamps frame has no '{index}' column")
        frame = timestamps.copy()
    else:
        frame = pd.DataFrame({index: pd.to_datetime(pd.Index(timestamps))})
    frame[index] = pd.to_datetime(frame[index])
    return frame.sort_values(index, kind="stable").reset_index(drop=True)


def evaluate(fitted: FittedModel, frame: pd.DataFrame) -> Components:
    """Evaluate every component of ``fitted`` on the rows of ``frame``.

    Raises
    ------
    MissingRegressorError
        If a regressor or capacity column needed by the model is absent or
        has missing values.
    """
    for column in fitted.terms.columns:
        # Validate every column before computing anything
        features.regressor_values(frame, column)
    t = features.scale_time(frame[fitted.index], fitted.start, fitted.t_scale)
    cap = fitted.capacity_values(frame)
    trend_scaled = features.trend(
        fitted.growth, t, fitted.delta, fitted.k, fitted.m, fitted.changepoints_t, cap
    )
    trend = trend_scaled * fitted.y_scale + fitted.floor

    X, columns = features.design_matrix(
        frame, fitted.terms.components, fitted.regressor_stats, index=fitted.index
    )
    contributions = X * fitted.beta
    terms: Dict[str, np.ndarray] = {}
    additive = np.zeros(len(frame))
    multiplicative = np.zeros(len(frame))
    for term in fitted.terms.components:
        mask = np.array([c.term == term.name for c in columns], dtype=bool)
        value = contributions[:, mask].sum(axis=1)
        if term.mode == "multiplicative":
            multiplicative += value
        else:
            value = value * fitted.y_scale
            additive += value
        terms[term.name] = value
    return Components(
        frame=frame,
        t=t,
        cap=cap,
        trend=trend,
        terms=terms,
        additive=additive,
        multiplicative=multiplicative,
        X=X,
        columns=tuple(columns),
    )


def decompose(fitted: FittedModel, timestamps: Any = None) -> pd.DataFrame:
    """Component table of one series.

    Parameters
    ----------
    fitted : FittedModel
        Model returned by :func:`~grouped_forecast.model.fit`.
    timestamps : sequence or pandas.DataFrame, optional
        Timestamps to evaluate, historical or future.  Pass a DataFrame with
        the time column and regressor columns when the model uses
        regressors.  Defaults to the training history.

    Returns
    -------
    pd.DataFrame
        Columns: the time column, the observed response when decomposing
        history, ``trend``, one column per season, holiday and regressor
        term, ``additive_terms``, ``multiplicative_terms`` and ``yhat``.

    Raises
    ------
    MissingRegressorError
        If regressor values are missing; no rows are produced.
    """
    frame = as_frame(fitted, timestamps)
    comp = evaluate(fitted, frame)
    out = pd.DataFrame({fitted.index: frame[fitted.index]})
    if fitted.response in frame.columns:
        out[fitted.response] = frame[fitted.response].to_numpy()
    out["trend"] = comp.trend
    for name, values in comp.terms.items():
        out[name] = values
    out["additive_terms"] = comp.additive
    out["multiplicative_terms"] = comp.multiplicative
    out["yhat"] = comp.yhat
    return out

