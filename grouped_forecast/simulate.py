"""Simulation-based forecasts.

Beyond the training range the trend is uncertain: new changepoints may occur.
:func:`simulate` draws them at the historical changepoint rate, with slope
changes from the same Laplace prior used in fitting, giving ``path_count``
trend trajectories.  Seasonal, holiday and regressor terms extend
deterministically.  Every trajectory is reconciled like a decomposition and
observation noise is added, so the ensemble is a draw from the predictive
distribution.  The point forecast is the ensemble mean.  For a model fit with
MCMC, trajectories cycle through the posterior draws, so coefficient
uncertainty shows in the ensemble as well.

Randomness comes only from the ``numpy.random.Generator`` passed in (or built
from ``seed``); identical inputs and seed give identical ensembles.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence, Union

import numpy as np
import pandas as pd

from . import features
from .data import future_timestamps as _future_timestamps
from .decompose import Components, as_frame, evaluate, reconcile
from .model import FittedModel

logger = logging.getLogger(__name__)

DEFAULT_PATH_COUNT = 1000


def sample_trend_paths(
    fitted: FittedModel,
    t: np.ndarray,
    cap: Optional[np.ndarray],
    path_count: int,
    rng: np.random.Generator,
    draws: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Simulated trends in response units, shape ``(path_count, len(t))``.

    With ``draws``, path ``i`` starts from posterior draw ``draws[i]`` of an
    MCMC fit instead of the point estimate.
    """
    changepoints_t = fitted.changepoints_t
    horizon = float(t.max()) if len(t) else 0.0
    rate = len(changepoints_t)
    scale = fitted.terms.growth.changepoint_prior_scale
    paths = np.empty((path_count, len(t)))
    for i in range(path_count):
        if horizon > 1 and rate > 0:
            n_changes = rng.poisson(rate * (horizon - 1))
        else:
            n_changes = 0
        new_t = np.sort(1 + rng.random(n_changes) * (horizon - 1))
        new_delta = rng.laplace(0, scale, n_changes)
        if draws is None:
            k, m, delta = fitted.k, fitted.m, fitted.delta
        else:
            j = draws[i]
            k, m, delta = fitted.samples["k"][j], fitted.samples["m"][j], fitted.samples["delta"][j]
        trend = features.trend(
            fitted.growth,
            t,
            np.concatenate((delta, new_delta)),
            k,
            m,
            np.concatenate((changepoints_t, new_t)),
            cap,
        )
        paths[i] = trend * fitted.y_scale + fitted.floor
    return paths


def _sampled_components(fitted: FittedModel, comp: Components, draws: np.ndarray):
    """Multiplicative and additive parts per path from the posterior ``beta`` draws."""
    beta = fitted.samples["beta"][draws]
    mult = np.array([c.mode == "multiplicative" for c in comp.columns], dtype=bool)
    multiplicative = beta[:, mult] @ comp.X[:, mult].T
    additive = beta[:, ~mult] @ comp.X[:, ~mult].T * fitted.y_scale
    return multiplicative, additive


def simulate(
    fitted: FittedModel,
    future_timestamps: Any = None,
    h: Optional[int] = None,
    path_count: int = DEFAULT_PATH_COUNT,
    seed: Optional[int] = None,
    rng: Optional[np.random.Generator] = None,
) -> pd.DataFrame:
    """Forecast table of one series.

    Parameters
    ----------
    fitted : FittedModel
        Model returned by :func:`~grouped_forecast.model.fit`.
    future_timestamps : sequence or pandas.DataFrame, optional
        Timestamps to forecast.  Pass a DataFrame with the time column and
        future regressor values when the model uses regressors.
    h : int, optional
        Number of periods after the last observation, at the sampling rate
        of the history.  Used when ``future_timestamps`` is not given.
    path_count : int, default 1000
        Number of simulated trajectories.
    seed : int, optional
        Seed of the random generator.  Ignored when ``rng`` is given.
    rng : numpy.random.Generator, optional
        Random source to draw from.

    Returns
    -------
    pd.DataFrame
        Columns: the time column, ``trend`` (trend without new
        changepoints), ``yhat`` (mean of the simulated values) and
        ``ensemble`` (array of ``path_count`` simulated values per row).

    Raises
    ------
    MissingRegressorError
        If the model uses regressors and their future values are missing.
    """
    if path_count < 1:
        raise ValueError(f"path_count must be positive, got {path_count}")
    if future_timestamps is None:
        if h is None:
            raise ValueError("Either future_timestamps or h must be given")
        future_timestamps = _future_timestamps(fitted.end, h, fitted.freq, fitted.interval)
    frame = as_frame(fitted, future_timestamps)
    comp = evaluate(fitted, frame)
    if rng is None:
        rng = np.random.default_rng(seed)

    draws = None
    if fitted.samples is not None:
        draws = np.arange(path_count) % len(fitted.samples["k"])
    paths = sample_trend_paths(fitted, comp.t, comp.cap, path_count, rng, draws=draws)
    if draws is None:
        multiplicative, additive = comp.multiplicative[None, :], comp.additive[None, :]
        noise_scale = fitted.residual_scale
    else:
        multiplicative, additive = _sampled_components(fitted, comp, draws)
        noise_scale = fitted.samples["sigma"][draws, None] * fitted.y_scale
    noise = rng.normal(0, noise_scale, size=paths.shape)
    sims = reconcile(paths, multiplicative, additive) + noise
    logger.debug("Simulated %d paths over %d timestamps", path_count, len(frame))

    out = pd.DataFrame({fitted.index: frame[fitted.index]})
    out["trend"] = comp.trend
    out["yhat"] = sims.mean(axis=0)
    out["ensemble"] = [sims[:, j].copy() for j in range(sims.shape[1])]
    return out


def forecast_intervals(
    forecast: pd.DataFrame,
    level: Union[float, Sequence[float]] = 80,
) -> pd.DataFrame:
    """Add quantile bounds computed from the ``ensemble`` column.

    A single level adds ``yhat_lower`` and ``yhat_upper``; several levels
    add ``yhat_lower_<level>`` and ``yhat_upper_<level>`` for each.
    """
    levels = [level] if np.isscalar(level) else list(level)
    out = forecast.copy()
    ensemble = np.vstack(out["ensemble"].to_numpy()) if len(out) else np.empty((0, 0))
    for lvl in levels:
        if not 0 < lvl < 100:
            raise ValueError(f"Interval level must be between 0 and 100, got {lvl}")
        alpha = (100 - lvl) / 200
        suffix = "" if len(levels) == 1 else f"_{lvl:g}"
        if len(out):
            lower, upper = np.quantile(ensemble, [alpha, 1 - alpha], axis=1)
        else:
            lower = upper = np.empty(0)
        out[f"yhat_lower{suffix}"] = lower
        out[f"yhat_upper{suffix}"] = upper
    return out
