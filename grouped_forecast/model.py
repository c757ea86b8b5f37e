"""Fit engine for a single series.

:func:`fit` turns one series and a :class:`~grouped_forecast.formula.TermList`
into an immutable :class:`FittedModel`.  It handles the repetitive tasks of
scaling the data, laying out changepoints, building the seasonal, holiday and
regressor design matrix and handing the resulting problem to the optimizer.
Problems with the data of the series are returned as a
:class:`~grouped_forecast.errors.FitError` value instead of being raised, so
callers fitting many series never lose a batch to one bad series.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple, Union

import numpy as np
import pandas as pd

from . import features
from .data import infer_interval, prepare_series
from .errors import ConvergenceError, FitError
from .features import FeatureColumn
from .formula import ModelSpec, TermList, parse_spec
from .optimizer import DEFAULT_CHAINS, Problem, estimate, sample
from .terms import LOGISTIC_CAPACITY_MARGIN, auto_seasons

logger = logging.getLogger(__name__)


def _frozen(values) -> np.ndarray:
    arr = np.array(values, dtype=float)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class FittedModel:
    """Result of fitting one series.

    Coefficients refer to the scaled problem: the response is
    ``(y - floor) / y_scale`` and time is ``(ds - start) / t_scale``.

    Attributes
    ----------
    terms : TermList
        Terms used for fitting, with automatically selected seasons filled in.
    index : str
        Name of the time column.
    start, end : pandas.Timestamp
        First and last training timestamps.
    t_scale : pandas.Timedelta
        Training span.
    y_scale, floor : float
        Response scaling constants.
    capacity : float or str or None
        Logistic capacity in response units, or the capacity column.
    changepoints : pandas.DatetimeIndex
        Changepoint locations.
    k, m : float
        Base growth rate and offset.
    delta : ndarray
        Slope change at each changepoint.
    beta : ndarray
        One coefficient per design-matrix column.
    columns : tuple of FeatureColumn
        Layout of the design matrix.
    sigma : float
        Residual scale of the scaled response.
    regressor_stats : dict
        Regressor column to ``(mean, std)`` used for standardization.
    history : pandas.DataFrame
        Training rows (time, response and model columns).
    freq : str or None
        Inferred pandas frequency of the history.
    interval : pandas.Timedelta
        Median spacing of the history.
    diagnostics : dict
        Estimation report.
    samples : dict, optional
        Posterior draws of ``k``, ``m``, ``delta``, ``beta`` and ``sigma``,
        one row per draw, when the model was fit with MCMC.
    """

    terms: TermList
    index: str
    start: pd.Timestamp
    end: pd.Timestamp
    t_scale: pd.Timedelta
    y_scale: float
    floor: float
    capacity: Optional[Union[float, str]]
    changepoints: pd.DatetimeIndex
    k: float
    m: float
    delta: np.ndarray
    beta: np.ndarray
    columns: Tuple[FeatureColumn, ...]
    sigma: float
    regressor_stats: Dict[str, Tuple[float, float]]
    history: pd.DataFrame = field(repr=False)
    freq: Optional[str] = None
    interval: pd.Timedelta = pd.Timedelta(days=1)
    diagnostics: Dict[str, object] = field(default_factory=dict, repr=False)
    samples: Optional[Dict[str, np.ndarray]] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        for name in ("delta", "beta"):
            object.__setattr__(self, name, _frozen(getattr(self, name)))
        if self.samples is not None:
            object.__setattr__(self, "samples", {k: _frozen(v) for k, v in self.samples.items()})

    @property
    def response(self) -> str:
        return self.terms.response

    @property
    def growth(self) -> str:
        return self.terms.growth.kind

    @property
    def changepoints_t(self) -> np.ndarray:
        return features.scale_time(self.changepoints, self.start, self.t_scale)

    @property
    def residual_scale(self) -> float:
        """Residual standard deviation in response units."""
        return self.sigma * self.y_scale

    @property
    def n_obs(self) -> int:
        return len(self.history)

    @property
    def coefficients(self) -> pd.Series:
        return pd.Series(self.beta, index=[c.name for c in self.columns], name="coefficient")

    def capacity_values(self, frame: pd.DataFrame) -> Optional[np.ndarray]:
        """Scaled logistic capacity for the rows of ``frame``."""
        if self.growth != "logistic":
            return None
        if isinstance(self.capacity, str):
            cap = features.regressor_values(frame, self.capacity)
        else:
            cap = np.full(len(frame), float(self.capacity))
        return (cap - self.floor) / self.y_scale


def _capacity(history: pd.DataFrame, terms: TermList) -> Optional[Union[float, str]]:
    growth = terms.growth
    if growth.kind != "logistic":
        return None
    if growth.capacity is not None:
        return growth.capacity
    y = history[terms.response]
    if (y <= growth.floor).any():
        raise FitError(
            FitError.NON_POSITIVE_FOR_LOGISTIC,
            f"values at or below the floor ({growth.floor}) need an explicit capacity",
        )
    return float(LOGISTIC_CAPACITY_MARGIN * y.max())


def _fit(
    series: pd.DataFrame,
    terms: TermList,
    index: str,
    mcmc_samples: int = 0,
    chains: int = DEFAULT_CHAINS,
    seed: Optional[int] = None,
) -> FittedModel:
    history = prepare_series(series, index, terms.response, terms.columns)
    if terms.automatic:
        terms = terms.with_seasons(auto_seasons(history[index]))
    growth = terms.growth
    ds = history[index]
    y = history[terms.response].to_numpy(dtype=float)

    capacity = _capacity(history, terms)
    floor = growth.floor if growth.kind == "logistic" else 0.0
    y_scale = float(np.abs(y - floor).max()) or 1.0
    start, end = ds.iloc[0], ds.iloc[-1]
    t_scale = end - start
    t = features.scale_time(ds, start, t_scale)
    changepoints = features.changepoint_grid(ds, growth)
    stats = {
        r.column: features.regressor_stats(history[r.column], r) for r in terms.regressors
    }
    X, columns = features.design_matrix(history, terms.components, stats, index=index)

    cap = None
    if growth.kind == "logistic":
        if isinstance(capacity, str):
            cap = (history[capacity].to_numpy(dtype=float) - floor) / y_scale
        else:
            cap = np.full(len(history), (capacity - floor) / y_scale)
        if np.any(cap <= 0):
            raise FitError(FitError.NON_POSITIVE_FOR_LOGISTIC, "capacity must exceed the floor")

    prior_scales = {c.term: c.prior_scale for c in columns}
    prior_scales["changepoints"] = growth.changepoint_prior_scale
    problem = Problem(
        t=t,
        y=(y - floor) / y_scale,
        X=X,
        groups=[c.term for c in columns],
        multiplicative=np.array([c.mode == "multiplicative" for c in columns], dtype=bool),
        prior_scales=prior_scales,
        changepoints_t=features.scale_time(changepoints, start, t_scale),
        growth=growth.kind,
        cap=cap,
    )
    try:
        if mcmc_samples:
            est = sample(problem, mcmc_samples, chains=chains, seed=seed)
        else:
            est = estimate(problem)
    except ConvergenceError as exc:
        raise FitError(FitError.OPTIMIZER_FAILED, str(exc)) from exc

    freq, interval = infer_interval(ds)
    return FittedModel(
        terms=terms,
        index=index,
        start=start,
        end=end,
        t_scale=t_scale,
        y_scale=y_scale,
        floor=floor,
        capacity=capacity,
        changepoints=changepoints,
        k=est.k,
        m=est.m,
        delta=est.delta,
        beta=est.beta,
        columns=tuple(columns),
        sigma=est.sigma,
        regressor_stats=stats,
        history=history,
        freq=freq,
        interval=interval,
        diagnostics=est.diagnostics,
        samples=est.samples,
    )


def fit(
    series: pd.DataFrame,
    terms: Union[TermList, ModelSpec],
    index: str = "ds",
    mcmc_samples: int = 0,
    chains: int = DEFAULT_CHAINS,
    seed: Optional[int] = None,
) -> Union[FittedModel, FitError]:
    """Fit one series.

    Parameters
    ----------
    series : pd.DataFrame
        Rows of a single series with the time column ``index``, the response
        and every regressor or capacity column the terms name.
    terms : TermList or ModelSpec
        Model terms.  A ``ModelSpec`` is parsed against ``series`` first.
    index : str, default "ds"
        Name of the time column.
    mcmc_samples : int, default 0
        When positive, draw the posterior with MCMC, running this many
        iterations per chain (half of them warm-up).  Otherwise only the
        posterior mode is found.
    chains : int, default 4
        Number of MCMC chains.
    seed : int, optional
        Sampler seed.

    Returns
    -------
    FittedModel or FitError
        The fitted model, or the reason fitting this series failed.

    Raises
    ------
    SpecificationError
        If a ``ModelSpec`` is malformed or names columns ``series`` lacks.
    """
    if isinstance(terms, ModelSpec):
        terms = parse_spec(terms, columns=series.columns)
    try:
        model = _fit(series, terms, index, mcmc_samples=mcmc_samples, chains=chains, seed=seed)
    except FitError as err:
        logger.debug("Fit failed: %s", err)
        return err
    logger.debug(
        "Fitted %d observations with %d changepoints (%s)",
        model.n_obs,
        len(model.changepoints),
        model.diagnostics.get("method"),
    )
    return model
