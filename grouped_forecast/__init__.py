"""Grouped time series forecasting with piecewise trends and seasonal terms.

This package fits one decomposable trend-plus-seasonality model per series of
a grouped table, reconstructs each model's components and produces forecasts
whose uncertainty comes from simulating future trend changepoints.  See the
README in the repository root for usage instructions.
"""

from .data import load_data, winsorize_per_key  # noqa: F401
from .decompose import decompose  # noqa: F401
from .errors import (  # noqa: F401
    FitError,
    ForecastError,
    MissingRegressorError,
    SpecificationError,
)
from .formula import ModelSpec, TermList, parse_spec  # noqa: F401
from .metrics import accuracy, compute_metrics, mape, smape  # noqa: F401
from .model import FittedModel, fit  # noqa: F401
from .orchestrator import FitSummary, KeyedModels, fit_all  # noqa: F401
from .simulate import forecast_intervals, simulate  # noqa: F401
from .terms import (  # noqa: F401
    Growth,
    Holiday,
    Regressor,
    Season,
    country_holidays,
    growth,
    holiday,
    regressor,
    season,
)

__all__ = [
    "load_data",
    "winsorize_per_key",
    "ModelSpec",
    "TermList",
    "parse_spec",
    "Growth",
    "Season",
    "Holiday",
    "Regressor",
    "growth",
    "season",
    "holiday",
    "regressor",
    "country_holidays",
    "fit",
    "FittedModel",
    "fit_all",
    "KeyedModels",
    "FitSummary",
    "decompose",
    "simulate",
    "forecast_intervals",
    "mape",
    "smape",
    "compute_metrics",
    "accuracy",
    "ForecastError",
    "SpecificationError",
    "FitError",
    "MissingRegressorError",
]
