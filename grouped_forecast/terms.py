"""Typed term descriptors that make up a model specification.

A model is described by exactly one growth term plus any number of season,
holiday and regressor terms.  Each term is a small frozen dataclass that
validates itself on construction, so a malformed term fails with
:class:`~grouped_forecast.errors.SpecificationError` before any data is
touched.  The lower-case helpers (:func:`growth`, :func:`season`,
:func:`holiday`, :func:`regressor`) are the user-facing constructors used
with :class:`~grouped_forecast.formula.ModelSpec`.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .errors import SpecificationError

GROWTH_KINDS = ("linear", "logistic", "flat")
MODES = ("additive", "multiplicative")

DEFAULT_CHANGEPOINT_COUNT = 25
DEFAULT_CHANGEPOINT_RANGE = 0.8
DEFAULT_CHANGEPOINT_PRIOR_SCALE = 0.05
DEFAULT_SEASONALITY_PRIOR_SCALE = 10.0
DEFAULT_HOLIDAY_PRIOR_SCALE = 10.0
DEFAULT_REGRESSOR_PRIOR_SCALE = 10.0
# Inferred logistic capacity, as a multiple of the largest observation
LOGISTIC_CAPACITY_MARGIN = 1.25

# Period aliases, in days
PERIODS: Dict[str, float] = {
    "year": 365.25,
    "quarter": 91.3125,
    "month": 30.4375,
    "week": 7.0,
    "day": 1.0,
    "hour": 1.0 / 24.0,
}
_SEASON_NAMES = {
    365.25: "yearly",
    91.3125: "quarterly",
    30.4375: "monthly",
    7.0: "weekly",
    1.0: "daily",
    1.0 / 24.0: "hourly",
}
_DEFAULT_ORDERS = {365.25: 10, 91.3125: 5, 30.4375: 5, 7.0: 3, 1.0: 4}
_FALLBACK_ORDER = 3
# "week" and "weekly" both name the weekly period, and so on
_ALIASES = {
    alias: unit for unit, days in PERIODS.items() for alias in (unit, _SEASON_NAMES[days])
}


def _check_mode(value: str, what: str) -> str:
    if value not in MODES:
        raise SpecificationError(
            f"{what} must be one of {MODES}, got {value!r}"
        )
    return value


def _check_prior_scale(value: float, what: str) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError) as exc:
        raise SpecificationError(f"{what} must be a number, got {value!r}") from exc
    if not np.isfinite(value) or value <= 0:
        raise SpecificationError(f"{what} must be a positive number, got {value!r}")
    return value


def period_in_days(period: Union[str, float, int, pd.Timedelta]) -> float:
    """Convert a period given as an alias, a number of days or a duration to days."""
    if isinstance(period, bool):
        raise SpecificationError(f"Invalid season period: {period!r}")
    if isinstance(period, (int, float, np.integer, np.floating)):
        days = float(period)
    elif isinstance(period, str) and period.lower() in _ALIASES:
        days = PERIODS[_ALIASES[period.lower()]]
    else:
        try:
            days = pd.Timedelta(period).total_seconds() / 86400.0
        except (TypeError, ValueError) as exc:
            raise SpecificationError(f"Invalid season period: {period!r}") from exc
    if not np.isfinite(days) or days <= 0:
        raise SpecificationError(f"Season period must be positive, got {period!r}")
    return days


@dataclass(frozen=True)
class Growth:
    """Long-run trend basis.

    Parameters
    ----------
    kind : {"linear", "logistic", "flat"}
        Shape of the trend.
    changepoint_count : int
        Number of candidate changepoints placed in the history.
    changepoint_range : float
        Fraction of the history, in ``(0, 1]``, that receives changepoints.
    changepoint_prior_scale : float
        Scale of the Laplace prior on slope changes; larger values allow a
        more flexible trend.
    capacity : float or str, optional
        Upper bound for logistic growth, either a constant or the name of a
        column holding a time-varying capacity.  When omitted for logistic
        growth, the capacity is inferred from the data.
    floor : float
        Lower saturation level for logistic growth.
    """

    kind: str = "linear"
    changepoint_count: int = DEFAULT_CHANGEPOINT_COUNT
    changepoint_range: float = DEFAULT_CHANGEPOINT_RANGE
    changepoint_prior_scale: float = DEFAULT_CHANGEPOINT_PRIOR_SCALE
    capacity: Optional[Union[float, str]] = None
    floor: float = 0.0

    def __post_init__(self) -> None:
        if self.kind not in GROWTH_KINDS:
            raise SpecificationError(
                f"Growth kind must be one of {GROWTH_KINDS}, got {self.kind!r}"
            )
        if (
            isinstance(self.changepoint_count, bool)
            or not isinstance(self.changepoint_count, (int, np.integer))
            or self.changepoint_count < 0
        ):
            raise SpecificationError(
                f"changepoint_count must be a non-negative integer, got {self.changepoint_count!r}"
            )
        object.__setattr__(self, "changepoint_count", int(self.changepoint_count))
        if not 0.0 < float(self.changepoint_range) <= 1.0:
            raise SpecificationError(
                f"changepoint_range must be in (0, 1], got {self.changepoint_range!r}"
            )
        object.__setattr__(self, "changepoint_range", float(self.changepoint_range))
        object.__setattr__(
            self,
            "changepoint_prior_scale",
            _check_prior_scale(self.changepoint_prior_scale, "changepoint_prior_scale"),
        )
        object.__setattr__(self, "floor", float(self.floor))
        if self.capacity is not None:
            if self.kind != "logistic":
                raise SpecificationError("capacity only applies to logistic growth")
            if not isinstance(self.capacity, str):
                capacity = float(self.capacity)
                if not np.isfinite(capacity):
                    raise SpecificationError(f"capacity must be finite, got {capacity}")
                if capacity <= self.floor:
                    raise SpecificationError(
                        f"capacity ({capacity}) must exceed floor ({self.floor})"
                    )
                object.__setattr__(self, "capacity", capacity)

    @property
    def name(self) -> str:
        return "trend"

    def to_dict(self) -> Dict[str, Any]:
        return {"term": "growth", **asdict(self)}


@dataclass(frozen=True)
class Season:
    """Periodic effect represented by a truncated Fourier series.

    ``period`` accepts a number of days, a duration understood by
    :class:`pandas.Timedelta`, or one of the aliases in :data:`PERIODS`.  It is
    stored in days.  ``fourier_order`` and ``name`` default from the period.
    """

    period: Union[str, float, pd.Timedelta]
    fourier_order: Optional[int] = None
    type: str = "additive"
    prior_scale: float = DEFAULT_SEASONALITY_PRIOR_SCALE
    name: Optional[str] = None

    def __post_init__(self) -> None:
        days = period_in_days(self.period)
        object.__setattr__(self, "period", days)
        order = self.fourier_order
        if order is None:
            order = _DEFAULT_ORDERS.get(days, _FALLBACK_ORDER)
        if isinstance(order, bool) or not isinstance(order, (int, np.integer)) or order < 1:
            raise SpecificationError(f"fourier_order must be an integer >= 1, got {order!r}")
        object.__setattr__(self, "fourier_order", int(order))
        _check_mode(self.type, "Season type")
        object.__setattr__(
            self, "prior_scale", _check_prior_scale(self.prior_scale, "Season prior_scale")
        )
        if self.name is None:
            object.__setattr__(self, "name", _SEASON_NAMES.get(days, f"season_{days:g}"))

    @property
    def mode(self) -> str:
        return self.type

    def to_dict(self) -> Dict[str, Any]:
        return {"term": "season", **asdict(self)}


@dataclass(frozen=True)
class Holiday:
    """Effect active only within ``window`` days around each of ``dates``."""

    name: str
    dates: Tuple[pd.Timestamp, ...]
    window: Tuple[int, int] = (0, 0)
    prior_scale: float = DEFAULT_HOLIDAY_PRIOR_SCALE
    mode: str = "additive"

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise SpecificationError("Holiday terms need a non-empty name")
        try:
            dates = pd.DatetimeIndex(pd.to_datetime(list(self.dates)))
        except (TypeError, ValueError) as exc:
            raise SpecificationError(f"Invalid dates for holiday '{self.name}'") from exc
        if len(dates) == 0:
            raise SpecificationError(f"Holiday '{self.name}' has no dates")
        dates = dates.normalize().unique().sort_values()
        object.__setattr__(self, "dates", tuple(dates))
        try:
            lower, upper = (int(w) for w in self.window)
        except (TypeError, ValueError) as exc:
            raise SpecificationError(
                f"Holiday window must be a (lower, upper) pair, got {self.window!r}"
            ) from exc
        if lower > 0 or upper < 0:
            raise SpecificationError(
                f"Holiday window must satisfy lower <= 0 <= upper, got {self.window!r}"
            )
        object.__setattr__(self, "window", (lower, upper))
        object.__setattr__(
            self, "prior_scale", _check_prior_scale(self.prior_scale, "Holiday prior_scale")
        )
        _check_mode(self.mode, "Holiday mode")

    @property
    def offsets(self) -> range:
        return range(self.window[0], self.window[1] + 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "term": "holiday",
            "name": self.name,
            "dates": [d.isoformat() for d in self.dates],
            "window": list(self.window),
            "prior_scale": self.prior_scale,
            "mode": self.mode,
        }


@dataclass(frozen=True)
class Regressor:
    """Exogenous column entering the model linearly.

    ``standardize`` may be ``"auto"`` (standardize unless the column is
    binary), ``True`` or ``False``.
    """

    column: str
    mode: str = "additive"
    prior_scale: float = DEFAULT_REGRESSOR_PRIOR_SCALE
    standardize: Union[str, bool] = "auto"

    def __post_init__(self) -> None:
        if not isinstance(self.column, str) or not self.column:
            raise SpecificationError(f"Regressor column must be a non-empty string, got {self.column!r}")
        _check_mode(self.mode, "Regressor mode")
        object.__setattr__(
            self, "prior_scale", _check_prior_scale(self.prior_scale, "Regressor prior_scale")
        )
        if self.standardize not in ("auto", True, False):
            raise SpecificationError(
                f"standardize must be 'auto', True or False, got {self.standardize!r}"
            )

    @property
    def name(self) -> str:
        return self.column

    def to_dict(self) -> Dict[str, Any]:
        return {"term": "regressor", **asdict(self)}


Term = Union[Growth, Season, Holiday, Regressor]
TERM_TYPES = (Growth, Season, Holiday, Regressor)


def term_from_dict(data: Dict[str, Any]) -> Term:
    """Rebuild a term from the output of its ``to_dict`` method."""
    data = dict(data)
    kind = data.pop("term", None)
    if kind == "growth":
        return Growth(**data)
    if kind == "season":
        return Season(**data)
    if kind == "holiday":
        data["window"] = tuple(data.get("window", (0, 0)))
        data["dates"] = tuple(pd.to_datetime(data["dates"]))
        return Holiday(**data)
    if kind == "regressor":
        return Regressor(**data)
    raise SpecificationError(f"Unknown term type: {kind!r}")


# ---------------------------------------------------------------------------
# Constructors
# ---------------------------------------------------------------------------


def growth(
    kind: str = "linear",
    changepoint_count: int = DEFAULT_CHANGEPOINT_COUNT,
    changepoint_range: float = DEFAULT_CHANGEPOINT_RANGE,
    changepoint_prior_scale: float = DEFAULT_CHANGEPOINT_PRIOR_SCALE,
    capacity: Optional[Union[float, str]] = None,
    floor: float = 0.0,
) -> Growth:
    return Growth(
        kind=kind,
        changepoint_count=changepoint_count,
        changepoint_range=changepoint_range,
        changepoint_prior_scale=changepoint_prior_scale,
        capacity=capacity,
        floor=floor,
    )


def season(
    period: Union[str, float, pd.Timedelta],
    fourier_order: Optional[int] = None,
    type: str = "additive",
    prior_scale: float = DEFAULT_SEASONALITY_PRIOR_SCALE,
    name: Optional[str] = None,
) -> Season:
    return Season(
        period=period,
        fourier_order=fourier_order,
        type=type,
        prior_scale=prior_scale,
        name=name,
    )


def holiday(
    name: str,
    dates: Iterable[Any],
    window: Tuple[int, int] = (0, 0),
    prior_scale: float = DEFAULT_HOLIDAY_PRIOR_SCALE,
    mode: str = "additive",
) -> Holiday:
    return Holiday(name=name, dates=tuple(dates), window=window, prior_scale=prior_scale, mode=mode)


def regressor(
    column: str,
    mode: str = "additive",
    prior_scale: float = DEFAULT_REGRESSOR_PRIOR_SCALE,
    standardize: Union[str, bool] = "auto",
) -> Regressor:
    return Regressor(column=column, mode=mode, prior_scale=prior_scale, standardize=standardize)


def country_holidays(
    country: str,
    years: Sequence[int],
    window: Tuple[int, int] = (0, 0),
    prior_scale: float = DEFAULT_HOLIDAY_PRIOR_SCALE,
    mode: str = "additive",
) -> List[Holiday]:
    """Build one holiday term per public holiday of ``country``.

    The calendar comes from Prophet's holiday tables, so any country name
    accepted by ``Prophet.add_country_holidays`` works here too.

    Parameters
    ----------
    country : str
        Country name or ISO code, e.g. ``"US"`` or ``"Australia"``.
    years : sequence of int
        Calendar years to generate dates for.  Cover the history and the
        forecast horizon.
    window : tuple of int, default ``(0, 0)``
        Day offsets around each date in which the effect is active.

    Returns
    -------
    list of Holiday
    """
    from prophet.make_holidays import make_holidays_df

    try:
        frame = make_holidays_df(year_list=list(years), country=country)
    except (AttributeError, NotImplementedError) as exc:
        raise SpecificationError(f"No holiday calendar for country {country!r}") from exc
    return [
        Holiday(name=str(name), dates=tuple(group["ds"]), window=window, prior_scale=prior_scale, mode=mode)
        for name, group in frame.groupby("holiday", sort=False)
    ]


def auto_seasons(ds: pd.Series) -> Tuple[Season, ...]:
    """Select default seasons from the span and sampling interval of a series.

    * yearly (order 10) when the series spans at least two years;
    * weekly (order 3) when it spans at least two weeks and is sampled more
      often than weekly;
    * daily (order 4) when it spans at least two days and is sampled more
      often than daily.
    """
    ds = pd.to_datetime(pd.Series(ds)).sort_values()
    if len(ds) < 2:
        return ()
    span_days = (ds.iloc[-1] - ds.iloc[0]).total_seconds() / 86400.0
    diffs = ds.diff().dropna()
    diffs = diffs[diffs > pd.Timedelta(0)]
    if diffs.empty:
        return ()
    min_interval_days = diffs.min().total_seconds() / 86400.0
    seasons = []
    if span_days >= 2 * PERIODS["year"]:
        seasons.append(Season("year"))
    if span_days >= 2 * PERIODS["week"] and min_interval_days < PERIODS["week"]:
        seasons.append(Season("week"))
    if span_days >= 2 * PERIODS["day"] and min_interval_days < PERIODS["day"]:
        seasons.append(Season("day"))
    return tuple(seasons)
