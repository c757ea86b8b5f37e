"""Model specification builder and its translation into a term list.

Models are composed with ``+`` rather than parsed from text::

    spec = ModelSpec("y") + growth("linear") + season("week") + "price"

A bare string adds a linear regressor on that column.  :func:`parse_spec`
checks the composed specification against a table schema and returns the
:class:`TermList` consumed by the fit engine.
"""

from __future__ import annotations

from dataclasses import MISSING, dataclass, fields, replace
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple, Union

import pandas as pd

from .errors import SpecificationError
from .terms import (
    TERM_TYPES,
    Growth,
    Holiday,
    Regressor,
    Season,
    Term,
    term_from_dict,
)

# Output columns of the component and forecast tables
RESERVED_NAMES = frozenset(
    [
        "trend",
        "additive_terms",
        "multiplicative_terms",
        "yhat",
        "yhat_lower",
        "yhat_upper",
        "ensemble",
    ]
)

_CONSTRUCTORS = {Growth: "growth", Season: "season", Holiday: "holiday", Regressor: "regressor"}


def _as_terms(other: Any) -> Tuple[Term, ...]:
    if isinstance(other, str):
        return (Regressor(other),)
    if isinstance(other, TERM_TYPES):
        return (other,)
    if isinstance(other, (list, tuple)):
        return tuple(t for item in other for t in _as_terms(item))
    raise SpecificationError(
        f"Cannot add {type(other).__name__} to a model specification; "
        "expected a growth, season, holiday or regressor term or a column name"
    )


def _render(term: Term) -> str:
    required = {f.name: getattr(term, f.name) for f in fields(term) if f.default is MISSING}
    # Defaults such as a season's name and order derive from the required fields
    baseline = type(term)(**required)
    args = []
    for f in fields(term):
        value = getattr(term, f.name)
        if f.name == "dates":
            args.append(f"<{len(value)} dates>")
        elif f.name in required:
            args.append(repr(value))
        elif value != getattr(baseline, f.name):
            args.append(f"{f.name}={value!r}")
    if isinstance(term, Regressor) and len(args) == 1:
        return term.column
    return f"{_CONSTRUCTORS[type(term)]}({', '.join(args)})"


class ModelSpec:
    """Declarative description of a model: a response and a sum of terms.

    Instances are immutable; ``spec + term`` returns a new specification.
    A specification with no terms selects trend and seasons automatically.
    """

    def __init__(self, response: str = "y", terms: Iterable[Any] = ()) -> None:
        if not isinstance(response, str) or not response:
            raise SpecificationError(f"Response must be a column name, got {response!r}")
        self._response = response
        self._terms = _as_terms(list(terms))

    @property
    def response(self) -> str:
        return self._response

    @property
    def terms(self) -> Tuple[Term, ...]:
        return self._terms

    def __add__(self, other: Any) -> "ModelSpec":
        return ModelSpec(self._response, self._terms + _as_terms(other))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ModelSpec):
            return NotImplemented
        return (self._response, self._terms) == (other._response, other._terms)

    def __hash__(self) -> int:
        return hash((self._response, self._terms))

    def __str__(self) -> str:
        rhs = " + ".join(_render(t) for t in self._terms) or "<automatic>"
        return f"{self._response} ~ {rhs}"

    def __repr__(self) -> str:
        return f"ModelSpec({str(self)!r})"


@dataclass(frozen=True)
class TermList:
    """Validated, ordered terms of one model.

    ``terms`` always starts with exactly one :class:`Growth`.  When
    ``automatic`` is true, seasons are chosen per series at fit time.
    """

    response: str
    terms: Tuple[Term, ...]
    automatic: bool = False

    @property
    def growth(self) -> Growth:
        return self.terms[0]  # type: ignore[return-value]

    @property
    def seasons(self) -> Tuple[Season, ...]:
        return tuple(t for t in self.terms if isinstance(t, Season))

    @property
    def holidays(self) -> Tuple[Holiday, ...]:
        return tuple(t for t in self.terms if isinstance(t, Holiday))

    @property
    def regressors(self) -> Tuple[Regressor, ...]:
        return tuple(t for t in self.terms if isinstance(t, Regressor))

    @property
    def components(self) -> Tuple[Union[Season, Holiday, Regressor], ...]:
        """Every term except growth, in declaration order."""
        return self.terms[1:]  # type: ignore[return-value]

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(t.name for t in self.terms)

    @property
    def columns(self) -> Tuple[str, ...]:
        """Table columns, besides time and response, the model reads."""
        cols = [r.column for r in self.regressors]
        if isinstance(self.growth.capacity, str):
            cols.append(self.growth.capacity)
        return tuple(cols)

    def with_seasons(self, seasons: Sequence[Season]) -> "TermList":
        """Return a copy with ``seasons`` appended and automatic mode resolved."""
        return replace(self, terms=self.terms + tuple(seasons), automatic=False)

    def to_spec(self) -> ModelSpec:
        if self.automatic and not self.components:
            return ModelSpec(self.response)
        return ModelSpec(self.response, self.terms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "response": self.response,
            "automatic": self.automatic,
            "terms": [t.to_dict() for t in self.terms],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TermList":
        terms = tuple(term_from_dict(t) for t in data["terms"])
        return cls(response=data["response"], terms=terms, automatic=bool(data.get("automatic", False)))


def parse_spec(
    spec: Union[ModelSpec, TermList],
    columns: Optional[Iterable[str]] = None,
    interval: Optional[Union[pd.Timedelta, float]] = None,
) -> TermList:
    """Validate a model specification and turn it into a :class:`TermList`.

    Parameters
    ----------
    spec : ModelSpec or TermList
        The composed specification.  A term list is re-validated.
    columns : iterable of str, optional
        Column names of the observation table.  When given, the response,
        regressor and capacity columns must be among them.
    interval : pandas.Timedelta or float, optional
        Finest sampling interval of the data (a float is read as days).
        When given, every season period must span at least two intervals.

    Returns
    -------
    TermList

    Raises
    ------
    SpecificationError
        For duplicate growth terms, clashing term names, unknown columns or
        periods that the sampling interval cannot resolve.
    """
    if isinstance(spec, TermList):
        spec = spec.to_spec()
    if not isinstance(spec, ModelSpec):
        raise SpecificationError(f"Expected a ModelSpec, got {type(spec).__name__}")

    growths = [t for t in spec.terms if isinstance(t, Growth)]
    if len(growths) > 1:
        raise SpecificationError(f"Only one growth term is allowed, got {len(growths)}")
    others = tuple(t for t in spec.terms if not isinstance(t, Growth))
    automatic = not spec.terms
    terms = (growths[0] if growths else Growth(),) + others

    seen = set()
    for term in others:
        if term.name in seen:
            raise SpecificationError(f"Duplicate term name: {term.name!r}")
        if term.name in RESERVED_NAMES or term.name == spec.response:
            raise SpecificationError(f"Term name {term.name!r} clashes with an output column")
        seen.add(term.name)

    term_list = TermList(response=spec.response, terms=terms, automatic=automatic)

    if columns is not None:
        available = set(columns)
        missing = [c for c in (spec.response,) + term_list.columns if c not in available]
        if missing:
            raise SpecificationError(f"Columns not found in table: {missing}")

    if interval is not None:
        if isinstance(interval, pd.Timedelta):
            interval_days = interval.total_seconds() / 86400.0
        else:
            interval_days = float(interval)
        for s in term_list.seasons:
            if s.period < 2 * interval_days:
                raise SpecificationError(
                    f"Season {s.name!r} has period {s.period:g} days, too short for data "
                    f"sampled every {interval_days:g} days"
                )
    return term_list
