"""
Tests for composing model specifications and validating them into term lists.
"""
import pandas as pd
import pytest

from grouped_forecast.errors import SpecificationError
from grouped_forecast.formula import ModelSpec, TermList, parse_spec
from grouped_forecast.terms import Growth, Regressor, Season, growth, holiday, regressor, season


def test_spec_composition_is_immutable():
    base = ModelSpec("sales")
    extended = base + season("week")
    assert base.terms == ()
    assert extended.terms == (Season("week"),)
    assert extended.response == "sales"


def test_string_adds_regressor():
    spec = ModelSpec("y") + "price" + ["promo", regressor("temp", mode="multiplicative")]
    assert spec.terms == (Regressor("price"), Regressor("promo"), Regressor("temp", mode="multiplicative"))


def test_adding_unknown_object_fails():
    with pytest.raises(SpecificationError):
        ModelSpec("y") + 3


def test_spec_string_rendering():
    spec = (
        ModelSpec("y")
        + growth("logistic", capacity=100.0)
        + season("week")
        + season("year", type="multiplicative")
        + "price"
    )
    assert str(spec) == (
        "y ~ growth(kind='logistic', capacity=100.0) + season(7.0)"
        " + season(365.25, type='multiplicative') + price"
    )
    assert str(ModelSpec("y")) == "y ~ <automatic>"


def test_spec_equality():
    assert ModelSpec("y") + "price" == ModelSpec("y", ["price"])
    assert ModelSpec("y") + "price" != ModelSpec("y") + "promo"


def test_parse_inserts_default_growth():
    terms = parse_spec(ModelSpec("y") + season("week"))
    assert terms.growth == Growth()
    assert terms.seasons == (Season("week"),)
    assert not terms.automatic
    assert terms.names == ("trend", "weekly")


def test_parse_empty_spec_is_automatic():
    terms = parse_spec(ModelSpec("y"))
    assert terms.automatic
    assert terms.terms == (Growth(),)


def test_parse_keeps_declaration_order():
    promo = holiday("promo", ["2024-01-05"])
    terms = parse_spec(ModelSpec("y") + "price" + season("week") + promo + growth("flat"))
    assert terms.growth.kind == "flat"
    assert terms.names == ("trend", "price", "weekly", "promo")
    assert terms.components == (Regressor("price"), Season("week"), promo)


def test_parse_rejects_two_growth_terms():
    with pytest.raises(SpecificationError):
        parse_spec(ModelSpec("y") + growth("linear") + growth("flat"))


def test_parse_rejects_duplicate_names():
    with pytest.raises(SpecificationError):
        parse_spec(ModelSpec("y") + season("week") + season(7))


@pytest.mark.parametrize("column", ["trend", "yhat", "y"])
def test_parse_rejects_reserved_names(column):
    with pytest.raises(SpecificationError):
        parse_spec(ModelSpec("y") + column)


def test_parse_checks_columns():
    spec = ModelSpec("y") + "price" + growth("logistic", capacity="cap")
    assert parse_spec(spec, columns=["ds", "y", "price", "cap"]).columns == ("price", "cap")
    with pytest.raises(SpecificationError, match="cap"):
        parse_spec(spec, columns=["ds", "y", "price"])
    with pytest.raises(SpecificationError):
        parse_spec(ModelSpec("sales"), columns=["ds", "y"])


def test_parse_rejects_unresolvable_period():
    spec = ModelSpec("y") + season("day")
    with pytest.raises(SpecificationError):
        parse_spec(spec, interval=pd.Timedelta(days=1))
    assert parse_spec(spec, interval=pd.Timedelta(hours=1)).seasons[0].name == "daily"
    with pytest.raises(SpecificationError):
        parse_spec(ModelSpec("y") + season("week"), interval=7.0)


def test_parse_rejects_other_objects():
    with pytest.raises(SpecificationError):
        parse_spec("y ~ price")


def test_with_seasons_resolves_automatic_mode():
    terms = parse_spec(ModelSpec("y"))
    resolved = terms.with_seasons([Season("week")])
    assert not resolved.automatic
    assert resolved.names == ("trend", "weekly")


@pytest.mark.parametrize(
    "spec",
    [
        ModelSpec("y"),
        ModelSpec("y") + growth("flat"),
        ModelSpec("y") + growth("logistic", capacity="cap", changepoint_count=3) + season("year", type="multiplicative"),
        ModelSpec("y") + holiday("promo", ["2024-01-01"], window=(-1, 1)) + "price",
    ],
)
def test_term_list_round_trip(spec):
    terms = parse_spec(spec)
    rebuilt = parse_spec(TermList.from_dict(terms.to_dict()).to_spec())
    assert rebuilt == terms
    assert parse_spec(terms) == terms
