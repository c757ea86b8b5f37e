"""
Tests for design-matrix columns and trend functions.
"""
import numpy as np
import pandas as pd
import pytest

from grouped_forecast.errors import MissingRegressorError
from grouped_forecast.features import (
    changepoint_grid,
    design_matrix,
    fourier_series,
    holiday_features,
    logistic_offsets,
    piecewise_linear,
    piecewise_logistic,
    regressor_stats,
    regressor_values,
    scale_time,
    trend,
)
from grouped_forecast.terms import Growth, Holiday, Regressor, Season


def test_scale_time_maps_history_to_unit_interval():
    ds = pd.date_range("2024-01-01", periods=11, freq="D")
    t = scale_time(ds, ds[0], ds[-1] - ds[0])
    assert t[0] == 0.0
    assert t[-1] == 1.0
    assert np.allclose(np.diff(t), 0.1)


def test_fourier_series_shape_and_period():
    ds = pd.date_range("2024-01-01", periods=28, freq="D")
    X = fourier_series(ds, 7.0, 3)
    assert X.shape == (28, 6)
    assert np.allclose(X[:7], X[7:14])
    assert np.all(np.abs(X) <= 1.0)


def test_changepoint_grid_covers_first_part_of_history():
    ds = pd.Series(pd.date_range("2024-01-01", periods=100, freq="D"))
    cps = changepoint_grid(ds, Growth(changepoint_count=4, changepoint_range=0.8))
    assert len(cps) == 4
    assert cps[0] > ds.iloc[0]
    assert cps[-1] <= ds.iloc[79]
    assert cps.is_monotonic_increasing


def test_changepoint_grid_shrinks_for_short_history():
    ds = pd.Series(pd.date_range("2024-01-01", periods=10, freq="D"))
    assert len(changepoint_grid(ds, Growth())) == 7
    assert len(changepoint_grid(ds.iloc[:2], Growth())) == 0


def test_flat_growth_has_no_changepoints():
    ds = pd.Series(pd.date_range("2024-01-01", periods=100, freq="D"))
    assert len(changepoint_grid(ds, Growth("flat"))) == 0


def test_holiday_columns_follow_window():
    ds = pd.date_range("2024-12-22", periods=7, freq="D")
    term = Holiday("xmas", ("2024-12-25",), window=(-1, 1))
    values, cols = holiday_features(ds, term)
    assert [c.name for c in cols] == ["xmas_-1", "xmas_+0", "xmas_+1"]
    assert values.shape == (7, 3)
    assert values[:, 0].tolist() == [0, 0, 1, 0, 0, 0, 0]
    assert values[:, 1].tolist() == [0, 0, 0, 1, 0, 0, 0]
    assert values[:, 2].tolist() == [0, 0, 0, 0, 1, 0, 0]


def test_regressor_stats_skips_binary_columns():
    assert regressor_stats(pd.Series([0, 1, 1, 0]), Regressor("promo")) == (0.0, 1.0)
    mu, std = regressor_stats(pd.Series([1.0, 2.0, 3.0]), Regressor("price"))
    assert mu == pytest.approx(2.0)
    assert std == pytest.approx(1.0)
    assert regressor_stats(pd.Series([5.0, 5.0]), Regressor("price")) == (5.0, 1.0)
    assert regressor_stats(pd.Series([1.0, 2.0]), Regressor("price", standardize=False)) == (0.0, 1.0)


def test_regressor_values_refuses_missing():
    frame = pd.DataFrame({"price": [1.0, None, 3.0]})
    with pytest.raises(MissingRegressorError) as excinfo:
        regressor_values(frame, "price")
    assert excinfo.value.column == "price"
    with pytest.raises(MissingRegressorError):
        regressor_values(frame, "promo")


def test_design_matrix_layout():
    frame = pd.DataFrame(
        {"ds": pd.date_range("2024-01-01", periods=14, freq="D"), "price": np.arange(14.0)}
    )
    terms = [Season("week", fourier_order=2), Regressor("price", mode="multiplicative")]
    X, cols = design_matrix(frame, terms, {"price": (7.0, 2.0)})
    assert X.shape == (14, 5)
    assert [c.name for c in cols] == ["weekly_sin1", "weekly_cos1", "weekly_sin2", "weekly_cos2", "price"]
    assert [c.mode for c in cols][-1] == "multiplicative"
    assert np.allclose(X[:, -1], (np.arange(14.0) - 7.0) / 2.0)


def test_design_matrix_without_terms():
    frame = pd.DataFrame({"ds": pd.date_range("2024-01-01", periods=3, freq="D")})
    X, cols = design_matrix(frame, [], {})
    assert X.shape == (3, 0)
    assert cols == []


def test_piecewise_linear_is_continuous():
    cps = np.array([0.3, 0.6])
    deltas = np.array([1.5, -2.0])
    t = np.array([0.3 - 1e-9, 0.3, 0.6 - 1e-9, 0.6, 1.0])
    y = piecewise_linear(t, deltas, 1.0, 0.5, cps)
    assert y[0] == pytest.approx(y[1])
    assert y[2] == pytest.approx(y[3])
    # slope after both changepoints is k + sum(deltas)
    assert (y[4] - y[3]) / 0.4 == pytest.approx(0.5)


def test_piecewise_logistic_is_continuous_and_bounded():
    cps = np.array([0.4])
    deltas = np.array([3.0])
    t = np.linspace(0, 1, 201)
    cap = np.full_like(t, 2.0)
    y = piecewise_logistic(t, cap, deltas, 4.0, 0.5, cps)
    assert np.all((y > 0) & (y < 2.0))
    before = piecewise_logistic(np.array([0.4 - 1e-9]), cap[:1], deltas, 4.0, 0.5, cps)
    after = piecewise_logistic(np.array([0.4]), cap[:1], deltas, 4.0, 0.5, cps)
    assert before[0] == pytest.approx(after[0], rel=1e-6)
    assert len(logistic_offsets(deltas, 4.0, 0.5, cps)) == 1


def test_flat_trend_is_constant():
    t = np.linspace(0, 1, 5)
    assert np.all(trend("flat", t, np.zeros(0), 0.0, 0.7, np.zeros(0)) == 0.7)
