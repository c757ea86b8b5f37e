"""
Tests for simulation-based forecasts and prediction intervals.
"""
import numpy as np
import pandas as pd
import pytest

from grouped_forecast.decompose import decompose
from grouped_forecast.errors import MissingRegressorError
from grouped_forecast.formula import ModelSpec
from grouped_forecast.model import fit
from grouped_forecast.simulate import forecast_intervals, simulate
from grouped_forecast.terms import growth, season


@pytest.fixture
def weekly_model(daily_series):
    return fit(daily_series, ModelSpec("y") + season("week"))


def test_same_seed_same_ensemble(weekly_model):
    first = simulate(weekly_model, h=14, path_count=100, seed=42)
    second = simulate(weekly_model, h=14, path_count=100, seed=42)
    assert np.array_equal(np.vstack(first["ensemble"]), np.vstack(second["ensemble"]))
    assert first["yhat"].equals(second["yhat"])


def test_different_seeds_differ(weekly_model):
    first = simulate(weekly_model, h=14, path_count=100, seed=1)
    second = simulate(weekly_model, h=14, path_count=100, seed=2)
    assert not np.allclose(np.vstack(first["ensemble"]), np.vstack(second["ensemble"]))


def test_point_forecast_is_ensemble_mean(weekly_model):
    out = simulate(weekly_model, h=10, path_count=200, seed=0)
    assert list(out.columns) == ["ds", "trend", "yhat", "ensemble"]
    assert all(len(e) == 200 for e in out["ensemble"])
    assert np.allclose(out["yhat"], [e.mean() for e in out["ensemble"]])


def test_horizon_extends_history(weekly_model):
    out = simulate(weekly_model, h=5, path_count=10, seed=0)
    expected = pd.date_range(weekly_model.end + pd.Timedelta(days=1), periods=5, freq="D")
    assert list(out["ds"]) == list(expected)


def test_trend_matches_decomposition(weekly_model):
    future = pd.date_range(weekly_model.end + pd.Timedelta(days=1), periods=5, freq="D")
    out = simulate(weekly_model, future, path_count=10, seed=0)
    assert np.allclose(out["trend"], decompose(weekly_model, future)["trend"])


def test_spread_grows_with_horizon(weekly_model):
    out = simulate(weekly_model, h=60, path_count=500, seed=3)
    spread = np.array([e.std() for e in out["ensemble"]])
    assert spread[-1] > 2 * spread[0]


def test_ensemble_centred_on_deterministic_forecast(weekly_model):
    future = pd.date_range(weekly_model.end + pd.Timedelta(days=1), periods=3, freq="D")
    out = simulate(weekly_model, future, path_count=2000, seed=4)
    expected = decompose(weekly_model, future)["yhat"]
    assert np.allclose(out["yhat"], expected, atol=1.0)


def test_flat_growth_has_no_trend_uncertainty(daily_series):
    model = fit(daily_series, ModelSpec("y") + growth("flat"))
    out = simulate(model, h=30, path_count=500, seed=5)
    spread = np.array([e.std() for e in out["ensemble"]])
    assert np.allclose(spread, model.residual_scale, rtol=0.15)


def test_missing_future_regressor(regressor_series):
    model = fit(regressor_series, ModelSpec("y") + "price")
    with pytest.raises(MissingRegressorError):
        simulate(model, h=3, path_count=10, seed=0)
    future = pd.DataFrame(
        {
            "ds": pd.date_range(model.end + pd.Timedelta(days=1), periods=3, freq="D"),
            "price": [8.0, 10.0, 12.0],
        }
    )
    out = simulate(model, future, path_count=50, seed=0)
    assert len(out) == 3


def test_invalid_arguments(weekly_model):
    with pytest.raises(ValueError):
        simulate(weekly_model)
    with pytest.raises(ValueError):
        simulate(weekly_model, h=3, path_count=0)
    with pytest.raises(ValueError):
        simulate(weekly_model, h=0)


def test_single_interval(weekly_model):
    out = forecast_intervals(simulate(weekly_model, h=10, path_count=300, seed=6), level=80)
    assert np.all(out["yhat_lower"] <= out["yhat"])
    assert np.all(out["yhat"] <= out["yhat_upper"])


def test_nested_intervals(weekly_model):
    out = forecast_intervals(simulate(weekly_model, h=10, path_count=300, seed=7), level=[80, 95])
    assert {"yhat_lower_80", "yhat_upper_80", "yhat_lower_95", "yhat_upper_95"} <= set(out.columns)
    assert np.all(out["yhat_lower_95"] <= out["yhat_lower_80"])
    assert np.all(out["yhat_upper_80"] <= out["yhat_upper_95"])


@pytest.mark.parametrize("level", [0, 100, 150])
def test_invalid_interval_level(weekly_model, level):
    with pytest.raises(ValueError):
        forecast_intervals(simulate(weekly_model, h=2, path_count=10, seed=0), level=level)


def test_mcmc_model_paths_follow_posterior_draws(daily_series):
    model = fit(daily_series, ModelSpec("y") + season("week"), mcmc_samples=100, chains=2, seed=5)
    first = simulate(model, h=7, path_count=150, seed=3)
    second = simulate(model, h=7, path_count=150, seed=3)
    assert np.array_equal(np.vstack(first["ensemble"]), np.vstack(second["ensemble"]))
    assert all(len(e) == 150 for e in first["ensemble"])
    point = decompose(model, first["ds"])["yhat"].to_numpy()
    spread = np.vstack(first["ensemble"]).std(axis=1)
    assert np.all(np.abs(first["yhat"].to_numpy() - point) < 3 * spread)
