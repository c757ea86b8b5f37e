"""
Tests for forecast accuracy metrics.
"""
import numpy as np
import pandas as pd
import pytest

from grouped_forecast.metrics import accuracy, compute_metrics, mape, smape


def test_mape_skips_zero_actuals():
    assert mape([100.0, 0.0, 50.0], [110.0, 5.0, 45.0]) == pytest.approx(10.0)
    assert np.isnan(mape([0.0], [1.0]))


def test_smape_bounds():
    assert smape([100.0], [100.0]) == 0.0
    assert smape([0.0], [0.0]) == 0.0
    assert smape([1.0], [-1.0]) == pytest.approx(200.0)


def test_compute_metrics_ignores_missing_pairs():
    result = compute_metrics([1.0, 2.0, np.nan, 4.0], [1.5, 2.0, 3.0, np.nan])
    assert result["MAE"] == pytest.approx(0.25)
    assert result["RMSE"] == pytest.approx(np.sqrt(0.125))
    assert result["R2"] is not None


def test_compute_metrics_degenerate_inputs():
    assert compute_metrics([], []) == {"MAE": None, "RMSE": None, "R2": None, "MAPE": None, "SMAPE": None}
    single = compute_metrics([2.0], [1.0])
    assert single["R2"] is None
    assert single["MAE"] == 1.0


def test_accuracy_per_series():
    ds = pd.date_range("2024-01-01", periods=3, freq="D")
    forecast = pd.DataFrame(
        {"store": ["a"] * 3 + ["b"] * 3, "ds": list(ds) * 2, "yhat": [1.0, 2.0, 3.0, 10.0, 10.0, 10.0]}
    )
    actual = pd.DataFrame(
        {"store": ["a"] * 2 + ["b"] * 3, "ds": list(ds[:2]) + list(ds), "y": [1.0, 2.0, 8.0, 10.0, 12.0]}
    )
    result = accuracy(forecast, actual, key="store")
    assert list(result["store"]) == ["a", "b"]
    assert list(result["n"]) == [2, 3]
    assert result.loc[0, "MAE"] == 0.0
    assert result.loc[1, "MAE"] == pytest.approx(4.0 / 3.0)
