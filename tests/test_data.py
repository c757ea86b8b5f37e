"""
Tests for loading, partitioning and preparing series.
"""
import numpy as np
import pandas as pd
import pytest

from grouped_forecast.data import (
    finest_interval,
    future_timestamps,
    infer_interval,
    load_data,
    partition_by_key,
    prepare_series,
    winsorize_per_key,
)
from grouped_forecast.errors import FitError


def test_load_data_parses_time_column(tmp_path):
    path = tmp_path / "train.csv"
    path.write_text("region,ds,y\nnorth,2024-01-01,1\nnorth,2024-01-02,2\n")
    df = load_data(str(path))
    assert pd.api.types.is_datetime64_any_dtype(df["ds"])
    assert len(df) == 2


def test_partition_keys():
    df = pd.DataFrame(
        {
            "a": ["x", "y", "x"],
            "b": [1, 1, 2],
            "ds": pd.to_datetime(["2024-01-02", "2024-01-01", "2024-01-01"]),
        }
    )
    assert [k for k, _ in partition_by_key(df, "a")] == ["x", "y"]
    assert [k for k, _ in partition_by_key(df, ["a", "b"])] == [("x", 1), ("y", 1), ("x", 2)]
    (key, rows), = partition_by_key(df, None)
    assert key == ()
    assert rows["ds"].is_monotonic_increasing


def test_prepare_series_checks():
    series = pd.DataFrame(
        {"ds": ["2024-01-02", "2024-01-01", "2024-01-03"], "y": [2.0, 1.0, None], "price": [1.0, 2.0, 3.0]}
    )
    out = prepare_series(series, "ds", "y", ["price"])
    assert list(out.columns) == ["ds", "y", "price"]
    assert list(out["y"]) == [1.0, 2.0]
    with pytest.raises(FitError) as excinfo:
        prepare_series(series.iloc[[0]], "ds", "y")
    assert excinfo.value.reason == FitError.INSUFFICIENT_OBSERVATIONS
    with pytest.raises(FitError) as excinfo:
        prepare_series(pd.concat([series, series]), "ds", "y")
    assert excinfo.value.reason == FitError.DUPLICATE_TIMESTAMPS


def test_prepare_series_rejects_infinite_values():
    series = pd.DataFrame(
        {"ds": pd.date_range("2024-01-01", periods=3), "y": [1.0, np.inf, 3.0], "price": [1.0, 2.0, 3.0]}
    )
    with pytest.raises(FitError) as excinfo:
        prepare_series(series, "ds", "y", ["price"])
    assert excinfo.value.reason == FitError.NON_FINITE_VALUES
    assert "'y'" in excinfo.value.detail
    series = series.assign(y=[1.0, 2.0, 3.0], price=[1.0, -np.inf, 3.0])
    with pytest.raises(FitError) as excinfo:
        prepare_series(series, "ds", "y", ["price"])
    assert excinfo.value.reason == FitError.NON_FINITE_VALUES
    assert "'price'" in excinfo.value.detail


def test_infer_interval():
    freq, interval = infer_interval(pd.Series(pd.date_range("2024-01-01", periods=6, freq="MS")))
    assert freq == "MS"
    assert interval == pd.Timedelta(days=31)
    freq, interval = infer_interval(pd.Series(pd.to_datetime(["2024-01-01", "2024-01-03", "2024-01-04"])))
    assert freq is None
    assert interval == pd.Timedelta(days=1.5)


def test_finest_interval():
    df = pd.DataFrame(
        {
            "k": ["a", "a", "b", "b"],
            "ds": pd.to_datetime(["2024-01-01", "2024-01-08", "2024-01-01 00:00", "2024-01-01 06:00"]),
        }
    )
    assert finest_interval(df, "k") == pd.Timedelta(hours=6)


def test_future_timestamps():
    last = pd.Timestamp("2024-01-31")
    assert list(future_timestamps(last, 2, freq="MS")) == [pd.Timestamp("2024-02-01"), pd.Timestamp("2024-03-01")]
    assert list(future_timestamps(last, 2, interval=pd.Timedelta(days=2))) == [
        pd.Timestamp("2024-02-02"),
        pd.Timestamp("2024-02-04"),
    ]
    with pytest.raises(ValueError):
        future_timestamps(last, 0, freq="D")


def test_winsorize_per_key():
    df = pd.DataFrame({"k": ["a"] * 20 + ["b"] * 20, "y": list(range(19)) + [1000] + list(range(20))})
    out = winsorize_per_key(df, "k", limits=(0.0, 0.05))
    assert out.loc[19, "y"] == 18
    assert out.loc[39, "y"] == 18
    assert df.loc[19, "y"] == 1000
