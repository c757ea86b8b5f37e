"""
Shared synthetic series for the test suite.
"""
import numpy as np
import pandas as pd
import pytest


def linear_series(n=24, slope=10.0, intercept=50.0, weekly_amplitude=0.0, noise=0.5, seed=0, start="2024-01-01"):
    """Daily series with a linear trend and an optional additive weekly cycle."""
    rng = np.random.default_rng(seed)
    ds = pd.date_range(start, periods=n, freq="D")
    i = np.arange(n)
    days = (ds - pd.Timestamp("1970-01-01")) / pd.Timedelta(days=1)
    y = intercept + slope * i + weekly_amplitude * np.sin(2 * np.pi * np.asarray(days) / 7.0)
    return pd.DataFrame({"ds": ds, "y": y + rng.normal(0, noise, n)})


@pytest.fixture
def daily_series():
    return linear_series(n=60, slope=2.0, intercept=20.0, weekly_amplitude=3.0, noise=0.3, seed=1)


@pytest.fixture
def two_series_table():
    a = linear_series(weekly_amplitude=0.0, seed=11).assign(series="A")
    b = linear_series(weekly_amplitude=5.0, seed=12).assign(series="B")
    return pd.concat([a, b], ignore_index=True)


@pytest.fixture
def regressor_series():
    rng = np.random.default_rng(7)
    n = 120
    ds = pd.date_range("2023-01-01", periods=n, freq="D")
    price = rng.normal(10, 2, n)
    y = 20 + 0.1 * np.arange(n) + 3.0 * price + rng.normal(0, 0.2, n)
    return pd.DataFrame({"ds": ds, "y": y, "price": price})


@pytest.fixture
def multi_key_table():
    frames = []
    for i, region in enumerate(["north", "south", "east", "west"]):
        frames.append(
            linear_series(n=40, slope=1.0 + i, intercept=10.0 * (i + 1), seed=20 + i).assign(region=region)
        )
    return pd.concat(frames, ignore_index=True)
