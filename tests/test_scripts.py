"""
Tests for the command line scripts.
"""
import runpy
import sys
from pathlib import Path

import pandas as pd
import pytest

from grouped_forecast.formula import ModelSpec
from grouped_forecast.orchestrator import fit_all

SCRIPTS = Path(__file__).resolve().parents[1] / "scripts"


@pytest.fixture
def predict_main():
    return runpy.run_path(str(SCRIPTS / "predict.py"), run_name="predict")["main"]


@pytest.fixture
def saved_models(multi_key_table, tmp_path):
    models = fit_all(multi_key_table, ModelSpec("y"), key="region")
    path = tmp_path / "models.pkl"
    models.save(str(path))
    return models, path


def test_predict_one_key(saved_models, predict_main, tmp_path, monkeypatch):
    _, model_file = saved_models
    out = tmp_path / "forecast.csv"
    monkeypatch.setattr(
        sys,
        "argv",
        ["predict.py", "--model-file", str(model_file), "--key", "north", "--horizon", "3",
         "--path-count", "20", "--seed", "1", "--output-file", str(out)],
    )
    predict_main()
    forecast = pd.read_csv(out)
    assert len(forecast) == 3
    assert set(forecast["region"]) == {"north"}
    assert {"yhat", "yhat_lower", "yhat_upper"} <= set(forecast.columns)


def test_predict_rejects_future_rows_without_the_key(saved_models, predict_main, tmp_path, monkeypatch):
    models, model_file = saved_models
    future_csv = tmp_path / "future.csv"
    last = models["north"].end
    pd.DataFrame({"region": ["north"], "ds": [last + pd.Timedelta(days=1)]}).to_csv(future_csv, index=False)
    monkeypatch.setattr(
        sys,
        "argv",
        ["predict.py", "--model-file", str(model_file), "--key", "south", "--future-csv", str(future_csv)],
    )
    with pytest.raises(SystemExit, match="no rows for series"):
        predict_main()
