#!/usr/bin/env python3
"""Generate forecasts from previously fitted models.

This script loads the models written by ``scripts/train.py`` and simulates
future values for one series or for all of them.  The output can be printed
to stdout or written to a CSV file.

Example usage::

    python scripts/predict.py --model-file model_output/models.pkl \
        --key "Region 1" --horizon 8 --level 80 95 --output-file forecast_region1.csv

Models that use regressors need their future values; pass them with
``--future-csv`` (key columns, time column and regressor columns).  If the
`--output-file` argument is omitted the forecasts will be printed to stdout as
a formatted table.
"""

import argparse
import logging
import sys
from pathlib import Path

# Lets a source checkout run the script without installing grouped_forecast
sys.path.append(str(Path(__file__).resolve().parents[1]))

from grouped_forecast import FittedModel, KeyedModels, forecast_intervals, simulate
from grouped_forecast.data import load_data


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Forecast future periods from fitted models.")
    parser.add_argument(
        "--model-file",
        required=True,
        help="Path to the joblib file written by train.py (models.pkl).",
    )
    parser.add_argument(
        "--key",
        nargs="+",
        default=None,
        help="Key value(s) of the series to forecast, one per key column.  Omit to forecast every series.",
    )
    parser.add_argument("--horizon", type=int, default=4, help="Number of future periods to forecast.")
    parser.add_argument("--future-csv", default=None, help="CSV with future timestamps and regressor values.")
    parser.add_argument("--path-count", type=int, default=1000, help="Simulated paths per forecast.")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for the simulation.")
    parser.add_argument(
        "--level",
        type=float,
        nargs="+",
        default=[80.0],
        help="Prediction interval level(s), in percent.",
    )
    parser.add_argument(
        "--output-file",
        default=None,
        help="Optional path to write the forecast to a CSV file.  If omitted, the forecast is printed to stdout.",
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level.")
    return parser.parse_args()


def find_key(models: KeyedModels, values):
    """Match command line strings against the container's keys."""
    wanted = tuple(str(v) for v in values)
    for key in models:
        candidate = key if isinstance(key, tuple) else (key,)
        if tuple(str(v) for v in candidate) == wanted:
            return key
    raise KeyError(f"Series {values} has no fitted model")


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=args.log_level.upper())
    logging.getLogger("cmdstanpy").setLevel(logging.WARNING)
    models = KeyedModels.load(args.model_file)
    future = load_data(args.future_csv, index=models.index) if args.future_csv else None

    if args.key:
        key = find_key(models, args.key)
        model = models[key]
        if not isinstance(model, FittedModel):
            raise SystemExit(f"Series {args.key} failed to fit: {model}")
        rows = None
        if future is not None:
            mask = (future[list(models.key_columns)].astype(str) == [str(v) for v in args.key]).all(axis=1)
            rows = future[mask]
            if rows.empty:
                raise SystemExit(f"{args.future_csv} has no rows for series {args.key}")
        forecast = simulate(model, rows, h=args.horizon, path_count=args.path_count, seed=args.seed)
        for pos, (col, value) in enumerate(zip(models.key_columns, args.key)):
            forecast.insert(pos, col, value)
    else:
        forecast = models.forecast(
            h=None if future is not None else args.horizon,
            new_data=future,
            path_count=args.path_count,
            seed=args.seed,
        )

    levels = args.level[0] if len(args.level) == 1 else args.level
    forecast = forecast_intervals(forecast, level=levels).drop(columns=["ensemble"])
    forecast[models.index] = forecast[models.index].astype(str)  # ISO strings for easier serialisation
    if args.output_file:
        output_path = Path(args.output_file)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        forecast.to_csv(output_path, index=False)
        print(f"Forecast written to {output_path}")
    else:
        # Print as a nice table
        print(forecast.to_string(index=False))


if __name__ == "__main__":
    main()
