#!/usr/bin/env python3
"""Fit one model per series of a grouped CSV file.

This command line script wraps :func:`grouped_forecast.fit_all` in a
convenient interface.  It reads a CSV file with a time column, a response
column and one or more key columns, optionally applies per-series
winsorization, fits one model per series and persists the results to disk.

Usage example::

    python scripts/train.py --input-csv data/train.csv --key region \
        --output-dir artifacts --season week --season year:multiplicative \
        --country-holidays Australia --winsorize --evaluate --horizon 6

The above command fits a linear trend with additive weekly and multiplicative
yearly seasons plus Australian public holidays, winsorizes the response to
mitigate outliers and scores forecasts for the last six periods of every
series.  The files ``models.pkl``, ``components.csv``, ``fit_summary.csv`` and,
with ``--evaluate``, ``metrics.csv`` are written to ``artifacts``.
"""

import argparse
import logging
import sys
from pathlib import Path

import pandas as pd

# Lets a source checkout run the script without installing grouped_forecast
sys.path.append(str(Path(__file__).resolve().parents[1]))

from grouped_forecast import (
    ModelSpec,
    accuracy,
    country_holidays,
    fit_all,
    growth,
    season,
)
from grouped_forecast.data import key_columns, load_data, winsorize_per_key


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fit one model per series.")
    parser.add_argument(
        "--input-csv",
        required=True,
        help="Path to the input CSV containing the time, response and key columns.",
    )
    parser.add_argument("--key", nargs="+", default=["region"], help="Column(s) identifying each series.")
    parser.add_argument("--index", default="ds", help="Name of the time column.")
    parser.add_argument("--response", default="y", help="Name of the response column.")
    parser.add_argument(
        "--output-dir",
        default="model_output",
        help="Directory to save the fitted models and artefacts.",
    )
    parser.add_argument("--growth", default="linear", choices=["linear", "logistic", "flat"])
    parser.add_argument("--changepoints", type=int, default=25, help="Number of candidate changepoints.")
    parser.add_argument(
        "--changepoint-prior-scale",
        type=float,
        default=0.05,
        help="Flexibility of the trend; larger values allow bigger slope changes.",
    )
    parser.add_argument("--capacity", default=None, help="Logistic capacity: a number or a column name.")
    parser.add_argument(
        "--season",
        action="append",
        default=[],
        help="Season as PERIOD[:TYPE[:ORDER]], e.g. 'week' or 'year:multiplicative:10'. Repeatable.",
    )
    parser.add_argument(
        "--regressor",
        action="append",
        default=[],
        help="Column to use as a linear regressor. Repeatable.",
    )
    parser.add_argument(
        "--country-holidays",
        default=None,
        help="Country name for public holiday terms (e.g. 'Australia', 'US').",
    )
    parser.add_argument(
        "--holiday-window",
        type=int,
        nargs=2,
        default=[0, 0],
        metavar=("LOWER", "UPPER"),
        help="Day offsets around each holiday in which its effect is active.",
    )
    parser.add_argument(
        "--winsorize",
        action="store_true",
        help="Apply per-series winsorization to the response to reduce the impact of outliers.",
    )
    parser.add_argument(
        "--evaluate",
        action="store_true",
        help="Hold out the last --horizon periods of each series and score forecasts for them.",
    )
    parser.add_argument("--horizon", type=int, default=4, help="Hold-out length used by --evaluate.")
    parser.add_argument("--path-count", type=int, default=1000, help="Simulated paths per forecast.")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for forecast simulation.")
    parser.add_argument("--n-jobs", type=int, default=1, help="Parallel workers for fitting.")
    parser.add_argument("--timeout", type=float, default=None, help="Seconds allowed per series fit.")
    parser.add_argument(
        "--mcmc-samples",
        type=int,
        default=0,
        help="MCMC iterations per chain for full posterior sampling.  0 keeps the posterior mode only.",
    )
    parser.add_argument("--chains", type=int, default=4, help="MCMC chains used with --mcmc-samples.")
    parser.add_argument("--log-level", default="INFO", help="Logging level.")
    return parser.parse_args()


def build_spec(args: argparse.Namespace, df: pd.DataFrame) -> ModelSpec:
    """Translate command line options into a model specification."""
    spec = ModelSpec(args.response)
    capacity = args.capacity
    if capacity is not None and capacity not in df.columns:
        capacity = float(capacity)
    custom_growth = (
        args.growth != "linear"
        or args.changepoints != 25
        or args.changepoint_prior_scale != 0.05
        or capacity is not None
    )
    # Without any terms the model selects its seasons automatically
    if custom_growth:
        spec = spec + growth(
            args.growth,
            changepoint_count=args.changepoints,
            changepoint_prior_scale=args.changepoint_prior_scale,
            capacity=capacity,
        )
    for text in args.season:
        parts = text.split(":")
        period = float(parts[0]) if parts[0].replace(".", "", 1).isdigit() else parts[0]
        kind = parts[1] if len(parts) > 1 else "additive"
        order = int(parts[2]) if len(parts) > 2 else None
        spec = spec + season(period, fourier_order=order, type=kind)
    spec = spec + list(args.regressor)
    if args.country_holidays:
        years = range(df[args.index].min().year, df[args.index].max().year + 2)
        spec = spec + country_holidays(args.country_holidays, years, window=tuple(args.holiday_window))
    return spec


def holdout_split(df: pd.DataFrame, key, index: str, horizon: int):
    """Split off the last ``horizon`` rows of every series that has at least twice as many."""
    df = df.sort_values(key_columns(key) + [index])
    position = df.groupby(key_columns(key), sort=False).cumcount(ascending=False)
    size = df.groupby(key_columns(key), sort=False)[index].transform("size")
    test_mask = (position < horizon) & (size >= 2 * horizon)
    return df[~test_mask].copy(), df[test_mask].copy()


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    logging.getLogger("cmdstanpy").setLevel(logging.WARNING)
    # Read and clean data
    df = load_data(args.input_csv, index=args.index)
    df = df.dropna(subset=[args.response]).copy()
    df[args.response] = df[args.response].astype(float)
    # Optionally winsorize
    if args.winsorize:
        df = winsorize_per_key(df, args.key, column=args.response)
    output_path = Path(args.output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    spec = build_spec(args, df)
    logging.getLogger(__name__).info("Model: %s", spec)
    if args.evaluate and args.horizon > 0:
        train_df, test_df = holdout_split(df, args.key, args.index, args.horizon)
    else:
        train_df, test_df = df, df.iloc[0:0]

    models = fit_all(
        train_df,
        spec,
        key=args.key,
        index=args.index,
        n_jobs=args.n_jobs,
        timeout=args.timeout,
        mcmc_samples=args.mcmc_samples,
        chains=args.chains,
        seed=args.seed,
    )
    model_file = output_path / "models.pkl"
    models.save(str(model_file))
    models.decompose().to_csv(output_path / "components.csv", index=False)
    models.summary_frame().to_csv(output_path / "fit_summary.csv", index=False)
    print(f"Models saved to {model_file} ({models.summary})")

    if not test_df.empty:
        future = test_df.drop(columns=[args.response])
        forecast = models.forecast(new_data=future, path_count=args.path_count, seed=args.seed, n_jobs=args.n_jobs)
        metrics_df = accuracy(forecast, test_df, key=args.key, index=args.index, response=args.response)
        metrics_file = output_path / "metrics.csv"
        metrics_df.to_csv(metrics_file, index=False)
        print(f"Metrics written to {metrics_file}")


if __name__ == "__main__":
    main()
