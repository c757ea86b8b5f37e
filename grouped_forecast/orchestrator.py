"""Fit, decompose and forecast every series of a grouped table.

:func:`fit_all` fits one independent model per key and collects the results in
a :class:`KeyedModels` container.  Keys keep the order in which they first
appear in the table.  A series that cannot be fit leaves a
:class:`~grouped_forecast.errors.FitError` in its slot; only a malformed
specification stops the batch.
"""

from __future__ import annotations

import concurrent.futures
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import joblib
import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from .data import finest_interval, key_columns, partition_by_key
from .decompose import decompose
from .errors import FitError, SpecificationError
from .formula import ModelSpec, TermList, parse_spec
from .model import FittedModel, fit
from .optimizer import DEFAULT_CHAINS
from .simulate import DEFAULT_PATH_COUNT, simulate

logger = logging.getLogger(__name__)

KeyArg = Union[None, str, Sequence[str]]


@dataclass(frozen=True)
class FitSummary:
    """Outcome counts of a batch fit."""

    n_fitted: int
    n_failed: int
    failures: Dict[Any, str]

    @property
    def n_total(self) -> int:
        return self.n_fitted + self.n_failed

    def __str__(self) -> str:
        return f"{self.n_fitted} fitted, {self.n_failed} failed"


def _run(func: Callable, arg_list: List[tuple], n_jobs: int) -> list:
    """Apply ``func`` to each argument tuple, in parallel when ``n_jobs != 1``."""
    if n_jobs == 1 or len(arg_list) < 2:
        return [func(*args) for args in arg_list]
    return Parallel(n_jobs=n_jobs)(delayed(func)(*args) for args in arg_list)


def _fit_one(
    series: pd.DataFrame,
    terms: TermList,
    index: str,
    timeout: Optional[float],
    options: Dict[str, Any],
) -> Union[FittedModel, FitError]:
    if timeout is None:
        return fit(series, terms, index, **options)
    # The worker thread cannot be interrupted; its result is discarded after the deadline
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
    future = executor.submit(fit, series, terms, index, **options)
    try:
        return future.result(timeout=timeout)
    except concurrent.futures.TimeoutError:
        return FitError(FitError.TIMEOUT, f"fit did not finish within {timeout}s")
    finally:
        executor.shutdown(wait=False)


def _forecast_one(
    model: FittedModel,
    future: Optional[pd.DataFrame],
    h: Optional[int],
    path_count: int,
    seed: np.random.SeedSequence,
) -> pd.DataFrame:
    return simulate(model, future, h=h, path_count=path_count, rng=np.random.default_rng(seed))


class KeyedModels(Mapping):
    """Mapping of series key to :class:`FittedModel` or :class:`FitError`.

    Keys are scalars for one key column, tuples for several and ``()`` for a
    table holding one series.  Iteration follows first appearance in the
    fitted table.
    """

    def __init__(
        self,
        models: Dict[Any, Union[FittedModel, FitError]],
        key: KeyArg,
        index: str,
        terms: TermList,
    ) -> None:
        self._models = dict(models)
        self.key_columns = tuple(key_columns(key))
        self.index = index
        self.terms = terms

    def __getitem__(self, key: Any) -> Union[FittedModel, FitError]:
        return self._models[key]

    def __iter__(self) -> Iterator[Any]:
        return iter(self._models)

    def __len__(self) -> int:
        return len(self._models)

    def __repr__(self) -> str:
        return f"KeyedModels({self.summary}, key={list(self.key_columns)})"

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------
    def fitted(self) -> Dict[Any, FittedModel]:
        return {k: v for k, v in self._models.items() if isinstance(v, FittedModel)}

    def failures(self) -> Dict[Any, FitError]:
        return {k: v for k, v in self._models.items() if isinstance(v, FitError)}

    @property
    def summary(self) -> FitSummary:
        failures = self.failures()
        return FitSummary(
            n_fitted=len(self._models) - len(failures),
            n_failed=len(failures),
            failures={k: v.reason for k, v in failures.items()},
        )

    def summary_frame(self) -> pd.DataFrame:
        """One row per key with its status and, for failures, the reason."""
        rows = []
        for k, v in self._models.items():
            row = dict(zip(self.key_columns, self._key_values(k)))
            if isinstance(v, FittedModel):
                row.update(status="fitted", reason=None, n_obs=v.n_obs, residual_scale=v.residual_scale)
            else:
                row.update(status="failed", reason=v.reason, n_obs=None, residual_scale=None)
            rows.append(row)
        return pd.DataFrame(rows)

    # ------------------------------------------------------------------
    # Per-key operations
    # ------------------------------------------------------------------
    def _key_values(self, key: Any) -> tuple:
        if not self.key_columns:
            return ()
        return key if len(self.key_columns) > 1 else (key,)

    def _with_keys(self, key: Any, frame: pd.DataFrame) -> pd.DataFrame:
        for pos, (col, value) in enumerate(zip(self.key_columns, self._key_values(key))):
            frame.insert(pos, col, value)
        return frame

    def _split(self, new_data: Optional[pd.DataFrame]) -> Dict[Any, Optional[pd.DataFrame]]:
        """Rows of ``new_data`` per fitted key; ``None`` for every key when absent."""
        fitted = self.fitted()
        skipped = [k for k in self._models if k not in fitted]
        if skipped:
            logger.warning("Skipping %d key(s) without a fitted model", len(skipped))
        if new_data is None:
            return {k: None for k in fitted}
        missing = [c for c in self.key_columns if c not in new_data.columns]
        if missing:
            raise SpecificationError(f"Key columns not found in new data: {missing}")
        parts = dict(partition_by_key(new_data, list(self.key_columns), self.index))
        unknown = [k for k in parts if k not in self._models]
        if unknown:
            logger.warning("Ignoring %d key(s) with no model: %s", len(unknown), unknown[:5])
        return {k: parts[k] for k in fitted if k in parts}

    def decompose(self, new_data: Optional[pd.DataFrame] = None) -> pd.DataFrame:
        """Component table of every fitted series.

        Parameters
        ----------
        new_data : pd.DataFrame, optional
            Rows to evaluate, with key columns, the time column and any
            regressor columns.  Defaults to each series' training history.

        Raises
        ------
        MissingRegressorError
            If any series lacks regressor values; no table is returned.
        """
        fitted = self.fitted()
        frames = [
            self._with_keys(k, decompose(fitted[k], rows))
            for k, rows in self._split(new_data).items()
        ]
        if not frames:
            return pd.DataFrame(columns=list(self.key_columns) + [self.index])
        return pd.concat(frames, ignore_index=True)

    def forecast(
        self,
        h: Optional[int] = None,
        new_data: Optional[pd.DataFrame] = None,
        path_count: int = DEFAULT_PATH_COUNT,
        seed: Optional[int] = None,
        n_jobs: int = 1,
    ) -> pd.DataFrame:
        """Forecast table of every fitted series.

        Either ``h`` periods past each series' history or the rows of
        ``new_data`` (with key columns, time column and future regressor
        values) are forecast.  Each key draws from its own random stream
        spawned from ``seed`` in key order, so results do not depend on
        ``n_jobs``.
        """
        if new_data is None and h is None:
            raise ValueError("Either h or new_data must be given")
        fitted = self.fitted()
        parts = self._split(new_data)
        streams = dict(zip(self._models, np.random.SeedSequence(seed).spawn(len(self._models))))
        keys = list(parts)
        results = _run(
            _forecast_one,
            [(fitted[k], parts[k], h, path_count, streams[k]) for k in keys],
            n_jobs,
        )
        frames = [self._with_keys(k, frame) for k, frame in zip(keys, results)]
        if not frames:
            return pd.DataFrame(columns=list(self.key_columns) + [self.index, "trend", "yhat", "ensemble"])
        return pd.concat(frames, ignore_index=True)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def save(self, path: str) -> None:
        """Persist the container, histories included, with joblib."""
        joblib.dump(self, path)

    @classmethod
    def load(cls, path: str) -> "KeyedModels":
        obj = joblib.load(path)
        if not isinstance(obj, cls):
            raise TypeError(f"{path} does not contain a {cls.__name__}")
        return obj


def fit_all(
    table: pd.DataFrame,
    spec: Union[ModelSpec, TermList],
    key: KeyArg = None,
    index: str = "ds",
    n_jobs: int = 1,
    timeout: Optional[float] = None,
    mcmc_samples: int = 0,
    chains: int = DEFAULT_CHAINS,
    seed: Optional[int] = None,
) -> KeyedModels:
    """Fit one model per series of ``table``.

    Parameters
    ----------
    table : pd.DataFrame
        Observation table with key column(s), the time column, the response
        and any regressor columns.
    spec : ModelSpec or TermList
        Model applied to every series.
    key : str or sequence of str, optional
        Column(s) identifying each series.  ``None`` treats the whole table as
        one series stored under the key ``()``.
    index : str, default "ds"
        Name of the time column.
    n_jobs : int, default 1
        Number of joblib workers; series are independent.
    timeout : float, optional
        Seconds allowed per series.  Late fits are abandoned and recorded as
        a ``timeout`` failure.
    mcmc_samples, chains, seed : optional
        Posterior sampling settings passed to :func:`~grouped_forecast.model.fit`.
        With the default ``mcmc_samples=0`` each series gets its posterior
        mode only.

    Returns
    -------
    KeyedModels

    Raises
    ------
    SpecificationError
        If the specification is malformed or names missing columns.
    """
    cols = key_columns(key)
    missing = [c for c in cols + [index] if c not in table.columns]
    if missing:
        raise SpecificationError(f"Columns not found in table: {missing}")
    table = table.copy()
    table[index] = pd.to_datetime(table[index])
    terms = parse_spec(spec, columns=table.columns, interval=finest_interval(table, cols, index))

    partitions: List[Tuple[Any, pd.DataFrame]] = list(partition_by_key(table, cols, index))
    options = {"mcmc_samples": mcmc_samples, "chains": chains, "seed": seed}
    logger.info("Fitting %d series", len(partitions))
    results = _run(
        _fit_one,
        [(rows, terms, index, timeout, options) for _, rows in partitions],
        n_jobs,
    )
    models = KeyedModels(
        {k: result for (k, _), result in zip(partitions, results)},
        key=cols,
        index=index,
        terms=terms,
    )
    summary = models.summary
    logger.info("Fitted %d of %d series", summary.n_fitted, summary.n_total)
    if summary.n_failed:
        logger.warning("%d series failed to fit: %s", summary.n_failed, dict(list(summary.failures.items())[:5]))
    return models
