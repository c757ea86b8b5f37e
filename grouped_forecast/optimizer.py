"""Posterior estimation of trend and component coefficients.

The model, on scaled data, is Prophet's::

    k, m        ~ Normal(0, 5)
    delta_j     ~ Laplace(0, changepoint_prior_scale)
    beta_i      ~ Normal(0, prior_scale of column i's term)
    sigma       ~ HalfNormal(0.5)
    y           ~ Normal(g(t) * (1 + X_mult @ beta) + X_add @ beta, sigma)

where ``g`` is the piecewise trend.  Estimation is delegated to the Stan
model shipped with ``prophet`` through its backend interface:
:func:`estimate` returns the posterior mode and :func:`sample` draws from the
posterior with MCMC.  This module only lays out the backend's inputs and
reads its output back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from prophet.models import StanBackendEnum

from .errors import ConvergenceError

logger = logging.getLogger(__name__)

DEFAULT_BACKEND = "CMDSTANPY"
DEFAULT_CHAINS = 4
TREND_INDICATORS = {"linear": 0, "logistic": 1, "flat": 2}


@dataclass(frozen=True)
class Problem:
    """Inputs of one estimation.

    Parameters
    ----------
    t : ndarray
        Scaled time, shape ``(n,)``.
    y : ndarray
        Scaled response, shape ``(n,)``.
    X : ndarray
        Seasonal, holiday and regressor columns, shape ``(n, p)``.
    groups : sequence of str
        Coefficient group (term name) of each column of ``X``.
    multiplicative : ndarray of bool
        Whether each column of ``X`` scales the trend.
    prior_scales : dict
        Prior scale per coefficient group, plus ``"changepoints"``.
    changepoints_t : ndarray
        Scaled changepoint times.
    growth : str
        ``"linear"``, ``"logistic"`` or ``"flat"``.
    cap : ndarray, optional
        Scaled capacity, required for logistic growth.
    """

    t: np.ndarray
    y: np.ndarray
    X: np.ndarray
    groups: Sequence[str]
    multiplicative: np.ndarray
    prior_scales: Dict[str, float]
    changepoints_t: np.ndarray
    growth: str = "linear"
    cap: Optional[np.ndarray] = None


@dataclass(frozen=True)
class Estimate:
    """Point estimate, plus the posterior draws it summarises when sampled.

    ``samples`` maps ``k``, ``m``, ``delta``, ``beta`` and ``sigma`` to arrays
    with one row per draw.
    """

    k: float
    m: float
    delta: np.ndarray
    beta: np.ndarray
    sigma: float
    diagnostics: Dict[str, object] = field(default_factory=dict)
    samples: Optional[Dict[str, np.ndarray]] = None


def _validate(problem: Problem) -> None:
    n = problem.t.shape[0]
    if problem.y.shape != (n,):
        raise ValueError(f"y has shape {problem.y.shape}, expected ({n},)")
    if problem.X.ndim != 2 or problem.X.shape[0] != n:
        raise ValueError(f"X has shape {problem.X.shape}, expected ({n}, p)")
    p = problem.X.shape[1]
    if len(problem.groups) != p or problem.multiplicative.shape != (p,):
        raise ValueError("groups and multiplicative must have one entry per column of X")
    for arr, what in ((problem.t, "t"), (problem.y, "y"), (problem.X, "X")):
        if not np.all(np.isfinite(arr)):
            raise ValueError(f"{what} contains non-finite values")
    missing = {g for g in problem.groups if g not in problem.prior_scales}
    if "changepoints" not in problem.prior_scales:
        missing.add("changepoints")
    if missing:
        raise ValueError(f"No prior scale for coefficient groups: {sorted(missing)}")
    if problem.growth == "logistic":
        if problem.cap is None or problem.cap.shape != (n,) or np.any(problem.cap <= 0):
            raise ValueError("logistic growth needs a positive capacity for every row")
    elif problem.growth not in TREND_INDICATORS:
        raise ValueError(f"Unknown growth: {problem.growth!r}")


def _initial_trend(problem: Problem) -> Tuple[float, float]:
    t, y = problem.t, problem.y
    i0, i1 = int(np.argmin(t)), int(np.argmax(t))
    if problem.growth == "flat":
        return 0.0, float(np.mean(y))
    if problem.growth == "linear":
        k = (y[i1] - y[i0]) / (t[i1] - t[i0])
        return float(k), float(y[i0] - k * t[i0])
    cap = problem.cap
    c0, c1 = cap[i0], cap[i1]
    y0 = max(0.01 * c0, min(0.99 * c0, y[i0]))
    y1 = max(0.01 * c1, min(0.99 * c1, y[i1]))
    r0, r1 = c0 / y0, c1 / y1
    if abs(r0 - r1) <= 0.01:
        r0 = 1.05 * r0
    l0, l1 = np.log(r0 - 1), np.log(r1 - 1)
    m = l0 * (t[i1] - t[i0]) / (l0 - l1)
    k = (l0 - l1) / (t[i1] - t[i0])
    return float(k), float(m)


def _stan_inputs(problem: Problem) -> Tuple[dict, dict]:
    """Initial values and data in the layout of Prophet's Stan model."""
    n = problem.t.shape[0]
    # The Stan model needs at least one changepoint and one column; a
    # changepoint at t=0 and an all-zero column are removed again on read
    changepoints_t = problem.changepoints_t if len(problem.changepoints_t) else np.zeros(1)
    X = problem.X
    sigmas = [float(problem.prior_scales[g]) for g in problem.groups]
    mult = problem.multiplicative.astype(bool)
    if X.shape[1] == 0:
        X = np.zeros((n, 1))
        sigmas = [1.0]
        mult = np.zeros(1, dtype=bool)
    k0, m0 = _initial_trend(problem)
    data = {
        "T": n,
        "S": len(changepoints_t),
        "K": X.shape[1],
        "tau": float(problem.prior_scales["changepoints"]),
        "trend_indicator": TREND_INDICATORS[problem.growth],
        "y": problem.y,
        "t": problem.t,
        "cap": problem.cap if problem.growth == "logistic" else np.zeros(n),
        "t_change": changepoints_t,
        "X": pd.DataFrame(X),
        "sigmas": sigmas,
        "s_a": (~mult).astype(float),
        "s_m": mult.astype(float),
    }
    init = {
        "k": k0,
        "m": m0,
        "delta": np.zeros(len(changepoints_t)),
        "beta": np.zeros(X.shape[1]),
        "sigma_obs": 1.0,
    }
    return init, data


def _read_params(params: Dict[str, np.ndarray], problem: Problem) -> Dict[str, np.ndarray]:
    """Backend output as arrays with one row per draw, padding removed."""
    k = np.asarray(params["k"], dtype=float).reshape(-1)
    draws = k.shape[0]
    m = np.asarray(params["m"], dtype=float).reshape(draws)
    delta = np.asarray(params["delta"], dtype=float).reshape(draws, -1)
    beta = np.asarray(params["beta"], dtype=float).reshape(draws, -1)[:, : problem.X.shape[1]]
    sigma = np.asarray(params["sigma_obs"], dtype=float).reshape(draws)
    if len(problem.changepoints_t) == 0:
        # Fold the padding changepoint at t=0 into the base rate and offset
        d = delta[:, 0]
        if problem.growth == "logistic":
            m = m * k / (k + d)
        k = k + d
        delta = delta[:, :0]
    if problem.growth == "flat":
        k = np.zeros_like(k)
        delta = np.zeros_like(delta)
    values = {"k": k, "m": m, "delta": delta, "beta": beta, "sigma": sigma}
    if not all(np.all(np.isfinite(v)) for v in values.values()):
        raise ConvergenceError("backend returned non-finite parameter values")
    return values


def _backend(name: str):
    return StanBackendEnum.get_backend_class(name)()


def estimate(problem: Problem, backend: str = DEFAULT_BACKEND) -> Estimate:
    """Find the posterior mode of ``problem``.

    Raises
    ------
    ValueError
        If the inputs are malformed (shape mismatch, non-finite values,
        missing prior scales) or ``backend`` is unknown.
    ConvergenceError
        If the backend's optimizer fails or ends on non-finite values.
    """
    _validate(problem)
    init, data = _stan_inputs(problem)
    stan = _backend(backend)
    try:
        params = stan.fit(init, data)
    except RuntimeError as exc:
        raise ConvergenceError(f"optimizer did not converge: {exc}") from exc
    values = _read_params(params, problem)
    logger.debug("Posterior mode found with the %s backend", backend)
    return Estimate(
        k=float(values["k"][0]),
        m=float(values["m"][0]),
        delta=values["delta"][0],
        beta=values["beta"][0],
        sigma=float(values["sigma"][0]),
        diagnostics={"method": "optimize", "backend": backend},
    )


def sample(
    problem: Problem,
    mcmc_samples: int,
    chains: int = DEFAULT_CHAINS,
    seed: Optional[int] = None,
    backend: str = DEFAULT_BACKEND,
) -> Estimate:
    """Draw from the posterior of ``problem`` with MCMC.

    As in Prophet, each chain runs ``mcmc_samples`` iterations of which the
    first half is warm-up, so ``chains * (mcmc_samples // 2)`` draws are kept.
    The returned point estimate is the posterior mean.

    Raises
    ------
    ValueError
        If the inputs are malformed or fewer than two iterations are asked for.
    ConvergenceError
        If the sampler fails or returns non-finite draws.
    """
    if mcmc_samples < 2 or chains < 1:
        raise ValueError(f"Need mcmc_samples >= 2 and chains >= 1, got {mcmc_samples} and {chains}")
    _validate(problem)
    init, data = _stan_inputs(problem)
    stan = _backend(backend)
    try:
        params = stan.sampling(init, data, mcmc_samples, chains=chains, seed=seed, show_progress=False)
    except RuntimeError as exc:
        raise ConvergenceError(f"sampler failed: {exc}") from exc
    values = _read_params(params, problem)
    draws = len(values["k"])
    logger.debug("Drew %d posterior samples over %d chains", draws, chains)
    return Estimate(
        k=float(values["k"].mean()),
        m=float(values["m"].mean()),
        delta=values["delta"].mean(axis=0),
        beta=values["beta"].mean(axis=0),
        sigma=float(values["sigma"].mean()),
        diagnostics={"method": "sample", "backend": backend, "draws": draws, "chains": chains},
        samples=values,
    )
