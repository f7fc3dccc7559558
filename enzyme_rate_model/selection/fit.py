from __future__ import annotations

import math
import time
from functools import partial
from typing import Any, Callable, Mapping, Sequence

import numpy as np
from scipy.optimize import Bounds, least_squares, minimize

from enzyme_rate_model.io.dataset_store import clean_rate_dataset
from enzyme_rate_model.mechanism.equation import RateEquation
from enzyme_rate_model.selection.loss import loss_rate_equation, source_weights, weighted_residuals
from enzyme_rate_model.selection.param_subset import (
    OPTIMIZER_BOUNDS,
    free_param_names,
    param_rescaling,
    param_subset_select,
    resolve_rescaling,
)
from enzyme_rate_model.types import FitResult, RateDataset

FIT_METHODS = ("least_squares", "powell")


class RestartBudgetExceeded(RuntimeError):
    pass


# errors that end one restart; anything else is a programming error and propagates
_RESTART_ERRORS = (ValueError, FloatingPointError, OverflowError, np.linalg.LinAlgError, RestartBudgetExceeded)


def resolve_fit_cfg(cfg: Mapping[str, Any] | None) -> dict[str, Any]:
    raw = dict(cfg or {})
    method = str(raw.get("method", "least_squares")).strip().lower()
    if method not in FIT_METHODS:
        raise ValueError(f"fit.method must be one of {list(FIT_METHODS)}; got {method!r}")
    n_iter = int(raw.get("n_iter", 20))
    if n_iter < 1:
        raise ValueError("fit.n_iter must be >= 1")
    max_nfev = int(raw.get("max_nfev", 2000))
    if max_nfev < 1:
        raise ValueError("fit.max_nfev must be >= 1")
    max_seconds = raw.get("max_seconds_per_restart")
    if max_seconds is not None:
        max_seconds = float(max_seconds)
        if not max_seconds > 0.0:
            raise ValueError("fit.max_seconds_per_restart must be > 0")
    return {
        "method": method,
        "n_iter": n_iter,
        "max_nfev": max_nfev,
        "max_seconds_per_restart": max_seconds,
        "tol": float(raw.get("tol", 1.0e-10)),
        "per_source_scaling": bool(raw.get("per_source_scaling", False)),
        "rescaling": resolve_rescaling(raw.get("rescaling")),
    }


def _identity_params(free: Mapping[str, float]) -> dict[str, float]:
    return dict(free)


class _Objective:
    def __init__(
        self,
        rate_equation: RateEquation,
        data: RateDataset,
        names: Sequence[str],
        to_params: Callable[[Mapping[str, float]], Mapping[str, float]],
        fit_cfg: dict[str, Any],
        weights: np.ndarray,
    ) -> None:
        self.rate_equation = rate_equation
        self.data = data
        self.names = tuple(names)
        self.to_params = to_params
        self.rescaling = fit_cfg["rescaling"]
        self.per_source_scaling = bool(fit_cfg["per_source_scaling"])
        self.max_seconds = fit_cfg["max_seconds_per_restart"]
        self.weights = weights
        self.t0 = time.perf_counter()

    def restart(self) -> None:
        self.t0 = time.perf_counter()

    def free_values(self, x: np.ndarray) -> dict[str, float]:
        values = param_rescaling(x, self.names, self.rescaling)
        return {name: float(v) for name, v in zip(self.names, values)}

    def residuals(self, x: np.ndarray) -> np.ndarray:
        if self.max_seconds is not None and time.perf_counter() - self.t0 > self.max_seconds:
            raise RestartBudgetExceeded(f"restart exceeded {self.max_seconds} s")
        params = self.to_params(self.free_values(x))
        pred = self.rate_equation.evaluate(self.data.metabs, params)
        pred = np.broadcast_to(pred, self.data.rate.shape)
        return weighted_residuals(
            pred,
            self.data.rate,
            self.data.source,
            self.weights,
            per_source_scaling=self.per_source_scaling,
        )

    def scalar(self, x: np.ndarray) -> float:
        r = self.residuals(x)
        return float(np.dot(r, r))


def _run_restart(objective: _Objective, x0: np.ndarray, fit_cfg: dict[str, Any]) -> np.ndarray:
    lo, hi = OPTIMIZER_BOUNDS
    objective.restart()
    if fit_cfg["method"] == "least_squares":
        res = least_squares(
            objective.residuals,
            x0,
            bounds=(lo, hi),
            method="trf",
            max_nfev=fit_cfg["max_nfev"],
            ftol=fit_cfg["tol"],
            xtol=fit_cfg["tol"],
        )
    else:
        res = minimize(
            objective.scalar,
            x0,
            method="Powell",
            bounds=Bounds(np.full(x0.shape, lo), np.full(x0.shape, hi)),
            options={"maxfev": fit_cfg["max_nfev"], "xtol": fit_cfg["tol"], "ftol": fit_cfg["tol"]},
        )
    return np.clip(np.asarray(res.x, dtype=float), lo, hi)


def fit_rate_equation(
    rate_equation: RateEquation,
    data: RateDataset,
    param_names: Sequence[str],
    cfg: Mapping[str, Any] | None = None,
    *,
    to_params: Callable[[Mapping[str, float]], Mapping[str, float]] | None = None,
    seed: int = 0,
    seed_key: Sequence[int] = (),
) -> FitResult:
    """Best-of-``n_iter`` bounded fit of the parameters ``param_names``.

    Every restart starts from a uniform draw in the optimizer box and owns a
    generator spawned from ``SeedSequence([seed, *seed_key])``, so results do not
    depend on the order in which candidates are fitted. ``to_params`` expands the
    fitted values to the equation's full parameter mapping; by default
    ``param_names`` must already cover every parameter. A restart that raises a
    numerical error, runs out of time, or ends with an invalid loss is counted as
    failed and skipped. Rows the loss cannot score (non-positive rate, non-finite
    values, negative concentrations) are dropped first and counted in
    ``n_dropped_rows``.
    """
    fit_cfg = resolve_fit_cfg(cfg)
    names = tuple(str(n) for n in param_names)
    expand = to_params or _identity_params
    data.require_metabs(rate_equation.metab_names)
    if data.n_rows == 0:
        raise ValueError("cannot fit a rate equation on an empty dataset")
    data, dropped = clean_rate_dataset(data, rate_equation.metab_names)
    n_dropped = len(dropped)

    weights = source_weights(data.source)
    per_source = fit_cfg["per_source_scaling"]

    if not names:
        loss = loss_rate_equation(rate_equation, data, expand({}), weights=weights, per_source_scaling=per_source)
        if not math.isfinite(loss):
            return FitResult(
                loss=float("inf"),
                params={},
                status="failed",
                n_restarts=1,
                n_failed_restarts=1,
                n_dropped_rows=n_dropped,
            )
        return FitResult(loss=loss, params={}, n_restarts=1, n_dropped_rows=n_dropped)

    objective = _Objective(rate_equation, data, names, expand, fit_cfg, weights)
    lo, hi = OPTIMIZER_BOUNDS
    streams = np.random.SeedSequence([int(seed), *[int(k) for k in seed_key]]).spawn(fit_cfg["n_iter"])

    best_loss = float("inf")
    best_free: dict[str, float] = {}
    n_failed = 0
    for stream in streams:
        rng = np.random.default_rng(stream)
        x0 = rng.uniform(lo, hi, size=len(names))
        try:
            x = _run_restart(objective, x0, fit_cfg)
        except _RESTART_ERRORS:
            n_failed += 1
            continue
        free = objective.free_values(x)
        loss = loss_rate_equation(rate_equation, data, expand(free), weights=weights, per_source_scaling=per_source)
        if not math.isfinite(loss):
            n_failed += 1
            continue
        if loss < best_loss:
            best_loss = loss
            best_free = free

    if not best_free:
        return FitResult(
            loss=float("inf"),
            params={},
            status="failed",
            n_restarts=fit_cfg["n_iter"],
            n_failed_restarts=n_failed,
            n_dropped_rows=n_dropped,
        )
    return FitResult(
        loss=best_loss,
        params=best_free,
        n_restarts=fit_cfg["n_iter"],
        n_failed_restarts=n_failed,
        n_dropped_rows=n_dropped,
    )


def fit_candidate(
    rate_equation: RateEquation,
    data: RateDataset,
    code: Sequence[int],
    cfg: Mapping[str, Any] | None = None,
    *,
    seed: int = 0,
) -> FitResult:
    """Fit the simplified equation that removal ``code`` makes of ``rate_equation``."""
    layout = rate_equation.require_layout()
    key = tuple(int(c) for c in code)
    return fit_rate_equation(
        rate_equation,
        data,
        free_param_names(layout, key),
        cfg,
        to_params=partial(param_subset_select, layout, key),
        seed=seed,
        seed_key=key,
    )
