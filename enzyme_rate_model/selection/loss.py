"""Weighted log-ratio loss.

Each row contributes ``(ln(predicted / observed))**2``. Rows are weighted by the
inverse size of their source so every source carries the same total weight.
A prediction that is non-positive or non-finite makes the whole evaluation
invalid (``inf``); this rule is shared by fitting and held-out scoring.
"""

from __future__ import annotations

from typing import Any, Mapping

import numpy as np

from enzyme_rate_model.mechanism.equation import RateEquation
from enzyme_rate_model.types import RateDataset

# residual used for rows with an invalid prediction while the optimizer is still searching
INVALID_RESIDUAL = 1.0e3


def source_weights(source: np.ndarray) -> np.ndarray:
    src = np.asarray(source, dtype=str)
    if src.size == 0:
        return np.zeros((0,), dtype=float)
    _, inverse, counts = np.unique(src, return_inverse=True, return_counts=True)
    w = 1.0 / counts[inverse].astype(float)
    return w / float(np.sum(w))


def _check_observed(observed: np.ndarray) -> None:
    bad = np.where(~np.isfinite(observed) | (observed <= 0.0))[0]
    if bad.size:
        raise ValueError(f"observed rates must be positive and finite; bad rows: {bad.tolist()[:20]}")


def _center_by_source(log_ratios: np.ndarray, source: np.ndarray) -> np.ndarray:
    out = np.array(log_ratios, dtype=float)
    for name in np.unique(source):
        mask = source == name
        out[mask] = out[mask] - float(np.mean(out[mask]))
    return out


def _predictions(rate_equation: RateEquation, data: RateDataset, params: Mapping[str, float], keq: float | None) -> np.ndarray:
    pred = rate_equation.evaluate(data.metabs, params, keq)
    return np.broadcast_to(pred, data.rate.shape).astype(float)


def row_log_ratios(
    predicted: np.ndarray,
    observed: np.ndarray,
    source: np.ndarray | None = None,
    *,
    per_source_scaling: bool = False,
) -> np.ndarray | None:
    """Log-ratios per row, or ``None`` when any prediction is invalid."""
    pred = np.asarray(predicted, dtype=float)
    obs = np.asarray(observed, dtype=float)
    _check_observed(obs)
    if pred.shape != obs.shape:
        raise ValueError("predicted and observed must have the same shape")
    if not np.all(np.isfinite(pred)) or np.any(pred <= 0.0):
        return None
    r = np.log(pred / obs)
    if per_source_scaling:
        if source is None:
            raise ValueError("per_source_scaling requires source tags")
        r = _center_by_source(r, np.asarray(source, dtype=str))
    return r


def weighted_log_ratio_loss(
    predicted: np.ndarray,
    observed: np.ndarray,
    source: np.ndarray,
    *,
    weights: np.ndarray | None = None,
    per_source_scaling: bool = False,
) -> float:
    r = row_log_ratios(predicted, observed, source, per_source_scaling=per_source_scaling)
    if r is None:
        return float("inf")
    w = source_weights(source) if weights is None else np.asarray(weights, dtype=float)
    loss = float(np.sum(w * r * r))
    return loss if np.isfinite(loss) else float("inf")


def loss_rate_equation(
    rate_equation: RateEquation,
    data: RateDataset,
    params: Mapping[str, float],
    keq: float | None = None,
    *,
    weights: np.ndarray | None = None,
    per_source_scaling: bool = False,
) -> float:
    """Weighted loss of ``rate_equation`` with full parameter mapping ``params`` on ``data``."""
    pred = _predictions(rate_equation, data, params, keq)
    return weighted_log_ratio_loss(
        pred,
        data.rate,
        data.source,
        weights=weights,
        per_source_scaling=per_source_scaling,
    )


def weighted_residuals(
    predicted: np.ndarray,
    observed: np.ndarray,
    source: np.ndarray,
    weights: np.ndarray,
    *,
    per_source_scaling: bool = False,
) -> np.ndarray:
    """``sqrt(w) * ln(pred / obs)``; the sum of squares equals the weighted loss."""
    pred = np.asarray(predicted, dtype=float)
    obs = np.asarray(observed, dtype=float)
    valid = np.isfinite(pred) & (pred > 0.0)
    r = np.full(obs.shape, INVALID_RESIDUAL, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        r[valid] = np.log(pred[valid] / obs[valid])
    if per_source_scaling and np.all(valid):
        r = _center_by_source(r, np.asarray(source, dtype=str))
    return np.sqrt(np.asarray(weights, dtype=float)) * r


def source_loss_contributions(
    predicted: np.ndarray,
    observed: np.ndarray,
    source: np.ndarray,
    *,
    per_source_scaling: bool = False,
) -> dict[str, float]:
    src = np.asarray(source, dtype=str)
    r = row_log_ratios(predicted, observed, src, per_source_scaling=per_source_scaling)
    w = source_weights(src)
    out: dict[str, float] = {}
    for name in sorted(set(src.tolist())):
        mask = src == name
        out[name] = float("inf") if r is None else float(np.sum(w[mask] * r[mask] * r[mask]))
    return out


def loss_summary(rate_equation: RateEquation, data: RateDataset, params: Mapping[str, float], cfg: Mapping[str, Any] | None = None) -> dict[str, Any]:
    fit_cfg = dict(cfg or {})
    per_source = bool(fit_cfg.get("per_source_scaling", False))
    pred = _predictions(rate_equation, data, params, None)
    return {
        "loss": weighted_log_ratio_loss(pred, data.rate, data.source, per_source_scaling=per_source),
        "n_rows": data.n_rows,
        "n_sources": len(data.sources),
        "per_source": source_loss_contributions(pred, data.rate, data.source, per_source_scaling=per_source),
    }
