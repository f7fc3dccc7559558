from __future__ import annotations

from typing import Any, Mapping

import numpy as np

from enzyme_rate_model.mechanism.equation import RateEquation
from enzyme_rate_model.types import RateDataset


def default_true_params(param_names: tuple[str, ...]) -> dict[str, float]:
    out: dict[str, float] = {}
    for name in param_names:
        if name.startswith("alpha"):
            out[name] = 0.0
        else:
            out[name] = 1.0
    return out


def _concentration_ranges(rate_equation: RateEquation, cfg: dict[str, Any]) -> dict[str, tuple[float, float]]:
    default = tuple(float(x) for x in list(cfg.get("log10_conc_range", [-2.0, 1.0])))
    if len(default) != 2 or not default[1] >= default[0]:
        raise ValueError("synthetic.log10_conc_range must be [lo, hi] with hi >= lo")
    overrides = dict(cfg.get("metab_log10_ranges") or {})
    unknown = [name for name in overrides if name not in rate_equation.metab_names]
    if unknown:
        raise ValueError(f"synthetic.metab_log10_ranges has unknown metabolites: {unknown}")
    out: dict[str, tuple[float, float]] = {}
    for name in rate_equation.metab_names:
        lo, hi = (float(x) for x in list(overrides.get(name, default)))
        out[name] = (lo, hi)
    return out


def make_synthetic_dataset(rate_equation: RateEquation, cfg: Mapping[str, Any] | None = None) -> RateDataset:
    """Noisy rate measurements of ``rate_equation`` at log-uniform concentrations.

    Rows with a non-positive or non-finite rate are dropped before the dataset
    is returned; their count is kept in ``meta["n_dropped"]``.
    """
    syn = dict(cfg or {})
    n_rows = int(syn.get("n_rows", 60))
    n_sources = int(syn.get("n_sources", 3))
    if n_rows < 1:
        raise ValueError("synthetic.n_rows must be >= 1")
    if n_sources < 1:
        raise ValueError("synthetic.n_sources must be >= 1")
    noise_sd = float(syn.get("noise_sd", 0.05))
    if noise_sd < 0.0:
        raise ValueError("synthetic.noise_sd must be >= 0")

    params = default_true_params(rate_equation.param_names)
    overrides = {str(k): float(v) for k, v in dict(syn.get("true_params") or {}).items()}
    unknown = [name for name in overrides if name not in params]
    if unknown:
        raise ValueError(f"synthetic.true_params has unknown parameters: {unknown}")
    params.update(overrides)

    rng = np.random.default_rng(int(syn.get("seed", 0)))
    metabs: dict[str, np.ndarray] = {}
    for name, (lo, hi) in _concentration_ranges(rate_equation, syn).items():
        metabs[name] = 10.0 ** rng.uniform(lo, hi, size=n_rows)
    zero_metabs = [str(x) for x in list(syn.get("zero_metabs") or [])]
    for name in zero_metabs:
        if name not in metabs:
            raise ValueError(f"synthetic.zero_metabs has unknown metabolite: {name}")
        metabs[name] = np.zeros((n_rows,), dtype=float)

    rate = np.broadcast_to(rate_equation.evaluate(metabs, params), (n_rows,)).astype(float)
    if noise_sd > 0.0:
        rate = rate * np.exp(rng.normal(0.0, noise_sd, size=n_rows))
    source = np.asarray([f"source_{i % n_sources}" for i in range(n_rows)], dtype=str)

    keep = np.isfinite(rate) & (rate > 0.0)
    return RateDataset(
        rate=rate[keep],
        source=source[keep],
        metabs={name: values[keep] for name, values in metabs.items()},
        meta={
            "synthetic": True,
            "true_params": params,
            "noise_sd": noise_sd,
            "n_dropped": int(np.sum(~keep)),
        },
    )
