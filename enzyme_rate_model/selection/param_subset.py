from __future__ import annotations

from typing import Any, Mapping, Sequence

import numpy as np

from enzyme_rate_model.mechanism.terms import INFINITE, PRESENT, TIED, ZERO, TermLayout, forced_params

# finite stand-in for an infinite dissociation constant; keeps Haldane products finite
INFINITE_VALUE = 1.0e20

DEFAULT_RESCALING: dict[str, tuple[float, float]] = {
    "Vmax": (-3.0, 3.0),
    "K": (-10.0, 3.0),
    "L": (-5.0, 5.0),
}

OPTIMIZER_BOUNDS = (0.0, 10.0)


def free_param_names(layout: TermLayout, code: Sequence[int]) -> tuple[str, ...]:
    if len(code) != len(layout.terms):
        raise ValueError(f"removal code length {len(code)} does not match {len(layout.terms)} terms")
    forced: set[str] = set()
    for term, choice in zip(layout.terms, code):
        forced.update(forced_params(term, int(choice)))
    return tuple(name for name in layout.param_names if name not in forced)


def param_subset_select(layout: TermLayout, code: Sequence[int], free_values: Mapping[str, float]) -> dict[str, float]:
    """Expand fitted values of the free parameters to every parameter of the general equation.

    Forced values are placed first, then ties are resolved in term order from
    values that are already final, so the result never depends on dict order.
    """
    free_names = free_param_names(layout, code)
    missing = [name for name in free_names if name not in free_values]
    if missing:
        raise KeyError(f"missing free parameter values: {missing}")

    out: dict[str, float] = {name: float(free_values[name]) for name in free_names}
    ties: list[tuple[Any, int]] = []
    for term, raw in zip(layout.terms, code):
        choice = int(raw)
        if choice == PRESENT:
            continue
        if choice == TIED:
            ties.append((term, choice))
            continue
        if term.kind == "K_pair":
            if choice == ZERO:
                out[term.params[0]] = INFINITE_VALUE
                out[term.params[1]] = INFINITE_VALUE
            elif choice == INFINITE:
                out[term.params[1]] = INFINITE_VALUE
        elif term.kind == "K" and choice == ZERO:
            out[term.params[0]] = INFINITE_VALUE
        elif term.kind in {"Vmax_i", "L", "alpha"} and choice == ZERO:
            out[term.params[0]] = 0.0
        else:
            raise ValueError(f"unsupported choice {choice} for term {term.name}")

    for term, _ in ties:
        if term.kind == "K_pair":
            out[term.params[1]] = out[term.params[0]]
        elif term.kind == "Vmax_i":
            out[term.params[0]] = out[layout.always_free[0]]
        elif term.kind == "K":
            value = 1.0
            for metab in term.metabs:
                value *= out["K_" + metab]
            out[term.params[0]] = value
        else:
            raise ValueError(f"term {term.name} cannot be tied")

    return {name: out[name] for name in layout.param_names}


def resolve_rescaling(cfg: Mapping[str, Any] | None) -> dict[str, tuple[float, float]]:
    out = dict(DEFAULT_RESCALING)
    for key, raw in dict(cfg or {}).items():
        if key not in out:
            raise ValueError(f"fit.rescaling supports only {sorted(out)}; got {key!r}")
        lo, hi = (float(x) for x in list(raw))
        if not hi > lo:
            raise ValueError(f"fit.rescaling.{key} must be [lo, hi] with hi > lo")
        out[key] = (lo, hi)
    return out


def _param_kind(name: str) -> str:
    if name.startswith("Vmax"):
        return "Vmax"
    if name.startswith("K_"):
        return "K"
    if name == "L":
        return "L"
    if name.startswith("alpha"):
        return "alpha"
    raise ValueError(f"no rescaling rule for parameter {name!r}")


def param_rescaling(
    x: np.ndarray | Sequence[float],
    param_names: Sequence[str],
    rescaling: Mapping[str, tuple[float, float]] | None = None,
) -> np.ndarray:
    """Map optimizer coordinates in [0, 10] to physical parameter values."""
    arr = np.asarray(x, dtype=float)
    if arr.shape != (len(param_names),):
        raise ValueError("x must have one entry per parameter name")
    ranges = dict(rescaling or DEFAULT_RESCALING)
    span = OPTIMIZER_BOUNDS[1] - OPTIMIZER_BOUNDS[0]
    out = np.empty_like(arr)
    for i, name in enumerate(param_names):
        kind = _param_kind(name)
        if kind == "alpha":
            out[i] = arr[i] / span
            continue
        lo, hi = ranges[kind]
        out[i] = 10.0 ** (lo + (hi - lo) * (arr[i] - OPTIMIZER_BOUNDS[0]) / span)
    return out


def substitute(
    layout: TermLayout,
    code: Sequence[int],
    x: np.ndarray | Sequence[float],
    rescaling: Mapping[str, tuple[float, float]] | None = None,
) -> tuple[dict[str, float], dict[str, float]]:
    names = free_param_names(layout, code)
    values = param_rescaling(x, names, rescaling)
    free = {name: float(v) for name, v in zip(names, values)}
    return free, param_subset_select(layout, code, free)
