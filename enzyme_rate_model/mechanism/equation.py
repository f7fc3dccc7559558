from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

import numpy as np

from enzyme_rate_model.mechanism.terms import TermLayout


def check_named_values(values: Mapping[str, Any], names: Sequence[str], kind: str) -> None:
    missing = [name for name in names if name not in values]
    if missing:
        raise KeyError(f"missing {kind} values: {missing}")


def _check_names(names: Sequence[str], kind: str) -> tuple[str, ...]:
    out = tuple(str(n) for n in names)
    if not out:
        raise ValueError(f"{kind} must be non-empty")
    if len(set(out)) != len(out):
        raise ValueError(f"{kind} must be unique: {list(out)}")
    return out


def product_of(values: Sequence[Any]) -> Any:
    out: Any = 1.0
    for value in values:
        out = out * value
    return out


@dataclass(frozen=True)
class RateEquation:
    """Named rate law: ``rate(metabs, params, Keq)``.

    ``metabs`` maps every name in ``metab_names`` to a concentration (scalar or
    array, one entry per measurement) and ``params`` maps every name in
    ``param_names`` to a value. Equations built from a declarative
    specification also carry the term ``layout`` used for removal codes.
    """

    rate_law: Callable[[Mapping[str, Any], Mapping[str, float], float], Any]
    metab_names: tuple[str, ...]
    param_names: tuple[str, ...]
    keq: float = 1.0
    name: str = "rate_equation"
    layout: TermLayout | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "metab_names", _check_names(self.metab_names, "metab_names"))
        object.__setattr__(self, "param_names", _check_names(self.param_names, "param_names"))
        keq = float(self.keq)
        if not math.isfinite(keq) or keq <= 0.0:
            raise ValueError(f"Keq must be positive and finite: {self.keq!r}")
        object.__setattr__(self, "keq", keq)
        if self.layout is not None:
            if tuple(self.layout.param_names) != self.param_names:
                raise ValueError("layout param_names do not match equation param_names")
            if tuple(self.layout.metab_names) != self.metab_names:
                raise ValueError("layout metab_names do not match equation metab_names")

    def __call__(
        self,
        metabs: Mapping[str, Any],
        params: Mapping[str, float],
        keq: float | None = None,
    ) -> Any:
        check_named_values(metabs, self.metab_names, "metabolite")
        check_named_values(params, self.param_names, "parameter")
        return self.rate_law(metabs, params, self.keq if keq is None else float(keq))

    def evaluate(self, metabs: Mapping[str, Any], params: Mapping[str, float], keq: float | None = None) -> np.ndarray:
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            out = self(metabs, params, keq)
        return np.asarray(out, dtype=float)

    def require_layout(self) -> TermLayout:
        if self.layout is None:
            raise ValueError(f"rate equation {self.name!r} has no term layout; build it with a QSSA or MWC builder")
        return self.layout


def validate_spec_keywords(spec: Mapping[str, Any], expected: Sequence[str], family: str) -> None:
    for key in spec.keys():
        if key not in expected:
            raise ValueError(
                f"invalid keyword for {family} rate equation: {key!r}. "
                f"The only supported keywords are: {list(expected)}"
            )


def metab_list(spec: Mapping[str, Any], key: str, *, lo: int, hi: int, family: str) -> list[str]:
    raw = spec.get(key)
    if raw is None:
        raw = []
    if isinstance(raw, str):
        raw = [raw]
    names = [str(x) for x in list(raw)]
    if not lo <= len(names) <= hi:
        if lo > 0:
            raise ValueError(f"{family}: at least {lo} and no more than {hi} {key} are supported, got {len(names)}")
        raise ValueError(f"{family}: no more than {hi} {key} are supported, got {len(names)}")
    if any(not n.strip() for n in names):
        raise ValueError(f"{family}: empty name in {key}")
    return names


def resolve_keq(spec: Mapping[str, Any], family: str) -> float:
    if "Keq" not in spec:
        raise ValueError(f"{family}: missing keyword: 'Keq'")
    try:
        keq = float(spec["Keq"])
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{family}: invalid Keq: {spec['Keq']!r}") from exc
    if not math.isfinite(keq) or keq <= 0.0:
        raise ValueError(f"{family}: Keq must be positive and finite: {keq!r}")
    return keq
