from __future__ import annotations

from typing import Any, Mapping

from enzyme_rate_model.mechanism.equation import RateEquation
from enzyme_rate_model.mechanism.mwc import build_mwc_rate_equation
from enzyme_rate_model.mechanism.qssa import build_qssa_rate_equation


def build_rate_equation(cfg: Mapping[str, Any]) -> RateEquation:
    spec = dict(cfg or {})
    family = str(spec.pop("family", "qssa")).strip().lower()
    if family == "qssa":
        return build_qssa_rate_equation(spec)
    if family == "mwc":
        return build_mwc_rate_equation(spec)
    raise ValueError("equation.family must be 'qssa' or 'mwc'")
