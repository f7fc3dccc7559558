from enzyme_rate_model.mechanism.builder import build_rate_equation
from enzyme_rate_model.mechanism.equation import RateEquation
from enzyme_rate_model.mechanism.mwc import build_mwc_rate_equation, generate_mwc_metab_names, generate_mwc_param_names
from enzyme_rate_model.mechanism.qssa import build_qssa_rate_equation, generate_qssa_metab_names, generate_qssa_param_names
from enzyme_rate_model.mechanism.terms import TermChoice, TermLayout, mwc_layout, qssa_layout

__all__ = [
    "RateEquation",
    "TermChoice",
    "TermLayout",
    "build_rate_equation",
    "build_qssa_rate_equation",
    "build_mwc_rate_equation",
    "generate_qssa_metab_names",
    "generate_qssa_param_names",
    "generate_mwc_metab_names",
    "generate_mwc_param_names",
    "qssa_layout",
    "mwc_layout",
]
