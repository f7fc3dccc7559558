from enzyme_rate_model.selection.fit import fit_candidate, fit_rate_equation
from enzyme_rate_model.selection.loss import loss_rate_equation, source_loss_contributions, source_weights
from enzyme_rate_model.selection.param_subset import INFINITE_VALUE, param_rescaling, param_subset_select, substitute
from enzyme_rate_model.selection.removal_codes import (
    codes_at_complexity,
    forward_selection_next_codes,
    reverse_selection_next_codes,
)
from enzyme_rate_model.selection.stepwise import run_selection, select_rate_equation

__all__ = [
    "INFINITE_VALUE",
    "codes_at_complexity",
    "fit_candidate",
    "fit_rate_equation",
    "forward_selection_next_codes",
    "loss_rate_equation",
    "param_rescaling",
    "param_subset_select",
    "reverse_selection_next_codes",
    "run_selection",
    "select_rate_equation",
    "source_loss_contributions",
    "source_weights",
    "substitute",
]
