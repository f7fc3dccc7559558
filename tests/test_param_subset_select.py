import numpy as np
import pytest

from enzyme_rate_model.mechanism.terms import INFINITE, TIED, ZERO, mwc_layout, qssa_layout
from enzyme_rate_model.selection.param_subset import (
    INFINITE_VALUE,
    free_param_names,
    param_rescaling,
    param_subset_select,
    resolve_rescaling,
    substitute,
)
from enzyme_rate_model.selection.removal_codes import codes_at_complexity, full_code


def test_qssa_forced_and_tied_values() -> None:
    layout = qssa_layout(["S1", "S2"], ["P1"], max_binding_order=2)
    code = list(full_code(layout))
    code[layout.term_index("K_S1_P1")] = int(TIED)
    code[layout.term_index("K_S2_P1")] = int(ZERO)
    free = {name: 2.0 for name in free_param_names(layout, code)}
    free["K_S1"] = 3.0
    free["K_P1"] = 5.0

    out = param_subset_select(layout, code, free)
    assert out["K_S1_P1"] == pytest.approx(15.0)
    assert out["K_S2_P1"] == INFINITE_VALUE
    assert out["Vmax"] == pytest.approx(2.0)
    assert tuple(out.keys()) == layout.param_names


def test_mwc_forced_and_tied_values() -> None:
    layout = mwc_layout(["S"], ["P"], ["R"])
    code = list(full_code(layout))
    code[layout.term_index("Vmax_i")] = int(TIED)
    code[layout.term_index("L")] = int(ZERO)
    code[layout.term_index("K_S_cat")] = int(TIED)
    code[layout.term_index("K_R_reg")] = int(INFINITE)
    code[layout.term_index("alpha_S_P")] = int(ZERO)
    names = free_param_names(layout, code)
    assert names == ("Vmax_a", "K_a_S_cat", "K_a_P_cat", "K_i_P_cat", "K_a_R_reg")

    free = {"Vmax_a": 7.0, "K_a_S_cat": 0.3, "K_a_P_cat": 1.5, "K_i_P_cat": 2.5, "K_a_R_reg": 0.01}
    out = param_subset_select(layout, code, free)
    assert out["Vmax_i"] == pytest.approx(7.0)
    assert out["L"] == 0.0
    assert out["K_i_S_cat"] == pytest.approx(0.3)
    assert out["K_i_R_reg"] == INFINITE_VALUE
    assert out["alpha_S_P"] == 0.0


def test_full_mapping_key_set_for_every_code() -> None:
    layout = mwc_layout(["S"], ["P"], ["R"])
    for code in codes_at_complexity(layout, 5):
        free = {name: 1.5 for name in free_param_names(layout, code)}
        out = param_subset_select(layout, code, free)
        assert set(out) == set(layout.param_names)
        assert all(np.isfinite(v) for v in out.values())


def test_substitution_is_pure() -> None:
    layout = qssa_layout(["S"], ["P"])
    code = (0, 0, 3)
    free = {"Vmax": 1.0, "K_S": 2.0, "K_P": 4.0}
    snapshot = dict(free)
    first = param_subset_select(layout, code, free)
    second = param_subset_select(layout, code, free)
    assert first == second
    assert free == snapshot
    assert first["K_S_P"] == pytest.approx(8.0)


def test_missing_free_value_raises() -> None:
    layout = qssa_layout(["S"], ["P"])
    with pytest.raises(KeyError, match="K_P"):
        param_subset_select(layout, (0, 0, 1), {"Vmax": 1.0, "K_S": 2.0})


def test_param_rescaling_maps_box_to_log_ranges() -> None:
    names = ("Vmax", "K_S", "alpha_S_P", "L")
    out = param_rescaling(np.array([0.0, 10.0, 5.0, 5.0]), names)
    assert out == pytest.approx([1.0e-3, 1.0e3, 0.5, 1.0])

    custom = resolve_rescaling({"K": [-2, 2]})
    assert param_rescaling([5.0], ("K_S",), custom) == pytest.approx([1.0])
    with pytest.raises(ValueError, match="rescaling"):
        resolve_rescaling({"kcat": [0, 1]})


def test_substitute_returns_free_and_full_mappings() -> None:
    layout = qssa_layout(["S"], ["P"])
    free, full = substitute(layout, (0, 0, 1), [5.0, 10.0, 0.0])
    assert tuple(free) == ("Vmax", "K_S", "K_P")
    assert free["Vmax"] == pytest.approx(1.0)
    assert full["K_S_P"] == INFINITE_VALUE
    assert full["K_S"] == pytest.approx(1.0e3)
    assert full["K_P"] == pytest.approx(1.0e-10)
