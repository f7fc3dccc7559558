import math

import numpy as np
import pytest

import enzyme_rate_model.selection.stepwise as stepwise
from enzyme_rate_model.eval.synthetic import make_synthetic_dataset
from enzyme_rate_model.mechanism import build_mwc_rate_equation, build_qssa_rate_equation
from enzyme_rate_model.selection.param_subset import free_param_names
from enzyme_rate_model.selection.removal_codes import code_to_str, codes_at_complexity
from enzyme_rate_model.selection.stepwise import (
    parse_complexity_range,
    prepare_selection_data,
    run_selection,
    select_rate_equation,
)
from enzyme_rate_model.types import FitResult, RateDataset


def _qssa_2s1p1r():
    return build_qssa_rate_equation(
        {"substrates": ["S1", "S2"], "products": ["P1"], "regulators": ["R1"], "Keq": 10.0, "max_binding_order": 2}
    )


def _fake_fit(rate_equation, data, code, cfg=None, *, seed=0):
    names = free_param_names(rate_equation.require_layout(), code)
    loss = 0.01 * len(names) + 0.001 * sum(code)
    return FitResult(loss=loss, params={name: 1.0 for name in names}, n_restarts=1)


def test_reverse_selection_emits_one_table_per_level(monkeypatch) -> None:
    monkeypatch.setattr(stepwise, "fit_candidate", _fake_fit)
    eq = _qssa_2s1p1r()
    data = make_synthetic_dataset(eq, {"n_rows": 40, "n_sources": 2, "seed": 1})

    tables, best = select_rate_equation(eq, data, eq.metab_names, eq.param_names, (3, 8), False)

    assert list(tables) == [8, 7, 6, 5, 4, 3]
    layout = eq.require_layout()
    for k, rows in tables.items():
        assert rows
        assert all(row["complexity"] == k for row in rows)
        assert {row["code"] for row in rows} == {code_to_str(c) for c in codes_at_complexity(layout, k)}
    assert len(tables[3]) == 1

    by_level: dict[int, list[dict]] = {}
    for row in best:
        by_level.setdefault(row["complexity"], []).append(row)
    for k, rows in tables.items():
        assert len(by_level[k]) == max(1, math.ceil(0.1 * len(rows)))
    assert all(row["status"] == "ok" and row["test_loss"] is not None for row in best)


def test_best_rows_are_ranked_by_training_loss(monkeypatch) -> None:
    monkeypatch.setattr(stepwise, "fit_candidate", _fake_fit)
    eq = _qssa_2s1p1r()
    data = make_synthetic_dataset(eq, {"n_rows": 30, "seed": 2})
    tables, best = select_rate_equation(
        eq, data, eq.metab_names, eq.param_names, (6, 7), False, {"selection": {"top_fraction": 0.5}}
    )
    level_best = [row for row in best if row["complexity"] == 7]
    cutoff = max(row["train_loss"] for row in level_best)
    rest = [row for row in tables[7] if row["code"] not in {r["code"] for r in level_best}]
    assert all(row["train_loss"] >= cutoff for row in rest)


def test_forward_selection_walks_up(monkeypatch) -> None:
    monkeypatch.setattr(stepwise, "fit_candidate", _fake_fit)
    eq = _qssa_2s1p1r()
    data = make_synthetic_dataset(eq, {"n_rows": 30, "seed": 3})
    tables, _ = select_rate_equation(eq, data, eq.metab_names, eq.param_names, (1, 5), True)

    assert list(tables) == [1, 2, 3, 4, 5]
    assert tables[1] == [] and tables[2] == []
    assert len(tables[3]) == 1
    assert tables[4] and all(row["complexity"] == 4 for row in tables[4])
    assert tables[5] and all(row["complexity"] == 5 for row in tables[5])


def test_failed_level_terminates_and_pads_remaining_levels(monkeypatch) -> None:
    def _fail_at_seven(rate_equation, data, code, cfg=None, *, seed=0):
        names = free_param_names(rate_equation.require_layout(), code)
        if len(names) == 7:
            return FitResult(loss=float("inf"), params={}, status="failed", n_restarts=2, n_failed_restarts=2)
        return _fake_fit(rate_equation, data, code, cfg, seed=seed)

    monkeypatch.setattr(stepwise, "fit_candidate", _fail_at_seven)
    eq = _qssa_2s1p1r()
    data = make_synthetic_dataset(eq, {"n_rows": 30, "seed": 4})
    seen = []
    levels = run_selection(eq, data, data, (3, 8), False, on_level=seen.append)

    assert [level.complexity for level in levels] == [8, 7, 6, 5, 4, 3]
    assert [level.complexity for level in seen] == [8, 7, 6, 5, 4, 3]
    assert levels[0].status == "ok"
    assert levels[1].status == "all_failed"
    assert levels[1].n_failed == levels[1].n_candidates
    assert all(row["train_loss"] is None for row in levels[1].rows)
    assert all(level.status == "terminated" and level.rows == [] for level in levels[2:])


def test_range_below_minimum_ends_with_empty_levels(monkeypatch) -> None:
    monkeypatch.setattr(stepwise, "fit_candidate", _fake_fit)
    eq = _qssa_2s1p1r()
    data = make_synthetic_dataset(eq, {"n_rows": 30, "seed": 5})
    levels = run_selection(eq, data, data, (1, 4), False)
    assert [level.status for level in levels] == ["ok", "ok", "empty", "terminated"]


def test_zero_rate_row_is_dropped_and_never_ranked(monkeypatch) -> None:
    monkeypatch.setattr(stepwise, "fit_candidate", _fake_fit)
    eq = _qssa_2s1p1r()
    clean = make_synthetic_dataset(eq, {"n_rows": 30, "seed": 6})
    rate = clean.rate.copy()
    rate[0] = 0.0
    data = RateDataset(rate=rate, source=clean.source, metabs=dict(clean.metabs))

    train, test, meta = prepare_selection_data(data, eq.metab_names)
    assert meta["dropped_rows"] == [{"row": 0, "source": str(clean.source[0]), "reason": "non_positive_rate"}]
    assert train.n_rows + test.n_rows == clean.n_rows - 1

    tables, best = select_rate_equation(eq, data, eq.metab_names, eq.param_names, (7, 8), False)
    for rows in tables.values():
        for row in rows:
            assert row["train_loss"] is not None and np.isfinite(row["train_loss"])
    for row in best:
        assert row["test_loss"] is not None and np.isfinite(row["test_loss"])


def test_worker_pool_matches_serial_run() -> None:
    eq = build_qssa_rate_equation({"substrates": ["S"], "products": ["P"], "Keq": 10.0})
    data = make_synthetic_dataset(eq, {"n_rows": 30, "seed": 7, "noise_sd": 0.02})
    cfg = {"fit": {"n_iter": 2, "max_nfev": 100}, "selection": {"seed": 3}}
    serial = run_selection(eq, data, data, (3, 4), False, cfg)
    pooled = run_selection(eq, data, data, (3, 4), False, {**cfg, "selection": {"seed": 3, "n_jobs": 2}})
    assert [level.rows for level in serial] == [level.rows for level in pooled]


def test_selection_input_errors() -> None:
    eq = _qssa_2s1p1r()
    data = make_synthetic_dataset(eq, {"n_rows": 10, "seed": 8})
    with pytest.raises(ValueError, match="lo <= hi"):
        parse_complexity_range((5, 3))
    with pytest.raises(ValueError, match="two integers"):
        parse_complexity_range((3,))
    with pytest.raises(ValueError, match=">= 1"):
        parse_complexity_range((0, 3))
    with pytest.raises(ValueError, match="param_names"):
        select_rate_equation(eq, data, eq.metab_names, eq.param_names[:-1], (3, 4), False)
    missing = RateDataset(rate=data.rate, source=data.source, metabs={"S1": data.metabs["S1"]})
    with pytest.raises(ValueError, match="missing metabolite columns"):
        select_rate_equation(eq, missing, eq.metab_names, eq.param_names, (3, 4), False)


def test_bad_rows_in_test_set_are_dropped_not_fatal(monkeypatch) -> None:
    monkeypatch.setattr(stepwise, "fit_candidate", _fake_fit)
    eq = _qssa_2s1p1r()
    train = make_synthetic_dataset(eq, {"n_rows": 30, "seed": 9})
    clean_test = make_synthetic_dataset(eq, {"n_rows": 12, "seed": 10})
    rate = clean_test.rate.copy()
    rate[0] = 0.0
    test = RateDataset(rate=rate, source=clean_test.source, metabs=dict(clean_test.metabs))

    levels = run_selection(eq, train, test, (7, 8), False)

    assert [level.status for level in levels] == ["ok", "ok"]
    assert levels[0].meta["n_dropped_test_rows"] == 1
    assert levels[0].meta["n_dropped_train_rows"] == 0
    assert all(row["test_loss"] is not None for level in levels for row in level.top_rows)


def test_default_config_scores_on_held_out_rows() -> None:
    eq = build_qssa_rate_equation({"substrates": ["S"], "products": ["P"], "Keq": 10.0})
    data = make_synthetic_dataset(eq, {"n_rows": 40, "n_sources": 2, "noise_sd": 0.05, "seed": 12})
    splits = []
    tables, best = select_rate_equation(
        eq, data, eq.metab_names, eq.param_names, (3, 4), False, on_split=splits.append
    )

    assert len(splits) == 1
    assert splits[0]["mode"] == "holdout"
    assert splits[0]["fallback_reason"] is None
    assert splits[0]["n_test_rows"] > 0
    assert splits[0]["n_train_rows"] + splits[0]["n_test_rows"] == data.n_rows
    assert list(tables) == [4, 3]
    assert best
    for row in best:
        assert row["test_loss"] is not None
        assert row["test_loss"] != row["train_loss"]


def test_real_reverse_selection_qssa() -> None:
    eq = build_qssa_rate_equation({"substrates": ["S"], "products": ["P"], "Keq": 10.0})
    data = make_synthetic_dataset(eq, {"n_rows": 40, "n_sources": 2, "noise_sd": 0.02, "seed": 13})
    cfg = {
        "split": {"mode": "holdout", "holdout_ratio": 0.25, "seed": 1},
        "fit": {"n_iter": 3, "max_nfev": 300},
        "selection": {"top_fraction": 0.5},
    }
    tables, best = select_rate_equation(eq, data, eq.metab_names, eq.param_names, (2, 4), False, cfg)

    assert list(tables) == [4, 3, 2]
    assert len(tables[4]) == 1 and len(tables[3]) == 2 and tables[2] == []
    assert all(row["status"] == "ok" for row in tables[4] + tables[3])
    assert {row["complexity"] for row in best} == {4, 3}
    assert all(row["test_loss"] is not None and np.isfinite(row["test_loss"]) for row in best)


def test_real_reverse_selection_mwc() -> None:
    eq = build_mwc_rate_equation({"substrates": ["S"], "products": ["P"], "Keq": 10.0, "oligomeric_state": 1})
    data = make_synthetic_dataset(eq, {"n_rows": 40, "n_sources": 2, "noise_sd": 0.02, "seed": 14})
    cfg = {
        "split": {"mode": "holdout", "holdout_ratio": 0.25, "seed": 2},
        "fit": {"n_iter": 2, "max_nfev": 200},
        "selection": {"top_fraction": 0.5},
    }
    tables, best = select_rate_equation(eq, data, eq.metab_names, eq.param_names, (6, 8), False, cfg)

    assert list(tables) == [8, 7, 6]
    for k, rows in tables.items():
        assert rows
        assert all(row["complexity"] == k for row in rows)
    assert {row["complexity"] for row in best} == {8, 7, 6}
    assert all(row["test_loss"] is not None and np.isfinite(row["test_loss"]) for row in best)
