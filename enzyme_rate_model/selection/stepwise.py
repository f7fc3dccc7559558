"""Stepwise selection over the removal-code lattice.

Levels are visited from high to low complexity (reverse selection) or from low
to high (forward selection). Every candidate of a level is fitted on the
training split, the best fraction by training loss is scored on the test split,
and every successfully fitted candidate becomes a parent of the next level.
"""

from __future__ import annotations

import math
from multiprocessing import Pool
from typing import Any, Callable, Mapping, Sequence

import numpy as np

from enzyme_rate_model.eval.split import split_rate_dataset
from enzyme_rate_model.io.dataset_store import clean_rate_dataset
from enzyme_rate_model.mechanism.equation import RateEquation
from enzyme_rate_model.selection.fit import fit_candidate, resolve_fit_cfg
from enzyme_rate_model.selection.loss import loss_rate_equation
from enzyme_rate_model.selection.param_subset import param_subset_select
from enzyme_rate_model.selection.removal_codes import (
    Code,
    candidate_model,
    code_to_str,
    codes_at_complexity,
    forward_selection_next_codes,
    reverse_selection_next_codes,
)
from enzyme_rate_model.types import CandidateModel, FitResult, LevelResult, RateDataset

_WORKER: dict[str, Any] = {}


def parse_complexity_range(raw: Any) -> tuple[int, int]:
    try:
        items = list(raw)
    except TypeError as exc:
        raise ValueError(f"complexity_range must be two integers (lo, hi); got {raw!r}") from exc
    if len(items) != 2 or any(isinstance(x, bool) or not isinstance(x, (int, np.integer)) for x in items):
        raise ValueError(f"complexity_range must be two integers (lo, hi); got {raw!r}")
    lo, hi = int(items[0]), int(items[1])
    if lo < 1:
        raise ValueError(f"complexity_range lower bound must be >= 1; got {lo}")
    if lo > hi:
        raise ValueError(f"complexity_range must satisfy lo <= hi; got ({lo}, {hi})")
    return lo, hi


def resolve_selection_cfg(cfg: Mapping[str, Any] | None) -> dict[str, Any]:
    raw = dict(cfg or {})
    top_fraction = float(raw.get("top_fraction", 0.1))
    if not 0.0 < top_fraction <= 1.0:
        raise ValueError("selection.top_fraction must be in (0, 1]")
    n_jobs = int(raw.get("n_jobs", 1))
    if n_jobs < 1:
        raise ValueError("selection.n_jobs must be >= 1")
    return {
        "top_fraction": top_fraction,
        "n_jobs": n_jobs,
        "seed": int(raw.get("seed", 0)),
    }


def _init_worker(rate_equation: RateEquation, train: RateDataset, fit_cfg: dict[str, Any], seed: int) -> None:
    _WORKER["rate_equation"] = rate_equation
    _WORKER["train"] = train
    _WORKER["fit_cfg"] = fit_cfg
    _WORKER["seed"] = seed


def _fit_in_worker(code: Code) -> tuple[Code, FitResult]:
    fit = fit_candidate(_WORKER["rate_equation"], _WORKER["train"], code, _WORKER["fit_cfg"], seed=_WORKER["seed"])
    return code, fit


def _level_row(candidate: CandidateModel, fit: FitResult) -> dict[str, Any]:
    row: dict[str, Any] = {
        "complexity": candidate.complexity,
        "code": candidate.code_str,
        "status": "ok" if not fit.failed else "failed",
        "train_loss": (float(fit.loss) if not fit.failed else None),
        "n_restarts": int(fit.n_restarts),
        "n_failed_restarts": int(fit.n_failed_restarts),
    }
    row.update(fit.params)
    return row


def _score_top(
    rate_equation: RateEquation,
    test: RateDataset,
    complexity: int,
    ranked: list[tuple[Code, FitResult]],
    top_fraction: float,
    per_source_scaling: bool,
) -> list[dict[str, Any]]:
    if not ranked:
        return []
    layout = rate_equation.require_layout()
    n_top = max(1, int(math.ceil(top_fraction * len(ranked))))
    rows: list[dict[str, Any]] = []
    for code, fit in ranked[:n_top]:
        params = param_subset_select(layout, code, fit.params)
        test_loss = loss_rate_equation(rate_equation, test, params, per_source_scaling=per_source_scaling)
        ok = math.isfinite(test_loss)
        row: dict[str, Any] = {
            "complexity": int(complexity),
            "code": code_to_str(code),
            "status": "ok" if ok else "test_failed",
            "train_loss": float(fit.loss),
            "test_loss": (float(test_loss) if ok else None),
        }
        row.update(fit.params)
        rows.append(row)
    return rows


def _level_order(lo: int, hi: int, forward: bool) -> list[int]:
    return list(range(lo, hi + 1)) if forward else list(range(hi, lo - 1, -1))


def run_selection(
    rate_equation: RateEquation,
    train: RateDataset,
    test: RateDataset,
    complexity_range: Sequence[int],
    forward_model_selection: bool,
    cfg: Mapping[str, Any] | None = None,
    *,
    on_level: Callable[[LevelResult], None] | None = None,
) -> list[LevelResult]:
    """Walk the lattice level by level; returns one :class:`LevelResult` per level in visit order.

    Unusable rows of ``train`` and ``test`` are dropped before any fit, and their
    counts are kept in each level's meta.
    """
    layout = rate_equation.require_layout()
    lo, hi = parse_complexity_range(complexity_range)
    run_cfg = dict(cfg or {})
    fit_cfg = resolve_fit_cfg(run_cfg.get("fit"))
    sel_cfg = resolve_selection_cfg(run_cfg.get("selection"))
    train, dropped_train = clean_rate_dataset(train, rate_equation.metab_names)
    test, dropped_test = clean_rate_dataset(test, rate_equation.metab_names)

    step = forward_selection_next_codes if forward_model_selection else reverse_selection_next_codes
    pool = None
    if sel_cfg["n_jobs"] > 1:
        pool = Pool(
            processes=sel_cfg["n_jobs"],
            initializer=_init_worker,
            initargs=(rate_equation, train, fit_cfg, sel_cfg["seed"]),
        )

    levels: list[LevelResult] = []
    frontier: list[Code] | None = None
    terminated = False
    try:
        for complexity in _level_order(lo, hi, forward_model_selection):
            if terminated:
                level = LevelResult(complexity=complexity, rows=[], top_rows=[], status="terminated")
            else:
                if frontier is None:
                    codes = codes_at_complexity(layout, complexity)
                else:
                    codes = step(layout, frontier, complexity)

                if pool is not None and codes:
                    fitted = pool.map(_fit_in_worker, codes)
                else:
                    fitted = [
                        (code, fit_candidate(rate_equation, train, code, fit_cfg, seed=sel_cfg["seed"]))
                        for code in codes
                    ]

                rows = [_level_row(candidate_model(layout, code), fit) for code, fit in fitted]
                ok = sorted(
                    [(code, fit) for code, fit in fitted if not fit.failed],
                    key=lambda item: (item[1].loss, item[0]),
                )
                top_rows = _score_top(
                    rate_equation,
                    test,
                    complexity,
                    ok,
                    sel_cfg["top_fraction"],
                    fit_cfg["per_source_scaling"],
                )
                if not codes:
                    status = "empty"
                elif not ok:
                    status = "all_failed"
                else:
                    status = "ok"
                level = LevelResult(
                    complexity=complexity,
                    rows=rows,
                    top_rows=top_rows,
                    status=status,
                    meta={
                        "n_parents": 0 if frontier is None else len(frontier),
                        "n_dropped_train_rows": len(dropped_train),
                        "n_dropped_test_rows": len(dropped_test),
                    },
                )
                if ok:
                    frontier = [code for code, _ in ok]
                elif frontier is not None or codes:
                    terminated = True
                # an unseeded empty level lies outside the valid bounds; the next level seeds again
            levels.append(level)
            if on_level is not None:
                on_level(level)
    finally:
        if pool is not None:
            pool.close()
            pool.join()
    return levels


def prepare_selection_data(
    data: RateDataset,
    metab_names: Sequence[str],
    split_cfg: Mapping[str, Any] | None = None,
) -> tuple[RateDataset, RateDataset, dict[str, Any]]:
    """Drop unusable rows, then split; the split meta lists every dropped row."""
    clean, dropped = clean_rate_dataset(data, metab_names)
    train, test, split_meta = split_rate_dataset(clean, split_cfg)
    split_meta["dropped_rows"] = dropped
    return train, test, split_meta


def select_rate_equation(
    general_rate_equation: RateEquation,
    data: RateDataset,
    metab_names: Sequence[str],
    param_names: Sequence[str],
    complexity_range: Sequence[int],
    forward_model_selection: bool,
    cfg: Mapping[str, Any] | None = None,
    *,
    on_level: Callable[[LevelResult], None] | None = None,
    on_split: Callable[[dict[str, Any]], None] | None = None,
) -> tuple[dict[int, list[dict[str, Any]]], list[dict[str, Any]]]:
    """Run stepwise selection and return ``(per_level_tables, best_candidates_table)``.

    ``per_level_tables`` maps every complexity of the range to its level rows
    (in visit order); the best-candidates table stacks the test-scored rows of
    every level. No single winner is chosen. ``on_split`` receives the split
    metadata, including ``fallback_reason`` and the dropped rows.
    """
    if tuple(metab_names) != tuple(general_rate_equation.metab_names):
        raise ValueError("metab_names do not match the rate equation")
    if tuple(param_names) != tuple(general_rate_equation.param_names):
        raise ValueError("param_names do not match the rate equation")
    general_rate_equation.require_layout()
    parse_complexity_range(complexity_range)

    run_cfg = dict(cfg or {})
    train, test, split_meta = prepare_selection_data(data, metab_names, run_cfg.get("split"))
    if on_split is not None:
        on_split(split_meta)

    levels = run_selection(
        general_rate_equation,
        train,
        test,
        complexity_range,
        forward_model_selection,
        run_cfg,
        on_level=on_level,
    )
    tables = {level.complexity: level.rows for level in levels}
    best: list[dict[str, Any]] = []
    for level in levels:
        best.extend(level.top_rows)
    return tables, best


def selection_summary(levels: Sequence[LevelResult]) -> dict[str, Any]:
    scored = [row for level in levels for row in level.top_rows if row.get("test_loss") is not None]
    best_row = min(scored, key=lambda r: (float(r["test_loss"]), int(r["complexity"]))) if scored else None
    return {
        "levels": [
            {
                "complexity": level.complexity,
                "status": level.status,
                "n_candidates": level.n_candidates,
                "n_failed": level.n_failed,
                "n_scored": len(level.top_rows),
            }
            for level in levels
        ],
        "n_candidates": sum(level.n_candidates for level in levels),
        "lowest_test_loss": (None if best_row is None else float(best_row["test_loss"])),
        "lowest_test_loss_code": (None if best_row is None else best_row["code"]),
    }
