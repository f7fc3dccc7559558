from __future__ import annotations

import argparse
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from enzyme_rate_model.eval.synthetic import make_synthetic_dataset
from enzyme_rate_model.io.dataset_store import load_rate_dataset
from enzyme_rate_model.io.results_store import save_selection_bundle, write_best_table, write_level_table
from enzyme_rate_model.mechanism.builder import build_rate_equation
from enzyme_rate_model.mechanism.equation import RateEquation
from enzyme_rate_model.reporting.report import write_report
from enzyme_rate_model.selection.removal_codes import max_complexity, min_complexity
from enzyme_rate_model.selection.stepwise import (
    parse_complexity_range,
    prepare_selection_data,
    run_selection,
    selection_summary,
)
from enzyme_rate_model.types import LevelResult, RateDataset


def load_yaml(path: Path) -> dict[str, Any]:
    data = yaml.safe_load(path.read_text())
    if not isinstance(data, dict):
        raise ValueError("config must be a mapping")
    return data


def resolve_input_path(raw: Any, *, config_parent: Path) -> Path:
    path = Path(str(raw))
    if path.is_absolute():
        return path.resolve()
    cwd_candidate = (Path.cwd() / path).resolve()
    if cwd_candidate.exists():
        return cwd_candidate
    return (config_parent / path).resolve()


def load_dataset_from_cfg(cfg: dict[str, Any], rate_equation: RateEquation, *, config_parent: Path) -> RateDataset:
    data_cfg = dict(cfg.get("data") or {})
    if data_cfg.get("csv"):
        return load_rate_dataset(
            resolve_input_path(data_cfg["csv"], config_parent=config_parent),
            rate_equation.metab_names,
            rate_column=str(data_cfg.get("rate_column", "Rate")),
            source_column=str(data_cfg.get("source_column", "source")),
        )
    return make_synthetic_dataset(rate_equation, cfg.get("synthetic"))


def _resolve_range(cfg: dict[str, Any], rate_equation: RateEquation) -> tuple[int, int]:
    sel_cfg = dict(cfg.get("selection") or {})
    raw = sel_cfg.get("complexity_range")
    if raw is None:
        layout = rate_equation.require_layout()
        return min_complexity(layout), max_complexity(layout)
    return parse_complexity_range(raw)


def main() -> None:
    parser = argparse.ArgumentParser(description="Stepwise selection of a simplified enzyme rate equation")
    parser.add_argument("--config", required=True, help="Path to selection config YAML")
    parser.add_argument("--run-id", default=None, help="Optional run id override")
    args = parser.parse_args()

    config_path = Path(args.config).resolve()
    cfg = load_yaml(config_path)

    run_id = args.run_id or str(cfg.get("run_id") or f"select_{datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%SZ')}")

    rate_equation = build_rate_equation(cfg.get("equation"))
    data = load_dataset_from_cfg(cfg, rate_equation, config_parent=config_path.parent)
    complexity_range = _resolve_range(cfg, rate_equation)
    forward = bool(dict(cfg.get("selection") or {}).get("forward", False))

    out_dir = resolve_input_path(cfg.get("report_dir", "reports"), config_parent=config_path.parent) / run_id
    tables_dir = out_dir / "levels"

    train, test, split_meta = prepare_selection_data(data, rate_equation.metab_names, cfg.get("split"))

    def _persist(level: LevelResult) -> None:
        write_level_table(tables_dir, level)

    levels = run_selection(
        rate_equation,
        train,
        test,
        complexity_range,
        forward,
        cfg,
        on_level=_persist,
    )
    level_rows = [row for level in levels for row in level.rows]
    best_rows = [row for level in levels for row in level.top_rows]
    write_best_table(out_dir, best_rows)

    layout = rate_equation.require_layout()
    bundle_path = save_selection_bundle(
        out_dir / "selection.h5",
        levels,
        best_rows,
        term_names=layout.term_names,
        meta={
            "run_id": run_id,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "equation": rate_equation.name,
            "family": layout.family,
            "param_names": list(rate_equation.param_names),
            "metab_names": list(rate_equation.metab_names),
        },
    )

    summary = {
        "status": "ok",
        "run_id": run_id,
        "equation": rate_equation.name,
        "family": layout.family,
        "direction": "forward" if forward else "reverse",
        "complexity_range": list(complexity_range),
        "n_rows": data.n_rows,
        "split": split_meta,
        "bundle_path": str(bundle_path),
        "report_dir": str(out_dir),
        **selection_summary(levels),
    }
    write_report(
        out_dir,
        run_id=run_id,
        level_rows=level_rows,
        best_rows=best_rows,
        summary_payload=summary,
    )
    print(json.dumps(summary, ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
