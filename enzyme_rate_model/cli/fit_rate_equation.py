from __future__ import annotations

import argparse
import json
from pathlib import Path

from enzyme_rate_model.cli.select_rate_equation import load_dataset_from_cfg, load_yaml
from enzyme_rate_model.io.dataset_store import clean_rate_dataset
from enzyme_rate_model.mechanism.builder import build_rate_equation
from enzyme_rate_model.selection.fit import fit_candidate
from enzyme_rate_model.selection.loss import loss_summary
from enzyme_rate_model.selection.param_subset import param_subset_select
from enzyme_rate_model.selection.removal_codes import code_complexity, code_to_str, describe_code, full_code, parse_code


def main() -> None:
    parser = argparse.ArgumentParser(description="Fit one simplified rate equation given by a removal code")
    parser.add_argument("--config", required=True, help="Path to selection config YAML")
    parser.add_argument("--code", default=None, help="Comma-separated removal code (default: full equation)")
    args = parser.parse_args()

    config_path = Path(args.config).resolve()
    cfg = load_yaml(config_path)

    rate_equation = build_rate_equation(cfg.get("equation"))
    layout = rate_equation.require_layout()
    code = full_code(layout) if args.code is None else parse_code(args.code, layout)

    data = load_dataset_from_cfg(cfg, rate_equation, config_parent=config_path.parent)
    clean, dropped = clean_rate_dataset(data, rate_equation.metab_names)
    seed = int(dict(cfg.get("selection") or {}).get("seed", 0))
    fit = fit_candidate(rate_equation, clean, code, cfg.get("fit"), seed=seed)

    summary = {
        "status": "failed" if fit.failed else "ok",
        "equation": rate_equation.name,
        "code": code_to_str(code),
        "terms": describe_code(layout, code),
        "complexity": code_complexity(layout, code),
        "n_rows": clean.n_rows,
        "dropped_rows": dropped,
        "train_loss": None if fit.failed else fit.loss,
        "n_restarts": fit.n_restarts,
        "n_failed_restarts": fit.n_failed_restarts,
        "params": fit.params,
    }
    if not fit.failed:
        full = param_subset_select(layout, code, fit.params)
        summary["per_source_loss"] = loss_summary(rate_equation, clean, full, cfg.get("fit"))["per_source"]
    print(json.dumps(summary, ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
