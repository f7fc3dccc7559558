from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any


def write_rows_csv(path: Path, rows: list[dict[str, Any]]) -> None:
    if not rows:
        path.write_text("")
        return
    keys = list(rows[0].keys())
    extra: list[str] = []
    seen = set(keys)
    for row in rows[1:]:
        for key in row.keys():
            if key in seen:
                continue
            seen.add(key)
            extra.append(key)
    keys.extend(extra)
    with path.open("w", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=keys)
        writer.writeheader()
        writer.writerows(rows)


def _objective_tuple(row: dict[str, Any]) -> tuple[float, float]:
    try:
        complexity = float(row.get("complexity", float("inf")))
    except (TypeError, ValueError):
        complexity = float("inf")
    try:
        err = float(row.get("test_loss"))
    except (TypeError, ValueError):
        err = float("inf")
    return complexity, err


def _dominates(a: tuple[float, float], b: tuple[float, float]) -> bool:
    return (a[0] <= b[0] and a[1] <= b[1]) and (a != b)


def _pareto_front(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    scored = [r for r in rows if r.get("status") == "ok" and r.get("test_loss") is not None]
    if not scored:
        return []
    objs = [_objective_tuple(r) for r in scored]
    out: list[dict[str, Any]] = []
    for i, row in enumerate(scored):
        dominated = False
        for j in range(len(scored)):
            if i == j:
                continue
            if _dominates(objs[j], objs[i]):
                dominated = True
                break
        if not dominated:
            out.append(row)
    return sorted(out, key=lambda r: _objective_tuple(r))


def _fmt_loss(value: Any) -> str:
    if value is None:
        return "-"
    return f"{float(value):.4g}"


def write_report(
    report_dir: str | Path,
    *,
    run_id: str,
    level_rows: list[dict[str, Any]],
    best_rows: list[dict[str, Any]],
    summary_payload: dict[str, Any],
) -> Path:
    out_dir = Path(report_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    front = _pareto_front(best_rows)
    summary = dict(summary_payload)
    summary["run_id"] = run_id
    summary["pareto_codes"] = [str(r["code"]) for r in front]

    (out_dir / "summary.json").write_text(json.dumps(summary, ensure_ascii=False, indent=2))
    lines = [
        f"# Rate Equation Selection Report: {run_id}",
        "",
        f"- equation: {summary.get('equation', 'n/a')}",
        f"- direction: {summary.get('direction', 'n/a')}",
        f"- complexity_range: {summary.get('complexity_range', 'n/a')}",
        f"- candidates_fitted: {len(level_rows)}",
        f"- lowest_test_loss: {_fmt_loss(summary.get('lowest_test_loss'))}",
    ]

    split_meta = dict(summary.get("split") or {})
    if split_meta:
        lines.append(f"- split: {split_meta.get('mode', 'n/a')} (requested {split_meta.get('requested_mode', 'n/a')})")
        if split_meta.get("fallback_reason"):
            lines.append(f"- split_fallback: {split_meta['fallback_reason']}")
        dropped = list(split_meta.get("dropped_rows") or [])
        if dropped:
            lines.append(f"- dropped_rows: {len(dropped)}")

    levels = list(summary.get("levels") or [])
    if levels:
        lines.extend(
            [
                "",
                "## Levels",
                "",
                "| complexity | status | candidates | failed | scored |",
                "|---:|---|---:|---:|---:|",
            ]
        )
        for row in levels:
            lines.append(
                "| {complexity} | {status} | {n_candidates} | {n_failed} | {n_scored} |".format(
                    complexity=int(row.get("complexity", 0)),
                    status=str(row.get("status", "")),
                    n_candidates=int(row.get("n_candidates", 0)),
                    n_failed=int(row.get("n_failed", 0)),
                    n_scored=int(row.get("n_scored", 0)),
                )
            )

    if best_rows:
        lines.extend(
            [
                "",
                "## Best Candidates",
                "",
                "| complexity | code | status | train_loss | test_loss | pareto |",
                "|---:|---|---|---:|---:|:---:|",
            ]
        )
        front_codes = {str(r["code"]) for r in front}
        for row in best_rows:
            lines.append(
                f"| {int(row.get('complexity', 0))} | {row.get('code', '')} | {row.get('status', '')} "
                f"| {_fmt_loss(row.get('train_loss'))} | {_fmt_loss(row.get('test_loss'))} "
                f"| {'yes' if str(row.get('code')) in front_codes else 'no'} |"
            )

    (out_dir / "report.md").write_text("\n".join(lines))

    write_rows_csv(out_dir / "levels.csv", level_rows)
    write_rows_csv(out_dir / "pareto.csv", front)
    return out_dir
