from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Sequence

import h5py
import numpy as np

from enzyme_rate_model.reporting.report import write_rows_csv
from enzyme_rate_model.types import LevelResult


def write_level_table(out_dir: str | Path, level: LevelResult) -> Path:
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    path = out / f"level_{level.complexity:03d}.csv"
    write_rows_csv(path, level.rows)
    return path


def write_best_table(out_dir: str | Path, best_rows: list[dict[str, Any]]) -> Path:
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    path = out / "best_candidates.csv"
    write_rows_csv(path, best_rows)
    return path


def _json_text(raw: Any) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8")
    return str(raw)


def _code_matrix(rows: Sequence[dict[str, Any]], n_terms: int) -> np.ndarray:
    out = np.zeros((len(rows), n_terms), dtype=np.int8)
    for i, row in enumerate(rows):
        code = [int(c) for c in str(row["code"]).split(",") if c != ""]
        out[i, : len(code)] = code
    return out


def save_selection_bundle(
    path: str | Path,
    levels: Sequence[LevelResult],
    best_rows: list[dict[str, Any]],
    *,
    term_names: Sequence[str] = (),
    meta: dict[str, Any] | None = None,
) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)

    with h5py.File(out, "w") as handle:
        handle.attrs["term_names"] = json.dumps(list(term_names))
        handle.attrs["meta"] = json.dumps(dict(meta or {}))
        handle.create_dataset("best_rows", data=json.dumps(best_rows))

        levels_grp = handle.create_group("levels")
        for order, level in enumerate(levels):
            grp = levels_grp.create_group(f"{level.complexity:03d}")
            grp.attrs["complexity"] = int(level.complexity)
            grp.attrs["order"] = int(order)
            grp.attrs["status"] = str(level.status)
            grp.attrs["meta"] = json.dumps(level.meta)
            grp.create_dataset("rows", data=json.dumps(level.rows))
            grp.create_dataset("top_rows", data=json.dumps(level.top_rows))
            grp.create_dataset("codes", data=_code_matrix(level.rows, len(term_names)))
            train_loss = [np.nan if row.get("train_loss") is None else float(row["train_loss"]) for row in level.rows]
            grp.create_dataset("train_loss", data=np.asarray(train_loss, dtype=float))

    return out


def load_selection_bundle(path: str | Path) -> dict[str, Any]:
    src = Path(path)
    with h5py.File(src, "r") as handle:
        term_names = json.loads(str(handle.attrs["term_names"]))
        meta = json.loads(str(handle.attrs.get("meta", "{}")))
        best_rows = json.loads(_json_text(handle["best_rows"][()]))

        levels: list[tuple[int, LevelResult]] = []
        for key in handle["levels"].keys():
            grp = handle["levels"][key]
            level = LevelResult(
                complexity=int(grp.attrs["complexity"]),
                rows=json.loads(_json_text(grp["rows"][()])),
                top_rows=json.loads(_json_text(grp["top_rows"][()])),
                status=str(grp.attrs["status"]),
                meta=json.loads(str(grp.attrs.get("meta", "{}"))),
            )
            levels.append((int(grp.attrs["order"]), level))

    return {
        "term_names": term_names,
        "levels": [level for _, level in sorted(levels, key=lambda item: item[0])],
        "best_rows": best_rows,
        "meta": meta,
    }
