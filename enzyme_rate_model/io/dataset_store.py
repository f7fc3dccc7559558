from __future__ import annotations

import csv
import math
from pathlib import Path
from typing import Any, Sequence

import numpy as np

from enzyme_rate_model.types import RateDataset


def _as_float(value: Any, field: str, row_idx: int, unparseable: list[dict[str, Any]]) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        unparseable.append({"row": int(row_idx), "column": field, "value": value})
        return float("nan")


def _row_problem(rate: float, metabs: dict[str, float]) -> str | None:
    if not math.isfinite(rate):
        return "non_finite_rate"
    if rate <= 0.0:
        return "non_positive_rate"
    for name, value in metabs.items():
        if not math.isfinite(value) or value < 0.0:
            return f"invalid_concentration:{name}"
    return None


def clean_rate_dataset(data: RateDataset, metab_names: Sequence[str]) -> tuple[RateDataset, list[dict[str, Any]]]:
    """Drop rows the log-ratio loss cannot score and report them.

    A row is dropped when its rate is non-positive or non-finite, or when a
    required concentration is negative or non-finite. Cells that did not parse
    as numbers (``meta["unparseable_cells"]``, set by :func:`load_rate_dataset`)
    are reported as ``unparseable:<column>``.
    """
    data.require_metabs(metab_names)
    unparseable: dict[int, str] = {}
    for cell in data.meta.get("unparseable_cells", []):
        unparseable.setdefault(int(cell["row"]), str(cell["column"]))
    keep: list[int] = []
    dropped: list[dict[str, Any]] = []
    for idx in range(data.n_rows):
        reason = _row_problem(
            float(data.rate[idx]),
            {name: float(data.metabs[name][idx]) for name in metab_names},
        )
        if reason is not None and idx in unparseable:
            reason = f"unparseable:{unparseable[idx]}"
        if reason is None:
            keep.append(idx)
        else:
            dropped.append({"row": int(idx), "source": str(data.source[idx]), "reason": reason})
    if not keep:
        raise ValueError("dataset has no usable rows after dropping invalid rates/concentrations")
    if not dropped:
        return data, []
    clean = data.subset(keep)
    clean.meta.pop("unparseable_cells", None)
    clean.meta["dropped_rows"] = list(dropped)
    return clean, dropped


def load_rate_dataset(
    path: str | Path,
    metab_names: Sequence[str],
    *,
    rate_column: str = "Rate",
    source_column: str = "source",
) -> RateDataset:
    src = Path(path)
    with src.open("r", newline="") as handle:
        reader = csv.DictReader(handle)
        fieldnames = set(reader.fieldnames or [])
        required = {rate_column, source_column, *metab_names}
        missing = required - fieldnames
        if missing:
            raise ValueError(f"dataset missing required columns: {sorted(missing)}")

        rates: list[float] = []
        unparseable: list[dict[str, Any]] = []
        sources: list[str] = []
        columns: dict[str, list[float]] = {name: [] for name in metab_names}
        for idx, row in enumerate(reader):
            rates.append(_as_float(row.get(rate_column), rate_column, idx, unparseable))
            sources.append(str(row.get(source_column) or "").strip() or "default")
            for name in metab_names:
                columns[name].append(_as_float(row.get(name), name, idx, unparseable))

    if not rates:
        raise ValueError(f"dataset CSV has no rows: {src}")
    return RateDataset(
        rate=np.asarray(rates, dtype=float),
        source=np.asarray(sources, dtype=str),
        metabs={name: np.asarray(values, dtype=float) for name, values in columns.items()},
        meta={"path": str(src), "unparseable_cells": unparseable},
    )


def save_rate_dataset(path: str | Path, data: RateDataset, *, rate_column: str = "Rate", source_column: str = "source") -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    names = list(data.metabs.keys())
    with out.open("w", newline="") as handle:
        writer = csv.writer(handle)
        writer.writerow([rate_column, source_column, *names])
        for idx in range(data.n_rows):
            writer.writerow(
                [repr(float(data.rate[idx])), str(data.source[idx])]
                + [repr(float(data.metabs[name][idx])) for name in names]
            )
    return out
