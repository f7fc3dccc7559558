from __future__ import annotations

from typing import Any, Mapping

import numpy as np

from enzyme_rate_model.types import RateDataset

SPLIT_MODES = ("in_sample", "holdout", "source_holdout")


def _holdout_rows(n_total: int, split: dict[str, Any]) -> tuple[np.ndarray, np.ndarray] | None:
    holdout_ratio = float(np.clip(float(split.get("holdout_ratio", 0.25)), 0.0, 0.9))
    min_train_rows = int(split.get("min_train_rows", 2))
    n_test = int(max(1, round(n_total * holdout_ratio)))
    n_test = min(n_test, max(1, n_total - 1))
    if n_total - n_test < max(1, min_train_rows):
        return None
    rng = np.random.default_rng(int(split.get("seed", 0)))
    order = rng.permutation(n_total)
    return np.sort(order[n_test:]), np.sort(order[:n_test])


def _source_holdout_rows(source: np.ndarray, split: dict[str, Any]) -> tuple[np.ndarray, np.ndarray, list[str]] | None:
    names = sorted({str(s) for s in source.tolist()})
    if len(names) < 2:
        return None
    requested = split.get("test_sources")
    if requested:
        test_sources = sorted(str(s) for s in list(requested))
        unknown = [s for s in test_sources if s not in names]
        if unknown:
            raise ValueError(f"split.test_sources not present in the dataset: {unknown}")
    else:
        holdout_ratio = float(np.clip(float(split.get("holdout_ratio", 0.25)), 0.0, 0.9))
        n_test = int(max(1, round(len(names) * holdout_ratio)))
        rng = np.random.default_rng(int(split.get("seed", 0)))
        test_sources = sorted(rng.choice(names, size=n_test, replace=False).tolist())
    if len(test_sources) >= len(names):
        return None
    is_test = np.isin(source, np.asarray(test_sources, dtype=str))
    train_rows = np.where(~is_test)[0]
    if train_rows.size < max(1, int(split.get("min_train_rows", 2))):
        return None
    return train_rows, np.where(is_test)[0], test_sources


def split_rate_dataset(
    data: RateDataset,
    split_cfg: Mapping[str, Any] | None = None,
) -> tuple[RateDataset, RateDataset, dict[str, Any]]:
    """Split ``data`` into training and test sets.

    The default mode is ``holdout``; ``in_sample`` trains and tests on every row
    and is used only when asked for or as a fallback. ``holdout`` holds out a seeded
    random fraction of rows and ``source_holdout`` holds out whole sources. Both
    fall back to ``in_sample`` (recording ``fallback_reason``) when too little
    data would remain for training.
    """
    split = dict(split_cfg or {})
    requested_mode = str(split.get("mode", "holdout"))
    if requested_mode not in SPLIT_MODES:
        raise ValueError(f"split.mode must be one of {list(SPLIT_MODES)}; got {requested_mode!r}")
    mode = requested_mode
    fallback_reason: str | None = None
    test_sources: list[str] = []

    train, test = data, data
    if mode == "holdout":
        rows = _holdout_rows(data.n_rows, split)
        if rows is None:
            mode = "in_sample"
            fallback_reason = "insufficient_rows_for_holdout"
        else:
            train, test = data.subset(rows[0]), data.subset(rows[1])
    elif mode == "source_holdout":
        picked = _source_holdout_rows(data.source, split)
        if picked is None:
            mode = "in_sample"
            fallback_reason = "insufficient_sources_for_holdout"
        else:
            train, test = data.subset(picked[0]), data.subset(picked[1])
            test_sources = picked[2]

    return (
        train,
        test,
        {
            "requested_mode": requested_mode,
            "mode": mode,
            "fallback_reason": fallback_reason,
            "n_train_rows": train.n_rows,
            "n_test_rows": test.n_rows,
            "test_sources": test_sources,
        },
    )
