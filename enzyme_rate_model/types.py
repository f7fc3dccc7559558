from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Sequence

import numpy as np


@dataclass(slots=True)
class RateDataset:
    rate: np.ndarray
    source: np.ndarray
    metabs: dict[str, np.ndarray]
    meta: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.rate = np.asarray(self.rate, dtype=float)
        self.source = np.asarray(self.source, dtype=str)
        self.metabs = {str(k): np.asarray(v, dtype=float) for k, v in dict(self.metabs).items()}

        n_rows = self.rate.shape[0]
        if self.rate.shape != (n_rows,):
            raise ValueError("rate shape must be (N,)")
        if self.source.shape != (n_rows,):
            raise ValueError("source shape must be (N,)")
        for name, values in self.metabs.items():
            if values.shape != (n_rows,):
                raise ValueError(f"metabolite column {name!r} shape must be (N,)")

    @property
    def n_rows(self) -> int:
        return int(self.rate.shape[0])

    @property
    def sources(self) -> list[str]:
        return sorted({str(s) for s in self.source.tolist()})

    def require_metabs(self, metab_names: Sequence[str]) -> None:
        missing = [name for name in metab_names if name not in self.metabs]
        if missing:
            raise ValueError(f"dataset missing metabolite columns: {missing}")

    def subset(self, rows: np.ndarray | Sequence[int]) -> "RateDataset":
        idx = np.asarray(rows, dtype=int)
        return RateDataset(
            rate=self.rate[idx],
            source=self.source[idx],
            metabs={name: values[idx] for name, values in self.metabs.items()},
            meta=dict(self.meta),
        )


@dataclass(frozen=True)
class CandidateModel:
    code: tuple[int, ...]
    free_params: tuple[str, ...]
    complexity: int

    @property
    def code_str(self) -> str:
        return ",".join(str(c) for c in self.code)


@dataclass(frozen=True)
class FitResult:
    loss: float
    params: dict[str, float]
    status: str = "ok"
    n_restarts: int = 0
    n_failed_restarts: int = 0
    n_dropped_rows: int = 0

    @property
    def failed(self) -> bool:
        return self.status != "ok" or not math.isfinite(self.loss)


@dataclass(slots=True)
class LevelResult:
    complexity: int
    rows: list[dict[str, Any]]
    top_rows: list[dict[str, Any]]
    status: str = "ok"
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def n_candidates(self) -> int:
        return len(self.rows)

    @property
    def n_failed(self) -> int:
        return sum(1 for row in self.rows if row.get("status") != "ok")
