from pathlib import Path

from enzyme_rate_model.io.results_store import (
    load_selection_bundle,
    save_selection_bundle,
    write_best_table,
    write_level_table,
)
from enzyme_rate_model.types import LevelResult


def _levels() -> list[LevelResult]:
    return [
        LevelResult(
            complexity=4,
            rows=[
                {"complexity": 4, "code": "0,0,0", "status": "ok", "train_loss": 0.01, "n_restarts": 2, "n_failed_restarts": 0, "Vmax": 1.0},
            ],
            top_rows=[{"complexity": 4, "code": "0,0,0", "status": "ok", "train_loss": 0.01, "test_loss": 0.02, "Vmax": 1.0}],
            meta={"n_parents": 0},
        ),
        LevelResult(
            complexity=3,
            rows=[
                {"complexity": 3, "code": "0,0,1", "status": "ok", "train_loss": 0.03, "n_restarts": 2, "n_failed_restarts": 1, "Vmax": 2.0},
                {"complexity": 3, "code": "0,0,3", "status": "failed", "train_loss": None, "n_restarts": 2, "n_failed_restarts": 2},
            ],
            top_rows=[{"complexity": 3, "code": "0,0,1", "status": "test_failed", "train_loss": 0.03, "test_loss": None}],
            meta={"n_parents": 1},
        ),
        LevelResult(complexity=2, rows=[], top_rows=[], status="empty"),
    ]


def test_selection_bundle_roundtrip(tmp_path: Path) -> None:
    levels = _levels()
    best = [row for level in levels for row in level.top_rows]
    path = save_selection_bundle(
        tmp_path / "out" / "selection.h5",
        levels,
        best,
        term_names=("K_S", "K_P", "K_S_P"),
        meta={"run_id": "r0"},
    )
    loaded = load_selection_bundle(path)

    assert loaded["term_names"] == ["K_S", "K_P", "K_S_P"]
    assert loaded["meta"] == {"run_id": "r0"}
    assert loaded["best_rows"] == best
    assert [level.complexity for level in loaded["levels"]] == [4, 3, 2]
    assert [level.status for level in loaded["levels"]] == ["ok", "ok", "empty"]
    assert loaded["levels"][1].rows == levels[1].rows
    assert loaded["levels"][1].meta == {"n_parents": 1}
    assert loaded["levels"][2].rows == []


def test_level_and_best_tables_written_as_csv(tmp_path: Path) -> None:
    levels = _levels()
    level_path = write_level_table(tmp_path / "levels", levels[1])
    best_path = write_best_table(tmp_path, [row for level in levels for row in level.top_rows])
    assert level_path.name == "level_003.csv"
    lines = level_path.read_text().splitlines()
    assert lines[0].split(",")[:4] == ["complexity", "code", "status", "train_loss"]
    assert len(lines) == 3
    assert best_path.read_text().startswith("complexity,code,status,train_loss,test_loss")
    empty = write_level_table(tmp_path / "levels", levels[2])
    assert empty.read_text() == ""
