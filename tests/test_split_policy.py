import numpy as np
import pytest

from enzyme_rate_model.eval.split import split_rate_dataset
from enzyme_rate_model.types import RateDataset


def _dataset(n: int, sources: list[str]) -> RateDataset:
    return RateDataset(
        rate=np.linspace(1.0, 2.0, n),
        source=np.array([sources[i % len(sources)] for i in range(n)]),
        metabs={"S": np.linspace(0.1, 1.0, n)},
    )


def test_in_sample_uses_all_rows_for_both_sets() -> None:
    data = _dataset(6, ["a"])
    train, test, meta = split_rate_dataset(data, {"mode": "in_sample"})
    assert train.n_rows == test.n_rows == 6
    assert meta["mode"] == "in_sample"
    assert meta["fallback_reason"] is None


def test_default_split_holds_out_rows() -> None:
    data = _dataset(20, ["a", "b"])
    train, test, meta = split_rate_dataset(data, None)
    assert meta["requested_mode"] == "holdout"
    assert meta["mode"] == "holdout"
    assert (train.n_rows, test.n_rows) == (15, 5)
    assert set(train.rate.tolist()).isdisjoint(test.rate.tolist())


def test_holdout_is_seeded_and_disjoint() -> None:
    data = _dataset(20, ["a", "b"])
    cfg = {"mode": "holdout", "holdout_ratio": 0.25, "seed": 3}
    train, test, meta = split_rate_dataset(data, cfg)
    again, _, _ = split_rate_dataset(data, cfg)
    assert meta["mode"] == "holdout"
    assert (train.n_rows, test.n_rows) == (15, 5)
    assert set(train.rate.tolist()).isdisjoint(test.rate.tolist())
    assert np.array_equal(train.rate, again.rate)


def test_holdout_falls_back_when_too_few_rows() -> None:
    data = _dataset(3, ["a"])
    train, test, meta = split_rate_dataset(data, {"mode": "holdout", "min_train_rows": 5})
    assert meta["requested_mode"] == "holdout"
    assert meta["mode"] == "in_sample"
    assert meta["fallback_reason"] == "insufficient_rows_for_holdout"
    assert train.n_rows == test.n_rows == 3


def test_source_holdout_keeps_sources_together() -> None:
    data = _dataset(12, ["a", "b", "c"])
    train, test, meta = split_rate_dataset(data, {"mode": "source_holdout", "test_sources": ["b"]})
    assert meta["mode"] == "source_holdout"
    assert meta["test_sources"] == ["b"]
    assert set(test.source.tolist()) == {"b"}
    assert "b" not in set(train.source.tolist())


def test_source_holdout_falls_back_with_one_source() -> None:
    data = _dataset(12, ["a"])
    _, _, meta = split_rate_dataset(data, {"mode": "source_holdout"})
    assert meta["mode"] == "in_sample"
    assert meta["fallback_reason"] == "insufficient_sources_for_holdout"


def test_split_config_errors() -> None:
    data = _dataset(12, ["a", "b"])
    with pytest.raises(ValueError, match="split.mode"):
        split_rate_dataset(data, {"mode": "kfold"})
    with pytest.raises(ValueError, match="test_sources"):
        split_rate_dataset(data, {"mode": "source_holdout", "test_sources": ["z"]})
