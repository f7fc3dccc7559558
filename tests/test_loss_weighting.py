import numpy as np
import pytest

from enzyme_rate_model.mechanism.equation import RateEquation
from enzyme_rate_model.selection.loss import (
    loss_rate_equation,
    source_loss_contributions,
    source_weights,
    weighted_log_ratio_loss,
)
from enzyme_rate_model.types import RateDataset


def _linear_rate(metabs, params, keq):
    return params["k"] * metabs["S"]


def _dataset() -> RateDataset:
    S = np.array([1.0, 2.0, 3.0, 4.0, 5.0])
    return RateDataset(
        rate=2.0 * S,
        source=np.array(["a", "a", "a", "a", "b"]),
        metabs={"S": S},
    )


def test_source_weights_give_equal_total_per_source() -> None:
    w = source_weights(np.array(["a", "a", "a", "b"]))
    assert w == pytest.approx([1 / 6, 1 / 6, 1 / 6, 1 / 2])
    assert float(np.sum(w)) == pytest.approx(1.0)


def test_each_source_contributes_equally_for_equal_errors() -> None:
    obs = np.array([1.0, 2.0, 3.0, 4.0, 5.0])
    src = np.array(["a", "a", "a", "a", "b"])
    pred = obs * np.e
    assert weighted_log_ratio_loss(pred, obs, src) == pytest.approx(1.0)
    contrib = source_loss_contributions(pred, obs, src)
    assert contrib["a"] == pytest.approx(0.5)
    assert contrib["b"] == pytest.approx(0.5)


def test_loss_zero_at_truth_and_scale_invariant() -> None:
    eq = RateEquation(rate_law=_linear_rate, metab_names=("S",), param_names=("k",))
    data = _dataset()
    assert loss_rate_equation(eq, data, {"k": 2.0}) == pytest.approx(0.0, abs=1.0e-15)
    high = loss_rate_equation(eq, data, {"k": 4.0})
    low = loss_rate_equation(eq, data, {"k": 1.0})
    assert high == pytest.approx(low)
    assert high == pytest.approx(np.log(2.0) ** 2)


def test_invalid_prediction_makes_loss_infinite() -> None:
    obs = np.array([1.0, 2.0])
    src = np.array(["a", "b"])
    assert weighted_log_ratio_loss(np.array([1.0, -1.0]), obs, src) == float("inf")
    assert weighted_log_ratio_loss(np.array([1.0, 0.0]), obs, src) == float("inf")
    assert weighted_log_ratio_loss(np.array([np.nan, 1.0]), obs, src) == float("inf")


def test_non_positive_observed_rate_is_rejected() -> None:
    with pytest.raises(ValueError, match="observed rates"):
        weighted_log_ratio_loss(np.array([1.0, 1.0]), np.array([1.0, 0.0]), np.array(["a", "a"]))


def test_per_source_scaling_absorbs_source_offsets() -> None:
    obs = np.array([1.0, 2.0, 3.0, 4.0])
    src = np.array(["a", "a", "b", "b"])
    pred = obs * np.array([2.0, 2.0, 3.0, 3.0])
    assert weighted_log_ratio_loss(pred, obs, src) > 0.1
    assert weighted_log_ratio_loss(pred, obs, src, per_source_scaling=True) == pytest.approx(0.0, abs=1.0e-15)
