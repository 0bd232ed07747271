import csv
import threading
import time

import pytest
import numpy as np

from scarank.config import Config
from scarank.dataset import KeyGenerationMode, TraceDataset
from scarank.errors import (
    InternalError,
    InvalidArgumentError,
    IoFailureError,
    NumericInstabilityError,
    UnsupportedOperationError,
)
from scarank.metrics import TemplateRankEstimation, trace_steps
from scarank.models import HammingWeightModel, IdentityModel, SelectableModel
from scarank.registry import METRICS

from utils_test import gen_dataset, get_rng


def test_trace_steps():
    assert trace_steps(100) == [100]
    assert trace_steps(100, 0) == [100]
    assert trace_steps(100, 30) == [30, 60, 90]
    assert trace_steps(90, 30) == [30, 60, 90]
    assert trace_steps(10, 20) == []
    with pytest.raises(InvalidArgumentError):
        trace_steps(10, -1)


def test_init_validation():
    rng = get_rng()
    ds = gen_dataset(rng, 100)
    model = HammingWeightModel(ds)
    TemplateRankEstimation(ds, model)
    TemplateRankEstimation(ds, model, sample_start=1, sample_end=2, trace_count=100)
    invalid_args = [
        dict(sample_start=2, sample_end=2),
        dict(sample_start=3),
        dict(sample_end=4),
        dict(sample_start=-1),
        dict(trace_count=101),
        dict(trace_count=0),
        dict(trace_step=101),
        dict(trace_step=-5),
        dict(bin_count=0),
    ]
    for kwargs in invalid_args:
        with pytest.raises(InvalidArgumentError):
            TemplateRankEstimation(ds, model, **kwargs)
    with pytest.raises(InvalidArgumentError):
        TemplateRankEstimation(ds, "no_such_model")
    with pytest.raises(InvalidArgumentError):
        TemplateRankEstimation(ds, object())


def test_init_random_key():
    rng = get_rng()
    n = 20
    ds = TraceDataset(
        rng.normal(0.0, 1.0, (n, 3)),
        rng.integers(0, 256, (n, 1), dtype=np.uint8),
        rng.integers(0, 256, (n, 1), dtype=np.uint8),
        key_mode=KeyGenerationMode.RANDOM,
    )
    with pytest.raises(UnsupportedOperationError):
        TemplateRankEstimation(ds, IdentityModel(ds))


def test_scenario_degenerate():
    # 2 traces, 2 samples, each trace alone in its group.
    ds = TraceDataset(
        np.array([[1.0, 2.0], [3.0, 5.0]]),
        np.array([[0x00], [0x01]], dtype=np.uint8),
        np.array([[0x10]], dtype=np.uint8),
    )
    metric = TemplateRankEstimation(ds, IdentityModel(ds))
    with pytest.raises(NumericInstabilityError):
        metric.compute_unit(2, 0)
    with pytest.raises(NumericInstabilityError):
        metric.compute()


def test_constant_traces():
    rng = get_rng()
    ds = TraceDataset(
        np.ones((50, 3)),
        rng.integers(0, 256, (50, 1), dtype=np.uint8),
        np.array([[3]], dtype=np.uint8),
    )
    with pytest.raises(InternalError):
        TemplateRankEstimation(ds, "identity").compute()


def test_correct_key_ranks_first():
    rng = get_rng()
    ds = gen_dataset(rng, 1000, key_size=2)
    metric = TemplateRankEstimation(ds, "hamming_weight", trace_step=250)
    result = metric.compute()
    lp = result.log_probabilities
    assert result.steps.tolist() == [250, 500, 750, 1000]
    assert lp.shape == (4, 2, 256)
    assert not np.any(np.isnan(lp))
    key = ds.get_key()
    assert np.argmax(lp[-1, 0]) == key[0]
    assert np.argmax(lp[-1, 1]) == key[1]
    assert np.all(result.subkey_ranks()[-1] == 1)
    rmin, r, rmax = result.key_rank(nbins=1000)[-1]
    assert rmin == 1.0
    assert rmin <= r <= rmax


def test_sample_window():
    rng = get_rng()
    ds = gen_dataset(rng, 400)
    full = TemplateRankEstimation(ds, "hamming_weight").compute()
    window = TemplateRankEstimation(
        ds, "hamming_weight", sample_start=1, sample_end=3
    ).compute()
    # Scores differ since fewer samples are used, but the key is still found.
    assert not np.allclose(full.log_probabilities, window.log_probabilities)
    assert np.argmax(window.log_probabilities[0, 0]) == ds.get_key()[0]


def test_parallel_equals_serial():
    rng = get_rng()
    ds = gen_dataset(rng, 600, key_size=3)
    metric = TemplateRankEstimation(ds, "identity", trace_step=200)
    with Config(n_threads=1).activate():
        serial = metric.compute()
    with Config(n_threads=4).activate():
        parallel = metric.compute()
    assert np.array_equal(serial.steps, parallel.steps)
    np.testing.assert_allclose(
        serial.log_probabilities, parallel.log_probabilities, rtol=1e-12
    )


class SlowSelectableModel(SelectableModel):
    """Checks that the selected byte does not change during materialize."""

    def __init__(self, model):
        super().__init__(model)
        self.inconsistent = False
        self.calls = 0

    def materialize(self):
        selected = self._byte_index
        time.sleep(0.001)
        pred = super().materialize()
        if self._byte_index != selected:
            self.inconsistent = True
        self.calls += 1
        return pred


def test_selectable_model_consistency():
    rng = get_rng()
    ds = gen_dataset(rng, 300, key_size=4)
    model = SlowSelectableModel(HammingWeightModel(ds))
    with Config(n_threads=4).activate():
        result = TemplateRankEstimation(ds, model, trace_step=100).compute()
        reference = TemplateRankEstimation(
            ds, HammingWeightModel(ds), trace_step=100
        ).compute()
    assert not model.inconsistent
    assert model.calls == 3 * 4
    np.testing.assert_allclose(
        result.log_probabilities, reference.log_probabilities, rtol=1e-12
    )


class FailingModel(IdentityModel):
    def __init__(self, dataset, failing_byte):
        super().__init__(dataset)
        self.failing_byte = failing_byte
        self.lock = threading.Lock()
        self.bytes = []

    def predict(self, byte_index, trace_count=None):
        with self.lock:
            self.bytes.append(byte_index)
        if byte_index == self.failing_byte:
            raise RuntimeError("cannot read plaintexts")
        return super().predict(byte_index, trace_count)


def test_model_failure_aborts_run():
    rng = get_rng()
    ds = gen_dataset(rng, 200, key_size=3)
    model = FailingModel(ds, failing_byte=0)
    with Config(n_threads=1).activate():
        metric = TemplateRankEstimation(ds, model, trace_step=50)
        with pytest.raises(IoFailureError, match="cannot read plaintexts"):
            metric.compute()
    # The first unit failed: no other unit was started.
    assert model.bytes == [0]


def test_invalid_model_output():
    rng = get_rng()
    ds = gen_dataset(rng, 100)

    class WideModel(IdentityModel):
        def leakage(self, x):
            return x.astype(np.int32) + 1

    with pytest.raises(UnsupportedOperationError):
        TemplateRankEstimation(ds, WideModel(ds)).compute()


def test_result_table(tmp_path):
    rng = get_rng()
    ds = gen_dataset(rng, 300, key_size=2)
    result = TemplateRankEstimation(ds, "hamming_weight", trace_step=150).compute()
    header = result.header
    assert len(header) == 1 + 2 * 256
    assert header[:3] == ["number_of_traces", "byte0_0", "byte0_1"]
    assert header[256] == "byte0_255"
    assert header[257] == "byte1_0"
    rows = list(result.rows())
    assert [row[0] for row in rows] == [150, 300]
    assert rows[1][1 + 256 + 7] == result.log_probabilities[1, 1, 7]

    path = tmp_path / "rank.csv"
    result.to_csv(path)
    with open(path, newline="") as f:
        content = list(csv.reader(f))
    assert content[0] == header
    assert len(content) == 3
    assert np.allclose([float(v) for v in content[2][1:]], rows[1][1:])
    with pytest.raises(IoFailureError):
        result.to_csv(tmp_path / "missing_dir" / "rank.csv")


def test_metric_registry():
    assert "rank_estimation" in METRICS
    rng = get_rng()
    ds = gen_dataset(rng, 100)
    metric = METRICS.create("rank_estimation", ds, "identity")
    assert isinstance(metric, TemplateRankEstimation)
