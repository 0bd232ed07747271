r"""Template-based rank estimation.

For each checkpoint number of traces :math:`n` (a *step*) and each key byte
:math:`b`, `TemplateRankEstimation` builds pooled Gaussian templates
(`scarank.modeling.PooledTemplates`) from the first :math:`n` traces, grouped
by the prediction of the power model under the true key byte, and scores the
256 hypotheses for :math:`b` with their unnormalized log-probability.

Each (step, key byte) pair is an independent unit of work, run on the thread
pool of the active `scarank.config.Config`. The result does not depend on
the number of threads nor on the completion order of the units.

Example
-------
>>> import numpy as np
>>> from scarank.dataset import TraceDataset
>>> from scarank.metrics import TemplateRankEstimation
>>> from scarank.models import IdentityModel, SBOX
>>> rng = np.random.default_rng(0)
>>> plaintexts = rng.integers(0, 256, (1000, 1), dtype=np.uint8)
>>> key = np.array([[0x2B]], dtype=np.uint8)
>>> leak = SBOX[plaintexts[:, 0] ^ key[0, 0]].astype(np.float64)
>>> traces = np.stack([leak, 255 - leak], axis=1) + rng.normal(0, 2, (1000, 2))
>>> ds = TraceDataset(traces, plaintexts, key)
>>> metric = TemplateRankEstimation(ds, IdentityModel(ds), trace_step=500)
>>> result = metric.compute()
>>> result.steps.tolist()
[500, 1000]
>>> int(np.argmax(result.log_probabilities[-1, 0]))
43

.. currentmodule:: scarank.metrics

.. autosummary::
   :toctree:
   :nosignatures:

   TemplateRankEstimation
   RankEstimationResult
   trace_steps
"""

__all__ = ["TemplateRankEstimation", "RankEstimationResult", "trace_steps"]

import csv
import logging
import threading
from typing import List, Union

import numpy as np
import numpy.typing as npt
from tqdm import tqdm

from scarank.config import get_config
from scarank.dataset import KeyGenerationMode, TraceDataset
from scarank.errors import (
    InternalError,
    InvalidArgumentError,
    IoFailureError,
    ScarankError,
    UnsupportedOperationError,
)
from scarank.modeling import PooledTemplates
from scarank.models import PowerModel, SelectableModel
from scarank.postprocessing import normalize_log_proba, rank_nbin, subkey_ranks
from scarank.registry import METRICS, MODELS
import scarank.tools
import scarank.utils

logger = logging.getLogger(__name__)

N_HYPOTHESES = 256


def trace_steps(trace_count: int, trace_step: int = 0) -> List[int]:
    """Checkpoint numbers of traces.

    ``[trace_count]`` if `trace_step` is 0, otherwise ``trace_step,
    2*trace_step, ...`` up to `trace_count` (included).
    """
    if trace_step < 0:
        raise InvalidArgumentError(f"trace_step must be non-negative, {trace_step=}.")
    if trace_step == 0:
        return [trace_count]
    return list(range(trace_step, trace_count + 1, trace_step))


class RankEstimationResult:
    """Log-probabilities of all the key hypotheses, for each step.

    Attributes
    ----------
    steps : array_like, int
        Number of traces of each step, ascending. Shape ``(nsteps,)``.
    log_probabilities : array_like, f64
        Unnormalized log-probabilities, shape ``(nsteps, key_size, 256)``.
    key : array_like, uint8
        The correct key.
    bin_count : int
        Default number of bins for `key_rank`.
    """

    def __init__(self, steps, log_probabilities, key, bin_count: int = 10000):
        self.steps = np.asarray(steps)
        self.log_probabilities = np.asarray(log_probabilities)
        self.key = np.asarray(key)
        self.bin_count = bin_count

    @property
    def header(self) -> List[str]:
        """Column names of the table."""
        key_size = self.log_probabilities.shape[1]
        return ["number_of_traces"] + [
            f"byte{b}_{h}" for b in range(key_size) for h in range(N_HYPOTHESES)
        ]

    def rows(self):
        """Table rows: number of traces, then the log-probabilities ordered by
        key byte then hypothesis."""
        for step, lp in zip(self.steps, self.log_probabilities):
            yield [int(step)] + lp.ravel().tolist()

    def to_csv(self, path):
        """Write the table (`header` then `rows`) to a CSV file."""
        try:
            with open(path, "w", newline="") as f:
                writer = csv.writer(f)
                writer.writerow(self.header)
                writer.writerows(self.rows())
        except OSError as e:
            raise IoFailureError(f"Cannot write result table to {path}: {e}") from e

    def normalized(self) -> npt.NDArray[np.float64]:
        """Log-probabilities normalized for each step and key byte."""
        return normalize_log_proba(self.log_probabilities)

    def subkey_ranks(self) -> npt.NDArray[np.int64]:
        """Rank of each correct key byte, shape ``(nsteps, key_size)``."""
        return subkey_ranks(self.log_probabilities, self.key)

    def key_rank(self, nbins: int = None) -> npt.NDArray[np.float64]:
        """Full key rank bounds ``(rmin, r, rmax)`` for each step, shape
        ``(nsteps, 3)``. See `scarank.postprocessing.rank_nbin`."""
        if nbins is None:
            nbins = self.bin_count
        return np.array(
            [rank_nbin(-lp, self.key, nbins) for lp in self.normalized()]
        )


@METRICS.register("rank_estimation")
class TemplateRankEstimation:
    """Rank estimation with pooled Gaussian templates.

    Parameters
    ----------
    dataset :
        Traces to evaluate. The key must be fixed for all traces.
    model :
        Power model: a `scarank.models.PowerModel`, a
        `scarank.models.SelectableModel` or the name of a registered model.
    sample_start :
        First sample of the window.
    sample_end :
        End (excluded) of the window, default: number of samples.
    trace_count :
        Maximum number of traces, default: number of traces of the dataset.
    trace_step :
        Checkpoint stride, see `trace_steps`. 0 for a single step.
    bin_count :
        Number of histogram bins for the full key rank estimation (not used
        by `compute`).
    threshold :
        Sample selection threshold, see `scarank.modeling.select_samples`.

    Raises
    ------
    UnsupportedOperationError
        If the key of the dataset is not fixed.
    InvalidArgumentError
        For an empty or out-of-bounds sample window or trace count.
    """

    def __init__(
        self,
        dataset: TraceDataset,
        model: Union[PowerModel, SelectableModel, str],
        *,
        sample_start: int = 0,
        sample_end: int = None,
        trace_count: int = None,
        trace_step: int = 0,
        bin_count: int = 10000,
        threshold: float = 0.0,
    ):
        header = dataset.header
        if header.key_mode != KeyGenerationMode.FIXED:
            logger.error("Rank estimation requires a key fixed across the dataset.")
            raise UnsupportedOperationError(
                "Rank estimation requires the key to be fixed across the entire dataset."
            )
        if sample_end is None:
            sample_end = header.sample_count
        if not 0 <= sample_start < sample_end <= header.sample_count:
            raise InvalidArgumentError(
                f"Invalid sample window [{sample_start}, {sample_end}) for "
                f"{header.sample_count} samples."
            )
        if trace_count is None:
            trace_count = header.trace_count
        if not 1 <= trace_count <= header.trace_count:
            raise InvalidArgumentError(
                f"Invalid trace count {trace_count}, the dataset has "
                f"{header.trace_count} traces."
            )
        steps = trace_steps(trace_count, trace_step)
        if not steps:
            raise InvalidArgumentError(
                f"Trace step {trace_step} is larger than the trace count {trace_count}."
            )
        if bin_count < 1:
            raise InvalidArgumentError(f"bin_count must be positive, {bin_count=}.")
        if isinstance(model, str):
            model = MODELS.create(model, dataset)
        if not isinstance(model, (PowerModel, SelectableModel)):
            raise InvalidArgumentError(f"Unsupported power model {model!r}.")
        if isinstance(model, PowerModel) and header.plaintext_size < header.key_size:
            raise InvalidArgumentError(
                f"Cannot predict {header.key_size} key bytes from "
                f"{header.plaintext_size} plaintext bytes."
            )
        self.dataset = dataset
        self.model = model
        self.sample_start = sample_start
        self.sample_end = sample_end
        self.trace_count = trace_count
        self.trace_step = trace_step
        self.bin_count = bin_count
        self.threshold = threshold
        self.steps = steps
        self.key = np.array(dataset.get_key(), copy=True)
        self.key_size = header.key_size

    def predictions(self, byte_index: int) -> npt.NDArray[np.intp]:
        """Prediction matrix of key byte `byte_index` for `trace_count`
        traces, shape ``(256, trace_count)``."""
        try:
            if isinstance(self.model, SelectableModel):
                with self.model.lock:
                    self.model.select_byte_index(byte_index)
                    predictions = self.model.materialize()
            else:
                predictions = self.model.predict(byte_index, self.trace_count)
        except ScarankError:
            raise
        except Exception as e:
            raise IoFailureError(
                f"Power model failed for key byte {byte_index}: {e}"
            ) from e
        predictions = np.asarray(predictions)
        if predictions.ndim != 2 or predictions.shape[0] != N_HYPOTHESES:
            raise InternalError(
                f"Prediction matrix has shape {predictions.shape}, expected "
                f"({N_HYPOTHESES}, {self.trace_count})."
            )
        return scarank.utils.clean_predictions(
            predictions[:, : self.trace_count], self.trace_count
        )

    def compute_unit(self, trace_count: int, byte_index: int) -> npt.NDArray[np.float64]:
        """Log-probabilities of the 256 hypotheses of key byte `byte_index`
        using the first `trace_count` traces."""
        predictions = self.predictions(byte_index)[:, :trace_count]
        traces = self.dataset.traces[:trace_count, self.sample_start : self.sample_end]
        labels = predictions[self.key[byte_index]]
        templates = PooledTemplates(threshold=self.threshold).fit(traces, labels)
        scores = templates.log_likelihood(traces, predictions)
        if np.any(np.isnan(scores)):
            raise InternalError(
                f"NaN log-probability for {trace_count} traces, key byte {byte_index}."
            )
        return scores

    def compute(self) -> RankEstimationResult:
        """Run all the (step, key byte) units.

        Raises
        ------
        ScarankError
            The first error observed in any unit. No partial result is
            returned.
        """
        n_units = len(self.steps) * self.key_size
        logger.info(
            "Rank estimation: %d steps x %d key bytes, samples [%d, %d)",
            len(self.steps),
            self.key_size,
            self.sample_start,
            self.sample_end,
        )

        def unit(i):
            step, byte_index = divmod(i, self.key_size)
            return self.compute_unit(self.steps[step], byte_index)

        progress_lock = threading.Lock()
        with tqdm(
            total=n_units,
            desc="Rank estimation",
            disable=not get_config().show_progress,
        ) as progress:

            def on_unit_done(_):
                with progress_lock:
                    progress.update(1)

            with scarank.utils.interruptible():
                report = scarank.tools.parallel_for(
                    n_units, unit, on_unit_done=on_unit_done
                )
        if report.failed:
            error = report.first_error
            failed = report.errors[0].index
            logger.error(
                "Rank estimation failed (%d traces, key byte %d): %s",
                self.steps[failed // self.key_size],
                failed % self.key_size,
                error,
            )
            raise error
        log_probabilities = np.array(report.values()).reshape(
            len(self.steps), self.key_size, N_HYPOTHESES
        )
        return RankEstimationResult(
            self.steps, log_probabilities, self.key, self.bin_count
        )
