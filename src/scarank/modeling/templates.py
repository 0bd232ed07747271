r"""Pooled Gaussian templates.

The leakage :math:`\mathbf{l}_t` of trace :math:`t` is modeled as a
multivariate Gaussian whose mean depends on the predicted leakage class
:math:`x_t \in [0, 256)` and whose covariance is shared by all classes:

.. math::
    \mathbf{l}_t \sim \mathcal{N}(\mathbf{\mu}_{x_t}, \mathbf{\Sigma})

The model is built in four steps:

1. `group_traces`: traces are split in 256 groups according to their class
   (the prediction under the true key).
2. `group_means`: mean of each group. Empty groups have a NaN mean and are
   ignored in all further steps.
3. `select_samples`: only the samples where at least two group means differ
   are kept.
4. `pooled_covariance`: covariance of the deviations of each trace from the
   mean of its group, over the selected samples, inverted with
   `scarank.modeling.linalg.cholesky_inverse`.

`log_likelihoods` then scores each key hypothesis :math:`k` with the
unnormalized log-probability

.. math::
    \log \hat{\mathsf{f}}(k) = -\frac{1}{2} \sum_t
        (\mathbf{l}_t - \mathbf{\mu}_{x_t^k})^T \mathbf{\Sigma}^{-1}
        (\mathbf{l}_t - \mathbf{\mu}_{x_t^k})

where :math:`x_t^k` is the class predicted for trace :math:`t` under
hypothesis :math:`k`. Traces predicted in an empty group do not contribute,
and a hypothesis without any contributing trace scores :math:`-\infty`.

Warning
^^^^^^^

`select_samples` is a coarse admission filter: with floating-point leakage,
almost no sample has exactly equal group means, hence almost nothing is
pruned. It does not guarantee any dimensionality reduction.

Example
-------
>>> import numpy as np
>>> from scarank.modeling import PooledTemplates
>>> rng = np.random.default_rng(0)
>>> labels = rng.integers(0, 256, 2000)
>>> traces = rng.normal(0, 1, (2000, 3)) + labels[:, np.newaxis] / 16
>>> templates = PooledTemplates().fit(traces, labels)
>>> predictions = (labels[np.newaxis, :] + np.arange(256)[:, np.newaxis]) % 256
>>> int(np.argmax(templates.log_likelihood(traces, predictions)))
0
"""

__all__ = [
    "group_traces",
    "group_means",
    "select_samples",
    "pooled_covariance",
    "log_likelihoods",
    "PooledTemplates",
]

from typing import List

import numpy as np
import numpy.typing as npt

import scarank.utils
from scarank.errors import InternalError, InvalidArgumentError, NumericInstabilityError
from .linalg import DEFAULT_RTOL, cholesky_inverse

N_CLASSES = scarank.utils.N_CLASSES


def group_traces(labels: npt.ArrayLike, trace_count: int = None) -> List[npt.NDArray]:
    """Partition the traces ``0..trace_count-1`` according to their label.

    Parameters
    ----------
    labels : array_like, int
        Predicted class of each trace, in ``[0, 256)``.
    trace_count :
        Only the first `trace_count` traces are grouped (default: all).

    Returns
    -------
    list of array_like, int
        256 sorted arrays of trace indices. They are pairwise disjoint and
        their union is ``range(trace_count)``.
    """
    labels = np.asarray(labels)
    if labels.ndim != 1:
        raise InvalidArgumentError(f"Labels must be 1-dimensional, got {labels.ndim}.")
    if trace_count is None:
        trace_count = labels.shape[0]
    labels = scarank.utils.clean_predictions(labels, trace_count)[:trace_count]
    order = np.argsort(labels, kind="stable")
    bounds = np.searchsorted(labels[order], np.arange(N_CLASSES + 1))
    return [order[bounds[c] : bounds[c + 1]] for c in range(N_CLASSES)]


def group_means(traces: npt.NDArray, groups: List[npt.NDArray]) -> npt.NDArray[np.float64]:
    """Mean trace of each group, shape ``(256, ns)``.

    The rows of empty groups are NaN.
    """
    means = np.full((len(groups), traces.shape[1]), np.nan)
    for c, idx in enumerate(groups):
        if idx.size:
            means[c] = np.mean(traces[idx], axis=0, dtype=np.float64)
    return means


def defined_groups(means: npt.NDArray) -> npt.NDArray[np.bool_]:
    return ~np.any(np.isnan(means), axis=1)


def select_samples(means: npt.NDArray, threshold: float = 0.0) -> npt.NDArray[np.intp]:
    """Samples where the means of (at least) two groups differ.

    Sample ``s`` is kept if ``(means[i, s] - means[j, s])**2 > threshold``
    for some pair of non-empty groups ``i < j``. Pairs are visited in
    ascending ``(i, j)`` order, samples in ascending order within a pair, and
    samples are returned in the order they were first found.
    """
    defined = np.flatnonzero(defined_groups(means))
    ns = means.shape[1]
    kept = np.zeros(ns, dtype=bool)
    order = []
    for a, i in enumerate(defined[:-1]):
        differs = (means[defined[a + 1 :]] - means[i]) ** 2 > threshold
        for row in differs:
            new = np.flatnonzero(row & ~kept)
            if new.size:
                kept[new] = True
                order.extend(new.tolist())
                if len(order) == ns:
                    return np.array(order, dtype=np.intp)
    return np.array(order, dtype=np.intp)


def pooled_covariance(
    traces: npt.NDArray,
    labels: npt.NDArray[np.intp],
    means: npt.NDArray[np.float64],
    pois: npt.NDArray[np.intp],
) -> npt.NDArray[np.float64]:
    r"""Covariance of the deviations of each trace from its group mean.

    .. math::
        \mathbf{\Sigma} = \frac{1}{n-1} \sum_{t=0}^{n-1}
            (\mathbf{l}_t - \mathbf{\mu}_{x_t}) (\mathbf{l}_t - \mathbf{\mu}_{x_t})^T

    restricted to the samples `pois`. Shape ``(len(pois), len(pois))``.
    """
    n = traces.shape[0]
    if pois.size == 0:
        raise InternalError("No sample selected for the covariance estimation.")
    if n < 2:
        raise NumericInstabilityError(
            f"At least 2 traces are needed to estimate a covariance, got {n}."
        )
    deviations = traces[:, pois] - means[np.ix_(labels, pois)]
    cov = deviations.T @ deviations / (n - 1)
    return (cov + cov.T) / 2


def log_likelihoods(
    traces: npt.NDArray,
    predictions: npt.NDArray[np.intp],
    means: npt.NDArray[np.float64],
    inv_cov: npt.NDArray[np.float64],
    pois: npt.NDArray[np.intp],
) -> npt.NDArray[np.float64]:
    """Unnormalized log-probability of each hypothesis.

    Parameters
    ----------
    traces : array_like
        Shape ``(n, ns)``.
    predictions : array_like, int
        Predicted class of each trace under each hypothesis, shape ``(nh, n)``.
    means : array_like, f64
        Group means, shape ``(256, ns)``, NaN for empty groups.
    inv_cov : array_like, f64
        Inverse pooled covariance over `pois`.
    pois : array_like, int
        Selected samples.

    Returns
    -------
    array_like, f64
        Shape ``(nh,)``.
    """
    defined = defined_groups(means)
    mus = means[:, pois]
    x = traces[:, pois]
    scores = np.full(predictions.shape[0], -np.inf)
    for k, classes in enumerate(predictions):
        valid = defined[classes]
        if not np.any(valid):
            continue
        d = x[valid] - mus[classes[valid]]
        scores[k] = -0.5 * np.sum((d @ inv_cov) * d)
    return scores


class PooledTemplates:
    """Gaussian templates with a pooled covariance matrix.

    Parameters
    ----------
    threshold :
        Sample selection threshold, see `select_samples`.
    rtol :
        Positive-definiteness tolerance, see
        `scarank.modeling.linalg.cholesky_inverse`.
    """

    def __init__(self, threshold: float = 0.0, rtol: float = DEFAULT_RTOL):
        self.threshold = threshold
        self.rtol = rtol
        self.solved = False

    def fit(self, traces: npt.ArrayLike, labels: npt.ArrayLike):
        """Build the templates from `traces` (shape ``(n, ns)``) and their
        classes `labels` (shape ``(n,)``). Returns `self`."""
        traces = scarank.utils.clean_traces(traces)
        n = traces.shape[0]
        labels = np.asarray(labels)
        if labels.shape != (n,):
            raise InvalidArgumentError(
                f"Labels have shape {labels.shape}, expected ({n},)."
            )
        self.groups = group_traces(labels, n)
        self.labels = scarank.utils.clean_predictions(labels)
        self.means = group_means(traces, self.groups)
        self.pois = select_samples(self.means, self.threshold)
        if self.pois.size == 0:
            raise InternalError(
                "No sample distinguishes the groups: cannot build the templates."
            )
        self.cov = pooled_covariance(traces, self.labels, self.means, self.pois)
        self.inv_cov = cholesky_inverse(self.cov, self.rtol)
        self.solved = True
        return self

    def log_likelihood(
        self, traces: npt.ArrayLike, predictions: npt.ArrayLike
    ) -> npt.NDArray[np.float64]:
        """See `log_likelihoods`."""
        if not self.solved:
            raise ValueError("Call PooledTemplates.fit() before scoring traces.")
        traces = scarank.utils.clean_traces(traces, self.means.shape[1])
        predictions = scarank.utils.clean_predictions(
            np.atleast_2d(predictions), traces.shape[0]
        )[:, : traces.shape[0]]
        return log_likelihoods(traces, predictions, self.means, self.inv_cov, self.pois)
