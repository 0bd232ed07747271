r"""Post-processing of the per-byte log-probabilities.

The rank estimation metric outputs unnormalized log-probabilities. This
module normalizes them (`normalize_log_proba`), computes the rank of each
true key byte (`subkey_ranks`) and estimates the rank of the full key with
histograms (`rank_nbin`).

Examples
--------

>>> from scarank.postprocessing import rank_nbin
>>> import numpy as np
>>> # define the correct key
>>> key = np.random.randint(0,256,16)
>>> # Derive the score for each key byte
>>> scores = np.ones((16,256)) * 1E-5
>>> scores[np.arange(16),key] = 1
>>> # Compute the full key rank (correct key must have rank 1).
>>> (rmin,r,rmax) = rank_nbin(-np.log(scores),key,nbins=100)
>>> assert r == 1

Notes
-----
The rank estimation algorithm is based on [1]_, with the following
optimization: computation of histogram bins with higher score than the expected
key is skipped, since it has no impact on the final rank.

References
----------

.. [1] "Simple Key Enumeration (and Rank Estimation) Using Histograms: An
   Integrated Approach", R. Poussier, F.-X. Standaert, V. Grosso in CHES2016.
"""

__all__ = ["normalize_log_proba", "subkey_ranks", "rank_nbin"]

import numpy as np
import numpy.typing as npt
import scipy.special


def normalize_log_proba(log_proba: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Normalize log-probabilities along the last axis, such that the
    probabilities sum to one."""
    log_proba = np.asarray(log_proba, dtype=np.float64)
    return log_proba - scipy.special.logsumexp(log_proba, axis=-1, keepdims=True)


def subkey_ranks(log_proba: npt.ArrayLike, key: npt.ArrayLike) -> npt.NDArray[np.int64]:
    """Rank of the correct value of each sub-key.

    Parameters
    ----------
    log_proba : array_like, f64
        Scores of shape ``(..., nsubkeys, nc)`` (higher is more likely).
    key : array_like, int
        Correct sub-keys, shape ``(nsubkeys,)``.

    Returns
    -------
    array_like, int
        Shape ``(..., nsubkeys)``. Rank 1 means the correct sub-key has the
        strictly highest score.
    """
    log_proba = np.asarray(log_proba)
    key = np.asarray(key, dtype=np.intp)
    correct = np.take_along_axis(
        log_proba,
        np.broadcast_to(key[:, np.newaxis], log_proba.shape[:-1] + (1,)),
        axis=-1,
    )
    return 1 + np.sum(log_proba > correct, axis=-1)


def rank_nbin(costs: npt.ArrayLike, key: npt.ArrayLike, nbins: int):
    r"""Estimate the rank of the full key based on histograms of sub-key costs.

    Parameters
    ----------
    costs : array_like, f64
        Cost for each of the sub-keys (e.g. negative log-probabilities).
        Array must be of shape `(ns,nc)` where `ns` is the number of
        sub-keys, `nc` the possible values of each sub-keys. Infinite costs
        (impossible values) are allowed, except for the correct key.
    key : array_like, int
        Correct full key split in sub-keys. Array must be of shape `(ns,)`.
    nbins : int
        Number of bins for each of the distributions.

    Returns
    -------
    (rmin, r, rmax): (float, float, float)

            - **rmin** is a lower bound for the key rank.
            - **r** is the estimated key rank.
            - **rmax** is an upper bound for the key rank.
    """
    costs = np.asarray(costs, dtype=np.float64)
    key = np.asarray(key, dtype=np.intp)
    if costs.ndim != 2 or key.shape != (costs.shape[0],):
        raise ValueError(
            f"Shapes of costs {costs.shape} and key {key.shape} do not match."
        )
    if nbins < 1:
        raise ValueError(f"nbins must be positive, {nbins=} given.")
    ns = costs.shape[0]
    key_costs = costs[np.arange(ns), key]
    if not np.all(np.isfinite(key_costs)):
        raise ValueError("The correct key has an infinite cost.")
    finite = np.isfinite(costs)
    cmin = costs[finite].min()
    width = (costs[finite].max() - cmin) / nbins
    if width == 0.0:
        width = 1.0
    bins = np.zeros(costs.shape, dtype=np.intp)
    bins[finite] = np.minimum(((costs[finite] - cmin) / width).astype(np.intp), nbins - 1)
    key_bin = int(bins[np.arange(ns), key].sum())
    # The true cost of a key in bin b lies in [b, b+ns] (in units of width).
    limit = key_bin + ns
    hist = np.ones(1)
    for i in range(ns):
        h = np.bincount(bins[i][finite[i]], minlength=nbins).astype(np.float64)
        hist = np.convolve(hist, h)[:limit]
    rmin = 1.0 + hist[: max(key_bin - ns, 0)].sum()
    rmax = hist[:limit].sum()
    r = 1.0 + hist[:key_bin].sum() + (hist[key_bin] - 1.0) / 2
    return (rmin, min(max(r, rmin), rmax), rmax)
