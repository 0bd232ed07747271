import itertools

import pytest
import numpy as np
from scarank.postprocessing import normalize_log_proba, rank_nbin, subkey_ranks

from utils_test import get_rng


def test_rank_nbin():
    nc = 256
    nsubkeys = 4

    costs = np.zeros((nsubkeys, nc)) + 0.1
    secret_key = np.random.randint(0, nc, nsubkeys)
    costs[np.arange(nsubkeys), secret_key] = 1.0

    rmin, r, rmax = rank_nbin(-np.log10(costs), secret_key, nbins=1000)

    assert r == 1.0
    assert rmin == 1.0
    assert rmax == 1.0


def exact_rank(costs, key):
    key_cost = costs[np.arange(len(key)), key].sum()
    n_lower = sum(
        sum(c) < key_cost for c in itertools.product(*[list(row) for row in costs])
    )
    return 1 + n_lower


@pytest.mark.parametrize("nbins", [4, 16, 256])
def test_rank_nbin_bounds(nbins):
    rng = get_rng(nbins=nbins)
    nsubkeys, nc = 3, 16
    for _ in range(10):
        costs = rng.exponential(1.0, (nsubkeys, nc))
        key = rng.integers(0, nc, nsubkeys)
        rmin, r, rmax = rank_nbin(costs, key, nbins)
        exact = exact_rank(costs, key)
        assert rmin <= exact <= rmax
        assert rmin <= r <= rmax
        assert rmax <= nc**nsubkeys


def test_rank_nbin_infinite_costs():
    costs = np.array([[0.0, 1.0, np.inf], [0.5, np.inf, 2.0]])
    rmin, r, rmax = rank_nbin(costs, np.array([1, 0]), nbins=100)
    # Only key (0, 0) has a lower cost.
    assert rmin <= 2 <= rmax
    with pytest.raises(ValueError):
        rank_nbin(costs, np.array([2, 0]), nbins=100)


def test_rank_nbin_invalid():
    with pytest.raises(ValueError):
        rank_nbin(np.zeros((2, 4)), np.zeros(3, dtype=int), nbins=10)
    with pytest.raises(ValueError):
        rank_nbin(np.zeros((2, 4)), np.zeros(2, dtype=int), nbins=0)


def test_normalize_log_proba():
    rng = get_rng()
    lp = rng.normal(0.0, 100.0, (3, 2, 256)) - 1e4
    nlp = normalize_log_proba(lp)
    assert np.allclose(np.exp(nlp).sum(axis=-1), 1.0)
    assert np.allclose(nlp - lp, (nlp - lp)[..., :1])


def test_subkey_ranks():
    lp = np.array([[0.0, -1.0, -2.0, -3.0], [-3.0, -2.0, -1.0, 0.0]])
    assert subkey_ranks(lp, [0, 0]).tolist() == [1, 4]
    assert subkey_ranks(lp[np.newaxis], [2, 2]).tolist() == [[3, 2]]
