import logging

import numpy as np

from scarank.dataset import TraceDataset
from scarank.metrics import TemplateRankEstimation
from scarank.models import SBOX


def gen_traces(ntraces, std, ns=10, key_size=16, seed=0):
    """Hamming weight of the 16 Sbox outputs, each leaking on `ns` samples."""
    rng = np.random.default_rng(seed)
    plaintexts = rng.integers(0, 256, (ntraces, key_size), dtype=np.uint8)
    key = rng.integers(0, 256, (1, key_size), dtype=np.uint8)
    hw = np.unpackbits(SBOX[plaintexts ^ key][..., np.newaxis], axis=-1).sum(axis=-1)
    weights = rng.normal(0.0, 1.0, (key_size, ns))
    traces = (hw[:, :, np.newaxis] * weights[np.newaxis]).reshape(ntraces, -1)
    traces += rng.normal(0.0, std, traces.shape)
    return TraceDataset(traces, plaintexts, key)


def main():
    logging.basicConfig(level=logging.INFO)
    ntraces = 2000
    std = 4

    print("1. Generate simulated traces (Hamming weight + Gaussian noise) with parameters:")
    print(f"    ntraces: {ntraces}")
    print(f"    noise std: {std}")
    ds = gen_traces(ntraces, std)

    print("2. Template rank estimation, every 250 traces")
    metric = TemplateRankEstimation(ds, "hamming_weight", trace_step=250)
    result = metric.compute()

    print("3. Attack evaluation")
    ranks = result.subkey_ranks()
    key_ranks = result.key_rank(nbins=2**12)
    for step, byte_ranks, (rmin, r, rmax) in zip(result.steps, ranks, key_ranks):
        print(f"    {step:5d} traces")
        print("        key byte ranks:", " ".join(["%3d" % x for x in byte_ranks]))
        print(f"        log2 key rank: {np.log2(rmin):.1f} < {np.log2(r):.1f} < {np.log2(rmax):.1f}")

    result.to_csv("template_rank.csv")


if __name__ == "__main__":
    main()
