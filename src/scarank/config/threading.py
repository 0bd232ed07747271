"""Configuration of scarank's threadpool."""

import os

import scarank.tools


class ThreadPool:
    """scarank threadpool.

    All rank-estimation units are run on a thread pool. The heavy numerical
    kernels (numpy/BLAS) release the GIL, such that threads do run in parallel.
    The executor is created anew for each parallel section with `executor`.
    """

    def __init__(self, n_threads: int):
        if n_threads < 1:
            raise ValueError(f"A ThreadPool needs at least one thread, {n_threads=}.")
        self.n_threads = n_threads

    def executor(self):
        """New `scarank.tools.ContextExecutor` with `n_threads` workers.

        We do not keep executors alive between parallel sections: this avoids
        creating threads at import time (which would break the usage of
        fork-based subprocesses) and leaves no idle threads behind.
        """
        return scarank.tools.ContextExecutor(max_workers=self.n_threads)


def usable_parallelism():
    try:
        return len(os.sched_getaffinity(0))
    except AttributeError:
        return os.cpu_count() or 1


def _default_num_threads():
    num_threads = os.environ.get("SCARANK_NUM_THREADS")
    if num_threads is None:
        num_threads = usable_parallelism()
    else:
        try:
            num_threads = int(num_threads)
        except ValueError:
            raise ValueError(
                "Environment variable SCARANK_NUM_THREADS must be an integer."
            )
    return num_threads
