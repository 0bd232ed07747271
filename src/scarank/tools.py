"""Parallel execution tools.

Reference
---------

.. currentmodule:: scarank.tools

.. autosummary::
   :toctree:
   :recursive:
   :nosignatures:

   ContextExecutor
   UnitOutcome
   WorkReport
   partition
   parallel_for
"""

__all__ = ["ContextExecutor", "UnitOutcome", "WorkReport", "partition", "parallel_for"]

from concurrent.futures import ThreadPoolExecutor
import contextvars
import dataclasses
import logging
import math
import threading
from typing import Any, Callable, List, Optional

import scarank.config

logger = logging.getLogger(__name__)


def restore_context(context):
    for var, value in context.items():
        var.set(value)


class ContextExecutor(ThreadPoolExecutor):
    """concurrent.futures.ThreadPoolExecutor with automatic propagation of contextvars.

    The context is captured at the creation of the executor, such that the
    active `scarank.config.Config` is also active in the worker threads.
    """

    def __init__(self, *args, **kwargs):
        context = contextvars.copy_context()
        super().__init__(*args, **kwargs, initializer=lambda: restore_context(context))


@dataclasses.dataclass
class UnitOutcome:
    """Explicit success or failure of one unit of work."""

    index: int
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class WorkReport:
    """Outcomes of a `parallel_for` run.

    ``outcomes[i]`` is ``None`` for the units that were skipped after a
    failure. ``errors`` lists the failed outcomes in the order they were
    observed.
    """

    def __init__(self, n_items: int):
        self.outcomes: List[Optional[UnitOutcome]] = [None] * n_items
        self.errors: List[UnitOutcome] = []

    @property
    def failed(self) -> bool:
        return bool(self.errors)

    @property
    def first_error(self) -> Optional[BaseException]:
        return self.errors[0].error if self.errors else None

    def values(self) -> list:
        """Values of all units, in index order.

        Raises the first observed error if any unit failed.
        """
        if self.errors:
            raise self.first_error
        return [outcome.value for outcome in self.outcomes]


def partition(n_items: int, chunk_size: int) -> List[range]:
    """Split ``range(n_items)`` into contiguous sub-ranges of at most
    `chunk_size` items."""
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be positive, {chunk_size=} given.")
    return [
        range(start, min(start + chunk_size, n_items))
        for start in range(0, n_items, chunk_size)
    ]


def parallel_for(
    n_items: int,
    unit: Callable[[int], Any],
    *,
    chunk_size: Optional[int] = None,
    on_unit_done: Optional[Callable[[UnitOutcome], None]] = None,
    stop_on_error: bool = True,
) -> WorkReport:
    """Run ``unit(i)`` for all ``i`` in ``range(n_items)`` on the thread pool
    of the active `scarank.config.Config`.

    The index range is split into sub-ranges (see `partition`), and each
    sub-range is processed sequentially by one worker.

    Parameters
    ----------
    n_items :
        Size of the flat work-index space.
    unit :
        Unit of work. Its return value (or the exception it raises) is stored
        in an `UnitOutcome`.
    chunk_size :
        Number of units per sub-range. By default, about four sub-ranges are
        created per worker thread.
    on_unit_done :
        Called with the `UnitOutcome` of each successful unit, from the worker
        thread. Must be thread-safe.
    stop_on_error :
        If True, once a unit failed, units that did not start yet are
        skipped. Running units are never interrupted.

    Returns
    -------
    WorkReport
        Outcomes, independent of the completion order of the units.
    """
    report = WorkReport(n_items)
    if n_items == 0:
        return report
    n_workers = scarank.config.get_config().threadpool.n_threads
    if chunk_size is None:
        chunk_size = max(1, math.ceil(n_items / (4 * n_workers)))
    failed = threading.Event()
    errors_lock = threading.Lock()

    def run_range(indices):
        for i in indices:
            if stop_on_error and failed.is_set():
                return
            try:
                value = unit(i)
            except Exception as e:
                outcome = UnitOutcome(i, error=e)
                with errors_lock:
                    report.errors.append(outcome)
                failed.set()
                logger.debug("Unit %d failed: %s", i, e)
            else:
                outcome = UnitOutcome(i, value=value)
                if on_unit_done is not None:
                    on_unit_done(outcome)
            report.outcomes[i] = outcome

    chunks = partition(n_items, chunk_size)
    if n_workers == 1:
        for chunk in chunks:
            run_range(chunk)
    else:
        with scarank.config.get_config().threadpool.executor() as executor:
            # Consume the iterator to propagate unexpected exceptions.
            list(executor.map(run_range, chunks))
    return report
