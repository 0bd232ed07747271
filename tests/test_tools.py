import contextvars
import threading
import time

import pytest

from scarank.config import Config, get_config
from scarank.tools import ContextExecutor, parallel_for, partition

var = contextvars.ContextVar("test var")


def test_context_executor():
    var.set(42)
    with Config(n_threads=3).activate():
        with ContextExecutor(max_workers=2) as e:
            values = list(e.map(lambda _: (var.get(), get_config().threadpool.n_threads), range(4)))
    assert values == 4 * [(42, 3)]


def test_partition():
    assert partition(0, 3) == []
    assert partition(7, 3) == [range(0, 3), range(3, 6), range(6, 7)]
    with pytest.raises(ValueError):
        partition(5, 0)


@pytest.mark.parametrize("n_threads", [1, 4])
def test_parallel_for_values(n_threads):
    done = []
    lock = threading.Lock()

    def on_done(outcome):
        with lock:
            done.append(outcome.index)

    with Config(n_threads=n_threads).activate():
        report = parallel_for(50, lambda i: i * i, on_unit_done=on_done)
    assert not report.failed
    assert report.values() == [i * i for i in range(50)]
    assert sorted(done) == list(range(50))


def test_parallel_for_empty():
    assert parallel_for(0, lambda i: i).values() == []


def test_parallel_for_stops_on_error():
    def unit(i):
        if i == 3:
            raise RuntimeError("unit 3")
        return i

    with Config(n_threads=1).activate():
        report = parallel_for(10, unit, chunk_size=2)
    assert report.failed
    assert isinstance(report.first_error, RuntimeError)
    assert [o.ok for o in report.outcomes[:4]] == [True, True, True, False]
    # Units not started yet are skipped.
    assert report.outcomes[4:] == 6 * [None]
    with pytest.raises(RuntimeError, match="unit 3"):
        report.values()


def test_parallel_for_running_units_complete():
    started = threading.Event()
    finished = []

    def unit(i):
        if i == 0:
            started.wait(5)
            raise RuntimeError("first")
        started.set()
        time.sleep(0.05)
        finished.append(i)
        return i

    with Config(n_threads=2).activate():
        report = parallel_for(2, unit, chunk_size=1)
    # Unit 1 was running when unit 0 failed: it completes.
    assert finished == [1]
    assert report.outcomes[1].ok
    assert str(report.first_error) == "first"


def test_parallel_for_keep_going():
    def unit(i):
        if i % 2:
            raise ValueError(i)
        return i

    with Config(n_threads=1).activate():
        report = parallel_for(6, unit, stop_on_error=False)
    assert [o.index for o in report.errors] == [1, 3, 5]
    assert all(o is not None for o in report.outcomes)
