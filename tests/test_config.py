import pytest

from scarank.config import Config, ThreadPool, default_config, get_config
from scarank.config.threading import _default_num_threads


def test_nested_config():
    base = get_config()
    with Config(n_threads=3, show_progress=True).activate():
        assert get_config().threadpool.n_threads == 3
        with Config(show_progress=False).activate():
            # Inherits the thread pool of the enclosing config.
            assert get_config().threadpool.n_threads == 3
            assert not get_config().show_progress
        assert get_config().show_progress
    assert get_config() is base


def test_shared_threadpool():
    pool = ThreadPool(2)
    assert Config(threadpool=pool).threadpool is pool
    with pytest.raises(ValueError):
        ThreadPool(0)


def test_default_config():
    default = get_config()
    old_pool = default.threadpool
    try:
        default_config(n_threads=5)
        assert get_config().threadpool.n_threads == 5
        assert get_config() is default
    finally:
        default_config(threadpool=old_pool)


def test_num_threads_env(monkeypatch):
    monkeypatch.setenv("SCARANK_NUM_THREADS", "3")
    assert _default_num_threads() == 3
    monkeypatch.setenv("SCARANK_NUM_THREADS", "three")
    with pytest.raises(ValueError):
        _default_num_threads()
    monkeypatch.delenv("SCARANK_NUM_THREADS")
    assert _default_num_threads() >= 1
