"""scarank runtime configuration.

The configuration is fetched from different sources, with the following priority.
The highest-priority is the local configuration enabled with the `Config`
context manager (which can be nested, and follows thread/async context).
If no such local configuration is activated, the default configuration is used.
This configuration has default startup values (which may depend on environment
variables) that can be changed with the `default_config` function.

Configurable Behaviors
----------------------

Progress bars
^^^^^^^^^^^^^

By default, a progress bar is shown for rank estimations.
The printing of progress bars can be disabled with the `show_progress`
argument of `Config`.

Thread pools
^^^^^^^^^^^^

The (trace count, key byte) units of a rank estimation are run on a thread
pool. The default thread pool can be configured through the default `Config`
or using the value of the environment variable `SCARANK_NUM_THREADS`, e.g.:

.. code-block::

    SCARANK_NUM_THREADS=8 python3 XXX.py

If `SCARANK_NUM_THREADS` is not set, the number of CPUs usable by the process
is taken.

Example
--------

>>> from scarank.config import default_config, Config
>>> # Set the default ThreadPool to 10 threads and do not show progress bars.
>>> default_config(n_threads=10, show_progress=False)
>>> # As an exception, the following computations run on a single thread.
>>> with Config(n_threads=1).activate():
...     # Do some computations with scarank...
...     pass

Reference
---------

.. currentmodule:: scarank.config

.. autosummary::
   :toctree:
   :recursive:
   :nosignatures:

   Config
   default_config
   ThreadPool
"""

__all__ = ["default_config", "get_config", "Config", "ThreadPool"]

import contextvars
import contextlib
from typing import Optional

from .threading import ThreadPool, _default_num_threads


_current = contextvars.ContextVar("scarank config")


class Config:
    """scarank configuration.

    Configuration applicable to all scarank computations. Unspecified
    settings are inherited from the currently active configuration.
    """

    def __init__(
        self,
        *,
        threadpool: Optional[ThreadPool] = None,
        n_threads: Optional[int] = None,
        show_progress: Optional[bool] = None,
    ):
        if show_progress is not None:
            self.show_progress = show_progress
        else:
            self.show_progress = get_config().show_progress
        if threadpool is not None:
            self.threadpool = threadpool
        elif n_threads is not None:
            self.threadpool = ThreadPool(n_threads)
        else:
            self.threadpool = get_config().threadpool

    @contextlib.contextmanager
    def activate(self):
        """Locally activate a Config."""
        restore_token = _current.set(self)
        try:
            yield
        finally:
            _current.reset(restore_token)


_default = Config(n_threads=_default_num_threads(), show_progress=True)
_current.set(_default)


def default_config(**kwargs):
    """Configure the default Config.

    Arguments are the same as Config.
    """
    # Use __init__ function instead of creating new object as we want to update
    # the object in-place.
    _default.__init__(**kwargs)


def get_config():
    """Get the current config."""
    return _current.get()
