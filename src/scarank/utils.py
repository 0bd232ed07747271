"""
Misc. internal scarank utils.
"""

import contextlib
import signal
import threading

import numpy as np
import numpy.typing as npt

from scarank.errors import InvalidArgumentError, UnsupportedOperationError

N_CLASSES = 256


@contextlib.contextmanager
def interruptible():
    """Replace current SIGINT handler with OS-default one.

    This allows long-running multi-threaded computations to be interrupted.
    This results in unclean python shutdown but it is better than requiring to
    kill the process.

    This is only feasable on the main thread. In other threads, this function
    is a no-op.
    """
    if threading.current_thread() is threading.main_thread():
        restore_sig = signal.signal(signal.SIGINT, signal.SIG_DFL)
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, restore_sig)
    else:
        yield


def clean_traces(traces: npt.ArrayLike, ns=None) -> npt.NDArray:
    traces = np.asarray(traces)
    if not np.issubdtype(traces.dtype, np.number):
        raise InvalidArgumentError(
            f"The traces array has dtype {traces.dtype}, expected a numeric type."
        )
    elif len(traces.shape) != 2:
        raise InvalidArgumentError(
            f"The traces array has {len(traces.shape)} dimensions, expected 2."
        )
    elif ns is not None and traces.shape[1] != ns:
        raise InvalidArgumentError(
            f"Traces length {traces.shape[1]} does not match the number of samples ({ns})."
        )
    return traces


def clean_predictions(predictions: npt.ArrayLike, n=None) -> npt.NDArray[np.intp]:
    """Check a prediction matrix (or row) and convert it to class indices.

    Only byte-valued leakage models are supported: all values must be
    integers in ``[0, 255]``.
    """
    predictions = np.asarray(predictions)
    if n is not None and predictions.shape[-1] < n:
        raise InvalidArgumentError(
            f"Predictions cover {predictions.shape[-1]} traces, at least {n} expected."
        )
    if predictions.size == 0:
        return predictions.astype(np.intp)
    if not np.issubdtype(predictions.dtype, np.integer):
        if not np.all(np.isfinite(predictions)) or np.any(
            predictions != np.round(predictions)
        ):
            raise UnsupportedOperationError(
                "Only byte-valued power models are supported, got non-integer predictions."
            )
    lo, hi = predictions.min(), predictions.max()
    if lo < 0 or hi >= N_CLASSES:
        raise UnsupportedOperationError(
            "Only byte-valued power models are supported, got predictions in "
            f"[{lo}, {hi}]."
        )
    return predictions.astype(np.intp)
