r"""In-memory trace store.

A `TraceDataset` holds the leakage traces of a measurement campaign together
with the plaintexts and keys used for each encryption. It is immutable: the
arrays are made read-only, such that a dataset can be shared between threads
without copies.

Samples are stored trace-major (shape ``(n, ns)``); `TraceDataset.get_sample`
returns the column of one sample (one value per trace).

Example
-------
>>> import numpy as np
>>> from scarank.dataset import TraceDataset, KeyGenerationMode
>>> traces = np.random.randint(0, 256, (100, 20), dtype=np.int16)
>>> plaintexts = np.random.randint(0, 256, (100, 16), dtype=np.uint8)
>>> key = np.random.randint(0, 256, (1, 16), dtype=np.uint8)
>>> ds = TraceDataset(traces, plaintexts, key, key_mode=KeyGenerationMode.FIXED)
>>> ds.header.trace_count, ds.header.sample_count
(100, 20)

.. currentmodule:: scarank.dataset

.. autosummary::
   :toctree:
   :nosignatures:

   TraceDataset
   DatasetHeader
   KeyGenerationMode
   PlaintextGenerationMode
   EncryptionAlgorithm
"""

__all__ = [
    "TraceDataset",
    "DatasetHeader",
    "KeyGenerationMode",
    "PlaintextGenerationMode",
    "EncryptionAlgorithm",
]

import dataclasses
from enum import Enum
import logging
import zipfile

import numpy as np
import numpy.typing as npt

import scarank.utils
from scarank.errors import InvalidArgumentError, IoFailureError, UnsupportedOperationError

logger = logging.getLogger(__name__)


class KeyGenerationMode(Enum):
    FIXED = "fixed"
    RANDOM = "random"


class PlaintextGenerationMode(Enum):
    FIXED = "fixed"
    RANDOM = "random"
    CHAINED = "chained"


class EncryptionAlgorithm(Enum):
    S_BOX = "s_box"
    AES_128 = "aes_128"


@dataclasses.dataclass(frozen=True)
class DatasetHeader:
    trace_count: int
    sample_count: int
    key_size: int
    key_mode: KeyGenerationMode
    plaintext_size: int
    plaintext_mode: PlaintextGenerationMode
    encryption: EncryptionAlgorithm


def _readonly(a):
    a = np.array(a, copy=True)
    a.flags.writeable = False
    return a


class TraceDataset:
    """Immutable set of traces, plaintexts and keys.

    Parameters
    ----------
    traces : array_like
        Leakage traces, shape ``(n, ns)``.
    plaintexts : array_like, uint8
        Plaintext bytes of each trace, shape ``(n, plaintext_size)``. A single
        row is broadcast to all traces.
    keys : array_like, uint8
        Key bytes, shape ``(1, key_size)`` (fixed key) or ``(n, key_size)``.
    key_mode :
        How keys were generated. A single key row implies
        `KeyGenerationMode.FIXED`.
    plaintext_mode :
        How plaintexts were generated.
    encryption :
        Algorithm whose first-round S-box is targeted.
    """

    def __init__(
        self,
        traces: npt.ArrayLike,
        plaintexts: npt.ArrayLike,
        keys: npt.ArrayLike,
        *,
        key_mode: KeyGenerationMode = KeyGenerationMode.FIXED,
        plaintext_mode: PlaintextGenerationMode = PlaintextGenerationMode.RANDOM,
        encryption: EncryptionAlgorithm = EncryptionAlgorithm.AES_128,
    ):
        traces = scarank.utils.clean_traces(traces)
        n, ns = traces.shape
        plaintexts = np.atleast_2d(np.asarray(plaintexts))
        keys = np.atleast_2d(np.asarray(keys))
        for name, a in (("plaintexts", plaintexts), ("keys", keys)):
            if a.ndim != 2:
                raise InvalidArgumentError(f"{name} must have 2 dimensions.")
            if a.shape[0] not in (1, n):
                raise InvalidArgumentError(
                    f"{name} has {a.shape[0]} rows, expected 1 or {n} (number of traces)."
                )
            if a.size and (a.min() < 0 or a.max() > 255):
                raise InvalidArgumentError(f"{name} must contain bytes.")
        if keys.shape[0] != 1 and key_mode == KeyGenerationMode.FIXED:
            if not np.all(keys == keys[0]):
                raise InvalidArgumentError(
                    "Keys differ between traces, but key_mode is FIXED."
                )
        self._traces = _readonly(traces)
        self._plaintexts = _readonly(plaintexts.astype(np.uint8))
        self._keys = _readonly(keys.astype(np.uint8))
        self.header = DatasetHeader(
            trace_count=n,
            sample_count=ns,
            key_size=keys.shape[1],
            key_mode=KeyGenerationMode(key_mode),
            plaintext_size=plaintexts.shape[1],
            plaintext_mode=PlaintextGenerationMode(plaintext_mode),
            encryption=EncryptionAlgorithm(encryption),
        )

    @property
    def traces(self) -> npt.NDArray:
        """Read-only view of all the traces, shape ``(n, ns)``."""
        return self._traces

    @property
    def plaintexts(self) -> npt.NDArray[np.uint8]:
        """Read-only plaintexts, shape ``(n, plaintext_size)``."""
        return np.broadcast_to(
            self._plaintexts, (self.header.trace_count, self.header.plaintext_size)
        )

    def get_sample(self, index: int) -> npt.NDArray:
        """Values of sample `index` for all the traces, shape ``(n,)``."""
        if not 0 <= index < self.header.sample_count:
            raise InvalidArgumentError(
                f"Sample index {index} out of range [0, {self.header.sample_count})."
            )
        return self._traces[:, index]

    def get_trace(self, index: int) -> npt.NDArray:
        if not 0 <= index < self.header.trace_count:
            raise InvalidArgumentError(
                f"Trace index {index} out of range [0, {self.header.trace_count})."
            )
        return self._traces[index]

    def get_plaintext(self, index: int) -> npt.NDArray[np.uint8]:
        return self.plaintexts[index]

    def get_key(self, index: int = 0) -> npt.NDArray[np.uint8]:
        """Key bytes used for trace `index`.

        For fixed-key datasets, the index is not relevant.
        """
        if self.header.key_mode == KeyGenerationMode.FIXED:
            return self._keys[0]
        if self._keys.shape[0] == 1:
            raise UnsupportedOperationError(
                "Per-trace keys are not available in this dataset."
            )
        return self._keys[index]

    def save(self, path):
        """Save the dataset in a `.npz` file."""
        h = self.header
        try:
            np.savez(
                path,
                traces=self._traces,
                plaintexts=self._plaintexts,
                keys=self._keys,
                key_mode=h.key_mode.value,
                plaintext_mode=h.plaintext_mode.value,
                encryption=h.encryption.value,
            )
        except OSError as e:
            raise IoFailureError(f"Cannot write dataset to {path}: {e}") from e

    @classmethod
    def load(cls, path):
        """Load a dataset stored with `save`."""
        try:
            with np.load(path, allow_pickle=False) as f:
                content = {k: f[k] for k in f.files}
        except (OSError, ValueError, zipfile.BadZipFile) as e:
            raise IoFailureError(f"Cannot read dataset from {path}: {e}") from e
        missing = {"traces", "plaintexts", "keys"} - content.keys()
        if missing:
            raise IoFailureError(f"Dataset file {path} lacks arrays {sorted(missing)}.")
        logger.info("Loaded dataset with %d traces from %s", len(content["traces"]), path)
        return cls(
            content["traces"],
            content["plaintexts"],
            content["keys"],
            key_mode=KeyGenerationMode(str(content.get("key_mode", "fixed"))),
            plaintext_mode=PlaintextGenerationMode(
                str(content.get("plaintext_mode", "random"))
            ),
            encryption=EncryptionAlgorithm(str(content.get("encryption", "aes_128"))),
        )
