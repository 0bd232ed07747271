r"""Power models.

A power model maps a key hypothesis :math:`k \in [0, 256)` and a trace index
:math:`t` to the predicted leakage of the targeted key byte :math:`b`:

.. math::
    \mathrm{pred}_b[k, t] = f(\mathrm{SBOX}[p_{t,b} \oplus k])

where :math:`p_{t,b}` is byte :math:`b` of the plaintext of trace :math:`t`
and :math:`f` is the identity (`IdentityModel`) or the Hamming weight
(`HammingWeightModel`).

`PowerModel.predict` takes the key-byte index explicitly and returns a fresh
matrix: it has no shared state and can be called concurrently.
`SelectableModel` adapts the select-then-materialize protocol of stateful
models, whose two calls must be performed under `SelectableModel.lock`.
"""

__all__ = ["PowerModel", "IdentityModel", "HammingWeightModel", "SelectableModel"]

import abc
import threading

import numpy as np
import numpy.typing as npt

from scarank.dataset import TraceDataset
from scarank.errors import InvalidArgumentError, UnsupportedOperationError
from scarank.registry import MODELS
from .aes import SBOX, HAMMING_WEIGHT

N_HYPOTHESES = 256


class PowerModel(abc.ABC):
    """Pure power model over the plaintexts of a dataset.

    Parameters
    ----------
    dataset :
        Dataset providing the plaintexts.
    """

    def __init__(self, dataset: TraceDataset):
        self.dataset = dataset

    def predict(
        self, byte_index: int, trace_count: int = None
    ) -> npt.NDArray[np.uint8]:
        """Prediction matrix for key byte `byte_index`.

        Returns
        -------
        array_like, uint8
            Predictions of shape ``(256, trace_count)``; element ``[k, t]`` is
            the predicted leakage of trace ``t`` under hypothesis ``k``.
        """
        header = self.dataset.header
        if trace_count is None:
            trace_count = header.trace_count
        if not 0 <= byte_index < header.plaintext_size:
            raise InvalidArgumentError(
                f"Byte index {byte_index} out of range [0, {header.plaintext_size})."
            )
        if not 0 <= trace_count <= header.trace_count:
            raise InvalidArgumentError(
                f"Cannot predict {trace_count} traces, the dataset has {header.trace_count}."
            )
        p = self.dataset.plaintexts[:trace_count, byte_index]
        k = np.arange(N_HYPOTHESES, dtype=np.uint8)
        return self.leakage(SBOX[np.bitwise_xor(k[:, np.newaxis], p[np.newaxis, :])])

    @abc.abstractmethod
    def leakage(self, x: npt.NDArray[np.uint8]) -> npt.NDArray[np.uint8]:
        """Leakage of the S-box outputs `x`."""


@MODELS.register("identity")
class IdentityModel(PowerModel):
    """The S-box output leaks as is."""

    def leakage(self, x):
        return x


@MODELS.register("hamming_weight")
class HammingWeightModel(PowerModel):
    """The Hamming weight of the S-box output leaks."""

    def leakage(self, x):
        return HAMMING_WEIGHT[x]


class SelectableModel:
    """Stateful adapter around a `PowerModel`.

    The targeted byte is selected with `select_byte_index` and the prediction
    matrix of the selected byte is produced by `materialize`. Since the
    selection is shared state, callers must hold `lock` across both calls.
    """

    def __init__(self, model: PowerModel, trace_count: int = None):
        self.model = model
        self.trace_count = trace_count
        self.lock = threading.Lock()
        self._byte_index = None

    def select_byte_index(self, index: int):
        self._byte_index = index

    def materialize(self) -> npt.NDArray[np.uint8]:
        if self._byte_index is None:
            raise UnsupportedOperationError("No key byte selected.")
        return self.model.predict(self._byte_index, self.trace_count)
