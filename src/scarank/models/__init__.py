r"""
Power models predict the leakage of a key byte under each key hypothesis.

.. currentmodule:: scarank.models

.. autosummary::
   :toctree:
   :recursive:
   :nosignatures:

   PowerModel
   IdentityModel
   HammingWeightModel
   SelectableModel
"""

__all__ = [
    "PowerModel",
    "IdentityModel",
    "HammingWeightModel",
    "SelectableModel",
    "SBOX",
]

from .aes import SBOX
from .power import PowerModel, IdentityModel, HammingWeightModel, SelectableModel
