r"""
Processing of the rank estimation scores.

.. currentmodule:: scarank.postprocessing

.. autosummary::
   :toctree:
   :recursive:
   :nosignatures:

   normalize_log_proba
   subkey_ranks
   rank_nbin
"""

__all__ = ["normalize_log_proba", "subkey_ranks", "rank_nbin"]

from .rankestimation import normalize_log_proba, subkey_ranks, rank_nbin
