r"""
Side-channel security metrics.

.. currentmodule:: scarank.metrics

.. autosummary::
   :toctree:
   :recursive:
   :nosignatures:

   TemplateRankEstimation
   RankEstimationResult
"""

__all__ = ["TemplateRankEstimation", "RankEstimationResult", "trace_steps"]

from .rankestimation import TemplateRankEstimation, RankEstimationResult, trace_steps
