r"""
Pooled Gaussian templates and the linear algebra they rely on.

.. currentmodule:: scarank.modeling

.. autosummary::
   :toctree:
   :recursive:
   :nosignatures:

   PooledTemplates
   group_traces
   group_means
   select_samples
   pooled_covariance
   log_likelihoods
   cholesky_inverse
"""

__all__ = [
    "PooledTemplates",
    "group_traces",
    "group_means",
    "select_samples",
    "pooled_covariance",
    "log_likelihoods",
    "cholesky_inverse",
    "is_symmetric",
]

from .linalg import cholesky_inverse, is_symmetric
from .templates import (
    PooledTemplates,
    group_traces,
    group_means,
    select_samples,
    pooled_covariance,
    log_likelihoods,
)
