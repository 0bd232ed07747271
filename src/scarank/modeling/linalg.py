r"""Dense symmetric matrix kernel.

Covariance matrices are plain ``float64`` numpy arrays. They are inverted with
a Cholesky factorization :math:`\mathbf{\Sigma} = \mathbf{L}\mathbf{L}^T`,
which only exists for positive-definite matrices.

A matrix built from duplicate or collinear samples is singular, but rounding
errors may still let the factorization complete with tiny pivots. Hence, the
squared pivots :math:`L_{jj}^2` are compared to the diagonal
:math:`\Sigma_{jj}`: their ratio is the fraction of the variance of sample
:math:`j` that is not explained by the samples before it, and a ratio below
`rtol` is reported as a `NumericInstabilityError`.
"""

__all__ = ["is_symmetric", "cholesky_inverse"]

import numpy as np
import numpy.typing as npt
import scipy.linalg

from scarank.errors import InternalError, InvalidArgumentError, NumericInstabilityError

DEFAULT_RTOL = 1e-10


def is_symmetric(m: npt.NDArray, rtol: float = 1e-9) -> bool:
    """True if `m` is square and symmetric up to relative tolerance `rtol`."""
    m = np.asarray(m)
    if m.ndim != 2 or m.shape[0] != m.shape[1]:
        return False
    scale = np.max(np.abs(m), initial=0.0)
    return bool(np.all(np.abs(m - m.T) <= rtol * scale))


def cholesky_inverse(
    cov: npt.ArrayLike, rtol: float = DEFAULT_RTOL
) -> npt.NDArray[np.float64]:
    """Inverse of the symmetric positive-definite matrix `cov`.

    Parameters
    ----------
    cov : array_like
        Symmetric matrix of shape ``(d, d)``, ``d >= 1``.
    rtol :
        Minimum ratio between a squared Cholesky pivot and the corresponding
        diagonal element.

    Returns
    -------
    array_like, f64
        Symmetric inverse of `cov`.

    Raises
    ------
    NumericInstabilityError
        If `cov` is not finite or not (numerically) positive-definite.
    """
    cov = np.asarray(cov, dtype=np.float64)
    if cov.ndim != 2 or cov.shape[0] != cov.shape[1]:
        raise InvalidArgumentError(f"Expected a square matrix, got shape {cov.shape}.")
    d = cov.shape[0]
    if d == 0:
        raise InternalError("Cannot invert an empty covariance matrix.")
    if not np.all(np.isfinite(cov)):
        raise NumericInstabilityError("Covariance matrix has non-finite elements.")
    if not is_symmetric(cov):
        raise InvalidArgumentError("Covariance matrix is not symmetric.")
    diag = np.diag(cov)
    if np.any(diag <= 0.0):
        raise NumericInstabilityError(
            f"Covariance matrix is not positive-definite: zero variance for "
            f"{np.count_nonzero(diag <= 0.0)} of {d} samples."
        )
    try:
        c, lower = scipy.linalg.cho_factor(cov, lower=True, check_finite=False)
    except scipy.linalg.LinAlgError as e:
        raise NumericInstabilityError(
            f"Covariance matrix is not positive-definite: {e}"
        ) from e
    ratios = np.diag(c) ** 2 / diag
    worst = int(np.argmin(ratios))
    if not ratios[worst] > rtol:
        raise NumericInstabilityError(
            "Covariance matrix is numerically singular: sample "
            f"{worst} is (nearly) collinear with previous ones "
            f"(pivot ratio {ratios[worst]:.3g})."
        )
    inv = scipy.linalg.cho_solve((c, lower), np.eye(d), check_finite=False)
    return (inv + inv.T) / 2
