"""A simple derivative checker."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional, Tuple

import numpy as np
import numpy.typing as npt
from scipy.optimize import approx_fprime

if TYPE_CHECKING:
    from ..problems import BoundConstrainedProblem


@dataclass
class DerivativeCheckResult:
    """Wrapper for the results of a derivative check.

    Parameters
    ----------
     gradient_errors : vector
        Relative error of each partial derivative, |g_i - fd_i| / max(|g_i|, 1).
     hessian_errors : matrix, optional
        Relative error of each Hessian entry, or None if the problem does not supply
        the Hessian.
     bad_gradient_indices : List[int]
        Partial derivatives with error above the tolerance.
     bad_hessian_entries : List[Tuple[int, int]]
        (row, column) of Hessian entries with error above the tolerance.

    """

    gradient_errors: npt.NDArray[np.float64]
    hessian_errors: Optional[npt.NDArray[np.float64]] = None
    bad_gradient_indices: List[int] = field(default_factory=list)
    bad_hessian_entries: List[Tuple[int, int]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Whether every derivative checked out."""
        return not self.bad_gradient_indices and not self.bad_hessian_entries


def check_derivatives(
    problem: "BoundConstrainedProblem",
    x: npt.NDArray[np.float64],
    step: Optional[float] = None,
    tolerance: float = 1e-4,
    verbose: bool = False,
) -> DerivativeCheckResult:
    """Verify numerically the accuracy of first and second derivatives.

    The gradient is compared against forward differences of the objective. When the
    problem supplies the Hessian, each row is compared against forward differences of
    the corresponding entry of the gradient. Useful to track down the cause of an
    InvalidDescentDirectionError, which usually means the gradient doesn't match the
    objective.

    Parameters
    ----------
     problem : BoundConstrainedProblem
        The problem to check.
     x : npt.NDArray[np.float64]
        The point about which to check derivatives.
     step : float, optional
        Finite difference step. Defaults to sqrt(machine epsilon) * (1 + |x|_1).
     tolerance : float, optional
        Relative error above which a derivative is considered inaccurate.
     verbose : bool, optional
        If True, print inaccurate derivatives.

    Returns
    -------
     res : DerivativeCheckResult
        Errors of each derivative.

    """
    x = np.asarray(x, dtype=np.float64)
    n = x.shape[0]
    if step is None:
        step = np.sqrt(np.finfo(np.float64).eps) * (1.0 + np.linalg.norm(x, 1))

    grad = np.asarray(problem.gradient(x), dtype=np.float64)
    fd_grad = approx_fprime(x, problem.evaluate_objective, step)
    gradient_errors = np.abs(grad - fd_grad) / np.maximum(np.abs(grad), 1.0)
    bad_gradient_indices = [int(i) for i in np.flatnonzero(gradient_errors > tolerance)]
    if verbose:
        for i in bad_gradient_indices:
            print(
                f"  Gradient {i}: expected {grad[i]:.15e}, finite difference "
                f"{fd_grad[i]:.15e}, relative error {gradient_errors[i]:.1e}"
            )

    if not problem.has_hessian:
        return DerivativeCheckResult(
            gradient_errors=gradient_errors,
            bad_gradient_indices=bad_gradient_indices,
        )

    hessian_errors = np.zeros((n, n))
    bad_hessian_entries = []
    for i in range(n):
        row = np.asarray(problem.hessian_row(x, i), dtype=np.float64)
        fd_row = approx_fprime(x, lambda z: problem.gradient(z)[i], step)
        hessian_errors[i, :] = np.abs(row - fd_row) / np.maximum(np.abs(row), 1.0)
        for j in np.flatnonzero(hessian_errors[i, :] > tolerance):
            bad_hessian_entries.append((i, int(j)))
            if verbose:
                print(
                    f"  Hessian ({i}, {j}): expected {row[j]:.15e}, finite difference "
                    f"{fd_row[j]:.15e}, relative error {hessian_errors[i, j]:.1e}"
                )

    return DerivativeCheckResult(
        gradient_errors=gradient_errors,
        hessian_errors=hessian_errors,
        bad_gradient_indices=bad_gradient_indices,
        bad_hessian_entries=bad_hessian_entries,
    )
