"""Bound-constrained problems."""

from abc import ABC, abstractmethod
from typing import Callable, Optional

import numpy as np
import numpy.typing as npt


class BoundConstrainedProblem(ABC):
    """Abstract base class for an objective to be minimized subject to bounds.

    Subclasses supply the objective and its gradient. Supplying rows of the Hessian is
    optional: it lets the solver use second-order estimates of the Lagrange multipliers
    when deciding whether to release a variable from its bound. Subclasses that
    implement `hessian_row` should also report `has_hessian = True`.

    """

    @abstractmethod
    def evaluate_objective(self, x: npt.NDArray[np.float64]) -> float:
        """Evaluate objective."""

    @abstractmethod
    def gradient(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Calculate gradient of objective."""

    @property
    def has_hessian(self) -> bool:
        """Whether `hessian_row` returns anything."""
        return False

    def hessian_row(
        self, x: npt.NDArray[np.float64], index: int
    ) -> Optional[npt.NDArray[np.float64]]:
        """Calculate row `index` of the Hessian, or None if not available."""
        return None


class FunctionProblem(BoundConstrainedProblem):
    """Problem defined by plain functions.

    Parameters
    ----------
     objective : Callable
        Evaluates f(x).
     gradient : Callable
        Evaluates the gradient of f at x.
     hessian_row : Callable, optional
        Called as hessian_row(x, index), returning row `index` of the Hessian of f at x,
        or None.

    """

    def __init__(
        self,
        objective: Callable[[npt.NDArray[np.float64]], float],
        gradient: Callable[[npt.NDArray[np.float64]], npt.NDArray[np.float64]],
        hessian_row: Optional[
            Callable[[npt.NDArray[np.float64], int], Optional[npt.NDArray[np.float64]]]
        ] = None,
    ) -> None:
        self.objective = objective
        self.gradient_function = gradient
        self.hessian_row_function = hessian_row

    def evaluate_objective(self, x: npt.NDArray[np.float64]) -> float:
        """Evaluate objective."""
        return self.objective(x)

    def gradient(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Calculate gradient of objective."""
        return np.asarray(self.gradient_function(x), dtype=np.float64)

    @property
    def has_hessian(self) -> bool:
        """Whether a Hessian row function was supplied."""
        return self.hessian_row_function is not None

    def hessian_row(
        self, x: npt.NDArray[np.float64], index: int
    ) -> Optional[npt.NDArray[np.float64]]:
        """Calculate row `index` of the Hessian."""
        if self.hessian_row_function is None:
            return None
        return self.hessian_row_function(x, index)


class Quadratic(BoundConstrainedProblem):
    r"""Quadratic objective, f(x) = 1/2 * x^T * A * x + b^T * x + c.

    The gradient is A * x + b and the Hessian is A.

    Parameters
    ----------
     A : npt.NDArray[np.float64]
        Symmetric matrix.
     b : npt.NDArray[np.float64], optional
        Linear term. Defaults to zero.
     c : float, optional
        Constant term. Defaults to zero.

    """

    def __init__(
        self,
        A: npt.NDArray[np.float64],
        b: Optional[npt.NDArray[np.float64]] = None,
        c: float = 0.0,
    ) -> None:
        A = np.asarray(A, dtype=np.float64)
        if A.ndim != 2 or A.shape[0] != A.shape[1]:
            raise ValueError(f"A must be square; got {A.shape=:}.")
        if not np.allclose(A, A.T):
            raise ValueError("A must be symmetric.")

        self.A = A
        if b is None:
            self.b = np.zeros(A.shape[0])
        else:
            self.b = np.asarray(b, dtype=np.float64)
            if self.b.shape != (A.shape[0],):
                raise ValueError(
                    f"Dimension mismatch: {self.b.shape=:}; expected ({A.shape[0]},)."
                )
        self.c = c

    def evaluate_objective(self, x: npt.NDArray[np.float64]) -> float:
        """Evaluate objective."""
        return 0.5 * np.dot(x, self.A @ x) + np.dot(self.b, x) + self.c

    def gradient(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Calculate gradient of objective."""
        return self.A @ x + self.b

    @property
    def has_hessian(self) -> bool:
        return True

    def hessian_row(
        self, x: npt.NDArray[np.float64], index: int
    ) -> npt.NDArray[np.float64]:
        """Calculate row `index` of the Hessian."""
        return self.A[index, :].copy()


class Rosenbrock(BoundConstrainedProblem):
    r"""Rosenbrock function in n dimensions.

    f(x) = \sum_{i=1}^{n-1} (a - x_i)^2 + b * (x_{i+1} - x_i^2)^2,
    with global minimum at x = (1, ..., 1) when a = 1. The Hessian is tridiagonal.

    Parameters
    ----------
     a, b : float, optional
        Parameters. Default to 1 and 100.

    """

    def __init__(self, a: float = 1.0, b: float = 100.0) -> None:
        self.a = a
        self.b = b

    def evaluate_objective(self, x: npt.NDArray[np.float64]) -> float:
        """Evaluate objective."""
        return np.sum((self.a - x[:-1]) ** 2 + self.b * (x[1:] - x[:-1] ** 2) ** 2)

    def gradient(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Calculate gradient of objective."""
        r = x[1:] - x[:-1] ** 2
        grad = np.zeros_like(x, dtype=np.float64)
        grad[:-1] = -2.0 * (self.a - x[:-1]) - 4.0 * self.b * x[:-1] * r
        grad[1:] += 2.0 * self.b * r
        return grad

    @property
    def has_hessian(self) -> bool:
        return True

    def hessian_row(
        self, x: npt.NDArray[np.float64], index: int
    ) -> npt.NDArray[np.float64]:
        """Calculate row `index` of the Hessian."""
        n = x.shape[0]
        row = np.zeros(n)
        if index < n - 1:
            row[index] += 2.0 - 4.0 * self.b * (x[index + 1] - 3.0 * x[index] ** 2)
            row[index + 1] = -4.0 * self.b * x[index]
        if index > 0:
            row[index] += 2.0 * self.b
            row[index - 1] = -4.0 * self.b * x[index - 1]
        return row
