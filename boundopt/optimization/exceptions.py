"""Custom exceptions."""

from typing import Dict

import numpy as np
import numpy.typing as npt


class OptimizationError(Exception):
    """Base class for optimization errors."""

    def __init__(self, message: str) -> None:
        self.message = message

    def __str__(self) -> str:
        """Pretty-print error."""
        return self.message


class LineSearchError(OptimizationError):
    """Raised when the line search detects an internal inconsistency."""


class InvalidDescentDirectionError(LineSearchError):
    """Raised when the search direction wasn't a descent direction.

    This means g^T * d > 0 at the start of the line search. Either the gradient supplied
    by the caller is inconsistent with the objective, or the factorization used to
    compute the direction has lost positive definiteness.

    """

    def __init__(self, message: str, slope: float) -> None:
        self.message = message
        self.slope = slope

    def __str__(self) -> str:
        """Pretty-print error."""
        msg = f"{self.message} (∇f^T d = {self.slope} > 0, but should be <= 0)"
        return msg


class InfeasibleStepError(LineSearchError):
    """Raised when a trial step length exceeds the largest feasible step."""

    def __init__(
        self,
        message: str,
        step: float,
        max_feasible_step: float,
        objective_value: float,
        initial_value: float,
        slope: float,
    ) -> None:
        self.message = message
        self.step = step
        self.max_feasible_step = max_feasible_step
        self.objective_value = objective_value
        self.initial_value = initial_value
        self.slope = slope

    def __str__(self) -> str:
        """Pretty-print error."""
        msg = (
            f"{self.message} (step = {self.step}, max feasible step = "
            f"{self.max_feasible_step}, f = {self.objective_value}, "
            f"f_old = {self.initial_value}, slope = {self.slope})"
        )
        return msg


class FactorizationError(OptimizationError):
    """Raised when a rank-one update of the L * D * L^T factorization breaks down.

    Usually this is because the update would make the Hessian approximation indefinite,
    which cannot be repaired locally.

    """

    def __init__(self, message: str, index: int, values: Dict[str, float]) -> None:
        self.message = message
        self.index = index
        self.values = values

    def __str__(self) -> str:
        """Pretty-print error."""
        details = ", ".join(f"{k}={v:.6g}" for k, v in self.values.items())
        return f"{self.message} at index {self.index} ({details})"


class SearchDirectionError(OptimizationError):
    """Raised when solving for the next search direction produces NaN or inf."""

    def __init__(
        self, message: str, index: int, stage: str, rhs: float, diagonal: float
    ) -> None:
        self.message = message
        self.index = index
        self.stage = stage
        self.rhs = rhs
        self.diagonal = diagonal

    def __str__(self) -> str:
        """Pretty-print error."""
        msg = (
            f"{self.message} ({self.stage} solve, index {self.index}: "
            f"rhs = {self.rhs}, diagonal = {self.diagonal})"
        )
        return msg


class ActiveSetError(OptimizationError):
    """Raised when a variable in the active set isn't sitting on either bound."""

    def __init__(
        self, message: str, index: int, value: float, lower: float, upper: float
    ) -> None:
        self.message = message
        self.index = index
        self.value = value
        self.lower = lower
        self.upper = upper

    def __str__(self) -> str:
        """Pretty-print error."""
        msg = (
            f"{self.message} (x[{self.index}] = {self.value}, bounds = "
            f"[{self.lower}, {self.upper}])"
        )
        return msg


class IterationLimitError(OptimizationError):
    """Raised when the solver ran out of iterations, even after restarting."""

    def __init__(
        self,
        message: str,
        restarts: int,
        last_iterate: npt.NDArray[np.float64],
    ) -> None:
        self.message = message
        self.restarts = restarts
        self.last_iterate = last_iterate

    def __str__(self) -> str:
        """Pretty-print error."""
        return f"{self.message} ({self.restarts} restart(s))"
