"""Bound-constrained optimization."""

from .minimize import minimize
from .optimization import (
    ActiveSetError,
    ActiveSetSolver,
    BoundConstrainedResult,
    DerivativeCheckResult,
    FactorizationError,
    InfeasibleStepError,
    InvalidDescentDirectionError,
    IterationLimitError,
    LineSearchError,
    OptimizationError,
    OptimizationResult,
    OptimizationSettings,
    Optimizer,
    SearchDirectionError,
    check_derivatives,
)
from .problems import BoundConstrainedProblem, FunctionProblem, Quadratic, Rosenbrock

__all__ = [
    "minimize",
    "BoundConstrainedProblem",
    "FunctionProblem",
    "Quadratic",
    "Rosenbrock",
    "ActiveSetSolver",
    "BoundConstrainedResult",
    "OptimizationResult",
    "OptimizationSettings",
    "Optimizer",
    "DerivativeCheckResult",
    "check_derivatives",
    "ActiveSetError",
    "FactorizationError",
    "InfeasibleStepError",
    "InvalidDescentDirectionError",
    "IterationLimitError",
    "LineSearchError",
    "OptimizationError",
    "SearchDirectionError",
]
