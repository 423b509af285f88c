r"""Optimization utilities.

Introduction
------------
This module provides a solver for nonlinear optimization problems with bounds on the
variables:
    minimize    f(x)
    subject to  l_i <= x_i <= u_i, i=1, ..., n,
where either bound may be absent. The objective need not be convex; the solver finds a
local minimum.

The solver is an active set method. A variable sitting on one of its bounds is "fixed"
(it belongs to the active set) and the others are "free". Each iteration takes a
quasi-Newton step in the free variables, stopping short at the nearest bound if need be,
in which case the variable hitting the bound becomes fixed. Once the free variables have
converged, we estimate the Lagrange multipliers of the active bounds. A negative
multiplier means the objective decreases by moving that variable into the interior, so
we release it and carry on. When no variable can be released, we have found a local
minimum.

The "special sauce" for making such methods reliable include:
- a line search safeguarded against leaving the feasible region, enforcing both the
  sufficient decrease and curvature conditions so the Hessian approximation stays
  positive definite
- maintaining the Hessian approximation as a factorization, B = L * D * L^T, updated in
  O(n^2) time with each BFGS step, rather than refactoring at O(n^3)
- using the Hessian, when available, to get second-order estimates of the Lagrange
  multipliers, which makes the decision to release a variable more reliable

Usage
-----
Create a class inheriting from BoundConstrainedProblem (see boundopt.problems) that
implements:
- evaluate_objective
- gradient
- hessian_row (optional; also override has_hessian to return True)
then pass it to ActiveSetSolver, and call solve with an initial guess strictly within
the bounds. Alternatively, use boundopt.minimize with plain functions.

If the solver runs out of iterations, the result has status 1 and carries the last
iterate, from which the caller can resume. Errors (exceptions inheriting from
OptimizationError) almost always mean the gradient doesn't match the objective; use
check_derivatives to find out.

We also provide some "numerical helpers":
- solve_triangular, for solving triangular systems while skipping some rows
- update_cholesky_factor, for rank-one updates to an L * D * L^T factorization
- reset_factor_entries, for removing variables from (or restoring them to) the
  factorization

References
----------
- Gill, Philip E. and Murray, Walter, Minimization Subject to Bounds on the Variables,
  NPL Report NAC72, 1976.
- Gill, Philip E., Golub, Gene H., Murray, Walter and Saunders, Michael A., Methods for
  Modifying Matrix Factorizations, Mathematics of Computation, Vol. 28, pp. 505-535,
  1974.
- Gill, Philip E., Murray, Walter and Wright, Margaret H., Practical Optimization,
  Academic Press, 1981.
- Dennis, John E. and Schnabel, Robert B., Numerical Methods for Unconstrained
  Optimization and Nonlinear Equations, Prentice Hall, 1983.

"""

from .active_set import ActiveSet
from .dercheck import DerivativeCheckResult, check_derivatives
from .exceptions import (
    ActiveSetError,
    FactorizationError,
    InfeasibleStepError,
    InvalidDescentDirectionError,
    IterationLimitError,
    LineSearchError,
    OptimizationError,
    SearchDirectionError,
)
from .line_search import LineSearchResult, SafeguardedLineSearch
from .numerical_helpers import (
    machine_epsilon,
    reset_factor_entries,
    solve_triangular,
    update_cholesky_factor,
)
from .optimization import (
    ActiveSetSolver,
    BoundConstrainedResult,
    OptimizationResult,
    OptimizationSettings,
    Optimizer,
)

__all__ = [
    "ActiveSet",
    "ActiveSetError",
    "ActiveSetSolver",
    "BoundConstrainedResult",
    "DerivativeCheckResult",
    "FactorizationError",
    "InfeasibleStepError",
    "InvalidDescentDirectionError",
    "IterationLimitError",
    "LineSearchError",
    "LineSearchResult",
    "OptimizationError",
    "OptimizationResult",
    "OptimizationSettings",
    "Optimizer",
    "SafeguardedLineSearch",
    "SearchDirectionError",
    "check_derivatives",
    "machine_epsilon",
    "reset_factor_entries",
    "solve_triangular",
    "update_cholesky_factor",
]
