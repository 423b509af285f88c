"""Convenience front end to the active set method."""

from typing import Callable, Optional, Union

import numpy as np
import numpy.typing as npt

from .optimization import (
    ActiveSetSolver,
    BoundConstrainedResult,
    IterationLimitError,
    OptimizationSettings,
)
from .problems import BoundConstrainedProblem, FunctionProblem


def minimize(
    problem_or_objective: Union[
        BoundConstrainedProblem, Callable[[npt.NDArray[np.float64]], float]
    ],
    x0: npt.NDArray[np.float64],
    lower: Optional[npt.NDArray[np.float64]] = None,
    upper: Optional[npt.NDArray[np.float64]] = None,
    gradient: Optional[
        Callable[[npt.NDArray[np.float64]], npt.NDArray[np.float64]]
    ] = None,
    hessian_row: Optional[
        Callable[[npt.NDArray[np.float64], int], Optional[npt.NDArray[np.float64]]]
    ] = None,
    settings: Optional[OptimizationSettings] = None,
    max_restarts: int = 0,
    raise_on_failure: bool = False,
) -> BoundConstrainedResult:
    """Minimize a function subject to bounds on the variables.

    Parameters
    ----------
     problem_or_objective : BoundConstrainedProblem or Callable
        Either a problem, or a function evaluating the objective, in which case
        `gradient` must be specified.
     x0 : vector
        Initial guess, strictly within the bounds.
     lower, upper : vectors, optional
        Bounds on the variables, with -np.inf, np.inf or NaN for "unbounded".
     gradient : Callable, optional
        Gradient of the objective. Required when passing a function.
     hessian_row : Callable, optional
        Called as hessian_row(x, index), returning row `index` of the Hessian.
     settings : OptimizationSettings, optional
        Solver settings.
     max_restarts : int, optional
        If the solver runs out of iterations, restart it from the last iterate with a
        fresh budget, up to this many times. Defaults to 0 (no restarts).
     raise_on_failure : bool, optional
        If True, raise an IterationLimitError when the solver still hasn't converged
        after all restarts. Otherwise (default) return the last result; check its
        `status`.

    Returns
    -------
     res : BoundConstrainedResult
        The result of the last run of the solver. Its `nits`, `nfev` and `ngev` count
        only that run.

    """
    if isinstance(problem_or_objective, BoundConstrainedProblem):
        if gradient is not None or hessian_row is not None:
            raise ValueError(
                "Specify gradient and hessian_row through the problem, not separately."
            )
        problem = problem_or_objective
    else:
        if gradient is None:
            raise ValueError("gradient is required when passing an objective function.")
        problem = FunctionProblem(
            problem_or_objective, gradient, hessian_row=hessian_row
        )

    if max_restarts < 0:
        raise ValueError("max_restarts must be non-negative.")

    solver = ActiveSetSolver(problem, settings=settings)
    res = solver.solve(x0, lower=lower, upper=upper)
    restarts = 0
    while not res.converged and restarts < max_restarts:
        restarts += 1
        if solver.settings.verbose:
            print(f"Restarting from last iterate ({restarts}/{max_restarts})")
        x = nudge_inside(res.last_iterate, lower, upper, solver.zero)
        res = solver.solve(x, lower=lower, upper=upper)

    if not res.converged and raise_on_failure:
        raise IterationLimitError(
            message="Active set method did not converge",
            restarts=restarts,
            last_iterate=res.last_iterate,
        )

    return res


def nudge_inside(
    x: npt.NDArray[np.float64],
    lower: Optional[npt.NDArray[np.float64]],
    upper: Optional[npt.NDArray[np.float64]],
    zero: float,
) -> npt.NDArray[np.float64]:
    """Move variables sitting on a bound strictly inside.

    Each such variable moves toward the interior by zero * max(|bound|, 1), or half the
    width of the box if that is smaller.

    """
    x = np.array(x, dtype=np.float64)
    n = x.shape[0]
    lower = _as_bound(lower, n)
    upper = _as_bound(upper, n)
    half_width = np.where(
        np.isnan(lower) | np.isnan(upper), np.inf, 0.5 * (upper - lower)
    )

    on_lower = x <= lower
    delta = np.minimum(zero * np.maximum(np.abs(lower), 1.0), half_width)
    x[on_lower] = lower[on_lower] + delta[on_lower]

    on_upper = x >= upper
    delta = np.minimum(zero * np.maximum(np.abs(upper), 1.0), half_width)
    x[on_upper] = upper[on_upper] - delta[on_upper]
    return x


def _as_bound(
    bound: Optional[npt.NDArray[np.float64]], n: int
) -> npt.NDArray[np.float64]:
    if bound is None:
        return np.full(n, np.nan)
    bound = np.array(bound, dtype=np.float64)
    bound[np.isinf(bound)] = np.nan
    return bound
