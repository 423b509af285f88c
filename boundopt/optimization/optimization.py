"""Base optimization classes."""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Literal, Optional, Tuple

import matplotlib.pyplot as plt
import numpy as np
import numpy.typing as npt
from matplotlib.axes import Axes

from .active_set import ActiveSet
from .exceptions import ActiveSetError, SearchDirectionError
from .line_search import SafeguardedLineSearch
from .numerical_helpers import (
    machine_epsilon,
    reset_factor_entries,
    solve_triangular,
    update_cholesky_factor,
)

if TYPE_CHECKING:
    from ..problems import BoundConstrainedProblem


@dataclass
class OptimizationSettings:
    """Optimization settings.

    Parameters
    ----------
    max_iterations : int, default=200
        The maximum number of iterations. When exhausted, the solver returns the last
        iterate with a "not converged" status, and the caller may resume from there.
    sufficient_decrease : float, default=1e-4
        The coefficient, c1, of the sufficient decrease ("alpha") condition in the line
        search: f(x + lambda * d) <= f(x) + c1 * lambda * g^T * d.
    curvature : float, default=0.9
        The coefficient, c2, of the curvature ("beta") condition in the line search:
        g(x + lambda * d)^T * d >= c2 * g^T * d. Must exceed `sufficient_decrease`.
    displacement_tolerance : float, default=1e-6
        Relative change in the variables below which the line search gives up on finding
        a step length.
    max_step : float, default=100.0
        Scales the largest allowed step, max_step * max(|g(x0)|, n), where g(x0) is the
        initial gradient and n the number of variables.
    verbose : bool, default=False
        If True, print status along with how long it took to execute each step.

    """

    max_iterations: int = 200
    sufficient_decrease: float = 1e-4
    curvature: float = 0.9
    displacement_tolerance: float = 1e-6
    max_step: float = 100.0
    verbose: bool = False

    def __post_init__(self) -> None:
        if self.max_iterations <= 0:
            raise ValueError("max_iterations must be positive.")
        if not 0.0 < self.sufficient_decrease < self.curvature < 1.0:
            raise ValueError(
                "Must have 0 < sufficient_decrease < curvature < 1; got "
                f"{self.sufficient_decrease=:}, {self.curvature=:}."
            )
        if self.displacement_tolerance <= 0.0:
            raise ValueError("displacement_tolerance must be positive.")
        if self.max_step <= 0.0:
            raise ValueError("max_step must be positive.")


@dataclass
class OptimizationResult:
    """Wrapper for generic optimization result."""

    solution: npt.NDArray[np.float64]


@dataclass
class BoundConstrainedResult(OptimizationResult):
    """Wrapper for the results of the active set method.

    Parameters
    ----------
     solution : vector
        The solution, or the last iterate if the method did not converge.
     objective_value : float
        Objective value at `solution`.
     status : [0, 1]
        Solution status:
          0 : method converged to a local minimum
          1 : iteration budget exhausted; resume from `last_iterate`
     message : str
        Summary of result.
     nits : int
        Number of iterations performed.
     nfev, ngev : int
        Number of objective and gradient evaluations.
     active_set : List[int]
        Variables fixed at a bound at termination, sorted.
     lagrange_multipliers : Dict[int, float]
        First-order Lagrange multiplier estimate for each variable in the active set.
        Positive values mean the bound is binding.
     objective_values : List[float]
        Objective value at the start, and after each iteration.
     last_iterate : vector
        The last iterate. Pass it back in as the initial guess to continue.

    """

    objective_value: float
    status: Literal[0, 1]
    message: str
    nits: int
    nfev: int
    ngev: int
    active_set: List[int]
    lagrange_multipliers: Dict[int, float]
    objective_values: List[float]
    last_iterate: npt.NDArray[np.float64] = field(repr=False)

    @property
    def converged(self) -> bool:
        """Whether the method found a local minimum."""
        return self.status == 0

    def plot_convergence(self, ax: Optional[Axes] = None) -> Axes:
        """Plot convergence."""
        if ax is None:
            _, ax = plt.subplots()

        ax.plot(range(len(self.objective_values)), self.objective_values, marker="o")
        ax.set_xlabel("Iteration")
        ax.set_ylabel("Objective")
        return ax


class Optimizer(ABC):
    """Base class for an optimizer."""

    def __init__(
        self,
        settings: Optional[OptimizationSettings] = None,
        **kwargs,
    ) -> None:
        """Initialize optimizer."""
        if settings is None:
            self.settings: OptimizationSettings = OptimizationSettings()
        else:
            self.settings = settings

    @abstractmethod
    def solve(self, x0: npt.NDArray[np.float64], **kwargs) -> OptimizationResult:
        """Solve optimization problem.

        Parameters
        ----------
         x0 : vector
            Initial guess.

        Returns
        -------
         res : OptimizationResult
            The solution.

        """


class ActiveSetSolver(Optimizer):
    r"""Minimize a function subject to bounds on the variables.

    Solves:
       minimize    f(x)
       subject to  lower <= x <= upper,
    using an active set method with BFGS updates of the Hessian.

    Parameters
    ----------
     problem : BoundConstrainedProblem
        Supplies the objective, gradient and, optionally, rows of the Hessian.
     settings : OptimizationSettings, optional
        Solver settings.

    Notes
    -----
    Variables sitting on a bound form the active set; the rest are free. Each iteration:
      1. Perform a line search along the current direction (restricted to the free
         variables), stopping at the nearest bound if need be. A variable that reaches
         its bound joins the active set.
      2. Check for convergence of the variables or the gradient. If converged, check
         whether any variable in the active set should be released, using first- and
         (when the Hessian is available) second-order Lagrange multiplier estimates. If
         nothing is released, we are done.
      3. Update the factorization L * D * L^T of the Hessian approximation with the
         BFGS formula, via two rank-one modifications:
            B+ = B + dg * dg^T / (dg^T * dx) + g * g^T / (g^T * d).
         Rows and columns for fixed variables stay zero.
      4. Solve B * d = -g for the next direction, via two triangular solves. Fixed
         variables have zero direction.

    The method is adapted from Chapter 5 of Gill, Murray and Wright (1981), "Practical
    Optimization", and from Gill and Murray (1976), "Minimization Subject to Bounds on
    the Variables", NPL Report NAC72.

    A solver holds no state between calls to `solve`, other than its settings.

    """

    def __init__(
        self,
        problem: "BoundConstrainedProblem",
        settings: Optional[OptimizationSettings] = None,
        **kwargs,
    ) -> None:
        """Initialize optimizer."""
        super().__init__(settings=settings, **kwargs)
        self.problem = problem
        self.epsilon = machine_epsilon()
        self.zero = np.sqrt(self.epsilon)
        if self.settings.verbose:
            print(f"  Machine precision is {self.epsilon} and zero set to {self.zero}")

    def solve(
        self,
        x0: npt.NDArray[np.float64],
        lower: Optional[npt.NDArray[np.float64]] = None,
        upper: Optional[npt.NDArray[np.float64]] = None,
        **kwargs,
    ) -> BoundConstrainedResult:
        """Solve optimization problem.

        Parameters
        ----------
         x0 : vector
            Initial guess. Must lie strictly within the bounds.
         lower, upper : vectors, optional
            Bounds on the variables. Use -np.inf, np.inf or NaN for "unbounded". If not
            specified, the variables are unbounded on that side.

        Returns
        -------
         res : BoundConstrainedResult
            The solution and other helpful info. If the iteration budget ran out, the
            status is 1 and the result carries the last iterate.

        Raises
        ------
         InvalidDescentDirectionError, InfeasibleStepError, FactorizationError,
         SearchDirectionError, ActiveSetError
            On internal inconsistencies, usually caused by a gradient that doesn't match
            the objective.

        """
        x, lower, upper = self._validate(x0, lower, upper)
        n = x.shape[0]
        settings = self.settings
        nfev = ngev = 0

        def objective(z: npt.NDArray[np.float64]) -> float:
            nonlocal nfev
            nfev += 1
            return self.problem.evaluate_objective(z)

        def gradient(z: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
            nonlocal ngev
            ngev += 1
            return np.asarray(self.problem.gradient(z), dtype=np.float64)

        line_search = SafeguardedLineSearch(
            objective=objective,
            gradient=gradient,
            sufficient_decrease=settings.sufficient_decrease,
            curvature=settings.curvature,
            displacement_tolerance=settings.displacement_tolerance,
            epsilon=self.epsilon,
            zero=self.zero,
            verbose=settings.verbose,
        )

        # Initially all variables are free.
        active_set = ActiveSet(lower, upper)
        f = objective(x)
        grad = gradient(x)
        L = np.eye(n)
        d = np.ones(n)
        # Spare factors, swapped with L and d on each update, and workspace for L * D
        L_spare = np.empty_like(L)
        d_spare = np.empty_like(d)
        LD = np.empty_like(L)
        direction = -grad
        delta_grad = np.zeros(n)
        max_step = settings.max_step * max(np.linalg.norm(grad), n)
        objective_values = [f]
        to_free: Optional[List[int]] = None

        if settings.verbose:
            overall_start_time = time.time()
            print(f"  Starting active set method with {n} variables, f = {f:.7g}")

        nit = 0
        while nit < settings.max_iterations:
            if settings.verbose:
                start_time = time.time()
                print(f"  {nit + 1:02d} Line search ...")

            x_old = x
            grad_old = grad
            ls = line_search.search(x, f, grad, direction, max_step, active_set)
            x = ls.x
            f = ls.objective_value

            if ls.status == "zero_step":
                # No step was taken; just remove the newly fixed variables from the
                # factorization and try again without using up an iteration.
                reset_factor_entries(L, d, active_set.indices, diagonal=0.0)
                grad = gradient(x)
            else:
                nit += 1
                objective_values.append(f)
                finished = self._displacement_converged(x, x_old)
                update = True
                grad = gradient(x)
                free = active_set.free
                delta_x = x - x_old
                delta_grad[:] = 0.0
                delta_grad[free] = grad[free] - grad_old[free]
                denom = np.dot(delta_x[free], delta_grad[free])
                newly_bounded = np.dot(delta_x[~free], grad[~free] - grad_old[~free])

                # Projected gradient
                test = np.max(
                    np.abs(grad[free])
                    * np.maximum(np.abs(direction[free]), 1.0)
                    / max(abs(f), 1.0),
                    initial=0.0,
                )
                if test < self.zero:
                    if settings.verbose:
                        print(f"  {nit:02d} Gradient converged: {test}")
                    finished = True

                # dg^T * dx could be < 0 with an inexact line search
                if abs(denom + newly_bounded) < self.zero:
                    if settings.verbose:
                        print(f"  {nit:02d} dg^T * dx = {denom + newly_bounded}")
                    finished = True

                if finished:
                    # Quasi-Newton step from the current point, for the second-order
                    # multiplier estimates
                    step = self._search_direction(L, d, grad, active_set.fixed, LD)
                    to_free, released = self._release_variables(
                        x, grad, step, active_set, to_free
                    )
                    if not released:
                        f = objective(x)
                        if settings.verbose:
                            overall_end_time = time.time()
                            print(
                                f"  Minimum found after {nit} iterations in "
                                f"{1000 * (overall_end_time - overall_start_time):.03f}"
                                " ms"
                            )
                        return self._result(
                            x=x,
                            f=f,
                            status=0,
                            message="Active set method converged to a local minimum.",
                            nit=nit,
                            nfev=nfev,
                            ngev=ngev,
                            grad=grad,
                            active_set=active_set,
                            objective_values=objective_values,
                        )

                    for index in to_free:
                        active_set.release(index, x)
                        reset_factor_entries(L, d, [index], diagonal=1.0)
                        if settings.verbose:
                            print(f"  {nit:02d} Freeing variable {index}")
                    update = False

                dx_norm = np.linalg.norm(delta_x[free])
                dg_norm = np.linalg.norm(delta_grad[free])
                if denom < max(self.zero * dx_norm * dg_norm, self.zero):
                    if settings.verbose:
                        print(f"  {nit:02d} dg^T * dx not positive; skipping update")
                    update = False

                if update:
                    updates = ((delta_grad, 1.0 / denom), (grad_old, 1.0 / ls.slope))
                    for v, coeff in updates:
                        L_spare, d_spare = update_cholesky_factor(
                            L,
                            d,
                            v,
                            coeff,
                            active_set.fixed,
                            self.zero,
                            out=(L_spare, d_spare),
                        )
                        L, L_spare = L_spare, L
                        d, d_spare = d_spare, d

            direction = self._search_direction(L, d, grad, active_set.fixed, LD)

            if settings.verbose:
                end_time = time.time()
                print(
                    f"  {nit:02d} f = {f:.7g}, {len(active_set)} fixed variable(s); "
                    f"iteration completed in {1000 * (end_time - start_time):.03f} ms"
                )

        if settings.verbose:
            print("  Cannot find minimum: too many iterations")

        return self._result(
            x=x,
            f=f,
            status=1,
            message="Maximum number of iterations reached.",
            nit=nit,
            nfev=nfev,
            ngev=ngev,
            grad=grad,
            active_set=active_set,
            objective_values=objective_values,
        )

    def _validate(
        self,
        x0: npt.NDArray[np.float64],
        lower: Optional[npt.NDArray[np.float64]],
        upper: Optional[npt.NDArray[np.float64]],
    ) -> Tuple[
        npt.NDArray[np.float64], npt.NDArray[np.float64], npt.NDArray[np.float64]
    ]:
        """Check inputs, using NaN to mean "unbounded"."""
        x = np.array(x0, dtype=np.float64)
        if x.ndim != 1:
            raise ValueError("x0 must be a 1D NumPy array.")

        n = x.shape[0]
        bounds = []
        for name, bound in (("lower", lower), ("upper", upper)):
            if bound is None:
                bound = np.full(n, np.nan)
            else:
                bound = np.array(bound, dtype=np.float64)
                if bound.shape != (n,):
                    raise ValueError(
                        f"Dimension mismatch: {name} has shape {bound.shape}; expected "
                        f"({n},)."
                    )
                bound[np.isinf(bound)] = np.nan
            bounds.append(bound)

        lower, upper = bounds
        if np.any(lower > upper):
            raise ValueError("lower must not exceed upper.")
        if np.any(x <= lower) or np.any(x >= upper):
            raise ValueError("x0 must lie strictly within the bounds.")

        return x, lower, upper

    def _displacement_converged(
        self, x: npt.NDArray[np.float64], x_old: npt.NDArray[np.float64]
    ) -> bool:
        """Check whether the relative change in x is negligible."""
        test = np.max(np.abs(x - x_old) / np.maximum(np.abs(x), 1.0))
        if test < self.zero:
            if self.settings.verbose:
                print(f"    Delta x converged: {test}")
            return True
        return False

    def _release_variables(
        self,
        x: npt.NDArray[np.float64],
        grad: npt.NDArray[np.float64],
        step: npt.NDArray[np.float64],
        active_set: ActiveSet,
        to_free: Optional[List[int]],
    ) -> Tuple[List[int], bool]:
        """Decide which fixed variables to release.

        For each variable in the active set, we estimate the Lagrange multiplier of the
        bound it sits on. The first-order estimate is the gradient, signed so that a
        positive value means the objective would increase by moving into the box. When
        the Hessian is available, the second-order estimate adds H[i, free] * p[free],
        where p is the quasi-Newton step from x; it estimates the multiplier at x + p.
        A variable is released when both estimates are negative and agree closely.

        Released variables are removed from `active_set.indices` here; the caller
        releases them from the working bounds.

        Without the Hessian, first-order estimates can be unreliable. If the same set of
        variables comes up for release twice running, we treat the point as optimal
        rather than zigzag.

        Returns
        -------
         to_free : List[int]
            Variables to release.
         released : bool
            False when the point should be reported as the minimum.

        """
        if self.settings.verbose:
            print("    Testing whether any variable can be released ...")

        old_to_free = None if to_free is None else list(to_free)
        to_free = []
        free = active_set.free
        finished = True
        for position in range(len(active_set.indices) - 1, -1, -1):
            index = active_set.indices[position]
            hessian = None
            if self.problem.has_hessian:
                hessian = self.problem.hessian_row(x, index)

            delta_l = 0.0
            if hessian is not None:
                delta_l = float(np.dot(np.asarray(hessian)[free], step[free]))

            l1 = self._first_order_multiplier(x, grad, active_set, index)
            l2 = l1 + delta_l
            if self.settings.verbose:
                print(f"    Variable {index}: Lagrange multiplier = {l1} | {l2}")

            is_reliable = 2.0 * abs(delta_l) < min(abs(l1), abs(l2))
            if l1 * l2 > 0.0 and is_reliable and l2 < 0.0:
                to_free.append(index)
                active_set.indices.pop(position)
                finished = False

            if hessian is None and _same_indices(to_free, old_to_free):
                finished = True

        return to_free, not finished

    def _first_order_multiplier(
        self,
        x: npt.NDArray[np.float64],
        grad: npt.NDArray[np.float64],
        active_set: ActiveSet,
        index: int,
    ) -> float:
        if x[index] >= active_set.upper[index]:
            return -grad[index]
        if x[index] <= active_set.lower[index]:
            return grad[index]
        raise ActiveSetError(
            message="Variable in the active set is not on a bound",
            index=index,
            value=x[index],
            lower=active_set.lower[index],
            upper=active_set.upper[index],
        )

    def _search_direction(
        self,
        L: npt.NDArray[np.float64],
        d: npt.NDArray[np.float64],
        grad: npt.NDArray[np.float64],
        fixed: npt.NDArray[np.bool_],
        LD: Optional[npt.NDArray[np.float64]] = None,
    ) -> npt.NDArray[np.float64]:
        """Solve L * D * L^T * direction = -grad, for the free variables.

        `LD` is optional workspace the same shape as L, overwritten with L * D.

        """
        b = np.where(fixed, 0.0, -grad)
        if LD is None:
            LD = np.empty_like(L)
        np.multiply(L, d[np.newaxis, :], out=LD)
        LD[:, fixed] = 0.0

        # Solve (L * D) * y = -g, where y = L^T * direction
        y = solve_triangular(LD, b, lower=True, skip=fixed)
        for i in np.flatnonzero(~np.isfinite(y)):
            raise SearchDirectionError(
                message="L^T * direction is not finite",
                index=int(i),
                stage="forward",
                rhs=b[i],
                diagonal=d[i],
            )

        direction = solve_triangular(L.T, y, lower=False, skip=fixed)
        for i in np.flatnonzero(~np.isfinite(direction)):
            raise SearchDirectionError(
                message="Direction is not finite",
                index=int(i),
                stage="backward",
                rhs=y[i],
                diagonal=L[i, i],
            )

        return direction

    def _result(
        self,
        x: npt.NDArray[np.float64],
        f: float,
        status: Literal[0, 1],
        message: str,
        nit: int,
        nfev: int,
        ngev: int,
        grad: npt.NDArray[np.float64],
        active_set: ActiveSet,
        objective_values: List[float],
    ) -> BoundConstrainedResult:
        fixed = [int(i) for i in np.flatnonzero(active_set.fixed)]
        multipliers = {
            index: float(self._first_order_multiplier(x, grad, active_set, index))
            for index in fixed
        }
        return BoundConstrainedResult(
            solution=x.copy(),
            objective_value=float(f),
            status=status,
            message=message,
            nits=nit,
            nfev=nfev,
            ngev=ngev,
            active_set=fixed,
            lagrange_multipliers=multipliers,
            objective_values=objective_values,
            last_iterate=x.copy(),
        )


def _same_indices(a: Optional[List[int]], b: Optional[List[int]]) -> bool:
    """Compare two lists of indices, ignoring order."""
    if a is None or b is None:
        return False
    return sorted(a) == sorted(b)
