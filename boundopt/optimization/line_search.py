"""Safeguarded line search for bound-constrained problems."""

from dataclasses import dataclass, field
from typing import Callable, List, Literal

import numpy as np
import numpy.typing as npt

from .active_set import ActiveSet
from .exceptions import InfeasibleStepError, InvalidDescentDirectionError


@dataclass
class LineSearchResult:
    """Wrapper for the result of a line search.

    Parameters
    ----------
     x : vector
        The new point. Equal to the starting point unless status is "accepted".
     objective_value : float
        Objective at x.
     step : float
        Accepted step length, lambda.
     slope : float
        Initial directional derivative, g^T * d, along the (possibly rescaled)
        direction.
     status : str
        One of:
          accepted    : a step was taken
          zero_step   : some variable was already on a bound it was heading into; it
                        has been fixed, and no step was taken
          stationary  : g^T * d is zero, or the direction is zero for every free
                        variable, so the point is a minimum with the current fixings
          no_progress : no step length decreased the objective sufficiently
     newly_fixed : List[int]
        Variables added to the active set by this line search.

    """

    x: npt.NDArray[np.float64]
    objective_value: float
    step: float
    slope: float
    status: Literal["accepted", "zero_step", "stationary", "no_progress"]
    newly_fixed: List[int] = field(default_factory=list)

    @property
    def step_taken(self) -> bool:
        """Whether the line search moved."""
        return self.status == "accepted"


class SafeguardedLineSearch:
    """Line search keeping the iterates within bounds.

    Finds a step length, lambda, in (0, alpha], where alpha is the largest step that
    keeps every free variable feasible, satisfying:
      - the sufficient decrease ("alpha") condition:
           f(x_old + lambda * d) <= f(x_old) + c1 * lambda * g^T * d, and
      - the curvature ("beta") condition:
           g(x_old + lambda * d)^T * d >= c2 * g^T * d,
    the latter ensuring the quasi-Newton update stays positive definite.

    Backtracking uses quadratic interpolation on the first failure and cubic
    interpolation thereafter, with each new trial kept within [0.1, 0.5] times the
    previous one. If the alpha condition holds but the beta condition doesn't, we
    extrapolate by doubling lambda (up to alpha) and then search the resulting bracket.
    See Dennis and Schnabel (1983), "Numerical Methods for Unconstrained Optimization
    and Nonlinear Equations", section 6.3, and Press et al. (1992), "Numerical Recipes
    in C", section 9.7.

    Parameters
    ----------
     objective : Callable
        Evaluates f(x).
     gradient : Callable
        Evaluates the gradient of f at x.
     sufficient_decrease : float
        c1.
     curvature : float
        c2.
     displacement_tolerance : float
        Relative change in x below which a step is considered negligible.
     epsilon : float
        Machine precision.
     zero : float
        Numerical zero.
     verbose : bool, optional
        If True, print progress.

    """

    def __init__(
        self,
        objective: Callable[[npt.NDArray[np.float64]], float],
        gradient: Callable[[npt.NDArray[np.float64]], npt.NDArray[np.float64]],
        sufficient_decrease: float,
        curvature: float,
        displacement_tolerance: float,
        epsilon: float,
        zero: float,
        verbose: bool = False,
    ) -> None:
        self.objective = objective
        self.gradient = gradient
        self.sufficient_decrease = sufficient_decrease
        self.curvature = curvature
        self.displacement_tolerance = displacement_tolerance
        self.epsilon = epsilon
        self.zero = zero
        self.verbose = verbose

    def search(
        self,
        x_old: npt.NDArray[np.float64],
        f_old: float,
        gradient: npt.NDArray[np.float64],
        direction: npt.NDArray[np.float64],
        max_step: float,
        active_set: ActiveSet,
    ) -> LineSearchResult:
        """Perform line search.

        Parameters
        ----------
         x_old : npt.NDArray[np.float64]
            Current point. Not modified.
         f_old : float
            Objective at x_old.
         gradient : npt.NDArray[np.float64]
            Gradient at x_old.
         direction : npt.NDArray[np.float64]
            Search direction. Rescaled in place if its norm exceeds max_step.
         max_step : float
            Largest allowed norm of the step.
         active_set : ActiveSet
            Fixed variables and working bounds. Variables that hit a bound are added.

        Returns
        -------
         res : LineSearchResult
            The new point and associated info.

        Raises
        ------
         InvalidDescentDirectionError
            If g^T * d > 0.
         InfeasibleStepError
            If a trial step length exceeds the largest feasible step, which indicates a
            bug in the interpolation safeguards.

        """
        c1 = self.sufficient_decrease
        c2 = self.curvature
        free = active_set.free
        x = x_old.copy()

        # Scale the step
        norm = np.sqrt(np.sum(direction[free] ** 2))
        max_lambda = 1.0
        if norm > max_step:
            direction[free] *= max_step / norm
        elif norm > 0.0:
            max_lambda = max_step / norm
        else:
            max_lambda = np.inf

        if self.verbose:
            print(f"      f_old = {f_old:.7g}, |d| = {norm:.7g}, {max_step=:.7g}")

        slope = float(np.dot(gradient[free], direction[free]))
        if abs(slope) <= self.zero:
            if self.verbose:
                print(
                    "      Gradient and direction orthogonal: minimum found with the "
                    "current fixed variables"
                )
            return LineSearchResult(
                x=x, objective_value=f_old, step=0.0, slope=slope, status="stationary"
            )

        if slope > self.zero:
            raise InvalidDescentDirectionError(
                message="Search direction was not a descent direction.", slope=slope
            )

        # Smallest meaningful step
        test = np.max(
            np.abs(direction[free]) / np.maximum(np.abs(x[free]), 1.0), initial=0.0
        )
        if test <= self.zero:
            if self.verbose:
                print(
                    "      Zero direction for all free variables: minimum found with "
                    "the current fixed variables"
                )
            return LineSearchResult(
                x=x, objective_value=f_old, step=0.0, slope=slope, status="stationary"
            )
        lambda_min = self.displacement_tolerance / test

        # Largest feasible step. Variables already on a bound they are heading into are
        # fixed straight away.
        alpha = np.inf
        blocking = -1
        newly_fixed = []
        for i in np.flatnonzero(free):
            if direction[i] < -self.epsilon and not np.isnan(
                active_set.working_lower[i]
            ):
                at_upper = False
                alpha_i = (active_set.working_lower[i] - x_old[i]) / direction[i]
            elif direction[i] > self.epsilon and not np.isnan(
                active_set.working_upper[i]
            ):
                at_upper = True
                alpha_i = (active_set.working_upper[i] - x_old[i]) / direction[i]
            else:
                continue

            if alpha_i <= self.zero:
                if self.verbose:
                    side = "upper" if at_upper else "lower"
                    print(f"      Fixing variable {i} to {side} bound from {x_old[i]}")
                x[i] = active_set.fix(i, at_upper=at_upper)
                newly_fixed.append(i)
                alpha = 0.0
            elif alpha > alpha_i:
                alpha = alpha_i
                blocking = i

        if self.verbose:
            print(f"      {lambda_min=:.7g}, {alpha=:.7g}")

        if alpha <= self.zero:
            if self.verbose:
                print("      Feasible step is zero; trying again")
            return LineSearchResult(
                x=x,
                objective_value=f_old,
                step=0.0,
                slope=slope,
                status="zero_step",
                newly_fixed=newly_fixed,
            )

        def fix_blocking_variable(lmbda: float) -> None:
            # The step reached the nearest bound: add it to the working set
            if blocking == -1 or lmbda < alpha:
                return

            x[blocking] = active_set.fix(blocking, at_upper=direction[blocking] > 0)
            newly_fixed.append(blocking)
            if self.verbose:
                print(
                    f"      Fixing variable {blocking} to bound {x[blocking]} from "
                    f"{x_old[blocking]}"
                )

        def move(lmbda: float) -> None:
            x[free] = x_old[free] + lmbda * direction[free]
            active_set.clip(x, free)

        def directional_derivative() -> float:
            return float(np.dot(self.gradient(x)[free], direction[free]))

        def check_feasible(lmbda: float, f: float) -> None:
            if lmbda > alpha:
                raise InfeasibleStepError(
                    message="Step length exceeds the largest feasible step.",
                    step=lmbda,
                    max_feasible_step=alpha,
                    objective_value=f,
                    initial_value=f_old,
                    slope=slope,
                )

        # Always try the full step first
        lmbda = min(alpha, 1.0)
        f_initial = f_old
        lo = hi = lmbda
        f_lo = f_hi = f_old
        lmbda_prev = 0.0
        new_slope = 0.0
        k = 0
        while True:
            if self.verbose:
                print(f"      {k:02d} Trying {lmbda=:.7g}")

            move(lmbda)
            f = self.objective(x)
            while not np.isfinite(f):
                lmbda *= 0.5
                if lmbda <= self.epsilon:
                    if self.verbose:
                        print("      Objective not finite near starting point")
                    return LineSearchResult(
                        x=x_old.copy(),
                        objective_value=f_old,
                        step=0.0,
                        slope=slope,
                        status="no_progress",
                        newly_fixed=newly_fixed,
                    )

                if self.verbose:
                    print(f"      Objective not finite; shrinking to {lmbda=:.7g}")
                move(lmbda)
                f = self.objective(x)
                f_initial = np.inf

            if self.verbose:
                print(
                    f"      {k:02d} f = {f:.7g}, threshold = "
                    f"{f_old + c1 * lmbda * slope:.7g}"
                )

            if f <= f_old + c1 * lmbda * slope:
                new_slope = directional_derivative()
                if new_slope >= c2 * slope:
                    if self.verbose:
                        print(f"      Alpha and beta conditions hold at {lmbda=:.7g}")
                    fix_blocking_variable(lmbda)
                    return LineSearchResult(
                        x=x,
                        objective_value=f,
                        step=lmbda,
                        slope=slope,
                        status="accepted",
                        newly_fixed=newly_fixed,
                    )

                if k > 0:
                    # Previous (larger) trial failed the alpha condition
                    hi = lmbda_prev
                    lo = lmbda
                    f_lo = f
                    break

                # Extrapolate until the beta condition holds or the alpha condition
                # fails.
                upper = min(alpha, max_lambda)
                lo, f_lo = lmbda, f
                while lmbda < upper:
                    lmbda = min(2.0 * lmbda, upper)
                    if self.verbose:
                        print(f"      Extrapolating to {lmbda=:.7g}")
                    move(lmbda)
                    f = self.objective(x)
                    if not f <= f_old + c1 * lmbda * slope:
                        hi, f_hi = lmbda, f
                        break

                    slope_lmbda = directional_derivative()
                    if slope_lmbda >= c2 * slope:
                        if self.verbose:
                            print(
                                f"      Alpha and beta conditions hold at {lmbda=:.7g}"
                            )
                        fix_blocking_variable(lmbda)
                        return LineSearchResult(
                            x=x,
                            objective_value=f,
                            step=lmbda,
                            slope=slope,
                            status="accepted",
                            newly_fixed=newly_fixed,
                        )

                    lo, f_lo, new_slope = lmbda, f, slope_lmbda
                else:
                    hi, f_hi = lo, f_lo
                break

            if lmbda < lambda_min:
                if f_initial < f_old:
                    # The full step still decreased the objective, so take it
                    lmbda = min(1.0, alpha)
                    move(lmbda)
                    if self.verbose:
                        print(f"      Alpha condition fails; taking {lmbda=:.7g}")
                    fix_blocking_variable(lmbda)
                    return LineSearchResult(
                        x=x,
                        objective_value=f_initial,
                        step=lmbda,
                        slope=slope,
                        status="accepted",
                        newly_fixed=newly_fixed,
                    )

                if self.verbose:
                    print("      Cannot find a step length decreasing the objective")
                return LineSearchResult(
                    x=x_old.copy(),
                    objective_value=f_old,
                    step=0.0,
                    slope=slope,
                    status="no_progress",
                    newly_fixed=newly_fixed,
                )

            # Backtrack by polynomial interpolation
            if k == 0:
                if np.isfinite(f_initial):
                    f_initial = f
                # Minimizer of the quadratic through f(0), f'(0) and f(lambda)
                lmbda_new = -0.5 * lmbda * slope / ((f - f_old) / lmbda - slope)
            else:
                # Minimizer of the cubic through f(0), f'(0) and the last two trials
                rhs1 = f - f_old - lmbda * slope
                rhs2 = f_hi - f_old - lmbda_prev * slope
                a = (rhs1 / lmbda**2 - rhs2 / lmbda_prev**2) / (lmbda - lmbda_prev)
                b = (
                    -lmbda_prev * rhs1 / lmbda**2 + lmbda * rhs2 / lmbda_prev**2
                ) / (lmbda - lmbda_prev)
                if a == 0.0:
                    lmbda_new = -slope / (2.0 * b)
                else:
                    disc = max(b * b - 3.0 * a * slope, 0.0)
                    lmbda_new = (-b + np.sqrt(disc)) / (3.0 * a)

            lmbda_new = min(lmbda_new, 0.5 * lmbda)
            lmbda_prev = lmbda
            f_hi = f
            lmbda = max(lmbda_new, 0.1 * lmbda)
            check_feasible(lmbda, f)
            k += 1

        # The alpha condition holds at lo but not at hi, and the beta condition fails
        # at lo. Search [lo, hi] by safeguarded quadratic interpolation; if nothing
        # satisfies the beta condition, settle for lo.
        if self.verbose:
            print(f"      Searching for beta condition between {lo:.7g} and {hi:.7g}")

        width = hi - lo
        while new_slope < c2 * slope and width >= lambda_min:
            increment = -0.5 * new_slope * width**2 / (f_hi - f_lo - new_slope * width)
            increment = min(max(increment, 0.2 * width), 0.8 * width)
            lmbda = lo + increment
            check_feasible(lmbda, f_lo)
            move(lmbda)
            f = self.objective(x)
            if not f <= f_old + c1 * lmbda * slope:
                # Alpha condition fails: shrink the upper end
                width = increment
                f_hi = f
            else:
                new_slope = directional_derivative()
                if new_slope < c2 * slope:
                    # Beta condition fails: raise the lower end
                    lo = lmbda
                    width -= increment
                    f_lo = f

        if new_slope < c2 * slope:
            if self.verbose:
                print("      Beta condition cannot be satisfied; taking lo")
            lmbda = lo
            move(lmbda)
            f = f_lo
        elif self.verbose:
            print(f"      Alpha and beta conditions hold at {lmbda=:.7g}")

        fix_blocking_variable(lmbda)
        return LineSearchResult(
            x=x,
            objective_value=f,
            step=lmbda,
            slope=slope,
            status="accepted",
            newly_fixed=newly_fixed,
        )
