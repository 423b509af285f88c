"""Bookkeeping for variables fixed at their bounds."""

from typing import List

import numpy as np
import numpy.typing as npt


class ActiveSet:
    """Track which variables are fixed at a bound.

    Bounds are stored with NaN meaning "no bound on this side". Alongside the original
    bounds we keep a working copy in which a bound is replaced by NaN once the variable
    sits on it, so the line search no longer treats it as a constraint. At most one
    side per variable is ever in the working set.

    Parameters
    ----------
     lower, upper : npt.NDArray[np.float64]
        Bounds, with NaN for "unbounded".

    """

    def __init__(
        self, lower: npt.NDArray[np.float64], upper: npt.NDArray[np.float64]
    ) -> None:
        self.lower = lower
        self.upper = upper
        self.working_lower = lower.copy()
        self.working_upper = upper.copy()
        self.fixed = np.zeros(lower.shape[0], dtype=bool)
        self.indices: List[int] = []

    def __len__(self) -> int:
        return len(self.indices)

    @property
    def free(self) -> npt.NDArray[np.bool_]:
        """Mask of variables not in the active set."""
        return ~self.fixed

    def fix(self, index: int, at_upper: bool) -> float:
        """Fix a variable to one of its bounds, returning the bound."""
        if at_upper:
            bound = self.working_upper[index]
            self.working_upper[index] = np.nan
        else:
            bound = self.working_lower[index]
            self.working_lower[index] = np.nan

        self.fixed[index] = True
        self.indices.append(index)
        return bound

    def release(self, index: int, x: npt.NDArray[np.float64]) -> None:
        """Free a variable, reinstating the bound it sits on.

        The variable must already have been removed from `indices` by the caller, which
        walks that list by position.

        """
        self.fixed[index] = False
        if x[index] <= self.lower[index]:
            self.working_lower[index] = self.lower[index]
        else:
            self.working_upper[index] = self.upper[index]

    def clip(
        self, x: npt.NDArray[np.float64], free: npt.NDArray[np.bool_]
    ) -> npt.NDArray[np.float64]:
        """Pull free variables back onto any working bound they crossed, in place."""
        below = free & ~np.isnan(self.working_lower) & (x < self.working_lower)
        x[below] = self.working_lower[below]
        above = free & ~np.isnan(self.working_upper) & (x > self.working_upper)
        x[above] = self.working_upper[above]
        return x
