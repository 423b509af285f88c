"""Numerical linear algebra routines."""

from typing import Iterable, Optional, Tuple

import numpy as np
import numpy.typing as npt

from .exceptions import FactorizationError


def machine_epsilon() -> float:
    """Calculate machine precision.

    Returns the smallest power of two, eps, such that 1 + eps > 1 in floating point
    arithmetic. For IEEE double precision this is 2.22e-16, the same as
    np.finfo(float).eps.

    """
    eps = 1.0
    while 1.0 + eps > 1.0:
        eps /= 2.0
    return 2.0 * eps


def solve_triangular(
    T: npt.NDArray[np.float64],
    b: npt.NDArray[np.float64],
    lower: bool = True,
    skip: Optional[npt.NDArray[np.bool_]] = None,
) -> npt.NDArray[np.float64]:
    """Solve T * x = b.

    Solves a linear system of equations where T is triangular, by forward substitution
    (lower triangular) or back substitution (upper triangular). Only the relevant
    triangle of T is read.

    Parameters
    ----------
     T : npt.NDArray[np.float64]
        Square matrix.
     b : npt.NDArray[np.float64]
        Right hand side.
     lower : bool, optional
        If True (default), T is lower triangular. Otherwise T is upper triangular.
     skip : npt.NDArray[np.bool_], optional
        Rows to leave out of the system. The corresponding entries of x are set to zero
        and the corresponding rows of T (including the diagonal) are never read.
        Defaults to using every row.

    Returns
    -------
     x : npt.NDArray[np.float64]
        The solution.

    Notes
    -----
    Takes O(n^2) time. No check is made for zero diagonal entries: a singular T
    produces inf or NaN entries in x, which the caller is responsible for detecting.

    """
    n = b.shape[0]
    if T.shape != (n, n):
        raise ValueError(f"Dimension mismatch: {T.shape=:}; expected ({n}, {n}).")

    if skip is None:
        skip = np.zeros(n, dtype=bool)

    x = np.zeros(n)
    rows = range(n) if lower else range(n - 1, -1, -1)
    with np.errstate(divide="ignore", invalid="ignore"):
        for j in rows:
            if skip[j]:
                continue

            if lower:
                numerator = b[j] - np.dot(T[j, :j], x[:j])
            else:
                numerator = b[j] - np.dot(T[j, j + 1 :], x[j + 1 :])
            x[j] = numerator / T[j, j]

    return x


def reset_factor_entries(
    L: npt.NDArray[np.float64],
    d: npt.NDArray[np.float64],
    indices: Iterable[int],
    diagonal: float,
) -> None:
    """Reset rows and columns of an L * D * L^T factorization, in place.

    The off-diagonal entries of each row and column are zeroed, L[i, i] is set to 1 and
    D[i] is set to `diagonal`. Use diagonal=0 when variable i joins the active set, and
    diagonal=1 when it is released.

    """
    for i in indices:
        L[i, :] = 0.0
        L[:, i] = 0.0
        L[i, i] = 1.0
        d[i] = diagonal


def update_cholesky_factor(
    L: npt.NDArray[np.float64],
    d: npt.NDArray[np.float64],
    v: npt.NDArray[np.float64],
    coeff: float,
    fixed: npt.NDArray[np.bool_],
    zero: float,
    out: Optional[Tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]] = None,
) -> Tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """Rank-one update of an L * D * L^T factorization.

    Calculates L' and D' such that L' * D' * L'^T = L * D * L^T + coeff * v * v^T,
    restricted to the rows and columns of free variables.

    Parameters
    ----------
     L : npt.NDArray[np.float64]
        Unit lower triangular matrix.
     d : npt.NDArray[np.float64]
        Diagonal of D.
     v : npt.NDArray[np.float64]
        Update vector. Entries for fixed variables are ignored.
     coeff : float
        Coefficient of the update.
     fixed : npt.NDArray[np.bool_]
        Variables excluded from the update. In the result, their rows and columns of L
        are zero except for a unit diagonal, and their entries of D are zero.
     zero : float
        Numerical zero, used to keep the running scalars of the downdate away from
        zero.
     out : tuple of npt.NDArray[np.float64], optional
        Arrays shaped like L and d in which to store the result. They must not share
        memory with L or d. If not specified, new arrays are allocated.

    Returns
    -------
     L_bar, d_bar : npt.NDArray[np.float64]
        The updated factors. The inputs are not modified.

    Raises
    ------
     FactorizationError
        If the downdate (coeff < 0) produces NaN or infinite values, signalling that the
        updated matrix is no longer positive definite.

    Notes
    -----
    When coeff > 0 we use algorithm C1 of Gill, Golub, Murray and Saunders (1974),
    "Methods for Modifying Matrix Factorizations", Mathematics of Computation, Vol. 28,
    pp. 505-535. It sweeps the columns once, maintaining a running multiplier t:
       d_bar[j] = d[j] + t * p[j]^2,
    and updating the subdiagonal of column j from the partially reduced vector p.

    When coeff < 0 we use their algorithm C2, which is numerically stable for
    downdates. It first solves L * p = v, forms t = 1 + coeff * sum(p^2 / d), clamps t
    at zero to absorb rounding error and takes its square root. A second sweep then
    updates D and L using the running scalars alpha, sigma, rho and theta.

    """
    n = v.shape[0]
    free = ~fixed
    if out is None:
        L_bar = np.zeros_like(L)
        d_bar = np.zeros_like(d)
    else:
        L_bar, d_bar = out
        L_bar[:] = 0.0
        d_bar[:] = 0.0
    fixed_indices = np.flatnonzero(fixed)
    L_bar[fixed_indices, fixed_indices] = 1.0

    if coeff == 0.0:
        L_bar[np.ix_(free, free)] = L[np.ix_(free, free)]
        d_bar[free] = d[free]
        return L_bar, d_bar

    vp = np.where(fixed, 0.0, v)
    if coeff > 0.0:
        t = coeff
        for j in range(n):
            if fixed[j]:
                continue

            L_bar[j, j] = 1.0
            p = vp[j]
            dj = d[j]
            d_bar[j] = dj + t * p * p
            beta = p * t / d_bar[j]
            t *= dj / d_bar[j]

            rows = np.flatnonzero(free[j + 1 :]) + j + 1
            vp[rows] -= p * L[rows, j]
            L_bar[rows, j] = L[rows, j] + beta * vp[rows]

        return L_bar, d_bar

    P = solve_triangular(L, v, lower=True, skip=fixed)
    t = np.sum(P[free] ** 2 / d[free])
    root = 1.0 + coeff * t
    root = 0.0 if root < 0.0 else np.sqrt(root)

    alpha = coeff
    sigma = coeff / (1.0 + root)
    for j in range(n):
        if fixed[j]:
            continue

        L_bar[j, j] = 1.0
        dj = d[j]
        p = P[j] * P[j] / dj
        theta = 1.0 + sigma * p
        t -= p
        if t < 0.0:
            t = 0.0

        plus = sigma * sigma * p * t
        if j < n - 1 and plus <= zero:
            plus = zero
        rho = theta * theta + plus
        d_bar[j] = rho * dj
        if not np.isfinite(d_bar[j]):
            raise FactorizationError(
                message="Updated diagonal factor is not finite",
                index=j,
                values={
                    "P": P[j],
                    "d": dj,
                    "t": t,
                    "p": p,
                    "sigma": sigma,
                    "coeff": coeff,
                },
            )

        # On the last column rho * (theta + rho) may be zero; sigma is not used again
        sigma_old = sigma
        with np.errstate(divide="ignore", invalid="ignore"):
            beta = alpha * P[j] / (rho * dj)
            alpha /= rho
            rho = np.sqrt(rho)
            sigma *= (1.0 + rho) / (rho * (theta + rho))
        if j < n - 1 and not np.isfinite(sigma):
            raise FactorizationError(
                message="Running scalar sigma is not finite",
                index=j,
                values={
                    "rho": rho,
                    "theta": theta,
                    "P": P[j],
                    "p": p,
                    "d": dj,
                    "t": t,
                    "sigma_old": sigma_old,
                },
            )

        rows = np.flatnonzero(free[j + 1 :]) + j + 1
        vp[rows] -= P[j] * L[rows, j]
        L_bar[rows, j] = L[rows, j] + beta * vp[rows]

    return L_bar, d_bar
