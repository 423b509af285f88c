"""Test active set method."""

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest
from scipy import optimize

from boundopt.optimization.active_set import ActiveSet
from boundopt.optimization.exceptions import ActiveSetError, SearchDirectionError
from boundopt.optimization.optimization import (
    ActiveSetSolver,
    BoundConstrainedResult,
    OptimizationSettings,
)
from boundopt.problems import FunctionProblem, Quadratic, Rosenbrock


class RecordingProblem(Quadratic):
    """Quadratic that remembers every point at which it was evaluated."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.points = []

    def evaluate_objective(self, x):
        self.points.append(x.copy())
        return super().evaluate_objective(x)


def random_spd(M: int) -> np.ndarray:
    """Random symmetric positive definite matrix with eigenvalues in [1, 10]."""
    Q, _ = np.linalg.qr(np.random.randn(M, M))
    return Q @ np.diag(np.linspace(1.0, 10.0, M)) @ Q.T


def check_monotone(res: BoundConstrainedResult) -> None:
    assert np.all(np.diff(res.objective_values) <= 1e-12)


def test_settings_validation() -> None:
    with pytest.raises(ValueError):
        OptimizationSettings(sufficient_decrease=0.95)
    with pytest.raises(ValueError):
        OptimizationSettings(curvature=1.0)
    with pytest.raises(ValueError):
        OptimizationSettings(max_iterations=0)
    with pytest.raises(ValueError):
        OptimizationSettings(displacement_tolerance=0.0)
    with pytest.raises(ValueError):
        OptimizationSettings(max_step=-1.0)


def test_solver_constants() -> None:
    solver = ActiveSetSolver(Quadratic(np.eye(2)))
    assert solver.epsilon == np.finfo(np.float64).eps
    assert solver.zero == np.sqrt(np.finfo(np.float64).eps)
    assert solver.settings.max_iterations == 200


def test_identity_quadratic_one_iteration() -> None:
    """Test the first step lands on the minimum of 1/2 * |x|^2."""
    solver = ActiveSetSolver(Quadratic(np.eye(3)))
    res = solver.solve(np.array([1.0, -2.0, 0.5]))

    assert res.converged
    assert res.nits == 1
    np.testing.assert_allclose(res.solution, 0.0, atol=1e-15)
    assert res.objective_value == 0.0
    assert res.active_set == []
    assert res.lagrange_multipliers == {}


@pytest.mark.parametrize(
    "seed,M",
    [
        (101, 2),
        (201, 5),
        (301, 10),
        (401, 20),
    ],
)
def test_unconstrained_quadratic(seed: int, M: int) -> None:
    """Test convergence to the minimizer, x = 0, of 1/2 * x^T * A * x."""
    np.random.seed(seed)
    A = random_spd(M)
    x0 = 10.0 * np.random.randn(M)

    solver = ActiveSetSolver(Quadratic(A), settings=OptimizationSettings(verbose=True))
    res = solver.solve(x0)

    assert res.status == 0
    assert res.converged
    np.testing.assert_allclose(res.solution, 0.0, atol=1e-3)
    assert res.objective_value < 1e-5
    assert res.objective_values[0] == pytest.approx(0.5 * np.dot(x0, A @ x0))
    assert res.nfev >= res.nits
    assert res.ngev >= res.nits
    check_monotone(res)


def two_variable_problem(with_hessian: bool):
    """f(x, y) = (x - 3)^2 + (y - 1)^2."""
    if with_hessian:
        return Quadratic(2.0 * np.eye(2), np.array([-6.0, -2.0]), 10.0)

    def objective(x):
        return (x[0] - 3.0) ** 2 + (x[1] - 1.0) ** 2

    def gradient(x):
        return np.array([2.0 * (x[0] - 3.0), 2.0 * (x[1] - 1.0)])

    return FunctionProblem(objective, gradient)


@pytest.mark.parametrize("with_hessian", [True, False])
def test_end_to_end(with_hessian: bool) -> None:
    """Test x is pinned at its upper bound, and y at its unconstrained optimum."""
    problem = two_variable_problem(with_hessian)
    solver = ActiveSetSolver(problem)
    res = solver.solve(
        np.array([1.0, 1.0]),
        lower=np.array([0.0, -np.inf]),
        upper=np.array([2.0, np.inf]),
    )

    assert res.converged
    assert res.solution[0] == 2.0
    assert res.solution[1] == pytest.approx(1.0)
    assert res.objective_value == pytest.approx(1.0)
    assert res.active_set == [0]
    assert res.lagrange_multipliers[0] == pytest.approx(2.0)
    np.testing.assert_array_equal(res.last_iterate, res.solution)
    check_monotone(res)


@pytest.mark.parametrize("with_hessian", [True, False])
def test_active_bounds(with_hessian: bool) -> None:
    """Test coordinates whose optimum lies outside the box are pinned to the box."""
    center = np.array([3.0, -2.0, 0.5, 5.0])
    lower = np.zeros(4)
    upper = np.ones(4)
    if with_hessian:
        problem = Quadratic(2.0 * np.eye(4), -2.0 * center, np.dot(center, center))
    else:
        problem = FunctionProblem(
            lambda x: float(np.sum((x - center) ** 2)), lambda x: 2.0 * (x - center)
        )

    solver = ActiveSetSolver(problem)
    res = solver.solve(np.full(4, 0.5), lower=lower, upper=upper)

    assert res.converged
    np.testing.assert_allclose(res.solution, np.clip(center, lower, upper), atol=1e-6)
    assert res.active_set == [0, 1, 3]
    assert res.objective_value == pytest.approx(24.0)

    # Positive multipliers mean the bounds are binding
    assert res.lagrange_multipliers[0] == pytest.approx(4.0)
    assert res.lagrange_multipliers[1] == pytest.approx(4.0)
    assert res.lagrange_multipliers[3] == pytest.approx(8.0)
    check_monotone(res)


@pytest.mark.parametrize("with_hessian", [True, False])
def test_release(with_hessian: bool) -> None:
    """Test a variable fixed early on is released.

    The unconstrained minimum of this quadratic is at (0.5, 1), with f = 0. Starting
    from (0.4, 0.2), steepest descent hits x = 0 first, fixing x. With x fixed, y
    converges to 6/11, where the multiplier for x is negative, so x is released.

    Without the Hessian the release rests on the first-order estimate alone.

    """
    recorder = RecordingProblem(
        np.array([[20.0, -20.0], [-20.0, 22.0]]), np.array([10.0, -12.0]), 3.5
    )
    if with_hessian:
        problem = recorder
    else:
        problem = FunctionProblem(recorder.evaluate_objective, recorder.gradient)
    solver = ActiveSetSolver(problem, settings=OptimizationSettings(verbose=True))
    res = solver.solve(
        np.array([0.4, 0.2]),
        lower=np.array([0.0, np.nan]),
        upper=np.array([5.0, np.nan]),
    )

    assert any(p[0] == 0.0 for p in recorder.points)
    assert res.converged
    assert res.active_set == []
    np.testing.assert_allclose(res.solution, [0.5, 1.0], atol=1e-4)
    assert res.objective_value == pytest.approx(0.0, abs=1e-6)
    check_monotone(res)


def double_well(with_hessian: bool) -> FunctionProblem:
    """f(x) = 2 * (x^2 - 1)^2, with minima at x = -1 and x = 1."""

    def hessian_row(x, index):
        return np.array([8.0 * (3.0 * x[0] ** 2 - 1.0)])

    return FunctionProblem(
        lambda x: 2.0 * (x[0] ** 2 - 1.0) ** 2,
        lambda x: np.array([8.0 * x[0] * (x[0] ** 2 - 1.0)]),
        hessian_row=hessian_row if with_hessian else None,
    )


def test_repeated_release_without_hessian() -> None:
    """Test the solver stops when the same variables come up for release twice running.

    From x = 0.5 the first step is blocked by the upper bound, 1.2, where the gradient
    is positive, so x is released. The next step is blocked by the lower bound, -1.1,
    where the gradient is negative, so x is a candidate for release again. Without the
    Hessian, that is taken as optimal.

    """
    solver = ActiveSetSolver(double_well(with_hessian=False))
    res = solver.solve(np.array([0.5]), lower=np.array([-1.1]), upper=np.array([1.2]))

    assert res.status == 0
    assert res.nits == 2
    assert res.solution[0] == -1.1
    assert res.active_set == [0]
    assert res.lagrange_multipliers[0] == pytest.approx(-1.848)
    check_monotone(res)


def test_repeated_release_with_hessian() -> None:
    """Test with rows of the Hessian the solver goes on to an interior minimum."""
    solver = ActiveSetSolver(double_well(with_hessian=True))
    res = solver.solve(np.array([0.5]), lower=np.array([-1.1]), upper=np.array([1.2]))

    assert res.converged
    assert res.active_set == []
    assert abs(res.solution[0]) == pytest.approx(1.0, abs=1e-3)
    assert res.objective_value < 1e-5
    check_monotone(res)


def test_multiplier_off_bound() -> None:
    """Test a fixed variable that isn't on a bound is reported."""
    solver = ActiveSetSolver(Quadratic(np.eye(2)))
    active_set = ActiveSet(np.zeros(2), np.ones(2))
    active_set.fix(0, at_upper=False)
    x = np.array([0.5, 0.5])

    with pytest.raises(ActiveSetError) as excinfo:
        solver._first_order_multiplier(x, np.ones(2), active_set, 0)

    assert excinfo.value.index == 0
    assert "x[0] = 0.5" in str(excinfo.value)


@pytest.mark.parametrize(
    "stage,L,d,grad",
    [
        ("forward", [[1.0]], [0.0], [1.0]),
        ("backward", [[1.0, 0.0], [1e200, 1.0]], [1e-200, 1.0], [-1.0, 0.0]),
    ],
)
def test_search_direction_not_finite(stage: str, L, d, grad) -> None:
    """Test inf or NaN in the solution of L * D * L^T * direction = -grad is fatal."""
    solver = ActiveSetSolver(Quadratic(np.eye(2)))
    fixed = np.zeros(len(d), dtype=bool)

    with np.errstate(over="ignore"):
        with pytest.raises(SearchDirectionError) as excinfo:
            solver._search_direction(np.array(L), np.array(d), np.array(grad), fixed)

    assert excinfo.value.stage == stage
    assert "not finite" in str(excinfo.value)


def test_rosenbrock_bounded() -> None:
    """Test against L-BFGS-B on a bounded Rosenbrock function."""
    problem = Rosenbrock()
    x0 = np.array([-1.2, 1.0])
    lower = np.array([-2.0, -1.0])
    upper = np.array([0.5, 2.0])

    solver = ActiveSetSolver(problem)
    res = solver.solve(x0, lower=lower, upper=upper)

    expected = optimize.minimize(
        problem.evaluate_objective,
        x0,
        jac=problem.gradient,
        method="L-BFGS-B",
        bounds=list(zip(lower, upper)),
    )

    assert res.converged
    np.testing.assert_allclose(res.solution, expected.x, atol=1e-3)
    np.testing.assert_allclose(res.solution, [0.5, 0.25], atol=1e-3)
    assert res.active_set == [0]
    assert res.lagrange_multipliers[0] == pytest.approx(1.0, rel=1e-2)
    check_monotone(res)


@pytest.mark.parametrize(
    "seed,M",
    [
        (102, 3),
        (202, 8),
        (302, 15),
    ],
)
def test_random_box(seed: int, M: int) -> None:
    """Test against L-BFGS-B on random quadratics with random boxes."""
    np.random.seed(seed)
    A = random_spd(M)
    b = 5.0 * np.random.randn(M)
    lower = -np.random.rand(M)
    upper = np.random.rand(M)
    x0 = 0.5 * (lower + upper)
    problem = Quadratic(A, b)

    res = ActiveSetSolver(problem).solve(x0, lower=lower, upper=upper)
    expected = optimize.minimize(
        problem.evaluate_objective,
        x0,
        jac=problem.gradient,
        method="L-BFGS-B",
        bounds=list(zip(lower, upper)),
        options={"ftol": 1e-14, "gtol": 1e-10},
    )

    assert res.converged
    assert np.all(res.solution >= lower)
    assert np.all(res.solution <= upper)
    assert res.objective_value <= expected.fun + 1e-6
    np.testing.assert_allclose(res.solution, expected.x, atol=1e-3)
    for index, multiplier in res.lagrange_multipliers.items():
        assert multiplier > -1e-6
    check_monotone(res)


def test_iteration_limit() -> None:
    """Test running out of iterations is reported, not raised."""
    solver = ActiveSetSolver(
        Rosenbrock(), settings=OptimizationSettings(max_iterations=2)
    )
    res = solver.solve(np.array([-1.2, 1.0]))

    assert res.status == 1
    assert not res.converged
    assert res.nits == 2
    assert len(res.objective_values) == 3
    np.testing.assert_array_equal(res.last_iterate, res.solution)
    assert res.objective_value < Rosenbrock().evaluate_objective(np.array([-1.2, 1.0]))


def test_solver_is_reusable() -> None:
    solver = ActiveSetSolver(Rosenbrock())
    x0 = np.array([-1.2, 1.0])
    first = solver.solve(x0, lower=np.array([-2.0, -1.0]), upper=np.array([0.5, 2.0]))
    second = solver.solve(x0, lower=np.array([-2.0, -1.0]), upper=np.array([0.5, 2.0]))

    np.testing.assert_array_equal(first.solution, second.solution)
    assert first.nits == second.nits
    np.testing.assert_array_equal(x0, [-1.2, 1.0])


@pytest.mark.parametrize(
    "x0,lower,upper",
    [
        ([0.0, 1.0], [0.0, 0.0], [2.0, 2.0]),
        ([1.0, 2.0], [0.0, 0.0], [2.0, 2.0]),
        ([3.0, 1.0], [0.0, 0.0], [2.0, 2.0]),
        ([1.0, 1.0], [2.0, 0.0], [1.5, 2.0]),
        ([1.0, 1.0], [0.0, 0.0, 0.0], [2.0, 2.0, 2.0]),
        ([[1.0, 1.0]], None, None),
    ],
)
def test_invalid_inputs(x0, lower, upper) -> None:
    solver = ActiveSetSolver(Quadratic(np.eye(2)))
    with pytest.raises(ValueError):
        solver.solve(
            np.array(x0),
            lower=None if lower is None else np.array(lower),
            upper=None if upper is None else np.array(upper),
        )


def test_plot_convergence() -> None:
    solver = ActiveSetSolver(Rosenbrock())
    res = solver.solve(np.array([-1.2, 1.0]))

    ax = res.plot_convergence()
    line = ax.get_lines()[0]
    np.testing.assert_array_equal(line.get_ydata(), res.objective_values)
