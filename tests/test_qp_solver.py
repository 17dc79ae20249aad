import numpy as np
import pytest

from diff_rmap.optimization.qp import OsqpSolver, QpCoeff


def _unit_qp(dim_ineq=0):
    coeff = QpCoeff()
    coeff.setup(2, dim_ineq)
    coeff.obj_mat[:] = np.eye(2)
    coeff.obj_vec[:] = [-1.0, -1.0]
    return coeff


def test_setup_allocates_unbounded_problem():
    coeff = QpCoeff()
    coeff.setup(3, 2)
    assert coeff.obj_mat.shape == (3, 3)
    assert coeff.ineq_mat.shape == (2, 3)
    assert coeff.dim_var == 3
    assert coeff.dim_ineq == 2
    assert np.all(np.isinf(coeff.x_min)) and np.all(np.isinf(coeff.x_max))


def test_unconstrained_minimum():
    solution = OsqpSolver().solve(_unit_qp())
    assert solution.solved
    assert np.allclose(solution.x, [1.0, 1.0], atol=1e-3)


def test_box_bounds_active():
    coeff = _unit_qp()
    coeff.x_max[:] = 0.5
    solution = OsqpSolver().solve(coeff)
    assert solution.solved
    assert np.allclose(solution.x, [0.5, 0.5], atol=1e-3)


def test_inequality_active():
    coeff = _unit_qp(dim_ineq=1)
    coeff.ineq_mat[0] = [1.0, 1.0]
    coeff.ineq_vec[0] = 0.6
    solution = OsqpSolver().solve(coeff)
    assert solution.solved
    assert np.allclose(solution.x, [0.3, 0.3], atol=1e-3)


def test_non_finite_data_reports_failure():
    coeff = _unit_qp()
    coeff.obj_vec[0] = np.nan
    solution = OsqpSolver().solve(coeff)
    assert not solution.solved
    assert solution.status == "non_finite_data"
    assert np.array_equal(solution.x, np.zeros(2))


def test_infeasible_problem_reports_failure():
    coeff = _unit_qp(dim_ineq=1)
    coeff.x_min[:] = 0.0
    coeff.ineq_mat[0] = [1.0, 1.0]
    coeff.ineq_vec[0] = -1.0
    solution = OsqpSolver().solve(coeff)
    assert not solution.solved
    assert np.array_equal(solution.x, np.zeros(2))


@pytest.mark.parametrize("max_iter", [1, 4000])
def test_solver_never_raises(max_iter):
    coeff = _unit_qp(dim_ineq=1)
    coeff.ineq_mat[0] = [1.0, -1.0]
    coeff.ineq_vec[0] = 0.0
    solution = OsqpSolver(max_iter=max_iter, polish=False).solve(coeff)
    assert solution.x.shape == (2,)


def test_default_tolerances_solve_heavily_weighted_slack():
    # velocity terms near 1e-3 next to a 1e6 slack penalty, as in the planners
    coeff = QpCoeff()
    coeff.setup(3, 1)
    coeff.obj_mat[:] = np.diag([1e-3, 1e-3, 1e6])
    coeff.obj_vec[:] = [-1e-3, -1e-3, 0.0]
    coeff.ineq_mat[0] = [1.0, 0.0, -1.0]
    coeff.ineq_vec[0] = 0.2
    coeff.x_min[2] = -1e10
    coeff.x_max[2] = 1e10
    solution = OsqpSolver().solve(coeff)
    assert solution.solved
    assert solution.x[0] == pytest.approx(0.2, abs=1e-2)
    assert solution.x[1] == pytest.approx(1.0, abs=1e-2)
    assert abs(solution.x[2]) < 1e-2
