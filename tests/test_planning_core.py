import logging

import numpy as np
import pytest

from diff_rmap.core.errors import ConfigurationError
from diff_rmap.core.sampling import get_sample_space
from diff_rmap.optimization.planning_core import SLACK_BOUND, QpLayout, QpPlanningCore, build_adjacent_reg_mat
from diff_rmap.planning.config import RmapPlanningConfig

from conftest import FailingSolver


def _core(space="SO2", solver=None, **config_kwargs):
    config = RmapPlanningConfig(**config_kwargs)
    return QpPlanningCore(get_sample_space(space), config, solver)


def test_adjacent_reg_mat_single_chain():
    w = 0.5
    mat = build_adjacent_reg_mat(3, 1, [(0, 3)], w)
    expected = np.array([
        [2 * w, -w, 0.0],
        [-w, 2 * w, -w],
        [0.0, -w, w],
    ])
    assert np.allclose(mat, expected)


def test_adjacent_reg_mat_two_chains_do_not_couple():
    mat = build_adjacent_reg_mat(4, 2, [(0, 2), (2, 2)], 1.0)
    assert np.allclose(mat[:4, 4:], 0.0)
    assert np.allclose(mat[0:2, 0:2], 2.0 * np.eye(2))
    assert np.allclose(mat[2:4, 2:4], np.eye(2))
    assert np.allclose(mat[4:6, 4:6], 2.0 * np.eye(2))
    assert np.allclose(mat[6:8, 6:8], np.eye(2))


def test_setup_bounds_and_dimensions():
    core = _core("SE2", delta_config_limit=0.2)
    core.setup(QpLayout(config_dim=6, ineq_groups={"reachability": 2}, chains=[(0, 2)]))
    assert core.dim_var == 8
    assert core.ineq_dim == 2
    assert np.allclose(core.coeff.x_min[:6], -0.2)
    assert np.allclose(core.coeff.x_max[:6], 0.2)
    assert np.allclose(core.coeff.x_max[6:], SLACK_BOUND)


def test_ineq_offsets_skip_empty_groups():
    core = _core()
    core.setup(QpLayout(config_dim=3, ineq_groups={"foot": 3, "hand": 0, "extra": 2}))
    assert core.ineq_offset("foot") == 0
    assert core.ineq_offset("hand") == 3
    assert core.ineq_offset("extra") == 3
    assert core.ineq_dim == 5
    with pytest.raises(KeyError):
        core.ineq_offset("missing")


def test_setup_rejects_bad_layouts():
    core = _core("SE2")
    with pytest.raises(ConfigurationError):
        core.setup(QpLayout(config_dim=4))
    with pytest.raises(ConfigurationError):
        core.setup(QpLayout(config_dim=6, chains=[(1, 2)]))


def test_use_before_setup_raises():
    core = _core()
    with pytest.raises(RuntimeError):
        core.reset()


def test_reset_installs_slack_columns():
    core = _core(svm_ineq_weight=1e4)
    core.setup(QpLayout(config_dim=2, ineq_groups={"reachability": 2}))
    core.reset()
    assert np.allclose(np.diag(core.coeff.obj_mat), [0.0, 0.0, 1e4, 1e4])
    assert np.allclose(core.coeff.ineq_mat[:, 2:], -np.eye(2))
    assert np.allclose(core.coeff.ineq_mat[:, :2], 0.0)


def test_target_error_damping_and_adjacency():
    core = _core(adjacent_reg_weight=0.1)
    core.setup(QpLayout(config_dim=2, chains=[(0, 2)]))
    core.reset()
    core.add_target_error(1, [0.3])
    core.add_damping(0.5)
    core.add_adjacency([0.2, 0.4], anchors={0: [0.1]})

    reg = build_adjacent_reg_mat(2, 1, [(0, 2)], 0.1)
    expected_mat = np.diag([0.5, 1.5]) + reg
    expected_vec = np.array([0.0, -0.3]) + reg @ [0.2, 0.4] - np.array([0.1 * 0.1, 0.0])
    assert np.allclose(core.coeff.obj_mat, expected_mat)
    assert np.allclose(core.coeff.obj_vec, expected_vec)


def test_set_reachability_row():
    core = _core("SE2", svm_thre=0.05)
    core.setup(QpLayout(config_dim=6, ineq_groups={"foot": 1, "hand": 2}))
    core.reset()
    core.set_reachability_row("hand", 1, 0.3, 0, [1.0, 2.0, 3.0], 1, [4.0, 5.0, 6.0])
    row = core.ineq_offset("hand") + 1
    assert np.allclose(core.coeff.ineq_mat[row, :6], [-1.0, -2.0, -3.0, -4.0, -5.0, -6.0])
    assert core.coeff.ineq_mat[row, 6 + row] == -1.0
    assert core.coeff.ineq_vec[row] == pytest.approx(0.25)

    core.set_reachability_row("foot", 0, 0.1, None, [9.0, 9.0, 9.0], 1, [1.0, 1.0, 1.0])
    assert np.allclose(core.coeff.ineq_mat[0, :3], 0.0)
    with pytest.raises(IndexError):
        core.set_reachability_row("foot", 1, 0.1, None, None, 0, [1.0, 1.0, 1.0])


def test_solve_returns_velocity_blocks():
    core = _core(delta_config_limit=1.0)
    core.setup(QpLayout(config_dim=2, ineq_groups={"reachability": 1}))
    core.reset()
    core.add_target_error(0, [0.4])
    core.add_target_error(1, [-0.2])
    vel_all, solved = core.solve()
    assert solved
    assert vel_all.shape == (2,)
    assert core.block(vel_all, 0) == pytest.approx([0.4], abs=1e-4)
    assert core.block(vel_all, 1) == pytest.approx([-0.2], abs=1e-4)


def test_solve_failure_returns_zero_velocity(caplog):
    solver = FailingSolver()
    core = _core(solver=solver)
    core.setup(QpLayout(config_dim=2, ineq_groups={"reachability": 1}))
    core.reset()
    with caplog.at_level(logging.WARNING):
        vel_all, solved = core.solve()
    assert not solved
    assert np.array_equal(vel_all, np.zeros(2))
    assert solver.num_calls == 1
    assert "QP solve failed" in caplog.text
