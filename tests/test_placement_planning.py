import numpy as np
import pytest

from diff_rmap.core.math3d import planar_transform
from diff_rmap.planning import IKResult, RmapPlanningPlacement

from conftest import FailingSolver, RecordingSolver


class StubIKSolver:
    """Returns the queued errors in order and records the keys it was given."""

    def __init__(self, errors):
        self.errors = list(errors)
        self.keys = []

    def solve(self, placement_pose, reaching_poses, key, loop_num):
        self.keys.append(np.asarray(key))
        error = self.errors.pop(0) if self.errors else 1.0
        return IKResult(joint_pos=np.zeros(2), pos_error=error, ori_error=error)


def _translation(x, y=0.0):
    return {"translation": [x, y]}


def test_reaching_samples_converge_within_reach(disk_svm_model_r2):
    planner = RmapPlanningPlacement("R2", disk_svm_model_r2)
    planner.configure({"reaching_num": 2, "target_sample_pose": _translation(0.8)})
    planner.setup()

    results = [planner.run_once() for _ in range(200)]
    assert all(r.solved for r in results)
    assert results[-1].target_error < 2e-2

    placement = planner.current_placement_sample
    # the base has to move toward the goal for the reaching samples to stay reachable
    assert float(placement[0]) > 0.25
    for reaching in planner.current_reaching_samples:
        assert np.allclose(reaching, [0.8, 0.0], atol=2e-2)
        assert planner.rmap.calc_svm_value(planner.space.rel_sample(placement, reaching)) > -1e-2


def test_individual_reaching_targets(disk_svm_model_r2):
    planner = RmapPlanningPlacement("R2", disk_svm_model_r2)
    planner.configure({"reaching_num": 2, "target_sample_pose": _translation(0.2)})
    planner.setup()
    planner.set_reaching_target(1, planar_transform(0.0, 0.3, 0.0))
    for _ in range(100):
        planner.run_once()
    reaching = np.asarray(planner.current_reaching_samples)
    assert np.allclose(reaching[0], [0.2, 0.0], atol=2e-2)
    assert np.allclose(reaching[1], [0.0, 0.3], atol=2e-2)


def test_reaching_index_out_of_range(disk_svm_model_r2):
    planner = RmapPlanningPlacement("R2", disk_svm_model_r2)
    planner.setup()
    with pytest.raises(IndexError):
        planner.set_reaching_target(5, np.eye(4))
    with pytest.raises(KeyError):
        planner.set_target(np.eye(4), key="reaching")


def test_stale_reaching_index_does_not_drop_other_targets(disk_svm_model_r2):
    planner = RmapPlanningPlacement("R2", disk_svm_model_r2)
    planner.configure({"reaching_num": 3})
    planner.setup()
    planner.set_reaching_target(2, planar_transform(0.1, 0.1, 0.0))
    planner.set_target(planar_transform(0.3, 0.0, 0.0))
    planner.configure({"reaching_num": 2})
    planner.setup()
    with pytest.raises(IndexError):
        planner.run_once()
    assert np.allclose(planner.target_placement_sample, [0.3, 0.0])


def test_initial_state(disk_svm_model_r2):
    planner = RmapPlanningPlacement("R2", disk_svm_model_r2)
    planner.configure({
        "reaching_num": 3,
        "initial_sample_pose": _translation(0.1, 0.2),
        "target_sample_pose": _translation(0.6),
    })
    planner.setup()
    assert np.allclose(planner.current_placement_sample, [0.1, 0.2])
    assert np.allclose(planner.target_placement_sample, [0.1, 0.2])
    assert np.allclose(planner.current_reaching_samples, [[0.1, 0.2]] * 3)
    assert np.allclose(planner.target_reaching_samples, [[0.6, 0.0]] * 3)
    assert planner.core.config_dim == 4 * 2
    assert planner.core.ineq_dim == 3


def test_placement_block_is_weakly_pulled(disk_svm_model_r2):
    solver = RecordingSolver()
    planner = RmapPlanningPlacement("R2", disk_svm_model_r2, solver=solver)
    planner.configure({"reaching_num": 1, "placement_weight": 1e-3, "reg_weight": 0.0})
    planner.setup()
    planner.set_target(planar_transform(0.4, 0.0, 0.0))
    planner.run_once()
    obj_vec = solver.coeffs[0]["obj_vec"]
    assert np.allclose(obj_vec[:2], [-1e-3 * 0.4, 0.0])


def test_ik_retries_until_within_threshold(disk_svm_model_r2):
    ik_solver = StubIKSolver([0.5, 0.2, 0.005])
    planner = RmapPlanningPlacement("R2", disk_svm_model_r2, solver=RecordingSolver(), ik_solver=ik_solver)
    planner.configure({"ik_trial_num": 5, "ik_error_thre": 0.01})
    planner.setup()
    planner.run_once()
    assert planner.ik_result is not None
    assert planner.ik_result.pos_error == pytest.approx(0.005)
    assert len(ik_solver.keys) == 3
    # every trial draws a fresh key
    assert not np.array_equal(ik_solver.keys[0], ik_solver.keys[1])
    assert planner.make_output().ik_result is planner.ik_result


def test_ik_gives_up_after_trial_limit(disk_svm_model_r2):
    ik_solver = StubIKSolver([0.5] * 10)
    planner = RmapPlanningPlacement("R2", disk_svm_model_r2, solver=RecordingSolver(), ik_solver=ik_solver)
    planner.configure({"ik_trial_num": 4})
    planner.setup()
    planner.run_once()
    assert planner.ik_result is None
    assert len(ik_solver.keys) == 4


def test_ik_skipped_when_solve_fails(disk_svm_model_r2):
    ik_solver = StubIKSolver([0.0])
    planner = RmapPlanningPlacement("R2", disk_svm_model_r2, solver=FailingSolver(), ik_solver=ik_solver)
    planner.setup()
    result = planner.run_once()
    assert not result.solved
    assert ik_solver.keys == []


def test_output_poses(disk_svm_model_r2):
    planner = RmapPlanningPlacement("R2", disk_svm_model_r2)
    planner.configure({"reaching_num": 2, "initial_sample_pose": _translation(0.1)})
    planner.setup()
    output = planner.make_output()
    assert len(output.poses) == 3
    assert np.allclose(output.poses[0][:3, 3], [0.1, 0.0, 0.0])
    assert output.polygons == []
