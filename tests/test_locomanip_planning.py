import numpy as np
import pytest

from diff_rmap.core.errors import MissingClassifierError, UnsupportedSamplingSpaceError
from diff_rmap.core.types import Limb
from diff_rmap.planning import HandReachability, RmapPlanningLocomanip
from diff_rmap.planning.locomanip import hand_row_count

from conftest import RecordingSolver

START_POSES = {
    "LeftFoot": {"translation": [0.0, 0.1]},
    "RightFoot": {"translation": [0.0, -0.1]},
    "LeftHand": {"translation": [0.3, 0.3]},
}


def _planner(svm_models, motion_len=4, hand_reachability="reserved", **kwargs):
    planner = RmapPlanningLocomanip(svm_models, **kwargs)
    planner.configure({
        "motion_len": motion_len,
        "hand_reachability": hand_reachability,
        "initial_sample_pose_list": START_POSES,
        "target_sample_pose": {"translation": [1.0, 0.3], "yaw": 0.0},
    })
    return planner


@pytest.mark.parametrize("mode, expected", [
    (HandReachability.DISABLED, 4),
    (HandReachability.RESERVED, 11),
    (HandReachability.ENABLED, 11),
])
def test_inequality_row_counts(locomanip_svm_models, mode, expected):
    planner = _planner(locomanip_svm_models, hand_reachability=mode.value)
    planner.setup()
    assert planner.core.ineq_dim == expected
    assert planner.core.config_dim == 2 * 4 * 3
    assert hand_row_count(4, mode) == expected - 4


def test_foot_rows_do_not_depend_on_hand_mode(locomanip_svm_models):
    recorded = {}
    for mode in HandReachability:
        solver = RecordingSolver()
        planner = _planner(locomanip_svm_models, hand_reachability=mode.value, solver=solver)
        planner.setup()
        planner.run_once()
        recorded[mode] = solver.coeffs[0]

    config_dim = 2 * 4 * 3
    reference = recorded[HandReachability.DISABLED]
    for mode in (HandReachability.RESERVED, HandReachability.ENABLED):
        coeff = recorded[mode]
        assert np.allclose(coeff["ineq_mat"][:4, :config_dim], reference["ineq_mat"][:4, :config_dim])
        assert np.allclose(coeff["ineq_vec"][:4], reference["ineq_vec"][:4])
        assert np.allclose(coeff["obj_mat"][:config_dim, :config_dim], reference["obj_mat"][:config_dim, :config_dim])
        assert np.allclose(coeff["obj_vec"][:config_dim], reference["obj_vec"][:config_dim])


def test_reserved_hand_rows_hold_only_slack(locomanip_svm_models):
    solver = RecordingSolver()
    planner = _planner(locomanip_svm_models, solver=solver)
    planner.setup()
    planner.run_once()
    coeff = solver.coeffs[0]
    config_dim = planner.core.config_dim
    hand_rows = slice(4, 11)
    assert np.allclose(coeff["ineq_mat"][hand_rows, :config_dim], 0.0)
    assert np.allclose(coeff["ineq_vec"][hand_rows], 0.0)
    assert np.allclose(coeff["ineq_mat"][hand_rows, config_dim + 4:], -np.eye(7))


def test_enabled_hand_rows_couple_feet_and_hands(locomanip_svm_models):
    solver = RecordingSolver()
    planner = _planner(locomanip_svm_models, hand_reachability="enabled", solver=solver)
    planner.setup()
    planner.run_once()
    ineq_mat = solver.coeffs[0]["ineq_mat"]
    # hand rows run (hand 0, foot 0), (hand 1, foot 0), (hand 1, foot 1), ...
    hand_block = planner.hand_start_block
    for row, foot_idx, hand_idx in [(6, 1, 1), (7, 1, 2), (10, 3, 3)]:
        assert np.any(ineq_mat[row, foot_idx * 3:(foot_idx + 1) * 3] != 0.0)
        hand_cols = slice((hand_block + hand_idx) * 3, (hand_block + hand_idx + 1) * 3)
        assert np.any(ineq_mat[row, hand_cols] != 0.0)


def test_initial_trajectory_uses_start_poses(locomanip_svm_models):
    planner = _planner(locomanip_svm_models)
    planner.setup()
    feet = np.asarray(planner.current_foot_sample_seq)
    hands = np.asarray(planner.current_hand_sample_seq)
    assert np.allclose(feet[:, 1], [0.1, -0.1, 0.1, -0.1])
    assert np.allclose(hands, [[0.3, 0.3, 0.0]] * 4)
    assert planner.foot_limb(0) == Limb.LEFT_FOOT
    assert planner.foot_limb(3) == Limb.RIGHT_FOOT


def test_hand_reaches_target_without_hand_rows(locomanip_svm_models):
    planner = _planner(locomanip_svm_models, hand_reachability="disabled")
    planner.setup()
    results = [planner.run_once() for _ in range(100)]
    assert all(r.solved for r in results)
    assert results[-1].target_error < 1e-2


def test_hand_rows_pull_feet_along(locomanip_svm_models):
    planner = _planner(locomanip_svm_models, hand_reachability="enabled")
    planner.setup()
    results = [planner.run_once() for _ in range(200)]
    assert all(r.solved for r in results)
    assert results[-1].target_error < 0.5 * results[0].target_error


def test_hand_target_from_buffer(locomanip_svm_models):
    planner = _planner(locomanip_svm_models)
    planner.setup()
    target = np.eye(4)
    target[:2, 3] = [0.5, -0.2]
    planner.set_target(target)
    planner.run_once()
    assert np.allclose(planner.target_hand_sample, [0.5, -0.2, 0.0])
    with pytest.raises(KeyError):
        planner.set_target(target, key="LeftFoot")
    planner.run_once()
    assert np.allclose(planner.target_hand_sample, [0.5, -0.2, 0.0])


def test_missing_foot_classifier_is_fatal(locomanip_svm_models):
    del locomanip_svm_models[Limb.RIGHT_FOOT]
    with pytest.raises(MissingClassifierError):
        RmapPlanningLocomanip(locomanip_svm_models)


def test_missing_hand_classifier_only_fatal_when_enabled(locomanip_svm_models):
    del locomanip_svm_models[Limb.LEFT_HAND]
    _planner(locomanip_svm_models, hand_reachability="reserved").setup()
    planner = _planner(locomanip_svm_models, hand_reachability="enabled")
    with pytest.raises(MissingClassifierError):
        planner.setup()


def test_only_se2_is_supported(locomanip_svm_models):
    with pytest.raises(UnsupportedSamplingSpaceError):
        RmapPlanningLocomanip(locomanip_svm_models, sampling_space="SE3")


def test_output_layout(locomanip_svm_models):
    planner = _planner(locomanip_svm_models, motion_len=3)
    planner.setup()
    output = planner.make_output()
    assert len(output.poses) == 6
    assert len(output.polygons) == 5
    assert len(output.left_polygons) == 3
    assert len(output.right_polygons) == 2
    # trailing polygons are the start stances: foot_limb(3) is right, foot_limb(4) is left
    assert np.allclose(output.polygons[3].mean(axis=0), [0.0, -0.1, 0.0])
    assert np.allclose(output.polygons[4].mean(axis=0), [0.0, 0.1, 0.0])
    assert output.reachable_grid_points is None
