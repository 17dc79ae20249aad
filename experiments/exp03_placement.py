# Copyright (c) 2025.
# This file is part of diff-rmap, released under the MIT License.

import logging
import math

import jax
import numpy as np

from diff_rmap.core.math3d import planar_transform
from diff_rmap.planning import IKResult, create_rmap_planning
from diff_rmap.reachability.svm import SVMModel


class PlanarArmIK:
    """
    Two-link planar arm mounted at the placement pose. Solved by damped
    least squares from a random initial guess, so retries with new keys can
    escape a bad start.
    """

    def __init__(self, link_lengths=(0.35, 0.3)):
        self.link_lengths = np.asarray(link_lengths, dtype=float)

    def _forward(self, q):
        l1, l2 = self.link_lengths
        return np.array([
            l1 * math.cos(q[0]) + l2 * math.cos(q[0] + q[1]),
            l1 * math.sin(q[0]) + l2 * math.sin(q[0] + q[1]),
        ])

    def _jacobian(self, q):
        l1, l2 = self.link_lengths
        s1, c1 = math.sin(q[0]), math.cos(q[0])
        s12, c12 = math.sin(q[0] + q[1]), math.cos(q[0] + q[1])
        return np.array([
            [-l1 * s1 - l2 * s12, -l2 * s12],
            [l1 * c1 + l2 * c12, l2 * c12],
        ])

    def solve(self, placement_pose, reaching_poses, key, loop_num):
        # only the first reaching pose is handled by this toy arm
        target = (np.linalg.inv(placement_pose) @ reaching_poses[0])[:2, 3]
        q = np.asarray(jax.random.uniform(key, (2,), minval=-math.pi, maxval=math.pi))
        for _ in range(loop_num):
            err = target - self._forward(q)
            jac = self._jacobian(q)
            q = q + jac.T @ np.linalg.solve(jac @ jac.T + 1e-4 * np.eye(2), err)
        pos_error = float(np.linalg.norm(target - self._forward(q)))
        return IKResult(joint_pos=q, pos_error=pos_error, ori_error=0.0)


def run_experiment(num_iters: int = 200):
    # reachable: within 0.6 m of the base
    svm_model = SVMModel(
        support_vectors=np.zeros((1, 2)),
        dual_coefs=np.array([1.0]),
        rho=math.exp(-0.36),
        kernel_type="rbf",
        gamma=1.0,
    )
    planner = create_rmap_planning("placement", "R2", svm_model, ik_solver=PlanarArmIK())
    planner.configure({
        "reaching_num": 2,
        "target_sample_pose": {"translation": [1.0, 0.2]},
        "ik_trial_num": 5,
    })
    planner.setup()
    planner.set_reaching_target(1, planar_transform(0.9, -0.3, 0.0))

    print("=== Placement planning (R2) ===")
    for i in range(num_iters):
        result = planner.run_once()
        if i % 25 == 0:
            print(f"iter {i:4d}: solved={result.solved} target_error={result.target_error:.4f}")

    print("\nplacement:", np.round(np.asarray(planner.current_placement_sample), 3))
    for i, sample in enumerate(planner.current_reaching_samples):
        print(f"reaching {i}:", np.round(np.asarray(sample), 3))
    if planner.ik_result is None:
        print("IK: no trial within threshold")
    else:
        print(f"IK: joints={np.round(planner.ik_result.joint_pos, 3)} pos_error={planner.ik_result.pos_error:.2e}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_experiment()
