# Copyright (c) 2025.
# This file is part of diff-rmap, released under the MIT License.

import logging
import math

import matplotlib.pyplot as plt
import numpy as np

from diff_rmap.core.types import Limb
from diff_rmap.planning import create_rmap_planning
from diff_rmap.reachability.svm import SVMModel
from diff_rmap.world.visualization import plot_planning_output


def disk_classifier(center_xy, radius: float) -> SVMModel:
    return SVMModel(
        support_vectors=np.array([[center_xy[0], center_xy[1], 1.0, 0.0]]),
        dual_coefs=np.array([1.0]),
        rho=math.exp(-radius * radius),
        kernel_type="rbf",
        gamma=1.0,
    )


def run_experiment(hand_reachability: str = "enabled", num_iters: int = 300):
    svm_models = {
        Limb.LEFT_FOOT: disk_classifier([0.15, 0.2], 0.25),     # left foot relative to right foot
        Limb.RIGHT_FOOT: disk_classifier([0.15, -0.2], 0.25),   # right foot relative to left foot
        Limb.LEFT_HAND: disk_classifier([0.3, 0.2], 0.4),       # hand relative to a foot
    }
    outputs = []
    planner = create_rmap_planning("locomanip", "SE2", svm_models, on_publish=outputs.append)
    planner.configure({
        "motion_len": 6,
        "hand_reachability": hand_reachability,
        "publish_interval": 100,
        "loop_rate": 1000.0,
        "initial_sample_pose_list": {
            "LeftFoot": {"translation": [0.0, 0.1]},
            "RightFoot": {"translation": [0.0, -0.1]},
            "LeftHand": {"translation": [0.3, 0.3]},
        },
        "target_sample_pose": {"translation": [1.2, 0.5], "yaw": 0.0},
    })

    print(f"=== Locomanipulation planning (hand_reachability={hand_reachability}) ===")
    num = planner.run_loop(max_iters=num_iters)
    print(f"ran {num} iterations, published {len(outputs)} snapshots")

    print("\n--- Final feet ---")
    for i, sample in enumerate(planner.current_foot_sample_seq):
        print(f"{planner.foot_limb(i).value:>9s} {i}: {np.round(np.asarray(sample), 3)}")
    print("\n--- Final hand ---")
    for i, sample in enumerate(planner.current_hand_sample_seq):
        print(f"LeftHand {i}: {np.round(np.asarray(sample), 3)}")

    plot_planning_output(planner.make_output(), title="Locomanipulation planning", show=True)
    plt.close("all")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_experiment()
