# Copyright (c) 2025.
# This file is part of diff-rmap, released under the MIT License.

import logging
import math

import matplotlib.pyplot as plt
import numpy as np

from diff_rmap.core.grid import loop_grid
from diff_rmap.planning import create_rmap_planning
from diff_rmap.reachability.rmap import GridSet, ReachabilityFunction
from diff_rmap.reachability.svm import SVMModel
from diff_rmap.world.visualization import plot_planning_output


def build_step_classifier(step_length: float = 0.25, lateral: float = 0.2, radius: float = 0.2) -> SVMModel:
    """
    Toy left-to-right step classifier: the right foot is reachable inside a
    disk of ``radius`` around (step_length, -lateral) with no yaw change.
    """
    return SVMModel(
        support_vectors=np.array([[step_length, -lateral, 1.0, 0.0]]),
        dual_coefs=np.array([1.0]),
        rho=math.exp(-radius * radius),
        kernel_type="rbf",
        gamma=1.0,
    )


def build_grid_set(svm_model: SVMModel) -> GridSet:
    rmap = ReachabilityFunction("SE2", svm_model)
    divide_nums = (30, 30, 9)
    sample_min = np.array([-0.6, -0.6, -math.pi])
    sample_range = np.array([1.2, 1.2, 2.0 * math.pi])
    values = np.zeros(int(np.prod(divide_nums)))
    for grid_idx, sample in loop_grid(divide_nums, sample_min, sample_range):
        values[grid_idx] = rmap.calc_svm_value(sample)
    return GridSet("SE2", sample_min, sample_min + sample_range, divide_nums, values)


def run_experiment(num_iters: int = 300):
    svm_model = build_step_classifier()
    planner = create_rmap_planning("footstep", "SE2", svm_model, build_grid_set(svm_model))
    planner.configure({
        "footstep_num": 6,
        "alternate_lr": True,
        "initial_sample_pose": {"translation": [0.2, -0.2]},
        "target_sample_pose": {"translation": [1.2, 0.3], "yaw": 0.3},
    })
    planner.setup()

    print("=== Footstep planning (SE2, alternating feet) ===")
    for i in range(num_iters):
        result = planner.run_once()
        if i % 50 == 0:
            print(f"iter {i:4d}: solved={result.solved} target_error={result.target_error:.4f}")

    print("\n--- Final footsteps ---")
    for i, sample in enumerate(planner.current_sample_seq):
        print(f"step {i}: {np.round(np.asarray(sample), 3)}")

    plot_planning_output(planner.make_output(), title="Footstep planning", show=True)
    plt.close("all")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_experiment()
