# Copyright (c) 2025.
# This file is part of diff-rmap, released under the MIT License.

import math
import time

import jax
import numpy as np

from diff_rmap.planning import create_rmap_planning
from diff_rmap.reachability.svm import SVMModel


def random_classifier(num_sv: int = 200, seed: int = 0) -> SVMModel:
    """RBF classifier with ``num_sv`` random SE2 support vectors."""
    key_pos, key_theta, key_coef = jax.random.split(jax.random.PRNGKey(seed), 3)
    pos = np.asarray(jax.random.uniform(key_pos, (num_sv, 2), minval=-0.6, maxval=0.6))
    theta = np.asarray(jax.random.uniform(key_theta, (num_sv,), minval=-math.pi, maxval=math.pi))
    support_vectors = np.column_stack([pos, np.cos(theta), np.sin(theta)])
    coefs = np.asarray(jax.random.normal(key_coef, (num_sv,)))
    return SVMModel(
        support_vectors=support_vectors,
        dual_coefs=coefs,
        rho=0.0,
        kernel_type="rbf",
        gamma=2.0,
    )


def run_benchmark(footstep_num: int = 10, num_sv: int = 200, num_iters: int = 100):
    print("=== Footstep run_once Benchmark ===")
    print(f"footstep_num = {footstep_num}, num_sv = {num_sv}, num_iters = {num_iters}")

    planner = create_rmap_planning("footstep", "SE2", random_classifier(num_sv))
    planner.configure({
        "footstep_num": footstep_num,
        "initial_sample_pose": {"translation": [0.1, 0.0]},
        "target_sample_pose": {"translation": [1.5, 0.5], "yaw": 0.5},
    })
    planner.setup()

    # Warmup (forces compilation of the jitted linearization)
    planner.run_once()

    t0 = time.time()
    num_solved = 0
    for _ in range(num_iters):
        num_solved += planner.run_once().solved
    t1 = time.time()

    elapsed = (t1 - t0) * 1000.0
    print(f"Elapsed time: {elapsed:.3f} ms ({elapsed / num_iters:.3f} ms / iteration)")
    print(f"solved {num_solved} / {num_iters}")


if __name__ == "__main__":
    # Example:
    #   python3 benchmarks/bench_run_once.py
    run_benchmark(footstep_num=10, num_sv=200)
    run_benchmark(footstep_num=30, num_sv=200)
