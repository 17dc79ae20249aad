from __future__ import annotations

import math

import numpy as np
import pytest

from diff_rmap.core.grid import loop_grid
from diff_rmap.core.types import Limb
from diff_rmap.optimization.qp import QpSolution
from diff_rmap.reachability.svm import SVMModel


def make_disk_model(center, radius: float) -> SVMModel:
    """
    RBF classifier whose reachable set is the ball of ``radius`` around
    ``center`` in input space: exp(-|x - c|²) - exp(-r²) >= 0.
    """
    return SVMModel(
        support_vectors=np.asarray([center], dtype=float),
        dual_coefs=np.array([1.0]),
        rho=math.exp(-radius * radius),
        kernel_type="rbf",
        gamma=1.0,
    )


def grid_values(rmap, divide_nums, sample_min, sample_max):
    sample_min = np.asarray(sample_min, dtype=float)
    sample_range = np.asarray(sample_max, dtype=float) - sample_min
    values = np.zeros(int(np.prod(divide_nums)))
    for grid_idx, sample in loop_grid(divide_nums, sample_min, sample_range):
        values[grid_idx] = rmap.calc_svm_value(sample)
    return values


class FailingSolver:
    """QP solver stub that always reports failure."""

    def __init__(self):
        self.num_calls = 0

    def solve(self, coeff):
        self.num_calls += 1
        return QpSolution(x=np.full(coeff.dim_var, np.nan), solved=False, status="injected_failure")


class RecordingSolver:
    """QP solver stub that stores a copy of each QP and returns a zero step."""

    def __init__(self):
        self.coeffs = []

    def solve(self, coeff):
        self.coeffs.append({
            "obj_mat": coeff.obj_mat.copy(),
            "obj_vec": coeff.obj_vec.copy(),
            "ineq_mat": coeff.ineq_mat.copy(),
            "ineq_vec": coeff.ineq_vec.copy(),
        })
        return QpSolution(x=np.zeros(coeff.dim_var), solved=True, status="recorded")


@pytest.fixture
def disk_svm_model_se2():
    # reachable: relative step within 0.5 m with no rotation
    return make_disk_model([0.0, 0.0, 1.0, 0.0], 0.5)


@pytest.fixture
def disk_svm_model_r2():
    return make_disk_model([0.0, 0.0], 0.5)


@pytest.fixture
def locomanip_svm_models():
    return {
        Limb.LEFT_FOOT: make_disk_model([0.0, 0.2, 1.0, 0.0], 0.4),
        Limb.RIGHT_FOOT: make_disk_model([0.0, -0.2, 1.0, 0.0], 0.4),
        Limb.LEFT_HAND: make_disk_model([0.3, 0.2, 1.0, 0.0], 0.5),
    }
