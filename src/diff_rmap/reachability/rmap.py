# Copyright (c) 2025.
# This file is part of diff-rmap, released under the MIT License.
"""
Differentiable reachability map.

This module turns a trained :class:`~diff_rmap.reachability.svm.SVMModel`
into a function over *samples* of a sampling space and differentiates it with
respect to the sample's *velocity*:

    value(s)  = f(sample_to_input(s))
    grad(s)   = (∂ input / ∂ vel)ᵀ · ∂f/∂input

The first factor is :meth:`SampleSpace.input_to_vel_mat` (forward-mode
Jacobian of ``sample_to_input(s ⊕ v)`` at ``v = 0``), the second the
closed-form kernel derivative. Using the velocity as differentiation variable
keeps the gradient in the same tangent space in which the planner integrates
its QP solution.

Classes
-------
ReachabilityFunction
    JIT-compiled value / gradient for one classifier and one sampling space,
    plus :meth:`ReachabilityFunction.linearize`, which returns the value and
    the gradient rows of a *relative* sample with respect to both the
    predecessor and the successor velocity. This is the building block of
    every reachability row in the planning QP.

GridSet
    Optional precomputed reachable-set grid (one decision value per cell),
    used for rendering reachable footprints. Read-only once built.

Notes
-----
A ReachabilityFunction only reads its model, so one SVMModel may back
several functions (e.g. one per limb in locomanipulation).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import jax
import jax.numpy as jnp
import numpy as np

from diff_rmap.core.errors import ConfigurationError, MissingClassifierError
from diff_rmap.core.grid import calc_grid_cube_scale, grid_divide_ratios_to_idxs, grid_idxs_to_linear, loop_grid
from diff_rmap.core.sampling import SampleSpace, get_sample_space
from diff_rmap.core.types import SamplingSpace
from .svm import SVMModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class GridSet:
    """Reachable-set grid: bounding box, divide counts and per-cell values."""
    sampling_space: SamplingSpace
    sample_min: np.ndarray
    sample_max: np.ndarray
    divide_nums: Tuple[int, ...]
    values: np.ndarray

    def __post_init__(self) -> None:
        space = get_sample_space(self.sampling_space)
        sample_min = np.asarray(self.sample_min, dtype=float)
        sample_max = np.asarray(self.sample_max, dtype=float)
        divide_nums = tuple(int(n) for n in self.divide_nums)
        values = np.array(self.values, dtype=float).ravel()

        if sample_min.shape != (space.sample_dim,) or sample_max.shape != (space.sample_dim,):
            raise ConfigurationError(
                f"GridSet bounds must have {space.sample_dim} entries for {space.sampling_space}"
            )
        if len(divide_nums) != space.sample_dim or min(divide_nums) < 1:
            raise ConfigurationError(f"GridSet divide_nums invalid: {divide_nums}")
        expected = int(np.prod(divide_nums))
        if values.size != expected:
            raise ConfigurationError(
                f"GridSet has {values.size} values but divide_nums {divide_nums} require {expected}"
            )
        if np.any(sample_max < sample_min):
            raise ConfigurationError("GridSet sample_max must not be below sample_min")

        values.setflags(write=False)
        object.__setattr__(self, "sampling_space", space.sampling_space)
        object.__setattr__(self, "sample_min", sample_min)
        object.__setattr__(self, "sample_max", sample_max)
        object.__setattr__(self, "divide_nums", divide_nums)
        object.__setattr__(self, "values", values)

    @property
    def sample_range(self) -> np.ndarray:
        return self.sample_max - self.sample_min

    @property
    def cell_scale(self) -> np.ndarray:
        """Extent of one cell along each sample dimension."""
        return calc_grid_cube_scale(self.divide_nums, self.sample_range)

    def sample_to_idxs(self, sample) -> np.ndarray:
        ratios = (np.asarray(sample, dtype=float) - self.sample_min) / self.sample_range
        return grid_divide_ratios_to_idxs(ratios, self.divide_nums)

    def value_at(self, sample) -> float:
        """Value of the cell containing ``sample`` (clamped into the box)."""
        return float(self.values[grid_idxs_to_linear(self.sample_to_idxs(sample), self.divide_nums)])

    def reachable_slice_points(
        self,
        slice_sample,
        threshold: float,
        slice_dims: Optional[Sequence[int]] = None,
    ) -> np.ndarray:
        """
        Cloud positions of reachable cells in the slice through ``slice_sample``.

        Dimensions in ``slice_dims`` (default: the first two) are iterated;
        the remaining ones stay at the cell containing ``slice_sample``.

        :returns: (k, 3) array of points in the grid's local frame.
        """
        space = get_sample_space(self.sampling_space)
        if slice_dims is None:
            slice_dims = tuple(range(min(2, space.sample_dim)))
        grid_loop = loop_grid(
            self.divide_nums,
            self.sample_min,
            self.sample_range,
            restricted_dims=slice_dims,
            fixed_idxs=self.sample_to_idxs(slice_sample),
        )
        samples = [sample for grid_idx, sample in grid_loop if self.values[grid_idx] > threshold]
        if not samples:
            return np.zeros((0, 3))
        return np.array(jax.vmap(space.sample_to_cloud_pos)(jnp.asarray(np.stack(samples))))


class ReachabilityFunction:
    """
    Reachability value and gradient over samples of one sampling space.

    :param sampling_space: Sampling space of the classifier's training samples.
    :param svm_model: Trained classifier; ``None`` is a fatal error.
    :param grid_set: Optional reachable-set grid for rendering.
    :raises MissingClassifierError: if ``svm_model`` is ``None``.
    :raises ConfigurationError: if dimensions do not match the space.
    """

    def __init__(
        self,
        sampling_space,
        svm_model: Optional[SVMModel],
        grid_set: Optional[GridSet] = None,
    ) -> None:
        self.space: SampleSpace = get_sample_space(sampling_space)
        if svm_model is None:
            raise MissingClassifierError(
                f"A reachability classifier is required for {self.space.sampling_space} planning"
            )
        if svm_model.input_dim != self.space.input_dim:
            raise ConfigurationError(
                f"Classifier input dimension {svm_model.input_dim} does not match "
                f"{self.space.sampling_space} input dimension {self.space.input_dim}"
            )
        if grid_set is not None and grid_set.sampling_space != self.space.sampling_space:
            raise ConfigurationError(
                f"GridSet is for {grid_set.sampling_space}, expected {self.space.sampling_space}"
            )
        self.svm_model = svm_model
        self.grid_set = grid_set

        self._value_fn = jax.jit(self._value)
        self._grad_fn = jax.jit(self._grad)
        self._linearize_fn = jax.jit(self._linearize, static_argnums=2)
        logger.debug(
            "ReachabilityFunction(%s): %d support vectors, kernel=%s",
            self.space.sampling_space, svm_model.num_support_vectors, svm_model.kernel_type,
        )

    # --- Pure functions (traced by jax.jit) ---

    def _value(self, sample: jnp.ndarray) -> jnp.ndarray:
        return self.svm_model.decision_value(self.space.sample_to_input(sample))

    def _grad(self, sample: jnp.ndarray) -> jnp.ndarray:
        input_grad = self.svm_model.decision_grad(self.space.sample_to_input(sample))
        return self.space.input_to_vel_mat(sample).T @ input_grad

    def _linearize(self, pre_sample, suc_sample, mirror: bool):
        space = self.space
        rel = space.rel_sample(pre_sample, suc_sample)
        mat_pre = space.rel_vel_to_vel_mat(pre_sample, suc_sample, False)
        mat_suc = space.rel_vel_to_vel_mat(pre_sample, suc_sample, True)
        if mirror:
            rel = space.mirror_sample(rel)
            mat_pre = space.mirror_vel_mat(mat_pre)
            mat_suc = space.mirror_vel_mat(mat_suc)
        grad = self._grad(rel)
        return self._value(rel), grad @ mat_pre, grad @ mat_suc

    # --- Public API ---

    def calc_svm_value(self, sample) -> float:
        """Signed decision value at ``sample`` (positive side = reachable)."""
        return float(self._value_fn(jnp.asarray(sample)))

    def calc_svm_grad(self, sample) -> jnp.ndarray:
        """Gradient of the decision value w.r.t. the sample velocity, shape (vel_dim,)."""
        return self._grad_fn(jnp.asarray(sample))

    def is_reachable(self, sample, threshold: float = 0.0) -> bool:
        return self.calc_svm_value(sample) >= threshold

    def linearize(
        self,
        pre_sample,
        suc_sample,
        mirror: bool = False,
    ) -> Tuple[float, np.ndarray, np.ndarray]:
        """
        First-order model of the reachability of ``rel_sample(pre, suc)``:

            value(rel(pre ⊕ v_pre, suc ⊕ v_suc))
                ≈ value + row_pre · v_pre + row_suc · v_suc

        :param mirror: Evaluate the mirrored relative sample (odd steps of an
            alternating-stance sequence).
        :returns: ``(value, row_pre, row_suc)``.
        """
        if mirror and not self.space.supports_mirror:
            raise ConfigurationError(f"{self.space.sampling_space} does not support stance mirroring")
        value, row_pre, row_suc = self._linearize_fn(
            jnp.asarray(pre_sample), jnp.asarray(suc_sample), bool(mirror)
        )
        return float(value), np.asarray(row_pre), np.asarray(row_suc)
