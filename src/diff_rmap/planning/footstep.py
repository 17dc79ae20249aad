# Copyright (c) 2025.
# This file is part of diff-rmap, released under the MIT License.
"""
Footstep-sequence planning.

``footstep_num`` samples are optimized jointly. Step ``i`` must be reachable
from step ``i - 1`` (step 0 from the identity pose), and the last step is
pulled toward the target. With ``alternate_lr`` the classifier describes the
right foot relative to the left foot; odd steps are mirrored before being
evaluated, so one classifier serves both stances.
"""

from __future__ import annotations

import logging
from typing import Hashable, List, Optional

import jax.numpy as jnp
import numpy as np

from diff_rmap.core.errors import ConfigurationError
from diff_rmap.optimization.planning_core import QpLayout
from diff_rmap.reachability.rmap import GridSet, ReachabilityFunction
from diff_rmap.reachability.svm import SVMModel
from .base import IterationResult, PlanningOutput, RmapPlanning, foot_polygon, transform_points
from .config import FootstepConfig

logger = logging.getLogger(__name__)

FOOTSTEP_DAMPING_EPS = 1e-3


class RmapPlanningFootstep(RmapPlanning):
    config_class = FootstepConfig
    default_target_key = "target"

    def __init__(
        self,
        sampling_space,
        svm_model: Optional[SVMModel],
        grid_set: Optional[GridSet] = None,
        solver=None,
        on_publish=None,
    ) -> None:
        super().__init__(sampling_space, solver=solver, on_publish=on_publish)
        self.rmap = ReachabilityFunction(self.space.sampling_space, svm_model, grid_set)
        self.current_sample_seq: Optional[jnp.ndarray] = None
        self.target_sample = self.space.identity_sample

    def _is_mirrored(self, i: int) -> bool:
        return self.config.alternate_lr and i % 2 == 1

    def _setup(self) -> None:
        cfg = self.config
        if cfg.alternate_lr and not self.space.supports_mirror:
            raise ConfigurationError(f"alternate_lr is not supported in {self.space.sampling_space}")

        num = cfg.footstep_num
        self.core.setup(QpLayout(
            config_dim=num * self.space.vel_dim,
            ineq_groups={"reachability": num},
            chains=[(0, num)],
        ))

        # Each step is placed at initial_sample_pose relative to the previous one.
        accum_pose = np.eye(4)
        samples = []
        for i in range(num):
            step_pose = cfg.initial_sample_pose
            if self._is_mirrored(i):
                step_pose = np.asarray(self.space.mirror_pose(jnp.asarray(step_pose)))
            accum_pose = accum_pose @ step_pose
            samples.append(self.pose_to_sample(accum_pose))
        self.current_sample_seq = jnp.stack(samples)
        self.target_sample = self.pose_to_sample(cfg.target_sample_pose)

    def _apply_target(self, key: Hashable, pose: np.ndarray) -> None:
        self.target_sample = self.pose_to_sample(pose)

    def _run_once(self) -> IterationResult:
        cfg = self.config
        core = self.core
        space = self.space
        num = cfg.footstep_num
        samples = self.current_sample_seq

        # Objective: reach the target with the last step
        target_error = np.asarray(space.sample_error(samples[-1], self.target_sample))
        core.reset()
        core.add_target_error(num - 1, target_error)
        core.add_damping(float(target_error @ target_error) + FOOTSTEP_DAMPING_EPS)
        core.add_adjacency(self.config_from_identity(samples))

        # Inequalities: every step stays reachable from its predecessor
        identity = space.identity_sample
        for i in range(num):
            pre_sample = identity if i == 0 else samples[i - 1]
            value, row_pre, row_suc = self.rmap.linearize(pre_sample, samples[i], self._is_mirrored(i))
            core.set_reachability_row(
                "reachability", i, value, None if i == 0 else i - 1, row_pre, i, row_suc
            )

        vel_all, solved = core.solve()
        if solved:
            self.current_sample_seq = self.integrate_seq(samples, vel_all)
        return IterationResult(solved=solved, target_error=float(np.linalg.norm(target_error)))

    # --- Output ---

    def footstep_poses(self) -> List[np.ndarray]:
        """``footstep_num + 1`` poses, starting with the identity."""
        return [np.eye(4)] + [self.sample_to_pose(s) for s in self.current_sample_seq]

    def reachable_grid_points(self) -> Optional[List[np.ndarray]]:
        """Per step, the reachable footprint around its predecessor (world frame)."""
        grid_set = self.rmap.grid_set
        if grid_set is None:
            return None
        space = self.space
        samples = self.current_sample_seq
        poses = self.footstep_poses()
        points_list = []
        for i in range(samples.shape[0]):
            slice_sample = samples[0] if i == 0 else space.rel_sample(samples[i - 1], samples[i])
            if self._is_mirrored(i):
                slice_sample = space.mirror_sample(slice_sample)
            points = grid_set.reachable_slice_points(np.asarray(slice_sample), self.config.svm_thre)
            points[:, 2] = 0.0
            if self._is_mirrored(i):
                points[:, 1] *= -1.0
            points_list.append(transform_points(poses[i], points))
        return points_list

    def make_output(self) -> PlanningOutput:
        poses = self.footstep_poses()
        grid_set = self.rmap.grid_set
        polygons = [foot_polygon(pose, self.config.foot_vertices) for pose in poses]
        left_polygons = []
        right_polygons = []
        if self.config.alternate_lr:
            left_polygons = [p for i, p in enumerate(polygons) if i % 2 == 1]
            right_polygons = [p for i, p in enumerate(polygons) if i % 2 == 0]
        return PlanningOutput(
            poses=poses,
            polygons=polygons,
            left_polygons=left_polygons,
            right_polygons=right_polygons,
            reachable_grid_points=self.reachable_grid_points(),
            reachable_grid_cell_scale=None if grid_set is None else grid_set.cell_scale,
        )
