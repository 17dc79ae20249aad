# Copyright (c) 2025.
# This file is part of diff-rmap, released under the MIT License.
"""
Locomanipulation planning in SE2.

Plans ``motion_len`` foot waypoints (alternating left / right, starting with
the left foot) and ``motion_len`` hand waypoints in one QP. The decision
vector holds all foot blocks first, then all hand blocks; the hand's last
waypoint is pulled to the target.

Inequality rows:

    "foot"  motion_len rows. Foot i is reachable from foot i - 1 (foot 0 from
            the right-foot start pose), using the left-foot classifier for even
            i and the right-foot classifier for odd i.
    "hand"  depends on ``hand_reachability``:
              disabled  0 rows
              reserved  2·motion_len − 1 rows holding only their slack
              enabled   the same rows linearized: hand i relative to foot i - 1
                        (i > 0) and to foot i

Both adjacency chains are anchored at their limb's start pose.
"""

from __future__ import annotations

import logging
from typing import Dict, Hashable, List, Mapping, Optional

import jax.numpy as jnp
import numpy as np

from diff_rmap.core.errors import MissingClassifierError, UnsupportedSamplingSpaceError
from diff_rmap.core.types import Limb, SamplingSpace
from diff_rmap.optimization.planning_core import QpLayout
from diff_rmap.reachability.rmap import GridSet, ReachabilityFunction
from diff_rmap.reachability.svm import SVMModel
from .base import IterationResult, PlanningOutput, RmapPlanning, foot_polygon, transform_points
from .config import HandReachability, LocomanipConfig

logger = logging.getLogger(__name__)


def hand_row_count(motion_len: int, mode: HandReachability) -> int:
    return 0 if mode == HandReachability.DISABLED else 2 * motion_len - 1


class RmapPlanningLocomanip(RmapPlanning):
    config_class = LocomanipConfig
    default_target_key = "hand"

    def __init__(
        self,
        svm_models: Mapping[Limb, SVMModel],
        grid_sets: Optional[Mapping[Limb, GridSet]] = None,
        solver=None,
        on_publish=None,
        sampling_space=SamplingSpace.SE2,
    ) -> None:
        if SamplingSpace.parse(sampling_space) != SamplingSpace.SE2:
            raise UnsupportedSamplingSpaceError(sampling_space, "RmapPlanningLocomanip")
        super().__init__(SamplingSpace.SE2, solver=solver, on_publish=on_publish)

        grid_sets = grid_sets or {}
        self.rmap_list: Dict[Limb, ReachabilityFunction] = {}
        for limb in Limb:
            svm_model = svm_models.get(limb)
            if svm_model is None:
                if limb == Limb.LEFT_HAND:
                    # only needed when hand rows are enabled; checked in setup()
                    continue
                raise MissingClassifierError(f"No reachability classifier for {limb.value}")
            self.rmap_list[limb] = ReachabilityFunction(self.space.sampling_space, svm_model, grid_sets.get(limb))

        self.start_sample_list: Dict[Limb, jnp.ndarray] = {}
        self.current_foot_sample_seq: Optional[jnp.ndarray] = None
        self.current_hand_sample_seq: Optional[jnp.ndarray] = None
        self.target_hand_sample = self.space.identity_sample

    @staticmethod
    def foot_limb(i: int) -> Limb:
        return Limb.LEFT_FOOT if i % 2 == 0 else Limb.RIGHT_FOOT

    @property
    def hand_start_block(self) -> int:
        return self.config.motion_len

    def _setup(self) -> None:
        cfg = self.config
        num = cfg.motion_len
        if cfg.hand_reachability == HandReachability.ENABLED and Limb.LEFT_HAND not in self.rmap_list:
            raise MissingClassifierError("hand_reachability is enabled but no LeftHand classifier was given")

        self.core.setup(QpLayout(
            config_dim=2 * num * self.space.vel_dim,
            ineq_groups={
                "foot": num,
                "hand": hand_row_count(num, cfg.hand_reachability),
            },
            chains=[(0, num), (self.hand_start_block, num)],
        ))

        self.start_sample_list = {limb: self.pose_to_sample(cfg.start_pose(limb)) for limb in Limb}
        self.current_foot_sample_seq = jnp.stack([
            self.start_sample_list[self.foot_limb(i)] for i in range(num)
        ])
        self.current_hand_sample_seq = jnp.stack([self.start_sample_list[Limb.LEFT_HAND]] * num)
        self.target_hand_sample = self.pose_to_sample(cfg.target_sample_pose)

    def _apply_target(self, key: Hashable, pose: np.ndarray) -> None:
        self.target_hand_sample = self.pose_to_sample(pose)

    def _run_once(self) -> IterationResult:
        cfg = self.config
        core = self.core
        space = self.space
        num = cfg.motion_len
        hand_start = self.hand_start_block
        foot_seq = self.current_foot_sample_seq
        hand_seq = self.current_hand_sample_seq

        # Objective: reach the target with the last hand waypoint
        target_error = np.asarray(space.sample_error(hand_seq[-1], self.target_hand_sample))
        core.reset()
        core.add_target_error(hand_start + num - 1, target_error)
        core.add_damping(float(target_error @ target_error) + cfg.reg_weight)
        core.add_adjacency(
            self.config_from_identity(jnp.concatenate([foot_seq, hand_seq])),
            anchors={
                0: self.config_from_identity(self.start_sample_list[Limb.LEFT_FOOT][None, :]),
                hand_start: self.config_from_identity(self.start_sample_list[Limb.LEFT_HAND][None, :]),
            },
        )

        # Foot-to-foot reachability
        for i in range(num):
            pre_sample = self.start_sample_list[Limb.RIGHT_FOOT] if i == 0 else foot_seq[i - 1]
            rmap = self.rmap_list[self.foot_limb(i)]
            value, row_pre, row_suc = rmap.linearize(pre_sample, foot_seq[i])
            core.set_reachability_row("foot", i, value, None if i == 0 else i - 1, row_pre, i, row_suc)

        # Foot-to-hand reachability
        if cfg.hand_reachability == HandReachability.ENABLED:
            rmap = self.rmap_list[Limb.LEFT_HAND]
            row = 0
            for i in range(num):
                for foot_idx in ((i - 1, i) if i > 0 else (i,)):
                    value, row_pre, row_suc = rmap.linearize(foot_seq[foot_idx], hand_seq[i])
                    core.set_reachability_row("hand", row, value, foot_idx, row_pre, hand_start + i, row_suc)
                    row += 1

        vel_all, solved = core.solve()
        if solved:
            samples = self.integrate_seq(jnp.concatenate([foot_seq, hand_seq]), vel_all)
            self.current_foot_sample_seq = samples[:num]
            self.current_hand_sample_seq = samples[num:]
        return IterationResult(solved=solved, target_error=float(np.linalg.norm(target_error)))

    # --- Output ---

    def foot_reachable_grid_points(self) -> Optional[List[np.ndarray]]:
        """Per foot waypoint, the reachable footprint around its predecessor."""
        num = self.config.motion_len
        if any(self.rmap_list[self.foot_limb(i)].grid_set is None for i in range(min(num, 2))):
            return None
        space = self.space
        foot_seq = self.current_foot_sample_seq
        points_list = []
        for i in range(num):
            pre_sample = self.start_sample_list[Limb.RIGHT_FOOT] if i == 0 else foot_seq[i - 1]
            grid_set = self.rmap_list[self.foot_limb(i)].grid_set
            slice_sample = space.rel_sample(pre_sample, foot_seq[i])
            points = grid_set.reachable_slice_points(np.asarray(slice_sample), self.config.svm_thre, (0, 1))
            points[:, 2] = 0.0
            points_list.append(transform_points(self.sample_to_pose(pre_sample), points))
        return points_list

    def foot_grid_cell_scale(self) -> Optional[np.ndarray]:
        grid_set = self.rmap_list[Limb.LEFT_FOOT].grid_set
        return None if grid_set is None else grid_set.cell_scale

    def make_output(self) -> PlanningOutput:
        cfg = self.config
        num = cfg.motion_len
        foot_poses = [self.sample_to_pose(s) for s in self.current_foot_sample_seq]
        hand_poses = [self.sample_to_pose(s) for s in self.current_hand_sample_seq]

        # Planned feet followed by the two start stances
        polygon_poses = foot_poses + [cfg.start_pose(self.foot_limb(i)) for i in (num, num + 1)]
        polygons = [foot_polygon(pose, cfg.foot_vertices) for pose in polygon_poses]
        return PlanningOutput(
            poses=foot_poses + hand_poses,
            polygons=polygons,
            left_polygons=[p for i, p in enumerate(polygons) if i % 2 == 0],
            right_polygons=[p for i, p in enumerate(polygons) if i % 2 == 1],
            reachable_grid_points=self.foot_reachable_grid_points(),
            reachable_grid_cell_scale=self.foot_grid_cell_scale(),
        )
