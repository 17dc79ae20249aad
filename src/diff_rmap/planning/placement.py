# Copyright (c) 2025.
# This file is part of diff-rmap, released under the MIT License.
"""
Manipulator placement planning.

Optimizes one placement sample (where to put the robot base) together with
``reaching_num`` reaching samples (end-effector goals). Each reaching sample is
pulled to its target, the placement is weakly pulled to its own target, and
every reaching sample must stay reachable from the placement.

After each QP step an optional IK collaborator can check the plan with the
robot's actual kinematics; the first of up to ``ik_trial_num`` randomized
trials whose errors are below ``ik_error_thre`` is kept.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Hashable, List, Optional, Protocol, Sequence

import jax
import jax.numpy as jnp
import numpy as np

from diff_rmap.optimization.planning_core import QpLayout
from diff_rmap.reachability.rmap import GridSet, ReachabilityFunction
from diff_rmap.reachability.svm import SVMModel
from .base import IterationResult, PlanningOutput, RmapPlanning
from .config import PlacementConfig

logger = logging.getLogger(__name__)

PLACEMENT_BLOCK = 0


@dataclass
class IKResult:
    joint_pos: Any
    pos_error: float    # [m]
    ori_error: float    # [rad]

    def within(self, threshold: float) -> bool:
        return self.pos_error < threshold and self.ori_error < threshold


class IKSolver(Protocol):
    def solve(
        self,
        placement_pose: np.ndarray,
        reaching_poses: Sequence[np.ndarray],
        key: jax.Array,
        loop_num: int,
    ) -> IKResult:
        ...


class RmapPlanningPlacement(RmapPlanning):
    """
    Target keys for :meth:`set_target`: ``"placement"`` (default) and
    ``("reaching", index)``.
    """

    config_class = PlacementConfig
    default_target_key = "placement"

    def __init__(
        self,
        sampling_space,
        svm_model: Optional[SVMModel],
        grid_set: Optional[GridSet] = None,
        solver=None,
        on_publish=None,
        ik_solver: Optional[IKSolver] = None,
    ) -> None:
        super().__init__(sampling_space, solver=solver, on_publish=on_publish)
        self.rmap = ReachabilityFunction(self.space.sampling_space, svm_model, grid_set)
        self.ik_solver = ik_solver
        self.ik_result: Optional[IKResult] = None

        identity = self.space.identity_sample
        self.current_placement_sample = identity
        self.target_placement_sample = identity
        self.current_reaching_samples: Optional[jnp.ndarray] = None
        self.target_reaching_samples: Optional[jnp.ndarray] = None
        self._ik_key = jax.random.PRNGKey(0)

    def _setup(self) -> None:
        cfg = self.config
        num = cfg.reaching_num
        vel_dim = self.space.vel_dim
        self.core.setup(QpLayout(
            config_dim=(1 + num) * vel_dim,
            ineq_groups={"reachability": num},
        ))

        self.current_placement_sample = self.pose_to_sample(cfg.initial_sample_pose)
        self.target_placement_sample = self.pose_to_sample(cfg.initial_sample_pose)
        target = self.pose_to_sample(cfg.target_sample_pose)
        self.current_reaching_samples = jnp.stack([self.current_placement_sample] * num)
        self.target_reaching_samples = jnp.stack([target] * num)
        self._ik_key = jax.random.PRNGKey(cfg.random_seed)
        self.ik_result = None

    def set_reaching_target(self, index: int, pose) -> None:
        self.set_target(pose, key=("reaching", index))

    def check_target_key(self, key: Hashable) -> None:
        if key == "placement":
            return
        if isinstance(key, tuple) and len(key) == 2 and key[0] == "reaching":
            index = int(key[1])
            if not 0 <= index < self.config.reaching_num:
                raise IndexError(f"Reaching index {index} out of range [0, {self.config.reaching_num})")
            return
        raise KeyError(f"Unknown target '{key}' for placement planning")

    def _apply_target(self, key: Hashable, pose: np.ndarray) -> None:
        if key == "placement":
            self.target_placement_sample = self.pose_to_sample(pose)
            return
        # reaching_num may have shrunk since the target was queued
        self.check_target_key(key)
        self.target_reaching_samples = self.target_reaching_samples.at[int(key[1])].set(
            self.pose_to_sample(pose)
        )

    def _run_once(self) -> IterationResult:
        cfg = self.config
        core = self.core
        space = self.space
        num = cfg.reaching_num
        placement = self.current_placement_sample
        reaching = self.current_reaching_samples

        core.reset()
        errors = [
            np.asarray(space.sample_error(reaching[k], self.target_reaching_samples[k]))
            for k in range(num)
        ]
        for k, error in enumerate(errors):
            core.add_target_error(1 + k, error)
        core.add_target_error(
            PLACEMENT_BLOCK,
            np.asarray(space.sample_error(placement, self.target_placement_sample)),
            weight=cfg.placement_weight,
        )
        sq_error = float(sum(e @ e for e in errors))
        core.add_damping(sq_error + cfg.reg_weight)

        for k in range(num):
            value, row_pre, row_suc = self.rmap.linearize(placement, reaching[k])
            core.set_reachability_row("reachability", k, value, PLACEMENT_BLOCK, row_pre, 1 + k, row_suc)

        vel_all, solved = core.solve()
        if solved:
            samples = self.integrate_seq(jnp.concatenate([placement[None, :], reaching]), vel_all)
            self.current_placement_sample = samples[0]
            self.current_reaching_samples = samples[1:]
            if self.ik_solver is not None:
                self.ik_result = self.solve_ik()
        return IterationResult(solved=solved, target_error=float(np.sqrt(sq_error)))

    def solve_ik(self) -> Optional[IKResult]:
        """
        Run the IK collaborator with fresh random keys until one trial meets
        ``ik_error_thre``.

        :returns: The accepted result, or ``None`` when every trial failed.
        """
        cfg = self.config
        placement_pose = self.sample_to_pose(self.current_placement_sample)
        reaching_poses = self.reaching_poses()
        for trial in range(cfg.ik_trial_num):
            self._ik_key, subkey = jax.random.split(self._ik_key)
            result = self.ik_solver.solve(placement_pose, reaching_poses, subkey, cfg.ik_loop_num)
            if result.within(cfg.ik_error_thre):
                logger.debug("IK accepted at trial %d", trial)
                return result
        logger.debug(
            "IK did not reach %.3g within %d trials", cfg.ik_error_thre, cfg.ik_trial_num
        )
        return None

    def reaching_poses(self) -> List[np.ndarray]:
        return [self.sample_to_pose(s) for s in self.current_reaching_samples]

    def make_output(self) -> PlanningOutput:
        return PlanningOutput(
            poses=[self.sample_to_pose(self.current_placement_sample)] + self.reaching_poses(),
            ik_result=self.ik_result,
        )
