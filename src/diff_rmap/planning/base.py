# Copyright (c) 2025.
# This file is part of diff-rmap, released under the MIT License.
"""
Common machinery of the reachability-map planners.

A planner goes through

    constructed -> configure(mapping)   (optional, any number of times)
                -> setup()              (fixes QP layout and initial trajectory)
                -> run_once() ...       (one QP solve + integration each)

:meth:`RmapPlanning.run_loop` wraps ``setup`` and repeated ``run_once`` calls
in a fixed-rate loop that can be stopped from another thread through a
``threading.Event``. Target updates from other threads go through a
:class:`TargetBuffer` and are applied at the start of the next iteration, so
one QP never sees half of an update.

Output is delivered through an optional ``on_publish`` callback that receives
a :class:`PlanningOutput`; planning itself has no I/O side effects.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, List, Optional

import jax
import jax.numpy as jnp
import numpy as np

from diff_rmap.core.sampling import SampleSpace, get_sample_space
from diff_rmap.optimization.planning_core import QpPlanningCore
from diff_rmap.optimization.qp import QpSolver
from .config import RmapPlanningConfig

logger = logging.getLogger(__name__)


class TargetBuffer:
    """Lock-protected latest-value store for asynchronously updated targets."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: Dict[Hashable, np.ndarray] = {}

    def put(self, key: Hashable, pose) -> None:
        pose = np.array(pose, dtype=float)
        with self._lock:
            self._pending[key] = pose

    def drain(self) -> Dict[Hashable, np.ndarray]:
        with self._lock:
            pending, self._pending = self._pending, {}
        return pending


@dataclass
class PlanningOutput:
    """Snapshot of a planner's trajectory for display."""
    poses: List[np.ndarray]
    polygons: List[np.ndarray] = field(default_factory=list)
    left_polygons: List[np.ndarray] = field(default_factory=list)
    right_polygons: List[np.ndarray] = field(default_factory=list)
    reachable_grid_points: Optional[List[np.ndarray]] = None
    reachable_grid_cell_scale: Optional[np.ndarray] = None
    ik_result: Any = None


@dataclass
class IterationResult:
    solved: bool
    target_error: float


def foot_polygon(pose, vertices) -> np.ndarray:
    """Foot contact polygon (k, 3) of ``vertices`` placed at ``pose``."""
    pose = np.asarray(pose, dtype=float)
    return np.asarray(vertices, dtype=float) @ pose[:3, :3].T + pose[:3, 3]


def transform_points(pose, points) -> np.ndarray:
    pose = np.asarray(pose, dtype=float)
    return np.asarray(points, dtype=float).reshape(-1, 3) @ pose[:3, :3].T + pose[:3, 3]


class RmapPlanning(ABC):
    """
    Base class of the planners.

    Subclasses set ``config_class`` and ``default_target_key`` and implement
    :meth:`_setup`, :meth:`_apply_target`, :meth:`_run_once` and
    :meth:`make_output`, and override :meth:`check_target_key` when they
    accept more than ``default_target_key``. Each owns a
    :class:`QpPlanningCore` (``self.core``).
    """

    config_class = RmapPlanningConfig
    default_target_key: Hashable = "target"

    def __init__(
        self,
        sampling_space,
        solver: Optional[QpSolver] = None,
        on_publish: Optional[Callable[[PlanningOutput], None]] = None,
    ) -> None:
        self.space: SampleSpace = get_sample_space(sampling_space)
        self.config = self.config_class()
        self.core = QpPlanningCore(self.space, self.config, solver)
        self.on_publish = on_publish
        self.target_buffer = TargetBuffer()
        self.iteration = 0
        self._is_setup = False

        space = self.space
        identity = space.identity_sample
        self._integrate_seq = jax.jit(jax.vmap(space.integrate_vel_to_sample))
        self._config_from_identity = jax.jit(jax.vmap(lambda s: space.sample_error(identity, s)))

    # --- Lifecycle ---

    def configure(self, mapping) -> None:
        """Update the configuration; takes effect at the next :meth:`setup`."""
        self.config.load(mapping)
        self._is_setup = False

    def setup(self) -> None:
        self.config.validate()
        self._setup()
        self.iteration = 0
        self._is_setup = True
        logger.info("%s set up in %s", type(self).__name__, self.space.sampling_space)

    def set_target(self, pose, key: Optional[Hashable] = None) -> None:
        """
        Queue a new target pose; applied at the start of the next iteration.

        :raises KeyError: If ``key`` names no target of this planner.
        """
        key = self.default_target_key if key is None else key
        self.check_target_key(key)
        self.target_buffer.put(key, pose)

    def check_target_key(self, key: Hashable) -> None:
        if key != self.default_target_key:
            raise KeyError(f"Unknown target '{key}' for {type(self).__name__}")

    def run_once(self, publish: bool = False) -> IterationResult:
        if not self._is_setup:
            raise RuntimeError(f"{type(self).__name__}.setup() must be called before run_once()")
        # valid targets are applied even when a stale one is reported
        stale = None
        for key, pose in self.target_buffer.drain().items():
            try:
                self._apply_target(key, pose)
            except (KeyError, IndexError) as exc:
                stale = stale or exc
        if stale is not None:
            raise stale

        result = self._run_once()
        self.iteration += 1
        logger.debug(
            "iteration %d: solved=%s target_error=%.6g", self.iteration, result.solved, result.target_error
        )
        if publish and self.on_publish is not None:
            self.on_publish(self.make_output())
        return result

    def run_loop(self, stop_event: Optional[threading.Event] = None, max_iters: Optional[int] = None) -> int:
        """
        Set up, then call :meth:`run_once` at ``loop_rate`` until ``stop_event``
        is set or ``max_iters`` iterations have run. Output is published every
        ``publish_interval`` iterations, starting with the first.

        :returns: Number of iterations run.
        """
        self.setup()
        if stop_event is None:
            stop_event = threading.Event()
        period = 1.0 / self.config.loop_rate
        loop_idx = 0
        next_time = time.monotonic()
        while not stop_event.is_set():
            if max_iters is not None and loop_idx >= max_iters:
                break
            self.run_once(publish=loop_idx % self.config.publish_interval == 0)
            loop_idx += 1
            next_time += period
            stop_event.wait(max(0.0, next_time - time.monotonic()))
        return loop_idx

    # --- Helpers for subclasses ---

    def pose_to_sample(self, pose) -> jnp.ndarray:
        return self.space.pose_to_sample(jnp.asarray(pose, dtype=jnp.float64))

    def sample_to_pose(self, sample) -> np.ndarray:
        return np.asarray(self.space.sample_to_pose(jnp.asarray(sample)))

    def integrate_seq(self, samples: jnp.ndarray, vel_all: np.ndarray) -> jnp.ndarray:
        """Integrate one velocity block into each sample of ``samples`` (n, sample_dim)."""
        vels = jnp.asarray(vel_all).reshape(samples.shape[0], self.space.vel_dim)
        return self._integrate_seq(samples, vels)

    def config_from_identity(self, samples: jnp.ndarray) -> np.ndarray:
        return np.asarray(self._config_from_identity(samples)).ravel()

    # --- Subclass hooks ---

    @abstractmethod
    def _setup(self) -> None:
        ...

    @abstractmethod
    def _apply_target(self, key: Hashable, pose: np.ndarray) -> None:
        ...

    @abstractmethod
    def _run_once(self) -> IterationResult:
        ...

    @abstractmethod
    def make_output(self) -> PlanningOutput:
        ...
