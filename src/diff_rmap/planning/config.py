# Copyright (c) 2025.
# This file is part of diff-rmap, released under the MIT License.
"""
Planner configuration.

Each planner reads one dataclass config. Configs are built with defaults and
optionally updated from a plain mapping (e.g. a parsed YAML / JSON document)
through :meth:`RmapPlanningConfig.load`, which copies recognized keys, logs
and ignores unknown ones, then validates the result.

Poses in a mapping may be given as a 4×4 matrix or as::

    {"translation": [x, y, z], "rotation": [[...], [...], [...]]}
    {"translation": [x, y], "yaw": theta}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, Mapping

import numpy as np

from diff_rmap.core.errors import ConfigurationError
from diff_rmap.core.math3d import planar_transform
from diff_rmap.core.types import Limb

logger = logging.getLogger(__name__)


def pose_from_config(value: Any) -> np.ndarray:
    """Convert a configuration pose entry to a 4×4 homogeneous matrix."""
    if value is None:
        return np.eye(4)
    if isinstance(value, Mapping):
        unknown = set(value) - {"translation", "rotation", "yaw"}
        if unknown:
            raise ConfigurationError(f"Unknown pose keys: {sorted(unknown)}")
        if "rotation" in value and "yaw" in value:
            raise ConfigurationError("Pose may specify 'rotation' or 'yaw', not both")
        translation = np.zeros(3)
        if "translation" in value:
            t = np.asarray(value["translation"], dtype=float).ravel()
            if t.size not in (2, 3):
                raise ConfigurationError(f"Pose translation must have 2 or 3 entries, got {t.size}")
            translation[: t.size] = t
        pose = np.eye(4)
        if "yaw" in value:
            pose = np.array(planar_transform(0.0, 0.0, float(value["yaw"])), dtype=float)
        elif "rotation" in value:
            rot = np.asarray(value["rotation"], dtype=float)
            if rot.shape != (3, 3):
                raise ConfigurationError(f"Pose rotation must be 3x3, got {rot.shape}")
            if not np.allclose(rot @ rot.T, np.eye(3), atol=1e-6):
                raise ConfigurationError("Pose rotation is not orthonormal")
            pose[:3, :3] = rot
        pose[:3, 3] = translation
        return pose

    pose = np.asarray(value, dtype=float)
    if pose.shape != (4, 4):
        raise ConfigurationError(f"Pose must be a 4x4 matrix, got shape {pose.shape}")
    if not np.allclose(pose[3], [0.0, 0.0, 0.0, 1.0]):
        raise ConfigurationError("Pose last row must be [0, 0, 0, 1]")
    return pose.copy()


def _default_foot_vertices() -> np.ndarray:
    # 0.2 m x 0.1 m sole centered on the foot frame
    return np.array([
        [0.1, 0.05, 0.0],
        [-0.1, 0.05, 0.0],
        [-0.1, -0.05, 0.0],
        [0.1, -0.05, 0.0],
    ])


def _vertices_from_config(value: Any) -> np.ndarray:
    vertices = np.atleast_2d(np.asarray(value, dtype=float))
    if vertices.ndim != 2 or vertices.shape[1] not in (2, 3) or vertices.shape[0] < 3:
        raise ConfigurationError(f"foot_vertices must be at least 3 points of 2 or 3 coords, got {vertices.shape}")
    if vertices.shape[1] == 2:
        vertices = np.hstack([vertices, np.zeros((vertices.shape[0], 1))])
    return vertices


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes", "on"):
            return True
        if lowered in ("false", "0", "no", "off"):
            return False
        raise ConfigurationError(f"Cannot interpret '{value}' as a boolean")
    return bool(value)


@dataclass
class RmapPlanningConfig:
    """Options shared by every planner."""
    delta_config_limit: float = 0.1      # per-step velocity bound
    svm_thre: float = 0.0                # decision value separating reachable / unreachable
    adjacent_reg_weight: float = 1e-3
    svm_ineq_weight: float = 1e6         # slack penalty
    loop_rate: float = 100.0             # [Hz]
    publish_interval: int = 10           # iterations between outputs
    initial_sample_pose: np.ndarray = field(default_factory=lambda: np.eye(4))
    target_sample_pose: np.ndarray = field(default_factory=lambda: np.eye(4))
    foot_vertices: np.ndarray = field(default_factory=_default_foot_vertices)

    _converters: ClassVar[Dict[str, Callable[[Any], Any]]] = {
        "delta_config_limit": float,
        "svm_thre": float,
        "adjacent_reg_weight": float,
        "svm_ineq_weight": float,
        "loop_rate": float,
        "publish_interval": int,
        "initial_sample_pose": pose_from_config,
        "target_sample_pose": pose_from_config,
        "foot_vertices": _vertices_from_config,
    }

    @classmethod
    def _all_converters(cls) -> Dict[str, Callable[[Any], Any]]:
        converters: Dict[str, Callable[[Any], Any]] = {}
        for klass in reversed(cls.__mro__):
            converters.update(klass.__dict__.get("_converters", {}))
        return converters

    def load(self, mapping: Mapping[str, Any]):
        """Update from ``mapping`` (unknown keys are ignored), then validate."""
        names = {f.name for f in fields(self)}
        converters = self._all_converters()
        for key, value in mapping.items():
            if key not in names:
                logger.warning("Ignoring unknown configuration key '%s' for %s", key, type(self).__name__)
                continue
            try:
                setattr(self, key, converters.get(key, lambda v: v)(value))
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"Invalid value for '{key}': {e}") from e
        self.validate()
        return self

    def validate(self) -> None:
        if not self.delta_config_limit > 0.0:
            raise ConfigurationError(f"delta_config_limit must be positive, got {self.delta_config_limit}")
        if self.adjacent_reg_weight < 0.0:
            raise ConfigurationError(f"adjacent_reg_weight must be non-negative, got {self.adjacent_reg_weight}")
        if not self.svm_ineq_weight > 0.0:
            raise ConfigurationError(f"svm_ineq_weight must be positive, got {self.svm_ineq_weight}")
        if not self.loop_rate > 0.0:
            raise ConfigurationError(f"loop_rate must be positive, got {self.loop_rate}")
        if self.publish_interval < 1:
            raise ConfigurationError(f"publish_interval must be >= 1, got {self.publish_interval}")
        if not np.isfinite(self.svm_thre):
            raise ConfigurationError("svm_thre must be finite")


@dataclass
class FootstepConfig(RmapPlanningConfig):
    footstep_num: int = 3
    alternate_lr: bool = False

    _converters: ClassVar[Dict[str, Callable[[Any], Any]]] = {
        "footstep_num": int,
        "alternate_lr": _as_bool,
    }

    def validate(self) -> None:
        super().validate()
        if self.footstep_num < 1:
            raise ConfigurationError(f"footstep_num must be >= 1, got {self.footstep_num}")


@dataclass
class PlacementConfig(RmapPlanningConfig):
    reaching_num: int = 2
    reg_weight: float = 1e-6
    placement_weight: float = 1e-3
    ik_trial_num: int = 10
    ik_loop_num: int = 50
    ik_error_thre: float = 1e-2          # [m], [rad]
    random_seed: int = 0

    _converters: ClassVar[Dict[str, Callable[[Any], Any]]] = {
        "reaching_num": int,
        "reg_weight": float,
        "placement_weight": float,
        "ik_trial_num": int,
        "ik_loop_num": int,
        "ik_error_thre": float,
        "random_seed": int,
    }

    def validate(self) -> None:
        super().validate()
        if self.reaching_num < 1:
            raise ConfigurationError(f"reaching_num must be >= 1, got {self.reaching_num}")
        if self.reg_weight < 0.0 or self.placement_weight < 0.0:
            raise ConfigurationError("reg_weight and placement_weight must be non-negative")
        if self.ik_trial_num < 1 or self.ik_loop_num < 1:
            raise ConfigurationError("ik_trial_num and ik_loop_num must be >= 1")
        if not self.ik_error_thre > 0.0:
            raise ConfigurationError(f"ik_error_thre must be positive, got {self.ik_error_thre}")


class HandReachability(str, Enum):
    """How foot-to-hand reachability rows enter the locomanipulation QP."""
    DISABLED = "disabled"
    RESERVED = "reserved"    # rows allocated, slack only
    ENABLED = "enabled"


def _hand_reachability_from_config(value: Any) -> HandReachability:
    try:
        return HandReachability(str(getattr(value, "value", value)).lower())
    except ValueError as e:
        raise ConfigurationError(
            f"hand_reachability must be one of {[m.value for m in HandReachability]}, got '{value}'"
        ) from e


def _limb_poses_from_config(value: Mapping) -> Dict[Limb, np.ndarray]:
    if not isinstance(value, Mapping):
        raise ConfigurationError("initial_sample_pose_list must be a mapping of limb name to pose")
    poses = {}
    for limb, pose in value.items():
        try:
            key = limb if isinstance(limb, Limb) else Limb(limb)
        except ValueError as e:
            raise ConfigurationError(f"Unknown limb '{limb}'") from e
        poses[key] = pose_from_config(pose)
    return poses


@dataclass
class LocomanipConfig(RmapPlanningConfig):
    motion_len: int = 10
    reg_weight: float = 1e-3
    hand_reachability: HandReachability = HandReachability.RESERVED
    initial_sample_pose_list: Dict[Limb, np.ndarray] = field(default_factory=dict)

    _converters: ClassVar[Dict[str, Callable[[Any], Any]]] = {
        "motion_len": int,
        "reg_weight": float,
        "hand_reachability": _hand_reachability_from_config,
        "initial_sample_pose_list": _limb_poses_from_config,
    }

    def validate(self) -> None:
        super().validate()
        if self.motion_len < 1:
            raise ConfigurationError(f"motion_len must be >= 1, got {self.motion_len}")
        if self.reg_weight < 0.0:
            raise ConfigurationError(f"reg_weight must be non-negative, got {self.reg_weight}")
        self.hand_reachability = _hand_reachability_from_config(self.hand_reachability)

    def start_pose(self, limb: Limb) -> np.ndarray:
        return self.initial_sample_pose_list.get(limb, np.eye(4))
