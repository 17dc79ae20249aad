# Copyright (c) 2025.
# This file is part of diff-rmap, released under the MIT License.
"""
Reachability-map planners and their factory.

    create_rmap_planning("footstep", "SE2", svm_model)
"""

from __future__ import annotations

from typing import Optional

from diff_rmap.core.errors import ConfigurationError, UnsupportedSamplingSpaceError
from diff_rmap.core.types import SamplingSpace
from .base import IterationResult, PlanningOutput, RmapPlanning, TargetBuffer
from .config import (
    FootstepConfig,
    HandReachability,
    LocomanipConfig,
    PlacementConfig,
    RmapPlanningConfig,
)
from .footstep import RmapPlanningFootstep
from .locomanip import RmapPlanningLocomanip
from .placement import IKResult, IKSolver, RmapPlanningPlacement

PLANNING_KINDS = ("placement", "footstep", "locomanip")


def create_rmap_planning(kind: str, sampling_space, svm_model=None, grid_set=None, **kwargs) -> RmapPlanning:
    """
    Build a planner by kind name.

    :param kind: ``"placement"``, ``"footstep"`` or ``"locomanip"``.
    :param sampling_space: Enum member, name or integer value.
    :param svm_model: Classifier; for ``"locomanip"`` a mapping limb -> classifier.
    :param grid_set: Optional reachable-set grid (mapping limb -> grid for ``"locomanip"``).
    :raises UnsupportedSamplingSpaceError: for an unknown or unsupported space.
    """
    try:
        space = SamplingSpace.parse(sampling_space)
    except UnsupportedSamplingSpaceError:
        raise UnsupportedSamplingSpaceError(sampling_space, "create_rmap_planning") from None

    if kind == "placement":
        return RmapPlanningPlacement(space, svm_model, grid_set, **kwargs)
    if kind == "footstep":
        return RmapPlanningFootstep(space, svm_model, grid_set, **kwargs)
    if kind == "locomanip":
        return RmapPlanningLocomanip(svm_model or {}, grid_set, sampling_space=space, **kwargs)
    raise ConfigurationError(f"Unknown planning kind '{kind}', expected one of {PLANNING_KINDS}")


__all__ = [
    "FootstepConfig",
    "HandReachability",
    "IKResult",
    "IKSolver",
    "IterationResult",
    "LocomanipConfig",
    "PLANNING_KINDS",
    "PlacementConfig",
    "PlanningOutput",
    "RmapPlanning",
    "RmapPlanningConfig",
    "RmapPlanningFootstep",
    "RmapPlanningLocomanip",
    "RmapPlanningPlacement",
    "TargetBuffer",
    "create_rmap_planning",
]
