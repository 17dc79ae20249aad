# Copyright (c) 2025.
# This file is part of diff-rmap, released under the MIT License.
"""
Core enumerations and light containers for diff-rmap.

Classes
-------
SamplingSpace
    Closed enumeration of the six pose manifolds. The integer values encode
    ``<ambient dimension><kind>`` (1 = translation, 2 = rotation,
    3 = rigid motion), e.g. ``SE2 = 23``.

Limb
    Limbs used by the locomanipulation planner; each limb owns its own
    reachability classifier.

Notes
-----
These objects carry no numerics. Samples, inputs and velocities are plain
1-D ``jax.numpy`` arrays whose sizes are fixed by the sample space classes in
:mod:`diff_rmap.core.sampling`.
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Union

from .errors import UnsupportedSamplingSpaceError


class SamplingSpace(IntEnum):
    R2 = 21
    SO2 = 22
    SE2 = 23
    R3 = 31
    SO3 = 32
    SE3 = 33

    def __str__(self) -> str:
        return self.name

    @classmethod
    def parse(cls, value: Union["SamplingSpace", int, str]) -> "SamplingSpace":
        """
        Convert a string ("SE2"), an int (23) or an enum member into a
        SamplingSpace.

        :raises UnsupportedSamplingSpaceError: for any other value.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise UnsupportedSamplingSpaceError(value, "SamplingSpace.parse") from None
        if isinstance(value, int) and not isinstance(value, bool):
            try:
                return cls(value)
            except ValueError:
                raise UnsupportedSamplingSpaceError(value, "SamplingSpace.parse") from None
        raise UnsupportedSamplingSpaceError(value, "SamplingSpace.parse")

    @property
    def is_planar(self) -> bool:
        return self.value // 10 == 2


class Limb(str, Enum):
    LEFT_FOOT = "LeftFoot"
    RIGHT_FOOT = "RightFoot"
    LEFT_HAND = "LeftHand"


