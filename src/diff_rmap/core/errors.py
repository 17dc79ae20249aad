# Copyright (c) 2025.
# This file is part of diff-rmap, released under the MIT License.
"""Exception types raised by diff-rmap."""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Malformed, missing or out-of-range configuration value."""


class UnsupportedSamplingSpaceError(ValueError):
    """A factory received a sampling space it does not know."""

    def __init__(self, value, where: str = "") -> None:
        prefix = f"[{where}] " if where else ""
        super().__init__(f"{prefix}Unsupported SamplingSpace: {value!r}")
        self.value = value


class MissingClassifierError(RuntimeError):
    """A planner that needs a reachability classifier was built without one."""
