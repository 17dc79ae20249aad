# Copyright (c) 2025.
# This file is part of diff-rmap, released under the MIT License.
"""
diff-rmap: planning with a differentiable reachability map.

Samples, classifier inputs and velocities are float64; double precision is
switched on here so every submodule sees it.
"""

import jax

jax.config.update("jax_enable_x64", True)

__version__ = "0.1.0"
