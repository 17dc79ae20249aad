# Copyright (c) 2025.
# This file is part of diff-rmap, released under the MIT License.
"""
Shared QP machinery of the reachability-map planners.

Every planner optimizes one velocity block per trajectory waypoint. The
decision vector of the per-iteration QP is

    x = [ v_0, v_1, ..., v_{B-1} | s_0, ..., s_{M-1} ]
          ^ config_dim = B·vel_dim   ^ one slack per inequality row

and the QP reads

    minimize    ½ vᵀ (H_target + λ I + A_adj) v + (g_target + A_adj c − w a)ᵀ v
                + ½ svm_ineq_weight · |s|²
    subject to  |v_k| ≤ delta_config_limit,  |s| ≤ 1e10
                −row_pre · v_pre − row_suc · v_suc − s ≤ value − svm_thre

where ``c`` is the current trajectory written as velocities from the identity
sample and ``a`` the anchors of the adjacency chains (see
:meth:`QpPlanningCore.add_adjacency`). Each reachability row is the first-order
model of "the relative sample stays on the reachable side"; the slack keeps
the QP feasible when the linearization cannot be satisfied within one step.

Classes
-------
QpLayout
    Supplied by a planner: configuration dimension, named inequality groups
    with explicit row counts, and adjacency chains.

QpPlanningCore
    Owns the :class:`~diff_rmap.optimization.qp.QpCoeff` buffers, the fixed
    adjacency matrix and the solver. Planners compose it rather than
    inheriting from it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Sequence, Tuple

import numpy as np

from diff_rmap.core.errors import ConfigurationError
from diff_rmap.core.sampling import SampleSpace
from .qp import OsqpSolver, QpCoeff, QpSolver

logger = logging.getLogger(__name__)

SLACK_BOUND = 1e10


@dataclass
class QpLayout:
    """
    Variable and constraint layout of one planner.

    :param config_dim: Number of velocity variables (multiple of ``vel_dim``).
    :param ineq_groups: Ordered mapping ``name -> row count``. Row offsets are
        the running sum of the preceding counts, so an empty group does not
        shift the others.
    :param chains: Adjacency chains as ``(start_block, length)`` pairs.
    """
    config_dim: int
    ineq_groups: Dict[str, int] = field(default_factory=dict)
    chains: Sequence[Tuple[int, int]] = ()

    @property
    def ineq_dim(self) -> int:
        return sum(self.ineq_groups.values())

    def ineq_offsets(self) -> Dict[str, int]:
        offsets = {}
        offset = 0
        for name, count in self.ineq_groups.items():
            offsets[name] = offset
            offset += count
        return offsets


def build_adjacent_reg_mat(num_blocks: int, vel_dim: int, chains, weight: float) -> np.ndarray:
    """
    Block-tridiagonal smoothing matrix over the velocity blocks.

    Within a chain every diagonal block is ``2w`` except the last one (``w``);
    neighbor blocks are ``−w``. The first block keeps ``2w`` because the
    chain's fixed anchor is its other neighbor.
    """
    config_dim = num_blocks * vel_dim
    mat = np.zeros((config_dim, config_dim))
    eye = np.eye(vel_dim)
    for start, length in chains:
        for j in range(length):
            b = start + j
            sl = slice(b * vel_dim, (b + 1) * vel_dim)
            mat[sl, sl] = (1.0 if j == length - 1 else 2.0) * weight * eye
            if j != length - 1:
                nsl = slice((b + 1) * vel_dim, (b + 2) * vel_dim)
                mat[nsl, sl] = -weight * eye
                mat[sl, nsl] = -weight * eye
    return mat


class QpPlanningCore:
    """
    Per-iteration QP assembly for one planner.

    :param space: Sample space of the velocity blocks.
    :param config: Planner configuration; reads ``delta_config_limit``,
        ``adjacent_reg_weight``, ``svm_ineq_weight`` and ``svm_thre``.
    :param solver: QP solver (defaults to :class:`OsqpSolver`).
    """

    def __init__(self, space: SampleSpace, config, solver: Optional[QpSolver] = None) -> None:
        self.space = space
        self.config = config
        self.solver: QpSolver = solver if solver is not None else OsqpSolver()
        self.coeff = QpCoeff()
        self.layout: Optional[QpLayout] = None
        self.adjacent_reg_mat: Optional[np.ndarray] = None
        self._offsets: Dict[str, int] = {}

    @property
    def vel_dim(self) -> int:
        return self.space.vel_dim

    @property
    def config_dim(self) -> int:
        return self._require_layout().config_dim

    @property
    def ineq_dim(self) -> int:
        return self._require_layout().ineq_dim

    @property
    def dim_var(self) -> int:
        return self.config_dim + self.ineq_dim

    def _require_layout(self) -> QpLayout:
        if self.layout is None:
            raise RuntimeError("QpPlanningCore.setup() has not been called")
        return self.layout

    def setup(self, layout: QpLayout) -> None:
        vel_dim = self.vel_dim
        if layout.config_dim <= 0 or layout.config_dim % vel_dim != 0:
            raise ConfigurationError(
                f"config_dim {layout.config_dim} is not a positive multiple of vel_dim {vel_dim}"
            )
        if any(count < 0 for count in layout.ineq_groups.values()):
            raise ConfigurationError(f"Negative inequality row count in {dict(layout.ineq_groups)}")
        num_blocks = layout.config_dim // vel_dim
        for start, length in layout.chains:
            if start < 0 or length < 1 or start + length > num_blocks:
                raise ConfigurationError(f"Adjacency chain ({start}, {length}) exceeds {num_blocks} blocks")

        self.layout = layout
        self._offsets = layout.ineq_offsets()
        config_dim = layout.config_dim
        ineq_dim = layout.ineq_dim

        self.coeff.setup(config_dim + ineq_dim, ineq_dim)
        self.coeff.x_min[:config_dim] = -self.config.delta_config_limit
        self.coeff.x_max[:config_dim] = self.config.delta_config_limit
        self.coeff.x_min[config_dim:] = -SLACK_BOUND
        self.coeff.x_max[config_dim:] = SLACK_BOUND

        self.adjacent_reg_mat = build_adjacent_reg_mat(
            num_blocks, vel_dim, layout.chains, self.config.adjacent_reg_weight
        )
        logger.info(
            "QP layout: %d velocity variables, %d inequality rows %s, chains %s",
            config_dim, ineq_dim, dict(layout.ineq_groups), list(layout.chains),
        )

    def ineq_offset(self, group: str) -> int:
        self._require_layout()
        if group not in self._offsets:
            raise KeyError(f"Unknown inequality group '{group}'")
        return self._offsets[group]

    def block_slice(self, idx: int) -> slice:
        return slice(idx * self.vel_dim, (idx + 1) * self.vel_dim)

    def block(self, vel_all: np.ndarray, idx: int) -> np.ndarray:
        return vel_all[self.block_slice(idx)]

    # --- Per-iteration assembly ---

    def reset(self) -> None:
        """Clear objective and inequalities; restore slack weights and columns."""
        coeff = self.coeff
        config_dim = self.config_dim
        ineq_dim = self.ineq_dim
        coeff.obj_mat[:] = 0.0
        coeff.obj_vec[:] = 0.0
        coeff.ineq_mat[:] = 0.0
        coeff.ineq_vec[:] = 0.0
        slack_idxs = np.arange(config_dim, config_dim + ineq_dim)
        coeff.obj_mat[slack_idxs, slack_idxs] = self.config.svm_ineq_weight
        coeff.ineq_mat[np.arange(ineq_dim), slack_idxs] = -1.0

    def add_target_error(self, block: int, error, weight: float = 1.0) -> None:
        """Pull block ``block`` toward ``error`` (velocity from current to target)."""
        sl = self.block_slice(block)
        self.coeff.obj_mat[sl, sl] += weight * np.eye(self.vel_dim)
        self.coeff.obj_vec[sl] -= weight * np.asarray(error, dtype=float)

    def add_damping(self, lam: float) -> None:
        idxs = np.arange(self.config_dim)
        self.coeff.obj_mat[idxs, idxs] += lam

    def add_adjacency(self, current_config, anchors: Optional[Mapping[int, np.ndarray]] = None) -> None:
        """
        Add the adjacency smoothing term.

        :param current_config: Current trajectory as velocities from the
            identity sample, concatenated over all blocks. Rotation components
            are subtracted as if the tangent space were flat.
        :param anchors: ``start_block -> anchor velocity from identity`` for
            chains whose fixed predecessor is not the identity.
        """
        config_dim = self.config_dim
        current_config = np.asarray(current_config, dtype=float)
        if current_config.shape != (config_dim,):
            raise ValueError(f"current_config must have shape ({config_dim},), got {current_config.shape}")
        w = self.config.adjacent_reg_weight
        self.coeff.obj_vec[:config_dim] += self.adjacent_reg_mat @ current_config
        for block, anchor in (anchors or {}).items():
            self.coeff.obj_vec[self.block_slice(block)] -= w * np.asarray(anchor, dtype=float)
        self.coeff.obj_mat[:config_dim, :config_dim] += self.adjacent_reg_mat

    def set_reachability_row(
        self,
        group: str,
        idx: int,
        value: float,
        pre_block: Optional[int],
        row_pre,
        suc_block: int,
        row_suc,
    ) -> None:
        """
        Encode ``−row_pre·v_pre − row_suc·v_suc − s ≤ value − svm_thre``.

        ``pre_block`` is ``None`` when the predecessor is fixed.
        """
        count = self.layout.ineq_groups[group]
        if not 0 <= idx < count:
            raise IndexError(f"Row {idx} out of range for group '{group}' with {count} rows")
        row = self.ineq_offset(group) + idx
        ineq_mat = self.coeff.ineq_mat
        ineq_mat[row, self.block_slice(suc_block)] = -np.asarray(row_suc, dtype=float)
        if pre_block is not None:
            ineq_mat[row, self.block_slice(pre_block)] = -np.asarray(row_pre, dtype=float)
        self.coeff.ineq_vec[row] = value - self.config.svm_thre

    def solve(self) -> Tuple[np.ndarray, bool]:
        """
        Solve the assembled QP.

        :returns: ``(vel_all, solved)``; ``vel_all`` covers the velocity
            variables only and is zero when the solve failed.
        """
        solution = self.solver.solve(self.coeff)
        config_dim = self.config_dim
        if not solution.solved:
            logger.warning("QP solve failed (status: %s); keeping the current trajectory", solution.status)
            return np.zeros(config_dim), False
        return np.asarray(solution.x[:config_dim], dtype=float), True
