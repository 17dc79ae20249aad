# Copyright (c) 2025.
# This file is part of diff-rmap, released under the MIT License.
"""
Quadratic-program coefficients and solver interface.

The planners in :mod:`diff_rmap.planning` build one QP per iteration in the
standard form

    minimize    ½ xᵀ P x + qᵀ x
    subject to  x_min ≤ x ≤ x_max
                A x ≤ b

and hand it to a :class:`QpSolver`. The solver is a collaborator behind a
small protocol so tests can inject failures; :class:`OsqpSolver` is the
default implementation.

Solver failure is *reported*, never raised: a non-finite coefficient or a
status other than "solved" / "solved inaccurate" yields
``QpSolution(solved=False)``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

import numpy as np
import osqp
import scipy.sparse as sp

logger = logging.getLogger(__name__)

# OSQP status values accepted as a usable solution.
_OSQP_SOLVED = 1
_OSQP_SOLVED_INACCURATE = 2
_OSQP_INFTY = 1e30


@dataclass
class QpCoeff:
    """Dense QP coefficients (NumPy, float64)."""
    obj_mat: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))
    obj_vec: np.ndarray = field(default_factory=lambda: np.zeros(0))
    x_min: np.ndarray = field(default_factory=lambda: np.zeros(0))
    x_max: np.ndarray = field(default_factory=lambda: np.zeros(0))
    ineq_mat: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))
    ineq_vec: np.ndarray = field(default_factory=lambda: np.zeros(0))

    def setup(self, dim_var: int, dim_ineq: int) -> None:
        """Allocate zeroed coefficients; bounds start unbounded."""
        self.obj_mat = np.zeros((dim_var, dim_var))
        self.obj_vec = np.zeros(dim_var)
        self.x_min = np.full(dim_var, -np.inf)
        self.x_max = np.full(dim_var, np.inf)
        self.ineq_mat = np.zeros((dim_ineq, dim_var))
        self.ineq_vec = np.zeros(dim_ineq)

    @property
    def dim_var(self) -> int:
        return self.obj_vec.shape[0]

    @property
    def dim_ineq(self) -> int:
        return self.ineq_vec.shape[0]

    def is_finite(self) -> bool:
        return bool(
            np.all(np.isfinite(self.obj_mat))
            and np.all(np.isfinite(self.obj_vec))
            and np.all(np.isfinite(self.ineq_mat))
            and np.all(np.isfinite(self.ineq_vec))
            and not np.any(np.isnan(self.x_min))
            and not np.any(np.isnan(self.x_max))
        )


@dataclass
class QpSolution:
    x: np.ndarray
    solved: bool
    status: str = ""


class QpSolver(Protocol):
    def solve(self, coeff: QpCoeff) -> QpSolution:
        ...


class OsqpSolver:
    """
    :class:`QpSolver` backed by OSQP.

    Box bounds are appended to the inequality rows as identity rows, since
    OSQP only knows ``l ≤ A x ≤ u``.
    """

    def __init__(
        self,
        eps_abs: float = 1e-4,
        eps_rel: float = 1e-4,
        max_iter: int = 4000,
        polish: bool = True,
    ) -> None:
        self.eps_abs = eps_abs
        self.eps_rel = eps_rel
        self.max_iter = max_iter
        self.polish = polish

    def solve(self, coeff: QpCoeff) -> QpSolution:
        dim = coeff.dim_var
        if not coeff.is_finite():
            logger.warning("QP coefficients contain non-finite values; skipping solve")
            return QpSolution(x=np.zeros(dim), solved=False, status="non_finite_data")

        # OSQP reads the upper triangle of P only.
        P = sp.triu(sp.csc_matrix(0.5 * (coeff.obj_mat + coeff.obj_mat.T)), format="csc")
        A = sp.vstack(
            [sp.csc_matrix(coeff.ineq_mat), sp.identity(dim, format="csc")],
            format="csc",
        )
        lower = np.concatenate([np.full(coeff.dim_ineq, -_OSQP_INFTY), coeff.x_min])
        upper = np.concatenate([coeff.ineq_vec, coeff.x_max])
        lower = np.clip(lower, -_OSQP_INFTY, _OSQP_INFTY)
        upper = np.clip(upper, -_OSQP_INFTY, _OSQP_INFTY)

        prob = osqp.OSQP()
        prob.setup(
            P=P, q=np.asarray(coeff.obj_vec, dtype=float), A=A, l=lower, u=upper,
            verbose=False, polish=self.polish,
            eps_abs=self.eps_abs, eps_rel=self.eps_rel, max_iter=self.max_iter,
        )
        res = prob.solve()

        status = str(res.info.status)
        if res.info.status_val not in (_OSQP_SOLVED, _OSQP_SOLVED_INACCURATE) or res.x is None:
            return QpSolution(x=np.zeros(dim), solved=False, status=status)
        x = np.asarray(res.x, dtype=float)
        if not np.all(np.isfinite(x)):
            return QpSolution(x=np.zeros(dim), solved=False, status=status)
        return QpSolution(x=x, solved=True, status=status)
