# Copyright (c) 2025.
# This file is part of diff-rmap, released under the MIT License.
"""
Kernel SVM decision function and its input gradient.

The reachability classifier is trained offline (outside this package) and is
handed over as an :class:`SVMModel`: support vectors, dual coefficients
(``y_i α_i``), bias ``rho`` and kernel parameters, named as in libsvm. The
decision value of an input vector ``x`` is

    f(x) = Σ_i c_i k(x, sv_i) − rho

with positive values on the reachable side when the reachable class was the
first class seen during training (see
:mod:`diff_rmap.reachability.sample_set`).

Supported kernels and the closed-form derivative used for ``∂f/∂x``:

    linear      k = x·s                    ∂k/∂x = s
    polynomial  k = (γ x·s + c0)^d         ∂k/∂x = d γ (γ x·s + c0)^(d−1) s
    rbf         k = exp(−γ |x − s|²)       ∂k/∂x = −2 γ k (x − s)
    sigmoid     k = tanh(γ x·s + c0)       ∂k/∂x = γ (1 − k²) s

All functions are pure ``jax.numpy`` and are JIT-compiled by
:class:`~diff_rmap.reachability.rmap.ReachabilityFunction`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import jax.numpy as jnp

KernelType = Literal["linear", "polynomial", "rbf", "sigmoid"]
KERNEL_TYPES = ("linear", "polynomial", "rbf", "sigmoid")


@dataclass(frozen=True, eq=False)
class SVMModel:
    """Trained kernel classifier (read-only once built)."""
    support_vectors: jnp.ndarray   # (n_sv, input_dim)
    dual_coefs: jnp.ndarray        # (n_sv,)
    rho: float = 0.0
    kernel_type: KernelType = "rbf"
    gamma: float = 1.0
    coef0: float = 0.0
    degree: int = 3

    def __post_init__(self) -> None:
        sv = jnp.atleast_2d(jnp.asarray(self.support_vectors, dtype=jnp.float64))
        coefs = jnp.ravel(jnp.asarray(self.dual_coefs, dtype=jnp.float64))
        if sv.shape[0] != coefs.shape[0]:
            raise ValueError(
                f"support_vectors has {sv.shape[0]} rows but dual_coefs has {coefs.shape[0]} entries"
            )
        if sv.shape[0] == 0:
            raise ValueError("SVM model has no support vectors")
        if self.kernel_type not in KERNEL_TYPES:
            raise ValueError(f"Unknown kernel type '{self.kernel_type}'")
        # frozen dataclass: normalize array fields in place
        object.__setattr__(self, "support_vectors", sv)
        object.__setattr__(self, "dual_coefs", coefs)

    @property
    def input_dim(self) -> int:
        return int(self.support_vectors.shape[1])

    @property
    def num_support_vectors(self) -> int:
        return int(self.support_vectors.shape[0])

    def kernel_values(self, x: jnp.ndarray) -> jnp.ndarray:
        """k(x, sv_i) for every support vector, shape (n_sv,)."""
        sv = self.support_vectors
        if self.kernel_type == "rbf":
            diff = x[None, :] - sv
            return jnp.exp(-self.gamma * jnp.sum(diff * diff, axis=1))
        dot = sv @ x
        if self.kernel_type == "linear":
            return dot
        if self.kernel_type == "polynomial":
            return (self.gamma * dot + self.coef0) ** self.degree
        return jnp.tanh(self.gamma * dot + self.coef0)

    def decision_value(self, x: jnp.ndarray) -> jnp.ndarray:
        return jnp.dot(self.dual_coefs, self.kernel_values(x)) - self.rho

    def decision_grad(self, x: jnp.ndarray) -> jnp.ndarray:
        """∂f/∂x, shape (input_dim,)."""
        sv = self.support_vectors
        c = self.dual_coefs
        if self.kernel_type == "rbf":
            k = self.kernel_values(x)
            return -2.0 * self.gamma * ((c * k) @ (x[None, :] - sv))
        if self.kernel_type == "linear":
            return c @ sv
        dot = sv @ x
        if self.kernel_type == "polynomial":
            base = self.gamma * dot + self.coef0
            scale = self.degree * self.gamma * base ** (self.degree - 1)
            return (c * scale) @ sv
        k = jnp.tanh(self.gamma * dot + self.coef0)
        return (c * self.gamma * (1.0 - k * k)) @ sv
