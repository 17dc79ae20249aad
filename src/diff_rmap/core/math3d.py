# Copyright (c) 2025.
# This file is part of diff-rmap, released under the MIT License.
"""
SO(2) / SO(3) helpers for diff-rmap.

This module implements the minimal Lie-group mathematics required by the
manifold sample model:

    • SO(2) rotation matrices and angle wrapping
    • SO(3) hat / vee and the exponential map (Rodrigues)
    • Unit quaternions: product, conjugate, exp / log, matrix conversion
    • Helpers for constructing homogeneous transforms

All functions are written in JAX and support:
    - JIT compilation
    - Automatic differentiation
    - Batched operation via ``jax.vmap``
    - Numerically stable behavior near zero-rotation limits

Quaternions are stored as ``[qx, qy, qz, qw]`` (scalar last). Canonical
quaternions have a non-negative scalar part so that each rotation has a single
representation inside the classifier's input space.

Notes
-----
Small-angle branches are selected with ``jnp.where`` on a *safe* angle
(double-where trick) instead of ``jax.lax.cond``. Both branches are therefore
evaluated under ``vmap`` and reverse-mode differentiation, and neither one is
allowed to produce a NaN at exactly zero rotation.
"""

from __future__ import annotations

import jax.numpy as jnp

SMALL_ANGLE_EPS = 1e-8


def wrap_angle(theta: jnp.ndarray) -> jnp.ndarray:
    """Wrap an angle into (-π, π]."""
    return jnp.arctan2(jnp.sin(theta), jnp.cos(theta))


def rot2d(theta: jnp.ndarray) -> jnp.ndarray:
    """2×2 rotation matrix for the planar angle ``theta``."""
    c = jnp.cos(theta)
    s = jnp.sin(theta)
    return jnp.array([[c, -s], [s, c]])


def hat(v: jnp.ndarray) -> jnp.ndarray:
    """so(3) hat operator: R^3 -> 3x3 skew-symmetric matrix."""
    x, y, z = v[0], v[1], v[2]
    zero = jnp.zeros_like(x)
    return jnp.array(
        [
            [zero, -z, y],
            [z, zero, -x],
            [-y, x, zero],
        ]
    )


def vee(R: jnp.ndarray) -> jnp.ndarray:
    """
    vee: so(3) -> R^3, inverse of hat.
    Assumes R is a 3x3 skew-symmetric-like matrix.
    """
    return jnp.array([
        R[2, 1] - R[1, 2],
        R[0, 2] - R[2, 0],
        R[1, 0] - R[0, 1],
    ]) / 2.0


def _safe_norm(w: jnp.ndarray) -> tuple[jnp.ndarray, jnp.ndarray]:
    """Return (theta, is_small) with theta replaced by 1.0 where it is tiny."""
    theta_sq = jnp.dot(w, w)
    is_small = theta_sq < SMALL_ANGLE_EPS ** 2
    theta = jnp.sqrt(jnp.where(is_small, 1.0, theta_sq))
    return theta, is_small


def so3_exp(w: jnp.ndarray) -> jnp.ndarray:
    """
    Exponential map from so(3) (rotation vector) to SO(3).

    Uses Rodrigues' formula with a first-order small-angle fallback.
    """
    w = jnp.asarray(w)
    theta, is_small = _safe_norm(w)
    I = jnp.eye(3)
    W = hat(w)

    A = jnp.where(is_small, 1.0, jnp.sin(theta) / theta)
    B = jnp.where(is_small, 0.5, (1.0 - jnp.cos(theta)) / (theta * theta))
    return I + A * W + B * (W @ W)


def quat_identity() -> jnp.ndarray:
    return jnp.array([0.0, 0.0, 0.0, 1.0])


def quat_canonical(q: jnp.ndarray) -> jnp.ndarray:
    """Normalize ``q`` and flip its sign so that the scalar part is non-negative."""
    q = q / jnp.linalg.norm(q)
    return jnp.where(q[3] < 0.0, -q, q)


def quat_conjugate(q: jnp.ndarray) -> jnp.ndarray:
    return jnp.array([-q[0], -q[1], -q[2], q[3]])


def quat_multiply(q1: jnp.ndarray, q2: jnp.ndarray) -> jnp.ndarray:
    """Hamilton product ``q1 ⊗ q2`` (rotation q2 first, then q1)."""
    x1, y1, z1, w1 = q1[0], q1[1], q1[2], q1[3]
    x2, y2, z2, w2 = q2[0], q2[1], q2[2], q2[3]
    return jnp.array([
        w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
        w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
        w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2,
        w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
    ])


def quat_exp(w: jnp.ndarray) -> jnp.ndarray:
    """
    Rotation vector -> unit quaternion.

        q = [sin(θ/2) ω/θ, cos(θ/2)]

    with the Taylor expansion ``[ω/2, 1]`` near zero.
    """
    w = jnp.asarray(w)
    theta, is_small = _safe_norm(w)
    half = 0.5 * theta
    k = jnp.where(is_small, 0.5, jnp.sin(half) / theta)
    c = jnp.where(is_small, 1.0, jnp.cos(half))
    return jnp.concatenate([k * w, jnp.array([c])])


def quat_log(q: jnp.ndarray) -> jnp.ndarray:
    """
    Unit quaternion -> rotation vector with angle in [0, π].

    The quaternion is canonicalized first; near the identity the first-order
    approximation ``ω ≈ 2 v / w`` is used.
    """
    q = quat_canonical(q)
    v = q[:3]
    w = q[3]
    n, is_small = _safe_norm(v)
    angle = 2.0 * jnp.arctan2(n, w)
    k = jnp.where(is_small, 2.0 / w, angle / n)
    return k * v


def quat_to_matrix(q: jnp.ndarray) -> jnp.ndarray:
    """Unit quaternion -> 3×3 rotation matrix."""
    x, y, z, w = q[0], q[1], q[2], q[3]
    return jnp.array([
        [1.0 - 2.0 * (y * y + z * z), 2.0 * (x * y - z * w), 2.0 * (x * z + y * w)],
        [2.0 * (x * y + z * w), 1.0 - 2.0 * (x * x + z * z), 2.0 * (y * z - x * w)],
        [2.0 * (x * z - y * w), 2.0 * (y * z + x * w), 1.0 - 2.0 * (x * x + y * y)],
    ])


def quat_from_matrix(R: jnp.ndarray) -> jnp.ndarray:
    """
    3×3 rotation matrix -> canonical unit quaternion.

    Shepperd's method: all four candidate formulas are evaluated with a safe
    square root and the one with the largest pivot is selected.
    """
    m00, m01, m02 = R[0, 0], R[0, 1], R[0, 2]
    m10, m11, m12 = R[1, 0], R[1, 1], R[1, 2]
    m20, m21, m22 = R[2, 0], R[2, 1], R[2, 2]
    tr = m00 + m11 + m22

    def _s(x):
        return 2.0 * jnp.sqrt(jnp.maximum(x, 1e-12))

    s0 = _s(1.0 + tr)
    s1 = _s(1.0 + m00 - m11 - m22)
    s2 = _s(1.0 + m11 - m00 - m22)
    s3 = _s(1.0 + m22 - m00 - m11)

    candidates = jnp.stack([
        jnp.array([(m21 - m12) / s0, (m02 - m20) / s0, (m10 - m01) / s0, 0.25 * s0]),
        jnp.array([0.25 * s1, (m01 + m10) / s1, (m02 + m20) / s1, (m21 - m12) / s1]),
        jnp.array([(m01 + m10) / s2, 0.25 * s2, (m12 + m21) / s2, (m02 - m20) / s2]),
        jnp.array([(m02 + m20) / s3, (m12 + m21) / s3, 0.25 * s3, (m10 - m01) / s3]),
    ])
    pivot = jnp.argmax(jnp.array([tr, m00, m11, m22]))
    return quat_canonical(candidates[pivot])


def yaw_from_matrix(R: jnp.ndarray) -> jnp.ndarray:
    """Rotation angle about z of a (planar) rotation matrix."""
    return jnp.arctan2(R[1, 0], R[0, 0])


def make_transform(R: jnp.ndarray, t: jnp.ndarray) -> jnp.ndarray:
    """
    Build a 4×4 homogeneous transform:

        T = [ R, t ]
            [ 0, 1 ]
    """
    T = jnp.eye(4)
    T = T.at[:3, :3].set(R)
    T = T.at[:3, 3].set(t)
    return T


def planar_transform(x, y, theta) -> jnp.ndarray:
    """Homogeneous transform of a planar pose (rotation about z)."""
    R = jnp.eye(3).at[:2, :2].set(rot2d(theta))
    return make_transform(R, jnp.array([x, y, 0.0]))


def transform_inverse(T: jnp.ndarray) -> jnp.ndarray:
    R = T[:3, :3]
    t = T[:3, 3]
    return make_transform(R.T, -R.T @ t)
