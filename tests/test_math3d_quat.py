import jax
import jax.numpy as jnp

from diff_rmap.core.math3d import (
    quat_canonical,
    quat_exp,
    quat_from_matrix,
    quat_identity,
    quat_log,
    quat_multiply,
    quat_to_matrix,
    so3_exp,
    wrap_angle,
)


def test_quat_exp_log_roundtrip():
    w = jnp.array([0.3, -0.2, 0.5])
    q = quat_exp(w)
    assert jnp.allclose(jnp.linalg.norm(q), 1.0)
    assert jnp.allclose(quat_log(q), w, atol=1e-12)


def test_quat_log_exp_no_nan_at_identity():
    q = quat_exp(jnp.zeros(3))
    assert jnp.allclose(q, quat_identity())
    w = quat_log(quat_identity())
    assert jnp.all(jnp.isfinite(w))
    assert jnp.linalg.norm(w) < 1e-12


def test_quat_exp_grad_finite_at_zero():
    g = jax.jacfwd(quat_exp)(jnp.zeros(3))
    assert jnp.all(jnp.isfinite(g))
    assert jnp.allclose(g[:3], 0.5 * jnp.eye(3))


def test_quat_matches_rotation_matrix():
    w = jnp.array([-0.4, 1.1, 0.25])
    R = so3_exp(w)
    assert jnp.allclose(quat_to_matrix(quat_exp(w)), R, atol=1e-12)
    q = quat_from_matrix(R)
    assert q[3] >= 0.0
    assert jnp.allclose(q, quat_canonical(quat_exp(w)), atol=1e-12)


def test_quat_from_matrix_near_pi():
    # scalar part close to zero selects a non-trace pivot
    w = jnp.array([0.0, 0.0, jnp.pi - 1e-3])
    R = so3_exp(w)
    assert jnp.allclose(quat_to_matrix(quat_from_matrix(R)), R, atol=1e-12)


def test_quat_multiply_composes_rotations():
    q1 = quat_exp(jnp.array([0.2, 0.0, 0.1]))
    q2 = quat_exp(jnp.array([-0.3, 0.4, 0.0]))
    R12 = quat_to_matrix(q1) @ quat_to_matrix(q2)
    assert jnp.allclose(quat_to_matrix(quat_multiply(q1, q2)), R12, atol=1e-12)


def test_wrap_angle_range():
    angles = jnp.array([-7.0, -jnp.pi, 0.0, 3.5, 10.0])
    wrapped = wrap_angle(angles)
    assert jnp.all(wrapped > -jnp.pi - 1e-12)
    assert jnp.all(wrapped <= jnp.pi + 1e-12)
    assert jnp.allclose(jnp.sin(wrapped), jnp.sin(angles))
    assert jnp.allclose(jnp.cos(wrapped), jnp.cos(angles))
