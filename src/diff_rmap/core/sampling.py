# Copyright (c) 2025.
# This file is part of diff-rmap, released under the MIT License.
"""
Manifold sample model for diff-rmap.

Every sampling space (R2, SO2, SE2, R3, SO3, SE3) is implemented as one
:class:`SampleSpace` subclass with three associated dimensions:

    sample_dim
        Size of the flat pose encoding stored in trajectories.
    input_dim
        Size of the classifier feature vector. It is larger than
        ``sample_dim`` where an over-parameterized encoding removes the angle
        wrap-around (SO2 / SE2 use ``cos θ, sin θ``).
    vel_dim
        Size of the tangent (velocity) vector, i.e. the true number of
        degrees of freedom.

Conventions
-----------
Poses are 4×4 homogeneous transforms (see :mod:`diff_rmap.core.math3d`).

The velocity update ``sample ⊕ vel`` is *decoupled*:

    • translation components are added in the world frame,
    • rotation components are left-composed, ``R_new = exp(ω) · R``.

With this update ``sample_error(pre, suc)`` is the exact inverse of
``integrate_vel_to_sample``, and the Jacobians returned by
``rel_vel_to_vel_mat`` map world-frame velocities of the predecessor or the
successor onto the velocity of the relative sample expressed in the
predecessor frame.

Key functions
-------------
get_sample_space(space)
    Factory keyed by :class:`~diff_rmap.core.types.SamplingSpace` (or its
    string / integer form). Instances are stateless and cached.

SampleSpace.input_to_vel_mat(sample)
    Jacobian of ``sample_to_input(sample ⊕ v)`` at ``v = 0``, computed with
    ``jax.jacfwd``. This is the chain-rule link between the classifier's
    input space and the planner's velocity space.

Notes
-----
All operations are written in ``jax.numpy`` without Python-level branching on
values, so they can be ``jax.jit``-compiled, differentiated and ``vmap``-ed.
Planar spaces additionally support stance mirroring (reflection of the
lateral coordinate and of the yaw), used by alternating left/right footstep
planning.
"""

from __future__ import annotations

from typing import ClassVar, Dict, Optional, Tuple, Type

import jax
import jax.numpy as jnp

from .errors import UnsupportedSamplingSpaceError
from .math3d import (
    hat,
    make_transform,
    planar_transform,
    quat_canonical,
    quat_conjugate,
    quat_exp,
    quat_from_matrix,
    quat_log,
    quat_multiply,
    quat_to_matrix,
    rot2d,
    wrap_angle,
    yaw_from_matrix,
)
from .types import SamplingSpace


class SampleSpace:
    """Base class of the six sampling spaces."""

    sampling_space: ClassVar[SamplingSpace]
    sample_dim: ClassVar[int]
    input_dim: ClassVar[int]
    vel_dim: ClassVar[int]

    # Per-component signs applied when mirroring a stance (planar spaces only).
    sample_mirror_mask: ClassVar[Optional[Tuple[float, ...]]] = None
    vel_mirror_mask: ClassVar[Optional[Tuple[float, ...]]] = None

    def __init_subclass__(cls, **kwargs) -> None:
        super().__init_subclass__(**kwargs)
        if not hasattr(cls, "sampling_space"):
            # Intermediate helper classes carry no dimensions.
            return
        if not (0 < cls.vel_dim <= cls.sample_dim <= cls.input_dim):
            raise TypeError(
                f"{cls.__name__}: expected 0 < vel_dim <= sample_dim <= input_dim, got "
                f"({cls.vel_dim}, {cls.sample_dim}, {cls.input_dim})"
            )
        if cls.sample_mirror_mask is not None and (
            len(cls.sample_mirror_mask) != cls.sample_dim
            or cls.vel_mirror_mask is None
            or len(cls.vel_mirror_mask) != cls.vel_dim
        ):
            raise TypeError(
                f"{cls.__name__}: mirror masks must have sample_dim ({cls.sample_dim}) and "
                f"vel_dim ({cls.vel_dim}) entries"
            )

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    # --- Conversions ---

    def pose_to_sample(self, pose: jnp.ndarray) -> jnp.ndarray:
        raise NotImplementedError

    def sample_to_pose(self, sample: jnp.ndarray) -> jnp.ndarray:
        raise NotImplementedError

    def sample_to_input(self, sample: jnp.ndarray) -> jnp.ndarray:
        raise NotImplementedError

    def input_to_sample(self, input_vec: jnp.ndarray) -> jnp.ndarray:
        raise NotImplementedError

    def sample_to_cloud_pos(self, sample: jnp.ndarray) -> jnp.ndarray:
        """3-D point used to draw a sample as part of a point cloud."""
        raise NotImplementedError

    # --- Tangent-space operations ---

    def integrate_vel_to_sample(self, sample: jnp.ndarray, vel: jnp.ndarray) -> jnp.ndarray:
        """Return ``sample ⊕ vel`` (duration is assumed to be one)."""
        raise NotImplementedError

    def sample_error(self, pre_sample: jnp.ndarray, suc_sample: jnp.ndarray) -> jnp.ndarray:
        """Velocity that moves ``pre_sample`` onto ``suc_sample``."""
        raise NotImplementedError

    def rel_sample(self, pre_sample: jnp.ndarray, suc_sample: jnp.ndarray) -> jnp.ndarray:
        """``suc_sample`` expressed in the local frame of ``pre_sample``."""
        raise NotImplementedError

    def compose_sample(self, pre_sample: jnp.ndarray, rel: jnp.ndarray) -> jnp.ndarray:
        """Inverse of :meth:`rel_sample`: place ``rel`` in the frame of ``pre_sample``."""
        raise NotImplementedError

    def rel_vel_to_vel_mat(
        self,
        pre_sample: jnp.ndarray,
        suc_sample: jnp.ndarray,
        wrt_suc: bool,
    ) -> jnp.ndarray:
        """
        (vel_dim, vel_dim) Jacobian mapping the velocity of the successor
        (``wrt_suc=True``) or of the predecessor to the velocity of
        ``rel_sample(pre_sample, suc_sample)``.
        """
        raise NotImplementedError

    def random_pose(self, key: jax.Array) -> jnp.ndarray:
        """Random pose on this manifold (positions in [-1, 1])."""
        raise NotImplementedError

    # --- Generic helpers ---

    @property
    def identity_sample(self) -> jnp.ndarray:
        return self.pose_to_sample(jnp.eye(4))

    def zero_vel(self) -> jnp.ndarray:
        return jnp.zeros(self.vel_dim)

    def input_to_vel_mat(self, sample: jnp.ndarray) -> jnp.ndarray:
        """(input_dim, vel_dim) Jacobian of the classifier input w.r.t. velocity."""
        sample = jnp.asarray(sample)

        def input_after(vel: jnp.ndarray) -> jnp.ndarray:
            return self.sample_to_input(self.integrate_vel_to_sample(sample, vel))

        return jax.jacfwd(input_after)(self.zero_vel())

    @property
    def supports_mirror(self) -> bool:
        return self.sample_mirror_mask is not None

    def _require_mirror(self) -> None:
        if not self.supports_mirror:
            raise ValueError(f"{self.sampling_space} does not support stance mirroring")

    def mirror_sample(self, sample: jnp.ndarray) -> jnp.ndarray:
        self._require_mirror()
        return jnp.asarray(sample) * jnp.asarray(self.sample_mirror_mask)

    def mirror_vel_mat(self, mat: jnp.ndarray) -> jnp.ndarray:
        """Mirror the rows (output velocity components) of a velocity Jacobian."""
        self._require_mirror()
        return jnp.asarray(self.vel_mirror_mask)[:, None] * mat

    def mirror_pose(self, pose: jnp.ndarray) -> jnp.ndarray:
        return self.sample_to_pose(self.mirror_sample(self.pose_to_sample(pose)))


class _EuclideanSpace(SampleSpace):
    """Pure translation: every operation is plain vector arithmetic."""

    def pose_to_sample(self, pose):
        return jnp.asarray(pose)[: self.sample_dim, 3]

    def sample_to_pose(self, sample):
        t = jnp.zeros(3).at[: self.sample_dim].set(sample)
        return make_transform(jnp.eye(3), t)

    def sample_to_input(self, sample):
        return jnp.asarray(sample)

    def input_to_sample(self, input_vec):
        return jnp.asarray(input_vec)

    def sample_to_cloud_pos(self, sample):
        return jnp.zeros(3).at[: self.sample_dim].set(sample)

    def integrate_vel_to_sample(self, sample, vel):
        return sample + vel

    def sample_error(self, pre_sample, suc_sample):
        return suc_sample - pre_sample

    def rel_sample(self, pre_sample, suc_sample):
        return suc_sample - pre_sample

    def compose_sample(self, pre_sample, rel):
        return pre_sample + rel

    def rel_vel_to_vel_mat(self, pre_sample, suc_sample, wrt_suc):
        eye = jnp.eye(self.vel_dim)
        return eye if wrt_suc else -eye

    def random_pose(self, key):
        t = jax.random.uniform(key, (self.sample_dim,), minval=-1.0, maxval=1.0)
        return self.sample_to_pose(t)


class R2Space(_EuclideanSpace):
    sampling_space = SamplingSpace.R2
    sample_dim = 2
    input_dim = 2
    vel_dim = 2
    sample_mirror_mask = (1.0, -1.0)
    vel_mirror_mask = (1.0, -1.0)


class R3Space(_EuclideanSpace):
    sampling_space = SamplingSpace.R3
    sample_dim = 3
    input_dim = 3
    vel_dim = 3


class SO2Space(SampleSpace):
    """Planar rotation, sample ``[θ]`` with θ in (-π, π]."""

    sampling_space = SamplingSpace.SO2
    sample_dim = 1
    input_dim = 2
    vel_dim = 1
    sample_mirror_mask = (-1.0,)
    vel_mirror_mask = (-1.0,)

    def pose_to_sample(self, pose):
        return jnp.array([yaw_from_matrix(jnp.asarray(pose)[:3, :3])])

    def sample_to_pose(self, sample):
        return planar_transform(0.0, 0.0, sample[0])

    def sample_to_input(self, sample):
        return jnp.array([jnp.cos(sample[0]), jnp.sin(sample[0])])

    def input_to_sample(self, input_vec):
        return jnp.array([jnp.arctan2(input_vec[1], input_vec[0])])

    def sample_to_cloud_pos(self, sample):
        return jnp.array([jnp.cos(sample[0]), jnp.sin(sample[0]), 0.0])

    def integrate_vel_to_sample(self, sample, vel):
        return wrap_angle(sample + vel)

    def sample_error(self, pre_sample, suc_sample):
        return wrap_angle(suc_sample - pre_sample)

    def rel_sample(self, pre_sample, suc_sample):
        return wrap_angle(suc_sample - pre_sample)

    def compose_sample(self, pre_sample, rel):
        return wrap_angle(pre_sample + rel)

    def rel_vel_to_vel_mat(self, pre_sample, suc_sample, wrt_suc):
        return jnp.eye(1) if wrt_suc else -jnp.eye(1)

    def random_pose(self, key):
        theta = jax.random.uniform(key, (1,), minval=-jnp.pi, maxval=jnp.pi)
        return self.sample_to_pose(theta)


class SE2Space(SampleSpace):
    """Planar rigid motion, sample ``[x, y, θ]``."""

    sampling_space = SamplingSpace.SE2
    sample_dim = 3
    input_dim = 4
    vel_dim = 3
    sample_mirror_mask = (1.0, -1.0, -1.0)
    vel_mirror_mask = (1.0, -1.0, -1.0)

    def pose_to_sample(self, pose):
        pose = jnp.asarray(pose)
        return jnp.array([pose[0, 3], pose[1, 3], yaw_from_matrix(pose[:3, :3])])

    def sample_to_pose(self, sample):
        return planar_transform(sample[0], sample[1], sample[2])

    def sample_to_input(self, sample):
        return jnp.array([sample[0], sample[1], jnp.cos(sample[2]), jnp.sin(sample[2])])

    def input_to_sample(self, input_vec):
        return jnp.array([input_vec[0], input_vec[1], jnp.arctan2(input_vec[3], input_vec[2])])

    def sample_to_cloud_pos(self, sample):
        return jnp.array([sample[0], sample[1], 0.0])

    def integrate_vel_to_sample(self, sample, vel):
        return jnp.concatenate([sample[:2] + vel[:2], wrap_angle(sample[2:] + vel[2:])])

    def sample_error(self, pre_sample, suc_sample):
        return jnp.concatenate([
            suc_sample[:2] - pre_sample[:2],
            wrap_angle(suc_sample[2:] - pre_sample[2:]),
        ])

    def rel_sample(self, pre_sample, suc_sample):
        R_pre = rot2d(pre_sample[2])
        return jnp.concatenate([
            R_pre.T @ (suc_sample[:2] - pre_sample[:2]),
            wrap_angle(suc_sample[2:] - pre_sample[2:]),
        ])

    def compose_sample(self, pre_sample, rel):
        R_pre = rot2d(pre_sample[2])
        return jnp.concatenate([
            pre_sample[:2] + R_pre @ rel[:2],
            wrap_angle(pre_sample[2:] + rel[2:]),
        ])

    def rel_vel_to_vel_mat(self, pre_sample, suc_sample, wrt_suc):
        R_pre_T = rot2d(pre_sample[2]).T
        if wrt_suc:
            return jnp.eye(3).at[:2, :2].set(R_pre_T)
        rel_pos = R_pre_T @ (suc_sample[:2] - pre_sample[:2])
        mat = -jnp.eye(3).at[:2, :2].set(R_pre_T)
        # Rotating the predecessor by ω moves the relative position by -ω J p_rel.
        return mat.at[:2, 2].set(jnp.array([rel_pos[1], -rel_pos[0]]))

    def random_pose(self, key):
        key_pos, key_rot = jax.random.split(key)
        pos = jax.random.uniform(key_pos, (2,), minval=-1.0, maxval=1.0)
        theta = jax.random.uniform(key_rot, (1,), minval=-jnp.pi, maxval=jnp.pi)
        return self.sample_to_pose(jnp.concatenate([pos, theta]))


def _random_quat(key: jax.Array) -> jnp.ndarray:
    return quat_canonical(jax.random.normal(key, (4,)))


class SO3Space(SampleSpace):
    """Spatial rotation, sample = canonical quaternion ``[qx, qy, qz, qw]``."""

    sampling_space = SamplingSpace.SO3
    sample_dim = 4
    input_dim = 4
    vel_dim = 3

    def pose_to_sample(self, pose):
        return quat_from_matrix(jnp.asarray(pose)[:3, :3])

    def sample_to_pose(self, sample):
        return make_transform(quat_to_matrix(sample), jnp.zeros(3))

    def sample_to_input(self, sample):
        return quat_canonical(sample)

    def input_to_sample(self, input_vec):
        return quat_canonical(input_vec)

    def sample_to_cloud_pos(self, sample):
        return quat_log(sample)

    def integrate_vel_to_sample(self, sample, vel):
        return quat_canonical(quat_multiply(quat_exp(vel), sample))

    def sample_error(self, pre_sample, suc_sample):
        return quat_log(quat_multiply(suc_sample, quat_conjugate(pre_sample)))

    def rel_sample(self, pre_sample, suc_sample):
        return quat_canonical(quat_multiply(quat_conjugate(pre_sample), suc_sample))

    def compose_sample(self, pre_sample, rel):
        return quat_canonical(quat_multiply(pre_sample, rel))

    def rel_vel_to_vel_mat(self, pre_sample, suc_sample, wrt_suc):
        R_pre_T = quat_to_matrix(pre_sample).T
        return R_pre_T if wrt_suc else -R_pre_T

    def random_pose(self, key):
        return self.sample_to_pose(_random_quat(key))


class SE3Space(SampleSpace):
    """Spatial rigid motion, sample ``[x, y, z, qx, qy, qz, qw]``."""

    sampling_space = SamplingSpace.SE3
    sample_dim = 7
    input_dim = 7
    vel_dim = 6

    def pose_to_sample(self, pose):
        pose = jnp.asarray(pose)
        return jnp.concatenate([pose[:3, 3], quat_from_matrix(pose[:3, :3])])

    def sample_to_pose(self, sample):
        return make_transform(quat_to_matrix(sample[3:]), sample[:3])

    def sample_to_input(self, sample):
        return jnp.concatenate([sample[:3], quat_canonical(sample[3:])])

    def input_to_sample(self, input_vec):
        return jnp.concatenate([input_vec[:3], quat_canonical(input_vec[3:])])

    def sample_to_cloud_pos(self, sample):
        return sample[:3]

    def integrate_vel_to_sample(self, sample, vel):
        return jnp.concatenate([
            sample[:3] + vel[:3],
            quat_canonical(quat_multiply(quat_exp(vel[3:]), sample[3:])),
        ])

    def sample_error(self, pre_sample, suc_sample):
        return jnp.concatenate([
            suc_sample[:3] - pre_sample[:3],
            quat_log(quat_multiply(suc_sample[3:], quat_conjugate(pre_sample[3:]))),
        ])

    def rel_sample(self, pre_sample, suc_sample):
        R_pre = quat_to_matrix(pre_sample[3:])
        return jnp.concatenate([
            R_pre.T @ (suc_sample[:3] - pre_sample[:3]),
            quat_canonical(quat_multiply(quat_conjugate(pre_sample[3:]), suc_sample[3:])),
        ])

    def compose_sample(self, pre_sample, rel):
        R_pre = quat_to_matrix(pre_sample[3:])
        return jnp.concatenate([
            pre_sample[:3] + R_pre @ rel[:3],
            quat_canonical(quat_multiply(pre_sample[3:], rel[3:])),
        ])

    def rel_vel_to_vel_mat(self, pre_sample, suc_sample, wrt_suc):
        R_pre_T = quat_to_matrix(pre_sample[3:]).T
        mat = jnp.zeros((6, 6))
        if wrt_suc:
            return mat.at[:3, :3].set(R_pre_T).at[3:, 3:].set(R_pre_T)
        diff = suc_sample[:3] - pre_sample[:3]
        mat = mat.at[:3, :3].set(-R_pre_T)
        mat = mat.at[:3, 3:].set(R_pre_T @ hat(diff))
        return mat.at[3:, 3:].set(-R_pre_T)

    def random_pose(self, key):
        key_pos, key_rot = jax.random.split(key)
        pos = jax.random.uniform(key_pos, (3,), minval=-1.0, maxval=1.0)
        return self.sample_to_pose(jnp.concatenate([pos, _random_quat(key_rot)]))


SPACE_CLASSES: Dict[SamplingSpace, Type[SampleSpace]] = {
    cls.sampling_space: cls
    for cls in (R2Space, SO2Space, SE2Space, R3Space, SO3Space, SE3Space)
}

_INSTANCES: Dict[SamplingSpace, SampleSpace] = {}


def get_sample_space(sampling_space) -> SampleSpace:
    """
    Return the (cached) sample space for an enum member, its name or its
    integer value.

    :raises UnsupportedSamplingSpaceError: for an unknown value.
    """
    try:
        key = SamplingSpace.parse(sampling_space)
    except UnsupportedSamplingSpaceError as e:
        raise UnsupportedSamplingSpaceError(sampling_space, "get_sample_space") from e
    if key not in _INSTANCES:
        _INSTANCES[key] = SPACE_CLASSES[key]()
    return _INSTANCES[key]
