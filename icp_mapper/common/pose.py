"""
Rigid 6-DOF pose and the cloud transform utility.

Pose6DOF is (R, t, stamp) with p_out = R @ p_in + t. Composition is the
named function ``compose`` (homogeneous matrix product); poses have no
``+`` operator.

``transform_cloud`` never raises on bad input: a malformed pose or cloud
yields the input cloud unchanged with ``ok=False`` so the caller can skip
the cycle.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from icp_mapper.common.errors import MapperError
from icp_mapper.common.transforms.se3 import (
    from_homogeneous,
    is_rotation_matrix,
    quat_to_rotmat,
    rotmat_to_quat,
    rotmat_to_rotvec,
    rotvec_to_rotmat,
    to_homogeneous,
)

_logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Pose6DOF:
    """Rigid transform with an associated timestamp (seconds)."""

    rotation: np.ndarray = field(default_factory=lambda: np.eye(3, dtype=float))
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3, dtype=float))
    stamp: float = 0.0

    def __post_init__(self) -> None:
        R = np.array(self.rotation, dtype=float)
        t = np.array(self.translation, dtype=float).reshape(-1)
        if R.shape != (3, 3):
            raise ValueError(f"Pose6DOF rotation must be 3x3, got shape {R.shape}")
        if t.shape != (3,):
            raise ValueError(f"Pose6DOF translation must have 3 entries, got shape {t.shape}")
        R.setflags(write=False)
        t.setflags(write=False)
        object.__setattr__(self, "rotation", R)
        object.__setattr__(self, "translation", t)
        object.__setattr__(self, "stamp", float(self.stamp))

    # -------------------------------------------------------------------------
    # Constructors
    # -------------------------------------------------------------------------

    @classmethod
    def identity(cls, stamp: float = 0.0) -> "Pose6DOF":
        return cls(np.eye(3), np.zeros(3), stamp)

    @classmethod
    def from_matrix(cls, T: np.ndarray, stamp: float = 0.0) -> "Pose6DOF":
        """Build from a 4x4 homogeneous matrix (not validated; see is_valid)."""
        R, t = from_homogeneous(T)
        return cls(R, t, stamp)

    @classmethod
    def from_rotvec_trans(cls, rotvec, translation, stamp: float = 0.0) -> "Pose6DOF":
        return cls(rotvec_to_rotmat(rotvec), translation, stamp)

    @classmethod
    def from_quat_trans(cls, quat, translation, stamp: float = 0.0) -> "Pose6DOF":
        """quat is (x, y, z, w)."""
        qx, qy, qz, qw = (float(q) for q in quat)
        return cls(quat_to_rotmat(qx, qy, qz, qw), translation, stamp)

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    def to_matrix(self) -> np.ndarray:
        return to_homogeneous(self.rotation, self.translation)

    def as_quat(self) -> tuple[float, float, float, float]:
        return rotmat_to_quat(self.rotation)

    def as_rotvec(self) -> np.ndarray:
        return rotmat_to_rotvec(self.rotation)

    def is_valid(self) -> bool:
        """Finite translation, orthonormal rotation with det +1, finite stamp."""
        return (
            bool(np.all(np.isfinite(self.translation)))
            and bool(np.isfinite(self.stamp))
            and is_rotation_matrix(self.rotation)
        )

    def with_stamp(self, stamp: float) -> "Pose6DOF":
        return Pose6DOF(self.rotation, self.translation, stamp)

    def apply(self, points: np.ndarray) -> np.ndarray:
        """R @ p + t for (N, 3) or (3,) points; no validation."""
        points = np.asarray(points, dtype=float)
        return points @ self.rotation.T + self.translation

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Pose6DOF):
            return NotImplemented
        return (
            np.array_equal(self.rotation, other.rotation)
            and np.array_equal(self.translation, other.translation)
            and self.stamp == other.stamp
        )

    def __repr__(self) -> str:
        t = self.translation
        r = self.as_rotvec()
        return (
            f"Pose6DOF(t=({t[0]:.4f}, {t[1]:.4f}, {t[2]:.4f}), "
            f"rotvec=({r[0]:.4f}, {r[1]:.4f}, {r[2]:.4f}), stamp={self.stamp:.3f})"
        )


def compose(a: Pose6DOF, b: Pose6DOF) -> Pose6DOF:
    """
    T_a * T_b as homogeneous matrices.

    R = Ra @ Rb, t = ta + Ra @ tb. Stamp is taken from ``a``.
    """
    return Pose6DOF(
        a.rotation @ b.rotation,
        a.translation + a.rotation @ b.translation,
        a.stamp,
    )


def inverse(pose: Pose6DOF) -> Pose6DOF:
    """(R^T, -R^T t); stamp preserved."""
    R_inv = pose.rotation.T
    return Pose6DOF(R_inv, -R_inv @ pose.translation, pose.stamp)


def poses_close(a: Pose6DOF, b: Pose6DOF, atol: float = 1e-6) -> bool:
    """Compare rotation and translation entries within atol (stamps ignored)."""
    return bool(
        np.allclose(a.rotation, b.rotation, atol=atol)
        and np.allclose(a.translation, b.translation, atol=atol)
    )


@dataclass(frozen=True)
class TransformResult:
    """Outcome of transform_cloud. ``cloud`` is always a fresh array."""

    cloud: np.ndarray
    ok: bool
    error: Optional[MapperError] = None


def _as_cloud(cloud) -> Optional[np.ndarray]:
    try:
        arr = np.array(cloud, dtype=float)
    except (TypeError, ValueError):
        return None
    if arr.size == 0:
        return arr.reshape(0, 3)
    if arr.ndim != 2 or arr.shape[1] != 3:
        return None
    return arr


def transform_cloud(cloud, pose: Pose6DOF) -> TransformResult:
    """
    Apply ``pose`` to every point of ``cloud``.

    Malformed input (invalid pose, non-(N, 3) or non-finite cloud) returns
    the input unchanged with ``ok=False`` and MALFORMED_TRANSFORM.
    """
    arr = _as_cloud(cloud)
    if arr is None:
        _logger.warning("transform_cloud: input is not an (N, 3) point array; returning it unchanged")
        try:
            unchanged = np.array(cloud, dtype=float, copy=True)
        except (TypeError, ValueError):
            unchanged = np.empty((0, 3), dtype=float)
        return TransformResult(unchanged, False, MapperError.MALFORMED_TRANSFORM)

    if not isinstance(pose, Pose6DOF) or not pose.is_valid():
        _logger.warning(f"transform_cloud: malformed pose {pose!r}; returning cloud unchanged")
        return TransformResult(arr, False, MapperError.MALFORMED_TRANSFORM)

    if not np.all(np.isfinite(arr)):
        _logger.warning("transform_cloud: cloud contains non-finite points; returning it unchanged")
        return TransformResult(arr, False, MapperError.MALFORMED_TRANSFORM)

    return TransformResult(pose.apply(arr), True, None)
