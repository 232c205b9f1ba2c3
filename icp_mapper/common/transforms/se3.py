"""
SE(3) geometry helpers on rotation matrices and homogeneous transforms.

Conventions:
- Rotations are 3x3 orthonormal matrices with det(R) = +1.
- Tangent vectors are ordered [rho(3), omega(3)] (translation first,
  rotation second), matching the registration Jacobians.
- Quaternions are (x, y, z, w), the ROS ordering.

Numerical Policy:
    ROTATION_EPSILON = 1e-10 switches exp/log to first-order Taylor forms.
    SINGULARITY_EPSILON = 1e-6 selects the theta ~ pi branch of log.
    ORTHONORMAL_TOLERANCE = 1e-6 bounds ||R^T R - I|| for a valid rotation.

References:
- Barfoot (2017): State Estimation for Robotics
- Sola et al. (2018): A micro Lie theory for state estimation
"""

from __future__ import annotations

import math
from typing import Tuple

import numpy as np


# =============================================================================
# Numerical Constants
# =============================================================================

ROTATION_EPSILON: float = 1e-10
SINGULARITY_EPSILON: float = 1e-6
ORTHONORMAL_TOLERANCE: float = 1e-6


# =============================================================================
# so(3) hat / vee
# =============================================================================


def skew(v: np.ndarray) -> np.ndarray:
    """Skew-symmetric matrix from 3-vector (hat operator)."""
    v = np.asarray(v, dtype=float).reshape(-1)
    return np.array([
        [0.0, -v[2], v[1]],
        [v[2], 0.0, -v[0]],
        [-v[1], v[0], 0.0]
    ], dtype=float)


def skew_batch(points: np.ndarray) -> np.ndarray:
    """Stack of skew-symmetric matrices for (N, 3) vectors -> (N, 3, 3)."""
    points = np.asarray(points, dtype=float).reshape(-1, 3)
    n = points.shape[0]
    S = np.zeros((n, 3, 3), dtype=float)
    S[:, 0, 1] = -points[:, 2]
    S[:, 0, 2] = points[:, 1]
    S[:, 1, 0] = points[:, 2]
    S[:, 1, 2] = -points[:, 0]
    S[:, 2, 0] = -points[:, 1]
    S[:, 2, 1] = points[:, 0]
    return S


# =============================================================================
# Rotation vector <-> rotation matrix (so(3) <-> SO(3))
# =============================================================================


def rotvec_to_rotmat(rotvec: np.ndarray) -> np.ndarray:
    """
    Rodrigues' formula: R = I + sin(theta)[k]x + (1 - cos(theta))[k]x^2.

    For theta < ROTATION_EPSILON uses R = I + [rotvec]x.
    """
    rotvec = np.asarray(rotvec, dtype=float).reshape(-1)
    theta = float(np.linalg.norm(rotvec))

    if theta < ROTATION_EPSILON:
        return np.eye(3, dtype=float) + skew(rotvec)

    K = skew(rotvec / theta)
    return np.eye(3, dtype=float) + math.sin(theta) * K + (1.0 - math.cos(theta)) * (K @ K)


def rotmat_to_rotvec(R: np.ndarray) -> np.ndarray:
    """
    Logarithmic map SO(3) -> so(3).

    Cases: theta ~ 0 (skew part), theta ~ pi (diagonal axis extraction),
    general (standard formula).
    """
    R = np.asarray(R, dtype=float)
    cos_theta = float(np.clip((np.trace(R) - 1.0) / 2.0, -1.0, 1.0))
    theta = math.acos(cos_theta)

    if theta < ROTATION_EPSILON:
        return np.array([R[2, 1] - R[1, 2], R[0, 2] - R[2, 0], R[1, 0] - R[0, 1]], dtype=float) / 2.0

    if abs(theta - math.pi) < SINGULARITY_EPSILON:
        axis = np.sqrt(np.maximum((np.diag(R) + 1.0) * 0.5, 0.0))
        if axis[0] > 1e-6:
            axis[1] = math.copysign(axis[1], R[0, 1])
            axis[2] = math.copysign(axis[2], R[0, 2])
        elif axis[1] > 1e-6:
            axis[2] = math.copysign(axis[2], R[1, 2])
        axis_norm = np.linalg.norm(axis)
        if axis_norm < 1e-12:
            return np.zeros(3, dtype=float)
        return axis / axis_norm * theta

    axis = np.array([R[2, 1] - R[1, 2], R[0, 2] - R[2, 0], R[1, 0] - R[0, 1]], dtype=float)
    return axis / (2.0 * math.sin(theta)) * theta


# =============================================================================
# Quaternion conversions (x, y, z, w)
# =============================================================================


def quat_to_rotmat(qx: float, qy: float, qz: float, qw: float) -> np.ndarray:
    """Convert a quaternion to a rotation matrix. Raises on a zero quaternion."""
    n = math.sqrt(qx * qx + qy * qy + qz * qz + qw * qw)
    if n < 1e-12 or not math.isfinite(n):
        raise ValueError(f"Cannot build rotation from quaternion {(qx, qy, qz, qw)}")
    qx, qy, qz, qw = qx / n, qy / n, qz / n, qw / n

    xx, yy, zz = qx * qx, qy * qy, qz * qz
    xy, xz, yz = qx * qy, qx * qz, qy * qz
    wx, wy, wz = qw * qx, qw * qy, qw * qz

    return np.array([
        [1.0 - 2.0 * (yy + zz), 2.0 * (xy - wz), 2.0 * (xz + wy)],
        [2.0 * (xy + wz), 1.0 - 2.0 * (xx + zz), 2.0 * (yz - wx)],
        [2.0 * (xz - wy), 2.0 * (yz + wx), 1.0 - 2.0 * (xx + yy)]
    ], dtype=float)


def rotmat_to_quat(R: np.ndarray) -> Tuple[float, float, float, float]:
    """Convert a rotation matrix to a unit quaternion with w >= 0."""
    R = np.asarray(R, dtype=float)
    trace = np.trace(R)

    if trace > 0:
        s = 0.5 / math.sqrt(trace + 1.0)
        qw = 0.25 / s
        qx = (R[2, 1] - R[1, 2]) * s
        qy = (R[0, 2] - R[2, 0]) * s
        qz = (R[1, 0] - R[0, 1]) * s
    elif R[0, 0] > R[1, 1] and R[0, 0] > R[2, 2]:
        s = 2.0 * math.sqrt(1.0 + R[0, 0] - R[1, 1] - R[2, 2])
        qw = (R[2, 1] - R[1, 2]) / s
        qx = 0.25 * s
        qy = (R[0, 1] + R[1, 0]) / s
        qz = (R[0, 2] + R[2, 0]) / s
    elif R[1, 1] > R[2, 2]:
        s = 2.0 * math.sqrt(1.0 + R[1, 1] - R[0, 0] - R[2, 2])
        qw = (R[0, 2] - R[2, 0]) / s
        qx = (R[0, 1] + R[1, 0]) / s
        qy = 0.25 * s
        qz = (R[1, 2] + R[2, 1]) / s
    else:
        s = 2.0 * math.sqrt(1.0 + R[2, 2] - R[0, 0] - R[1, 1])
        qw = (R[1, 0] - R[0, 1]) / s
        qx = (R[0, 2] + R[2, 0]) / s
        qy = (R[1, 2] + R[2, 1]) / s
        qz = 0.25 * s

    n = math.sqrt(qx * qx + qy * qy + qz * qz + qw * qw)
    if qw < 0.0:
        n = -n
    return (qx / n, qy / n, qz / n, qw / n)


# =============================================================================
# Homogeneous transforms
# =============================================================================


def is_rotation_matrix(R: np.ndarray, tol: float = ORTHONORMAL_TOLERANCE) -> bool:
    """True for a finite 3x3 orthonormal matrix with det +1."""
    R = np.asarray(R, dtype=float)
    if R.shape != (3, 3) or not np.all(np.isfinite(R)):
        return False
    if np.max(np.abs(R.T @ R - np.eye(3))) > tol:
        return False
    return abs(np.linalg.det(R) - 1.0) <= tol


def to_homogeneous(R: np.ndarray, t: np.ndarray) -> np.ndarray:
    """Build a 4x4 homogeneous matrix from (R, t)."""
    T = np.eye(4, dtype=float)
    T[:3, :3] = np.asarray(R, dtype=float)
    T[:3, 3] = np.asarray(t, dtype=float).reshape(3)
    return T


def from_homogeneous(T: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Split a 4x4 homogeneous matrix into (R, t)."""
    T = np.asarray(T, dtype=float)
    if T.shape != (4, 4):
        raise ValueError(f"Expected a 4x4 homogeneous matrix, got shape {T.shape}")
    return T[:3, :3].copy(), T[:3, 3].copy()


def se3_exp(xi: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Exponential map se(3) -> SE(3).

    xi = [rho, omega]. Returns (R, t) with t = J_l(omega) rho, where
    J_l = I + (1 - cos)/theta^2 [omega]x + (theta - sin)/theta^3 [omega]x^2.
    """
    xi = np.asarray(xi, dtype=float).reshape(-1)
    rho = xi[:3]
    phi = xi[3:6]
    theta = float(np.linalg.norm(phi))

    if theta < ROTATION_EPSILON:
        return np.eye(3, dtype=float) + skew(phi), rho.copy()

    Phi = skew(phi)
    R = rotvec_to_rotmat(phi)
    J_l = (np.eye(3)
           + (1.0 - math.cos(theta)) / (theta * theta) * Phi
           + (theta - math.sin(theta)) / (theta * theta * theta) * (Phi @ Phi))
    return R, J_l @ rho


def project_to_so3(M: np.ndarray) -> np.ndarray:
    """Nearest rotation to M via polar decomposition (one SVD)."""
    U, _S, Vh = np.linalg.svd(np.asarray(M, dtype=float))
    R = U @ Vh
    if np.linalg.det(R) < 0:
        U = U.copy()
        U[:, -1] *= -1
        R = U @ Vh
    return R
