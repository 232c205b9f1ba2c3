"""
Generalized ICP (plane-to-plane) registration.

GENERATIVE MODEL:
    Source points a_i and target points b_i are noisy samples of locally
    planar surfaces with covariances C_a_i, C_b_i. For the true transform T*:

        d_i = b_i - T* a_i  ~  N(0, C_b_i + R* C_a_i R*^T)

    GICP minimizes sum_i d_i^T M_i d_i with M_i = (C_b_i + R C_a_i R^T)^{-1}.

COVARIANCES:
    Estimated from the k nearest neighbors of each point, then regularized
    to a plane: C = U diag(1, 1, eps) U^T (U from the SVD of the sample
    covariance). Segal et al. (2009), Sec. III-B.

SOLVER:
    Outer loop alternates correspondence search (k-d tree, pairs beyond
    max_correspondence_distance pruned) and one Gauss-Newton step on the
    Mahalanobis cost with M_i frozen at the current rotation. The step is a
    left perturbation xi = [rho, omega]:

        T <- exp(xi) T,   d/d xi (T a) = [I | -[T a]x]

    Converged when ||rho|| < transformation_epsilon and
    ||omega|| < rotation_epsilon. RANSAC rejection is disabled: distance
    pruning is the only outlier handling.

Reference:
    - Segal, Haehnel, Thrun (2009): Generalized-ICP
    - Besl & McKay (1992) for ICP
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
from scipy.spatial import cKDTree

from icp_mapper.common import constants
from icp_mapper.common.errors import MapperError
from icp_mapper.common.pose import Pose6DOF
from icp_mapper.common.transforms.se3 import project_to_so3, se3_exp, skew_batch

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GicpConfig:
    """Registration parameters."""

    max_iterations: int = constants.ICP_MAX_ITERS_DEFAULT
    transformation_epsilon: float = constants.ICP_TRANSFORMATION_EPSILON_DEFAULT
    rotation_epsilon: float = constants.ICP_ROTATION_EPSILON_DEFAULT
    max_correspondence_distance: float = constants.ICP_MAX_CORRESPONDENCE_DIST_DEFAULT
    k_correspondences: int = constants.GICP_K_CORRESPONDENCES_DEFAULT
    gicp_epsilon: float = constants.GICP_EPSILON_DEFAULT
    min_correspondences: int = constants.N_MIN_SE3_DOF
    ransac_iterations: int = constants.ICP_RANSAC_ITERATIONS

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.transformation_epsilon <= 0.0 or self.rotation_epsilon <= 0.0:
            raise ValueError("transformation_epsilon and rotation_epsilon must be > 0")
        if self.max_correspondence_distance <= 0.0:
            raise ValueError(
                f"max_correspondence_distance must be > 0, got {self.max_correspondence_distance}"
            )
        if self.k_correspondences < 3:
            raise ValueError(f"k_correspondences must be >= 3, got {self.k_correspondences}")
        if not 0.0 < self.gicp_epsilon <= 1.0:
            raise ValueError(f"gicp_epsilon must be in (0, 1], got {self.gicp_epsilon}")
        if self.min_correspondences < 1:
            raise ValueError(f"min_correspondences must be >= 1, got {self.min_correspondences}")
        if self.ransac_iterations != 0:
            raise ValueError("RANSAC rejection is not supported; ransac_iterations must be 0")


@dataclass
class RegistrationResult:
    """
    GICP outcome.

    ``delta`` maps source onto target. It is only meaningful when
    ``converged`` is True.
    """

    delta: Pose6DOF
    converged: bool
    iterations: int
    max_iterations: int
    n_source: int
    n_target: int
    n_correspondences: int = 0
    fitness: float = float("inf")  # mean squared pair distance at the final estimate
    error: Optional[MapperError] = None
    update_norms: list = field(default_factory=list)


# =============================================================================
# Covariance estimation
# =============================================================================


def estimate_plane_covariances(
    points: np.ndarray,
    k: int = constants.GICP_K_CORRESPONDENCES_DEFAULT,
    epsilon: float = constants.GICP_EPSILON_DEFAULT,
) -> np.ndarray:
    """
    Per-point plane-regularized covariances, (N, 3, 3).

    Uses min(k, N) neighbors (the point itself included). Degenerate
    neighborhoods still produce a valid SPD matrix after regularization.
    """
    points = np.asarray(points, dtype=float).reshape(-1, 3)
    n = points.shape[0]
    if n == 0:
        return np.empty((0, 3, 3), dtype=float)

    k_eff = min(int(k), n)
    _, nn = cKDTree(points).query(points, k=k_eff)
    nn = np.asarray(nn).reshape(n, k_eff)

    neighbors = points[nn]
    centered = neighbors - neighbors.mean(axis=1, keepdims=True)
    sample_cov = np.einsum("nki,nkj->nij", centered, centered) / float(k_eff)

    U, _, _ = np.linalg.svd(sample_cov)
    plane = np.array([1.0, 1.0, epsilon], dtype=float)
    return np.einsum("nij,j,nkj->nik", U, plane, U)


# =============================================================================
# Solver
# =============================================================================


def _gauss_newton_step(
    p: np.ndarray,
    d: np.ndarray,
    M: np.ndarray,
) -> np.ndarray:
    """
    Solve (sum J^T M J) xi = sum J^T M d with J_i = [I | -[p_i]x].

    p: transformed source points (n, 3), d: residuals b - p (n, 3),
    M: information matrices (n, 3, 3).
    """
    S = skew_batch(p)
    MS = M @ S

    H = np.zeros((6, 6), dtype=float)
    H[:3, :3] = M.sum(axis=0)
    H[:3, 3:] = -MS.sum(axis=0)
    H[3:, :3] = H[:3, 3:].T
    H[3:, 3:] = -(S @ MS).sum(axis=0)

    Md = np.einsum("nij,nj->ni", M, d)
    g = np.concatenate([Md.sum(axis=0), np.cross(p, Md).sum(axis=0)])

    try:
        return np.linalg.solve(H, g)
    except np.linalg.LinAlgError:
        return np.linalg.lstsq(H, g, rcond=None)[0]


def _as_points(cloud) -> np.ndarray:
    arr = np.asarray(cloud, dtype=float)
    if arr.size == 0:
        return arr.reshape(0, 3)
    arr = arr.reshape(-1, 3)
    return arr[np.all(np.isfinite(arr), axis=1)]


class GicpRegistration:
    """Generalized ICP between a source scan and a target cloud."""

    def __init__(self, config: Optional[GicpConfig] = None):
        self.config = config or GicpConfig()

    def estimate_transform(
        self,
        source: np.ndarray,
        target: np.ndarray,
        init: Optional[Pose6DOF] = None,
    ) -> RegistrationResult:
        """
        Estimate the rigid transform aligning ``source`` onto ``target``.

        Never raises on degenerate input: empty clouds or too few pairs within
        the correspondence distance give converged=False.
        """
        cfg = self.config
        source = _as_points(source)
        target = _as_points(target)
        n_src, n_tgt = source.shape[0], target.shape[0]

        R = np.eye(3) if init is None else np.array(init.rotation, dtype=float)
        t = np.zeros(3) if init is None else np.array(init.translation, dtype=float)

        def _result(converged: bool, iterations: int, n_corr: int, fitness: float,
                    error: Optional[MapperError], norms: list) -> RegistrationResult:
            return RegistrationResult(
                delta=Pose6DOF(R, t),
                converged=converged,
                iterations=iterations,
                max_iterations=cfg.max_iterations,
                n_source=n_src,
                n_target=n_tgt,
                n_correspondences=n_corr,
                fitness=fitness,
                error=error,
                update_norms=norms,
            )

        if n_src == 0 or n_tgt == 0:
            _logger.warning(f"GICP: degenerate input (source={n_src}, target={n_tgt} points)")
            return _result(False, 0, 0, float("inf"), MapperError.NO_CORRESPONDENCES, [])

        C_src = estimate_plane_covariances(source, cfg.k_correspondences, cfg.gicp_epsilon)
        C_tgt = estimate_plane_covariances(target, cfg.k_correspondences, cfg.gicp_epsilon)
        tree = cKDTree(target)

        norms: list = []
        n_corr = 0
        for iteration in range(1, cfg.max_iterations + 1):
            src_tf = source @ R.T + t
            dist, idx = tree.query(src_tf, k=1, distance_upper_bound=cfg.max_correspondence_distance)
            mask = np.isfinite(dist)
            n_corr = int(np.count_nonzero(mask))
            if n_corr < cfg.min_correspondences:
                _logger.warning(
                    f"GICP: {n_corr} correspondences within {cfg.max_correspondence_distance:.3f} m "
                    f"(need {cfg.min_correspondences}) at iteration {iteration}"
                )
                return _result(False, iteration, n_corr, float("inf"),
                               MapperError.NO_CORRESPONDENCES, norms)

            p = src_tf[mask]
            matched = idx[mask]
            d = target[matched] - p
            C_a = np.einsum("ij,njk,lk->nil", R, C_src[mask], R)
            M = np.linalg.inv(C_tgt[matched] + C_a)

            xi = _gauss_newton_step(p, d, M)
            dR, dt = se3_exp(xi)
            R = project_to_so3(dR @ R)
            t = dR @ t + dt

            rho_norm = float(np.linalg.norm(xi[:3]))
            omega_norm = float(np.linalg.norm(xi[3:]))
            norms.append((rho_norm, omega_norm))

            if rho_norm < cfg.transformation_epsilon and omega_norm < cfg.rotation_epsilon:
                fitness, n_corr = self._fitness(tree, source, R, t)
                _logger.debug(
                    f"GICP converged in {iteration} iterations "
                    f"({n_corr} pairs, fitness={fitness:.6f})"
                )
                return _result(True, iteration, n_corr, fitness, None, norms)

        fitness, n_corr = self._fitness(tree, source, R, t)
        _logger.warning(
            f"GICP did not converge within {cfg.max_iterations} iterations "
            f"(last update |rho|={norms[-1][0]:.2e}, |omega|={norms[-1][1]:.2e})"
        )
        return _result(False, cfg.max_iterations, n_corr, fitness,
                       MapperError.DID_NOT_CONVERGE, norms)

    def _fitness(self, tree: cKDTree, source: np.ndarray, R: np.ndarray, t: np.ndarray):
        dist, _ = tree.query(
            source @ R.T + t, k=1,
            distance_upper_bound=self.config.max_correspondence_distance,
        )
        inliers = dist[np.isfinite(dist)]
        if inliers.shape[0] == 0:
            return float("inf"), 0
        return float(np.mean(inliers * inliers)), int(inliers.shape[0])


def estimate_transform(
    source: np.ndarray,
    target: np.ndarray,
    config: Optional[GicpConfig] = None,
) -> RegistrationResult:
    """Module-level convenience wrapper around GicpRegistration."""
    return GicpRegistration(config).estimate_transform(source, target)
