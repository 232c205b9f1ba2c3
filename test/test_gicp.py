"""
GICP registration tests: recovery of known transforms, pruning, failure modes.
"""

import numpy as np
import pytest

from conftest import make_lattice, rot_z
from icp_mapper.common.errors import MapperError
from icp_mapper.common.pose import Pose6DOF, inverse
from icp_mapper.registration import GicpConfig, GicpRegistration, estimate_transform
from icp_mapper.registration.gicp import estimate_plane_covariances


def _misaligned(target: np.ndarray, true_delta: Pose6DOF) -> np.ndarray:
    """Source cloud such that true_delta maps it back onto target."""
    return inverse(true_delta).apply(target)


class TestRecovery:
    def test_pure_translation(self, lattice_cloud):
        true_delta = Pose6DOF(np.eye(3), [0.1, -0.05, 0.02])
        result = estimate_transform(_misaligned(lattice_cloud, true_delta), lattice_cloud)

        assert result.converged
        assert result.error is None
        assert np.allclose(result.delta.translation, true_delta.translation, atol=1e-4)
        assert np.allclose(result.delta.rotation, np.eye(3), atol=1e-4)
        assert result.fitness < 1e-6

    def test_rotation_and_translation(self, lattice_cloud):
        true_delta = Pose6DOF(rot_z(0.01), [0.08, 0.03, -0.02])
        result = GicpRegistration().estimate_transform(
            _misaligned(lattice_cloud, true_delta), lattice_cloud
        )

        assert result.converged
        assert np.allclose(result.delta.rotation, true_delta.rotation, atol=1e-4)
        assert np.allclose(result.delta.translation, true_delta.translation, atol=1e-4)
        assert result.delta.is_valid()

    def test_aligned_clouds_converge_to_identity(self, lattice_cloud):
        result = estimate_transform(lattice_cloud, lattice_cloud)
        assert result.converged
        assert result.iterations <= 2
        assert np.allclose(result.delta.to_matrix(), np.eye(4), atol=1e-8)

    def test_initial_guess_is_used(self, lattice_cloud):
        true_delta = Pose6DOF(np.eye(3), [0.6, 0.0, 0.0])
        source = _misaligned(lattice_cloud, true_delta)
        result = GicpRegistration().estimate_transform(
            source, lattice_cloud, init=Pose6DOF(np.eye(3), [0.55, 0.0, 0.0])
        )
        assert result.converged
        assert np.allclose(result.delta.translation, [0.6, 0.0, 0.0], atol=1e-4)

    def test_update_norms_recorded(self, lattice_cloud):
        true_delta = Pose6DOF(np.eye(3), [0.1, 0.0, 0.0])
        result = estimate_transform(_misaligned(lattice_cloud, true_delta), lattice_cloud)
        assert len(result.update_norms) == result.iterations
        rho, omega = result.update_norms[-1]
        assert rho < 1e-6 and omega < 1e-6


class TestFailureModes:
    def test_empty_source(self, lattice_cloud):
        result = estimate_transform(np.empty((0, 3)), lattice_cloud)
        assert not result.converged
        assert result.error is MapperError.NO_CORRESPONDENCES
        assert result.n_source == 0

    def test_empty_target(self, lattice_cloud):
        result = estimate_transform(lattice_cloud, np.empty((0, 3)))
        assert not result.converged
        assert result.n_target == 0

    def test_far_clouds_are_pruned(self, lattice_cloud):
        result = estimate_transform(lattice_cloud + 100.0, lattice_cloud)
        assert not result.converged
        assert result.error is MapperError.NO_CORRESPONDENCES
        assert result.n_correspondences == 0

    def test_pruning_respects_distance(self, lattice_cloud):
        """Pairs beyond max_correspondence_distance are dropped."""
        config = GicpConfig(max_correspondence_distance=0.05)
        true_delta = Pose6DOF(np.eye(3), [0.2, 0.0, 0.0])
        result = estimate_transform(_misaligned(lattice_cloud, true_delta), lattice_cloud, config)
        assert not result.converged
        assert result.error is MapperError.NO_CORRESPONDENCES

    def test_iteration_budget_exhausted(self, lattice_cloud):
        config = GicpConfig(max_iterations=1)
        true_delta = Pose6DOF(np.eye(3), [0.1, 0.0, 0.0])
        result = estimate_transform(_misaligned(lattice_cloud, true_delta), lattice_cloud, config)
        assert not result.converged
        assert result.error is MapperError.DID_NOT_CONVERGE
        assert result.iterations == 1

    def test_non_finite_points_ignored(self, lattice_cloud):
        source = lattice_cloud.copy()
        source[0] = np.nan
        result = estimate_transform(source, lattice_cloud)
        assert result.converged
        assert result.n_source == lattice_cloud.shape[0] - 1


class TestConfig:
    def test_ransac_is_rejected(self):
        with pytest.raises(ValueError):
            GicpConfig(ransac_iterations=10)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_iterations": 0},
            {"transformation_epsilon": 0.0},
            {"max_correspondence_distance": -1.0},
            {"k_correspondences": 2},
            {"gicp_epsilon": 0.0},
        ],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            GicpConfig(**kwargs)


class TestCovariances:
    def test_planar_patch_normal_gets_epsilon(self):
        plane = make_lattice(8, 8, 1, spacing=0.2, jitter=0.0)
        C = estimate_plane_covariances(plane, k=10, epsilon=1e-3)
        assert C.shape == (64, 3, 3)
        normal = np.array([0.0, 0.0, 1.0])
        for cov in C:
            assert np.allclose(cov @ normal, 1e-3 * normal, atol=1e-9)
            assert np.allclose(cov, cov.T)

    def test_small_cloud_uses_all_points(self):
        C = estimate_plane_covariances(np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]), k=20)
        assert C.shape == (3, 3, 3)
        assert np.all(np.linalg.eigvalsh(C) > 0.0)
