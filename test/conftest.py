import os
import sys

import numpy as np
import pytest

# Ensure local package import works for pytest collection.
_TEST_DIR = os.path.dirname(__file__)
_PKG_ROOT = os.path.abspath(os.path.join(_TEST_DIR, ".."))
if _PKG_ROOT not in sys.path:
    sys.path.insert(0, _PKG_ROOT)


# =============================================================================
# Config Fixtures
# =============================================================================


@pytest.fixture
def packaged_config_path() -> str:
    """Path to the parameter file shipped in config/."""
    path = os.path.join(_PKG_ROOT, "config", "icp_mapper.yaml")
    if not os.path.exists(path):
        pytest.skip("config/icp_mapper.yaml not found")
    return path


# =============================================================================
# Point Cloud Fixtures
# =============================================================================


def make_lattice(nx: int, ny: int, nz: int, spacing: float = 1.0, jitter: float = 0.1, seed: int = 42):
    """
    Jittered lattice; with spacing 1.0, jitter <= 0.1 and resolution 0.5
    every point lands in its own voxel.
    """
    rng = np.random.default_rng(seed)
    grid = np.stack(
        np.meshgrid(np.arange(nx), np.arange(ny), np.arange(nz), indexing="ij"),
        axis=-1,
    ).reshape(-1, 3).astype(float) * spacing
    return grid + rng.uniform(-jitter, jitter, size=grid.shape)


@pytest.fixture
def lattice_cloud() -> np.ndarray:
    """400 points, 10 x 10 x 4."""
    return make_lattice(10, 10, 4)


@pytest.fixture
def bootstrap_cloud() -> np.ndarray:
    """100 points, 10 x 10 x 1."""
    return make_lattice(10, 10, 1)


# =============================================================================
# Pose Fixtures
# =============================================================================


def rot_z(angle: float) -> np.ndarray:
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])


@pytest.fixture
def identity_pose():
    from icp_mapper.common.pose import Pose6DOF
    return Pose6DOF.identity()


@pytest.fixture
def random_pose():
    """Small random rigid transform."""
    from icp_mapper.common.pose import Pose6DOF
    rng = np.random.default_rng(7)
    return Pose6DOF.from_rotvec_trans(rng.normal(size=3) * 0.05, rng.normal(size=3) * 0.1, stamp=1.0)
