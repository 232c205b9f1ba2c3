"""
Tests for the voxel-deduplicated map: occupancy, insertion, NN search, reset.
"""

import numpy as np
import pytest

from icp_mapper.mapping.correspondences import build_correspondences
from icp_mapper.mapping.voxel_map import SparseVoxelMap


class TestInsertion:
    def test_new_map_is_empty(self):
        vmap = SparseVoxelMap(0.5)
        assert vmap.is_empty
        assert vmap.size == 0
        assert vmap.map_cloud.shape == (0, 3)

    def test_insert_unique_dedups_same_voxel(self):
        vmap = SparseVoxelMap(0.5)
        assert vmap.insert_unique([0.1, 0.1, 0.1])
        assert not vmap.insert_unique([0.2, 0.3, 0.4])
        assert vmap.size == 1
        assert np.allclose(vmap.map_cloud[0], [0.1, 0.1, 0.1])

    def test_neighbouring_voxels_both_stored(self):
        vmap = SparseVoxelMap(0.5)
        assert vmap.insert_unique([0.49, 0.0, 0.0])
        assert vmap.insert_unique([0.51, 0.0, 0.0])
        assert vmap.size == 2

    def test_negative_coordinates_use_floor(self):
        vmap = SparseVoxelMap(0.5)
        assert vmap.voxel_key([-0.1, 0.1, -0.6]) == (-1, 0, -2)
        assert vmap.insert_unique([-0.1, 0.0, 0.0])
        assert vmap.insert_unique([0.1, 0.0, 0.0])

    def test_is_occupied(self):
        vmap = SparseVoxelMap(1.0)
        vmap.insert_unique([2.5, 2.5, 2.5])
        assert vmap.is_occupied([2.0, 2.9, 2.1])
        assert not vmap.is_occupied([3.0, 2.5, 2.5])

    def test_non_finite_point_skipped(self):
        vmap = SparseVoxelMap(0.5)
        assert not vmap.insert_unique([np.nan, 0.0, 0.0])
        assert vmap.is_empty

    def test_insert_cloud_counts_new_points(self, bootstrap_cloud):
        vmap = SparseVoxelMap(0.5)
        assert vmap.insert_cloud(bootstrap_cloud) == 100
        assert vmap.size == 100
        assert vmap.insert_cloud(bootstrap_cloud) == 0
        assert vmap.size == 100

    def test_insert_cloud_keeps_first_point_per_voxel(self):
        vmap = SparseVoxelMap(1.0)
        cloud = np.array([
            [0.9, 0.1, 0.1],
            [0.2, 0.2, 0.2],
            [1.5, 0.0, 0.0],
            [0.5, 0.5, 0.5],
        ])
        assert vmap.insert_cloud(cloud) == 2
        assert np.allclose(vmap.map_cloud, [[0.9, 0.1, 0.1], [1.5, 0.0, 0.0]])

    def test_insert_cloud_matches_point_loop(self, lattice_cloud):
        rng = np.random.default_rng(3)
        cloud = np.vstack([lattice_cloud, lattice_cloud + rng.normal(scale=0.2, size=lattice_cloud.shape)])
        batched = SparseVoxelMap(0.5)
        looped = SparseVoxelMap(0.5)
        batched.insert_cloud(cloud)
        for p in cloud:
            looped.insert_unique(p)
        assert np.array_equal(batched.map_cloud, looped.map_cloud)

    def test_at_most_one_point_per_voxel(self):
        rng = np.random.default_rng(11)
        vmap = SparseVoxelMap(0.3)
        vmap.insert_cloud(rng.uniform(-2.0, 2.0, size=(5000, 3)))
        keys = np.floor(vmap.map_cloud / 0.3).astype(int)
        assert np.unique(keys, axis=0).shape[0] == vmap.size

    def test_grows_past_initial_capacity(self):
        vmap = SparseVoxelMap(1.0)
        cloud = np.stack([np.arange(3000, dtype=float) + 0.5, np.zeros(3000), np.zeros(3000)], axis=1)
        assert vmap.insert_cloud(cloud) == 3000
        assert np.array_equal(vmap.map_cloud, cloud)

    def test_map_cloud_is_a_copy(self, bootstrap_cloud):
        vmap = SparseVoxelMap(0.5)
        vmap.insert_cloud(bootstrap_cloud)
        snapshot = vmap.map_cloud
        snapshot[:] = 0.0
        assert not np.allclose(vmap.map_cloud, 0.0)

    @pytest.mark.parametrize("resolution", [0.0, -1.0, float("nan")])
    def test_bad_resolution_raises(self, resolution):
        with pytest.raises(ValueError):
            SparseVoxelMap(resolution)


class TestNearestNeighbor:
    def test_empty_map_returns_none(self):
        vmap = SparseVoxelMap(0.5)
        assert vmap.approximate_nearest_neighbor([0.0, 0.0, 0.0]) is None
        idx, nn = vmap.approximate_nearest_neighbors(np.zeros((5, 3)))
        assert idx.shape == (0,)
        assert nn.shape == (0, 3)

    def test_exact_when_eps_zero(self, lattice_cloud):
        vmap = SparseVoxelMap(0.5, search_eps=0.0)
        vmap.insert_cloud(lattice_cloud)
        query = lattice_cloud[17] + np.array([0.05, -0.05, 0.02])
        assert np.allclose(vmap.approximate_nearest_neighbor(query), lattice_cloud[17])

    def test_approximate_within_bound(self, lattice_cloud):
        eps = 0.5
        vmap = SparseVoxelMap(0.5, search_eps=eps)
        vmap.insert_cloud(lattice_cloud)
        rng = np.random.default_rng(5)
        queries = rng.uniform(0.0, 9.0, size=(50, 3))
        _, nn = vmap.approximate_nearest_neighbors(queries)
        for q, found in zip(queries, nn):
            true_d = np.min(np.linalg.norm(lattice_cloud - q, axis=1))
            assert np.linalg.norm(found - q) <= (1.0 + eps) * true_d + 1e-9

    def test_tree_rebuilt_after_insert(self):
        vmap = SparseVoxelMap(0.5, search_eps=0.0)
        vmap.insert_unique([0.0, 0.0, 0.0])
        assert np.allclose(vmap.approximate_nearest_neighbor([5.0, 5.0, 5.0]), [0.0, 0.0, 0.0])
        vmap.insert_unique([5.1, 5.1, 5.1])
        assert np.allclose(vmap.approximate_nearest_neighbor([5.0, 5.0, 5.0]), [5.1, 5.1, 5.1])

    def test_correspondences_one_per_scan_point(self, lattice_cloud):
        vmap = SparseVoxelMap(0.5)
        vmap.insert_cloud(lattice_cloud)
        partner = build_correspondences(vmap, lattice_cloud + 0.02)
        assert partner.shape == lattice_cloud.shape
        assert np.allclose(partner, lattice_cloud)

    def test_correspondences_empty_map(self, lattice_cloud):
        partner = build_correspondences(SparseVoxelMap(0.5), lattice_cloud)
        assert partner.shape == (0, 3)

    def test_correspondences_skip_non_finite(self, lattice_cloud):
        vmap = SparseVoxelMap(0.5)
        vmap.insert_cloud(lattice_cloud)
        scan = lattice_cloud[:10].copy()
        scan[3] = np.nan
        assert build_correspondences(vmap, scan).shape == (9, 3)


class TestReset:
    def test_reset_clears_points_and_occupancy(self, bootstrap_cloud):
        vmap = SparseVoxelMap(0.5)
        vmap.insert_cloud(bootstrap_cloud)
        vmap.reset()
        assert vmap.is_empty
        assert not vmap.is_occupied(bootstrap_cloud[0])
        assert vmap.approximate_nearest_neighbor(bootstrap_cloud[0]) is None
        assert vmap.insert_cloud(bootstrap_cloud) == 100

    def test_reset_changes_resolution(self, bootstrap_cloud):
        vmap = SparseVoxelMap(0.5)
        vmap.insert_cloud(bootstrap_cloud)
        vmap.reset(resolution=20.0)
        assert vmap.resolution == 20.0
        assert vmap.insert_cloud(bootstrap_cloud + 1.0) == 1
