"""
Sparse voxel map: voxel-deduplicated point store with approximate NN search.

Storage:
    map_cloud: (N, 3) float64 points, append-only (grows by doubling).
    occupancy: dict voxel key (i, j, k) -> row index into map_cloud,
               key = floor(p / resolution).

Invariant: at most one stored point per voxel cell of edge ``resolution``.
There is no deletion; ``reset`` drops everything at once.

Nearest-neighbor search uses a scipy cKDTree over the stored points with
``eps`` > 0, i.e. the result is within (1 + eps) of the true nearest
distance but not guaranteed to be the global nearest. The tree is rebuilt
lazily on the first query after an insert.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

import numpy as np
from scipy.spatial import cKDTree

from icp_mapper.common import constants

_logger = logging.getLogger(__name__)

VoxelKey = Tuple[int, int, int]

_INITIAL_CAPACITY = 1024


def _check_resolution(resolution: float) -> float:
    resolution = float(resolution)
    if not np.isfinite(resolution) or resolution <= 0.0:
        raise ValueError(f"Voxel resolution must be positive and finite, got {resolution}")
    return resolution


class SparseVoxelMap:
    """
    Deduplicating point map with a fixed voxel resolution.

    The map is not thread-safe: callers serialize inserts and queries.
    """

    def __init__(
        self,
        resolution: float = constants.OCTREE_RESOLUTION_DEFAULT,
        search_eps: float = constants.NN_SEARCH_EPS_DEFAULT,
    ):
        if search_eps < 0.0:
            raise ValueError(f"search_eps must be >= 0, got {search_eps}")
        self._search_eps = float(search_eps)
        self._resolution = _check_resolution(resolution)
        self._points = np.empty((_INITIAL_CAPACITY, 3), dtype=float)
        self._size = 0
        self._occupancy: Dict[VoxelKey, int] = {}
        self._tree: Optional[cKDTree] = None
        self._tree_size = 0

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def resolution(self) -> float:
        return self._resolution

    @property
    def search_eps(self) -> float:
        return self._search_eps

    @property
    def size(self) -> int:
        return self._size

    def __len__(self) -> int:
        return self._size

    @property
    def is_empty(self) -> bool:
        return self._size == 0

    @property
    def map_cloud(self) -> np.ndarray:
        """Copy of the stored points, insertion order."""
        return self._points[: self._size].copy()

    # -------------------------------------------------------------------------
    # Voxel indexing
    # -------------------------------------------------------------------------

    def voxel_key(self, point: np.ndarray) -> VoxelKey:
        p = np.asarray(point, dtype=float).reshape(3)
        i, j, k = np.floor(p / self._resolution).astype(np.int64)
        return (int(i), int(j), int(k))

    def _voxel_keys(self, cloud: np.ndarray) -> np.ndarray:
        return np.floor(cloud / self._resolution).astype(np.int64)

    def is_occupied(self, point: np.ndarray) -> bool:
        return self.voxel_key(point) in self._occupancy

    # -------------------------------------------------------------------------
    # Insertion
    # -------------------------------------------------------------------------

    def _reserve(self, extra: int) -> None:
        needed = self._size + extra
        capacity = self._points.shape[0]
        if needed <= capacity:
            return
        while capacity < needed:
            capacity *= 2
        grown = np.empty((capacity, 3), dtype=float)
        grown[: self._size] = self._points[: self._size]
        self._points = grown

    def insert_unique(self, point: np.ndarray) -> bool:
        """Store ``point`` if its voxel is free. Returns whether it was stored."""
        p = np.asarray(point, dtype=float).reshape(3)
        if not np.all(np.isfinite(p)):
            _logger.debug("insert_unique: skipping non-finite point")
            return False
        key = self.voxel_key(p)
        if key in self._occupancy:
            return False
        self._reserve(1)
        self._points[self._size] = p
        self._occupancy[key] = self._size
        self._size += 1
        return True

    def insert_cloud(self, cloud: np.ndarray) -> int:
        """
        insert_unique for every row of ``cloud``, in order.

        Equivalent to the per-point loop: among points of this cloud that share
        a free voxel, only the first is stored. Returns the number stored.
        """
        cloud = np.asarray(cloud, dtype=float).reshape(-1, 3)
        cloud = cloud[np.all(np.isfinite(cloud), axis=1)]
        if cloud.shape[0] == 0:
            return 0

        keys = self._voxel_keys(cloud)
        # First occurrence of each voxel within this cloud, kept in scan order.
        _, first_idx = np.unique(keys, axis=0, return_index=True)
        first_idx.sort()

        fresh = [
            i for i in first_idx
            if (int(keys[i, 0]), int(keys[i, 1]), int(keys[i, 2])) not in self._occupancy
        ]
        if not fresh:
            return 0

        self._reserve(len(fresh))
        start = self._size
        self._points[start:start + len(fresh)] = cloud[fresh]
        for offset, i in enumerate(fresh):
            self._occupancy[(int(keys[i, 0]), int(keys[i, 1]), int(keys[i, 2]))] = start + offset
        self._size += len(fresh)
        return len(fresh)

    # -------------------------------------------------------------------------
    # Approximate nearest neighbor
    # -------------------------------------------------------------------------

    def _ensure_tree(self) -> Optional[cKDTree]:
        if self._size == 0:
            return None
        if self._tree is None or self._tree_size != self._size:
            self._tree = cKDTree(self._points[: self._size])
            self._tree_size = self._size
        return self._tree

    def approximate_nearest_neighbor(self, point: np.ndarray) -> Optional[np.ndarray]:
        """Approximate nearest stored point, or None when the map is empty."""
        indices, neighbors = self.approximate_nearest_neighbors(
            np.asarray(point, dtype=float).reshape(1, 3)
        )
        if indices.shape[0] == 0:
            return None
        return neighbors[0]

    def approximate_nearest_neighbors(self, cloud: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Batched approximate NN.

        Returns (query_indices, neighbors): the rows of ``cloud`` that found a
        neighbor (ascending) and the matched map points, same length.
        """
        cloud = np.asarray(cloud, dtype=float).reshape(-1, 3)
        tree = self._ensure_tree()
        if tree is None or cloud.shape[0] == 0:
            return np.empty((0,), dtype=np.int64), np.empty((0, 3), dtype=float)

        valid = np.flatnonzero(np.all(np.isfinite(cloud), axis=1))
        if valid.shape[0] == 0:
            return np.empty((0,), dtype=np.int64), np.empty((0, 3), dtype=float)

        _, idx = tree.query(cloud[valid], k=1, eps=self._search_eps)
        found = idx < self._size
        return valid[found].astype(np.int64), self._points[idx[found]].copy()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def reset(self, resolution: Optional[float] = None) -> None:
        """Drop all points and occupancy; optionally change the resolution."""
        if resolution is not None:
            self._resolution = _check_resolution(resolution)
        self._points = np.empty((_INITIAL_CAPACITY, 3), dtype=float)
        self._size = 0
        self._occupancy = {}
        self._tree = None
        self._tree_size = 0
        _logger.info(f"Voxel map reset (resolution={self._resolution:.3f} m)")

    def __repr__(self) -> str:
        return f"SparseVoxelMap(resolution={self._resolution}, size={self._size})"
