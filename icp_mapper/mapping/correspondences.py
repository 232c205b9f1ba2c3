"""Partner-cloud construction: approximate nearest map point for each scan point."""

from __future__ import annotations

import numpy as np

from icp_mapper.mapping.voxel_map import SparseVoxelMap


def build_correspondences(voxel_map: SparseVoxelMap, scan_cloud: np.ndarray) -> np.ndarray:
    """
    One map point per scan point that found a neighbor, in scan order.

    Scan points without a neighbor are skipped, so the result may be shorter
    than ``scan_cloud``; an empty (0, 3) array means no correspondences.
    Both inputs are in the map frame.
    """
    _, neighbors = voxel_map.approximate_nearest_neighbors(scan_cloud)
    return neighbors
