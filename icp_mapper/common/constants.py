"""
icp_mapper constants only.

=============================================================================
CONVENTION QUICK REFERENCE
=============================================================================

POINT CLOUDS:
  (N, 3) float64 arrays [x, y, z], metres. Row order is only meaningful
  between a scan and its partner (nearest-neighbor) cloud.

POSES:
  Pose6DOF(rotation 3x3, translation 3, stamp sec)
  p_map = R @ p_robot + t          (robot -> map)
  compose(a, b): R = Ra Rb, t = ta + Ra tb

TANGENT VECTORS:
  [rho(3), omega(3)] translation first, rotation second.
=============================================================================
"""

# =============================================================================
# SPARSE VOXEL MAP
# =============================================================================

# Voxel edge length (m). One stored point per occupied voxel.
OCTREE_RESOLUTION_DEFAULT = 0.5

# cKDTree approximate search factor: returned neighbor is within
# (1 + eps) of the true nearest distance.
NN_SEARCH_EPS_DEFAULT = 0.5

# =============================================================================
# GENERALIZED ICP
# =============================================================================

ICP_MAX_ITERS_DEFAULT = 50
ICP_TRANSFORMATION_EPSILON_DEFAULT = 1e-6  # m, norm of translation update
ICP_ROTATION_EPSILON_DEFAULT = 1e-6  # rad, norm of rotation update
ICP_MAX_CORRESPONDENCE_DIST_DEFAULT = 1.0  # m
ICP_RANSAC_ITERATIONS = 0  # distance pruning only

# Neighbors used for per-point covariance estimation (Segal et al. 2009).
GICP_K_CORRESPONDENCES_DEFAULT = 20
# Plane regularization: covariance = U diag(1, 1, eps) U^T.
GICP_EPSILON_DEFAULT = 1e-3

# SE(3) has 6 DOF: fewer pairs than this cannot constrain the update.
N_MIN_SE3_DOF = 6

# =============================================================================
# ROS SURFACE
# =============================================================================

MAP_FRAME_DEFAULT = "map"
ODOM_FRAME_DEFAULT = "odom"
ROBOT_FRAME_DEFAULT = "base_link"
LASER_FRAME_DEFAULT = "laser"

CLOUD_TOPIC_DEFAULT = "/velodyne_points"
ODOM_TOPIC_DEFAULT = "/odom"
MAP_CLOUD_TOPIC = "octree_mapper/map_cloud"
NN_CLOUD_TOPIC = "octree_mapper/nn_cloud"
REGISTERED_CLOUD_TOPIC = "octree_mapper/registered_cloud"
REFINED_PATH_TOPIC = "octree_mapper/refined_path"
RESET_MAP_SERVICE = "octree_mapper/reset_map"

# 0 error, 1 warning, 2 info, 3 debug
VERBOSITY_LEVEL_DEFAULT = 2
