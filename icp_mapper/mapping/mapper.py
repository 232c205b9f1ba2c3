"""
Map growth orchestrator: scan-to-map registration loop.

Per scan (stamp, cloud, raw_pose):
    1. cloud -> map frame with raw_pose
    2. empty map: insert everything, switch to TRACKING, report failure
    3. partner cloud = approximate NN in map, moved back with inverse(raw_pose)
    4. GICP(scan, partner) -> delta
    5. converged: refined = compose(raw_pose, delta); re-transform, insert,
       append to path, notify sinks
    6. not converged: map untouched, scan dropped for this cycle

Single-threaded: callers serialize calls to refine_transform_and_grow_map.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np

from icp_mapper.common import constants
from icp_mapper.common.errors import MapperError
from icp_mapper.common.pose import Pose6DOF, compose, inverse, transform_cloud
from icp_mapper.mapping.correspondences import build_correspondences
from icp_mapper.mapping.trajectory import RefinedPath
from icp_mapper.mapping.voxel_map import SparseVoxelMap
from icp_mapper.registration.gicp import GicpConfig, GicpRegistration, RegistrationResult
from icp_mapper.sinks import MapperSinks, has_consumers

_logger = logging.getLogger(__name__)


class MapperState(str, Enum):
    BOOTSTRAPPING = "bootstrapping"
    TRACKING = "tracking"


@dataclass
class GrowthResult:
    """Outcome of one growth cycle. ``refined_pose`` is set only on success."""

    success: bool
    refined_pose: Optional[Pose6DOF] = None
    error: Optional[MapperError] = None
    n_inserted: int = 0
    n_correspondences: int = 0
    registration: Optional[RegistrationResult] = None


@dataclass
class MapperStats:
    scans: int = 0
    successes: int = 0
    failures: int = 0
    bootstraps: int = 0
    errors: dict = field(default_factory=dict)

    def record(self, result: GrowthResult) -> None:
        self.scans += 1
        if result.success:
            self.successes += 1
            return
        self.failures += 1
        if result.error is MapperError.EMPTY_MAP:
            self.bootstraps += 1
        if result.error is not None:
            self.errors[result.error.value] = self.errors.get(result.error.value, 0) + 1


class IcpMapper:
    """Owns the voxel map and the refined path; grows the map scan by scan."""

    def __init__(
        self,
        resolution: float = constants.OCTREE_RESOLUTION_DEFAULT,
        gicp_config: Optional[GicpConfig] = None,
        sinks: Optional[MapperSinks] = None,
        map_frame: str = constants.MAP_FRAME_DEFAULT,
        robot_frame: str = constants.ROBOT_FRAME_DEFAULT,
        search_eps: float = constants.NN_SEARCH_EPS_DEFAULT,
    ):
        self._map = SparseVoxelMap(resolution, search_eps=search_eps)
        self._registration = GicpRegistration(gicp_config)
        self._path = RefinedPath()
        self.sinks = sinks or MapperSinks()
        self.map_frame = map_frame
        self.robot_frame = robot_frame
        self.stats = MapperStats()

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> MapperState:
        return MapperState.BOOTSTRAPPING if self._map.is_empty else MapperState.TRACKING

    @property
    def voxel_map(self) -> SparseVoxelMap:
        return self._map

    @property
    def map_cloud(self) -> np.ndarray:
        return self._map.map_cloud

    @property
    def map_size(self) -> int:
        return self._map.size

    @property
    def refined_path(self) -> RefinedPath:
        return self._path

    @property
    def gicp_config(self) -> GicpConfig:
        return self._registration.config

    def reset_map(self, resolution: Optional[float] = None) -> None:
        """Clear the map (optionally resizing voxels). The refined path is kept."""
        self._map.reset(resolution)

    # -------------------------------------------------------------------------
    # Growth
    # -------------------------------------------------------------------------

    def refine_transform_and_grow_map(
        self,
        stamp: float,
        cloud: np.ndarray,
        raw_pose: Pose6DOF,
    ) -> GrowthResult:
        result = self._grow(float(stamp), cloud, raw_pose)
        self.stats.record(result)
        return result

    def _grow(self, stamp: float, cloud: np.ndarray, raw_pose: Pose6DOF) -> GrowthResult:
        in_map = transform_cloud(cloud, raw_pose)
        if not in_map.ok:
            _logger.warning(f"Scan at {stamp:.3f}: raw pose/cloud malformed, skipping")
            return GrowthResult(False, error=in_map.error)
        scan = np.array(cloud, dtype=float).reshape(-1, 3)

        if self._map.is_empty:
            n_inserted = self._map.insert_cloud(in_map.cloud)
            _logger.warning(
                f"Map is empty: bootstrapped with {n_inserted}/{scan.shape[0]} points at {stamp:.3f}"
            )
            return GrowthResult(False, error=MapperError.EMPTY_MAP, n_inserted=n_inserted)

        nn_in_map = build_correspondences(self._map, in_map.cloud)
        nn_in_robot = transform_cloud(nn_in_map, inverse(raw_pose))
        if not nn_in_robot.ok:
            return GrowthResult(False, error=nn_in_robot.error)
        partner = nn_in_robot.cloud

        if has_consumers(self.sinks.correspondences):
            self.sinks.correspondences.publish(partner.copy(), self.robot_frame, stamp)

        registration = self._registration.estimate_transform(scan, partner)
        if not registration.converged:
            error = registration.error or MapperError.DID_NOT_CONVERGE
            _logger.warning(
                f"Scan at {stamp:.3f} rejected ({error.value}): "
                f"{registration.n_correspondences} pairs, {registration.iterations} iterations; map unchanged"
            )
            return GrowthResult(
                False,
                error=error,
                n_correspondences=registration.n_correspondences,
                registration=registration,
            )

        refined_pose = compose(raw_pose, registration.delta).with_stamp(stamp)
        registered = transform_cloud(scan, refined_pose)
        if not registered.ok:
            return GrowthResult(False, error=registered.error, registration=registration)

        n_inserted = self._map.insert_cloud(registered.cloud)
        self._path.append(refined_pose, stamp)
        _logger.info(
            f"Scan at {stamp:.3f}: refined in {registration.iterations} iterations, "
            f"+{n_inserted} points (map {self._map.size})"
        )

        if has_consumers(self.sinks.map_cloud):
            self.sinks.map_cloud.publish(self._map.map_cloud, self.map_frame, stamp)
        if has_consumers(self.sinks.refined_path):
            self.sinks.refined_path.publish(self._path.copy(), self.map_frame, stamp)
        if has_consumers(self.sinks.registered_cloud):
            self.sinks.registered_cloud.publish(registered.cloud.copy(), self.map_frame, stamp)

        return GrowthResult(
            True,
            refined_pose=refined_pose,
            n_inserted=n_inserted,
            n_correspondences=registration.n_correspondences,
            registration=registration,
        )
