"""Pydantic parameter models for the icp_mapper node and library."""

from __future__ import annotations

import os
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, field_validator

from icp_mapper.common import constants
from icp_mapper.registration.gicp import GicpConfig


class MapperParams(BaseModel):
    """Mapper parameters (frames, voxel map, registration, outputs)."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    use_sim_time: bool = False
    verbosity_level: int = Field(constants.VERBOSITY_LEVEL_DEFAULT, ge=0, le=3)

    # Frames are labels on outputs only.
    map_frame: str = constants.MAP_FRAME_DEFAULT
    odom_frame: str = constants.ODOM_FRAME_DEFAULT
    robot_frame: str = constants.ROBOT_FRAME_DEFAULT
    laser_frame: str = constants.LASER_FRAME_DEFAULT

    cloud_topic: str = constants.CLOUD_TOPIC_DEFAULT
    odom_topic: str = constants.ODOM_TOPIC_DEFAULT
    map_cloud_topic: str = constants.MAP_CLOUD_TOPIC
    nn_cloud_topic: str = constants.NN_CLOUD_TOPIC
    registered_cloud_topic: str = constants.REGISTERED_CLOUD_TOPIC
    refined_path_topic: str = constants.REFINED_PATH_TOPIC

    octree_resolution: float = Field(constants.OCTREE_RESOLUTION_DEFAULT, gt=0.0)
    search_eps: float = Field(constants.NN_SEARCH_EPS_DEFAULT, ge=0.0)

    icp_max_iterations: int = Field(constants.ICP_MAX_ITERS_DEFAULT, ge=1)
    icp_transformation_epsilon: float = Field(constants.ICP_TRANSFORMATION_EPSILON_DEFAULT, gt=0.0)
    icp_rotation_epsilon: float = Field(constants.ICP_ROTATION_EPSILON_DEFAULT, gt=0.0)
    icp_max_correspondence_distance: float = Field(constants.ICP_MAX_CORRESPONDENCE_DIST_DEFAULT, gt=0.0)
    icp_k_correspondences: int = Field(constants.GICP_K_CORRESPONDENCES_DEFAULT, ge=3)
    icp_gicp_epsilon: float = Field(constants.GICP_EPSILON_DEFAULT, gt=0.0, le=1.0)
    icp_min_correspondences: int = Field(constants.N_MIN_SE3_DOF, ge=1)

    trajectory_export_path: str = ""
    use_rerun: bool = False
    rerun_spawn: bool = False
    rerun_recording_path: str = ""

    @field_validator(
        "map_frame", "odom_frame", "robot_frame", "laser_frame",
        "cloud_topic", "odom_topic",
    )
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value

    def gicp_config(self) -> GicpConfig:
        return GicpConfig(
            max_iterations=self.icp_max_iterations,
            transformation_epsilon=self.icp_transformation_epsilon,
            rotation_epsilon=self.icp_rotation_epsilon,
            max_correspondence_distance=self.icp_max_correspondence_distance,
            k_correspondences=self.icp_k_correspondences,
            gicp_epsilon=self.icp_gicp_epsilon,
            min_correspondences=self.icp_min_correspondences,
        )


def _unwrap_ros_parameters(data: Dict[str, Any], node_name: str) -> Dict[str, Any]:
    """Strip the ROS 2 ``<node>: ros__parameters:`` (or ``/**``) wrapper if present."""
    for key in (node_name, f"/{node_name}", "/**"):
        section = data.get(key)
        if isinstance(section, dict) and "ros__parameters" in section:
            return dict(section["ros__parameters"] or {})
    return data


def load_mapper_params(path: str, node_name: str = "icp_mapper") -> MapperParams:
    """Load MapperParams from a YAML file (plain mapping or ROS 2 parameter file)."""
    import yaml

    if not os.path.exists(path):
        raise FileNotFoundError(f"icp_mapper config not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"icp_mapper config must be a mapping (from {path})")
    return MapperParams(**_unwrap_ros_parameters(data, node_name))
