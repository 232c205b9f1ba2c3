"""
icp_mapper: incremental voxel map built by scan-to-map GICP registration.

Subpackages:
- common/: poses, SE(3) helpers, constants, parameters
- mapping/: sparse voxel map, correspondences, refined path, orchestrator
- registration/: generalized ICP
- ros/: ROS 2 node and message conversions (needs rclpy)
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "IcpMapper",
    "Pose6DOF",
    "SparseVoxelMap",
    "GicpRegistration",
    "MapperParams",
]

_LAZY_ATTRS: dict[str, tuple[str, str]] = {
    "IcpMapper": ("icp_mapper.mapping.mapper", "IcpMapper"),
    "Pose6DOF": ("icp_mapper.common.pose", "Pose6DOF"),
    "SparseVoxelMap": ("icp_mapper.mapping.voxel_map", "SparseVoxelMap"),
    "GicpRegistration": ("icp_mapper.registration.gicp", "GicpRegistration"),
    "MapperParams": ("icp_mapper.common.param_models", "MapperParams"),
}


def __getattr__(name: str) -> Any:
    target = _LAZY_ATTRS.get(name)
    if target is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_name, attr_name = target
    return getattr(import_module(module_name), attr_name)


def __dir__() -> list[str]:
    return sorted(set(globals().keys()) | set(_LAZY_ATTRS.keys()))
