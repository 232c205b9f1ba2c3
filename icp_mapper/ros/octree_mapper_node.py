"""
ICP mapper ROS 2 node.

Subscriptions:
    cloud_topic (PointCloud2, laser points in robot frame)
    odom_topic (Odometry, raw pose of the robot in the map frame)

Publications (only when a subscriber is connected):
    map_cloud_topic          PointCloud2, map frame, latched
    refined_path_topic       nav_msgs/Path, map frame, latched
    nn_cloud_topic           PointCloud2, robot frame
    registered_cloud_topic   PointCloud2, map frame

Service:
    reset_map (std_srvs/Empty): clear the map; the refined path is kept.

All callbacks share one MutuallyExclusiveCallbackGroup so growth cycles,
odometry updates and map resets never interleave.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import rclpy
from nav_msgs.msg import Odometry, Path
from pydantic import ValidationError
from rclpy.callback_groups import MutuallyExclusiveCallbackGroup
from rclpy.node import Node
from rclpy.qos import DurabilityPolicy, HistoryPolicy, QoSProfile, ReliabilityPolicy
from sensor_msgs.msg import PointCloud2
from std_srvs.srv import Empty

from icp_mapper.common import constants
from icp_mapper.common.logging_utils import configure_package_logging
from icp_mapper.common.param_models import MapperParams
from icp_mapper.common.pose import Pose6DOF
from icp_mapper.mapping.mapper import IcpMapper
from icp_mapper.mapping.trajectory import TUM_HEADER, RefinedPath
from icp_mapper.ros.conversions import (
    array_to_pointcloud2,
    path_to_msg,
    pointcloud2_to_array,
    pose_from_msg,
    stamp_to_sec,
)
from icp_mapper.sinks import FanOutSink, MapperSinks, RerunRecording


class RosCloudSink:
    """Publishes (N, 3) snapshots as PointCloud2 while the topic has subscribers."""

    def __init__(self, publisher):
        self._publisher = publisher

    def has_consumers(self) -> bool:
        return self._publisher.get_subscription_count() > 0

    def publish(self, snapshot: Any, frame_id: str, stamp: float) -> None:
        self._publisher.publish(array_to_pointcloud2(snapshot, frame_id, stamp))


class RosPathSink:
    """Publishes RefinedPath snapshots as nav_msgs/Path."""

    def __init__(self, publisher):
        self._publisher = publisher

    def has_consumers(self) -> bool:
        return self._publisher.get_subscription_count() > 0

    def publish(self, snapshot: RefinedPath, frame_id: str, stamp: float) -> None:
        self._publisher.publish(path_to_msg(snapshot, frame_id, stamp))


class IcpMapperNode(Node):
    def __init__(self, parameter_overrides: Optional[Dict[str, Any]] = None) -> None:
        overrides = None
        if parameter_overrides:
            from rclpy.parameter import Parameter
            overrides = [Parameter(k, value=v) for k, v in parameter_overrides.items()]
        super().__init__("icp_mapper", parameter_overrides=overrides)

        self.params = self._load_params()
        configure_package_logging(self.params.verbosity_level)

        self.cb_group = MutuallyExclusiveCallbackGroup()
        qos_sensor = QoSProfile(
            reliability=ReliabilityPolicy.BEST_EFFORT,
            durability=DurabilityPolicy.VOLATILE,
            history=HistoryPolicy.KEEP_LAST,
            depth=10,
        )
        qos_reliable = QoSProfile(
            reliability=ReliabilityPolicy.RELIABLE,
            durability=DurabilityPolicy.VOLATILE,
            history=HistoryPolicy.KEEP_LAST,
            depth=10,
        )
        qos_latched = QoSProfile(
            reliability=ReliabilityPolicy.RELIABLE,
            durability=DurabilityPolicy.TRANSIENT_LOCAL,
            history=HistoryPolicy.KEEP_LAST,
            depth=1,
        )

        p = self.params
        self.pub_map = self.create_publisher(PointCloud2, p.map_cloud_topic, qos_latched)
        self.pub_path = self.create_publisher(Path, p.refined_path_topic, qos_latched)
        self.pub_nn = self.create_publisher(PointCloud2, p.nn_cloud_topic, qos_reliable)
        self.pub_registered = self.create_publisher(PointCloud2, p.registered_cloud_topic, qos_reliable)

        sinks = MapperSinks(
            map_cloud=RosCloudSink(self.pub_map),
            correspondences=RosCloudSink(self.pub_nn),
            registered_cloud=RosCloudSink(self.pub_registered),
            refined_path=RosPathSink(self.pub_path),
        )
        if p.use_rerun:
            recording = RerunRecording(
                application_id="icp_mapper",
                spawn=p.rerun_spawn,
                recording_path=p.rerun_recording_path or None,
            )
            recording.init()
            rerun_sinks = MapperSinks.for_rerun(recording)
            sinks = MapperSinks(
                map_cloud=FanOutSink(sinks.map_cloud, rerun_sinks.map_cloud),
                correspondences=FanOutSink(sinks.correspondences, rerun_sinks.correspondences),
                registered_cloud=FanOutSink(sinks.registered_cloud, rerun_sinks.registered_cloud),
                refined_path=FanOutSink(sinks.refined_path, rerun_sinks.refined_path),
            )

        self.mapper = IcpMapper(
            resolution=p.octree_resolution,
            gicp_config=p.gicp_config(),
            sinks=sinks,
            map_frame=p.map_frame,
            robot_frame=p.robot_frame,
            search_eps=p.search_eps,
        )

        self.latest_raw_pose: Optional[Pose6DOF] = None
        self.scan_count = 0
        self.skipped_no_odom = 0

        self.sub_cloud = self.create_subscription(
            PointCloud2, p.cloud_topic, self.on_cloud, qos_sensor,
            callback_group=self.cb_group,
        )
        self.sub_odom = self.create_subscription(
            Odometry, p.odom_topic, self.on_odom, qos_reliable,
            callback_group=self.cb_group,
        )
        self.srv_reset = self.create_service(
            Empty, constants.RESET_MAP_SERVICE, self.on_reset_map,
            callback_group=self.cb_group,
        )

        self.trajectory_file = None
        if p.trajectory_export_path:
            self.trajectory_file = open(p.trajectory_export_path, "w", encoding="utf-8")
            self.trajectory_file.write(TUM_HEADER + "\n")

        self.get_logger().info(f"Cloud: {p.cloud_topic}")
        self.get_logger().info(f"Odom: {p.odom_topic}")
        self.get_logger().info(
            f"Voxel resolution {p.octree_resolution} m, search eps {p.search_eps}, "
            f"GICP max_iter={p.icp_max_iterations} max_dist={p.icp_max_correspondence_distance}"
        )

    def _load_params(self) -> MapperParams:
        """Declare every MapperParams field as a ROS parameter and validate the result."""
        defaults = MapperParams()
        for name in MapperParams.model_fields:
            if name == "use_sim_time":
                continue
            self.declare_parameter(name, getattr(defaults, name))
        values = {
            name: self.get_parameter(name).value
            for name in MapperParams.model_fields
            if name != "use_sim_time"
        }
        values["use_sim_time"] = bool(self.get_parameter("use_sim_time").value)
        try:
            return MapperParams(**values)
        except ValidationError as exc:
            self.get_logger().error(f"Invalid icp_mapper parameters: {exc}")
            raise

    def on_odom(self, msg: Odometry) -> None:
        stamp = stamp_to_sec(msg.header.stamp)
        try:
            self.latest_raw_pose = pose_from_msg(msg.pose.pose, stamp)
        except ValueError as exc:
            self.get_logger().warning(f"Dropping odometry at {stamp:.3f}: {exc}")

    def on_cloud(self, msg: PointCloud2) -> None:
        stamp = stamp_to_sec(msg.header.stamp)
        if self.latest_raw_pose is None:
            self.skipped_no_odom += 1
            self.get_logger().warning(
                f"No odometry yet; skipping scan at {stamp:.3f}",
                throttle_duration_sec=5.0,
            )
            return
        try:
            cloud = pointcloud2_to_array(msg)
        except ValueError as exc:
            self.get_logger().warning(f"Dropping scan at {stamp:.3f}: {exc}")
            return

        self.scan_count += 1
        result = self.mapper.refine_transform_and_grow_map(stamp, cloud, self.latest_raw_pose)
        if result.success and self.trajectory_file:
            self.trajectory_file.write(RefinedPath.tum_line(result.refined_pose, stamp) + "\n")
            self.trajectory_file.flush()

    def on_reset_map(self, request: Empty.Request, response: Empty.Response) -> Empty.Response:
        self.mapper.reset_map(self.params.octree_resolution)
        self.get_logger().info("Map reset")
        return response

    def destroy_node(self):
        if self.trajectory_file:
            self.trajectory_file.flush()
            self.trajectory_file.close()
            self.trajectory_file = None
            self.get_logger().info(f"Trajectory saved: {self.params.trajectory_export_path}")
        stats = self.mapper.stats
        self.get_logger().info(
            f"Scans={stats.scans} refined={stats.successes} failed={stats.failures} "
            f"map_points={self.mapper.map_size}"
        )
        super().destroy_node()


def main() -> None:
    rclpy.init()
    node = IcpMapperNode()
    try:
        rclpy.spin(node)
    except KeyboardInterrupt:
        pass
    finally:
        node.destroy_node()
        rclpy.shutdown()


if __name__ == "__main__":
    main()
