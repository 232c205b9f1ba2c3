"""
ICP mapper launch file.

Launches icp_mapper_node with the packaged parameter file, optionally
playing a rosbag alongside it.

    ros2 launch icp_mapper icp_mapper.launch.py bag:=/path/to/bag
"""

import os

from launch import LaunchDescription
from launch.actions import DeclareLaunchArgument, ExecuteProcess
from launch.conditions import IfCondition
from launch.substitutions import LaunchConfiguration, PythonExpression
from launch_ros.actions import Node

from ament_index_python.packages import get_package_share_directory


def generate_launch_description():
    """Generate launch description for the ICP mapper."""
    default_config = os.path.join(
        get_package_share_directory("icp_mapper"), "config", "icp_mapper.yaml"
    )

    config_arg = DeclareLaunchArgument(
        "config",
        default_value=default_config,
        description="Path to icp_mapper parameter YAML",
    )
    bag_arg = DeclareLaunchArgument(
        "bag",
        default_value="",
        description="Optional rosbag directory to play",
    )
    use_sim_time_arg = DeclareLaunchArgument(
        "use_sim_time",
        default_value="false",
        description="Use /clock from the bag",
    )
    trajectory_path_arg = DeclareLaunchArgument(
        "trajectory_export_path",
        default_value="",
        description="Path to export the refined trajectory in TUM format",
    )

    mapper_node = Node(
        package="icp_mapper",
        executable="icp_mapper_node",
        name="icp_mapper",
        output="screen",
        parameters=[
            LaunchConfiguration("config"),
            {
                "use_sim_time": PythonExpression(["'", LaunchConfiguration("use_sim_time"), "' == 'true'"]),
                "trajectory_export_path": LaunchConfiguration("trajectory_export_path"),
            },
        ],
    )

    bag_play = ExecuteProcess(
        cmd=["ros2", "bag", "play", LaunchConfiguration("bag"), "--clock"],
        output="screen",
        condition=IfCondition(PythonExpression(["'", LaunchConfiguration("bag"), "' != ''"])),
    )

    return LaunchDescription([
        config_arg,
        bag_arg,
        use_sim_time_arg,
        trajectory_path_arg,
        mapper_node,
        bag_play,
    ])
