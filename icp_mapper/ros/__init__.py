"""
ROS 2 surface for icp_mapper.

Importing submodules requires rclpy and the sensor_msgs / nav_msgs /
geometry_msgs / std_srvs message packages from a sourced ROS 2 install.
"""
