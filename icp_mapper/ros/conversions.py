"""
ROS 2 message <-> numpy / Pose6DOF conversions.

Pure I/O layer: no mapping or registration logic.

PointCloud2 schema written here: x, y, z (float32), point_step 12.
"""

from __future__ import annotations

import numpy as np
from builtin_interfaces.msg import Time
from geometry_msgs.msg import Pose, PoseStamped
from nav_msgs.msg import Path
from sensor_msgs.msg import PointCloud2, PointField
from std_msgs.msg import Header

from icp_mapper.common.pose import Pose6DOF
from icp_mapper.mapping.trajectory import RefinedPath

_FIELD_DTYPES = {
    PointField.FLOAT32: np.float32,
    PointField.FLOAT64: np.float64,
}


def stamp_to_sec(stamp) -> float:
    """Convert ROS timestamp to seconds."""
    return float(stamp.sec) + float(stamp.nanosec) * 1e-9


def sec_to_stamp(stamp_sec: float) -> Time:
    sec = int(np.floor(stamp_sec))
    nanosec = int(round((stamp_sec - sec) * 1e9))
    if nanosec >= 1_000_000_000:
        sec += 1
        nanosec -= 1_000_000_000
    return Time(sec=sec, nanosec=nanosec)


def pointcloud2_to_array(msg: PointCloud2) -> np.ndarray:
    """
    Convert PointCloud2 message to an (N, 3) float64 array of XYZ points.

    Supports float32 and float64 x/y/z fields; drops NaN / Inf points.
    """
    fields = {f.name: f for f in msg.fields}
    if "x" not in fields or "y" not in fields or "z" not in fields:
        raise ValueError("PointCloud2 message missing x, y, or z fields")

    n_points = msg.width * msg.height
    if n_points == 0:
        return np.empty((0, 3), dtype=np.float64)

    endian = ">" if msg.is_bigendian else "<"
    # Rows may carry trailing padding beyond width * point_step.
    row_bytes = msg.width * msg.point_step
    row_step = max(int(msg.row_step), row_bytes)
    buf = np.frombuffer(bytes(msg.data), dtype=np.uint8)[: msg.height * row_step]
    data = buf.reshape(msg.height, row_step)[:, :row_bytes].reshape(n_points, msg.point_step)

    columns = []
    for name in ("x", "y", "z"):
        field = fields[name]
        dtype = _FIELD_DTYPES.get(field.datatype)
        if dtype is None:
            raise ValueError(f"Unsupported PointField datatype {field.datatype} for '{name}'")
        width = np.dtype(dtype).itemsize
        raw = np.ascontiguousarray(data[:, field.offset:field.offset + width])
        columns.append(raw.view(np.dtype(dtype).newbyteorder(endian)).reshape(-1))

    points = np.stack(columns, axis=1).astype(np.float64)
    valid = np.isfinite(points).all(axis=1)
    return points[valid]


def array_to_pointcloud2(points: np.ndarray, frame_id: str, stamp_sec: float) -> PointCloud2:
    """Build an unorganized PointCloud2 (x, y, z float32) from (N, 3) points."""
    points = np.asarray(points, dtype=np.float32).reshape(-1, 3)
    n = points.shape[0]

    msg = PointCloud2()
    msg.header = Header()
    msg.header.frame_id = frame_id
    msg.header.stamp = sec_to_stamp(stamp_sec)
    msg.height = 1
    msg.width = n
    msg.is_dense = True
    msg.is_bigendian = False
    msg.fields = [
        PointField(name="x", offset=0, datatype=PointField.FLOAT32, count=1),
        PointField(name="y", offset=4, datatype=PointField.FLOAT32, count=1),
        PointField(name="z", offset=8, datatype=PointField.FLOAT32, count=1),
    ]
    msg.point_step = 12
    msg.row_step = msg.point_step * n
    msg.data = np.ascontiguousarray(points, dtype="<f4").tobytes()
    return msg


def pose_from_msg(pose_msg: Pose, stamp_sec: float = 0.0) -> Pose6DOF:
    q = pose_msg.orientation
    p = pose_msg.position
    return Pose6DOF.from_quat_trans((q.x, q.y, q.z, q.w), (p.x, p.y, p.z), stamp_sec)


def pose_to_msg(pose: Pose6DOF) -> Pose:
    msg = Pose()
    t = pose.translation
    qx, qy, qz, qw = pose.as_quat()
    msg.position.x = float(t[0])
    msg.position.y = float(t[1])
    msg.position.z = float(t[2])
    msg.orientation.x = float(qx)
    msg.orientation.y = float(qy)
    msg.orientation.z = float(qz)
    msg.orientation.w = float(qw)
    return msg


def path_to_msg(path: RefinedPath, frame_id: str, stamp_sec: float) -> Path:
    """Full refined path as nav_msgs/Path; each pose keeps its own stamp."""
    msg = Path()
    msg.header.frame_id = frame_id
    msg.header.stamp = sec_to_stamp(stamp_sec)
    for pose, pose_stamp in path:
        pose_stamped = PoseStamped()
        pose_stamped.header.frame_id = frame_id
        pose_stamped.header.stamp = sec_to_stamp(pose_stamp)
        pose_stamped.pose = pose_to_msg(pose)
        msg.poses.append(pose_stamped)
    return msg
