"""
Refined trajectory: append-only list of (pose, stamp) after correction.

TUM export format, one line per pose:
    stamp tx ty tz qx qy qz qw
"""

from __future__ import annotations

from typing import Iterator, List, Tuple

import numpy as np

from icp_mapper.common.pose import Pose6DOF

TUM_HEADER = "# timestamp x y z qx qy qz qw"


class RefinedPath:
    """Append-only sequence of refined poses."""

    def __init__(self) -> None:
        self._entries: List[Tuple[Pose6DOF, float]] = []

    def append(self, pose: Pose6DOF, stamp: float) -> None:
        self._entries.append((pose, float(stamp)))

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Tuple[Pose6DOF, float]]:
        return iter(list(self._entries))

    def copy(self) -> "RefinedPath":
        clone = RefinedPath()
        clone._entries = list(self._entries)
        return clone

    def __getitem__(self, index: int) -> Tuple[Pose6DOF, float]:
        return self._entries[index]

    @property
    def latest(self) -> Tuple[Pose6DOF, float]:
        if not self._entries:
            raise IndexError("RefinedPath is empty")
        return self._entries[-1]

    def positions(self) -> np.ndarray:
        """(N, 3) translations in insertion order."""
        if not self._entries:
            return np.empty((0, 3), dtype=float)
        return np.stack([pose.translation for pose, _ in self._entries])

    def stamps(self) -> np.ndarray:
        return np.array([stamp for _, stamp in self._entries], dtype=float)

    @staticmethod
    def tum_line(pose: Pose6DOF, stamp: float) -> str:
        t = pose.translation
        qx, qy, qz, qw = pose.as_quat()
        return (
            f"{stamp:.9f} {t[0]:.6f} {t[1]:.6f} {t[2]:.6f} "
            f"{qx:.6f} {qy:.6f} {qz:.6f} {qw:.6f}"
        )

    def to_tum_lines(self) -> List[str]:
        return [self.tum_line(pose, stamp) for pose, stamp in self._entries]

    def write_tum(self, path: str) -> int:
        """Write the whole path as a TUM file. Returns the number of poses written."""
        lines = self.to_tum_lines()
        with open(path, "w", encoding="utf-8") as f:
            f.write(TUM_HEADER + "\n")
            for line in lines:
                f.write(line + "\n")
        return len(lines)
