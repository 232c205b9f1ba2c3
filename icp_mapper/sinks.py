"""
Downstream output sinks for mapper snapshots.

A sink is anything with ``has_consumers()`` and ``publish(snapshot,
frame_id, stamp)``. The mapper asks ``has_consumers()`` right before every
emission and skips the copy when nobody listens.

Snapshots:
    map_cloud, correspondences, registered_cloud: (N, 3) float64 arrays
    refined_path: RefinedPath

Rerun visualization (Wayland-friendly; replaces RViz) logs clouds as
Points3D and the path as LineStrips3D. Optional: spawn viewer or save to
.rrd and open with ``rerun recording.rrd``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, runtime_checkable

import numpy as np

from icp_mapper.mapping.trajectory import RefinedPath

_logger = logging.getLogger(__name__)


@runtime_checkable
class SnapshotSink(Protocol):
    def has_consumers(self) -> bool:
        ...

    def publish(self, snapshot: Any, frame_id: str, stamp: float) -> None:
        ...


class CallbackSink:
    """
    In-process sink forwarding snapshots to a callable.

    ``active`` is the consumer flag; flip it to start or stop receiving.
    """

    def __init__(self, callback: Callable[[Any, str, float], None], active: bool = True):
        self._callback = callback
        self.active = active
        self.count = 0

    def has_consumers(self) -> bool:
        return bool(self.active)

    def publish(self, snapshot: Any, frame_id: str, stamp: float) -> None:
        self.count += 1
        self._callback(snapshot, frame_id, stamp)


class RecordingSink(CallbackSink):
    """Keeps every published snapshot; handy for tools and tests."""

    def __init__(self, active: bool = True):
        self.snapshots: list = []
        super().__init__(lambda snap, frame_id, stamp: self.snapshots.append((snap, frame_id, stamp)), active)

    @property
    def last(self):
        return self.snapshots[-1] if self.snapshots else None


def _set_rerun_time(rr, time_sec: float) -> None:
    """Set current time on the 'time' timeline across rerun API versions."""
    if hasattr(rr, "set_time_seconds"):
        rr.set_time_seconds("time", time_sec)
    else:
        rr.set_time("time", timestamp=time_sec)


class RerunRecording:
    """
    Shared Rerun recording for all RerunSinks of one mapper.

    Call init() once; sinks report consumers only after a successful init.
    """

    def __init__(
        self,
        application_id: str = "icp_mapper",
        spawn: bool = False,
        recording_path: Optional[str] = None,
    ):
        self._application_id = application_id
        self._spawn = spawn
        self._recording_path = recording_path
        self._rr = None

    @property
    def active(self) -> bool:
        return self._rr is not None

    @property
    def rr(self):
        return self._rr

    def init(self) -> bool:
        """Initialize Rerun (spawn viewer and/or record to file). Returns True if active."""
        if self._rr is not None:
            return True
        import rerun as rr

        rr.init(self._application_id, spawn=self._spawn)
        # Must call save() before any log when recording to file.
        if self._recording_path and not self._spawn:
            rr.save(self._recording_path)
        self._rr = rr
        _logger.info(
            f"Rerun recording '{self._application_id}' active"
            + (f" -> {self._recording_path}" if self._recording_path else "")
        )
        return True


class RerunSink:
    """Logs one snapshot stream to an entity path of a RerunRecording."""

    def __init__(self, recording: RerunRecording, entity_path: str, radius: float = 0.03):
        self._recording = recording
        self._entity_path = entity_path
        self._radius = radius

    def has_consumers(self) -> bool:
        return self._recording.active

    def publish(self, snapshot: Any, frame_id: str, stamp: float) -> None:
        rr = self._recording.rr
        if rr is None:
            return
        _set_rerun_time(rr, stamp)
        if isinstance(snapshot, RefinedPath):
            positions = snapshot.positions().astype(np.float32)
            rr.log(self._entity_path, rr.LineStrips3D([positions]))
            return
        pts = np.asarray(snapshot, dtype=np.float32).reshape(-1, 3)
        rr.log(self._entity_path, rr.Points3D(positions=pts, radii=self._radius))


class FanOutSink:
    """Forwards to every child sink that currently has consumers."""

    def __init__(self, *sinks: Optional[SnapshotSink]):
        self._sinks = [s for s in sinks if s is not None]

    def has_consumers(self) -> bool:
        return any(s.has_consumers() for s in self._sinks)

    def publish(self, snapshot: Any, frame_id: str, stamp: float) -> None:
        for sink in self._sinks:
            if sink.has_consumers():
                sink.publish(snapshot, frame_id, stamp)


@dataclass
class MapperSinks:
    """Optional sinks for the four mapper outputs; None means no consumer."""

    map_cloud: Optional[SnapshotSink] = None
    correspondences: Optional[SnapshotSink] = None
    registered_cloud: Optional[SnapshotSink] = None
    refined_path: Optional[SnapshotSink] = None

    @classmethod
    def for_rerun(cls, recording: RerunRecording, prefix: str = "icp_mapper") -> "MapperSinks":
        return cls(
            map_cloud=RerunSink(recording, f"{prefix}/map_cloud", radius=0.02),
            correspondences=RerunSink(recording, f"{prefix}/nn_cloud"),
            registered_cloud=RerunSink(recording, f"{prefix}/registered_cloud"),
            refined_path=RerunSink(recording, f"{prefix}/refined_path"),
        )


def has_consumers(sink: Optional[SnapshotSink]) -> bool:
    """Fresh consumer check; a missing sink has none."""
    return sink is not None and bool(sink.has_consumers())
