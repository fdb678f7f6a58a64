from __future__ import annotations

import logging
import math
from bisect import bisect_left, bisect_right
from typing import Optional

from events import (
    KeyframeAdded,
    KeyframeRemoved,
    KeyframesChanged,
    KeyframeSelected,
    KeyframeUpdated,
    Subject,
)
from interpolation import lerp_pose
from models import DEFAULT_POSE, POSE_FIELDS, BezierControlPoints, Easing, Keyframe, Pose
from project import Project, parse_project, project_to_dict

logger = logging.getLogger(__name__)

_KEYFRAME_FIELDS = {"time", "easing", "control_points", "pose"}


class Timeline:
    """Ordered keyframes with point-in-time pose sampling.

    Keyframes stay sorted by time after every mutation. The sort is stable,
    so keyframes sharing a time keep their insertion order.
    """

    def __init__(self, keyframes: list[Keyframe] | None = None):
        self._keyframes: list[Keyframe] = []
        self._selected: Optional[Keyframe] = None
        self.events = Subject()
        for keyframe in keyframes or []:
            self._keyframes.append(keyframe)
        self._sort()

    def __len__(self) -> int:
        return len(self._keyframes)

    def __contains__(self, keyframe: Keyframe) -> bool:
        return any(k is keyframe for k in self._keyframes)

    @property
    def selected(self) -> Optional[Keyframe]:
        return self._selected

    def all(self) -> list[Keyframe]:
        return list(self._keyframes)

    # ── mutation ──

    def add(self, keyframe: Keyframe) -> Keyframe:
        self._keyframes.append(keyframe)
        self._sort()
        self.events.publish(KeyframeAdded(keyframe))
        self._publish_changed()
        return keyframe

    def remove(self, keyframe: Keyframe) -> bool:
        index = self._index_of(keyframe)
        if index is None:
            return False
        del self._keyframes[index]
        if self._selected is keyframe:
            self._selected = None
            self.events.publish(KeyframeSelected(None))
        self.events.publish(KeyframeRemoved(keyframe))
        self._publish_changed()
        return True

    def update(self, keyframe: Keyframe, **changes) -> Keyframe:
        """Apply keyframe or pose field changes in place.

        Accepts ``time``, ``easing``, ``control_points``, ``pose`` and any
        individual pose field such as ``height=750``.
        """
        if self._index_of(keyframe) is None:
            raise ValueError("Keyframe does not belong to this timeline.")

        unknown = set(changes) - _KEYFRAME_FIELDS - set(POSE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown keyframe fields: {', '.join(sorted(unknown))}")

        # Validate all fields before touching the keyframe.
        time = keyframe.time
        if "time" in changes:
            time = _finite(changes["time"], "time")
            if time < 0:
                raise ValueError("Keyframe time must be >= 0.")

        pose = changes.get("pose", keyframe.pose)
        if not isinstance(pose, Pose):
            raise ValueError("pose must be a Pose.")
        pose_changes = {k: _finite(v, k) for k, v in changes.items() if k in POSE_FIELDS}
        if pose_changes:
            pose = pose.replace(**pose_changes)

        easing = keyframe.easing
        if "easing" in changes:
            try:
                easing = Easing(changes["easing"])
            except ValueError:
                raise ValueError(f"Unknown easing '{changes['easing']}'.") from None

        control_points = keyframe.control_points
        if "control_points" in changes:
            control_points = _control_points(changes["control_points"])

        keyframe.time = time
        keyframe.pose = pose
        keyframe.easing = easing
        keyframe.control_points = control_points

        self._sort()
        self.events.publish(KeyframeUpdated(keyframe))
        self._publish_changed()
        return keyframe

    def select(self, keyframe: Optional[Keyframe]) -> None:
        if keyframe is not None and self._index_of(keyframe) is None:
            raise ValueError("Cannot select a keyframe outside this timeline.")
        self._selected = keyframe
        self.events.publish(KeyframeSelected(keyframe))

    def clear(self) -> None:
        self._keyframes = []
        self._selected = None
        self._publish_changed()

    # ── queries ──

    def keyframe_at(self, time: float, tolerance: float = 0.1) -> Optional[Keyframe]:
        for keyframe in self._keyframes:
            if abs(keyframe.time - time) < tolerance:
                return keyframe
        return None

    def surrounding(self, time: float) -> tuple[Optional[Keyframe], Optional[Keyframe]]:
        """Last keyframe at or before ``time`` and first one at or after it."""
        times = [k.time for k in self._keyframes]
        before_idx = bisect_right(times, time) - 1
        after_idx = bisect_left(times, time)
        before = self._keyframes[before_idx] if before_idx >= 0 else None
        after = self._keyframes[after_idx] if after_idx < len(times) else None
        return before, after

    def sample(self, time: float) -> Pose:
        before, after = self.surrounding(time)

        if before is None and after is None:
            return DEFAULT_POSE
        if before is None:
            return after.pose
        if after is None or before is after:
            return before.pose

        span = after.time - before.time
        u = (time - before.time) / span if span > 0 else 0.0
        return lerp_pose(before.pose, after.pose, u, before.easing, before.control_points)

    # ── documents ──

    def to_document(self, duration: float, fps: float) -> dict:
        return project_to_dict(Project(duration=duration, fps=fps, keyframes=self.all()))

    def load_document(self, data: dict) -> Project:
        """Replace all keyframes with those of a project document.

        The document is fully validated first; on error the timeline is
        left untouched.
        """
        project = parse_project(data)
        self.clear()
        for keyframe in project.keyframes:
            self._keyframes.append(keyframe)
        self._sort()
        for keyframe in self._keyframes:
            self.events.publish(KeyframeAdded(keyframe))
        self._publish_changed()
        logger.info("Loaded %d keyframes (duration=%ss, fps=%s)", len(self), project.duration, project.fps)
        return project

    # ── internals ──

    def _sort(self) -> None:
        self._keyframes.sort(key=lambda k: k.time)

    def _index_of(self, keyframe: Keyframe) -> Optional[int]:
        for i, k in enumerate(self._keyframes):
            if k is keyframe:
                return i
        return None

    def _publish_changed(self) -> None:
        self.events.publish(KeyframesChanged(tuple(self._keyframes)))


def _finite(value, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValueError(f"'{name}' must be a finite number, got {value!r}.")
    return float(value)


def _control_points(points) -> BezierControlPoints:
    if isinstance(points, BezierControlPoints):
        return points
    if not isinstance(points, (list, tuple)) or len(points) != 4:
        raise ValueError("control_points must be 4 numbers.")
    return BezierControlPoints(*(_finite(p, "control_points") for p in points))


def demo_timeline() -> Timeline:
    """Four-keyframe tour over Tokyo used as the starter project."""
    return Timeline([
        Keyframe(0.0, Pose(35.6586, 139.7454, 500.0, 0.0, -45.0, 0.0, 60.0)),
        Keyframe(3.0, Pose(35.6586, 139.7454, 5_000.0, 45.0, -60.0, 0.0, 50.0)),
        Keyframe(6.0, Pose(35.6595, 139.7004, 800.0, 90.0, -30.0, 0.0, 70.0)),
        Keyframe(10.0, Pose(35.6762, 139.6503, 10_000.0, 180.0, -75.0, 0.0, 45.0)),
    ])
