from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum


class Easing(str, Enum):
    LINEAR = "linear"
    EASE_IN = "easeIn"
    EASE_OUT = "easeOut"
    EASE_IN_OUT = "easeInOut"
    BEZIER = "bezier"


@dataclass(frozen=True)
class BezierControlPoints:
    """Interior control points of a CSS-style cubic-bezier timing curve."""

    p1: float = 0.42
    p2: float = 0.0
    p3: float = 0.58
    p4: float = 1.0

    def to_list(self) -> list[float]:
        return [self.p1, self.p2, self.p3, self.p4]


@dataclass(frozen=True)
class Pose:
    latitude: float
    longitude: float
    height: float
    heading: float
    pitch: float
    roll: float
    fov: float = 60.0

    def replace(self, **changes) -> Pose:
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return asdict(self)


POSE_FIELDS = tuple(f.name for f in fields(Pose))

DEFAULT_POSE = Pose(
    latitude=35.6762,
    longitude=139.6503,
    height=10_000.0,
    heading=0.0,
    pitch=-45.0,
    roll=0.0,
    fov=60.0,
)


@dataclass(eq=False)
class Keyframe:
    """A timestamped pose plus the easing of the segment that starts at it.

    Compared by identity: two keyframes with equal fields are still distinct
    entries in a timeline.
    """

    time: float
    pose: Pose
    easing: Easing = Easing.EASE_IN_OUT
    control_points: BezierControlPoints = field(default_factory=BezierControlPoints)

    def clone(self) -> Keyframe:
        return Keyframe(
            time=self.time,
            pose=self.pose,
            easing=self.easing,
            control_points=self.control_points,
        )

    def to_json(self) -> dict:
        data = {"time": self.time, **self.pose.to_dict(), "interpolationType": self.easing.value}
        if self.easing is Easing.BEZIER:
            data["bezierPoints"] = self.control_points.to_list()
        return data

    @classmethod
    def from_json(cls, data: dict) -> Keyframe:
        fov = data.get("fov")
        pose = Pose(
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            height=float(data["height"]),
            heading=float(data["heading"]),
            pitch=float(data["pitch"]),
            roll=float(data["roll"]),
            fov=float(fov) if fov else 60.0,
        )
        points = data.get("bezierPoints")
        return cls(
            time=float(data["time"]),
            pose=pose,
            easing=Easing(data.get("interpolationType") or Easing.EASE_IN_OUT.value),
            control_points=BezierControlPoints(*map(float, points)) if points else BezierControlPoints(),
        )
