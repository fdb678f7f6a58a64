"""Project documents: ``{version, duration, fps, keyframes: [KeyframeJSON]}``."""
from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from pathlib import Path

from errors import ValidationError
from models import Easing, Keyframe

PROJECT_VERSION = 1.0
DEFAULT_DURATION_SEC = 10.0
DEFAULT_FPS = 30

_REQUIRED_KEYFRAME_FIELDS = ("time", "latitude", "longitude", "height", "heading", "pitch", "roll")


@dataclass
class Project:
    duration: float = DEFAULT_DURATION_SEC
    fps: float = DEFAULT_FPS
    keyframes: list[Keyframe] = field(default_factory=list)


def _number(value, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"'{name}' must be a number, got {value!r}.")
    if not math.isfinite(value):
        raise ValidationError(f"'{name}' must be finite.")
    return float(value)


def _parse_keyframe(data, index: int) -> Keyframe:
    if not isinstance(data, dict):
        raise ValidationError(f"Keyframe #{index} must be an object.")

    for name in _REQUIRED_KEYFRAME_FIELDS:
        if name not in data:
            raise ValidationError(f"Keyframe #{index} is missing '{name}'.")
        _number(data[name], f"keyframes[{index}].{name}")
    if data["time"] < 0:
        raise ValidationError(f"Keyframe #{index} has a negative time.")
    if data.get("fov") is not None:
        _number(data["fov"], f"keyframes[{index}].fov")

    easing = data.get("interpolationType")
    if easing is not None and easing not in {e.value for e in Easing}:
        raise ValidationError(f"Keyframe #{index} has unknown interpolationType '{easing}'.")

    points = data.get("bezierPoints")
    if points is not None:
        if not isinstance(points, list) or len(points) != 4:
            raise ValidationError(f"Keyframe #{index} bezierPoints must be a list of 4 numbers.")
        for j, p in enumerate(points):
            _number(p, f"keyframes[{index}].bezierPoints[{j}]")

    return Keyframe.from_json(data)


def parse_project(data) -> Project:
    """Validate a decoded project document and build its keyframes.

    Raises ValidationError without side effects on malformed input.
    """
    if not isinstance(data, dict):
        raise ValidationError("Project document must be a JSON object.")

    raw_keyframes = data.get("keyframes")
    if not isinstance(raw_keyframes, list):
        raise ValidationError("Project document needs a 'keyframes' list.")

    duration = DEFAULT_DURATION_SEC
    if data.get("duration") is not None:
        duration = _number(data["duration"], "duration")
        if duration <= 0:
            raise ValidationError("'duration' must be positive.")

    fps = DEFAULT_FPS
    if data.get("fps") is not None:
        fps = _number(data["fps"], "fps")
        if fps <= 0:
            raise ValidationError("'fps' must be positive.")
        if fps.is_integer():
            fps = int(fps)

    keyframes = [_parse_keyframe(kf, i) for i, kf in enumerate(raw_keyframes)]
    return Project(duration=duration, fps=fps, keyframes=keyframes)


def project_to_dict(project: Project) -> dict:
    return {
        "version": PROJECT_VERSION,
        "duration": project.duration,
        "fps": project.fps,
        "keyframes": [k.to_json() for k in project.keyframes],
    }


def load_project(path: str | Path) -> Project:
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Not a valid JSON project file: {path} ({exc})") from exc
    return parse_project(data)


def save_project(path: str | Path, project: Project) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(project_to_dict(project), ensure_ascii=False, indent=2),
        encoding="utf-8",
    )
    return path
