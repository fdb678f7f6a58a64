"""Easing curves and interpolation primitives for camera poses.

Everything here is pure: no state, no side effects.
"""
from __future__ import annotations

import math
from typing import Callable, NamedTuple

from models import BezierControlPoints, Easing, Pose

_NEWTON_ITERATIONS = 8
_NEWTON_EPSILON = 1e-3
_MIN_SLOPE = 1e-6
_SLERP_EPSILON = 1e-6


class Quaternion(NamedTuple):
    x: float
    y: float
    z: float
    w: float


def ease_linear(t: float) -> float:
    return t


def ease_in(t: float) -> float:
    return t * t * t


def ease_out(t: float) -> float:
    return 1.0 - (1.0 - t) ** 3


def ease_in_out(t: float) -> float:
    if t < 0.5:
        return 4.0 * t * t * t
    return 1.0 - (-2.0 * t + 2.0) ** 3 / 2.0


def bezier(t: float, p1: float = 0.42, p2: float = 0.0, p3: float = 0.58, p4: float = 1.0) -> float:
    """CSS cubic-bezier(p1, p2, p3, p4) timing function.

    The curve runs from (0, 0) to (1, 1) with (p1, p2) and (p3, p4) as its
    interior control points. Newton-Raphson finds the curve parameter whose
    x equals ``t``; the y at that parameter is returned.
    """
    if t <= 0.0:
        return 0.0
    if t >= 1.0:
        return 1.0

    cx = 3.0 * p1
    bx = 3.0 * (p3 - p1) - cx
    ax = 1.0 - cx - bx

    cy = 3.0 * p2
    by = 3.0 * (p4 - p2) - cy
    ay = 1.0 - cy - by

    u = t
    for _ in range(_NEWTON_ITERATIONS):
        x = ((ax * u + bx) * u + cx) * u - t
        if abs(x) < _NEWTON_EPSILON:
            break
        slope = (3.0 * ax * u + 2.0 * bx) * u + cx
        if abs(slope) < _MIN_SLOPE:
            break
        u -= x / slope

    return ((ay * u + by) * u + cy) * u


_EASINGS: dict[Easing, Callable[[float], float]] = {
    Easing.LINEAR: ease_linear,
    Easing.EASE_IN: ease_in,
    Easing.EASE_OUT: ease_out,
    Easing.EASE_IN_OUT: ease_in_out,
}


def ease(t: float, easing: Easing | str = Easing.LINEAR, control_points: BezierControlPoints | None = None) -> float:
    try:
        kind = Easing(easing)
    except ValueError:
        # Unknown names behave as linear.
        return t
    if kind is Easing.BEZIER:
        cp = control_points or BezierControlPoints()
        return bezier(t, cp.p1, cp.p2, cp.p3, cp.p4)
    return _EASINGS[kind](t)


def lerp(
    a: float,
    b: float,
    t: float,
    easing: Easing | str = Easing.LINEAR,
    control_points: BezierControlPoints | None = None,
) -> float:
    eased = ease(t, easing, control_points)
    if eased == 1.0:
        return b
    return a + (b - a) * eased


def normalize_angle_deg(angle: float) -> float:
    """Wrap an angle into (-180, 180]."""
    wrapped = math.fmod(angle, 360.0)
    if wrapped > 180.0:
        wrapped -= 360.0
    elif wrapped <= -180.0:
        wrapped += 360.0
    return wrapped


def lerp_angle_deg(
    a: float,
    b: float,
    t: float,
    easing: Easing | str = Easing.LINEAR,
    control_points: BezierControlPoints | None = None,
) -> float:
    """Interpolate along the shortest arc; antipodal pairs turn positively."""
    start = normalize_angle_deg(a)
    end = normalize_angle_deg(b)
    delta = normalize_angle_deg(end - start)
    return normalize_angle_deg(start + delta * ease(t, easing, control_points))


def slerp(
    q_start: Quaternion,
    q_end: Quaternion,
    t: float,
    easing: Easing | str = Easing.LINEAR,
    control_points: BezierControlPoints | None = None,
) -> Quaternion:
    eased = ease(t, easing, control_points)
    dot = sum(a * b for a, b in zip(q_start, q_end))
    theta = math.acos(max(-1.0, min(1.0, dot)))
    if theta < _SLERP_EPSILON:
        return q_start

    sin_theta = math.sin(theta)
    wa = math.sin((1.0 - eased) * theta) / sin_theta
    wb = math.sin(eased * theta) / sin_theta
    return Quaternion(*(wa * a + wb * b for a, b in zip(q_start, q_end)))


def lerp_pose(
    before: Pose,
    after: Pose,
    t: float,
    easing: Easing | str = Easing.LINEAR,
    control_points: BezierControlPoints | None = None,
) -> Pose:
    return Pose(
        latitude=lerp(before.latitude, after.latitude, t, easing, control_points),
        longitude=lerp(before.longitude, after.longitude, t, easing, control_points),
        height=lerp(before.height, after.height, t, easing, control_points),
        heading=lerp_angle_deg(before.heading, after.heading, t, easing, control_points),
        pitch=lerp_angle_deg(before.pitch, after.pitch, t, easing, control_points),
        roll=lerp_angle_deg(before.roll, after.roll, t, easing, control_points),
        fov=lerp(before.fov, after.fov, t, easing, control_points),
    )
