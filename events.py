"""Typed change notifications published by the timeline, clock and exporter."""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


# ─── Timeline ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class KeyframeAdded:
    keyframe: Any


@dataclass(frozen=True)
class KeyframeRemoved:
    keyframe: Any


@dataclass(frozen=True)
class KeyframeUpdated:
    keyframe: Any


@dataclass(frozen=True)
class KeyframeSelected:
    keyframe: Optional[Any]


@dataclass(frozen=True)
class KeyframesChanged:
    keyframes: tuple


# ─── Playback clock ───────────────────────────────────────────────────


@dataclass(frozen=True)
class Played:
    time: float


@dataclass(frozen=True)
class Paused:
    time: float


@dataclass(frozen=True)
class Stopped:
    time: float


@dataclass(frozen=True)
class TimeUpdated:
    time: float


@dataclass(frozen=True)
class FrameUpdated:
    time: float
    frame: int


@dataclass(frozen=True)
class Finished:
    time: float


# ─── Export ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ExportProgress:
    percent: float
    message: str


class Subject:
    """Per-component listener registry keyed by event class."""

    def __init__(self) -> None:
        self._listeners: dict[type, list[Callable]] = defaultdict(list)

    def subscribe(self, event_type: type, callback: Callable) -> Callable[[], None]:
        self._listeners[event_type].append(callback)

        def _unsubscribe() -> None:
            listeners = self._listeners[event_type]
            if callback in listeners:
                listeners.remove(callback)

        return _unsubscribe

    def publish(self, event: object) -> None:
        for callback in list(self._listeners.get(type(event), ())):
            try:
                callback(event)
            except Exception:
                logger.exception("Listener %r failed on %s", callback, type(event).__name__)
