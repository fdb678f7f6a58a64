from __future__ import annotations

import asyncio
import logging
import math
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from errors import ClockBusyError
from events import Finished, FrameUpdated, Paused, Played, Stopped, Subject, TimeUpdated
from renderer import Renderer
from timeline import Timeline

logger = logging.getLogger(__name__)

# Absorbs float accumulation when whole frame intervals add up to the duration.
_END_EPSILON = 1e-9


class PlaybackClock:
    """Play/pause/loop state machine that walks the timeline at a fixed fps.

    Time advances in whole frame intervals only; wall-clock jitter is carried
    over to the next tick instead of being added to ``current_time``.
    """

    def __init__(
        self,
        timeline: Timeline,
        renderer: Renderer,
        *,
        duration: float = 10.0,
        fps: float = 30,
        loop: bool = False,
        time_source: Callable[[], float] = time.monotonic,
        drive_loop: bool = True,
    ):
        if duration <= 0:
            raise ValueError("duration must be positive")
        if fps <= 0:
            raise ValueError("fps must be positive")

        self.timeline = timeline
        self.renderer = renderer
        self.duration = float(duration)
        self.fps = fps
        self.loop = loop
        self.current_time = 0.0
        self.is_playing = False
        self.events = Subject()

        self._time_source = time_source
        self._drive_loop = drive_loop
        self._last_tick_ms = 0.0
        self._task: Optional[asyncio.Task] = None
        self._held = False

    @property
    def frame_interval_ms(self) -> float:
        return 1000.0 / self.fps

    @property
    def current_frame(self) -> int:
        return math.floor(self.current_time * self.fps)

    @property
    def total_frames(self) -> int:
        return math.floor(self.duration * self.fps)

    @property
    def is_held(self) -> bool:
        return self._held

    # ── transitions ──

    async def play(self) -> None:
        if self._held:
            raise ClockBusyError()
        if self.is_playing:
            return

        self.is_playing = True
        self._last_tick_ms = self._now_ms()
        await self.renderer.enable_interactive_control(False)
        if self._drive_loop:
            self._task = asyncio.get_running_loop().create_task(self.run())
        self.events.publish(Played(self.current_time))

    async def pause(self) -> None:
        if not self.is_playing:
            return

        self.is_playing = False
        self._stop_task()
        await self.renderer.enable_interactive_control(True)
        self.events.publish(Paused(self.current_time))

    async def stop(self) -> None:
        await self.pause()
        await self.seek(0.0)
        self.events.publish(Stopped(self.current_time))

    async def play_from_start(self) -> None:
        await self.stop()
        await self.play()

    async def seek(self, time_sec: float) -> None:
        if self._held:
            raise ClockBusyError()
        self.current_time = max(0.0, min(self.duration, float(time_sec)))
        await self._update_pose()
        self.events.publish(TimeUpdated(self.current_time))

    async def step_forward(self) -> None:
        await self.seek(self.current_time + 1.0 / self.fps)

    async def step_backward(self) -> None:
        await self.seek(self.current_time - 1.0 / self.fps)

    def set_fps(self, fps: float) -> None:
        if fps <= 0:
            raise ValueError("fps must be positive")
        self.fps = fps

    def set_duration(self, duration: float) -> None:
        if duration <= 0:
            raise ValueError("duration must be positive")
        self.duration = float(duration)
        if self.current_time > self.duration:
            self.current_time = self.duration

    def set_loop(self, loop: bool) -> None:
        self.loop = loop

    # ── tick loop ──

    async def tick(self, now: float | None = None) -> bool:
        """Process one tick; ``now`` is in seconds of the clock's time source.

        Returns True when the playhead moved.
        """
        if not self.is_playing or self._held:
            return False

        now_ms = self._now_ms() if now is None else now * 1000.0
        elapsed = now_ms - self._last_tick_ms
        interval = self.frame_interval_ms
        if elapsed < interval:
            return False

        self._last_tick_ms = now_ms - (elapsed % interval)
        self.current_time += interval / 1000.0

        if self.current_time >= self.duration - _END_EPSILON:
            if self.loop:
                self.current_time = 0.0
            else:
                self.current_time = self.duration
                await self.pause()
                self.events.publish(TimeUpdated(self.current_time))
                self.events.publish(Finished(self.current_time))
                return True

        await self._update_pose()
        self.events.publish(TimeUpdated(self.current_time))
        self.events.publish(FrameUpdated(self.current_time, self.current_frame))
        return True

    async def run(self) -> None:
        """Cooperative tick loop; lives as long as the clock is playing."""
        while self.is_playing and not self._held:
            await self.tick()
            await asyncio.sleep(self.frame_interval_ms / 4000.0)

    # ── exclusive ownership ──

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[PlaybackClock]:
        """Take the playhead away from the tick loop and from seek callers.

        Playback is paused for the duration of the block; on exit the
        original position and play state come back.
        """
        if self._held:
            raise ClockBusyError("Playback clock is already held.")

        was_playing = self.is_playing
        saved_time = self.current_time
        await self.pause()
        self._held = True
        logger.debug("Clock held at %.3fs (was_playing=%s)", saved_time, was_playing)
        try:
            yield self
        finally:
            self._held = False
            await self.seek(saved_time)
            if was_playing:
                await self.play()

    # ── internals ──

    def _now_ms(self) -> float:
        return self._time_source() * 1000.0

    def _stop_task(self) -> None:
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _update_pose(self) -> None:
        pose = self.timeline.sample(self.current_time)
        await self.renderer.set_pose(pose)
        await self.renderer.set_field_of_view(pose.fov)
