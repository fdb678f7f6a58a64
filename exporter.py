from __future__ import annotations

import asyncio
import enum
import logging
import math
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Optional

from backend_client import ExportBackend, JobStatus
from config import DEFAULT_QUALITY, POLL_INTERVAL_SEC, QUALITY_PRESETS
from errors import CancellationError, CaptureError, KeyframerError, ServerProcessingError
from events import ExportProgress, Subject
from playback import PlaybackClock
from renderer import Renderer
from timeline import Timeline

logger = logging.getLogger(__name__)

# Share of the progress bar spent on capture/upload; encoding takes the rest.
CAPTURE_SHARE = 80.0


@dataclass(frozen=True)
class ExportSettings:
    width: int
    height: int
    fps: float
    quality: str = DEFAULT_QUALITY

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError("Export resolution must be positive.")
        if self.fps <= 0:
            raise ValueError("Export fps must be positive.")
        if self.quality not in QUALITY_PRESETS:
            raise ValueError(f"Unknown quality '{self.quality}'. Choose from {', '.join(QUALITY_PRESETS)}.")

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass
class ExportResult:
    ok: bool
    frames: int = 0
    output: Optional[Path] = None
    error: Optional[KeyframerError] = None
    session_id: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, CancellationError)


class ExportState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    CANCELLING = "cancelling"


class PollTask:
    """Periodic action that reschedules itself only while ``is_alive`` holds.

    ``action`` returns True once the polled job reached a terminal state.
    """

    def __init__(
        self,
        action: Callable[[], Awaitable[bool]],
        interval: float,
        is_alive: Callable[[], bool],
    ):
        self._action = action
        self._interval = interval
        self._is_alive = is_alive
        self.ticks = 0

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            if not self._is_alive():
                raise CancellationError()
            self.ticks += 1
            if await self._action():
                return


def save_to_directory(output_dir: Path) -> Callable[[bytes, str], Path]:
    def _deliver(video: bytes, filename: str) -> Path:
        output_dir.mkdir(parents=True, exist_ok=True)
        path = output_dir / filename
        path.write_bytes(video)
        return path

    return _deliver


class VideoExporter:
    """Turns the timeline into a video, either by capturing frames locally
    and streaming them to the backend (``export_frames``) or by handing the
    whole timeline to the backend to render (``export_on_server``).

    Only one export runs at a time; starting another returns None.
    """

    def __init__(
        self,
        timeline: Timeline,
        clock: PlaybackClock,
        renderer: Renderer,
        backend: ExportBackend,
        *,
        on_video: Callable[[bytes, str], Optional[Path]] | None = None,
        output_dir: Path = Path("output"),
        poll_interval: float = POLL_INTERVAL_SEC,
    ):
        self.timeline = timeline
        self.clock = clock
        self.renderer = renderer
        self.backend = backend
        self.on_video = on_video or save_to_directory(output_dir)
        self.poll_interval = poll_interval
        self.events = Subject()

        self.state = ExportState.IDLE
        self.progress = 0.0
        self.status = "Ready"

    @property
    def is_exporting(self) -> bool:
        return self.state is not ExportState.IDLE

    def cancel(self) -> bool:
        """Request cancellation; honoured at the next frame or poll tick."""
        if self.state is not ExportState.RUNNING:
            return False
        self.state = ExportState.CANCELLING
        logger.info("Export cancellation requested")
        return True

    # ─── Mode A: client capture ───────────────────────────────────────

    async def export_frames(self, settings: ExportSettings) -> Optional[ExportResult]:
        if not self._begin():
            return None

        result = ExportResult(ok=False)
        original_size = tuple(self.renderer.size)
        try:
            self._report(0, "Preparing export...")
            result.session_id = await asyncio.to_thread(self.backend.start_session)

            async with self.clock.hold():
                await self.renderer.resize(settings.width, settings.height)
                try:
                    result.frames = await self._capture_frames(result.session_id, settings)
                finally:
                    await self.renderer.resize(*original_size)

            self._report(CAPTURE_SHARE, "Encoding video... (this can take a few minutes)")
            video = await asyncio.to_thread(
                self.backend.finish_session, result.session_id, settings.fps, settings.quality,
            )
            result.output = self.on_video(video, _video_filename())
            result.ok = True
            self._report(100, "Export complete!")
            logger.info("Exported %d frames in session %s", result.frames, result.session_id)
        except KeyframerError as exc:
            self._fail(result, exc)
        except Exception as exc:
            logger.exception("Unexpected export failure")
            self._fail(result, KeyframerError(str(exc)))
        finally:
            self.state = ExportState.IDLE
        return result

    async def _capture_frames(self, session_id: str, settings: ExportSettings) -> int:
        total_frames = math.ceil(self.clock.duration * settings.fps)
        for frame in range(total_frames):
            if self.state is not ExportState.RUNNING:
                raise CancellationError()

            pose = self.timeline.sample(frame / settings.fps)
            await self.renderer.set_pose(pose)
            await self.renderer.set_field_of_view(pose.fov)

            image = await self.renderer.render_and_capture()
            if not image:
                raise CaptureError(f"Frame capture failed at frame {frame}")
            await asyncio.to_thread(self.backend.upload_frame, session_id, frame, image)

            self._report(
                (frame + 1) / total_frames * CAPTURE_SHARE,
                f"Processing frames... ({frame + 1}/{total_frames})",
            )
        return total_frames

    # ─── Mode B: server render ────────────────────────────────────────

    async def export_on_server(self, settings: ExportSettings) -> Optional[ExportResult]:
        if not self._begin():
            return None

        result = ExportResult(ok=False)
        try:
            self._report(0, "Starting server render...")
            payload = {
                "keyframes": [k.to_json() for k in self.timeline.all()],
                "duration": self.clock.duration,
                "fps": settings.fps,
                "resolution": settings.resolution,
                "quality": settings.quality,
            }
            result.session_id = await asyncio.to_thread(self.backend.start_remote_job, payload)

            poller = PollTask(
                lambda: self._poll_once(result.session_id),
                self.poll_interval,
                lambda: self.state is ExportState.RUNNING,
            )
            await poller.run()

            self._report(100, "Downloading...")
            video = await asyncio.to_thread(self.backend.download_result, result.session_id)
            result.output = self.on_video(video, _video_filename())
            result.frames = math.ceil(self.clock.duration * settings.fps)
            result.ok = True
            self._report(100, "Export complete!")
        except CancellationError as exc:
            if result.session_id:
                await asyncio.to_thread(self.backend.cancel_remote_job, result.session_id)
            self._fail(result, exc)
        except KeyframerError as exc:
            self._fail(result, exc)
        except Exception as exc:
            logger.exception("Unexpected server export failure")
            self._fail(result, KeyframerError(str(exc)))
        finally:
            self.state = ExportState.IDLE
        return result

    async def _poll_once(self, session_id: str) -> bool:
        status: JobStatus = await asyncio.to_thread(self.backend.get_status, session_id)
        if status.status == "failed":
            raise ServerProcessingError(status.error or "Server processing failed")
        if status.status == "cancelled":
            raise ServerProcessingError(status.error or "Server job was cancelled")
        self._report(status.progress, status.message)
        return status.status == "completed"

    # ─── internals ────────────────────────────────────────────────────

    def _begin(self) -> bool:
        if self.state is not ExportState.IDLE:
            logger.warning("Export already in progress; ignoring new request")
            return False
        self.state = ExportState.RUNNING
        return True

    def _report(self, percent: float, message: str) -> None:
        self.progress = percent
        self.status = message
        self.events.publish(ExportProgress(percent, message))

    def _fail(self, result: ExportResult, exc: KeyframerError) -> None:
        result.error = exc
        if isinstance(exc, CancellationError):
            logger.info("Export cancelled: %s", exc.message)
        else:
            logger.error("Export failed: %s", exc.message)
        self._report(0, f"Error: {exc.message}")


def _video_filename() -> str:
    return f"animation_{int(time.time() * 1000)}.mp4"
