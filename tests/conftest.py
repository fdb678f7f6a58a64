"""Shared fakes for the renderer and backend collaborators."""

from __future__ import annotations

import io

import pytest
from PIL import Image

from backend_client import JobStatus
from models import Easing, Keyframe, Pose


def png_bytes(width: int = 4, height: int = 4, color=(30, 60, 90)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


def make_pose(**overrides) -> Pose:
    values = dict(latitude=35.0, longitude=139.0, height=500.0, heading=0.0, pitch=-45.0, roll=0.0, fov=60.0)
    values.update(overrides)
    return Pose(**values)


def make_keyframe(time: float, easing: Easing = Easing.LINEAR, **pose) -> Keyframe:
    return Keyframe(time, make_pose(**pose), easing)


class FakeRenderer:
    def __init__(self, width: int = 800, height: int = 600):
        self.size = (width, height)
        self.pose = None
        self.fov = None
        self.calls: list[tuple] = []
        self.interactive = True
        self.fail_capture_at: int | None = None
        self.captures = 0

    async def set_pose(self, pose):
        self.pose = pose
        self.calls.append(("set_pose", pose))

    async def set_field_of_view(self, degrees):
        self.fov = degrees
        self.calls.append(("set_fov", degrees))

    async def resize(self, width, height):
        self.size = (width, height)
        self.calls.append(("resize", (width, height)))

    async def render_and_capture(self):
        index = self.captures
        self.captures += 1
        self.calls.append(("capture", index))
        if self.fail_capture_at is not None and index == self.fail_capture_at:
            return b""
        return png_bytes()

    async def enable_interactive_control(self, enabled):
        self.interactive = enabled
        self.calls.append(("interactive", enabled))


class FakeBackend:
    """In-memory stand-in for ExportBackend; records every exchange."""

    def __init__(self, renderer: FakeRenderer | None = None):
        self.renderer = renderer
        self.uploads: list[tuple[str, int, object]] = []
        self.finished: list[tuple[str, float, str]] = []
        self.started_jobs: list[dict] = []
        self.statuses: list[JobStatus] = []
        self.status_calls = 0
        self.cancelled: list[str] = []
        self.on_upload = None
        self.on_status = None
        self.fail_start = None
        self.fail_upload_at: int | None = None

    def start_session(self):
        if self.fail_start is not None:
            raise self.fail_start
        return "session-1"

    def upload_frame(self, session_id, frame_index, image):
        from errors import ConnectivityError

        if self.fail_upload_at is not None and frame_index == self.fail_upload_at:
            raise ConnectivityError(f"Upload failed at frame {frame_index}")
        pose = self.renderer.pose if self.renderer else None
        self.uploads.append((session_id, frame_index, pose))
        if self.on_upload is not None:
            self.on_upload(frame_index)

    def finish_session(self, session_id, fps, quality):
        self.finished.append((session_id, fps, quality))
        return b"MP4DATA"

    def start_remote_job(self, payload):
        self.started_jobs.append(payload)
        return "job-1"

    def get_status(self, session_id):
        index = min(self.status_calls, len(self.statuses) - 1)
        self.status_calls += 1
        if self.on_status is not None:
            self.on_status(self.status_calls)
        return self.statuses[index]

    def download_result(self, session_id):
        return b"SERVERMP4"

    def cancel_remote_job(self, session_id):
        self.cancelled.append(session_id)
        return True


class FakeTime:
    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def backend(renderer):
    return FakeBackend(renderer)
