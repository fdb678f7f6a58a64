from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Callable, Optional, Protocol

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from errors import CaptureError, RendererError
from models import Pose

logger = logging.getLogger(__name__)

_GPU_ARGS = [
    "--enable-gpu",
    "--enable-webgl",
    "--ignore-gpu-blocklist",
    "--enable-gpu-rasterization",
    "--disable-software-rasterizer",
]

VIEWER_HTML = Path(__file__).resolve().parent / "web" / "viewer.html"


class Renderer(Protocol):
    """The globe view a camera path is played back on and captured from."""

    size: tuple[int, int]

    async def set_pose(self, pose: Pose) -> None: ...

    async def set_field_of_view(self, degrees: float) -> None: ...

    async def resize(self, width: int, height: int) -> None: ...

    async def render_and_capture(self) -> bytes:
        """Return a PNG of a frame that reflects the most recent pose."""
        ...

    async def enable_interactive_control(self, enabled: bool) -> None: ...


class NullRenderer:
    """Renderer for hosts with no view, e.g. a CLI driving a server render."""

    def __init__(self, width: int = 1280, height: int = 720):
        self.size = (width, height)
        self.pose: Optional[Pose] = None
        self.fov: Optional[float] = None

    async def set_pose(self, pose: Pose) -> None:
        self.pose = pose

    async def set_field_of_view(self, degrees: float) -> None:
        self.fov = degrees

    async def resize(self, width: int, height: int) -> None:
        self.size = (width, height)

    async def render_and_capture(self) -> bytes:
        raise CaptureError("NullRenderer cannot capture frames.")

    async def enable_interactive_control(self, enabled: bool) -> None:
        pass


def _camera_state(pose: Pose) -> dict:
    return {
        "latitude": pose.latitude,
        "longitude": pose.longitude,
        "height": pose.height,
        "heading": pose.heading,
        "pitch": pose.pitch,
        "roll": pose.roll,
    }


class CesiumPageRenderer:
    """CesiumJS viewer in a headless Chromium page, driven through Playwright.

    Use as an async context manager, then ``boot`` once before drawing.
    """

    def __init__(
        self,
        width: int = 1280,
        height: int = 720,
        *,
        ion_token: str = "",
        headless: bool = True,
        viewer_html_path: Path | None = None,
    ):
        self.size = (width, height)
        self._ion_token = ion_token
        self._headless = headless
        self._vpath = viewer_html_path or VIEWER_HTML
        self._pw = None
        self._browser = None
        self._page = None
        self._console_messages: list[str] = []

    # ── context manager ──

    async def __aenter__(self) -> CesiumPageRenderer:
        if not self._vpath.exists():
            raise FileNotFoundError(f"Viewer HTML not found: {self._vpath}")

        self._pw = await async_playwright().start()
        self._browser = await self._pw.chromium.launch(headless=self._headless, args=_GPU_ARGS)
        width, height = self.size
        self._page = await self._browser.new_page(viewport={"width": width, "height": height})

        def _on_console(msg) -> None:
            text = msg.text.strip()
            if text:
                self._console_messages.append(f"[{msg.type}] {text}")

        self._page.on("console", _on_console)
        await self._page.goto(self._vpath.as_uri(), wait_until="networkidle")
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self._browser:
            await self._browser.close()
        if self._pw:
            await self._pw.stop()

    # ── public API ──

    async def boot(self, initial_pose: Pose) -> None:
        """Initialize the Cesium viewer (call once after entering)."""
        try:
            await self._page.evaluate(
                "async (cfg) => { await window.bootRenderer(cfg); }",
                {
                    "ionToken": self._ion_token,
                    "initialCamera": _camera_state(initial_pose),
                    "fov": initial_pose.fov,
                },
            )
        except PlaywrightError as exc:
            console_tail = "\n".join(self._console_messages[-8:])
            extra = f"\nBrowser console:\n{console_tail}" if console_tail else ""
            raise RendererError(
                "Cesium viewer initialization failed. "
                "Check network access to the Cesium CDN and the ion token.\n"
                f"Original error: {exc}{extra}"
            ) from exc

        await self._page.wait_for_timeout(1_000)

    async def preload(self, poses: list[Pose]) -> None:
        """Visit each pose once so tiles along the path are cached."""
        await self._page.evaluate(
            "async (pos) => { await window.preloadPositions(pos); }",
            [_camera_state(p) for p in poses],
        )

    async def set_pose(self, pose: Pose) -> None:
        await self._page.evaluate("(s) => window.setCameraState(s);", _camera_state(pose))

    async def set_field_of_view(self, degrees: float) -> None:
        await self._page.evaluate("(fov) => window.setFov(fov);", degrees)

    async def resize(self, width: int, height: int) -> None:
        await self._page.set_viewport_size({"width": width, "height": height})
        await self._page.evaluate("() => window.resizeViewer();")
        self.size = (width, height)

    async def render_and_capture(self) -> bytes:
        try:
            await self._page.evaluate("async () => { await window.renderOnce(); }")
            return await self._page.screenshot(type="png")
        except PlaywrightError as exc:
            raise CaptureError(f"Frame capture failed: {exc}") from exc

    async def enable_interactive_control(self, enabled: bool) -> None:
        await self._page.evaluate("(on) => window.enableCameraControls(on);", enabled)


async def render_timeline_frames(
    sample: Callable[[float], Pose],
    renderer: Renderer,
    frame_dir: Path,
    *,
    duration: float,
    fps: float,
    on_frame: Optional[Callable[[int, int], None]] = None,
    should_continue: Optional[Callable[[], bool]] = None,
) -> int:
    """Render ``ceil(duration * fps)`` frames to ``frame_%06d.png`` files."""
    frame_dir.mkdir(parents=True, exist_ok=True)
    for p in frame_dir.glob("frame_*.png"):
        p.unlink()

    total_frames = math.ceil(duration * fps)
    for i in range(total_frames):
        if should_continue is not None and not should_continue():
            return i
        pose = sample(i / fps)
        await renderer.set_pose(pose)
        await renderer.set_field_of_view(pose.fov)
        png = await renderer.render_and_capture()
        (frame_dir / f"frame_{i:06d}.png").write_bytes(png)
        if on_frame is not None:
            on_frame(i, total_frames)

    logger.info("Rendered %d frames into %s", total_frames, frame_dir)
    return total_frames
