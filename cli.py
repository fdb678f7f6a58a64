from __future__ import annotations

import argparse
import asyncio
import logging
import os
import shutil
import sys
from datetime import datetime
from pathlib import Path

from backend_client import ExportBackend
from config import DEFAULT_QUALITY, QUALITY_PRESETS, RESOLUTION_PRESETS, default_server_url, parse_resolution
from encoder import encode_frames_to_mp4
from errors import KeyframerError
from events import ExportProgress
from exporter import ExportSettings, VideoExporter
from playback import PlaybackClock
from project import Project, load_project, save_project
from renderer import CesiumPageRenderer, NullRenderer, render_timeline_frames
from timeline import Timeline, demo_timeline


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Render keyframed globe camera paths to MP4."
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    def _add_output_flags(p: argparse.ArgumentParser) -> None:
        p.add_argument("project", help="Project JSON file")
        p.add_argument(
            "--resolution",
            default="720p",
            help=f"Preset ({', '.join(RESOLUTION_PRESETS)}) or WIDTHxHEIGHT",
        )
        p.add_argument("--fps", type=float, default=None, help="Frame rate (defaults to the project's)")
        p.add_argument("--quality", choices=list(QUALITY_PRESETS), default=DEFAULT_QUALITY)
        p.add_argument("--output-dir", default="output", help="Output root directory")

    render = sub.add_parser("render", help="Render a project locally with a headless Cesium viewer")
    _add_output_flags(render)
    render.add_argument(
        "--ion-token",
        default=os.getenv("CESIUM_ION_TOKEN", ""),
        help="Cesium ion token (uses CESIUM_ION_TOKEN env var if not provided)",
    )

    export = sub.add_parser("export", help="Export a project through a render/encode backend")
    _add_output_flags(export)
    export.add_argument("--server", default=default_server_url(), help="Backend base URL")
    export.add_argument(
        "--mode",
        choices=["client", "server"],
        default="server",
        help="client: capture frames here and upload; server: let the backend render",
    )
    export.add_argument("--ion-token", default=os.getenv("CESIUM_ION_TOKEN", ""))

    demo = sub.add_parser("demo", help="Write the Tokyo demo project")
    demo.add_argument("output", help="Destination JSON file")
    demo.add_argument("--duration", type=float, default=10.0)
    demo.add_argument("--fps", type=float, default=30)

    return parser.parse_args(argv)


def _print_progress(event: ExportProgress) -> None:
    print(f"[{event.percent:5.1f}%] {event.message}")


async def _render_locally(project: Project, args: argparse.Namespace) -> int:
    width, height = parse_resolution(args.resolution)
    fps = args.fps or project.fps
    timeline = Timeline(project.keyframes)

    run_id = datetime.now().strftime("%Y%m%d_%H%M%S")
    run_dir = Path(args.output_dir) / f"run_{run_id}"
    frame_dir = run_dir / "frames"
    video_path = run_dir / f"{Path(args.project).stem}.mp4"

    print(f"[INFO] run_dir: {run_dir}")
    print(f"[INFO] keyframes: {len(timeline)} / duration: {project.duration}s / {width}x{height} @ {fps}fps")

    async with CesiumPageRenderer(width, height, ion_token=args.ion_token) as renderer:
        await renderer.boot(timeline.sample(0.0))
        if len(timeline):
            await renderer.preload([k.pose for k in timeline.all()])
        print("  - Starting frame rendering...")
        rendered = await render_timeline_frames(
            timeline.sample, renderer, frame_dir, duration=project.duration, fps=fps,
        )

    print(f"  - Starting encoding... ({rendered} frames)")
    encode_frames_to_mp4(frame_dir, video_path, fps=fps, quality=args.quality)
    shutil.rmtree(frame_dir, ignore_errors=True)
    print(f"[DONE] {video_path}")
    return 0


async def _export(project: Project, args: argparse.Namespace) -> int:
    width, height = parse_resolution(args.resolution)
    settings = ExportSettings(width, height, args.fps or project.fps, args.quality)
    timeline = Timeline(project.keyframes)
    backend = ExportBackend(args.server)
    output_dir = Path(args.output_dir)

    print(f"[INFO] backend: {args.server} / mode: {args.mode}")

    async def _run(renderer) -> int:
        clock = PlaybackClock(timeline, renderer, duration=project.duration, fps=project.fps, drive_loop=False)
        exporter = VideoExporter(timeline, clock, renderer, backend, output_dir=output_dir)
        exporter.events.subscribe(ExportProgress, _print_progress)

        if args.mode == "client":
            result = await exporter.export_frames(settings)
        else:
            result = await exporter.export_on_server(settings)

        if result.ok:
            print(f"[DONE] {result.output}")
            return 0
        print(f"[ERROR] {result.error.message}", file=sys.stderr)
        return 1

    if args.mode == "client":
        async with CesiumPageRenderer(width, height, ion_token=args.ion_token) as renderer:
            await renderer.boot(timeline.sample(0.0))
            return await _run(renderer)
    return await _run(NullRenderer(width, height))


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command == "demo":
        path = save_project(
            args.output,
            Project(duration=args.duration, fps=args.fps, keyframes=demo_timeline().all()),
        )
        print(f"[INFO] Demo project written: {path}")
        return 0

    try:
        project = load_project(args.project)
        print(f"[INFO] Loaded project: {args.project}")
        if args.command == "render":
            return asyncio.run(_render_locally(project, args))
        return asyncio.run(_export(project, args))
    except (KeyframerError, ValueError, OSError) as exc:
        print(f"[ERROR] {getattr(exc, 'message', exc)}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
