"""Render/encode backend for the export pipeline.

Client-capture sessions receive PNG frames one by one and encode them on
finish. Server-render jobs take a whole timeline snapshot, render it in a
headless Cesium page on a background thread and expose status polling.
"""
from __future__ import annotations

import asyncio
import io
import logging
import shutil
import threading
import uuid
from pathlib import Path
from typing import Callable

from flask import Flask, Response, jsonify, request, send_file
from PIL import Image, UnidentifiedImageError

from config import QUALITY_PRESETS, ServerConfig, parse_resolution
from encoder import encode_frames_to_mp4
from errors import KeyframerError, ValidationError
from project import Project, parse_project
from renderer import CesiumPageRenderer, render_timeline_frames
from timeline import Timeline

logger = logging.getLogger(__name__)

_config = ServerConfig.from_env()

app = Flask(__name__)
app.config["OUTPUT_DIR"] = _config.output_dir
app.config["ION_TOKEN"] = _config.ion_token

sessions: dict[str, dict] = {}
jobs: dict[str, dict] = {}

_PUBLIC_JOB_FIELDS = ("status", "progress", "message", "error")


def _error(message: str, status: int = 400, **extra):
    return jsonify({"ok": False, "error": message, **extra}), status


def _output_dir() -> Path:
    return Path(app.config["OUTPUT_DIR"])


@app.errorhandler(KeyframerError)
def handle_domain_error(exc: KeyframerError):
    return jsonify(exc.to_payload()), 400


# ─── Client-capture sessions ────────────────────────────────────────────

@app.route("/export/start", methods=["POST"])
def start_session():
    session_id = uuid.uuid4().hex
    frame_dir = _output_dir() / "sessions" / session_id / "frames"
    frame_dir.mkdir(parents=True, exist_ok=True)
    sessions[session_id] = {"dir": frame_dir.parent, "frames": 0}
    logger.info("Session %s started", session_id)
    return jsonify({"ok": True, "sessionId": session_id})


@app.route("/export/frame", methods=["POST"])
def upload_frame():
    session_id = request.headers.get("x-session-id", "")
    session = sessions.get(session_id)
    if session is None:
        return _error("Unknown export session.", 404)

    try:
        frame_index = int(request.headers.get("x-frame-index", ""))
    except ValueError:
        return _error("x-frame-index header must be an integer.")
    if frame_index < 0:
        return _error("x-frame-index must be >= 0.")

    body = request.get_data()
    if not body:
        return _error("Empty frame body.")
    try:
        with Image.open(io.BytesIO(body)) as img:
            img.verify()
            image_format = img.format
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        return _error(f"Frame {frame_index} is not a valid image: {exc}")

    target = session["dir"] / "frames" / f"frame_{frame_index:06d}.png"
    if image_format == "PNG":
        target.write_bytes(body)
    else:
        with Image.open(io.BytesIO(body)) as img:
            img.convert("RGB").save(target, format="PNG")

    session["frames"] = max(session["frames"], frame_index + 1)
    return jsonify({"ok": True, "frameIndex": frame_index})


@app.route("/export/finish", methods=["POST"])
def finish_session():
    data = request.get_json(force=True, silent=True) or {}
    session_id = data.get("sessionId", "")
    session = sessions.get(session_id)
    if session is None:
        return _error("Unknown export session.", 404)

    try:
        fps = float(data.get("fps", 30))
    except (TypeError, ValueError):
        return _error("fps must be a number.")
    if fps <= 0:
        return _error("fps must be positive.")
    quality = data.get("quality", "high")
    if quality not in QUALITY_PRESETS:
        return _error(f"quality must be one of: {', '.join(QUALITY_PRESETS)}")

    session_dir: Path = session["dir"]
    video_path = session_dir / "video.mp4"
    try:
        encode_frames_to_mp4(session_dir / "frames", video_path, fps=fps, quality=quality)
        video = video_path.read_bytes()
    except KeyframerError as exc:
        logger.error("Session %s encoding failed: %s", session_id, exc.message)
        return _error(exc.message, 500)
    finally:
        sessions.pop(session_id, None)
        shutil.rmtree(session_dir, ignore_errors=True)

    logger.info("Session %s encoded (%d frames)", session_id, session["frames"])
    return Response(
        video,
        mimetype="video/mp4",
        headers={"Content-Disposition": f"attachment; filename=animation_{session_id}.mp4"},
    )


# ─── Server-render jobs ─────────────────────────────────────────────────

def _render_frames(
    project: Project,
    frame_dir: Path,
    *,
    width: int,
    height: int,
    on_frame: Callable[[int, int], None],
    should_continue: Callable[[], bool],
) -> int:
    timeline = Timeline(project.keyframes)

    async def _render() -> int:
        async with CesiumPageRenderer(width, height, ion_token=app.config["ION_TOKEN"]) as renderer:
            await renderer.boot(timeline.sample(0.0))
            if len(timeline):
                await renderer.preload([k.pose for k in timeline.all()])
            return await render_timeline_frames(
                timeline.sample,
                renderer,
                frame_dir,
                duration=project.duration,
                fps=project.fps,
                on_frame=on_frame,
                should_continue=should_continue,
            )

    return asyncio.run(_render())


def _run_server_job(job_id: str, project: Project, width: int, height: int, quality: str) -> None:
    job = jobs[job_id]
    job_dir = _output_dir() / "jobs" / job_id
    frame_dir = job_dir / "frames"

    def _on_frame(index: int, total: int) -> None:
        job["progress"] = round((index + 1) / total * 80, 2)
        job["message"] = f"Rendering frames... ({index + 1}/{total})"

    try:
        job["message"] = "Starting renderer..."
        rendered = _render_frames(
            project,
            frame_dir,
            width=width,
            height=height,
            on_frame=_on_frame,
            should_continue=lambda: not job["cancel_requested"],
        )
        if job["cancel_requested"]:
            job["status"] = "cancelled"
            job["message"] = "Cancelled"
            return

        job["progress"] = 80
        job["message"] = "Encoding video..."
        video_path = job_dir / "video.mp4"
        encode_frames_to_mp4(frame_dir, video_path, fps=project.fps, quality=quality)
        shutil.rmtree(frame_dir, ignore_errors=True)

        job["video_path"] = video_path
        job["frames"] = rendered
        job["progress"] = 100
        job["message"] = "Done"
        job["status"] = "completed"
        logger.info("Job %s completed (%d frames)", job_id, rendered)
    except Exception as exc:
        logger.exception("Job %s failed", job_id)
        job["status"] = "failed"
        job["error"] = getattr(exc, "message", None) or str(exc)
        job["message"] = "Failed"


@app.route("/export/server/start", methods=["POST"])
def start_server_job():
    data = request.get_json(force=True, silent=True)
    if not isinstance(data, dict):
        return _error("Request body must be a JSON object.")

    project = parse_project({
        "keyframes": data.get("keyframes"),
        "duration": data.get("duration"),
        "fps": data.get("fps"),
    })
    try:
        width, height = parse_resolution(str(data.get("resolution", "1280x720")))
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    quality = data.get("quality", "high")
    if quality not in QUALITY_PRESETS:
        raise ValidationError(f"quality must be one of: {', '.join(QUALITY_PRESETS)}")

    job_id = uuid.uuid4().hex
    jobs[job_id] = {
        "status": "processing",
        "progress": 0,
        "message": "Queued",
        "error": None,
        "cancel_requested": False,
    }

    thread = threading.Thread(
        target=_run_server_job,
        args=(job_id, project, width, height, quality),
        daemon=True,
    )
    thread.start()
    return jsonify({"ok": True, "sessionId": job_id})


@app.route("/export/server/status/<job_id>")
def get_job_status(job_id):
    job = jobs.get(job_id)
    if job is None:
        return _error("Job not found.", 404)
    return jsonify({"ok": True, **{k: job[k] for k in _PUBLIC_JOB_FIELDS}})


@app.route("/export/server/download/<job_id>")
def download_job(job_id):
    job = jobs.get(job_id)
    if job is None:
        return _error("Job not found.", 404)
    if job["status"] != "completed":
        return _error(f"Job is {job['status']}.", 409)
    return send_file(
        job["video_path"],
        mimetype="video/mp4",
        as_attachment=True,
        download_name=f"animation_{job_id}.mp4",
    )


@app.route("/export/server/cancel/<job_id>", methods=["POST"])
def cancel_job(job_id):
    job = jobs.get(job_id)
    if job is None:
        return _error("Job not found.", 404)
    job["cancel_requested"] = True
    return jsonify({"ok": True, "status": job["status"]})


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    _output_dir().mkdir(parents=True, exist_ok=True)
    app.run(host=_config.host, port=_config.port, debug=False)


if __name__ == "__main__":
    main()
