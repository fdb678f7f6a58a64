from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from config import QUALITY_PRESETS
from errors import EncodingError
from ffmpeg_path import get_ffmpeg

logger = logging.getLogger(__name__)

FRAME_PATTERN = "frame_%06d.png"


def build_ffmpeg_command(
    frame_dir: Path,
    output_file: Path,
    *,
    fps: float,
    quality: str = "high",
    ffmpeg: str = "ffmpeg",
) -> list[str]:
    if quality not in QUALITY_PRESETS:
        raise ValueError(f"quality must be one of: {', '.join(QUALITY_PRESETS)}")

    return [
        ffmpeg,
        "-y",
        "-framerate",
        str(fps),
        "-i",
        str(frame_dir / FRAME_PATTERN),
        "-c:v",
        "libx264",
        # libx264 needs even dimensions
        "-vf",
        "pad=ceil(iw/2)*2:ceil(ih/2)*2",
        "-pix_fmt",
        "yuv420p",
        "-crf",
        str(QUALITY_PRESETS[quality]),
        "-preset",
        "medium",
        "-movflags",
        "+faststart",
        str(output_file),
    ]


def encode_frames_to_mp4(
    frame_dir: Path,
    output_file: Path,
    *,
    fps: float,
    quality: str = "high",
) -> Path:
    if not any(frame_dir.glob("frame_*.png")):
        raise EncodingError(f"No frames to encode in {frame_dir}")

    output_file.parent.mkdir(parents=True, exist_ok=True)
    command = build_ffmpeg_command(frame_dir, output_file, fps=fps, quality=quality, ffmpeg=get_ffmpeg())

    logger.info("Encoding %s at %s fps (quality=%s)", output_file.name, fps, quality)
    result = subprocess.run(command, capture_output=True, text=True)
    if result.returncode != 0:
        raise EncodingError(
            "ffmpeg encoding failed.\n"
            f"command: {' '.join(command)}\n"
            f"stderr:\n{result.stderr}"
        )
    return output_file
