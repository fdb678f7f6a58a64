"""Locate the ffmpeg binary used for encoding.

Lookup order: ``KEYFRAMER_FFMPEG`` env var, ffmpeg on PATH, then the
binary bundled with imageio-ffmpeg.
"""
from __future__ import annotations

import os
import shutil

import imageio_ffmpeg

from errors import EncodingError


def get_ffmpeg() -> str:
    override = os.getenv("KEYFRAMER_FFMPEG")
    if override:
        return override

    path = shutil.which("ffmpeg")
    if path:
        return path

    try:
        return imageio_ffmpeg.get_ffmpeg_exe()
    except RuntimeError as exc:
        raise EncodingError(
            "ffmpeg not found. Install FFmpeg on your system or reinstall imageio-ffmpeg."
        ) from exc
