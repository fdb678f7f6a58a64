from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

RESOLUTION_PRESETS = {
    "270p": (480, 270),
    "480p": (854, 480),
    "720p": (1280, 720),
    "1080p": (1920, 1080),
    "1440p": (2560, 1440),
    "4k": (3840, 2160),
}

# ffmpeg CRF per export quality; lower is better.
QUALITY_PRESETS = {
    "low": 28,
    "medium": 23,
    "high": 20,
    "ultra": 17,
}

DEFAULT_QUALITY = "high"
POLL_INTERVAL_SEC = 1.0


def parse_resolution(value: str) -> tuple[int, int]:
    """Accept a preset name (``720p``) or ``WIDTHxHEIGHT``."""
    key = value.strip().lower()
    if key in RESOLUTION_PRESETS:
        return RESOLUTION_PRESETS[key]
    try:
        width, height = (int(part) for part in key.split("x"))
    except ValueError as exc:
        raise ValueError(f"Unknown resolution: {value!r}") from exc
    if width <= 0 or height <= 0:
        raise ValueError(f"Resolution must be positive: {value!r}")
    return width, height


@dataclass
class ServerConfig:
    output_dir: Path
    ion_token: str
    host: str
    port: int

    @classmethod
    def from_env(cls) -> ServerConfig:
        return cls(
            output_dir=Path(os.getenv("KEYFRAMER_OUTPUT_DIR", "output")),
            ion_token=os.getenv("CESIUM_ION_TOKEN", ""),
            host=os.getenv("KEYFRAMER_HOST", "127.0.0.1"),
            port=int(os.getenv("KEYFRAMER_PORT", "5100")),
        )


def default_server_url() -> str:
    return os.getenv("KEYFRAMER_SERVER_URL", "http://127.0.0.1:5100")
