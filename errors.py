"""Error taxonomy shared by the timeline, clock, export pipeline and server."""
from __future__ import annotations

from typing import Any


class KeyframerError(Exception):
    """Base class for every domain failure."""

    code: str = "KEYFRAMER_ERROR"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"ok": False, "error_code": self.code, "error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ConnectivityError(KeyframerError):
    code = "CONNECTIVITY"


class CaptureError(KeyframerError):
    code = "CAPTURE_FAILED"


class CancellationError(KeyframerError):
    code = "CANCELLED"

    def __init__(self, message: str = "Export was cancelled.", *, details: dict[str, Any] | None = None):
        super().__init__(message, details=details)


class ServerProcessingError(KeyframerError):
    code = "SERVER_PROCESSING_FAILED"


class ValidationError(KeyframerError):
    code = "VALIDATION_ERROR"


class ClockBusyError(KeyframerError):
    code = "CLOCK_BUSY"

    def __init__(self, message: str = "Playback clock is held by an export.", *, details: dict[str, Any] | None = None):
        super().__init__(message, details=details)


class RendererError(KeyframerError):
    code = "RENDERER_ERROR"


class EncodingError(KeyframerError):
    code = "ENCODING_FAILED"
