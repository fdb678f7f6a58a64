"""HTTP client for the render/encode backend (see ``app.py`` for the server).

No per-request timeouts are set: a hung request holds the export until it
resolves or fails.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import requests

from errors import ConnectivityError, EncodingError

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = {"completed", "failed", "cancelled"}


@dataclass(frozen=True)
class JobStatus:
    status: str
    progress: float
    message: str
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_dict(cls, data: dict) -> JobStatus:
        return cls(
            status=str(data.get("status", "processing")),
            progress=float(data.get("progress") or 0.0),
            message=str(data.get("message") or ""),
            error=data.get("error"),
        )


def _error_text(resp: requests.Response) -> str:
    if resp.headers.get("content-type", "").startswith("application/json"):
        try:
            return str(resp.json().get("error", resp.text[:200]))
        except ValueError:
            pass
    return resp.text[:200]


def _session_id(resp: requests.Response, what: str) -> str:
    try:
        return str(resp.json()["sessionId"])
    except (ValueError, KeyError, TypeError) as exc:
        raise ConnectivityError(
            f"{what}: response has no sessionId",
            details={"status_code": resp.status_code, "body": resp.text[:200]},
        ) from exc


class ExportBackend:
    def __init__(self, base_url: str, session: requests.Session | None = None):
        self.base_url = base_url.rstrip("/")
        self._http = session or requests.Session()

    def _request(self, method: str, path: str, what: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            resp = self._http.request(method, url, **kwargs)
        except requests.RequestException as exc:
            raise ConnectivityError(f"{what}: network error ({exc})") from exc
        if not resp.ok:
            raise ConnectivityError(
                f"{what}: server returned {resp.status_code}",
                details={"status_code": resp.status_code, "body": _error_text(resp)},
            )
        return resp

    # ─── Client-capture sessions ──────────────────────────────────────

    def start_session(self) -> str:
        resp = self._request("POST", "/export/start", "Could not start export session")
        session_id = _session_id(resp, "Could not start export session")
        logger.debug("Export session %s started", session_id)
        return session_id

    def upload_frame(self, session_id: str, frame_index: int, image: bytes) -> None:
        self._request(
            "POST",
            "/export/frame",
            f"Upload failed at frame {frame_index}",
            data=image,
            headers={
                "Content-Type": "application/octet-stream",
                "x-session-id": session_id,
                "x-frame-index": str(frame_index),
            },
        )

    def finish_session(self, session_id: str, fps: float, quality: str) -> bytes:
        try:
            resp = self._request(
                "POST",
                "/export/finish",
                "Encoding failed",
                json={"sessionId": session_id, "fps": fps, "quality": quality},
            )
        except ConnectivityError as exc:
            if "status_code" in exc.details:
                raise EncodingError(
                    f"{exc.message}: {exc.details.get('body', '')}".rstrip(": "),
                    details=exc.details,
                ) from exc
            raise
        return resp.content

    # ─── Server-render jobs ───────────────────────────────────────────

    def start_remote_job(self, payload: dict) -> str:
        resp = self._request("POST", "/export/server/start", "Server start failed", json=payload)
        return _session_id(resp, "Server start failed")

    def get_status(self, session_id: str) -> JobStatus:
        resp = self._request("GET", f"/export/server/status/{session_id}", "Status check failed")
        return JobStatus.from_dict(resp.json())

    def download_result(self, session_id: str) -> bytes:
        resp = self._request("GET", f"/export/server/download/{session_id}", "Download failed")
        return resp.content

    def cancel_remote_job(self, session_id: str) -> bool:
        """Ask the server to drop a job. Best effort: failures are only logged."""
        try:
            self._request("POST", f"/export/server/cancel/{session_id}", "Cancel notice failed")
        except ConnectivityError as exc:
            logger.warning("%s", exc.message)
            return False
        return True
