"""
Streaming download and digest helpers shared by asset handlers.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import time
from pathlib import Path
from typing import Optional
from urllib.request import Request, urlopen

CHUNK_BYTES = 1024 * 1024
PROGRESS_INTERVAL_S = 5.0
USER_AGENT = "lucid-asset-agent/1.0"


def download_to_file(
    url: str,
    out_path: Path,
    *,
    timeout_s: int,
    log: logging.Logger,
    max_bytes: Optional[int] = None,
    progress_interval_s: float = PROGRESS_INTERVAL_S,
) -> int:
    """
    Stream url into out_path, logging progress at most every progress_interval_s.

    HTTP error statuses raise urllib.error.HTTPError. Returns bytes written.
    """
    req = Request(url, headers={"User-Agent": USER_AGENT})
    read = 0
    started = time.monotonic()
    last_report = started
    with urlopen(req, timeout=timeout_s) as resp, out_path.open("wb") as f:
        log.debug("Response: %s", getattr(resp, "status", "?"))
        total = _content_length(resp)
        while True:
            chunk = resp.read(CHUNK_BYTES)
            if not chunk:
                break
            read += len(chunk)
            if max_bytes is not None and read > max_bytes:
                raise RuntimeError(f"download exceeded max_bytes={max_bytes}")
            f.write(chunk)

            now = time.monotonic()
            if now - last_report >= progress_interval_s:
                last_report = now
                _log_progress(log, read, total, now - started)

    _log_progress(log, read, total, time.monotonic() - started)
    return read


def _content_length(resp) -> Optional[int]:
    raw = resp.headers.get("Content-Length") if getattr(resp, "headers", None) else None
    try:
        return int(raw) if raw is not None else None
    except ValueError:
        return None


def _log_progress(log: logging.Logger, read: int, total: Optional[int], elapsed_s: float) -> None:
    percent = round(read * 100 / total) if total else 0
    speed_kb = round(read / 1024 / elapsed_s) if elapsed_s > 0 else 0
    log.info("Download progress: %d%% @ %dKB/s, %dsec", percent, speed_kb, round(elapsed_s))


def sha256_base64(path: Path) -> str:
    """Streaming SHA-256 of a file, base64-encoded."""
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_BYTES), b""):
            h.update(chunk)
    return base64.b64encode(h.digest()).decode("ascii")
