"""
Asset snapshot: persistent JSON list of assets in an outcome state.

Path: {base_dir}/data/asset_state.json. Atomic writes with fsync.
"""
from __future__ import annotations

import fcntl
import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class SnapshotError(RuntimeError):
    """Raised when snapshot operations fail in a non-recoverable way."""


def _fsync_dir(path: Path) -> None:
    """
    Ensure directory metadata is flushed so atomic rename is durable.
    """
    fd = os.open(str(path), os.O_DIRECTORY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def _now_ts() -> str:
    return time.strftime("%Y%m%dT%H%M%SZ", time.gmtime())


class SnapshotStore:
    """Reads and atomically rewrites the ordered asset snapshot list."""

    def __init__(self, path: Path, lock_path: Path) -> None:
        self.path = path
        self.lock_path = lock_path

    def load(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []

        logger.info("Reading asset snapshot: %s", self.path)
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError:
            # Keep the corrupted file for inspection.
            corrupt = self.path.with_suffix(f".corrupt.{_now_ts()}.json")
            logger.error("Asset snapshot is corrupted, moving it to %s", corrupt)
            try:
                self.path.replace(corrupt)
            except OSError:
                logger.exception("Failed to preserve corrupted snapshot")
            return []
        except OSError as exc:
            raise SnapshotError(f"failed to read snapshot: {exc}") from exc

        if not isinstance(data, list):
            logger.warning("Asset snapshot is not a list, ignoring")
            return []
        return [rec for rec in data if isinstance(rec, dict)]

    def save(self, records: list[dict[str, Any]]) -> None:
        """
        Atomic, durable write:
        - lock
        - write temp file + fsync
        - replace
        - fsync directory
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.lock_path.open("w") as lockf:
                fcntl.flock(lockf.fileno(), fcntl.LOCK_EX)

                with tempfile.NamedTemporaryFile(
                    mode="w",
                    encoding="utf-8",
                    delete=False,
                    dir=str(self.path.parent),
                ) as tf:
                    json.dump(records, tf, indent=2)
                    tf.flush()
                    os.fsync(tf.fileno())
                    tmp_path = Path(tf.name)

                os.replace(tmp_path, self.path)
                _fsync_dir(self.path.parent)

                fcntl.flock(lockf.fileno(), fcntl.LOCK_UN)
        except OSError as exc:
            raise SnapshotError(f"failed to write snapshot: {exc}") from exc
