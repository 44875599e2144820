"""
Logging setup for LUCID Asset Agent.

Single log level for all scopes (core, manager, assets) from LUCID_LOG_LEVEL env.
"""

from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _parse_level(raw: str) -> int:
    if not raw or not str(raw).strip():
        return logging.INFO
    raw = str(raw).strip().upper()
    if raw.isdigit():
        return int(raw)
    return int(getattr(logging, raw, logging.INFO))


def level_from_env() -> int:
    """Resolve log level from LUCID_LOG_LEVEL env, else INFO."""
    return _parse_level(os.environ.get("LUCID_LOG_LEVEL", ""))


def configure_logging() -> None:
    """Install the root handler and apply the resolved level to every logger."""
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    logging.getLogger().setLevel(level_from_env())


def asset_logger(asset_id: str) -> logging.Logger:
    """Asset-scoped logger name."""
    return logging.getLogger(f"lucid.asset.{asset_id}")
