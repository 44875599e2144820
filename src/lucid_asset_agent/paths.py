"""
Central path configuration for LUCID Asset Agent.

All filesystem paths are derived from a single base directory under /home/lucid.

Path Structure:
    /home/lucid/lucid-asset-agent/
    ├── data/              (Persistent data)
    │   ├── asset_state.json
    │   ├── assets/        (file assets)
    │   └── ai-models/     (AI model archives and mounts)
    ├── logs/              (Application logs)
    └── run/               (Runtime state: PID files, locks, etc.)

Usage:
    from lucid_asset_agent.paths import build_paths

    paths = build_paths()
    snapshot_path = paths.snapshot_path
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(frozen=True, slots=True)
class Paths:
    """
    Immutable container for all filesystem paths used by the agent.

    All paths are absolute and derived from base_dir.
    """

    base_dir: Path
    data_dir: Path
    asset_data_dir: Path
    ai_model_dir: Path
    snapshot_path: Path
    log_dir: Path
    runtime_dir: Path

    @property
    def snapshot_lock_path(self) -> Path:
        """Path to asset snapshot lock file."""
        return self.data_dir / "asset_state.json.lock"


def build_paths(base_dir: Optional[Path] = None) -> Paths:
    """
    Build Paths object from base directory.

    Args:
        base_dir: Base directory for all agent files.
                  Defaults to /home/lucid/lucid-asset-agent.
                  Can be overridden via LUCID_AGENT_BASE_DIR env var.

    Returns:
        Immutable Paths object with all filesystem paths.
    """
    if base_dir is None:
        base_str = os.environ.get("LUCID_AGENT_BASE_DIR", "/home/lucid/lucid-asset-agent")
        base_dir = Path(base_str)

    return Paths(
        base_dir=base_dir,
        data_dir=base_dir / "data",
        asset_data_dir=base_dir / "data" / "assets",
        ai_model_dir=base_dir / "data" / "ai-models",
        snapshot_path=base_dir / "data" / "asset_state.json",
        log_dir=base_dir / "logs",
        runtime_dir=base_dir / "run",
    )


def ensure_dirs(paths: Paths) -> None:
    """
    Create all required directories if they don't exist.

    - base_dir: 0o755
    - data_dir and asset dirs: 0o750
    - log_dir, runtime_dir: 0o750

    Raises:
        OSError: If directory creation fails due to permissions or other issues.
    """
    for dir_path, mode in [
        (paths.base_dir, 0o755),
        (paths.data_dir, 0o750),
        (paths.asset_data_dir, 0o750),
        (paths.ai_model_dir, 0o750),
        (paths.log_dir, 0o750),
        (paths.runtime_dir, 0o750),
    ]:
        dir_path.mkdir(parents=True, exist_ok=True)
        # mkdir may apply umask
        dir_path.chmod(mode)
