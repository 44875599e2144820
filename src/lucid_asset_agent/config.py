"""
Asset Agent configuration.

Single source for runtime configuration. Values come from environment variables,
optionally loaded from standard env files.

Priority (lowest -> highest):
1) /etc/lucid/asset-agent.env (system install)
2) ~/.config/lucid-asset-agent/.env (user install)
3) ./.env (project override)
4) process environment variables (always win)
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version as _pkg_version
from pathlib import Path
from typing import Iterable

from dotenv import load_dotenv


class ConfigError(ValueError):
    """Raised when configuration is missing or invalid."""


DEFAULT_CYCLE_DELAY_S = 2
DEFAULT_DOWNLOAD_TIMEOUT_S = 30


def _package_version() -> str:
    try:
        return _pkg_version("lucid-asset-agent")
    except PackageNotFoundError:
        return "0.0.0+dev"


def _env_paths() -> Iterable[Path]:
    # 1) system install
    yield Path("/etc/lucid/asset-agent.env")

    # 2) user config dir
    if sys.platform == "win32":
        base = Path(os.environ.get("APPDATA", str(Path.home())))
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config")))
    yield base / "lucid-asset-agent" / ".env"

    # 3) project override
    yield Path(".env")


def _require_env(key: str) -> str:
    v = os.getenv(key)
    if v is None or v == "":
        raise ConfigError(f"Missing required environment variable: {key}")
    return v


def _parse_int(key: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid integer for {key}: {raw!r}") from exc


@dataclass(frozen=True, slots=True)
class AgentConfig:
    mqtt_host: str
    mqtt_port: int
    agent_username: str
    agent_password: str
    agent_version: str
    download_url_template: str  # empty disables asset downloads
    cycle_delay_s: int
    download_timeout_s: int


def load_config(*, dotenv_enabled: bool = True) -> AgentConfig:
    """
    Load config by reading env files and then validating environment variables.

    Returns an immutable AgentConfig. Raises ConfigError on failure.
    """
    if dotenv_enabled:
        for p in _env_paths():
            if p.is_file():
                # do not override existing env vars; later files can fill missing
                load_dotenv(p, override=False)

    mqtt_host = _require_env("MQTT_HOST")
    mqtt_port = _parse_int("MQTT_PORT", _require_env("MQTT_PORT"))
    if not (1 <= mqtt_port <= 65535):
        raise ConfigError(f"MQTT_PORT out of range: {mqtt_port}")

    agent_username = _require_env("AGENT_USERNAME")
    agent_password = _require_env("AGENT_PASSWORD")

    template = os.getenv("ASSET_DOWNLOAD_URL_TEMPLATE", "")
    if template and "{key}" not in template:
        raise ConfigError("ASSET_DOWNLOAD_URL_TEMPLATE must contain a {key} placeholder")

    cycle_delay_s = _parse_int("ASSET_CYCLE_DELAY_S", os.getenv("ASSET_CYCLE_DELAY_S", str(DEFAULT_CYCLE_DELAY_S)))
    if cycle_delay_s < 0:
        raise ConfigError("ASSET_CYCLE_DELAY_S must be >= 0")

    timeout_s = _parse_int("DOWNLOAD_TIMEOUT_S", os.getenv("DOWNLOAD_TIMEOUT_S", str(DEFAULT_DOWNLOAD_TIMEOUT_S)))
    if timeout_s <= 0:
        raise ConfigError("DOWNLOAD_TIMEOUT_S must be > 0")

    return AgentConfig(
        mqtt_host=mqtt_host,
        mqtt_port=mqtt_port,
        agent_username=agent_username,
        agent_password=agent_password,
        agent_version=_package_version(),
        download_url_template=template,
        cycle_delay_s=cycle_delay_s,
        download_timeout_s=timeout_s,
    )
