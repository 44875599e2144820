"""
LUCID Asset Agent entrypoint.

CLI:
  lucid-asset-agent run        -> run agent (runtime mode)
  lucid-asset-agent --version  -> print package version
"""

from __future__ import annotations

import argparse
import logging
import shutil
import signal
import threading
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version as pkg_version
from typing import Optional

from lucid_asset_agent.core.log_config import configure_logging

configure_logging()
logger = logging.getLogger(__name__)


def get_version_string() -> str:
    try:
        return pkg_version("lucid-asset-agent")
    except PackageNotFoundError:
        return "0.0.0+dev"


@dataclass
class Runtime:
    shutdown: threading.Event
    agent: Optional[object] = None
    manager: Optional[object] = None


def _install_signal_handlers(rt: Runtime) -> None:
    def _handler(signum: int, frame) -> None:  # frame is unused, keep signature
        logger.info("Received signal %s; requesting shutdown", signum)
        rt.shutdown.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def run_agent() -> int:
    """
    Runtime mode: load assets, connect to MQTT, reconcile until shutdown.
    Returns process exit code.
    """
    from lucid_asset_agent.assets.base import AssetContext
    from lucid_asset_agent.assets.manager import AssetManager
    from lucid_asset_agent.assets.registry import HandlerRegistry
    from lucid_asset_agent.assets.snapshot import SnapshotError, SnapshotStore
    from lucid_asset_agent.config import ConfigError, load_config
    from lucid_asset_agent.core.container_driver import DockerCliDriver
    from lucid_asset_agent.core.device_state import DeviceStateStore
    from lucid_asset_agent.core.download_mediator import TemplateDownloadMediator
    from lucid_asset_agent.mqtt_client import AgentMQTTClient
    from lucid_asset_agent.paths import build_paths, ensure_dirs

    paths = build_paths()
    ensure_dirs(paths)

    try:
        cfg = load_config()
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1

    rt = Runtime(shutdown=threading.Event())
    _install_signal_handlers(rt)

    logger.info("============================================================")
    logger.info("LUCID Asset Agent")
    logger.info("Version: %s", get_version_string())
    logger.info("Agent username: %s", cfg.agent_username)
    logger.info("Base dir: %s", paths.base_dir)
    logger.info("============================================================")

    driver = None
    if shutil.which("docker"):
        driver = DockerCliDriver()
    else:
        logger.warning("docker not found; AI model containers will not be provisioned")

    context = AssetContext(
        paths=paths,
        mediator=TemplateDownloadMediator(cfg.download_url_template),
        container_driver=driver,
        download_timeout_s=cfg.download_timeout_s,
    )
    store = DeviceStateStore()
    manager = AssetManager(
        store,
        HandlerRegistry(context),
        SnapshotStore(paths.snapshot_path, paths.snapshot_lock_path),
        cycle_delay_s=cfg.cycle_delay_s,
    )
    store.add_listener(manager.handle_state_change)
    rt.manager = manager

    try:
        manager.setup()
    except SnapshotError:
        logger.exception("Failed to load asset snapshot")
        manager.shutdown(wait=False)
        return 1

    agent = AgentMQTTClient(
        cfg.mqtt_host,
        cfg.mqtt_port,
        cfg.agent_username,
        cfg.agent_password,
        cfg.agent_version,
        store=store,
        on_connection_change=manager.activate,
    )
    rt.agent = agent

    if not agent.connect():
        logger.error("MQTT connection failed")
        manager.shutdown(wait=False)
        return 1

    logger.info("Agent running (shutdown via SIGINT/SIGTERM)")

    try:
        while not rt.shutdown.wait(timeout=0.5):
            pass
    finally:
        _shutdown(rt)

    return 0


def _shutdown(rt: Runtime) -> None:
    logger.info("Shutting down...")

    # Stop scheduling first; an in-flight deploy/remove is allowed to finish.
    if rt.manager:
        try:
            rt.manager.shutdown(wait=True)
        except Exception:
            logger.exception("Error stopping asset manager")
        logger.info("Asset manager stopped")

    if rt.agent:
        try:
            rt.agent.disconnect()
        except Exception:
            logger.exception("Error disconnecting MQTT")
        logger.info("MQTT disconnected")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="lucid-asset-agent")
    p.add_argument("--version", action="version", version=get_version_string())

    sub = p.add_subparsers(dest="cmd", required=True)
    sub.add_parser("run", help="Run agent runtime")

    return p


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    if args.cmd == "run":
        raise SystemExit(run_agent())

    raise SystemExit(2)


if __name__ == "__main__":
    main()
