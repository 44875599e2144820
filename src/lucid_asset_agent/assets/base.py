"""
Asset entity and the handler interface behind it.

An Asset is one deployable unit tracked by id. Its behavior comes from an
AssetHandler picked by the config's "type" discriminator; the entity itself is
never subclassed.
"""

from __future__ import annotations

import logging
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any, Callable, Optional

from lucid_asset_agent.assets.errors import (
    AcquisitionError,
    AssetConfigError,
    AssetError,
    DeletionError,
    InstallError,
    IntegrityError,
)
from lucid_asset_agent.core.log_config import asset_logger

if TYPE_CHECKING:
    from lucid_asset_agent.assets.registry import HandlerRegistry
    from lucid_asset_agent.core.container_driver import ContainerDriver
    from lucid_asset_agent.core.download_mediator import DownloadMediator
    from lucid_asset_agent.paths import Paths

logger = logging.getLogger(__name__)


class AssetState(str, Enum):
    NOT_DEPLOYED = "notDeployed"
    DEPLOYING = "deploying"
    DEPLOYED = "deployed"
    DEPLOY_FAIL = "deployFail"
    REMOVING = "removing"
    REMOVE_FAIL = "removeFail"


class PendingChange(str, Enum):
    DEPLOY = "deploy"
    REMOVE = "remove"


# Only outcome states survive a restart; transient ones are re-derived.
PERSISTED_STATES = frozenset({AssetState.DEPLOYED, AssetState.DEPLOY_FAIL, AssetState.REMOVE_FAIL})
# States whose pending fields record the version that was attempted.
FAILED_STATES = frozenset({AssetState.DEPLOY_FAIL, AssetState.REMOVE_FAIL})


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True, slots=True)
class AssetContext:
    """Collaborators and locations shared by all asset handlers."""

    paths: Paths
    mediator: DownloadMediator
    container_driver: Optional[ContainerDriver] = None
    download_timeout_s: int = 30


def _relative_part(value: Any, field: str) -> PurePosixPath:
    if not isinstance(value, str) or not value:
        raise AssetConfigError(f"{field} must be a non-empty string")
    p = PurePosixPath(value)
    if p.is_absolute() or ".." in p.parts:
        raise AssetConfigError(f"{field} must be a relative path inside the asset root: {value!r}")
    return p


class AssetHandler(ABC):
    """
    Behavior of one asset type, split into four overridable steps.

    deploy = acquire -> verify -> install; remove = delete (+ working dir cleanup).
    Each step receives the asset (for id/logging) and the config it acts on.
    """

    asset_type: str

    def __init__(self, context: AssetContext) -> None:
        self.context = context

    # -------------------------
    # Config
    # -------------------------
    def validate_config(self, config: Any) -> None:
        if not isinstance(config, dict):
            raise AssetConfigError("config must be an object")
        if config.get("type") != self.asset_type:
            raise AssetConfigError(f"config.type must be {self.asset_type!r}")
        ftc = config.get("fileTypeConfig")
        if not isinstance(ftc, dict):
            raise AssetConfigError("config.fileTypeConfig must be an object")
        _relative_part(ftc.get("filename"), "fileTypeConfig.filename")
        src = ftc.get("internalSrcConfig")
        if not isinstance(src, dict) or not isinstance(src.get("key"), str) or not src.get("key"):
            raise AssetConfigError("fileTypeConfig.internalSrcConfig.key must be a non-empty string")
        if config.get("destPath"):
            _relative_part(config["destPath"], "destPath")

    @abstractmethod
    def root_dir(self) -> Path:
        """Directory all assets of this type live under."""
        raise NotImplementedError

    def dest_dir(self, config: dict[str, Any]) -> Path:
        dest = config.get("destPath")
        if not dest:
            return self.root_dir()
        return self.root_dir() / _relative_part(dest, "destPath")

    def file_path(self, config: dict[str, Any]) -> Path:
        filename = config["fileTypeConfig"]["filename"]
        return self.dest_dir(config) / _relative_part(filename, "fileTypeConfig.filename")

    def working_dir(self, config: dict[str, Any]) -> Optional[Path]:
        """Directory removed wholesale on remove(); None when the asset has none of its own."""
        if config.get("destPath"):
            return self.dest_dir(config)
        return None

    # -------------------------
    # Steps
    # -------------------------
    @abstractmethod
    def acquire(self, asset: Asset, config: dict[str, Any]) -> None:
        raise NotImplementedError

    def verify(self, asset: Asset, config: dict[str, Any]) -> None:
        return None

    def install(self, asset: Asset, config: dict[str, Any]) -> None:
        return None

    @abstractmethod
    def delete(self, asset: Asset, config: dict[str, Any]) -> None:
        raise NotImplementedError


class Asset:
    """
    One deployed-or-pending artifact.

    update_id/config describe the installed version; pending_update_id/
    pending_config hold the staged one until a deploy cycle commits it.
    """

    def __init__(
        self,
        asset_id: str,
        asset_type: str,
        handlers: HandlerRegistry,
        *,
        update_id: Optional[str] = None,
        config: Optional[dict[str, Any]] = None,
        state: AssetState = AssetState.NOT_DEPLOYED,
        pending_change: Optional[PendingChange] = None,
        pending_update_id: Optional[str] = None,
        pending_config: Optional[dict[str, Any]] = None,
        change_ts: Optional[str] = None,
        change_err_msg: Optional[str] = None,
    ) -> None:
        self.id = asset_id
        self.type = asset_type
        self.update_id = update_id
        self.config = config
        self.state = state
        self.pending_change = pending_change
        self.pending_update_id = pending_update_id
        self.pending_config = pending_config
        self.change_ts = change_ts or utc_now()
        self.change_err_msg = change_err_msg
        self._handlers = handlers
        self.log = asset_logger(asset_id)

    def __repr__(self) -> str:
        return (
            f"Asset(id={self.id!r}, type={self.type!r}, state={self.state.value}, "
            f"update_id={self.update_id!r}, pending={self.pending_change and self.pending_change.value})"
        )

    @property
    def target_update_id(self) -> Optional[str]:
        """Version this asset is converging to: the staged one if any, else the installed one."""
        return self.pending_update_id if self.pending_update_id is not None else self.update_id

    def set_state(self, state: AssetState, err_msg: Optional[str] = None) -> None:
        self.state = state
        self.change_ts = utc_now()
        self.change_err_msg = err_msg

    # -------------------------
    # Operations
    # -------------------------
    def deploy(self, config: Optional[dict[str, Any]] = None) -> bool:
        """Acquire, verify and install config (default: the staged config)."""
        config = config if config is not None else self.pending_config
        self.log.info("Deploying...")
        try:
            if not isinstance(config, dict):
                raise AssetConfigError("no config staged for deploy")
            handler = self._handlers.get(config.get("type"))
            self._run_step("acquire", handler.acquire, config, AcquisitionError)
            self._run_step("verify", handler.verify, config, IntegrityError)
            self._run_step("install", handler.install, config, InstallError)
        except AssetError as exc:
            self.change_err_msg = str(exc)
            self.log.error("Deploy failed: %s", exc)
            return False
        self.change_err_msg = None
        self.log.info("Deploy done")
        return True

    def remove(self, config: Optional[dict[str, Any]] = None) -> bool:
        """Delete installed content, then the asset's working directory."""
        if config is None:
            config = self.removal_config()
        self.log.info("Removing...")
        try:
            if config is not None:
                handler = self._handlers.get(config.get("type"))
                self._run_step("delete", handler.delete, config, DeletionError)
                work_dir = handler.working_dir(config)
                if work_dir is not None and work_dir.exists():
                    self.log.debug("Removing working directory %s", work_dir)
                    try:
                        shutil.rmtree(work_dir)
                    except OSError as exc:
                        raise DeletionError(f"failed to remove {work_dir}: {exc}") from exc
        except AssetError as exc:
            self.change_err_msg = str(exc)
            self.log.error("Remove failed: %s", exc)
            return False
        self.change_err_msg = None
        self.log.info("Remove done")
        return True

    def removal_config(self) -> Optional[dict[str, Any]]:
        """Config whose content a remove must clean up."""
        # A failed deploy may have left content of the attempted version behind.
        if self.state == AssetState.DEPLOY_FAIL and isinstance(self.pending_config, dict):
            return self.pending_config
        return self.config

    def _run_step(
        self,
        name: str,
        step: Callable[[Asset, dict[str, Any]], None],
        config: dict[str, Any],
        error_cls: type[AssetError],
    ) -> None:
        self.log.debug("Step %s...", name)
        try:
            step(self, config)
        except AssetError:
            raise
        except Exception as exc:
            self.log.debug("Step %s raised", name, exc_info=True)
            raise error_cls(f"{name} failed: {exc}") from exc

    # -------------------------
    # Snapshot
    # -------------------------
    def serialize(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type,
            "id": self.id,
            "updateId": self.update_id,
            "state": self.state.value,
            "changeTs": self.change_ts,
            "changeErrMsg": self.change_err_msg,
            "config": self.config,
        }
        # A staged deploy that has not run yet is re-derived from desired state.
        if self.state in FAILED_STATES and self.pending_change != PendingChange.DEPLOY:
            if self.pending_update_id is not None:
                data["pendingUpdateId"] = self.pending_update_id
            if self.pending_config is not None:
                data["pendingConfig"] = self.pending_config
        return data

    @classmethod
    def deserialize(cls, data: Any, handlers: HandlerRegistry) -> Asset:
        if not isinstance(data, dict):
            raise AssetConfigError("snapshot record must be an object")
        asset_id = data.get("id")
        if not isinstance(asset_id, str) or not asset_id:
            raise AssetConfigError("snapshot record id must be a non-empty string")
        asset_type = data.get("type")
        handlers.get(asset_type)
        try:
            state = AssetState(data.get("state"))
        except ValueError as exc:
            raise AssetConfigError(f"snapshot record {asset_id}: invalid state {data.get('state')!r}") from exc
        if state not in PERSISTED_STATES:
            raise AssetConfigError(f"snapshot record {asset_id}: state {state.value} is not persistable")

        pending_update_id = pending_config = None
        if state in FAILED_STATES:
            pending_update_id = data.get("pendingUpdateId")
            pending_config = data.get("pendingConfig")

        return cls(
            asset_id,
            asset_type,
            handlers,
            update_id=data.get("updateId"),
            config=data.get("config"),
            state=state,
            pending_update_id=pending_update_id,
            pending_config=pending_config,
            change_ts=data.get("changeTs"),
            change_err_msg=data.get("changeErrMsg"),
        )
