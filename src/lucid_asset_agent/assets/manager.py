"""
Asset manager: converges local assets to the desired state.

Desired-state changes are diffed into pending changes on Asset entities; a
single worker drains them one asset at a time (deploy or remove), publishing
reported state and persisting a snapshot after every cycle.

Threading: notifications arrive on the MQTT network thread while the drain
runs on a one-thread executor. self._lock guards the managed set, pending
fields and the processing flag; it is never held across asset I/O.
"""

from __future__ import annotations

import logging
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional

from lucid_asset_agent.assets.base import (
    PERSISTED_STATES,
    Asset,
    AssetState,
    PendingChange,
    utc_now,
)
from lucid_asset_agent.assets.errors import AssetConfigError
from lucid_asset_agent.assets.registry import HandlerRegistry
from lucid_asset_agent.assets.reported import ReportedStatePublisher, StateStore
from lucid_asset_agent.assets.snapshot import SnapshotError, SnapshotStore

logger = logging.getLogger(__name__)

_ASSET_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")

DESIRED_ASSETS_PATH = "assets"
DEFAULT_CYCLE_DELAY_S = 2.0


class AssetManager:
    """
    Owns the managed asset set.

    Lifecycle: setup() loads the snapshot, activate(True) allows processing,
    shutdown() stops scheduling and the worker.
    """

    def __init__(
        self,
        store: StateStore,
        handlers: HandlerRegistry,
        snapshot: SnapshotStore,
        *,
        cycle_delay_s: float = DEFAULT_CYCLE_DELAY_S,
    ) -> None:
        self._store = store
        self._handlers = handlers
        self._snapshot = snapshot
        self._reporter = ReportedStatePublisher(store)
        self._cycle_delay_s = cycle_delay_s

        self._assets: list[Asset] = []
        self._lock = threading.Lock()
        self._active = False
        self._processing = False
        self._initialized = False
        self._closed = False
        self._in_flight: Optional[tuple[Asset, PendingChange]] = None
        self._stop_event = threading.Event()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="asset-proc")

    # -------------------------
    # Introspection
    # -------------------------
    @property
    def active(self) -> bool:
        return self._active

    @property
    def processing(self) -> bool:
        return self._processing

    @property
    def initialized(self) -> bool:
        return self._initialized

    def assets(self) -> list[Asset]:
        with self._lock:
            return list(self._assets)

    def get_asset(self, asset_id: str) -> Optional[Asset]:
        with self._lock:
            return self._find(asset_id)

    def _find(self, asset_id: str) -> Optional[Asset]:
        for asset in self._assets:
            if asset.id == asset_id:
                return asset
        return None

    # -------------------------
    # Lifecycle
    # -------------------------
    def setup(self) -> None:
        """Load persisted assets and publish their reported state. Idempotent."""
        if self._initialized:
            return

        paths = self._handlers.context.paths
        for d in (paths.data_dir, paths.asset_data_dir, paths.ai_model_dir):
            d.mkdir(parents=True, exist_ok=True)

        loaded: list[Asset] = []
        seen: set[str] = set()
        for record in self._snapshot.load():
            try:
                asset = Asset.deserialize(record, self._handlers)
            except AssetConfigError as exc:
                logger.error("Skipping snapshot record: %s", exc)
                continue
            if asset.id in seen:
                logger.error("Skipping duplicate snapshot record for %s", asset.id)
                continue
            seen.add(asset.id)
            loaded.append(asset)

        with self._lock:
            self._assets = loaded
            self._reporter.publish_all(self._assets)
            self._initialized = True

        logger.info("Asset manager initialized with %d assets", len(loaded))

    def activate(self, active: bool) -> None:
        """
        Allow or suppress processing. Turning off returns immediately: an
        in-flight deploy/remove completes, no new cycle starts.
        """
        with self._lock:
            if self._active == active:
                return
            self._active = active
        logger.info("Asset processing %s", "activated" if active else "deactivated")
        if active and self._initialized:
            self._schedule_processing()

    def shutdown(self, *, wait: bool = True) -> None:
        self.activate(False)
        self._closed = True
        self._stop_event.set()
        self._executor.shutdown(wait=wait)

    # -------------------------
    # Diff
    # -------------------------
    def handle_state_change(self, scope: str, path: str) -> None:
        """State store listener: re-diff on desired changes under assets."""
        if scope != "desired":
            return
        if path and path != DESIRED_ASSETS_PATH and not path.startswith(DESIRED_ASSETS_PATH + "."):
            return
        self.reconcile()

    def reconcile(self) -> None:
        """Diff desired against local assets, stage pending changes and kick processing."""
        if not self._initialized:
            return

        desired = self._store.get_state("desired", DESIRED_ASSETS_PATH)
        if not isinstance(desired, dict) or not isinstance(desired.get("assets"), dict):
            logger.debug("No desired assets state")
            return
        desired_assets: dict[str, Any] = desired["assets"]

        with self._lock:
            new_assets: list[Asset] = []
            touched: list[Asset] = []

            for asset_id, entry in desired_assets.items():
                try:
                    update_id, config, asset_type = self._parse_desired(asset_id, entry)
                except AssetConfigError as exc:
                    logger.error("Skipping desired asset %s: %s", asset_id, exc)
                    continue

                asset = self._find(asset_id)
                if asset is None:
                    new_assets.append(
                        Asset(
                            asset_id,
                            asset_type,
                            self._handlers,
                            pending_change=PendingChange.DEPLOY,
                            pending_update_id=update_id,
                            pending_config=config,
                        )
                    )
                    continue

                removing_now = self._in_flight == (asset, PendingChange.REMOVE)
                if removing_now or asset.target_update_id != update_id:
                    asset.pending_change = PendingChange.DEPLOY
                    asset.pending_update_id = update_id
                    asset.pending_config = config
                    asset.change_ts = utc_now()
                elif asset.pending_change == PendingChange.REMOVE:
                    # Back in desired before its removal ran.
                    if asset.state == AssetState.NOT_DEPLOYED:
                        asset.pending_change = PendingChange.DEPLOY
                    else:
                        asset.pending_change = None
                    asset.change_ts = utc_now()
                    touched.append(asset)

            for asset in self._assets:
                if asset.id in desired_assets or asset.pending_change == PendingChange.REMOVE:
                    continue
                if self._in_flight == (asset, PendingChange.REMOVE):
                    continue
                asset.pending_change = PendingChange.REMOVE
                asset.change_ts = utc_now()

            self._assets.extend(new_assets)

            for asset in self._assets:
                if asset.pending_change is not None or asset in touched:
                    self._reporter.publish(asset)

        self._schedule_processing()

    def _parse_desired(self, asset_id: Any, entry: Any) -> tuple[str, dict[str, Any], str]:
        if not isinstance(asset_id, str) or not _ASSET_ID_RE.fullmatch(asset_id):
            raise AssetConfigError(f"invalid asset id: {asset_id!r}")
        if not isinstance(entry, dict):
            raise AssetConfigError("desired entry must be an object")
        update_id = entry.get("updateId")
        if not isinstance(update_id, str) or not update_id:
            raise AssetConfigError("updateId must be a non-empty string")
        config = entry.get("config")
        asset_type = self._handlers.validate(config)
        return update_id, config, asset_type

    # -------------------------
    # Processing
    # -------------------------
    def _schedule_processing(self) -> None:
        if self._closed or not self._active or not self._initialized:
            return
        if self._processing:
            # The running drain re-reads pending changes before every cycle.
            return
        self._executor.submit(self.process_pending_assets)

    def process_pending_assets(self) -> None:
        """
        Drain pending changes one asset at a time. Single-flight: returns
        immediately if a drain is already running or the manager is inactive.
        """
        with self._lock:
            if self._processing or not self._active or not self._initialized:
                return
            self._processing = True

        try:
            self._drain()
        except Exception:
            logger.exception("Asset processing loop failed")
            with self._lock:
                self._in_flight = None
                self._processing = False

    def _drain(self) -> None:
        while True:
            with self._lock:
                asset = None
                if self._active:
                    self._purge_unstarted_removals()
                    asset = self._first_pending()
                if asset is None:
                    # Cleared with the emptiness check so a concurrent diff either
                    # sees the flag down or its changes are seen here.
                    self._processing = False
                    return

                change = asset.pending_change
                asset.pending_change = None
                staged_update_id = asset.pending_update_id
                staged_config = asset.pending_config
                removal_config = asset.removal_config()
                self._in_flight = (asset, change)

            logger.info("Processing %s for asset %s", change.value, asset.id)
            try:
                if change == PendingChange.DEPLOY:
                    self._deploy_cycle(asset, staged_update_id, staged_config)
                else:
                    self._remove_cycle(asset, removal_config)
            except Exception:
                logger.exception("Asset cycle failed id=%s", asset.id)
            finally:
                with self._lock:
                    self._in_flight = None

            self._persist()
            self._stop_event.wait(self._cycle_delay_s)

    def _purge_unstarted_removals(self) -> None:
        for asset in list(self._assets):
            if asset.pending_change == PendingChange.REMOVE and asset.state == AssetState.NOT_DEPLOYED:
                logger.info("Dropping undeployed asset %s", asset.id)
                self._assets.remove(asset)
                self._reporter.remove(asset.id)

    def _first_pending(self) -> Optional[Asset]:
        for asset in self._assets:
            if asset.pending_change is not None:
                return asset
        return None

    def _transition(self, asset: Asset, state: AssetState, err_msg: Optional[str] = None) -> None:
        with self._lock:
            asset.set_state(state, err_msg)
            self._reporter.publish(asset)

    def _deploy_cycle(self, asset: Asset, update_id: Optional[str], config: Optional[dict[str, Any]]) -> None:
        if asset.state == AssetState.DEPLOYED:
            # Full undo of the installed version before installing the new one.
            self._transition(asset, AssetState.REMOVING)
            if not asset.remove(asset.config):
                self._transition(asset, AssetState.REMOVE_FAIL, asset.change_err_msg)
                return

        self._transition(asset, AssetState.DEPLOYING)
        ok = asset.deploy(config)

        with self._lock:
            if ok:
                asset.type = config["type"]
                asset.update_id = update_id
                asset.config = config
                if asset.pending_config is config and asset.pending_update_id == update_id:
                    asset.pending_update_id = None
                    asset.pending_config = None
                asset.set_state(AssetState.DEPLOYED)
                logger.info("Asset %s deployed (updateId=%s)", asset.id, update_id)
            else:
                asset.set_state(AssetState.DEPLOY_FAIL, asset.change_err_msg)
                logger.warning("Asset %s deploy failed: %s", asset.id, asset.change_err_msg)
            self._reporter.publish(asset)

    def _remove_cycle(self, asset: Asset, config: Optional[dict[str, Any]]) -> None:
        self._transition(asset, AssetState.REMOVING)
        ok = asset.remove(config)

        with self._lock:
            if not ok:
                asset.set_state(AssetState.REMOVE_FAIL, asset.change_err_msg)
                self._reporter.publish(asset)
                logger.warning("Asset %s remove failed: %s", asset.id, asset.change_err_msg)
            elif asset.pending_change == PendingChange.DEPLOY:
                # Re-added to desired while the removal ran.
                asset.set_state(AssetState.NOT_DEPLOYED)
                self._reporter.publish(asset)
            else:
                self._assets.remove(asset)
                self._reporter.remove(asset.id)
                logger.info("Asset %s removed", asset.id)

    def _persist(self) -> None:
        with self._lock:
            records = [a.serialize() for a in self._assets if a.state in PERSISTED_STATES]
        logger.debug("Persisting %d assets", len(records))
        try:
            self._snapshot.save(records)
        except SnapshotError:
            logger.exception("Failed to persist asset snapshot")
