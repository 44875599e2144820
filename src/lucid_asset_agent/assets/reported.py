"""
Reported asset state publisher.

Builds the hub-visible record for each asset and writes it to the reported
tree only when its content changed.
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import TYPE_CHECKING, Any, Iterable, Protocol

from lucid_asset_agent.assets.base import PendingChange

if TYPE_CHECKING:
    from lucid_asset_agent.assets.base import Asset

logger = logging.getLogger(__name__)

REPORTED_ASSETS_PATH = "assets.assets"

_PENDING_STATES = {
    PendingChange.DEPLOY: "deployPending",
    PendingChange.REMOVE: "removePending",
}


class StateStore(Protocol):
    def get_state(self, scope: str, path: str | None = None) -> Any: ...

    def update_state(self, scope: str, op: str, path: str, value: Any = None) -> None: ...


def reported_path(asset_id: str) -> str:
    return f"{REPORTED_ASSETS_PATH}.{asset_id}"


def build_reported(asset: Asset) -> dict[str, Any]:
    """Canonical reported record: {state, ts, message?, updateId}."""
    if asset.pending_change is not None:
        state = _PENDING_STATES[asset.pending_change]
    else:
        state = asset.state.value
    record: dict[str, Any] = {
        "state": state,
        "ts": asset.change_ts,
        "updateId": asset.update_id,
    }
    if asset.change_err_msg:
        record["message"] = asset.change_err_msg
    return record


def content_hash(value: Any) -> str:
    encoded = json.dumps(value, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


class ReportedStatePublisher:
    def __init__(self, store: StateStore) -> None:
        self.store = store

    def publish(self, asset: Asset) -> bool:
        """Write the asset's record if it differs from what is published. Returns True if written."""
        record = build_reported(asset)
        path = reported_path(asset.id)
        current = self.store.get_state("reported", path)
        if current is not None and content_hash(current) == content_hash(record):
            return False
        self.store.update_state("reported", "set", path, record)
        logger.debug("Reported %s: %s", asset.id, record["state"])
        return True

    def remove(self, asset_id: str) -> None:
        self.store.update_state("reported", "remove", reported_path(asset_id))
        logger.debug("Reported %s: removed", asset_id)

    def publish_all(self, assets: Iterable[Asset]) -> None:
        """Publish every asset and delete reported entries for ids no longer managed."""
        assets = list(assets)
        for asset in assets:
            self.publish(asset)
        known = {a.id for a in assets}
        reported = self.store.get_state("reported", REPORTED_ASSETS_PATH)
        if isinstance(reported, dict):
            for stale_id in [k for k in reported if k not in known]:
                self.remove(stale_id)
