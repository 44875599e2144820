"""
Device state store: desired and reported trees.

The hub writes the desired tree; the agent writes the reported tree. Both are
plain JSON-like dicts addressed by dotted paths (e.g. "assets.assets.<id>").
Listeners are notified with (scope, path) after every mutation.
"""

from __future__ import annotations

import copy
import logging
import threading
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

SCOPES = ("desired", "reported")

StateListener = Callable[[str, str], None]


class StateStoreError(ValueError):
    """Raised on an invalid scope, path or operation."""


def _split(path: Optional[str]) -> list[str]:
    if not path:
        return []
    parts = path.split(".")
    if any(not p for p in parts):
        raise StateStoreError(f"invalid path: {path!r}")
    return parts


class DeviceStateStore:
    """
    In-memory desired/reported state with change notification.

    Reads return deep copies so callers never alias the stored tree.
    """

    def __init__(self) -> None:
        self._trees: dict[str, dict[str, Any]] = {scope: {} for scope in SCOPES}
        self._lock = threading.Lock()
        self._listeners: list[StateListener] = []

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def _tree(self, scope: str) -> dict[str, Any]:
        if scope not in self._trees:
            raise StateStoreError(f"unknown scope: {scope!r}")
        return self._trees[scope]

    def get_state(self, scope: str, path: Optional[str] = None) -> Any:
        """Return a copy of the subtree at path, or None if it does not exist."""
        with self._lock:
            node: Any = self._tree(scope)
            for part in _split(path):
                if not isinstance(node, dict) or part not in node:
                    return None
                node = node[part]
            return copy.deepcopy(node)

    def update_state(self, scope: str, op: str, path: str, value: Any = None) -> None:
        """
        Mutate one path. op is "set" (creates intermediate dicts) or "remove"
        (no-op if the path does not exist).
        """
        parts = _split(path)
        if not parts:
            raise StateStoreError("path must be non-empty")

        with self._lock:
            node = self._tree(scope)
            if op == "set":
                for part in parts[:-1]:
                    child = node.get(part)
                    if not isinstance(child, dict):
                        child = {}
                        node[part] = child
                    node = child
                node[parts[-1]] = copy.deepcopy(value)
            elif op == "remove":
                for part in parts[:-1]:
                    node = node.get(part)
                    if not isinstance(node, dict):
                        return
                if parts[-1] not in node:
                    return
                del node[parts[-1]]
            else:
                raise StateStoreError(f"unsupported op: {op!r}")

        self._notify(scope, path)

    def replace(self, scope: str, tree: dict[str, Any]) -> None:
        """Replace a whole tree (e.g. a desired-state document from the hub)."""
        if not isinstance(tree, dict):
            raise StateStoreError("state tree must be a dict")
        with self._lock:
            self._tree(scope)
            self._trees[scope] = copy.deepcopy(tree)
        self._notify(scope, "")

    def _notify(self, scope: str, path: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(scope, path)
            except Exception:
                logger.exception("State listener failed scope=%s path=%s", scope, path)
