"""
Asset type registry: maps the "type" discriminator to its handler.
"""

from __future__ import annotations

from typing import Any, Optional

from lucid_asset_agent.assets.ai_model import AiModelHandler
from lucid_asset_agent.assets.base import AssetContext, AssetHandler
from lucid_asset_agent.assets.errors import AssetConfigError
from lucid_asset_agent.assets.file_asset import FileAssetHandler

DEFAULT_HANDLERS: tuple[type[AssetHandler], ...] = (FileAssetHandler, AiModelHandler)


class HandlerRegistry:
    """One handler instance per supported asset type, sharing a context."""

    def __init__(
        self,
        context: AssetContext,
        handler_classes: Optional[tuple[type[AssetHandler], ...]] = None,
    ) -> None:
        self.context = context
        self._handlers: dict[str, AssetHandler] = {}
        for cls in handler_classes or DEFAULT_HANDLERS:
            self._handlers[cls.asset_type] = cls(context)

    def types(self) -> list[str]:
        return list(self._handlers)

    def get(self, asset_type: Any) -> AssetHandler:
        handler = self._handlers.get(asset_type) if isinstance(asset_type, str) else None
        if handler is None:
            raise AssetConfigError(f"Unsupported asset type: {asset_type}")
        return handler

    def validate(self, config: Any) -> str:
        """Validate a desired config and return its type."""
        if not isinstance(config, dict):
            raise AssetConfigError("config must be an object")
        asset_type = config.get("type")
        self.get(asset_type).validate_config(config)
        return asset_type
