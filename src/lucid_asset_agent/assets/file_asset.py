"""
File asset: a single file downloaded into the asset data directory.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

from lucid_asset_agent.assets.base import AssetHandler
from lucid_asset_agent.assets.transfer import download_to_file

if TYPE_CHECKING:
    from lucid_asset_agent.assets.base import Asset


class FileAssetHandler(AssetHandler):
    asset_type = "file"

    def root_dir(self) -> Path:
        return self.context.paths.asset_data_dir

    def acquire(self, asset: Asset, config: dict[str, Any]) -> None:
        key = config["fileTypeConfig"]["internalSrcConfig"]["key"]
        asset.log.debug("Getting file download URL...")
        url = self.context.mediator.resolve_download_url(key)
        asset.log.debug("Got file download URL")

        path = self.file_path(config)
        path.parent.mkdir(parents=True, exist_ok=True)
        asset.log.debug("Downloading %s to %s ...", url, path)
        download_to_file(url, path, timeout_s=self.context.download_timeout_s, log=asset.log)

    def delete(self, asset: Asset, config: dict[str, Any]) -> None:
        path = self.file_path(config)
        if path.exists():
            asset.log.debug("Deleting %s...", path)
            path.unlink()
