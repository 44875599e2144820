"""
AI model asset: a zipped model bundle served from a container.

Deploy downloads the archive, checks its base64 SHA-256 against
fileTypeConfig.integrity, extracts it into <dest>/mount (or <filename>.mount
next to the archive when no destPath is set), fetches the wrapper
script next to the model entry point and, when an image is declared, starts
a container that mounts the extracted model at /model and runs the wrapper.
"""

from __future__ import annotations

import zipfile
from pathlib import Path
from typing import TYPE_CHECKING, Any

import psutil

from lucid_asset_agent.assets.base import AssetHandler
from lucid_asset_agent.assets.errors import (
    AcquisitionError,
    AssetConfigError,
    InstallError,
    IntegrityError,
)
from lucid_asset_agent.assets.transfer import download_to_file, sha256_base64

if TYPE_CHECKING:
    from lucid_asset_agent.assets.base import Asset

ARCHIVE_MODE = 0o740
CONTAINER_MOUNT_POINT = "/model"
DEFAULT_PORTS = {"1234/tcp": "1234"}


class AiModelHandler(AssetHandler):
    asset_type = "aiModel"

    def root_dir(self) -> Path:
        return self.context.paths.ai_model_dir

    def validate_config(self, config: Any) -> None:
        super().validate_config(config)
        ftc = config["fileTypeConfig"]
        size = ftc.get("size")
        if isinstance(size, bool) or not isinstance(size, int) or size < 0:
            raise AssetConfigError("fileTypeConfig.size must be a non-negative integer")
        if not isinstance(ftc.get("integrity"), str) or not ftc.get("integrity"):
            raise AssetConfigError("fileTypeConfig.integrity must be a non-empty string")
        if not isinstance(config.get("mainFilePath"), str) or not config.get("mainFilePath"):
            raise AssetConfigError("mainFilePath must be a non-empty string")
        if not isinstance(config.get("wrapperUrl"), str) or not config.get("wrapperUrl"):
            raise AssetConfigError("wrapperUrl must be a non-empty string")
        ports = config.get("ports")
        if ports is not None and not isinstance(ports, dict):
            raise AssetConfigError("ports must be an object")

    # -------------------------
    # Layout
    # -------------------------
    def mount_path(self, config: dict[str, Any]) -> Path:
        if config.get("destPath"):
            return self.dest_dir(config) / "mount"
        # Models sharing the root get one extraction dir per archive.
        archive = self.file_path(config)
        return archive.with_name(f"{archive.name}.mount")

    def working_dir(self, config: dict[str, Any]) -> Path:
        if config.get("destPath"):
            return self.dest_dir(config)
        return self.mount_path(config)

    @staticmethod
    def main_file_dir(config: dict[str, Any]) -> str:
        """Dotted main file path without its extension, as a directory: "a.b.py" -> "a/b"."""
        parts = config["mainFilePath"].split(".")
        if len(parts) > 1:
            parts = parts[:-1]
        return "/".join(parts)

    def wrapper_path(self, config: dict[str, Any]) -> Path:
        return self.mount_path(config) / self.main_file_dir(config) / "wrapper.py"

    # -------------------------
    # Steps
    # -------------------------
    def acquire(self, asset: Asset, config: dict[str, Any]) -> None:
        dest_dir = self.dest_dir(config)
        dest_dir.mkdir(parents=True, exist_ok=True)

        asset.log.debug("Checking free space...")
        try:
            free = psutil.disk_usage(str(dest_dir)).free
        except OSError as exc:
            raise AcquisitionError(f"Failed to get free space: {exc}") from exc
        size = config["fileTypeConfig"]["size"]
        if free < size:
            raise AcquisitionError(f"Not enough storage space (available: {free}B, required: {size}B)")

        asset.log.debug("Getting file download URL...")
        url = self.context.mediator.resolve_download_url(config["fileTypeConfig"]["internalSrcConfig"]["key"])
        asset.log.debug("Got file download URL")

        path = self.file_path(config)
        asset.log.debug("Downloading model %s to %s ...", url, path)
        download_to_file(url, path, timeout_s=self.context.download_timeout_s, log=asset.log, max_bytes=size)

    def verify(self, asset: Asset, config: dict[str, Any]) -> None:
        asset.log.debug("Checking file integrity...")
        expected = config["fileTypeConfig"]["integrity"]
        integrity = sha256_base64(self.file_path(config))
        if integrity != expected:
            raise IntegrityError(f"File integrity mismatch: expected:{expected}, calculated:{integrity}")
        asset.log.info("File integrity matched: %s", integrity)

    def install(self, asset: Asset, config: dict[str, Any]) -> None:
        path = self.file_path(config)
        path.chmod(ARCHIVE_MODE)
        asset.log.info("File installed to: %s", path)

        mount = self.mount_path(config)
        asset.log.info("Extracting archive %s to %s", path.name, mount)
        _extract_zip(path, mount)
        asset.log.info("Extraction complete")

        wrapper = self.wrapper_path(config)
        wrapper.parent.mkdir(parents=True, exist_ok=True)
        asset.log.debug("Downloading wrapper %s to %s ...", config["wrapperUrl"], wrapper)
        try:
            download_to_file(config["wrapperUrl"], wrapper, timeout_s=self.context.download_timeout_s, log=asset.log)
        except Exception as exc:
            raise InstallError(f"wrapper download failed: {exc}") from exc

        if config.get("dockerImageUrl") and not config.get("existingContainer"):
            self._provision_container(asset, config)

    def _provision_container(self, asset: Asset, config: dict[str, Any]) -> None:
        driver = self.context.container_driver
        if driver is None:
            raise InstallError("container runtime is not available")

        image = config["dockerImageUrl"]
        asset.log.info("Provisioning container from image %s", image)
        driver.pull_image(image)
        handle = driver.create_container(
            image,
            cmd=["/bin/bash"],
            mounts=[f"{self.mount_path(config)}:{CONTAINER_MOUNT_POINT}"],
            ports=dict(config.get("ports") or DEFAULT_PORTS),
        )
        driver.exec(
            handle,
            cmd=["python", "-u", f"{CONTAINER_MOUNT_POINT}/{self.main_file_dir(config)}/wrapper.py"],
            attach_stdout=True,
            attach_stderr=True,
        )
        asset.log.info("Container %s running model wrapper", handle.container_id[:12])

    def delete(self, asset: Asset, config: dict[str, Any]) -> None:
        path = self.file_path(config)
        if path.exists():
            asset.log.debug("Deleting %s...", path)
            path.unlink()


def _extract_zip(archive: Path, dest: Path) -> None:
    dest.mkdir(parents=True, exist_ok=True)
    root = dest.resolve()
    try:
        with zipfile.ZipFile(archive) as zf:
            for name in zf.namelist():
                target = (root / name).resolve()
                if target != root and root not in target.parents:
                    raise InstallError(f"archive entry escapes extraction dir: {name}")
            zf.extractall(root)
    except zipfile.BadZipFile as exc:
        raise InstallError(f"extraction failed: {exc}") from exc
