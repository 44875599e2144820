from __future__ import annotations

import io
import zipfile
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from lucid_asset_agent.assets.base import Asset, AssetContext
from lucid_asset_agent.assets.errors import AssetConfigError
from lucid_asset_agent.assets.registry import HandlerRegistry
from lucid_asset_agent.assets.transfer import sha256_base64
from lucid_asset_agent.core.container_driver import ContainerHandle

WRAPPER_URL = "https://wrappers.test/wrapper.py"


def _zip_bytes(entries):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return buf.getvalue()


def _integrity(tmp_path, data):
    p = tmp_path / "digest.bin"
    p.write_bytes(data)
    return sha256_base64(p)


@pytest.fixture
def driver():
    d = MagicMock()
    d.create_container.return_value = ContainerHandle(container_id="c0ffee1234567890", image="img")
    return d


@pytest.fixture
def model_handlers(paths, mediator, driver):
    return HandlerRegistry(AssetContext(paths=paths, mediator=mediator, container_driver=driver))


@pytest.fixture
def model(tmp_path, fake_download):
    archive = _zip_bytes({"detector/weights.bin": b"w" * 64, "detector/labels.txt": b"cat\ndog\n"})
    fake_download.content["https://files.test/m1"] = archive
    fake_download.content[WRAPPER_URL] = b"print('serving')\n"

    def make(**overrides):
        config = {
            "type": "aiModel",
            "fileTypeConfig": {
                "filename": "model.zip",
                "internalSrcConfig": {"key": "m1"},
                "size": len(archive),
                "integrity": _integrity(tmp_path, archive),
            },
            "mainFilePath": "detector.py",
            "wrapperUrl": WRAPPER_URL,
            "dockerImageUrl": "registry.test/models/runtime:1",
        }
        config.update(overrides)
        return config

    return make


def _deploy(handlers, config):
    asset = Asset("m1", "aiModel", handlers)
    ok = asset.deploy(config)
    return ok, asset


def test_validate_requires_model_fields(model_handlers, model):
    assert model_handlers.validate(model()) == "aiModel"

    config = model()
    del config["wrapperUrl"]
    with pytest.raises(AssetConfigError, match="wrapperUrl"):
        model_handlers.validate(config)

    config = model()
    config["fileTypeConfig"]["size"] = -1
    with pytest.raises(AssetConfigError, match="size"):
        model_handlers.validate(config)


def test_main_file_dir():
    from lucid_asset_agent.assets.ai_model import AiModelHandler

    assert AiModelHandler.main_file_dir({"mainFilePath": "detector.py"}) == "detector"
    assert AiModelHandler.main_file_dir({"mainFilePath": "pkg.detector.py"}) == "pkg/detector"
    assert AiModelHandler.main_file_dir({"mainFilePath": "detector"}) == "detector"


def test_deploy_extracts_and_starts_container(model_handlers, paths, model, driver):
    ok, asset = _deploy(model_handlers, model())

    assert ok is True, asset.change_err_msg
    mount = paths.ai_model_dir / "model.zip.mount"
    assert (mount / "detector" / "weights.bin").exists()
    assert (mount / "detector" / "wrapper.py").read_bytes() == b"print('serving')\n"
    assert (paths.ai_model_dir / "model.zip").stat().st_mode & 0o777 == 0o740

    driver.pull_image.assert_called_once_with("registry.test/models/runtime:1")
    driver.create_container.assert_called_once_with(
        "registry.test/models/runtime:1",
        cmd=["/bin/bash"],
        mounts=[f"{mount}:/model"],
        ports={"1234/tcp": "1234"},
    )
    _, kwargs = driver.exec.call_args
    assert kwargs["cmd"] == ["python", "-u", "/model/detector/wrapper.py"]


def test_deploy_uses_configured_ports(model_handlers, model, driver):
    ok, _ = _deploy(model_handlers, model(ports={"8080/tcp": "18080"}))

    assert ok is True
    assert driver.create_container.call_args.kwargs["ports"] == {"8080/tcp": "18080"}


def test_existing_container_skips_provisioning(model_handlers, model, driver):
    ok, _ = _deploy(model_handlers, model(existingContainer=True))

    assert ok is True
    driver.pull_image.assert_not_called()
    driver.create_container.assert_not_called()


def test_integrity_mismatch_fails(model_handlers, model, driver):
    config = model()
    config["fileTypeConfig"]["integrity"] = "AAAA"

    ok, asset = _deploy(model_handlers, config)

    assert ok is False
    assert asset.change_err_msg.startswith("File integrity mismatch: expected:AAAA, calculated:")
    driver.pull_image.assert_not_called()


def test_insufficient_space_fails_before_download(model_handlers, model, fake_download, monkeypatch):
    monkeypatch.setattr(
        "lucid_asset_agent.assets.ai_model.psutil.disk_usage",
        lambda path: SimpleNamespace(free=10, total=100, used=90, percent=90.0),
    )

    ok, asset = _deploy(model_handlers, model())

    assert ok is False
    assert "Not enough storage space (available: 10B" in asset.change_err_msg
    assert fake_download.calls == []


def test_zip_escape_is_rejected(model_handlers, model, fake_download, tmp_path):
    evil = _zip_bytes({"../../escape.txt": b"x"})
    fake_download.content["https://files.test/m1"] = evil
    config = model()
    config["fileTypeConfig"]["integrity"] = _integrity(tmp_path, evil)

    ok, asset = _deploy(model_handlers, config)

    assert ok is False
    assert "escapes extraction dir" in asset.change_err_msg


def test_missing_container_runtime_fails(paths, mediator, model):
    handlers = HandlerRegistry(AssetContext(paths=paths, mediator=mediator))

    ok, asset = _deploy(handlers, model())

    assert ok is False
    assert asset.change_err_msg == "container runtime is not available"


def test_wrapper_download_failure_fails_install(model_handlers, model, fake_download):
    fake_download.fail[WRAPPER_URL] = OSError("unreachable")

    ok, asset = _deploy(model_handlers, model())

    assert ok is False
    assert asset.change_err_msg == "wrapper download failed: unreachable"


def test_remove_cleans_archive_and_mount(model_handlers, paths, model):
    config = model(destPath="vision")
    ok, asset = _deploy(model_handlers, config)
    assert ok is True
    asset.config = config

    assert asset.remove(config) is True
    assert not (paths.ai_model_dir / "vision").exists()


def test_archive_download_is_capped_at_declared_size(model_handlers, model, fake_download):
    config = model()

    ok, _ = _deploy(model_handlers, config)

    assert ok is True
    assert fake_download.kwargs["https://files.test/m1"]["max_bytes"] == config["fileTypeConfig"]["size"]


def test_models_without_dest_path_keep_separate_mounts(model_handlers, paths, model):
    first = model()
    second = model()
    second["fileTypeConfig"]["filename"] = "other.zip"

    ok1, asset1 = _deploy(model_handlers, first)
    ok2, _ = _deploy(model_handlers, second)
    assert ok1 is True and ok2 is True

    assert asset1.remove(first) is True
    assert not (paths.ai_model_dir / "model.zip.mount").exists()
    assert (paths.ai_model_dir / "other.zip.mount" / "detector" / "wrapper.py").exists()
    assert (paths.ai_model_dir / "other.zip").exists()
