"""
Pytest configuration and shared fixtures
"""
import os
import sys
import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from lucid_asset_agent.assets.base import AssetContext  # noqa: E402
from lucid_asset_agent.assets.registry import HandlerRegistry  # noqa: E402
from lucid_asset_agent.paths import build_paths  # noqa: E402


class FakeMediator:
    def __init__(self):
        self.keys = []

    def resolve_download_url(self, key):
        self.keys.append(key)
        return f"https://files.test/{key}"


class FakeDownloads:
    """Stands in for download_to_file; serves bytes per URL."""

    def __init__(self):
        self.content = {}
        self.fail = {}
        self.calls = []
        self.on_download = None
        self.kwargs = {}

    def __call__(self, url, out_path, *, timeout_s, log, **kwargs):
        self.calls.append(url)
        self.kwargs[url] = kwargs
        if self.on_download is not None:
            self.on_download(url)
        if url in self.fail:
            raise self.fail[url]
        data = self.content.get(url, f"data:{url}".encode())
        out_path.write_bytes(data)
        return len(data)


@pytest.fixture
def paths(tmp_path):
    return build_paths(tmp_path / "agent")


@pytest.fixture
def mediator():
    return FakeMediator()


@pytest.fixture
def context(paths, mediator):
    return AssetContext(paths=paths, mediator=mediator)


@pytest.fixture
def handlers(context):
    return HandlerRegistry(context)


@pytest.fixture
def fake_download(monkeypatch):
    fake = FakeDownloads()
    monkeypatch.setattr("lucid_asset_agent.assets.file_asset.download_to_file", fake)
    monkeypatch.setattr("lucid_asset_agent.assets.ai_model.download_to_file", fake)
    return fake


def make_file_config(key="k1", filename="a.txt", dest_path=None):
    config = {
        "type": "file",
        "fileTypeConfig": {
            "filename": filename,
            "internalSrcConfig": {"key": key},
        },
    }
    if dest_path:
        config["destPath"] = dest_path
    return config


@pytest.fixture
def file_config():
    return make_file_config
