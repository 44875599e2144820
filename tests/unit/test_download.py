from __future__ import annotations

import logging

import pytest

from lucid_asset_agent.assets import transfer
from lucid_asset_agent.assets.transfer import download_to_file, sha256_base64

log = logging.getLogger("test.download")


class FakeResponse:
    def __init__(self, data: bytes, chunk: int = 4, headers=None):
        self._data = data
        self._chunk = chunk
        self.status = 200
        self.headers = headers if headers is not None else {"Content-Length": str(len(data))}

    def read(self, n):
        out, self._data = self._data[: self._chunk], self._data[self._chunk:]
        return out

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


@pytest.fixture
def fake_urlopen(monkeypatch):
    requests = []

    def install(data: bytes, **kwargs):
        def _urlopen(req, timeout=None):
            requests.append((req, timeout))
            return FakeResponse(data, **kwargs)

        monkeypatch.setattr(transfer, "urlopen", _urlopen)
        return requests

    return install


def test_download_writes_all_chunks(tmp_path, fake_urlopen):
    requests = fake_urlopen(b"0123456789")
    out = tmp_path / "f.bin"

    n = download_to_file("https://files.test/x", out, timeout_s=7, log=log)

    assert n == 10
    assert out.read_bytes() == b"0123456789"
    req, timeout = requests[0]
    assert req.full_url == "https://files.test/x"
    assert req.get_header("User-agent") == transfer.USER_AGENT
    assert timeout == 7


def test_download_reports_progress(tmp_path, fake_urlopen, caplog):
    fake_urlopen(b"abcdefgh")
    caplog.set_level(logging.INFO, logger="test.download")

    download_to_file("https://files.test/x", tmp_path / "f", timeout_s=5, log=log, progress_interval_s=0)

    progress = [r.getMessage() for r in caplog.records if r.getMessage().startswith("Download progress")]
    assert progress
    assert progress[-1].startswith("Download progress: 100%")


def test_download_without_length_header(tmp_path, fake_urlopen):
    fake_urlopen(b"abc", headers={})
    assert download_to_file("https://files.test/x", tmp_path / "f", timeout_s=5, log=log) == 3


def test_download_enforces_max_bytes(tmp_path, fake_urlopen):
    fake_urlopen(b"0123456789")

    with pytest.raises(RuntimeError, match="max_bytes=6"):
        download_to_file("https://files.test/x", tmp_path / "f", timeout_s=5, log=log, max_bytes=6)


def test_sha256_base64(tmp_path):
    empty = tmp_path / "empty"
    empty.write_bytes(b"")
    assert sha256_base64(empty) == "47DEQpj8HBSa+/TImW+5JCeuQeRkm5NMpJWZG3hSuFU="
