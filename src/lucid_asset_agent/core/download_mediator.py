"""
Download mediator: resolves an asset content key to a fetch URL.
"""

from __future__ import annotations

from typing import Protocol
from urllib.parse import quote


class DownloadMediator(Protocol):
    """Minimal interface assets need to locate their content."""

    def resolve_download_url(self, key: str) -> str: ...


class TemplateDownloadMediator:
    """
    Resolve keys by formatting a URL template, e.g.
    "https://files.example.com/assets/{key}".
    """

    def __init__(self, template: str) -> None:
        self.template = template

    def resolve_download_url(self, key: str) -> str:
        if not self.template:
            raise RuntimeError("asset downloads are not configured (ASSET_DOWNLOAD_URL_TEMPLATE)")
        if not isinstance(key, str) or not key:
            raise ValueError("download key must be a non-empty string")
        return self.template.format(key=quote(key, safe=""))
