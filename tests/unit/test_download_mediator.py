from __future__ import annotations

import pytest

from lucid_asset_agent.core.download_mediator import TemplateDownloadMediator


def test_key_is_quoted_into_template():
    mediator = TemplateDownloadMediator("https://files.test/assets/{key}?dl=1")

    assert mediator.resolve_download_url("models/v1 final.zip") == \
        "https://files.test/assets/models%2Fv1%20final.zip?dl=1"


def test_empty_template_disables_downloads():
    with pytest.raises(RuntimeError, match="not configured"):
        TemplateDownloadMediator("").resolve_download_url("k")


def test_empty_key_rejected():
    with pytest.raises(ValueError):
        TemplateDownloadMediator("https://files.test/{key}").resolve_download_url("")
