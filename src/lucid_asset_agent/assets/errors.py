"""
Asset error taxonomy.

Raised inside asset steps; converted to (False, message) at the
Asset.deploy()/Asset.remove() boundary.
"""

from __future__ import annotations


class AssetError(RuntimeError):
    """Base class for all asset step failures."""


class AcquisitionError(AssetError):
    """Download, URL resolution or disk space failure."""


class IntegrityError(AssetError):
    """Digest of acquired content does not match the declared integrity."""


class InstallError(AssetError):
    """Extraction, permission or container provisioning failure."""


class DeletionError(AssetError):
    """Filesystem cleanup failure."""


class AssetConfigError(AssetError):
    """Unsupported asset type or malformed desired-state entry."""
