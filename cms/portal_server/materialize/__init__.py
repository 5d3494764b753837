"""
Derived read views: per-audience bundles and manifests.

Writers describe what they changed with an event from `events`;
BundleMaterializer rebuilds the affected bundles and manifests.
"""

from .bundles import BundleMaterializer
from .events import (
    EntityTypeWritten,
    EntityWritten,
    MaterializerEvent,
    MembershipKeysWritten,
    OrgPermissionsWritten,
    OrgProfileWritten,
)
from .models import (
    BundleEntity,
    BundleInfo,
    EntityBundle,
    ManifestEntityType,
    RegenerationReport,
    SiteManifest,
)

__all__ = [
    "BundleMaterializer",
    # Events
    "MaterializerEvent",
    "EntityWritten",
    "EntityTypeWritten",
    "OrgProfileWritten",
    "OrgPermissionsWritten",
    "MembershipKeysWritten",
    # Documents
    "BundleEntity",
    "EntityBundle",
    "ManifestEntityType",
    "SiteManifest",
    "RegenerationReport",
    "BundleInfo",
]
