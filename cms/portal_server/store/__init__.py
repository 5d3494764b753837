"""
Entity storage: records, paths, stubs and pointer resolution.

EntityStore lives in store.entity_store and is imported from there; it
depends on the catalog and the materializer, which depend on this
package.
"""

from .resolver import PointerResolver, ResolvedPointer
from .stubs import SlugIndex, StubIndex
from .types import (
    Entity,
    EntityLatestPointer,
    EntityStatus,
    EntityStub,
    EntityTypePermissions,
    Organization,
    SlugIndexEntry,
    Visibility,
)

__all__ = [
    "Entity",
    "EntityLatestPointer",
    "EntityStatus",
    "EntityStub",
    "EntityTypePermissions",
    "Organization",
    "SlugIndexEntry",
    "Visibility",
    "StubIndex",
    "SlugIndex",
    "PointerResolver",
    "ResolvedPointer",
]
