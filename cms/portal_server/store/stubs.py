"""
Entity stub index and slug index.

The stub (stubs/{id}.json) is the reverse index that lets any caller go
from an entity id to its owning organization and type without knowing
where the entity currently lives. Org bundle builds also use stubs to
enumerate the entities of an (org, type) pair without a full scan.

The slug index (stubs/slug-index/...) records which entity owns a public
slug within an (organization, entity type) scope, so uniqueness checks are
a single read.

Invariants:
    - Exactly one stub per entity, written at creation, never modified;
      removed only when the creation that wrote it fails
    - Stub location never changes when the entity relocates
    - A slug index entry names at most one entity

How to change safely:
    - Stub JSON is read by every lookup; add fields as optional only
    - find() skips slug index keys; keep that filter if the layout changes
"""

from __future__ import annotations

import logging

from ..errors import ConflictError, NotFoundError
from ..objectstore import ObjectStore, SafeReader, read_json, write_json
from .paths import (
    STUBS_PREFIX,
    entity_stub_path,
    parse_stub_id,
    slug_index_path,
)
from .types import EntityStub, SlugIndexEntry, utc_now

logger = logging.getLogger(__name__)

_ANY = object()


class StubIndex:
    """Reads and writes entity stubs.

    Example:
        >>> stubs = StubIndex(store)
        >>> await stubs.create(EntityStub("abc1234", "org1", "tools01", now))
        >>> (await stubs.get("abc1234")).organization_id
        'org1'
    """

    def __init__(self, store: ObjectStore) -> None:
        self._store = store

    async def create(self, stub: EntityStub) -> EntityStub:
        """Write the stub for a new entity.

        Raises:
            ConflictError: If a stub for this id already exists
        """
        path = entity_stub_path(stub.entity_id)
        if await self._store.head(path):
            raise ConflictError(
                f"Entity id '{stub.entity_id}' is already allocated",
                resource_type="entity",
                key=stub.entity_id,
            )
        await write_json(self._store, path, stub.to_dict())
        return stub

    async def delete(self, entity_id: str) -> None:
        """Remove the stub of an entity whose creation failed."""
        await self._store.delete(entity_stub_path(entity_id))
        logger.warning("Removed stub of failed entity creation", extra={"entity_id": entity_id})

    async def exists(self, entity_id: str) -> bool:
        return await self._store.head(entity_stub_path(entity_id))

    async def get(self, entity_id: str) -> EntityStub:
        """Stub for an entity id.

        Raises:
            NotFoundError: If no stub exists (stage "stub")
        """
        raw = await read_json(self._store, entity_stub_path(entity_id))
        if raw is None:
            raise NotFoundError(
                f"Entity '{entity_id}' not found",
                resource_type="entity",
                resource_id=entity_id,
                stage="stub",
            )
        return EntityStub.from_dict(raw)

    async def find(
        self,
        org_id: str | None | object = _ANY,
        type_id: str | None = None,
    ) -> list[EntityStub]:
        """Stubs filtered by owning organization and/or type.

        Pass org_id=None to select global entities; omit it to match any
        owner.
        """
        reader = SafeReader(self._store)
        keys = await reader.list(STUBS_PREFIX, lambda k: parse_stub_id(k) is not None)

        stubs = []
        for _, raw in await reader.read_listed(keys):
            stub = EntityStub.from_dict(raw)
            if org_id is not _ANY and stub.organization_id != org_id:
                continue
            if type_id is not None and stub.entity_type_id != type_id:
                continue
            stubs.append(stub)

        logger.debug(
            "Stub scan complete",
            extra={
                "org_id": None if org_id is _ANY else org_id,
                "type_id": type_id,
                "matched": len(stubs),
                "skipped": reader.stats.skipped_missing,
            },
        )
        return stubs


class SlugIndex:
    """Slug uniqueness records for public entities."""

    def __init__(self, store: ObjectStore) -> None:
        self._store = store

    async def lookup(
        self,
        org_id: str | None,
        type_slug: str,
        slug: str,
    ) -> SlugIndexEntry | None:
        raw = await read_json(self._store, slug_index_path(org_id, type_slug, slug))
        return SlugIndexEntry.from_dict(raw) if raw else None

    async def check_available(
        self,
        org_id: str | None,
        type_slug: str,
        slug: str,
        entity_id: str | None = None,
    ) -> None:
        """Raise if another entity already owns the slug.

        Raises:
            ConflictError: If the slug belongs to a different entity
        """
        existing = await self.lookup(org_id, type_slug, slug)
        if existing is not None and existing.entity_id != entity_id:
            raise ConflictError(
                f"An entity with slug '{slug}' already exists",
                resource_type="slug",
                key=slug,
            )

    async def claim(
        self,
        org_id: str | None,
        type_slug: str,
        slug: str,
        entry: SlugIndexEntry,
    ) -> None:
        """Record entry.entity_id as the owner of a slug.

        Raises:
            ConflictError: If the slug belongs to a different entity
        """
        await self.check_available(org_id, type_slug, slug, entry.entity_id)
        if not entry.updated_at:
            entry = SlugIndexEntry(
                entity_id=entry.entity_id,
                visibility=entry.visibility,
                organization_id=entry.organization_id,
                entity_type_id=entry.entity_type_id,
                updated_at=utc_now(),
            )
        await write_json(self._store, slug_index_path(org_id, type_slug, slug), entry.to_dict())

    async def release(
        self,
        org_id: str | None,
        type_slug: str,
        slug: str,
        entity_id: str,
    ) -> bool:
        """Drop a slug record if entity_id owns it. Returns True if dropped."""
        existing = await self.lookup(org_id, type_slug, slug)
        if existing is None or existing.entity_id != entity_id:
            return False
        await self._store.delete(slug_index_path(org_id, type_slug, slug))
        return True
