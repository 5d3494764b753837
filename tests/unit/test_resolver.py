"""
Unit tests for latest-pointer resolution.

Pointers are written directly here so each resolution branch can be set
up without going through EntityStore.
"""

import pytest

from cms.portal_server.errors import NotFoundError
from cms.portal_server.objectstore import InMemoryObjectStore, write_json
from cms.portal_server.store import PointerResolver
from cms.portal_server.store.paths import entity_latest_path, entity_version_path
from cms.portal_server.store.types import (
    Entity,
    EntityLatestPointer,
    EntityStatus,
    Visibility,
)


async def connected_store() -> InMemoryObjectStore:
    store = InMemoryObjectStore()
    await store.connect()
    return store


def pointer(version, status=EntityStatus.PUBLISHED, visibility=Visibility.PUBLIC):
    return EntityLatestPointer(version, status, visibility, "2024-01-01T00:00:00.000Z")


async def put_pointer(store, scope, entity_id, p, org_id=None):
    await write_json(store, entity_latest_path(scope, entity_id, org_id), p.to_dict())


class TestPointerResolver:
    """Tests for PointerResolver.resolve()."""

    @pytest.mark.asyncio
    async def test_global_prefers_authenticated(self):
        """Global lookups try authenticated before public."""
        store = await connected_store()
        await put_pointer(store, Visibility.PUBLIC, "g1", pointer(1))
        await put_pointer(store, Visibility.AUTHENTICATED, "g1", pointer(2, visibility=Visibility.AUTHENTICATED))

        resolved = await PointerResolver(store).resolve("g1", None)
        assert resolved.pointer.version == 2
        assert resolved.scope == Visibility.AUTHENTICATED

    @pytest.mark.asyncio
    async def test_org_draft_uses_org_copy(self):
        """Unpublished org entities resolve from the org prefix."""
        store = await connected_store()
        await put_pointer(store, Visibility.MEMBERS, "e1", pointer(1, EntityStatus.DRAFT), "acme")

        resolved = await PointerResolver(store).resolve("e1", "acme")
        assert resolved.scope == Visibility.MEMBERS
        assert resolved.version_key == "private/orgs/acme/entities/e1/v1.json"

    @pytest.mark.asyncio
    async def test_org_published_prefers_visibility_pointer(self):
        """The visibility-scoped pointer wins over a stale org copy."""
        store = await connected_store()
        await put_pointer(store, Visibility.MEMBERS, "e1", pointer(3), "acme")
        await put_pointer(store, Visibility.PUBLIC, "e1", pointer(4))

        resolved = await PointerResolver(store).resolve("e1", "acme")
        assert resolved.pointer.version == 4
        assert resolved.latest_key == "public/entities/e1/latest.json"
        assert resolved.version_key == "public/entities/e1/v4.json"

    @pytest.mark.asyncio
    async def test_org_published_without_visibility_pointer(self):
        """A missing visibility pointer falls back to the org copy."""
        store = await connected_store()
        await put_pointer(store, Visibility.MEMBERS, "e1", pointer(3), "acme")

        resolved = await PointerResolver(store).resolve("e1", "acme")
        assert resolved.pointer.version == 3
        assert resolved.scope == Visibility.PUBLIC

    @pytest.mark.asyncio
    async def test_org_copy_missing(self):
        """Without an org copy the visibility scopes are searched."""
        store = await connected_store()
        await put_pointer(store, Visibility.PUBLIC, "e1", pointer(2))

        resolved = await PointerResolver(store).resolve("e1", "acme")
        assert resolved.pointer.version == 2

    @pytest.mark.asyncio
    async def test_require_missing(self):
        """require() raises at the pointer stage."""
        resolver = PointerResolver(await connected_store())
        assert await resolver.resolve("none", None) is None
        with pytest.raises(NotFoundError) as exc_info:
            await resolver.require("none", "acme")
        assert exc_info.value.stage == "pointer"

    @pytest.mark.asyncio
    async def test_read_historical_version(self):
        """Older versions are found in whichever scope holds them."""
        store = await connected_store()
        draft = Entity(
            id="e1", entity_type_id="tools01", organization_id="acme", version=1,
            status=EntityStatus.DRAFT, visibility=Visibility.PUBLIC, name="Hammer", slug="hammer",
        )
        await write_json(store, entity_version_path(Visibility.MEMBERS, "e1", 1, "acme"), draft.to_dict())
        await put_pointer(store, Visibility.MEMBERS, "e1", pointer(3), "acme")
        await put_pointer(store, Visibility.PUBLIC, "e1", pointer(3))

        resolver = PointerResolver(store)
        resolved = await resolver.resolve("e1", "acme")
        old = await resolver.read_version(resolved, 1)
        assert old.status == EntityStatus.DRAFT
        assert await resolver.read_version(resolved, 2) is None
        assert await resolver.read_current(resolved) is None
