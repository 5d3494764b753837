"""
Unit tests for the entity stub index and slug index.
"""

import pytest

from cms.portal_server.errors import ConflictError, NotFoundError
from cms.portal_server.objectstore import InMemoryObjectStore
from cms.portal_server.store import SlugIndex, StubIndex
from cms.portal_server.store.types import EntityStub, SlugIndexEntry, Visibility


async def connected_store() -> InMemoryObjectStore:
    store = InMemoryObjectStore()
    await store.connect()
    return store


def stub(entity_id, org_id="acme", type_id="tools01"):
    return EntityStub(entity_id, org_id, type_id, "2024-01-01T00:00:00.000Z")


class TestStubIndex:
    """Tests for StubIndex."""

    @pytest.mark.asyncio
    async def test_create_and_get(self):
        """A stub maps an id to its owner and type."""
        stubs = StubIndex(await connected_store())
        await stubs.create(stub("abc1234"))
        found = await stubs.get("abc1234")
        assert (found.organization_id, found.entity_type_id) == ("acme", "tools01")
        assert await stubs.exists("abc1234")

    @pytest.mark.asyncio
    async def test_duplicate_id(self):
        """Ids are allocated once."""
        stubs = StubIndex(await connected_store())
        await stubs.create(stub("abc1234"))
        with pytest.raises(ConflictError):
            await stubs.create(stub("abc1234", org_id="other"))

    @pytest.mark.asyncio
    async def test_missing_stub(self):
        """Unknown ids fail at the stub stage."""
        stubs = StubIndex(await connected_store())
        with pytest.raises(NotFoundError) as exc_info:
            await stubs.get("nope")
        assert exc_info.value.stage == "stub"

    @pytest.mark.asyncio
    async def test_find_filters(self):
        """find() filters by owner and type; None selects global entities."""
        store = await connected_store()
        stubs = StubIndex(store)
        await stubs.create(stub("a1"))
        await stubs.create(stub("a2", type_id="events01"))
        await stubs.create(stub("g1", org_id=None))
        await SlugIndex(store).claim(
            "acme", "tools", "hammer",
            SlugIndexEntry("a1", Visibility.PUBLIC, "acme", "tools01"),
        )

        assert {s.entity_id for s in await stubs.find()} == {"a1", "a2", "g1"}
        assert [s.entity_id for s in await stubs.find("acme", "tools01")] == ["a1"]
        assert [s.entity_id for s in await stubs.find(None)] == ["g1"]

    @pytest.mark.asyncio
    async def test_find_skips_phantoms(self):
        """Listed stubs that vanished are skipped."""
        store = await connected_store()
        stubs = StubIndex(store)
        await stubs.create(stub("a1"))
        store.inject_phantom("stubs/zz.json")
        assert [s.entity_id for s in await stubs.find()] == ["a1"]


class TestSlugIndex:
    """Tests for SlugIndex."""

    @pytest.mark.asyncio
    async def test_claim_conflict(self):
        """A slug belongs to one entity per (owner, type)."""
        slugs = SlugIndex(await connected_store())
        entry = SlugIndexEntry("a1", Visibility.PUBLIC, "acme", "tools01")
        await slugs.claim("acme", "tools", "hammer", entry)
        await slugs.claim("acme", "tools", "hammer", entry)
        with pytest.raises(ConflictError):
            await slugs.check_available("acme", "tools", "hammer", "b2")
        await slugs.check_available("other", "tools", "hammer", "b2")
        assert (await slugs.lookup("acme", "tools", "hammer")).updated_at

    @pytest.mark.asyncio
    async def test_release_only_by_owner(self):
        """Only the owning entity releases a slug."""
        slugs = SlugIndex(await connected_store())
        await slugs.claim(None, "tools", "hammer", SlugIndexEntry("g1", Visibility.PUBLIC, None, "tools01"))
        assert not await slugs.release(None, "tools", "hammer", "other")
        assert await slugs.release(None, "tools", "hammer", "g1")
        assert await slugs.lookup(None, "tools", "hammer") is None
