"""
Unit tests for the platform configuration document and its cache.

Tests cover:
- Default document written on first load
- Cache invalidation
- Public key insertion
- Membership key validation and catalog replacement
- Unknown top-level sections survive a save
"""

import pytest

from cms.portal_server.appconfig import (
    AppConfig,
    AppConfigCache,
    MembershipKeyDefinition,
    default_public_key,
    ensure_public_key,
    validate_membership_keys,
)
from cms.portal_server.errors import ValidationFailedError
from cms.portal_server.objectstore import InMemoryObjectStore, read_json, write_json

from tests.helpers import MEMBER_KEY, PARTNER_KEY


async def connected_store() -> InMemoryObjectStore:
    store = InMemoryObjectStore()
    await store.connect()
    return store


class TestAppConfigDocument:
    """Tests for AppConfig serialization helpers."""

    def test_ensure_public_key(self):
        """The public key is inserted once, at the front."""
        config = AppConfig(membership_keys=[MEMBER_KEY])
        assert ensure_public_key(config)
        assert not ensure_public_key(config)
        assert config.key_ids() == ["public", "member"]

    def test_extra_sections_preserved(self):
        """Unknown top-level keys round-trip through from_dict/to_dict."""
        raw = AppConfig().to_dict()
        raw["analytics"] = {"enabled": True}
        assert AppConfig.from_dict(raw).to_dict()["analytics"] == {"enabled": True}

    def test_client_config(self):
        """Only client-facing sections are embedded in manifests."""
        assert set(AppConfig().client_config()) == {"features", "branding", "sync"}

    @pytest.mark.parametrize("key_id", ["org", "Bad Key", "../up"])
    def test_rejected_key_ids(self, key_id):
        """Reserved and path-unsafe ids are rejected."""
        with pytest.raises(ValidationFailedError) as exc_info:
            validate_membership_keys([default_public_key(), MembershipKeyDefinition(id=key_id, name="x")])
        assert key_id in exc_info.value.field_errors

    def test_duplicate_key_ids(self):
        """Each key id appears once."""
        with pytest.raises(ValidationFailedError):
            validate_membership_keys([default_public_key(), MEMBER_KEY, MEMBER_KEY])


class TestAppConfigCache:
    """Tests for AppConfigCache."""

    @pytest.mark.asyncio
    async def test_default_written_on_first_load(self):
        """A missing document is created with defaults."""
        store = await connected_store()
        cache = AppConfigCache(store)
        config = await cache.load()
        assert config.key_ids() == ["public"]
        assert (await read_json(store, "config/app.json"))["membershipKeys"]["keys"][0]["id"] == "public"

    @pytest.mark.asyncio
    async def test_cached_until_invalidated(self):
        """Storage is read once until invalidate()."""
        store = await connected_store()
        cache = AppConfigCache(store)
        await cache.load()
        await cache.load()
        assert cache.load_count == 1
        cache.invalidate()
        assert not cache.is_loaded
        await cache.load()
        assert cache.load_count == 2

    @pytest.mark.asyncio
    async def test_missing_public_key_is_inserted(self):
        """A stored document without a public key gains one on load."""
        store = await connected_store()
        await write_json(store, "config/app.json", AppConfig(membership_keys=[MEMBER_KEY]).to_dict())
        config = await AppConfigCache(store).load()
        assert config.key("public") is not None

    @pytest.mark.asyncio
    async def test_update_membership_keys(self):
        """Replacing the catalog reports removed and in-use keys."""
        store = await connected_store()
        cache = AppConfigCache(store)
        await cache.update_membership_keys([default_public_key(), MEMBER_KEY, PARTNER_KEY])

        result = await cache.update_membership_keys(
            [default_public_key(), MEMBER_KEY], keys_in_use={"partner"}
        )
        assert result.removed_keys == ["partner"]
        assert result.removed_keys_in_use == ["partner"]
        assert (await cache.load()).key_ids() == ["public", "member"]

    @pytest.mark.asyncio
    async def test_update_keeps_other_sections(self):
        """Key edits leave branding and unknown sections untouched."""
        store = await connected_store()
        raw = AppConfig().to_dict()
        raw["branding"]["siteName"] = "Acme Hub"
        raw["analytics"] = {"enabled": True}
        await write_json(store, "config/app.json", raw)

        cache = AppConfigCache(store)
        await cache.update_membership_keys([default_public_key(), MEMBER_KEY])
        stored = await read_json(store, "config/app.json")
        assert stored["branding"]["siteName"] == "Acme Hub"
        assert stored["analytics"] == {"enabled": True}
