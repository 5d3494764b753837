"""
Integration tests for catalog records and superadmin edits.
"""

import pytest

from cms.portal_server.access import ActorContext
from cms.portal_server.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationFailedError,
)
from cms.portal_server.store.types import Organization

from tests.helpers import ADMIN, add_org, seeded_service, started_service, tool_type_spec


class TestEntityTypes:
    """Tests for entity type creation and updates."""

    @pytest.mark.asyncio
    async def test_create_and_read(self):
        """Types round-trip through storage with their visibility rules."""
        service = await started_service()
        await service.catalog_writer.create_entity_type(ADMIN, tool_type_spec())

        tool = await service.catalog.get_entity_type("tools01")
        assert tool.plural_name == "Tools"
        assert [f.id for f in tool.fields] == ["summary", "secret", "rating"]
        assert tool.audience_keys() == ["public", "member"]

    @pytest.mark.asyncio
    async def test_superadmin_only(self):
        """Org users cannot edit the catalog."""
        service = await started_service()
        with pytest.raises(ForbiddenError):
            await service.catalog_writer.create_entity_type(
                ActorContext.org_admin("u1", "acme"), tool_type_spec()
            )

    @pytest.mark.asyncio
    async def test_slug_conflict(self):
        """Type slugs are unique, inactive types included."""
        service = await seeded_service()
        await service.catalog_writer.deactivate_entity_type(ADMIN, "tools01")
        with pytest.raises(ConflictError):
            await service.catalog_writer.create_entity_type(ADMIN, tool_type_spec(id="tools02"))

    @pytest.mark.asyncio
    async def test_field_visibility_must_reference_fields(self):
        """fieldVisibility keys must be defined fields."""
        service = await started_service()
        with pytest.raises(ValidationFailedError) as exc_info:
            await service.catalog_writer.create_entity_type(
                ADMIN, tool_type_spec(fieldVisibility={"missing": ["member"]})
            )
        assert "missing" in exc_info.value.field_errors

    @pytest.mark.asyncio
    async def test_duplicate_field_ids(self):
        """Field ids are unique within a type."""
        service = await started_service()
        fields = [
            {"id": "summary", "name": "Summary", "type": "string"},
            {"id": "summary", "name": "Again", "type": "string"},
        ]
        with pytest.raises(ValidationFailedError):
            await service.catalog_writer.create_entity_type(
                ADMIN, tool_type_spec(fields=fields, fieldVisibility={})
            )

    @pytest.mark.asyncio
    async def test_deactivate_hides_type(self):
        """Deactivated types are only visible with include_inactive."""
        service = await seeded_service()
        await service.catalog_writer.deactivate_entity_type(ADMIN, "tools01")

        with pytest.raises(NotFoundError):
            await service.catalog.get_entity_type("tools01")
        assert not (await service.catalog.get_entity_type("tools01", include_inactive=True)).is_active
        assert await service.catalog.list_entity_types() == []
        assert len(await service.catalog.list_entity_types(include_inactive=True)) == 1

    @pytest.mark.asyncio
    async def test_update_fields(self):
        """Updates replace only the attributes they name."""
        service = await seeded_service()
        updated = await service.catalog_writer.update_entity_type(
            ADMIN, "tools01", {"description": "Hand tools", "visibleTo": ["public"]}
        )
        assert updated.description == "Hand tools"
        assert updated.visible_to == ("public",)
        assert updated.slug == "tools"


class TestOrganizations:
    """Tests for organization profiles and permissions."""

    @pytest.mark.asyncio
    async def test_save_and_list(self):
        """Profiles get a slug and timestamps; inactive orgs are filtered."""
        service = await started_service()
        org = await add_org(service, "acme", membership_key="member")
        await service.catalog_writer.save_organization(
            ADMIN, Organization(id="gone", name="Gone Ltd", is_active=False)
        )

        assert org.slug == "acme"
        assert org.created_at
        assert [o.id for o in await service.catalog.list_organizations()] == ["acme"]
        assert len(await service.catalog.list_organizations(active_only=False)) == 2

    @pytest.mark.asyncio
    async def test_creatable_implies_viewable(self):
        """Creatable types are added to the viewable list."""
        service = await seeded_service()
        permissions = await service.catalog_writer.set_permissions(
            ADMIN, "acme", viewable=[], creatable=["tools01"]
        )
        assert permissions.viewable == ["tools01"]

    @pytest.mark.asyncio
    async def test_permissions_for_unknown_org(self):
        """Permissions require an existing organization."""
        service = await started_service()
        with pytest.raises(NotFoundError):
            await service.catalog_writer.set_permissions(ADMIN, "nobody", viewable=[], creatable=[])

    @pytest.mark.asyncio
    async def test_default_permissions_are_empty(self):
        """Orgs without a permissions record view nothing."""
        service = await started_service()
        permissions = await service.catalog.get_permissions("acme")
        assert (permissions.viewable, permissions.creatable) == ([], [])

    @pytest.mark.asyncio
    async def test_keys_in_use(self):
        """Keys referenced by types and organizations are reported."""
        service = await seeded_service()
        await add_org(service, "beta", membership_key="gold")
        assert await service.catalog.keys_in_use() == {"public", "member", "gold"}
