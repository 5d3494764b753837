"""
Integration tests for EntityStore against the in-memory object store.

Tests cover:
- Version numbering and where each version is stored
- Publishing a global entity (draft hidden, visible once approved)
- Draft-only updates of org entities
- Permission, status and transition errors
- Public slug uniqueness
- Historical reads and viewer projection
"""

import pytest

from cms.portal_server.access import ActorContext, Role
from cms.portal_server.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStatusError,
    InvalidTransitionError,
    NotFoundError,
    ValidationFailedError,
)
from cms.portal_server.store.types import EntityStatus, Visibility

from tests.helpers import ADMIN, add_org, publish, seeded_service, tool_type_spec

ACME_USER = ActorContext.org_member("u1", "acme")
ANON = ActorContext.anonymous()


async def create_tool(service, actor=ACME_USER, name="Hammer", **kwargs):
    data = kwargs.pop("data", {"summary": "Hits nails", "secret": "forged"})
    return await service.entities.create_entity(actor, "tools01", data, name=name, **kwargs)


class TestVersioning:
    """Tests for version records and pointer placement."""

    @pytest.mark.asyncio
    async def test_create_writes_version_one(self):
        """New entities are drafts at version 1 with a stub."""
        service = await seeded_service()
        tool = await create_tool(service)

        assert tool.version == 1
        assert tool.status == EntityStatus.DRAFT
        assert tool.organization_id == "acme"
        assert tool.slug == "hammer"
        assert (await service.stubs.get(tool.id)).entity_type_id == "tools01"
        assert service.store.dump(f"private/orgs/acme/entities/{tool.id}/v1.json")["name"] == "Hammer"

    @pytest.mark.asyncio
    async def test_versions_increase_by_one(self):
        """Every update and transition writes exactly one new version."""
        service = await seeded_service()
        tool = await create_tool(service)
        await service.entities.update_entity(ACME_USER, tool.id, {"name": "Claw Hammer"})
        await publish(service, tool.id, ACME_USER)

        assert await service.entities.list_versions(tool.id) == [1, 2, 3, 4]
        assert (await service.entities.get_entity(tool.id)).version == 4

    @pytest.mark.asyncio
    async def test_published_org_entity_moves_to_public_prefix(self):
        """Publishing writes the public pointer and keeps the org copy."""
        service = await seeded_service()
        tool = await create_tool(service)
        await publish(service, tool.id, ACME_USER)

        store = service.store
        assert store.dump(f"public/entities/{tool.id}/v3.json")["status"] == "published"
        assert store.dump(f"private/orgs/acme/entities/{tool.id}/v2.json")["status"] == "pending"
        assert store.dump(f"public/entities/{tool.id}/latest.json")["version"] == 3
        assert store.dump(f"private/orgs/acme/entities/{tool.id}/latest.json")["version"] == 3

    @pytest.mark.asyncio
    async def test_archive_removes_public_pointer(self):
        """Leaving publication deletes the visibility-scoped pointer."""
        service = await seeded_service()
        tool = await create_tool(service)
        await publish(service, tool.id, ACME_USER)
        await service.entities.transition(ACME_USER, tool.id, "archive")

        assert service.store.dump(f"public/entities/{tool.id}/latest.json") is None
        assert service.store.dump(f"private/orgs/acme/entities/{tool.id}/v4.json")["status"] == "archived"
        current = await service.entities.get_entity(tool.id)
        assert (current.version, current.status) == (4, EntityStatus.ARCHIVED)

    @pytest.mark.asyncio
    async def test_historical_versions_readable(self):
        """Old versions are read from wherever they were written."""
        service = await seeded_service()
        tool = await create_tool(service)
        await publish(service, tool.id, ACME_USER)

        first = await service.entities.get_entity(tool.id, version=1)
        assert first.status == EntityStatus.DRAFT
        with pytest.raises(NotFoundError) as exc_info:
            await service.entities.get_entity(tool.id, version=9)
        assert exc_info.value.stage == "version"

    @pytest.mark.asyncio
    async def test_missing_version_zero_named_in_error(self):
        """A request for version 0 reports version 0, not the current one."""
        service = await seeded_service()
        tool = await create_tool(service)

        with pytest.raises(NotFoundError) as exc_info:
            await service.entities.get_entity(tool.id, version=0)
        assert "version 0 not found" in exc_info.value.message


class TestGlobalPublication:
    """A global authenticated entity moving from draft to published."""

    @pytest.mark.asyncio
    async def test_draft_hidden_then_published(self):
        """Drafts are hidden from other callers until approved."""
        service = await seeded_service()
        tool = await create_tool(
            service, actor=ADMIN, organization_id=None, visibility="authenticated"
        )
        assert tool.organization_id is None
        assert service.store.dump(f"platform/entities/{tool.id}/v1.json") is not None

        with pytest.raises(NotFoundError) as exc_info:
            await service.entities.get_entity(tool.id, actor=ACME_USER)
        assert exc_info.value.stage == "status"

        await service.entities.transition(ADMIN, tool.id, "submitForApproval")
        result = await service.entities.transition(ADMIN, tool.id, "approve", feedback="ok")

        assert result.to_status == EntityStatus.PUBLISHED
        assert result.entity.version == 3
        assert result.entity.approval_feedback == "ok"
        assert result.entity.approval_action_by == ADMIN.user_id
        assert service.store.dump(f"platform/entities/{tool.id}/v3.json") is not None

        seen = await service.entities.get_entity(tool.id, actor=ACME_USER)
        assert seen.status == EntityStatus.PUBLISHED
        bundle = service.store.dump("bundles/member/tools01.json")
        assert [e["id"] for e in bundle["entities"]] == [tool.id]

        with pytest.raises(ForbiddenError):
            await service.entities.get_entity(tool.id, actor=ANON)

    @pytest.mark.asyncio
    async def test_global_members_visibility_coerced(self):
        """Global entities cannot be members-only."""
        service = await seeded_service()
        tool = await create_tool(service, actor=ADMIN, organization_id=None, visibility="members")
        assert tool.visibility == Visibility.AUTHENTICATED


class TestDraftUpdates:
    """Org entity updates are draft-only."""

    @pytest.mark.asyncio
    async def test_update_members_entity(self):
        """Updates land at the same org-private prefix as version 2."""
        service = await seeded_service()
        tool = await create_tool(service, visibility="members")
        updated = await service.entities.update_entity(
            ACME_USER, tool.id, {"data": {"rating": 4, "secret": None}}
        )

        assert updated.version == 2
        assert updated.data == {"summary": "Hits nails", "rating": 4}
        assert service.store.dump(f"private/orgs/acme/entities/{tool.id}/v2.json") is not None

        await publish(service, tool.id, ACME_USER)
        await service.entities.transition(ACME_USER, tool.id, "archive")
        with pytest.raises(InvalidStatusError):
            await service.entities.update_entity(ACME_USER, tool.id, {"name": "Mallet"})

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_attributes(self):
        """Only data, name, slug and visibility are patchable."""
        service = await seeded_service()
        tool = await create_tool(service)
        with pytest.raises(ValidationFailedError) as exc_info:
            await service.entities.update_entity(ACME_USER, tool.id, {"status": "published"})
        assert "status" in exc_info.value.field_errors

    @pytest.mark.asyncio
    async def test_update_validates_data(self):
        """Patched values are validated and required fields stay set."""
        service = await seeded_service()
        tool = await create_tool(service)
        with pytest.raises(ValidationFailedError):
            await service.entities.update_entity(ACME_USER, tool.id, {"data": {"rating": 9}})
        with pytest.raises(ValidationFailedError):
            await service.entities.update_entity(ACME_USER, tool.id, {"data": {"summary": None}})

    @pytest.mark.asyncio
    async def test_update_by_other_org(self):
        """Only the owning org (or a superadmin) may update."""
        service = await seeded_service()
        await add_org(service, "beta", membership_key="member", types=["tools01"])
        tool = await create_tool(service)
        with pytest.raises(ForbiddenError):
            await service.entities.update_entity(
                ActorContext.org_admin("u2", "beta"), tool.id, {"name": "Mine"}
            )


class TestCreateErrors:
    """Tests for create_entity() failures."""

    @pytest.mark.asyncio
    async def test_missing_required_field(self):
        """Required fields must be present."""
        service = await seeded_service()
        with pytest.raises(ValidationFailedError) as exc_info:
            await create_tool(service, data={"rating": 3})
        assert "summary" in exc_info.value.field_errors

    @pytest.mark.asyncio
    async def test_empty_name(self):
        """Names cannot be blank."""
        service = await seeded_service()
        with pytest.raises(ValidationFailedError):
            await create_tool(service, name="  ")

    @pytest.mark.asyncio
    async def test_type_not_creatable(self):
        """Orgs only create types in their creatable list."""
        service = await seeded_service()
        await add_org(service, "beta", types=None)
        with pytest.raises(ForbiddenError):
            await create_tool(service, actor=ActorContext.org_member("u2", "beta"))

    @pytest.mark.asyncio
    async def test_other_org_or_global(self):
        """Non-superadmins create only inside their own organization."""
        service = await seeded_service()
        with pytest.raises(ForbiddenError):
            await create_tool(service, organization_id="beta")
        with pytest.raises(ForbiddenError):
            await create_tool(service, actor=ActorContext(user_id="u3", role=Role.USER))

    @pytest.mark.asyncio
    async def test_inactive_type(self):
        """Deactivated types accept no new entities."""
        service = await seeded_service()
        await service.catalog_writer.deactivate_entity_type(ADMIN, "tools01")
        with pytest.raises(NotFoundError):
            await create_tool(service)

    @pytest.mark.asyncio
    async def test_failed_version_write_removes_stub(self):
        """A create whose version write fails leaves no stub behind."""
        service = await seeded_service()
        stubs_before = service.store.keys("stubs/")
        service.store.fail_writes(
            "private/orgs/acme/entities/", RuntimeError("bucket unavailable")
        )

        with pytest.raises(RuntimeError):
            await create_tool(service)
        assert service.store.keys("stubs/") == stubs_before

        service.store.clear_failures()
        tool = await create_tool(service)
        assert (await service.stubs.get(tool.id)).organization_id == "acme"

    @pytest.mark.asyncio
    async def test_public_slug_conflict(self):
        """Public slugs are unique per owner and type."""
        service = await seeded_service()
        await create_tool(service)
        with pytest.raises(ConflictError):
            await create_tool(service)
        await create_tool(service, visibility="members")
        await create_tool(service, actor=ADMIN, organization_id=None)

    @pytest.mark.asyncio
    async def test_slug_released_on_delete(self):
        """Deleting an entity frees its slug."""
        service = await seeded_service()
        tool = await create_tool(service)
        await service.entities.transition(ACME_USER, tool.id, "delete")
        again = await create_tool(service)
        assert again.slug == "hammer"


class TestTransitions:
    """Tests for lifecycle errors."""

    @pytest.mark.asyncio
    async def test_approve_requires_superadmin(self):
        """Org users cannot approve their own submissions."""
        service = await seeded_service()
        tool = await create_tool(service)
        await service.entities.transition(ACME_USER, tool.id, "submitForApproval")
        with pytest.raises(ForbiddenError):
            await service.entities.transition(ACME_USER, tool.id, "approve")

    @pytest.mark.asyncio
    async def test_illegal_transition(self):
        """Illegal moves report the allowed actions."""
        service = await seeded_service()
        tool = await create_tool(service)
        with pytest.raises(InvalidTransitionError) as exc_info:
            await service.entities.transition(ADMIN, tool.id, "approve")
        assert exc_info.value.allowed_actions == ["submitForApproval", "restore", "delete"]

    @pytest.mark.asyncio
    async def test_unknown_action(self):
        """Unknown action names are validation errors."""
        service = await seeded_service()
        tool = await create_tool(service)
        with pytest.raises(ValidationFailedError):
            await service.entities.transition(ACME_USER, tool.id, "publish")

    @pytest.mark.asyncio
    async def test_reject_returns_to_draft(self):
        """Rejected submissions are editable drafts again."""
        service = await seeded_service()
        tool = await create_tool(service)
        await service.entities.transition(ACME_USER, tool.id, "submitForApproval")
        result = await service.entities.transition(ADMIN, tool.id, "reject", feedback="needs a summary")
        assert result.entity.status == EntityStatus.DRAFT
        assert result.to_dict()["feedback"] == "needs a summary"
        await service.entities.update_entity(ACME_USER, tool.id, {"name": "Better Hammer"})

    @pytest.mark.asyncio
    async def test_unknown_entity(self):
        """Missing entities fail at the stub stage."""
        service = await seeded_service()
        with pytest.raises(NotFoundError) as exc_info:
            await service.entities.transition(ADMIN, "missing", "archive")
        assert exc_info.value.stage == "stub"


class TestViewerReads:
    """Tests for reads by callers outside the owning org."""

    @pytest.mark.asyncio
    async def test_members_only_entity(self):
        """Other orgs cannot read members-only entities."""
        service = await seeded_service()
        tool = await create_tool(service, visibility="members")
        await publish(service, tool.id, ACME_USER)
        with pytest.raises(ForbiddenError):
            await service.entities.get_entity(tool.id, actor=ActorContext.org_member("u2", "beta"))
        assert (await service.entities.get_entity(tool.id, actor=ACME_USER)).id == tool.id

    @pytest.mark.asyncio
    async def test_projection_by_viewer_key(self):
        """Viewers get the fields their membership key allows."""
        service = await seeded_service()
        await add_org(service, "beta", membership_key="member")
        tool = await create_tool(service)
        await publish(service, tool.id, ACME_USER)

        anon_view = await service.entities.get_entity_for_viewer(tool.id, ANON)
        assert "secret" not in anon_view.data
        beta_view = await service.entities.get_entity_for_viewer(
            tool.id, ActorContext.org_member("u2", "beta")
        )
        assert beta_view.data["secret"] == "forged"
        owner_view = await service.entities.get_entity_for_viewer(tool.id, ACME_USER)
        assert owner_view.data["secret"] == "forged"
        explicit = await service.entities.get_entity_for_viewer(tool.id, ANON, membership_key="member")
        assert explicit.data["secret"] == "forged"

    @pytest.mark.asyncio
    async def test_type_without_audience(self):
        """A type with no visibleTo shows viewers no fields."""
        service = await seeded_service()
        await service.catalog_writer.create_entity_type(
            ADMIN, tool_type_spec(id="notes01", name="Note", pluralName="Notes", slug="notes",
                                  visibleTo=[], fieldVisibility={})
        )
        note = await service.entities.create_entity(
            ADMIN, "notes01", {"summary": "x"}, name="Note", organization_id=None
        )
        await service.entities.transition(ADMIN, note.id, "submitForApproval")
        await service.entities.transition(ADMIN, note.id, "approve")
        view = await service.entities.get_entity_for_viewer(note.id, ANON)
        assert view.data == {}
