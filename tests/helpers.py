"""
Shared builders for portal tests.

Async setup lives in plain coroutines rather than fixtures so tests stay
runnable under pytest-asyncio strict mode.
"""

from __future__ import annotations

from typing import Any

from cms.portal_server.access import ActorContext
from cms.portal_server.appconfig import MembershipKeyDefinition, default_public_key
from cms.portal_server.config import MaterializerConfig, ServerConfig
from cms.portal_server.objectstore import InMemoryObjectStore
from cms.portal_server.service import PortalService
from cms.portal_server.store.types import Organization

ADMIN = ActorContext.superadmin("admin-1")

MEMBER_KEY = MembershipKeyDefinition(
    id="member", name="Member", requires_auth=True, order=1
)
PARTNER_KEY = MembershipKeyDefinition(
    id="partner", name="Partner", requires_auth=True, order=2
)


def tool_type_spec(**overrides: Any) -> dict[str, Any]:
    """Wire representation of a Tool type with one member-only field."""
    spec: dict[str, Any] = {
        "id": "tools01",
        "name": "Tool",
        "pluralName": "Tools",
        "slug": "tools",
        "description": "Software tools",
        "defaultVisibility": "public",
        "fields": [
            {"id": "summary", "name": "Summary", "type": "string", "required": True},
            {"id": "secret", "name": "Secret", "type": "string"},
            {
                "id": "rating",
                "name": "Rating",
                "type": "number",
                "constraints": {"minValue": 0, "maxValue": 5},
            },
        ],
        "visibleTo": ["public", "member"],
        "fieldVisibility": {"secret": ["member"]},
    }
    spec.update(overrides)
    return spec


async def started_service(
    store: InMemoryObjectStore | None = None,
    **materializer: Any,
) -> PortalService:
    """In-memory PortalService, started."""
    config = ServerConfig.for_testing()
    if materializer:
        config.materializer = MaterializerConfig(**materializer)
    service = PortalService(config, store=store or InMemoryObjectStore())
    await service.start()
    return service


async def seeded_service(**materializer: Any) -> PortalService:
    """Service with public+member keys, the Tool type and org `acme`.

    acme members hold the `member` key and may view and create tools.
    """
    service = await started_service(**materializer)
    await service.update_membership_keys([default_public_key(), MEMBER_KEY])
    await service.catalog_writer.create_entity_type(ADMIN, tool_type_spec())
    await add_org(service, "acme", membership_key="member", types=["tools01"])
    return service


async def add_org(
    service: PortalService,
    org_id: str,
    membership_key: str | None = None,
    types: list[str] | None = None,
) -> Organization:
    org = await service.catalog_writer.save_organization(
        ADMIN,
        Organization(id=org_id, name=org_id.title(), membership_key=membership_key),
    )
    if types:
        await service.catalog_writer.set_permissions(ADMIN, org_id, viewable=types, creatable=types)
    return org


async def publish(service: PortalService, entity_id: str, owner: ActorContext) -> None:
    """Drive an entity from draft to published."""
    await service.entities.transition(owner, entity_id, "submitForApproval")
    await service.entities.transition(ADMIN, entity_id, "approve")
