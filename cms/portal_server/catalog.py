"""
Entity type, organization and permission records.

Catalog reads the records the entity store and the materializer depend
on; CatalogWriter performs superadmin edits and tells the materializer
what changed through typed events.

Records:
    public/entity-types/{type}/definition.json
    private/orgs/{org}/profile.json
    private/policies/organizations/{org}/entity-type-permissions.json

Invariants:
    - Entity type slugs are unique among active and inactive types
    - Deleting a type only sets isActive False
    - Every write emits exactly one materializer event after it is stored
    - Listings go through SafeReader and skip vanished records

How to change safely:
    - New record kinds need a materializer event
    - Keep writes superadmin-only; org users only read these records
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .access import ActorContext
from .errors import ConflictError, ForbiddenError, NotFoundError, ValidationFailedError
from .materialize.events import (
    EntityTypeWritten,
    OrgPermissionsWritten,
    OrgProfileWritten,
)
from .objectstore import ObjectStore, SafeReader, read_json, write_json
from .schema.types import EntityType, FieldDef, FieldSection
from .store.paths import (
    entity_type_path,
    entity_types_prefix,
    org_permissions_path,
    org_permissions_prefix,
    org_profile_path,
    orgs_prefix,
    parse_entity_type_id,
    parse_org_id,
)
from .store.types import (
    EntityTypePermissions,
    Organization,
    Visibility,
    new_entity_id,
    slugify,
    utc_now,
)

if TYPE_CHECKING:
    from .materialize.bundles import BundleMaterializer

logger = logging.getLogger(__name__)


class Catalog:
    """Reads entity types, organizations and permissions."""

    def __init__(self, store: ObjectStore) -> None:
        self._store = store

    async def find_entity_type(self, type_id: str) -> EntityType | None:
        raw = await read_json(self._store, entity_type_path(type_id))
        return EntityType.from_dict(raw) if raw else None

    async def get_entity_type(self, type_id: str, include_inactive: bool = False) -> EntityType:
        """Entity type by id.

        Raises:
            NotFoundError: If absent, or inactive unless include_inactive
        """
        entity_type = await self.find_entity_type(type_id)
        if entity_type is None or (not entity_type.is_active and not include_inactive):
            raise NotFoundError(
                f"Entity type '{type_id}' not found",
                resource_type="entity_type",
                resource_id=type_id,
                stage="entity_type",
            )
        return entity_type

    async def list_entity_types(self, include_inactive: bool = False) -> list[EntityType]:
        reader = SafeReader(self._store)
        found = await reader.scan(
            entity_types_prefix(), lambda k: parse_entity_type_id(k) is not None
        )
        types = [EntityType.from_dict(raw) for _, raw in found]
        if not include_inactive:
            types = [t for t in types if t.is_active]
        return types

    async def find_organization(self, org_id: str) -> Organization | None:
        raw = await read_json(self._store, org_profile_path(org_id))
        return Organization.from_dict(raw) if raw else None

    async def get_organization(self, org_id: str) -> Organization:
        """Organization by id.

        Raises:
            NotFoundError: If absent
        """
        org = await self.find_organization(org_id)
        if org is None:
            raise NotFoundError(
                f"Organization '{org_id}' not found",
                resource_type="organization",
                resource_id=org_id,
                stage="organization",
            )
        return org

    async def list_organizations(self, active_only: bool = True) -> list[Organization]:
        reader = SafeReader(self._store)
        found = await reader.scan(orgs_prefix(), lambda k: parse_org_id(k) is not None)
        orgs = [Organization.from_dict(raw) for _, raw in found]
        if active_only:
            orgs = [o for o in orgs if o.is_active]
        return orgs

    async def get_permissions(self, org_id: str) -> EntityTypePermissions:
        """Permissions of an organization; empty if never set."""
        raw = await read_json(self._store, org_permissions_path(org_id))
        if raw is None:
            return EntityTypePermissions(organization_id=org_id)
        return EntityTypePermissions.from_dict(raw)

    async def list_permissions(self) -> list[EntityTypePermissions]:
        reader = SafeReader(self._store)
        found = await reader.scan(
            org_permissions_prefix(), lambda k: k.endswith("/entity-type-permissions.json")
        )
        return [EntityTypePermissions.from_dict(raw) for _, raw in found]

    async def keys_in_use(self) -> set[str]:
        """Membership key ids referenced by any type or organization."""
        used: set[str] = set()
        for entity_type in await self.list_entity_types(include_inactive=True):
            used.update(entity_type.audience_keys())
        for org in await self.list_organizations(active_only=False):
            if org.membership_key:
                used.add(org.membership_key)
        return used


def _require_superadmin(actor: ActorContext, action: str) -> None:
    if not actor.is_superadmin:
        raise ForbiddenError(
            f"Only superadmins can {action}",
            actor=actor.user_id,
            required="superadmin",
        )


def _build_fields(raw_fields: list[dict[str, Any]]) -> tuple[FieldDef, ...]:
    fields = []
    seen: set[str] = set()
    for i, raw in enumerate(raw_fields):
        raw = dict(raw)
        raw.setdefault("id", slugify(raw.get("name", "")).replace("-", "_") or f"field_{i}")
        raw.setdefault("displayOrder", i)
        if raw["id"] in seen:
            raise ValidationFailedError(
                "Duplicate field id",
                field_errors={raw["id"]: [f"Field id '{raw['id']}' is defined twice"]},
            )
        seen.add(raw["id"])
        try:
            fields.append(FieldDef.from_dict(raw))
        except (KeyError, ValueError) as e:
            raise ValidationFailedError(
                "Invalid field definition",
                field_errors={raw["id"]: [f"Invalid field definition: {e}"]},
            )
    return tuple(fields)


def _build_sections(raw_sections: list[dict[str, Any]]) -> tuple[FieldSection, ...]:
    sections = []
    for i, raw in enumerate(raw_sections):
        raw = dict(raw)
        raw.setdefault("id", slugify(raw.get("name", "")) or f"section_{i}")
        raw.setdefault("displayOrder", i)
        sections.append(FieldSection.from_dict(raw))
    return tuple(sections)


def _check_field_visibility(entity_type: EntityType) -> None:
    unknown = [f for f in entity_type.field_visibility if entity_type.field(f) is None]
    if unknown:
        raise ValidationFailedError(
            "fieldVisibility references undefined fields",
            field_errors={f: [f"Field '{f}' is not defined in this entity type"] for f in unknown},
        )


class CatalogWriter:
    """Superadmin writes to the catalog, each followed by invalidation.

    Example:
        >>> writer = CatalogWriter(store, catalog, materializer)
        >>> tool = await writer.create_entity_type(admin, {"name": "Tool", ...})
        >>> await writer.set_permissions(admin, "org1", viewable=[tool.id], creatable=[tool.id])
    """

    def __init__(
        self,
        store: ObjectStore,
        catalog: Catalog,
        materializer: BundleMaterializer | None = None,
    ) -> None:
        self._store = store
        self.catalog = catalog
        self.materializer = materializer

    async def _emit(self, event: Any) -> None:
        if self.materializer is not None:
            await self.materializer.invalidate(event)

    async def _check_type_slug(self, slug: str, type_id: str | None = None) -> None:
        for existing in await self.catalog.list_entity_types(include_inactive=True):
            if existing.slug == slug and existing.id != type_id:
                raise ConflictError(
                    f"An entity type with slug '{slug}' already exists",
                    resource_type="entity_type",
                    key=slug,
                )

    async def create_entity_type(self, actor: ActorContext, spec: dict[str, Any]) -> EntityType:
        """Create an entity type from its wire representation.

        Raises:
            ForbiddenError: If the actor is not a superadmin
            ConflictError: If the slug is taken
            ValidationFailedError: For malformed fields or fieldVisibility
        """
        _require_superadmin(actor, "create entity types")

        name = (spec.get("name") or "").strip()
        if not name:
            raise ValidationFailedError("Entity type name is required", {"name": ["Required"]})

        slug = slugify(spec.get("slug") or spec.get("pluralName") or name)
        await self._check_type_slug(slug)

        now = utc_now()
        entity_type = EntityType(
            id=spec.get("id") or new_entity_id(),
            name=name,
            plural_name=spec.get("pluralName") or name,
            slug=slug,
            description=spec.get("description"),
            default_visibility=Visibility(spec.get("defaultVisibility", "public")),
            fields=_build_fields(spec.get("fields") or []),
            sections=_build_sections(spec.get("sections") or []),
            visible_to=tuple(spec.get("visibleTo") or ()),
            field_visibility={
                k: tuple(v) for k, v in (spec.get("fieldVisibility") or {}).items()
            },
            table_display_config=dict(spec.get("tableDisplayConfig") or {}),
            is_active=True,
            created_at=now,
            updated_at=now,
            created_by=actor.user_id,
            updated_by=actor.user_id,
        )
        _check_field_visibility(entity_type)

        if await self._store.head(entity_type_path(entity_type.id)):
            raise ConflictError(
                f"Entity type '{entity_type.id}' already exists",
                resource_type="entity_type",
                key=entity_type.id,
            )

        await write_json(self._store, entity_type_path(entity_type.id), entity_type.to_dict())
        logger.info(
            "Entity type created",
            extra={"type_id": entity_type.id, "slug": slug, "visible_to": list(entity_type.visible_to)},
        )
        await self._emit(EntityTypeWritten(entity_type_id=entity_type.id))
        return entity_type

    async def update_entity_type(
        self,
        actor: ActorContext,
        type_id: str,
        changes: dict[str, Any],
    ) -> EntityType:
        """Apply wire-format changes to an entity type.

        Raises:
            ForbiddenError: If the actor is not a superadmin
            NotFoundError: If the type does not exist
            ConflictError: If a new slug is taken
        """
        _require_superadmin(actor, "update entity types")
        current = await self.catalog.get_entity_type(type_id, include_inactive=True)

        updates: dict[str, Any] = {}
        if "name" in changes:
            updates["name"] = changes["name"].strip()
        if "pluralName" in changes:
            updates["plural_name"] = changes["pluralName"]
        if "slug" in changes:
            slug = slugify(changes["slug"])
            if slug != current.slug:
                await self._check_type_slug(slug, type_id)
            updates["slug"] = slug
        if "description" in changes:
            updates["description"] = changes["description"]
        if "defaultVisibility" in changes:
            updates["default_visibility"] = Visibility(changes["defaultVisibility"])
        if "fields" in changes:
            updates["fields"] = _build_fields(changes["fields"])
        if "sections" in changes:
            updates["sections"] = _build_sections(changes["sections"])
        if "visibleTo" in changes:
            updates["visible_to"] = tuple(changes["visibleTo"] or ())
        if "fieldVisibility" in changes:
            updates["field_visibility"] = {
                k: tuple(v) for k, v in (changes["fieldVisibility"] or {}).items()
            }
        if "tableDisplayConfig" in changes:
            updates["table_display_config"] = dict(changes["tableDisplayConfig"] or {})
        if "isActive" in changes:
            updates["is_active"] = bool(changes["isActive"])

        updated = current.with_changes(
            updated_at=utc_now(), updated_by=actor.user_id, **updates
        )
        _check_field_visibility(updated)

        await write_json(self._store, entity_type_path(type_id), updated.to_dict())
        logger.info(
            "Entity type updated",
            extra={"type_id": type_id, "changed": sorted(changes)},
        )
        await self._emit(
            EntityTypeWritten(
                entity_type_id=type_id,
                deactivated=current.is_active and not updated.is_active,
                previous_keys=tuple(current.audience_keys()),
            )
        )
        return updated

    async def deactivate_entity_type(self, actor: ActorContext, type_id: str) -> EntityType:
        """Soft-delete an entity type."""
        _require_superadmin(actor, "delete entity types")
        return await self.update_entity_type(actor, type_id, {"isActive": False})

    async def save_organization(self, actor: ActorContext, org: Organization) -> Organization:
        """Create or replace an organization profile."""
        _require_superadmin(actor, "manage organizations")
        existing = await self.catalog.find_organization(org.id)
        now = utc_now()
        if not org.created_at:
            org.created_at = existing.created_at if existing else now
        org.updated_at = now
        if not org.slug:
            org.slug = slugify(org.name)

        await write_json(self._store, org_profile_path(org.id), org.to_dict())
        logger.info(
            "Organization saved",
            extra={"organization_id": org.id, "membership_key": org.membership_key},
        )
        await self._emit(OrgProfileWritten(organization_id=org.id))
        return org

    async def set_permissions(
        self,
        actor: ActorContext,
        org_id: str,
        viewable: list[str],
        creatable: list[str],
    ) -> EntityTypePermissions:
        """Replace which types an organization may view and create.

        Creatable types are always viewable.

        Raises:
            ForbiddenError: If the actor is not a superadmin
            NotFoundError: If the organization does not exist
        """
        _require_superadmin(actor, "change organization permissions")
        await self.catalog.get_organization(org_id)
        previous = await self.catalog.get_permissions(org_id)

        viewable = list(dict.fromkeys(list(viewable) + list(creatable)))
        permissions = EntityTypePermissions(
            organization_id=org_id,
            viewable=viewable,
            creatable=list(dict.fromkeys(creatable)),
            updated_at=utc_now(),
            updated_by=actor.user_id,
        )
        await write_json(self._store, org_permissions_path(org_id), permissions.to_dict())
        logger.info(
            "Organization permissions updated",
            extra={"organization_id": org_id, "viewable": viewable, "creatable": permissions.creatable},
        )
        await self._emit(
            OrgPermissionsWritten(
                organization_id=org_id,
                viewable=tuple(viewable),
                previous_viewable=tuple(previous.viewable),
            )
        )
        return permissions
