"""
Entity version store.

Every create, update and lifecycle action writes a new immutable version
record and rewrites the latest pointer; nothing is updated in place.

Write order for one version:
    1. Version record at the canonical scope of the new state
    2. Org entities: pointer copy in the org-private prefix
    3. Pointer at the canonical scope when it is a visibility scope (last)
    4. Stale pointer at the previous canonical scope is deleted
    5. Slug index, then materializer invalidation

Invariants:
    - Version numbers start at 1 and increase by exactly 1 per write
    - Version records are never rewritten or deleted
    - Only drafts accept content updates
    - The materializer runs after the primary write and never fails it

How to change safely:
    - Pointer write order is what PointerResolver relies on; change both
    - Keep permission checks ahead of any write
"""

from __future__ import annotations

import logging
from typing import Any

from ..access import ActorContext, project, viewer_key
from ..appconfig import AppConfigCache
from ..catalog import Catalog
from ..errors import (
    ForbiddenError,
    InvalidStatusError,
    InvalidTransitionError,
    NotFoundError,
    ValidationFailedError,
)
from ..lifecycle import (
    PRIVILEGED_ACTIONS,
    TransitionAction,
    TransitionResult,
    TransitionTable,
    parse_action,
)
from ..materialize import BundleMaterializer, EntityWritten
from ..objectstore import ObjectStore, SafeReader, write_json
from ..schema import EntityType, SchemaValidator
from .paths import (
    candidate_scopes,
    canonical_scope,
    entity_latest_path,
    entity_prefix,
    entity_version_path,
    parse_version_number,
)
from .resolver import PointerResolver, ResolvedPointer
from .stubs import SlugIndex, StubIndex
from .types import (
    Entity,
    EntityLatestPointer,
    EntityStatus,
    EntityStub,
    SlugIndexEntry,
    Visibility,
    new_entity_id,
    slugify,
    utc_now,
)

logger = logging.getLogger(__name__)

_ACTOR_ORG = object()

_UPDATABLE = frozenset({"data", "name", "slug", "visibility"})


def _claims_slug(entity: Entity | None) -> bool:
    return (
        entity is not None
        and entity.visibility == Visibility.PUBLIC
        and entity.status != EntityStatus.DELETED
    )


def _coerce_visibility(value: Visibility | str, org_id: str | None) -> Visibility:
    visibility = Visibility(value)
    # Global entities have no member audience
    if org_id is None and visibility == Visibility.MEMBERS:
        return Visibility.AUTHENTICATED
    return visibility


class EntityStore:
    """Creates, updates, reads and transitions entities.

    Example:
        >>> entities = EntityStore(store, catalog, stubs, slugs, resolver, config_cache)
        >>> tool = await entities.create_entity(actor, "tools01", {"url": "..."}, name="Hammer")
        >>> result = await entities.transition(actor, tool.id, "submitForApproval")
        >>> result.to_status
        <EntityStatus.PENDING: 'pending'>
    """

    def __init__(
        self,
        store: ObjectStore,
        catalog: Catalog,
        stubs: StubIndex,
        slugs: SlugIndex,
        resolver: PointerResolver,
        config_cache: AppConfigCache,
        validator: SchemaValidator | None = None,
        transitions: TransitionTable | None = None,
        materializer: BundleMaterializer | None = None,
    ) -> None:
        self._store = store
        self._catalog = catalog
        self._stubs = stubs
        self._slugs = slugs
        self._resolver = resolver
        self._config_cache = config_cache
        self.validator = validator or SchemaValidator()
        self.transitions = transitions or TransitionTable()
        self.materializer = materializer

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    async def _write_version(self, entity: Entity, previous: Entity | None = None) -> None:
        org_id = entity.organization_id
        scope = canonical_scope(org_id, entity.status, entity.visibility)
        pointer = EntityLatestPointer.for_entity(entity).to_dict()

        await write_json(
            self._store,
            entity_version_path(scope, entity.id, entity.version, org_id),
            entity.to_dict(),
        )

        if org_id is not None:
            await write_json(
                self._store, entity_latest_path(Visibility.MEMBERS, entity.id, org_id), pointer
            )
        if scope != Visibility.MEMBERS:
            await write_json(self._store, entity_latest_path(scope, entity.id), pointer)

        if previous is not None:
            old_scope = canonical_scope(org_id, previous.status, previous.visibility)
            if old_scope != scope and old_scope != Visibility.MEMBERS:
                await self._store.delete(entity_latest_path(old_scope, entity.id))
                logger.debug(
                    "Removed stale pointer",
                    extra={"entity_id": entity.id, "scope": old_scope.value},
                )

    async def _sync_slug(
        self,
        entity_type: EntityType,
        previous: Entity | None,
        entity: Entity,
    ) -> None:
        org_id = entity.organization_id
        if _claims_slug(previous) and (not _claims_slug(entity) or previous.slug != entity.slug):
            await self._slugs.release(org_id, entity_type.slug, previous.slug, entity.id)
        if _claims_slug(entity):
            await self._slugs.claim(
                org_id,
                entity_type.slug,
                entity.slug,
                SlugIndexEntry(
                    entity_id=entity.id,
                    visibility=entity.visibility,
                    organization_id=org_id,
                    entity_type_id=entity.entity_type_id,
                    updated_at=entity.updated_at,
                ),
            )

    async def _check_slug(self, entity_type: EntityType, entity: Entity) -> None:
        if _claims_slug(entity):
            await self._slugs.check_available(
                entity.organization_id, entity_type.slug, entity.slug, entity.id
            )

    async def _materialize(self, previous: Entity | None, entity: Entity) -> None:
        if self.materializer is None:
            return
        before = previous.visibility if previous else entity.visibility
        await self.materializer.invalidate(
            EntityWritten(
                entity_id=entity.id,
                entity_type_id=entity.entity_type_id,
                organization_id=entity.organization_id,
                publication_changed=(
                    previous is not None
                    and (previous.status == EntityStatus.PUBLISHED)
                    != (entity.status == EntityStatus.PUBLISHED)
                ),
                publicly_reachable=(
                    before != Visibility.MEMBERS or entity.visibility != Visibility.MEMBERS
                ),
            )
        )

    async def _load(self, entity_id: str) -> tuple[EntityStub, ResolvedPointer, Entity]:
        stub = await self._stubs.get(entity_id)
        resolved = await self._resolver.require(entity_id, stub.organization_id)
        entity = await self._resolver.read_current(resolved)
        if entity is None:
            raise NotFoundError(
                f"Entity '{entity_id}' version {resolved.pointer.version} not found",
                resource_type="entity",
                resource_id=entity_id,
                stage="version",
            )
        return stub, resolved, entity

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _check_create_permission(
        self,
        actor: ActorContext,
        entity_type: EntityType,
        org_id: str | None,
    ) -> None:
        if actor.is_superadmin:
            return
        if org_id is None or not actor.owns(org_id):
            raise ForbiddenError(
                "Only superadmins can create entities outside their organization",
                actor=actor.user_id,
                required="superadmin",
            )
        permissions = await self._catalog.get_permissions(org_id)
        if entity_type.id not in permissions.creatable:
            raise ForbiddenError(
                f"Organization cannot create entities of type '{entity_type.id}'",
                actor=actor.user_id,
                required=f"creatable:{entity_type.id}",
            )

    async def create_entity(
        self,
        actor: ActorContext,
        entity_type_id: str,
        data: dict[str, Any],
        *,
        name: str,
        slug: str | None = None,
        visibility: Visibility | str | None = None,
        organization_id: Any = _ACTOR_ORG,
    ) -> Entity:
        """Create an entity as version 1 in draft status.

        organization_id defaults to the actor's organization; pass None
        (superadmins only) for a global entity.

        Raises:
            NotFoundError: If the type is missing or inactive
            ForbiddenError: If the actor may not create here
            ValidationFailedError: For invalid or missing field values
            ConflictError: If a public slug is taken
        """
        org_id = actor.organization_id if organization_id is _ACTOR_ORG else organization_id
        entity_type = await self._catalog.get_entity_type(entity_type_id)
        await self._check_create_permission(actor, entity_type, org_id)

        name = (name or "").strip()
        if not name:
            raise ValidationFailedError("Entity name is required", {"name": ["Required"]})

        validated = self.validator.validate_fields(data, entity_type)
        validated = {k: v for k, v in validated.items() if v is not None}
        self.validator.validate_required(validated, entity_type)

        now = utc_now()
        entity = Entity(
            id=new_entity_id(),
            entity_type_id=entity_type.id,
            organization_id=org_id,
            version=1,
            status=EntityStatus.DRAFT,
            visibility=_coerce_visibility(visibility or entity_type.default_visibility, org_id),
            name=name,
            slug=slugify(slug or name),
            data=validated,
            created_at=now,
            updated_at=now,
            created_by=actor.user_id,
            updated_by=actor.user_id,
        )
        await self._check_slug(entity_type, entity)

        await self._stubs.create(
            EntityStub(
                entity_id=entity.id,
                organization_id=org_id,
                entity_type_id=entity_type.id,
                created_at=now,
            )
        )
        try:
            await self._write_version(entity)
        except Exception:
            await self._stubs.delete(entity.id)
            raise
        await self._sync_slug(entity_type, None, entity)

        logger.info(
            "Entity created",
            extra={
                "entity_id": entity.id,
                "type_id": entity_type.id,
                "org_id": org_id,
                "visibility": entity.visibility.value,
                "actor": actor.user_id,
            },
        )
        await self._materialize(None, entity)
        return entity

    async def update_entity(
        self,
        actor: ActorContext,
        entity_id: str,
        patch: dict[str, Any],
    ) -> Entity:
        """Write version n+1 of a draft with the patch applied.

        patch may carry "data" (merged field by field, None clears a
        field), "name", "slug" and "visibility".

        Raises:
            NotFoundError: If the entity does not exist
            ForbiddenError: If the actor does not own the entity
            InvalidStatusError: If the entity is not a draft
            ValidationFailedError: For invalid values or unknown patch keys
            ConflictError: If a new public slug is taken
        """
        unknown = sorted(set(patch) - _UPDATABLE)
        if unknown:
            raise ValidationFailedError(
                "Unsupported update attributes",
                {k: ["Cannot be updated"] for k in unknown},
            )

        stub, _, current = await self._load(entity_id)
        if not actor.can_manage(stub.organization_id):
            raise ForbiddenError(
                "Only the owning organization can update this entity",
                actor=actor.user_id,
                required="owner",
            )
        if current.status != EntityStatus.DRAFT:
            raise InvalidStatusError(
                f"Only draft entities can be updated, entity is '{current.status.value}'",
                status=current.status.value,
                operation="update",
            )

        entity_type = await self._catalog.get_entity_type(current.entity_type_id, include_inactive=True)

        data = dict(current.data)
        for field_id, value in self.validator.validate_fields(patch.get("data") or {}, entity_type).items():
            if value is None:
                data.pop(field_id, None)
            else:
                data[field_id] = value
        self.validator.validate_required(data, entity_type)

        changes: dict[str, Any] = {
            "data": data,
            "updated_at": utc_now(),
            "updated_by": actor.user_id,
        }
        if "name" in patch:
            name = (patch["name"] or "").strip()
            if not name:
                raise ValidationFailedError("Entity name is required", {"name": ["Required"]})
            changes["name"] = name
        if patch.get("slug"):
            changes["slug"] = slugify(patch["slug"])
        if patch.get("visibility"):
            changes["visibility"] = _coerce_visibility(patch["visibility"], current.organization_id)

        updated = current.next_version(**changes)
        await self._check_slug(entity_type, updated)
        await self._write_version(updated, current)
        await self._sync_slug(entity_type, current, updated)

        logger.info(
            "Entity updated",
            extra={
                "entity_id": entity_id,
                "version": updated.version,
                "changed": sorted(patch),
                "actor": actor.user_id,
            },
        )
        await self._materialize(current, updated)
        return updated

    async def transition(
        self,
        actor: ActorContext,
        entity_id: str,
        action: TransitionAction | str,
        feedback: str | None = None,
    ) -> TransitionResult:
        """Apply a lifecycle action, writing version n+1.

        Raises:
            ValidationFailedError: For an unknown action name
            NotFoundError: If the entity does not exist
            ForbiddenError: approve/reject by a non-superadmin, any other
                action by someone outside the owning organization
            InvalidTransitionError: If the action is illegal from the
                current status
        """
        try:
            action = parse_action(action)
        except ValueError as e:
            raise ValidationFailedError(str(e), {"action": [str(e)]})

        stub, _, current = await self._load(entity_id)

        if action in PRIVILEGED_ACTIONS and not actor.is_superadmin:
            raise ForbiddenError(
                f"Only superadmins can {action.value} entities",
                actor=actor.user_id,
                required="superadmin",
            )
        if not actor.can_manage(stub.organization_id):
            raise ForbiddenError(
                f"Only the owning organization can {action.value} this entity",
                actor=actor.user_id,
                required="owner",
            )
        if not self.transitions.is_valid_transition(current.status, action):
            raise InvalidTransitionError(
                status=current.status.value,
                action=action.value,
                allowed_actions=[a.value for a in self.transitions.allowed_actions(current.status)],
            )

        now = utc_now()
        target = self.transitions.target_status(action)
        changes: dict[str, Any] = {"status": target, "updated_at": now, "updated_by": actor.user_id}
        if action in PRIVILEGED_ACTIONS:
            changes.update(
                approval_feedback=feedback,
                approval_action_at=now,
                approval_action_by=actor.user_id,
            )

        updated = current.next_version(**changes)
        entity_type = await self._catalog.get_entity_type(current.entity_type_id, include_inactive=True)
        await self._write_version(updated, current)
        await self._sync_slug(entity_type, current, updated)

        logger.info(
            "Entity transitioned",
            extra={
                "entity_id": entity_id,
                "action": action.value,
                "from_status": current.status.value,
                "to_status": target.value,
                "version": updated.version,
                "actor": actor.user_id,
            },
        )
        await self._materialize(current, updated)
        return TransitionResult(
            entity=updated,
            from_status=current.status,
            to_status=target,
            action=action,
            feedback=feedback,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def resolve_pointer(self, stub: EntityStub) -> ResolvedPointer:
        """Authoritative pointer for a stub.

        Raises:
            NotFoundError: stage "pointer"
        """
        return await self._resolver.require(stub.entity_id, stub.organization_id)

    async def get_entity(
        self,
        entity_id: str,
        version: int | None = None,
        actor: ActorContext | None = None,
    ) -> Entity:
        """Current or historical version of an entity.

        With an actor, callers outside the owning organization only see
        published entities they are allowed to reach.

        Raises:
            NotFoundError: With stage stub, pointer or version
            ForbiddenError: For another org's members-only entity, or an
                authenticated entity read anonymously
        """
        stub = await self._stubs.get(entity_id)
        resolved = await self.resolve_pointer(stub)
        if version is None:
            entity = await self._resolver.read_current(resolved)
        else:
            entity = await self._resolver.read_version(resolved, version)
        if entity is None:
            missing = version if version is not None else resolved.pointer.version
            raise NotFoundError(
                f"Entity '{entity_id}' version {missing} not found",
                resource_type="entity",
                resource_id=entity_id,
                stage="version",
            )

        if actor is not None and not actor.can_manage(stub.organization_id):
            if entity.status != EntityStatus.PUBLISHED:
                raise NotFoundError(
                    f"Entity '{entity_id}' not found",
                    resource_type="entity",
                    resource_id=entity_id,
                    stage="status",
                )
            if entity.visibility == Visibility.MEMBERS:
                raise ForbiddenError(
                    "Entity is only visible to its organization",
                    actor=actor.user_id,
                    required="member",
                )
            if entity.visibility == Visibility.AUTHENTICATED and not actor.is_authenticated:
                raise ForbiddenError(
                    "Entity requires authentication",
                    actor=actor.user_id,
                    required="authenticated",
                )
        return entity

    async def get_entity_for_viewer(
        self,
        entity_id: str,
        actor: ActorContext,
        membership_key: str | None = None,
    ) -> Entity:
        """get_entity() projected to what the viewer's membership key sees.

        Owners and superadmins get the full record. Without an explicit
        membership_key the key is derived from the actor.
        """
        entity = await self.get_entity(entity_id, actor=actor)
        if actor.can_manage(entity.organization_id):
            return entity

        config = await self._config_cache.load()
        if membership_key is None:
            organization = None
            if actor.organization_id:
                organization = await self._catalog.find_organization(actor.organization_id)
            membership_key = viewer_key(config, actor, organization)

        entity_type = await self._catalog.get_entity_type(entity.entity_type_id, include_inactive=True)
        return project(entity, entity_type, membership_key, config)

    async def list_versions(self, entity_id: str) -> list[int]:
        """Every version number written for an entity, ascending."""
        stub = await self._stubs.get(entity_id)
        resolved = await self.resolve_pointer(stub)

        reader = SafeReader(self._store)
        versions = {resolved.pointer.version}
        for scope in candidate_scopes(stub.organization_id):
            prefix = f"{entity_prefix(scope, stub.organization_id)}{entity_id}/"
            for key in await reader.list(prefix, lambda k: parse_version_number(k) is not None):
                versions.add(parse_version_number(key))
        return sorted(versions)
