"""
Authoritative latest-pointer resolution.

An entity's latest pointer can exist in two places at once: org entities
keep a copy in the org-private prefix, and once published with public or
authenticated visibility the canonical pointer lives under that
visibility scope. This module decides which one is current.

Resolution order:
    Global entity: authenticated scope, then public scope.
    Org entity: read the org-private copy. If it places the entity in a
        visibility scope (published, not members), read that scope's
        pointer and prefer it whenever it exists. If the org copy is
        missing, fall back to the visibility scopes.

Writers keep this sound by writing the visibility-scoped pointer last
when publishing and deleting it when an entity leaves publication.

Invariants:
    - resolve() returns None only when no pointer exists anywhere
    - ResolvedPointer.scope is where the pointer's version record lives,
      derived from the placement rule, not from where the pointer was read

How to change safely:
    - Bundle builds and entity reads share this resolver; change both
      write ordering and this order together
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import NotFoundError
from ..objectstore import ObjectStore, read_json
from .paths import (
    candidate_scopes,
    canonical_scope,
    entity_latest_path,
    entity_version_path,
    global_lookup_order,
    is_migrated,
)
from .types import Entity, EntityLatestPointer, Visibility

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedPointer:
    """The authoritative pointer of an entity and where it points.

    Attributes:
        entity_id: Entity id
        organization_id: Owner, None for global entities
        pointer: Authoritative latest pointer
        latest_key: Key the pointer was read from
        scope: Storage scope holding the current version record
    """

    entity_id: str
    organization_id: str | None
    pointer: EntityLatestPointer
    latest_key: str
    scope: Visibility

    @property
    def version_key(self) -> str:
        return entity_version_path(
            self.scope, self.entity_id, self.pointer.version, self.organization_id
        )


class PointerResolver:
    """Resolves latest pointers and reads version records."""

    def __init__(self, store: ObjectStore) -> None:
        self._store = store

    async def read_pointer(
        self,
        scope: Visibility,
        entity_id: str,
        org_id: str | None = None,
    ) -> tuple[str, EntityLatestPointer] | None:
        key = entity_latest_path(scope, entity_id, org_id if scope == Visibility.MEMBERS else None)
        raw = await read_json(self._store, key)
        if raw is None:
            return None
        return key, EntityLatestPointer.from_dict(raw)

    def _resolved(
        self,
        entity_id: str,
        org_id: str | None,
        key: str,
        pointer: EntityLatestPointer,
    ) -> ResolvedPointer:
        return ResolvedPointer(
            entity_id=entity_id,
            organization_id=org_id,
            pointer=pointer,
            latest_key=key,
            scope=canonical_scope(org_id, pointer.status, pointer.visibility),
        )

    async def resolve(self, entity_id: str, org_id: str | None) -> ResolvedPointer | None:
        """Authoritative pointer of an entity, None if it has none."""
        if org_id is None:
            for scope in global_lookup_order():
                found = await self.read_pointer(scope, entity_id)
                if found:
                    return self._resolved(entity_id, None, *found)
            return None

        org_copy = await self.read_pointer(Visibility.MEMBERS, entity_id, org_id)
        if org_copy is not None:
            key, pointer = org_copy
            if not is_migrated(org_id, pointer.status, pointer.visibility):
                return self._resolved(entity_id, org_id, key, pointer)

            scope = canonical_scope(org_id, pointer.status, pointer.visibility)
            published = await self.read_pointer(scope, entity_id)
            if published is None:
                logger.warning(
                    "Org pointer names a visibility scope with no pointer, using org copy",
                    extra={"entity_id": entity_id, "org_id": org_id, "scope": scope.value},
                )
                return self._resolved(entity_id, org_id, key, pointer)
            if published[1] != pointer:
                logger.debug(
                    "Org pointer copy is stale, using visibility-scoped pointer",
                    extra={"entity_id": entity_id, "org_id": org_id},
                )
            return self._resolved(entity_id, org_id, *published)

        for scope in global_lookup_order():
            found = await self.read_pointer(scope, entity_id)
            if found:
                return self._resolved(entity_id, org_id, *found)
        return None

    async def require(self, entity_id: str, org_id: str | None) -> ResolvedPointer:
        """resolve() that raises when the entity has no pointer.

        Raises:
            NotFoundError: stage "pointer"
        """
        resolved = await self.resolve(entity_id, org_id)
        if resolved is None:
            raise NotFoundError(
                f"Entity '{entity_id}' not found",
                resource_type="entity",
                resource_id=entity_id,
                stage="pointer",
            )
        return resolved

    async def read_current(self, resolved: ResolvedPointer) -> Entity | None:
        """Version record the pointer names, None if it is missing."""
        raw = await read_json(self._store, resolved.version_key)
        return Entity.from_dict(raw) if raw else None

    async def read_version(
        self,
        resolved: ResolvedPointer,
        version: int,
    ) -> Entity | None:
        """Any historical version, wherever the placement rule put it.

        Tries the current scope first, then every other scope the entity
        could have occupied.
        """
        if version == resolved.pointer.version:
            return await self.read_current(resolved)

        scopes = [resolved.scope] + [
            s for s in candidate_scopes(resolved.organization_id) if s != resolved.scope
        ]
        for scope in scopes:
            key = entity_version_path(scope, resolved.entity_id, version, resolved.organization_id)
            raw = await read_json(self._store, key)
            if raw is not None:
                return Entity.from_dict(raw)
        return None
