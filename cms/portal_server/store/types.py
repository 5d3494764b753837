"""
Persisted record types for the entity store.

Every record here is stored as a JSON document; `to_dict()` produces the
camelCase wire shape clients and older deployments read, and `from_dict()`
accepts it back.

Records:
- Entity: one immutable version of an entity
- EntityLatestPointer: mutable pointer naming the current version
- EntityStub: reverse index record (entity id -> org, type)
- SlugIndexEntry: slug uniqueness record for public entities
- Organization / EntityTypePermissions: tenant records read by the
  materializer and permission checks

Invariants:
    - Entity versions are never rewritten once stored
    - Stubs are written once and never modified
    - Timestamps are ISO-8601 UTC strings
    - organization_id None means a global (platform-owned) entity

How to change safely:
    - Add optional fields with defaults; old JSON must still load
    - Never rename a wire key, bundles are cached by clients
"""

from __future__ import annotations

import re
import secrets
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

ENTITY_ID_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
ENTITY_ID_LENGTH = 7
SLUG_MAX_LENGTH = 100

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_entity_id() -> str:
    """Allocate a short random entity id."""
    return "".join(secrets.choice(ENTITY_ID_ALPHABET) for _ in range(ENTITY_ID_LENGTH))


def slugify(text: str) -> str:
    """URL slug from free text: lowercase, dash separated, at most 100 chars."""
    slug = _SLUG_STRIP.sub("-", text.strip().lower()).strip("-")
    return slug[:SLUG_MAX_LENGTH]


class EntityStatus(Enum):
    """Entity lifecycle states."""

    DRAFT = "draft"
    PENDING = "pending"
    PUBLISHED = "published"
    ARCHIVED = "archived"
    DELETED = "deleted"


class Visibility(Enum):
    """Audience scope of an entity, also used as a storage scope.

    As a storage scope MEMBERS means the owning organization's private
    prefix.
    """

    PUBLIC = "public"
    AUTHENTICATED = "authenticated"
    MEMBERS = "members"


NON_PUBLISHED_STATUSES = (
    EntityStatus.DRAFT,
    EntityStatus.PENDING,
    EntityStatus.ARCHIVED,
    EntityStatus.DELETED,
)


@dataclass
class Entity:
    """One version of an entity.

    Attributes:
        id: Entity id (stable across versions)
        entity_type_id: Type of the entity
        organization_id: Owning organization, None for global entities
        version: Version number, starting at 1
        status: Lifecycle status at this version
        visibility: Audience scope
        name: Display name
        slug: URL slug
        data: Type-defined dynamic field values
    """

    id: str
    entity_type_id: str
    organization_id: str | None
    version: int
    status: EntityStatus
    visibility: Visibility
    name: str
    slug: str
    data: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""
    updated_at: str = ""
    created_by: str = ""
    updated_by: str = ""
    approval_feedback: str | None = None
    approval_action_at: str | None = None
    approval_action_by: str | None = None

    @property
    def is_global(self) -> bool:
        return self.organization_id is None

    def next_version(self, **changes: Any) -> Entity:
        """Copy of this entity as version n+1 with the given changes applied."""
        return replace(self, version=self.version + 1, data=dict(self.data), **changes)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "entityTypeId": self.entity_type_id,
            "organizationId": self.organization_id,
            "version": self.version,
            "status": self.status.value,
            "visibility": self.visibility.value,
            "name": self.name,
            "slug": self.slug,
            "data": self.data,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "createdBy": self.created_by,
            "updatedBy": self.updated_by,
        }
        if self.approval_action_at is not None:
            result["approvalFeedback"] = self.approval_feedback
            result["approvalActionAt"] = self.approval_action_at
            result["approvalActionBy"] = self.approval_action_by
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Entity:
        return cls(
            id=data["id"],
            entity_type_id=data["entityTypeId"],
            organization_id=data.get("organizationId"),
            version=int(data["version"]),
            status=EntityStatus(data["status"]),
            visibility=Visibility(data["visibility"]),
            name=data.get("name", ""),
            slug=data.get("slug", ""),
            data=dict(data.get("data") or {}),
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt", ""),
            created_by=data.get("createdBy", ""),
            updated_by=data.get("updatedBy", ""),
            approval_feedback=data.get("approvalFeedback"),
            approval_action_at=data.get("approvalActionAt"),
            approval_action_by=data.get("approvalActionBy"),
        )


@dataclass(frozen=True)
class EntityLatestPointer:
    """Mutable pointer to an entity's current version.

    Attributes:
        version: Highest version written
        status: Status at that version
        visibility: Visibility at that version
        updated_at: When the pointer was last written
    """

    version: int
    status: EntityStatus
    visibility: Visibility
    updated_at: str

    @classmethod
    def for_entity(cls, entity: Entity) -> EntityLatestPointer:
        return cls(
            version=entity.version,
            status=entity.status,
            visibility=entity.visibility,
            updated_at=entity.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "status": self.status.value,
            "visibility": self.visibility.value,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EntityLatestPointer:
        return cls(
            version=int(data["version"]),
            status=EntityStatus(data["status"]),
            visibility=Visibility(data["visibility"]),
            updated_at=data.get("updatedAt", ""),
        )


@dataclass(frozen=True)
class EntityStub:
    """Reverse index record, one per entity."""

    entity_id: str
    organization_id: str | None
    entity_type_id: str
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "entityId": self.entity_id,
            "organizationId": self.organization_id,
            "entityTypeId": self.entity_type_id,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EntityStub:
        return cls(
            entity_id=data["entityId"],
            organization_id=data.get("organizationId"),
            entity_type_id=data["entityTypeId"],
            created_at=data.get("createdAt", ""),
        )


@dataclass(frozen=True)
class SlugIndexEntry:
    """Owner of a slug within an (organization, entity type) scope."""

    entity_id: str
    visibility: Visibility
    organization_id: str | None
    entity_type_id: str
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "entityId": self.entity_id,
            "visibility": self.visibility.value,
            "organizationId": self.organization_id,
            "entityTypeId": self.entity_type_id,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SlugIndexEntry:
        return cls(
            entity_id=data["entityId"],
            visibility=Visibility(data.get("visibility", "public")),
            organization_id=data.get("organizationId"),
            entity_type_id=data["entityTypeId"],
            updated_at=data.get("updatedAt", ""),
        )


@dataclass
class Organization:
    """Tenant profile.

    Attributes:
        id: Organization id
        name: Display name
        slug: URL slug
        membership_key: Key id granted to members (inherits lower keys)
        is_active: Inactive organizations are skipped by bundle builds
    """

    id: str
    name: str
    slug: str = ""
    membership_key: str | None = None
    is_active: bool = True
    created_at: str = ""
    updated_at: str = ""
    profile: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "slug": self.slug or slugify(self.name),
            "isActive": self.is_active,
            "profile": self.profile,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        if self.membership_key:
            result["membershipKey"] = self.membership_key
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Organization:
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            slug=data.get("slug", ""),
            membership_key=data.get("membershipKey"),
            is_active=data.get("isActive", True),
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt", ""),
            profile=dict(data.get("profile") or {}),
        )


@dataclass
class EntityTypePermissions:
    """Which entity types an organization may view and create."""

    organization_id: str
    viewable: list[str] = field(default_factory=list)
    creatable: list[str] = field(default_factory=list)
    updated_at: str = ""
    updated_by: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "organizationId": self.organization_id,
            "viewable": list(self.viewable),
            "creatable": list(self.creatable),
            "updatedAt": self.updated_at,
            "updatedBy": self.updated_by,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EntityTypePermissions:
        return cls(
            organization_id=data["organizationId"],
            viewable=list(data.get("viewable") or []),
            creatable=list(data.get("creatable") or []),
            updated_at=data.get("updatedAt", ""),
            updated_by=data.get("updatedBy", ""),
        )
