"""
Bundle and manifest documents, plus regeneration reporting.

Bundles and manifests are what clients download and cache. Their JSON
shape is a compatibility surface: clients compare `generatedAt` (bundles)
and `version` (manifests) to decide whether to refetch.

Invariants:
    - Bundles carry no version counter; freshness is generatedAt
    - Manifest versions strictly increase per manifest path
    - Bundle entities are sorted by (name, id) so rebuilds are stable
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..store.types import Entity


@dataclass(frozen=True)
class BundleEntity:
    """Minimal entity view stored in a bundle."""

    id: str
    status: str
    name: str
    slug: str
    data: dict[str, Any]
    updated_at: str

    @classmethod
    def from_entity(cls, entity: Entity) -> BundleEntity:
        return cls(
            id=entity.id,
            status=entity.status.value,
            name=entity.name,
            slug=entity.slug,
            data=dict(entity.data),
            updated_at=entity.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status,
            "name": self.name,
            "slug": self.slug,
            "data": self.data,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BundleEntity:
        return cls(
            id=data["id"],
            status=data["status"],
            name=data.get("name", ""),
            slug=data.get("slug", ""),
            data=dict(data.get("data") or {}),
            updated_at=data.get("updatedAt", ""),
        )


@dataclass
class EntityBundle:
    """All entities of one type visible to one audience."""

    type_id: str
    type_name: str
    generated_at: str
    entities: list[BundleEntity] = field(default_factory=list)

    @property
    def entity_count(self) -> int:
        return len(self.entities)

    def entity_ids(self) -> list[str]:
        return [e.id for e in self.entities]

    def to_dict(self) -> dict[str, Any]:
        return {
            "typeId": self.type_id,
            "typeName": self.type_name,
            "generatedAt": self.generated_at,
            "entityCount": self.entity_count,
            "entities": [e.to_dict() for e in self.entities],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EntityBundle:
        return cls(
            type_id=data["typeId"],
            type_name=data.get("typeName", ""),
            generated_at=data.get("generatedAt", ""),
            entities=[BundleEntity.from_dict(e) for e in data.get("entities") or []],
        )


@dataclass(frozen=True)
class ManifestEntityType:
    """Manifest entry for one visible type."""

    id: str
    name: str
    plural_name: str
    slug: str
    description: str | None
    entity_count: int
    last_updated: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "pluralName": self.plural_name,
            "slug": self.slug,
            "description": self.description,
            "entityCount": self.entity_count,
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ManifestEntityType:
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            plural_name=data.get("pluralName", ""),
            slug=data.get("slug", ""),
            description=data.get("description"),
            entity_count=int(data.get("entityCount", 0)),
            last_updated=data.get("lastUpdated", ""),
        )


@dataclass
class SiteManifest:
    """Directory of the types visible to one audience."""

    generated_at: str
    version: int
    entity_types: list[ManifestEntityType] = field(default_factory=list)
    config: dict[str, Any] | None = None

    def type_ids(self) -> list[str]:
        return [t.id for t in self.entity_types]

    def entry(self, type_id: str) -> ManifestEntityType | None:
        for t in self.entity_types:
            if t.id == type_id:
                return t
        return None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "generatedAt": self.generated_at,
            "version": self.version,
            "entityTypes": [t.to_dict() for t in self.entity_types],
        }
        if self.config is not None:
            result["config"] = self.config
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SiteManifest:
        return cls(
            generated_at=data.get("generatedAt", ""),
            version=int(data.get("version", 0)),
            entity_types=[ManifestEntityType.from_dict(t) for t in data.get("entityTypes") or []],
            config=data.get("config"),
        )


@dataclass
class RegenerationReport:
    """Outcome of a materialization run.

    Each unit of work (one key's bundles, one org's bundles, one manifest)
    either counts as a success or records an error; a failed unit never
    stops the others.
    """

    success_count: int = 0
    error_count: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)
    types_processed: int = 0
    types_skipped: int = 0
    types_updated: int = 0
    organizations_processed: int = 0
    scheduled: bool = False

    def record_success(self) -> None:
        self.success_count += 1

    def record_error(self, unit: str, error: Exception) -> None:
        self.error_count += 1
        self.errors.append({"unit": unit, "error": str(error)})

    def merge(self, other: RegenerationReport) -> None:
        self.success_count += other.success_count
        self.error_count += other.error_count
        self.errors.extend(other.errors)
        self.types_processed += other.types_processed
        self.types_skipped += other.types_skipped
        self.types_updated += other.types_updated
        self.organizations_processed += other.organizations_processed

    @property
    def ok(self) -> bool:
        return self.error_count == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "successCount": self.success_count,
            "errorCount": self.error_count,
            "errors": list(self.errors),
            "typesProcessed": self.types_processed,
            "typesSkipped": self.types_skipped,
            "typesUpdated": self.types_updated,
            "organizationsProcessed": self.organizations_processed,
            "scheduled": self.scheduled,
        }


@dataclass(frozen=True)
class BundleInfo:
    """Inventory entry for an expected bundle."""

    path: str
    kind: str  # global, global-admin, org-member, org-admin
    type_id: str
    key_id: str | None = None
    organization_id: str | None = None
    exists: bool = False
    entity_count: int = 0
    generated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "kind": self.kind,
            "typeId": self.type_id,
            "keyId": self.key_id,
            "organizationId": self.organization_id,
            "exists": self.exists,
            "entityCount": self.entity_count,
            "generatedAt": self.generated_at,
        }
