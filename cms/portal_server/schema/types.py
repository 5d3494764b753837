"""
Entity type schema definitions.

An entity type is the schema and visibility policy for a class of
entities:
- FieldDef: one dynamic field (id, kind, section, constraints)
- FieldSection: form grouping for fields
- EntityType: fields, sections, default visibility and the membership
  key audience (visibleTo / fieldVisibility)

Entity `data` is an open map keyed by field id; values are checked by the
validator registry in validators.py, not by these classes.

Invariants:
    - Field ids are unique within a type and never reused
    - fieldVisibility keys refer to defined field ids
    - Types are soft-deleted (is_active False), never removed

How to change safely:
    - Add a FieldKind together with a validator registration
    - New constraint names go into FieldDef.constraints, not new attributes
    - Keep camelCase wire names in to_dict/from_dict

Example:
    >>> Tool = EntityType(
    ...     id="t00ls01",
    ...     name="Tool",
    ...     plural_name="Tools",
    ...     slug="tools",
    ...     fields=(FieldDef(id="summary", name="Summary", kind=FieldKind.TEXT),),
    ...     visible_to=("public",),
    ... )
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from dataclasses import field as dataclass_field
from enum import Enum
from typing import Any

from ..store.types import Visibility


class FieldKind(Enum):
    """Supported dynamic field types."""

    STRING = "string"
    TEXT = "text"
    MARKDOWN = "markdown"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    SELECT = "select"
    MULTISELECT = "multiselect"
    LINK = "link"  # Reference to other entity ids
    WEBLINK = "weblink"  # External URL, optionally with an alias
    IMAGE = "image"
    LOGO = "logo"
    FILE = "file"
    COUNTRY = "country"


@dataclass(frozen=True)
class FieldDef:
    """Definition of a single dynamic field.

    Attributes:
        id: Field id, the key in entity data
        name: Display label, used in validation messages
        kind: Field type
        required: Whether a value must be present
        section_id: Section the field is displayed in
        display_order: Order within the section
        constraints: Type-specific constraints (minLength, maxLength,
            minValue, maxValue, options, allowMultiple, requireHttps,
            pattern, patternMessage)
        description: Help text
        show_in_table: Whether list views show this field
        default: Default value for new entities
    """

    id: str
    name: str
    kind: FieldKind
    required: bool = False
    section_id: str = "main"
    display_order: int = 0
    constraints: dict[str, Any] = dataclass_field(default_factory=dict)
    description: str | None = None
    show_in_table: bool = False
    default: Any = None

    def option_values(self) -> list[str] | None:
        """Allowed values for select/multiselect, None if unconstrained."""
        options = self.constraints.get("options")
        if options is None:
            return None
        return [o["value"] if isinstance(o, dict) else o for o in options]

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "type": self.kind.value,
            "required": self.required,
            "sectionId": self.section_id,
            "displayOrder": self.display_order,
            "showInTable": self.show_in_table,
        }
        if self.constraints:
            result["constraints"] = dict(self.constraints)
        if self.description:
            result["description"] = self.description
        if self.default is not None:
            result["defaultValue"] = self.default
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldDef:
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            kind=FieldKind(data["type"]),
            required=bool(data.get("required", False)),
            section_id=data.get("sectionId", "main"),
            display_order=int(data.get("displayOrder", 0)),
            constraints=dict(data.get("constraints") or {}),
            description=data.get("description"),
            show_in_table=bool(data.get("showInTable", False)),
            default=data.get("defaultValue"),
        )


@dataclass(frozen=True)
class FieldSection:
    """Form section grouping fields."""

    id: str
    name: str
    display_order: int = 0
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "displayOrder": self.display_order,
        }
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldSection:
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            display_order=int(data.get("displayOrder", 0)),
            description=data.get("description"),
        )


@dataclass(frozen=True)
class EntityType:
    """Schema and audience policy of a class of entities.

    Attributes:
        id: Type id
        name: Singular display name
        plural_name: Plural display name, used as the bundle typeName
        slug: URL slug, unique among types
        fields: Field definitions
        sections: Field sections
        default_visibility: Visibility given to new entities
        visible_to: Membership keys that see published entities (and every
            field without its own fieldVisibility entry)
        field_visibility: Per-field membership key lists; overrides
            visible_to for the listed fields
        is_active: False once the type is deleted
    """

    id: str
    name: str
    plural_name: str = ""
    slug: str = ""
    description: str | None = None
    default_visibility: Visibility = Visibility.PUBLIC
    fields: tuple[FieldDef, ...] = ()
    sections: tuple[FieldSection, ...] = ()
    visible_to: tuple[str, ...] = ()
    field_visibility: dict[str, tuple[str, ...]] = dataclass_field(default_factory=dict)
    is_active: bool = True
    table_display_config: dict[str, Any] = dataclass_field(default_factory=dict)
    created_at: str = ""
    updated_at: str = ""
    created_by: str = ""
    updated_by: str = ""

    def field(self, field_id: str) -> FieldDef | None:
        """Field definition by id."""
        for f in self.fields:
            if f.id == field_id:
                return f
        return None

    def field_ids(self) -> list[str]:
        return [f.id for f in self.fields]

    def audience_keys(self) -> list[str]:
        """Membership keys that can see any part of this type.

        visible_to first, then every key that only appears in
        field_visibility, in first-seen order.
        """
        keys = list(dict.fromkeys(self.visible_to))
        for field_keys in self.field_visibility.values():
            for key in field_keys:
                if key not in keys:
                    keys.append(key)
        return keys

    def with_changes(self, **changes: Any) -> EntityType:
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "pluralName": self.plural_name or self.name,
            "slug": self.slug,
            "description": self.description,
            "defaultVisibility": self.default_visibility.value,
            "fields": [f.to_dict() for f in self.fields],
            "sections": [s.to_dict() for s in self.sections],
            "visibleTo": list(self.visible_to),
            "fieldVisibility": {k: list(v) for k, v in self.field_visibility.items()},
            "tableDisplayConfig": dict(self.table_display_config),
            "isActive": self.is_active,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "createdBy": self.created_by,
            "updatedBy": self.updated_by,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EntityType:
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            plural_name=data.get("pluralName") or data.get("name", ""),
            slug=data.get("slug", ""),
            description=data.get("description"),
            default_visibility=Visibility(data.get("defaultVisibility", "public")),
            fields=tuple(FieldDef.from_dict(f) for f in data.get("fields") or []),
            sections=tuple(FieldSection.from_dict(s) for s in data.get("sections") or []),
            visible_to=tuple(data.get("visibleTo") or ()),
            field_visibility={
                k: tuple(v) for k, v in (data.get("fieldVisibility") or {}).items()
            },
            is_active=data.get("isActive", True),
            table_display_config=dict(data.get("tableDisplayConfig") or {}),
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt", ""),
            created_by=data.get("createdBy", ""),
            updated_by=data.get("updatedBy", ""),
        )
