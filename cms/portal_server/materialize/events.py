"""
Typed change events consumed by the bundle materializer.

Write paths describe what they changed with one of these events instead
of the materializer inferring it from storage keys.

Invariants:
    - Events are emitted only after the primary write is stored
    - Events carry ids, never payloads; the materializer re-reads state
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class EntityWritten:
    """An entity version and pointer were written.

    Attributes:
        entity_id: Entity id
        entity_type_id: Entity type
        organization_id: Owner, None for global entities
        publication_changed: The write entered or left `published`
        publicly_reachable: Before or after the write the entity had
            public or authenticated visibility, so it may appear in a
            global (member or admin) bundle
    """

    entity_id: str
    entity_type_id: str
    organization_id: str | None
    publication_changed: bool = False
    publicly_reachable: bool = False


@dataclass(frozen=True)
class EntityTypeWritten:
    """An entity type definition was created, updated or deactivated.

    previous_keys lets the materializer clean up bundles of keys that
    lost access. deactivated removes the type's org bundle files.
    """

    entity_type_id: str
    deactivated: bool = False
    previous_keys: tuple[str, ...] = ()


@dataclass(frozen=True)
class OrgProfileWritten:
    """An organization profile was written."""

    organization_id: str


@dataclass(frozen=True)
class OrgPermissionsWritten:
    """An organization's viewable/creatable type lists changed."""

    organization_id: str
    viewable: tuple[str, ...] = ()
    previous_viewable: tuple[str, ...] = ()


@dataclass(frozen=True)
class MembershipKeysWritten:
    """The membership key catalog changed."""

    removed_keys: tuple[str, ...] = ()


MaterializerEvent = Union[
    EntityWritten,
    EntityTypeWritten,
    OrgProfileWritten,
    OrgPermissionsWritten,
    MembershipKeysWritten,
]
