"""
Field visibility projection and membership key resolution.

A membership key sees a field when:
    (a) the field has a fieldVisibility entry that lists the key, or
    (b) the field has no fieldVisibility entry and the type's visibleTo
        lists the key

Keys present in entity data but not defined as fields count as fields
without a fieldVisibility entry.

Projection is used for on-demand reads by non-owning viewers and for every
global bundle. Owners, org bundles and admin bundles are not projected.

Invariants:
    - project() never mutates its input
    - Only `data` changes; every other attribute passes through
    - A key unknown to the config sees no fields

How to change safely:
    - Keep visible_field_ids() the single place the visibility rule lives
    - Bundle content depends on this; regenerate bundles after changes
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING

from ..appconfig import PUBLIC_KEY_ID
from ..store.types import Entity, Organization, Visibility
from .actor import ActorContext, Role

if TYPE_CHECKING:
    from ..appconfig import AppConfig, MembershipKeyDefinition
    from ..schema.types import EntityType

logger = logging.getLogger(__name__)


def visible_field_ids(entity_type: EntityType, key: str) -> set[str]:
    """Ids of the defined fields a membership key may see."""
    type_level = key in entity_type.visible_to
    visible = set()
    for f in entity_type.fields:
        allowed = entity_type.field_visibility.get(f.id)
        if allowed is not None:
            if key in allowed:
                visible.add(f.id)
        elif type_level:
            visible.add(f.id)
    return visible


def is_field_visible(entity_type: EntityType, field_id: str, key: str) -> bool:
    """Visibility rule for any data key, defined as a field or not."""
    allowed = entity_type.field_visibility.get(field_id)
    if allowed is not None:
        return key in allowed
    return key in entity_type.visible_to


def project(
    entity: Entity,
    entity_type: EntityType,
    key: str,
    config: AppConfig | None = None,
) -> Entity:
    """Copy of an entity with data restricted to what `key` may see."""
    if config is not None and config.key(key) is None:
        logger.warning(
            "Projecting for a membership key missing from config",
            extra={"key": key, "entity_id": entity.id},
        )
        return replace(entity, data={})

    data = {
        field_id: value
        for field_id, value in entity.data.items()
        if is_field_visible(entity_type, field_id, key)
    }
    return replace(entity, data=data)


def scopes_for_key(key: MembershipKeyDefinition) -> tuple[Visibility, ...]:
    """Entity visibilities a key's audience can reach."""
    if key.requires_auth:
        return (Visibility.PUBLIC, Visibility.AUTHENTICATED)
    return (Visibility.PUBLIC,)


def keys_for_membership(config: AppConfig, key_id: str) -> list[str]:
    """A key plus every key below it in the hierarchy, lowest first."""
    granted = config.key(key_id)
    if granted is None:
        return [PUBLIC_KEY_ID]
    return [k.id for k in config.sorted_keys() if k.order <= granted.order]


def keys_for_org(config: AppConfig, organization: Organization | None) -> list[str]:
    """Keys inherited by members of an organization.

    Uses Organization.membership_key; a value naming a legacy tier grants
    that tier's keys instead.
    """
    if organization is None or not organization.membership_key:
        return [PUBLIC_KEY_ID]

    key_id = organization.membership_key
    if config.key(key_id) is not None:
        return keys_for_membership(config, key_id)

    tier = config.tier(key_id)
    if tier is not None:
        granted = [k for k in tier.granted_keys if config.key(k) is not None]
        if granted:
            return keys_for_membership(config, highest_key(config, granted))

    logger.warning(
        "Organization references an unknown membership key",
        extra={"organization_id": organization.id, "key": key_id},
    )
    return [PUBLIC_KEY_ID]


def highest_key(config: AppConfig, key_ids: list[str]) -> str:
    """Highest-order key among key_ids, `public` if none is known."""
    known = [k for k in config.sorted_keys() if k.id in key_ids]
    return known[-1].id if known else PUBLIC_KEY_ID


def viewer_key(
    config: AppConfig,
    actor: ActorContext,
    organization: Organization | None = None,
) -> str:
    """Membership key whose view a caller receives.

    Superadmins get the top key, org users their org's highest key,
    signed-in users without an org the lowest key that requires auth,
    and anonymous callers `public`.
    """
    keys = config.sorted_keys()
    if actor.is_superadmin:
        return keys[-1].id if keys else PUBLIC_KEY_ID
    if actor.role in (Role.ORG_ADMIN, Role.ORG_MEMBER):
        return highest_key(config, keys_for_org(config, organization))
    if actor.is_authenticated:
        for k in keys:
            if k.requires_auth:
                return k.id
    return PUBLIC_KEY_ID
