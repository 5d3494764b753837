"""
Storage key scheme and entity placement rule.

Pure functions mapping identifiers to object store keys. No I/O.

Layout:
    public/entities/{id}/v{n}.json                  public scope
    platform/entities/{id}/v{n}.json                authenticated scope
    private/orgs/{org}/entities/{id}/v{n}.json      org-private scope
    .../entities/{id}/latest.json                   latest pointer
    stubs/{id}.json                                 stub
    stubs/slug-index/{org|global}-{type}-{slug}.json
    public/entity-types/{type}/definition.json
    private/orgs/{org}/profile.json
    private/policies/organizations/{org}/entity-type-permissions.json
    config/app.json
    bundles/{key}/{type}.json, bundles/{key}/site.json
    bundles/{key}/admin/{type}.json
    bundles/org/{org}/{member|admin}/{type}.json, .../site.json

Placement rule:
    - Global entity: always under its visibility scope (public or
      authenticated); members is not a valid global visibility
    - Org entity: org-private while draft/pending or while visibility is
      members; once published with public/authenticated visibility the
      canonical version and pointer move to that visibility scope and a
      copy of the pointer stays in the org-private scope
    - Archived/deleted org entities live in the org-private scope again

Invariants:
    - Functions here are pure and total for valid input
    - Draft and pending entities never map outside the org-private scope

How to change safely:
    - Keys are persisted; changing a format strands existing data
    - Keep canonical_scope() the single source of the placement rule
"""

from __future__ import annotations

import re

from .types import EntityStatus, Visibility

PUBLIC_PREFIX = "public/"
PLATFORM_PREFIX = "platform/"
PRIVATE_PREFIX = "private/"
STUBS_PREFIX = "stubs/"
SLUG_INDEX_PREFIX = "stubs/slug-index/"
CONFIG_PREFIX = "config/"
BUNDLES_PREFIX = "bundles/"

ORG_BUNDLE_SEGMENT = "org"
ADMIN_BUNDLE_SEGMENT = "admin"
MEMBER_ROLE = "member"
ADMIN_ROLE = "admin"
ORG_BUNDLE_ROLES = (MEMBER_ROLE, ADMIN_ROLE)
MANIFEST_FILENAME = "site.json"

_LATEST_KEY = re.compile(r"entities/([^/]+)/latest\.json$")
_VERSION_KEY = re.compile(r"entities/[^/]+/v(\d+)\.json$")
_STUB_KEY = re.compile(r"^stubs/([^/]+)\.json$")
_TYPE_KEY = re.compile(r"entity-types/([^/]+)/definition\.json$")
_ORG_PROFILE_KEY = re.compile(r"^private/orgs/([^/]+)/profile\.json$")


def scope_prefix(scope: Visibility, org_id: str | None = None) -> str:
    """Root prefix of a storage scope."""
    if scope == Visibility.PUBLIC:
        return PUBLIC_PREFIX
    if scope == Visibility.AUTHENTICATED:
        return PLATFORM_PREFIX
    if not org_id:
        raise ValueError("The members scope requires an organization id")
    return f"{PRIVATE_PREFIX}orgs/{org_id}/"


def entity_prefix(scope: Visibility, org_id: str | None = None) -> str:
    """Directory holding every entity of a scope."""
    return f"{scope_prefix(scope, org_id)}entities/"


def entity_version_path(
    scope: Visibility,
    entity_id: str,
    version: int,
    org_id: str | None = None,
) -> str:
    return f"{entity_prefix(scope, org_id)}{entity_id}/v{version}.json"


def entity_latest_path(
    scope: Visibility,
    entity_id: str,
    org_id: str | None = None,
) -> str:
    return f"{entity_prefix(scope, org_id)}{entity_id}/latest.json"


def entity_stub_path(entity_id: str) -> str:
    return f"{STUBS_PREFIX}{entity_id}.json"


def slug_index_path(org_id: str | None, type_slug: str, entity_slug: str) -> str:
    owner = org_id or "global"
    return f"{SLUG_INDEX_PREFIX}{owner}-{type_slug}-{entity_slug}.json"


def entity_types_prefix() -> str:
    return f"{PUBLIC_PREFIX}entity-types/"


def entity_type_path(type_id: str) -> str:
    return f"{entity_types_prefix()}{type_id}/definition.json"


def orgs_prefix() -> str:
    return f"{PRIVATE_PREFIX}orgs/"


def org_profile_path(org_id: str) -> str:
    return f"{orgs_prefix()}{org_id}/profile.json"


def org_permissions_prefix() -> str:
    return f"{PRIVATE_PREFIX}policies/organizations/"


def org_permissions_path(org_id: str) -> str:
    return f"{org_permissions_prefix()}{org_id}/entity-type-permissions.json"


def app_config_path() -> str:
    return f"{CONFIG_PREFIX}app.json"


def global_bundle_path(key_id: str, type_id: str) -> str:
    return f"{BUNDLES_PREFIX}{key_id}/{type_id}.json"


def global_admin_bundle_path(key_id: str, type_id: str) -> str:
    return f"{BUNDLES_PREFIX}{key_id}/{ADMIN_BUNDLE_SEGMENT}/{type_id}.json"


def global_manifest_path(key_id: str) -> str:
    return f"{BUNDLES_PREFIX}{key_id}/{MANIFEST_FILENAME}"


def org_bundle_path(org_id: str, role: str, type_id: str) -> str:
    return f"{BUNDLES_PREFIX}{ORG_BUNDLE_SEGMENT}/{org_id}/{role}/{type_id}.json"


def org_manifest_path(org_id: str, role: str) -> str:
    return f"{BUNDLES_PREFIX}{ORG_BUNDLE_SEGMENT}/{org_id}/{role}/{MANIFEST_FILENAME}"


def parse_entity_id(key: str) -> str | None:
    """Entity id of a latest-pointer key, None for any other key."""
    match = _LATEST_KEY.search(key)
    return match.group(1) if match else None


def parse_version_number(key: str) -> int | None:
    """Version number of a version-record key, None for any other key."""
    match = _VERSION_KEY.search(key)
    return int(match.group(1)) if match else None


def parse_stub_id(key: str) -> str | None:
    """Entity id of a stub key; slug index keys do not match."""
    match = _STUB_KEY.match(key)
    return match.group(1) if match else None


def parse_entity_type_id(key: str) -> str | None:
    match = _TYPE_KEY.search(key)
    return match.group(1) if match else None


def parse_org_id(key: str) -> str | None:
    """Organization id of a profile key, None for any other key."""
    match = _ORG_PROFILE_KEY.match(key)
    return match.group(1) if match else None


# Placement rule

def canonical_scope(
    org_id: str | None,
    status: EntityStatus,
    visibility: Visibility,
) -> Visibility:
    """Storage scope holding the canonical version and pointer.

    Raises:
        ValueError: For a global entity with members visibility
    """
    if org_id is None:
        if visibility == Visibility.MEMBERS:
            raise ValueError("Global entities cannot use members visibility")
        return visibility

    if status == EntityStatus.PUBLISHED and visibility != Visibility.MEMBERS:
        return visibility
    return Visibility.MEMBERS


def is_migrated(
    org_id: str | None,
    status: EntityStatus,
    visibility: Visibility,
) -> bool:
    """Whether an org entity's canonical record lives outside its org prefix."""
    if org_id is None:
        return False
    return canonical_scope(org_id, status, visibility) != Visibility.MEMBERS


def global_lookup_order() -> tuple[Visibility, ...]:
    """Scopes tried, in order, when resolving a global entity's pointer."""
    return (Visibility.AUTHENTICATED, Visibility.PUBLIC)


def candidate_scopes(org_id: str | None) -> tuple[Visibility, ...]:
    """Every scope that may hold records of an entity owned by org_id."""
    if org_id is None:
        return global_lookup_order()
    return (Visibility.MEMBERS, Visibility.PUBLIC, Visibility.AUTHENTICATED)
