"""
Platform configuration stored in the object store, and its cache.

The AppConfig document at config/app.json holds the membership key
catalog, legacy organization tiers, and client-facing settings (features,
branding, sync intervals) that manifests embed.

AppConfigCache is owned by a service instance and passed to whoever needs
the config. It loads lazily on first access, writes a default document on
first run, and is only refreshed when a caller invalidates it after a
write. There is no TTL and no background refresh.

Invariants:
    - A loaded or saved config always contains the `public` key (order 0)
    - Membership key ids are unique, path-safe, and never `org`
    - save() always drops the cached copy

How to change safely:
    - Unknown top-level sections are preserved on save; keep it that way
    - Key ids appear in bundle paths; renaming one strands its bundles
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from .errors import ValidationFailedError
from .objectstore import ObjectStore, read_json, write_json
from .store.paths import ORG_BUNDLE_SEGMENT, app_config_path

logger = logging.getLogger(__name__)

PUBLIC_KEY_ID = "public"
RESERVED_KEY_IDS = frozenset({ORG_BUNDLE_SEGMENT})

_KEY_ID = re.compile(r"^[a-z0-9][a-z0-9_-]*$")


@dataclass(frozen=True)
class MembershipKeyDefinition:
    """An access tier.

    Attributes:
        id: Key id, used in bundle paths
        name: Display name
        requires_auth: Whether holders must be signed in
        order: Position in the hierarchy, higher sees more
        description: What the key grants
    """

    id: str
    name: str
    requires_auth: bool = False
    order: int = 0
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "requiresAuth": self.requires_auth,
            "order": self.order,
        }
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MembershipKeyDefinition:
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            requires_auth=bool(data.get("requiresAuth", False)),
            order=int(data.get("order", 0)),
            description=data.get("description"),
        )


@dataclass(frozen=True)
class OrganizationTier:
    """Legacy mapping from an org tier to the keys it grants."""

    id: str
    name: str
    granted_keys: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "grantedKeys": list(self.granted_keys)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OrganizationTier:
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            granted_keys=tuple(data.get("grantedKeys") or ()),
        )


def default_public_key() -> MembershipKeyDefinition:
    return MembershipKeyDefinition(
        id=PUBLIC_KEY_ID,
        name="Public",
        description="Accessible to everyone without authentication",
        requires_auth=False,
        order=0,
    )


@dataclass
class AppConfig:
    """Platform configuration document."""

    version: str = "1.0.0"
    environment: str = "development"
    features: dict[str, Any] = field(default_factory=lambda: {
        "alerts": True,
        "offlineMode": True,
        "realtime": False,
        "darkMode": True,
    })
    branding: dict[str, Any] = field(default_factory=lambda: {
        "siteName": "Portal",
        "defaultTheme": "light",
        "logoUrl": "/logo.svg",
    })
    sync: dict[str, Any] = field(default_factory=lambda: {
        "bundleRefreshInterval": 300000,
        "staleTime": 60000,
        "gcTime": 86400000,
    })
    membership_keys: list[MembershipKeyDefinition] = field(
        default_factory=lambda: [default_public_key()]
    )
    organization_tiers: list[OrganizationTier] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    def sorted_keys(self) -> list[MembershipKeyDefinition]:
        return sorted(self.membership_keys, key=lambda k: (k.order, k.id))

    def key(self, key_id: str) -> MembershipKeyDefinition | None:
        for k in self.membership_keys:
            if k.id == key_id:
                return k
        return None

    def key_ids(self) -> list[str]:
        return [k.id for k in self.sorted_keys()]

    def tier(self, tier_id: str) -> OrganizationTier | None:
        for t in self.organization_tiers:
            if t.id == tier_id:
                return t
        return None

    def client_config(self) -> dict[str, Any]:
        """Subset embedded in global manifests for clients."""
        return {
            "features": dict(self.features),
            "branding": dict(self.branding),
            "sync": dict(self.sync),
        }

    def to_dict(self) -> dict[str, Any]:
        result = dict(self.extra)
        result.update({
            "version": self.version,
            "environment": self.environment,
            "features": self.features,
            "branding": self.branding,
            "sync": self.sync,
            "membershipKeys": {
                "keys": [k.to_dict() for k in self.sorted_keys()],
                "organizationTiers": [t.to_dict() for t in self.organization_tiers],
            },
        })
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AppConfig:
        known = {"version", "environment", "features", "branding", "sync", "membershipKeys"}
        membership = data.get("membershipKeys") or {}
        defaults = cls()
        return cls(
            version=data.get("version", defaults.version),
            environment=data.get("environment", defaults.environment),
            features=dict(data.get("features") or defaults.features),
            branding=dict(data.get("branding") or defaults.branding),
            sync=dict(data.get("sync") or defaults.sync),
            membership_keys=[
                MembershipKeyDefinition.from_dict(k) for k in membership.get("keys") or []
            ],
            organization_tiers=[
                OrganizationTier.from_dict(t) for t in membership.get("organizationTiers") or []
            ],
            extra={k: v for k, v in data.items() if k not in known},
        )


def default_app_config() -> AppConfig:
    return AppConfig()


def ensure_public_key(config: AppConfig) -> bool:
    """Insert the default public key if missing. Returns True if inserted."""
    if config.key(PUBLIC_KEY_ID) is not None:
        return False
    config.membership_keys.insert(0, default_public_key())
    return True


def validate_membership_keys(keys: list[MembershipKeyDefinition]) -> None:
    """Reject duplicate, reserved or path-unsafe key ids.

    Raises:
        ValidationFailedError: Listing each offending key
    """
    errors: dict[str, list[str]] = {}
    seen: set[str] = set()
    for k in keys:
        problems = []
        if k.id in seen:
            problems.append(f"Duplicate membership key '{k.id}'")
        if k.id in RESERVED_KEY_IDS:
            problems.append(f"Membership key id '{k.id}' is reserved")
        if not _KEY_ID.match(k.id):
            problems.append(
                f"Membership key id '{k.id}' must be lowercase letters, digits, '-' or '_'"
            )
        if problems:
            errors[k.id] = problems
        seen.add(k.id)
    if errors:
        raise ValidationFailedError("Invalid membership keys", field_errors=errors)


@dataclass
class MembershipKeysUpdate:
    """Result of a membership key catalog edit."""

    config: AppConfig
    removed_keys: list[str]
    removed_keys_in_use: list[str]


class AppConfigCache:
    """Lazily loaded, explicitly invalidated AppConfig.

    Example:
        >>> cache = AppConfigCache(store)
        >>> config = await cache.load()
        >>> config.key("public").order
        0
        >>> await cache.save(config)   # writes and invalidates
    """

    def __init__(self, store: ObjectStore) -> None:
        self._store = store
        self._config: AppConfig | None = None
        self._lock = asyncio.Lock()
        self.load_count = 0

    @property
    def is_loaded(self) -> bool:
        return self._config is not None

    async def load(self) -> AppConfig:
        """Return the cached config, reading it from storage on first use."""
        if self._config is not None:
            return self._config

        async with self._lock:
            if self._config is not None:
                return self._config

            path = app_config_path()
            raw = await read_json(self._store, path)
            if raw is None:
                logger.info("No app config found, writing default", extra={"path": path})
                config = default_app_config()
                await write_json(self._store, path, config.to_dict())
            else:
                config = AppConfig.from_dict(raw)

            if ensure_public_key(config):
                logger.warning("App config had no public membership key, inserted default")

            self._config = config
            self.load_count += 1
            return config

    def invalidate(self) -> None:
        """Drop the cached config; the next load() reads storage."""
        self._config = None

    clear_cache = invalidate

    async def save(self, config: AppConfig) -> AppConfig:
        """Persist a config document and drop the cached copy."""
        ensure_public_key(config)
        validate_membership_keys(config.membership_keys)
        await write_json(self._store, app_config_path(), config.to_dict())
        self.invalidate()
        logger.info(
            "App config saved",
            extra={"membership_keys": config.key_ids()},
        )
        return config

    async def update_membership_keys(
        self,
        keys: list[MembershipKeyDefinition],
        organization_tiers: list[OrganizationTier] | None = None,
        keys_in_use: set[str] | None = None,
    ) -> MembershipKeysUpdate:
        """Replace the membership key catalog.

        Removing a key still referenced by a type or an organization is
        allowed but reported in the result.

        Raises:
            ValidationFailedError: For duplicate, reserved or unsafe key ids
        """
        current = await self.load()
        validate_membership_keys(keys)

        new_ids = {k.id for k in keys}
        removed = [k for k in current.key_ids() if k not in new_ids and k != PUBLIC_KEY_ID]
        in_use = sorted(k for k in removed if keys_in_use and k in keys_in_use)
        if in_use:
            logger.warning(
                "Removing membership keys that are still in use",
                extra={"keys": in_use},
            )

        updated = AppConfig(
            version=current.version,
            environment=current.environment,
            features=dict(current.features),
            branding=dict(current.branding),
            sync=dict(current.sync),
            membership_keys=list(keys),
            organization_tiers=list(
                organization_tiers
                if organization_tiers is not None
                else current.organization_tiers
            ),
            extra=dict(current.extra),
        )
        await self.save(updated)
        return MembershipKeysUpdate(
            config=updated, removed_keys=removed, removed_keys_in_use=in_use
        )
