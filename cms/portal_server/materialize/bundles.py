"""
Bundle and manifest materializer.

Keeps the precomputed read views in bundles/ consistent with entity and
catalog state. Every write path reports what it changed through
invalidate(event); the materializer re-reads the affected state and
rewrites the derived files.

Layout:
    bundles/{key}/{type}.json               published, projected for key
    bundles/{key}/admin/{type}.json         non-published, unprojected
    bundles/{key}/site.json                 manifest for key
    bundles/org/{org}/member/{type}.json    org's published entities
    bundles/org/{org}/admin/{type}.json     org's non-published entities
    bundles/org/{org}/{member|admin}/site.json

Invariants:
    - A failure in one unit (one key, one org, one manifest) is logged
      and recorded in the report; the remaining units still run
    - invalidate() never raises to the mutating caller
    - Every list-then-read goes through SafeReader
    - Rebuilding from unchanged state yields the same bundle content
      (only generatedAt and manifest version move)

How to change safely:
    - Bundle content is a client contract; see models.py
    - New catalog record kinds need a new event and a dispatch branch
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from typing import TYPE_CHECKING, Any, Awaitable, Iterable

from ..access.projection import project, scopes_for_key
from ..appconfig import PUBLIC_KEY_ID, AppConfigCache
from ..config import MaterializerConfig
from ..errors import NotFoundError
from ..objectstore import ObjectStore, SafeReader, read_json, write_json
from ..store.paths import (
    ADMIN_ROLE,
    BUNDLES_PREFIX,
    MEMBER_ROLE,
    ORG_BUNDLE_ROLES,
    entity_prefix,
    entity_type_path,
    global_admin_bundle_path,
    global_bundle_path,
    global_manifest_path,
    org_bundle_path,
    org_manifest_path,
    parse_entity_id,
)
from ..store.resolver import PointerResolver
from ..store.stubs import StubIndex
from ..store.types import Entity, EntityStatus, EntityStub, Visibility, utc_now
from .events import (
    EntityTypeWritten,
    EntityWritten,
    MaterializerEvent,
    MembershipKeysWritten,
    OrgPermissionsWritten,
    OrgProfileWritten,
)
from .models import (
    BundleEntity,
    BundleInfo,
    EntityBundle,
    ManifestEntityType,
    RegenerationReport,
    SiteManifest,
)

if TYPE_CHECKING:
    from ..appconfig import AppConfig, MembershipKeyDefinition
    from ..catalog import Catalog
    from ..schema.types import EntityType

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _sorted(entities: Iterable[Entity]) -> list[Entity]:
    return sorted(entities, key=lambda e: (e.name.lower(), e.id))


class BundleMaterializer:
    """Rebuilds bundles and manifests after writes.

    Example:
        >>> materializer = BundleMaterializer(store, config_cache, catalog, stubs, resolver)
        >>> await materializer.invalidate(EntityWritten("abc1234", "tools01", None))
        >>> report = await materializer.regenerate_all()
        >>> report.ok
        True
    """

    def __init__(
        self,
        store: ObjectStore,
        config_cache: AppConfigCache,
        catalog: Catalog,
        stubs: StubIndex,
        resolver: PointerResolver,
        settings: MaterializerConfig | None = None,
    ) -> None:
        self._store = store
        self._config_cache = config_cache
        self._catalog = catalog
        self._stubs = stubs
        self._resolver = resolver
        self._settings = settings or MaterializerConfig()
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def invalidate(self, event: MaterializerEvent) -> RegenerationReport:
        """Regenerate whatever the event affects. Never raises."""
        if not self._settings.enabled:
            logger.debug("Bundle materialization disabled", extra={"event": type(event).__name__})
            return RegenerationReport()

        try:
            if isinstance(event, EntityWritten):
                return await self._on_entity_written(event)
            if isinstance(event, EntityTypeWritten):
                return await self._bulk(self._on_entity_type_written(event), "entity_type")
            if isinstance(event, OrgProfileWritten):
                return await self._bulk(self._on_org_profile_written(event), "org_profile")
            if isinstance(event, OrgPermissionsWritten):
                return await self._bulk(self._on_org_permissions_written(event), "org_permissions")
            if isinstance(event, MembershipKeysWritten):
                return await self._bulk(self._on_membership_keys_written(event), "membership_keys")
        except Exception as e:
            logger.error(
                f"Bundle invalidation failed: {e}",
                extra={"event": type(event).__name__},
                exc_info=True,
            )
            report = RegenerationReport()
            report.record_error(type(event).__name__, e)
            return report

        logger.warning("Unknown materializer event", extra={"event": type(event).__name__})
        return RegenerationReport()

    async def _bulk(self, work: Awaitable[RegenerationReport], label: str) -> RegenerationReport:
        if not self._settings.background_bulk:
            return await work

        task = asyncio.create_task(self._run_background(work, label))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return RegenerationReport(scheduled=True)

    async def _run_background(self, work: Awaitable[RegenerationReport], label: str) -> None:
        try:
            report = await work
        except Exception as e:
            logger.error(f"Background regeneration failed: {e}", extra={"trigger": label}, exc_info=True)
            return
        logger.info(
            "Background regeneration complete",
            extra={"trigger": label, **report.to_dict()},
        )

    async def drain(self) -> None:
        """Wait for scheduled background regeneration to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def _on_entity_written(self, event: EntityWritten) -> RegenerationReport:
        report = RegenerationReport()
        written = (event.entity_id,)
        if event.organization_id is None or event.publicly_reachable:
            await self.regenerate_global_bundles(
                event.entity_type_id, report=report, include_ids=written
            )
        if event.organization_id is not None:
            await self.regenerate_org_bundles(
                event.organization_id, event.entity_type_id, report=report, include_ids=written
            )
        logger.debug(
            "Entity bundles regenerated",
            extra={
                "entity_id": event.entity_id,
                "type_id": event.entity_type_id,
                "org_id": event.organization_id,
                "publication_changed": event.publication_changed,
                "errors": report.error_count,
            },
        )
        return report

    async def _on_entity_type_written(self, event: EntityTypeWritten) -> RegenerationReport:
        report = await self.regenerate_global_bundles(
            event.entity_type_id, previous_keys=event.previous_keys
        )
        if event.deactivated:
            for org in await self._catalog.list_organizations(active_only=False):
                await self._run_unit(
                    report,
                    f"org:{org.id}:{event.entity_type_id}:remove",
                    self._remove_org_type(org.id, event.entity_type_id),
                )
        entity_type = await self._catalog.find_entity_type(event.entity_type_id)
        if entity_type is not None and entity_type.is_active:
            for permissions in await self._catalog.list_permissions():
                if entity_type.id not in permissions.viewable:
                    continue
                org = await self._catalog.find_organization(permissions.organization_id)
                if org is None or not org.is_active:
                    continue
                await self.regenerate_org_bundles(
                    org.id, entity_type.id, report=report, update_manifests=False
                )
        report.types_processed += 1
        report.merge(await self.regenerate_all_manifests())
        return report

    async def _on_org_profile_written(self, event: OrgProfileWritten) -> RegenerationReport:
        report = RegenerationReport()
        types = await self._catalog.list_entity_types()
        await self._rebuild_org_manifests(event.organization_id, types, report)
        for entity_type in types:
            await self.regenerate_global_bundles(entity_type.id, report=report)
            report.types_processed += 1
        report.organizations_processed += 1
        return report

    async def _on_org_permissions_written(self, event: OrgPermissionsWritten) -> RegenerationReport:
        report = RegenerationReport()
        types = await self._catalog.list_entity_types()
        for entity_type in types:
            if entity_type.id in event.viewable:
                await self.regenerate_org_bundles(
                    event.organization_id, entity_type.id, report=report, update_manifests=False
                )
                report.types_processed += 1
        for type_id in event.previous_viewable:
            if type_id not in event.viewable:
                await self._run_unit(
                    report,
                    f"org:{event.organization_id}:{type_id}:remove",
                    self._remove_org_type(event.organization_id, type_id),
                )
        await self._rebuild_org_manifests(event.organization_id, types, report)
        report.organizations_processed += 1
        return report

    async def _on_membership_keys_written(self, event: MembershipKeysWritten) -> RegenerationReport:
        report = RegenerationReport()
        for key_id in event.removed_keys:
            await self._run_unit(report, f"remove-key:{key_id}", self._delete_key_bundles(key_id))
        report.merge(await self.regenerate_all())
        return report

    # ------------------------------------------------------------------
    # Units
    # ------------------------------------------------------------------

    async def _run_unit(self, report: RegenerationReport, unit: str, work: Awaitable[Any]) -> bool:
        try:
            await work
        except Exception as e:
            logger.error(f"Bundle unit failed: {e}", extra={"unit": unit}, exc_info=True)
            report.record_error(unit, e)
            return False
        report.record_success()
        return True

    async def _write_bundle(self, path: str, entity_type: EntityType, entities: list[Entity]) -> EntityBundle:
        bundle = EntityBundle(
            type_id=entity_type.id,
            type_name=entity_type.plural_name,
            generated_at=utc_now(),
            entities=[BundleEntity.from_entity(e) for e in _sorted(entities)],
        )
        await write_json(self._store, path, bundle.to_dict())
        return bundle

    async def _load_current(self, entity_id: str, type_id: str | None = None) -> Entity | None:
        """Current version of an entity via its stub, None if any link is missing."""
        try:
            stub = await self._stubs.get(entity_id)
        except NotFoundError:
            logger.warning("Entity pointer without stub, skipping", extra={"entity_id": entity_id})
            return None
        if type_id is not None and stub.entity_type_id != type_id:
            return None
        return await self._load_from_stub(stub)

    async def _load_from_stub(self, stub: EntityStub) -> Entity | None:
        resolved = await self._resolver.resolve(stub.entity_id, stub.organization_id)
        if resolved is None:
            return None
        entity = await self._resolver.read_current(resolved)
        if entity is None:
            logger.debug(
                "Pointer names a missing version, skipping",
                extra={"entity_id": stub.entity_id, "key": resolved.version_key},
            )
        return entity

    # ------------------------------------------------------------------
    # Global bundles
    # ------------------------------------------------------------------

    async def _collect_global(
        self,
        type_id: str,
        include_authenticated: bool,
        include_ids: Iterable[str] = (),
    ) -> list[Entity]:
        """Current versions of every entity of a type a global bundle may list.

        include_ids are loaded directly even when the listing does not name
        them yet, so an entity written in this request is never missed.
        """
        prefixes = [entity_prefix(Visibility.PUBLIC)]
        if include_authenticated:
            prefixes.append(entity_prefix(Visibility.AUTHENTICATED))
        if self._settings.scan_org_prefixes:
            for org in await self._catalog.list_organizations(active_only=True):
                prefixes.append(entity_prefix(Visibility.MEMBERS, org.id))

        reader = SafeReader(self._store)
        seen: set[str] = set()
        entities = []
        for prefix in prefixes:
            for key in await reader.list(prefix, lambda k: parse_entity_id(k) is not None):
                entity_id = parse_entity_id(key)
                if entity_id in seen or not await reader.exists(key):
                    continue
                seen.add(entity_id)
                entity = await self._load_current(entity_id, type_id)
                if entity is not None:
                    entities.append(entity)

        for entity_id in include_ids:
            if entity_id in seen:
                continue
            seen.add(entity_id)
            entity = await self._load_current(entity_id, type_id)
            if entity is not None:
                entities.append(entity)

        logger.debug(
            "Global bundle scan complete",
            extra={
                "type_id": type_id,
                "prefixes": len(prefixes),
                "listed": reader.stats.listed,
                "skipped": reader.stats.skipped_missing,
                "matched": len(entities),
            },
        )
        return entities

    async def regenerate_global_bundles(
        self,
        type_id: str,
        previous_keys: Iterable[str] = (),
        report: RegenerationReport | None = None,
        include_ids: Iterable[str] = (),
    ) -> RegenerationReport:
        """Rebuild bundles/{key}/{type}.json for every audience key of a type.

        Keys that no longer see the type (or every key, when the type is
        missing or inactive) lose the bundle and its manifest entry.
        include_ids names entities to load directly in addition to the scan.
        """
        report = report if report is not None else RegenerationReport()
        config = await self._config_cache.load()
        entity_type = await self._catalog.find_entity_type(type_id)

        audience: list[MembershipKeyDefinition] = []
        if entity_type is not None and entity_type.is_active:
            for key_id in entity_type.audience_keys():
                key = config.key(key_id)
                if key is None:
                    logger.warning(
                        "Entity type references an undefined membership key",
                        extra={"type_id": type_id, "key": key_id},
                    )
                    continue
                audience.append(key)

        audience_ids = {k.id for k in audience}
        stale = [k for k in dict.fromkeys([*config.key_ids(), *previous_keys]) if k not in audience_ids]
        for key_id in stale:
            await self._run_unit(
                report, f"global:{key_id}:{type_id}:remove", self._remove_global_type(key_id, type_id)
            )

        if not audience or entity_type is None:
            return report

        try:
            candidates = await self._collect_global(
                type_id,
                include_authenticated=any(k.requires_auth for k in audience),
                include_ids=include_ids,
            )
        except Exception as e:
            logger.error(
                f"Global bundle scan failed: {e}", extra={"type_id": type_id}, exc_info=True
            )
            report.record_error(f"global:{type_id}:scan", e)
            return report

        for key in audience:
            await self._run_unit(
                report,
                f"global:{key.id}:{type_id}",
                self._write_global_key(key, entity_type, candidates, config),
            )
        return report

    async def _write_global_key(
        self,
        key: MembershipKeyDefinition,
        entity_type: EntityType,
        candidates: list[Entity],
        config: AppConfig,
    ) -> None:
        scopes = scopes_for_key(key)
        reachable = [e for e in candidates if e.visibility in scopes]
        published = [
            project(e, entity_type, key.id, config)
            for e in reachable
            if e.status == EntityStatus.PUBLISHED
        ]
        moderation = [e for e in reachable if e.status != EntityStatus.PUBLISHED]

        bundle = await self._write_bundle(
            global_bundle_path(key.id, entity_type.id), entity_type, published
        )
        await self._write_bundle(
            global_admin_bundle_path(key.id, entity_type.id), entity_type, moderation
        )
        await self._update_manifest(
            global_manifest_path(key.id),
            entity_type.id,
            self._manifest_entry(entity_type, bundle),
            client_config=config.client_config(),
        )
        logger.debug(
            "Global bundle written",
            extra={
                "key": key.id,
                "type_id": entity_type.id,
                "published": len(published),
                "moderation": len(moderation),
            },
        )

    async def _remove_global_type(self, key_id: str, type_id: str) -> None:
        for path in (global_bundle_path(key_id, type_id), global_admin_bundle_path(key_id, type_id)):
            if await self._store.head(path):
                await self._store.delete(path)
        await self._update_manifest(global_manifest_path(key_id), type_id, None)

    async def _delete_key_bundles(self, key_id: str) -> None:
        reader = SafeReader(self._store)
        keys = await reader.list(f"{BUNDLES_PREFIX}{key_id}/")
        for key in keys:
            await self._store.delete(key)
        logger.info("Removed bundles of deleted membership key", extra={"key": key_id, "count": len(keys)})

    # ------------------------------------------------------------------
    # Org bundles
    # ------------------------------------------------------------------

    async def regenerate_org_bundles(
        self,
        org_id: str,
        type_id: str,
        report: RegenerationReport | None = None,
        stubs: list[EntityStub] | None = None,
        update_manifests: bool = True,
        include_ids: Iterable[str] = (),
    ) -> RegenerationReport:
        """Rebuild the member and admin bundles of one (org, type) pair.

        include_ids names entities to load directly in addition to the
        stub listing.
        """
        report = report if report is not None else RegenerationReport()
        await self._run_unit(
            report,
            f"org:{org_id}:{type_id}",
            self._write_org_bundles(
                org_id, type_id, stubs, update_manifests, tuple(include_ids)
            ),
        )
        return report

    async def _write_org_bundles(
        self,
        org_id: str,
        type_id: str,
        stubs: list[EntityStub] | None,
        update_manifests: bool,
        include_ids: tuple[str, ...] = (),
    ) -> None:
        entity_type = await self._catalog.find_entity_type(type_id)
        permissions = await self._catalog.get_permissions(org_id)
        listed = (
            entity_type is not None
            and entity_type.is_active
            and type_id in permissions.viewable
        )

        if entity_type is None or not entity_type.is_active:
            if update_manifests:
                for role in ORG_BUNDLE_ROLES:
                    await self._update_manifest(org_manifest_path(org_id, role), type_id, None)
            return

        if stubs is None:
            stubs = await self._stubs.find(org_id=org_id, type_id=type_id)

        entities = []
        seen = set()
        for stub in stubs:
            seen.add(stub.entity_id)
            entity = await self._load_from_stub(stub)
            if entity is not None:
                entities.append(entity)
        for entity_id in include_ids:
            if entity_id in seen:
                continue
            seen.add(entity_id)
            entity = await self._load_current(entity_id, type_id)
            if entity is not None and entity.organization_id == org_id:
                entities.append(entity)

        published = [e for e in entities if e.status == EntityStatus.PUBLISHED]
        moderation = [e for e in entities if e.status != EntityStatus.PUBLISHED]
        bundles = {}
        for role, members in ((MEMBER_ROLE, published), (ADMIN_ROLE, moderation)):
            bundles[role] = await self._write_bundle(
                org_bundle_path(org_id, role, type_id), entity_type, members
            )

        if update_manifests:
            for role in ORG_BUNDLE_ROLES:
                entry = self._manifest_entry(entity_type, bundles[role]) if listed else None
                await self._update_manifest(org_manifest_path(org_id, role), type_id, entry)

        logger.debug(
            "Org bundles written",
            extra={
                "org_id": org_id,
                "type_id": type_id,
                "published": len(published),
                "moderation": len(moderation),
            },
        )

    async def _remove_org_type(self, org_id: str, type_id: str) -> None:
        for role in ORG_BUNDLE_ROLES:
            path = org_bundle_path(org_id, role, type_id)
            if await self._store.head(path):
                await self._store.delete(path)

    # ------------------------------------------------------------------
    # Manifests
    # ------------------------------------------------------------------

    @staticmethod
    def _manifest_entry(
        entity_type: EntityType,
        bundle: dict[str, Any] | EntityBundle | None,
    ) -> ManifestEntityType:
        if isinstance(bundle, EntityBundle):
            count, last_updated = bundle.entity_count, bundle.generated_at
        elif bundle:
            count = int(bundle.get("entityCount", 0))
            last_updated = bundle.get("generatedAt") or entity_type.updated_at
        else:
            count, last_updated = 0, entity_type.updated_at or utc_now()
        return ManifestEntityType(
            id=entity_type.id,
            name=entity_type.name,
            plural_name=entity_type.plural_name,
            slug=entity_type.slug,
            description=entity_type.description,
            entity_count=count,
            last_updated=last_updated,
        )

    async def _write_manifest(
        self,
        path: str,
        entries: list[ManifestEntityType],
        previous_version: int,
        client_config: dict[str, Any] | None = None,
    ) -> SiteManifest:
        manifest = SiteManifest(
            generated_at=utc_now(),
            version=max(_now_ms(), previous_version + 1),
            entity_types=sorted(entries, key=lambda t: (t.name.lower(), t.id)),
            config=client_config,
        )
        await write_json(self._store, path, manifest.to_dict())
        return manifest

    async def _read_manifest(self, path: str) -> SiteManifest | None:
        raw = await read_json(self._store, path)
        return SiteManifest.from_dict(raw) if raw else None

    async def _update_manifest(
        self,
        path: str,
        type_id: str,
        entry: ManifestEntityType | None,
        client_config: dict[str, Any] | None = None,
    ) -> None:
        """Add, replace or (entry None) remove one type's manifest entry."""
        current = await self._read_manifest(path)
        if current is None:
            if entry is None:
                return
            current = SiteManifest(generated_at="", version=0)
        elif entry is None and current.entry(type_id) is None:
            return

        entries = [t for t in current.entity_types if t.id != type_id]
        if entry is not None:
            entries.append(entry)
        await self._write_manifest(
            path,
            entries,
            current.version,
            client_config if client_config is not None else current.config,
        )

    async def _rebuild_global_manifest(
        self,
        key: MembershipKeyDefinition,
        types: list[EntityType],
        config: AppConfig,
    ) -> None:
        entries = []
        for entity_type in types:
            if key.id not in entity_type.audience_keys():
                continue
            bundle = await read_json(self._store, global_bundle_path(key.id, entity_type.id))
            entries.append(self._manifest_entry(entity_type, bundle))
        path = global_manifest_path(key.id)
        current = await self._read_manifest(path)
        await self._write_manifest(
            path, entries, current.version if current else 0, config.client_config()
        )

    async def _rebuild_org_manifest(
        self,
        org_id: str,
        role: str,
        types: list[EntityType],
        viewable: list[str],
    ) -> None:
        entries = []
        for entity_type in types:
            if entity_type.id not in viewable:
                continue
            bundle = await read_json(self._store, org_bundle_path(org_id, role, entity_type.id))
            entries.append(self._manifest_entry(entity_type, bundle))
        path = org_manifest_path(org_id, role)
        current = await self._read_manifest(path)
        await self._write_manifest(path, entries, current.version if current else 0)

    async def _rebuild_org_manifests(
        self,
        org_id: str,
        types: list[EntityType],
        report: RegenerationReport,
    ) -> None:
        permissions = await self._catalog.get_permissions(org_id)
        for role in ORG_BUNDLE_ROLES:
            await self._run_unit(
                report,
                f"manifest:org:{org_id}:{role}",
                self._rebuild_org_manifest(org_id, role, types, permissions.viewable),
            )

    async def regenerate_all_manifests(self) -> RegenerationReport:
        """Rebuild every key's and every active org's manifests from scratch."""
        report = RegenerationReport()
        config = await self._config_cache.load()
        types = await self._catalog.list_entity_types()

        for key in config.sorted_keys():
            await self._run_unit(
                report, f"manifest:{key.id}", self._rebuild_global_manifest(key, types, config)
            )

        for org in await self._catalog.list_organizations(active_only=True):
            await self._rebuild_org_manifests(org.id, types, report)

        logger.info(
            "Manifests regenerated",
            extra={"types": len(types), "success": report.success_count, "errors": report.error_count},
        )
        return report

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------

    async def regenerate_type(self, type_id: str, org_id: str | None = None) -> RegenerationReport:
        """Rebuild one type's global bundles and its org bundles.

        With org_id only that organization's bundles are rebuilt.
        """
        report = await self.regenerate_global_bundles(type_id)
        if org_id is not None:
            orgs = [org_id]
        else:
            orgs = [
                p.organization_id
                for p in await self._catalog.list_permissions()
                if type_id in p.viewable
            ]
        for org in orgs:
            await self.regenerate_org_bundles(org, type_id, report=report)
            report.organizations_processed += 1
        report.types_processed += 1
        return report

    async def regenerate_all(self, add_default_visible_to: bool = False) -> RegenerationReport:
        """Rebuild every bundle and manifest.

        With add_default_visible_to, active types without visibleTo are
        given ["public"] and saved before their bundles are built.
        """
        report = RegenerationReport()
        active: list[EntityType] = []
        for entity_type in await self._catalog.list_entity_types(include_inactive=True):
            if not entity_type.is_active:
                report.types_skipped += 1
                continue
            if add_default_visible_to and not entity_type.visible_to:
                entity_type = entity_type.with_changes(
                    visible_to=(PUBLIC_KEY_ID,), updated_at=utc_now()
                )
                await write_json(self._store, entity_type_path(entity_type.id), entity_type.to_dict())
                report.types_updated += 1
                logger.info("Added default visibleTo", extra={"type_id": entity_type.id})
            active.append(entity_type)

        for entity_type in active:
            await self.regenerate_global_bundles(entity_type.id, report=report)
            report.types_processed += 1

        grouped: dict[tuple[str | None, str], list[EntityStub]] = defaultdict(list)
        for stub in await self._stubs.find():
            grouped[(stub.organization_id, stub.entity_type_id)].append(stub)

        for org in await self._catalog.list_organizations(active_only=True):
            permissions = await self._catalog.get_permissions(org.id)
            for entity_type in active:
                pair = (org.id, entity_type.id)
                if entity_type.id not in permissions.viewable and pair not in grouped:
                    continue
                await self.regenerate_org_bundles(
                    org.id,
                    entity_type.id,
                    report=report,
                    stubs=grouped.get(pair, []),
                    update_manifests=False,
                )
            report.organizations_processed += 1

        report.merge(await self.regenerate_all_manifests())
        logger.info("Full bundle regeneration complete", extra=report.to_dict())
        return report

    async def _bundle_info(self, path: str, kind: str, type_id: str, **owner: str) -> BundleInfo:
        raw = await read_json(self._store, path)
        return BundleInfo(
            path=path,
            kind=kind,
            type_id=type_id,
            exists=raw is not None,
            entity_count=int(raw.get("entityCount", 0)) if raw else 0,
            generated_at=raw.get("generatedAt") if raw else None,
            **owner,
        )

    async def list_bundles(self) -> list[BundleInfo]:
        """Every bundle the current catalog implies, and whether it exists."""
        config = await self._config_cache.load()
        types = await self._catalog.list_entity_types()
        infos = []
        for entity_type in types:
            for key_id in entity_type.audience_keys():
                if config.key(key_id) is None:
                    continue
                infos.append(await self._bundle_info(
                    global_bundle_path(key_id, entity_type.id), "global", entity_type.id, key_id=key_id
                ))
                infos.append(await self._bundle_info(
                    global_admin_bundle_path(key_id, entity_type.id),
                    "global-admin",
                    entity_type.id,
                    key_id=key_id,
                ))

        for org in await self._catalog.list_organizations(active_only=True):
            permissions = await self._catalog.get_permissions(org.id)
            for entity_type in types:
                if entity_type.id not in permissions.viewable:
                    continue
                for role in ORG_BUNDLE_ROLES:
                    infos.append(await self._bundle_info(
                        org_bundle_path(org.id, role, entity_type.id),
                        f"org-{role}",
                        entity_type.id,
                        organization_id=org.id,
                    ))
        return infos
