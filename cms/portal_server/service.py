"""
Portal service: wires storage, catalog, entities and bundles together.

Every collaborator is constructed here and injected; nothing is held in
module globals. The HTTP layer, authentication and any UI sit outside and
call into the attributes exposed below.

Invariants:
    - One object store, one AppConfigCache per service instance
    - The materializer sees every write made through this service

How to change safely:
    - Add new components here, not as module-level singletons
    - Keep stop() idempotent
"""

from __future__ import annotations

import logging

from .appconfig import AppConfigCache, MembershipKeyDefinition, MembershipKeysUpdate, OrganizationTier
from .catalog import Catalog, CatalogWriter
from .config import ServerConfig
from .lifecycle import TransitionTable
from .materialize import BundleMaterializer, MembershipKeysWritten
from .objectstore import ObjectStore, create_object_store
from .schema import SchemaValidator
from .store import PointerResolver, SlugIndex, StubIndex
from .store.entity_store import EntityStore

logger = logging.getLogger(__name__)


class PortalService:
    """Entity storage and view materialization for one deployment.

    Attributes:
        config: Server configuration
        store: Object store shared by every component
        app_config: Membership key and client config cache
        catalog: Entity type, organization and permission reads
        catalog_writer: Superadmin catalog writes
        materializer: Bundle and manifest materializer
        entities: Entity version store

    Example:
        >>> service = PortalService(ServerConfig.for_testing())
        >>> await service.start()
        >>> entity = await service.entities.create_entity(actor, "tools01", {}, name="Hammer")
        >>> await service.stop()
    """

    def __init__(
        self,
        config: ServerConfig | None = None,
        store: ObjectStore | None = None,
    ) -> None:
        self.config = config or ServerConfig.from_env()
        self.store = store or create_object_store(self.config)
        self._running = False

        self.app_config = AppConfigCache(self.store)
        self.catalog = Catalog(self.store)
        self.stubs = StubIndex(self.store)
        self.slugs = SlugIndex(self.store)
        self.resolver = PointerResolver(self.store)

        self.materializer = BundleMaterializer(
            self.store,
            self.app_config,
            self.catalog,
            self.stubs,
            self.resolver,
            settings=self.config.materializer,
        )
        self.catalog_writer = CatalogWriter(self.store, self.catalog, self.materializer)
        self.entities = EntityStore(
            self.store,
            self.catalog,
            self.stubs,
            self.slugs,
            self.resolver,
            self.app_config,
            validator=SchemaValidator(),
            transitions=TransitionTable(),
            materializer=self.materializer,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Connect the object store and load the app config."""
        if self._running:
            logger.warning("Portal service already running")
            return

        logger.info("Starting portal service")
        await self.store.connect()
        config = await self.app_config.load()
        self._running = True
        logger.info(
            "Portal service started",
            extra={"membership_keys": config.key_ids()},
        )

    async def stop(self) -> None:
        """Wait for background regeneration, then close the store."""
        if not self._running:
            return

        logger.info("Stopping portal service")
        await self.materializer.drain()
        await self.store.close()
        self._running = False
        logger.info("Portal service stopped")

    async def update_membership_keys(
        self,
        keys: list[MembershipKeyDefinition],
        organization_tiers: list[OrganizationTier] | None = None,
    ) -> MembershipKeysUpdate:
        """Replace the membership key catalog and rebuild affected bundles."""
        result = await self.app_config.update_membership_keys(
            keys,
            organization_tiers=organization_tiers,
            keys_in_use=await self.catalog.keys_in_use(),
        )
        await self.materializer.invalidate(
            MembershipKeysWritten(removed_keys=tuple(result.removed_keys))
        )
        return result
