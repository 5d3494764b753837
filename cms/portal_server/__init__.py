"""
Portal Server - entity storage and view materialization for the portal.

This package implements the storage core of a multi-tenant content platform:
- Typed entities stored as an append-only version chain plus a mutable
  latest pointer, placed by status/visibility across storage prefixes
- A stub reverse index for O(1) lookup without knowing the owner or type
- An approval lifecycle (draft -> pending -> published -> archived/deleted)
- Denormalized bundles and manifests per membership key and organization,
  rebuilt whenever upstream state changes

Architecture:
    ┌─────────────┐     ┌──────────────┐     ┌──────────────────┐
    │ HTTP layer  │────▶│ EntityStore  │────▶│   Object Store   │
    │ (external)  │     │ CatalogWriter│     │  (S3 / memory)   │
    └─────────────┘     └──────┬───────┘     └────────▲─────────┘
                               │ typed events         │
                               ▼                      │
                        ┌──────────────┐              │
                        │   Bundle     │──────────────┘
                        │ Materializer │  bundles/{key}/..., bundles/org/...
                        └──────────────┘

Invariants:
    - Version records are immutable once written
    - Exactly one latest pointer is authoritative per entity
    - Unpublished org entities never leave the org-private prefix
    - Bundles and manifests are derived views that can be rebuilt

How to change safely:
    - Storage keys are a persisted format; change paths.py with a migration
    - New upstream write kinds need a new materializer event
    - Keep bundle JSON shape stable for deployed clients
"""

from ._version import __version__

__all__ = ["__version__"]
