"""
Entity type schema and validation for the portal.

This module provides:
- FieldKind, FieldDef, FieldSection, EntityType: type definitions
- FieldValidatorRegistry: per-kind validator functions
- SchemaValidator: validate_fields / validate_required over entity data

Invariants:
    - Field ids are stable; data is keyed by field id
    - Unknown field ids are rejected on write

How to change safely:
    - Add new field kinds with a registered validator
    - Never reuse a removed field id
"""

from .types import EntityType, FieldDef, FieldKind, FieldSection
from .validators import FieldValidatorRegistry, SchemaValidator

__all__ = [
    "EntityType",
    "FieldDef",
    "FieldKind",
    "FieldSection",
    "FieldValidatorRegistry",
    "SchemaValidator",
]
