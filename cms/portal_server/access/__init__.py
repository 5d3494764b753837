"""
Access control helpers: caller context and field projection.

Invariants:
    - Projection is pure
    - Role checks take an ActorContext, never raw tokens
"""

from .actor import ActorContext, Role
from .projection import (
    highest_key,
    is_field_visible,
    keys_for_membership,
    keys_for_org,
    project,
    scopes_for_key,
    viewer_key,
    visible_field_ids,
)

__all__ = [
    "ActorContext",
    "Role",
    "project",
    "visible_field_ids",
    "is_field_visible",
    "scopes_for_key",
    "keys_for_membership",
    "keys_for_org",
    "highest_key",
    "viewer_key",
]
