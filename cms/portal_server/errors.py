"""
Error types for the portal storage core.

This module defines the exceptions raised by entity, catalog and
configuration operations:
- PortalError: Base exception
- NotFoundError: Stub, pointer, version, type or organization absent
- ForbiddenError: Role or ownership check failed
- ValidationFailedError: Schema violation with per-field messages
- InvalidStatusError: Operation not legal for the current lifecycle state
- InvalidTransitionError: Lifecycle action not legal from the current status
- ConflictError: Uniqueness violation (slugs, ids)

The HTTP layer maps `code` to a status code; `details` is safe to return
to clients.

Invariants:
    - All errors inherit from PortalError
    - `code` values are stable and used by clients
    - Materialization failures never surface as one of these errors
"""

from __future__ import annotations

from typing import Any


class PortalError(Exception):
    """Base exception for all portal errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    status_hint = 500

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "PORTAL_ERROR"
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Error body for the transport layer."""
        return {"code": self.code, "message": self.message, "details": self.details}


class NotFoundError(PortalError):
    """A resource could not be found.

    `stage` records which lookup failed (stub, pointer, version, entity_type,
    organization) so logs can tell a missing stub from a missing version
    record, while clients only ever see NOT_FOUND.
    """

    status_hint = 404

    def __init__(
        self,
        message: str,
        resource_type: str | None = None,
        resource_id: str | None = None,
        stage: str | None = None,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.stage = stage


class ForbiddenError(PortalError):
    """Role or ownership check failed."""

    status_hint = 403

    def __init__(
        self,
        message: str,
        actor: str | None = None,
        required: str | None = None,
    ) -> None:
        super().__init__(
            message,
            code="FORBIDDEN",
            details={"required": required} if required else {},
        )
        self.actor = actor
        self.required = required


class ValidationFailedError(PortalError):
    """Entity data failed schema validation.

    Attributes:
        field_errors: Mapping of field id to error messages
    """

    status_hint = 400

    def __init__(
        self,
        message: str,
        field_errors: dict[str, list[str]] | None = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"fields": dict(field_errors or {})},
        )
        self.field_errors = dict(field_errors or {})


class InvalidStatusError(PortalError):
    """Operation not permitted in the entity's current status."""

    status_hint = 400

    def __init__(
        self,
        message: str,
        status: str | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(
            message,
            code="INVALID_STATUS",
            details={"status": status, "operation": operation},
        )
        self.status = status
        self.operation = operation


class InvalidTransitionError(PortalError):
    """Lifecycle action is not legal from the current status.

    The message enumerates the actions that are legal.
    """

    status_hint = 400

    def __init__(
        self,
        status: str,
        action: str,
        allowed_actions: list[str],
    ) -> None:
        allowed = ", ".join(allowed_actions) if allowed_actions else "none"
        super().__init__(
            f"Cannot {action} an entity with status '{status}'. Allowed actions: {allowed}",
            code="INVALID_TRANSITION",
            details={
                "status": status,
                "action": action,
                "allowed_actions": list(allowed_actions),
            },
        )
        self.status = status
        self.action = action
        self.allowed_actions = list(allowed_actions)


class ConflictError(PortalError):
    """Uniqueness violation."""

    status_hint = 409

    def __init__(
        self,
        message: str,
        resource_type: str | None = None,
        key: str | None = None,
    ) -> None:
        super().__init__(
            message,
            code="CONFLICT",
            details={"resource_type": resource_type, "key": key},
        )
        self.resource_type = resource_type
        self.key = key
