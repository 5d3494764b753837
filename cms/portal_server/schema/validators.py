"""
Field validator registry and entity data validation.

Validation is pluggable per field kind: a validator is a plain function
`(field, value) -> list[str]` returning error messages (empty when valid).
The registry maps FieldKind to validator; SchemaValidator runs it over an
entity's data.

Validation modes:
    validate_fields(data, type): checks every provided value, rejects ids
        the type does not define, returns the accepted subset
    validate_required(data, type): checks required fields are present
        (None and "" count as missing)

Both collect every message before raising one ValidationFailedError with
per-field messages, so clients can show all problems at once.

Invariants:
    - Unknown field ids are always rejected
    - An invalid regex constraint is skipped with a warning, never fatal
    - Patterns are matched against the whole value

How to change safely:
    - Register validators for new kinds instead of branching in callers
    - Messages are shown to end users; keep them in plain language
"""

from __future__ import annotations

import logging
import math
import re
from datetime import datetime
from typing import Any, Callable
from urllib.parse import urlparse

from ..errors import ValidationFailedError
from .types import EntityType, FieldDef, FieldKind

logger = logging.getLogger(__name__)

FieldValidator = Callable[[FieldDef, Any], list[str]]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _full_pattern(pattern: str) -> str:
    if not pattern.startswith("^"):
        pattern = "^" + pattern
    if not pattern.endswith("$"):
        pattern = pattern + "$"
    return pattern


def validate_text(field: FieldDef, value: Any) -> list[str]:
    if not isinstance(value, str):
        return [f"Field '{field.name}' must be a string"]

    c = field.constraints
    errors = []
    if c.get("minLength") is not None and len(value) < c["minLength"]:
        errors.append(f"Field '{field.name}' must be at least {c['minLength']} characters")
    if c.get("maxLength") is not None and len(value) > c["maxLength"]:
        errors.append(f"Field '{field.name}' must not exceed {c['maxLength']} characters")

    pattern = c.get("pattern")
    if pattern:
        try:
            regex = re.compile(_full_pattern(pattern))
        except re.error as e:
            logger.warning(
                f"Invalid pattern for field {field.id}, skipping pattern check: {e}",
                extra={"field_id": field.id, "pattern": pattern},
            )
        else:
            if not regex.match(value):
                errors.append(
                    c.get("patternMessage") or f"Field '{field.name}' does not match required pattern"
                )
    return errors


def validate_number(field: FieldDef, value: Any) -> list[str]:
    if not _is_number(value) or (isinstance(value, float) and math.isnan(value)):
        return [f"Field '{field.name}' must be a number"]

    c = field.constraints
    if c.get("minValue") is not None and value < c["minValue"]:
        return [f"Field '{field.name}' must be at least {c['minValue']}"]
    if c.get("maxValue") is not None and value > c["maxValue"]:
        return [f"Field '{field.name}' must not exceed {c['maxValue']}"]
    return []


def validate_boolean(field: FieldDef, value: Any) -> list[str]:
    if not isinstance(value, bool):
        return [f"Field '{field.name}' must be a boolean"]
    return []


def validate_date(field: FieldDef, value: Any) -> list[str]:
    if _is_number(value):
        return []
    if not isinstance(value, str):
        return [f"Field '{field.name}' must be a date (string or number)"]
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return [f"Field '{field.name}' must be a valid date string"]
    return []


def validate_select(field: FieldDef, value: Any) -> list[str]:
    allowed = field.option_values()
    if allowed is not None and value not in allowed:
        return [f"Field '{field.name}' must be one of: {', '.join(allowed)}"]
    return []


def validate_multiselect(field: FieldDef, value: Any) -> list[str]:
    if not isinstance(value, list):
        return [f"Field '{field.name}' must be an array"]
    allowed = field.option_values()
    if allowed is None:
        return []
    return [
        f"Field '{field.name}' contains invalid value: {v}"
        for v in value
        if v not in allowed
    ]


def validate_link(field: FieldDef, value: Any) -> list[str]:
    if field.constraints.get("allowMultiple"):
        if not isinstance(value, list):
            return [f"Field '{field.name}' must be an array"]
        if not all(isinstance(v, str) for v in value):
            return [f"Field '{field.name}' must contain only strings"]
        return []
    if not isinstance(value, str):
        return [f"Field '{field.name}' must be a string"]
    return []


def _check_url(field: FieldDef, url: str) -> list[str]:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return [f"Field '{field.name}' must be a valid HTTP or HTTPS URL"]
    if field.constraints.get("requireHttps") and parsed.scheme != "https":
        return [f"Field '{field.name}' must be a valid HTTPS URL"]
    return []


def validate_weblink(field: FieldDef, value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return _check_url(field, value)
    if isinstance(value, dict):
        url = value.get("url")
        if not isinstance(url, str) or not url:
            return [f"Field '{field.name}' must have a 'url' property (string)"]
        errors = _check_url(field, url)
        if "alias" in value and not isinstance(value["alias"], str):
            errors.append(f"Field '{field.name}' alias must be a string if provided")
        return errors
    return [f"Field '{field.name}' must be null, a string URL, or an object with url property"]


def validate_file(field: FieldDef, value: Any) -> list[str]:
    if isinstance(value, str):
        return []
    if isinstance(value, dict):
        if "url" in value and not isinstance(value["url"], str):
            return [f"Field '{field.name}' file object must have a string 'url' property"]
        return []
    return [f"Field '{field.name}' must be a string or object"]


def validate_country(field: FieldDef, value: Any) -> list[str]:
    if not isinstance(value, (str, dict)):
        return [f"Field '{field.name}' must be a string or object"]
    return []


class FieldValidatorRegistry:
    """Maps field kinds to validator functions.

    Example:
        >>> registry = FieldValidatorRegistry.with_defaults()
        >>> registry.register(FieldKind.COUNTRY, my_iso_country_check)
        >>> registry.validate_value(field, "NZ")
        []
    """

    def __init__(self) -> None:
        self._validators: dict[FieldKind, FieldValidator] = {}

    @classmethod
    def with_defaults(cls) -> FieldValidatorRegistry:
        registry = cls()
        for kind in (FieldKind.STRING, FieldKind.TEXT, FieldKind.MARKDOWN):
            registry.register(kind, validate_text)
        registry.register(FieldKind.NUMBER, validate_number)
        registry.register(FieldKind.BOOLEAN, validate_boolean)
        registry.register(FieldKind.DATE, validate_date)
        registry.register(FieldKind.SELECT, validate_select)
        registry.register(FieldKind.MULTISELECT, validate_multiselect)
        registry.register(FieldKind.LINK, validate_link)
        registry.register(FieldKind.WEBLINK, validate_weblink)
        for kind in (FieldKind.FILE, FieldKind.IMAGE, FieldKind.LOGO):
            registry.register(kind, validate_file)
        registry.register(FieldKind.COUNTRY, validate_country)
        return registry

    def register(self, kind: FieldKind, validator: FieldValidator) -> None:
        """Register (or replace) the validator for a field kind."""
        self._validators[kind] = validator

    def validate_value(self, field: FieldDef, value: Any) -> list[str]:
        validator = self._validators.get(field.kind)
        if validator is None:
            logger.warning(
                f"No validator for field kind '{field.kind.value}', skipping field {field.id}"
            )
            return []
        return validator(field, value)


class SchemaValidator:
    """Validates entity data against an entity type."""

    def __init__(self, registry: FieldValidatorRegistry | None = None) -> None:
        self.registry = registry or FieldValidatorRegistry.with_defaults()

    def validate_fields(self, data: dict[str, Any], entity_type: EntityType) -> dict[str, Any]:
        """Validate provided values and return the accepted subset.

        Raises:
            ValidationFailedError: If any id is unknown or any value is invalid
        """
        validated: dict[str, Any] = {}
        field_errors: dict[str, list[str]] = {}

        for field_id, value in data.items():
            field = entity_type.field(field_id)
            if field is None:
                field_errors[field_id] = [f"Field '{field_id}' is not defined in this entity type"]
                continue

            # Clearing an optional field
            if value is None and field.kind != FieldKind.WEBLINK:
                validated[field_id] = None
                continue

            errors = self.registry.validate_value(field, value)
            if errors:
                field_errors[field_id] = errors
            else:
                validated[field_id] = value

        if field_errors:
            raise ValidationFailedError("Invalid field values", field_errors=field_errors)
        return validated

    def validate_required(self, data: dict[str, Any], entity_type: EntityType) -> None:
        """Check every required field has a value.

        Raises:
            ValidationFailedError: Listing each missing field
        """
        field_errors = {
            f.id: [f"Field '{f.name}' is required"]
            for f in entity_type.fields
            if f.required and data.get(f.id) in (None, "")
        }
        if field_errors:
            raise ValidationFailedError(
                "Entity data validation failed", field_errors=field_errors
            )
