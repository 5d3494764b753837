"""
Unit tests for entity data validation.

Tests cover:
- Per-kind validators and constraints
- Unknown fields and required fields
- Custom validator registration
"""

import pytest

from cms.portal_server.errors import ValidationFailedError
from cms.portal_server.schema import (
    EntityType,
    FieldDef,
    FieldKind,
    FieldValidatorRegistry,
    SchemaValidator,
)


def make_type(*fields: FieldDef) -> EntityType:
    return EntityType(id="t1", name="Thing", plural_name="Things", slug="things", fields=fields)


class TestFieldValidators:
    """Tests for individual field kinds."""

    @pytest.fixture
    def registry(self):
        return FieldValidatorRegistry.with_defaults()

    def test_text_length(self, registry):
        """minLength/maxLength are enforced."""
        f = FieldDef(id="code", name="Code", kind=FieldKind.STRING, constraints={"minLength": 2, "maxLength": 4})
        assert registry.validate_value(f, "abc") == []
        assert registry.validate_value(f, "a")
        assert registry.validate_value(f, "abcde")
        assert registry.validate_value(f, 12)

    def test_text_pattern_is_anchored(self, registry):
        """Patterns must match the whole value."""
        f = FieldDef(id="code", name="Code", kind=FieldKind.STRING, constraints={"pattern": "[A-Z]+"})
        assert registry.validate_value(f, "ABC") == []
        assert registry.validate_value(f, "ABC1")

    def test_invalid_pattern_is_skipped(self, registry):
        """A broken regex does not reject values."""
        f = FieldDef(id="code", name="Code", kind=FieldKind.STRING, constraints={"pattern": "[unclosed"})
        assert registry.validate_value(f, "anything") == []

    def test_number_bounds(self, registry):
        """Numbers respect min/max and reject booleans."""
        f = FieldDef(id="n", name="N", kind=FieldKind.NUMBER, constraints={"minValue": 0, "maxValue": 5})
        assert registry.validate_value(f, 3) == []
        assert registry.validate_value(f, 4.5) == []
        assert registry.validate_value(f, 6)
        assert registry.validate_value(f, -1)
        assert registry.validate_value(f, True)
        assert registry.validate_value(f, "3")

    def test_select_and_multiselect(self, registry):
        """Option constraints accept plain and {value} options."""
        options = {"options": ["red", {"value": "blue", "label": "Blue"}]}
        single = FieldDef(id="c", name="Colour", kind=FieldKind.SELECT, constraints=options)
        multi = FieldDef(id="cs", name="Colours", kind=FieldKind.MULTISELECT, constraints=options)
        assert registry.validate_value(single, "blue") == []
        assert registry.validate_value(single, "green")
        assert registry.validate_value(multi, ["red", "blue"]) == []
        assert len(registry.validate_value(multi, ["red", "green", "pink"])) == 2
        assert registry.validate_value(multi, "red")

    def test_weblink(self, registry):
        """Weblinks accept URLs and {url, alias} objects."""
        f = FieldDef(id="w", name="Site", kind=FieldKind.WEBLINK, constraints={"requireHttps": True})
        assert registry.validate_value(f, "https://example.com") == []
        assert registry.validate_value(f, {"url": "https://example.com", "alias": "Home"}) == []
        assert registry.validate_value(f, "http://example.com")
        assert registry.validate_value(f, {"alias": "x"})
        assert registry.validate_value(f, "not a url")

    def test_date(self, registry):
        """Dates accept ISO strings and timestamps."""
        f = FieldDef(id="d", name="Date", kind=FieldKind.DATE)
        assert registry.validate_value(f, "2024-05-01T10:00:00Z") == []
        assert registry.validate_value(f, 1714557600000) == []
        assert registry.validate_value(f, "yesterday")

    def test_link_multiple(self, registry):
        """Links are an id or a list of ids."""
        f = FieldDef(id="l", name="Related", kind=FieldKind.LINK, constraints={"allowMultiple": True})
        assert registry.validate_value(f, ["a1", "b2"]) == []
        assert registry.validate_value(f, "a1")

    def test_custom_validator(self, registry):
        """Registered validators replace the default for a kind."""
        registry.register(FieldKind.COUNTRY, lambda field, value: [] if value in ("NZ", "AU") else ["bad"])
        f = FieldDef(id="c", name="Country", kind=FieldKind.COUNTRY)
        assert registry.validate_value(f, "NZ") == []
        assert registry.validate_value(f, "XX") == ["bad"]


class TestSchemaValidator:
    """Tests for whole-entity validation."""

    @pytest.fixture
    def entity_type(self):
        return make_type(
            FieldDef(id="summary", name="Summary", kind=FieldKind.STRING, required=True),
            FieldDef(id="rating", name="Rating", kind=FieldKind.NUMBER),
        )

    def test_unknown_field_rejected(self, entity_type):
        """Ids outside the type are errors."""
        with pytest.raises(ValidationFailedError) as exc_info:
            SchemaValidator().validate_fields({"bogus": 1}, entity_type)
        assert "bogus" in exc_info.value.field_errors

    def test_errors_are_per_field(self, entity_type):
        """Every failing field is reported."""
        with pytest.raises(ValidationFailedError) as exc_info:
            SchemaValidator().validate_fields({"summary": 5, "rating": "x"}, entity_type)
        assert set(exc_info.value.field_errors) == {"summary", "rating"}
        assert exc_info.value.code == "VALIDATION_ERROR"

    def test_none_clears_value(self, entity_type):
        """None passes through as a clear."""
        assert SchemaValidator().validate_fields({"rating": None}, entity_type) == {"rating": None}

    def test_required(self, entity_type):
        """Missing and empty required values fail."""
        validator = SchemaValidator()
        validator.validate_required({"summary": "ok"}, entity_type)
        for data in ({}, {"summary": ""}, {"summary": None}):
            with pytest.raises(ValidationFailedError) as exc_info:
                validator.validate_required(data, entity_type)
            assert "summary" in exc_info.value.field_errors
