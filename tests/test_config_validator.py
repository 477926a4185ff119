"""Tests for node config validation."""

import pytest

from flowbridge.core.config_validator import ConfigValidator, apply_defaults, is_empty, validate_config
from flowbridge.core.exceptions import SchemaDefinitionError
from flowbridge.models.core import ConfigErrorCode


@pytest.fixture
def validator():
    return ConfigValidator()


@pytest.fixture
def http_schema(registry):
    return registry.require("http").config_schema


class TestConfigValidator:
    """Test cases for ConfigValidator against built-in schemas."""

    def test_valid_http_config(self, validator, http_schema):
        result = validator.validate({"url": "https://api.example.com", "method": "POST", "timeout": 10}, http_schema)
        assert result.is_valid
        assert result.errors == []

    def test_missing_required_fields_in_declaration_order(self, validator, http_schema):
        result = validator.validate({}, http_schema)

        assert not result.is_valid
        assert [(e.field, e.code) for e in result.errors] == [
            ("url", ConfigErrorCode.REQUIRED),
            ("method", ConfigErrorCode.REQUIRED),
        ]

    def test_none_config_treated_as_empty(self, validator, http_schema):
        result = validator.validate(None, http_schema)
        assert len(result.errors) == 2

    def test_empty_string_counts_as_missing(self, validator, registry):
        schema = registry.require("condition").config_schema
        result = validator.validate({"condition": ""}, schema)

        assert [e.code for e in result.errors] == [ConfigErrorCode.REQUIRED]

    def test_invalid_uri(self, validator, http_schema):
        result = validator.validate({"url": "not a url", "method": "GET"}, http_schema)

        assert len(result.errors) == 1
        assert result.errors[0].field == "url"
        assert result.errors[0].code == ConfigErrorCode.INVALID_FORMAT

    def test_number_bounds(self, validator, http_schema):
        low = validator.validate({"url": "https://x.io", "method": "GET", "timeout": 0}, http_schema)
        high = validator.validate({"url": "https://x.io", "method": "GET", "timeout": 301}, http_schema)

        assert [e.code for e in low.errors] == [ConfigErrorCode.MINIMUM]
        assert [e.code for e in high.errors] == [ConfigErrorCode.MAXIMUM]
        assert "300" in high.errors[0].message

    @pytest.mark.parametrize("timeout", ["30", True, [30]])
    def test_type_mismatch_short_circuits_field(self, validator, http_schema, timeout):
        result = validator.validate({"url": "https://x.io", "method": "GET", "timeout": timeout}, http_schema)

        assert [(e.field, e.code) for e in result.errors] == [("timeout", ConfigErrorCode.TYPE_MISMATCH)]
        assert result.errors[0].value == timeout

    def test_enum_mismatch(self, validator, http_schema):
        result = validator.validate({"url": "https://x.io", "method": "FETCH"}, http_schema)

        assert [e.code for e in result.errors] == [ConfigErrorCode.ENUM_MISMATCH]
        assert "GET" in result.errors[0].message

    def test_string_length_and_pattern(self, validator, registry):
        schema = registry.require("email").config_schema
        result = validator.validate({"to": "not-an-address", "subject": "x" * 201}, schema)

        assert [(e.field, e.code) for e in result.errors] == [
            ("to", ConfigErrorCode.PATTERN_MISMATCH),
            ("subject", ConfigErrorCode.MAX_LENGTH),
        ]

    def test_non_mapping_config(self, validator, http_schema):
        result = validator.validate(["url"], http_schema)

        assert not result.is_valid
        assert result.errors[0].field == ""
        assert result.errors[0].code == ConfigErrorCode.TYPE_MISMATCH

    def test_result_wire_shape(self, validator, http_schema):
        wire = validator.validate({}, http_schema).to_wire()
        assert wire["isValid"] is False
        assert wire["errors"][0]["code"] == "REQUIRED"


class TestRawSchemas:
    """Test cases for schemas given as plain mappings."""

    def test_nested_object_paths(self, validator):
        schema = {
            "properties": {
                "auth": {
                    "type": "object",
                    "properties": {
                        "token": {"type": "string", "minLength": 8},
                        "scheme": {"type": "string", "enum": ["bearer", "basic"]},
                    },
                    "required": ["scheme"],
                }
            }
        }
        result = validator.validate({"auth": {"token": "short"}}, schema)

        assert [(e.field, e.code) for e in result.errors] == [
            ("auth.scheme", ConfigErrorCode.REQUIRED),
            ("auth.token", ConfigErrorCode.MIN_LENGTH),
        ]

    def test_array_items(self, validator):
        schema = {
            "properties": {
                "recipients": {"type": "array", "items": {"type": "string", "format": "email"}}
            }
        }
        result = validator.validate({"recipients": ["a@example.com", "broken", 7]}, schema)

        assert [(e.field, e.code) for e in result.errors] == [
            ("recipients[1]", ConfigErrorCode.INVALID_FORMAT),
            ("recipients[2]", ConfigErrorCode.TYPE_MISMATCH),
        ]

    def test_unknown_fields_when_closed(self, validator):
        schema = {"properties": {"a": {"type": "string"}}, "additionalProperties": False}
        result = validator.validate({"a": "x", "b": 1}, schema)

        assert [(e.field, e.code) for e in result.errors] == [("b", ConfigErrorCode.UNKNOWN_FIELD)]

    def test_unknown_fields_allowed_by_default(self, validator):
        result = validator.validate({"a": "x", "b": 1}, {"properties": {"a": {"type": "string"}}})
        assert result.is_valid

    def test_malformed_schema_raises(self, validator):
        with pytest.raises(SchemaDefinitionError):
            validator.validate({}, {"properties": {"x": {"type": "widget"}}})

    def test_invalid_pattern_raises(self, validator):
        schema = {"properties": {"x": {"type": "string", "pattern": "("}}}
        with pytest.raises(SchemaDefinitionError) as exc_info:
            validator.validate({"x": "value"}, schema)
        assert exc_info.value.context["field"] == "x"

    def test_module_level_helper(self):
        result = validate_config({"n": 5}, {"properties": {"n": {"type": "number", "maximum": 3}}})
        assert result.errors[0].code == ConfigErrorCode.MAXIMUM


class TestHelpers:
    """Test cases for module helpers."""

    @pytest.mark.parametrize("value,expected", [
        (None, True),
        ("", True),
        ([], True),
        ({}, True),
        (0, False),
        (False, False),
        ("x", False),
    ])
    def test_is_empty(self, value, expected):
        assert is_empty(value) is expected

    def test_apply_defaults_keeps_given_values(self, http_schema):
        config = apply_defaults(http_schema, {"url": "https://x.io", "timeout": 5})
        assert config == {"url": "https://x.io", "method": "GET", "timeout": 5}

    def test_apply_defaults_nested(self):
        schema = {
            "properties": {
                "retry": {
                    "type": "object",
                    "properties": {"attempts": {"type": "number", "default": 3}},
                }
            }
        }
        assert apply_defaults(schema, {"retry": {}}) == {"retry": {"attempts": 3}}

    def test_apply_defaults_does_not_share_defaults(self):
        schema = {"properties": {"tags": {"type": "array", "default": ["a"]}}}
        first = apply_defaults(schema)
        first["tags"].append("b")
        assert apply_defaults(schema) == {"tags": ["a"]}
