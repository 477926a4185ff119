"""Tests for single connection validation."""

import pytest

from conftest import build_workflow
from flowbridge.core.connection_validator import ConnectionValidator
from flowbridge.core.template_registry import TemplateRegistry, builtin_templates
from flowbridge.models.core import (
    ConnectionErrorType,
    ConnectionRequest,
    ConnectionWarningType,
    NodeTemplate,
)


@pytest.fixture
def validator(registry):
    return ConnectionValidator(registry)


@pytest.fixture
def chain():
    """t -> a -> b, plus an unconnected c."""
    return build_workflow(
        [("t", "webhook"), ("a", "http"), ("b", "transform"), ("c", "email")],
        [("t", "a"), ("a", "b")]
    )


class TestConnectionValidator:
    """Test cases for ConnectionValidator."""

    def test_valid_connection(self, validator, chain):
        result = validator.validate(chain, "b", "c")

        assert result.is_valid
        assert result.errors == []
        assert result.warnings == []

    def test_self_connection(self, validator, chain):
        result = validator.validate(chain, "a", "a")

        assert not result.is_valid
        assert [e.type for e in result.errors] == [ConnectionErrorType.SELF_CONNECTION]

    def test_self_connection_regardless_of_ports(self, validator, chain):
        result = validator.validate(chain, "a", "a", "response", "body")
        assert result.has_error(ConnectionErrorType.SELF_CONNECTION)

    def test_missing_nodes(self, validator, chain):
        result = validator.validate(chain, "ghost", "phantom")

        assert [e.type for e in result.errors] == [
            ConnectionErrorType.NODE_NOT_FOUND,
            ConnectionErrorType.NODE_NOT_FOUND,
        ]
        assert "ghost" in result.errors[0].message
        assert "phantom" in result.errors[1].message

    def test_missing_target_only(self, validator, chain):
        result = validator.validate(chain, "a", "ghost")
        assert [e.type for e in result.errors] == [ConnectionErrorType.NODE_NOT_FOUND]

    def test_duplicate_connection(self, validator, chain):
        result = validator.validate(chain, "t", "a")

        assert [e.type for e in result.errors] == [ConnectionErrorType.DUPLICATE_CONNECTION]

    def test_same_endpoints_with_different_ports_is_not_duplicate(self, validator, chain):
        result = validator.validate(chain, "t", "a", "body", "body")
        assert result.is_valid

    def test_back_edge_is_circular(self, validator, webhook_to_http):
        result = validator.validate(webhook_to_http, "a", "t")

        assert result.has_error(ConnectionErrorType.CIRCULAR_DEPENDENCY)
        assert not result.is_valid

    def test_long_back_edge_is_circular(self, validator, chain):
        result = validator.validate(chain, "b", "t")
        assert [e.type for e in result.errors] == [ConnectionErrorType.CIRCULAR_DEPENDENCY]

    def test_forward_shortcut_is_not_circular(self, validator, chain):
        result = validator.validate(chain, "t", "b")
        assert result.is_valid

    def test_port_compatibility_not_yet_enforced(self, validator, chain):
        result = validator.validate(chain, "a", "c", "no-such-port", "also-missing")

        assert result.is_valid
        assert not result.has_error(ConnectionErrorType.PORT_NOT_FOUND)
        assert not result.has_error(ConnectionErrorType.INCOMPATIBLE_TYPES)

    def test_trigger_as_target_warning(self, validator, chain):
        workflow = build_workflow([("a", "http"), ("t", "manual")], [])
        result = validator.validate(workflow, "a", "t")

        assert result.is_valid
        assert [w.type for w in result.warnings] == [ConnectionWarningType.TRIGGER_AS_TARGET]

    def test_deprecated_node_warning(self):
        legacy = NodeTemplate(id="legacy-ftp", kind="ftp", name="FTP Upload", category="actions", deprecated=True)
        registry = TemplateRegistry(builtin_templates() + [legacy])
        workflow = build_workflow([("t", "manual"), ("f", "ftp", {})])

        result = ConnectionValidator(registry).validate(workflow, "t", "f")

        assert result.is_valid
        assert [w.type for w in result.warnings] == [ConnectionWarningType.DEPRECATED_NODE]

    def test_no_warnings_without_registry(self, chain):
        workflow = build_workflow([("a", "http"), ("t", "manual")], [])
        result = ConnectionValidator().validate(workflow, "a", "t")

        assert result.is_valid
        assert result.warnings == []

    def test_validate_request(self, validator, chain):
        request = ConnectionRequest.model_validate({"sourceNodeId": "a", "targetNodeId": "a"})
        result = validator.validate_request(chain, request)

        assert result.has_error(ConnectionErrorType.SELF_CONNECTION)
        wire = result.to_wire()
        assert wire["errors"][0]["sourceNodeId"] == "a"
        assert wire["isValid"] is False

    def test_validation_does_not_mutate_definition(self, validator, chain):
        before = chain.model_dump()
        validator.validate(chain, "b", "t")
        assert chain.model_dump() == before
