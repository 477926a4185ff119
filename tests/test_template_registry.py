"""Tests for the template registry."""

import pytest

from flowbridge.core.exceptions import TemplateNotFoundError
from flowbridge.core.template_registry import TemplateRegistry, builtin_templates, default_registry
from flowbridge.models.core import NodeTemplate


class TestTemplateRegistry:
    """Test cases for TemplateRegistry."""

    def test_builtin_kinds(self, registry):
        assert set(registry.kinds()) == {
            "manual", "webhook", "schedule", "http", "email", "condition", "transform"
        }

    def test_unknown_kind_returns_none(self, registry):
        assert registry.get("does-not-exist") is None
        assert not registry.has("does-not-exist")
        assert not registry.is_trigger("does-not-exist")

    def test_require_raises_for_unknown_kind(self, registry):
        with pytest.raises(TemplateNotFoundError) as exc_info:
            registry.require("does-not-exist")
        assert exc_info.value.context["kind"] == "does-not-exist"

    def test_trigger_kinds(self, registry):
        assert registry.is_trigger("webhook")
        assert registry.is_trigger("manual")
        assert registry.is_trigger("schedule")
        assert not registry.is_trigger("http")
        assert not registry.is_trigger("condition")

    def test_http_template_schema(self, registry):
        schema = registry.require("http").config_schema
        assert schema.required == ["url", "method"]
        assert schema.properties["url"].format == "uri"
        assert schema.properties["timeout"].minimum == 1
        assert schema.properties["timeout"].maximum == 300

    def test_registry_is_read_only(self, registry):
        with pytest.raises(TypeError):
            registry._templates["new"] = registry.require("http")

    def test_templates_are_frozen(self, registry):
        template = registry.require("http")
        with pytest.raises(Exception):
            template.name = "changed"

    def test_duplicate_kind_rejected(self):
        templates = builtin_templates()
        with pytest.raises(ValueError):
            TemplateRegistry(templates + [templates[0]])

    def test_default_registry_is_shared(self):
        assert default_registry() is default_registry()

    def test_default_config(self, registry):
        assert registry.default_config("http") == {"method": "GET", "timeout": 30}
        assert registry.default_config("webhook") == {
            "path": "/webhook", "method": "POST", "authentication": "none"
        }

    def test_wire_shape_uses_camel_case(self, registry):
        wire = registry.require("http").to_wire()
        assert "configSchema" in wire
        assert "config_schema" not in wire


class TestTemplateListing:
    """Test cases for filtered template listing."""

    def test_filter_by_category(self, registry):
        listing = registry.list_templates(category="triggers")
        assert {t.kind for t in listing.templates} == {"manual", "webhook", "schedule"}
        assert listing.total == 3

    def test_search_matches_name_description_and_tags(self, registry):
        assert [t.kind for t in registry.list_templates(search="cron").templates] == ["schedule"]
        assert "http" in [t.kind for t in registry.list_templates(search="http request").templates]
        assert [t.kind for t in registry.list_templates(search="email message").templates] == ["email"]

    def test_filter_by_tags(self, registry):
        kinds = {t.kind for t in registry.list_templates(tags=["http"]).templates}
        assert kinds == {"webhook", "http"}

    def test_pagination(self, registry):
        first = registry.list_templates(page=1, limit=3)
        second = registry.list_templates(page=2, limit=3)
        assert len(first.templates) == 3
        assert first.total == len(registry)
        assert not {t.kind for t in first.templates} & {t.kind for t in second.templates}

    def test_deprecated_hidden_by_default(self):
        templates = builtin_templates()
        legacy = NodeTemplate(
            id="legacy-ftp",
            kind="ftp",
            name="FTP Upload",
            category="actions",
            deprecated=True
        )
        registry = TemplateRegistry(templates + [legacy])

        assert "ftp" not in [t.kind for t in registry.list_templates().templates]
        assert "ftp" in [t.kind for t in registry.list_templates(include_deprecated=True).templates]

    def test_category_info_counts(self, registry):
        counts = {info.category: info.count for info in registry.category_info()}
        assert counts == {"triggers": 3, "actions": 2, "conditions": 1, "transforms": 1}
