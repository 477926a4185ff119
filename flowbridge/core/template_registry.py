"""Template Registry: read-only catalog of node kinds."""

from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..models.core import CategoryInfo, NodeTemplate, TemplateListResponse
from .exceptions import TemplateNotFoundError
from .logging import get_logger

logger = get_logger(__name__)


CATEGORY_DISPLAY = {
    "triggers": {"name": "Triggers", "description": "Nodes that start a workflow", "icon": "play"},
    "actions": {"name": "Actions", "description": "Nodes that perform work", "icon": "zap"},
    "conditions": {"name": "Conditions", "description": "Nodes that control the flow", "icon": "git-branch"},
    "transforms": {"name": "Transforms", "description": "Nodes that reshape data", "icon": "code"},
    "integrations": {"name": "Integrations", "description": "Nodes that talk to external services", "icon": "link"},
    "utilities": {"name": "Utilities", "description": "Helper nodes", "icon": "tool"},
    "custom": {"name": "Custom", "description": "User defined nodes", "icon": "settings"},
}


class TemplateRegistry:
    """Immutable lookup of node kind to NodeTemplate.

    The registry is built once and handed to validators and coordinators
    explicitly. Lookups never mutate it, so it is safe to share between
    threads without locking.
    """

    def __init__(self, templates: Iterable[NodeTemplate]):
        catalog: Dict[str, NodeTemplate] = {}
        for template in templates:
            if template.kind in catalog:
                raise ValueError(f"Duplicate template kind '{template.kind}'")
            catalog[template.kind] = template
        # read-only view; nothing can register after construction
        self._templates: Mapping[str, NodeTemplate] = MappingProxyType(catalog)
        logger.debug(f"Template registry loaded with {len(catalog)} kinds")

    def __len__(self) -> int:
        return len(self._templates)

    def __contains__(self, kind: str) -> bool:
        return kind in self._templates

    def get(self, kind: str) -> Optional[NodeTemplate]:
        """Return the template for ``kind`` or None when it is not registered."""
        return self._templates.get(kind)

    def require(self, kind: str) -> NodeTemplate:
        """Return the template for ``kind``.

        Raises:
            TemplateNotFoundError: If the kind is not registered
        """
        template = self._templates.get(kind)
        if template is None:
            raise TemplateNotFoundError(f"Unknown node kind '{kind}'", kind=kind)
        return template

    def has(self, kind: str) -> bool:
        return kind in self._templates

    def is_trigger(self, kind: str) -> bool:
        template = self._templates.get(kind)
        return template is not None and template.is_trigger

    def kinds(self) -> List[str]:
        return list(self._templates.keys())

    def templates(self) -> List[NodeTemplate]:
        return list(self._templates.values())

    def list_templates(
        self,
        category: Optional[str] = None,
        kind: Optional[str] = None,
        search: Optional[str] = None,
        tags: Optional[List[str]] = None,
        include_deprecated: bool = False,
        page: int = 1,
        limit: int = 50
    ) -> TemplateListResponse:
        """List templates matching the given filters.

        Args:
            category: Only templates in this category
            kind: Only the template of this kind
            search: Case-insensitive match on name, description or tags
            tags: Only templates carrying at least one of these tags
            include_deprecated: Whether deprecated templates are listed
            page: 1-based page number
            limit: Page size

        Returns:
            Page of matching templates, category summary and total match count
        """
        templates = list(self._templates.values())

        # filters narrow in sequence; every one is optional
        if category:
            templates = [t for t in templates if t.category == category]
        if kind:
            templates = [t for t in templates if t.kind == kind]
        if search:
            needle = search.lower()
            templates = [
                t for t in templates
                if needle in t.name.lower()
                or needle in t.description.lower()
                or any(needle in tag.lower() for tag in t.tags)
            ]
        if tags:
            wanted = set(tags)
            templates = [t for t in templates if wanted.intersection(t.tags)]
        if not include_deprecated:
            templates = [t for t in templates if not t.deprecated]

        # total counts matches before paging
        total = len(templates)
        page = max(page, 1)
        start = (page - 1) * limit
        return TemplateListResponse(
            templates=templates[start:start + limit],
            categories=self.category_info(),
            total=total
        )

    def category_info(self) -> List[CategoryInfo]:
        """Count templates per category, in first-seen order."""
        counts: Dict[str, int] = {}
        for template in self._templates.values():
            counts[template.category] = counts.get(template.category, 0) + 1

        return [
            CategoryInfo(
                category=category,
                name=CATEGORY_DISPLAY[category]["name"],
                description=CATEGORY_DISPLAY[category]["description"],
                icon=CATEGORY_DISPLAY[category]["icon"],
                count=count
            )
            for category, count in counts.items()
        ]

    def default_config(self, kind: str) -> Dict[str, Any]:
        """Config for a new node of ``kind`` built from schema defaults."""
        template = self.require(kind)
        return {
            name: prop.default
            for name, prop in template.config_schema.properties.items()
            if prop.default is not None
        }


_HTTP_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]

# Built-in node catalog
_BUILTIN_TEMPLATES: List[Dict[str, Any]] = [
    {
        "id": "trigger-manual",
        "kind": "manual",
        "name": "Manual Trigger",
        "description": "Start the workflow by hand",
        "category": "triggers",
        "icon": "play",
        "tags": ["trigger", "manual"],
        "outputs": [{"name": "output", "type": "any", "description": "Trigger payload"}],
        "configSchema": {
            "properties": {
                "name": {"type": "string", "title": "Trigger name", "default": "Manual trigger"},
                "inputSchema": {"type": "object", "title": "Input schema"},
            },
        },
    },
    {
        "id": "trigger-webhook",
        "kind": "webhook",
        "name": "Webhook Trigger",
        "description": "Start the workflow from an HTTP request",
        "category": "triggers",
        "icon": "globe",
        "tags": ["trigger", "http", "webhook"],
        "outputs": [
            {"name": "body", "type": "object", "description": "Request body"},
            {"name": "headers", "type": "object", "description": "Request headers"},
        ],
        "configSchema": {
            "properties": {
                "path": {"type": "string", "title": "Webhook path", "default": "/webhook", "pattern": "^/"},
                "method": {
                    "type": "string", "title": "HTTP method",
                    "enum": ["GET", "POST", "PUT", "DELETE"], "default": "POST",
                },
                "authentication": {
                    "type": "string", "title": "Authentication",
                    "enum": ["none", "basic", "bearer", "api_key"], "default": "none",
                },
                "inputSchema": {"type": "object", "title": "Input schema"},
            },
            "required": ["method"],
        },
    },
    {
        "id": "trigger-schedule",
        "kind": "schedule",
        "name": "Schedule Trigger",
        "description": "Start the workflow on a cron schedule",
        "category": "triggers",
        "icon": "clock",
        "tags": ["trigger", "cron", "schedule"],
        "outputs": [{"name": "timestamp", "type": "string", "description": "Scheduled fire time"}],
        "configSchema": {
            "properties": {
                "cron": {
                    "type": "string", "title": "Cron expression",
                    "pattern": r"^\S+(\s+\S+){4}$",
                },
                "timezone": {"type": "string", "title": "Timezone", "default": "UTC"},
            },
            "required": ["cron"],
        },
    },
    {
        "id": "action-http",
        "kind": "http",
        "name": "HTTP Request",
        "description": "Call an HTTP API",
        "category": "actions",
        "icon": "globe",
        "tags": ["http", "api", "request"],
        "inputs": [
            {"name": "url", "type": "string", "description": "Request URL"},
            {"name": "headers", "type": "object", "description": "Request headers"},
            {"name": "body", "type": "object", "description": "Request body"},
        ],
        "outputs": [
            {"name": "response", "type": "object", "description": "Response payload"},
            {"name": "status", "type": "number", "description": "Response status code"},
        ],
        "configSchema": {
            "properties": {
                "url": {"type": "string", "title": "URL", "format": "uri"},
                "method": {"type": "string", "title": "HTTP method", "enum": _HTTP_METHODS, "default": "GET"},
                "headers": {"type": "object", "title": "Headers"},
                "timeout": {
                    "type": "number", "title": "Timeout (seconds)",
                    "minimum": 1, "maximum": 300, "default": 30,
                },
            },
            "required": ["url", "method"],
        },
    },
    {
        "id": "action-email",
        "kind": "email",
        "name": "Send Email",
        "description": "Send an email message",
        "category": "actions",
        "icon": "mail",
        "tags": ["email", "notification"],
        "inputs": [
            {"name": "to", "type": "string", "required": True, "description": "Recipient"},
            {"name": "subject", "type": "string", "required": True, "description": "Subject"},
            {"name": "body", "type": "string", "required": True, "description": "Message body"},
        ],
        "outputs": [
            {"name": "messageId", "type": "string", "description": "Message id"},
            {"name": "success", "type": "boolean", "description": "Whether the message was sent"},
        ],
        "configSchema": {
            "properties": {
                "to": {"type": "string", "title": "Recipient", "pattern": r"^[^@\s]+@[^@\s]+\.[^@\s]+$"},
                "from": {"type": "string", "title": "Sender", "pattern": r"^[^@\s]+@[^@\s]+\.[^@\s]+$"},
                "subject": {"type": "string", "title": "Subject", "maxLength": 200},
                "provider": {
                    "type": "string", "title": "Provider",
                    "enum": ["smtp", "sendgrid", "mailgun"], "default": "smtp",
                },
            },
            "required": ["to", "subject"],
        },
    },
    {
        "id": "condition-if",
        "kind": "condition",
        "name": "Condition",
        "description": "Route data down one of two branches",
        "category": "conditions",
        "icon": "git-branch",
        "tags": ["logic", "branch", "if"],
        "inputs": [{"name": "input", "type": "any", "required": True, "description": "Input data"}],
        "outputs": [
            {"name": "true", "type": "any", "description": "Taken when the condition holds"},
            {"name": "false", "type": "any", "description": "Taken otherwise"},
        ],
        "configSchema": {
            "properties": {
                "condition": {"type": "string", "title": "Expression", "minLength": 1},
                "operator": {
                    "type": "string", "title": "Operator",
                    "enum": [">", "<", ">=", "<=", "==", "!=", "contains"], "default": "==",
                },
            },
            "required": ["condition"],
        },
    },
    {
        "id": "transform-data",
        "kind": "transform",
        "name": "Transform Data",
        "description": "Map input data into a new shape",
        "category": "transforms",
        "icon": "code",
        "tags": ["transform", "mapping"],
        "inputs": [{"name": "input", "type": "any", "required": True, "description": "Input data"}],
        "outputs": [{"name": "output", "type": "any", "description": "Transformed data"}],
        "configSchema": {
            "properties": {
                "mapping": {"type": "object", "title": "Mapping"},
                "format": {
                    "type": "string", "title": "Output format",
                    "enum": ["json", "xml", "csv", "text"], "default": "json",
                },
            },
        },
    },
]


def builtin_templates() -> List[NodeTemplate]:
    return [NodeTemplate.model_validate(raw) for raw in _BUILTIN_TEMPLATES]


_default_registry: Optional[TemplateRegistry] = None


def default_registry() -> TemplateRegistry:
    """Get the registry of built-in templates, creating it once."""
    global _default_registry
    if _default_registry is None:
        _default_registry = TemplateRegistry(builtin_templates())
    return _default_registry
