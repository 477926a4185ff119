"""Tool input schemas derived from trigger nodes.

A trigger may declare ``config.inputSchema`` either as an object schema
(``properties`` plus ``required``) or as a bare map of property schemas.
Declarations are normalized into ``{type: object, properties, required}``;
parts that are not usable are dropped and reported as problems, so graph
validation can flag them and tool derivation never fails on them.
"""

from typing import Any, Dict, Iterable, List, Mapping, Tuple
from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from ..models.core import WorkflowNode
from .template_registry import TemplateRegistry

# Port types that have a JSON Schema counterpart; "any" ports stay untyped
PORT_SCHEMA_TYPES = {"string", "number", "boolean", "object", "array"}


def empty_input_schema() -> Dict[str, Any]:
    return {"type": "object", "properties": {}, "required": []}


def declared_input_schema(node: WorkflowNode) -> Any:
    """The raw ``inputSchema`` a node declares, or None when it declares nothing."""
    declared = node.config.get("inputSchema")
    if declared is None or (isinstance(declared, Mapping) and not declared):
        return None
    return declared


def normalize_input_schema(declared: Any) -> Tuple[Dict[str, Any], List[str]]:
    """
    Normalize a declared input schema.

    Args:
        declared: The ``inputSchema`` value from a trigger config

    Returns:
        Tuple of (object schema, problems). Every problem names the part
        that was dropped.
    """
    schema = empty_input_schema()
    problems: List[str] = []

    if not isinstance(declared, Mapping):
        problems.append(f"inputSchema must be an object, got {type(declared).__name__}")
        return schema, problems

    if "properties" in declared:
        raw_properties = declared.get("properties")
        raw_required = declared.get("required", [])
        if raw_properties is None:
            raw_properties = {}
        if not isinstance(raw_properties, Mapping):
            problems.append(f"inputSchema.properties must be an object, got {type(raw_properties).__name__}")
            raw_properties = {}
    else:
        raw_properties = declared
        raw_required = []

    for name, raw in raw_properties.items():
        if not isinstance(raw, Mapping):
            problems.append(f"inputSchema property '{name}' must be an object")
            continue
        try:
            Draft202012Validator.check_schema(dict(raw))
        except SchemaError as e:
            problems.append(f"inputSchema property '{name}' is not a valid JSON schema: {e.message}")
            continue
        schema["properties"][name] = dict(raw)

    if raw_required is None:
        raw_required = []
    if not isinstance(raw_required, list):
        # a string would otherwise be read one character per field
        problems.append(f"inputSchema.required must be a list of property names, got {type(raw_required).__name__}")
        raw_required = []
    for name in raw_required:
        if not isinstance(name, str):
            problems.append(f"inputSchema.required entry {name!r} is not a property name")
        elif name not in schema["required"]:
            schema["required"].append(name)

    return schema, problems


def port_input_schema(node: WorkflowNode, registry: TemplateRegistry) -> Dict[str, Any]:
    """Build an input schema whose optional properties are the node template's output ports."""
    schema = empty_input_schema()
    template = registry.get(node.kind)
    for port in (template.outputs if template else ()):
        prop: Dict[str, Any] = {"description": port.description}
        if port.type in PORT_SCHEMA_TYPES:
            prop["type"] = port.type
        schema["properties"][port.name] = prop
    return schema


def merge_input_schemas(schemas: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """Merge object schemas: later properties win, required names are unioned in order."""
    merged = empty_input_schema()
    for schema in schemas:
        merged["properties"].update(schema.get("properties", {}))
        for name in schema.get("required", []):
            if name not in merged["required"]:
                merged["required"].append(name)
    return merged


class ArgumentChecker:
    """Checks ``tools/call`` arguments against a normalized input schema."""

    def __init__(self, schema: Dict[str, Any]):
        self.schema = schema
        self._validator = Draft202012Validator(schema)

    def check(self, arguments: Any) -> List[str]:
        """Return one message per violation, ordered by argument path."""
        errors = sorted(
            self._validator.iter_errors(arguments),
            key=lambda e: [str(part) for part in e.absolute_path]
        )
        messages = []
        for error in errors:
            path = ".".join(str(part) for part in error.absolute_path)
            messages.append(f"{path}: {error.message}" if path else error.message)
        return messages
