"""Config Validator: checks a node config map against its template schema."""

import copy
import re
from typing import Any, Dict, List, Mapping, Optional, Union
from urllib.parse import urlparse
from pydantic import ValidationError

from ..models.core import (
    ConfigErrorCode,
    ConfigFieldError,
    ConfigProperty,
    ConfigSchema,
    ConfigValidationResult,
)
from .exceptions import SchemaDefinitionError
from .logging import get_logger

logger = get_logger(__name__)

SchemaLike = Union[ConfigSchema, ConfigProperty, Mapping[str, Any]]

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def coerce_schema(schema: SchemaLike) -> ConfigSchema:
    """Turn a schema model or raw mapping into a ConfigSchema.

    Raises:
        SchemaDefinitionError: If the schema is malformed
    """
    if isinstance(schema, ConfigSchema):
        return schema
    if isinstance(schema, ConfigProperty):
        if schema.type != "object":
            raise SchemaDefinitionError(f"Config schema must be an object schema, got '{schema.type}'")
        return ConfigSchema(
            properties=schema.properties or {},
            required=schema.required,
            additional_properties=schema.additional_properties
        )
    if isinstance(schema, Mapping):
        try:
            return ConfigSchema.model_validate(dict(schema))
        except ValidationError as e:
            raise SchemaDefinitionError(f"Malformed config schema: {e}")
    raise SchemaDefinitionError(f"Unsupported schema type {type(schema).__name__}")


def is_empty(value: Any) -> bool:
    """Whether a value counts as missing for a required field."""
    if value is None:
        return True
    if isinstance(value, str) and value == "":
        return True
    if isinstance(value, (list, dict)) and len(value) == 0:
        return True
    return False


def _matches_type(value: Any, expected: str) -> bool:
    if expected == "string":
        return isinstance(value, str)
    if expected == "number":
        # bool is an int subclass
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if expected == "boolean":
        return isinstance(value, bool)
    if expected == "object":
        return isinstance(value, Mapping)
    if expected == "array":
        return isinstance(value, (list, tuple))
    return False


def _is_valid_uri(value: str) -> bool:
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return bool(parsed.scheme) and bool(parsed.netloc)


class ConfigValidator:
    """Validates config maps against ConfigSchema definitions.

    User mistakes are reported as ConfigFieldError values in declaration
    order. Only a malformed schema raises.
    """

    def validate(self, config: Optional[Mapping[str, Any]], schema: SchemaLike) -> ConfigValidationResult:
        """Validate ``config`` against ``schema``.

        Args:
            config: Node config map; None is treated as empty
            schema: Config schema as a model or raw mapping

        Returns:
            Result with ordered field-tagged errors

        Raises:
            SchemaDefinitionError: If the schema itself is malformed
        """
        resolved = coerce_schema(schema)
        errors: List[ConfigFieldError] = []

        if config is None:
            config = {}
        if not isinstance(config, Mapping):
            errors.append(ConfigFieldError(
                field="",
                code=ConfigErrorCode.TYPE_MISMATCH,
                message="Config must be an object",
                value=config
            ))
            return ConfigValidationResult(is_valid=False, errors=errors)

        self._check_object(
            config,
            resolved.properties,
            resolved.required,
            resolved.additional_properties,
            "",
            errors
        )

        if errors:
            logger.debug(f"Config validation found {len(errors)} errors")
        return ConfigValidationResult(is_valid=not errors, errors=errors)

    def _check_object(
        self,
        value: Mapping[str, Any],
        properties: Mapping[str, ConfigProperty],
        required: List[str],
        additional_properties: Optional[bool],
        prefix: str,
        errors: List[ConfigFieldError]
    ) -> None:
        missing = set()
        for name in required:
            if is_empty(value.get(name)):
                missing.add(name)
                errors.append(ConfigFieldError(
                    field=_join(prefix, name),
                    code=ConfigErrorCode.REQUIRED,
                    message=f"Field '{_join(prefix, name)}' is required",
                    value=value.get(name)
                ))

        # absent optional fields and fields already reported missing are not type-checked
        for name, prop in properties.items():
            if name in missing or value.get(name) is None:
                continue
            self._check_value(value[name], prop, _join(prefix, name), errors)

        # closed objects reject undeclared fields
        if additional_properties is False:
            for name in value:
                if name not in properties:
                    errors.append(ConfigFieldError(
                        field=_join(prefix, name),
                        code=ConfigErrorCode.UNKNOWN_FIELD,
                        message=f"Field '{_join(prefix, name)}' is not allowed",
                        value=value[name]
                    ))

    def _check_value(self, value: Any, prop: ConfigProperty, path: str, errors: List[ConfigFieldError]) -> None:
        if not _matches_type(value, prop.type):
            errors.append(ConfigFieldError(
                field=path,
                code=ConfigErrorCode.TYPE_MISMATCH,
                message=f"Field '{path}' must be of type {prop.type}",
                value=value
            ))
            # no further checks on a value of the wrong type
            return

        if prop.type == "string":
            self._check_string(value, prop, path, errors)
        elif prop.type == "number":
            if prop.minimum is not None and value < prop.minimum:
                errors.append(ConfigFieldError(
                    field=path,
                    code=ConfigErrorCode.MINIMUM,
                    message=f"Field '{path}' must be at least {prop.minimum:g}",
                    value=value
                ))
            if prop.maximum is not None and value > prop.maximum:
                errors.append(ConfigFieldError(
                    field=path,
                    code=ConfigErrorCode.MAXIMUM,
                    message=f"Field '{path}' must be at most {prop.maximum:g}",
                    value=value
                ))
        elif prop.type == "object" and (prop.properties or prop.required or prop.additional_properties is False):
            self._check_object(
                value,
                prop.properties or {},
                prop.required,
                prop.additional_properties,
                path,
                errors
            )
        elif prop.type == "array" and prop.items is not None:
            # items are checked with indexed paths, e.g. tags[2]
            for index, item in enumerate(value):
                if item is None:
                    continue
                self._check_value(item, prop.items, f"{path}[{index}]", errors)

        if prop.enum is not None and value not in prop.enum:
            allowed = ", ".join(str(option) for option in prop.enum)
            errors.append(ConfigFieldError(
                field=path,
                code=ConfigErrorCode.ENUM_MISMATCH,
                message=f"Field '{path}' must be one of: {allowed}",
                value=value
            ))

    def _check_string(self, value: str, prop: ConfigProperty, path: str, errors: List[ConfigFieldError]) -> None:
        if prop.min_length is not None and len(value) < prop.min_length:
            errors.append(ConfigFieldError(
                field=path,
                code=ConfigErrorCode.MIN_LENGTH,
                message=f"Field '{path}' must be at least {prop.min_length} characters",
                value=value
            ))
        if prop.max_length is not None and len(value) > prop.max_length:
            errors.append(ConfigFieldError(
                field=path,
                code=ConfigErrorCode.MAX_LENGTH,
                message=f"Field '{path}' must be at most {prop.max_length} characters",
                value=value
            ))
        if prop.pattern is not None:
            try:
                matched = re.search(prop.pattern, value) is not None
            except re.error as e:
                raise SchemaDefinitionError(f"Invalid pattern for '{path}': {e}", field=path)
            if not matched:
                errors.append(ConfigFieldError(
                    field=path,
                    code=ConfigErrorCode.PATTERN_MISMATCH,
                    message=f"Field '{path}' does not match pattern {prop.pattern}",
                    value=value
                ))
        # unknown formats are accepted
        if prop.format == "uri" and not _is_valid_uri(value):
            errors.append(ConfigFieldError(
                field=path,
                code=ConfigErrorCode.INVALID_FORMAT,
                message=f"Field '{path}' must be a valid URI",
                value=value
            ))
        elif prop.format == "email" and not _EMAIL_RE.match(value):
            errors.append(ConfigFieldError(
                field=path,
                code=ConfigErrorCode.INVALID_FORMAT,
                message=f"Field '{path}' must be a valid email address",
                value=value
            ))


def _join(prefix: str, name: str) -> str:
    return f"{prefix}.{name}" if prefix else name


def validate_config(config: Optional[Mapping[str, Any]], schema: SchemaLike) -> ConfigValidationResult:
    """Validate a config map with a fresh ConfigValidator."""
    return ConfigValidator().validate(config, schema)


def apply_defaults(schema: SchemaLike, config: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """Return a copy of ``config`` with schema defaults filled in for absent keys."""
    resolved = coerce_schema(schema)
    return _fill_defaults(resolved.properties, dict(config or {}))


def _fill_defaults(properties: Mapping[str, ConfigProperty], config: Dict[str, Any]) -> Dict[str, Any]:
    for name, prop in properties.items():
        if name not in config:
            # deep copy; the schema default stays untouched
            if prop.default is not None:
                config[name] = copy.deepcopy(prop.default)
        elif prop.type == "object" and prop.properties and isinstance(config[name], Mapping):
            config[name] = _fill_defaults(prop.properties, dict(config[name]))
    return config
