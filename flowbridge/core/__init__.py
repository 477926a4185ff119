"""Core workflow bridge components."""

from .exceptions import (
    FlowBridgeError,
    SchemaDefinitionError,
    TemplateNotFoundError,
    ExecutionStateError,
    NodeExecutionError,
    ExecutionCoordinatorError,
    ProtocolError,
    BridgeNotFoundError,
    ConfigurationError,
)
from .logging import setup_logging, get_logger

__all__ = [
    "FlowBridgeError",
    "SchemaDefinitionError",
    "TemplateNotFoundError",
    "ExecutionStateError",
    "NodeExecutionError",
    "ExecutionCoordinatorError",
    "ProtocolError",
    "BridgeNotFoundError",
    "ConfigurationError",
    "setup_logging",
    "get_logger",
]
