"""Custom exceptions for the workflow bridge with detailed error information.

Structural problems with a workflow (bad connections, cycles, schema
violations) are reported as data and never raised. The exceptions below cover
programmer errors, lifecycle misuse and protocol-level failures.
"""

from datetime import datetime
from typing import Optional, Dict, Any
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for categorizing exceptions."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors for better classification."""
    VALIDATION = "validation"
    EXECUTION = "execution"
    PROTOCOL = "protocol"
    CONFIGURATION = "configuration"
    NETWORK = "network"


class FlowBridgeError(Exception):
    """Base exception for all workflow bridge errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.EXECUTION,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.severity = severity
        self.category = category
        self.details = details or {}
        self.recoverable = recoverable
        self.context = context or {}
        self.timestamp = datetime.utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging and API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "details": self.details,
            "recoverable": self.recoverable,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "exception_type": self.__class__.__name__
        }

    def add_context(self, **kwargs):
        """Add additional context to the exception."""
        self.context.update(kwargs)
        return self

    def add_details(self, **kwargs):
        """Add additional details to the exception."""
        self.details.update(kwargs)
        return self


class SchemaDefinitionError(FlowBridgeError):
    """Raised when a config schema itself is malformed."""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if field:
            self.add_context(field=field)


class TemplateNotFoundError(FlowBridgeError):
    """Raised when a node kind is required but not registered."""

    def __init__(self, message: str, kind: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.VALIDATION,
            **kwargs
        )
        if kind:
            self.add_context(kind=kind)


class ExecutionStateError(FlowBridgeError):
    """Raised on an illegal execution status transition."""

    def __init__(
        self,
        message: str,
        execution_id: Optional[str] = None,
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.EXECUTION,
            **kwargs
        )
        if execution_id:
            self.add_context(execution_id=execution_id)
        if from_status or to_status:
            self.add_details(from_status=from_status, to_status=to_status)


class NodeExecutionError(FlowBridgeError):
    """Wraps an exception raised by a node executor."""

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        kind: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            error_code=kwargs.pop("error_code", "NODE_EXECUTION_ERROR"),
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.EXECUTION,
            recoverable=True,
            **kwargs
        )
        if node_id:
            self.add_context(node_id=node_id)
        if execution_id:
            self.add_context(execution_id=execution_id)
        if kind:
            self.add_context(kind=kind)


class ExecutionCoordinatorError(FlowBridgeError):
    """Raised when the execution coordinator is misused."""

    def __init__(
        self,
        message: str,
        execution_id: Optional[str] = None,
        workflow_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.EXECUTION,
            **kwargs
        )
        if execution_id:
            self.add_context(execution_id=execution_id)
        if workflow_id:
            self.add_context(workflow_id=workflow_id)


class ProtocolError(FlowBridgeError):
    """JSON-RPC level failure carrying a protocol error code."""

    def __init__(self, code: int, message: str, data: Any = None, **kwargs):
        super().__init__(
            message,
            error_code=str(code),
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.PROTOCOL,
            **kwargs
        )
        self.code = code
        self.data = data

    def to_rpc_error(self) -> Dict[str, Any]:
        """Render the JSON-RPC ``error`` member."""
        error = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


class BridgeNotFoundError(FlowBridgeError):
    """Raised when a request targets an MCP server that is not deployed."""

    def __init__(self, message: str, server_id: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.PROTOCOL,
            **kwargs
        )
        self.server_id = server_id
        if server_id:
            self.add_context(server_id=server_id)


class ConfigurationError(FlowBridgeError):
    """Raised when configuration is invalid or missing."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if config_key:
            self.add_context(config_key=config_key)


def create_error_response(error: FlowBridgeError) -> Dict[str, Any]:
    """Create a standardized error response from a FlowBridgeError."""
    return {
        "error": error.error_code,
        "message": error.message,
        "details": {
            **error.details,
            "severity": error.severity.value,
            "category": error.category.value,
            "recoverable": error.recoverable,
            "timestamp": error.timestamp.isoformat()
        },
        "context": error.context
    }
