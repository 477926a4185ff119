"""Data models for the workflow bridge."""

from .core import (
    ConfigProperty,
    ConfigSchema,
    PortDefinition,
    NodeTemplate,
    CategoryInfo,
    TemplateListResponse,
    Position,
    WorkflowNode,
    WorkflowConnection,
    WorkflowMetadata,
    WorkflowDefinition,
    ConfigErrorCode,
    ConfigFieldError,
    ConfigValidationResult,
    ConnectionErrorType,
    ConnectionWarningType,
    ConnectionRequest,
    ConnectionValidationError,
    ConnectionValidationWarning,
    ConnectionValidationResult,
    CircularDependency,
    ConnectionAnalysis,
    WorkflowErrorType,
    WorkflowWarningType,
    WorkflowValidationError,
    WorkflowValidationWarning,
    WorkflowValidationResult,
    NodeConnectionInfo,
)
from .execution import (
    ExecutionStatusEnum,
    NodeRunStatus,
    SkipReason,
    NodeResult,
    Execution,
)
from .mcp import (
    Tool,
    ContentBlock,
    CallToolResult,
    InitializeResult,
    JsonRpcRequest,
)

__all__ = [
    "ConfigProperty",
    "ConfigSchema",
    "PortDefinition",
    "NodeTemplate",
    "CategoryInfo",
    "TemplateListResponse",
    "Position",
    "WorkflowNode",
    "WorkflowConnection",
    "WorkflowMetadata",
    "WorkflowDefinition",
    "ConfigErrorCode",
    "ConfigFieldError",
    "ConfigValidationResult",
    "ConnectionErrorType",
    "ConnectionWarningType",
    "ConnectionRequest",
    "ConnectionValidationError",
    "ConnectionValidationWarning",
    "ConnectionValidationResult",
    "CircularDependency",
    "ConnectionAnalysis",
    "WorkflowErrorType",
    "WorkflowWarningType",
    "WorkflowValidationError",
    "WorkflowValidationWarning",
    "WorkflowValidationResult",
    "NodeConnectionInfo",
    "ExecutionStatusEnum",
    "NodeRunStatus",
    "SkipReason",
    "NodeResult",
    "Execution",
    "Tool",
    "ContentBlock",
    "CallToolResult",
    "InitializeResult",
    "JsonRpcRequest",
]
