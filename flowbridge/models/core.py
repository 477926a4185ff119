"""Core Pydantic models for workflow definitions, templates and validation results."""

import uuid
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator


PropertyType = Literal["string", "number", "boolean", "object", "array"]
PortType = Literal["string", "number", "boolean", "object", "array", "any"]
NodeCategory = Literal[
    "triggers", "actions", "conditions", "transforms", "integrations", "utilities", "custom"
]


class WireModel(BaseModel):
    """Base model whose JSON shape uses camelCase aliases."""
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """Serialize to the camelCase JSON shape used on the wire."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# --- Templates and config schemas -------------------------------------------

class ConfigProperty(WireModel):
    """Schema of one config field. Recursive for objects and arrays."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: PropertyType = Field(..., description="JSON type of the field")
    title: Optional[str] = Field(None, description="Display title")
    description: Optional[str] = Field(None, description="Help text")
    default: Any = Field(None, description="Default value for new nodes")
    enum: Optional[List[Any]] = Field(None, description="Allowed values")
    minimum: Optional[float] = Field(None, description="Inclusive numeric lower bound")
    maximum: Optional[float] = Field(None, description="Inclusive numeric upper bound")
    min_length: Optional[int] = Field(None, alias="minLength", description="Minimum string length")
    max_length: Optional[int] = Field(None, alias="maxLength", description="Maximum string length")
    pattern: Optional[str] = Field(None, description="Regular expression a string must match")
    format: Optional[str] = Field(None, description="Named string format, e.g. 'uri'")
    items: Optional["ConfigProperty"] = Field(None, description="Element schema for arrays")
    properties: Optional[Dict[str, "ConfigProperty"]] = Field(None, description="Nested fields for objects")
    required: List[str] = Field(default_factory=list, description="Required nested fields")
    additional_properties: Optional[bool] = Field(
        None, alias="additionalProperties", description="Whether undeclared nested keys are allowed"
    )
    secret: bool = Field(False, description="Whether the value is sensitive")


ConfigProperty.model_rebuild()


class ConfigSchema(WireModel):
    """Top-level config schema of a node template."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: Literal["object"] = Field("object", description="Always 'object'")
    properties: Dict[str, ConfigProperty] = Field(default_factory=dict, description="Declared fields")
    required: List[str] = Field(default_factory=list, description="Fields that must be present")
    additional_properties: Optional[bool] = Field(
        None, alias="additionalProperties", description="Whether undeclared keys are allowed"
    )


class PortDefinition(WireModel):
    """Declared input or output port of a node template."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str = Field(..., description="Port name")
    type: PortType = Field("any", description="Data type carried by the port")
    description: str = Field("", description="Port description")
    required: bool = Field(False, description="Whether the port must be connected")


class NodeTemplate(WireModel):
    """Immutable description of a node kind."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(..., description="Template identifier")
    kind: str = Field(..., description="Node kind this template describes")
    name: str = Field(..., description="Display name")
    description: str = Field("", description="What nodes of this kind do")
    category: NodeCategory = Field(..., description="Palette category")
    icon: Optional[str] = Field(None, description="Icon name for the editor")
    version: str = Field("1.0.0", description="Template version")
    config_schema: ConfigSchema = Field(default_factory=ConfigSchema, alias="configSchema")
    inputs: Tuple[PortDefinition, ...] = Field(default_factory=tuple, description="Input ports")
    outputs: Tuple[PortDefinition, ...] = Field(default_factory=tuple, description="Output ports")
    deprecated: bool = Field(False, description="Whether new nodes should avoid this kind")
    tags: Tuple[str, ...] = Field(default_factory=tuple, description="Search tags")

    @property
    def is_trigger(self) -> bool:
        return self.category == "triggers"


class CategoryInfo(WireModel):
    """Summary of one template category."""
    category: NodeCategory
    name: str
    description: str
    count: int
    icon: Optional[str] = None


class TemplateListResponse(WireModel):
    """Filtered, paginated template listing."""
    templates: List[NodeTemplate]
    categories: List[CategoryInfo]
    total: int


# --- Workflow definition ----------------------------------------------------

class Position(WireModel):
    """Canvas position. Ignored by validation and execution."""
    x: float = 0.0
    y: float = 0.0


class WorkflowNode(WireModel):
    """A node instance inside a workflow."""
    id: str = Field(..., description="Node id, unique within its workflow")
    kind: str = Field(..., description="Registered node kind")
    name: str = Field("", description="Display name")
    description: Optional[str] = Field(None, description="Optional node description")
    config: Dict[str, Any] = Field(default_factory=dict, description="Kind-specific configuration")
    position: Optional[Position] = Field(None, description="Canvas position")
    credentials_ref: Optional[str] = Field(
        None, alias="credentialsRef", description="Opaque reference to stored credentials"
    )

    @field_validator('id', 'kind')
    @classmethod
    def validate_not_empty(cls, value):
        """Ensure identifiers are not blank."""
        if not value or not value.strip():
            raise ValueError("Node id and kind cannot be empty")
        return value.strip()


class WorkflowConnection(WireModel):
    """A directed edge between two nodes, optionally port to port."""
    id: str = Field(default_factory=lambda: f"conn_{uuid.uuid4().hex[:12]}", description="Connection id")
    source_node_id: str = Field(..., alias="sourceNodeId", description="Source node id")
    target_node_id: str = Field(..., alias="targetNodeId", description="Target node id")
    source_port: Optional[str] = Field(None, alias="sourcePort", description="Output port on the source")
    target_port: Optional[str] = Field(None, alias="targetPort", description="Input port on the target")

    @property
    def endpoint_key(self) -> Tuple[str, str, Optional[str], Optional[str]]:
        """The identity used for duplicate detection."""
        return (self.source_node_id, self.target_node_id, self.source_port, self.target_port)


class WorkflowMetadata(WireModel):
    """Free-form workflow metadata."""
    version: str = Field("1.0.0", description="Definition version")
    description: Optional[str] = Field(None, description="Workflow description")
    tags: List[str] = Field(default_factory=list, description="Workflow tags")


class WorkflowDefinition(WireModel):
    """
    Snapshot of a workflow graph handed in by the editor or store.

    Node ids must be unique. Connection endpoints are not checked here: a
    definition may be edited incrementally, so dangling references are
    reported by validation instead.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Workflow id")
    name: str = Field("Untitled workflow", description="Workflow name")
    description: Optional[str] = Field(None, description="Workflow description")
    nodes: List[WorkflowNode] = Field(default_factory=list, description="Nodes in insertion order")
    connections: List[WorkflowConnection] = Field(default_factory=list, description="Connections in insertion order")
    metadata: WorkflowMetadata = Field(default_factory=WorkflowMetadata, description="Definition metadata")

    @field_validator('nodes')
    @classmethod
    def validate_unique_node_ids(cls, nodes):
        """Ensure all node IDs are unique."""
        seen = set()
        for node in nodes:
            if node.id in seen:
                raise ValueError(f"Duplicate node id: {node.id}")
            seen.add(node.id)
        return nodes

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def node_ids(self) -> List[str]:
        return [node.id for node in self.nodes]


# --- Validation results -----------------------------------------------------

class ConfigErrorCode(str, Enum):
    """Kinds of config field violations."""
    REQUIRED = "REQUIRED"
    TYPE_MISMATCH = "TYPE_MISMATCH"
    MIN_LENGTH = "MIN_LENGTH"
    MAX_LENGTH = "MAX_LENGTH"
    PATTERN_MISMATCH = "PATTERN_MISMATCH"
    INVALID_FORMAT = "INVALID_FORMAT"
    MINIMUM = "MINIMUM"
    MAXIMUM = "MAXIMUM"
    ENUM_MISMATCH = "ENUM_MISMATCH"
    UNKNOWN_FIELD = "UNKNOWN_FIELD"


class ConfigFieldError(WireModel):
    """One config violation, tagged with the field path."""
    field: str = Field(..., description="Dotted field path")
    code: ConfigErrorCode = Field(..., description="Violation kind")
    message: str = Field(..., description="Human readable message")
    value: Any = Field(None, description="Offending value")


class ConfigValidationResult(WireModel):
    """Result of validating one config map."""
    is_valid: bool = Field(..., alias="isValid")
    errors: List[ConfigFieldError] = Field(default_factory=list)
    warnings: List[ConfigFieldError] = Field(default_factory=list)


class ConnectionErrorType(str, Enum):
    """Connection error taxonomy."""
    NODE_NOT_FOUND = "NODE_NOT_FOUND"
    PORT_NOT_FOUND = "PORT_NOT_FOUND"
    INCOMPATIBLE_TYPES = "INCOMPATIBLE_TYPES"
    CIRCULAR_DEPENDENCY = "CIRCULAR_DEPENDENCY"
    DUPLICATE_CONNECTION = "DUPLICATE_CONNECTION"
    INVALID_CONNECTION = "INVALID_CONNECTION"
    MAX_CONNECTIONS_EXCEEDED = "MAX_CONNECTIONS_EXCEEDED"
    SELF_CONNECTION = "SELF_CONNECTION"


class ConnectionWarningType(str, Enum):
    """Connection warning taxonomy."""
    TYPE_MISMATCH = "TYPE_MISMATCH"
    DEPRECATED_NODE = "DEPRECATED_NODE"
    TRIGGER_AS_TARGET = "TRIGGER_AS_TARGET"


class ConnectionRequest(WireModel):
    """A proposed edge."""
    source_node_id: str = Field(..., alias="sourceNodeId")
    target_node_id: str = Field(..., alias="targetNodeId")
    source_port: Optional[str] = Field(None, alias="sourcePort")
    target_port: Optional[str] = Field(None, alias="targetPort")


class ConnectionValidationError(WireModel):
    type: ConnectionErrorType
    message: str
    source_node_id: Optional[str] = Field(None, alias="sourceNodeId")
    target_node_id: Optional[str] = Field(None, alias="targetNodeId")
    source_port: Optional[str] = Field(None, alias="sourcePort")
    target_port: Optional[str] = Field(None, alias="targetPort")


class ConnectionValidationWarning(WireModel):
    type: ConnectionWarningType
    message: str
    source_node_id: Optional[str] = Field(None, alias="sourceNodeId")
    target_node_id: Optional[str] = Field(None, alias="targetNodeId")


class ConnectionValidationResult(WireModel):
    """Result of validating one proposed connection."""
    is_valid: bool = Field(..., alias="isValid")
    errors: List[ConnectionValidationError] = Field(default_factory=list)
    warnings: List[ConnectionValidationWarning] = Field(default_factory=list)

    def has_error(self, error_type: ConnectionErrorType) -> bool:
        return any(error.type == error_type for error in self.errors)


class CircularDependency(WireModel):
    """One detected cycle. ``path`` ends on the node it started from."""
    nodes: List[str]
    path: List[str]


class ConnectionAnalysis(WireModel):
    """Whole-graph analysis output."""
    total_connections: int = Field(..., alias="totalConnections")
    valid_connections: int = Field(..., alias="validConnections")
    invalid_connections: int = Field(..., alias="invalidConnections")
    warnings: int = Field(0)
    circular_dependencies: List[CircularDependency] = Field(default_factory=list, alias="circularDependencies")
    orphaned_nodes: List[str] = Field(default_factory=list, alias="orphanedNodes")
    unreachable_nodes: List[str] = Field(default_factory=list, alias="unreachableNodes")
    execution_order: List[str] = Field(default_factory=list, alias="executionOrder")


class WorkflowErrorType(str, Enum):
    MISSING_TRIGGER = "MISSING_TRIGGER"
    CIRCULAR_DEPENDENCY = "CIRCULAR_DEPENDENCY"
    UNKNOWN_NODE_KIND = "UNKNOWN_NODE_KIND"
    INVALID_CONFIG = "INVALID_CONFIG"
    INVALID_CONNECTION = "INVALID_CONNECTION"


class WorkflowWarningType(str, Enum):
    UNUSED_NODE = "UNUSED_NODE"
    UNREACHABLE_NODE = "UNREACHABLE_NODE"
    DEPRECATED_NODE = "DEPRECATED_NODE"


class WorkflowValidationError(WireModel):
    type: WorkflowErrorType
    message: str
    node_id: Optional[str] = Field(None, alias="nodeId")
    connection_id: Optional[str] = Field(None, alias="connectionId")
    field: Optional[str] = None


class WorkflowValidationWarning(WireModel):
    type: WorkflowWarningType
    message: str
    node_id: Optional[str] = Field(None, alias="nodeId")


class WorkflowValidationResult(WireModel):
    """Structural validation of a whole workflow."""
    is_valid: bool = Field(..., alias="isValid")
    errors: List[WorkflowValidationError] = Field(default_factory=list)
    warnings: List[WorkflowValidationWarning] = Field(default_factory=list)

    def has_error(self, error_type: WorkflowErrorType) -> bool:
        return any(error.type == error_type for error in self.errors)


class PortInfo(WireModel):
    name: str
    type: PortType
    description: str
    required: bool
    connected: bool
    connection_id: Optional[str] = Field(None, alias="connectionId")


class ConnectionInfo(WireModel):
    connection_id: str = Field(..., alias="connectionId")
    connected_node_id: str = Field(..., alias="connectedNodeId")
    connected_node_name: str = Field(..., alias="connectedNodeName")
    source_port: Optional[str] = Field(None, alias="sourcePort")
    target_port: Optional[str] = Field(None, alias="targetPort")


class NodeConnectionInfo(WireModel):
    """Connections and ports around one node."""
    node_id: str = Field(..., alias="nodeId")
    node_name: str = Field(..., alias="nodeName")
    node_kind: str = Field(..., alias="nodeKind")
    incoming_connections: List[ConnectionInfo] = Field(default_factory=list, alias="incomingConnections")
    outgoing_connections: List[ConnectionInfo] = Field(default_factory=list, alias="outgoingConnections")
    available_input_ports: List[PortInfo] = Field(default_factory=list, alias="availableInputPorts")
    available_output_ports: List[PortInfo] = Field(default_factory=list, alias="availableOutputPorts")
