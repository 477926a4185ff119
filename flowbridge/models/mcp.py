"""Model Context Protocol and JSON-RPC 2.0 message models."""

from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import Field, StrictInt, StrictStr

from .core import WireModel


JSONRPC_VERSION = "2.0"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
SERVER_NOT_FOUND = -32000


class Tool(WireModel):
    """An invocable capability derived from a workflow."""
    name: str = Field(..., description="Tool name")
    description: str = Field("", description="Tool description")
    input_schema: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []},
        alias="inputSchema",
        description="JSON schema of the tool arguments"
    )


class ContentBlock(WireModel):
    """One block of a tool call result."""
    type: Literal["text", "image", "resource"] = Field(..., description="Block type")
    text: Optional[str] = Field(None, description="Text payload")
    data: Optional[str] = Field(None, description="Base64 payload for images")
    mime_type: Optional[str] = Field(None, alias="mimeType", description="MIME type of the payload")
    resource: Optional[Dict[str, Any]] = Field(None, description="Embedded resource")


class CallToolResult(WireModel):
    """Result of ``tools/call``."""
    content: List[ContentBlock] = Field(default_factory=list)
    is_error: bool = Field(False, alias="isError")

    def to_wire(self) -> Dict[str, Any]:
        # isError is always present, even when false
        payload = super().to_wire()
        payload["isError"] = self.is_error
        return payload


class ServerInfo(WireModel):
    name: str
    version: str


class InitializeResult(WireModel):
    """Result of ``initialize``."""
    protocol_version: str = Field(..., alias="protocolVersion")
    capabilities: Dict[str, Any] = Field(default_factory=dict)
    server_info: ServerInfo = Field(..., alias="serverInfo")


class CallToolParams(WireModel):
    """Parameters of ``tools/call``."""
    name: str = Field(..., min_length=1)
    arguments: Dict[str, Any] = Field(default_factory=dict)


class JsonRpcRequest(WireModel):
    """A JSON-RPC 2.0 request or notification envelope."""
    jsonrpc: Literal["2.0"]
    # strict, so booleans and fractional numbers are not coerced into ids
    id: Optional[Union[StrictInt, StrictStr]] = None
    method: str = Field(..., min_length=1)
    params: Optional[Union[Dict[str, Any], List[Any]]] = None

    @property
    def is_notification(self) -> bool:
        """Requests that omit ``id`` expect no response."""
        return "id" not in self.model_fields_set
