"""Protocol Bridge: exposes a workflow as MCP tools over JSON-RPC 2.0."""

import json
import logging
import re
import threading
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple
from pydantic import ValidationError

from ..models.core import WorkflowDefinition, WorkflowNode
from ..models.execution import Execution, ExecutionStatusEnum
from ..models.mcp import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    JSONRPC_VERSION,
    METHOD_NOT_FOUND,
    SERVER_NOT_FOUND,
    CallToolParams,
    CallToolResult,
    ContentBlock,
    InitializeResult,
    JsonRpcRequest,
    ServerInfo,
    Tool,
)
from .exceptions import BridgeNotFoundError, ProtocolError
from .execution_coordinator import ExecutionCoordinator
from .graph_analyzer import GraphAnalyzer
from .logging import get_logger, log_with_context, logging_context
from .node_executor import NodeExecutor
from .template_registry import TemplateRegistry
from .tool_schema import (
    ArgumentChecker,
    declared_input_schema,
    merge_input_schemas,
    normalize_input_schema,
    port_input_schema,
)

logger = get_logger(__name__)

MCP_PROTOCOL_VERSION = "2024-11-05"
DEFAULT_CAPABILITIES = {"tools": {"listChanged": True}}

MethodHandler = Callable[[Any], Optional[Dict[str, Any]]]


def _slug(text: str) -> str:
    return re.sub(r"\s+", "_", text.strip().lower())


def tool_name_for(workflow_name: str) -> str:
    """``execute_`` plus the lower-cased name with whitespace runs turned into underscores."""
    return "execute_" + _slug(workflow_name)


class ToolBinding:
    """A derived tool plus what is needed to run it."""

    def __init__(self, tool: Tool, trigger_node_ids: Optional[Tuple[str, ...]] = None):
        self.tool = tool
        self.trigger_node_ids = trigger_node_ids
        self.arguments = ArgumentChecker(tool.input_schema)


class BridgeState:
    """Immutable snapshot of a bridge's workflow and derived tools."""

    def __init__(self, definition: WorkflowDefinition, bindings: List[ToolBinding]):
        self.definition = definition
        self.tools: Tuple[Tool, ...] = tuple(binding.tool for binding in bindings)
        self.bindings: Dict[str, ToolBinding] = {binding.tool.name: binding for binding in bindings}


def trigger_input_schema(trigger: WorkflowNode, registry: TemplateRegistry) -> Dict[str, Any]:
    """
    Build a tool input schema for a trigger node.

    ``config.inputSchema`` wins when present, either as a full object schema
    or as a bare properties map. Otherwise the trigger template's output
    ports become optional properties. Unusable parts of a declaration are
    dropped with a warning; GraphAnalyzer.validate reports them as errors.
    """
    declared = declared_input_schema(trigger)
    if declared is None:
        return port_input_schema(trigger, registry)

    schema, problems = normalize_input_schema(declared)
    for problem in problems:
        log_with_context(
            logger, logging.WARNING, f"Ignoring part of trigger input schema: {problem}",
            node_id=trigger.id
        )
    return schema


def derive_tools(
    definition: WorkflowDefinition,
    registry: TemplateRegistry,
    tool_per_trigger: bool = False
) -> List[ToolBinding]:
    """
    Derive the tool list of a workflow: one tool, or one per trigger.

    The single tool fires every trigger with the same arguments, so its
    schema merges the declared schemas of all triggers (or, when none
    declares one, their output ports).
    """
    triggers = [node for node in definition.nodes if registry.is_trigger(node.kind)]
    if not triggers:
        return []

    base_name = tool_name_for(definition.name)
    description = definition.description or f"Execute {definition.name} workflow"

    if not tool_per_trigger or len(triggers) == 1:
        declaring = [trigger for trigger in triggers if declared_input_schema(trigger) is not None]
        schema = merge_input_schemas(trigger_input_schema(trigger, registry) for trigger in (declaring or triggers))
        return [ToolBinding(Tool(name=base_name, description=description, input_schema=schema))]

    bindings = []
    used = set()
    for trigger in triggers:
        name = f"{base_name}_{_slug(trigger.name or trigger.id)}"
        # display names may repeat; ids may not
        if name in used:
            name = f"{base_name}_{_slug(trigger.id)}"
        candidate, counter = name, 2
        while candidate in used:
            candidate = f"{name}_{counter}"
            counter += 1
        used.add(candidate)

        tool = Tool(
            name=candidate,
            description=f"{description} (trigger: {trigger.name or trigger.id})",
            input_schema=trigger_input_schema(trigger, registry)
        )
        bindings.append(ToolBinding(tool, (trigger.id,)))
    return bindings


def _result_envelope(request_id: Any, result: Any) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def _error_envelope(request_id: Any, code: int, message: str, data: Any = None) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error}


def _request_id(message: Any) -> Any:
    if isinstance(message, Mapping):
        candidate = message.get("id")
        if isinstance(candidate, (str, int)) and not isinstance(candidate, bool):
            return candidate
    return None


class MCPBridge:
    """
    Serves one workflow as an MCP server.

    The derived state (definition plus tools) is rebuilt on update and
    swapped under a lock, so a dispatch always sees one consistent snapshot.
    Each tools/call runs its own ExecutionCoordinator.
    """

    def __init__(
        self,
        definition: WorkflowDefinition,
        registry: TemplateRegistry,
        executor: NodeExecutor,
        server_id: Optional[str] = None,
        name: Optional[str] = None,
        capabilities: Optional[Dict[str, Any]] = None,
        protocol_version: str = MCP_PROTOCOL_VERSION,
        server_version: str = "1.0.0",
        tool_per_trigger: bool = False,
        max_workers: int = 4
    ):
        self.registry = registry
        self.executor = executor
        self.analyzer = GraphAnalyzer(registry)
        self.server_id = server_id or definition.id
        self.name = name or definition.name
        self.capabilities = dict(capabilities or DEFAULT_CAPABILITIES)
        self.protocol_version = protocol_version
        self.server_version = server_version
        self.tool_per_trigger = tool_per_trigger
        self.max_workers = max_workers

        self._lock = threading.Lock()
        self._state = self._build_state(definition)
        self._handlers: Dict[str, MethodHandler] = {}

        self.register_method("initialize", self._handle_initialize)
        self.register_method("notifications/initialized", self._handle_initialized)
        self.register_method("ping", self._handle_ping)
        self.register_method("tools/list", self._handle_tools_list)
        self.register_method("tools/call", self._handle_tools_call)

    def _build_state(self, definition: WorkflowDefinition) -> BridgeState:
        snapshot = definition.model_copy(deep=True)
        return BridgeState(snapshot, derive_tools(snapshot, self.registry, self.tool_per_trigger))

    @property
    def state(self) -> BridgeState:
        with self._lock:
            return self._state

    @property
    def definition(self) -> WorkflowDefinition:
        return self.state.definition

    @property
    def tools(self) -> List[Tool]:
        return list(self.state.tools)

    def update(self, definition: WorkflowDefinition) -> None:
        """Rebuild the derived tools for a new definition and swap them in."""
        new_state = self._build_state(definition)
        with self._lock:
            self._state = new_state
        logger.info(f"MCP server {self.server_id} updated: {len(new_state.tools)} tools")

    def register_method(self, method: str, handler: MethodHandler) -> None:
        """Add or replace the handler for a JSON-RPC method."""
        self._handlers[method] = handler

    def methods(self) -> List[str]:
        return list(self._handlers.keys())

    def info(self) -> Dict[str, Any]:
        state = self.state
        return {
            "serverId": self.server_id,
            "name": self.name,
            "workflowId": state.definition.id,
            "protocolVersion": self.protocol_version,
            "capabilities": self.capabilities,
            "tools": [tool.to_wire() for tool in state.tools],
        }

    def dispatch(self, message: Any) -> Optional[Dict[str, Any]]:
        """
        Handle one JSON-RPC message.

        Args:
            message: Decoded JSON request envelope

        Returns:
            The response envelope, or None for notifications
        """
        with logging_context(server_id=self.server_id):
            return self._dispatch(message)

    def _dispatch(self, message: Any) -> Optional[Dict[str, Any]]:
        # envelope first: shape, version, method
        if not isinstance(message, Mapping):
            return _error_envelope(None, INVALID_REQUEST, "Invalid Request", "Request must be a JSON object")

        try:
            request = JsonRpcRequest.model_validate(dict(message))
        except ValidationError as e:
            return _error_envelope(_request_id(message), INVALID_REQUEST, "Invalid Request", str(e))

        handler = self._handlers.get(request.method)
        if handler is None:
            # notifications never get a response, even for unknown methods
            if request.is_notification:
                logger.debug(f"Ignoring unknown notification {request.method}")
                return None
            return _error_envelope(request.id, METHOD_NOT_FOUND, "Method not found", {"method": request.method})

        try:
            result = handler(request.params if request.params is not None else {})
        except ProtocolError as e:
            # errors that carry their own JSON-RPC code
            if request.is_notification:
                return None
            error = e.to_rpc_error()
            return _error_envelope(request.id, error["code"], error["message"], error.get("data"))
        except Exception as e:
            logger.error(f"Internal error handling {request.method} on {self.server_id}: {str(e)}", exc_info=True)
            if request.is_notification:
                return None
            return _error_envelope(request.id, INTERNAL_ERROR, "Internal error", str(e))

        if request.is_notification:
            return None
        return _result_envelope(request.id, result if result is not None else {})

    def _handle_initialize(self, params: Any) -> Dict[str, Any]:
        if isinstance(params, Mapping):
            client = params.get("clientInfo") or {}
            logger.info(
                f"MCP initialize on {self.server_id} from {client.get('name', 'unknown client')} "
                f"(protocol {params.get('protocolVersion', '?')})"
            )
        return InitializeResult(
            protocol_version=self.protocol_version,
            capabilities=self.capabilities,
            server_info=ServerInfo(name=self.name, version=self.server_version)
        ).to_wire()

    def _handle_initialized(self, params: Any) -> Dict[str, Any]:
        return {}

    def _handle_ping(self, params: Any) -> Dict[str, Any]:
        return {}

    def _handle_tools_list(self, params: Any) -> Dict[str, Any]:
        return {"tools": [tool.to_wire() for tool in self.state.tools]}

    def _handle_tools_call(self, params: Any) -> Dict[str, Any]:
        try:
            call = CallToolParams.model_validate(params)
        except ValidationError as e:
            raise ProtocolError(INVALID_PARAMS, "Invalid params", data=str(e))

        state = self.state
        binding = state.bindings.get(call.name)
        if binding is None:
            return _text_result(f"Unknown tool: {call.name}", is_error=True)

        # argument errors are tool errors, reported to the caller as content
        problems = binding.arguments.check(call.arguments)
        if problems:
            return _text_result(f"Invalid arguments for {call.name}: {'; '.join(problems)}", is_error=True)

        coordinator = ExecutionCoordinator(
            state.definition,
            self.registry,
            self.executor,
            analyzer=self.analyzer,
            max_workers=self.max_workers
        )
        logger.info(f"tools/call {call.name} on {self.server_id} -> execution {coordinator.execution_id}")
        execution = coordinator.run(call.arguments, binding.trigger_node_ids)
        return execution_to_result(execution).to_wire()


def _text_result(text: str, is_error: bool) -> Dict[str, Any]:
    return CallToolResult(content=[ContentBlock(type="text", text=text)], is_error=is_error).to_wire()


def execution_to_result(execution: Execution) -> CallToolResult:
    """Map a finished execution onto tool call content blocks."""
    if execution.status != ExecutionStatusEnum.COMPLETED:
        summary = {
            "executionId": execution.id,
            "status": execution.status.value,
            "error": execution.error_message,
            "failedNodes": {
                node_id: {"errorCode": result.error_code, "message": result.error_message}
                for node_id, result in execution.node_results.items()
                if result.error_code is not None
            },
        }
        text = f"Workflow execution failed: {execution.error_message}\n{json.dumps(summary, default=str)}"
        return CallToolResult(content=[ContentBlock(type="text", text=text)], is_error=True)

    payload = {
        "executionId": execution.id,
        "status": execution.status.value,
        "output": execution.output,
    }
    blocks = [ContentBlock(type="text", text=json.dumps(payload, default=str))]
    for node_id, outputs in execution.output.items():
        content = outputs.get("content") if isinstance(outputs, Mapping) else None
        if not isinstance(content, list):
            continue
        for item in content:
            if not isinstance(item, Mapping) or item.get("type") not in ("text", "image", "resource"):
                continue
            try:
                blocks.append(ContentBlock.model_validate(dict(item)))
            except ValidationError as e:
                logger.warning(f"Dropping malformed content block from node {node_id}: {e}")
    return CallToolResult(content=blocks, is_error=False)


class BridgeRegistry:
    """Deployed MCP servers keyed by server id."""

    def __init__(
        self,
        registry: TemplateRegistry,
        executor: NodeExecutor,
        protocol_version: str = MCP_PROTOCOL_VERSION,
        server_version: str = "1.0.0",
        tool_per_trigger: bool = False,
        max_workers: int = 4
    ):
        self.registry = registry
        self.executor = executor
        self.protocol_version = protocol_version
        self.server_version = server_version
        self.tool_per_trigger = tool_per_trigger
        self.max_workers = max_workers
        self._bridges: Dict[str, MCPBridge] = {}
        self._lock = threading.Lock()

    def deploy(
        self,
        server_id: str,
        definition: WorkflowDefinition,
        name: Optional[str] = None,
        capabilities: Optional[Dict[str, Any]] = None
    ) -> MCPBridge:
        """Deploy a workflow under ``server_id``, replacing the definition of an existing server."""
        with self._lock:
            bridge = self._bridges.get(server_id)
            if bridge is not None:
                bridge.update(definition)
                if name:
                    bridge.name = name
                if capabilities is not None:
                    bridge.capabilities = dict(capabilities)
                return bridge

            bridge = MCPBridge(
                definition,
                self.registry,
                self.executor,
                server_id=server_id,
                name=name,
                capabilities=capabilities,
                protocol_version=self.protocol_version,
                server_version=self.server_version,
                tool_per_trigger=self.tool_per_trigger,
                max_workers=self.max_workers
            )
            self._bridges[server_id] = bridge

        logger.info(f"Deployed MCP server {server_id} for workflow {definition.id}")
        return bridge

    def replace(self, server_id: str, definition: WorkflowDefinition) -> MCPBridge:
        """Swap the definition of an existing server."""
        bridge = self.get(server_id)
        bridge.update(definition)
        return bridge

    def remove(self, server_id: str) -> bool:
        with self._lock:
            removed = self._bridges.pop(server_id, None)
        if removed is not None:
            logger.info(f"Removed MCP server {server_id}")
        return removed is not None

    def get(self, server_id: str) -> MCPBridge:
        """
        Raises:
            BridgeNotFoundError: If no server is deployed under ``server_id``
        """
        with self._lock:
            bridge = self._bridges.get(server_id)
        if bridge is None:
            raise BridgeNotFoundError(f"MCP server '{server_id}' not found", server_id=server_id)
        return bridge

    def list_bridges(self) -> List[MCPBridge]:
        with self._lock:
            return list(self._bridges.values())

    def __contains__(self, server_id: str) -> bool:
        return server_id in self._bridges

    def dispatch(self, server_id: str, message: Any) -> Optional[Dict[str, Any]]:
        """Route a JSON-RPC message to a server; unknown servers get code -32000."""
        try:
            bridge = self.get(server_id)
        except BridgeNotFoundError as e:
            logger.warning(e.message)
            return _error_envelope(_request_id(message), SERVER_NOT_FOUND, "Server not found", {"serverId": server_id})
        return bridge.dispatch(message)
