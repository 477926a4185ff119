"""FastAPI REST and JSON-RPC endpoints for the workflow bridge."""

import json
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, HTTPException, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import Field
from starlette.concurrency import run_in_threadpool

from ..core.config_validator import ConfigValidator
from ..core.connection_validator import ConnectionValidator
from ..core.exceptions import BridgeNotFoundError, SchemaDefinitionError, create_error_response
from ..core.graph_analyzer import GraphAnalyzer
from ..core.logging import get_logger
from ..core.protocol_bridge import BridgeRegistry
from ..core.template_registry import TemplateRegistry
from ..models.core import WireModel, WorkflowDefinition
from ..models.mcp import JSONRPC_VERSION, PARSE_ERROR, SERVER_NOT_FOUND

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["flowbridge"])

# Global instances (initialized by the application factory)
_template_registry: Optional[TemplateRegistry] = None
_bridge_registry: Optional[BridgeRegistry] = None
_analyzer: Optional[GraphAnalyzer] = None
_config_validator = ConfigValidator()


def init_dependencies(template_registry: TemplateRegistry, bridge_registry: BridgeRegistry):
    """Initialize the global dependencies."""
    global _template_registry, _bridge_registry, _analyzer
    _template_registry = template_registry
    _bridge_registry = bridge_registry
    _analyzer = GraphAnalyzer(template_registry, _config_validator)


def get_template_registry() -> TemplateRegistry:
    """Dependency to get the template registry."""
    if _template_registry is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Template registry not initialized"
        )
    return _template_registry


def get_bridge_registry() -> BridgeRegistry:
    """Dependency to get the MCP server registry."""
    if _bridge_registry is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="MCP server registry not initialized"
        )
    return _bridge_registry


def get_analyzer() -> GraphAnalyzer:
    """Dependency to get the graph analyzer."""
    if _analyzer is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Graph analyzer not initialized"
        )
    return _analyzer


# Request models
class ValidateConfigRequest(WireModel):
    """Request model for validating a node config."""
    kind: str = Field(..., description="Node kind")
    config: Dict[str, Any] = Field(default_factory=dict, description="Config to validate")


class ValidateConnectionRequest(WireModel):
    """Request model for validating a proposed connection."""
    definition: WorkflowDefinition = Field(..., description="Current workflow")
    source_node_id: str = Field(..., alias="sourceNodeId")
    target_node_id: str = Field(..., alias="targetNodeId")
    source_port: Optional[str] = Field(None, alias="sourcePort")
    target_port: Optional[str] = Field(None, alias="targetPort")


class WorkflowRequest(WireModel):
    """Request model carrying a workflow definition."""
    definition: WorkflowDefinition = Field(..., description="Workflow definition")


class DeployServerRequest(WireModel):
    """Request model for deploying a workflow as an MCP server."""
    definition: WorkflowDefinition = Field(..., description="Workflow to serve")
    name: Optional[str] = Field(None, description="Server name, defaults to the workflow name")
    capabilities: Optional[Dict[str, Any]] = Field(None, description="MCP capabilities to advertise")


# Templates

@router.get("/templates", summary="List node templates")
async def list_templates(
    category: Optional[str] = None,
    kind: Optional[str] = None,
    search: Optional[str] = None,
    tags: Optional[List[str]] = Query(None),
    include_deprecated: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    registry: TemplateRegistry = Depends(get_template_registry)
) -> Dict[str, Any]:
    """List templates with filtering and pagination."""
    return registry.list_templates(
        category=category,
        kind=kind,
        search=search,
        tags=tags,
        include_deprecated=include_deprecated,
        page=page,
        limit=limit
    ).to_wire()


@router.get("/templates/{kind}", summary="Get one node template")
async def get_template(kind: str, registry: TemplateRegistry = Depends(get_template_registry)) -> Dict[str, Any]:
    template = registry.get(kind)
    if template is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "TemplateNotFound", "message": f"Unknown node kind '{kind}'"}
        )
    return {**template.to_wire(), "defaultConfig": registry.default_config(kind)}


# Validation and analysis

@router.post("/nodes/validate-config", summary="Validate a node config against its template")
async def validate_node_config(
    request: ValidateConfigRequest,
    registry: TemplateRegistry = Depends(get_template_registry)
) -> Dict[str, Any]:
    """
    Validate a node config.

    Raises:
        HTTPException: If the node kind is unknown or its schema is malformed
    """
    template = registry.get(request.kind)
    if template is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "TemplateNotFound", "message": f"Unknown node kind '{request.kind}'"}
        )
    try:
        return _config_validator.validate(request.config, template.config_schema).to_wire()
    except SchemaDefinitionError as e:
        logger.error(f"Template '{request.kind}' has a malformed schema: {e.message}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=create_error_response(e))


@router.post("/connections/validate", summary="Validate a proposed connection")
async def validate_connection(
    request: ValidateConnectionRequest,
    registry: TemplateRegistry = Depends(get_template_registry)
) -> Dict[str, Any]:
    validator = ConnectionValidator(registry)
    return validator.validate(
        request.definition,
        request.source_node_id,
        request.target_node_id,
        request.source_port,
        request.target_port
    ).to_wire()


@router.post("/workflows/validate", summary="Validate a workflow structurally")
async def validate_workflow(
    request: WorkflowRequest,
    analyzer: GraphAnalyzer = Depends(get_analyzer)
) -> Dict[str, Any]:
    result = analyzer.validate(request.definition)
    logger.info(
        f"Validated workflow {request.definition.id}: valid={result.is_valid}, "
        f"errors={len(result.errors)}, warnings={len(result.warnings)}"
    )
    return result.to_wire()


@router.post("/workflows/analyze", summary="Analyze the connections of a workflow")
async def analyze_workflow(
    request: WorkflowRequest,
    analyzer: GraphAnalyzer = Depends(get_analyzer)
) -> Dict[str, Any]:
    return analyzer.analyze(request.definition).to_wire()


@router.post("/workflows/nodes/{node_id}/connections", summary="Describe the connections around a node")
async def node_connections(
    node_id: str,
    request: WorkflowRequest,
    analyzer: GraphAnalyzer = Depends(get_analyzer)
) -> Dict[str, Any]:
    info = analyzer.node_connection_info(request.definition, node_id)
    if info is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "NodeNotFound", "message": f"Node '{node_id}' not found"}
        )
    return info.to_wire()


# MCP servers

@router.put("/mcp/servers/{server_id}", summary="Deploy or replace an MCP server")
async def deploy_server(
    server_id: str,
    request: DeployServerRequest,
    bridges: BridgeRegistry = Depends(get_bridge_registry)
) -> Dict[str, Any]:
    created = server_id not in bridges
    bridge = bridges.deploy(server_id, request.definition, request.name, request.capabilities)
    logger.info(f"{'Deployed' if created else 'Replaced'} MCP server {server_id}")
    return {**bridge.info(), "created": created}


@router.get("/mcp/servers", summary="List MCP servers")
async def list_servers(bridges: BridgeRegistry = Depends(get_bridge_registry)) -> List[Dict[str, Any]]:
    return [bridge.info() for bridge in bridges.list_bridges()]


@router.get("/mcp/servers/{server_id}", summary="Get one MCP server")
async def get_server(server_id: str, bridges: BridgeRegistry = Depends(get_bridge_registry)) -> Dict[str, Any]:
    try:
        return bridges.get(server_id).info()
    except BridgeNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=create_error_response(e))


@router.delete("/mcp/servers/{server_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Remove an MCP server")
async def delete_server(server_id: str, bridges: BridgeRegistry = Depends(get_bridge_registry)) -> Response:
    if not bridges.remove(server_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "ServerNotFound", "message": f"MCP server '{server_id}' not found"}
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/mcp/{server_id}", summary="JSON-RPC endpoint of an MCP server")
async def mcp_endpoint(
    server_id: str,
    request: Request,
    bridges: BridgeRegistry = Depends(get_bridge_registry)
) -> Response:
    """
    Handle one JSON-RPC 2.0 message for an MCP server.

    Responses are returned with HTTP 200, notifications get HTTP 202 with
    an empty body, and unknown servers get HTTP 404 with error -32000.
    """
    raw = await request.body()
    try:
        message = json.loads(raw)
    except ValueError as e:
        return JSONResponse(
            content={
                "jsonrpc": JSONRPC_VERSION,
                "id": None,
                "error": {"code": PARSE_ERROR, "message": "Parse error", "data": str(e)}
            }
        )

    # tools/call blocks on a workflow execution
    response = await run_in_threadpool(bridges.dispatch, server_id, message)
    if response is None:
        return Response(status_code=status.HTTP_202_ACCEPTED)

    error = response.get("error")
    if error is not None and error.get("code") == SERVER_NOT_FOUND:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content=response)
    return JSONResponse(content=response)
