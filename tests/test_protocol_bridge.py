"""Tests for the MCP protocol bridge."""

import json
import pytest

from conftest import build_workflow, echo_handler, failing_handler
from flowbridge.core.exceptions import BridgeNotFoundError
from flowbridge.core.node_executor import CallableNodeExecutor
from flowbridge.core.protocol_bridge import (
    BridgeRegistry,
    MCPBridge,
    derive_tools,
    tool_name_for,
    trigger_input_schema,
)
from flowbridge.models.mcp import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    SERVER_NOT_FOUND,
)


def rpc(method, params=None, request_id=1):
    message = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


@pytest.fixture
def bridge(registry, echo_executor, webhook_to_http):
    return MCPBridge(webhook_to_http, registry, echo_executor, server_id="srv-1")


class TestToolDerivation:
    """Test cases for deriving tools from workflows."""

    @pytest.mark.parametrize("name,expected", [
        ("Order Sync", "execute_order_sync"),
        ("  Daily   Report ", "execute_daily_report"),
        ("tabs\tand\nlines", "execute_tabs_and_lines"),
    ])
    def test_tool_name(self, name, expected):
        assert tool_name_for(name) == expected

    def test_single_tool_from_trigger_ports(self, registry, webhook_to_http):
        bindings = derive_tools(webhook_to_http, registry)

        assert len(bindings) == 1
        tool = bindings[0].tool
        assert tool.name == "execute_order_sync"
        assert tool.description == "Execute Order Sync workflow"
        assert tool.input_schema["type"] == "object"
        assert set(tool.input_schema["properties"]) == {"body", "headers"}
        assert tool.input_schema["properties"]["body"]["type"] == "object"
        assert tool.input_schema["required"] == []

    def test_any_port_has_no_type(self, registry):
        workflow = build_workflow([("t", "manual"), ("a", "http")], [("t", "a")])
        schema = trigger_input_schema(workflow.nodes[0], registry)
        assert "type" not in schema["properties"]["output"]

    def test_declared_input_schema_wins(self, registry):
        declared = {
            "properties": {"query": {"type": "string", "minLength": 1}},
            "required": ["query"],
        }
        workflow = build_workflow([("t", "manual", {"inputSchema": declared}), ("a", "http")], [("t", "a")])
        schema = trigger_input_schema(workflow.nodes[0], registry)

        assert schema == {"type": "object", "properties": declared["properties"], "required": ["query"]}

    def test_bare_properties_map(self, registry):
        workflow = build_workflow([("t", "manual", {"inputSchema": {"city": {"type": "string"}}})])
        schema = trigger_input_schema(workflow.nodes[0], registry)
        assert schema == {"type": "object", "properties": {"city": {"type": "string"}}, "required": []}

    def test_no_trigger_no_tools(self, registry):
        workflow = build_workflow([("a", "http")])
        assert derive_tools(workflow, registry) == []

    def test_description_used_when_present(self, registry):
        workflow = build_workflow([("t", "manual")], name="Sync", description="Keeps orders in sync")
        assert derive_tools(workflow, registry)[0].tool.description == "Keeps orders in sync"

    def test_tool_per_trigger(self, registry):
        workflow = build_workflow(
            [("t1", "manual"), ("t2", "webhook"), ("a", "http")],
            [("t1", "a"), ("t2", "a")],
            name="Order Sync"
        )
        bindings = derive_tools(workflow, registry, tool_per_trigger=True)

        assert [b.tool.name for b in bindings] == ["execute_order_sync_t1", "execute_order_sync_t2"]
        assert [b.trigger_node_ids for b in bindings] == [("t1",), ("t2",)]

    def test_tool_per_trigger_names_are_unique(self, registry):
        workflow = build_workflow(
            [("h1", "manual"), ("hook", "manual"), ("h3", "manual"), ("a", "http")],
            [("h1", "a"), ("hook", "a"), ("h3", "a")],
            name="Order Sync"
        )
        for node in workflow.nodes[:3]:
            node.name = "Hook"

        bindings = derive_tools(workflow, registry, tool_per_trigger=True)

        assert [b.tool.name for b in bindings] == [
            "execute_order_sync_hook",
            "execute_order_sync_hook_2",
            "execute_order_sync_h3",
        ]
        assert [b.trigger_node_ids for b in bindings] == [("h1",), ("hook",), ("h3",)]

    @pytest.mark.parametrize("declared,expected", [
        ({"properties": ["a"]}, {"type": "object", "properties": {}, "required": []}),
        (
            {"properties": {"a": {"type": "string"}}, "required": 5},
            {"type": "object", "properties": {"a": {"type": "string"}}, "required": []}
        ),
        (
            {"properties": {"a": {"type": "string"}}, "required": "abc"},
            {"type": "object", "properties": {"a": {"type": "string"}}, "required": []}
        ),
        (
            {"properties": {"a": {"type": "string"}, "b": "text", "c": {"type": "integerr"}}, "required": ["a", 3]},
            {"type": "object", "properties": {"a": {"type": "string"}}, "required": ["a"]}
        ),
    ])
    def test_unusable_schema_parts_are_dropped(self, registry, echo_executor, declared, expected):
        workflow = build_workflow(
            [("t", "webhook", {"method": "POST", "inputSchema": declared}), ("a", "http")],
            [("t", "a")],
            name="Order Sync"
        )
        assert trigger_input_schema(workflow.nodes[0], registry) == expected

        bridge = MCPBridge(workflow, registry, echo_executor)
        tools = bridge.dispatch(rpc("tools/list"))["result"]["tools"]
        assert tools == [{
            "name": "execute_order_sync",
            "description": "Execute Order Sync workflow",
            "inputSchema": expected,
        }]

    def test_single_tool_merges_declared_schemas(self, registry):
        workflow = build_workflow(
            [
                ("t1", "manual", {"inputSchema": {"properties": {"a": {"type": "string"}}, "required": ["a"]}}),
                ("t2", "webhook", {"method": "POST", "inputSchema": {
                    "properties": {"b": {"type": "number"}, "a": {"type": "string", "minLength": 2}},
                    "required": ["b", "a"],
                }}),
                ("t3", "schedule"),
                ("x", "http"),
            ],
            [("t1", "x"), ("t2", "x"), ("t3", "x")]
        )
        bindings = derive_tools(workflow, registry)

        assert len(bindings) == 1
        assert bindings[0].trigger_node_ids is None
        assert bindings[0].tool.input_schema == {
            "type": "object",
            "properties": {"a": {"type": "string", "minLength": 2}, "b": {"type": "number"}},
            "required": ["a", "b"],
        }

    def test_single_tool_merges_ports_without_declarations(self, registry):
        workflow = build_workflow([("t1", "manual"), ("t2", "webhook"), ("x", "http")], [("t1", "x"), ("t2", "x")])
        schema = derive_tools(workflow, registry)[0].tool.input_schema

        assert list(schema["properties"]) == ["output", "body", "headers"]
        assert schema["required"] == []


class TestMCPBridgeDispatch:
    """Test cases for JSON-RPC dispatch on one bridge."""

    def test_initialize_list_call(self, bridge):
        init = bridge.dispatch(rpc("initialize", {"protocolVersion": "2024-11-05", "clientInfo": {"name": "cli"}}))
        assert init == {
            "jsonrpc": "2.0",
            "id": 1,
            "result": {
                "protocolVersion": "2024-11-05",
                "capabilities": {"tools": {"listChanged": True}},
                "serverInfo": {"name": "Order Sync", "version": "1.0.0"},
            },
        }

        listed = bridge.dispatch(rpc("tools/list", request_id=2))
        tools = listed["result"]["tools"]
        assert [tool["name"] for tool in tools] == ["execute_order_sync"]
        assert "inputSchema" in tools[0]

        called = bridge.dispatch(rpc(
            "tools/call",
            {"name": "execute_order_sync", "arguments": {"body": {"order": 7}}},
            request_id="call-3"
        ))
        assert called["id"] == "call-3"
        result = called["result"]
        assert result["isError"] is False
        assert result["content"][0]["type"] == "text"

        payload = json.loads(result["content"][0]["text"])
        assert payload["status"] == "completed"
        assert payload["output"]["a"]["inputs"] == {"t": {"body": {"order": 7}}}

    def test_unknown_tool_is_tool_error(self, bridge):
        response = bridge.dispatch(rpc("tools/call", {"name": "execute_nothing", "arguments": {}}))

        assert "error" not in response
        assert response["result"]["isError"] is True
        assert response["result"]["content"][0]["text"] == "Unknown tool: execute_nothing"

    def test_argument_validation(self, registry, echo_executor):
        declared = {"properties": {"query": {"type": "string", "minLength": 1}}, "required": ["query"]}
        workflow = build_workflow(
            [("t", "manual", {"inputSchema": declared}), ("a", "http")],
            [("t", "a")],
            name="Search"
        )
        bridge = MCPBridge(workflow, registry, echo_executor)

        rejected = bridge.dispatch(rpc("tools/call", {"name": "execute_search", "arguments": {}}))
        assert rejected["result"]["isError"] is True
        assert rejected["result"]["content"][0]["text"].startswith("Invalid arguments for execute_search")

        accepted = bridge.dispatch(rpc("tools/call", {"name": "execute_search", "arguments": {"query": "boots"}}))
        assert accepted["result"]["isError"] is False

    @pytest.mark.parametrize("arguments,accepted", [
        ({"count": 3, "tags": ["a"], "note": None}, True),
        ({"count": "zero"}, False),
        ({"count": 1.5}, False),
        ({"count": 0}, False),
        ({"count": 2, "tags": "a"}, False),
        ({"count": 2, "note": 7}, False),
    ])
    def test_arguments_checked_against_published_schema(self, registry, echo_executor, arguments, accepted):
        declared = {
            "count": {"type": "integer", "minimum": 1},
            "tags": {"type": "array", "items": {"type": "string"}},
            "note": {"type": ["string", "null"]},
        }
        workflow = build_workflow(
            [("t", "manual", {"inputSchema": declared}), ("a", "http")],
            [("t", "a")],
            name="Count"
        )
        bridge = MCPBridge(workflow, registry, echo_executor)

        result = bridge.dispatch(rpc("tools/call", {"name": "execute_count", "arguments": arguments}))["result"]

        assert result["isError"] is (not accepted)
        if not accepted:
            assert result["content"][0]["text"].startswith("Invalid arguments for execute_count: ")

    def test_argument_errors_name_the_argument(self, registry, echo_executor):
        workflow = build_workflow(
            [("t", "manual", {"inputSchema": {"count": {"type": "integer"}}}), ("a", "http")],
            [("t", "a")],
            name="Count"
        )
        bridge = MCPBridge(workflow, registry, echo_executor)

        result = bridge.dispatch(rpc("tools/call", {"name": "execute_count", "arguments": {"count": "zero"}}))

        assert result["result"]["content"][0]["text"] == (
            "Invalid arguments for execute_count: count: 'zero' is not of type 'integer'"
        )

    def test_merged_tool_requires_every_trigger_field(self, registry, echo_executor):
        workflow = build_workflow(
            [
                ("t1", "manual", {"inputSchema": {"properties": {"a": {"type": "string"}}, "required": ["a"]}}),
                ("t2", "manual", {"inputSchema": {"properties": {"b": {"type": "string"}}, "required": ["b"]}}),
                ("x", "http"),
            ],
            [("t1", "x"), ("t2", "x")],
            name="Pair"
        )
        bridge = MCPBridge(workflow, registry, echo_executor)

        missing = bridge.dispatch(rpc("tools/call", {"name": "execute_pair", "arguments": {"a": "x"}}))["result"]
        assert missing["isError"] is True
        assert "'b' is a required property" in missing["content"][0]["text"]

        both = bridge.dispatch(rpc("tools/call", {"name": "execute_pair", "arguments": {"a": "x", "b": "y"}}))
        assert both["result"]["isError"] is False

    def test_each_same_named_trigger_tool_is_callable(self, registry, echo_executor):
        workflow = build_workflow(
            [("h1", "manual"), ("h2", "manual"), ("a", "http")],
            [("h1", "a"), ("h2", "a")],
            name="Order Sync"
        )
        for node in workflow.nodes[:2]:
            node.name = "Hook"
        bridge = MCPBridge(workflow, registry, echo_executor, tool_per_trigger=True)

        names = [tool["name"] for tool in bridge.dispatch(rpc("tools/list"))["result"]["tools"]]
        assert names == ["execute_order_sync_hook", "execute_order_sync_h2"]

        for name, trigger in zip(names, ["h1", "h2"]):
            result = bridge.dispatch(rpc("tools/call", {"name": name, "arguments": {"n": 1}}))["result"]
            payload = json.loads(result["content"][0]["text"])
            assert result["isError"] is False
            assert payload["output"]["a"]["inputs"] == {trigger: {"n": 1}}

    def test_failed_execution_is_tool_error(self, registry, webhook_to_http):
        executor = CallableNodeExecutor({"http": failing_handler})
        bridge = MCPBridge(webhook_to_http, registry, executor)

        result = bridge.dispatch(rpc("tools/call", {"name": "execute_order_sync"}))["result"]

        assert result["isError"] is True
        text = result["content"][0]["text"]
        assert text.startswith("Workflow execution failed")
        assert "HTTP_500" in text

    def test_content_blocks_from_outputs(self, registry, webhook_to_http):
        def reply(config, inputs, context):
            return {"content": [
                {"type": "text", "text": "order accepted"},
                {"type": "bogus", "text": "dropped"},
                "not a block",
            ]}

        bridge = MCPBridge(webhook_to_http, registry, CallableNodeExecutor({"http": reply}))
        content = bridge.dispatch(rpc("tools/call", {"name": "execute_order_sync"}))["result"]["content"]

        assert len(content) == 2
        assert content[1] == {"type": "text", "text": "order accepted"}

    def test_method_not_found(self, bridge):
        response = bridge.dispatch(rpc("resources/list"))

        assert response["error"]["code"] == METHOD_NOT_FOUND
        assert response["error"]["data"] == {"method": "resources/list"}
        assert response["id"] == 1

    @pytest.mark.parametrize("message", [
        {"jsonrpc": "1.0", "id": 1, "method": "ping"},
        {"jsonrpc": "2.0", "id": 1},
        {"jsonrpc": "2.0", "id": 1, "method": "ping", "params": "oops"},
    ])
    def test_invalid_request(self, bridge, message):
        response = bridge.dispatch(message)

        assert response["error"]["code"] == INVALID_REQUEST
        assert response["id"] == 1

    @pytest.mark.parametrize("request_id", [True, False, 1.5, 2.0, {"n": 1}, [1]])
    def test_non_string_non_integer_id(self, bridge, request_id):
        response = bridge.dispatch({"jsonrpc": "2.0", "id": request_id, "method": "ping"})

        assert response["error"]["code"] == INVALID_REQUEST
        assert response["id"] is None

    def test_non_object_request(self, bridge):
        response = bridge.dispatch(["not", "an", "object"])

        assert response["error"]["code"] == INVALID_REQUEST
        assert response["id"] is None

    @pytest.mark.parametrize("params", [
        {},
        {"name": ""},
        {"name": "execute_order_sync", "arguments": "not a map"},
        ["execute_order_sync"],
    ])
    def test_invalid_call_params(self, bridge, params):
        response = bridge.dispatch(rpc("tools/call", params))
        assert response["error"]["code"] == INVALID_PARAMS

    def test_notifications_get_no_response(self, bridge):
        assert bridge.dispatch({"jsonrpc": "2.0", "method": "notifications/initialized"}) is None
        assert bridge.dispatch({"jsonrpc": "2.0", "method": "notifications/unknown"}) is None

    def test_ping(self, bridge):
        assert bridge.dispatch(rpc("ping"))["result"] == {}

    def test_internal_error(self, bridge):
        def explode(params):
            raise RuntimeError("kaboom")

        bridge.register_method("debug/explode", explode)
        response = bridge.dispatch(rpc("debug/explode"))

        assert response["error"]["code"] == INTERNAL_ERROR
        assert response["error"]["message"] == "Internal error"
        assert response["error"]["data"] == "kaboom"

    def test_update_swaps_tools(self, bridge, registry):
        bridge.update(build_workflow([("t", "manual"), ("a", "http")], [("t", "a")], name="Invoice Sync"))

        tools = bridge.dispatch(rpc("tools/list"))["result"]["tools"]
        assert [tool["name"] for tool in tools] == ["execute_invoice_sync"]
        unknown = bridge.dispatch(rpc("tools/call", {"name": "execute_order_sync"}))
        assert unknown["result"]["isError"] is True

    def test_bridge_keeps_own_copy(self, bridge, webhook_to_http):
        webhook_to_http.name = "Renamed"
        assert bridge.tools[0].name == "execute_order_sync"


class TestBridgeRegistry:
    """Test cases for the deployed server registry."""

    @pytest.fixture
    def bridges(self, registry, echo_executor):
        return BridgeRegistry(registry, echo_executor)

    def test_deploy_and_dispatch(self, bridges, webhook_to_http):
        bridges.deploy("orders", webhook_to_http)

        assert "orders" in bridges
        response = bridges.dispatch("orders", rpc("tools/list"))
        assert response["result"]["tools"][0]["name"] == "execute_order_sync"

    def test_unknown_server(self, bridges):
        response = bridges.dispatch("missing", rpc("tools/list", request_id=9))

        assert response["id"] == 9
        assert response["error"]["code"] == SERVER_NOT_FOUND
        assert response["error"]["message"] == "Server not found"
        assert response["error"]["data"] == {"serverId": "missing"}

    def test_redeploy_updates_existing_server(self, bridges, webhook_to_http):
        first = bridges.deploy("orders", webhook_to_http)
        renamed = webhook_to_http.model_copy(update={"name": "Order Import"})
        second = bridges.deploy("orders", renamed, name="Orders")

        assert first is second
        assert second.name == "Orders"
        assert [tool.name for tool in second.tools] == ["execute_order_import"]
        assert len(bridges.list_bridges()) == 1

    def test_remove(self, bridges, webhook_to_http):
        bridges.deploy("orders", webhook_to_http)

        assert bridges.remove("orders")
        assert not bridges.remove("orders")
        with pytest.raises(BridgeNotFoundError):
            bridges.get("orders")

    def test_replace_requires_existing_server(self, bridges, webhook_to_http):
        with pytest.raises(BridgeNotFoundError):
            bridges.replace("orders", webhook_to_http)

    def test_info(self, bridges, webhook_to_http):
        info = bridges.deploy("orders", webhook_to_http).info()

        assert info["serverId"] == "orders"
        assert info["workflowId"] == "wf-order-sync"
        assert info["protocolVersion"] == "2024-11-05"
        assert [tool["name"] for tool in info["tools"]] == ["execute_order_sync"]
