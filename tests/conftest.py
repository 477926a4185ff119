"""Pytest configuration and fixtures."""

import time
import pytest
from typing import Any, Dict, Iterable, Sequence

from flowbridge.core.node_executor import CallableNodeExecutor, NodeOutcome
from flowbridge.core.template_registry import default_registry
from flowbridge.models.core import WorkflowConnection, WorkflowDefinition, WorkflowNode


VALID_CONFIGS: Dict[str, Dict[str, Any]] = {
    "manual": {},
    "webhook": {"method": "POST"},
    "schedule": {"cron": "0 * * * *"},
    "http": {"url": "https://api.example.com/items", "method": "GET"},
    "email": {"to": "ops@example.com", "subject": "Report"},
    "condition": {"condition": "input.value > 100"},
    "transform": {},
}


def build_workflow(
    nodes: Iterable[Sequence[Any]],
    connections: Iterable[Sequence[Any]] = (),
    name: str = "Test Workflow",
    description: str = None,
    workflow_id: str = "wf-test"
) -> WorkflowDefinition:
    """Build a definition from (id, kind[, config]) and (source, target[, sourcePort, targetPort]) tuples."""
    node_models = []
    for entry in nodes:
        node_id, kind = entry[0], entry[1]
        config = entry[2] if len(entry) > 2 else dict(VALID_CONFIGS.get(kind, {}))
        node_models.append(WorkflowNode(id=node_id, kind=kind, name=node_id.upper(), config=config))

    connection_models = []
    for index, entry in enumerate(connections):
        source, target = entry[0], entry[1]
        source_port = entry[2] if len(entry) > 2 else None
        target_port = entry[3] if len(entry) > 3 else None
        connection_models.append(WorkflowConnection(
            id=f"c{index}",
            source_node_id=source,
            target_node_id=target,
            source_port=source_port,
            target_port=target_port
        ))

    return WorkflowDefinition(
        id=workflow_id,
        name=name,
        description=description,
        nodes=node_models,
        connections=connection_models
    )


@pytest.fixture
def registry():
    """The built-in template registry."""
    return default_registry()


@pytest.fixture
def workflow_builder():
    """Factory for workflow definitions."""
    return build_workflow


@pytest.fixture
def webhook_to_http():
    """Trigger T (webhook) connected to action A (http)."""
    return build_workflow(
        [("t", "webhook"), ("a", "http")],
        [("t", "a")],
        name="Order Sync",
        workflow_id="wf-order-sync"
    )


def echo_handler(config: Dict[str, Any], inputs: Dict[str, Any], context) -> Dict[str, Any]:
    """Echo inputs back with the node id."""
    return {"node": context.node_id, "inputs": inputs, "status": 200}


def failing_handler(config: Dict[str, Any], inputs: Dict[str, Any], context) -> NodeOutcome:
    return NodeOutcome.failure("HTTP_500", "upstream service returned 500")


def raising_handler(config: Dict[str, Any], inputs: Dict[str, Any], context):
    raise RuntimeError("connection reset")


def slow_handler(config: Dict[str, Any], inputs: Dict[str, Any], context) -> Dict[str, Any]:
    time.sleep(config.get("delay", 0.05))
    return {"slept": True}


@pytest.fixture
def echo_executor():
    """Executor answering every built-in action kind with echo_handler."""
    executor = CallableNodeExecutor()
    for kind in ("http", "email", "transform"):
        executor.register(kind, echo_handler, "echo")
    return executor
