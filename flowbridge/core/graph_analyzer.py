"""Graph Analyzer: whole-workflow structural analysis and validation."""

from typing import Dict, List, Mapping, Optional, Tuple

from ..models.core import (
    CircularDependency,
    ConnectionAnalysis,
    ConnectionErrorType,
    ConnectionInfo,
    ConnectionValidationResult,
    NodeConnectionInfo,
    PortDefinition,
    PortInfo,
    WorkflowConnection,
    WorkflowDefinition,
    WorkflowErrorType,
    WorkflowValidationError,
    WorkflowValidationResult,
    WorkflowValidationWarning,
    WorkflowWarningType,
)
from .config_validator import ConfigValidator
from .connection_validator import ConnectionValidator
from .graph_index import GraphIndex
from .logging import get_logger
from .template_registry import TemplateRegistry
from .tool_schema import declared_input_schema, normalize_input_schema

logger = get_logger(__name__)


class GraphAnalyzer:
    """Analyzes and validates complete workflow definitions.

    Every method is a pure function of the definition it is given and the
    injected registry, so one analyzer can serve concurrent callers.
    """

    def __init__(self, registry: TemplateRegistry, config_validator: Optional[ConfigValidator] = None):
        self.registry = registry
        self.config_validator = config_validator or ConfigValidator()
        self.connection_validator = ConnectionValidator(registry)

    def trigger_nodes(self, definition: WorkflowDefinition) -> List[str]:
        return [node.id for node in definition.nodes if self.registry.is_trigger(node.kind)]

    def replay_connections(
        self,
        definition: WorkflowDefinition
    ) -> List[Tuple[WorkflowConnection, ConnectionValidationResult]]:
        """
        Re-validate each existing connection against the ones before it.

        Connections are replayed in insertion order, so a duplicate is
        reported on its second occurrence and a cycle on the edge that
        closes it.

        Args:
            definition: The workflow to replay

        Returns:
            List of (connection, validation result) pairs in insertion order
        """
        nodes = {node.id: node for node in definition.nodes}
        index = GraphIndex(definition.node_ids())
        existing = set()
        results = []

        # each edge is checked against the graph built from the edges before it
        for connection in definition.connections:
            result = self.connection_validator.check(
                nodes,
                index,
                existing,
                connection.source_node_id,
                connection.target_node_id,
                connection.source_port,
                connection.target_port
            )
            results.append((connection, result))
            index.add_edge(connection.source_node_id, connection.target_node_id)
            existing.add(connection.endpoint_key)

        return results

    def find_cycles(self, definition: WorkflowDefinition) -> List[CircularDependency]:
        return GraphIndex.from_definition(definition).find_cycles()

    def has_cycle(self, definition: WorkflowDefinition) -> bool:
        return GraphIndex.from_definition(definition).has_cycle()

    def orphaned_nodes(self, definition: WorkflowDefinition) -> List[str]:
        """Nodes touched by no connection.

        A lone trigger in a single-node workflow is not an orphan.
        """
        touched = set()
        for connection in definition.connections:
            touched.add(connection.source_node_id)
            touched.add(connection.target_node_id)

        single_node = len(definition.nodes) == 1
        return [
            node.id for node in definition.nodes
            if node.id not in touched
            and not (single_node and self.registry.is_trigger(node.kind))
        ]

    def unreachable_nodes(self, definition: WorkflowDefinition) -> List[str]:
        """Nodes not reachable by forward traversal from any trigger node."""
        index = GraphIndex.from_definition(definition)
        reachable = index.reachable_from(self.trigger_nodes(definition))
        return [node_id for node_id in index.node_ids if node_id not in reachable]

    def execution_order(self, definition: WorkflowDefinition) -> List[str]:
        """Topological order, ties broken by node insertion order."""
        return GraphIndex.from_definition(definition).topological_order()

    def execution_waves(self, definition: WorkflowDefinition) -> List[List[str]]:
        """Nodes grouped into waves that can run concurrently."""
        return GraphIndex.from_definition(definition).waves()

    def analyze(self, definition: WorkflowDefinition) -> ConnectionAnalysis:
        """
        Produce the whole-graph analysis summary.

        Args:
            definition: The workflow to analyze

        Returns:
            ConnectionAnalysis: Counts, cycles, orphans, unreachable nodes and execution order
        """
        replayed = self.replay_connections(definition)
        valid = sum(1 for _, result in replayed if result.is_valid)
        warning_count = sum(len(result.warnings) for _, result in replayed)

        # one index serves cycles, reachability and order
        index = GraphIndex.from_definition(definition)
        reachable = index.reachable_from(self.trigger_nodes(definition))

        analysis = ConnectionAnalysis(
            total_connections=len(replayed),
            valid_connections=valid,
            invalid_connections=len(replayed) - valid,
            warnings=warning_count,
            circular_dependencies=index.find_cycles(),
            orphaned_nodes=self.orphaned_nodes(definition),
            unreachable_nodes=[node_id for node_id in index.node_ids if node_id not in reachable],
            execution_order=index.topological_order()
        )

        logger.debug(
            f"Analyzed workflow {definition.id}: {analysis.valid_connections}/{analysis.total_connections} "
            f"valid connections, {len(analysis.circular_dependencies)} cycles"
        )
        return analysis

    def validate(self, definition: WorkflowDefinition) -> WorkflowValidationResult:
        """
        Validate a workflow for structural correctness.

        Args:
            definition: The workflow to validate

        Returns:
            WorkflowValidationResult: Typed errors and warnings
        """
        errors: List[WorkflowValidationError] = []
        warnings: List[WorkflowValidationWarning] = []

        self._validate_triggers(definition, errors)
        self._validate_nodes(definition, errors, warnings)
        self._validate_connections(definition, errors)
        self._validate_cycles(definition, errors)
        self._validate_reachability(definition, warnings)

        result = WorkflowValidationResult(is_valid=not errors, errors=errors, warnings=warnings)
        logger.debug(
            f"Workflow validation completed. Valid: {result.is_valid}, "
            f"Errors: {len(result.errors)}, Warnings: {len(result.warnings)}"
        )
        return result

    def _validate_triggers(self, definition: WorkflowDefinition, errors: List[WorkflowValidationError]):
        if not self.trigger_nodes(definition):
            errors.append(WorkflowValidationError(
                type=WorkflowErrorType.MISSING_TRIGGER,
                message="Workflow must contain at least one trigger node"
            ))

    def _validate_nodes(
        self,
        definition: WorkflowDefinition,
        errors: List[WorkflowValidationError],
        warnings: List[WorkflowValidationWarning]
    ):
        for node in definition.nodes:
            template = self.registry.get(node.kind)
            if template is None:
                errors.append(WorkflowValidationError(
                    type=WorkflowErrorType.UNKNOWN_NODE_KIND,
                    message=f"Node '{node.id}' has unknown kind '{node.kind}'",
                    node_id=node.id
                ))
                continue

            if template.deprecated:
                warnings.append(WorkflowValidationWarning(
                    type=WorkflowWarningType.DEPRECATED_NODE,
                    message=f"Node '{node.id}' uses deprecated kind '{node.kind}'",
                    node_id=node.id
                ))

            config_result = self.config_validator.validate(node.config, template.config_schema)
            for field_error in config_result.errors:
                errors.append(WorkflowValidationError(
                    type=WorkflowErrorType.INVALID_CONFIG,
                    message=f"Node '{node.id}': {field_error.message}",
                    node_id=node.id,
                    field=field_error.field
                ))

            # a non-object inputSchema is already a config type error
            declared = declared_input_schema(node)
            if self.registry.is_trigger(node.kind) and isinstance(declared, Mapping):
                _, problems = normalize_input_schema(declared)
                for problem in problems:
                    errors.append(WorkflowValidationError(
                        type=WorkflowErrorType.INVALID_CONFIG,
                        message=f"Node '{node.id}': {problem}",
                        node_id=node.id,
                        field="inputSchema"
                    ))

    def _validate_connections(self, definition: WorkflowDefinition, errors: List[WorkflowValidationError]):
        for connection, result in self.replay_connections(definition):
            for connection_error in result.errors:
                # cycles are reported once per cycle by _validate_cycles
                if connection_error.type == ConnectionErrorType.CIRCULAR_DEPENDENCY:
                    continue
                errors.append(WorkflowValidationError(
                    type=WorkflowErrorType.INVALID_CONNECTION,
                    message=connection_error.message,
                    connection_id=connection.id
                ))

    def _validate_cycles(self, definition: WorkflowDefinition, errors: List[WorkflowValidationError]):
        for cycle in self.find_cycles(definition):
            errors.append(WorkflowValidationError(
                type=WorkflowErrorType.CIRCULAR_DEPENDENCY,
                message=f"Circular dependency: {' -> '.join(cycle.path)}",
                node_id=cycle.nodes[0]
            ))

    def _validate_reachability(self, definition: WorkflowDefinition, warnings: List[WorkflowValidationWarning]):
        orphaned = self.orphaned_nodes(definition)
        for node_id in orphaned:
            warnings.append(WorkflowValidationWarning(
                type=WorkflowWarningType.UNUSED_NODE,
                message=f"Node '{node_id}' is not connected to any other node",
                node_id=node_id
            ))

        if not self.trigger_nodes(definition):
            return
        for node_id in self.unreachable_nodes(definition):
            if node_id in orphaned:
                continue
            warnings.append(WorkflowValidationWarning(
                type=WorkflowWarningType.UNREACHABLE_NODE,
                message=f"Node '{node_id}' cannot be reached from any trigger",
                node_id=node_id
            ))

    def node_connection_info(self, definition: WorkflowDefinition, node_id: str) -> Optional[NodeConnectionInfo]:
        """Connections and port usage around one node, or None if it does not exist."""
        node = definition.get_node(node_id)
        if node is None:
            return None

        names: Dict[str, str] = {n.id: n.name or n.id for n in definition.nodes}
        incoming = [c for c in definition.connections if c.target_node_id == node_id]
        outgoing = [c for c in definition.connections if c.source_node_id == node_id]

        template = self.registry.get(node.kind)
        input_ports = template.inputs if template else ()
        output_ports = template.outputs if template else ()

        return NodeConnectionInfo(
            node_id=node.id,
            node_name=node.name or node.id,
            node_kind=node.kind,
            incoming_connections=[
                ConnectionInfo(
                    connection_id=c.id,
                    connected_node_id=c.source_node_id,
                    connected_node_name=names.get(c.source_node_id, c.source_node_id),
                    source_port=c.source_port,
                    target_port=c.target_port
                )
                for c in incoming
            ],
            outgoing_connections=[
                ConnectionInfo(
                    connection_id=c.id,
                    connected_node_id=c.target_node_id,
                    connected_node_name=names.get(c.target_node_id, c.target_node_id),
                    source_port=c.source_port,
                    target_port=c.target_port
                )
                for c in outgoing
            ],
            available_input_ports=[_port_info(p, incoming, "target_port") for p in input_ports],
            available_output_ports=[_port_info(p, outgoing, "source_port") for p in output_ports]
        )


def _port_info(port: PortDefinition, connections: List[WorkflowConnection], attribute: str) -> PortInfo:
    match = next((c for c in connections if getattr(c, attribute) == port.name), None)
    return PortInfo(
        name=port.name,
        type=port.type,
        description=port.description,
        required=port.required,
        connected=match is not None,
        connection_id=match.id if match else None
    )
