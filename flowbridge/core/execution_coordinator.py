"""Execution Coordinator: runs one workflow execution wave by wave."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextvars import copy_context
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from ..models.core import WorkflowConnection, WorkflowDefinition, WorkflowNode
from ..models.execution import (
    Execution,
    ExecutionStatusEnum,
    NodeResult,
    NodeRunStatus,
    SkipReason,
)
from .exceptions import ExecutionCoordinatorError, NodeExecutionError
from .graph_analyzer import GraphAnalyzer
from .graph_index import GraphIndex
from .logging import get_logger, log_with_context, logging_context, set_logging_context
from .node_executor import NodeExecutionContext, NodeExecutor, NodeOutcome
from .template_registry import TemplateRegistry

logger = get_logger(__name__)


class ExecutionCoordinator:
    """
    Owns and drives a single execution of a workflow.

    One coordinator is created per execution. Nodes are grouped into
    dependency waves; every node of a wave runs concurrently on a thread
    pool and the next wave starts only after the whole wave has joined.
    A failed node starves the nodes that depend on it alone, while nodes
    with another delivering input still run.
    """

    def __init__(
        self,
        definition: WorkflowDefinition,
        registry: TemplateRegistry,
        executor: NodeExecutor,
        analyzer: Optional[GraphAnalyzer] = None,
        max_workers: int = 4,
        execution_id: Optional[str] = None
    ):
        if max_workers < 1:
            raise ExecutionCoordinatorError("max_workers must be at least 1", workflow_id=definition.id)

        self.definition = definition.model_copy(deep=True)
        self.registry = registry
        self.executor = executor
        self.analyzer = analyzer or GraphAnalyzer(registry)
        self.max_workers = max_workers

        execution_kwargs = {"workflow_id": self.definition.id}
        if execution_id:
            execution_kwargs["id"] = execution_id
        self.execution = Execution(**execution_kwargs)

        self._nodes: Dict[str, WorkflowNode] = {node.id: node for node in self.definition.nodes}
        self._incoming: Dict[str, List[WorkflowConnection]] = {node_id: [] for node_id in self._nodes}
        self._outgoing: Dict[str, List[WorkflowConnection]] = {node_id: [] for node_id in self._nodes}
        for connection in self.definition.connections:
            if connection.source_node_id in self._nodes and connection.target_node_id in self._nodes:
                self._incoming[connection.target_node_id].append(connection)
                self._outgoing[connection.source_node_id].append(connection)

        self._cancel_event = threading.Event()
        self._lock = threading.Lock()
        self._in_flight: Dict[str, NodeExecutionContext] = {}
        self._started = False

    @property
    def execution_id(self) -> str:
        return self.execution.id

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def run(
        self,
        trigger_input: Optional[Dict[str, Any]] = None,
        trigger_node_ids: Optional[Iterable[str]] = None
    ) -> Execution:
        """
        Execute the workflow against a trigger payload.

        Args:
            trigger_input: Payload that becomes the outputs of every fired trigger
            trigger_node_ids: Triggers to fire; all trigger nodes when omitted

        Returns:
            Execution: The finished execution record

        Raises:
            ExecutionCoordinatorError: If the coordinator already ran or a
                requested trigger is not a trigger node of this workflow
        """
        with self._lock:
            if self._started:
                raise ExecutionCoordinatorError(
                    "Coordinator has already run",
                    execution_id=self.execution.id,
                    workflow_id=self.definition.id
                )
            self._started = True

        with logging_context(execution_id=self.execution.id, workflow_id=self.definition.id):
            return self._run(trigger_input, trigger_node_ids)

    def _run(
        self,
        trigger_input: Optional[Dict[str, Any]],
        trigger_node_ids: Optional[Iterable[str]]
    ) -> Execution:
        execution = self.execution
        triggers = self.analyzer.trigger_nodes(self.definition)
        fired = self._resolve_fired_triggers(triggers, trigger_node_ids)

        execution.trigger_input = dict(trigger_input or {})
        execution.transition(ExecutionStatusEnum.RUNNING)
        log_with_context(
            logger, logging.INFO, f"Execution started for workflow {self.definition.id}",
            execution_id=execution.id, workflow_id=self.definition.id, triggers=sorted(fired)
        )

        # structural problems end the run before any node is invoked
        validation = self.analyzer.validate(self.definition)
        if not validation.is_valid:
            execution.error_message = "Workflow validation failed: " + "; ".join(
                error.message for error in validation.errors
            )
            execution.transition(ExecutionStatusEnum.FAILED)
            log_with_context(
                logger, logging.WARNING, "Execution rejected by validation",
                execution_id=execution.id, errors=len(validation.errors)
            )
            return execution

        # every node gets a PENDING result up front, tagged with its wave
        waves = GraphIndex.from_definition(self.definition).waves()
        for wave_number, wave in enumerate(waves):
            for node_id in wave:
                execution.node_results[node_id] = NodeResult(
                    node_id=node_id, kind=self._nodes[node_id].kind, wave=wave_number
                )

        try:
            with ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix=f"exec-{execution.id[:8]}"
            ) as pool:
                for wave_number, wave in enumerate(waves):
                    # a wave starts only after the previous one has fully joined
                    if self._cancel_event.is_set():
                        logger.info(f"Execution {execution.id} cancelled before wave {wave_number}")
                        break
                    runnable = self._prepare_wave(wave, fired, execution.trigger_input)
                    self._run_wave(pool, wave_number, runnable)
        except Exception as e:
            logger.error(f"Execution {execution.id} aborted: {str(e)}", exc_info=True)
            execution.error_message = f"Execution aborted: {str(e)}"

        self._finalize()
        return execution

    def cancel(self) -> bool:
        """
        Request cancellation.

        Waves not yet started are not scheduled, and every in-flight node is
        offered to the executor's cancel hook.

        Returns:
            bool: False if the execution had already finished
        """
        if self.execution.is_terminal:
            return False

        self._cancel_event.set()
        with self._lock:
            in_flight = list(self._in_flight.values())

        for context in in_flight:
            try:
                self.executor.cancel_node(context)
            except Exception as e:
                logger.warning(f"Cancel hook failed for node {context.node_id}: {str(e)}")

        logger.info(f"Cancellation requested for execution {self.execution.id}")
        return True

    def _resolve_fired_triggers(self, triggers: List[str], requested: Optional[Iterable[str]]) -> Set[str]:
        if requested is None:
            return set(triggers)

        requested = set(requested)
        unknown = requested - set(triggers)
        if unknown:
            raise ExecutionCoordinatorError(
                f"Not trigger nodes of this workflow: {', '.join(sorted(unknown))}",
                execution_id=self.execution.id,
                workflow_id=self.definition.id
            )
        return requested

    def _prepare_wave(
        self,
        wave: List[str],
        fired: Set[str],
        trigger_input: Dict[str, Any]
    ) -> List[Tuple[WorkflowNode, Dict[str, Any]]]:
        """Resolve triggers and skips for a wave, returning the nodes to invoke."""
        runnable = []
        now = datetime.utcnow()

        for node_id in wave:
            node = self._nodes[node_id]
            result = self.execution.node_results[node_id]

            # triggers are not invoked; a fired trigger outputs the payload
            if self.registry.is_trigger(node.kind):
                if node_id in fired:
                    result.status = NodeRunStatus.COMPLETED
                    result.outputs = dict(trigger_input)
                    result.started_at = now
                    result.completed_at = now
                else:
                    self._skip(result, SkipReason.NOT_TRIGGERED)
                continue

            # one delivering input is enough to run
            inputs, delivered = self._resolve_inputs(node_id)
            if not delivered:
                self._skip(result, self._skip_reason(node_id))
                continue

            runnable.append((node, inputs))

        return runnable

    def _resolve_inputs(self, node_id: str) -> Tuple[Dict[str, Any], bool]:
        inputs: Dict[str, Any] = {}
        delivered = False

        for connection in self._incoming[node_id]:
            source = self.execution.node_results[connection.source_node_id]
            if source.status != NodeRunStatus.COMPLETED:
                continue
            # a port selects one output value; an untaken branch port is absent
            if connection.source_port:
                if connection.source_port not in source.outputs:
                    continue
                value = source.outputs[connection.source_port]
            else:
                value = dict(source.outputs)

            # keyed by target port, or by source node id when unnamed
            inputs[connection.target_port or connection.source_node_id] = value
            delivered = True

        return inputs, delivered

    def _skip_reason(self, node_id: str) -> SkipReason:
        for connection in self._incoming[node_id]:
            source = self.execution.node_results[connection.source_node_id]
            if source.status in (NodeRunStatus.FAILED, NodeRunStatus.CANCELLED):
                return SkipReason.UPSTREAM_FAILED
            if source.status == NodeRunStatus.SKIPPED and source.skip_reason == SkipReason.UPSTREAM_FAILED:
                return SkipReason.UPSTREAM_FAILED
        return SkipReason.NOT_TRIGGERED

    def _skip(self, result: NodeResult, reason: SkipReason) -> None:
        result.status = NodeRunStatus.SKIPPED
        result.skip_reason = reason
        log_with_context(
            logger, logging.DEBUG, f"Node {result.node_id} skipped",
            execution_id=self.execution.id, node_id=result.node_id, reason=reason.value
        )

    def _run_wave(
        self,
        pool: ThreadPoolExecutor,
        wave_number: int,
        runnable: List[Tuple[WorkflowNode, Dict[str, Any]]]
    ) -> None:
        if not runnable:
            return

        futures = {}
        for node, inputs in runnable:
            result = self.execution.node_results[node.id]
            # cancelled while the wave was being submitted
            if self._cancel_event.is_set():
                result.status = NodeRunStatus.CANCELLED
                continue

            context = NodeExecutionContext(
                execution_id=self.execution.id,
                workflow_id=self.definition.id,
                node_id=node.id,
                wave=wave_number,
                cancel_event=self._cancel_event
            )
            result.status = NodeRunStatus.RUNNING
            result.inputs = inputs
            result.started_at = datetime.utcnow()
            with self._lock:
                self._in_flight[node.id] = context

            log_with_context(
                logger, logging.INFO, f"Node {node.id} started",
                execution_id=self.execution.id, node_id=node.id, kind=node.kind, wave=wave_number
            )
            # the executor's own records carry the execution and node ids
            node_log_context = copy_context()
            node_log_context.run(set_logging_context, node_id=node.id)
            futures[pool.submit(node_log_context.run, self._invoke, node, inputs, context)] = node

        for future in as_completed(futures):
            node = futures[future]
            try:
                outcome = future.result()
            except NodeExecutionError as e:
                logger.error(f"Node {node.id} raised in execution {self.execution.id}: {e.message}")
                outcome = NodeOutcome.failure(e.error_code, e.message)

            with self._lock:
                self._in_flight.pop(node.id, None)
            self._record(node, outcome, wave_number)

    def _invoke(self, node: WorkflowNode, inputs: Dict[str, Any], context: NodeExecutionContext) -> NodeOutcome:
        try:
            outcome = self.executor.execute_node(
                node.kind,
                dict(node.config),
                inputs,
                node.credentials_ref,
                context
            )
        except Exception as e:
            raise NodeExecutionError(
                f"Executor raised {type(e).__name__}: {str(e)}",
                node_id=node.id,
                execution_id=context.execution_id,
                kind=node.kind,
                error_code="EXECUTOR_EXCEPTION"
            ) from e

        if not isinstance(outcome, NodeOutcome):
            return NodeOutcome.failure(
                "INVALID_OUTCOME",
                f"Executor returned {type(outcome).__name__} instead of NodeOutcome"
            )
        return outcome

    def _record(self, node: WorkflowNode, outcome: NodeOutcome, wave_number: int) -> None:
        result = self.execution.node_results[node.id]
        result.completed_at = datetime.utcnow()

        if outcome.succeeded:
            result.status = NodeRunStatus.COMPLETED
            result.outputs = outcome.outputs
            log_with_context(
                logger, logging.INFO, f"Node {node.id} completed",
                execution_id=self.execution.id, node_id=node.id, wave=wave_number
            )
        else:
            result.status = NodeRunStatus.FAILED
            result.error_code = outcome.error_code
            result.error_message = outcome.message
            log_with_context(
                logger, logging.WARNING, f"Node {node.id} failed: {outcome.message}",
                execution_id=self.execution.id, node_id=node.id, wave=wave_number,
                error_code=outcome.error_code
            )

    def _finalize(self) -> None:
        execution = self.execution

        # nodes still pending or running when cancelled never finished
        if self._cancel_event.is_set():
            execution.cancelled = True
            for result in execution.node_results.values():
                if result.status in (NodeRunStatus.PENDING, NodeRunStatus.RUNNING):
                    result.status = NodeRunStatus.CANCELLED

        failed = execution.nodes_with_status(NodeRunStatus.FAILED)
        starved = [
            node_id for node_id, result in execution.node_results.items()
            if result.status == NodeRunStatus.SKIPPED and result.skip_reason == SkipReason.UPSTREAM_FAILED
        ]

        # the output payload is the outputs of completed sink nodes
        execution.output = {
            node_id: result.outputs
            for node_id, result in execution.node_results.items()
            if result.status == NodeRunStatus.COMPLETED and not self._outgoing[node_id]
        }

        if execution.error_message is None:
            if execution.cancelled:
                execution.error_message = "Execution cancelled"
            elif failed:
                details = "; ".join(
                    f"{node_id} ({execution.node_results[node_id].error_code}: "
                    f"{execution.node_results[node_id].error_message})"
                    for node_id in failed
                )
                execution.error_message = f"Node(s) failed: {details}"

        # NOT_TRIGGERED skips do not fail the run
        is_failed = bool(failed or starved or execution.cancelled or execution.error_message)
        execution.transition(ExecutionStatusEnum.FAILED if is_failed else ExecutionStatusEnum.COMPLETED)

        log_with_context(
            logger, logging.INFO,
            f"Execution {execution.id} finished with status {execution.status.value}",
            execution_id=execution.id, failed_nodes=failed, skipped_upstream=starved,
            duration_ms=execution.duration_ms
        )


def run_workflow(
    definition: WorkflowDefinition,
    registry: TemplateRegistry,
    executor: NodeExecutor,
    trigger_input: Optional[Dict[str, Any]] = None,
    trigger_node_ids: Optional[Iterable[str]] = None,
    max_workers: int = 4
) -> Execution:
    """Create a coordinator for one execution and run it to completion."""
    coordinator = ExecutionCoordinator(definition, registry, executor, max_workers=max_workers)
    return coordinator.run(trigger_input, trigger_node_ids)
