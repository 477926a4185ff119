"""Execution records produced by the execution coordinator."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import Field

from .core import WireModel
from ..core.exceptions import ExecutionStateError


class ExecutionStatusEnum(str, Enum):
    """Aggregate status of one execution."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class NodeRunStatus(str, Enum):
    """Status of one node within an execution."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class SkipReason(str, Enum):
    """Why a node was skipped."""
    UPSTREAM_FAILED = "upstream_failed"
    NOT_TRIGGERED = "not_triggered"


_ALLOWED_TRANSITIONS = {
    ExecutionStatusEnum.PENDING: {ExecutionStatusEnum.RUNNING},
    ExecutionStatusEnum.RUNNING: {ExecutionStatusEnum.COMPLETED, ExecutionStatusEnum.FAILED},
    ExecutionStatusEnum.COMPLETED: set(),
    ExecutionStatusEnum.FAILED: set(),
}


class NodeResult(WireModel):
    """Outcome of one node in one execution."""
    node_id: str = Field(..., alias="nodeId", description="Node the result belongs to")
    kind: str = Field(..., description="Node kind")
    status: NodeRunStatus = Field(NodeRunStatus.PENDING, description="Node status")
    wave: Optional[int] = Field(None, description="Dependency wave the node belongs to")
    inputs: Dict[str, Any] = Field(default_factory=dict, description="Resolved inputs")
    outputs: Dict[str, Any] = Field(default_factory=dict, description="Outputs on success")
    error_code: Optional[str] = Field(None, alias="errorCode", description="Executor error code")
    error_message: Optional[str] = Field(None, alias="errorMessage", description="Executor error message")
    skip_reason: Optional[SkipReason] = Field(None, alias="skipReason", description="Set for skipped nodes")
    started_at: Optional[datetime] = Field(None, alias="startedAt")
    completed_at: Optional[datetime] = Field(None, alias="completedAt")


class Execution(WireModel):
    """
    One run of a workflow against concrete trigger input.

    Only the coordinator that owns an execution mutates it. Status moves
    PENDING -> RUNNING -> COMPLETED | FAILED; any other move raises
    ExecutionStateError.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Execution id")
    workflow_id: str = Field(..., alias="workflowId", description="Workflow being executed")
    status: ExecutionStatusEnum = Field(ExecutionStatusEnum.PENDING, description="Aggregate status")
    created_at: datetime = Field(default_factory=datetime.utcnow, alias="createdAt")
    started_at: Optional[datetime] = Field(None, alias="startedAt")
    completed_at: Optional[datetime] = Field(None, alias="completedAt")
    trigger_input: Dict[str, Any] = Field(default_factory=dict, alias="triggerInput")
    node_results: Dict[str, NodeResult] = Field(default_factory=dict, alias="nodeResults")
    output: Dict[str, Any] = Field(default_factory=dict, description="Outputs of completed sink nodes")
    error_message: Optional[str] = Field(None, alias="errorMessage")
    cancelled: bool = Field(False, description="Whether the run was cancelled")

    def transition(self, new_status: ExecutionStatusEnum) -> None:
        """Move to ``new_status`` if the lifecycle allows it."""
        if new_status not in _ALLOWED_TRANSITIONS[self.status]:
            raise ExecutionStateError(
                f"Illegal execution transition {self.status.value} -> {new_status.value}",
                execution_id=self.id,
                from_status=self.status.value,
                to_status=new_status.value
            )
        self.status = new_status
        if new_status == ExecutionStatusEnum.RUNNING:
            self.started_at = datetime.utcnow()
        elif self.is_terminal:
            self.completed_at = datetime.utcnow()

    @property
    def is_terminal(self) -> bool:
        return self.status in (ExecutionStatusEnum.COMPLETED, ExecutionStatusEnum.FAILED)

    @property
    def duration_ms(self) -> Optional[float]:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds() * 1000

    def nodes_with_status(self, status: NodeRunStatus) -> List[str]:
        return [node_id for node_id, result in self.node_results.items() if result.status == status]
