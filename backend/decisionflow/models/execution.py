"""Pydantic models for flow execution against a record."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, model_validator
from pydantic import Field as PydanticField

from decisionflow.models.flow import ActionKind


class ExecutionStatus(str, Enum):
    """Lifecycle of one flow on one record."""

    NOT_STARTED = "not_started"
    AWAITING_ANSWER = "awaiting_answer"  # Paused at a Question node
    COMPLETED = "completed"  # Reached a node with no way forward
    FAILED = "failed"  # Halted by an error; only a reset leaves this state

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED)


class ExecutionState(BaseModel):
    """Execution state of a flow for a record, keyed by (record_id, flow_id)."""

    record_id: str = PydanticField(alias="recordId")
    flow_id: str = PydanticField(alias="flowId")
    status: ExecutionStatus = ExecutionStatus.NOT_STARTED
    awaiting_node_id: str | None = PydanticField(default=None, alias="awaitingNodeId")
    failure_reason: str | None = PydanticField(default=None, alias="failureReason")
    current_node_id: str | None = PydanticField(default=None, alias="currentNodeId")
    answers: dict[str, Any] = {}
    path: list[str] = []
    version: int = 0
    updated_at: str | None = PydanticField(default=None, alias="updatedAt")

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def check_status_payload(self) -> "ExecutionState":
        """Awaiting states name their question; failed states carry a reason."""
        if self.status == ExecutionStatus.AWAITING_ANSWER and not self.awaiting_node_id:
            raise ValueError("awaiting_answer state requires awaitingNodeId")
        if self.status == ExecutionStatus.FAILED and not self.failure_reason:
            raise ValueError("failed state requires failureReason")
        return self

    @classmethod
    def initial(cls, record_id: str, flow_id: str) -> "ExecutionState":
        """Create a fresh, not-started state."""
        return cls(record_id=record_id, flow_id=flow_id)


class Answer(BaseModel):
    """An answer submitted for the Question node execution is paused at."""

    node_id: str | None = PydanticField(default=None, alias="nodeId")
    value: Any = None

    model_config = {"populate_by_name": True}


class ActionDescriptor(BaseModel):
    """An action emitted by an Action node, as handed to the executor."""

    kind: ActionKind
    target_field: str | None = PydanticField(default=None, alias="targetField")
    value: Any = None
    node_id: str | None = PydanticField(default=None, alias="nodeId")

    model_config = {"populate_by_name": True}


class ActionResult(BaseModel):
    """Outcome reported by the action executor."""

    success: bool
    error: str | None = None
    data: Any = None
