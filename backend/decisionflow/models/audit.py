"""Pydantic models for the execution audit trail."""

from datetime import datetime, timezone
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Discriminator, Tag
from pydantic import Field as PydanticField

from decisionflow.models.execution import ActionDescriptor
from decisionflow.models.flow import Operator


def _get_outcome_discriminator(v: Any) -> str:
    """Discriminator function for AuditOutcome union."""
    if isinstance(v, dict):
        return v.get("outcome", "")
    return getattr(v, "outcome", "")


class FlowStartedOutcome(BaseModel):
    outcome: Literal["flow_started"] = "flow_started"


class AnswerReceivedOutcome(BaseModel):
    outcome: Literal["answer_received"] = "answer_received"
    value: Any = None


class ConditionOutcome(BaseModel):
    """Result of evaluating a Logic node."""

    outcome: Literal["condition_evaluated"] = "condition_evaluated"
    operator: Operator
    subject: Any = None
    expected: Any = None
    result: bool
    next_node_id: str | None = PydanticField(default=None, alias="nextNodeId")

    model_config = {"populate_by_name": True}


class ActionOutcome(BaseModel):
    """Result reported for an Action node."""

    outcome: Literal["action_executed"] = "action_executed"
    action: ActionDescriptor
    success: bool
    detail: Any = None


class FlowCompletedOutcome(BaseModel):
    outcome: Literal["flow_completed"] = "flow_completed"


class FlowFailedOutcome(BaseModel):
    outcome: Literal["flow_failed"] = "flow_failed"
    error_kind: str = PydanticField(alias="errorKind")

    model_config = {"populate_by_name": True}


AuditOutcome = Annotated[
    Annotated[FlowStartedOutcome, Tag("flow_started")]
    | Annotated[AnswerReceivedOutcome, Tag("answer_received")]
    | Annotated[ConditionOutcome, Tag("condition_evaluated")]
    | Annotated[ActionOutcome, Tag("action_executed")]
    | Annotated[FlowCompletedOutcome, Tag("flow_completed")]
    | Annotated[FlowFailedOutcome, Tag("flow_failed")],
    Discriminator(_get_outcome_discriminator),
]


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class AuditLogEntry(BaseModel):
    """An immutable record of one step of a flow execution."""

    timestamp: str = PydanticField(default_factory=_utcnow)
    record_id: str = PydanticField(alias="recordId")
    flow_id: str = PydanticField(alias="flowId")
    node_id: str | None = PydanticField(default=None, alias="nodeId")
    node_type: str | None = PydanticField(default=None, alias="nodeType")
    outcome: AuditOutcome
    error: str | None = None

    model_config = {"populate_by_name": True, "frozen": True}
