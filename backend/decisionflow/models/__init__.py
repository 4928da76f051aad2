"""Pydantic models for Decision Flow Studio."""

from decisionflow.models.audit import (
    ActionOutcome,
    AnswerReceivedOutcome,
    AuditLogEntry,
    AuditOutcome,
    ConditionOutcome,
    FlowCompletedOutcome,
    FlowFailedOutcome,
    FlowStartedOutcome,
)
from decisionflow.models.execution import (
    ActionDescriptor,
    ActionResult,
    Answer,
    ExecutionState,
    ExecutionStatus,
)
from decisionflow.models.field import FieldMetadata, FieldOption, FieldType
from decisionflow.models.flow import (
    ActionKind,
    ActionNode,
    AnswerType,
    BranchLabel,
    DateExpressionValue,
    Edge,
    FieldSubject,
    FlowCreate,
    FlowDefinition,
    FlowNode,
    FlowSummary,
    LiteralValue,
    LogicNode,
    LogicSubject,
    Operator,
    OptionValue,
    QuestionNode,
    QuestionRefValue,
    QuestionSubject,
    StartNode,
    ValueSpec,
)

__all__ = [
    # Flow definition
    "FlowDefinition",
    "FlowCreate",
    "FlowSummary",
    "FlowNode",
    "StartNode",
    "QuestionNode",
    "LogicNode",
    "ActionNode",
    "Edge",
    "AnswerType",
    "Operator",
    "ActionKind",
    "BranchLabel",
    # Value specifications
    "ValueSpec",
    "LiteralValue",
    "DateExpressionValue",
    "QuestionRefValue",
    "OptionValue",
    "LogicSubject",
    "FieldSubject",
    "QuestionSubject",
    # Execution
    "ExecutionState",
    "ExecutionStatus",
    "Answer",
    "ActionDescriptor",
    "ActionResult",
    # Audit
    "AuditLogEntry",
    "AuditOutcome",
    "FlowStartedOutcome",
    "AnswerReceivedOutcome",
    "ConditionOutcome",
    "ActionOutcome",
    "FlowCompletedOutcome",
    "FlowFailedOutcome",
    # Fields
    "FieldMetadata",
    "FieldOption",
    "FieldType",
]
