"""Flow evaluation engine for Decision Flow Studio."""

from decisionflow.engine.answers import validate_answer
from decisionflow.engine.audit import AuditLogger, AuditStore
from decisionflow.engine.collaborators import (
    ActionExecutor,
    FieldMetadataProvider,
    FieldReader,
)
from decisionflow.engine.conditions import evaluate_condition, is_empty
from decisionflow.engine.resolver import ValueResolver
from decisionflow.engine.state_machine import (
    DEFAULT_MAX_HOPS,
    AdvanceResult,
    ExecutionContext,
    FlowStateMachine,
)
from decisionflow.engine.validator import (
    FlowIssue,
    FlowValidationResult,
    IssueSeverity,
    add_node,
    connect,
    remove_node,
    validate_flow,
)

__all__ = [
    "ActionExecutor",
    "AdvanceResult",
    "AuditLogger",
    "AuditStore",
    "DEFAULT_MAX_HOPS",
    "ExecutionContext",
    "FieldMetadataProvider",
    "FieldReader",
    "FlowIssue",
    "FlowStateMachine",
    "FlowValidationResult",
    "IssueSeverity",
    "ValueResolver",
    "add_node",
    "connect",
    "evaluate_condition",
    "is_empty",
    "remove_node",
    "validate_answer",
    "validate_flow",
]
