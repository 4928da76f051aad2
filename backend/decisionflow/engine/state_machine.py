"""Flow execution state machine.

Walks a flow from its Start node, evaluating Logic nodes and applying
Action nodes, until it reaches a Question node (execution pauses until
the question is answered) or a node with no way forward (execution
completes).

    not_started -> awaiting_answer(q1) -> awaiting_answer(q2) -> completed
                                       \\-> failed(reason)

``advance`` keeps no state between calls. Everything it needs arrives as
arguments or through the ExecutionContext, and the new state is returned
for the caller to persist.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime

from pydantic import BaseModel
from pydantic import Field as PydanticField

from decisionflow.connectors.base import ConnectorError
from decisionflow.engine.answers import validate_answer
from decisionflow.engine.collaborators import (
    ActionExecutor,
    FieldMetadataProvider,
    FieldReader,
)
from decisionflow.engine.conditions import evaluate_condition
from decisionflow.engine.resolver import ValueResolver
from decisionflow.engine.validator import validate_flow
from decisionflow.errors import (
    ActionFailedError,
    AnswerValidationError,
    ConfigurationError,
    FlowError,
    ResolutionError,
)
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
from decisionflow.models.flow import (
    ActionNode,
    BranchLabel,
    FlowDefinition,
    FlowNode,
    LogicNode,
    QuestionNode,
    StartNode,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_HOPS = 200
# Only the most recent visits are kept in the persisted path
DEFAULT_MAX_PATH = 500


@dataclass
class ExecutionContext:
    """Everything a pass needs from outside the flow and the state."""

    record_id: str
    now: date | datetime
    field_reader: FieldReader | None = None
    action_executor: ActionExecutor | None = None
    field_metadata: FieldMetadataProvider | None = None
    max_hops: int = DEFAULT_MAX_HOPS
    max_path: int = DEFAULT_MAX_PATH


class AdvanceResult(BaseModel):
    """Outcome of one pass."""

    state: ExecutionState
    actions: list[ActionDescriptor] = []
    audit_entries: list[AuditLogEntry] = PydanticField(default=[], alias="auditEntries")
    validation_errors: list[str] = PydanticField(default=[], alias="validationErrors")

    model_config = {"populate_by_name": True}

    @property
    def accepted(self) -> bool:
        return not self.validation_errors


class FlowStateMachine:
    """Advances flow executions one pass at a time.

    Example:
        machine = FlowStateMachine(ExecutionContext(record_id="PROJ-1", now=now, ...))
        result = await machine.advance(state, flow)
        if result.state.status == ExecutionStatus.AWAITING_ANSWER:
            # Ask result.state.awaiting_node_id, then
            result = await machine.advance(result.state, flow, Answer(value=...))
    """

    def __init__(self, context: ExecutionContext) -> None:
        self._context = context

    async def advance(
        self,
        state: ExecutionState,
        flow: FlowDefinition,
        answer: Answer | None = None,
    ) -> AdvanceResult:
        """Run one pass from ``state``.

        Args:
            state: The current execution state (never modified)
            flow: The flow definition being executed
            answer: The answer to the question execution is paused at, if any

        Returns:
            AdvanceResult with the new state, the actions emitted and the
            audit entries produced. Rejected answers come back as
            validation_errors with the state unchanged.
        """
        if state.status.is_terminal:
            return AdvanceResult(state=state)

        if state.status == ExecutionStatus.NOT_STARTED:
            if answer is not None:
                return AdvanceResult(
                    state=state,
                    validation_errors=["Flow has not started; no question is awaiting an answer"],
                )
            return await _Pass(self._context, flow, state).start()

        if answer is None:
            return AdvanceResult(state=state)

        question = flow.get_node(state.awaiting_node_id or "")
        if not isinstance(question, QuestionNode):
            # The flow was edited underneath a paused execution
            return await _Pass(self._context, flow, state).fail_with(
                ConfigurationError(
                    f"Awaited question '{state.awaiting_node_id}' no longer exists",
                    node_id=state.awaiting_node_id,
                )
            )

        try:
            if answer.node_id is not None and answer.node_id != question.id:
                raise AnswerValidationError(
                    f"Answer is for '{answer.node_id}' but execution is waiting on "
                    f"'{question.id}'",
                    node_id=answer.node_id,
                )
            value = validate_answer(question, answer.value)
        except AnswerValidationError as e:
            return AdvanceResult(state=state, validation_errors=[str(e)])

        return await _Pass(self._context, flow, state).resume(question, value)


class _Pass:
    """A single evaluation pass over a private copy of the state."""

    def __init__(self, context: ExecutionContext, flow: FlowDefinition, state: ExecutionState):
        self._context = context
        self._flow = flow
        self._state = state.model_copy(deep=True)
        self._actions: list[ActionDescriptor] = []
        self._entries: list[AuditLogEntry] = []
        self._resolver = ValueResolver(
            flow,
            self._state.answers,
            context.now,
            context.record_id,
            field_reader=context.field_reader,
            field_metadata=context.field_metadata,
        )

    async def start(self) -> AdvanceResult:
        try:
            start = self._find_start()
            await self._walk(start)
        except FlowError as e:
            self._fail(e)
        return self._result()

    async def resume(self, question: QuestionNode, value: object) -> AdvanceResult:
        try:
            self._state.answers[question.id] = value
            self._audit(question, AnswerReceivedOutcome(value=value))
            next_id = self._next_unlabeled(question)
            if next_id is None:
                self._complete(question)
            else:
                await self._walk(self._get_node(next_id))
        except FlowError as e:
            self._fail(e)
        return self._result()

    async def fail_with(self, error: FlowError) -> AdvanceResult:
        self._fail(error)
        return self._result()

    # ==================== Traversal ====================

    def _find_start(self) -> StartNode:
        validation = validate_flow(self._flow)
        if validation.errors:
            first = validation.errors[0]
            raise ConfigurationError(
                f"Flow '{self._flow.id}' is invalid: {first.message}", node_id=first.node_id
            )

        starts = self._flow.start_nodes()
        if len(starts) != 1:
            raise ConfigurationError(
                f"Flow '{self._flow.id}' must have exactly one start node, found {len(starts)}"
            )
        return starts[0]

    async def _walk(self, node: FlowNode) -> None:
        hops = 0
        while True:
            hops += 1
            if hops > self._context.max_hops:
                raise ConfigurationError(
                    f"Exceeded {self._context.max_hops} node visits in one pass; "
                    "the flow probably contains a cycle",
                    node_id=node.id,
                )

            self._state.current_node_id = node.id
            self._state.path.append(node.id)
            del self._state.path[: -self._context.max_path]

            if isinstance(node, QuestionNode):
                self._state.status = ExecutionStatus.AWAITING_ANSWER
                self._state.awaiting_node_id = node.id
                return

            next_id = await self._step(node)
            if next_id is None:
                self._complete(node)
                return
            node = self._get_node(next_id)

    async def _step(self, node: FlowNode) -> str | None:
        """Process a non-question node and return the next node ID, if any."""
        if isinstance(node, StartNode):
            self._audit(node, FlowStartedOutcome())
            return self._next_unlabeled(node)
        if isinstance(node, LogicNode):
            return await self._evaluate_logic(node)
        if isinstance(node, ActionNode):
            await self._run_action(node)
            return self._next_unlabeled(node)

        raise ConfigurationError(f"Unexpected node type '{node.type}'", node_id=node.id)

    async def _evaluate_logic(self, node: LogicNode) -> str | None:
        subject = await self._resolver.resolve_subject(node.subject, node.id)
        expected = None
        if not node.operator.is_unary:
            expected = await self._resolver.resolve_value(node.expected, node.id)

        result = evaluate_condition(node.operator, subject, expected)
        next_id = self._next_branch(node, BranchLabel.TRUE if result else BranchLabel.FALSE)
        logger.debug(
            f"Logic {node.id}: {subject!r} {node.operator.value} {expected!r} = {result}"
        )
        self._audit(
            node,
            ConditionOutcome(
                operator=node.operator,
                subject=subject,
                expected=expected,
                result=result,
                next_node_id=next_id,
            ),
        )
        return next_id

    async def _run_action(self, node: ActionNode) -> None:
        value = await self._resolver.resolve_value(node.value, node.id)
        action = ActionDescriptor(
            kind=node.action,
            target_field=node.target_field,
            value=value,
            node_id=node.id,
        )
        self._actions.append(action)

        executor = self._context.action_executor
        if executor is None:
            raise ResolutionError("No action executor configured", node_id=node.id)

        try:
            result = await executor.execute(self._context.record_id, action)
        except ConnectorError as e:
            result = ActionResult(success=False, error=str(e))
        except Exception as e:
            logger.exception(f"Unexpected error executing {node.action.value} on {self._context.record_id}")
            result = ActionResult(success=False, error=f"{type(e).__name__}: {e}")

        self._audit(
            node,
            ActionOutcome(
                action=action,
                success=result.success,
                detail=result.data if result.success else result.error,
            ),
            error=None if result.success else result.error,
        )
        if not result.success:
            raise ActionFailedError(
                f"Action '{node.action.value}' failed: {result.error or 'unknown error'}",
                node_id=node.id,
            )

    # ==================== Edges ====================

    def _get_node(self, node_id: str) -> FlowNode:
        node = self._flow.get_node(node_id)
        if node is None:
            raise ConfigurationError(f"Edge points at unknown node '{node_id}'", node_id=node_id)
        return node

    def _next_unlabeled(self, node: FlowNode) -> str | None:
        edges = [e for e in self._flow.outgoing_edges(node.id) if e.label is None]
        if len(edges) > 1:
            raise ConfigurationError(
                f"Node '{node.id}' has {len(edges)} outgoing edges; expected at most one",
                node_id=node.id,
            )
        return edges[0].target if edges else None

    def _next_branch(self, node: LogicNode, label: BranchLabel) -> str | None:
        edges = [e for e in self._flow.outgoing_edges(node.id) if e.label == label]
        if len(edges) > 1:
            raise ConfigurationError(
                f"Logic node '{node.id}' has {len(edges)} '{label.value}' branches",
                node_id=node.id,
            )
        return edges[0].target if edges else None

    # ==================== State transitions ====================

    def _complete(self, node: FlowNode) -> None:
        self._state.status = ExecutionStatus.COMPLETED
        self._state.awaiting_node_id = None
        self._audit(node, FlowCompletedOutcome())

    def _fail(self, error: FlowError) -> None:
        logger.warning(
            f"Flow {self._flow.id} failed on {self._context.record_id} "
            f"at {error.node_id or self._state.current_node_id}: {error}"
        )
        node_id = error.node_id or self._state.current_node_id
        node = self._flow.get_node(node_id) if node_id else None
        self._state.status = ExecutionStatus.FAILED
        self._state.awaiting_node_id = None
        self._state.failure_reason = str(error)
        self._entries.append(
            AuditLogEntry(
                record_id=self._context.record_id,
                flow_id=self._flow.id,
                node_id=node_id,
                node_type=node.type if node else None,
                outcome=FlowFailedOutcome(error_kind=error.kind),
                error=str(error),
            )
        )

    def _audit(self, node: FlowNode, outcome: AuditOutcome, error: str | None = None) -> None:
        self._entries.append(
            AuditLogEntry(
                record_id=self._context.record_id,
                flow_id=self._flow.id,
                node_id=node.id,
                node_type=node.type,
                outcome=outcome,
                error=error,
            )
        )

    def _result(self) -> AdvanceResult:
        return AdvanceResult(
            state=self._state,
            actions=self._actions,
            audit_entries=self._entries,
        )
