"""Tests for the flow execution state machine."""

from datetime import date, datetime

import pytest

from conftest import NOW, FakeActionExecutor, FakeFieldReader
from decisionflow.engine.state_machine import ExecutionContext, FlowStateMachine
from decisionflow.models import (
    ActionKind,
    Answer,
    ExecutionState,
    ExecutionStatus,
    FlowDefinition,
)


def make_machine(reader=None, executor=None, **kwargs) -> FlowStateMachine:
    return FlowStateMachine(
        ExecutionContext(
            record_id="PROJ-1",
            now=kwargs.pop("now", NOW),
            field_reader=reader,
            action_executor=executor,
            **kwargs,
        )
    )


def make_flow(nodes: list[dict], edges: list[dict]) -> FlowDefinition:
    return FlowDefinition.model_validate({"id": "f", "name": "Test", "nodes": nodes, "edges": edges})


def outcomes(result) -> list[str]:
    return [entry.outcome.outcome for entry in result.audit_entries]


def initial(flow_id: str = "triage") -> ExecutionState:
    return ExecutionState.initial("PROJ-1", flow_id)


class TestStart:
    """Tests for the first pass."""

    @pytest.mark.asyncio
    async def test_runs_to_first_question(self, triage_flow, action_executor):
        result = await make_machine(executor=action_executor).advance(initial(), triage_flow)

        assert result.accepted
        assert result.state.status == ExecutionStatus.AWAITING_ANSWER
        assert result.state.awaiting_node_id == "q_severity"
        assert result.state.current_node_id == "q_severity"
        assert result.state.path == ["start", "q_severity"]
        assert result.actions == []
        assert outcomes(result) == ["flow_started"]

    @pytest.mark.asyncio
    async def test_input_state_untouched(self, triage_flow, action_executor):
        state = initial()
        before = state.model_dump()
        await make_machine(executor=action_executor).advance(state, triage_flow)
        assert state.model_dump() == before

    @pytest.mark.asyncio
    async def test_runs_logic_and_actions_before_first_question(self, action_executor):
        flow = make_flow(
            [
                {"id": "start", "type": "start"},
                {
                    "id": "has_due",
                    "type": "logic",
                    "subject": {"kind": "field", "fieldKey": "duedate"},
                    "operator": "isNotEmpty",
                },
                {
                    "id": "tag",
                    "type": "action",
                    "action": "addLabel",
                    "value": {"kind": "literal", "value": "scheduled"},
                },
                {"id": "q", "type": "question", "prompt": "Anything else?", "answerType": "text"},
            ],
            [
                {"source": "start", "target": "has_due"},
                {"source": "has_due", "target": "tag", "label": "true"},
                {"source": "has_due", "target": "q", "label": "false"},
                {"source": "tag", "target": "q"},
            ],
        )
        reader = FakeFieldReader({"duedate": "2024-03-20"})

        result = await make_machine(reader, action_executor).advance(initial("f"), flow)

        assert result.state.awaiting_node_id == "q"
        assert result.state.path == ["start", "has_due", "tag", "q"]
        assert [a.kind for a in result.actions] == [ActionKind.ADD_LABEL]
        assert action_executor.executed[0].value == "scheduled"
        assert outcomes(result) == ["flow_started", "condition_evaluated", "action_executed"]

    @pytest.mark.asyncio
    async def test_flow_without_question_completes(self, action_executor):
        flow = make_flow(
            [
                {"id": "start", "type": "start"},
                {
                    "id": "note",
                    "type": "action",
                    "action": "addComment",
                    "value": {"kind": "literal", "value": "Checked"},
                },
            ],
            [{"source": "start", "target": "note"}],
        )
        result = await make_machine(executor=action_executor).advance(initial("f"), flow)

        assert result.state.status == ExecutionStatus.COMPLETED
        assert outcomes(result) == ["flow_started", "action_executed", "flow_completed"]
        assert result.audit_entries[-1].node_id == "note"


class TestAnswers:
    """Tests for passes that resume from a question."""

    async def _awaiting(self, flow, executor) -> ExecutionState:
        return (await make_machine(executor=executor).advance(initial(), flow)).state

    @pytest.mark.asyncio
    async def test_high_severity_labels_then_asks_due_date(self, triage_flow, action_executor):
        machine = make_machine(executor=action_executor)
        state = await self._awaiting(triage_flow, action_executor)

        result = await machine.advance(state, triage_flow, Answer(node_id="q_severity", value="high"))

        assert result.state.status == ExecutionStatus.AWAITING_ANSWER
        assert result.state.awaiting_node_id == "q_due"
        assert result.state.answers == {"q_severity": "high"}
        assert [(a.kind, a.value) for a in result.actions] == [(ActionKind.ADD_LABEL, "urgent")]
        assert outcomes(result) == ["answer_received", "condition_evaluated", "action_executed"]
        condition = result.audit_entries[1].outcome
        assert condition.result is True
        assert condition.next_node_id == "label_urgent"

    @pytest.mark.asyncio
    async def test_due_soon_sets_field_and_completes(self, triage_flow, action_executor):
        machine = make_machine(executor=action_executor)
        state = await self._awaiting(triage_flow, action_executor)
        state = (await machine.advance(state, triage_flow, Answer(value="low"))).state

        result = await machine.advance(state, triage_flow, Answer(node_id="q_due", value="2024-03-18"))

        assert result.state.status == ExecutionStatus.COMPLETED
        assert result.state.answers == {"q_severity": "low", "q_due": "2024-03-18"}
        assert result.state.path == ["start", "q_severity", "is_high", "q_due", "due_soon", "set_due"]
        set_due = action_executor.executed[-1]
        assert set_due.kind == ActionKind.SET_FIELD
        assert set_due.target_field == "duedate"
        assert set_due.value == date(2024, 3, 18)
        assert outcomes(result)[-1] == "flow_completed"

    @pytest.mark.asyncio
    async def test_missing_branch_completes_in_place(self, triage_flow, action_executor):
        machine = make_machine(executor=action_executor)
        state = await self._awaiting(triage_flow, action_executor)
        state = (await machine.advance(state, triage_flow, Answer(value="low"))).state

        result = await machine.advance(state, triage_flow, Answer(value="2024-04-30"))

        assert result.state.status == ExecutionStatus.COMPLETED
        assert result.state.current_node_id == "due_soon"
        assert result.actions == []
        assert outcomes(result) == ["answer_received", "condition_evaluated", "flow_completed"]

    @pytest.mark.asyncio
    async def test_invalid_answer_leaves_state_unchanged(self, triage_flow, action_executor):
        state = await self._awaiting(triage_flow, action_executor)

        result = await make_machine(executor=action_executor).advance(
            state, triage_flow, Answer(value="medium")
        )

        assert not result.accepted
        assert "medium" in result.validation_errors[0]
        assert result.state == state
        assert result.audit_entries == []

    @pytest.mark.asyncio
    async def test_answer_for_other_question_rejected(self, triage_flow, action_executor):
        state = await self._awaiting(triage_flow, action_executor)

        result = await make_machine(executor=action_executor).advance(
            state, triage_flow, Answer(node_id="q_due", value="2024-03-18")
        )

        assert not result.accepted
        assert result.state == state

    @pytest.mark.asyncio
    async def test_answer_before_start_rejected(self, triage_flow, action_executor):
        result = await make_machine(executor=action_executor).advance(
            initial(), triage_flow, Answer(value="high")
        )
        assert not result.accepted
        assert result.state.status == ExecutionStatus.NOT_STARTED

    @pytest.mark.asyncio
    async def test_no_answer_while_awaiting_is_noop(self, triage_flow, action_executor):
        state = await self._awaiting(triage_flow, action_executor)
        result = await make_machine(executor=action_executor).advance(state, triage_flow)
        assert result.state == state
        assert result.audit_entries == []

    @pytest.mark.asyncio
    async def test_awaited_question_removed_from_flow(self, triage_flow, action_executor):
        state = await self._awaiting(triage_flow, action_executor)
        edited = triage_flow.model_copy(
            update={"nodes": [n for n in triage_flow.nodes if n.id != "q_severity"]}
        )

        result = await make_machine(executor=action_executor).advance(state, edited, Answer(value="high"))

        assert result.state.status == ExecutionStatus.FAILED
        assert "q_severity" in result.state.failure_reason


class TestTerminalStates:
    """Completed and failed executions never move."""

    @pytest.mark.parametrize(
        "status,extra",
        [
            (ExecutionStatus.COMPLETED, {}),
            (ExecutionStatus.FAILED, {"failure_reason": "boom"}),
        ],
    )
    @pytest.mark.asyncio
    async def test_terminal_unchanged(self, triage_flow, action_executor, status, extra):
        state = ExecutionState(record_id="PROJ-1", flow_id="triage", status=status, **extra)

        for answer in (None, Answer(value="high")):
            result = await make_machine(executor=action_executor).advance(state, triage_flow, answer)
            assert result.state == state
            assert result.audit_entries == []
            assert result.actions == []


class TestFailures:
    """Errors halt the pass with a single flow_failed entry."""

    @pytest.mark.asyncio
    async def test_failed_action(self, triage_flow):
        executor = FakeActionExecutor(fail_nodes={"label_urgent"})
        machine = make_machine(executor=executor)
        state = (await machine.advance(initial(), triage_flow)).state

        result = await machine.advance(state, triage_flow, Answer(value="high"))

        assert result.state.status == ExecutionStatus.FAILED
        assert "read-only" in result.state.failure_reason
        assert result.state.answers == {"q_severity": "high"}
        assert outcomes(result) == [
            "answer_received",
            "condition_evaluated",
            "action_executed",
            "flow_failed",
        ]
        action_entry, failed_entry = result.audit_entries[-2:]
        assert action_entry.outcome.success is False
        assert action_entry.error == "field is read-only"
        assert failed_entry.outcome.error_kind == "action_failed"
        assert failed_entry.node_id == "label_urgent"
        assert executor.executed == []

    @pytest.mark.asyncio
    async def test_executor_exception_fails_flow(self, triage_flow):
        executor = FakeActionExecutor(raise_nodes={"label_urgent"})
        machine = make_machine(executor=executor)
        state = (await machine.advance(initial(), triage_flow)).state

        result = await machine.advance(state, triage_flow, Answer(value="high"))

        assert result.state.status == ExecutionStatus.FAILED
        assert "connection reset" in result.state.failure_reason

    @pytest.mark.asyncio
    async def test_unexpected_executor_error_fails_flow(self, triage_flow):
        executor = FakeActionExecutor(raise_nodes={"label_urgent"}, error=ValueError("Expecting value"))
        machine = make_machine(executor=executor)
        state = (await machine.advance(initial(), triage_flow)).state

        result = await machine.advance(state, triage_flow, Answer(value="high"))

        assert result.state.status == ExecutionStatus.FAILED
        assert "Expecting value" in result.state.failure_reason
        action_entry, failed_entry = result.audit_entries[-2:]
        assert action_entry.outcome.success is False
        assert failed_entry.outcome.error_kind == "action_failed"

    @pytest.mark.asyncio
    async def test_unexpected_reader_error_fails_flow(self, action_executor):
        flow = make_flow(
            [
                {"id": "start", "type": "start"},
                {
                    "id": "check",
                    "type": "logic",
                    "subject": {"kind": "field", "fieldKey": "status"},
                    "operator": "isEmpty",
                },
            ],
            [{"source": "start", "target": "check"}],
        )
        reader = FakeFieldReader(errors={"status": ValueError("Expecting value")})

        result = await make_machine(reader, action_executor).advance(initial("f"), flow)

        assert result.state.status == ExecutionStatus.FAILED
        assert "Expecting value" in result.state.failure_reason
        assert result.audit_entries[-1].outcome.error_kind == "resolution_error"
        assert result.audit_entries[-1].node_id == "check"

    @pytest.mark.asyncio
    async def test_date_outside_calendar_fails_flow(self, action_executor):
        flow = make_flow(
            [
                {"id": "start", "type": "start"},
                {
                    "id": "far_out",
                    "type": "logic",
                    "subject": {"kind": "field", "fieldKey": "duedate"},
                    "operator": "equals",
                    "expected": {"kind": "dateExpression", "expression": "today() + 9999999d"},
                },
            ],
            [{"source": "start", "target": "far_out"}],
        )
        reader = FakeFieldReader({"duedate": date(2024, 3, 14)})

        result = await make_machine(reader, action_executor).advance(initial("f"), flow)

        assert result.state.status == ExecutionStatus.FAILED
        assert "outside the supported date range" in result.state.failure_reason
        assert outcomes(result) == ["flow_started", "flow_failed"]
        assert result.audit_entries[-1].outcome.error_kind == "date_expression_error"
        assert result.audit_entries[-1].node_id == "far_out"

    @pytest.mark.asyncio
    async def test_unresolvable_field_stops_before_later_actions(self, action_executor):
        flow = make_flow(
            [
                {"id": "start", "type": "start"},
                {"id": "tag", "type": "action", "action": "addLabel", "value": {"kind": "literal", "value": "seen"}},
                {
                    "id": "check",
                    "type": "logic",
                    "subject": {"kind": "field", "fieldKey": "customfield_9"},
                    "operator": "isEmpty",
                },
                {"id": "note", "type": "action", "action": "addComment", "value": {"kind": "literal", "value": "x"}},
            ],
            [
                {"source": "start", "target": "tag"},
                {"source": "tag", "target": "check"},
                {"source": "check", "target": "note", "label": "true"},
                {"source": "check", "target": "note", "label": "false"},
            ],
        )

        result = await make_machine(FakeFieldReader(), action_executor).advance(initial("f"), flow)

        assert result.state.status == ExecutionStatus.FAILED
        assert [a.node_id for a in action_executor.executed] == ["tag"]
        assert outcomes(result) == ["flow_started", "action_executed", "flow_failed"]
        assert result.audit_entries[-1].outcome.error_kind == "resolution_error"
        assert result.audit_entries[-1].node_id == "check"

    @pytest.mark.asyncio
    async def test_invalid_flow_fails_on_start(self, action_executor):
        flow = make_flow([{"id": "s1", "type": "start"}, {"id": "s2", "type": "start"}], [])

        result = await make_machine(executor=action_executor).advance(initial("f"), flow)

        assert result.state.status == ExecutionStatus.FAILED
        assert result.audit_entries[-1].outcome.error_kind == "configuration_error"
        assert len(result.audit_entries) == 1

    @pytest.mark.asyncio
    async def test_missing_start_fails(self, action_executor):
        flow = make_flow([{"id": "q", "type": "question", "prompt": "?", "answerType": "text"}], [])
        result = await make_machine(executor=action_executor).advance(initial("f"), flow)
        assert result.state.status == ExecutionStatus.FAILED
        assert "start node" in result.state.failure_reason

    @pytest.mark.asyncio
    async def test_no_executor_configured(self, triage_flow):
        machine = make_machine()
        state = (await machine.advance(initial(), triage_flow)).state
        result = await machine.advance(state, triage_flow, Answer(value="high"))
        assert result.state.status == ExecutionStatus.FAILED
        assert result.audit_entries[-1].outcome.error_kind == "resolution_error"

    @pytest.mark.asyncio
    async def test_cycle_hits_hop_bound(self):
        flow = make_flow(
            [
                {"id": "start", "type": "start"},
                {"id": "tag", "type": "action", "action": "addLabel", "value": {"kind": "literal", "value": "loop"}},
                {
                    "id": "again",
                    "type": "logic",
                    "subject": {"kind": "field", "fieldKey": "status"},
                    "operator": "isNotEmpty",
                },
            ],
            [
                {"source": "start", "target": "tag"},
                {"source": "tag", "target": "again"},
                {"source": "again", "target": "tag", "label": "true"},
            ],
        )
        executor = FakeActionExecutor()
        reader = FakeFieldReader({"status": "Open"})

        result = await make_machine(reader, executor, max_hops=10).advance(initial("f"), flow)

        assert result.state.status == ExecutionStatus.FAILED
        assert "10" in result.state.failure_reason
        assert len(result.state.path) == 10
        assert outcomes(result)[-1] == "flow_failed"
        assert result.audit_entries[-1].outcome.error_kind == "configuration_error"

    @pytest.mark.asyncio
    async def test_cycle_through_question_is_fine(self, action_executor):
        flow = make_flow(
            [
                {"id": "start", "type": "start"},
                {"id": "q", "type": "question", "prompt": "Again?", "answerType": "single-choice", "options": ["yes", "no"]},
                {
                    "id": "again",
                    "type": "logic",
                    "subject": {"kind": "question", "nodeId": "q"},
                    "operator": "equals",
                    "expected": {"kind": "literal", "value": "yes"},
                },
            ],
            [
                {"source": "start", "target": "q"},
                {"source": "q", "target": "again"},
                {"source": "again", "target": "q", "label": "true"},
            ],
        )
        machine = make_machine(executor=action_executor, max_hops=5)
        state = (await machine.advance(initial("f"), flow)).state
        for _ in range(5):
            state = (await machine.advance(state, flow, Answer(value="yes"))).state
            assert state.status == ExecutionStatus.AWAITING_ANSWER
        state = (await machine.advance(state, flow, Answer(value="no"))).state
        assert state.status == ExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_path_keeps_recent_visits(self, action_executor):
        flow = make_flow(
            [
                {"id": "start", "type": "start"},
                {"id": "q", "type": "question", "prompt": "Again?", "answerType": "single-choice", "options": ["yes", "no"]},
                {
                    "id": "again",
                    "type": "logic",
                    "subject": {"kind": "question", "nodeId": "q"},
                    "operator": "equals",
                    "expected": {"kind": "literal", "value": "yes"},
                },
            ],
            [
                {"source": "start", "target": "q"},
                {"source": "q", "target": "again"},
                {"source": "again", "target": "q", "label": "true"},
            ],
        )
        machine = make_machine(executor=action_executor, max_path=5)
        state = (await machine.advance(initial("f"), flow)).state
        for _ in range(20):
            state = (await machine.advance(state, flow, Answer(value="yes"))).state

        assert state.status == ExecutionStatus.AWAITING_ANSWER
        assert state.path == ["q", "again", "q", "again", "q"]


class TestDates:
    """Date comparisons use calendar days."""

    @pytest.mark.asyncio
    async def test_field_datetime_equals_today(self, action_executor):
        flow = make_flow(
            [
                {"id": "start", "type": "start"},
                {
                    "id": "due_today",
                    "type": "logic",
                    "subject": {"kind": "field", "fieldKey": "duedate"},
                    "operator": "equals",
                    "expected": {"kind": "dateExpression", "expression": "today()"},
                },
            ],
            [{"source": "start", "target": "due_today"}],
        )
        reader = FakeFieldReader({"duedate": datetime(2024, 3, 14, 23, 59)})

        result = await make_machine(reader, action_executor, now=datetime(2024, 3, 14, 0, 5)).advance(
            initial("f"), flow
        )

        condition = result.audit_entries[1].outcome
        assert condition.result is True
        assert condition.expected == date(2024, 3, 14)
