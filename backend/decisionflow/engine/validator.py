"""Flow definition validation and editing helpers.

Checks the structural invariants of a flow: a single Start node, unique
node IDs, well-formed edges, reachable nodes and resolvable references.
The editing helpers apply the same invariants to incremental changes made
by admin tooling.
"""

from __future__ import annotations

from collections import deque
from enum import Enum

from pydantic import BaseModel
from pydantic import Field as PydanticField

from decisionflow.errors import ConfigurationError
from decisionflow.expressions import parse_date_expression
from decisionflow.models.flow import (
    ActionKind,
    ActionNode,
    BranchLabel,
    DateExpressionValue,
    Edge,
    FlowDefinition,
    FlowNode,
    LogicNode,
    QuestionNode,
    QuestionRefValue,
    QuestionSubject,
    StartNode,
    ValueSpec,
)


class IssueSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class FlowIssue(BaseModel):
    """A single problem found in a flow definition."""

    code: str
    message: str
    node_id: str | None = PydanticField(default=None, alias="nodeId")
    edge_id: str | None = PydanticField(default=None, alias="edgeId")
    severity: IssueSeverity = IssueSeverity.ERROR

    model_config = {"populate_by_name": True}


class FlowValidationResult(BaseModel):
    """Result of validating a flow definition."""

    valid: bool
    issues: list[FlowIssue] = []

    @property
    def errors(self) -> list[FlowIssue]:
        return [i for i in self.issues if i.severity == IssueSeverity.ERROR]

    @property
    def warnings(self) -> list[FlowIssue]:
        return [i for i in self.issues if i.severity == IssueSeverity.WARNING]


def validate_flow(flow: FlowDefinition) -> FlowValidationResult:
    """Validate a flow definition against its structural invariants."""
    issues: list[FlowIssue] = []
    issues.extend(_check_node_ids(flow))
    issues.extend(_check_start_nodes(flow))
    issues.extend(_check_edges(flow))
    issues.extend(_check_reachability(flow))
    for node in flow.nodes:
        issues.extend(_check_node(flow, node))

    return FlowValidationResult(
        valid=not any(i.severity == IssueSeverity.ERROR for i in issues),
        issues=issues,
    )


# ==================== Editing helpers ====================


def add_node(flow: FlowDefinition, node: FlowNode) -> FlowDefinition:
    """Return a copy of ``flow`` with ``node`` added.

    Raises:
        ConfigurationError: If the ID is taken or a second Start node is added
    """
    if flow.get_node(node.id) is not None:
        raise ConfigurationError(f"Node '{node.id}' already exists", node_id=node.id)
    if isinstance(node, StartNode) and flow.start_nodes():
        raise ConfigurationError(
            "Flow already has a start node; remove it before adding another",
            node_id=node.id,
        )
    return flow.model_copy(update={"nodes": [*flow.nodes, node]})


def remove_node(flow: FlowDefinition, node_id: str) -> FlowDefinition:
    """Return a copy of ``flow`` without the node and its connected edges."""
    if flow.get_node(node_id) is None:
        raise ConfigurationError(f"Node '{node_id}' not found", node_id=node_id)
    return flow.model_copy(
        update={
            "nodes": [n for n in flow.nodes if n.id != node_id],
            "edges": [e for e in flow.edges if node_id not in (e.source, e.target)],
        }
    )


def connect(flow: FlowDefinition, edge: Edge) -> FlowDefinition:
    """Return a copy of ``flow`` with ``edge`` added.

    Raises:
        ConfigurationError: If the edge is dangling or breaks the label rules
    """
    issue = _edge_issue(flow, edge, flow.edges)
    if issue is not None:
        raise ConfigurationError(issue.message, node_id=edge.source)
    if edge.id is None:
        suffix = edge.label.value if edge.label else "next"
        edge = edge.model_copy(update={"id": f"{edge.source}-{suffix}-{edge.target}"})
    return flow.model_copy(update={"edges": [*flow.edges, edge]})


# ==================== Checks ====================


def _check_node_ids(flow: FlowDefinition) -> list[FlowIssue]:
    seen: set[str] = set()
    issues = []
    for node in flow.nodes:
        if node.id in seen:
            issues.append(
                FlowIssue(
                    code="duplicate_node_id",
                    message=f"Node ID '{node.id}' is used more than once",
                    node_id=node.id,
                )
            )
        seen.add(node.id)
    return issues


def _check_start_nodes(flow: FlowDefinition) -> list[FlowIssue]:
    starts = flow.start_nodes()
    if len(starts) > 1:
        return [
            FlowIssue(
                code="multiple_start_nodes",
                message=f"Flow has {len(starts)} start nodes; only one is allowed",
                node_id=start.id,
            )
            for start in starts[1:]
        ]
    if not starts:
        return [
            FlowIssue(
                code="missing_start_node",
                message="Flow has no start node and cannot be executed",
                severity=IssueSeverity.WARNING,
            )
        ]
    return []


def _check_edges(flow: FlowDefinition) -> list[FlowIssue]:
    issues = []
    accepted: list[Edge] = []
    for edge in flow.edges:
        issue = _edge_issue(flow, edge, accepted)
        if issue is not None:
            issues.append(issue)
        else:
            accepted.append(edge)

    for node in flow.nodes:
        if not isinstance(node, LogicNode):
            continue
        labels = {e.label for e in accepted if e.source == node.id}
        for branch in BranchLabel:
            if branch not in labels:
                issues.append(
                    FlowIssue(
                        code="missing_branch",
                        message=f"Logic node has no '{branch.value}' branch; "
                        "the flow ends there when the condition is "
                        f"{branch.value}",
                        node_id=node.id,
                        severity=IssueSeverity.WARNING,
                    )
                )
    return issues


def _edge_issue(flow: FlowDefinition, edge: Edge, existing: list[Edge]) -> FlowIssue | None:
    """Check one edge against the nodes and the edges already accepted."""
    source = flow.get_node(edge.source)
    if source is None or flow.get_node(edge.target) is None:
        missing = edge.source if source is None else edge.target
        return FlowIssue(
            code="dangling_edge",
            message=f"Edge references unknown node '{missing}'",
            node_id=edge.source,
            edge_id=edge.id,
        )

    siblings = [e for e in existing if e.source == edge.source]
    if isinstance(source, LogicNode):
        if edge.label is None:
            return FlowIssue(
                code="invalid_edge_label",
                message="Edges leaving a logic node must be labelled 'true' or 'false'",
                node_id=edge.source,
                edge_id=edge.id,
            )
        if any(e.label == edge.label for e in siblings):
            return FlowIssue(
                code="duplicate_branch",
                message=f"Logic node already has a '{edge.label.value}' branch",
                node_id=edge.source,
                edge_id=edge.id,
            )
        return None

    if edge.label is not None:
        return FlowIssue(
            code="invalid_edge_label",
            message=f"Only logic nodes have labelled edges, got '{edge.label.value}'",
            node_id=edge.source,
            edge_id=edge.id,
        )
    if siblings:
        return FlowIssue(
            code="multiple_outgoing_edges",
            message=f"{source.type.capitalize()} node already has an outgoing edge",
            node_id=edge.source,
            edge_id=edge.id,
        )
    return None


def _check_reachability(flow: FlowDefinition) -> list[FlowIssue]:
    starts = flow.start_nodes()
    if len(starts) != 1:
        return []

    reached = {starts[0].id}
    queue = deque([starts[0].id])
    while queue:
        current = queue.popleft()
        for edge in flow.outgoing_edges(current):
            if edge.target not in reached and flow.get_node(edge.target) is not None:
                reached.add(edge.target)
                queue.append(edge.target)

    return [
        FlowIssue(
            code="unreachable_node",
            message="Node cannot be reached from the start node",
            node_id=node.id,
        )
        for node in flow.nodes
        if node.id not in reached and not isinstance(node, StartNode)
    ]


def _check_node(flow: FlowDefinition, node: FlowNode) -> list[FlowIssue]:
    issues = []

    if isinstance(node, QuestionNode):
        if node.answer_type.is_choice and not node.options:
            issues.append(
                FlowIssue(
                    code="missing_options",
                    message="Choice questions need at least one option",
                    node_id=node.id,
                )
            )

    elif isinstance(node, LogicNode):
        if isinstance(node.subject, QuestionSubject):
            issues.extend(_check_question_ref(flow, node.subject.node_id, node.id))
        if not node.operator.is_unary and node.expected is None:
            issues.append(
                FlowIssue(
                    code="missing_expected_value",
                    message=f"Operator '{node.operator.value}' needs an expected value",
                    node_id=node.id,
                )
            )
        issues.extend(_check_value_spec(flow, node.expected, node.id))

    elif isinstance(node, ActionNode):
        if node.action == ActionKind.SET_FIELD and not node.target_field:
            issues.append(
                FlowIssue(
                    code="missing_target_field",
                    message="Set field actions need a target field",
                    node_id=node.id,
                )
            )
        if node.action != ActionKind.SET_FIELD and node.value is None:
            issues.append(
                FlowIssue(
                    code="missing_action_value",
                    message=f"'{node.action.value}' actions need a value",
                    node_id=node.id,
                )
            )
        issues.extend(_check_value_spec(flow, node.value, node.id))

    return issues


def _check_value_spec(flow: FlowDefinition, spec: ValueSpec | None, node_id: str) -> list[FlowIssue]:
    if isinstance(spec, QuestionRefValue):
        return _check_question_ref(flow, spec.node_id, node_id)
    if isinstance(spec, DateExpressionValue):
        result = parse_date_expression(spec.expression)
        if result.error is not None:
            return [
                FlowIssue(
                    code="invalid_date_expression",
                    message=f"Invalid date expression '{spec.expression}': {result.error.message}",
                    node_id=node_id,
                )
            ]
    return []


def _check_question_ref(flow: FlowDefinition, question_id: str, node_id: str) -> list[FlowIssue]:
    if isinstance(flow.get_node(question_id), QuestionNode):
        return []
    return [
        FlowIssue(
            code="invalid_question_ref",
            message=f"'{question_id}' is not a question node in this flow",
            node_id=node_id,
        )
    ]
