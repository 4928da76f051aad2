"""Pydantic models for flow definitions (the decision graph)."""

from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Discriminator, Tag
from pydantic import Field as PydanticField

# =============================================================================
# Enums
# =============================================================================


class AnswerType(str, Enum):
    """Answer types for Question nodes."""

    SINGLE_CHOICE = "single-choice"
    MULTI_CHOICE = "multi-choice"
    DATE = "date"
    NUMBER = "number"
    TEXT = "text"

    @property
    def is_choice(self) -> bool:
        return self in (AnswerType.SINGLE_CHOICE, AnswerType.MULTI_CHOICE)


class Operator(str, Enum):
    """Comparison operators for Logic nodes."""

    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    CONTAINS = "contains"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    IS_EMPTY = "isEmpty"
    IS_NOT_EMPTY = "isNotEmpty"

    @property
    def is_unary(self) -> bool:
        return self in (Operator.IS_EMPTY, Operator.IS_NOT_EMPTY)


class ActionKind(str, Enum):
    """Side effects an Action node can trigger on the record."""

    SET_FIELD = "setField"
    ADD_LABEL = "addLabel"
    ADD_COMMENT = "addComment"


class BranchLabel(str, Enum):
    """Edge labels leaving a Logic node."""

    TRUE = "true"
    FALSE = "false"


# =============================================================================
# Value specifications - shared by Logic and Action nodes
# =============================================================================


def _get_kind_discriminator(v: Any) -> str:
    """Discriminator function for ValueSpec and LogicSubject unions."""
    if isinstance(v, dict):
        return v.get("kind", "literal")
    return getattr(v, "kind", "literal")


class LiteralValue(BaseModel):
    """A fixed value typed in by the flow author."""

    kind: Literal["literal"] = "literal"
    value: Any = None

    model_config = {"populate_by_name": True}


class DateExpressionValue(BaseModel):
    """A date expression evaluated when the node is reached."""

    kind: Literal["dateExpression"] = "dateExpression"
    expression: str

    model_config = {"populate_by_name": True}


class QuestionRefValue(BaseModel):
    """The stored answer to a Question node in the same flow."""

    kind: Literal["questionRef"] = "questionRef"
    node_id: str = PydanticField(alias="nodeId")

    model_config = {"populate_by_name": True}


class OptionValue(BaseModel):
    """An option picked from a select field; ``value`` is the raw option value."""

    kind: Literal["option"] = "option"
    value: str
    label: str | None = None

    model_config = {"populate_by_name": True}


ValueSpec = Annotated[
    Annotated[LiteralValue, Tag("literal")]
    | Annotated[DateExpressionValue, Tag("dateExpression")]
    | Annotated[QuestionRefValue, Tag("questionRef")]
    | Annotated[OptionValue, Tag("option")],
    Discriminator(_get_kind_discriminator),
]


class FieldSubject(BaseModel):
    """Compare a field of the record."""

    kind: Literal["field"] = "field"
    field_key: str = PydanticField(alias="fieldKey")

    model_config = {"populate_by_name": True}


class QuestionSubject(BaseModel):
    """Compare the answer given to a Question node."""

    kind: Literal["question"] = "question"
    node_id: str = PydanticField(alias="nodeId")

    model_config = {"populate_by_name": True}


LogicSubject = Annotated[
    Annotated[FieldSubject, Tag("field")] | Annotated[QuestionSubject, Tag("question")],
    Discriminator(_get_kind_discriminator),
]


# =============================================================================
# Nodes
# =============================================================================


class StartNode(BaseModel):
    """Entry point of a flow."""

    id: str
    type: Literal["start"] = "start"
    label: str = "Start"

    model_config = {"populate_by_name": True}


class QuestionNode(BaseModel):
    """Prompts the user and pauses execution until answered."""

    id: str
    type: Literal["question"] = "question"
    prompt: str
    answer_type: AnswerType = PydanticField(alias="answerType")
    options: list[str] = []

    model_config = {"populate_by_name": True}


class LogicNode(BaseModel):
    """Branches on a comparison; follows the "true" or "false" edge."""

    id: str
    type: Literal["logic"] = "logic"
    subject: LogicSubject
    operator: Operator
    expected: ValueSpec | None = None

    model_config = {"populate_by_name": True}


class ActionNode(BaseModel):
    """Applies a change to the record."""

    id: str
    type: Literal["action"] = "action"
    action: ActionKind
    target_field: str | None = PydanticField(default=None, alias="targetField")
    value: ValueSpec | None = None

    model_config = {"populate_by_name": True}


def _get_node_discriminator(v: Any) -> str:
    """Discriminator function for the FlowNode union."""
    if isinstance(v, dict):
        return v.get("type", "")
    return getattr(v, "type", "")


FlowNode = Annotated[
    Annotated[StartNode, Tag("start")]
    | Annotated[QuestionNode, Tag("question")]
    | Annotated[LogicNode, Tag("logic")]
    | Annotated[ActionNode, Tag("action")],
    Discriminator(_get_node_discriminator),
]


# =============================================================================
# Edges and flows
# =============================================================================


class Edge(BaseModel):
    """A directed connection between two nodes."""

    id: str | None = None
    source: str
    target: str
    label: BranchLabel | None = None

    model_config = {"populate_by_name": True}


class FlowDefinition(BaseModel):
    """A decision flow bound to one or more projects."""

    id: str
    name: str
    description: str = ""
    nodes: list[FlowNode] = []
    edges: list[Edge] = []
    project_keys: list[str] = PydanticField(default=[], alias="projectKeys")
    created_at: str | None = PydanticField(default=None, alias="createdAt")
    updated_at: str | None = PydanticField(default=None, alias="updatedAt")

    model_config = {"populate_by_name": True}

    def get_node(self, node_id: str) -> StartNode | QuestionNode | LogicNode | ActionNode | None:
        """Get a node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def start_nodes(self) -> list[StartNode]:
        return [n for n in self.nodes if isinstance(n, StartNode)]

    def outgoing_edges(self, node_id: str) -> list[Edge]:
        return [e for e in self.edges if e.source == node_id]


class FlowCreate(BaseModel):
    """Request model for creating a flow."""

    name: str
    description: str = ""
    nodes: list[FlowNode] = []
    edges: list[Edge] = []
    project_keys: list[str] = PydanticField(default=[], alias="projectKeys")

    model_config = {"populate_by_name": True}


class FlowSummary(BaseModel):
    """Summary of a flow for listing."""

    id: str
    name: str
    description: str
    project_keys: list[str] = PydanticField(alias="projectKeys")
    node_count: int = PydanticField(alias="nodeCount")
    version: int
    created_at: str = PydanticField(alias="createdAt")
    updated_at: str = PydanticField(alias="updatedAt")

    model_config = {"populate_by_name": True}
