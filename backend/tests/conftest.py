"""Pytest configuration and fixtures."""

import os
import tempfile
from datetime import datetime
from typing import Any, AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from decisionflow.connectors.base import ConnectorError, FieldNotFoundError
from decisionflow.db.database import close_database, init_database
from decisionflow.main import app
from decisionflow.models import (
    ActionDescriptor,
    ActionResult,
    FieldMetadata,
    FieldType,
    FlowDefinition,
)

# Thursday; the ISO week runs Mon 2024-03-11 to Sun 2024-03-17
NOW = datetime(2024, 3, 14, 15, 30)


class FakeFieldReader:
    """In-memory FieldReader keyed by field key."""

    def __init__(self, values: dict[str, Any] | None = None, errors: dict[str, Exception] | None = None):
        self.values = values or {}
        self.errors = errors or {}
        self.calls: list[tuple[str, str]] = []

    async def get_field_value(self, record_id: str, field_key: str) -> Any:
        self.calls.append((record_id, field_key))
        if field_key in self.errors:
            raise self.errors[field_key]
        if field_key not in self.values:
            raise FieldNotFoundError(f"No field {field_key}", field_key=field_key)
        return self.values[field_key]


class FakeActionExecutor:
    """Records executed actions; fails the ones whose node IDs are listed."""

    def __init__(
        self,
        fail_nodes: set[str] | None = None,
        raise_nodes: set[str] | None = None,
        error: Exception | None = None,
    ):
        self.fail_nodes = fail_nodes or set()
        self.raise_nodes = raise_nodes or set()
        self.error = error
        self.executed: list[ActionDescriptor] = []

    async def execute(self, record_id: str, action: ActionDescriptor) -> ActionResult:
        if action.node_id in self.raise_nodes:
            raise self.error or ConnectorError("connection reset", system="fake")
        if action.node_id in self.fail_nodes:
            return ActionResult(success=False, error="field is read-only")
        self.executed.append(action)
        return ActionResult(success=True)


class FakeFieldMetadata:
    def __init__(
        self,
        types: dict[str, FieldType] | None = None,
        fail: bool = False,
        error: Exception | None = None,
    ):
        self.types = types or {}
        self.fail = fail or error is not None
        self.error = error

    async def get_field_metadata(self, field_key: str) -> FieldMetadata:
        if self.fail:
            raise self.error or ConnectorError("metadata unavailable", system="fake")
        return FieldMetadata(
            field_key=field_key,
            name=field_key,
            field_type=self.types.get(field_key, FieldType.UNKNOWN),
        )


def triage_flow_data() -> dict[str, Any]:
    """A flow that labels urgent issues and comments on near due dates."""
    return {
        "name": "Bug triage",
        "description": "Triage incoming bugs",
        "projectKeys": ["PROJ"],
        "nodes": [
            {"id": "start", "type": "start"},
            {
                "id": "q_severity",
                "type": "question",
                "prompt": "How severe is it?",
                "answerType": "single-choice",
                "options": ["low", "high"],
            },
            {
                "id": "is_high",
                "type": "logic",
                "subject": {"kind": "question", "nodeId": "q_severity"},
                "operator": "equals",
                "expected": {"kind": "literal", "value": "high"},
            },
            {
                "id": "label_urgent",
                "type": "action",
                "action": "addLabel",
                "value": {"kind": "literal", "value": "urgent"},
            },
            {
                "id": "q_due",
                "type": "question",
                "prompt": "When is it due?",
                "answerType": "date",
            },
            {
                "id": "due_soon",
                "type": "logic",
                "subject": {"kind": "question", "nodeId": "q_due"},
                "operator": "lessThan",
                "expected": {"kind": "dateExpression", "expression": "today() + 7d"},
            },
            {
                "id": "set_due",
                "type": "action",
                "action": "setField",
                "targetField": "duedate",
                "value": {"kind": "questionRef", "nodeId": "q_due"},
            },
        ],
        "edges": [
            {"source": "start", "target": "q_severity"},
            {"source": "q_severity", "target": "is_high"},
            {"source": "is_high", "target": "label_urgent", "label": "true"},
            {"source": "is_high", "target": "q_due", "label": "false"},
            {"source": "label_urgent", "target": "q_due"},
            {"source": "q_due", "target": "due_soon"},
            {"source": "due_soon", "target": "set_due", "label": "true"},
        ],
    }


@pytest.fixture
def triage_flow() -> FlowDefinition:
    return FlowDefinition.model_validate({"id": "triage", **triage_flow_data()})


@pytest.fixture
def field_reader() -> FakeFieldReader:
    return FakeFieldReader()


@pytest.fixture
def action_executor() -> FakeActionExecutor:
    return FakeActionExecutor()


@pytest.fixture(autouse=True)
async def setup_test_db():
    """Set up a test database for each test."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    await init_database(db_path)

    yield

    await close_database()
    os.unlink(db_path)


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
