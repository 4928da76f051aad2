"""Contracts for the external systems the engine depends on.

The engine never talks to the host platform directly. It reads field
values, field metadata and applies actions through these protocols;
``decisionflow.connectors.jira.JiraConnector`` implements all three.
"""

from typing import Any, Protocol

from decisionflow.models.execution import ActionDescriptor, ActionResult
from decisionflow.models.field import FieldMetadata


class FieldReader(Protocol):
    async def get_field_value(self, record_id: str, field_key: str) -> Any:
        """Return the field's value (None when empty).

        Raises FieldNotFoundError when the record has no such field and
        ConnectorError on transport failures.
        """
        ...


class FieldMetadataProvider(Protocol):
    async def get_field_metadata(self, field_key: str) -> FieldMetadata:
        """Describe a field. May raise ConnectorError."""
        ...


class ActionExecutor(Protocol):
    async def execute(self, record_id: str, action: ActionDescriptor) -> ActionResult:
        """Apply ``action`` to the record and report the outcome."""
        ...
