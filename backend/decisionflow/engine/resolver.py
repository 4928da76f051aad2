"""ValueResolver - Shared resolution of value specifications.

Logic nodes (subject and expected value) and Action nodes (value to apply)
describe their values with the same tagged specification. This module turns
those specifications into concrete values for one evaluation pass.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from decisionflow.connectors.base import ConnectorError, FieldNotFoundError
from decisionflow.engine.collaborators import FieldMetadataProvider, FieldReader
from decisionflow.engine.conditions import to_day, to_number
from decisionflow.errors import ConfigurationError, DateExpressionError, ResolutionError
from decisionflow.expressions import evaluate_expression_text
from decisionflow.models.field import FieldType
from decisionflow.models.flow import (
    AnswerType,
    DateExpressionValue,
    FieldSubject,
    FlowDefinition,
    LiteralValue,
    LogicSubject,
    OptionValue,
    QuestionNode,
    QuestionRefValue,
    QuestionSubject,
    ValueSpec,
)

logger = logging.getLogger(__name__)


class ValueResolver:
    """Resolves value specifications and Logic subjects to concrete values.

    Supports four specification kinds:
    - literal: the configured value as is
    - dateExpression: evaluated against the pass's ``now``
    - questionRef: the stored answer, typed per the question's answer type
    - option: the raw value of a selected option

    Field values are cached for the lifetime of the resolver, which is one
    evaluation pass.
    """

    def __init__(
        self,
        flow: FlowDefinition,
        answers: dict[str, Any],
        now: date | datetime,
        record_id: str,
        field_reader: FieldReader | None = None,
        field_metadata: FieldMetadataProvider | None = None,
    ) -> None:
        self._flow = flow
        self._answers = answers
        self._now = now
        self._record_id = record_id
        self._field_reader = field_reader
        self._field_metadata = field_metadata
        self._field_cache: dict[str, Any] = {}

    async def resolve_value(self, spec: ValueSpec | None, node_id: str | None = None) -> Any:
        """Resolve a value specification.

        Args:
            spec: The specification to resolve (None resolves to None)
            node_id: The node being evaluated, for error reporting

        Raises:
            ResolutionError: If a referenced answer is missing or an
                expression is invalid
            ConfigurationError: If a reference points at a non-question node
        """
        if spec is None:
            return None
        if isinstance(spec, LiteralValue):
            return spec.value
        if isinstance(spec, OptionValue):
            return spec.value
        if isinstance(spec, DateExpressionValue):
            try:
                return evaluate_expression_text(spec.expression, self._now)
            except DateExpressionError as e:
                e.node_id = node_id
                raise
        if isinstance(spec, QuestionRefValue):
            return self.answer_for(spec.node_id, node_id)

        raise ConfigurationError(f"Unsupported value specification: {spec!r}", node_id=node_id)

    async def resolve_subject(self, subject: LogicSubject, node_id: str | None = None) -> Any:
        """Resolve the comparison subject of a Logic node."""
        if isinstance(subject, QuestionSubject):
            return self.answer_for(subject.node_id, node_id)
        if isinstance(subject, FieldSubject):
            return await self.field_value(subject.field_key, node_id)

        raise ConfigurationError(f"Unsupported logic subject: {subject!r}", node_id=node_id)

    def answer_for(self, question_id: str, node_id: str | None = None) -> Any:
        """Get the stored answer to a question, typed per its answer type."""
        question = self._flow.get_node(question_id)
        if not isinstance(question, QuestionNode):
            raise ConfigurationError(
                f"Reference to '{question_id}' does not point at a question node",
                node_id=node_id,
            )
        if question_id not in self._answers:
            raise ResolutionError(
                f"Question '{question_id}' has not been answered", node_id=node_id
            )

        raw = self._answers[question_id]
        if question.answer_type == AnswerType.DATE:
            return to_day(raw)
        if question.answer_type == AnswerType.NUMBER:
            return to_number(raw)
        return raw

    async def field_value(self, field_key: str, node_id: str | None = None) -> Any:
        """Fetch a field of the record, coerced per its declared type when known."""
        if field_key in self._field_cache:
            return self._field_cache[field_key]

        if self._field_reader is None:
            raise ResolutionError(
                f"No field reader configured to read '{field_key}'", node_id=node_id
            )

        try:
            value = await self._field_reader.get_field_value(self._record_id, field_key)
        except FieldNotFoundError as e:
            raise ResolutionError(
                f"Field '{field_key}' not found on {self._record_id}", node_id=node_id
            ) from e
        except ConnectorError as e:
            raise ResolutionError(
                f"Failed to read field '{field_key}' on {self._record_id}: {e}",
                node_id=node_id,
            ) from e
        except Exception as e:
            logger.exception(f"Unexpected error reading {field_key} on {self._record_id}")
            raise ResolutionError(
                f"Failed to read field '{field_key}' on {self._record_id}: {e}",
                node_id=node_id,
            ) from e

        value = await self._coerce_by_metadata(field_key, value)
        self._field_cache[field_key] = value
        return value

    async def _coerce_by_metadata(self, field_key: str, value: Any) -> Any:
        if self._field_metadata is None or value is None:
            return value

        try:
            metadata = await self._field_metadata.get_field_metadata(field_key)
        except Exception as e:
            # Fall back to comparing the raw value
            logger.warning(f"Field metadata unavailable for {field_key}: {e}")
            return value

        if metadata.field_type == FieldType.DATE:
            day = to_day(value)
            return day if day is not None else value
        if metadata.field_type == FieldType.NUMBER:
            number = to_number(value)
            return number if number is not None else value
        return value
