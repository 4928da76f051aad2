"""Validation of answers submitted to Question nodes."""

from __future__ import annotations

import math
from datetime import date, datetime
from typing import Any

from decisionflow.errors import AnswerValidationError
from decisionflow.models.flow import AnswerType, QuestionNode


def validate_answer(question: QuestionNode, value: Any) -> Any:
    """Check ``value`` against the question and return it in stored form.

    Stored forms are JSON friendly: dates become ``YYYY-MM-DD`` strings,
    numbers stay numbers and multi-choice answers become lists.

    Raises:
        AnswerValidationError: If the value does not fit the answer type
    """
    answer_type = question.answer_type

    if answer_type == AnswerType.SINGLE_CHOICE:
        if not isinstance(value, str) or value not in question.options:
            raise AnswerValidationError(
                f"'{value}' is not one of the options: {', '.join(question.options)}",
                node_id=question.id,
            )
        return value

    if answer_type == AnswerType.MULTI_CHOICE:
        values = [value] if isinstance(value, str) else value
        if not isinstance(values, list) or not values:
            raise AnswerValidationError(
                "Select at least one option", node_id=question.id
            )
        invalid = [v for v in values if not isinstance(v, str) or v not in question.options]
        if invalid:
            raise AnswerValidationError(
                f"Not valid options: {', '.join(str(v) for v in invalid)}",
                node_id=question.id,
            )
        return list(dict.fromkeys(values))

    if answer_type == AnswerType.DATE:
        return _parse_day(question, value).isoformat()

    if answer_type == AnswerType.NUMBER:
        return _parse_number(question, value)

    if answer_type == AnswerType.TEXT:
        if not isinstance(value, str) or not value.strip():
            raise AnswerValidationError("An answer is required", node_id=question.id)
        return value

    raise AnswerValidationError(
        f"Unsupported answer type: {answer_type}", node_id=question.id
    )


def _parse_day(question: QuestionNode, value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text).date()
        except ValueError:
            pass
    raise AnswerValidationError(
        f"'{value}' is not a calendar date (expected YYYY-MM-DD)", node_id=question.id
    )


def _parse_number(question: QuestionNode, value: Any) -> int | float:
    number: int | float | None = None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        number = value
    elif isinstance(value, str):
        text = value.strip()
        try:
            number = int(text)
        except ValueError:
            try:
                number = float(text)
            except ValueError:
                number = None

    if number is None or not math.isfinite(number):
        raise AnswerValidationError(f"'{value}' is not a number", node_id=question.id)
    return number
