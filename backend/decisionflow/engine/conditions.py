"""Condition evaluation for Logic nodes.

Pure functions: the subject and the expected value arrive fully resolved
(field values, stored answers and evaluated date expressions are the
resolver's job), and nothing here fetches data.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any

from decisionflow.models.flow import Operator

_ISO_DAY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")


def evaluate_condition(operator: Operator, subject: Any, expected: Any) -> bool:
    """Apply ``operator`` to the subject and expected value."""
    if operator == Operator.IS_EMPTY:
        return is_empty(subject)
    if operator == Operator.IS_NOT_EMPTY:
        return not is_empty(subject)
    if operator == Operator.EQUALS:
        return _equals(subject, expected)
    if operator == Operator.NOT_EQUALS:
        return not _equals(subject, expected)
    if operator == Operator.CONTAINS:
        return _contains(subject, expected)

    # Ordering operators
    if subject is None or expected is None:
        return False
    pair = coerce_pair(subject, expected)
    if pair is None:
        return False
    left, right = pair
    try:
        if operator == Operator.GREATER_THAN:
            return left > right
        if operator == Operator.LESS_THAN:
            return left < right
    except TypeError:
        return False

    raise ValueError(f"Unknown operator: {operator}")


def is_empty(value: Any) -> bool:
    """True for absent values, blank strings and empty collections."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def to_day(value: Any) -> date | None:
    """Reduce a date, datetime or ISO-formatted string to its calendar day."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and _ISO_DAY_RE.match(value.strip()):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def to_number(value: Any) -> int | float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def coerce_pair(subject: Any, expected: Any) -> tuple[Any, Any] | None:
    """Bring both sides to a common comparable type.

    Returns None when one side is a date and the other cannot be read as one.
    """
    if isinstance(subject, date) or isinstance(expected, date):
        left, right = to_day(subject), to_day(expected)
        if left is None or right is None:
            return None
        return left, right

    if isinstance(subject, (int, float)) or isinstance(expected, (int, float)):
        left, right = to_number(subject), to_number(expected)
        if left is not None and right is not None:
            return left, right

    return subject, expected


def _equals(subject: Any, expected: Any) -> bool:
    if subject is None or expected is None:
        return subject is None and expected is None

    if isinstance(subject, (list, tuple, set)):
        members = {str(v) for v in subject}
        if isinstance(expected, (list, tuple, set)):
            return members == {str(v) for v in expected}
        return members == {str(expected)}

    pair = coerce_pair(subject, expected)
    if pair is None:
        return False
    left, right = pair
    return left == right


def _contains(subject: Any, expected: Any) -> bool:
    if subject is None or expected is None:
        return False
    if isinstance(subject, (list, tuple, set)):
        return str(expected) in {str(v) for v in subject}
    return str(expected) in str(subject)
