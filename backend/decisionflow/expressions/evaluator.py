"""Date expression evaluation.

Resolves a parsed expression against a caller-supplied ``now``. The
evaluator never reads the clock itself, so the same ``now`` always yields
the same date.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta

from decisionflow.errors import DateExpressionError
from decisionflow.expressions.ast import (
    CombinedTerm,
    DateExpression,
    DateFunction,
    DateUnit,
    FunctionTerm,
    RelativeTerm,
)
from decisionflow.expressions.parser import ParseError, ParseErrorKind, parse_date_expression


def evaluate_date_expression(expression: DateExpression, now: date | datetime) -> date:
    """Evaluate ``expression`` to a calendar date relative to ``now``.

    Raises DateExpressionError when the result falls outside the years
    ``date`` can represent (1 to 9999).
    """
    today = _as_day(now)

    try:
        if isinstance(expression, FunctionTerm):
            return evaluate_function(expression.name, today)
        if isinstance(expression, RelativeTerm):
            return shift(today, expression.count, expression.unit)
        if isinstance(expression, CombinedTerm):
            anchor = evaluate_function(expression.function.name, today)
            offset = expression.signed_offset
            return shift(anchor, offset.count, offset.unit)
    except (ValueError, OverflowError) as e:
        raise DateExpressionError(
            f"'{expression}' is outside the supported date range",
            expression=str(expression),
            error=ParseError(
                kind=ParseErrorKind.SYNTAX,
                code="out_of_range",
                message=f"'{expression}' lands outside the supported date range ({e})",
                token=str(expression),
            ),
        ) from e

    raise TypeError(f"Unsupported date expression: {expression!r}")


def evaluate_expression_text(raw: str, now: date | datetime) -> date:
    """Parse and evaluate ``raw``; raise DateExpressionError if it is invalid."""
    result = parse_date_expression(raw)
    if result.error is not None:
        raise DateExpressionError(result.error.message, expression=raw, error=result.error)
    return evaluate_date_expression(result.expression, now)


def evaluate_function(name: DateFunction, today: date) -> date:
    """Resolve a calendar anchor function for the day ``today``."""
    if name == DateFunction.TODAY:
        return today
    if name == DateFunction.START_OF_WEEK:
        # ISO weeks start on Monday (weekday() == 0)
        return today - timedelta(days=today.weekday())
    if name == DateFunction.END_OF_WEEK:
        return today + timedelta(days=6 - today.weekday())
    if name == DateFunction.START_OF_MONTH:
        return today.replace(day=1)
    if name == DateFunction.END_OF_MONTH:
        return today.replace(day=calendar.monthrange(today.year, today.month)[1])
    if name == DateFunction.START_OF_YEAR:
        return date(today.year, 1, 1)
    if name == DateFunction.END_OF_YEAR:
        return date(today.year, 12, 31)

    raise ValueError(f"Unknown date function: {name}")


def shift(base: date, count: int, unit: DateUnit) -> date:
    """Move ``base`` by ``count`` units.

    Month and year shifts keep the day of month, clamped to the last day of
    the target month (Jan 31 + 1m -> Feb 28/29, Feb 29 + 1y -> Feb 28).
    """
    if unit == DateUnit.DAY:
        return base + timedelta(days=count)
    if unit == DateUnit.WEEK:
        return base + timedelta(weeks=count)
    if unit == DateUnit.MONTH:
        return add_months(base, count)
    if unit == DateUnit.YEAR:
        return add_months(base, count * 12)

    raise ValueError(f"Unknown date unit: {unit}")


def add_months(base: date, months: int) -> date:
    month_index = base.month - 1 + months
    year = base.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(base.day, last_day))


def _as_day(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value
