"""Date expression parser.

Accepts three shapes, tried in this order:

    Relative:  "{number}{unit}"                 e.g. "7d", "-2w", "+1y"
    Function:  "function()"                     e.g. "today()", "endofmonth()"
    Combined:  "function() +/- {number}{unit}"  e.g. "startofweek() - 1d"

Parsing is syntax-only and total: every input produces a ParseResult,
malformed input included. Failures carry the offending token and, where one
is obvious, suggested corrections.
"""

from __future__ import annotations

import difflib
import re
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from decisionflow.expressions.ast import (
    CombinedTerm,
    DateExpression,
    DateFunction,
    DateUnit,
    FunctionTerm,
    RelativeTerm,
)

FUNCTION_NAMES = [f.value for f in DateFunction]
UNIT_NAMES = [u.value for u in DateUnit]

FORMAT_HINT = (
    "Use: {number}{unit}, function(), or function() +/- {number}{unit} "
    "(e.g. 7d, today(), startofweek() - 1d)"
)
UNIT_HINT = "Supported units: d (days), w (weeks), m (months), y (years)"

# A count with more digits lands outside the calendar in every unit
MAX_COUNT_DIGITS = 7

_RELATIVE_RE = re.compile(r"^([+-]?)(\d+)([dwmy])$", re.IGNORECASE)
_FUNCTION_RE = re.compile(r"^([a-z]+)\s*\(\s*\)$", re.IGNORECASE)
_COMBINED_RE = re.compile(
    r"^([a-z]+)\s*\(\s*\)\s*([+-])\s*(\d+)([dwmy])$", re.IGNORECASE
)

# Used only for diagnosing input that none of the shapes above accepted
_LOOSE_RELATIVE_RE = re.compile(r"^([+-]?)(\d+)([a-z]+)$", re.IGNORECASE)
_BARE_NUMBER_RE = re.compile(r"^[+-]?\d+$")
_NON_NUMERIC_RE = re.compile(r"^([a-z]+)([dwmy])$", re.IGNORECASE)
_CALL_RE = re.compile(r"^([a-z_]\w*)\s*\(([^)]*)\)(.*)$", re.IGNORECASE | re.DOTALL)
_SPACED_UNIT_RE = re.compile(r"^([+-]?)(\d+)(\s+)([a-z]+)$", re.IGNORECASE)
_OFFSET_RE = re.compile(r"^(\d+)(\s*)([a-z]*)(.*)$", re.IGNORECASE | re.DOTALL)


class ParseErrorKind(str, Enum):
    """Top-level failure categories."""

    EMPTY_INPUT = "empty_input"
    SYNTAX = "syntax"


class ParseError(BaseModel):
    """A structured parse failure."""

    kind: ParseErrorKind
    code: str
    message: str
    token: str = ""
    position: int = 0
    suggestions: list[str] = Field(default_factory=list)


class ParseResult(BaseModel):
    """Outcome of parsing a raw expression string."""

    raw: Any = None
    expression: DateExpression | None = None
    error: ParseError | None = None

    @property
    def valid(self) -> bool:
        return self.expression is not None


def parse_date_expression(raw: Any) -> ParseResult:
    """Parse a raw date expression into its syntax tree."""
    if not isinstance(raw, str) or not raw.strip():
        return ParseResult(
            raw=raw,
            error=ParseError(
                kind=ParseErrorKind.EMPTY_INPUT,
                code="empty",
                message=f"Date expression must be a non-empty string. {FORMAT_HINT}",
                suggestions=["7d", "today()", "startofweek() + 3d"],
            ),
        )

    text = raw.strip()

    match = _RELATIVE_RE.match(text)
    if match:
        sign, digits, unit = match.groups()
        if len(digits) > MAX_COUNT_DIGITS:
            return ParseResult(raw=raw, error=_count_out_of_range(text, digits))
        count = -int(digits) if sign == "-" else int(digits)
        return ParseResult(
            raw=raw, expression=RelativeTerm(count=count, unit=DateUnit(unit.lower()))
        )

    match = _FUNCTION_RE.match(text)
    if match and match.group(1).lower() in FUNCTION_NAMES:
        return ParseResult(
            raw=raw, expression=FunctionTerm(name=DateFunction(match.group(1).lower()))
        )

    match = _COMBINED_RE.match(text)
    if match and match.group(1).lower() in FUNCTION_NAMES:
        name, operator, digits, unit = match.groups()
        if len(digits) > MAX_COUNT_DIGITS:
            return ParseResult(raw=raw, error=_count_out_of_range(text, digits))
        return ParseResult(
            raw=raw,
            expression=CombinedTerm(
                function=FunctionTerm(name=DateFunction(name.lower())),
                operator=operator,
                offset=RelativeTerm(count=int(digits), unit=DateUnit(unit.lower())),
            ),
        )

    return ParseResult(raw=raw, error=_diagnose(text))


def validate_date_expression(raw: Any) -> ParseError | None:
    """Return the parse error for ``raw``, or None when it is valid."""
    return parse_date_expression(raw).error


def _syntax_error(
    text: str,
    code: str,
    message: str,
    token: str,
    suggestions: list[str] | None = None,
    start: int = 0,
) -> ParseError:
    position = text.lower().find(token.lower(), start) if token else -1
    return ParseError(
        kind=ParseErrorKind.SYNTAX,
        code=code,
        message=message,
        token=token,
        position=max(position, 0),
        suggestions=suggestions or [],
    )


def _count_out_of_range(text: str, digits: str) -> ParseError:
    shown = digits if len(digits) <= 12 else f"{digits[:12]}..."
    return _syntax_error(
        text,
        "out_of_range",
        f"Offset {shown} is too large; use at most {MAX_COUNT_DIGITS} digits",
        digits,
    )


def _spaced_unit(
    text: str, digits: str, space: str, unit: str, fixed: str, start: int = 0
) -> ParseError:
    return _syntax_error(
        text,
        "invalid_syntax",
        f"Unexpected space between '{digits}' and '{unit}'; write the number "
        f"and unit together (e.g. {digits}d)",
        space,
        [fixed] if unit.lower() in UNIT_NAMES else [],
        start=start,
    )


def _diagnose(text: str) -> ParseError:
    """Work out why ``text`` matched none of the accepted shapes."""
    lowered = text.lower()

    if lowered in FUNCTION_NAMES:
        return _syntax_error(
            text,
            "missing_parentheses",
            f"'{text}' is a date function and needs parentheses. {FORMAT_HINT}",
            text,
            [f"{lowered}()"],
        )

    match = _SPACED_UNIT_RE.match(text)
    if match:
        sign, digits, space, unit = match.groups()
        fixed = f"{sign}{digits}{unit.lower()}"
        return _spaced_unit(text, digits, space, unit, fixed, start=len(sign) + len(digits))

    match = _LOOSE_RELATIVE_RE.match(text)
    if match:
        sign, digits, unit = match.groups()
        return _syntax_error(
            text,
            "invalid_unit",
            f"Invalid unit '{unit}'. {UNIT_HINT}",
            unit,
            [f"{sign}{digits}{u}" for u in UNIT_NAMES],
            start=len(sign) + len(digits),
        )

    if _BARE_NUMBER_RE.match(text):
        return _syntax_error(
            text,
            "missing_unit",
            f"Missing unit after '{text}'. {UNIT_HINT}",
            text,
            [f"{text}d", f"{text}w"],
        )

    match = _NON_NUMERIC_RE.match(text)
    if match:
        return _syntax_error(
            text,
            "non_numeric",
            f"Invalid value '{match.group(1)}'. The value must be a number (e.g. 7d, 2w)",
            match.group(1),
        )

    match = _CALL_RE.match(text)
    if match:
        return _diagnose_call(text, match)

    token = text.split()[0]
    return _syntax_error(
        text,
        "invalid_syntax",
        f"Unexpected '{token}'. {FORMAT_HINT}",
        token,
    )


def _diagnose_call(text: str, match: re.Match[str]) -> ParseError:
    name, args, rest = match.group(1), match.group(2), match.group(3)

    if name.lower() not in FUNCTION_NAMES:
        close = difflib.get_close_matches(name.lower(), FUNCTION_NAMES, n=2)
        supported = ", ".join(f"{f}()" for f in FUNCTION_NAMES)
        return _syntax_error(
            text,
            "unknown_function",
            f"Unknown date function '{name}()'. Supported functions: {supported}",
            name,
            [f"{c}()" for c in close],
        )

    if args.strip():
        return _syntax_error(
            text,
            "invalid_syntax",
            f"Date functions take no arguments, got '{args.strip()}'. {FORMAT_HINT}",
            args.strip(),
            [f"{name.lower()}()"],
        )

    after_call = match.start(3)
    rest = rest.strip()
    if not rest:
        return _syntax_error(text, "invalid_syntax", f"Unexpected '{text}'. {FORMAT_HINT}", text)
    operator = rest[0]
    if operator not in "+-":
        if operator.isalnum():
            return _syntax_error(
                text,
                "missing_operator",
                "Combined expressions must use the + or - operator "
                "(e.g. today() + 7d, startofweek() - 1d)",
                rest.split()[0],
                [f"{name.lower()}() + {rest.split()[0]}"],
                start=after_call,
            )
        return _syntax_error(
            text,
            "invalid_operator",
            f"Invalid operator '{operator}'. Only + and - are supported. {FORMAT_HINT}",
            operator,
            start=after_call,
        )

    offset = rest[1:].strip()
    if not offset:
        return _syntax_error(
            text,
            "invalid_syntax",
            f"Missing offset after '{operator}'. {FORMAT_HINT}",
            operator,
            [f"{name.lower()}() {operator} 1d"],
            start=after_call,
        )

    if offset[0] in "+-":
        return _syntax_error(
            text,
            "signed_offset",
            f"The offset must not carry its own sign; '{operator}' already sets the direction",
            offset[0],
            [f"{name.lower()}() {operator} {offset[1:].strip()}"],
            start=after_call + rest.find(offset),
        )

    offset_match = _OFFSET_RE.match(offset)
    offset_start = after_call + len(match.group(3)) - len(match.group(3).lstrip())
    if not offset_match:
        token = offset.split()[0]
        return _syntax_error(
            text,
            "non_numeric",
            f"Invalid offset '{token}'. The offset must be a number with a unit (e.g. 7d)",
            token,
            start=offset_start,
        )

    digits, space, unit, trailing = offset_match.groups()
    if space and unit:
        return _spaced_unit(
            text,
            digits,
            space,
            unit,
            f"{name.lower()}() {operator} {digits}{unit.lower()}",
            start=text.find(digits, offset_start) + len(digits),
        )
    if not unit:
        return _syntax_error(
            text,
            "missing_unit",
            f"Missing unit after '{digits}'. {UNIT_HINT}",
            digits,
            [f"{name.lower()}() {operator} {digits}{u}" for u in ("d", "w")],
            start=offset_start,
        )
    if unit.lower() not in UNIT_NAMES:
        return _syntax_error(
            text,
            "invalid_unit",
            f"Invalid unit '{unit}'. {UNIT_HINT}",
            unit,
            start=offset_start,
        )

    token = trailing.strip().split()[0] if trailing.strip() else trailing
    return _syntax_error(
        text,
        "invalid_syntax",
        f"Unexpected '{token}' after the offset. {FORMAT_HINT}",
        token,
        start=offset_start,
    )
