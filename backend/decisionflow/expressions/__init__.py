"""Date expression language used in condition and action values."""

from decisionflow.expressions.ast import (
    CombinedTerm,
    DateExpression,
    DateFunction,
    DateUnit,
    FunctionTerm,
    RelativeTerm,
)
from decisionflow.expressions.evaluator import (
    evaluate_date_expression,
    evaluate_expression_text,
)
from decisionflow.expressions.parser import (
    ParseError,
    ParseErrorKind,
    ParseResult,
    parse_date_expression,
    validate_date_expression,
)

__all__ = [
    "CombinedTerm",
    "DateExpression",
    "DateFunction",
    "DateUnit",
    "FunctionTerm",
    "ParseError",
    "ParseErrorKind",
    "ParseResult",
    "RelativeTerm",
    "evaluate_date_expression",
    "evaluate_expression_text",
    "parse_date_expression",
    "validate_date_expression",
]
