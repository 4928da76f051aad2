"""Exceptions raised by the flow engine and its collaborators."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from decisionflow.expressions.parser import ParseError


class FlowError(Exception):
    """Base exception for flow engine errors."""

    kind = "flow_error"

    def __init__(self, message: str, node_id: str | None = None):
        super().__init__(message)
        self.node_id = node_id


class ConfigurationError(FlowError):
    """A flow definition violates a structural invariant."""

    kind = "configuration_error"


class ResolutionError(FlowError):
    """A field, answer, option or reference could not be resolved at runtime."""

    kind = "resolution_error"


class DateExpressionError(ResolutionError):
    """An invalid date expression was met while executing a flow."""

    kind = "date_expression_error"

    def __init__(
        self,
        message: str,
        expression: str | None = None,
        error: ParseError | None = None,
        node_id: str | None = None,
    ):
        super().__init__(message, node_id=node_id)
        self.expression = expression
        self.error = error


class AnswerValidationError(FlowError):
    """A submitted answer does not match the question it answers."""

    kind = "validation_error"


class ActionFailedError(FlowError):
    """The action executor reported that an action was not applied."""

    kind = "action_failed"
