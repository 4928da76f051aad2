"""Immutable syntax tree for date expressions."""

from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, Field


class DateFunction(str, Enum):
    """Calendar anchor functions."""

    TODAY = "today"
    START_OF_WEEK = "startofweek"
    END_OF_WEEK = "endofweek"
    START_OF_MONTH = "startofmonth"
    END_OF_MONTH = "endofmonth"
    START_OF_YEAR = "startofyear"
    END_OF_YEAR = "endofyear"


class DateUnit(str, Enum):
    """Units for relative offsets."""

    DAY = "d"
    WEEK = "w"
    MONTH = "m"
    YEAR = "y"


class FunctionTerm(BaseModel):
    """A bare function call such as ``startofmonth()``."""

    kind: Literal["function"] = "function"
    name: DateFunction

    model_config = {"frozen": True}

    def __str__(self) -> str:
        return f"{self.name.value}()"


class RelativeTerm(BaseModel):
    """A signed offset such as ``-3d`` or ``2w``."""

    kind: Literal["relative"] = "relative"
    count: int
    unit: DateUnit

    model_config = {"frozen": True}

    def __str__(self) -> str:
        return f"{self.count}{self.unit.value}"

    def negated(self) -> "RelativeTerm":
        return RelativeTerm(count=-self.count, unit=self.unit)


class CombinedTerm(BaseModel):
    """A function shifted by an offset, e.g. ``today() + 7d``.

    ``offset.count`` is always non-negative; the direction lives in
    ``operator``.
    """

    kind: Literal["combined"] = "combined"
    function: FunctionTerm
    operator: Literal["+", "-"]
    offset: RelativeTerm

    model_config = {"frozen": True}

    def __str__(self) -> str:
        return f"{self.function} {self.operator} {self.offset}"

    @property
    def signed_offset(self) -> RelativeTerm:
        """The offset with the operator's sign applied."""
        return self.offset.negated() if self.operator == "-" else self.offset


DateExpression = Annotated[
    FunctionTerm | RelativeTerm | CombinedTerm,
    Field(discriminator="kind"),
]
