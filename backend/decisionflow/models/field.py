"""Pydantic models describing record fields on the host platform."""

from enum import Enum

from pydantic import BaseModel
from pydantic import Field as PydanticField


class FieldType(str, Enum):
    """Simplified field types used for comparisons and value formatting."""

    DATE = "date"
    SELECT = "select"
    MULTISELECT = "multiselect"
    TEXT = "text"
    NUMBER = "number"
    USER = "user"
    ARRAY = "array"
    UNKNOWN = "unknown"


class FieldOption(BaseModel):
    """An allowed value of a select field."""

    value: str
    label: str


class FieldMetadata(BaseModel):
    """Metadata for a single field."""

    field_key: str = PydanticField(alias="fieldKey")
    name: str
    field_type: FieldType = PydanticField(default=FieldType.UNKNOWN, alias="fieldType")
    options: list[FieldOption] = []

    model_config = {"populate_by_name": True}
