import uuid
from datetime import datetime, date, timezone
from enum import Enum
from pydantic import BaseModel, ConfigDict, field_serializer
from pydantic.alias_generators import to_camel


class CamelCaseBaseModel(BaseModel):
    """
    Base model with camelCase field aliases and automatic serialization.

    This model maps between camelCase (mobile client payloads) and snake_case
    (used internally in Python):

    - Input: camelCase keys from the client are converted to snake_case for validation.
    - Internal: snake_case fields are used throughout the Python codebase.
    - Output: call `model_dump(by_alias=True)` to serialize fields back to camelCase.
    - Auto-serialization: UUIDs and Enums become strings, naive datetimes are
      treated as UTC and rendered with an explicit offset.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    @field_serializer("*")
    def serialize_any(self, value):
        """Global serializer for all fields with comprehensive type handling"""

        if isinstance(value, uuid.UUID):
            return str(value)

        if isinstance(value, Enum):
            return value.value

        # Must come before the date check; storage hands back naive UTC values
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            return value.isoformat()

        if isinstance(value, date):
            return value.isoformat()

        if isinstance(value, BaseModel):
            return value.model_dump(by_alias=True)

        if isinstance(value, (list, tuple, set)):
            return [self.serialize_any(item) for item in value]

        if isinstance(value, dict):
            return {key: self.serialize_any(val) for key, val in value.items()}

        if isinstance(value, bytes):
            return value.decode("utf-8", errors="replace")

        if value is None or isinstance(value, (str, int, float, bool)):
            return value

        return str(value)
