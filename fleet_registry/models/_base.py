"""
Shared base for fleet records
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class Record(BaseModel):
    """Base record: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )

    def to_wire(self) -> dict:
        """Serialize with camelCase keys and ISO-8601 timestamps."""
        return self.model_dump(mode="json", by_alias=True)
