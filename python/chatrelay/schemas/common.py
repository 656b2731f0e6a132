"""Shared schema base.

The public API speaks camelCase JSON (`conversationId`, `fileIds`); Python
code uses snake_case attributes. Both spellings are accepted on input.
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_json_dict(self) -> dict:
        """Dump with aliases in JSON mode (UUIDs and datetimes as strings)."""
        return self.model_dump(mode="json", by_alias=True)
