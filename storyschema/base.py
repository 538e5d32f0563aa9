"""Shared pydantic configuration for story graph records.

Persisted records and extraction-service payloads use camelCase keys
(``documentOrder``, ``registryIndex``); Python code uses snake_case
attributes. Every model in this package accepts both.
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class StoryModel(BaseModel):
    """Immutable base model with camelCase aliases."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_payload(self) -> dict:
        """Dump to a JSON-compatible dict using camelCase keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
