"""
Shared pydantic configuration for persisted records
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class RecordModel(BaseModel):
    """
    Base for records stored as JSON in the KV store.

    Field names are snake_case in Python and camelCase on the wire and in
    storage (``wallet_address`` <-> ``walletAddress``).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_record(self) -> dict:
        """JSON-compatible dict with camelCase keys"""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_record(cls, data: dict):
        return cls.model_validate(data)
