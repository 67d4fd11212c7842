"""Shared Pydantic base classes for records kept in the window store."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

Severity = Literal["low", "medium", "high", "critical"]


class StoredRecord(BaseModel):
    """Record serialized into the shared store.

    Stored payloads use camelCase keys so records written by other services
    sharing the same key namespace stay readable.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_store(self) -> str:
        """Return the JSON document written to the store."""
        return self.model_dump_json(by_alias=True, exclude_none=True)


def utc_from_timestamp(ts: float) -> datetime:
    """Convert epoch seconds to an aware UTC datetime."""
    return datetime.fromtimestamp(ts, tz=timezone.utc)
