"""Schemas for IP reputation records."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from pulse_shield.schemas.common import StoredRecord

NEUTRAL_SCORE = 50


class IpReputation(StoredRecord):
    """Trust record for one IP; higher scores are more trusted."""

    score: int = Field(default=NEUTRAL_SCORE, ge=0, le=100)
    failed_attempts: int = 0
    successful_attempts: int = 0
    last_seen: datetime
    blocked: bool = False
    blocked_reason: str | None = None


class IpBlockRequest(BaseModel):
    """Request body for manually blocking an IP."""

    reason: str = Field(..., min_length=1)
    duration_seconds: int | None = Field(default=None, gt=0)
