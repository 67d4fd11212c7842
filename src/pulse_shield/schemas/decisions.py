"""Admission decisions returned by the rate limiter and brute-force guard."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class RateLimitConfig(BaseModel):
    """Point budget for one action over a trailing window."""

    model_config = ConfigDict(frozen=True)

    points: int = Field(..., gt=0, description="Allowed events per window")
    duration_seconds: int = Field(..., gt=0, description="Window length in seconds")
    block_duration_seconds: int | None = Field(
        default=None, description="Suggested block length once the budget is spent"
    )


class RateLimitDecision(BaseModel):
    """Outcome of a sliding-window admission check."""

    allowed: bool
    remaining: int
    reset_at: datetime


class BruteForceDecision(BaseModel):
    """Outcome of a brute-force check.

    ``delay`` is advisory: the guard never sleeps, callers decide whether to
    wait that many milliseconds before processing the attempt.
    """

    allowed: bool
    remaining_attempts: int
    blocked_until: datetime | None = None
    delay: int | None = None
