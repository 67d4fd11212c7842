"""Schemas for suspicious activity history and security score reports."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from pulse_shield.schemas.common import Severity, StoredRecord


class SuspiciousActivity(StoredRecord):
    """One entry of an identifier's activity history. Never mutated."""

    type: str
    severity: Severity
    description: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


class ActivityReport(BaseModel):
    """Activity as reported by callers, before it is timestamped."""

    type: str
    severity: Severity
    description: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class ScoreFactor(BaseModel):
    """A single weighted input of the workspace security score."""

    name: str
    score: int
    max_score: int
    recommendation: str | None = None


class SecurityScoreReport(BaseModel):
    """Derived workspace score in ``[0, 100]``; computed on demand only."""

    score: int = Field(..., ge=0, le=100)
    factors: list[ScoreFactor]
