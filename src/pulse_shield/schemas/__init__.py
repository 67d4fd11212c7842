# src/pulse_shield/schemas/__init__.py
"""
Pydantic schemas for defense decisions, stored records and API payloads.
"""

from .activity import ActivityReport, ScoreFactor, SecurityScoreReport, SuspiciousActivity
from .api_key import (
    ApiKeyCreate,
    ApiKeyScope,
    ApiKeySummary,
    ApiKeyValidation,
    CachedApiKey,
    CreatedApiKey,
)
from .decisions import BruteForceDecision, RateLimitConfig, RateLimitDecision
from .reputation import IpBlockRequest, IpReputation

__all__ = [
    "ActivityReport", "ScoreFactor", "SecurityScoreReport", "SuspiciousActivity",
    "ApiKeyCreate", "ApiKeyScope", "ApiKeySummary", "ApiKeyValidation",
    "CachedApiKey", "CreatedApiKey",
    "BruteForceDecision", "RateLimitConfig", "RateLimitDecision",
    "IpBlockRequest", "IpReputation",
]
