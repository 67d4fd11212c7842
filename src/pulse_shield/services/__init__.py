"""Defense services sharing a keyed window store."""

from .anomaly import AnomalyDetector
from .api_keys import ApiKeyAuthority, ApiKeyNotFoundError, ScopeConfigurationError
from .audit import AuditEntry, AuditSink, LoggingAuditSink
from .brute_force import BruteForceConfig, BruteForceGuard
from .defense import DefenseCore
from .ip_reputation import IpReputationTracker, is_ip_allowed
from .rate_limit import RateLimiter, rate_limit_headers
from .security_score import SecurityScoreCalculator
from .store import KeyedWindowStore, MemoryWindowStore, RedisWindowStore, StoreUnavailableError

__all__ = [
    "AnomalyDetector",
    "ApiKeyAuthority",
    "ApiKeyNotFoundError",
    "ScopeConfigurationError",
    "AuditEntry",
    "AuditSink",
    "LoggingAuditSink",
    "BruteForceConfig",
    "BruteForceGuard",
    "DefenseCore",
    "IpReputationTracker",
    "is_ip_allowed",
    "RateLimiter",
    "rate_limit_headers",
    "SecurityScoreCalculator",
    "KeyedWindowStore",
    "MemoryWindowStore",
    "RedisWindowStore",
    "StoreUnavailableError",
]
