"""Schemas describing API key scopes, cache entries and validation results."""
from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from pulse_shield.schemas.common import StoredRecord
from pulse_shield.schemas.decisions import RateLimitConfig

ScopeLevel = Literal["read", "write", "admin"]


class ApiKeyScope(StoredRecord):
    """Permissions granted to a key.

    ``admin`` implies ``write`` which implies ``read``. An empty ``resources``
    list grants access to every resource of the workspace.
    """

    read: bool = False
    write: bool = False
    admin: bool = False
    resources: list[str] = Field(default_factory=list)
    rate_limit: RateLimitConfig | None = None

    def grants(self, level: ScopeLevel) -> bool:
        """Return True when this scope covers ``level``."""
        if level == "admin":
            return self.admin
        if level == "write":
            return self.write or self.admin
        return self.read or self.write or self.admin

    def allows_resource(self, resource: str | None) -> bool:
        """Return True when ``resource`` passes the allow-list."""
        if not resource or not self.resources:
            return True
        return resource in self.resources


class CachedApiKey(StoredRecord):
    """Cache mirror of a durable key record, stored under ``apikey:<hash>``."""

    workspace_id: str
    user_id: str
    scope: ApiKeyScope
    expires_at: datetime | None = None


class ApiKeyValidation(BaseModel):
    """Result of validating a presented key. Denials carry a reason string."""

    valid: bool
    workspace_id: str | None = None
    user_id: str | None = None
    error: str | None = None


class ApiKeyCreate(BaseModel):
    """Request body for minting a key."""

    workspace_id: str
    user_id: str
    name: str = Field(..., min_length=1, max_length=200)
    scope: ApiKeyScope
    expires_at: datetime | None = None


class ApiKeySummary(BaseModel):
    """Key metadata safe to list; never carries the secret."""

    id: str
    name: str
    key_prefix: str
    scope: ApiKeyScope
    expires_at: datetime | None = None
    last_used_at: datetime | None = None
    created_at: datetime


class CreatedApiKey(ApiKeySummary):
    """Response for create and regenerate; the only place the plaintext appears."""

    plaintext_key: str
    hashed_key: str
