"""Data access helpers for durable records."""

from .api_key_repo import ApiKeyRepository, SqlApiKeyRepository
from .member_repo import MemberDirectory, SqlMemberDirectory

__all__ = ["ApiKeyRepository", "SqlApiKeyRepository", "MemberDirectory", "SqlMemberDirectory"]
