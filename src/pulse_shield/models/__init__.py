# src/pulse_shield/models/__init__.py
"""SQLAlchemy models for the Pulse Shield defense core."""

from .api_key import ApiKey
from .workspace_member import WorkspaceMember

__all__ = ["ApiKey", "WorkspaceMember"]
