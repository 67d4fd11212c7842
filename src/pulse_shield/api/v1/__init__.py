# src/pulse_shield/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import security_router

__all__ = ["security_router"]
