# src/pulse_shield/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .security import router as security_router

__all__ = ["security_router"]
