# src/pulse_shield/db/__init__.py
"""Database configuration and utilities."""

from .session import Base, SessionLocal, create_tables

__all__ = ["Base", "SessionLocal", "create_tables"]
