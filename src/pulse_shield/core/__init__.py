"""Core configuration and key material helpers."""
