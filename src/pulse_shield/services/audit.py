"""Fire-and-forget audit sink used by the defense services."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

logger = logging.getLogger(__name__)

AuditSeverity = Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"]

__all__ = ["AuditEntry", "AuditSink", "AuditSeverity", "LoggingAuditSink", "emit_audit"]


@dataclass(frozen=True)
class AuditEntry:
    """Security event forwarded to the audit trail."""

    action: str
    severity: AuditSeverity
    user_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    category: str = "SECURITY"


class AuditSink(Protocol):
    """Destination for audit entries; persistence lives outside this package."""

    async def log(self, entry: AuditEntry) -> None:
        ...


class LoggingAuditSink:
    """Audit sink that writes entries to the ``pulse_shield.audit`` logger."""

    def __init__(self, logger_name: str = "pulse_shield.audit") -> None:
        self._logger = logging.getLogger(logger_name)

    async def log(self, entry: AuditEntry) -> None:
        level = logging.WARNING if entry.severity in ("HIGH", "CRITICAL") else logging.INFO
        self._logger.log(
            level,
            "%s [%s/%s] user=%s details=%s",
            entry.action,
            entry.category,
            entry.severity,
            entry.user_id or "-",
            entry.details,
        )


async def emit_audit(sink: AuditSink | None, entry: AuditEntry) -> None:
    """Deliver ``entry`` to ``sink``; failures are logged and never reach the caller."""
    if sink is None:
        return
    try:
        await sink.log(entry)
    except Exception as exc:  # noqa: BLE001
        logger.error("Audit sink rejected %s: %s", entry.action, exc)
