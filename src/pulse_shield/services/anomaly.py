"""Suspicious activity history and heuristic anomaly detection."""
from __future__ import annotations

import logging
import time
from datetime import timedelta, timezone, tzinfo
from typing import Any, Final

from pydantic import ValidationError

from pulse_shield.schemas.activity import ActivityReport, SuspiciousActivity
from pulse_shield.schemas.common import utc_from_timestamp
from pulse_shield.services.audit import AuditEntry, AuditSink, emit_audit
from pulse_shield.services.store import Clock, KeyedWindowStore, StoreUnavailableError

logger = logging.getLogger(__name__)

SUSPICIOUS_ACTIVITY_PREFIX: Final[str] = "suspicious:"
HISTORY_SAMPLE: Final[int] = 20
RAPID_WINDOW: Final[timedelta] = timedelta(seconds=10)
RAPID_THRESHOLD: Final[int] = 10
UNUSUAL_HOURS: Final[range] = range(2, 6)
UNUSUAL_HOUR_HISTORY_MIN: Final[int] = 2

__all__ = ["AnomalyDetector", "SUSPICIOUS_ACTIVITY_PREFIX"]


class AnomalyDetector:
    """Record suspicious activity per identifier and flag unusual patterns.

    History lives in a list under ``suspicious:<identifier>``, most recent
    first, capped at ``max_entries`` and expiring ``ttl_seconds`` after the
    latest entry. Detection only reads the history; findings are returned to
    the caller and never stored.
    """

    def __init__(
        self,
        store: KeyedWindowStore,
        *,
        audit: AuditSink | None = None,
        max_entries: int = 100,
        ttl_seconds: int = 86_400 * 30,
        clock: Clock = time.time,
    ) -> None:
        self._store = store
        self._audit = audit
        self._max_entries = max_entries
        self._ttl = ttl_seconds
        self._clock = clock

    async def record_suspicious_activity(
        self, user_id: str | None, ip: str, activity: ActivityReport
    ) -> SuspiciousActivity:
        """Timestamp ``activity`` and append it to the history of the user, else the IP."""
        identifier = user_id or ip
        entry = SuspiciousActivity(
            **activity.model_dump(), timestamp=utc_from_timestamp(self._clock())
        )

        try:
            await self._store.push_capped(
                f"{SUSPICIOUS_ACTIVITY_PREFIX}{identifier}",
                entry.to_store(),
                self._max_entries,
                self._ttl,
            )
        except StoreUnavailableError as exc:
            logger.error("Failed to record suspicious activity for %s: %s", identifier, exc)

        if entry.severity in ("high", "critical"):
            logger.warning(
                "Suspicious activity %s (%s) for %s: %s",
                entry.type,
                entry.severity,
                identifier,
                entry.description,
            )
            await emit_audit(
                self._audit,
                AuditEntry(
                    action="SUSPICIOUS_ACTIVITY",
                    severity="CRITICAL" if entry.severity == "critical" else "HIGH",
                    user_id=user_id,
                    details={
                        "ip": ip,
                        "type": entry.type,
                        "description": entry.description,
                        "metadata": entry.metadata,
                    },
                ),
            )
        return entry

    async def get_suspicious_activities(
        self, identifier: str, limit: int = 50
    ) -> list[SuspiciousActivity]:
        """Return up to ``limit`` most recent entries; empty when the store is down."""
        if limit <= 0:
            return []
        try:
            raw_entries = await self._store.list_range(
                f"{SUSPICIOUS_ACTIVITY_PREFIX}{identifier}", 0, limit - 1
            )
        except StoreUnavailableError as exc:
            logger.error("Failed to read suspicious activity for %s: %s", identifier, exc)
            return []

        activities: list[SuspiciousActivity] = []
        for raw in raw_entries:
            try:
                activities.append(SuspiciousActivity.model_validate_json(raw))
            except ValidationError as exc:
                logger.warning("Skipping unreadable activity entry for %s: %s", identifier, exc)
        return activities

    async def detect_anomalies(
        self,
        user_id: str,
        current_action: str,
        metadata: dict[str, Any] | None = None,
        tz: tzinfo | None = None,
    ) -> list[ActivityReport]:
        """Run the heuristics against the recent history of ``user_id``.

        Args:
            user_id: Identifier whose history is inspected.
            current_action: Action being attempted, reported in findings.
            metadata: Request context; ``country`` and ``previousCountry`` drive
                the geographic check.
            tz: Zone in which the unusual-hours window is evaluated. UTC when
                omitted.
        """
        metadata = metadata or {}
        zone = tz or timezone.utc
        now = utc_from_timestamp(self._clock())
        history = await self.get_suspicious_activities(user_id, HISTORY_SAMPLE)
        findings: list[ActivityReport] = []

        recent = [entry for entry in history if now - entry.timestamp < RAPID_WINDOW]
        if len(recent) > RAPID_THRESHOLD:
            findings.append(
                ActivityReport(
                    type="RAPID_REQUESTS",
                    severity="medium",
                    description="Unusually rapid request pattern detected",
                    metadata={"count": len(recent), "action": current_action},
                )
            )

        hour = now.astimezone(zone).hour
        if hour in UNUSUAL_HOURS:
            night_entries = [
                entry for entry in history if entry.timestamp.astimezone(zone).hour in UNUSUAL_HOURS
            ]
            if len(night_entries) < UNUSUAL_HOUR_HISTORY_MIN:
                findings.append(
                    ActivityReport(
                        type="UNUSUAL_TIME",
                        severity="low",
                        description="Access during unusual hours",
                        metadata={"hour": hour, "action": current_action},
                    )
                )

        country = metadata.get("country")
        previous_country = metadata.get("previousCountry")
        if country and previous_country and country != previous_country:
            findings.append(
                ActivityReport(
                    type="GEOGRAPHIC_ANOMALY",
                    severity="high",
                    description="Access from unexpected location",
                    metadata={"currentCountry": country, "previousCountry": previous_country},
                )
            )

        if findings:
            logger.info("Detected %d anomalies for %s on %s", len(findings), user_id, current_action)
        return findings

    async def count_recent_incidents(self, identifier: str, sample: int = 10) -> int:
        """Count high and critical entries among the latest ``sample`` entries."""
        history = await self.get_suspicious_activities(identifier, sample)
        return sum(1 for entry in history if entry.severity in ("high", "critical"))
