# tests/test_anomaly.py
"""Tests for suspicious activity history and anomaly heuristics."""

from __future__ import annotations

from datetime import timedelta, timezone

import pytest

from pulse_shield.schemas.activity import ActivityReport
from pulse_shield.services.anomaly import AnomalyDetector

# 2023-11-15 03:00:00 UTC
NIGHT_TIME = 1_700_017_200.0


def _report(severity: str = "low", kind: str = "FAILED_LOGIN") -> ActivityReport:
    return ActivityReport(type=kind, severity=severity, description="test", metadata={"n": 1})


@pytest.fixture()
def detector(store, clock, audit) -> AnomalyDetector:
    return AnomalyDetector(store, audit=audit, clock=clock)


class TestActivityHistory:
    @pytest.mark.asyncio
    async def test_most_recent_first(self, detector: AnomalyDetector, clock) -> None:
        await detector.record_suspicious_activity("user-1", "1.2.3.4", _report(kind="FIRST"))
        clock.advance(1)
        await detector.record_suspicious_activity("user-1", "1.2.3.4", _report(kind="SECOND"))

        history = await detector.get_suspicious_activities("user-1")

        assert [entry.type for entry in history] == ["SECOND", "FIRST"]
        assert history[0].timestamp.timestamp() == pytest.approx(clock.now)
        assert history[0].metadata == {"n": 1}

    @pytest.mark.asyncio
    async def test_falls_back_to_ip_identifier(self, detector: AnomalyDetector) -> None:
        await detector.record_suspicious_activity(None, "1.2.3.4", _report())
        assert len(await detector.get_suspicious_activities("1.2.3.4")) == 1

    @pytest.mark.asyncio
    async def test_history_is_capped(self, detector: AnomalyDetector) -> None:
        for index in range(105):
            await detector.record_suspicious_activity("user-1", "ip", _report(kind=f"E{index}"))

        assert len(await detector.get_suspicious_activities("user-1")) == 50
        everything = await detector.get_suspicious_activities("user-1", limit=500)
        assert len(everything) == 100
        assert everything[0].type == "E104"
        assert everything[-1].type == "E5"

    @pytest.mark.asyncio
    async def test_history_expires(self, detector: AnomalyDetector, clock) -> None:
        await detector.record_suspicious_activity("user-1", "ip", _report())
        clock.advance(30 * 86_400 + 1)
        assert await detector.get_suspicious_activities("user-1") == []

    @pytest.mark.asyncio
    async def test_only_serious_entries_are_audited(self, detector: AnomalyDetector, audit) -> None:
        await detector.record_suspicious_activity("user-1", "ip", _report("low"))
        await detector.record_suspicious_activity("user-1", "ip", _report("medium"))
        await detector.record_suspicious_activity("user-1", "ip", _report("high"))
        await detector.record_suspicious_activity("user-1", "ip", _report("critical"))

        assert audit.actions() == ["SUSPICIOUS_ACTIVITY", "SUSPICIOUS_ACTIVITY"]
        assert [entry.severity for entry in audit.entries] == ["HIGH", "CRITICAL"]
        assert audit.entries[0].details["ip"] == "ip"

    @pytest.mark.asyncio
    async def test_store_outage(self, detector: AnomalyDetector, store) -> None:
        await store.close()
        entry = await detector.record_suspicious_activity("user-1", "ip", _report())
        assert entry.type == "FAILED_LOGIN"
        assert await detector.get_suspicious_activities("user-1") == []

    @pytest.mark.asyncio
    async def test_count_recent_incidents(self, detector: AnomalyDetector) -> None:
        for severity in ("high", "low", "critical", "medium"):
            await detector.record_suspicious_activity("ws-1", "ip", _report(severity))
        assert await detector.count_recent_incidents("ws-1") == 2


class TestDetectAnomalies:
    @pytest.mark.asyncio
    async def test_quiet_history_has_no_findings(self, detector: AnomalyDetector) -> None:
        assert await detector.detect_anomalies("user-1", "login", {}) == []

    @pytest.mark.asyncio
    async def test_rapid_requests(self, detector: AnomalyDetector, clock) -> None:
        for _ in range(11):
            await detector.record_suspicious_activity("user-1", "ip", _report())
            clock.advance(0.5)

        findings = await detector.detect_anomalies("user-1", "login", {})

        assert [finding.type for finding in findings] == ["RAPID_REQUESTS"]
        assert findings[0].severity == "medium"
        assert findings[0].metadata == {"count": 11, "action": "login"}

    @pytest.mark.asyncio
    async def test_ten_requests_are_not_rapid(self, detector: AnomalyDetector, clock) -> None:
        for _ in range(10):
            await detector.record_suspicious_activity("user-1", "ip", _report())
        assert await detector.detect_anomalies("user-1", "login") == []

    @pytest.mark.asyncio
    async def test_old_requests_are_not_rapid(self, detector: AnomalyDetector, clock) -> None:
        for _ in range(15):
            await detector.record_suspicious_activity("user-1", "ip", _report())
        clock.advance(10)
        assert await detector.detect_anomalies("user-1", "login") == []

    @pytest.mark.asyncio
    async def test_unusual_time(self, detector: AnomalyDetector, clock) -> None:
        clock.now = NIGHT_TIME

        findings = await detector.detect_anomalies("user-1", "export")

        assert [finding.type for finding in findings] == ["UNUSUAL_TIME"]
        assert findings[0].severity == "low"
        assert findings[0].metadata == {"hour": 3, "action": "export"}

    @pytest.mark.asyncio
    async def test_usual_night_owl(self, detector: AnomalyDetector, clock) -> None:
        clock.now = NIGHT_TIME - 3600
        await detector.record_suspicious_activity("user-1", "ip", _report())
        await detector.record_suspicious_activity("user-1", "ip", _report())
        clock.now = NIGHT_TIME

        assert await detector.detect_anomalies("user-1", "export") == []

    @pytest.mark.asyncio
    async def test_unusual_time_honours_zone(self, detector: AnomalyDetector) -> None:
        # 22:13 UTC is 03:13 at UTC+5.
        findings = await detector.detect_anomalies(
            "user-1", "login", tz=timezone(timedelta(hours=5))
        )
        assert [finding.type for finding in findings] == ["UNUSUAL_TIME"]

    @pytest.mark.asyncio
    async def test_geographic_anomaly(self, detector: AnomalyDetector) -> None:
        findings = await detector.detect_anomalies(
            "user-1", "login", {"country": "DE", "previousCountry": "FR"}
        )
        assert [finding.type for finding in findings] == ["GEOGRAPHIC_ANOMALY"]
        assert findings[0].severity == "high"
        assert findings[0].metadata == {"currentCountry": "DE", "previousCountry": "FR"}

    @pytest.mark.asyncio
    async def test_same_or_missing_country_is_fine(self, detector: AnomalyDetector) -> None:
        assert await detector.detect_anomalies("u", "login", {"country": "DE", "previousCountry": "DE"}) == []
        assert await detector.detect_anomalies("u", "login", {"country": "DE"}) == []

    @pytest.mark.asyncio
    async def test_findings_are_not_persisted(self, detector: AnomalyDetector) -> None:
        await detector.detect_anomalies("user-1", "login", {"country": "DE", "previousCountry": "FR"})
        assert await detector.get_suspicious_activities("user-1") == []
