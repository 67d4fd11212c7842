"""Workspace security score derived from membership, keys and incidents."""
from __future__ import annotations

import logging
import math

from pulse_shield.repositories.member_repo import MemberDirectory
from pulse_shield.schemas.activity import ScoreFactor, SecurityScoreReport
from pulse_shield.services.anomaly import AnomalyDetector
from pulse_shield.services.api_keys import ApiKeyAuthority

logger = logging.getLogger(__name__)

__all__ = ["SecurityScoreCalculator"]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class SecurityScoreCalculator:
    """Compute a 0-100 score for a workspace on demand. Nothing is cached."""

    def __init__(
        self,
        members: MemberDirectory,
        api_keys: ApiKeyAuthority,
        anomalies: AnomalyDetector,
    ) -> None:
        self._members = members
        self._api_keys = api_keys
        self._anomalies = anomalies

    async def calculate_security_score(self, workspace_id: str) -> SecurityScoreReport:
        """Score ``workspace_id`` from five weighted factors."""
        factors: list[ScoreFactor] = []

        total_members, with_two_factor = await self._members.two_factor_adoption(workspace_id)
        adoption = with_two_factor / total_members if total_members else 0.0
        factors.append(
            ScoreFactor(
                name="2FA Adoption",
                score=_round_half_up(adoption * 25),
                max_score=25,
                recommendation="Enable 2FA for all users" if adoption < 1 else None,
            )
        )

        expired = await self._api_keys.count_expired_active_keys(workspace_id)
        factors.append(
            ScoreFactor(
                name="API Key Hygiene",
                score=max(0, 20 - expired * 5),
                max_score=20,
                recommendation=f"Revoke {expired} expired API keys" if expired else None,
            )
        )

        incidents = await self._anomalies.count_recent_incidents(workspace_id, 10)
        factors.append(
            ScoreFactor(
                name="Incident History",
                score=max(0, 25 - incidents * 5),
                max_score=25,
                recommendation="Review and address recent security incidents" if incidents else None,
            )
        )

        # No policy or audit data is tracked yet; both count as fully met.
        factors.append(ScoreFactor(name="Password Policy", score=15, max_score=15))
        factors.append(ScoreFactor(name="Audit Logging", score=15, max_score=15))

        total = sum(factor.score for factor in factors)
        maximum = sum(factor.max_score for factor in factors)
        score = min(100, max(0, _round_half_up(total / maximum * 100)))
        logger.debug("Security score for %s: %s", workspace_id, score)
        return SecurityScoreReport(score=score, factors=factors)
