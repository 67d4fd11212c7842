"""Security administration endpoints: scores, lockouts, IP blocks and API keys."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from pulse_shield.api.v1.dependencies import (
    AdminKeyDep,
    DefenseDep,
    ReadKeyDep,
    enforce_rate_limit,
    ensure_member,
    ensure_workspace,
)
from pulse_shield.schemas.activity import SecurityScoreReport, SuspiciousActivity
from pulse_shield.schemas.api_key import ApiKeyCreate, ApiKeySummary, CreatedApiKey
from pulse_shield.schemas.reputation import IpBlockRequest, IpReputation
from pulse_shield.services.api_keys import ApiKeyNotFoundError
from pulse_shield.services.store import StoreUnavailableError

router = APIRouter(
    prefix="/security",
    tags=["security"],
    dependencies=[Depends(enforce_rate_limit("api-call"))],
)


def _not_found(exc: ApiKeyNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


def _cache_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="API key cache unavailable, retry the request",
    )


@router.get("/score/{workspace_id}", response_model=SecurityScoreReport)
async def get_security_score(
    workspace_id: str, defense: DefenseDep, caller: ReadKeyDep
) -> SecurityScoreReport:
    """Compute the current security score of a workspace.

    Args:
        workspace_id: Workspace to score
        defense: Defense core
        caller: Validated API key of the caller

    Returns:
        Score in [0, 100] with the contributing factors
    """
    ensure_workspace(caller, workspace_id)
    return await defense.security_score.calculate_security_score(workspace_id)


@router.get("/activities/{identifier}", response_model=list[SuspiciousActivity])
async def list_suspicious_activities(
    identifier: str,
    defense: DefenseDep,
    caller: AdminKeyDep,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
) -> list[SuspiciousActivity]:
    """Return the most recent suspicious activity recorded for a workspace member."""
    await ensure_member(defense, caller, identifier)
    return await defense.anomalies.get_suspicious_activities(identifier, limit)


@router.post("/lockouts/{identifier}/unlock", status_code=status.HTTP_204_NO_CONTENT)
async def unlock_identifier(identifier: str, defense: DefenseDep, caller: AdminKeyDep) -> Response:
    """Lift the brute-force lockout of a workspace member by hand."""
    await ensure_member(defense, caller, identifier)
    await defense.brute_force.unlock(identifier, caller.user_id or "unknown")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/ips/{ip}", response_model=IpReputation)
async def get_ip(ip: str, defense: DefenseDep, caller: AdminKeyDep) -> IpReputation:
    """Return the reputation record of an IP address."""
    return await defense.ip_reputation.get_ip_reputation(ip)


@router.post("/ips/{ip}/block", response_model=IpReputation)
async def block_ip(
    ip: str, payload: IpBlockRequest, defense: DefenseDep, caller: AdminKeyDep
) -> IpReputation:
    """Block an IP address for the requested duration (one day by default)."""
    return await defense.ip_reputation.block_ip(ip, payload.reason, payload.duration_seconds)


@router.delete("/ips/{ip}/block", response_model=IpReputation)
async def unblock_ip(ip: str, defense: DefenseDep, caller: AdminKeyDep) -> IpReputation:
    """Clear a block and restore the neutral score."""
    return await defense.ip_reputation.unblock_ip(ip, caller.user_id)


@router.post("/api-keys", response_model=CreatedApiKey, status_code=status.HTTP_201_CREATED)
async def create_api_key(
    payload: ApiKeyCreate, defense: DefenseDep, caller: AdminKeyDep
) -> CreatedApiKey:
    """Mint a new API key. The plaintext key is only ever returned here."""
    ensure_workspace(caller, payload.workspace_id)
    return await defense.api_keys.create_api_key(
        payload.workspace_id,
        payload.user_id,
        payload.name,
        payload.scope,
        payload.expires_at,
    )


@router.get("/api-keys/{workspace_id}", response_model=list[ApiKeySummary])
async def list_api_keys(
    workspace_id: str, defense: DefenseDep, caller: AdminKeyDep
) -> list[ApiKeySummary]:
    """List the active keys of a workspace without their secrets."""
    ensure_workspace(caller, workspace_id)
    return await defense.api_keys.list_api_keys(workspace_id)


@router.post("/api-keys/{key_id}/regenerate", response_model=CreatedApiKey)
async def regenerate_api_key(
    key_id: str, defense: DefenseDep, caller: AdminKeyDep
) -> CreatedApiKey:
    """Rotate the secret of a key in the caller's workspace."""
    try:
        return await defense.api_keys.regenerate_api_key(
            key_id, caller.workspace_id or "", requested_by=caller.user_id
        )
    except ApiKeyNotFoundError as exc:
        raise _not_found(exc) from exc
    except StoreUnavailableError as exc:
        raise _cache_unavailable() from exc


@router.delete("/api-keys/{hashed_key}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_api_key(hashed_key: str, defense: DefenseDep, caller: AdminKeyDep) -> Response:
    """Revoke a key of the caller's workspace by its SHA-256 digest."""
    try:
        await defense.api_keys.revoke_api_key(
            hashed_key, revoked_by=caller.user_id, workspace_id=caller.workspace_id
        )
    except ApiKeyNotFoundError as exc:
        raise _not_found(exc) from exc
    except StoreUnavailableError as exc:
        raise _cache_unavailable() from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
