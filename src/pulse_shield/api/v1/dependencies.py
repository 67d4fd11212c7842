"""Shared API dependencies for rate limiting and API key authentication."""

from collections.abc import Awaitable, Callable, Collection
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, Response, status

from pulse_shield.core.settings import settings
from pulse_shield.schemas.api_key import ApiKeyValidation, ScopeLevel
from pulse_shield.schemas.decisions import RateLimitDecision
from pulse_shield.services.defense import DefenseCore
from pulse_shield.services.rate_limit import rate_limit_headers

# Rejections caused by a valid key lacking rights; everything else is a 401.
_FORBIDDEN_PREFIXES = ("Insufficient permissions", "No access to resource")


def get_defense(request: Request) -> DefenseCore:
    """Return the defense core attached to the application at startup."""
    defense: DefenseCore | None = getattr(request.app.state, "defense", None)
    if defense is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Defense core not initialised",
        )
    return defense


DefenseDep = Annotated[DefenseCore, Depends(get_defense)]


def client_identifier(request: Request, trusted_proxies: Collection[str] | None = None) -> str:
    """Return the identifier used for per-client limits.

    ``X-Forwarded-For`` is only honoured when the socket peer is a trusted
    proxy. The chain is then read right to left and the first address that is
    not itself a trusted proxy wins.
    """
    trusted = settings.trusted_proxies if trusted_proxies is None else trusted_proxies
    peer = request.client.host if request.client is not None else None
    if peer is None:
        return "unknown"
    if peer not in trusted:
        return peer

    forwarded = request.headers.get("x-forwarded-for", "")
    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in trusted:
            return hop
    return peer


def enforce_rate_limit(action: str) -> Callable[..., Awaitable[RateLimitDecision]]:
    """Build a dependency that consumes one point of ``action`` per request.

    Args:
        action: Name looked up in the rate-limit action table

    Returns:
        Dependency raising 429 when the budget is exhausted. Rate limit headers
        are attached to every checked response.
    """

    async def dependency(
        request: Request, response: Response, defense: DefenseDep
    ) -> RateLimitDecision:
        decision = await defense.rate_limiter.check_rate_limit(client_identifier(request), action)
        headers = rate_limit_headers(decision)
        if not decision.allowed:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests",
                headers=headers,
            )
        response.headers.update(headers)
        return decision

    return dependency


def require_api_key(scope: ScopeLevel = "read") -> Callable[..., Awaitable[ApiKeyValidation]]:
    """Build a dependency that authenticates the ``X-API-Key`` header.

    Args:
        scope: Minimum scope level the key must carry

    Returns:
        Dependency yielding the successful validation. Missing, unknown or
        expired keys produce 401; keys lacking rights produce 403.
    """

    async def dependency(
        defense: DefenseDep,
        x_api_key: Annotated[str | None, Header()] = None,
    ) -> ApiKeyValidation:
        if not x_api_key:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="API key required",
            )
        result = await defense.api_keys.validate_api_key(x_api_key, scope)
        if not result.valid:
            forbidden = (result.error or "").startswith(_FORBIDDEN_PREFIXES)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN if forbidden else status.HTTP_401_UNAUTHORIZED,
                detail=result.error,
            )
        return result

    return dependency


def ensure_workspace(validation: ApiKeyValidation, workspace_id: str) -> None:
    """Reject requests touching a workspace the key does not belong to."""
    if validation.workspace_id != workspace_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"No access to workspace: {workspace_id}",
        )


async def ensure_member(defense: DefenseCore, validation: ApiKeyValidation, user_id: str) -> None:
    """Reject requests about a user outside the key's workspace."""
    workspace_id = validation.workspace_id or ""
    if not await defense.members.is_member(workspace_id, user_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"No access to user: {user_id}",
        )


ReadKeyDep = Annotated[ApiKeyValidation, Depends(require_api_key("read"))]
AdminKeyDep = Annotated[ApiKeyValidation, Depends(require_api_key("admin"))]
