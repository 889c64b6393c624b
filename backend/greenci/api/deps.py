"""
API Dependencies: DB session, auth context, permission guards, and the
collaborators handlers need (GitLab client, job dispatcher, agent service).

Authentication accepts either:
  1. X-API-Key: <key>             key → role via the API_KEYS setting
  2. Authorization: Bearer <jwt>  minted by POST /api/auth/token

Auth-exempt paths (no credentials required):
  /, /api/health, /api/auth/token, /metrics
"""

import logging
from typing import AsyncGenerator

from fastapi import Depends, Request, HTTPException
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from greenci.auth.context import RequestContext
from greenci.auth.jwt import api_key_fingerprint, decode_access_token
from greenci.auth.permissions import Permission
from greenci.auth.roles import Role, ROLE_PERMISSIONS
from greenci.carbon.calculator import CarbonCalculator
from greenci.clients.gitlab_client import GitLabClient
from greenci.config import settings
from greenci.database import async_session
from greenci.services.agent_service import AgentService, SQLAgentRepository
from greenci.services.job_queue import JobDispatcher, RedisJobDispatcher

logger = logging.getLogger(__name__)

AUTH_EXEMPT_PATHS = {
    "",
    "/api/health",
    "/api/auth/token",
    "/metrics",
}


# ── Database session ─────────────────────────────────────────────────────────

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a DB session per request, commit on success, rollback on error."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Request context (API key / JWT) ──────────────────────────────────────────

def _role_from(value: str | None) -> Role:
    try:
        return Role(value)
    except ValueError:
        return Role.VIEWER


async def get_request_context(request: Request) -> RequestContext:
    path = request.url.path.rstrip("/")
    if path in AUTH_EXEMPT_PATHS:
        return RequestContext(
            subject="anonymous",
            role=Role.VIEWER,
            permissions=ROLE_PERMISSIONS[Role.VIEWER],
        )

    api_key = request.headers.get("X-API-Key")
    if api_key:
        role_name = settings.parsed_api_keys().get(api_key)
        if role_name is None:
            logger.warning("Rejected unknown API key on %s", path)
            raise HTTPException(status_code=401, detail="Invalid API key")
        role = _role_from(role_name)
        return RequestContext(
            subject=api_key_fingerprint(api_key),
            role=role,
            permissions=ROLE_PERMISSIONS[role],
            auth_method="api_key",
        )

    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="API key or Bearer token required")

    try:
        claims = decode_access_token(auth_header[7:])
    except JWTError as e:
        logger.debug("JWT decode failed: %s", e)
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    role = _role_from(claims.get("role"))
    return RequestContext(
        subject=claims.get("sub", "anonymous"),
        role=role,
        permissions=ROLE_PERMISSIONS[role],
        auth_method="jwt",
    )


# ── Permission guards ────────────────────────────────────────────────────────

def require(*perms: Permission):
    """
    FastAPI dependency that checks the caller has ALL listed permissions.

    Usage:
        @router.get("/metrics")
        async def list_metrics(ctx: RequestContext = Depends(require(Permission.METRICS_READ))):
            ...
    """
    async def _check(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
        for p in perms:
            ctx.require_permission(p)
        return ctx
    return _check


# ── Collaborators ────────────────────────────────────────────────────────────

def get_calculator() -> CarbonCalculator:
    return CarbonCalculator.from_settings(settings)


async def get_gitlab_client() -> AsyncGenerator[GitLabClient, None]:
    client = GitLabClient()
    try:
        yield client
    finally:
        await client.aclose()


def get_dispatcher() -> JobDispatcher:
    return RedisJobDispatcher()


async def get_agent_service(db: AsyncSession = Depends(get_db)) -> AgentService:
    return AgentService(SQLAgentRepository(db))
