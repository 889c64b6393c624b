"""
Auth API: exchange an API key for a short-lived JWT.

Dashboards keep the JWT in memory instead of shipping the API key on
every request.
"""

import logging

from fastapi import APIRouter, HTTPException

from greenci.auth.jwt import api_key_fingerprint, create_access_token
from greenci.config import settings
from greenci.schemas.schemas import TokenRequest, TokenResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/token", response_model=TokenResponse)
async def issue_token(body: TokenRequest):
    role = settings.parsed_api_keys().get(body.api_key)
    if role is None:
        logger.warning("Token request with unknown API key")
        raise HTTPException(status_code=401, detail="Invalid API key")

    subject = api_key_fingerprint(body.api_key)
    logger.info("Issued %s token for %s", role, subject)
    return TokenResponse(
        access_token=create_access_token(subject, role),
        expires_in=settings.access_token_expire_minutes * 60,
        role=role,
    )
