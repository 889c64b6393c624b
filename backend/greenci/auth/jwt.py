"""JWT token creation and validation."""

import hashlib
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from greenci.config import settings

ALGORITHM = "HS256"


def api_key_fingerprint(api_key: str) -> str:
    """Stable, non-reversible subject for tokens minted from an API key."""
    return "key-" + hashlib.sha256(api_key.encode()).hexdigest()[:12]


def create_access_token(subject: str, role: str) -> str:
    """Create a short-lived access token (ACCESS_TOKEN_EXPIRE_MINUTES)."""
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    payload = {
        "sub": subject,
        "role": role,
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Decode and validate an access token. Raises JWTError on failure."""
    payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    if payload.get("type") != "access":
        raise JWTError("Invalid token type")
    return payload
