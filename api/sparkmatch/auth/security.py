from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from fastapi import HTTPException

from ..config import ACCESS_TOKEN_TTL_MINUTES, JWT_SECRET

ALGORITHM = "HS256"
TOKEN_TYPE = "actor_access"
REQUIRED_CLAIMS = ["sub", "exp", "iat"]


def _signing_key() -> str:
    if not JWT_SECRET:
        raise HTTPException(status_code=500, detail="JWT secret not configured")
    return JWT_SECRET


def create_access_token(actor_id: str, ttl_minutes: int | None = None) -> str:
    key = _signing_key()
    issued = datetime.now(timezone.utc)
    lifetime = timedelta(minutes=ttl_minutes or ACCESS_TOKEN_TTL_MINUTES)
    claims: dict[str, Any] = {
        "sub": str(actor_id),
        "typ": TOKEN_TYPE,
        "iat": int(issued.timestamp()),
        "exp": int((issued + lifetime).timestamp()),
    }
    return jwt.encode(claims, key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    """Verify signature, expiry and token type; return the claims."""
    key = _signing_key()
    try:
        claims = jwt.decode(token, key, algorithms=[ALGORITHM], options={"require": REQUIRED_CLAIMS})
    except jwt.ExpiredSignatureError as exc:
        raise HTTPException(status_code=401, detail="Token expired") from exc
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc
    if claims.get("typ") != TOKEN_TYPE:
        raise HTTPException(status_code=401, detail="Invalid token")
    return claims
