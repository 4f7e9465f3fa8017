"""
Authentication dependencies for FastAPI.

Two ways to present the actor identity:
1. Session cookie holding the access token (web client)
2. Bearer token in the Authorization header (mobile/API clients)

The token subject is the actor id; it must resolve to an existing,
non-disabled actor profile.
"""

import logging
import uuid
from typing import Any

from fastapi import Cookie, Depends, Header, HTTPException
from pydantic import BaseModel

from .. import repo
from ..config import DEV_MODE, SESSION_COOKIE_NAME
from ..deps import get_db
from .security import decode_access_token

logger = logging.getLogger(__name__)


class AuthErrorDetail(BaseModel):
    message: str = "unauthorized"
    reason: str
    trace_id: str


class AuthError(Exception):
    """Raised when authentication fails with detailed reason."""

    def __init__(self, reason: str, detail: str = "unauthorized"):
        self.reason = reason
        self.detail = detail
        self.trace_id = str(uuid.uuid4())
        super().__init__(detail)


def _log_auth_failure(
    reason: str,
    trace_id: str,
    token_prefix: str | None = None,
    auth_source: str | None = None,
    actor_id: str | None = None,
) -> None:
    log_data = {
        "trace_id": trace_id,
        "reason": reason,
        "auth_source": auth_source,
        "token_prefix": token_prefix,
        "actor_id": actor_id,
    }
    logger.warning(f"[AUTH_FAILURE] {log_data}")


def _unauthorized(message: str, reason: str, trace_id: str, status_code: int = 401) -> HTTPException:
    detail = (
        AuthErrorDetail(message=message, reason=reason, trace_id=trace_id).model_dump()
        if DEV_MODE
        else {"message": message, "trace_id": trace_id}
    )
    return HTTPException(status_code=status_code, detail=detail)


def _extract_bearer(authorization: str | None) -> str:
    if not authorization:
        raise AuthError(reason="missing_token", detail="Missing Authorization header")
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise AuthError(reason="malformed_token", detail="Invalid Authorization header")
    return parts[1].strip()


def _validate_token_and_get_actor(db, token: str, trace_id: str, auth_source: str) -> dict[str, Any]:
    token_prefix = token[:8] + "..." if len(token) > 8 else token

    try:
        payload = decode_access_token(token)
    except HTTPException as e:
        reason = "token_expired" if "expired" in str(e.detail).lower() else "signature_invalid"
        _log_auth_failure(reason, trace_id, token_prefix, auth_source)
        raise _unauthorized("unauthorized", reason, trace_id)

    actor_id = str(payload.get("sub", ""))
    if not actor_id:
        _log_auth_failure("token_missing_subject", trace_id, token_prefix, auth_source)
        raise _unauthorized("unauthorized", "token_missing_subject", trace_id)

    actor = repo.get_actor_by_id(db, actor_id)
    if not actor:
        _log_auth_failure("token_actor_not_found", trace_id, token_prefix, auth_source, actor_id)
        raise _unauthorized("unauthorized", "token_actor_not_found", trace_id)

    if actor.get("disabled_at"):
        _log_auth_failure("account_disabled", trace_id, token_prefix, auth_source, actor_id)
        raise _unauthorized("Account disabled", "account_disabled", trace_id, status_code=403)

    logger.debug(f"[auth] actor_id={actor_id} source={auth_source}")
    return {
        "id": str(actor["id"]),
        "display_name": actor.get("display_name"),
        "certification_status": actor.get("certification_status"),
    }


def get_current_actor(
    db=Depends(get_db),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> dict[str, Any]:
    """Resolve the acting actor: cookie session first, then bearer token."""
    trace_id = str(uuid.uuid4())

    if session_token:
        return _validate_token_and_get_actor(db, session_token, trace_id, "cookie")

    if authorization:
        try:
            token = _extract_bearer(authorization)
        except AuthError as e:
            _log_auth_failure(e.reason, e.trace_id, auth_source="bearer")
            raise _unauthorized(e.detail, e.reason, e.trace_id)
        return _validate_token_and_get_actor(db, token, trace_id, "bearer")

    _log_auth_failure("missing_token", trace_id, auth_source="none")
    raise _unauthorized("Authentication required", "missing_token", trace_id)
