import uuid
from typing import Iterator

from fastapi import HTTPException

from .database import SessionLocal


def get_db() -> Iterator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def validate_admin_token(token: str | None, admin_token: str | None) -> None:
    if not admin_token or not token or token != admin_token:
        raise HTTPException(status_code=401, detail="Invalid admin token")


def parse_target_id(raw: str | None, field: str = "target_id") -> str:
    value = (raw or "").strip()
    if not value:
        raise HTTPException(status_code=400, detail=f"{field} is required")
    try:
        return str(uuid.UUID(value))
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{field} must be a valid UUID")


def require_other_actor(actor_id: str, raw_target: str | None, field: str = "target_id") -> str:
    target_id = parse_target_id(raw_target, field)
    if target_id == str(actor_id):
        raise HTTPException(status_code=400, detail="You cannot target yourself")
    return target_id
