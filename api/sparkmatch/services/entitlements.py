from datetime import datetime, timezone
from typing import Any

from sqlalchemy import text

from ..database import parse_db_datetime

PAID_TIERS = {"premium", "elite"}

TIER_ALIASES = {
    "essentiel": "premium",
    "essential": "premium",
    "premium": "premium",
    "keefon+": "elite",
    "elite": "elite",
    "free": "free",
}


def normalize_tier(value: Any) -> str:
    v = str(value or "").strip().lower()
    return TIER_ALIASES.get(v, "free")


def get_entitlement(db, actor_id: str) -> dict[str, Any]:
    row = db.execute(
        text("SELECT tier, expires_at FROM actor_entitlement WHERE actor_id=:actor_id"),
        {"actor_id": actor_id},
    ).mappings().first()
    if not row:
        return {"tier": "free", "expires_at": None}
    return {"tier": normalize_tier(row["tier"]), "expires_at": parse_db_datetime(row["expires_at"])}


def has_unrestricted_messaging(db, actor_id: str, now: datetime | None = None) -> bool:
    now = now or datetime.now(timezone.utc)
    ent = get_entitlement(db, actor_id)
    if ent["tier"] not in PAID_TIERS:
        return False
    expires_at = ent["expires_at"]
    return expires_at is None or expires_at > now
