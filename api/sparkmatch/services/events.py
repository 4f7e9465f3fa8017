import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy import text

from ..database import SessionLocal
from ..outcomes import InteractionEventData

logger = logging.getLogger(__name__)

EVENT_TYPES = {
    "spark_sent",
    "echo_offered",
    "echo_returned",
    "echo_declined",
    "echo_expired",
    "conversation_unlocked",
}


def log_interaction_event(
    db,
    *,
    event_type: str,
    actor_id: str,
    target_id: str | None = None,
    payload: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> None:
    payload = payload or {}
    db.execute(
        text(
            """
            INSERT INTO interaction_event (id, event_type, actor_id, target_id, payload, created_at)
            VALUES (:id, :event_type, :actor_id, :target_id, :payload, :created_at)
            """
        ),
        {
            "id": str(uuid.uuid4()),
            "event_type": event_type,
            "actor_id": actor_id,
            "target_id": target_id,
            "payload": json.dumps(payload, default=str),
            "created_at": now or datetime.now(timezone.utc),
        },
    )


def publish_events(events: Iterable[InteractionEventData]) -> int:
    """Persist notification events in their own session.

    Runs after the response has been sent; a failure here is logged and
    never reaches the gift transaction that produced the events.
    """
    events = [e for e in events if e.event_type in EVENT_TYPES]
    if not events:
        return 0
    try:
        with SessionLocal() as db:
            for e in events:
                log_interaction_event(
                    db,
                    event_type=e.event_type,
                    actor_id=e.actor_id,
                    target_id=e.target_id,
                    payload=e.payload,
                )
            db.commit()
    except Exception:
        logger.exception("[events] failed to publish %d event(s)", len(events))
        return 0
    return len(events)


def list_events_for_target(db, target_id: str, limit: int = 50) -> list[dict[str, Any]]:
    rows = db.execute(
        text(
            """
            SELECT id, event_type, actor_id, target_id, payload, created_at
            FROM interaction_event
            WHERE target_id=:target_id
            ORDER BY created_at DESC
            LIMIT :limit
            """
        ),
        {"target_id": target_id, "limit": limit},
    ).mappings().all()
    out = []
    for r in rows:
        item = dict(r)
        try:
            item["payload"] = json.loads(item.get("payload") or "{}")
        except (TypeError, ValueError):
            item["payload"] = {}
        out.append(item)
    return out
