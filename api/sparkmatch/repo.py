import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import text


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def canonical_pair(user_a: str, user_b: str) -> tuple[str, str]:
    return tuple(sorted((str(user_a), str(user_b))))


def get_actor_by_id(db, actor_id: str) -> dict[str, Any] | None:
    row = db.execute(text("SELECT * FROM actor_profile WHERE id=:id"), {"id": actor_id}).mappings().first()
    return dict(row) if row else None


def actor_exists(db, actor_id: str) -> bool:
    row = db.execute(
        text("SELECT 1 FROM actor_profile WHERE id=:id AND disabled_at IS NULL"),
        {"id": actor_id},
    ).first()
    return bool(row)


def create_user_block(db, user_id: str, blocked_user_id: str, now: datetime | None = None) -> bool:
    if str(user_id) == str(blocked_user_id):
        return False
    row = db.execute(
        text(
            """
            INSERT INTO user_block (id, user_id, blocked_user_id, created_at)
            VALUES (:id, :user_id, :blocked_user_id, :created_at)
            ON CONFLICT (user_id, blocked_user_id) DO NOTHING
            RETURNING id
            """
        ),
        {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "blocked_user_id": blocked_user_id,
            "created_at": now or _now_utc(),
        },
    ).first()
    db.commit()
    return bool(row)


def remove_user_block(db, user_id: str, blocked_user_id: str) -> int:
    res = db.execute(
        text(
            """
            DELETE FROM user_block
            WHERE user_id=:user_id
              AND blocked_user_id=:blocked_user_id
            """
        ),
        {"user_id": user_id, "blocked_user_id": blocked_user_id},
    )
    db.commit()
    return int(res.rowcount or 0)


def list_user_blocks(db, user_id: str) -> list[dict[str, Any]]:
    rows = db.execute(
        text(
            """
            SELECT blocked_user_id, created_at
            FROM user_block
            WHERE user_id=:user_id
            ORDER BY created_at DESC
            """
        ),
        {"user_id": user_id},
    ).mappings().all()
    return [dict(r) for r in rows]


def get_user_chat_threads(db, user_id: str) -> list[dict[str, Any]]:
    rows = db.execute(
        text(
            """
            SELECT
              t.id,
              t.unlock_reason,
              t.created_at,
              CASE
                WHEN t.participant_a_id = :user_id THEN t.participant_b_id
                ELSE t.participant_a_id
              END AS other_user_id,
              (
                SELECT m.body
                FROM chat_message m
                WHERE m.thread_id = t.id
                ORDER BY m.created_at DESC
                LIMIT 1
              ) AS latest_message_body,
              (
                SELECT MAX(m.created_at)
                FROM chat_message m
                WHERE m.thread_id = t.id
              ) AS latest_message_at
            FROM chat_thread t
            WHERE t.participant_a_id = :user_id
               OR t.participant_b_id = :user_id
            ORDER BY COALESCE(
              (SELECT MAX(m.created_at) FROM chat_message m WHERE m.thread_id = t.id),
              t.created_at
            ) DESC
            """
        ),
        {"user_id": user_id},
    ).mappings().all()
    return [dict(r) for r in rows]


def get_thread_by_id(db, thread_id: str) -> dict[str, Any] | None:
    row = db.execute(text("SELECT * FROM chat_thread WHERE id=:id"), {"id": thread_id}).mappings().first()
    return dict(row) if row else None


def get_thread_messages(db, thread_id: str) -> list[dict[str, Any]]:
    rows = db.execute(
        text(
            """
            SELECT id, thread_id, sender_user_id, body, created_at
            FROM chat_message
            WHERE thread_id=:thread_id
            ORDER BY created_at ASC
            """
        ),
        {"thread_id": thread_id},
    ).mappings().all()
    return [dict(r) for r in rows]


def create_chat_message(db, thread_id: str, sender_user_id: str, body: str, now: datetime | None = None) -> dict[str, Any]:
    message = {
        "id": str(uuid.uuid4()),
        "thread_id": thread_id,
        "sender_user_id": sender_user_id,
        "body": body,
        "created_at": now or _now_utc(),
    }
    db.execute(
        text(
            """
            INSERT INTO chat_message (id, thread_id, sender_user_id, body, created_at)
            VALUES (:id, :thread_id, :sender_user_id, :body, :created_at)
            """
        ),
        message,
    )
    db.commit()
    return message


def ensure_chat_thread(db, user_a_id: str, user_b_id: str, unlock_reason: str, now: datetime | None = None) -> dict[str, Any]:
    a, b = canonical_pair(user_a_id, user_b_id)
    db.execute(
        text(
            """
            INSERT INTO chat_thread (id, participant_a_id, participant_b_id, unlock_reason, created_at)
            VALUES (:id, :a, :b, :unlock_reason, :created_at)
            ON CONFLICT (participant_a_id, participant_b_id) DO NOTHING
            """
        ),
        {"id": str(uuid.uuid4()), "a": a, "b": b, "unlock_reason": unlock_reason, "created_at": now or _now_utc()},
    )
    db.commit()
    row = db.execute(
        text("SELECT * FROM chat_thread WHERE participant_a_id=:a AND participant_b_id=:b"),
        {"a": a, "b": b},
    ).mappings().first()
    return dict(row)
