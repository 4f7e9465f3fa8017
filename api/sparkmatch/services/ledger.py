from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import text

from ..config import ECHO_OFFER_TTL_DAYS, LEDGER_STATEMENT_TIMEOUT_MS, SPARK_TTL_DAYS
from ..database import apply_statement_timeout, for_update, parse_db_datetime
from ..errors import storage_guard
from ..outcomes import (
    EchoOutcome,
    EchoResponseOutcome,
    GiftResult,
    InteractionEventData,
    LikeOutcome,
    SparkOutcome,
    WithdrawOutcome,
)
from .state_machine import transition_echo, transition_spark
from .visibility import is_blocked_either_way

logger = logging.getLogger(__name__)

CURRENCIES = ("spark", "echo")
COMPONENT_COLUMNS = {"periodic": "periodic_left", "purchased": "purchased_left"}
# Periodic units lapse at renewal, so they are spent first.
DEBIT_ORDER = ("periodic", "purchased")


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _check_currency(currency: str) -> str:
    c = str(currency or "").strip().lower()
    if c not in CURRENCIES:
        raise ValueError(f"Unknown currency: {currency}")
    return c


def _begin(db) -> None:
    apply_statement_timeout(db, LEDGER_STATEMENT_TIMEOUT_MS)


# ---------------------------------------------------------------------------
# Stock
# ---------------------------------------------------------------------------


def _ensure_stock_row(db, actor_id: str, currency: str, now: datetime) -> None:
    db.execute(
        text(
            """
            INSERT INTO gift_stock (actor_id, currency, periodic_left, purchased_left, updated_at)
            VALUES (:actor_id, :currency, 0, 0, :now)
            ON CONFLICT (actor_id, currency) DO NOTHING
            """
        ),
        {"actor_id": actor_id, "currency": currency, "now": now},
    )


def _record_movement(
    db,
    *,
    actor_id: str,
    currency: str,
    component: str,
    delta: int,
    reason: str,
    ref_id: str | None,
    now: datetime,
) -> None:
    db.execute(
        text(
            """
            INSERT INTO gift_stock_movement (id, actor_id, currency, component, delta, reason, ref_id, created_at)
            VALUES (:id, :actor_id, :currency, :component, :delta, :reason, :ref_id, :now)
            """
        ),
        {
            "id": _new_id(),
            "actor_id": actor_id,
            "currency": currency,
            "component": component,
            "delta": delta,
            "reason": reason,
            "ref_id": ref_id,
            "now": now,
        },
    )


def _debit_one(db, actor_id: str, currency: str, now: datetime) -> tuple[str, int] | None:
    """Take one unit if available; returns (component, balance after) or None.

    The guard lives in the UPDATE itself so two concurrent debits can never
    both pass a stale read of the balance.
    """
    for component in DEBIT_ORDER:
        column = COMPONENT_COLUMNS[component]
        row = db.execute(
            text(
                f"""
                UPDATE gift_stock
                SET {column} = {column} - 1, updated_at = :now
                WHERE actor_id = :actor_id AND currency = :currency AND {column} > 0
                RETURNING periodic_left + purchased_left AS balance
                """
            ),
            {"actor_id": actor_id, "currency": currency, "now": now},
        ).mappings().first()
        if row:
            return component, int(row["balance"])
    return None


def _credit(
    db,
    *,
    actor_id: str,
    currency: str,
    component: str,
    amount: int,
    reason: str,
    ref_id: str | None,
    now: datetime,
) -> int:
    column = COMPONENT_COLUMNS[component]
    _ensure_stock_row(db, actor_id, currency, now)
    row = db.execute(
        text(
            f"""
            UPDATE gift_stock
            SET {column} = {column} + :amount, updated_at = :now
            WHERE actor_id = :actor_id AND currency = :currency
            RETURNING periodic_left + purchased_left AS balance
            """
        ),
        {"actor_id": actor_id, "currency": currency, "amount": amount, "now": now},
    ).mappings().first()
    _record_movement(
        db,
        actor_id=actor_id,
        currency=currency,
        component=component,
        delta=amount,
        reason=reason,
        ref_id=ref_id,
        now=now,
    )
    return int(row["balance"])


def _refund(db, *, actor_id: str, currency: str, ref_id: str, reason: str, now: datetime) -> int:
    row = db.execute(
        text(
            """
            SELECT component
            FROM gift_stock_movement
            WHERE actor_id=:actor_id AND currency=:currency AND ref_id=:ref_id AND delta < 0
            ORDER BY created_at ASC
            LIMIT 1
            """
        ),
        {"actor_id": actor_id, "currency": currency, "ref_id": ref_id},
    ).mappings().first()
    component = str(row["component"]) if row else "purchased"
    if component not in COMPONENT_COLUMNS:
        component = "purchased"
    return _credit(
        db,
        actor_id=actor_id,
        currency=currency,
        component=component,
        amount=1,
        reason=reason,
        ref_id=ref_id,
        now=now,
    )


def get_stock(db, actor_id: str) -> dict[str, dict[str, int]]:
    rows = db.execute(
        text("SELECT currency, periodic_left, purchased_left FROM gift_stock WHERE actor_id=:actor_id"),
        {"actor_id": actor_id},
    ).mappings().all()
    out = {c: {"periodic": 0, "purchased": 0, "total": 0} for c in CURRENCIES}
    for r in rows:
        periodic = int(r["periodic_left"] or 0)
        purchased = int(r["purchased_left"] or 0)
        out[str(r["currency"])] = {"periodic": periodic, "purchased": purchased, "total": periodic + purchased}
    return out


def credit_periodic_stock(db, actor_id: str, currency: str, amount: int, now: datetime | None = None) -> int:
    currency = _check_currency(currency)
    if int(amount) <= 0:
        raise ValueError("amount must be positive")
    now = now or _now_utc()
    with storage_guard("credit_periodic_stock"):
        _begin(db)
        balance = _credit(
            db,
            actor_id=actor_id,
            currency=currency,
            component="periodic",
            amount=int(amount),
            reason="periodic_credit",
            ref_id=None,
            now=now,
        )
        db.commit()
    logger.info("[ledger] periodic credit actor=%s currency=%s amount=%d balance=%d", actor_id, currency, amount, balance)
    return balance


def credit_purchased_stock(db, actor_id: str, currency: str, amount: int, now: datetime | None = None) -> int:
    currency = _check_currency(currency)
    if int(amount) <= 0:
        raise ValueError("amount must be positive")
    now = now or _now_utc()
    with storage_guard("credit_purchased_stock"):
        _begin(db)
        balance = _credit(
            db,
            actor_id=actor_id,
            currency=currency,
            component="purchased",
            amount=int(amount),
            reason="purchase",
            ref_id=None,
            now=now,
        )
        db.commit()
    logger.info("[ledger] purchase credit actor=%s currency=%s amount=%d balance=%d", actor_id, currency, amount, balance)
    return balance


def renew_periodic_stock(db, actor_id: str, currency: str, amount: int, now: datetime | None = None) -> int:
    """Reset the periodic component to ``amount``; purchased units are untouched."""
    currency = _check_currency(currency)
    if int(amount) < 0:
        raise ValueError("amount must not be negative")
    now = now or _now_utc()
    with storage_guard("renew_periodic_stock"):
        _begin(db)
        _ensure_stock_row(db, actor_id, currency, now)
        current = db.execute(
            text(
                "SELECT periodic_left FROM gift_stock WHERE actor_id=:actor_id AND currency=:currency"
                + for_update(db)
            ),
            {"actor_id": actor_id, "currency": currency},
        ).mappings().first()
        previous = int(current["periodic_left"] or 0)
        row = db.execute(
            text(
                """
                UPDATE gift_stock
                SET periodic_left = :amount, updated_at = :now
                WHERE actor_id = :actor_id AND currency = :currency
                RETURNING periodic_left + purchased_left AS balance
                """
            ),
            {"actor_id": actor_id, "currency": currency, "amount": int(amount), "now": now},
        ).mappings().first()
        if int(amount) != previous:
            _record_movement(
                db,
                actor_id=actor_id,
                currency=currency,
                component="periodic",
                delta=int(amount) - previous,
                reason="periodic_renewal",
                ref_id=None,
                now=now,
            )
        db.commit()
    return int(row["balance"])


# ---------------------------------------------------------------------------
# Gift state lookups
# ---------------------------------------------------------------------------


def _active_spark_id(db, sender_id: str, receiver_id: str, now: datetime) -> str | None:
    row = db.execute(
        text(
            """
            SELECT id FROM spark
            WHERE sender_id=:sender_id AND receiver_id=:receiver_id
              AND status='active' AND expires_at > :now
            LIMIT 1
            """
        ),
        {"sender_id": sender_id, "receiver_id": receiver_id, "now": now},
    ).mappings().first()
    return str(row["id"]) if row else None


def _close_spark(db, sender_id: str, receiver_id: str, action: str, now: datetime) -> tuple[str | None, str]:
    """Apply ``action`` to the pair's active spark.

    Returns ``(spark_id, status)`` where status is the state the spark was
    moved to, or ``"active"`` when nothing changed.
    """
    row = db.execute(
        text(
            """
            SELECT id, status, expires_at
            FROM spark
            WHERE sender_id=:sender_id AND receiver_id=:receiver_id AND status='active'
            LIMIT 1
            """
            + for_update(db)
        ),
        {"sender_id": sender_id, "receiver_id": receiver_id},
    ).mappings().first()
    if not row:
        return None, "active"
    spark_id = str(row["id"])
    target = transition_spark(str(row["status"]), action, now, parse_db_datetime(row["expires_at"]) or now)
    if target == "active":
        return spark_id, target
    closed = db.execute(
        text(
            """
            UPDATE spark
            SET status=:status, closed_at=:now
            WHERE id=:id AND status='active'
            RETURNING id
            """
        ),
        {"id": spark_id, "status": target, "now": now},
    ).first()
    return spark_id, (target if closed else "active")


def _expire_stale_spark(db, sender_id: str, receiver_id: str, now: datetime) -> bool:
    _, status = _close_spark(db, sender_id, receiver_id, "check", now)
    return status == "expired"


def has_mutual_spark(db, user_a: str, user_b: str, now: datetime | None = None) -> bool:
    row = db.execute(
        text(
            """
            SELECT COUNT(DISTINCT sender_id) AS directions
            FROM spark
            WHERE status='active' AND expires_at > :now
              AND ((sender_id=:a AND receiver_id=:b) OR (sender_id=:b AND receiver_id=:a))
            """
        ),
        {"a": user_a, "b": user_b, "now": now or _now_utc()},
    ).mappings().first()
    return bool(row) and int(row["directions"] or 0) >= 2


def has_returned_echo(db, user_a: str, user_b: str) -> bool:
    row = db.execute(
        text(
            """
            SELECT 1 FROM echo_offer
            WHERE status='returned'
              AND ((sender_id=:a AND receiver_id=:b) OR (sender_id=:b AND receiver_id=:a))
            LIMIT 1
            """
        ),
        {"a": user_a, "b": user_b},
    ).first()
    return bool(row)


def _expire_offers(
    db,
    now: datetime,
    sender_id: str | None = None,
    receiver_id: str | None = None,
) -> list[dict[str, Any]]:
    """Mark overdue ``offered`` echoes expired and refund their senders."""
    rows = db.execute(
        text(
            """
            SELECT id, sender_id, receiver_id
            FROM echo_offer
            WHERE status='offered' AND expires_at <= :now
              AND (:sender_id IS NULL OR sender_id = :sender_id)
              AND (:receiver_id IS NULL OR receiver_id = :receiver_id)
            """
            + for_update(db)
        ),
        {"now": now, "sender_id": sender_id, "receiver_id": receiver_id},
    ).mappings().all()
    expired: list[dict[str, Any]] = []
    for r in rows:
        if _close_offer(db, str(r["id"]), "expired", now):
            _refund(db, actor_id=str(r["sender_id"]), currency="echo", ref_id=str(r["id"]), reason="echo_expired_refund", now=now)
            expired.append(dict(r))
    return expired


def _close_offer(db, offer_id: str, status: str, now: datetime) -> bool:
    row = db.execute(
        text(
            """
            UPDATE echo_offer
            SET status=:status, responded_at=:now
            WHERE id=:id AND status='offered'
            RETURNING id
            """
        ),
        {"id": offer_id, "status": status, "now": now},
    ).first()
    return bool(row)


def _event(event_type: str, actor_id: str, target_id: str | None, **payload: Any) -> InteractionEventData:
    return InteractionEventData(event_type=event_type, actor_id=actor_id, target_id=target_id, payload=payload)


# ---------------------------------------------------------------------------
# Gift operations
# ---------------------------------------------------------------------------


def send_like(db, sender_id: str, receiver_id: str, now: datetime | None = None) -> GiftResult:
    now = now or _now_utc()
    with storage_guard("send_like"):
        if is_blocked_either_way(db, sender_id, receiver_id):
            return GiftResult(LikeOutcome.BLOCKED)
        like_id = _new_id()
        row = db.execute(
            text(
                """
                INSERT INTO gift_like (id, sender_id, receiver_id, created_at)
                VALUES (:id, :sender_id, :receiver_id, :now)
                ON CONFLICT (sender_id, receiver_id) DO NOTHING
                RETURNING id
                """
            ),
            {"id": like_id, "sender_id": sender_id, "receiver_id": receiver_id, "now": now},
        ).first()
        db.commit()
        if row:
            logger.debug("[ledger] like created sender=%s receiver=%s", sender_id, receiver_id)
            return GiftResult(LikeOutcome.CREATED, record_id=like_id)
        existing = db.execute(
            text("SELECT id FROM gift_like WHERE sender_id=:sender_id AND receiver_id=:receiver_id"),
            {"sender_id": sender_id, "receiver_id": receiver_id},
        ).mappings().first()
    return GiftResult(LikeOutcome.ALREADY_EXISTS, record_id=str(existing["id"]) if existing else None)


def send_spark(
    db,
    sender_id: str,
    receiver_id: str,
    now: datetime | None = None,
    ttl_days: int = SPARK_TTL_DAYS,
) -> GiftResult:
    """Debit one spark and create the active spark in one transaction.

    The record is inserted first so the partial unique index decides the
    duplicate race; the loser sees ``already_sent`` before any stock moves.
    """
    now = now or _now_utc()
    with storage_guard("send_spark"):
        _begin(db)
        if is_blocked_either_way(db, sender_id, receiver_id):
            db.rollback()
            return GiftResult(SparkOutcome.BLOCKED)

        _expire_stale_spark(db, sender_id, receiver_id, now)
        spark_id = _new_id()
        row = db.execute(
            text(
                """
                INSERT INTO spark (id, sender_id, receiver_id, status, created_at, expires_at)
                VALUES (:id, :sender_id, :receiver_id, 'active', :now, :expires_at)
                ON CONFLICT DO NOTHING
                RETURNING id
                """
            ),
            {
                "id": spark_id,
                "sender_id": sender_id,
                "receiver_id": receiver_id,
                "now": now,
                "expires_at": now + timedelta(days=ttl_days),
            },
        ).first()
        if not row:
            existing = _active_spark_id(db, sender_id, receiver_id, now)
            db.commit()
            return GiftResult(SparkOutcome.ALREADY_SENT, record_id=existing)

        debit = _debit_one(db, sender_id, "spark", now)
        if debit is None:
            db.rollback()
            logger.debug("[ledger] spark refused, no stock sender=%s", sender_id)
            return GiftResult(SparkOutcome.INSUFFICIENT_STOCK, stock_left=0)
        component, balance = debit
        _record_movement(
            db,
            actor_id=sender_id,
            currency="spark",
            component=component,
            delta=-1,
            reason="spark_sent",
            ref_id=spark_id,
            now=now,
        )
        mutual = has_mutual_spark(db, sender_id, receiver_id, now)
        db.commit()

    events = [_event("spark_sent", sender_id, receiver_id, spark_id=spark_id)]
    if mutual:
        events.append(_event("conversation_unlocked", sender_id, receiver_id, reason="mutual_spark"))
    logger.info("[ledger] spark sent sender=%s receiver=%s mutual=%s balance=%d", sender_id, receiver_id, mutual, balance)
    return GiftResult(SparkOutcome.SENT, record_id=spark_id, stock_left=balance, events=events)


def withdraw_spark(db, sender_id: str, receiver_id: str, now: datetime | None = None) -> GiftResult:
    now = now or _now_utc()
    with storage_guard("withdraw_spark"):
        _begin(db)
        spark_id, status = _close_spark(db, sender_id, receiver_id, "withdraw", now)
        db.commit()
    if status != "withdrawn":
        return GiftResult(WithdrawOutcome.NOT_FOUND)
    logger.info("[ledger] spark withdrawn sender=%s receiver=%s", sender_id, receiver_id)
    return GiftResult(WithdrawOutcome.WITHDRAWN, record_id=spark_id)


def offer_echo(
    db,
    sender_id: str,
    receiver_id: str,
    now: datetime | None = None,
    ttl_days: int = ECHO_OFFER_TTL_DAYS,
) -> GiftResult:
    now = now or _now_utc()
    with storage_guard("offer_echo"):
        _begin(db)
        if is_blocked_either_way(db, sender_id, receiver_id):
            db.rollback()
            return GiftResult(EchoOutcome.BLOCKED)

        _expire_stale_spark(db, sender_id, receiver_id, now)
        spark_id = _active_spark_id(db, sender_id, receiver_id, now)
        if not spark_id:
            db.commit()
            return GiftResult(EchoOutcome.HEART_REQUIRED)

        _expire_offers(db, now, sender_id=sender_id, receiver_id=receiver_id)
        offer_id = _new_id()
        row = db.execute(
            text(
                """
                INSERT INTO echo_offer (id, sender_id, receiver_id, spark_id, status, created_at, expires_at)
                VALUES (:id, :sender_id, :receiver_id, :spark_id, 'offered', :now, :expires_at)
                ON CONFLICT DO NOTHING
                RETURNING id
                """
            ),
            {
                "id": offer_id,
                "sender_id": sender_id,
                "receiver_id": receiver_id,
                "spark_id": spark_id,
                "now": now,
                "expires_at": now + timedelta(days=ttl_days),
            },
        ).first()
        if not row:
            db.commit()
            return GiftResult(EchoOutcome.ALREADY_OFFERED)

        debit = _debit_one(db, sender_id, "echo", now)
        if debit is None:
            db.rollback()
            return GiftResult(EchoOutcome.INSUFFICIENT_STOCK, stock_left=0)
        component, balance = debit
        _record_movement(
            db,
            actor_id=sender_id,
            currency="echo",
            component=component,
            delta=-1,
            reason="echo_offered",
            ref_id=offer_id,
            now=now,
        )
        db.commit()

    logger.info("[ledger] echo offered sender=%s receiver=%s balance=%d", sender_id, receiver_id, balance)
    return GiftResult(
        EchoOutcome.OFFERED,
        record_id=offer_id,
        stock_left=balance,
        events=[_event("echo_offered", sender_id, receiver_id, offer_id=offer_id)],
    )


RESPONSE_STATES = {"return": "returned", "decline": "declined"}


def _already_settled(db, receiver_id: str, sender_id: str, action: str) -> GiftResult | None:
    """A retried response finds the latest offer already in the wanted state."""
    row = db.execute(
        text(
            """
            SELECT id, status
            FROM echo_offer
            WHERE sender_id=:sender_id AND receiver_id=:receiver_id
            ORDER BY created_at DESC
            LIMIT 1
            """
        ),
        {"sender_id": sender_id, "receiver_id": receiver_id},
    ).mappings().first()
    if not row or str(row["status"]) != RESPONSE_STATES[action]:
        return None
    outcome = EchoResponseOutcome.RETURNED if action == "return" else EchoResponseOutcome.DECLINED
    return GiftResult(outcome, record_id=str(row["id"]))


def _respond_to_echo(db, receiver_id: str, sender_id: str, action: str, now: datetime) -> GiftResult:
    if is_blocked_either_way(db, sender_id, receiver_id):
        db.rollback()
        return GiftResult(EchoResponseOutcome.BLOCKED)

    offer = db.execute(
        text(
            """
            SELECT id, status, expires_at
            FROM echo_offer
            WHERE sender_id=:sender_id AND receiver_id=:receiver_id AND status='offered'
            ORDER BY created_at DESC
            LIMIT 1
            """
            + for_update(db)
        ),
        {"sender_id": sender_id, "receiver_id": receiver_id},
    ).mappings().first()
    if not offer:
        settled = _already_settled(db, receiver_id, sender_id, action)
        db.rollback()
        return settled or GiftResult(EchoResponseOutcome.NOT_FOUND)

    offer_id = str(offer["id"])
    expires_at = parse_db_datetime(offer["expires_at"]) or now
    target = transition_echo(str(offer["status"]), action, now, expires_at)

    if target == "expired":
        if _close_offer(db, offer_id, "expired", now):
            _refund(db, actor_id=sender_id, currency="echo", ref_id=offer_id, reason="echo_expired_refund", now=now)
        db.commit()
        logger.info("[ledger] echo expired on %s offer=%s", action, offer_id)
        return GiftResult(
            EchoResponseOutcome.EXPIRED,
            record_id=offer_id,
            events=[_event("echo_expired", receiver_id, sender_id, offer_id=offer_id)],
        )

    if target == "offered":
        db.rollback()
        return GiftResult(EchoResponseOutcome.NOT_FOUND)
    if not _close_offer(db, offer_id, target, now):
        settled = _already_settled(db, receiver_id, sender_id, action)
        db.rollback()
        return settled or GiftResult(EchoResponseOutcome.NOT_FOUND)
    db.commit()

    if target == "returned":
        logger.info("[ledger] echo returned offer=%s receiver=%s", offer_id, receiver_id)
        return GiftResult(
            EchoResponseOutcome.RETURNED,
            record_id=offer_id,
            events=[
                _event("echo_returned", receiver_id, sender_id, offer_id=offer_id),
                _event("conversation_unlocked", receiver_id, sender_id, reason="echo_returned"),
            ],
        )
    return GiftResult(
        EchoResponseOutcome.DECLINED,
        record_id=offer_id,
        events=[_event("echo_declined", receiver_id, sender_id, offer_id=offer_id)],
    )


def return_echo(db, receiver_id: str, sender_id: str, now: datetime | None = None) -> GiftResult:
    """Reciprocate an echo. The returner's own stock is never touched."""
    with storage_guard("return_echo"):
        _begin(db)
        return _respond_to_echo(db, receiver_id, sender_id, "return", now or _now_utc())


def decline_echo(db, receiver_id: str, sender_id: str, now: datetime | None = None) -> GiftResult:
    with storage_guard("decline_echo"):
        _begin(db)
        return _respond_to_echo(db, receiver_id, sender_id, "decline", now or _now_utc())


def expire_stale_gifts(db, now: datetime | None = None) -> dict[str, Any]:
    now = now or _now_utc()
    with storage_guard("expire_stale_gifts"):
        _begin(db)
        sparks = db.execute(
            text(
                """
                UPDATE spark
                SET status='expired', closed_at=:now
                WHERE status='active' AND expires_at <= :now
                """
            ),
            {"now": now},
        )
        spark_count = int(sparks.rowcount or 0)
        offers = _expire_offers(db, now)
        db.commit()
    events = [_event("echo_expired", str(o["receiver_id"]), str(o["sender_id"]), offer_id=str(o["id"])) for o in offers]
    logger.info("[ledger] expiry sweep sparks=%d echoes=%d", spark_count, len(offers))
    return {"sparks_expired": spark_count, "echoes_expired": len(offers), "events": events}
