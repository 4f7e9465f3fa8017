from datetime import timedelta

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from sparkmatch import repo
from sparkmatch.outcomes import EchoOutcome, EchoResponseOutcome, LikeOutcome, SparkOutcome, WithdrawOutcome
from sparkmatch.services import ledger
from sparkmatch.services.messaging_gate import can_open_conversation

from conftest import NOW


def _count(db, sql: str, **params) -> int:
    return int(db.execute(text(sql), params).scalar() or 0)


def _active_sparks(db, sender, receiver) -> int:
    return _count(
        db,
        "SELECT COUNT(*) FROM spark WHERE sender_id=:s AND receiver_id=:r AND status='active'",
        s=sender,
        r=receiver,
    )


def test_like_is_idempotent(db, make_actor):
    a, b = make_actor(), make_actor()
    first = ledger.send_like(db, a, b, NOW)
    second = ledger.send_like(db, a, b, NOW)
    assert first.outcome == LikeOutcome.CREATED
    assert second.outcome == LikeOutcome.ALREADY_EXISTS
    assert second.record_id == first.record_id
    assert _count(db, "SELECT COUNT(*) FROM gift_like") == 1


def test_spark_debits_once_and_never_overdraws(db, make_actor, give_stock):
    x, y, z = make_actor(), make_actor(), make_actor()
    give_stock(x, spark=1)

    sent = ledger.send_spark(db, x, y, NOW)
    assert sent.outcome == SparkOutcome.SENT
    assert sent.stock_left == 0
    assert [e.event_type for e in sent.events] == ["spark_sent"]

    assert ledger.send_spark(db, x, y, NOW).outcome == SparkOutcome.ALREADY_SENT
    refused = ledger.send_spark(db, x, z, NOW)
    assert refused.outcome == SparkOutcome.INSUFFICIENT_STOCK

    assert ledger.get_stock(db, x)["spark"]["total"] == 0
    assert _active_sparks(db, x, y) == 1
    assert _active_sparks(db, x, z) == 0


def test_periodic_units_spent_before_purchased(db, make_actor, give_stock):
    x, y, z = make_actor(), make_actor(), make_actor()
    give_stock(x, spark=1, purchased_spark=1)

    ledger.send_spark(db, x, y, NOW)
    assert ledger.get_stock(db, x)["spark"] == {"periodic": 0, "purchased": 1, "total": 1}
    ledger.send_spark(db, x, z, NOW)
    assert ledger.get_stock(db, x)["spark"] == {"periodic": 0, "purchased": 0, "total": 0}

    components = db.execute(
        text("SELECT component FROM gift_stock_movement WHERE actor_id=:a AND delta < 0"),
        {"a": x},
    ).scalars().all()
    assert sorted(components) == ["periodic", "purchased"]


def test_mutual_spark_emits_unlock_event(db, make_actor, give_stock):
    x, y = make_actor(), make_actor()
    give_stock(x, spark=1)
    give_stock(y, spark=1)
    ledger.send_spark(db, x, y, NOW)
    back = ledger.send_spark(db, y, x, NOW)
    assert [e.event_type for e in back.events] == ["spark_sent", "conversation_unlocked"]
    assert back.events[1].payload == {"reason": "mutual_spark"}
    assert ledger.has_mutual_spark(db, x, y, NOW) is True


def test_expired_spark_can_be_sent_again(db, make_actor, give_stock):
    x, y = make_actor(), make_actor()
    give_stock(x, spark=2)
    ledger.send_spark(db, x, y, NOW)

    later = NOW + timedelta(days=31)
    assert ledger.has_mutual_spark(db, x, y, later) is False
    again = ledger.send_spark(db, x, y, later)
    assert again.outcome == SparkOutcome.SENT
    assert _active_sparks(db, x, y) == 1
    assert _count(db, "SELECT COUNT(*) FROM spark WHERE status='expired'") == 1


def test_withdraw_then_resend(db, make_actor, give_stock):
    x, y = make_actor(), make_actor()
    give_stock(x, spark=2)
    ledger.send_spark(db, x, y, NOW)

    assert ledger.withdraw_spark(db, x, y, NOW).outcome == WithdrawOutcome.WITHDRAWN
    assert ledger.withdraw_spark(db, x, y, NOW).outcome == WithdrawOutcome.NOT_FOUND
    assert ledger.send_spark(db, x, y, NOW).outcome == SparkOutcome.SENT
    assert ledger.get_stock(db, x)["spark"]["total"] == 0


def test_gifts_refused_when_blocked(db, make_actor, give_stock):
    x, y = make_actor(), make_actor()
    give_stock(x, spark=1, echo=1)
    repo.create_user_block(db, y, x)

    assert ledger.send_like(db, x, y, NOW).outcome == LikeOutcome.BLOCKED
    assert ledger.send_spark(db, x, y, NOW).outcome == SparkOutcome.BLOCKED
    assert ledger.offer_echo(db, x, y, NOW).outcome == EchoOutcome.BLOCKED
    assert ledger.get_stock(db, x)["spark"]["total"] == 1


def test_echo_requires_active_spark_regardless_of_stock(db, make_actor, give_stock):
    x, y = make_actor(), make_actor()
    give_stock(x, echo=5)
    result = ledger.offer_echo(db, x, y, NOW)
    assert result.outcome == EchoOutcome.HEART_REQUIRED
    assert ledger.get_stock(db, x)["echo"]["total"] == 5


def test_echo_offer_then_duplicate_then_no_stock(db, make_actor, give_stock):
    x, y, z = make_actor(), make_actor(), make_actor()
    give_stock(x, spark=2, echo=1)
    ledger.send_spark(db, x, y, NOW)
    ledger.send_spark(db, x, z, NOW)

    offered = ledger.offer_echo(db, x, y, NOW)
    assert offered.outcome == EchoOutcome.OFFERED
    assert offered.stock_left == 0
    assert ledger.offer_echo(db, x, y, NOW).outcome == EchoOutcome.ALREADY_OFFERED
    assert ledger.offer_echo(db, x, z, NOW).outcome == EchoOutcome.INSUFFICIENT_STOCK
    assert _count(db, "SELECT COUNT(*) FROM echo_offer") == 1


def test_returned_echo_unlocks_without_touching_returner_stock(db, make_actor, give_stock):
    x, y = make_actor(), make_actor()
    give_stock(x, spark=1, echo=1)
    give_stock(y, echo=3)
    ledger.send_spark(db, x, y, NOW)
    ledger.offer_echo(db, x, y, NOW)
    assert ledger.get_stock(db, x)["echo"]["total"] == 0

    returned = ledger.return_echo(db, y, x, NOW + timedelta(hours=1))
    assert returned.outcome == EchoResponseOutcome.RETURNED
    assert [e.event_type for e in returned.events] == ["echo_returned", "conversation_unlocked"]
    assert ledger.get_stock(db, y)["echo"]["total"] == 3

    decision = can_open_conversation(db, x, y, NOW + timedelta(hours=2))
    assert decision.allowed is True
    assert decision.reason.value == "echo_returned"

    retried = ledger.return_echo(db, y, x, NOW + timedelta(hours=3))
    assert retried.outcome == EchoResponseOutcome.RETURNED
    assert retried.record_id == returned.record_id
    assert retried.events == []
    assert ledger.decline_echo(db, y, x, NOW).outcome == EchoResponseOutcome.NOT_FOUND


def test_decline_keeps_sender_charge(db, make_actor, give_stock):
    x, y = make_actor(), make_actor()
    give_stock(x, spark=1, echo=1)
    ledger.send_spark(db, x, y, NOW)
    ledger.offer_echo(db, x, y, NOW)

    declined = ledger.decline_echo(db, y, x, NOW)
    assert declined.outcome == EchoResponseOutcome.DECLINED
    assert ledger.decline_echo(db, y, x, NOW).outcome == EchoResponseOutcome.DECLINED
    assert ledger.return_echo(db, y, x, NOW).outcome == EchoResponseOutcome.NOT_FOUND
    assert ledger.get_stock(db, x)["echo"]["total"] == 0
    assert ledger.has_returned_echo(db, x, y) is False


def test_overdue_echo_expires_on_return_and_refunds_sender(db, make_actor, give_stock):
    x, y = make_actor(), make_actor()
    give_stock(x, spark=1, echo=1)
    ledger.send_spark(db, x, y, NOW)
    ledger.offer_echo(db, x, y, NOW)

    result = ledger.return_echo(db, y, x, NOW + timedelta(days=8))
    assert result.outcome == EchoResponseOutcome.EXPIRED
    assert ledger.get_stock(db, x)["echo"] == {"periodic": 1, "purchased": 0, "total": 1}
    status = db.execute(text("SELECT status FROM echo_offer")).scalar()
    assert status == "expired"


def test_expiry_sweep_refunds_each_echo_once(db, make_actor, give_stock):
    x, y = make_actor(), make_actor()
    give_stock(x, spark=1, echo=1)
    ledger.send_spark(db, x, y, NOW)
    ledger.offer_echo(db, x, y, NOW)

    later = NOW + timedelta(days=40)
    summary = ledger.expire_stale_gifts(db, later)
    assert summary["sparks_expired"] == 1
    assert summary["echoes_expired"] == 1
    assert [e.event_type for e in summary["events"]] == ["echo_expired"]
    assert ledger.get_stock(db, x)["echo"]["total"] == 1

    again = ledger.expire_stale_gifts(db, later)
    assert again["sparks_expired"] == 0 and again["echoes_expired"] == 0
    assert ledger.get_stock(db, x)["echo"]["total"] == 1


def test_renewal_resets_periodic_and_keeps_purchased(db, make_actor, give_stock):
    x = make_actor()
    give_stock(x, spark=3, purchased_spark=2)
    balance = ledger.renew_periodic_stock(db, x, "spark", 5, NOW)
    assert balance == 7
    assert ledger.get_stock(db, x)["spark"] == {"periodic": 5, "purchased": 2, "total": 7}
    deltas = db.execute(
        text("SELECT delta FROM gift_stock_movement WHERE actor_id=:a AND reason='periodic_renewal'"),
        {"a": x},
    ).scalars().all()
    assert deltas == [2]


def test_invalid_credit_arguments(db, make_actor):
    x = make_actor()
    with pytest.raises(ValueError):
        ledger.credit_periodic_stock(db, x, "gold", 1)
    with pytest.raises(ValueError):
        ledger.credit_purchased_stock(db, x, "spark", 0)


def test_schema_rejects_second_active_spark_for_pair(db, make_actor):
    x, y = make_actor(), make_actor()
    insert = text(
        """
        INSERT INTO spark (id, sender_id, receiver_id, status, created_at, expires_at)
        VALUES (:id, :s, :r, 'active', :now, :exp)
        """
    )
    params = {"s": x, "r": y, "now": NOW, "exp": NOW + timedelta(days=1)}
    db.execute(insert, {"id": "spark-1", **params})
    with pytest.raises(IntegrityError):
        db.execute(insert, {"id": "spark-2", **params})
    db.rollback()


def test_schema_rejects_negative_stock(db, make_actor):
    x = make_actor()
    with pytest.raises(IntegrityError):
        db.execute(
            text(
                """
                INSERT INTO gift_stock (actor_id, currency, periodic_left, purchased_left, updated_at)
                VALUES (:a, 'spark', -1, 0, :now)
                """
            ),
            {"a": x, "now": NOW},
        )
    db.rollback()


def test_withdrawing_an_overdue_spark_expires_it(db, make_actor, give_stock):
    x, y = make_actor(), make_actor()
    give_stock(x, spark=1)
    ledger.send_spark(db, x, y, NOW)

    result = ledger.withdraw_spark(db, x, y, NOW + timedelta(days=31))
    assert result.outcome == WithdrawOutcome.NOT_FOUND
    assert db.execute(text("SELECT status FROM spark")).scalar() == "expired"
