import os
import threading
import uuid

import pytest
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import sessionmaker

from sparkmatch import config
from sparkmatch.database import Base
from sparkmatch.outcomes import EchoOutcome, LikeOutcome, SparkOutcome
from sparkmatch.services import ledger
from sparkmatch.services.messaging_gate import can_open_conversation
from sparkmatch.services.seeding import upsert_actor

from conftest import NOW

WORKERS = 6


def _sqlite_engine(path):
    eng = create_engine(
        f"sqlite:///{path}",
        connect_args={"check_same_thread": False, "timeout": 30},
        future=True,
    )

    # Writers take the database lock when the transaction starts, so
    # concurrent sessions queue on the busy timeout instead of failing.
    @event.listens_for(eng, "connect")
    def _no_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return eng


@pytest.fixture(params=["sqlite", "postgresql"])
def shared_factory(request, tmp_path):
    if request.param == "sqlite":
        eng = _sqlite_engine(tmp_path / "spark.db")
    else:
        url = os.getenv("TEST_POSTGRES_URL")
        if not url:
            pytest.skip("TEST_POSTGRES_URL not set")
        eng = create_engine(url, future=True)
    Base.metadata.create_all(eng)
    yield sessionmaker(bind=eng, autoflush=False, autocommit=False, future=True)
    Base.metadata.drop_all(eng)
    eng.dispose()


def _actor(factory) -> str:
    with factory() as db:
        actor_id = upsert_actor(db, id=str(uuid.uuid4()), gender="man", seeking_gender="woman")
        db.commit()
    return actor_id


def _race(factory, fn):
    barrier = threading.Barrier(WORKERS)
    results, errors = [], []
    lock = threading.Lock()

    def worker(i):
        with factory() as db:
            barrier.wait()
            try:
                outcome = fn(db, i)
            except Exception as exc:  # surfaced through the assertion below
                with lock:
                    errors.append(exc)
                return
            with lock:
                results.append(outcome)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(WORKERS)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    assert errors == []
    assert len(results) == WORKERS
    return results


def _scalar(factory, sql: str, **params) -> int:
    with factory() as db:
        return int(db.execute(text(sql), params).scalar() or 0)


def test_parallel_sparks_never_overdraw(shared_factory):
    sender = _actor(shared_factory)
    targets = [_actor(shared_factory) for _ in range(WORKERS)]
    with shared_factory() as db:
        ledger.credit_periodic_stock(db, sender, "spark", 1, NOW)

    results = _race(shared_factory, lambda db, i: ledger.send_spark(db, sender, targets[i], NOW))

    outcomes = sorted(r.outcome.value for r in results)
    assert outcomes.count(SparkOutcome.SENT.value) == 1
    assert outcomes.count(SparkOutcome.INSUFFICIENT_STOCK.value) == WORKERS - 1
    with shared_factory() as db:
        assert ledger.get_stock(db, sender)["spark"]["total"] == 0
    assert _scalar(shared_factory, "SELECT COUNT(*) FROM spark WHERE sender_id=:s", s=sender) == 1
    assert _scalar(
        shared_factory, "SELECT COUNT(*) FROM gift_stock_movement WHERE actor_id=:s AND delta < 0", s=sender
    ) == 1


def test_duplicate_sparks_to_one_receiver_keep_one_active(shared_factory):
    sender, receiver = _actor(shared_factory), _actor(shared_factory)
    with shared_factory() as db:
        ledger.credit_periodic_stock(db, sender, "spark", 5, NOW)

    results = _race(shared_factory, lambda db, i: ledger.send_spark(db, sender, receiver, NOW))

    outcomes = [r.outcome for r in results]
    assert outcomes.count(SparkOutcome.SENT) == 1
    assert outcomes.count(SparkOutcome.ALREADY_SENT) == WORKERS - 1
    assert _scalar(shared_factory, "SELECT COUNT(*) FROM spark WHERE status='active'") == 1
    with shared_factory() as db:
        assert ledger.get_stock(db, sender)["spark"]["total"] == 4


def test_duplicate_echo_offers_debit_once(shared_factory):
    sender, receiver = _actor(shared_factory), _actor(shared_factory)
    with shared_factory() as db:
        ledger.credit_periodic_stock(db, sender, "spark", 1, NOW)
        ledger.credit_periodic_stock(db, sender, "echo", 5, NOW)
        ledger.send_spark(db, sender, receiver, NOW)

    results = _race(shared_factory, lambda db, i: ledger.offer_echo(db, sender, receiver, NOW))

    outcomes = [r.outcome for r in results]
    assert outcomes.count(EchoOutcome.OFFERED) == 1
    assert outcomes.count(EchoOutcome.ALREADY_OFFERED) == WORKERS - 1
    assert _scalar(shared_factory, "SELECT COUNT(*) FROM echo_offer") == 1
    with shared_factory() as db:
        assert ledger.get_stock(db, sender)["echo"]["total"] == 4


def test_duplicate_likes_persist_once(shared_factory):
    sender, receiver = _actor(shared_factory), _actor(shared_factory)

    results = _race(shared_factory, lambda db, i: ledger.send_like(db, sender, receiver, NOW))

    outcomes = [r.outcome for r in results]
    assert outcomes.count(LikeOutcome.CREATED) == 1
    assert outcomes.count(LikeOutcome.ALREADY_EXISTS) == WORKERS - 1
    assert len({r.record_id for r in results}) == 1
    assert _scalar(shared_factory, "SELECT COUNT(*) FROM gift_like") == 1


def test_duplicate_opens_consume_one_slot(shared_factory):
    opener, target = _actor(shared_factory), _actor(shared_factory)

    results = _race(shared_factory, lambda db, i: can_open_conversation(db, opener, target, NOW))

    assert all(d.allowed for d in results)
    assert sum(1 for d in results if d.first_admission) == 1
    assert _scalar(shared_factory, "SELECT COUNT(*) FROM open_free_conv_log") == 1


def test_parallel_opens_respect_weekly_limit(shared_factory, monkeypatch):
    monkeypatch.setattr(config, "QUOTA_WEEKLY_LIMIT", 2)
    opener = _actor(shared_factory)
    targets = [_actor(shared_factory) for _ in range(WORKERS)]

    results = _race(shared_factory, lambda db, i: can_open_conversation(db, opener, targets[i], NOW))

    assert sum(1 for d in results if d.allowed) == 2
    assert _scalar(shared_factory, "SELECT COUNT(*) FROM open_free_conv_log WHERE opener_id=:o", o=opener) == 2
