import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("JWT_SECRET", "test-secret")

import sqlite3  # noqa: E402
import uuid  # noqa: E402
from datetime import date, datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

# Same text form for every bound timestamp so string comparisons order correctly.
sqlite3.register_adapter(datetime, lambda v: v.isoformat(" "))
sqlite3.register_adapter(date, lambda v: v.isoformat())

from sparkmatch import models  # noqa: E402,F401
from sparkmatch.database import Base  # noqa: E402
from sparkmatch.services import ledger, rate_limit  # noqa: E402
from sparkmatch.services.seeding import upsert_actor, upsert_postal_centroids  # noqa: E402

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
PARIS = (48.8566, 2.3522)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_actor(db):
    def _make(**fields) -> str:
        fields.setdefault("id", str(uuid.uuid4()))
        fields.setdefault("birth_date", date(1996, 5, 1))
        fields.setdefault("gender", "man")
        fields.setdefault("seeking_gender", "woman")
        fields.setdefault("lat", PARIS[0])
        fields.setdefault("lon", PARIS[1])
        fields.setdefault("created_at", NOW - timedelta(days=60))
        actor_id = upsert_actor(db, **fields)
        db.commit()
        return actor_id

    return _make


@pytest.fixture
def give_stock(db):
    def _give(actor_id: str, spark: int = 0, echo: int = 0, purchased_spark: int = 0) -> None:
        if spark:
            ledger.credit_periodic_stock(db, actor_id, "spark", spark, NOW)
        if echo:
            ledger.credit_periodic_stock(db, actor_id, "echo", echo, NOW)
        if purchased_spark:
            ledger.credit_purchased_stock(db, actor_id, "spark", purchased_spark, NOW)

    return _give


@pytest.fixture
def centroids(db):
    upsert_postal_centroids(db)
    db.commit()


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    rate_limit.limiter.reset()
    yield
    rate_limit.limiter.reset()
