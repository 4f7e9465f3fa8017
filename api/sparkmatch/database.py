import os
from datetime import datetime, timezone

from sqlalchemy import create_engine, text
from sqlalchemy.orm import declarative_base, sessionmaker

DATABASE_URL = os.getenv("DATABASE_URL", "postgresql+psycopg2://postgres:postgres@db:5432/spark_match")

engine = create_engine(DATABASE_URL, future=True, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
Base = declarative_base()


def is_postgres(db) -> bool:
    return db.get_bind().dialect.name == "postgresql"


def for_update(db) -> str:
    # SQLite serialises writers on its own and has no row locks.
    return " FOR UPDATE" if is_postgres(db) else ""


def apply_statement_timeout(db, timeout_ms: int) -> None:
    if timeout_ms > 0 and is_postgres(db):
        db.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))


def parse_db_datetime(value) -> datetime | None:
    """Normalise a timestamp column value to an aware UTC datetime.

    SQLite hands timestamps back as ISO strings; PostgreSQL as datetimes.
    """
    if isinstance(value, str) and value.strip():
        try:
            value = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
