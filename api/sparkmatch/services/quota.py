"""Rolling free-conversation quota.

Each (opener, target) pair costs at most one slot, recorded in
``open_free_conv_log``. Once either side has paid for the pair, both
sides have continued access. Windows are rolling: a slot used N days ago stops
counting once N exceeds the window length.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import text

from .. import config
from ..outcomes import QuotaStatus

logger = logging.getLogger(__name__)


def _window_starts(now: datetime) -> tuple[datetime, datetime]:
    return now - timedelta(days=config.QUOTA_WEEK_DAYS), now - timedelta(days=config.QUOTA_MONTH_DAYS)


def _usage(db, opener_id: str, now: datetime) -> tuple[int, int]:
    week_start, month_start = _window_starts(now)
    row = db.execute(
        text(
            """
            SELECT
              COALESCE(SUM(CASE WHEN opened_at >= :week_start THEN 1 ELSE 0 END), 0) AS used_week,
              COALESCE(SUM(CASE WHEN opened_at >= :month_start THEN 1 ELSE 0 END), 0) AS used_month
            FROM open_free_conv_log
            WHERE opener_id = :opener_id
            """
        ),
        {"opener_id": opener_id, "week_start": week_start, "month_start": month_start},
    ).mappings().first()
    return int(row["used_week"] or 0), int(row["used_month"] or 0)


def _status(used_week: int, used_month: int) -> QuotaStatus:
    return QuotaStatus(
        used_week=used_week,
        used_month=used_month,
        remaining_week=max(0, config.QUOTA_WEEKLY_LIMIT - used_week),
        remaining_month=max(0, config.QUOTA_MONTHLY_LIMIT - used_month),
    )


def quota_status(db, opener_id: str, now: datetime | None = None) -> QuotaStatus:
    return _status(*_usage(db, opener_id, now or datetime.now(timezone.utc)))


def has_consumed_slot(db, opener_id: str, target_id: str) -> bool:
    row = db.execute(
        text("SELECT 1 FROM open_free_conv_log WHERE opener_id=:opener_id AND target_id=:target_id"),
        {"opener_id": opener_id, "target_id": target_id},
    ).first()
    return bool(row)


def _lock_opener(db, opener_id: str, now: datetime) -> None:
    db.execute(
        text(
            """
            INSERT INTO messaging_quota (actor_id, last_checked_at)
            VALUES (:actor_id, :now)
            ON CONFLICT (actor_id) DO NOTHING
            """
        ),
        {"actor_id": opener_id, "now": now},
    )
    # Row lock: concurrent opens by the same actor serialise here before counting.
    db.execute(
        text("UPDATE messaging_quota SET last_checked_at=:now WHERE actor_id=:actor_id"),
        {"actor_id": opener_id, "now": now},
    )


def try_consume_free_slot(db, opener_id: str, target_id: str, now: datetime | None = None) -> tuple[bool, bool, QuotaStatus]:
    """Admit ``opener_id`` to ``target_id`` on the free quota.

    Returns ``(allowed, first_admission, status)``. The caller owns the
    transaction and commits it.
    """
    now = now or datetime.now(timezone.utc)
    if not config.QUOTA_ENFORCED:
        return True, False, _status(0, 0)

    _lock_opener(db, opener_id, now)
    if has_consumed_slot(db, opener_id, target_id) or has_consumed_slot(db, target_id, opener_id):
        return True, False, _status(*_usage(db, opener_id, now))

    status = _status(*_usage(db, opener_id, now))
    if status.exhausted_window:
        logger.debug("[gate] quota exhausted opener=%s window=%s", opener_id, status.exhausted_window)
        return False, False, status

    row = db.execute(
        text(
            """
            INSERT INTO open_free_conv_log (id, opener_id, target_id, opened_at)
            VALUES (:id, :opener_id, :target_id, :now)
            ON CONFLICT (opener_id, target_id) DO NOTHING
            RETURNING id
            """
        ),
        {"id": str(uuid.uuid4()), "opener_id": opener_id, "target_id": target_id, "now": now},
    ).first()
    status = _status(*_usage(db, opener_id, now))
    return True, bool(row), status
