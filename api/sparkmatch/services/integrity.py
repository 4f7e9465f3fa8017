import logging
from typing import Any

from sqlalchemy import text

logger = logging.getLogger(__name__)

CHECKS: dict[str, str] = {
    "negative_stock": """
        SELECT actor_id, currency, periodic_left, purchased_left
        FROM gift_stock
        WHERE periodic_left < 0 OR purchased_left < 0
    """,
    "duplicate_active_spark": """
        SELECT sender_id, receiver_id, COUNT(*) AS n
        FROM spark
        WHERE status = 'active'
        GROUP BY sender_id, receiver_id
        HAVING COUNT(*) > 1
    """,
    "duplicate_offered_echo": """
        SELECT sender_id, receiver_id, COUNT(*) AS n
        FROM echo_offer
        WHERE status = 'offered'
        GROUP BY sender_id, receiver_id
        HAVING COUNT(*) > 1
    """,
    "duplicate_quota_pair": """
        SELECT opener_id, target_id, COUNT(*) AS n
        FROM open_free_conv_log
        GROUP BY opener_id, target_id
        HAVING COUNT(*) > 1
    """,
    "echo_without_spark": """
        SELECT e.id AS offer_id, e.sender_id, e.receiver_id
        FROM echo_offer e
        LEFT JOIN spark s ON s.id = e.spark_id
        WHERE s.id IS NULL
    """,
}


def audit_integrity(db) -> dict[str, list[dict[str, Any]]]:
    """Scan for states the schema and transactions should make impossible.

    Any finding is a bug upstream and is logged at ERROR.
    """
    findings: dict[str, list[dict[str, Any]]] = {}
    for name, sql in CHECKS.items():
        rows = [dict(r) for r in db.execute(text(sql)).mappings().all()]
        findings[name] = rows
        for row in rows:
            logger.error("[integrity] %s: %s", name, row)
    return findings
