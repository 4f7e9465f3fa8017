from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from .. import config
from ..database import apply_statement_timeout
from ..errors import storage_guard
from ..outcomes import GateDecision, GateReason, InteractionEventData
from .entitlements import has_unrestricted_messaging
from .ledger import has_mutual_spark, has_returned_echo
from .quota import try_consume_free_slot
from .visibility import is_blocked_either_way

logger = logging.getLogger(__name__)

EntitlementCheck = Callable[..., bool]


def can_open_conversation(
    db,
    opener_id: str,
    target_id: str,
    now: datetime | None = None,
    entitlement_check: EntitlementCheck = has_unrestricted_messaging,
) -> GateDecision:
    """Decide whether ``opener_id`` may open or continue a conversation.

    First match wins: block, mutual spark, returned echo, paid entitlement
    of either side, then the opener's free quota. Repeated calls for a pair
    already admitted on the free quota are allowed again without a new debit.
    """
    now = now or datetime.now(timezone.utc)
    with storage_guard("can_open_conversation"):
        if is_blocked_either_way(db, opener_id, target_id):
            return GateDecision(allowed=False, reason=GateReason.BLOCKED)

        if has_mutual_spark(db, opener_id, target_id, now):
            return GateDecision(allowed=True, reason=GateReason.MUTUAL_SPARK)

        if has_returned_echo(db, opener_id, target_id):
            return GateDecision(allowed=True, reason=GateReason.ECHO_RETURNED)

        if entitlement_check(db, opener_id, now) or entitlement_check(db, target_id, now):
            return GateDecision(allowed=True, reason=GateReason.ENTITLEMENT)

        apply_statement_timeout(db, config.LEDGER_STATEMENT_TIMEOUT_MS)
        allowed, first, status = try_consume_free_slot(db, opener_id, target_id, now)
        db.commit()

    if not allowed:
        logger.info("[gate] deny opener=%s target=%s window=%s", opener_id, target_id, status.exhausted_window)
        return GateDecision(allowed=False, reason=GateReason.QUOTA_EXHAUSTED, quota=status)

    events = []
    if first:
        events.append(
            InteractionEventData(
                event_type="conversation_unlocked",
                actor_id=opener_id,
                target_id=target_id,
                payload={"reason": GateReason.FREE_QUOTA.value},
            )
        )
        logger.info("[gate] free slot consumed opener=%s target=%s", opener_id, target_id)
    return GateDecision(allowed=True, reason=GateReason.FREE_QUOTA, first_admission=first, quota=status, events=events)
