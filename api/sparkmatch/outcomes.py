from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class LikeOutcome(str, Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    BLOCKED = "blocked"


class SparkOutcome(str, Enum):
    SENT = "sent"
    ALREADY_SENT = "already_sent"
    INSUFFICIENT_STOCK = "insufficient_stock"
    BLOCKED = "blocked"


class WithdrawOutcome(str, Enum):
    WITHDRAWN = "withdrawn"
    NOT_FOUND = "not_found"


class EchoOutcome(str, Enum):
    OFFERED = "offered"
    ALREADY_OFFERED = "already_offered"
    HEART_REQUIRED = "heart_required"
    INSUFFICIENT_STOCK = "insufficient_stock"
    BLOCKED = "blocked"


class EchoResponseOutcome(str, Enum):
    RETURNED = "returned"
    DECLINED = "declined"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"
    BLOCKED = "blocked"


class GateReason(str, Enum):
    BLOCKED = "blocked"
    MUTUAL_SPARK = "mutual_spark"
    ECHO_RETURNED = "echo_returned"
    ENTITLEMENT = "entitlement"
    FREE_QUOTA = "free_quota"
    QUOTA_EXHAUSTED = "quota_exhausted"


@dataclass
class InteractionEventData:
    event_type: str
    actor_id: str
    target_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class GiftResult:
    outcome: Enum
    record_id: str | None = None
    stock_left: int | None = None
    events: list[InteractionEventData] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.outcome.value in {"created", "sent", "offered", "returned", "declined", "withdrawn"}


@dataclass
class QuotaStatus:
    used_week: int
    used_month: int
    remaining_week: int
    remaining_month: int

    @property
    def exhausted_window(self) -> str | None:
        if self.remaining_week <= 0:
            return "weekly"
        if self.remaining_month <= 0:
            return "monthly"
        return None


@dataclass
class GateDecision:
    allowed: bool
    reason: GateReason
    first_admission: bool = False
    quota: QuotaStatus | None = None
    events: list[InteractionEventData] = field(default_factory=list)
