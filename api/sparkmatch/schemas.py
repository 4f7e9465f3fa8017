from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class TargetRequest(BaseModel):
    target_id: str


class GiftResponse(BaseModel):
    outcome: str
    ok: bool
    message: str
    record_id: str | None = None
    stock_left: int | None = None


class StockComponent(BaseModel):
    periodic: int
    purchased: int
    total: int


class StockResponse(BaseModel):
    spark: StockComponent
    echo: StockComponent


class DiscoveryCandidate(BaseModel):
    id: str
    age: int | None = None
    distance_m: float | None = None
    created_at: datetime | None = None


class DiscoveryResponse(BaseModel):
    tier: str | None
    candidates: list[DiscoveryCandidate] = Field(default_factory=list)


class VisibilityResponse(BaseModel):
    candidate_id: str
    visible: bool


class QuotaResponse(BaseModel):
    used_week: int
    used_month: int
    remaining_week: int
    remaining_month: int
    exhausted_window: str | None = None


class GateResponse(BaseModel):
    allowed: bool
    reason: str
    message: str
    first_admission: bool = False
    thread_id: str | None = None
    quota: QuotaResponse | None = None


class MessageRequest(BaseModel):
    body: str = Field(min_length=1, max_length=4000)


class BlockRequest(BaseModel):
    blocked_user_id: str


class StockCreditRequest(BaseModel):
    actor_id: str
    currency: Literal["spark", "echo"]
    amount: int = Field(gt=0)
    component: Literal["periodic", "purchased"] = "periodic"


class StockRenewRequest(BaseModel):
    actor_id: str
    currency: Literal["spark", "echo"]
    amount: int = Field(ge=0)


class ExpirySweepResponse(BaseModel):
    sparks_expired: int
    echoes_expired: int


class IntegrityResponse(BaseModel):
    ok: bool
    findings: dict[str, list[dict[str, Any]]]
