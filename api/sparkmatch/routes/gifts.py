from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from .. import repo
from ..auth.deps import get_current_actor
from ..config import RL_ECHO_LIMIT, RL_LIKE_LIMIT, RL_SPARK_LIMIT, RL_WINDOW_SECONDS
from ..deps import get_db, require_other_actor
from ..outcomes import GiftResult
from ..schemas import GiftResponse, StockResponse, TargetRequest
from ..services import ledger
from ..services.copy_templates import outcome_message
from ..services.events import list_events_for_target, publish_events
from ..services.rate_limit import actor_rate_limit

router = APIRouter()

RL_LIKE = actor_rate_limit("gift_like", RL_LIKE_LIMIT, RL_WINDOW_SECONDS)
RL_SPARK = actor_rate_limit("gift_spark", RL_SPARK_LIMIT, RL_WINDOW_SECONDS)
RL_ECHO = actor_rate_limit("gift_echo", RL_ECHO_LIMIT, RL_WINDOW_SECONDS)


def _target(db, actor: dict[str, Any], raw: str | None, field: str = "target_id") -> str:
    target_id = require_other_actor(actor["id"], raw, field)
    if not repo.actor_exists(db, target_id):
        raise HTTPException(status_code=404, detail="Profile not found")
    return target_id


def _respond(kind: str, result: GiftResult, background_tasks: BackgroundTasks) -> GiftResponse:
    if result.events:
        background_tasks.add_task(publish_events, result.events)
    return GiftResponse(
        outcome=result.outcome.value,
        ok=result.ok,
        message=outcome_message(kind, result.outcome),
        record_id=result.record_id,
        stock_left=result.stock_left,
    )


@router.post("/gifts/likes", response_model=GiftResponse, dependencies=[RL_LIKE])
def post_like(
    payload: TargetRequest,
    background_tasks: BackgroundTasks,
    db=Depends(get_db),
    actor: dict[str, Any] = Depends(get_current_actor),
) -> GiftResponse:
    target_id = _target(db, actor, payload.target_id)
    return _respond("like", ledger.send_like(db, actor["id"], target_id), background_tasks)


@router.post("/gifts/sparks", response_model=GiftResponse, dependencies=[RL_SPARK])
def post_spark(
    payload: TargetRequest,
    background_tasks: BackgroundTasks,
    db=Depends(get_db),
    actor: dict[str, Any] = Depends(get_current_actor),
) -> GiftResponse:
    target_id = _target(db, actor, payload.target_id)
    return _respond("spark", ledger.send_spark(db, actor["id"], target_id), background_tasks)


@router.delete("/gifts/sparks/{receiver_id}", response_model=GiftResponse, dependencies=[RL_SPARK])
def delete_spark(
    receiver_id: str,
    background_tasks: BackgroundTasks,
    db=Depends(get_db),
    actor: dict[str, Any] = Depends(get_current_actor),
) -> GiftResponse:
    target_id = require_other_actor(actor["id"], receiver_id, "receiver_id")
    return _respond("spark", ledger.withdraw_spark(db, actor["id"], target_id), background_tasks)


@router.post("/gifts/echoes", response_model=GiftResponse, dependencies=[RL_ECHO])
def post_echo(
    payload: TargetRequest,
    background_tasks: BackgroundTasks,
    db=Depends(get_db),
    actor: dict[str, Any] = Depends(get_current_actor),
) -> GiftResponse:
    target_id = _target(db, actor, payload.target_id)
    return _respond("echo", ledger.offer_echo(db, actor["id"], target_id), background_tasks)


@router.post("/gifts/echoes/{sender_id}/return", response_model=GiftResponse, dependencies=[RL_ECHO])
def post_return_echo(
    sender_id: str,
    background_tasks: BackgroundTasks,
    db=Depends(get_db),
    actor: dict[str, Any] = Depends(get_current_actor),
) -> GiftResponse:
    original_sender = require_other_actor(actor["id"], sender_id, "sender_id")
    return _respond("echo", ledger.return_echo(db, actor["id"], original_sender), background_tasks)


@router.post("/gifts/echoes/{sender_id}/decline", response_model=GiftResponse, dependencies=[RL_ECHO])
def post_decline_echo(
    sender_id: str,
    background_tasks: BackgroundTasks,
    db=Depends(get_db),
    actor: dict[str, Any] = Depends(get_current_actor),
) -> GiftResponse:
    original_sender = require_other_actor(actor["id"], sender_id, "sender_id")
    return _respond("echo", ledger.decline_echo(db, actor["id"], original_sender), background_tasks)


@router.get("/gifts/stock", response_model=StockResponse)
def get_stock(db=Depends(get_db), actor: dict[str, Any] = Depends(get_current_actor)) -> dict[str, Any]:
    return ledger.get_stock(db, actor["id"])


@router.get("/gifts/notifications")
def list_notifications(db=Depends(get_db), actor: dict[str, Any] = Depends(get_current_actor)) -> dict[str, Any]:
    return {"events": list_events_for_target(db, actor["id"])}
