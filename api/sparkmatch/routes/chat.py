from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from .. import repo
from ..auth.deps import get_current_actor
from ..config import RL_CHAT_OPEN_LIMIT, RL_WINDOW_SECONDS
from ..deps import get_db, require_other_actor
from ..outcomes import GateDecision
from ..schemas import GateResponse, MessageRequest, QuotaResponse, TargetRequest
from ..services.copy_templates import gate_message
from ..services.events import publish_events
from ..services.messaging_gate import can_open_conversation
from ..services.quota import quota_status
from ..services.rate_limit import actor_rate_limit

router = APIRouter()

RL_CHAT_OPEN = actor_rate_limit("chat_open", RL_CHAT_OPEN_LIMIT, RL_WINDOW_SECONDS)


def _quota_response(status) -> QuotaResponse | None:
    if status is None:
        return None
    return QuotaResponse(
        used_week=status.used_week,
        used_month=status.used_month,
        remaining_week=status.remaining_week,
        remaining_month=status.remaining_month,
        exhausted_window=status.exhausted_window,
    )


def _gate_response(decision: GateDecision, thread_id: str | None = None) -> GateResponse:
    return GateResponse(
        allowed=decision.allowed,
        reason=decision.reason.value,
        message=gate_message(decision),
        first_admission=decision.first_admission,
        thread_id=thread_id,
        quota=_quota_response(decision.quota),
    )


def _participant_thread(db, thread_id: str, actor_id: str) -> tuple[dict[str, Any], str]:
    t = repo.get_thread_by_id(db, thread_id)
    if not t:
        raise HTTPException(status_code=404, detail="Thread not found")
    a = str(t["participant_a_id"])
    b = str(t["participant_b_id"])
    if actor_id not in {a, b}:
        raise HTTPException(status_code=403, detail="Forbidden")
    return t, (b if actor_id == a else a)


@router.post("/chat/open", response_model=GateResponse, dependencies=[RL_CHAT_OPEN])
def open_conversation(
    payload: TargetRequest,
    background_tasks: BackgroundTasks,
    db=Depends(get_db),
    actor: dict[str, Any] = Depends(get_current_actor),
) -> GateResponse:
    target_id = require_other_actor(actor["id"], payload.target_id)
    if not repo.actor_exists(db, target_id):
        raise HTTPException(status_code=404, detail="Profile not found")

    decision = can_open_conversation(db, actor["id"], target_id)
    if decision.events:
        background_tasks.add_task(publish_events, decision.events)
    if not decision.allowed:
        return _gate_response(decision)
    thread = repo.ensure_chat_thread(db, actor["id"], target_id, decision.reason.value)
    return _gate_response(decision, thread_id=str(thread["id"]))


@router.get("/chat/quota", response_model=QuotaResponse)
def get_quota(db=Depends(get_db), actor: dict[str, Any] = Depends(get_current_actor)) -> QuotaResponse:
    return _quota_response(quota_status(db, actor["id"]))


@router.get("/chat/threads")
def list_chat_threads(db=Depends(get_db), actor: dict[str, Any] = Depends(get_current_actor)) -> dict[str, Any]:
    rows = repo.get_user_chat_threads(db, actor["id"])
    return {
        "threads": [
            {
                "id": str(r["id"]),
                "unlock_reason": r.get("unlock_reason"),
                "other_actor_id": str(r["other_user_id"]),
                "latest_message": {
                    "body": r.get("latest_message_body"),
                    "created_at": r.get("latest_message_at"),
                },
            }
            for r in rows
        ]
    }


@router.get("/chat/threads/{thread_id}")
def get_chat_thread(thread_id: str, db=Depends(get_db), actor: dict[str, Any] = Depends(get_current_actor)) -> dict[str, Any]:
    t, other_id = _participant_thread(db, thread_id, actor["id"])
    messages = repo.get_thread_messages(db, thread_id)
    return {
        "thread": {
            "id": str(t["id"]),
            "unlock_reason": t.get("unlock_reason"),
            "other_actor_id": other_id,
            "messages": [
                {
                    "id": str(m["id"]),
                    "sender_user_id": str(m["sender_user_id"]),
                    "body": m["body"],
                    "created_at": m["created_at"],
                }
                for m in messages
            ],
        }
    }


@router.post("/chat/threads/{thread_id}/messages")
def post_chat_message(
    thread_id: str,
    payload: MessageRequest,
    background_tasks: BackgroundTasks,
    db=Depends(get_db),
    actor: dict[str, Any] = Depends(get_current_actor),
) -> dict[str, Any]:
    _, other_id = _participant_thread(db, thread_id, actor["id"])
    decision = can_open_conversation(db, actor["id"], other_id)
    if decision.events:
        background_tasks.add_task(publish_events, decision.events)
    if not decision.allowed:
        raise HTTPException(
            status_code=403,
            detail={"reason": decision.reason.value, "message": gate_message(decision)},
        )
    body = payload.body.strip()
    if not body:
        raise HTTPException(status_code=400, detail="Message body is empty")
    message = repo.create_chat_message(db, thread_id, actor["id"], body)
    return {"message": {**message, "created_at": message["created_at"].isoformat()}}
