from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException

from .. import config, repo
from ..deps import get_db, parse_target_id, validate_admin_token
from ..schemas import ExpirySweepResponse, IntegrityResponse, StockCreditRequest, StockRenewRequest
from ..services import ledger
from ..services.events import publish_events
from ..services.integrity import audit_integrity

router = APIRouter()


def require_admin(x_admin_token: str | None = Header(default=None, alias="X-Admin-Token")) -> None:
    validate_admin_token(x_admin_token, config.ADMIN_TOKEN)


def _existing_actor(db, raw: str) -> str:
    actor_id = parse_target_id(raw, "actor_id")
    if not repo.actor_exists(db, actor_id):
        raise HTTPException(status_code=404, detail="Profile not found")
    return actor_id


@router.post("/admin/stock/credit", dependencies=[Depends(require_admin)])
def admin_credit_stock(payload: StockCreditRequest, db=Depends(get_db)) -> dict[str, Any]:
    actor_id = _existing_actor(db, payload.actor_id)
    if payload.component == "purchased":
        balance = ledger.credit_purchased_stock(db, actor_id, payload.currency, payload.amount)
    else:
        balance = ledger.credit_periodic_stock(db, actor_id, payload.currency, payload.amount)
    return {"actor_id": actor_id, "currency": payload.currency, "balance": balance}


@router.post("/admin/stock/renew", dependencies=[Depends(require_admin)])
def admin_renew_stock(payload: StockRenewRequest, db=Depends(get_db)) -> dict[str, Any]:
    actor_id = _existing_actor(db, payload.actor_id)
    balance = ledger.renew_periodic_stock(db, actor_id, payload.currency, payload.amount)
    return {"actor_id": actor_id, "currency": payload.currency, "balance": balance}


@router.post("/admin/gifts/expire", response_model=ExpirySweepResponse, dependencies=[Depends(require_admin)])
def admin_expire_gifts(background_tasks: BackgroundTasks, db=Depends(get_db)) -> ExpirySweepResponse:
    summary = ledger.expire_stale_gifts(db)
    if summary["events"]:
        background_tasks.add_task(publish_events, summary["events"])
    return ExpirySweepResponse(sparks_expired=summary["sparks_expired"], echoes_expired=summary["echoes_expired"])


@router.get("/admin/integrity", response_model=IntegrityResponse, dependencies=[Depends(require_admin)])
def admin_integrity(db=Depends(get_db)) -> IntegrityResponse:
    findings = audit_integrity(db)
    return IntegrityResponse(ok=not any(findings.values()), findings=findings)
