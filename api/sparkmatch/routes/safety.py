from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from .. import repo
from ..auth.deps import get_current_actor
from ..deps import get_db, require_other_actor
from ..schemas import BlockRequest

router = APIRouter()


@router.post("/safety/block")
def block_actor(payload: BlockRequest, db=Depends(get_db), actor: dict[str, Any] = Depends(get_current_actor)) -> dict[str, Any]:
    blocked_id = require_other_actor(actor["id"], payload.blocked_user_id, "blocked_user_id")
    if not repo.actor_exists(db, blocked_id):
        raise HTTPException(status_code=404, detail="Profile not found")
    created = repo.create_user_block(db, actor["id"], blocked_id)
    return {"status": "blocked", "created": created, "blocked_user_id": blocked_id}


@router.delete("/safety/block/{blocked_user_id}")
def unblock_actor(blocked_user_id: str, db=Depends(get_db), actor: dict[str, Any] = Depends(get_current_actor)) -> dict[str, Any]:
    blocked_id = require_other_actor(actor["id"], blocked_user_id, "blocked_user_id")
    removed = repo.remove_user_block(db, actor["id"], blocked_id)
    if not removed:
        raise HTTPException(status_code=404, detail="Block not found")
    return {"status": "unblocked", "blocked_user_id": blocked_id}


@router.get("/safety/blocks")
def list_blocks(db=Depends(get_db), actor: dict[str, Any] = Depends(get_current_actor)) -> dict[str, Any]:
    rows = repo.list_user_blocks(db, actor["id"])
    return {
        "blocks": [
            {"blocked_user_id": str(r["blocked_user_id"]), "created_at": r["created_at"]}
            for r in rows
        ]
    }
