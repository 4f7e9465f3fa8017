from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from .. import repo
from ..auth.deps import get_current_actor
from ..deps import get_db, parse_target_id
from ..errors import storage_guard
from ..schemas import DiscoveryCandidate, DiscoveryResponse, VisibilityResponse
from ..services.discovery import DiscoveryResult, discover, get_policy
from ..services.visibility import is_visible_between

router = APIRouter()


def _to_response(result: DiscoveryResult) -> DiscoveryResponse:
    return DiscoveryResponse(
        tier=result.tier,
        candidates=[
            DiscoveryCandidate(
                id=c.id,
                age=c.age,
                distance_m=round(c.distance_m, 1) if c.distance_m is not None else None,
                created_at=c.created_at,
            )
            for c in result.candidates
        ],
    )


@router.get("/discover", response_model=DiscoveryResponse)
def discover_candidates(db=Depends(get_db), actor: dict[str, Any] = Depends(get_current_actor)) -> DiscoveryResponse:
    with storage_guard("discover"):
        result = discover(db, actor["id"])
    return _to_response(result)


@router.get("/discover/{tier}", response_model=DiscoveryResponse)
def discover_single_tier(tier: str, db=Depends(get_db), actor: dict[str, Any] = Depends(get_current_actor)) -> DiscoveryResponse:
    policy = get_policy(tier.strip().lower())
    if not policy:
        raise HTTPException(status_code=404, detail="Unknown discovery tier")
    with storage_guard("discover"):
        result = discover(db, actor["id"], [policy])
    return _to_response(result)


@router.get("/profiles/{candidate_id}/visibility", response_model=VisibilityResponse)
def profile_visibility(candidate_id: str, db=Depends(get_db), actor: dict[str, Any] = Depends(get_current_actor)) -> VisibilityResponse:
    cid = parse_target_id(candidate_id, "candidate_id")
    if not repo.actor_exists(db, cid):
        raise HTTPException(status_code=404, detail="Profile not found")
    return VisibilityResponse(candidate_id=cid, visible=is_visible_between(db, actor["id"], cid))
