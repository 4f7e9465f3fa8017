from dataclasses import dataclass
from typing import Any, Iterable

from sqlalchemy import bindparam, text

CERTIFIED = "approved"


@dataclass(frozen=True)
class PrivacyFlags:
    is_public: bool = True
    certified_viewers_only: bool = False
    shadow_restricted: bool = False


def normalize_certification(value: Any) -> str:
    v = str(value or "").strip().lower()
    if v in {"none", "pending", "approved", "rejected"}:
        return v
    return "none"


def flags_from_row(row: dict[str, Any]) -> PrivacyFlags:
    return PrivacyFlags(
        is_public=row.get("is_public") not in (False, 0),
        certified_viewers_only=bool(row.get("certified_viewers_only")),
        shadow_restricted=bool(row.get("shadow_restricted")),
    )


def is_visible(
    viewer_id: str,
    viewer_certification: str,
    candidate_id: str,
    candidate_flags: PrivacyFlags,
    blocked_ids: set[str],
) -> bool:
    """Decide whether ``candidate_id`` may appear to ``viewer_id``.

    ``blocked_ids`` holds every actor with a block in either direction
    against the viewer. Rules short-circuit in order: block, shadow
    restriction, private mode, certified-viewers-only.
    """
    if candidate_id in blocked_ids:
        return False
    if candidate_flags.shadow_restricted and candidate_id != viewer_id:
        return False
    if not candidate_flags.is_public:
        return False
    if candidate_flags.certified_viewers_only and normalize_certification(viewer_certification) != CERTIFIED:
        return False
    return True


def fetch_blocked_ids(db, actor_id: str) -> set[str]:
    rows = db.execute(
        text(
            """
            SELECT blocked_user_id AS other_id FROM user_block WHERE user_id=:actor_id
            UNION
            SELECT user_id AS other_id FROM user_block WHERE blocked_user_id=:actor_id
            """
        ),
        {"actor_id": actor_id},
    ).mappings().all()
    return {str(r["other_id"]) for r in rows}


def is_blocked_either_way(db, user_a: str, user_b: str) -> bool:
    row = db.execute(
        text(
            """
            SELECT 1
            FROM user_block
            WHERE (user_id=:a AND blocked_user_id=:b)
               OR (user_id=:b AND blocked_user_id=:a)
            LIMIT 1
            """
        ),
        {"a": user_a, "b": user_b},
    ).first()
    return bool(row)


def fetch_privacy_flags(db, actor_ids: Iterable[str]) -> dict[str, PrivacyFlags]:
    ids = sorted({str(a) for a in actor_ids})
    if not ids:
        return {}
    stmt = text(
        """
        SELECT id, is_public, certified_viewers_only, shadow_restricted
        FROM actor_profile
        WHERE id IN :ids
        """
    ).bindparams(bindparam("ids", expanding=True))
    rows = db.execute(stmt, {"ids": ids}).mappings().all()
    return {str(r["id"]): flags_from_row(dict(r)) for r in rows}


def fetch_viewer_certification(db, viewer_id: str) -> str:
    row = db.execute(
        text("SELECT certification_status FROM actor_profile WHERE id=:id"),
        {"id": viewer_id},
    ).mappings().first()
    return normalize_certification(row["certification_status"] if row else None)


def is_visible_between(db, viewer_id: str, candidate_id: str) -> bool:
    flags = fetch_privacy_flags(db, [candidate_id]).get(candidate_id)
    if flags is None:
        return False
    blocked = {candidate_id} if is_blocked_either_way(db, viewer_id, candidate_id) else set()
    return is_visible(viewer_id, fetch_viewer_certification(db, viewer_id), candidate_id, flags, blocked)
