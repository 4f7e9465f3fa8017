from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable

from sqlalchemy import bindparam, text

from .. import config
from ..config import (
    DEFAULT_DISCOVERY_TIERS,
    EXPOSURE_CAP,
    EXPOSURE_HORIZON_DAYS,
    MAX_AGE,
    MIN_AGE,
)
from ..database import parse_db_datetime
from .geo import GeoPoint, bounding_box, fetch_postal_centroids, haversine_m, resolve_points
from .visibility import PrivacyFlags, fetch_blocked_ids, flags_from_row, is_visible, normalize_certification

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscoveryPolicy:
    name: str
    radius_m: int
    age_delta: int
    recency_days: int | None = None
    limit: int = 8

    @property
    def newest_first(self) -> bool:
        return self.recency_days is not None


@dataclass
class ViewerProfile:
    id: str
    age: int
    gender: str
    seeking_gender: str
    point: GeoPoint
    certification: str = "none"


@dataclass
class Candidate:
    id: str
    age: int | None
    gender: str | None
    seeking_gender: str | None
    point: GeoPoint | None
    created_at: datetime | None
    flags: PrivacyFlags = field(default_factory=PrivacyFlags)
    distance_m: float | None = None


@dataclass
class DiscoveryResult:
    tier: str | None
    candidates: list[Candidate]


def policies_from_config(raw: list[dict[str, Any]] | None = None) -> list[DiscoveryPolicy]:
    out: list[DiscoveryPolicy] = []
    for item in raw if raw is not None else DEFAULT_DISCOVERY_TIERS:
        recency = item.get("recency_days")
        out.append(
            DiscoveryPolicy(
                name=str(item["name"]),
                radius_m=int(item["radius_m"]),
                age_delta=int(item["age_delta"]),
                recency_days=int(recency) if recency is not None else None,
                limit=int(item.get("limit", 8)),
            )
        )
    return out


DEFAULT_POLICIES = policies_from_config()


def get_policy(name: str, policies: list[DiscoveryPolicy] | None = None) -> DiscoveryPolicy | None:
    for policy in policies or DEFAULT_POLICIES:
        if policy.name == name:
            return policy
    return None


def _normalize_gender(value: Any) -> str | None:
    if value is None:
        return None
    v = str(value).strip().lower()
    return v or None


def _coerce_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def compute_age(birth_date: Any, today: date) -> int | None:
    born = _coerce_date(birth_date)
    if born is None:
        return None
    age = today.year - born.year - ((today.month, today.day) < (born.month, born.day))
    return age if 0 <= age < 130 else None


def _years_before(today: date, years: int) -> date:
    try:
        return today.replace(year=today.year - years)
    except ValueError:
        return today.replace(year=today.year - years, day=28)


def age_bounds(viewer_age: int, age_delta: int) -> tuple[int, int]:
    return max(MIN_AGE, viewer_age - age_delta), min(MAX_AGE, viewer_age + age_delta)


def gender_reciprocal(
    viewer_gender: str | None,
    viewer_seeking: str | None,
    candidate_gender: str | None,
    candidate_seeking: str | None,
) -> bool:
    """Two-bucket orientation match (declared gender / sought gender).

    Known simplification: only a single sought gender per actor is modelled.
    """
    vg, vs = _normalize_gender(viewer_gender), _normalize_gender(viewer_seeking)
    cg, cs = _normalize_gender(candidate_gender), _normalize_gender(candidate_seeking)
    if not vg or not vs or not cg or not cs:
        return False
    if cg != vs:
        return False
    if vs != vg:
        return cs == vg
    return cs == cg


def build_viewer(row: dict[str, Any] | None, point: GeoPoint | None, today: date) -> ViewerProfile | None:
    if not row or point is None:
        return None
    age = compute_age(row.get("birth_date"), today)
    gender = _normalize_gender(row.get("gender"))
    seeking = _normalize_gender(row.get("seeking_gender"))
    if age is None or not gender or not seeking:
        return None
    return ViewerProfile(
        id=str(row["id"]),
        age=age,
        gender=gender,
        seeking_gender=seeking,
        point=point,
        certification=normalize_certification(row.get("certification_status")),
    )


def build_candidates(rows: list[dict[str, Any]], points: dict[str, GeoPoint], today: date) -> list[Candidate]:
    return [
        Candidate(
            id=str(r["id"]),
            age=compute_age(r.get("birth_date"), today),
            gender=_normalize_gender(r.get("gender")),
            seeking_gender=_normalize_gender(r.get("seeking_gender")),
            point=points.get(str(r["id"])),
            created_at=parse_db_datetime(r.get("created_at")),
            flags=flags_from_row(r),
        )
        for r in rows
    ]


def matches_policy(viewer: ViewerProfile, candidate: Candidate, policy: DiscoveryPolicy, now: datetime) -> bool:
    """Geographic, age, orientation and recency constraints of one tier."""
    if candidate.id == viewer.id:
        return False
    if not gender_reciprocal(viewer.gender, viewer.seeking_gender, candidate.gender, candidate.seeking_gender):
        return False
    if candidate.point is None:
        return False
    distance = haversine_m(viewer.point, candidate.point)
    if distance > policy.radius_m:
        return False
    if candidate.age is None:
        return False
    lo, hi = age_bounds(viewer.age, policy.age_delta)
    if candidate.age < lo or candidate.age > hi:
        return False
    if policy.recency_days is not None:
        if candidate.created_at is None or candidate.created_at < now - timedelta(days=policy.recency_days):
            return False
    candidate.distance_m = distance
    return True


def eligible_candidates(
    viewer: ViewerProfile,
    candidates: Iterable[Candidate],
    policy: DiscoveryPolicy,
    *,
    blocked_ids: set[str],
    exposure_counts: dict[str, int],
    now: datetime,
    exposure_cap: int = EXPOSURE_CAP,
) -> list[Candidate]:
    kept: dict[str, Candidate] = {}
    for c in candidates:
        if c.id in kept or not matches_policy(viewer, c, policy, now):
            continue
        if not is_visible(viewer.id, viewer.certification, c.id, c.flags, blocked_ids):
            continue
        if exposure_counts.get(c.id, 0) >= exposure_cap:
            continue
        kept[c.id] = c

    out = list(kept.values())
    if policy.newest_first:
        oldest = datetime.min.replace(tzinfo=timezone.utc)
        out.sort(key=lambda c: c.id)
        out.sort(key=lambda c: c.created_at or oldest, reverse=True)
    else:
        out.sort(key=lambda c: (c.distance_m if c.distance_m is not None else float("inf"), c.id))
    return out[: max(0, policy.limit)]


def fetch_viewer_row(db, viewer_id: str) -> dict[str, Any] | None:
    row = db.execute(
        text(
            """
            SELECT id, birth_date, gender, seeking_gender, postal_code, lat, lon, certification_status
            FROM actor_profile
            WHERE id=:id AND disabled_at IS NULL
            """
        ),
        {"id": viewer_id},
    ).mappings().first()
    return dict(row) if row else None


_APPROX_DISTANCE_SQL = (
    "(p.lat - :viewer_lat) * (p.lat - :viewer_lat)"
    " + (p.lon - :viewer_lon) * (p.lon - :viewer_lon) * :lon_scale"
)


def fetch_candidate_pool(
    db,
    viewer: ViewerProfile,
    policy: DiscoveryPolicy,
    now: datetime,
    limit: int | None = None,
) -> list[dict[str, Any]]:
    """Candidates of the sought gender and age band inside the tier's radius box.

    Coordinates come back already resolved (own point, else postal centroid).
    Recency tiers keep the newest rows; the others keep the nearest, so the
    pool limit never drops an in-radius candidate in favour of a far one.
    """
    today = now.date()
    lo, hi = age_bounds(viewer.age, policy.age_delta)
    lat_min, lat_max, lon_min, lon_max = bounding_box(viewer.point, policy.radius_m)
    order_by = "p.created_at DESC" if policy.newest_first else _APPROX_DISTANCE_SQL
    params: dict[str, Any] = {
        "viewer_id": viewer.id,
        "seeking_gender": viewer.seeking_gender,
        "born_before": _years_before(today, lo),
        "born_after": _years_before(today, hi + 1),
        "lat_min": lat_min,
        "lat_max": lat_max,
        "lon_min": lon_min,
        "lon_max": lon_max,
        "limit": limit or config.CANDIDATE_POOL_LIMIT,
    }
    recency = ""
    if policy.recency_days is not None:
        recency = "AND a.created_at >= :created_after"
        params["created_after"] = now - timedelta(days=policy.recency_days)
    else:
        params["viewer_lat"], params["viewer_lon"] = viewer.point
        params["lon_scale"] = math.cos(math.radians(viewer.point[0])) ** 2
    rows = db.execute(
        text(
            f"""
            SELECT id, birth_date, gender, seeking_gender, postal_code, lat, lon, created_at,
                   is_public, certified_viewers_only, shadow_restricted
            FROM (
              SELECT a.id, a.birth_date, a.gender, a.seeking_gender, a.postal_code, a.created_at,
                     a.is_public, a.certified_viewers_only, a.shadow_restricted,
                     CASE WHEN a.lat IS NOT NULL AND a.lon IS NOT NULL THEN a.lat ELSE c.lat END AS lat,
                     CASE WHEN a.lat IS NOT NULL AND a.lon IS NOT NULL THEN a.lon ELSE c.lon END AS lon
              FROM actor_profile a
              LEFT JOIN postal_centroid c ON c.postal_code = a.postal_code
              WHERE a.id <> :viewer_id
                AND a.disabled_at IS NULL
                AND a.gender = :seeking_gender
                AND a.seeking_gender IS NOT NULL
                AND a.birth_date IS NOT NULL
                AND a.birth_date <= :born_before
                AND a.birth_date > :born_after
                {recency}
            ) p
            WHERE p.lat BETWEEN :lat_min AND :lat_max
              AND p.lon BETWEEN :lon_min AND :lon_max
            ORDER BY {order_by}, p.id
            LIMIT :limit
            """
        ),
        params,
    ).mappings().all()
    return [dict(r) for r in rows]


def fetch_exposure_counts(db, viewer_id: str, candidate_ids: list[str], horizon_start: datetime) -> dict[str, int]:
    if not candidate_ids:
        return {}
    stmt = text(
        """
        SELECT candidate_id, shown_count
        FROM discovery_exposure
        WHERE viewer_id = :viewer_id
          AND window_started_at >= :horizon_start
          AND candidate_id IN :ids
        """
    ).bindparams(bindparam("ids", expanding=True))
    rows = db.execute(stmt, {"viewer_id": viewer_id, "horizon_start": horizon_start, "ids": candidate_ids}).mappings().all()
    return {str(r["candidate_id"]): int(r["shown_count"] or 0) for r in rows}


def record_exposures(db, viewer_id: str, candidate_ids: list[str], now: datetime, horizon_start: datetime) -> None:
    for candidate_id in candidate_ids:
        params = {"viewer_id": viewer_id, "candidate_id": candidate_id, "now": now, "horizon_start": horizon_start}
        db.execute(
            text(
                """
                INSERT INTO discovery_exposure (viewer_id, candidate_id, shown_count, window_started_at)
                VALUES (:viewer_id, :candidate_id, 0, :now)
                ON CONFLICT (viewer_id, candidate_id) DO NOTHING
                """
            ),
            params,
        )
        # A stale window restarts the count instead of accumulating forever.
        db.execute(
            text(
                """
                UPDATE discovery_exposure
                SET shown_count = CASE WHEN window_started_at >= :horizon_start THEN shown_count + 1 ELSE 1 END,
                    window_started_at = CASE WHEN window_started_at >= :horizon_start THEN window_started_at ELSE :now END,
                    last_shown_at = :now
                WHERE viewer_id = :viewer_id AND candidate_id = :candidate_id
                """
            ),
            params,
        )


def run_tier(db, viewer: ViewerProfile, policy: DiscoveryPolicy, *, blocked_ids: set[str], now: datetime) -> list[Candidate]:
    rows = fetch_candidate_pool(db, viewer, policy, now)
    candidates = build_candidates(rows, resolve_points(rows, {}), now.date())
    horizon_start = now - timedelta(days=EXPOSURE_HORIZON_DAYS)
    exposure = fetch_exposure_counts(db, viewer.id, [c.id for c in candidates], horizon_start)
    return eligible_candidates(viewer, candidates, policy, blocked_ids=blocked_ids, exposure_counts=exposure, now=now)


def discover(db, viewer_id: str, policies: list[DiscoveryPolicy] | None = None, now: datetime | None = None) -> DiscoveryResult:
    """Try each policy in order and stop at the first non-empty tier.

    A viewer missing age, gender or location gets an empty result.
    Returned candidates have their exposure counters incremented.
    """
    now = now or datetime.now(timezone.utc)
    row = fetch_viewer_row(db, viewer_id)
    point = None
    if row:
        point = resolve_points([row], fetch_postal_centroids(db, [row.get("postal_code")])).get(str(row["id"]))
    viewer = build_viewer(row, point, now.date())
    if viewer is None:
        logger.debug("[discovery] viewer=%s lacks age/gender/location, returning empty", viewer_id)
        return DiscoveryResult(tier=None, candidates=[])

    blocked_ids = fetch_blocked_ids(db, viewer.id)
    for policy in policies or DEFAULT_POLICIES:
        picked = run_tier(db, viewer, policy, blocked_ids=blocked_ids, now=now)
        if not picked:
            continue
        record_exposures(db, viewer.id, [c.id for c in picked], now, now - timedelta(days=EXPOSURE_HORIZON_DAYS))
        db.commit()
        logger.info("[discovery] viewer=%s tier=%s count=%d", viewer.id, policy.name, len(picked))
        return DiscoveryResult(tier=policy.name, candidates=picked)

    logger.info("[discovery] viewer=%s no candidates in any tier", viewer.id)
    return DiscoveryResult(tier=None, candidates=[])
