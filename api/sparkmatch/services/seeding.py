from __future__ import annotations

import random
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any

from sqlalchemy import text

from .ledger import credit_periodic_stock, credit_purchased_stock

POSTAL_CENTROIDS: dict[str, tuple[float, float]] = {
    "75001": (48.8626, 2.3363),
    "75011": (48.8574, 2.3795),
    "75015": (48.8412, 2.3003),
    "92100": (48.8353, 2.2410),
    "93100": (48.8611, 2.4436),
    "78000": (48.8049, 2.1204),
    "77100": (48.9601, 2.8788),
    "69001": (45.7676, 4.8344),
}

GENDER_OPTIONS = ["man", "woman"]
CERTIFICATION_WEIGHTS = {"none": 0.6, "pending": 0.1, "approved": 0.25, "rejected": 0.05}
TIER_WEIGHTS = {"free": 0.8, "premium": 0.15, "elite": 0.05}

RESET_TABLES = [
    "interaction_event",
    "chat_message",
    "chat_thread",
    "open_free_conv_log",
    "messaging_quota",
    "discovery_exposure",
    "echo_offer",
    "spark",
    "gift_like",
    "gift_stock_movement",
    "gift_stock",
    "actor_entitlement",
    "user_block",
    "actor_profile",
]


def _weighted(rng: random.Random, weights: dict[str, float]) -> str:
    names = list(weights.keys())
    return rng.choices(names, weights=[weights[n] for n in names], k=1)[0]


def _generate_gender_preferences(rng: random.Random) -> tuple[str, str]:
    gender = rng.choice(GENDER_OPTIONS)
    if rng.random() < 0.85:
        seeking = "woman" if gender == "man" else "man"
    else:
        seeking = gender
    return gender, seeking


def upsert_postal_centroids(db, centroids: dict[str, tuple[float, float]] | None = None) -> int:
    centroids = centroids or POSTAL_CENTROIDS
    for code, (lat, lon) in centroids.items():
        db.execute(
            text(
                """
                INSERT INTO postal_centroid (postal_code, lat, lon)
                VALUES (:postal_code, :lat, :lon)
                ON CONFLICT (postal_code) DO UPDATE SET lat = EXCLUDED.lat, lon = EXCLUDED.lon
                """
            ),
            {"postal_code": code, "lat": lat, "lon": lon},
        )
    return len(centroids)


def upsert_actor(db, **fields: Any) -> str:
    """Insert or replace an actor profile row; returns its id."""
    row = {
        "id": fields.get("id") or str(uuid.uuid4()),
        "display_name": fields.get("display_name"),
        "birth_date": fields.get("birth_date"),
        "gender": fields.get("gender"),
        "seeking_gender": fields.get("seeking_gender"),
        "postal_code": fields.get("postal_code"),
        "lat": fields.get("lat"),
        "lon": fields.get("lon"),
        "certification_status": fields.get("certification_status", "none"),
        "is_public": fields.get("is_public", True),
        "certified_viewers_only": fields.get("certified_viewers_only", False),
        "shadow_restricted": fields.get("shadow_restricted", False),
        "created_at": fields.get("created_at") or datetime.now(timezone.utc),
        "disabled_at": fields.get("disabled_at"),
    }
    db.execute(
        text(
            """
            INSERT INTO actor_profile (
              id, display_name, birth_date, gender, seeking_gender, postal_code, lat, lon,
              certification_status, is_public, certified_viewers_only, shadow_restricted, created_at, disabled_at
            )
            VALUES (
              :id, :display_name, :birth_date, :gender, :seeking_gender, :postal_code, :lat, :lon,
              :certification_status, :is_public, :certified_viewers_only, :shadow_restricted, :created_at, :disabled_at
            )
            ON CONFLICT (id) DO UPDATE SET
              display_name = EXCLUDED.display_name,
              birth_date = EXCLUDED.birth_date,
              gender = EXCLUDED.gender,
              seeking_gender = EXCLUDED.seeking_gender,
              postal_code = EXCLUDED.postal_code,
              lat = EXCLUDED.lat,
              lon = EXCLUDED.lon,
              certification_status = EXCLUDED.certification_status,
              is_public = EXCLUDED.is_public,
              certified_viewers_only = EXCLUDED.certified_viewers_only,
              shadow_restricted = EXCLUDED.shadow_restricted,
              disabled_at = EXCLUDED.disabled_at
            """
        ),
        row,
    )
    return str(row["id"])


def upsert_entitlement(db, actor_id: str, tier: str, expires_at: datetime | None = None) -> None:
    db.execute(
        text(
            """
            INSERT INTO actor_entitlement (actor_id, tier, expires_at)
            VALUES (:actor_id, :tier, :expires_at)
            ON CONFLICT (actor_id) DO UPDATE SET tier = EXCLUDED.tier, expires_at = EXCLUDED.expires_at
            """
        ),
        {"actor_id": actor_id, "tier": tier, "expires_at": expires_at},
    )


def seed_demo_data(
    db,
    n_actors: int = 60,
    reset: bool = False,
    seed: int = 42,
    spark_allowance: int = 5,
    echo_allowance: int = 2,
) -> dict[str, Any]:
    rng = random.Random(seed)
    now = datetime.now(timezone.utc)

    if reset:
        for table in RESET_TABLES:
            db.execute(text(f"DELETE FROM {table}"))
        db.commit()

    upsert_postal_centroids(db)
    codes = list(POSTAL_CENTROIDS.keys())

    actor_ids: list[str] = []
    certified = 0
    paid = 0
    for idx in range(n_actors):
        gender, seeking = _generate_gender_preferences(rng)
        age = rng.randint(20, 55)
        birth = date(now.year - age, rng.randint(1, 12), rng.randint(1, 28))
        code = rng.choice(codes)
        use_exact = rng.random() < 0.5
        lat, lon = POSTAL_CENTROIDS[code]
        certification = _weighted(rng, CERTIFICATION_WEIGHTS)
        actor_id = upsert_actor(
            db,
            id=str(uuid.UUID(int=rng.getrandbits(128), version=4)),
            display_name=f"Demo {idx + 1}",
            birth_date=birth,
            gender=gender,
            seeking_gender=seeking,
            postal_code=code,
            lat=lat + rng.uniform(-0.02, 0.02) if use_exact else None,
            lon=lon + rng.uniform(-0.02, 0.02) if use_exact else None,
            certification_status=certification,
            is_public=rng.random() > 0.05,
            certified_viewers_only=rng.random() < 0.1,
            shadow_restricted=rng.random() < 0.03,
            created_at=now - timedelta(days=rng.randint(0, 60)),
        )
        actor_ids.append(actor_id)
        certified += certification == "approved"

        tier = _weighted(rng, TIER_WEIGHTS)
        if tier != "free":
            upsert_entitlement(db, actor_id, tier, now + timedelta(days=30))
            paid += 1
    db.commit()

    for actor_id in actor_ids:
        credit_periodic_stock(db, actor_id, "spark", spark_allowance, now)
        credit_periodic_stock(db, actor_id, "echo", echo_allowance, now)
        if rng.random() < 0.2:
            credit_purchased_stock(db, actor_id, "spark", rng.randint(1, 5), now)

    return {
        "actors": len(actor_ids),
        "certified": certified,
        "paid": paid,
        "postal_centroids": len(codes),
    }
