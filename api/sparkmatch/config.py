import json
import os
from typing import Any

DATABASE_URL = os.getenv("DATABASE_URL", "postgresql+psycopg2://postgres:postgres@db:5432/spark_match")
LEDGER_STATEMENT_TIMEOUT_MS = int(os.getenv("LEDGER_STATEMENT_TIMEOUT_MS", "3000"))

JWT_SECRET = os.getenv("JWT_SECRET", "")
ACCESS_TOKEN_TTL_MINUTES = int(os.getenv("ACCESS_TOKEN_TTL_MINUTES", "15"))
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "spark_session")
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "")
DEV_MODE = os.getenv("DEV_MODE", "false").lower() == "true"

MIN_AGE = int(os.getenv("MIN_AGE", "18"))
MAX_AGE = int(os.getenv("MAX_AGE", "99"))
EXPOSURE_CAP = int(os.getenv("EXPOSURE_CAP", "2"))
EXPOSURE_HORIZON_DAYS = int(os.getenv("EXPOSURE_HORIZON_DAYS", "30"))
CANDIDATE_POOL_LIMIT = int(os.getenv("CANDIDATE_POOL_LIMIT", "500"))

DEFAULT_DISCOVERY_TIERS: list[dict[str, Any]] = [
    {"name": "strict", "radius_m": 10_000, "age_delta": 5, "recency_days": 14, "limit": 4},
    {"name": "relaxed", "radius_m": 10_000, "age_delta": 5, "recency_days": None, "limit": 8},
    {"name": "wide", "radius_m": 100_000, "age_delta": 15, "recency_days": None, "limit": 8},
]

if os.getenv("DISCOVERY_TIERS_JSON"):
    try:
        DEFAULT_DISCOVERY_TIERS = json.loads(os.getenv("DISCOVERY_TIERS_JSON", "[]")) or DEFAULT_DISCOVERY_TIERS
    except json.JSONDecodeError:
        pass

SPARK_TTL_DAYS = int(os.getenv("SPARK_TTL_DAYS", "30"))
ECHO_OFFER_TTL_DAYS = int(os.getenv("ECHO_OFFER_TTL_DAYS", "7"))

QUOTA_ENFORCED = os.getenv("QUOTA_ENFORCED", "true").lower() == "true"
QUOTA_WEEKLY_LIMIT = int(os.getenv("QUOTA_WEEKLY_LIMIT", "10"))
QUOTA_MONTHLY_LIMIT = int(os.getenv("QUOTA_MONTHLY_LIMIT", "25"))
QUOTA_WEEK_DAYS = int(os.getenv("QUOTA_WEEK_DAYS", "7"))
QUOTA_MONTH_DAYS = int(os.getenv("QUOTA_MONTH_DAYS", "30"))

RL_LIKE_LIMIT = int(os.getenv("RL_LIKE_LIMIT", "120"))
RL_SPARK_LIMIT = int(os.getenv("RL_SPARK_LIMIT", "30"))
RL_ECHO_LIMIT = int(os.getenv("RL_ECHO_LIMIT", "30"))
RL_CHAT_OPEN_LIMIT = int(os.getenv("RL_CHAT_OPEN_LIMIT", "60"))
RL_WINDOW_SECONDS = int(os.getenv("RL_WINDOW_SECONDS", "60"))
