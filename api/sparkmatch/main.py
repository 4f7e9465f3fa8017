import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from . import models  # noqa: F401  registers tables on Base.metadata
from .database import Base, SessionLocal, engine
from .errors import StorageUnavailable
from .routes import include_modular_routers
from .services.copy_templates import STORAGE_UNAVAILABLE_MESSAGE

logger = logging.getLogger(__name__)

app = FastAPI(title="Spark Match API")
include_modular_routers(app)

# Explicit origins: credentials mode forbids the "*" wildcard.
ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StorageUnavailable)
def storage_unavailable_handler(request: Request, exc: StorageUnavailable) -> JSONResponse:
    logger.warning("[storage] %s %s -> 503 (%s)", request.method, request.url.path, exc.operation)
    return JSONResponse(
        status_code=503,
        content={"detail": STORAGE_UNAVAILABLE_MESSAGE},
        headers={"Retry-After": str(exc.retry_after_seconds)},
    )


def wait_for_db(max_attempts: int = 20, delay_seconds: float = 1.5) -> None:
    last_err: Exception | None = None
    for _ in range(max_attempts):
        try:
            with SessionLocal() as db:
                db.execute(text("SELECT 1"))
                db.commit()
            return
        except OperationalError as exc:
            last_err = exc
            time.sleep(delay_seconds)
    if last_err:
        raise last_err


@app.on_event("startup")
def on_startup() -> None:
    wait_for_db()
    Base.metadata.create_all(bind=engine)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
