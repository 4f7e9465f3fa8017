from fastapi import APIRouter, FastAPI

from .admin import router as admin_router
from .chat import router as chat_router
from .discovery import router as discovery_router
from .gifts import router as gifts_router
from .safety import router as safety_router


def include_modular_routers(app: FastAPI) -> None:
    app.include_router(discovery_router, tags=["discovery"])
    app.include_router(gifts_router, tags=["gifts"])
    app.include_router(chat_router, tags=["chat"])
    app.include_router(safety_router, tags=["safety"])
    app.include_router(admin_router, tags=["admin"])


__all__ = ["include_modular_routers", "APIRouter"]
