from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from sqlalchemy import text

from server.refscout.core.config import Settings
from server.refscout.core.db import get_sessionmaker

router = APIRouter()


@router.get("/healthz")
def healthz():
    return {"ok": True}


@router.get("/readyz")
def readyz(request: Request):
    settings: Settings = request.app.state.settings

    if not settings.enabled_providers:
        raise HTTPException(status_code=503, detail="No providers enabled")

    if settings.cache_enabled and settings.cache_backend == "sql":
        SessionLocal = get_sessionmaker(settings)
        try:
            with SessionLocal() as db:
                db.execute(text("SELECT 1"))
        except Exception as exc:
            raise HTTPException(status_code=503, detail="Cache database unavailable") from exc

    return {"ok": True, "providers": list(settings.enabled_providers)}
