from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from classsched.core.config import get_settings
from classsched.db.session import engine
from classsched.services.email import smtp_configured

router = APIRouter()


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.get("/health/ready")
def health_ready() -> JSONResponse:
    settings = get_settings()
    db_ok = True
    db_error: str | None = None
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except Exception as exc:  # pragma: no cover - environment dependent
        db_ok = False
        db_error = str(exc)

    payload = {
        "status": "ok" if db_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database": {"ok": db_ok, "error": db_error},
        "smtp": {"configured": smtp_configured(), "host": settings.smtp_host, "port": settings.smtp_port},
        "schedule": {"days": settings.schedule_days, "time_slots": settings.schedule_time_slots},
    }
    return JSONResponse(status_code=200 if db_ok else 503, content=payload)
