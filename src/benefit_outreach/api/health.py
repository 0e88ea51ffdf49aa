"""Health check endpoint."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel
from sqlalchemy import text

from benefit_outreach import __version__
from benefit_outreach.core.log_setup import get_logger
from benefit_outreach.core.metrics import get_metrics
from benefit_outreach.dependencies import SessionDep, SettingsDep

log = get_logger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str
    environment: str
    checks: dict[str, Any]
    metrics: dict[str, Any]


@router.get("/health")
async def health_check(request: Request, session: SessionDep, settings: SettingsDep) -> HealthResponse:
    """Database connectivity, scheduler state and outreach counters."""
    checks: dict[str, Any] = {"api": "ok"}

    try:
        await session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        log.error("Database health check failed", error=str(e))
        checks["database"] = "error"

    scheduler = getattr(request.app.state, "scheduler", None)
    checks["scheduler"] = scheduler.state.value if scheduler else "disabled"

    return HealthResponse(
        status="ok" if checks["database"] == "ok" else "degraded",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
        environment=settings.environment,
        checks=checks,
        metrics=get_metrics().snapshot(),
    )
