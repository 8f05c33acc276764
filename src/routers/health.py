"""Health check endpoint — public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from src.dependencies import AppSettings

router = APIRouter(tags=["system"])
logger = logging.getLogger("mendwell.health")


@router.get("/health")
async def health_check(request: Request, settings: AppSettings) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also reports the loaded ingestion policy version.
    """
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        logger.warning("Health check ran before the telemetry engine was initialised")

    return {
        "status": "healthy" if engine is not None else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "policy_version": engine.config.version if engine is not None else None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
