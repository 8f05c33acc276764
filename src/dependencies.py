"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from src.config import Settings, get_settings
from src.telemetry.engine import TelemetryEngine


def get_engine(request: Request) -> TelemetryEngine:
    """Return the TelemetryEngine built during application startup.

    The lifespan hook stores it on ``app.state.engine`` before routes run.
    """
    engine: TelemetryEngine | None = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Telemetry engine not initialised")
    return engine


# Annotated shortcuts for route signatures
TelemetryEngineDep = Annotated[TelemetryEngine, Depends(get_engine)]
AppSettings = Annotated[Settings, Depends(get_settings)]
