"""Mendwell Telemetry API — FastAPI application entry point.

Run locally:
    uvicorn src.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.config import get_settings
from src.middleware.request_log import REQUEST_ID_HEADER, RequestLogMiddleware
from src.routers import health, telemetry
from src.telemetry.config_loader import get_ingestion_config, reload_ingestion_config
from src.telemetry.engine import TelemetryEngine

# ---------- Logging ----------

logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("mendwell")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logger.info(
        "Starting Mendwell Telemetry API v%s [%s]",
        settings.app_version,
        settings.environment,
    )
    if settings.ingestion_config_path:
        config = reload_ingestion_config(Path(settings.ingestion_config_path))
    else:
        config = get_ingestion_config()
    app.state.engine = TelemetryEngine(config)
    yield
    app.state.engine = None
    logger.info("Mendwell Telemetry API shut down")


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Mendwell Telemetry API",
        description=(
            "Wearable telemetry ingestion for post-surgical recovery monitoring: "
            "validation, gap filling, deduplication, device sync and offline replay."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ---------- Middleware (order matters — outermost first) ----------

    app.add_middleware(RequestLogMiddleware)

    # CORS — must be the innermost middleware so it can handle preflight
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )

    # ---------- Health check (outside v1 prefix — always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(telemetry.router, prefix=v1_prefix)

    return app


app = create_app()
