"""
API routes for the Courrier fetch service.

Status endpoints read in-memory run state. Reads of the tracking database
(run history before the first run, ``/api/stats``) happen off the event loop.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from loguru import logger
from pydantic import BaseModel, Field

from courrier.domain.errors import TrackingStoreError
from courrier.infrastructure.engine import Engine

router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    version: str


class ReadinessResponse(BaseModel):
    """Readiness check response with component status."""

    status: str
    timestamp: str
    services: dict[str, str]


class TriggerResponse(BaseModel):
    """Result of requesting a fetch run."""

    run_id: str
    started: bool = Field(..., description="False when joining a run already in progress")


class CancelResponse(BaseModel):
    run_id: str
    cancelled: bool


class UnitResponse(BaseModel):
    account: str
    mailbox: str | None = None
    status: str
    uidvalidity: int | None = None
    fetched: int = 0
    skipped: int = 0
    failed: int = 0
    last_error: str | None = None
    error_kind: str | None = None
    started_at: str | None = None
    ended_at: str | None = None


class StatusResponse(BaseModel):
    """Snapshot of the current or most recent fetch run."""

    run_id: str | None
    status: str
    is_running: bool
    started_at: str | None
    ended_at: str | None
    error: str | None = None
    per_unit: list[UnitResponse]
    aggregate_counts: dict[str, int]


# ============================================================================
# Dependencies
# ============================================================================


def get_engine(request: Request) -> Engine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Fetch engine not initialized")
    return engine


# ============================================================================
# Health Endpoints
# ============================================================================


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(request: Request) -> HealthResponse:
    """Basic health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=request.app.version,
    )


@router.get("/health/ready", response_model=ReadinessResponse, tags=["health"])
async def readiness_check(engine: Engine = Depends(get_engine)) -> ReadinessResponse:
    """Readiness check: tracking database reachable and scheduler alive."""
    services: dict[str, str] = {}

    try:
        await asyncio.to_thread(engine.store.totals)
        services["tracking_store"] = "healthy"
    except TrackingStoreError as e:
        logger.warning(f"Tracking store health check failed: {e}")
        services["tracking_store"] = f"error: {str(e)[:50]}"

    if engine.mail_config.fetch_interval_seconds:
        services["scheduler"] = "running" if engine.scheduler.running else "stopped"
    else:
        services["scheduler"] = "not_configured"

    ready = services["tracking_store"] == "healthy" and services["scheduler"] != "stopped"
    return ReadinessResponse(
        status="ready" if ready else "degraded",
        timestamp=datetime.now(timezone.utc).isoformat(),
        services=services,
    )


@router.get("/health/live", tags=["health"])
async def liveness_check() -> dict[str, str]:
    """Kubernetes liveness probe endpoint."""
    return {"status": "alive"}


# ============================================================================
# Fetch control
# ============================================================================


@router.post("/api/fetch", response_model=TriggerResponse, tags=["fetch"])
async def trigger_fetch(engine: Engine = Depends(get_engine)) -> TriggerResponse:
    """Start a fetch run, or join the one already running."""
    already_running = engine.coordinator.is_running
    handle = engine.coordinator.trigger()
    return TriggerResponse(run_id=handle.run_id, started=not already_running)


@router.get("/api/fetch/status", response_model=StatusResponse, tags=["fetch"])
async def fetch_status(engine: Engine = Depends(get_engine)) -> StatusResponse:
    try:
        snapshot = await engine.reporter.snapshot_async()
    except TrackingStoreError as e:
        logger.error(f"Could not read run history: {e}")
        raise HTTPException(status_code=500, detail="Tracking store unavailable")
    return StatusResponse(**snapshot)


@router.post("/api/fetch/cancel", response_model=CancelResponse, tags=["fetch"])
async def cancel_fetch(engine: Engine = Depends(get_engine)) -> CancelResponse:
    run = engine.coordinator.status()
    if run is None or not run.is_active:
        raise HTTPException(status_code=409, detail="No fetch run in progress")
    return CancelResponse(run_id=run.id, cancelled=engine.coordinator.cancel(run.id))


# ============================================================================
# Accounts and statistics
# ============================================================================


@router.get("/api/accounts", tags=["accounts"])
async def list_accounts(engine: Engine = Depends(get_engine)) -> list[dict[str, Any]]:
    """Configured servers and accounts (credentials omitted)."""
    return engine.reporter.accounts()


@router.get("/api/stats", tags=["accounts"])
async def stats(engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    """Stored message counts and sizes per account and mailbox."""
    try:
        return await asyncio.to_thread(engine.reporter.stats)
    except TrackingStoreError as e:
        logger.error(f"Stats query failed: {e}")
        raise HTTPException(status_code=500, detail="Tracking store unavailable")
