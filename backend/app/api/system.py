"""System information API endpoints."""

import logging
import tomllib
from datetime import UTC, datetime
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from app.dependencies import get_collector, get_scheduler
from app.services.auth import require_auth
from app.services.log_streamer import LogStreamer
from app.services.metrics import get_content_type, get_metrics
from app.services.metrics_collector import MetricsCollector
from app.services.scheduler import CollectorScheduler

logger = logging.getLogger(__name__)
router = APIRouter()


def get_version() -> str:
    """Get version from pyproject.toml."""
    candidates = [
        Path("/app/pyproject.toml"),
        Path(__file__).resolve().parent.parent.parent.parent / "pyproject.toml",
        Path("pyproject.toml"),
    ]
    for pyproject_path in candidates:
        if not pyproject_path.exists():
            continue
        try:
            with open(pyproject_path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.debug(f"Cannot read {pyproject_path}: {e}")
            continue
        return data.get("project", {}).get("version", "unknown")
    return "unknown"


@router.get("/info")
async def get_system_info(
    request: Request,
    admin: Optional[dict] = Depends(require_auth),
    collector: MetricsCollector = Depends(get_collector),
    scheduler: CollectorScheduler = Depends(get_scheduler),
):
    """Get system information."""
    snapshot = collector.snapshot()
    streamer: LogStreamer = request.app.state.log_streamer
    return {
        "version": get_version(),
        "docker_version": snapshot.system.docker_version if snapshot.system else "unknown",
        "system": snapshot.system.to_dict() if snapshot.system else None,
        "scheduler": scheduler.get_status(),
        "active_log_streams": len(streamer.active_sessions()),
    }


@router.get("/health")
async def health_check(
    collector: MetricsCollector = Depends(get_collector),
    scheduler: CollectorScheduler = Depends(get_scheduler),
):
    """Health check for monitoring.

    Checks:
    - Metrics scheduler is running
    - Last collector tick reached the container runtime

    Note: This endpoint is public (no authentication required) for health monitoring
    """
    snapshot = collector.snapshot()
    components = {
        "scheduler": "healthy" if scheduler.running else "unhealthy",
        "docker": "unhealthy" if snapshot.last_error else "healthy",
    }
    if snapshot.tick_count == 0 and not snapshot.last_error:
        components["docker"] = "unknown"

    overall = "healthy"
    if any(c == "unhealthy" for c in components.values()):
        overall = "degraded"

    return {
        "status": overall,
        "components": components,
        "last_tick_at": snapshot.last_tick_at.isoformat() if snapshot.last_tick_at else None,
        "last_error": snapshot.last_error,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/metrics")
async def prometheus_metrics():
    """Prometheus metrics endpoint.

    Note: This endpoint is public (no authentication required) for Prometheus scraping
    """
    return Response(content=get_metrics(), media_type=get_content_type())
