"""Container metrics API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.dependencies import get_collector
from app.services.auth import require_auth
from app.services.metrics_collector import MetricsCollector

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
async def current_metrics(
    admin: Optional[dict] = Depends(require_auth),
    collector: MetricsCollector = Depends(get_collector),
):
    """Latest system summary, per-container samples and the bounded history."""
    return collector.snapshot().to_dict()


@router.get("/chart")
async def chart_data(
    admin: Optional[dict] = Depends(require_auth),
    limit: Optional[int] = Query(
        None, ge=1, le=50, description="Maximum number of containers to chart"
    ),
    collector: MetricsCollector = Depends(get_collector),
):
    """Chart series for the busiest containers, aligned to the history timestamps."""
    labels, series = collector.chart_series(limit)
    return {
        "labels": [ts.isoformat() for ts in labels],
        "containers": [s.to_dict() for s in series],
    }
