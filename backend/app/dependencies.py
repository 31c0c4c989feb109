"""Shared FastAPI dependencies for route handlers."""

from fastapi import HTTPException, Request

from app.config import Settings
from app.services.lifecycle import LifecycleController
from app.services.log_streamer import LogStreamer
from app.services.metrics_collector import MetricsCollector
from app.services.scheduler import CollectorScheduler


def _state(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return service


def get_settings(request: Request) -> Settings:
    return _state(request, "settings")


def get_collector(request: Request) -> MetricsCollector:
    return _state(request, "collector")


def get_scheduler(request: Request) -> CollectorScheduler:
    return _state(request, "scheduler")


def get_lifecycle(request: Request) -> LifecycleController:
    return _state(request, "lifecycle")


def get_log_streamer(request: Request) -> LogStreamer:
    return _state(request, "log_streamer")
