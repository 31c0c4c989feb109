"""DockPulse - Container Resource Monitoring and Lifecycle Control."""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api import api_router
from app.api.system import get_version
from app.config import Settings
from app.exceptions import DockPulseError
from app.services.auth import SessionGate
from app.services.lifecycle import LifecycleController
from app.services.log_streamer import LogStreamer
from app.services.metrics import set_app_info
from app.services.metrics_collector import MetricsCollector
from app.services.runtime_client import DockerRuntimeClient, RuntimeClient
from app.services.scheduler import CollectorScheduler
from app.utils.error_handling import log_and_continue
from app.utils.security import sanitize_log_message

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Health checks and scrapes hit these every few seconds
QUIET_PATHS = ["/health", "/api/v1/system/health", "/api/v1/system/metrics"]


class AccessLogFilter(logging.Filter):
    """Drop Granian access log lines for health check and scrape endpoints."""

    def __init__(self, quiet_paths: list[str]) -> None:
        super().__init__()
        self.quiet_paths = quiet_paths

    def filter(self, record: logging.LogRecord) -> bool:
        line = record.getMessage()
        return not any(f" {path} " in line or line.endswith(path) for path in self.quiet_paths)


logging.getLogger("granian.access").addFilter(AccessLogFilter(QUIET_PATHS))


def build_services(
    app: FastAPI, settings: Settings, runtime: Optional[RuntimeClient] = None
) -> None:
    """Create the engine services and attach them to ``app.state``."""
    if runtime is None:
        runtime = DockerRuntimeClient(settings.docker_host, settings.docker_timeout_seconds)
    collector = MetricsCollector(runtime, settings)

    app.state.settings = settings
    app.state.runtime = runtime
    app.state.collector = collector
    app.state.scheduler = CollectorScheduler(collector, settings.metrics_interval_seconds)
    app.state.lifecycle = LifecycleController(runtime, settings)
    app.state.log_streamer = LogStreamer(runtime, settings)
    app.state.session_gate = SessionGate(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire services, take a first sample, and run the collector until shutdown."""
    settings: Settings = app.state.settings
    logger.info(f"Starting DockPulse against {sanitize_log_message(settings.docker_host)}")

    build_services(app, settings)
    set_app_info(get_version())

    try:
        await app.state.collector.tick()
    except DockPulseError as e:
        log_and_continue(logger, e, "Initial metrics tick failed, scheduler will retry")

    await app.state.scheduler.start()

    if settings.auth_enabled:
        logger.info(
            f"Authentication enabled for user '{sanitize_log_message(settings.auth_username)}'"
        )
    else:
        logger.warning(
            "DOCKPULSE_AUTH_ENABLED is false - container control is open to anyone "
            "who can reach this port."
        )

    yield

    logger.info("Shutting down DockPulse...")
    await app.state.scheduler.stop()
    await app.state.log_streamer.close_all()
    await app.state.runtime.close()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Settings to use; read from the environment when omitted.
            The runtime-facing services are attached by the lifespan (or by
            ``build_services`` in tests).
    """
    if settings is None:
        settings = Settings.from_env()

    application = FastAPI(
        title="DockPulse",
        description="Container resource monitoring and lifecycle control",
        version=get_version(),
        lifespan=lifespan,
    )
    application.state.settings = settings

    wildcard = settings.cors_origins == ["*"]
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        # Browsers refuse credentialed requests against a wildcard origin
        allow_credentials=not wildcard,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Accept"],
    )

    @application.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        return response

    @application.exception_handler(Exception)
    async def unhandled_exception(request: Request, exc: Exception):
        """Log unexpected errors in full; answer with a generic 500.

        With DOCKPULSE_DEBUG=true the exception text is returned as well.
        """
        logger.error(
            f"Unhandled {type(exc).__name__} on {request.method} "
            f"{sanitize_log_message(request.url.path)}: {sanitize_log_message(str(exc))}",
            exc_info=True,
        )
        if request.app.state.settings.debug:
            return JSONResponse(
                status_code=500,
                content={"detail": str(exc), "type": type(exc).__name__, "debug": True},
            )
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    @application.get("/health")
    async def liveness():
        return {"status": "healthy", "service": "dockpulse"}

    application.include_router(api_router)
    return application


app = create_app()


if __name__ == "__main__":
    import subprocess
    import sys

    # Development server with reload; production runs the same Granian command without it
    sys.exit(
        subprocess.run(
            [
                "granian",
                "--interface",
                "asgi",
                "--host",
                os.getenv("DOCKPULSE_HOST", "0.0.0.0"),
                "--port",
                os.getenv("DOCKPULSE_PORT", "8790"),
                "--reload",
                "app.main:app",
            ]
        ).returncode
    )
