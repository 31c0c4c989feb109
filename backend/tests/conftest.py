"""Pytest configuration and fixtures."""

import pytest

from app.config import Settings
from app.services.fake_runtime import InMemoryRuntimeClient

ADMIN_PASSWORD = "AdminPassword123!"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_runtime(clock):
    """In-memory runtime on a 2-core host with a manual clock."""
    runtime = InMemoryRuntimeClient(cpu_count=2)
    runtime.clock = clock
    return runtime


@pytest.fixture
def settings():
    """Settings with auth disabled and short timeouts for fast tests."""
    return Settings(
        auth_enabled=False,
        metrics_history_limit=5,
        max_chart_containers=3,
        stats_timeout_seconds=0.2,
        lifecycle_lock_timeout_seconds=1.0,
        log_tail_default=10,
        log_tail_max=100,
        testing=True,
    )


@pytest.fixture
def auth_settings(settings):
    """Settings with auth enabled for the admin user."""
    return settings.model_copy(
        update={"auth_enabled": True, "auth_password": ADMIN_PASSWORD, "session_secret": "test-secret"}
    )


def _build_app(settings, runtime):
    from app.main import build_services, create_app

    application = create_app(settings)
    build_services(application, settings, runtime)
    return application


@pytest.fixture
async def app(settings, fake_runtime):
    """Create FastAPI app wired to the in-memory runtime (auth disabled)."""
    return _build_app(settings, fake_runtime)


@pytest.fixture
async def client(app):
    """Create async test client with auth disabled."""
    from httpx import AsyncClient, ASGITransport

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def auth_app(auth_settings, fake_runtime):
    """FastAPI app with the session gate enabled."""
    return _build_app(auth_settings, fake_runtime)


@pytest.fixture
async def anonymous_client(auth_app):
    """Client against the auth-enabled app, not logged in."""
    from httpx import AsyncClient, ASGITransport

    async with AsyncClient(transport=ASGITransport(app=auth_app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def authenticated_client(auth_app):
    """Client logged in as the admin user (token sent as Bearer header)."""
    from httpx import AsyncClient, ASGITransport

    async with AsyncClient(transport=ASGITransport(app=auth_app), base_url="http://test") as ac:
        response = await ac.post(
            "/api/v1/auth/login", json={"username": "admin", "password": ADMIN_PASSWORD}
        )
        assert response.status_code == 200
        token = response.json()["access_token"]
        ac.cookies.clear()
        ac.headers["Authorization"] = f"Bearer {token}"
        yield ac
