"""Integration test fixtures for Plainly.

Provides an async HTTP client and a sync TestClient (for WebSocket) wired
to a coordinator built around the fake capture device and the mock
processing backend, with a temporary SQLite database behind the routes.
"""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from starlette.testclient import TestClient

from plainly.api.app import create_app
from plainly.core.config import Settings
from plainly.services import coordinator as coordinator_module
from plainly.services.coordinator import SessionCoordinator
from plainly.services.storage import database


def _fast_settings(**overrides) -> Settings:
    values = {
        "tick_interval_seconds": 0.05,
        "device_start_backoff_seconds": 0.001,
        "device_start_backoff_max_seconds": 0.002,
        "stage_min_display_seconds": [0.005, 0.005, 0.005, 0.005],
        "stage_gap_seconds": 0.0,
        "finish_delay_seconds": 0.0,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def app():
    """Create a fresh FastAPI application instance."""
    return create_app()


@pytest.fixture
async def api_coordinator(make_device, mock_service):
    coordinator = SessionCoordinator(make_device, mock_service, settings=_fast_settings())
    coordinator_module.set_coordinator(coordinator)
    yield coordinator
    coordinator_module.set_coordinator(None)
    await coordinator.close()


@pytest.fixture
async def async_client(app, db_engine, api_coordinator):
    """AsyncClient backed by the temporary test engine.

    Injects the test engine into the database module so that all routes
    use the same SQLite file with tables already created.
    """
    database._engine = db_engine
    database._session_factory = None
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    # Drain background work while the test engine is still installed
    await api_coordinator.close()
    database.reset_engine()


@pytest.fixture
def ws_coordinator(tmp_path, mock_service):
    """Coordinator whose sessions use a real StreamCaptureDevice."""
    from plainly.services.capture import StreamCaptureDevice

    recordings_dir = tmp_path / "recordings"
    coordinator = SessionCoordinator(
        lambda: StreamCaptureDevice(recordings_dir=recordings_dir),
        mock_service,
        settings=_fast_settings(tick_interval_seconds=30.0),
    )
    coordinator_module.set_coordinator(coordinator)
    yield coordinator
    coordinator_module.set_coordinator(None)


@pytest.fixture
def test_client(app, tmp_path, ws_coordinator):
    """Synchronous TestClient for WebSocket tests.

    The engine is created unbound and used only from the TestClient's own
    event loop; the app lifespan creates the tables and disposes it.
    """
    database._engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ws.db'}")
    database._session_factory = None
    with TestClient(app) as c:
        yield c
    database.reset_engine()
