"""Shared test fixtures."""

from __future__ import annotations

import io

import pytest
from httpx import ASGITransport, AsyncClient
from PIL import Image

import geopuzzle.main as main_module
from geopuzzle.config import AppConfig
from geopuzzle.core.progress import ProgressSynchronizer
from geopuzzle.core.routes import RouteService
from geopuzzle.core.stats import WalkStats
from geopuzzle.storage.file_storage import FileStore


@pytest.fixture(autouse=True)
def _init_server(tmp_path):
    """Initialize server singletons for every test, using a temp directory."""
    config = AppConfig()
    config.storage.base_dir = str(tmp_path / "data")
    config.logging.level = "warning"
    # No read timeout or staleness filtering: tests drive positions explicitly.
    config.walk.position_timeout_seconds = 0
    config.walk.position_max_age_seconds = 0

    stats = WalkStats(active_window_seconds=config.limits.active_window_seconds)
    store = FileStore(base_dir=config.storage.base_dir)
    routes = RouteService(store, fragment_format=config.tiling.fragment_format, stats=stats)
    sessions = main_module.create_session_registry(
        config, routes, ProgressSynchronizer(store), stats)

    # Patch module-level singletons
    main_module._config = config
    main_module._stats = stats
    main_module._store = store
    main_module._routes = routes
    main_module._sessions = sessions

    yield

    # Cleanup
    main_module._config = None
    main_module._stats = None
    main_module._store = None
    main_module._routes = None
    main_module._sessions = None


@pytest.fixture
def store():
    return main_module.get_store()


@pytest.fixture
def route_service():
    return main_module.get_routes()


@pytest.fixture
async def client():
    from geopuzzle.main import app, get_sessions

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    await get_sessions().shutdown()


def _grid_image(width: int, height: int, cols: int, rows: int, fmt: str = "PNG") -> bytes:
    """Image whose (row, col) cell of a cols x rows grid is painted (row*80, col*80, 200)."""
    image = Image.new("RGB", (width, height))
    cell_w, cell_h = width // cols, height // rows
    for r in range(rows):
        for c in range(cols):
            image.paste((r * 80, c * 80, 200), (c * cell_w, r * cell_h, (c + 1) * cell_w, (r + 1) * cell_h))
    buf = io.BytesIO()
    image.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def grid_image():
    return _grid_image
