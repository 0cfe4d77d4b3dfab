"""GeoPuzzle Walks server — main entry point.

This is the only file that knows about concrete implementations.
It wires together the core, position sources, storage, and API layers.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from fastapi import FastAPI

from geopuzzle.api.monitoring import router as monitoring_router
from geopuzzle.api.routes import router as routes_router
from geopuzzle.api.walk import router as walk_router
from geopuzzle.config import AppConfig, load_config
from geopuzzle.core.progress import ProgressSynchronizer
from geopuzzle.core.routes import RouteService
from geopuzzle.core.session import SessionRegistry, WalkSession
from geopuzzle.core.stats import WalkStats
from geopuzzle.storage.file_storage import FileStore

log = structlog.get_logger()

# Module-level singletons (set during startup)
_config: AppConfig | None = None
_stats: WalkStats | None = None
_store: FileStore | None = None
_routes: RouteService | None = None
_sessions: SessionRegistry | None = None


def get_config() -> AppConfig:
    assert _config is not None, "Server not initialized"
    return _config


def get_stats() -> WalkStats:
    assert _stats is not None, "Server not initialized"
    return _stats


def get_store() -> FileStore:
    assert _store is not None, "Server not initialized"
    return _store


def get_routes() -> RouteService:
    assert _routes is not None, "Server not initialized"
    return _routes


def get_sessions() -> SessionRegistry:
    assert _sessions is not None, "Server not initialized"
    return _sessions


def create_session_registry(
    config: AppConfig,
    routes: RouteService,
    synchronizer: ProgressSynchronizer,
    stats: WalkStats,
) -> SessionRegistry:
    walk = config.walk

    def factory(device_id: str) -> WalkSession:
        return WalkSession(
            device_id,
            routes=routes,
            synchronizer=synchronizer,
            stats=stats,
            collection_radius_m=walk.collection_radius_m,
            position_queue_size=walk.position_queue_size,
            position_timeout_seconds=walk.position_timeout_seconds,
            position_max_age_seconds=walk.position_max_age_seconds,
            error_history=walk.error_history,
        )

    return SessionRegistry(factory)


def _setup_logging(config: AppConfig) -> None:
    """Configure structlog based on the logging config."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if config.logging.format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=not config.logging.file))

    logger_factory = None
    if config.logging.file:
        log_path = Path(config.logging.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger_factory = structlog.WriteLoggerFactory(file=log_path.open("a"))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.logging.level.upper()),
        ),
        logger_factory=logger_factory or structlog.PrintLoggerFactory(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    global _config, _stats, _store, _routes, _sessions

    _config = load_config()
    _setup_logging(_config)

    log.info("server_starting",
             env=_config.server.env,
             storage_dir=_config.storage.base_dir,
             collection_radius_m=_config.walk.collection_radius_m)

    # Create components
    _stats = WalkStats(active_window_seconds=_config.limits.active_window_seconds)
    _store = FileStore(base_dir=_config.storage.base_dir)
    _routes = RouteService(_store, fragment_format=_config.tiling.fragment_format, stats=_stats)
    _sessions = create_session_registry(_config, _routes, ProgressSynchronizer(_store), _stats)

    log.info("server_started",
             host=_config.server.host,
             port=_config.server.port)

    yield

    # Shutdown: release every position watch and finish pending writes
    await _sessions.shutdown()
    log.info("server_stopped")


app = FastAPI(
    title="GeoPuzzle Walks",
    description="GPS puzzle-piece collection server",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(monitoring_router)
app.include_router(routes_router)
app.include_router(walk_router)
