"""Health check and monitoring endpoints."""

from __future__ import annotations

import json
import shutil
from pathlib import Path

from fastapi import APIRouter

router = APIRouter(prefix="/api/v1")

# Load build info once at import time.
_BUILD_INFO_PATH = Path(__file__).parent.parent / "build_info.json"
_BUILD_INFO: dict = {}
if _BUILD_INFO_PATH.exists():
    try:
        _BUILD_INFO = json.loads(_BUILD_INFO_PATH.read_text())
    except (json.JSONDecodeError, OSError):
        pass


@router.get("/health")
async def health() -> dict:
    """Basic health check."""
    from geopuzzle.main import get_config, get_sessions, get_stats

    config = get_config()
    storage_path = Path(config.storage.base_dir)
    try:
        disk = shutil.disk_usage(storage_path if storage_path.exists() else ".")
        disk_free_gb = round(disk.free / (1024 ** 3), 1)
        storage_writable = True
    except OSError:
        disk_free_gb = -1
        storage_writable = False

    sessions = get_sessions()
    result = {
        "status": "ok",
        "version": "0.1.0",
        "uptime_seconds": get_stats().snapshot()["uptime_seconds"],
        "sessions": len(sessions),
        "watching": sessions.watching_count(),
        "storage_writable": storage_writable,
        "disk_free_gb": disk_free_gb,
    }
    result.update(_BUILD_INFO)
    return result


@router.get("/stats")
async def stats() -> dict:
    """Collection counters and the number of devices active in the window."""
    from geopuzzle.main import get_stats

    return get_stats().snapshot()


@router.get("/config")
async def get_client_config() -> dict:
    """Configuration endpoint for walker clients.

    Clients call this on startup to get the radius bounds and the position
    watch options the server expects.
    """
    from geopuzzle.main import get_config

    walk = get_config().walk
    return {
        "collection_radius_m": walk.collection_radius_m,
        "min_radius_m": walk.min_radius_m,
        "max_radius_m": walk.max_radius_m,
        "position_max_age_seconds": walk.position_max_age_seconds,
        "position_timeout_seconds": walk.position_timeout_seconds,
        "enable_high_accuracy": True,
    }
