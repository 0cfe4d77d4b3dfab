"""Walk endpoints, one session per device id.

The device (or the simulator) selects a route, starts the walk and then
streams its positions here. Each position response already reflects the
collection it caused.
"""

from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

import structlog

from geopuzzle.api.common import BadRequest, error_response, read_json
from geopuzzle.core.errors import GeoPuzzleError
from geopuzzle.core.models import Coordinate, PositionSample

router = APIRouter(prefix="/api/v1/walk")

log = structlog.get_logger()


def _session(device_id: str):
    from geopuzzle.main import get_sessions

    return get_sessions().get(device_id)


@router.get("/{device_id}")
async def walk_state(device_id: str) -> JSONResponse:
    return JSONResponse(content=_session(device_id).snapshot())


@router.post("/{device_id}/route")
async def select_route(device_id: str, request: Request) -> JSONResponse:
    """Body: {"route_id": "..."}. Restores this device's saved progress."""
    session = _session(device_id)
    try:
        data = await read_json(request)
        route_id = data.get("route_id")
        if not route_id:
            raise BadRequest("route_id is required")
        await session.select_route(str(route_id))
    except (BadRequest, GeoPuzzleError) as exc:
        return error_response(exc)
    return JSONResponse(content=session.snapshot())


@router.post("/{device_id}/start")
async def start_walk(device_id: str) -> JSONResponse:
    session = _session(device_id)
    try:
        session.start()
    except GeoPuzzleError as exc:
        log.info("walk_start_refused", device=device_id[:8], reason=exc.code)
        return error_response(exc)
    return JSONResponse(content=session.snapshot())


@router.post("/{device_id}/stop")
async def stop_walk(device_id: str) -> JSONResponse:
    session = _session(device_id)
    session.stop()
    return JSONResponse(content=session.snapshot())


@router.post("/{device_id}/reset")
async def reset_progress(device_id: str) -> JSONResponse:
    session = _session(device_id)
    await session.reset()
    return JSONResponse(content=session.snapshot())


@router.put("/{device_id}/radius")
async def set_radius(device_id: str, meters: float = Query(..., gt=0)) -> JSONResponse:
    from geopuzzle.main import get_config

    walk = get_config().walk
    if not walk.min_radius_m <= meters <= walk.max_radius_m:
        return error_response(BadRequest(
            f"radius must be between {walk.min_radius_m} and {walk.max_radius_m} m"))
    session = _session(device_id)
    session.set_radius(meters)
    return JSONResponse(content=session.snapshot())


@router.post("/{device_id}/position")
async def push_position(device_id: str, request: Request) -> JSONResponse:
    """Deliver one position sample, or a device-side failure.

    Sample: {"lat", "lng", "accuracy_m"?, "timestamp_ms"?}
    Failure: {"error": "message", "fatal": false}
    """
    session = _session(device_id)
    try:
        data = await read_json(request)
        if "error" in data:
            await session.push_position_error(str(data["error"]), fatal=bool(data.get("fatal")))
        else:
            sample = PositionSample(
                coordinate=Coordinate(lat=float(data["lat"]), lng=float(data["lng"])),
                accuracy_m=data.get("accuracy_m"),
                timestamp_ms=data.get("timestamp_ms"),
            )
            await session.push_position(sample)
    except (KeyError, TypeError, ValueError) as exc:
        return error_response(BadRequest(f"lat and lng are required: {exc}"))
    except (BadRequest, GeoPuzzleError) as exc:
        return error_response(exc)
    return JSONResponse(content=session.snapshot())


@router.post("/{device_id}/position/reconnect")
async def reconnect_position(device_id: str) -> JSONResponse:
    """Reopen a position source closed by a fatal failure."""
    session = _session(device_id)
    session.reconnect_source()
    return JSONResponse(content=session.snapshot())
