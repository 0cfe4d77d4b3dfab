"""Helpers shared by the API adapters: JSON bodies and error responses."""

from __future__ import annotations

import json

from fastapi import Request
from fastapi.responses import JSONResponse

from geopuzzle.core.errors import (
    GeoPuzzleError,
    ImageDecodeFailed,
    ImageLoadFailed,
    InvalidImport,
    NoRouteSelected,
    NotWatching,
    PositionError,
    PositionUnavailable,
    RemoteReadFailed,
    RemoteWriteFailed,
    RouteNotFound,
)

# Most specific classes first.
_STATUS = [
    (InvalidImport, 400),
    (RouteNotFound, 404),
    (NoRouteSelected, 409),
    (NotWatching, 409),
    (ImageDecodeFailed, 415),
    (ImageLoadFailed, 422),
    (RemoteReadFailed, 502),
    (RemoteWriteFailed, 502),
    (PositionUnavailable, 503),
    (PositionError, 503),
]


class BadRequest(Exception):
    pass


def error_response(exc: Exception) -> JSONResponse:
    if isinstance(exc, GeoPuzzleError):
        status = next((code for cls, code in _STATUS if isinstance(exc, cls)), 500)
        return JSONResponse(status_code=status,
                            content={"ok": False, "error": exc.code, "message": exc.message})
    return JSONResponse(status_code=400,
                        content={"ok": False, "error": "bad_request", "message": str(exc)})


async def read_json(request: Request) -> dict:
    body = await request.body()
    try:
        data = json.loads(body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise BadRequest("invalid JSON") from exc
    if not isinstance(data, dict):
        raise BadRequest("expected a JSON object")
    return data
