"""Route administration endpoints: routes, pieces, puzzle image, export/import.

Thin FastAPI adapters over RouteService. Credential checks are left to the
deployment (reverse proxy); these endpoints do not authenticate.
"""

from __future__ import annotations

import mimetypes

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from geopuzzle.api.common import BadRequest, error_response, read_json
from geopuzzle.core.errors import GeoPuzzleError
from geopuzzle.core.models import Coordinate, Piece, Route
from geopuzzle.core.tiling import grid_warning
from geopuzzle.core.transfer import RouteBundle, export_route, import_route

router = APIRouter(prefix="/api/v1")


def _bundle_view(bundle: RouteBundle) -> dict:
    route = bundle.route
    return {
        "route": route.to_dict(),
        "pieces": [p.to_dict() for p in bundle.pieces],
        "grid": {"cols": route.grid_cols, "rows": route.grid_rows},
        "grid_warning": grid_warning(len(bundle.pieces), route.grid),
    }


def _changed(bundle: RouteBundle) -> JSONResponse:
    """Push the new piece list to live sessions and render the bundle."""
    from geopuzzle.main import get_sessions

    get_sessions().refresh_route(bundle.route, bundle.pieces)
    return JSONResponse(content=_bundle_view(bundle))


def _parse_center(data: dict) -> Coordinate:
    try:
        return Coordinate.from_dict(data["center"])
    except (KeyError, TypeError, ValueError) as exc:
        raise BadRequest("center must be {lat, lng}") from exc


@router.get("/routes")
async def list_routes() -> JSONResponse:
    """Routes, newest first."""
    from geopuzzle.main import get_routes

    routes = await get_routes().list_routes()
    return JSONResponse(content={
        "routes": [{"id": r.id, "name": r.name, "created_at": r.created_at} for r in routes],
    })


@router.post("/routes")
async def create_route(request: Request) -> JSONResponse:
    from geopuzzle.main import get_routes

    try:
        data = await read_json(request)
        route = await get_routes().create_route(
            name=str(data.get("name") or "New Route"),
            center=_parse_center(data),
            radius_m=int(data.get("radius_m", 800)),
        )
    except (BadRequest, ValueError, GeoPuzzleError) as exc:
        return error_response(exc)
    return JSONResponse(status_code=201, content=route.to_dict())


@router.get("/routes/{route_id}")
async def get_route(route_id: str) -> JSONResponse:
    from geopuzzle.main import get_routes

    try:
        bundle = await get_routes().load_route(route_id)
    except GeoPuzzleError as exc:
        return error_response(exc)
    return JSONResponse(content=_bundle_view(bundle))


@router.put("/routes/{route_id}")
async def save_route(route_id: str, request: Request) -> JSONResponse:
    """Save route fields and the full piece list (orders become 1..N by position).

    Body: {"name", "center": {"lat", "lng"}, "radius_m", "pieces": [{"id"?, "lat", "lng"}]}
    """
    from geopuzzle.main import get_routes, get_store

    try:
        data = await read_json(request)
        existing = await get_store().get_route(route_id)
        route = Route(
            id=route_id,
            name=str(data.get("name") or (existing.name if existing else "New Route")),
            center=_parse_center(data),
            radius_m=int(data.get("radius_m", existing.radius_m if existing else 800)),
            puzzle_image_ref=existing.puzzle_image_ref if existing else None,
            grid_cols=existing.grid_cols if existing else 3,
            grid_rows=existing.grid_rows if existing else 3,
        )
        pieces = [
            Piece(
                id=str(p.get("id") or ""),
                lat=float(p["lat"]),
                lng=float(p["lng"]),
                order=i,
                image_fragment_ref=p.get("image_fragment_ref") or None,
            )
            for i, p in enumerate(data.get("pieces", []), start=1)
        ]
        bundle = await get_routes().save_route(route, pieces)
    except (KeyError, TypeError) as exc:
        return error_response(BadRequest(f"malformed piece: {exc}"))
    except (BadRequest, ValueError, GeoPuzzleError) as exc:
        return error_response(exc)
    return _changed(bundle)


@router.post("/routes/{route_id}/pieces")
async def add_piece(route_id: str, request: Request) -> JSONResponse:
    """Place a piece at {"lat", "lng"}; it takes the next order."""
    from geopuzzle.main import get_routes

    try:
        data = await read_json(request)
        point = Coordinate(lat=float(data["lat"]), lng=float(data["lng"]))
        bundle = await get_routes().add_piece(route_id, point)
    except (KeyError, TypeError) as exc:
        return error_response(BadRequest(f"lat and lng are required: {exc}"))
    except (BadRequest, ValueError, GeoPuzzleError) as exc:
        return error_response(exc)
    return _changed(bundle)


@router.delete("/routes/{route_id}/pieces/{piece_id}")
async def remove_piece(route_id: str, piece_id: str) -> JSONResponse:
    from geopuzzle.main import get_routes

    try:
        bundle = await get_routes().remove_piece(route_id, piece_id)
    except GeoPuzzleError as exc:
        return error_response(exc)
    return _changed(bundle)


@router.put("/routes/{route_id}/image")
async def upload_image(route_id: str, request: Request) -> JSONResponse:
    """Upload the puzzle image as the raw request body and slice it."""
    from geopuzzle.main import get_config, get_routes

    body = await request.body()
    limit = get_config().tiling.max_image_bytes
    if len(body) > limit:
        return JSONResponse(status_code=413, content={
            "ok": False, "error": "image_too_large", "message": f"limit is {limit} bytes",
        })
    try:
        bundle = await get_routes().upload_image(route_id, body)
    except GeoPuzzleError as exc:
        return error_response(exc)
    return _changed(bundle)


@router.post("/routes/{route_id}/reslice")
async def reslice(route_id: str) -> JSONResponse:
    from geopuzzle.main import get_routes

    try:
        bundle = await get_routes().reslice(route_id)
    except GeoPuzzleError as exc:
        return error_response(exc)
    return _changed(bundle)


@router.get("/routes/{route_id}/export")
async def export(route_id: str) -> Response:
    from geopuzzle.main import get_routes

    try:
        bundle = await get_routes().load_route(route_id)
    except GeoPuzzleError as exc:
        return error_response(exc)
    return Response(content=export_route(bundle.route, bundle.pieces),
                    media_type="application/json")


@router.post("/routes/import")
async def import_(request: Request) -> JSONResponse:
    """Import an exported route. Rejected payloads change nothing."""
    from geopuzzle.main import get_routes

    try:
        bundle = import_route(await request.body())
        bundle = await get_routes().import_bundle(bundle)
    except (ValueError, GeoPuzzleError) as exc:
        return error_response(exc)
    return _changed(bundle)


@router.get("/blobs/{ref:path}")
async def get_blob(ref: str) -> Response:
    """Puzzle images and fragments."""
    from geopuzzle.main import get_store

    try:
        data = await get_store().get_blob(ref)
    except ValueError as exc:
        return error_response(exc)
    if data is None:
        return JSONResponse(status_code=404, content={"ok": False, "error": "not_found"})
    media_type = mimetypes.guess_type(ref)[0] or "application/octet-stream"
    return Response(content=data, media_type=media_type)
