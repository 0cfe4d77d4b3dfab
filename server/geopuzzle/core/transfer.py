"""Route export/import as human-readable JSON.

The payload carries the route, its pieces, the puzzle image reference and
the grid. Import validates everything before returning, so a malformed
payload never leaves partial state behind.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field

from geopuzzle.core.errors import InvalidImport
from geopuzzle.core.models import Piece, Route, ordered


@dataclass(frozen=True)
class RouteBundle:
    route: Route
    pieces: list[Piece] = field(default_factory=list)

    @property
    def puzzle_image_ref(self) -> str | None:
        return self.route.puzzle_image_ref


def export_route(route: Route, pieces: list[Piece]) -> str:
    payload = {
        "route": {
            "id": route.id,
            "name": route.name,
            "center": route.center.to_dict(),
            "radius_m": route.radius_m,
        },
        "pieces": [p.to_dict() for p in ordered(pieces)],
        "puzzle_image_ref": route.puzzle_image_ref,
        "grid_cols": route.grid_cols,
        "grid_rows": route.grid_rows,
    }
    return json.dumps(payload, indent=2)


def import_route(text: str | bytes) -> RouteBundle:
    try:
        payload = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise InvalidImport("Invalid JSON") from exc
    if not isinstance(payload, dict):
        raise InvalidImport("payload must be a JSON object")
    if not isinstance(payload.get("route"), dict) or not isinstance(payload.get("pieces"), list):
        raise InvalidImport("payload needs 'route' and 'pieces'")

    route_data = dict(payload["route"])
    route_data["puzzle_image_ref"] = payload.get("puzzle_image_ref")
    route_data["grid_cols"] = payload.get("grid_cols") or 3
    route_data["grid_rows"] = payload.get("grid_rows") or 3
    try:
        route = Route.from_dict(route_data)
        pieces = [Piece.from_dict(p) for p in payload["pieces"]]
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidImport(f"malformed route payload: {exc}") from exc

    ids = [p.id for p in pieces]
    if len(set(ids)) != len(ids):
        raise InvalidImport("duplicate piece ids")
    return RouteBundle(route=route, pieces=ordered(pieces))
