"""Tests for route export/import."""

from __future__ import annotations

import json
import uuid

import pytest

from geopuzzle.core.errors import InvalidImport
from geopuzzle.core.models import Coordinate, Piece, Route
from geopuzzle.core.transfer import export_route, import_route


def _route() -> Route:
    return Route(id=str(uuid.uuid4()), name="Harbour loop", center=Coordinate(43.3, 5.37),
                 radius_m=650, puzzle_image_ref="images/x/abc.png", grid_cols=2, grid_rows=2)


def _pieces(n: int) -> list[Piece]:
    return [Piece(id=str(uuid.uuid4()), lat=43.3 + i * 0.001, lng=5.37, order=i + 1,
                  image_fragment_ref=f"fragments/x/{i + 1}.png") for i in range(n)]


def test_export_is_readable_json():
    text = export_route(_route(), _pieces(3))
    assert "\n  " in text
    payload = json.loads(text)
    assert set(payload) == {"route", "pieces", "puzzle_image_ref", "grid_cols", "grid_rows"}
    assert payload["route"]["name"] == "Harbour loop"
    assert [p["order"] for p in payload["pieces"]] == [1, 2, 3]


def test_export_then_import_keeps_everything():
    route, pieces = _route(), _pieces(4)
    bundle = import_route(export_route(route, list(reversed(pieces))))
    assert bundle.route.id == route.id
    assert bundle.route.center == route.center
    assert bundle.puzzle_image_ref == route.puzzle_image_ref
    assert (bundle.route.grid_cols, bundle.route.grid_rows) == (2, 2)
    assert bundle.pieces == pieces


@pytest.mark.parametrize("text", [
    "{oops",
    "[1, 2, 3]",
    json.dumps({"pieces": []}),
    json.dumps({"route": {"id": "r", "name": "n", "center": {"lat": 1, "lng": 2}}}),
    json.dumps({"route": {"id": "r", "name": "n"}, "pieces": []}),
    json.dumps({"route": {"id": "r", "name": "n", "center": {"lat": 1, "lng": 2}},
                "pieces": [{"id": "p", "lat": "north", "lng": 2, "order": 1}]}),
    json.dumps({"route": {"id": "r", "name": "n", "center": {"lat": 1, "lng": 2}},
                "pieces": [{"id": "p", "lat": 1, "lng": 2, "order": 0}]}),
])
def test_import_rejects_malformed(text):
    with pytest.raises(InvalidImport):
        import_route(text)


def test_import_rejects_duplicate_piece_ids():
    route, pieces = _route(), _pieces(2)
    payload = json.loads(export_route(route, pieces))
    payload["pieces"][1]["id"] = payload["pieces"][0]["id"]
    with pytest.raises(InvalidImport, match="duplicate"):
        import_route(json.dumps(payload))


def test_invalid_json_message():
    with pytest.raises(InvalidImport) as info:
        import_route("not json")
    assert info.value.message == "Invalid JSON"
    assert info.value.code == "invalid_import"
