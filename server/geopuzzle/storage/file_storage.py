"""File-based storage implementation.

Layout under base_dir:
- routes/<route_id>.json: route row plus its pieces
- progress/<route_id>/<device_id>.json: one progress record per device
- blobs/<ref>: source images and fragments
"""

from __future__ import annotations

import hashlib
import json
import os
import re
from pathlib import Path

import structlog

from geopuzzle.core.models import Piece, ProgressRecord, Route, ordered

log = structlog.get_logger()

_SAFE_NAME = re.compile(r"^[A-Za-z0-9_-][A-Za-z0-9_.-]*$")


def _safe_name(value: str) -> str:
    """Map an opaque key to a file name that cannot escape its directory."""
    if _SAFE_NAME.match(value) and len(value) <= 128:
        return value
    return "h-" + hashlib.sha256(value.encode("utf-8")).hexdigest()


def _write_json(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2))
    os.replace(tmp, path)


class FileStore:
    """Store backed by JSON files and blobs on disk."""

    def __init__(self, base_dir: str | Path) -> None:
        self._base_dir = Path(base_dir)
        self._base_dir.mkdir(parents=True, exist_ok=True)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def _route_path(self, route_id: str) -> Path:
        return self._base_dir / "routes" / f"{_safe_name(route_id)}.json"

    def _progress_path(self, route_id: str, device_id: str) -> Path:
        return self._base_dir / "progress" / _safe_name(route_id) / f"{_safe_name(device_id)}.json"

    def _blob_path(self, ref: str) -> Path:
        parts = [p for p in ref.split("/") if p]
        if not parts or any(not _SAFE_NAME.match(p) for p in parts):
            raise ValueError(f"invalid blob ref: {ref!r}")
        return self._base_dir.joinpath("blobs", *parts)

    def _read_route_file(self, route_id: str) -> dict | None:
        path = self._route_path(route_id)
        if not path.exists():
            return None
        return json.loads(path.read_text())

    # -- routes --------------------------------------------------------------

    async def list_routes(self) -> list[Route]:
        routes_dir = self._base_dir / "routes"
        if not routes_dir.exists():
            return []
        routes = []
        for path in routes_dir.glob("*.json"):
            try:
                routes.append(Route.from_dict(json.loads(path.read_text())["route"]))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError):
                log.warning("route_file_unreadable", path=str(path), exc_info=True)
        routes.sort(key=lambda r: r.created_at, reverse=True)
        return routes

    async def get_route(self, route_id: str) -> Route | None:
        data = self._read_route_file(route_id)
        return Route.from_dict(data["route"]) if data else None

    async def upsert_route(self, route: Route) -> None:
        data = self._read_route_file(route.id) or {"pieces": []}
        data["route"] = route.to_dict()
        _write_json(self._route_path(route.id), data)
        log.debug("route_written", route=route.id)

    async def list_pieces(self, route_id: str) -> list[Piece]:
        data = self._read_route_file(route_id)
        if not data:
            return []
        return ordered(Piece.from_dict(p) for p in data.get("pieces", []))

    async def replace_pieces(self, route_id: str, pieces: list[Piece]) -> None:
        data = self._read_route_file(route_id)
        if data is None:
            raise KeyError(f"route {route_id} does not exist")
        data["pieces"] = [p.to_dict() for p in ordered(pieces)]
        _write_json(self._route_path(route_id), data)
        log.debug("pieces_written", route=route_id, count=len(pieces))

    # -- progress ------------------------------------------------------------

    async def get_progress(self, route_id: str, device_id: str) -> ProgressRecord | None:
        path = self._progress_path(route_id, device_id)
        if not path.exists():
            return None
        return ProgressRecord.from_dict(json.loads(path.read_text()))

    async def upsert_progress(self, record: ProgressRecord) -> bool:
        """Write the record unless a newer one already landed. Returns True if written."""
        path = self._progress_path(record.route_id, record.device_id)
        if path.exists():
            current = json.loads(path.read_text())
            if current.get("updated_at", "") > record.updated_at:
                log.info("progress_stale_write_ignored", route=record.route_id,
                         device=record.device_id[:8])
                return False
        _write_json(path, record.to_dict())
        return True

    # -- blobs ---------------------------------------------------------------

    async def put_blob(self, ref: str, data: bytes) -> str:
        path = self._blob_path(ref)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return ref

    async def get_blob(self, ref: str) -> bytes | None:
        path = self._blob_path(ref)
        if not path.exists():
            return None
        return path.read_bytes()
