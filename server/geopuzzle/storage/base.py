"""Storage interfaces (ports) for routes, pieces, progress and image blobs."""

from __future__ import annotations

from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from geopuzzle.core.models import Piece, ProgressRecord, Route


class ProgressStore(Protocol):
    """Port: one progress record per (route_id, device_id)."""

    async def get_progress(self, route_id: str, device_id: str) -> ProgressRecord | None: ...

    async def upsert_progress(self, record: ProgressRecord) -> bool: ...


class RouteStore(Protocol):
    """Port: routes and their pieces."""

    async def list_routes(self) -> list[Route]: ...

    async def get_route(self, route_id: str) -> Route | None: ...

    async def upsert_route(self, route: Route) -> None: ...

    async def list_pieces(self, route_id: str) -> list[Piece]: ...

    async def replace_pieces(self, route_id: str, pieces: list[Piece]) -> None: ...


class BlobStore(Protocol):
    """Port: source images and sliced fragments."""

    async def put_blob(self, ref: str, data: bytes) -> str: ...

    async def get_blob(self, ref: str) -> bytes | None: ...


class Store(RouteStore, ProgressStore, BlobStore, Protocol):
    """Everything the service needs from the remote store."""
