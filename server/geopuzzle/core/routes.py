"""Route service — admin editing of routes, pieces and the puzzle image.

Every change that alters the piece count or the source image goes through
the route's ``TilingEngine``, which only re-slices when the slice key moved.
"""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable, TYPE_CHECKING

import structlog

from geopuzzle.core.errors import ImageLoadFailed, RemoteReadFailed, RemoteWriteFailed, RouteNotFound
from geopuzzle.core.models import Coordinate, Piece, Route, is_valid_id, ordered, renumber
from geopuzzle.core.tiling import (
    SliceResult,
    TilingEngine,
    assign_fragments,
    compute_grid,
    decode_image,
    image_identity,
)
from geopuzzle.core.transfer import RouteBundle

if TYPE_CHECKING:
    from geopuzzle.core.stats import WalkStats
    from geopuzzle.storage.base import Store

log = structlog.get_logger()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class RouteService:
    def __init__(self, store: Store, fragment_format: str = "PNG",
                 stats: WalkStats | None = None) -> None:
        self._store = store
        self._stats = stats
        self._format = fragment_format
        self._tilers: dict[str, TilingEngine] = {}

    def tiler(self, route_id: str) -> TilingEngine:
        if route_id not in self._tilers:
            self._tilers[route_id] = TilingEngine(self._format)
        return self._tilers[route_id]

    async def list_routes(self) -> list[Route]:
        return await self._store.list_routes()

    async def create_route(self, name: str, center: Coordinate, radius_m: int = 800) -> Route:
        route = Route(
            id=str(uuid.uuid4()),
            name=name,
            center=center,
            radius_m=radius_m,
            created_at=_now_iso(),
        )
        await self._store.upsert_route(route)
        await self._store.replace_pieces(route.id, [])
        log.info("route_created", route=route.id, name=name)
        return route

    async def load_route(self, route_id: str) -> RouteBundle:
        try:
            route = await self._store.get_route(route_id)
            pieces = await self._store.list_pieces(route_id) if route else []
        except (OSError, ValueError) as exc:
            raise RemoteReadFailed(f"loading route failed: {exc}") from exc
        if route is None:
            raise RouteNotFound(f"route {route_id} not found")
        return RouteBundle(route=route, pieces=pieces)

    async def save_route(self, route: Route, pieces: Iterable[Piece]) -> RouteBundle:
        """Upsert the route and replace its pieces, renumbered 1..N.

        A route id that is not a UUID (e.g. from an older export) is replaced,
        so progress for the route can be persisted.
        """
        if not is_valid_id(route.id):
            new_id = str(uuid.uuid4())
            log.warning("route_id_replaced", old=route.id, new=new_id)
            route = replace(route, id=new_id)
        existing = await self._store.get_route(route.id)
        known_refs: dict[str, str | None] = {}
        if existing is not None:
            route = replace(route, created_at=existing.created_at)
            known_refs = {p.id: p.image_fragment_ref for p in await self._store.list_pieces(route.id)}
        elif not route.created_at:
            route = replace(route, created_at=_now_iso())

        fixed = []
        for p in pieces:
            if not is_valid_id(p.id):
                p = replace(p, id=str(uuid.uuid4()))
            elif not p.image_fragment_ref and known_refs.get(p.id):
                p = replace(p, image_fragment_ref=known_refs[p.id])
            fixed.append(p)
        pieces = renumber(fixed)
        await self._store.upsert_route(route)
        await self._store.replace_pieces(route.id, pieces)
        log.info("route_saved", route=route.id, pieces=len(pieces))
        return await self._retile(RouteBundle(route, pieces))

    async def import_bundle(self, bundle: RouteBundle) -> RouteBundle:
        return await self.save_route(bundle.route, bundle.pieces)

    async def add_piece(self, route_id: str, point: Coordinate) -> RouteBundle:
        bundle = await self.load_route(route_id)
        piece = Piece(
            id=str(uuid.uuid4()),
            lat=point.lat,
            lng=point.lng,
            order=len(bundle.pieces) + 1,
        )
        pieces = bundle.pieces + [piece]
        await self._store.replace_pieces(route_id, pieces)
        log.info("piece_added", route=route_id, piece=piece.id, order=piece.order)
        return await self._retile(RouteBundle(bundle.route, pieces))

    async def remove_piece(self, route_id: str, piece_id: str) -> RouteBundle:
        bundle = await self.load_route(route_id)
        kept = [p for p in bundle.pieces if p.id != piece_id]
        if len(kept) == len(bundle.pieces):
            return bundle
        pieces = renumber(kept)
        await self._store.replace_pieces(route_id, pieces)
        log.info("piece_removed", route=route_id, piece=piece_id, remaining=len(pieces))
        return await self._retile(RouteBundle(bundle.route, pieces))

    async def upload_image(self, route_id: str, data: bytes) -> RouteBundle:
        """Store a new puzzle image and slice it for the current pieces.

        Nothing is written if the image cannot be decoded or sliced.
        """
        bundle = await self.load_route(route_id)
        image = decode_image(data)
        ext = (image.format or "img").lower()
        result = None
        if bundle.pieces:
            result = self.tiler(route_id).ensure(data, len(bundle.pieces))

        ref = f"images/{route_id}/{image_identity(data)[:16]}.{ext}"
        await self._store.put_blob(ref, data)
        grid = compute_grid(len(bundle.pieces))
        route = replace(bundle.route, puzzle_image_ref=ref,
                        grid_cols=grid.cols, grid_rows=grid.rows)
        await self._store.upsert_route(route)
        log.info("puzzle_image_uploaded", route=route_id, bytes=len(data),
                 size=f"{image.width}x{image.height}")
        if result is None:
            return RouteBundle(route, bundle.pieces)
        return await self._apply_slice(route, bundle.pieces, result)

    async def reslice(self, route_id: str) -> RouteBundle:
        """Slice again from the stored image regardless of the cache."""
        bundle = await self.load_route(route_id)
        return await self._retile(bundle, force=True)

    async def ensure_fragments(self, route_id: str) -> RouteBundle:
        """Slice lazily when a route has an image but its pieces carry no fragments."""
        bundle = await self.load_route(route_id)
        if any(p.image_fragment_ref for p in bundle.pieces):
            return bundle
        return await self._retile(bundle)

    async def _retile(self, bundle: RouteBundle, force: bool = False) -> RouteBundle:
        route, pieces = bundle.route, bundle.pieces
        if not route.puzzle_image_ref or not pieces:
            return bundle
        data = await self._store.get_blob(route.puzzle_image_ref)
        if data is None:
            raise ImageLoadFailed(f"puzzle image {route.puzzle_image_ref} is missing")

        tiler = self.tiler(route.id)
        if force:
            result = tiler.reslice(data, len(pieces))
        else:
            result = tiler.ensure(data, len(pieces))
        if result is None:
            return bundle
        return await self._apply_slice(route, pieces, result)

    async def _apply_slice(self, route: Route, pieces: list[Piece], result: SliceResult) -> RouteBundle:
        if self._stats is not None:
            self._stats.record_slice()
        grid = result.grid
        prefix = f"fragments/{route.id}/{result.key.image_id[:16]}-{grid.cols}x{grid.rows}"
        ext = self._format.lower()
        route = replace(route, grid_cols=grid.cols, grid_rows=grid.rows)
        try:
            refs = []
            for fragment in result.fragments:
                refs.append(await self._store.put_blob(f"{prefix}/{fragment.order}.{ext}", fragment.data))
            pieces = assign_fragments(pieces, refs)
            await self._store.upsert_route(route)
            await self._store.replace_pieces(route.id, pieces)
        except (OSError, KeyError) as exc:
            # The slice is only cached once its fragments are stored.
            self.tiler(route.id).forget()
            raise RemoteWriteFailed(f"storing fragments failed: {exc}") from exc
        if len(pieces) != grid.capacity:
            log.warning("grid_piece_mismatch", route=route.id, pieces=len(pieces),
                        grid=f"{grid.cols}x{grid.rows}")
        return RouteBundle(route, ordered(pieces))
