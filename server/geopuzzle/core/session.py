"""Walk sessions — one collection engine per device, wired to persistence.

A session owns its engine and its queue position source. Every change event
from the engine schedules a progress write; writes are fire-and-forget from
the engine's point of view and failures are recorded, never rolled back.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import TYPE_CHECKING

import structlog

from geopuzzle.core.collection import DEFAULT_COLLECTION_RADIUS_M, CollectionEngine, EngineState
from geopuzzle.core.errors import (
    GeoPuzzleError,
    ImageLoadFailed,
    NotWatching,
    RemoteReadFailed,
    RemoteWriteFailed,
)
from geopuzzle.core.tiling import reveal
from geopuzzle.position.asyncio_source import QueuePositionSource

if TYPE_CHECKING:
    from geopuzzle.core.models import CollectionEvent, Piece, PositionSample, Route
    from geopuzzle.core.progress import ProgressSynchronizer
    from geopuzzle.core.routes import RouteService
    from geopuzzle.core.stats import WalkStats

log = structlog.get_logger()


class WalkSession:
    def __init__(
        self,
        device_id: str,
        routes: RouteService,
        synchronizer: ProgressSynchronizer,
        stats: WalkStats,
        collection_radius_m: float = DEFAULT_COLLECTION_RADIUS_M,
        position_queue_size: int = 100,
        position_timeout_seconds: float | None = 10.0,
        position_max_age_seconds: float | None = 5.0,
        error_history: int = 20,
    ) -> None:
        self.device_id = device_id
        self.route: Route | None = None
        self._routes = routes
        self._sync = synchronizer
        self._stats = stats
        self.engine = CollectionEngine(collection_radius_m=collection_radius_m)
        self._source_opts = {
            "max_size": position_queue_size,
            "timeout_seconds": position_timeout_seconds,
            "max_age_seconds": position_max_age_seconds,
        }
        self.source = QueuePositionSource(**self._source_opts)
        self.errors: deque[dict] = deque(maxlen=error_history)
        self._pending: set[asyncio.Task] = set()
        self.engine.subscribe(self._on_change)
        self.engine.subscribe_errors(self.report)

    # -- reporting -----------------------------------------------------------

    def report(self, error: GeoPuzzleError) -> None:
        """Record a condition for the operator. The session stays usable."""
        self.errors.append({"kind": error.code, "message": error.message})
        self._stats.record_error(error.code)
        log.warning("walk_condition_reported", device=self.device_id[:8],
                    kind=error.code, reason=error.message)

    # -- route ---------------------------------------------------------------

    async def select_route(self, route_id: str) -> None:
        """Load a route, slice lazily if needed, and restore saved progress."""
        self.stop()
        try:
            bundle = await self._routes.ensure_fragments(route_id)
        except (ImageLoadFailed, RemoteWriteFailed) as exc:
            # Collection does not need fragments; walk the route unrevealed.
            self.report(exc)
            bundle = await self._routes.load_route(route_id)
        self.route = bundle.route
        self.engine.route_id = bundle.route.id
        self.engine.set_pieces(bundle.pieces)
        try:
            restored = await self._sync.load(
                bundle.route.id, self.device_id, [p.id for p in bundle.pieces])
        except RemoteReadFailed as exc:
            self.report(exc)
            restored = frozenset()
        self.engine.restore(restored)
        log.info("route_selected", device=self.device_id[:8], route=bundle.route.id,
                 pieces=len(bundle.pieces), restored=len(restored))

    def refresh_pieces(self, route: Route, pieces: list[Piece]) -> None:
        """Admin changed the route this session walks."""
        if self.route is None or self.route.id != route.id:
            return
        self.route = route
        self.engine.set_pieces(pieces)

    # -- walk ----------------------------------------------------------------

    def start(self) -> None:
        self.engine.start(self.source)

    def stop(self) -> None:
        self.engine.stop()

    @property
    def watching(self) -> bool:
        return self.engine.state is EngineState.WATCHING

    async def push_position(self, sample: PositionSample) -> None:
        """Queue a sample and wait until it and its progress write are processed."""
        if not self.watching:
            raise NotWatching("start the walk before sending positions")
        self._stats.record_position(self.device_id)
        self.source.push(sample)
        await self.source.drain()
        await self.flush()

    async def push_position_error(self, message: str, fatal: bool = False) -> None:
        """Relay a device-side failure. Fatal ones close the source and end the walk."""
        if not self.watching:
            raise NotWatching("start the walk before sending positions")
        if fatal:
            self.source.close()
        else:
            self.source.push_error(message)
        await self.source.drain()

    def reconnect_source(self) -> None:
        """Replace a closed position source, e.g. after permission is granted again."""
        if self.source.available:
            return
        self.stop()
        self.source = QueuePositionSource(**self._source_opts)
        log.info("position_source_reconnected", device=self.device_id[:8])

    async def reset(self) -> None:
        """Empty the collected set after every sample already received is evaluated."""
        if self.watching:
            await self.source.drain()
        self.engine.reset()
        await self.flush()

    def set_radius(self, meters: float) -> None:
        self.engine.collection_radius_m = meters
        log.info("collection_radius_changed", device=self.device_id[:8], radius_m=meters)

    # -- persistence ---------------------------------------------------------

    def _on_change(self, event: CollectionEvent) -> None:
        if event.newly_collected:
            self._stats.record_collected(len(event.newly_collected), completed=event.completed)
        if self.route is None:
            return
        task = asyncio.get_running_loop().create_task(
            self._save(self.route.id, event.collected, len(self.engine.pieces)))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _save(self, route_id: str, collected: frozenset[str], piece_count: int) -> None:
        try:
            await self._sync.save(route_id, self.device_id, collected, piece_count)
            self._stats.record_progress_write()
        except GeoPuzzleError as exc:
            self.report(exc)

    async def flush(self) -> None:
        """Wait for outstanding progress writes."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    # -- view ----------------------------------------------------------------

    def snapshot(self) -> dict:
        engine = self.engine
        pos = engine.last_position
        return {
            "device_id": self.device_id,
            "route_id": self.route.id if self.route else None,
            "route_name": self.route.name if self.route else None,
            "state": engine.state.value,
            "collection_radius_m": engine.collection_radius_m,
            "collected": sorted(engine.collected),
            "collected_count": len(engine.collected),
            "piece_count": len(engine.pieces),
            "remaining": len(engine.remaining),
            "completed": engine.is_complete,
            "puzzle_image_ref": self.route.puzzle_image_ref if self.route else None,
            "grid": {"cols": self.route.grid_cols, "rows": self.route.grid_rows} if self.route else None,
            "board": reveal(engine.pieces, engine.collected),
            "last_position": pos.to_dict() if pos else None,
            "errors": list(self.errors),
        }


class SessionRegistry:
    """Walk sessions keyed by device id."""

    def __init__(self, factory) -> None:
        self._factory = factory
        self._sessions: dict[str, WalkSession] = {}

    def get(self, device_id: str) -> WalkSession:
        if device_id not in self._sessions:
            self._sessions[device_id] = self._factory(device_id)
            log.debug("session_created", device=device_id[:8])
        return self._sessions[device_id]

    def find(self, device_id: str) -> WalkSession | None:
        return self._sessions.get(device_id)

    def __len__(self) -> int:
        return len(self._sessions)

    def watching_count(self) -> int:
        return sum(1 for s in self._sessions.values() if s.watching)

    def refresh_route(self, route: Route, pieces: list[Piece]) -> None:
        for session in self._sessions.values():
            session.refresh_pieces(route, pieces)

    async def shutdown(self) -> None:
        for session in self._sessions.values():
            session.stop()
            await session.flush()
