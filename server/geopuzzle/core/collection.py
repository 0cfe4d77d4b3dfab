"""Collection engine — turns position samples into piece collections.

Each sample is compared against every piece not yet collected. Pieces within
the collection radius (boundary inclusive) join the collected set in a
single union, and one ``CollectionEvent`` is emitted per sample that changed
the set. The set only grows until ``reset()``.
"""

from __future__ import annotations

import enum
from typing import Callable, Iterable, TYPE_CHECKING

import structlog

from geopuzzle.core.errors import (
    GeoPuzzleError,
    NoRouteSelected,
    PositionUnavailable,
)
from geopuzzle.core.geo import distance_meters
from geopuzzle.core.models import CollectionEvent, Coordinate, Piece, ordered

if TYPE_CHECKING:
    from geopuzzle.core.models import PositionSample
    from geopuzzle.position.base import PositionSource, PositionSubscription

log = structlog.get_logger()

# Default auto-collect radius in meters.
DEFAULT_COLLECTION_RADIUS_M = 30.0

Listener = Callable[[CollectionEvent], None]
ErrorListener = Callable[[GeoPuzzleError], None]


class EngineState(enum.Enum):
    IDLE = "idle"
    WATCHING = "watching"


class CollectionEngine:
    """Stateful proximity detector for one (route, device) walk."""

    def __init__(
        self,
        pieces: Iterable[Piece] = (),
        collection_radius_m: float = DEFAULT_COLLECTION_RADIUS_M,
        route_id: str | None = None,
    ) -> None:
        self._pieces: list[Piece] = ordered(pieces)
        self._collected: set[str] = set()
        self._radius = 0.0
        self.collection_radius_m = collection_radius_m
        self.route_id = route_id
        self.last_position: Coordinate | None = None
        self._subscription: PositionSubscription | None = None
        self._listeners: list[Listener] = []
        self._error_listeners: list[ErrorListener] = []

    # -- state ---------------------------------------------------------------

    @property
    def state(self) -> EngineState:
        if self._subscription is not None and self._subscription.active:
            return EngineState.WATCHING
        return EngineState.IDLE

    @property
    def collected(self) -> frozenset[str]:
        return frozenset(self._collected)

    @property
    def pieces(self) -> list[Piece]:
        return list(self._pieces)

    @property
    def remaining(self) -> list[Piece]:
        return [p for p in self._pieces if p.id not in self._collected]

    @property
    def is_complete(self) -> bool:
        return bool(self._pieces) and len(self._collected) == len(self._pieces)

    @property
    def collection_radius_m(self) -> float:
        return self._radius

    @collection_radius_m.setter
    def collection_radius_m(self, value: float) -> None:
        value = float(value)
        if not value > 0:
            raise ValueError(f"collection radius must be positive, got {value}")
        self._radius = value

    def set_pieces(self, pieces: Iterable[Piece]) -> None:
        """Replace the piece list. Collected ids of removed pieces are pruned."""
        self._pieces = ordered(pieces)
        valid = {p.id for p in self._pieces}
        stale = self._collected - valid
        if stale:
            self._collected -= stale
            log.info("collected_pruned", route=self.route_id, removed=len(stale))

    def restore(self, collected: Iterable[str]) -> None:
        """Seed the collected set from persisted progress (no event emitted)."""
        valid = {p.id for p in self._pieces}
        self._collected = set(collected) & valid

    # -- listeners -----------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def subscribe_errors(self, listener: ErrorListener) -> Callable[[], None]:
        self._error_listeners.append(listener)
        return lambda: (self._error_listeners.remove(listener)
                        if listener in self._error_listeners else None)

    def _emit(self, event: CollectionEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                log.error("collection_listener_failed", route=self.route_id, exc_info=True)

    def _report(self, error: GeoPuzzleError) -> None:
        for listener in list(self._error_listeners):
            try:
                listener(error)
            except Exception:
                log.error("error_listener_failed", route=self.route_id, exc_info=True)

    # -- collection ----------------------------------------------------------

    def on_position(self, pos: Coordinate) -> CollectionEvent | None:
        """Evaluate one position sample. Returns the event if the set changed."""
        self.last_position = pos
        newly = frozenset(
            p.id for p in self.remaining
            if distance_meters(pos, p) <= self._radius
        )
        if not newly:
            return None

        self._collected |= newly
        event = CollectionEvent(
            collected=self.collected,
            newly_collected=newly,
            completed=self.is_complete,
        )
        log.info("pieces_collected", route=self.route_id, count=len(newly),
                 total=len(self._collected), of=len(self._pieces))
        if event.completed:
            log.info("route_completed", route=self.route_id, pieces=len(self._pieces))
        self._emit(event)
        return event

    def reset(self) -> CollectionEvent:
        self._collected.clear()
        event = CollectionEvent(collected=frozenset(), reset=True)
        log.info("progress_reset", route=self.route_id)
        self._emit(event)
        return event

    # -- watching ------------------------------------------------------------

    def start(self, source: PositionSource | None) -> PositionSubscription:
        """Idle -> Watching. Raises and stays Idle if preconditions fail."""
        if self._subscription is not None and self._subscription.active:
            return self._subscription
        if not self.route_id:
            raise NoRouteSelected("select a route first")
        if source is None or not source.available:
            raise PositionUnavailable("position source is not available")

        self._subscription = source.watch(self._on_sample, self._on_source_error)
        log.info("walk_started", route=self.route_id, radius_m=self._radius)
        return self._subscription

    def stop(self) -> None:
        """Watching -> Idle. Safe to call when already Idle."""
        if self._subscription is None:
            return
        self._subscription.cancel()
        self._subscription = None
        log.info("walk_stopped", route=self.route_id)

    def _on_sample(self, sample: PositionSample) -> None:
        self.on_position(sample.coordinate)

    def _on_source_error(self, error: GeoPuzzleError) -> None:
        log.warning("position_source_error", route=self.route_id,
                    kind=error.code, reason=error.message)
        if isinstance(error, PositionUnavailable):
            self.stop()
        self._report(error)
