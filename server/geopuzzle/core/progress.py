"""Progress synchronizer — persists a device's collected set per route.

Last writer wins per (route_id, device_id). Ids referencing pieces that no
longer exist are pruned when progress is loaded, not when pieces change.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Iterable, TYPE_CHECKING

import structlog

from geopuzzle.core.errors import RemoteReadFailed, RemoteWriteFailed
from geopuzzle.core.models import ProgressRecord, is_valid_id

if TYPE_CHECKING:
    from geopuzzle.storage.base import ProgressStore

log = structlog.get_logger()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ProgressSynchronizer:
    def __init__(self, store: ProgressStore, clock: Callable[[], datetime] = _utc_now) -> None:
        self._store = store
        self._clock = clock

    async def save(
        self,
        route_id: str,
        device_id: str,
        collected: Iterable[str],
        piece_count: int,
    ) -> ProgressRecord | None:
        """Upsert the collected set. Returns the record, or None if not persistable.

        Malformed ids are dropped. ``completed_at`` is stamped only when every
        piece of a non-empty route is collected.
        """
        if not device_id or not is_valid_id(route_id):
            log.warning("progress_save_skipped", route=route_id,
                        reason="missing device id" if not device_id else "route id is not a UUID")
            return None

        valid_ids = sorted(i for i in set(collected) if is_valid_id(i))
        now = self._clock().isoformat(timespec="microseconds")
        completed_at = now if piece_count > 0 and len(valid_ids) == piece_count else None
        record = ProgressRecord(
            route_id=route_id,
            device_id=device_id,
            collected_piece_ids=tuple(valid_ids),
            completed_at=completed_at,
            updated_at=now,
        )
        try:
            await self._store.upsert_progress(record)
        except Exception as exc:
            raise RemoteWriteFailed(f"saving progress failed: {exc}") from exc
        log.debug("progress_saved", route=route_id, device=device_id[:8],
                  collected=len(valid_ids), completed=completed_at is not None)
        return record

    async def load(
        self,
        route_id: str,
        device_id: str,
        valid_piece_ids: Iterable[str],
    ) -> frozenset[str]:
        """Persisted collected set intersected with the route's current pieces."""
        if not device_id or not is_valid_id(route_id):
            return frozenset()
        try:
            record = await self._store.get_progress(route_id, device_id)
        except Exception as exc:
            raise RemoteReadFailed(f"loading progress failed: {exc}") from exc
        if record is None:
            return frozenset()

        restored = frozenset(record.collected_piece_ids) & frozenset(valid_piece_ids)
        dropped = len(set(record.collected_piece_ids)) - len(restored)
        if dropped:
            log.info("progress_stale_ids_dropped", route=route_id,
                     device=device_id[:8], dropped=dropped)
        return restored
