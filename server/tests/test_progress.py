"""Tests for the progress synchronizer against the file store."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from structlog.testing import capture_logs

from geopuzzle.core.collection import CollectionEngine
from geopuzzle.core.errors import RemoteReadFailed, RemoteWriteFailed
from geopuzzle.core.models import Coordinate, Piece, ProgressRecord
from geopuzzle.core.progress import ProgressSynchronizer
from geopuzzle.storage.file_storage import FileStore

ROUTE = str(uuid.uuid4())
DEVICE = str(uuid.uuid4())
T0 = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


def _ids(n: int) -> list[str]:
    return [str(uuid.uuid4()) for _ in range(n)]


class _Clock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now


class _BrokenStore:
    async def get_progress(self, route_id, device_id):
        raise OSError("disk gone")

    async def upsert_progress(self, record):
        raise OSError("disk gone")


async def test_save_and_load_round_trip(tmp_path):
    store = FileStore(tmp_path)
    sync = ProgressSynchronizer(store, clock=_Clock(T0))
    ids = _ids(3)

    record = await sync.save(ROUTE, DEVICE, ids[:2], piece_count=3)
    assert set(record.collected_piece_ids) == set(ids[:2])
    assert record.completed_at is None
    assert record.updated_at == T0.isoformat(timespec="microseconds")

    assert await sync.load(ROUTE, DEVICE, ids) == frozenset(ids[:2])


async def test_save_drops_malformed_ids(tmp_path):
    sync = ProgressSynchronizer(FileStore(tmp_path), clock=_Clock(T0))
    good = _ids(2)
    record = await sync.save(ROUTE, DEVICE, good + ["piece-1", "", "legacy"], piece_count=5)
    assert sorted(record.collected_piece_ids) == sorted(good)


async def test_completed_at_only_when_every_piece_collected(tmp_path):
    sync = ProgressSynchronizer(FileStore(tmp_path), clock=_Clock(T0))
    ids = _ids(4)

    done = await sync.save(ROUTE, DEVICE, ids, piece_count=4)
    assert done.completed_at == done.updated_at

    empty = await sync.save(ROUTE, DEVICE, [], piece_count=0)
    assert empty.completed_at is None


async def test_invalid_route_id_is_not_persisted(tmp_path):
    store = FileStore(tmp_path)
    sync = ProgressSynchronizer(store)
    with capture_logs() as logs:
        assert await sync.save("route-1", DEVICE, _ids(1), piece_count=1) is None
    assert any(e["event"] == "progress_save_skipped" and e["log_level"] == "warning" for e in logs)
    assert await store.get_progress("route-1", DEVICE) is None
    assert await sync.load("route-1", DEVICE, _ids(1)) == frozenset()


async def test_load_missing_record_is_empty(tmp_path):
    sync = ProgressSynchronizer(FileStore(tmp_path))
    assert await sync.load(ROUTE, DEVICE, _ids(3)) == frozenset()


async def test_load_drops_ids_of_removed_pieces(tmp_path):
    sync = ProgressSynchronizer(FileStore(tmp_path))
    ids = _ids(4)
    await sync.save(ROUTE, DEVICE, ids, piece_count=4)
    assert await sync.load(ROUTE, DEVICE, ids[1:]) == frozenset(ids[1:])


async def test_progress_is_per_device(tmp_path):
    sync = ProgressSynchronizer(FileStore(tmp_path))
    ids = _ids(2)
    await sync.save(ROUTE, "device-a", ids[:1], piece_count=2)
    await sync.save(ROUTE, "device-b", ids, piece_count=2)
    assert await sync.load(ROUTE, "device-a", ids) == frozenset(ids[:1])
    assert await sync.load(ROUTE, "device-b", ids) == frozenset(ids)


async def test_last_writer_wins_but_stale_write_is_ignored(tmp_path):
    store = FileStore(tmp_path)
    clock = _Clock(T0)
    sync = ProgressSynchronizer(store, clock=clock)
    ids = _ids(3)

    await sync.save(ROUTE, DEVICE, ids[:1], piece_count=3)
    clock.now = T0 + timedelta(seconds=5)
    await sync.save(ROUTE, DEVICE, ids[:2], piece_count=3)

    late = ProgressRecord(ROUTE, DEVICE, tuple(ids[:1]), None,
                          (T0 + timedelta(seconds=1)).isoformat(timespec="microseconds"))
    assert await store.upsert_progress(late) is False
    assert await sync.load(ROUTE, DEVICE, ids) == frozenset(ids[:2])


async def test_store_failures_are_wrapped():
    sync = ProgressSynchronizer(_BrokenStore())
    with pytest.raises(RemoteWriteFailed):
        await sync.save(ROUTE, DEVICE, _ids(1), piece_count=1)
    with pytest.raises(RemoteReadFailed):
        await sync.load(ROUTE, DEVICE, _ids(1))


async def test_loaded_set_never_escapes_valid_ids(tmp_path):
    sync = ProgressSynchronizer(FileStore(tmp_path))
    pieces = [Piece(id=str(uuid.uuid4()), lat=45.0, lng=4.0 + i * 0.0001, order=i + 1) for i in range(3)]
    stale = _ids(2)
    await sync.save(ROUTE, DEVICE, stale + [pieces[0].id], piece_count=5)

    valid = {p.id for p in pieces}
    engine = CollectionEngine(pieces)
    engine.restore(await sync.load(ROUTE, DEVICE, valid))
    for i in range(10):
        engine.on_position(Coordinate(45.0, 4.0 + i * 0.00005))
        assert engine.collected <= valid
