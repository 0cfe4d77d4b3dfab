"""In-process asyncio queue implementation of PositionSource.

The HTTP layer pushes samples (or reported errors) into the queue; a single
consumer task delivers them to the watcher in arrival order.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Callable, Union

import structlog

from geopuzzle.core.errors import GeoPuzzleError, PositionError, PositionUnavailable

if TYPE_CHECKING:
    from geopuzzle.core.models import PositionSample
    from geopuzzle.position.base import ErrorCallback, SampleCallback

log = structlog.get_logger()

# Queue marker: the source was closed (permission revoked, device gone).
_CLOSED = object()

_Item = Union["PositionSample", GeoPuzzleError, object]


class QueueSubscription:
    """Cancellable handle around the consumer task."""

    def __init__(self, task: asyncio.Task, on_cancel: Callable[[], None] | None = None) -> None:
        self._task = task
        self._on_cancel = on_cancel

    @property
    def active(self) -> bool:
        return not self._task.done()

    def cancel(self) -> None:
        if not self._task.done():
            self._task.cancel()
        if self._on_cancel is not None:
            self._on_cancel()


class QueuePositionSource:
    """PositionSource backed by asyncio.Queue."""

    def __init__(
        self,
        max_size: int = 100,
        timeout_seconds: float | None = 10.0,
        max_age_seconds: float | None = 5.0,
    ) -> None:
        self._queue: asyncio.Queue[_Item] = asyncio.Queue(maxsize=max_size)
        self._timeout = timeout_seconds or None
        self._max_age_ms = max_age_seconds * 1000 if max_age_seconds else None
        self._closed = False

    @property
    def available(self) -> bool:
        return not self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    def push(self, sample: PositionSample) -> None:
        if self._closed:
            raise PositionUnavailable("position source is closed")
        try:
            self._queue.put_nowait(sample)
        except asyncio.QueueFull as exc:
            raise PositionError("position queue full") from exc

    def push_error(self, message: str) -> None:
        """Report a transient read failure from the device."""
        try:
            self._queue.put_nowait(PositionError(message))
        except asyncio.QueueFull:
            log.warning("position_error_dropped", reason=message)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            log.warning("position_close_marker_dropped")

    async def drain(self) -> None:
        """Wait until every queued item has been delivered."""
        await self._queue.join()

    def watch(self, on_sample: SampleCallback, on_error: ErrorCallback) -> QueueSubscription:
        task = asyncio.get_running_loop().create_task(self._pump(on_sample, on_error))
        return QueueSubscription(task, on_cancel=self._discard_pending)

    def _discard_pending(self) -> None:
        """Release items nobody will consume, so waiters on `drain` return."""
        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()
            dropped += 1
        if dropped:
            log.info("position_samples_discarded", count=dropped)

    def _is_stale(self, sample: PositionSample) -> bool:
        if self._max_age_ms is None or sample.timestamp_ms is None:
            return False
        return time.time() * 1000 - sample.timestamp_ms > self._max_age_ms

    async def _pump(self, on_sample: SampleCallback, on_error: ErrorCallback) -> None:
        while True:
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=self._timeout)
            except asyncio.TimeoutError:
                on_error(PositionError("timed out waiting for a position"))
                continue
            try:
                if item is _CLOSED:
                    on_error(PositionUnavailable("position source closed"))
                    return
                if isinstance(item, GeoPuzzleError):
                    on_error(item)
                elif self._is_stale(item):
                    log.debug("position_stale_dropped", timestamp_ms=item.timestamp_ms)
                else:
                    on_sample(item)
            finally:
                self._queue.task_done()
