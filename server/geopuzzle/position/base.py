"""Position source interface (port) for live walker positions."""

from __future__ import annotations

from typing import Callable, Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from geopuzzle.core.errors import GeoPuzzleError
    from geopuzzle.core.models import PositionSample

SampleCallback = Callable[["PositionSample"], None]
ErrorCallback = Callable[["GeoPuzzleError"], None]


class PositionSubscription(Protocol):
    """Handle for a live watch. ``cancel`` releases the underlying resource."""

    @property
    def active(self) -> bool: ...

    def cancel(self) -> None: ...


class PositionSource(Protocol):
    """Port: produces position samples until cancelled or terminated by error."""

    @property
    def available(self) -> bool: ...

    def watch(self, on_sample: SampleCallback, on_error: ErrorCallback) -> PositionSubscription: ...
