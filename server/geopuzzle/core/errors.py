"""Error conditions raised by the core and reported by walk sessions."""

from __future__ import annotations


class GeoPuzzleError(Exception):
    """Base class for every reported condition."""

    code = "error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class PositionUnavailable(GeoPuzzleError):
    """No position capability, or permission denied. Fatal to starting a walk."""

    code = "position_unavailable"


class PositionError(GeoPuzzleError):
    """Transient read failure. The walk continues on the last known position."""

    code = "position_error"


class NoRouteSelected(GeoPuzzleError):
    code = "no_route_selected"


class ImageLoadFailed(GeoPuzzleError):
    code = "image_load_failed"


class ImageDecodeFailed(ImageLoadFailed):
    code = "image_decode_failed"


class RemoteWriteFailed(GeoPuzzleError):
    code = "remote_write_failed"


class RemoteReadFailed(GeoPuzzleError):
    code = "remote_read_failed"


class InvalidImport(GeoPuzzleError):
    code = "invalid_import"


class RouteNotFound(GeoPuzzleError):
    code = "route_not_found"


class NotWatching(GeoPuzzleError):
    """A position was pushed to a session that is not watching."""

    code = "not_watching"
