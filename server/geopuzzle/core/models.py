"""GeoPuzzle core data models.

These are plain dataclasses with no framework dependencies.
JSON payloads are converted to/from these at the boundary.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Iterable

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_valid_id(value: object) -> bool:
    """True for a well-formed RFC 4122 UUID string (versions 1-5)."""
    return isinstance(value, str) and bool(_UUID_RE.match(value))


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float

    def to_dict(self) -> dict:
        return {"lat": self.lat, "lng": self.lng}

    @classmethod
    def from_dict(cls, data: dict) -> Coordinate:
        return cls(lat=float(data["lat"]), lng=float(data["lng"]))


@dataclass(frozen=True)
class Piece:
    id: str
    lat: float
    lng: float
    order: int
    image_fragment_ref: str | None = None

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.lat, self.lng)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "lat": self.lat,
            "lng": self.lng,
            "order": self.order,
            "image_fragment_ref": self.image_fragment_ref,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Piece:
        order = int(data["order"])
        if order < 1:
            raise ValueError(f"piece order must be positive, got {order}")
        return cls(
            id=str(data["id"]),
            lat=float(data["lat"]),
            lng=float(data["lng"]),
            order=order,
            image_fragment_ref=data.get("image_fragment_ref") or None,
        )


@dataclass(frozen=True)
class Grid:
    cols: int
    rows: int

    @property
    def capacity(self) -> int:
        return self.cols * self.rows


@dataclass(frozen=True)
class Route:
    id: str
    name: str
    center: Coordinate
    radius_m: int = 800
    puzzle_image_ref: str | None = None
    grid_cols: int = 3
    grid_rows: int = 3
    created_at: str = ""

    @property
    def grid(self) -> Grid:
        return Grid(self.grid_cols, self.grid_rows)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "center": self.center.to_dict(),
            "radius_m": self.radius_m,
            "puzzle_image_ref": self.puzzle_image_ref,
            "grid_cols": self.grid_cols,
            "grid_rows": self.grid_rows,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Route:
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            center=Coordinate.from_dict(data["center"]),
            radius_m=int(data.get("radius_m", 800)),
            puzzle_image_ref=data.get("puzzle_image_ref") or None,
            grid_cols=int(data.get("grid_cols") or 3),
            grid_rows=int(data.get("grid_rows") or 3),
            created_at=str(data.get("created_at") or ""),
        )


@dataclass(frozen=True)
class PositionSample:
    coordinate: Coordinate
    accuracy_m: float | None = None
    timestamp_ms: int | None = None


@dataclass(frozen=True)
class CollectionEvent:
    """Emitted once per sample (or reset) that changed the collected set."""
    collected: frozenset[str]
    newly_collected: frozenset[str] = frozenset()
    completed: bool = False
    reset: bool = False


@dataclass(frozen=True)
class ProgressRecord:
    route_id: str
    device_id: str
    collected_piece_ids: tuple[str, ...] = ()
    completed_at: str | None = None
    updated_at: str = ""

    def to_dict(self) -> dict:
        return {
            "route_id": self.route_id,
            "device_id": self.device_id,
            "collected_piece_ids": list(self.collected_piece_ids),
            "completed_at": self.completed_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ProgressRecord:
        return cls(
            route_id=data["route_id"],
            device_id=data["device_id"],
            collected_piece_ids=tuple(data.get("collected_piece_ids", [])),
            completed_at=data.get("completed_at"),
            updated_at=data.get("updated_at", ""),
        )


@dataclass(frozen=True)
class Fragment:
    order: int
    data: bytes = field(repr=False)
    width: int = 0
    height: int = 0


@dataclass(frozen=True)
class SliceKey:
    image_id: str
    piece_count: int
    cols: int
    rows: int


def ordered(pieces: Iterable[Piece]) -> list[Piece]:
    """Pieces in display order."""
    return sorted(pieces, key=lambda p: p.order)


def renumber(pieces: Iterable[Piece]) -> list[Piece]:
    """Reassign orders densely 1..N, keeping the current relative order."""
    return [
        p if p.order == i else replace(p, order=i)
        for i, p in enumerate(ordered(pieces), start=1)
    ]
