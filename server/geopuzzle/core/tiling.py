"""Puzzle image tiling — grid sizing, slicing and fragment assignment.

The source image is cut into ``cols x rows`` equally sized cells in
row-major order. Fragment ``k`` (0-based) belongs to the piece whose
``order == k + 1``. Slicing is memoized on the slice key so unrelated
updates never re-tile the image.
"""

from __future__ import annotations

import hashlib
import io
import math
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Iterable, Sequence

import structlog
from PIL import Image, UnidentifiedImageError

from geopuzzle.core.errors import ImageDecodeFailed, ImageLoadFailed
from geopuzzle.core.models import Fragment, Grid, Piece, SliceKey, ordered

log = structlog.get_logger()

# Modes Pillow can write as PNG without conversion.
_PNG_MODES = {"1", "L", "LA", "I", "P", "RGB", "RGBA"}


def compute_grid(piece_count: int) -> Grid:
    """Most square grid holding ``piece_count`` cells, ties broken toward wider."""
    count = max(1, piece_count)
    cols = math.ceil(math.sqrt(count))
    rows = math.ceil(count / cols)
    return Grid(cols=cols, rows=rows)


def image_identity(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def read_image_file(path: str | Path) -> bytes:
    """Read source image bytes from disk."""
    try:
        return Path(path).read_bytes()
    except OSError as exc:
        raise ImageLoadFailed(f"cannot read image {path}: {exc}") from exc


def decode_image(data: bytes) -> Image.Image:
    if not data:
        raise ImageDecodeFailed("empty image")
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise ImageDecodeFailed(f"cannot decode image: {exc}") from exc
    return image


def slice_image(image: Image.Image, cols: int, rows: int, fmt: str = "PNG") -> list[Fragment]:
    """Cut ``image`` into ``cols * rows`` fragments, row-major, orders 1..N.

    Tile size is truncated; any pixel remainder on the right and bottom
    edges is dropped.
    """
    if cols < 1 or rows < 1:
        raise ValueError(f"grid must be at least 1x1, got {cols}x{rows}")
    tile_w = image.width // cols
    tile_h = image.height // rows
    if tile_w == 0 or tile_h == 0:
        raise ImageLoadFailed(
            f"image {image.width}x{image.height} too small for a {cols}x{rows} grid"
        )
    if fmt.upper() == "PNG" and image.mode not in _PNG_MODES:
        image = image.convert("RGBA")

    fragments: list[Fragment] = []
    order = 1
    for r in range(rows):
        for c in range(cols):
            box = (c * tile_w, r * tile_h, (c + 1) * tile_w, (r + 1) * tile_h)
            buf = io.BytesIO()
            image.crop(box).save(buf, format=fmt)
            fragments.append(Fragment(order=order, data=buf.getvalue(),
                                      width=tile_w, height=tile_h))
            order += 1
    return fragments


def assign_fragments(pieces: Iterable[Piece], refs: Sequence[str | None]) -> list[Piece]:
    """Attach fragment refs by order; pieces past the end get ``None``."""
    out = []
    for piece in ordered(pieces):
        idx = piece.order - 1
        ref = refs[idx] if 0 <= idx < len(refs) else None
        out.append(replace(piece, image_fragment_ref=ref))
    return out


def grid_warning(piece_count: int, grid: Grid) -> str | None:
    """Operator-facing message when the piece count does not fill the grid."""
    if piece_count == grid.capacity:
        return None
    return (
        f"Pieces count ({piece_count}) does not match grid size ({grid.capacity}). "
        "Add/remove pieces or reslice."
    )


def reveal(pieces: Iterable[Piece], collected: Iterable[str]) -> list[dict]:
    """Puzzle board in display order; only collected pieces show their fragment."""
    collected = set(collected)
    board = []
    for piece in ordered(pieces):
        shown = piece.id in collected and bool(piece.image_fragment_ref)
        board.append({
            "piece_id": piece.id,
            "order": piece.order,
            "collected": piece.id in collected,
            "fragment_ref": piece.image_fragment_ref if shown else None,
        })
    return board


@dataclass(frozen=True)
class SliceResult:
    key: SliceKey
    grid: Grid
    fragments: list[Fragment]


class TilingEngine:
    """Memoizes the last successful slice on its (image, count, grid) key."""

    def __init__(self, fragment_format: str = "PNG") -> None:
        self._format = fragment_format
        self._last_key: SliceKey | None = None
        self._fragments: list[Fragment] = []

    @property
    def last_key(self) -> SliceKey | None:
        return self._last_key

    @property
    def fragments(self) -> list[Fragment]:
        return list(self._fragments)

    def ensure(self, image_data: bytes, piece_count: int) -> SliceResult | None:
        """Slice if the key changed. Returns ``None`` when nothing was recomputed."""
        if not image_data or piece_count <= 0:
            return None
        grid = compute_grid(piece_count)
        key = SliceKey(image_identity(image_data), piece_count, grid.cols, grid.rows)
        if key == self._last_key:
            log.debug("slice_cache_hit", pieces=piece_count, grid=f"{grid.cols}x{grid.rows}")
            return None
        return self._slice(image_data, key, grid)

    def reslice(self, image_data: bytes, piece_count: int) -> SliceResult:
        """Slice unconditionally."""
        grid = compute_grid(piece_count)
        key = SliceKey(image_identity(image_data), piece_count, grid.cols, grid.rows)
        return self._slice(image_data, key, grid)

    def forget(self) -> None:
        """Drop the cache key so the next ``ensure`` slices again."""
        self._last_key = None

    def _slice(self, image_data: bytes, key: SliceKey, grid: Grid) -> SliceResult:
        # Prior key and fragments stay in place if decoding or cutting fails.
        image = decode_image(image_data)
        fragments = slice_image(image, grid.cols, grid.rows, self._format)
        self._last_key = key
        self._fragments = fragments
        log.info("image_sliced", pieces=key.piece_count,
                 grid=f"{grid.cols}x{grid.rows}", fragments=len(fragments),
                 image=key.image_id[:12])
        return SliceResult(key=key, grid=grid, fragments=list(fragments))
