"""Tests for grid sizing, slicing and the slice-key cache."""

from __future__ import annotations

import io
import uuid

import pytest
from PIL import Image

from geopuzzle.core.errors import ImageDecodeFailed, ImageLoadFailed
from geopuzzle.core.models import Grid, Piece
from geopuzzle.core.tiling import (
    TilingEngine,
    assign_fragments,
    compute_grid,
    decode_image,
    grid_warning,
    read_image_file,
    reveal,
    slice_image,
)


def _pieces(n: int) -> list[Piece]:
    return [Piece(id=str(uuid.uuid4()), lat=45.0, lng=4.0 + i * 0.001, order=i + 1) for i in range(n)]


def test_compute_grid_known_values():
    assert compute_grid(9) == Grid(3, 3)
    assert compute_grid(10) == Grid(4, 3)
    assert compute_grid(6) == Grid(3, 2)
    assert compute_grid(1) == Grid(1, 1)
    assert compute_grid(0) == Grid(1, 1)


def test_compute_grid_always_fits_and_prefers_wide():
    for n in range(0, 300):
        grid = compute_grid(n)
        assert grid.capacity >= max(1, n)
        assert grid.cols >= grid.rows


def test_slice_300x300_into_nine_row_major(grid_image):
    image = decode_image(grid_image(300, 300, 3, 3))
    fragments = slice_image(image, 3, 3)

    assert [f.order for f in fragments] == list(range(1, 10))
    for f in fragments:
        frag = Image.open(io.BytesIO(f.data))
        assert frag.format == "PNG"
        assert frag.size == (100, 100)
        assert (f.width, f.height) == (100, 100)

    # Cell k sits at row k // 3, column k % 3.
    for k, f in enumerate(fragments):
        r, c = divmod(k, 3)
        pixel = Image.open(io.BytesIO(f.data)).convert("RGB").getpixel((50, 50))
        assert pixel == (r * 80, c * 80, 200)


def test_slice_drops_pixel_remainder(grid_image):
    image = decode_image(grid_image(310, 305, 3, 3))
    fragments = slice_image(image, 3, 3)
    assert len(fragments) == 9
    assert all((f.width, f.height) == (103, 101) for f in fragments)


def test_slice_non_square_grid(grid_image):
    image = decode_image(grid_image(300, 200, 3, 2))
    fragments = slice_image(image, 3, 2)
    assert len(fragments) == 6
    assert Image.open(io.BytesIO(fragments[3].data)).convert("RGB").getpixel((10, 10)) == (80, 0, 200)


def test_slice_grid_finer_than_image(grid_image):
    image = decode_image(grid_image(2, 2, 1, 1))
    with pytest.raises(ImageLoadFailed):
        slice_image(image, 3, 3)


def test_slice_converts_cmyk_for_png():
    buf = io.BytesIO()
    Image.new("CMYK", (40, 40)).save(buf, format="JPEG")
    fragments = slice_image(decode_image(buf.getvalue()), 2, 2)
    assert len(fragments) == 4


def test_decode_garbage():
    with pytest.raises(ImageDecodeFailed):
        decode_image(b"definitely not an image")
    with pytest.raises(ImageDecodeFailed):
        decode_image(b"")


def test_read_missing_file(tmp_path):
    with pytest.raises(ImageLoadFailed):
        read_image_file(tmp_path / "missing.png")


def test_read_file(tmp_path, grid_image):
    path = tmp_path / "puzzle.png"
    path.write_bytes(grid_image(30, 30, 1, 1))
    assert decode_image(read_image_file(path)).size == (30, 30)


def test_assign_fragments_by_order():
    pieces = list(reversed(_pieces(4)))
    refs = [f"frag/{i}.png" for i in range(1, 7)]
    assigned = assign_fragments(pieces, refs)
    assert [p.order for p in assigned] == [1, 2, 3, 4]
    for p in assigned:
        assert p.image_fragment_ref == f"frag/{p.order}.png"


def test_assign_fragments_deficit_leaves_trailing_pieces_empty():
    pieces = _pieces(5)
    assigned = assign_fragments(pieces, ["a", "b", "c", "d"])
    assert assigned[-1].image_fragment_ref is None
    assert [p.image_fragment_ref for p in assigned[:4]] == ["a", "b", "c", "d"]


def test_grid_warning():
    assert grid_warning(9, Grid(3, 3)) is None
    assert "does not match" in grid_warning(7, Grid(3, 3))


def test_reveal_shows_only_collected():
    pieces = assign_fragments(_pieces(3), ["a", "b", "c"])
    board = reveal(pieces, {pieces[1].id})
    assert [cell["fragment_ref"] for cell in board] == [None, "b", None]
    assert [cell["collected"] for cell in board] == [False, True, False]


def test_engine_unchanged_key_is_noop(grid_image):
    engine = TilingEngine()
    data = grid_image(300, 300, 3, 3)

    first = engine.ensure(data, 9)
    assert first is not None
    assert first.grid == Grid(3, 3)
    assert len(first.fragments) == 9
    key = engine.last_key

    assert engine.ensure(data, 9) is None
    assert engine.last_key == key


def test_engine_reslices_on_count_or_image_change(grid_image):
    engine = TilingEngine()
    data = grid_image(300, 300, 3, 3)
    engine.ensure(data, 9)

    result = engine.ensure(data, 10)
    assert result is not None and result.grid == Grid(4, 3)
    assert len(result.fragments) == 12

    other = grid_image(300, 300, 2, 2)
    result = engine.ensure(other, 10)
    assert result is not None
    assert result.key.image_id != engine.ensure(data, 10).key.image_id


def test_engine_forced_reslice(grid_image):
    engine = TilingEngine()
    data = grid_image(300, 300, 3, 3)
    engine.ensure(data, 9)
    assert engine.reslice(data, 9) is not None


def test_engine_nothing_to_do_without_image_or_pieces(grid_image):
    engine = TilingEngine()
    assert engine.ensure(b"", 4) is None
    assert engine.ensure(grid_image(30, 30, 1, 1), 0) is None
    assert engine.last_key is None


def test_engine_failure_keeps_previous_fragments(grid_image):
    engine = TilingEngine()
    engine.ensure(grid_image(300, 300, 3, 3), 9)
    key, fragments = engine.last_key, engine.fragments

    with pytest.raises(ImageDecodeFailed):
        engine.ensure(b"broken", 9)

    assert engine.last_key == key
    assert [f.data for f in engine.fragments] == [f.data for f in fragments]


def test_decode_oversized_image(grid_image, monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
    with pytest.raises(ImageDecodeFailed):
        decode_image(grid_image(100, 100, 1, 1))
