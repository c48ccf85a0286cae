from __future__ import annotations

import io

import pytest
from PIL import Image

from exam_ingest import cropper
from exam_ingest.crop_selector import SELECTION_TOO_SMALL, CropSelector, DisplayScale, Point, SelectionState
from exam_ingest.pdf_pages import PageArtifact


def _image_size(data_uri: str) -> tuple[int, int]:
    _, data = cropper.decode_data_uri(data_uri)
    return Image.open(io.BytesIO(data)).size


def test_display_scale_maps_origin_and_corner() -> None:
    scale = DisplayScale(display_width=500, display_height=700, native_width=1000, native_height=1400)
    assert scale.to_native(0, 0) == Point(0.0, 0.0)
    assert scale.to_native(500, 700) == Point(1000.0, 1400.0)


def test_display_scale_is_per_axis() -> None:
    # Width shrunk 2x, height shrunk 4x.
    scale = DisplayScale(display_width=400, display_height=250, native_width=800, native_height=1000)
    assert scale.to_native(100, 100) == Point(200.0, 400.0)
    assert scale.to_display(Point(200.0, 400.0)) == Point(100.0, 100.0)


def test_display_scale_clamps_to_raster() -> None:
    scale = DisplayScale(400, 400, 800, 800)
    assert scale.to_native(-10, 900) == Point(0.0, 800.0)


def test_selector_requires_a_rendered_page(page_factory) -> None:
    with pytest.raises(ValueError):
        CropSelector([page_factory(1, raster=False, text="only text")])


def test_drag_lifecycle(page_factory) -> None:
    selector = CropSelector([page_factory(1, width=400, height=600)])
    scale = selector.scale_for(200, 300)
    assert selector.state == SelectionState.IDLE

    selector.pointer_down(10, 20, scale)
    assert selector.is_selecting
    selector.pointer_move(60, 70, scale)
    selector.pointer_up()
    assert selector.state == SelectionState.IDLE

    rect = selector.selection_rect()
    assert (rect.x, rect.y, rect.width, rect.height) == (20.0, 40.0, 100.0, 100.0)

    # Moves after release do not change the selection.
    selector.pointer_move(190, 290, scale)
    assert selector.selection_rect() == rect


def test_drag_up_and_left_normalizes_rect(page_factory) -> None:
    selector = CropSelector([page_factory(1, width=200, height=200)])
    scale = selector.scale_for(200, 200)
    selector.pointer_down(150, 150, scale)
    selector.pointer_move(50, 100, scale)
    rect = selector.selection_rect()
    assert (rect.x, rect.y, rect.width, rect.height) == (50.0, 100.0, 100.0, 50.0)


def test_page_change_resets_selection(page_factory) -> None:
    selector = CropSelector([page_factory(1), page_factory(2, raster=False), page_factory(3)])
    assert len(selector.pages) == 2
    scale = selector.scale_for(200, 300)
    selector.pointer_down(0, 0, scale)
    selector.pointer_move(100, 100, scale)
    selector.set_page(1)
    assert selector.page.page_number == 3
    assert selector.state == SelectionState.IDLE
    assert not selector.has_selection
    with pytest.raises(IndexError):
        selector.set_page(2)


def test_small_selection_is_rejected_with_warning(page_factory) -> None:
    selector = CropSelector([page_factory(1, width=400, height=400)])
    scale = selector.scale_for(400, 400)
    selector.pointer_down(10, 10, scale)
    selector.pointer_move(200, 15, scale)
    selector.pointer_up()
    before = selector.selection_rect()

    completed, warnings = [], []
    assert selector.confirm(completed.append, warnings.append) is False
    assert completed == []
    assert warnings == [SELECTION_TOO_SMALL]
    assert selector.selection_rect() == before


def test_confirm_delivers_exact_native_crop(page_factory) -> None:
    selector = CropSelector([page_factory(1, width=400, height=600)])
    scale = selector.scale_for(200, 300)
    selector.pointer_down(10, 10, scale)
    selector.pointer_move(60, 35, scale)
    selector.pointer_up()

    completed = []
    assert selector.confirm(completed.append) is True
    assert len(completed) == 1
    assert completed[0].startswith("data:image/png;base64,")
    assert _image_size(completed[0]) == (100, 50)


def test_confirm_at_fractional_scale_does_not_grow_crop(page_factory) -> None:
    selector = CropSelector([page_factory(1, width=400, height=600)])
    scale = selector.scale_for(300, 450)
    selector.pointer_down(10, 10, scale)
    selector.pointer_move(100, 100, scale)
    selector.pointer_up()

    completed = []
    assert selector.confirm(completed.append) is True
    assert _image_size(completed[0]) == (120, 120)


def test_confirm_warns_when_raster_is_corrupt() -> None:
    page = PageArtifact(page_number=1, image_bytes=b"garbage", width=100, height=100)
    selector = CropSelector([page])
    scale = selector.scale_for(100, 100)
    selector.pointer_down(0, 0, scale)
    selector.pointer_move(50, 50, scale)

    warnings = []
    assert selector.confirm(lambda _uri: None, warnings.append) is False
    assert len(warnings) == 1
