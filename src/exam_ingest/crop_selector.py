"""Pointer-drag crop selection over page rasters.

This module intentionally has no Qt dependency so it can be unit tested; the
review app feeds it widget coordinates.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

from .cropper import MIN_SELECTION_PX, PixelRect, crop_pixel_rect
from .events import EventBus
from .pdf_pages import PageArtifact

SELECTION_TOO_SMALL = "Selection too small. Please select a larger area."


class SelectionState(str, Enum):
    IDLE = "idle"
    SELECTING = "selecting"


@dataclass(frozen=True)
class Point:
    x: float = 0.0
    y: float = 0.0


ORIGIN = Point()


@dataclass(frozen=True)
class DisplayScale:
    """Maps display-surface coordinates onto native raster pixels.

    Axes are scaled independently because the displayed raster may be
    stretched non-uniformly (e.g. by a max-height constraint).
    """

    display_width: float
    display_height: float
    native_width: float
    native_height: float

    def to_native(self, x: float, y: float) -> Point:
        if self.display_width <= 0 or self.display_height <= 0:
            return ORIGIN
        scale_x = self.native_width / self.display_width
        scale_y = self.native_height / self.display_height
        native_x = min(max(x * scale_x, 0.0), self.native_width)
        native_y = min(max(y * scale_y, 0.0), self.native_height)
        return Point(native_x, native_y)

    def to_display(self, point: Point) -> Point:
        if self.native_width <= 0 or self.native_height <= 0:
            return ORIGIN
        return Point(
            point.x * self.display_width / self.native_width,
            point.y * self.display_height / self.native_height,
        )


class CropSelector:
    def __init__(
        self,
        pages: Sequence[PageArtifact],
        min_size: float = MIN_SELECTION_PX,
        events: Optional[EventBus] = None,
    ) -> None:
        self.pages = [p for p in pages if p.has_raster]
        if not self.pages:
            raise ValueError("Crop selection needs at least one rendered page.")
        self.min_size = min_size
        self.events = events or EventBus("exam_ingest.crop_selector")
        self.current_page = 0
        self.state = SelectionState.IDLE
        self.start = ORIGIN
        self.end = ORIGIN

    @property
    def page(self) -> PageArtifact:
        return self.pages[self.current_page]

    @property
    def is_selecting(self) -> bool:
        return self.state == SelectionState.SELECTING

    def scale_for(self, display_width: float, display_height: float) -> DisplayScale:
        return DisplayScale(display_width, display_height, self.page.width, self.page.height)

    def set_page(self, index: int) -> None:
        if not (0 <= index < len(self.pages)):
            raise IndexError(f"Page index out of range: {index}")
        self.current_page = index
        self.reset_selection()

    def reset_selection(self) -> None:
        self.state = SelectionState.IDLE
        self.start = ORIGIN
        self.end = ORIGIN

    def pointer_down(self, x: float, y: float, scale: DisplayScale) -> None:
        point = scale.to_native(x, y)
        self.start = point
        self.end = point
        self.state = SelectionState.SELECTING

    def pointer_move(self, x: float, y: float, scale: DisplayScale) -> None:
        if not self.is_selecting:
            return
        self.end = scale.to_native(x, y)

    def pointer_up(self) -> None:
        self.state = SelectionState.IDLE

    def selection_rect(self) -> PixelRect:
        return PixelRect.from_corners(self.start.x, self.start.y, self.end.x, self.end.y)

    @property
    def has_selection(self) -> bool:
        rect = self.selection_rect()
        return rect.width > 0 and rect.height > 0

    def confirm(
        self,
        on_complete: Callable[[str], None],
        on_warning: Optional[Callable[[str], None]] = None,
    ) -> bool:
        """Crop the current selection and hand the data URI to ``on_complete``.

        Returns False (and warns) without touching the selection when either
        side is below ``min_size`` or the crop fails.
        """
        rect = self.selection_rect()
        if rect.width < self.min_size or rect.height < self.min_size:
            self._warn(SELECTION_TOO_SMALL, on_warning)
            return False

        image = crop_pixel_rect(self.page.image_bytes or b"", rect)
        if image is None:
            self._warn("Could not crop the selected area from this page.", on_warning)
            return False
        on_complete(image)
        return True

    def _warn(self, message: str, on_warning: Optional[Callable[[str], None]]) -> None:
        self.events.warn(message, source="crop")
        if on_warning is not None:
            on_warning(message)


__all__ = [
    "CropSelector",
    "DisplayScale",
    "ORIGIN",
    "Point",
    "SELECTION_TOO_SMALL",
    "SelectionState",
]
