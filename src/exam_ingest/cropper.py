"""Crop page rasters by normalized boxes (oracle path) or pixel rects (manual path).

Cropping never raises to callers: malformed boxes and undecodable rasters
yield ``None`` so one bad region cannot abort a run.
"""
from __future__ import annotations

import base64
import binascii
import io
import logging
import math
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from PIL import Image, UnidentifiedImageError

from .errors import CropError

NORMALIZED_SCALE = 1000.0
CROP_PADDING_RATIO = 0.01
CROP_JPEG_QUALITY = 95
MIN_SELECTION_PX = 10

logger = logging.getLogger("exam_ingest.cropper")


@dataclass(frozen=True)
class PixelRect:
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @classmethod
    def from_corners(cls, x0: float, y0: float, x1: float, y1: float) -> "PixelRect":
        return cls(x=min(x0, x1), y=min(y0, y1), width=abs(x1 - x0), height=abs(y1 - y0))

    def padded(self, pad_x: float, pad_y: float) -> "PixelRect":
        return PixelRect(
            x=self.x - pad_x,
            y=self.y - pad_y,
            width=self.width + 2 * pad_x,
            height=self.height + 2 * pad_y,
        )

    def clipped(self, max_width: float, max_height: float) -> "PixelRect":
        left = min(max(self.x, 0.0), max_width)
        top = min(max(self.y, 0.0), max_height)
        right = min(max(self.right, 0.0), max_width)
        bottom = min(max(self.bottom, 0.0), max_height)
        return PixelRect(x=left, y=top, width=max(right - left, 0.0), height=max(bottom - top, 0.0))

    def to_pixel_box(self) -> tuple[int, int, int, int]:
        """Outward-rounded (left, top, right, bottom) integer box."""
        return (
            int(math.floor(self.x)),
            int(math.floor(self.y)),
            int(math.ceil(self.right)),
            int(math.ceil(self.bottom)),
        )

    def to_nearest_pixel_box(self) -> tuple[int, int, int, int]:
        """Nearest-pixel (left, top, right, bottom) box; the exact rectangle a reviewer drew."""
        return (round(self.x), round(self.y), round(self.right), round(self.bottom))


@dataclass(frozen=True)
class NormalizedBox:
    ymin: float
    xmin: float
    ymax: float
    xmax: float

    @classmethod
    def from_sequence(cls, values: Any) -> Optional["NormalizedBox"]:
        if isinstance(values, NormalizedBox):
            return values
        if not isinstance(values, Sequence) or isinstance(values, (str, bytes)) or len(values) != 4:
            return None
        try:
            ymin, xmin, ymax, xmax = (float(v) for v in values)
        except (TypeError, ValueError):
            return None
        if not all(math.isfinite(v) for v in (ymin, xmin, ymax, xmax)):
            return None
        return cls(ymin=ymin, xmin=xmin, ymax=ymax, xmax=xmax)

    @property
    def is_valid(self) -> bool:
        return self.ymin < self.ymax and self.xmin < self.xmax

    def as_list(self) -> list[float]:
        return [self.ymin, self.xmin, self.ymax, self.xmax]

    def to_pixel_rect(self, width: float, height: float) -> PixelRect:
        x1 = self.xmin / NORMALIZED_SCALE * width
        y1 = self.ymin / NORMALIZED_SCALE * height
        x2 = self.xmax / NORMALIZED_SCALE * width
        y2 = self.ymax / NORMALIZED_SCALE * height
        return PixelRect(x=x1, y=y1, width=x2 - x1, height=y2 - y1)


def encode_data_uri(image: Image.Image, image_format: str = "JPEG", quality: int = CROP_JPEG_QUALITY) -> str:
    buf = io.BytesIO()
    fmt = image_format.upper()
    if fmt == "JPEG":
        image.save(buf, format="JPEG", quality=quality)
    else:
        image.save(buf, format=fmt)
    mime_type = Image.MIME.get(fmt, "application/octet-stream")
    payload = base64.b64encode(buf.getvalue()).decode("ascii")
    return f"data:{mime_type};base64,{payload}"


def decode_data_uri(data_uri: str) -> tuple[str, bytes]:
    if not isinstance(data_uri, str) or not data_uri.startswith("data:") or ";base64," not in data_uri:
        raise ValueError("Expected a base64 RFC2397 data URI.")
    header, payload = data_uri.split(",", 1)
    mime_type = header[5:].split(";", 1)[0].strip() or "image/png"
    try:
        return mime_type, base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Invalid base64 image payload.") from exc


def is_data_uri(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("data:")


def decode_raster(raster: bytes | str) -> Image.Image:
    if isinstance(raster, str):
        try:
            _, raster = decode_data_uri(raster)
        except ValueError as exc:
            raise CropError(str(exc)) from exc
    try:
        image = Image.open(io.BytesIO(raster))
        image.load()
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise CropError(f"Failed to decode raster: {exc}") from exc
    return image


def _render_region(image: Image.Image, box: tuple[int, int, int, int], image_format: str, quality: int) -> str:
    left, top, right, bottom = box
    left, top = max(left, 0), max(top, 0)
    right, bottom = min(right, image.width), min(bottom, image.height)
    if right <= left or bottom <= top:
        raise CropError(f"Crop region is empty after clipping: {box}")

    region = image.crop((left, top, right, bottom))
    canvas = Image.new("RGB", region.size, (255, 255, 255))
    if region.mode in ("RGBA", "LA") or (region.mode == "P" and "transparency" in region.info):
        region = region.convert("RGBA")
        canvas.paste(region, (0, 0), mask=region.getchannel("A"))
    else:
        canvas.paste(region.convert("RGB"), (0, 0))
    return encode_data_uri(canvas, image_format=image_format, quality=quality)


def crop_box_or_raise(raster: bytes | str, box: Any) -> str:
    normalized = NormalizedBox.from_sequence(box)
    if normalized is None or not normalized.is_valid:
        raise CropError(f"Invalid crop coordinates: {box!r}")
    image = decode_raster(raster)
    width, height = image.size
    rect = normalized.to_pixel_rect(width, height)
    rect = rect.padded(width * CROP_PADDING_RATIO, height * CROP_PADDING_RATIO).clipped(width, height)
    return _render_region(image, rect.to_pixel_box(), "JPEG", CROP_JPEG_QUALITY)


def crop_normalized_box(raster: bytes | str, box: Any) -> Optional[str]:
    """Crop a 0-1000 ``[ymin, xmin, ymax, xmax]`` box with 1% safety padding.

    Returns a JPEG data URI, or None when the box is malformed or the raster
    cannot be decoded.
    """
    try:
        return crop_box_or_raise(raster, box)
    except CropError as exc:
        logger.warning("Crop skipped: %s", exc)
        return None


def crop_pixel_rect(raster: bytes | str, rect: PixelRect, image_format: str = "PNG") -> Optional[str]:
    """Crop an exact pixel rectangle (no padding). Used for reviewer selections."""
    try:
        image = decode_raster(raster)
        rect = rect.clipped(image.width, image.height)
        return _render_region(image, rect.to_nearest_pixel_box(), image_format, CROP_JPEG_QUALITY)
    except CropError as exc:
        logger.warning("Manual crop skipped: %s", exc)
        return None


__all__ = [
    "CROP_JPEG_QUALITY",
    "CROP_PADDING_RATIO",
    "MIN_SELECTION_PX",
    "NORMALIZED_SCALE",
    "NormalizedBox",
    "PixelRect",
    "crop_box_or_raise",
    "crop_normalized_box",
    "crop_pixel_rect",
    "decode_data_uri",
    "decode_raster",
    "encode_data_uri",
    "is_data_uri",
]
