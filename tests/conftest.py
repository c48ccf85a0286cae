from __future__ import annotations

import io
import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
SRC_STR = str(SRC)
if SRC_STR not in sys.path:
    sys.path.insert(0, SRC_STR)

from PIL import Image  # noqa: E402

from exam_ingest.pdf_pages import PageArtifact  # noqa: E402


def make_raster(width: int = 200, height: int = 300, color=(200, 30, 30), fmt: str = "PNG", mode: str = "RGB") -> bytes:
    buf = io.BytesIO()
    Image.new(mode, (width, height), color).save(buf, format=fmt)
    return buf.getvalue()


def make_page(page_number: int, width: int = 200, height: int = 300, text: str | None = None, raster: bool = True) -> PageArtifact:
    return PageArtifact(
        page_number=page_number,
        image_bytes=make_raster(width, height) if raster else None,
        width=width if raster else 0,
        height=height if raster else 0,
        text=text,
    )


@pytest.fixture
def raster_factory():
    return make_raster


@pytest.fixture
def page_factory():
    return make_page
