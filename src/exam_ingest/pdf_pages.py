"""Render source documents into ordered page artifacts (raster and/or text)."""
from __future__ import annotations

import argparse
import io
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from pdf2image import convert_from_bytes
from pdf2image.exceptions import PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError
from PIL import Image
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from .errors import ConfigurationError, DocumentParseError
from .events import EventBus

PDF_MAGIC = b"%PDF"
DEFAULT_DPI = 150
DEFAULT_JPEG_QUALITY = 85


@dataclass(frozen=True)
class PageArtifact:
    page_number: int
    image_bytes: Optional[bytes] = None
    mime_type: str = "image/jpeg"
    width: int = 0
    height: int = 0
    text: Optional[str] = None

    @property
    def has_raster(self) -> bool:
        return bool(self.image_bytes) and self.width > 0 and self.height > 0


def is_pdf(data: bytes) -> bool:
    return data.lstrip()[:4] == PDF_MAGIC


def _encode_page(image: Image.Image, quality: int) -> bytes:
    buf = io.BytesIO()
    image.convert("RGB").save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def extract_page_texts(data: bytes) -> List[str]:
    try:
        reader = PdfReader(io.BytesIO(data))
        return [page.extract_text() or "" for page in reader.pages]
    except (PyPdfError, ValueError, KeyError, OSError) as exc:
        raise DocumentParseError(f"Could not parse PDF text layer: {exc}") from exc


def rasterize_pages(
    data: bytes,
    dpi: int = DEFAULT_DPI,
    quality: int = DEFAULT_JPEG_QUALITY,
    thread_count: int = 1,
) -> List[tuple[bytes, int, int]]:
    try:
        images = convert_from_bytes(data, dpi=dpi, thread_count=thread_count, use_pdftocairo=True)
    except PDFInfoNotInstalledError as exc:
        raise ConfigurationError("poppler is required to render PDF pages (pdfinfo not found).") from exc
    except (PDFPageCountError, PDFSyntaxError, OSError, ValueError) as exc:
        raise DocumentParseError(f"Could not convert PDF pages to images: {exc}") from exc

    out: list[tuple[bytes, int, int]] = []
    for image in images:
        out.append((_encode_page(image, quality), image.width, image.height))
    return out


def render_document(
    data: bytes,
    *,
    include_images: bool = True,
    include_text: bool = True,
    dpi: int = DEFAULT_DPI,
    quality: int = DEFAULT_JPEG_QUALITY,
    thread_count: int = 1,
    events: Optional[EventBus] = None,
) -> List[PageArtifact]:
    """Return one PageArtifact per page, in page order.

    Plain-text input becomes a single text-only page. Any page failing to
    decode fails the whole call with DocumentParseError; no partial list is
    returned.
    """
    events = events or EventBus("exam_ingest.pdf_pages")
    if not data:
        raise DocumentParseError("Source document is empty.")

    if not is_pdf(data):
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise DocumentParseError("Source document is neither a PDF nor UTF-8 text.") from exc
        events.info("Loaded plain-text document as a single page.", source="renderer")
        return [PageArtifact(page_number=1, text=text)]

    texts: Optional[List[str]] = extract_page_texts(data) if include_text else None
    if texts is not None:
        events.info(f"Extracted text layer for {len(texts)} page(s).", source="renderer")

    rasters: Optional[List[tuple[bytes, int, int]]] = None
    if include_images:
        rasters = rasterize_pages(data, dpi=dpi, quality=quality, thread_count=thread_count)
        events.info(f"Rendered {len(rasters)} page image(s) at {dpi} dpi.", source="renderer")

    if texts is not None and rasters is not None and len(texts) != len(rasters):
        raise DocumentParseError(
            f"Page count mismatch between text layer ({len(texts)}) and rendered pages ({len(rasters)})."
        )

    page_count = len(texts) if texts is not None else len(rasters or [])
    if page_count == 0:
        raise DocumentParseError("Document has no pages.")

    pages: list[PageArtifact] = []
    for idx in range(page_count):
        image_bytes, width, height = (None, 0, 0)
        if rasters is not None:
            image_bytes, width, height = rasters[idx]
        pages.append(
            PageArtifact(
                page_number=idx + 1,
                image_bytes=image_bytes,
                width=width,
                height=height,
                text=texts[idx] if texts is not None else None,
            )
        )
    return pages


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Dump PDF pages into data/pdf_images/<name>/")
    parser.add_argument("pdf", help="Path to the PDF to convert")
    parser.add_argument("--dpi", type=int, default=DEFAULT_DPI, help="Image resolution")
    parser.add_argument("--output-root", default="data/pdf_images", help="Parent directory for page images")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    pdf_path = Path(args.pdf)
    if not pdf_path.is_file():
        print(f"PDF not found: {pdf_path}", file=sys.stderr)
        return 1

    output_dir = Path(args.output_root) / pdf_path.stem
    output_dir.mkdir(parents=True, exist_ok=True)
    print(f"Writing images to {output_dir}")

    try:
        pages = render_document(pdf_path.read_bytes(), include_text=False, dpi=args.dpi)
    except (DocumentParseError, ConfigurationError) as exc:
        print(f"Conversion failed: {exc}", file=sys.stderr)
        return 1

    for page in pages:
        target = output_dir / f"page_{page.page_number:04d}.jpg"
        target.write_bytes(page.image_bytes or b"")
        print(f"  wrote {target}")

    print(f"Completed {len(pages)} pages")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
