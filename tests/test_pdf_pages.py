from __future__ import annotations

from types import SimpleNamespace

import pytest
from PIL import Image
from pdf2image.exceptions import PDFInfoNotInstalledError, PDFPageCountError

from exam_ingest import pdf_pages
from exam_ingest.errors import ConfigurationError, DocumentParseError

FAKE_PDF = b"%PDF-1.7\n%fake\n"


def _fake_reader(texts):
    def _factory(_stream):
        return SimpleNamespace(pages=[SimpleNamespace(extract_text=lambda t=t: t) for t in texts])

    return _factory


def _fake_convert(count, size=(120, 160)):
    calls = []

    def _convert(data, dpi, thread_count, use_pdftocairo):
        calls.append({"dpi": dpi, "thread_count": thread_count})
        return [Image.new("RGB", size, (255, 255, 255)) for _ in range(count)]

    _convert.calls = calls
    return _convert


def test_render_pdf_produces_ordered_pages(monkeypatch) -> None:
    convert = _fake_convert(3)
    monkeypatch.setattr(pdf_pages, "PdfReader", _fake_reader(["one", None, "three"]))
    monkeypatch.setattr(pdf_pages, "convert_from_bytes", convert)

    pages = pdf_pages.render_document(FAKE_PDF, dpi=110, thread_count=2)
    assert [p.page_number for p in pages] == [1, 2, 3]
    assert [p.text for p in pages] == ["one", "", "three"]
    assert all(p.has_raster and p.mime_type == "image/jpeg" for p in pages)
    assert (pages[0].width, pages[0].height) == (120, 160)
    assert pages[0].image_bytes[:2] == b"\xff\xd8"
    assert convert.calls == [{"dpi": 110, "thread_count": 2}]


def test_render_text_only_skips_rasterizing(monkeypatch) -> None:
    def _boom(*_a, **_k):
        raise AssertionError("should not rasterize")

    monkeypatch.setattr(pdf_pages, "PdfReader", _fake_reader(["a", "b"]))
    monkeypatch.setattr(pdf_pages, "convert_from_bytes", _boom)
    pages = pdf_pages.render_document(FAKE_PDF, include_images=False)
    assert [(p.page_number, p.text, p.has_raster) for p in pages] == [(1, "a", False), (2, "b", False)]


def test_plain_text_document_is_single_page() -> None:
    pages = pdf_pages.render_document("Q1. What is 2+2?\n".encode("utf-8"))
    assert len(pages) == 1
    assert pages[0].page_number == 1
    assert pages[0].text.startswith("Q1.")
    assert not pages[0].has_raster


@pytest.mark.parametrize("data", [b"", b"\xff\xfe\x00binary\x9c"])
def test_unreadable_documents_raise(data) -> None:
    with pytest.raises(DocumentParseError):
        pdf_pages.render_document(data)


def test_page_count_mismatch_fails_whole_document(monkeypatch) -> None:
    monkeypatch.setattr(pdf_pages, "PdfReader", _fake_reader(["a", "b", "c"]))
    monkeypatch.setattr(pdf_pages, "convert_from_bytes", _fake_convert(2))
    with pytest.raises(DocumentParseError):
        pdf_pages.render_document(FAKE_PDF)


def test_corrupt_pdf_raises_document_parse_error(monkeypatch) -> None:
    def _broken(*_a, **_k):
        raise PDFPageCountError("Unable to get page count.")

    monkeypatch.setattr(pdf_pages, "convert_from_bytes", _broken)
    with pytest.raises(DocumentParseError):
        pdf_pages.render_document(FAKE_PDF, include_text=False)


def test_missing_poppler_is_configuration_error(monkeypatch) -> None:
    def _no_poppler(*_a, **_k):
        raise PDFInfoNotInstalledError("pdfinfo missing")

    monkeypatch.setattr(pdf_pages, "convert_from_bytes", _no_poppler)
    with pytest.raises(ConfigurationError):
        pdf_pages.render_document(FAKE_PDF, include_text=False)


def test_zero_page_pdf_raises(monkeypatch) -> None:
    monkeypatch.setattr(pdf_pages, "PdfReader", _fake_reader([]))
    with pytest.raises(DocumentParseError):
        pdf_pages.render_document(FAKE_PDF, include_images=False)


def test_cli_writes_page_images(monkeypatch, tmp_path) -> None:
    pdf = tmp_path / "paper.pdf"
    pdf.write_bytes(FAKE_PDF)
    monkeypatch.setattr(pdf_pages, "convert_from_bytes", _fake_convert(2))
    out_root = tmp_path / "out"
    assert pdf_pages.main([str(pdf), "--output-root", str(out_root)]) == 0
    out_dir = out_root / "paper"
    assert sorted(p.name for p in out_dir.iterdir()) == ["page_0001.jpg", "page_0002.jpg"]
