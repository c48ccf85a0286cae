"""Package reviewed questions as a zip archive and push them to storage."""
from __future__ import annotations

import asyncio
import io
import json
import mimetypes
import secrets
import time
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

import httpx

from .cropper import decode_data_uri, is_data_uri
from .errors import UploadError
from .events import EventBus
from .schemas import ResolvedQuestion
from .storage import ImageStore

ProgressCallback = Callable[[int, int], None]

QUESTIONS_MANIFEST = "questions.json"
UPLOADED_MANIFEST = "questions_uploaded.json"
IMAGES_DIR = "images"
DEFAULT_UPLOAD_CONCURRENCY = 8


def _suffix_from_mime(mime_type: str) -> str:
    suffix = mimetypes.guess_extension(mime_type) or ".png"
    if suffix == ".jpe":
        return ".jpg"
    return suffix


def generate_image_filename(
    prefix: str,
    index: int,
    sub_index: Optional[int] = None,
    mime_type: str = "image/png",
    timestamp_ms: Optional[int] = None,
) -> str:
    """``<prefix>_<index>[_<sub_index>]_<timestamp>_<random>.<ext>``"""
    timestamp = int(time.time() * 1000) if timestamp_ms is None else int(timestamp_ms)
    suffix = f"_{sub_index}" if sub_index is not None else ""
    return f"{prefix}_{index}{suffix}_{timestamp}_{secrets.token_hex(3)}{_suffix_from_mime(mime_type)}"


@dataclass(frozen=True)
class ImageSlot:
    question_index: int
    option_index: Optional[int]
    data_uri: str

    def filename(self) -> str:
        mime_type, _ = decode_data_uri(self.data_uri)
        if self.option_index is None:
            return generate_image_filename("question", self.question_index, mime_type=mime_type)
        return generate_image_filename("option", self.question_index, self.option_index, mime_type=mime_type)


def iter_image_slots(questions: Sequence[ResolvedQuestion]) -> Iterator[ImageSlot]:
    """Embedded (data URI) images only; images that are already URLs are left alone."""
    for q_index, question in enumerate(questions):
        if is_data_uri(question.image):
            yield ImageSlot(q_index, None, question.image or "")
        for o_index, option in enumerate(question.options):
            if is_data_uri(option.image):
                yield ImageSlot(q_index, o_index, option.image or "")


def _set_image(manifest: List[Dict[str, Any]], slot: ImageSlot, value: str) -> None:
    entry = manifest[slot.question_index]
    if slot.option_index is None:
        entry["image"] = value
    else:
        entry["options"][slot.option_index]["image"] = value


def build_export_archive(
    questions: Sequence[ResolvedQuestion],
    uploaded_manifest: Optional[List[Dict[str, Any]]] = None,
) -> bytes:
    manifest = [q.to_wire() for q in questions]
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for slot in iter_image_slots(questions):
            try:
                _, data = decode_data_uri(slot.data_uri)
                name = slot.filename()
            except ValueError as exc:
                raise ValueError(f"Question {slot.question_index + 1} has an invalid embedded image: {exc}") from exc
            rel_path = f"{IMAGES_DIR}/{name}"
            archive.writestr(rel_path, data)
            _set_image(manifest, slot, rel_path)
        archive.writestr(QUESTIONS_MANIFEST, json.dumps(manifest, indent=2, ensure_ascii=False))
        if uploaded_manifest is not None:
            archive.writestr(UPLOADED_MANIFEST, json.dumps(uploaded_manifest, indent=2, ensure_ascii=False))
    return buf.getvalue()


async def upload_question_images(
    questions: Sequence[ResolvedQuestion],
    store: ImageStore,
    on_progress: Optional[ProgressCallback] = None,
    max_concurrency: int = DEFAULT_UPLOAD_CONCURRENCY,
) -> List[Dict[str, Any]]:
    """Upload every embedded image concurrently; return manifest entries with URLs.

    ``on_progress(current, total)`` fires once per finished upload with
    ``current`` strictly increasing and ``total`` fixed up front.
    """
    manifest = [q.to_wire() for q in questions]
    slots = list(iter_image_slots(questions))
    total = len(slots)
    semaphore = asyncio.Semaphore(max(1, max_concurrency))
    completed = 0

    async def _upload(slot: ImageSlot) -> None:
        nonlocal completed
        try:
            _, data = decode_data_uri(slot.data_uri)
            name = slot.filename()
        except ValueError as exc:
            raise UploadError(f"Question {slot.question_index + 1} has an invalid embedded image: {exc}") from exc
        async with semaphore:
            url = await asyncio.to_thread(store.upload, data, name)
        _set_image(manifest, slot, url)
        # Runs on the event loop thread, so increments are never interleaved.
        completed += 1
        if on_progress is not None:
            on_progress(completed, total)

    await asyncio.gather(*(_upload(slot) for slot in slots))
    return manifest


@dataclass
class IngestResult:
    count: int
    ids: List[str] = field(default_factory=list)


class IngestClient:
    """Client for the document store's ``POST /api/ingest`` endpoint."""

    def __init__(self, url: str, timeout_sec: float = 30.0, transport: Optional[httpx.BaseTransport] = None) -> None:
        self.url = url
        self.timeout_sec = timeout_sec
        self.transport = transport

    def post(self, questions: List[Dict[str, Any]]) -> IngestResult:
        try:
            with httpx.Client(timeout=self.timeout_sec, transport=self.transport) as client:
                response = client.post(self.url, json={"questions": questions})
        except httpx.HTTPError as exc:
            raise UploadError(f"Document store unreachable: {exc}") from exc

        if response.status_code >= 400:
            raise UploadError(f"Document store upload failed ({response.status_code}): {response.text[:500]}")
        try:
            data = response.json()
        except ValueError as exc:
            raise UploadError("Document store returned a non-JSON response.") from exc
        if not isinstance(data, dict):
            raise UploadError("Document store returned an unexpected response shape.")
        ids = data.get("ids") if isinstance(data.get("ids"), list) else []
        return IngestResult(count=int(data.get("count") or 0), ids=[str(i) for i in ids])


@dataclass
class ExportReport:
    archive_path: Path
    question_count: int
    uploaded_questions: Optional[List[Dict[str, Any]]] = None
    ingest_result: Optional[IngestResult] = None
    warnings: List[str] = field(default_factory=list)


def archive_name(source_name: str) -> str:
    stem = Path(source_name or "").stem.strip() or "questions"
    return f"{stem}_export.zip"


def run_export(
    questions: Sequence[ResolvedQuestion],
    source_name: str,
    out_dir: Path | str,
    *,
    store: Optional[ImageStore] = None,
    ingest_client: Optional[IngestClient] = None,
    on_progress: Optional[ProgressCallback] = None,
    events: Optional[EventBus] = None,
) -> ExportReport:
    """Export selected questions.

    A storage failure raises UploadError and aborts this export. A document
    store failure is reported as a warning and the archive is still written.
    """
    events = events or EventBus("exam_ingest.export")
    selected = [q for q in questions if q.is_selected]
    if not selected:
        raise ValueError("No questions selected for export.")

    report = ExportReport(archive_path=Path(out_dir) / archive_name(source_name), question_count=len(selected))
    if store is not None:
        events.info("Uploading images to storage...", source="export")
        report.uploaded_questions = asyncio.run(upload_question_images(selected, store, on_progress))
        if ingest_client is not None:
            try:
                report.ingest_result = ingest_client.post(report.uploaded_questions)
                events.success(f"Document store accepted {report.ingest_result.count} question(s).", source="export")
            except UploadError as exc:
                message = f"Warning: document store upload failed ({exc}). Continuing with archive export."
                report.warnings.append(message)
                events.warn(message, source="export")

    data = build_export_archive(selected, report.uploaded_questions)
    report.archive_path.parent.mkdir(parents=True, exist_ok=True)
    report.archive_path.write_bytes(data)
    events.success(f"Wrote {report.archive_path} with {len(selected)} question(s).", source="export")
    return report


__all__ = [
    "ExportReport",
    "ImageSlot",
    "IngestClient",
    "IngestResult",
    "archive_name",
    "build_export_archive",
    "generate_image_filename",
    "iter_image_slots",
    "run_export",
    "upload_question_images",
]
