"""End-to-end run: render a document, extract questions, export the selection."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from .config import AppConfig, load_config
from .errors import ConfigurationError, DocumentParseError, UploadError
from .events import Event, EventBus, EventLevel
from .export import IngestClient, run_export
from .gemini_vlm import ExtractionMode, GeminiQuestionOracle
from .pdf_pages import PageArtifact, render_document
from .reconciler import QuestionOracle, ReconciliationResult, WindowedReconciler
from .storage import build_image_store

_LEVEL_TAGS = {
    EventLevel.info: "INFO",
    EventLevel.success: "OK",
    EventLevel.warn: "WARN",
    EventLevel.error: "ERROR",
}


def build_oracle(config: AppConfig, events: Optional[EventBus] = None) -> GeminiQuestionOracle:
    return GeminiQuestionOracle(
        api_key=config.gemini.api_key,
        model=config.gemini.model,
        mode=config.gemini.mode,
        events=events,
    )


def render_pages(
    document_bytes: bytes,
    config: AppConfig,
    include_images: Optional[bool] = None,
    events: Optional[EventBus] = None,
) -> List[PageArtifact]:
    """Render with the configured settings; rasters default to multimodal mode only."""
    if include_images is None:
        include_images = ExtractionMode(config.gemini.mode) == ExtractionMode.multimodal
    return render_document(
        document_bytes,
        include_images=include_images,
        include_text=True,
        dpi=config.render.dpi,
        quality=config.render.jpeg_quality,
        thread_count=config.render.thread_count,
        events=events,
    )


def extract_questions(
    pages: Sequence[PageArtifact],
    source_name: str,
    config: AppConfig,
    oracle: Optional[QuestionOracle] = None,
    events: Optional[EventBus] = None,
) -> ReconciliationResult:
    if oracle is None:
        oracle = build_oracle(config, events)
    reconciler = WindowedReconciler(
        oracle,
        window_size=config.reconcile.window_size,
        stride=config.reconcile.stride,
        fingerprint_length=config.reconcile.fingerprint_length,
        events=events,
    )
    return reconciler.run(pages, source_name)


def run_pipeline(
    document_bytes: bytes,
    source_name: str,
    config: Optional[AppConfig] = None,
    oracle: Optional[QuestionOracle] = None,
    events: Optional[EventBus] = None,
) -> ReconciliationResult:
    """Render ``document_bytes`` and reconcile questions across page windows.

    Raises DocumentParseError before any extraction when the document cannot
    be rendered; per-window extraction failures are reported in the result.
    """
    config = config or AppConfig()
    events = events or EventBus("exam_ingest.pipeline")
    events.info(f"Processing {source_name} in {config.gemini.mode} mode.", source="pipeline")
    pages = render_pages(document_bytes, config, events=events)
    return extract_questions(pages, source_name, config, oracle=oracle, events=events)


def _print_event(event: Event) -> None:
    source = f"{event.source}: " if event.source else ""
    print(f"[{event.timestamp}] {_LEVEL_TAGS[event.level]:<5} {source}{event.message}", file=sys.stderr)


def _print_progress(current: int, total: int) -> None:
    print(f"  uploaded {current}/{total}", file=sys.stderr)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Extract exam questions from a PDF or text file and export them.")
    parser.add_argument("document", help="Path to the source PDF or text file.")
    parser.add_argument("--config", default=None, help="Path to exam_ingest.toml.")
    parser.add_argument("--mode", choices=[m.value for m in ExtractionMode], default=None, help="Override gemini.mode.")
    parser.add_argument("--out-dir", default="data/exports", help="Directory for the export archive.")
    parser.add_argument("--upload", action="store_true", help="Upload images to the configured storage backend.")
    parser.add_argument("--ingest", action="store_true", help="Also post uploaded questions to the document store.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    path = Path(args.document)
    if not path.is_file():
        print(f"Document not found: {path}", file=sys.stderr)
        return 1
    if args.ingest and not args.upload:
        print("--ingest requires --upload.", file=sys.stderr)
        return 2

    events = EventBus("exam_ingest.pipeline")
    events.subscribe(_print_event)
    try:
        config = load_config(args.config)
        if args.mode:
            config.gemini.mode = args.mode
        result = run_pipeline(path.read_bytes(), path.name, config, events=events)
        if not result.questions:
            print("No questions extracted.", file=sys.stderr)
            return 1

        store = build_image_store(config.storage) if args.upload else None
        ingest_client = IngestClient(config.ingest.url, config.ingest.timeout_sec) if args.ingest else None
        report = run_export(
            result.questions,
            path.name,
            args.out_dir,
            store=store,
            ingest_client=ingest_client,
            on_progress=_print_progress,
            events=events,
        )
    except (ConfigurationError, DocumentParseError, UploadError) as exc:
        print(str(exc), file=sys.stderr)
        return 1

    print(report.archive_path)
    return 0 if not result.failed_windows else 3


if __name__ == "__main__":
    raise SystemExit(main())
