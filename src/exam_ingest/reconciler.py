"""Windowed extraction over overlapping page pairs with first-window-wins dedup.

Windows are processed strictly in document order: a candidate is a duplicate
only of questions accepted by an earlier window, so windows must not run
concurrently.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence

from .cropper import crop_normalized_box
from .errors import WindowExtractionError
from .events import EventBus
from .pdf_pages import PageArtifact
from .schemas import CandidateQuestion, ResolvedQuestion

DEFAULT_WINDOW_SIZE = 2
DEFAULT_STRIDE = 1
FINGERPRINT_LENGTH = 50


class QuestionOracle(Protocol):
    def extract(self, pages: Sequence[PageArtifact]) -> List[CandidateQuestion]:
        ...


@dataclass
class FailedWindow:
    pages: List[int]
    message: str


@dataclass
class ReconciliationResult:
    questions: List[ResolvedQuestion] = field(default_factory=list)
    failed_windows: List[FailedWindow] = field(default_factory=list)
    duplicates_dropped: int = 0
    windows_processed: int = 0


def page_windows(page_count: int, size: int = DEFAULT_WINDOW_SIZE, stride: int = DEFAULT_STRIDE) -> List[List[int]]:
    """1-based page windows: ``[1, 2], [2, 3], ..., [N-1, N]`` for the defaults.

    The last window is truncated when fewer than ``size`` pages remain; no
    window is produced once the previous one reached the last page.
    """
    if size < 1 or stride < 1:
        raise ValueError("Window size and stride must be >= 1.")
    if stride > size:
        raise ValueError("Stride larger than the window size would skip pages.")
    windows: List[List[int]] = []
    start = 1
    while start <= page_count:
        end = min(start + size - 1, page_count)
        windows.append(list(range(start, end + 1)))
        if end >= page_count:
            break
        start += stride
    return windows


def fingerprint(text: str, length: int = FINGERPRINT_LENGTH) -> str:
    return " ".join(str(text or "").split())[:length]


def _check_page_sequence(pages: Sequence[PageArtifact]) -> None:
    numbers = [p.page_number for p in pages]
    if numbers != list(range(1, len(pages) + 1)):
        raise ValueError(f"Pages must be numbered contiguously from 1; got {numbers}.")


def resolve_candidate(
    candidate: CandidateQuestion,
    source_page: Optional[PageArtifact],
    source_name: str,
) -> ResolvedQuestion:
    """Attach cropped images to a candidate using the raster of ``source_page``."""
    question = ResolvedQuestion.from_candidate(candidate, source=source_name)
    raster = source_page.image_bytes if source_page is not None and source_page.has_raster else None
    if raster is None:
        return question

    if question.has_image and question.bounding_box:
        question.image = crop_normalized_box(raster, question.bounding_box)
    for option in question.options:
        if option.has_diagram and option.bounding_box:
            option.image = crop_normalized_box(raster, option.bounding_box)
    return question


class WindowedReconciler:
    def __init__(
        self,
        oracle: QuestionOracle,
        *,
        window_size: int = DEFAULT_WINDOW_SIZE,
        stride: int = DEFAULT_STRIDE,
        fingerprint_length: int = FINGERPRINT_LENGTH,
        events: Optional[EventBus] = None,
    ) -> None:
        self.oracle = oracle
        self.window_size = window_size
        self.stride = stride
        self.fingerprint_length = fingerprint_length
        self.events = events or EventBus("exam_ingest.reconciler")

    def run(self, pages: Sequence[PageArtifact], source_name: str) -> ReconciliationResult:
        _check_page_sequence(pages)
        result = ReconciliationResult()
        seen: set[str] = set()
        windows = page_windows(len(pages), self.window_size, self.stride)
        self.events.info(f"Processing {len(pages)} page(s) in {len(windows)} window(s).", source="reconciler")

        for window in windows:
            batch = [pages[n - 1] for n in window]
            result.windows_processed += 1
            try:
                candidates = self.oracle.extract(batch)
            except WindowExtractionError as exc:
                result.failed_windows.append(FailedWindow(pages=list(window), message=str(exc)))
                self.events.warn(f"Skipping pages {window}: {exc}", source="reconciler")
                continue
            except Exception as exc:
                result.failed_windows.append(FailedWindow(pages=list(window), message=f"{type(exc).__name__}: {exc}"))
                self.events.error(f"Unexpected failure on pages {window}: {exc!r}", source="reconciler")
                continue

            accepted = 0
            for candidate in candidates:
                key = fingerprint(candidate.text, self.fingerprint_length)
                if key in seen:
                    result.duplicates_dropped += 1
                    continue
                seen.add(key)
                result.questions.append(resolve_candidate(candidate, batch[0], source_name))
                accepted += 1
            self.events.info(
                f"Pages {window}: accepted {accepted} of {len(candidates)} candidate(s).",
                source="reconciler",
            )

        level = "success" if not result.failed_windows else "warn"
        self.events.emit(
            f"Extracted {len(result.questions)} question(s); {len(result.failed_windows)} window(s) failed.",
            level,
            source="reconciler",
        )
        return result


__all__ = [
    "FailedWindow",
    "QuestionOracle",
    "ReconciliationResult",
    "WindowedReconciler",
    "fingerprint",
    "page_windows",
    "resolve_candidate",
]
