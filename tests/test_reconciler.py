from __future__ import annotations

import io

import pytest
from PIL import Image

from exam_ingest import cropper
from exam_ingest.errors import WindowExtractionError
from exam_ingest.events import EventBus
from exam_ingest.pdf_pages import PageArtifact
from exam_ingest.reconciler import WindowedReconciler, fingerprint, page_windows, resolve_candidate
from exam_ingest.schemas import CandidateQuestion, Option, QuestionType, Section


class ScriptedOracle:
    """Returns canned candidates keyed by the window's page numbers."""

    def __init__(self, script):
        self.script = script
        self.calls = []

    def extract(self, pages):
        key = tuple(p.page_number for p in pages)
        self.calls.append(key)
        outcome = self.script.get(key, [])
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _q(text: str, **kwargs) -> CandidateQuestion:
    return CandidateQuestion(text=text, **kwargs)


@pytest.mark.parametrize(
    ("count", "expected"),
    [
        (0, []),
        (1, [[1]]),
        (2, [[1, 2]]),
        (3, [[1, 2], [2, 3]]),
        (5, [[1, 2], [2, 3], [3, 4], [4, 5]]),
    ],
)
def test_page_windows_default_pairs(count, expected) -> None:
    assert page_windows(count) == expected


def test_page_windows_cover_every_page_with_wider_stride() -> None:
    windows = page_windows(7, size=3, stride=2)
    assert windows == [[1, 2, 3], [3, 4, 5], [5, 6, 7]]
    assert sorted({n for w in windows for n in w}) == list(range(1, 8))


def test_page_windows_rejects_gapping_stride() -> None:
    with pytest.raises(ValueError):
        page_windows(5, size=2, stride=3)
    with pytest.raises(ValueError):
        page_windows(5, size=0)


def test_fingerprint_collapses_whitespace_and_truncates() -> None:
    assert fingerprint("  A  ball\n is\tthrown ") == "A ball is thrown"
    assert fingerprint("x" * 80) == "x" * 50
    assert fingerprint("A ball is thrown") == fingerprint("A ball   is\nthrown")


def test_cross_page_question_kept_once_from_first_window(page_factory) -> None:
    pages = [page_factory(n) for n in (1, 2, 3)]
    oracle = ScriptedOracle(
        {
            (1, 2): [_q("Q1 on page one"), _q("Q2 spans pages two and three, partially")],
            (2, 3): [_q("Q2 spans pages two and three, partially"), _q("Q3 on page three")],
        }
    )
    result = WindowedReconciler(oracle).run(pages, "paper.pdf")

    assert oracle.calls == [(1, 2), (2, 3)]
    assert [q.text for q in result.questions] == [
        "Q1 on page one",
        "Q2 spans pages two and three, partially",
        "Q3 on page three",
    ]
    assert result.duplicates_dropped == 1
    assert result.windows_processed == 2
    assert not result.failed_windows


def test_duplicate_prefix_with_different_tail_is_dropped(page_factory) -> None:
    prefix = "A particle of mass m moves along a circle of radius"
    oracle = ScriptedOracle({(1, 2): [_q(prefix + " R."), _q(prefix + " 2R with speed v.")]})
    result = WindowedReconciler(oracle).run([page_factory(1), page_factory(2)], "paper.pdf")
    assert len(result.questions) == 1
    assert result.questions[0].text == prefix + " R."


def test_failed_window_is_skipped_and_reported(page_factory) -> None:
    pages = [page_factory(n) for n in (1, 2, 3)]
    oracle = ScriptedOracle(
        {
            (1, 2): WindowExtractionError("quota exceeded", [1, 2]),
            (2, 3): [_q("Q3 survives")],
        }
    )
    seen = []
    events = EventBus("test.reconciler")
    events.subscribe(seen.append)
    result = WindowedReconciler(oracle, events=events).run(pages, "paper.pdf")

    assert [q.text for q in result.questions] == ["Q3 survives"]
    assert len(result.failed_windows) == 1
    assert result.failed_windows[0].pages == [1, 2]
    assert "quota exceeded" in result.failed_windows[0].message
    assert any(e.level.value == "warn" and "[1, 2]" in e.message for e in seen)


def test_all_windows_failing_yields_empty_result(page_factory) -> None:
    oracle = ScriptedOracle({(1, 2): WindowExtractionError("bad json")})
    result = WindowedReconciler(oracle).run([page_factory(1), page_factory(2)], "paper.pdf")
    assert result.questions == []
    assert len(result.failed_windows) == 1


def test_unexpected_oracle_error_skips_only_that_window(page_factory) -> None:
    oracle = ScriptedOracle({(1, 2): RuntimeError("bug"), (2, 3): [_q("Q from window 2")]})
    events = EventBus("test.reconciler")
    seen = []
    events.subscribe(seen.append)

    result = WindowedReconciler(oracle, events=events).run([page_factory(n) for n in (1, 2, 3)], "paper.pdf")

    assert oracle.calls == [(1, 2), (2, 3)]
    assert [q.text for q in result.questions] == ["Q from window 2"]
    assert result.failed_windows[0].pages == [1, 2]
    assert "RuntimeError" in result.failed_windows[0].message
    assert any(e.level.value == "error" and "[1, 2]" in e.message for e in seen)


def test_resolved_defaults(page_factory) -> None:
    oracle = ScriptedOracle({(1,): [_q("Find x.", type=QuestionType.numerical, numerical_answer="4")]})
    result = WindowedReconciler(oracle).run([page_factory(1)], "paper.pdf")
    question = result.questions[0]
    assert question.is_selected is True
    assert question.is_valid is True
    assert question.is_active is True
    assert question.source == "paper.pdf"
    assert question.section == Section.numerical
    assert question.image is None


def test_images_are_cropped_from_first_page_of_window() -> None:
    def _page(n, color):
        buf = io.BytesIO()
        Image.new("RGB", (100, 100), color).save(buf, format="PNG")
        return PageArtifact(page_number=n, image_bytes=buf.getvalue(), mime_type="image/png", width=100, height=100)

    pages = [_page(1, (255, 0, 0)), _page(2, (0, 0, 255))]
    candidate = _q(
        "Which graph is correct?",
        has_image=True,
        bounding_box=[100, 100, 900, 900],
        options=[
            Option(text="A", has_diagram=True, bounding_box=[0, 0, 500, 500]),
            Option(text="B", has_diagram=True, bounding_box=[900, 900, 100, 100]),
            Option(text="C"),
        ],
    )
    result = WindowedReconciler(ScriptedOracle({(1, 2): [candidate]})).run(pages, "paper.pdf")
    question = result.questions[0]

    _, data = cropper.decode_data_uri(question.image)
    r, g, b = Image.open(io.BytesIO(data)).convert("RGB").getpixel((40, 40))
    assert r > 200 and b < 60
    assert question.options[0].image is not None
    # Inverted box cannot be cropped; the option keeps no image.
    assert question.options[1].image is None
    assert question.options[2].image is None


def test_resolve_candidate_without_raster_leaves_images_empty(page_factory) -> None:
    candidate = _q("Q", has_image=True, bounding_box=[0, 0, 100, 100])
    resolved = resolve_candidate(candidate, page_factory(1, raster=False, text="Q"), "a.txt")
    assert resolved.image is None
    assert resolved.has_image is True


def test_non_contiguous_pages_rejected(page_factory) -> None:
    with pytest.raises(ValueError):
        WindowedReconciler(ScriptedOracle({})).run([page_factory(1), page_factory(3)], "paper.pdf")
