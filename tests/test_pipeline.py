from __future__ import annotations

import zipfile

import pytest

from exam_ingest import pipeline
from exam_ingest.config import AppConfig
from exam_ingest.errors import DocumentParseError, WindowExtractionError
from exam_ingest.events import EventBus
from exam_ingest.schemas import CandidateQuestion


class _Oracle:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.batches = []

    def extract(self, pages):
        self.batches.append([(p.page_number, p.has_raster) for p in pages])
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def test_text_document_runs_single_window() -> None:
    config = AppConfig()
    config.gemini.mode = "text"
    oracle = _Oracle([[CandidateQuestion(text="Q1. What is 2+2?")]])
    seen = []
    events = EventBus("test.pipeline")
    events.subscribe(seen.append)

    result = pipeline.run_pipeline(b"Q1. What is 2+2?\n", "paper.txt", config, oracle=oracle, events=events)

    assert oracle.batches == [[(1, False)]]
    assert [q.text for q in result.questions] == ["Q1. What is 2+2?"]
    assert result.questions[0].source == "paper.txt"
    assert any("text mode" in e.message for e in seen)


def test_multimodal_mode_renders_rasters(monkeypatch, page_factory) -> None:
    captured = {}

    def _render(data, **kwargs):
        captured.update(kwargs)
        return [page_factory(1), page_factory(2), page_factory(3)]

    monkeypatch.setattr(pipeline, "render_document", _render)
    config = AppConfig()
    config.render.dpi = 200
    oracle = _Oracle([[CandidateQuestion(text="A")], WindowExtractionError("boom", [2, 3])])

    result = pipeline.run_pipeline(b"%PDF-fake", "paper.pdf", config, oracle=oracle)

    assert captured["include_images"] is True
    assert captured["dpi"] == 200
    assert [len(b) for b in oracle.batches] == [2, 2]
    assert [q.text for q in result.questions] == ["A"]
    assert result.failed_windows[0].pages == [2, 3]


def test_unreadable_document_fails_before_extraction() -> None:
    oracle = _Oracle([])
    with pytest.raises(DocumentParseError):
        pipeline.run_pipeline(b"", "empty.pdf", AppConfig(), oracle=oracle)
    assert oracle.batches == []


def test_cli_writes_archive(monkeypatch, tmp_path) -> None:
    doc = tmp_path / "paper.txt"
    doc.write_text("Q1. Define work.", encoding="utf-8")
    monkeypatch.setattr(pipeline, "load_config", lambda _path=None: AppConfig())
    monkeypatch.setattr(pipeline, "build_oracle", lambda _cfg, _events=None: _Oracle([[CandidateQuestion(text="Q1. Define work.")]]))

    out_dir = tmp_path / "exports"
    assert pipeline.main([str(doc), "--mode", "text", "--out-dir", str(out_dir)]) == 0
    with zipfile.ZipFile(out_dir / "paper_export.zip") as archive:
        assert "questions.json" in archive.namelist()


def test_cli_rejects_ingest_without_upload(tmp_path) -> None:
    doc = tmp_path / "paper.txt"
    doc.write_text("Q1", encoding="utf-8")
    assert pipeline.main([str(doc), "--ingest"]) == 2


def test_cli_missing_document(tmp_path) -> None:
    assert pipeline.main([str(tmp_path / "missing.pdf")]) == 1
