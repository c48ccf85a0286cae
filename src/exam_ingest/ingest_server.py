from __future__ import annotations

import argparse
import json
import logging
import os
import secrets
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import Body, FastAPI
from fastapi.responses import JSONResponse

DEFAULT_STORE_PATH = Path("data/question_bank.jsonl")

# Fields persisted per question; anything else in the payload is dropped.
_QUESTION_FIELDS = (
    "text",
    "type",
    "options",
    "subject",
    "board",
    "standard",
    "chapter",
    "topic",
    "section",
    "marks",
    "difficulty",
    "correctAnswerText",
    "numericalAnswer",
    "image",
    "hasImage",
    "source",
)
_OPTION_FIELDS = ("text", "isCorrect", "image", "hasDiagram", "boundingBox")


class QuestionBankFile:
    """Append-only JSON-lines question bank."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()

    def insert_many(self, questions: List[Dict[str, Any]]) -> List[str]:
        created_at = datetime.now(timezone.utc).isoformat()
        records = []
        for question in questions:
            record = {"_id": secrets.token_hex(12), **_project_question(question), "createdAt": created_at}
            records.append(record)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as fh:
                for record in records:
                    fh.write(json.dumps(record, ensure_ascii=False) + "\n")
        return [r["_id"] for r in records]

    def count(self) -> int:
        if not self.path.is_file():
            return 0
        with self.path.open("r", encoding="utf-8") as fh:
            return sum(1 for line in fh if line.strip())


def _project_question(question: Dict[str, Any]) -> Dict[str, Any]:
    out = {key: question[key] for key in _QUESTION_FIELDS if key in question}
    options = question.get("options")
    if isinstance(options, list):
        out["options"] = [
            {key: opt[key] for key in _OPTION_FIELDS if key in opt} for opt in options if isinstance(opt, dict)
        ]
    if out.get("numericalAnswer") is not None:
        out["numericalAnswer"] = str(out["numericalAnswer"])
    return out


def create_app(store_path: Optional[Path | str] = None) -> FastAPI:
    path = store_path or os.getenv("EXAM_INGEST_STORE_PATH") or DEFAULT_STORE_PATH
    bank = QuestionBankFile(path)
    app = FastAPI(title="Exam Ingest Question Bank", version="1.0.0")
    app.state.bank = bank
    logger = logging.getLogger("exam_ingest.ingest_server")

    @app.get("/healthz")
    async def healthz() -> Dict[str, Any]:
        return {"ok": True, "service": "exam-ingest-server"}

    @app.post("/api/ingest")
    async def ingest(payload: Any = Body(...)) -> JSONResponse:
        questions = payload.get("questions") if isinstance(payload, dict) else None
        if not isinstance(questions, list) or not all(isinstance(q, dict) for q in questions):
            return JSONResponse(status_code=400, content={"msg": "Invalid data format"})
        try:
            ids = bank.insert_many(questions)
        except OSError as exc:
            logger.exception("ingest failure path=%s", bank.path)
            return JSONResponse(status_code=500, content={"msg": "Server Error", "error": str(exc)})
        logger.info("ingested %d question(s) into %s", len(ids), bank.path)
        return JSONResponse(content={"msg": "Success", "count": len(ids), "ids": ids})

    return app


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Question bank ingestion server.")
    parser.add_argument("--store", default=None, help=f"JSON-lines store path (default: {DEFAULT_STORE_PATH}).")
    parser.add_argument("--host", default="127.0.0.1", help="Bind host (default: 127.0.0.1).")
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "5000")), help="Bind port (default: 5000).")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    import uvicorn

    args = parse_args(argv)
    app = create_app(store_path=args.store)
    uvicorn.run(app, host=str(args.host), port=int(args.port), log_level="info")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
