from __future__ import annotations

import argparse
import ast
import json
import os
import re
import shutil
import subprocess
import sys
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional, Sequence

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from pydantic import ValidationError

from .config import DEFAULT_GEMINI_MODEL, read_config_data, resolve_config_path
from .cropper import NormalizedBox
from .errors import ConfigurationError, DocumentParseError, WindowExtractionError
from .events import EventBus
from .pdf_pages import PageArtifact, render_document
from .schemas import (
    DEFAULT_BOARD,
    DEFAULT_DIFFICULTY,
    DEFAULT_MARKS,
    DEFAULT_STANDARD,
    DEFAULT_SUBJECT,
    Board,
    CandidateQuestion,
    Difficulty,
    QuestionType,
    Standard,
    Subject,
)

_ALLOWED_RESPONSE_JSON_SCHEMA_KEYS = {
    "$id",
    "$defs",
    "$ref",
    "$anchor",
    "type",
    "format",
    "title",
    "description",
    "enum",
    "items",
    "prefixItems",
    "minItems",
    "maxItems",
    "minimum",
    "maximum",
    "anyOf",
    "oneOf",
    "properties",
    "additionalProperties",
    "required",
    "propertyOrdering",
}
_API_KEY_ENV_NAMES = ("GOOGLE_API_KEY", "GEMINI_API_KEY", "EXAM_INGEST_GEMINI_API_KEY")
_TYPE_ALIASES = {
    "mcq": QuestionType.mcq,
    "single": QuestionType.mcq,
    "single_correct": QuestionType.mcq,
    "msq": QuestionType.msq,
    "multiple": QuestionType.msq,
    "multi_correct": QuestionType.msq,
    "multiple_select": QuestionType.msq,
    "numerical": QuestionType.numerical,
    "numeric": QuestionType.numerical,
    "integer": QuestionType.numerical,
}


class ExtractionMode(str, Enum):
    text = "text"
    multimodal = "multimodal"


_BOX_SCHEMA = {
    "type": "array",
    "description": "[ymin, xmin, ymax, xmax] on a 0-1000 scale relative to the first page image of the batch.",
    "items": {"type": "number"},
    "minItems": 4,
    "maxItems": 4,
}

QUESTIONS_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "questions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "text": {"type": "string"},
                    "type": {"type": "string", "enum": [t.value for t in QuestionType]},
                    "options": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "text": {"type": "string"},
                                "isCorrect": {"type": "boolean"},
                                "hasDiagram": {"type": "boolean"},
                                "boundingBox": _BOX_SCHEMA,
                            },
                            "required": ["text", "isCorrect"],
                        },
                    },
                    "subject": {"type": "string", "enum": [s.value for s in Subject]},
                    "board": {"type": "string", "enum": [b.value for b in Board]},
                    "standard": {"type": "string", "enum": [s.value for s in Standard]},
                    "chapter": {"type": "string"},
                    "topic": {"type": "string"},
                    "marks": {"type": "integer"},
                    "difficulty": {"type": "string", "enum": [d.value for d in Difficulty]},
                    "correctAnswerText": {"type": "string"},
                    "numericalAnswer": {"type": "string"},
                    "hasImage": {"type": "boolean"},
                    "boundingBox": _BOX_SCHEMA,
                },
                "required": ["text", "type", "options", "subject"],
            },
        }
    },
    "required": ["questions"],
}

_BASE_INSTRUCTIONS = """\
Extract ALL questions from the provided JEE/NEET exam paper pages.

1. QUESTION COMPLETENESS
   - A question may start on one page and continue on the next. Merge every fragment into ONE record.
   - Never split one question into multiple output records.
   - Ignore a question whose beginning is not visible in these pages only if it is clearly a fragment.

2. QUESTION TYPES
   - mcq: single correct answer
   - msq: multiple correct answers
   - numerical: numerical answer, put the value in numericalAnswer

3. FORMATTING
   - Wrap EVERY mathematical expression, equation or symbol in $...$ (LaTeX), e.g. $x^2$, $\\frac{1}{2}$, $\\Delta H$.
   - Preserve the exact wording of stems and options.

4. CLASSIFICATION
   - board: "JEE" or "NEET"; default "JEE" when unclear.
   - standard: "11th" or "12th"; default "12th" when unclear.
     * 11th: Kinematics, Laws of Motion, Thermodynamics, Equilibrium, Periodic Table, Hydrocarbons, Sets, Trigonometry
     * 12th: Electrostatics, Magnetism, Optics, Modern Physics, Solutions, Electrochemistry, Aldehydes, Calculus, Vectors
   - subject: "Physics", "Chemistry" or "Mathematics"; default "Physics" when unclear.
   - difficulty: "easy", "medium" or "hard". marks: default 4.
"""

_TEXT_MODE_IMAGES = """\
5. IMAGES
   - Set hasImage and every option hasDiagram to false; users add images manually.
   - Do NOT return bounding boxes.
"""

_MULTIMODAL_IMAGES = """\
5. DIAGRAMS
   - Be conservative: if a question or option MIGHT contain a figure, graph, circuit or structure, set
     hasImage (question) or hasDiagram (option) to true. A false positive is acceptable; a missed diagram is not.
   - Whenever a flag is true you MUST return boundingBox as [ymin, xmin, ymax, xmax] on a 0-1000 scale
     relative to the FIRST page image of this batch.
   - Make boxes generous: include labels and captions, and never crop tightly. If one diagram spans several
     regions, return the union of those regions.
"""

_OUTPUT_FORMAT = """\
6. OUTPUT
   Return JSON {"questions": [...]} following the response schema.
"""


def build_extraction_prompt(pages: Sequence[PageArtifact], mode: ExtractionMode) -> str:
    mode = ExtractionMode(mode)
    sections = [_BASE_INSTRUCTIONS]
    sections.append(_TEXT_MODE_IMAGES if mode == ExtractionMode.text else _MULTIMODAL_IMAGES)
    sections.append(_OUTPUT_FORMAT)

    numbers = ", ".join(str(p.page_number) for p in pages)
    sections.append(f"PAGES IN THIS BATCH: {numbers}\n")
    transcripts = [
        f"--- Page {p.page_number} ---\n{p.text.strip()}\n" for p in pages if p.text is not None and p.text.strip()
    ]
    if transcripts:
        sections.append("TEXT TO PROCESS:\n" + "\n".join(transcripts))
    return "\n".join(sections)


def _api_key_from_config() -> Optional[str]:
    config_path = resolve_config_path()
    if not config_path:
        return None
    try:
        data = read_config_data(config_path)
    except ConfigurationError:
        return None

    value = data.get("api_key")
    if isinstance(value, str) and value.strip():
        return value.strip()

    gemini_section = data.get("gemini")
    if isinstance(gemini_section, dict):
        value = gemini_section.get("api_key")
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


@lru_cache(maxsize=1)
def _api_key_from_doppler() -> Optional[str]:
    if shutil.which("doppler") is None:
        return None

    project = str(os.getenv("DOPPLER_PROJECT") or "").strip()
    config = str(os.getenv("DOPPLER_CONFIG") or "").strip()
    scope_args: list[str] = []
    if project:
        scope_args.extend(["--project", project])
    if config:
        scope_args.extend(["--config", config])

    for secret_name in _API_KEY_ENV_NAMES:
        cmd = ["doppler", "secrets", "get", secret_name, "--plain", *scope_args]
        try:
            proc = subprocess.run(
                cmd,
                check=True,
                capture_output=True,
                text=True,
                timeout=5,
            )
        except (OSError, subprocess.SubprocessError):
            continue
        value = proc.stdout.strip()
        if value:
            return value
    return None


def resolve_api_key(explicit_api_key: Optional[str] = None) -> Optional[str]:
    if explicit_api_key and explicit_api_key.strip():
        return explicit_api_key.strip()
    for env_name in _API_KEY_ENV_NAMES:
        value = os.getenv(env_name)
        if value and value.strip():
            return value.strip()
    return _api_key_from_doppler() or _api_key_from_config()


def _sanitize_response_json_schema(node: Any, parent_key: Optional[str] = None) -> Any:
    if isinstance(node, dict):
        if parent_key in {"$defs", "properties"}:
            return {k: _sanitize_response_json_schema(v) for k, v in node.items()}
        # Gemini only accepts $-prefixed siblings next to $ref.
        if "$ref" in node:
            return {k: _sanitize_response_json_schema(v) for k, v in node.items() if k.startswith("$")}
        cleaned: dict[str, Any] = {}
        for key, value in node.items():
            if key in _ALLOWED_RESPONSE_JSON_SCHEMA_KEYS:
                cleaned[key] = _sanitize_response_json_schema(value, parent_key=key)
        return cleaned
    if isinstance(node, list):
        return [_sanitize_response_json_schema(x, parent_key=parent_key) for x in node]
    return node


def _extract_balanced_json_block(text: str) -> Optional[str]:
    start_idx = -1
    for i, ch in enumerate(text):
        if ch in "{[":
            start_idx = i
            break
    if start_idx < 0:
        return None
    open_char = text[start_idx]
    close_char = "}" if open_char == "{" else "]"

    depth = 0
    in_str = False
    esc = False
    for i in range(start_idx, len(text)):
        ch = text[i]
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == "\"":
                in_str = False
            continue

        if ch == "\"":
            in_str = True
            continue
        if ch == open_char:
            depth += 1
        elif ch == close_char:
            depth -= 1
            if depth == 0:
                return text[start_idx : i + 1]
    return None


def _clean_json_candidate(candidate: str) -> str:
    fixed = candidate.strip()
    fixed = fixed.replace("“", "\"").replace("”", "\"").replace("’", "'")
    fixed = re.sub(r",\s*([}\]])", r"\1", fixed)
    return fixed


def _parse_llm_json(text: str) -> Any:
    candidates: list[str] = []
    raw = text.strip()
    if raw:
        candidates.append(raw)

    fence_matches = re.findall(r"```(?:json)?\s*([\s\S]*?)```", text, flags=re.IGNORECASE)
    candidates.extend([m.strip() for m in fence_matches if m.strip()])

    balanced = _extract_balanced_json_block(text)
    if balanced:
        candidates.append(balanced.strip())

    parse_errors: list[str] = []
    for candidate in dict.fromkeys(c for c in candidates if c):
        for variant in (candidate, _clean_json_candidate(candidate)):
            try:
                return json.loads(variant)
            except json.JSONDecodeError as exc:
                parse_errors.append(str(exc))
            try:
                # Python-like dict output: single quotes, None/True/False.
                parsed = ast.literal_eval(variant)
                if isinstance(parsed, (dict, list)):
                    return parsed
            except (ValueError, SyntaxError, MemoryError, RecursionError) as exc:
                parse_errors.append(str(exc))

    raise ValueError(
        "Could not parse Gemini output as JSON. "
        f"Sample: {raw[:240]!r}. Last errors: {parse_errors[-2:]}"
    )


def _to_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _to_optional_str(value: Any) -> Optional[str]:
    text = _to_str(value)
    return text or None


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    return _to_str(value).lower() in {"true", "1", "yes", "y"}


def _to_int(value: Any, default: int) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def _coerce_enum(enum_cls: type[Enum], value: Any, default: Enum) -> Enum:
    text = _to_str(value)
    for member in enum_cls:
        if text.lower() in {str(member.value).lower(), member.name.lower()}:
            return member
    return default


def _normalize_box(raw_box: Any) -> Optional[list[float]]:
    if isinstance(raw_box, dict):
        raw_box = [raw_box.get("ymin"), raw_box.get("xmin"), raw_box.get("ymax"), raw_box.get("xmax")]
    box = NormalizedBox.from_sequence(raw_box)
    if box is None or not box.is_valid:
        return None
    return box.as_list()


def _normalize_option(raw_option: Any, mode: ExtractionMode) -> Optional[dict[str, Any]]:
    if isinstance(raw_option, str):
        raw_option = {"text": raw_option}
    if not isinstance(raw_option, dict):
        return None
    has_diagram = _to_bool(raw_option.get("hasDiagram", raw_option.get("has_diagram")))
    box = _normalize_box(raw_option.get("boundingBox", raw_option.get("bounding_box")))
    if mode == ExtractionMode.text:
        has_diagram, box = False, None
    return {
        "text": _to_str(raw_option.get("text")),
        "is_correct": _to_bool(raw_option.get("isCorrect", raw_option.get("is_correct"))),
        "has_diagram": has_diagram,
        "bounding_box": box,
    }


def _normalize_question(raw: Any, mode: ExtractionMode) -> Optional[dict[str, Any]]:
    if not isinstance(raw, dict):
        return None
    text = _to_str(raw.get("text") or raw.get("question"))
    if not text:
        return None

    raw_type = _to_str(raw.get("type")).lower().replace("-", "_").replace(" ", "_")
    question_type = _TYPE_ALIASES.get(raw_type, QuestionType.mcq)
    raw_options = raw.get("options")
    options = [
        opt for opt in (_normalize_option(o, mode) for o in (raw_options if isinstance(raw_options, list) else []))
        if opt is not None
    ]

    has_image = _to_bool(raw.get("hasImage", raw.get("has_image")))
    box = _normalize_box(raw.get("boundingBox", raw.get("bounding_box")))
    if mode == ExtractionMode.text:
        has_image, box = False, None

    return {
        "text": text,
        "type": question_type,
        "options": options,
        "subject": _coerce_enum(Subject, raw.get("subject"), DEFAULT_SUBJECT),
        "board": _coerce_enum(Board, raw.get("board"), DEFAULT_BOARD),
        "standard": _coerce_enum(Standard, raw.get("standard"), DEFAULT_STANDARD),
        "chapter": _to_str(raw.get("chapter")),
        "topic": _to_str(raw.get("topic")),
        "marks": _to_int(raw.get("marks"), DEFAULT_MARKS),
        "difficulty": _coerce_enum(Difficulty, _to_str(raw.get("difficulty")).lower(), DEFAULT_DIFFICULTY),
        "correct_answer_text": _to_str(raw.get("correctAnswerText", raw.get("correct_answer_text"))),
        "numerical_answer": _to_optional_str(raw.get("numericalAnswer", raw.get("numerical_answer"))),
        "has_image": has_image,
        "bounding_box": box,
    }


def parse_questions_payload(payload: Any, mode: ExtractionMode = ExtractionMode.multimodal) -> list[CandidateQuestion]:
    mode = ExtractionMode(mode)
    if isinstance(payload, list):
        payload = {"questions": payload}
    if not isinstance(payload, dict):
        raise ValueError("Expected JSON object for extraction payload.")
    raw_questions = payload.get("questions")
    if not isinstance(raw_questions, list):
        raise ValueError("Extraction payload is missing the 'questions' array.")

    questions: list[CandidateQuestion] = []
    for raw in raw_questions:
        normalized = _normalize_question(raw, mode)
        if normalized is None:
            continue
        questions.append(CandidateQuestion.model_validate(normalized))
    return questions


def parse_questions_text(raw_text: str, mode: ExtractionMode = ExtractionMode.multimodal) -> list[CandidateQuestion]:
    if not str(raw_text).strip():
        raise ValueError("Gemini returned an empty response.")
    return parse_questions_payload(_parse_llm_json(raw_text), mode)


class GeminiQuestionOracle:
    """Extraction oracle client; one class for both text-only and multimodal batches."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_GEMINI_MODEL,
        mode: ExtractionMode | str = ExtractionMode.multimodal,
        client: Any = None,
        events: Optional[EventBus] = None,
    ) -> None:
        self.model = model
        self.mode = ExtractionMode(mode)
        self.events = events or EventBus("exam_ingest.gemini_vlm")
        if client is None:
            key = resolve_api_key(api_key)
            if not key:
                raise ConfigurationError(
                    "Gemini API key is missing. Set one of: " + ", ".join(_API_KEY_ENV_NAMES) + "."
                )
            client = genai.Client(api_key=key)
        self._client = client

    def build_contents(self, pages: Sequence[PageArtifact]) -> list[Any]:
        contents: list[Any] = []
        if self.mode == ExtractionMode.multimodal:
            for page in pages:
                if page.has_raster:
                    contents.append(types.Part.from_bytes(data=page.image_bytes, mime_type=page.mime_type))
        contents.append(build_extraction_prompt(pages, self.mode))
        return contents

    def extract(self, pages: Sequence[PageArtifact]) -> list[CandidateQuestion]:
        page_numbers = [p.page_number for p in pages]
        if not pages:
            raise WindowExtractionError("Empty page batch.", page_numbers)
        if self.mode == ExtractionMode.text and not any(p.text and p.text.strip() for p in pages):
            raise WindowExtractionError(f"Pages {page_numbers} have no text to process.", page_numbers)

        config = types.GenerateContentConfig(
            response_mime_type="application/json",
            response_json_schema=_sanitize_response_json_schema(QUESTIONS_RESPONSE_SCHEMA),
        )
        try:
            response = self._client.models.generate_content(
                model=self.model,
                contents=self.build_contents(pages),
                config=config,
            )
        except (genai_errors.APIError, httpx.HTTPError, ValueError, OSError) as exc:
            raise WindowExtractionError(f"Gemini API error for pages {page_numbers}: {exc}", page_numbers) from exc

        try:
            questions = parse_questions_text(getattr(response, "text", None) or "", self.mode)
        except (ValueError, ValidationError) as exc:
            raise WindowExtractionError(f"Malformed Gemini response for pages {page_numbers}: {exc}", page_numbers) from exc
        self.events.info(f"Pages {page_numbers}: {len(questions)} candidate question(s).", source="oracle")
        return questions


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run Gemini question extraction on selected document pages.")
    parser.add_argument("document", help="Path to a PDF or text file.")
    parser.add_argument("--pages", type=int, nargs="*", default=None, help="1-based page numbers (default: all).")
    parser.add_argument("--mode", choices=[m.value for m in ExtractionMode], default=ExtractionMode.multimodal.value)
    parser.add_argument("--model", default=DEFAULT_GEMINI_MODEL, help="Gemini model name.")
    parser.add_argument("--api-key", default=None, help="Google API key (default: env GOOGLE_API_KEY/GEMINI_API_KEY).")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    path = Path(args.document)
    if not path.is_file():
        print(f"Document not found: {path}", file=sys.stderr)
        return 1
    try:
        oracle = GeminiQuestionOracle(api_key=args.api_key, model=args.model, mode=args.mode)
        pages = render_document(path.read_bytes(), include_images=oracle.mode == ExtractionMode.multimodal)
        if args.pages:
            wanted = set(args.pages)
            pages = [p for p in pages if p.page_number in wanted]
        questions = oracle.extract(pages)
    except (ConfigurationError, DocumentParseError, WindowExtractionError) as exc:
        print(str(exc), file=sys.stderr)
        return 1

    print(json.dumps([q.model_dump(mode="json", by_alias=True) for q in questions], indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
