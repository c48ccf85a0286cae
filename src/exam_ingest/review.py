"""Reviewer-side editing of resolved questions.

Crop results are routed through :class:`CropRequest` values that name their
destination instead of stored callbacks.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Sequence

from .schemas import Option, QuestionType, ResolvedQuestion, section_for_type

_MATH_SPAN = re.compile(r"(\$[^$]*?\$)")


class CropTarget(str, Enum):
    question = "question"
    option = "option"


@dataclass(frozen=True)
class CropRequest:
    target: CropTarget
    question_index: int
    option_index: Optional[int] = None

    @classmethod
    def for_question(cls, question_index: int) -> "CropRequest":
        return cls(CropTarget.question, question_index)

    @classmethod
    def for_option(cls, question_index: int, option_index: int) -> "CropRequest":
        return cls(CropTarget.option, question_index, option_index)


def split_math_spans(text: str) -> List[tuple[bool, str]]:
    """Split text into ``(is_math, segment)`` parts on ``$...$`` delimiters."""
    parts: List[tuple[bool, str]] = []
    for part in _MATH_SPAN.split(text or ""):
        if not part:
            continue
        if len(part) >= 2 and part.startswith("$") and part.endswith("$"):
            parts.append((True, part[1:-1]))
        else:
            parts.append((False, part))
    return parts


class ReviewSession:
    def __init__(self, questions: Sequence[ResolvedQuestion], source_name: str = "") -> None:
        self.questions: List[ResolvedQuestion] = list(questions)
        self.source_name = source_name

    def __len__(self) -> int:
        return len(self.questions)

    def _question(self, index: int) -> ResolvedQuestion:
        if not (0 <= index < len(self.questions)):
            raise IndexError(f"Question index out of range: {index}")
        return self.questions[index]

    def _option(self, question_index: int, option_index: int) -> Option:
        question = self._question(question_index)
        if not (0 <= option_index < len(question.options)):
            raise IndexError(f"Option index out of range: {option_index}")
        return question.options[option_index]

    def update_field(self, index: int, field_name: str, value: Any) -> ResolvedQuestion:
        question = self._question(index)
        if field_name not in ResolvedQuestion.model_fields or field_name == "options":
            raise KeyError(f"Unknown question field: {field_name}")
        # validate_assignment coerces and rejects invalid enum values.
        setattr(question, field_name, value)
        if field_name == "type":
            question.section = section_for_type(question.type)
            if question.type == QuestionType.mcq:
                self._enforce_single_correct(question)
        return question

    def update_option(self, question_index: int, option_index: int, field_name: str, value: Any) -> Option:
        if field_name not in Option.model_fields:
            raise KeyError(f"Unknown option field: {field_name}")
        option = self._option(question_index, option_index)
        setattr(option, field_name, value)
        question = self.questions[question_index]
        if field_name == "is_correct" and option.is_correct and question.type == QuestionType.mcq:
            for idx, other in enumerate(question.options):
                if idx != option_index:
                    other.is_correct = False
        return option

    def add_option(self, question_index: int, text: str = "") -> Option:
        option = Option(text=text)
        self._question(question_index).options.append(option)
        return option

    def remove_option(self, question_index: int, option_index: int) -> None:
        self._option(question_index, option_index)
        del self.questions[question_index].options[option_index]

    @staticmethod
    def _enforce_single_correct(question: ResolvedQuestion) -> None:
        found = False
        for option in question.options:
            if option.is_correct and not found:
                found = True
            elif option.is_correct:
                option.is_correct = False

    def set_selected(self, index: int, selected: bool) -> None:
        self._question(index).is_selected = bool(selected)

    def toggle_selected(self, index: int) -> bool:
        question = self._question(index)
        question.is_selected = not question.is_selected
        return question.is_selected

    def delete(self, index: int) -> ResolvedQuestion:
        self._question(index)
        return self.questions.pop(index)

    def apply_crop(self, request: CropRequest, image: Optional[str]) -> None:
        """Store (or with ``None`` remove) the image at the request's destination."""
        if request.target == CropTarget.question:
            question = self._question(request.question_index)
            question.image = image
            question.has_image = image is not None
            return
        if request.option_index is None:
            raise ValueError("Option crop request requires option_index.")
        option = self._option(request.question_index, request.option_index)
        option.image = image
        option.has_diagram = image is not None

    def remove_image(self, request: CropRequest) -> None:
        self.apply_crop(request, None)

    def selected(self) -> List[ResolvedQuestion]:
        return [q for q in self.questions if q.is_selected]

    @property
    def selected_count(self) -> int:
        return len(self.selected())


__all__ = ["CropRequest", "CropTarget", "ReviewSession", "split_math_spans"]
