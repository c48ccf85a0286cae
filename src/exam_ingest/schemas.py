from __future__ import annotations
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Subject(str, Enum):
    physics = "Physics"
    chemistry = "Chemistry"
    mathematics = "Mathematics"


class Difficulty(str, Enum):
    easy = "easy"
    medium = "medium"
    hard = "hard"


class QuestionType(str, Enum):
    mcq = "mcq"
    msq = "msq"
    numerical = "numerical"


class Section(str, Enum):
    objective = "Objective"
    numerical = "Numerical"
    matrix_match = "Matrix Match"


class Board(str, Enum):
    jee = "JEE"
    neet = "NEET"


class Standard(str, Enum):
    eleventh = "11th"
    twelfth = "12th"


DEFAULT_SUBJECT = Subject.physics
DEFAULT_BOARD = Board.jee
DEFAULT_STANDARD = Standard.twelfth
DEFAULT_DIFFICULTY = Difficulty.medium
DEFAULT_MARKS = 4

_WIRE_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True, validate_assignment=True)


class Option(BaseModel):
    text: str = ""
    is_correct: bool = False
    has_diagram: bool = False
    bounding_box: Optional[List[float]] = None
    image: Optional[str] = None
    model_config = _WIRE_CONFIG


class CandidateQuestion(BaseModel):
    text: str
    type: QuestionType = QuestionType.mcq
    options: List[Option] = Field(default_factory=list)
    subject: Subject = DEFAULT_SUBJECT
    board: Board = DEFAULT_BOARD
    standard: Standard = DEFAULT_STANDARD
    chapter: str = ""
    topic: str = ""
    marks: int = DEFAULT_MARKS
    difficulty: Difficulty = DEFAULT_DIFFICULTY
    correct_answer_text: str = ""
    numerical_answer: Optional[str] = None
    has_image: bool = False
    bounding_box: Optional[List[float]] = None
    model_config = _WIRE_CONFIG


def section_for_type(question_type: QuestionType) -> Section:
    if question_type == QuestionType.numerical:
        return Section.numerical
    return Section.objective


class ResolvedQuestion(CandidateQuestion):
    section: Section = Section.objective
    image: Optional[str] = None
    source: str = ""
    is_active: bool = True
    is_selected: bool = True
    is_valid: bool = True

    @classmethod
    def from_candidate(cls, candidate: CandidateQuestion, source: str) -> "ResolvedQuestion":
        payload = candidate.model_dump()
        payload["options"] = [option.model_copy() for option in candidate.options]
        return cls(
            **payload,
            section=section_for_type(candidate.type),
            source=source,
        )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
