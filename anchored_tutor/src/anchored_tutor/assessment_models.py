"""
Assessment Data Model

Tagged question variants with validating constructors, plus the
Assessment and Attempt records graded by the evaluator.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from anchored_tutor.errors import ValidationError


class QuestionType(Enum):
    MULTIPLE_CHOICE = "multiple-choice"
    NUMERICAL = "numerical"
    TEXT = "text"
    TRUE_FALSE = "true-false"


class AttemptStatus(Enum):
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    TIMED_OUT = "timed-out"


QUESTION_DIFFICULTIES = ("easy", "medium", "hard")
NUMERICAL_TOLERANCE = 0.01


def _normalize(text: Any) -> str:
    return str(text if text is not None else "").strip().lower()


@dataclass
class ChoiceOption:
    """Answer option of a multiple-choice question."""
    id: str
    text: str
    is_correct: bool = False


@dataclass
class Question:
    """Fields shared by every question type."""
    id: str
    prompt: str
    explanation: str = ""
    points: int = 1
    concepts: List[str] = field(default_factory=list)
    time_estimate: int = 60  # seconds
    difficulty: str = "medium"
    hints: List[str] = field(default_factory=list)

    question_type = None  # Set by each variant

    def __post_init__(self):
        if not self.id:
            raise ValidationError("Question id is required")
        if not self.prompt or not str(self.prompt).strip():
            raise ValidationError(f"Question {self.id} has no prompt")
        if self.points < 1:
            raise ValidationError(f"Question {self.id} must be worth at least 1 point")
        if self.difficulty not in QUESTION_DIFFICULTIES:
            raise ValidationError(f"Question {self.id} has unknown difficulty '{self.difficulty}'")
        self._validate_answer()

    def _validate_answer(self):
        raise NotImplementedError

    def is_correct(self, user_answer: Any) -> bool:
        raise NotImplementedError

    def to_dict(self, include_answer: bool = True) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "type": self.question_type.value,
            "question": self.prompt,
            "points": self.points,
            "concepts": list(self.concepts),
            "time_estimate": self.time_estimate,
            "difficulty": self.difficulty,
            "hints": list(self.hints),
        }
        if include_answer:
            data["explanation"] = self.explanation
        return data


@dataclass
class MultipleChoiceQuestion(Question):
    options: List[ChoiceOption] = field(default_factory=list)

    question_type = QuestionType.MULTIPLE_CHOICE

    def _validate_answer(self):
        if len(self.options) < 2:
            raise ValidationError(f"Question {self.id} needs at least two options")
        correct_count = sum(1 for option in self.options if option.is_correct)
        if correct_count != 1:
            raise ValidationError(f"Question {self.id} needs exactly one correct option, found {correct_count}")

    @property
    def correct_option(self) -> ChoiceOption:
        return next(option for option in self.options if option.is_correct)

    @property
    def correct_answer(self) -> str:
        return self.correct_option.id

    def is_correct(self, user_answer: Any) -> bool:
        """Match the submitted option id or option text against the correct option."""
        submitted = _normalize(user_answer)
        if not submitted:
            return False
        correct = self.correct_option
        return submitted == _normalize(correct.id) or submitted == _normalize(correct.text)

    def to_dict(self, include_answer: bool = True) -> Dict[str, Any]:
        data = super().to_dict(include_answer)
        data["options"] = [
            {"id": option.id, "text": option.text, **({"is_correct": option.is_correct} if include_answer else {})}
            for option in self.options
        ]
        if include_answer:
            data["correct_answer"] = self.correct_answer
        return data


@dataclass
class NumericalQuestion(Question):
    correct_answer: float = 0.0

    question_type = QuestionType.NUMERICAL

    def _validate_answer(self):
        try:
            self.correct_answer = float(self.correct_answer)
        except (TypeError, ValueError):
            raise ValidationError(f"Question {self.id} needs a numeric answer, got {self.correct_answer!r}")
        if math.isnan(self.correct_answer) or math.isinf(self.correct_answer):
            raise ValidationError(f"Question {self.id} needs a finite numeric answer")

    def is_correct(self, user_answer: Any) -> bool:
        """Correct iff |user - correct| < 0.01."""
        try:
            value = float(str(user_answer).strip())
        except (TypeError, ValueError):
            return False
        if math.isnan(value):
            return False
        return abs(value - self.correct_answer) < NUMERICAL_TOLERANCE

    def to_dict(self, include_answer: bool = True) -> Dict[str, Any]:
        data = super().to_dict(include_answer)
        if include_answer:
            data["correct_answer"] = self.correct_answer
        return data


@dataclass
class TextQuestion(Question):
    correct_answer: str = ""

    question_type = QuestionType.TEXT

    def _validate_answer(self):
        if not isinstance(self.correct_answer, str) or not self.correct_answer.strip():
            raise ValidationError(f"Question {self.id} needs a text answer")

    def is_correct(self, user_answer: Any) -> bool:
        return _normalize(user_answer) == _normalize(self.correct_answer)

    def to_dict(self, include_answer: bool = True) -> Dict[str, Any]:
        data = super().to_dict(include_answer)
        if include_answer:
            data["correct_answer"] = self.correct_answer
        return data


@dataclass
class TrueFalseQuestion(Question):
    correct_answer: str = "true"

    question_type = QuestionType.TRUE_FALSE

    def _validate_answer(self):
        if isinstance(self.correct_answer, bool):
            self.correct_answer = "true" if self.correct_answer else "false"
        normalized = _normalize(self.correct_answer)
        if normalized not in ("true", "false"):
            raise ValidationError(f"Question {self.id} needs a true/false answer, got {self.correct_answer!r}")
        self.correct_answer = normalized

    def is_correct(self, user_answer: Any) -> bool:
        return _normalize(user_answer) == self.correct_answer

    def to_dict(self, include_answer: bool = True) -> Dict[str, Any]:
        data = super().to_dict(include_answer)
        if include_answer:
            data["correct_answer"] = self.correct_answer
        return data


QUESTION_CLASSES = {
    QuestionType.MULTIPLE_CHOICE: MultipleChoiceQuestion,
    QuestionType.NUMERICAL: NumericalQuestion,
    QuestionType.TEXT: TextQuestion,
    QuestionType.TRUE_FALSE: TrueFalseQuestion,
}


def question_from_dict(data: Dict[str, Any]) -> Question:
    """Rebuild a stored question (already normalized, no defaulting here)."""
    question_type = QuestionType(data["type"])
    common = dict(
        id=data["id"],
        prompt=data["question"],
        explanation=data.get("explanation", ""),
        points=data.get("points", 1),
        concepts=list(data.get("concepts", [])),
        time_estimate=data.get("time_estimate", 60),
        difficulty=data.get("difficulty", "medium"),
        hints=list(data.get("hints", [])),
    )
    if question_type == QuestionType.MULTIPLE_CHOICE:
        options = [
            ChoiceOption(id=option["id"], text=option["text"], is_correct=bool(option.get("is_correct")))
            for option in data.get("options", [])
        ]
        return MultipleChoiceQuestion(options=options, **common)
    return QUESTION_CLASSES[question_type](correct_answer=data.get("correct_answer"), **common)


@dataclass
class AnswerRecord:
    """Graded answer to one question."""
    question_id: str
    user_answer: str
    is_correct: bool
    time_spent: float = 0.0


@dataclass
class Score:
    raw: int
    percentage: float
    grade: str


@dataclass
class Attempt:
    """One learner's attempt at an assessment."""
    attempt_id: str
    user_id: str
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    answers: List[AnswerRecord] = field(default_factory=list)
    score: Optional[Score] = None
    total_time: float = 0.0
    status: AttemptStatus = AttemptStatus.IN_PROGRESS
    analysis: Optional[Dict[str, Any]] = None


@dataclass
class GenerationContext:
    source_session_id: Optional[str] = None
    concepts_covered: List[str] = field(default_factory=list)
    conversation_summary: str = ""
    model: Optional[str] = None
    generated_at: datetime = field(default_factory=datetime.now)


@dataclass
class AssessmentStatistics:
    total_attempts: int = 0
    average_score: Optional[float] = None
    pass_rate: Optional[float] = None


@dataclass
class Assessment:
    """A generated quiz and every attempt made on it."""
    assessment_id: str
    subject: str
    topic: Optional[str]
    difficulty: str
    questions: List[Question]
    title: str = ""
    passing_score: float = 70
    max_attempts: int = 3
    time_limit: Optional[int] = None  # minutes
    attempts: List[Attempt] = field(default_factory=list)
    generation_context: GenerationContext = field(default_factory=GenerationContext)
    used_fallback: bool = False
    statistics: AssessmentStatistics = field(default_factory=AssessmentStatistics)
    tags: List[str] = field(default_factory=list)
    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    def get_user_attempts(self, user_id: str) -> List[Attempt]:
        return [attempt for attempt in self.attempts if attempt.user_id == user_id]

    def completed_attempt_count(self, user_id: str) -> int:
        return sum(
            1 for attempt in self.get_user_attempts(user_id)
            if attempt.status == AttemptStatus.COMPLETED
        )

    def can_user_attempt(self, user_id: str) -> bool:
        return self.completed_attempt_count(user_id) < self.max_attempts

    def find_attempt(self, attempt_id: str) -> Optional[Attempt]:
        return next((attempt for attempt in self.attempts if attempt.attempt_id == attempt_id), None)
