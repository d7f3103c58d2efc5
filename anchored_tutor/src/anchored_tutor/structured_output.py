"""
Structured Output Repair Parser

Turns free model text into validated assessment questions. Model output may
be wrapped in commentary or code fences, carry trailing commas, or be cut
off mid-element when the response hit its token limit. The parser repairs
what it can and otherwise substitutes deterministic fallback questions
flagged as such.
"""

import re
import json
import logging
import string
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from anchored_tutor.assessment_models import (
    ChoiceOption,
    MultipleChoiceQuestion,
    NumericalQuestion,
    Question,
    QuestionType,
    TextQuestion,
    TrueFalseQuestion,
)
from anchored_tutor.errors import RepairFailure, ValidationError

logger = logging.getLogger(__name__)

OPENERS = "{["
CLOSERS = "}]"
MATCHING = {"}": "{", "]": "["}
CLOSER_FOR = {"{": "}", "[": "]"}

_FENCE = re.compile(r"```[a-zA-Z]*")
_TRAILING_SEPARATOR = re.compile(r",\s*(?=[}\]])")

DIFFICULTY_ALIASES = {
    "easy": "easy", "beginner": "easy", "simple": "easy", "basic": "easy",
    "medium": "medium", "intermediate": "medium", "moderate": "medium", "normal": "medium",
    "hard": "hard", "advanced": "hard", "difficult": "hard", "expert": "hard", "challenging": "hard",
}

TYPE_ALIASES = {
    "multiple-choice": QuestionType.MULTIPLE_CHOICE,
    "multiplechoice": QuestionType.MULTIPLE_CHOICE,
    "mcq": QuestionType.MULTIPLE_CHOICE,
    "choice": QuestionType.MULTIPLE_CHOICE,
    "numerical": QuestionType.NUMERICAL,
    "numeric": QuestionType.NUMERICAL,
    "number": QuestionType.NUMERICAL,
    "text": QuestionType.TEXT,
    "short-answer": QuestionType.TEXT,
    "open": QuestionType.TEXT,
    "true-false": QuestionType.TRUE_FALSE,
    "truefalse": QuestionType.TRUE_FALSE,
    "true/false": QuestionType.TRUE_FALSE,
    "boolean": QuestionType.TRUE_FALSE,
}

DEFAULT_POINTS = 1
DEFAULT_TIME_ESTIMATE = 60


@dataclass
class ParsedQuestionSet:
    """Questions recovered from model output."""
    questions: List[Question]
    used_fallback: bool = False
    title: Optional[str] = None
    dropped: int = 0  # Elements discarded during validation
    notes: List[str] = field(default_factory=list)


@dataclass
class _ScanResult:
    end: Optional[int]  # Index just past the first complete top-level value
    stack: List[str]
    in_string: bool
    element_ends: List[Tuple[int, List[str]]]


def strip_fences(text: str) -> str:
    return _FENCE.sub("", text or "")


def remove_trailing_separators(text: str) -> str:
    return _TRAILING_SEPARATOR.sub("", text)


def _scan(text: str) -> _ScanResult:
    """
    Walk the text tracking bracket nesting outside of string literals.

    Records the end offset of every element that closes directly inside the
    first list opened (the expected element depth).
    """
    stack: List[str] = []
    in_string = False
    escape = False
    expected_depth = None
    element_ends: List[Tuple[int, List[str]]] = []

    for index, char in enumerate(text):
        if in_string:
            if escape:
                escape = False
            elif char == "\\":
                escape = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char in OPENERS:
            stack.append(char)
            if char == "[" and expected_depth is None:
                expected_depth = len(stack)
        elif char in CLOSERS:
            if not stack or stack[-1] != MATCHING[char]:
                raise RepairFailure(f"Mismatched '{char}' at offset {index}")
            stack.pop()
            if not stack:
                return _ScanResult(end=index + 1, stack=[], in_string=False, element_ends=element_ends)
            if len(stack) == expected_depth and stack[-1] == "[":
                element_ends.append((index + 1, list(stack)))

    return _ScanResult(end=None, stack=stack, in_string=in_string, element_ends=element_ends)


def _closers(stack: List[str]) -> str:
    return "".join(CLOSER_FOR[opener] for opener in reversed(stack))


def extract_structured(text: str) -> Any:
    """
    Extract and repair the first structured value in model text.

    Args:
        text: Raw model output

    Returns:
        Parsed dict or list

    Raises:
        RepairFailure: If nothing parseable can be recovered
    """
    cleaned = strip_fences(text)
    starts = [index for index in (cleaned.find("{"), cleaned.find("[")) if index != -1]
    if not starts:
        raise RepairFailure("No structured data found in model output")

    candidate = cleaned[min(starts):]
    scan = _scan(candidate)

    if scan.end is not None:
        repaired = candidate[:scan.end]
    elif scan.element_ends:
        # Truncated: keep every fully closed element, then close what is still open
        cut, open_stack = scan.element_ends[-1]
        repaired = candidate[:cut] + _closers(open_stack)
        logger.warning(
            f"🔧 [RepairParser] Truncated output; kept {len(scan.element_ends)} complete element(s)"
        )
    else:
        tail = candidate + ('"' if scan.in_string else "")
        repaired = tail.rstrip().rstrip(",") + _closers(scan.stack)
        logger.warning("🔧 [RepairParser] Truncated output with no complete element; closing as-is")

    repaired = remove_trailing_separators(repaired)

    try:
        return json.loads(repaired)
    except json.JSONDecodeError as e:
        raise RepairFailure(f"Repaired text is still not valid JSON: {e}") from e


def _first(raw: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if raw.get(key) not in (None, ""):
            return raw[key]
    return default


def normalize_difficulty(value: Any) -> str:
    """Map free-form difficulty labels onto easy / medium / hard (default medium)."""
    return DIFFICULTY_ALIASES.get(str(value or "").strip().lower(), "medium")


def _as_positive_int(value: Any, default: int) -> int:
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return default
    return number if number >= 1 else default


def _as_flag(value: Any) -> bool:
    """Read an is-correct flag; "true"/"false" strings count as booleans."""
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _as_string_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    return [str(item) for item in value if str(item).strip()]


def _question_type(raw: Dict[str, Any]) -> QuestionType:
    label = re.sub(r"[\s_]+", "-", str(raw.get("type") or "").strip().lower())
    if label in TYPE_ALIASES:
        return TYPE_ALIASES[label]
    return QuestionType.MULTIPLE_CHOICE if raw.get("options") else QuestionType.TEXT


def _normalize_options(raw: Dict[str, Any]) -> List[ChoiceOption]:
    correct = _first(raw, "correct_answer", "correctAnswer", "answer")
    options: List[ChoiceOption] = []

    for index, option in enumerate(raw.get("options") or []):
        letter = string.ascii_lowercase[index % 26]
        if isinstance(option, dict):
            option_id = str(option.get("id") or letter)
            text = str(_first(option, "text", "option", "label", default=""))
            flagged = _as_flag(option.get("is_correct", option.get("isCorrect", False)))
        else:
            option_id, text, flagged = letter, str(option), False
        options.append(ChoiceOption(id=option_id, text=text, is_correct=flagged))

    if options and not any(option.is_correct for option in options) and correct is not None:
        if isinstance(correct, int) and not isinstance(correct, bool) and 0 <= correct < len(options):
            options[correct].is_correct = True
        else:
            wanted = str(correct).strip().lower()
            for index, option in enumerate(options):
                if wanted in (option.id.lower(), option.text.strip().lower(), string.ascii_lowercase[index]):
                    option.is_correct = True
                    break

    return options


def normalize_question(raw: Dict[str, Any], index: int) -> Question:
    """
    Build a validated question from one raw element.

    Missing ids become "q{n}", points default to 1, time estimates to 60
    seconds, and difficulty is mapped onto the three-level scale.

    Raises:
        ValidationError: If the element cannot form a valid question
    """
    if not isinstance(raw, dict):
        raise ValidationError(f"Question element {index} is not an object")

    question_type = _question_type(raw)
    common = dict(
        id=str(raw.get("id") or f"q{index + 1}"),
        prompt=str(_first(raw, "question", "prompt", "text", default="")),
        explanation=str(raw.get("explanation") or ""),
        points=_as_positive_int(raw.get("points"), DEFAULT_POINTS),
        concepts=_as_string_list(raw.get("concepts")),
        time_estimate=_as_positive_int(_first(raw, "time_estimate", "timeEstimate"), DEFAULT_TIME_ESTIMATE),
        difficulty=normalize_difficulty(raw.get("difficulty")),
        hints=_as_string_list(raw.get("hints")),
    )

    if question_type == QuestionType.MULTIPLE_CHOICE:
        return MultipleChoiceQuestion(options=_normalize_options(raw), **common)

    correct = _first(raw, "correct_answer", "correctAnswer", "answer")
    if question_type == QuestionType.NUMERICAL:
        if isinstance(correct, str):
            correct = correct.strip()
        return NumericalQuestion(correct_answer=correct, **common)
    if question_type == QuestionType.TRUE_FALSE:
        return TrueFalseQuestion(correct_answer=correct, **common)
    return TextQuestion(correct_answer="" if correct is None else str(correct), **common)


def build_fallback_questions(subject: str, topic: Optional[str], count: int = 3) -> List[Question]:
    """Deterministic placeholder questions used when model output is unusable."""
    focus = topic or subject
    questions: List[Question] = [
        MultipleChoiceQuestion(
            id="q1",
            prompt=f"Which statement best describes the goal of studying {focus}?",
            explanation=f"Learning {focus} means understanding its core ideas well enough to apply them.",
            concepts=[focus],
            options=[
                ChoiceOption(id="a", text="Understanding its core concepts and applying them", is_correct=True),
                ChoiceOption(id="b", text="Memorizing unrelated facts"),
                ChoiceOption(id="c", text="Avoiding practical examples"),
                ChoiceOption(id="d", text="None of the above"),
            ],
        ),
        TrueFalseQuestion(
            id="q2",
            prompt=f"{focus} builds on foundational ideas from {subject}.",
            explanation=f"{focus} is part of {subject} and relies on its fundamentals.",
            concepts=[focus],
            correct_answer="true",
        ),
        MultipleChoiceQuestion(
            id="q3",
            prompt=f"What is a good next step after learning a new idea in {focus}?",
            explanation="Practice with worked examples consolidates new concepts.",
            concepts=[focus],
            options=[
                ChoiceOption(id="a", text="Skip ahead without reviewing"),
                ChoiceOption(id="b", text="Practice it with examples", is_correct=True),
                ChoiceOption(id="c", text="Forget about it"),
                ChoiceOption(id="d", text="Only read the summary"),
            ],
        ),
    ]
    return questions[:max(1, count)]


def _question_elements(data: Any) -> List[Any]:
    if isinstance(data, list):
        elements = data
    elif isinstance(data, dict) and isinstance(data.get("questions"), list):
        elements = data["questions"]
    else:
        raise RepairFailure("Expected a question list or an object with a 'questions' list")
    if not elements:
        raise RepairFailure("Question list is empty")
    return elements


def parse_question_set(
    text: str,
    subject: str,
    topic: Optional[str] = None,
    question_count: int = 3
) -> ParsedQuestionSet:
    """
    Parse model output into questions, falling back to placeholders.

    Never raises RepairFailure; irrecoverable output yields the fallback
    set with used_fallback=True. Elements that fail validation (for example
    a question with no answer) are dropped, so a repaired list whose
    elements are all invalid also yields the fallback set.
    """
    try:
        data = extract_structured(text)
        elements = _question_elements(data)

        questions: List[Question] = []
        dropped = 0
        seen_ids = set()
        for index, raw in enumerate(elements):
            try:
                question = normalize_question(raw, index)
            except ValidationError as e:
                dropped += 1
                logger.warning(f"⚠️ [RepairParser] Dropped question {index + 1}: {e}")
                continue
            if question.id in seen_ids:
                question.id = f"q{index + 1}"
            seen_ids.add(question.id)
            questions.append(question)

        if not questions:
            raise RepairFailure("No valid questions after normalization")

        title = data.get("title") if isinstance(data, dict) else None
        logger.info(f"✅ [RepairParser] Parsed {len(questions)} question(s), dropped {dropped}")
        return ParsedQuestionSet(questions=questions, title=title, dropped=dropped)

    except RepairFailure as e:
        logger.warning(f"⚠️ [RepairParser] Using fallback questions: {e}")
        return ParsedQuestionSet(
            questions=build_fallback_questions(subject, topic, question_count),
            used_fallback=True,
            notes=[str(e)],
        )
