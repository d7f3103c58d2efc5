"""
Grading

Per-question scoring and attempt aggregation with fixed letter-grade bands.
"""

import math
from typing import Any, Sequence, Tuple

from anchored_tutor.assessment_models import Question, Score

# (minimum percentage, grade), checked top-down
GRADE_BANDS: Tuple[Tuple[float, str], ...] = (
    (97, "A+"),
    (93, "A"),
    (90, "A-"),
    (87, "B+"),
    (83, "B"),
    (80, "B-"),
    (77, "C+"),
    (73, "C"),
    (70, "C-"),
    (60, "D"),
)


def score_answer(question: Question, user_answer: Any) -> bool:
    """Return True if user_answer is correct for question."""
    if user_answer is None:
        return False
    return question.is_correct(user_answer)


def round_percentage(value: float) -> float:
    """Round to 2 decimals, halves away from zero."""
    return math.floor(value * 100 + 0.5) / 100


def grade_for_percentage(percentage: float) -> str:
    for minimum, grade in GRADE_BANDS:
        if percentage >= minimum:
            return grade
    return "F"


def calculate_score(results: Sequence[bool]) -> Score:
    """
    Aggregate per-question results into raw count, percentage and grade.

    Args:
        results: Correctness flag per question (one entry per question)

    Returns:
        Score; an empty assessment scores 0% / F
    """
    total = len(results)
    correct = sum(1 for result in results if result)
    percentage = round_percentage(correct / total * 100) if total else 0.0
    return Score(raw=correct, percentage=percentage, grade=grade_for_percentage(percentage))


def passed(score: Score, passing_score: float) -> bool:
    return score.percentage >= passing_score
