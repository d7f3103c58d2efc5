"""
Assessment Evaluator

Runs learner attempts against stored assessments: enforces the attempt
limit, grades answers, attaches a local performance analysis and refreshes
the assessment statistics. Check-and-append on one assessment is
serialized through a per-assessment lock.
"""

import uuid
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from anchored_tutor.assessment_models import (
    AnswerRecord,
    Assessment,
    Attempt,
    AttemptStatus,
    Question,
)
from anchored_tutor.errors import MaxAttemptsExceeded, NotFoundError, ValidationError
from anchored_tutor.keyed_lock import KeyedLock
from anchored_tutor.grading import calculate_score, passed, round_percentage, score_answer

logger = logging.getLogger(__name__)

STRENGTH_THRESHOLD = 0.8
WEAKNESS_THRESHOLD = 0.5


def _answer_fields(answer: Any) -> Dict[str, Any]:
    if isinstance(answer, dict):
        return answer
    return {"user_answer": answer}


def match_answers(questions: List[Question], answers: List[Any]) -> List[Optional[Dict[str, Any]]]:
    """
    Pair each question with its submitted answer.

    Answers carrying a question_id are matched by id; the rest are matched
    by position. Unanswered questions get None.
    """
    by_id = {}
    positional = []
    for answer in answers:
        fields = _answer_fields(answer)
        if fields.get("question_id"):
            by_id[str(fields["question_id"])] = fields
        else:
            positional.append(fields)

    matched = []
    for index, question in enumerate(questions):
        if question.id in by_id:
            matched.append(by_id[question.id])
        elif index < len(positional):
            matched.append(positional[index])
        else:
            matched.append(None)
    return matched


def analyze_attempt(assessment: Assessment, attempt: Attempt) -> Dict[str, Any]:
    """
    Deterministic performance analysis for a graded attempt.

    Returns:
        Dict with concept_performance, strengths, weaknesses, time_efficiency,
        passed and next_steps
    """
    records = {record.question_id: record for record in attempt.answers}
    concept_stats: Dict[str, Dict[str, int]] = {}

    for question in assessment.questions:
        record = records.get(question.id)
        for concept in question.concepts or [assessment.topic or assessment.subject]:
            stats = concept_stats.setdefault(concept, {"correct": 0, "total": 0})
            stats["total"] += 1
            if record and record.is_correct:
                stats["correct"] += 1

    concept_performance = {
        concept: {**stats, "accuracy": round_percentage(stats["correct"] / stats["total"] * 100)}
        for concept, stats in concept_stats.items()
    }
    strengths = [c for c, p in concept_performance.items() if p["accuracy"] >= STRENGTH_THRESHOLD * 100]
    weaknesses = [c for c, p in concept_performance.items() if p["accuracy"] < WEAKNESS_THRESHOLD * 100]

    expected_seconds = sum(question.time_estimate for question in assessment.questions)
    if not attempt.total_time or not expected_seconds:
        time_efficiency = "unknown"
    elif attempt.total_time < expected_seconds * 0.5:
        time_efficiency = "fast"
    elif attempt.total_time <= expected_seconds * 1.5:
        time_efficiency = "on_pace"
    else:
        time_efficiency = "slow"

    did_pass = passed(attempt.score, assessment.passing_score) if attempt.score else False
    next_steps = [f"Review {concept} and try a few practice problems" for concept in weaknesses]
    if did_pass:
        next_steps.append(f"Move on to the next topic after {assessment.topic or assessment.subject}")
    else:
        next_steps.append("Retake the quiz once you have reviewed the explanations")

    return {
        "concept_performance": concept_performance,
        "strengths": strengths,
        "weaknesses": weaknesses,
        "time_efficiency": time_efficiency,
        "passed": did_pass,
        "next_steps": next_steps,
    }


def refresh_statistics(assessment: Assessment):
    """Recompute total attempts, average score and pass rate from completed attempts."""
    completed = [a for a in assessment.attempts if a.status == AttemptStatus.COMPLETED and a.score]
    stats = assessment.statistics
    stats.total_attempts = len(completed)
    if not completed:
        stats.average_score = None
        stats.pass_rate = None
        return
    stats.average_score = round_percentage(sum(a.score.percentage for a in completed) / len(completed))
    passes = sum(1 for a in completed if passed(a.score, assessment.passing_score))
    stats.pass_rate = round_percentage(passes / len(completed) * 100)


class AssessmentEvaluator:
    """Starts, grades and abandons attempts on stored assessments."""

    def __init__(self, assessment_manager):
        self.assessment_manager = assessment_manager
        self._locks = KeyedLock()

    async def _load(self, assessment_id: str) -> Assessment:
        assessment = await self.assessment_manager.get_assessment(assessment_id)
        if assessment is None:
            raise NotFoundError("Assessment", assessment_id)
        return assessment

    @staticmethod
    def _check_limit(assessment: Assessment, user_id: str):
        if not assessment.can_user_attempt(user_id):
            logger.warning(f"⚠️ [Evaluator] {user_id} reached max attempts on {assessment.assessment_id}")
            raise MaxAttemptsExceeded(assessment.assessment_id, assessment.max_attempts)

    @staticmethod
    def _find_user_attempt(assessment: Assessment, attempt_id: str, user_id: str) -> Attempt:
        attempt = assessment.find_attempt(attempt_id)
        if attempt is None or attempt.user_id != user_id:
            raise NotFoundError("Attempt", attempt_id)
        if attempt.status != AttemptStatus.IN_PROGRESS:
            raise ValidationError(f"Attempt {attempt_id} is already {attempt.status.value}")
        return attempt

    async def start_attempt(self, assessment_id: str, user_id: str) -> Attempt:
        """
        Open an attempt for a learner, reusing one already in progress.

        Raises:
            NotFoundError: Unknown assessment
            MaxAttemptsExceeded: No attempts left
        """
        if not user_id:
            raise ValidationError("user_id is required")

        async with self._locks.hold(assessment_id):
            assessment = await self._load(assessment_id)
            self._check_limit(assessment, user_id)

            for attempt in assessment.get_user_attempts(user_id):
                if attempt.status == AttemptStatus.IN_PROGRESS:
                    return attempt

            attempt = Attempt(attempt_id=uuid.uuid4().hex, user_id=user_id)
            assessment.attempts.append(attempt)
            await self.assessment_manager.save_assessment(assessment)
            logger.info(f"📊 [Evaluator] Started attempt {attempt.attempt_id} on {assessment_id}")
            return attempt

    async def submit_attempt(
        self,
        assessment_id: str,
        user_id: str,
        answers: List[Any],
        attempt_id: Optional[str] = None,
        time_spent: float = 0.0
    ) -> Attempt:
        """
        Grade answers and complete an attempt.

        Args:
            assessment_id: Assessment being answered
            user_id: Learner submitting
            answers: Items with user_answer (and optionally question_id,
                time_spent), or bare answer values in question order
            attempt_id: Attempt opened by start_attempt; a new one is
                created when omitted
            time_spent: Total seconds spent

        Returns:
            Completed Attempt with score and analysis

        Raises:
            NotFoundError, ValidationError, MaxAttemptsExceeded
        """
        if not user_id:
            raise ValidationError("user_id is required")
        if answers is None:
            raise ValidationError("answers are required")

        async with self._locks.hold(assessment_id):
            assessment = await self._load(assessment_id)
            self._check_limit(assessment, user_id)

            now = datetime.now()
            if attempt_id:
                attempt = self._find_user_attempt(assessment, attempt_id, user_id)
            else:
                attempt = Attempt(
                    attempt_id=uuid.uuid4().hex,
                    user_id=user_id,
                    started_at=now - timedelta(seconds=time_spent or 0),
                )
                assessment.attempts.append(attempt)

            records = []
            for question, fields in zip(assessment.questions, match_answers(assessment.questions, answers)):
                user_answer = fields.get("user_answer") if fields else None
                records.append(AnswerRecord(
                    question_id=question.id,
                    user_answer="" if user_answer is None else str(user_answer),
                    is_correct=score_answer(question, user_answer),
                    time_spent=float((fields or {}).get("time_spent") or 0),
                ))

            attempt.answers = records
            attempt.score = calculate_score([record.is_correct for record in records])
            attempt.completed_at = now
            attempt.total_time = float(time_spent or (now - attempt.started_at).total_seconds())
            attempt.status = AttemptStatus.COMPLETED
            attempt.analysis = analyze_attempt(assessment, attempt)

            refresh_statistics(assessment)
            await self.assessment_manager.save_assessment(assessment)

            logger.info(
                f"📊 [Evaluator] {user_id} scored {attempt.score.percentage}% ({attempt.score.grade}) "
                f"on {assessment_id}"
            )
            return attempt

    async def abandon_attempt(self, assessment_id: str, attempt_id: str, user_id: str) -> Attempt:
        async with self._locks.hold(assessment_id):
            assessment = await self._load(assessment_id)
            attempt = self._find_user_attempt(assessment, attempt_id, user_id)
            attempt.status = AttemptStatus.ABANDONED
            attempt.completed_at = datetime.now()
            await self.assessment_manager.save_assessment(assessment)
            logger.info(f"📊 [Evaluator] Attempt {attempt_id} abandoned")
            return attempt

    async def get_user_attempts(self, assessment_id: str, user_id: str) -> List[Attempt]:
        assessment = await self._load(assessment_id)
        return assessment.get_user_attempts(user_id)
