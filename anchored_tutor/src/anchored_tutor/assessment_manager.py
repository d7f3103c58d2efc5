"""
Assessment Manager for Persistence

Stores each Assessment (questions, attempts, statistics) as one JSON
document per row, mirroring SessionManager.
"""

import os
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from anchored_tutor.assessment_models import (
    AnswerRecord,
    Assessment,
    AssessmentStatistics,
    Attempt,
    AttemptStatus,
    GenerationContext,
    Score,
    question_from_dict,
)
from anchored_tutor.session_manager import iso_timestamp, parse_timestamp

logger = logging.getLogger(__name__)


def attempt_to_dict(attempt: Attempt) -> Dict[str, Any]:
    return {
        "attempt_id": attempt.attempt_id,
        "user_id": attempt.user_id,
        "started_at": iso_timestamp(attempt.started_at),
        "completed_at": iso_timestamp(attempt.completed_at),
        "answers": [
            {
                "question_id": answer.question_id,
                "user_answer": answer.user_answer,
                "is_correct": answer.is_correct,
                "time_spent": answer.time_spent,
            }
            for answer in attempt.answers
        ],
        "score": (
            {"raw": attempt.score.raw, "percentage": attempt.score.percentage, "grade": attempt.score.grade}
            if attempt.score else None
        ),
        "total_time": attempt.total_time,
        "status": attempt.status.value,
        "analysis": attempt.analysis,
    }


def dict_to_attempt(data: Dict[str, Any]) -> Attempt:
    score = data.get("score")
    return Attempt(
        attempt_id=data["attempt_id"],
        user_id=data["user_id"],
        started_at=parse_timestamp(data.get("started_at"), datetime.now()),
        completed_at=parse_timestamp(data.get("completed_at")),
        answers=[AnswerRecord(**answer) for answer in data.get("answers", [])],
        score=Score(**score) if score else None,
        total_time=data.get("total_time", 0.0),
        status=AttemptStatus(data.get("status", "in-progress")),
        analysis=data.get("analysis"),
    )


def assessment_to_dict(assessment: Assessment) -> Dict[str, Any]:
    """Convert Assessment to a JSON-compatible document (answers included)."""
    context = assessment.generation_context
    return {
        "assessment_id": assessment.assessment_id,
        "title": assessment.title,
        "subject": assessment.subject,
        "topic": assessment.topic,
        "difficulty": assessment.difficulty,
        "questions": [question.to_dict() for question in assessment.questions],
        "passing_score": assessment.passing_score,
        "max_attempts": assessment.max_attempts,
        "time_limit": assessment.time_limit,
        "attempts": [attempt_to_dict(attempt) for attempt in assessment.attempts],
        "generation_context": {
            "source_session_id": context.source_session_id,
            "concepts_covered": list(context.concepts_covered),
            "conversation_summary": context.conversation_summary,
            "model": context.model,
            "generated_at": iso_timestamp(context.generated_at),
        },
        "used_fallback": assessment.used_fallback,
        "statistics": {
            "total_attempts": assessment.statistics.total_attempts,
            "average_score": assessment.statistics.average_score,
            "pass_rate": assessment.statistics.pass_rate,
        },
        "tags": list(assessment.tags),
        "created_by": assessment.created_by,
        "created_at": iso_timestamp(assessment.created_at),
    }


def dict_to_assessment(data: Dict[str, Any]) -> Assessment:
    """Convert a stored document back into an Assessment."""
    now = datetime.now()
    context = data.get("generation_context") or {}
    statistics = data.get("statistics") or {}

    return Assessment(
        assessment_id=data["assessment_id"],
        title=data.get("title", ""),
        subject=data["subject"],
        topic=data.get("topic"),
        difficulty=data.get("difficulty", "medium"),
        questions=[question_from_dict(question) for question in data.get("questions", [])],
        passing_score=data.get("passing_score", 70),
        max_attempts=data.get("max_attempts", 3),
        time_limit=data.get("time_limit"),
        attempts=[dict_to_attempt(attempt) for attempt in data.get("attempts", [])],
        generation_context=GenerationContext(
            source_session_id=context.get("source_session_id"),
            concepts_covered=list(context.get("concepts_covered", [])),
            conversation_summary=context.get("conversation_summary", ""),
            model=context.get("model"),
            generated_at=parse_timestamp(context.get("generated_at"), now),
        ),
        used_fallback=data.get("used_fallback", False),
        statistics=AssessmentStatistics(
            total_attempts=statistics.get("total_attempts", 0),
            average_score=statistics.get("average_score"),
            pass_rate=statistics.get("pass_rate"),
        ),
        tags=list(data.get("tags", [])),
        created_by=data.get("created_by"),
        created_at=parse_timestamp(data.get("created_at"), now),
    )


class AssessmentManager:
    """
    Persists assessments in the ASSESSMENTS_TABLE Supabase table (default
    "assessments") or in memory.
    """

    def __init__(self, supabase_client=None, table: Optional[str] = None):
        self.supabase = supabase_client
        self.use_supabase = supabase_client is not None
        self.table = table or os.getenv("ASSESSMENTS_TABLE", "assessments")

        self._in_memory_assessments: Dict[str, str] = {}

    async def get_assessment(self, assessment_id: str) -> Optional[Assessment]:
        if not self.use_supabase:
            document = self._in_memory_assessments.get(assessment_id)
            return dict_to_assessment(json.loads(document)) if document else None

        try:
            result = self.supabase.table(self.table).select('document').eq('assessment_id', assessment_id).execute()
        except Exception as e:
            logger.error(f"❌ [AssessmentManager] Error loading assessment {assessment_id}: {e}")
            raise

        if result.data:
            return dict_to_assessment(result.data[0]["document"])
        return None

    async def save_assessment(self, assessment: Assessment) -> bool:
        """
        Save the whole assessment document (insert or replace).

        Raises:
            Exception: Storage errors are logged and re-raised
        """
        document = assessment_to_dict(assessment)

        if not self.use_supabase:
            self._in_memory_assessments[assessment.assessment_id] = json.dumps(document)
            return True

        row = {
            "assessment_id": assessment.assessment_id,
            "created_by": assessment.created_by,
            "subject": assessment.subject,
            "document": document,
        }
        try:
            self.supabase.table(self.table).upsert(row, on_conflict="assessment_id").execute()
        except Exception as e:
            logger.error(f"❌ [AssessmentManager] Error saving assessment {assessment.assessment_id}: {e}")
            raise

        logger.debug(f"🗄️ [AssessmentManager] Saved assessment {assessment.assessment_id}")
        return True

    async def list_assessments(self, user_id: str) -> List[Assessment]:
        """Assessments created by a learner, newest first."""
        if not self.use_supabase:
            assessments = [dict_to_assessment(json.loads(doc)) for doc in self._in_memory_assessments.values()]
            assessments = [a for a in assessments if a.created_by == user_id]
        else:
            try:
                result = self.supabase.table(self.table).select('document').eq('created_by', user_id).execute()
            except Exception as e:
                logger.error(f"❌ [AssessmentManager] Error listing assessments for {user_id}: {e}")
                raise
            assessments = [dict_to_assessment(row["document"]) for row in (result.data or [])]

        return sorted(assessments, key=lambda a: a.created_at, reverse=True)
