"""
Assessment Generator

Builds a quiz request from a subject/topic and the learner's conversation,
asks the model for questions, and repairs the reply into a persisted
Assessment. The question count is capped so replies stay short enough
not to be truncated.
"""

import json
import uuid
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from anchored_tutor.assessment_models import Assessment, GenerationContext, QuestionType
from anchored_tutor.errors import ValidationError
from anchored_tutor.model_client import call_model
from anchored_tutor.structured_output import normalize_difficulty, parse_question_set

logger = logging.getLogger(__name__)

MAX_SAFE_QUESTION_COUNT = 6
DEFAULT_QUESTION_TYPES = ["multiple-choice", "numerical", "text"]
SUMMARY_LIMIT = 1000
MINUTES_PER_QUESTION = 2
DEFAULT_PASSING_SCORE = 70
DEFAULT_MAX_ATTEMPTS = 3


@dataclass
class GenerationRequest:
    """Everything the model needs to write a quiz."""
    subject: str
    topic: Optional[str]
    difficulty: str
    question_count: int
    question_types: List[str]
    conversation_summary: str = ""
    concepts: List[str] = field(default_factory=list)


def cap_question_count(requested: int) -> int:
    """Clamp a requested question count to [1, MAX_SAFE_QUESTION_COUNT]."""
    return max(1, min(MAX_SAFE_QUESTION_COUNT, int(requested)))


class AssessmentGenerator:
    """Generates and stores assessments through the model collaborator."""

    def __init__(self, model, assessment_manager, timeout: Optional[float] = None, model_name: Optional[str] = None):
        """
        Args:
            model: Object with async generate(prompt, parameters) -> str
            assessment_manager: AssessmentManager used to persist results
            timeout: Default model timeout in seconds
            model_name: Recorded in the generation context
        """
        self.model = model
        self.assessment_manager = assessment_manager
        self.timeout = timeout
        self.model_name = model_name or getattr(model, "model", None)

    def build_request(
        self,
        subject: str,
        topic: Optional[str] = None,
        difficulty: str = "medium",
        question_count: int = 5,
        question_types: Optional[List[str]] = None,
        conversation_summary: str = "",
        concepts: Optional[List[str]] = None
    ) -> GenerationRequest:
        if not subject or not subject.strip():
            raise ValidationError("subject is required to generate an assessment")

        types = list(question_types or DEFAULT_QUESTION_TYPES)
        valid_types = {question_type.value for question_type in QuestionType}
        unknown = [question_type for question_type in types if question_type not in valid_types]
        if unknown:
            raise ValidationError(f"Unknown question type(s): {', '.join(unknown)}")

        capped = cap_question_count(question_count)
        if capped != question_count:
            logger.info(f"📝 [Generator] Question count {question_count} capped to {capped}")

        return GenerationRequest(
            subject=subject.strip(),
            topic=topic,
            difficulty=normalize_difficulty(difficulty),
            question_count=capped,
            question_types=types,
            conversation_summary=(conversation_summary or "")[:SUMMARY_LIMIT],
            concepts=list(concepts or []),
        )

    def build_prompt(self, request: GenerationRequest) -> str:
        focus = f"{request.topic} ({request.subject})" if request.topic else request.subject
        concepts = ", ".join(request.concepts) if request.concepts else "none recorded"
        example = {
            "title": "Quiz title",
            "questions": [
                {
                    "id": "q1",
                    "type": "multiple-choice",
                    "question": "Question text",
                    "options": [
                        {"id": "a", "text": "Option A", "isCorrect": True},
                        {"id": "b", "text": "Option B", "isCorrect": False},
                    ],
                    "explanation": "Why the answer is correct",
                    "difficulty": request.difficulty,
                    "points": 1,
                    "concepts": ["concept"],
                    "timeEstimate": 60,
                    "hints": ["hint"],
                }
            ],
        }
        return f"""Create a {request.difficulty} quiz about {focus}.

Write exactly {request.question_count} questions using these types: {', '.join(request.question_types)}.
For numerical questions give "correctAnswer" as a number. For text questions give a short exact "correctAnswer".
For true-false questions give "correctAnswer" as "true" or "false".

Concepts the learner covered: {concepts}

Recent conversation:
{request.conversation_summary or '(no conversation)'}

Return ONLY JSON in this format, with no commentary:
{json.dumps(example, indent=2)}"""

    async def generate(
        self,
        subject: str,
        topic: Optional[str] = None,
        difficulty: str = "medium",
        question_count: int = 5,
        question_types: Optional[List[str]] = None,
        conversation_summary: str = "",
        concepts: Optional[List[str]] = None,
        user_id: Optional[str] = None,
        source_session_id: Optional[str] = None,
        timeout: Optional[float] = None
    ) -> Assessment:
        """
        Generate, repair and persist an assessment.

        Raises:
            ValidationError: Missing subject or unknown question type
            ModelUnavailable: Model call failed or timed out
        """
        request = self.build_request(
            subject, topic, difficulty, question_count, question_types, conversation_summary, concepts
        )

        reply = await call_model(
            self.model,
            self.build_prompt(request),
            {"temperature": 0.4, "max_tokens": 2048, "system": "You write educational quizzes. Return only valid JSON."},
            timeout if timeout is not None else self.timeout,
        )

        parsed = parse_question_set(reply, request.subject, request.topic, request.question_count)
        questions = parsed.questions[:request.question_count]

        assessment = Assessment(
            assessment_id=uuid.uuid4().hex,
            title=parsed.title or f"{request.subject} Quiz",
            subject=request.subject,
            topic=request.topic,
            difficulty=request.difficulty,
            questions=questions,
            passing_score=DEFAULT_PASSING_SCORE,
            max_attempts=DEFAULT_MAX_ATTEMPTS,
            time_limit=len(questions) * MINUTES_PER_QUESTION,
            generation_context=GenerationContext(
                source_session_id=source_session_id,
                concepts_covered=request.concepts,
                conversation_summary=request.conversation_summary,
                model=self.model_name,
            ),
            used_fallback=parsed.used_fallback,
            tags=[tag.lower() for tag in (request.subject, request.topic, request.difficulty) if tag],
            created_by=user_id,
        )

        await self.assessment_manager.save_assessment(assessment)

        if parsed.used_fallback:
            logger.warning(f"⚠️ [Generator] Assessment {assessment.assessment_id} uses fallback questions")
        else:
            logger.info(
                f"✅ [Generator] Assessment {assessment.assessment_id} created with {len(questions)} questions"
            )
        return assessment
