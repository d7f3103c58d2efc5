"""
Tutor Service

In-process facade over the orchestrator, generator and evaluator. Accepts
request models (or plain dicts), converts input validation failures to
ValidationError, and returns response models.
"""

import logging
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError as PydanticValidationError

from anchored_tutor.assessment_evaluator import AssessmentEvaluator
from anchored_tutor.assessment_generator import AssessmentGenerator
from anchored_tutor.assessment_manager import AssessmentManager
from anchored_tutor.assessment_models import Assessment, Attempt
from anchored_tutor.errors import ValidationError
from anchored_tutor.logger import setup_logging
from anchored_tutor.model_client import OpenAIModelClient, default_timeout
from anchored_tutor.schemas import (
    AssessmentPayload,
    AttemptResponse,
    ChatRequest,
    ChatResponse,
    GenerateAssessmentRequest,
    MessagePayload,
    ScorePayload,
    SessionSummary,
    SubmitAttemptRequest,
)
from anchored_tutor.session_manager import SessionManager
from anchored_tutor.session_state import ConversationSession, SessionStatus
from anchored_tutor.supabase_client import get_supabase_client, supabase_configured
from anchored_tutor.tutor_orchestrator import TurnResult, TutorOrchestrator

load_dotenv()

logger = logging.getLogger(__name__)

RequestModel = TypeVar("RequestModel", bound=BaseModel)


def _parse(model_cls: Type[RequestModel], payload: Union[RequestModel, Dict[str, Any]]) -> RequestModel:
    if isinstance(payload, model_cls):
        return payload
    try:
        return model_cls.model_validate(payload)
    except PydanticValidationError as e:
        logger.warning(f"⚠️ [TutorService] Invalid {model_cls.__name__}: {e.error_count()} error(s)")
        raise ValidationError(str(e)) from e


def assessment_payload(assessment: Assessment) -> AssessmentPayload:
    return AssessmentPayload(
        assessment_id=assessment.assessment_id,
        title=assessment.title,
        subject=assessment.subject,
        topic=assessment.topic,
        difficulty=assessment.difficulty,
        question_count=len(assessment.questions),
        time_limit=assessment.time_limit,
        passing_score=assessment.passing_score,
        max_attempts=assessment.max_attempts,
        used_fallback=assessment.used_fallback,
        questions=[question.to_dict(include_answer=False) for question in assessment.questions],
    )


def attempt_response(assessment_id: str, attempt: Attempt) -> AttemptResponse:
    return AttemptResponse(
        attempt_id=attempt.attempt_id,
        assessment_id=assessment_id,
        status=attempt.status.value,
        score=ScorePayload(raw=attempt.score.raw, percentage=attempt.score.percentage, grade=attempt.score.grade),
        passed=bool((attempt.analysis or {}).get("passed")),
        analysis=attempt.analysis or {},
    )


def chat_response(result: TurnResult) -> ChatResponse:
    message = result.message
    return ChatResponse(
        outcome=result.outcome.value,
        message=MessagePayload(
            content=message.content,
            is_user=message.is_user,
            message_type=message.message_type.value,
            timestamp=message.timestamp,
            moderation=message.moderation,
            metadata=message.metadata,
        ),
        session=SessionSummary(**result.session),
        moderation=result.moderation,
    )


class TutorService:
    """Caller-facing entry point for chat turns, assessments and attempts."""

    def __init__(
        self,
        orchestrator: TutorOrchestrator,
        generator: AssessmentGenerator,
        evaluator: AssessmentEvaluator
    ):
        self.orchestrator = orchestrator
        self.generator = generator
        self.evaluator = evaluator

    @classmethod
    def build(cls, model, supabase_client=None, timeout: Optional[float] = None) -> "TutorService":
        """Wire every component around one model and one (optional) Supabase client."""
        session_manager = SessionManager(supabase_client)
        assessment_manager = AssessmentManager(supabase_client)
        generator = AssessmentGenerator(model, assessment_manager, timeout=timeout)
        orchestrator = TutorOrchestrator(
            model,
            session_manager,
            assessment_generator=generator,
            timeout=timeout,
        )
        return cls(orchestrator, generator, AssessmentEvaluator(assessment_manager))

    @classmethod
    def from_env(cls) -> "TutorService":
        """
        Build from environment: OpenAI model, Supabase storage when
        SUPABASE_URL / SUPABASE_SERVICE_KEY are set, else in-memory storage.
        """
        setup_logging(level=logging.INFO, use_colors=True)
        supabase_client = get_supabase_client() if supabase_configured() else None
        if supabase_client is None:
            logger.warning("⚠️ [TutorService] Supabase not configured, using in-memory storage")
        return cls.build(OpenAIModelClient(), supabase_client, timeout=default_timeout())

    async def chat(self, request: Union[ChatRequest, Dict[str, Any]]) -> ChatResponse:
        request = _parse(ChatRequest, request)
        result = await self.orchestrator.process_turn(
            message=request.message,
            user_id=request.user_id,
            session_id=request.session_id,
            subject=request.subject,
            topic=request.topic,
            difficulty=request.difficulty,
            learning_mode=request.learning_mode,
            timeout=request.timeout,
        )
        return chat_response(result)

    async def generate_assessment(
        self,
        request: Union[GenerateAssessmentRequest, Dict[str, Any]]
    ) -> AssessmentPayload:
        request = _parse(GenerateAssessmentRequest, request)
        if request.session_id:
            assessment = await self.orchestrator.generate_assessment(
                session_id=request.session_id,
                user_id=request.user_id,
                question_count=request.question_count,
                question_types=request.question_types,
                difficulty=request.difficulty,
                timeout=request.timeout,
            )
        else:
            assessment = await self.generator.generate(
                subject=request.subject,
                topic=request.topic,
                difficulty=request.difficulty or "medium",
                question_count=request.question_count,
                question_types=request.question_types,
                user_id=request.user_id,
                timeout=request.timeout,
            )
        return assessment_payload(assessment)

    async def submit_attempt(self, request: Union[SubmitAttemptRequest, Dict[str, Any]]) -> AttemptResponse:
        request = _parse(SubmitAttemptRequest, request)
        attempt = await self.evaluator.submit_attempt(
            assessment_id=request.assessment_id,
            user_id=request.user_id,
            answers=[answer.model_dump() for answer in request.answers],
            attempt_id=request.attempt_id,
            time_spent=request.time_spent,
        )
        return attempt_response(request.assessment_id, attempt)

    async def session_summary(self, session_id: str, user_id: str) -> SessionSummary:
        session = await self.orchestrator.get_session(session_id, user_id)
        return self._summary(session)

    async def list_sessions(self, user_id: str, status: Optional[str] = None) -> List[SessionSummary]:
        try:
            status_filter = SessionStatus(status) if status else None
        except ValueError as e:
            raise ValidationError(f"Unknown session status: {status}") from e
        sessions = await self.orchestrator.list_sessions(user_id, status_filter)
        return [self._summary(session) for session in sessions]

    async def pause_session(self, session_id: str, user_id: str) -> SessionSummary:
        return self._summary(await self.orchestrator.pause_session(session_id, user_id))

    async def resume_session(self, session_id: str, user_id: str) -> SessionSummary:
        return self._summary(await self.orchestrator.resume_session(session_id, user_id))

    async def end_session(self, session_id: str, user_id: str) -> SessionSummary:
        return self._summary(await self.orchestrator.end_session(session_id, user_id))

    async def archive_session(self, session_id: str, user_id: str) -> SessionSummary:
        return self._summary(await self.orchestrator.archive_session(session_id, user_id))

    @staticmethod
    def _summary(session: ConversationSession) -> SessionSummary:
        return SessionSummary(**session.summary())
