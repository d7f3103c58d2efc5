"""
Conversation Session Orchestrator

Processes one learner turn at a time: topic moderation first, then the
safety filter, then the model call with a single short-reply retry. A turn
mutates a detached copy of the session and saves it exactly once at the
end, so a failed model call leaves the stored session untouched. Turns on
the same session are serialized through a per-session lock.
"""

import re
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from anchored_tutor.content_safety import ContentSafetyFilter
from anchored_tutor.errors import ModelUnavailable, NotFoundError, ValidationError
from anchored_tutor.keyed_lock import KeyedLock
from anchored_tutor.logger import get_logger
from anchored_tutor.model_client import call_model
from anchored_tutor.session_state import (
    ConversationSession,
    Message,
    MessageType,
    SessionContext,
    SessionStatus,
)
from anchored_tutor.topic_moderation import ModerationAction, ModerationResult, TopicContext, TopicModerator

logger = get_logger(__name__)

MIN_REPLY_LENGTH = 50
REPLY_CONFIDENCE = 0.85
MAX_CONCEPTS_PER_REPLY = 5
FALLBACK_REPLY = (
    "I'm sorry, I couldn't put together a helpful answer just now. "
    "Could you rephrase your question or ask about a specific part of the topic?"
)

MODE_INSTRUCTIONS = {
    "beginner": "Use simple language, provide lots of examples, and explain every concept step by step.",
    "normal": "Balance between detailed explanations and practical examples. Assume some basic knowledge.",
    "advanced": "Use technical language, focus on complex concepts, and provide challenging examples.",
    "toddler": "Use extremely simple language, real-life analogies, and break everything down to the most basic level.",
}

_BOLD_SPAN = re.compile(r"\*\*([^*\n]+?)\*\*")
_NEXT_TOPICS_LINE = re.compile(r"^\s*next topics?\s*:\s*(.+?)\s*$", re.IGNORECASE | re.MULTILINE)


class TurnOutcome(Enum):
    """How a turn ended. Blocked outcomes are normal results, not errors."""
    ANSWERED = "answered"
    REMINDED = "reminded"
    MODERATION_BLOCKED = "moderation_blocked"
    SAFETY_BLOCKED = "safety_blocked"


@dataclass
class TurnResult:
    """Reply message, session summary and moderation annotation for one turn."""
    outcome: TurnOutcome
    message: Message
    session: Dict[str, Any]
    moderation: Optional[Dict[str, Any]] = None

    @property
    def session_id(self) -> str:
        return self.session["session_id"]


def extract_concepts(reply: str) -> List[str]:
    """Concepts are the distinct **bold** terms of a reply (first five)."""
    concepts: List[str] = []
    for match in _BOLD_SPAN.finditer(reply or ""):
        concept = match.group(1).strip().rstrip(":").strip()
        if len(concept) > 3 and concept.lower() not in (c.lower() for c in concepts):
            concepts.append(concept)
        if len(concepts) == MAX_CONCEPTS_PER_REPLY:
            break
    return concepts


def split_next_topics(reply: str) -> Tuple[str, List[str]]:
    """Remove a trailing "Next topics: a, b" line and return (body, topics)."""
    matches = list(_NEXT_TOPICS_LINE.finditer(reply or ""))
    if not matches:
        return reply, []
    last = matches[-1]
    topics = [topic.strip(" .*") for topic in last.group(1).split(",")]
    body = (reply[:last.start()] + reply[last.end():]).strip()
    return body, [topic for topic in topics if topic]


def conversation_summary(session: ConversationSession) -> str:
    """Recent dialogue as "Student:" / "Tutor:" lines."""
    return "\n".join(
        f"{'Student' if msg.is_user else 'Tutor'}: {msg.content}"
        for msg in session.recent_history()
    )


class TutorOrchestrator:
    """
    Owns the conversation session lifecycle and the per-turn pipeline.

    Holds no session state beyond the per-session locks; sessions live in
    the session manager.
    """

    def __init__(
        self,
        model,
        session_manager,
        moderator: Optional[TopicModerator] = None,
        safety_filter: Optional[ContentSafetyFilter] = None,
        assessment_generator=None,
        timeout: Optional[float] = None
    ):
        """
        Args:
            model: Object with async generate(prompt, parameters) -> str
            session_manager: SessionManager (or compatible store)
            moderator: Topic relevance moderator
            safety_filter: Content safety filter
            assessment_generator: Used by generate_assessment
            timeout: Default model timeout in seconds
        """
        self.model = model
        self.session_manager = session_manager
        self.moderator = moderator or TopicModerator()
        self.safety_filter = safety_filter or ContentSafetyFilter()
        self.assessment_generator = assessment_generator
        self.timeout = timeout
        self._locks = KeyedLock()

    # ------------------------------------------------------------------
    # Session loading
    # ------------------------------------------------------------------

    async def _get_owned_session(self, session_id: str, user_id: str) -> ConversationSession:
        session = await self.session_manager.get_session(session_id)
        if session is None or session.user_id != user_id:
            raise NotFoundError("Session", session_id)
        return session

    def _new_session(
        self,
        session_id: str,
        user_id: str,
        subject: Optional[str],
        topic: Optional[str],
        difficulty: str,
        learning_mode: str
    ) -> ConversationSession:
        subject = subject or "General Discussion"
        logger.info(f"💬 [Orchestrator] Creating session {session_id}", data={
            "user_id": user_id,
            "subject": subject,
            "topic": topic or subject,
        })
        return ConversationSession(
            session_id=session_id,
            user_id=user_id,
            subject=subject,
            current_topic=topic or subject,
            context=SessionContext(
                difficulty=difficulty,
                teaching_mode=difficulty if difficulty in MODE_INSTRUCTIONS else "normal",
                session_type=learning_mode,
            ),
        )

    # ------------------------------------------------------------------
    # Turn processing
    # ------------------------------------------------------------------

    async def process_turn(
        self,
        message: str,
        user_id: str,
        session_id: Optional[str] = None,
        subject: Optional[str] = None,
        topic: Optional[str] = None,
        difficulty: str = "normal",
        learning_mode: str = "teaching",
        timeout: Optional[float] = None
    ) -> TurnResult:
        """
        Process one learner message.

        Args:
            message: Learner message
            user_id: Session owner
            session_id: Existing session; a new one is created when omitted
            subject: Subject for a new session
            topic: Topic for a new session, or an explicit topic change
                applied before the message is moderated
            difficulty: Difficulty / teaching mode for a new session
            learning_mode: Session type for a new session
            timeout: Model timeout override in seconds

        Returns:
            TurnResult with the tutor message, session summary and moderation

        Raises:
            ValidationError: Empty message, missing user, or closed session
            NotFoundError: Unknown session_id
            ModelUnavailable: Model failed or timed out (nothing is saved)
        """
        if not message or not message.strip():
            raise ValidationError("Message is required")
        if not user_id:
            raise ValidationError("user_id is required")

        lock_id = session_id or uuid.uuid4().hex
        async with self._locks.hold(lock_id):
            if session_id:
                session = await self._get_owned_session(session_id, user_id)
            else:
                session = self._new_session(lock_id, user_id, subject, topic, difficulty, learning_mode)
            return await self._run_turn(session, message, topic, timeout)

    async def _run_turn(
        self,
        session: ConversationSession,
        text: str,
        topic: Optional[str],
        timeout: Optional[float]
    ) -> TurnResult:
        if not session.is_open:
            raise ValidationError(f"Session {session.session_id} is {session.status.value}")
        if session.status == SessionStatus.PAUSED:
            session.resume()
            logger.info(f"💬 [Orchestrator] Resumed paused session {session.session_id}")

        session.context.message_count += 1
        # An explicit topic change applies to this turn's moderation too
        if topic and topic != session.current_topic:
            logger.info(f"💬 [Orchestrator] Topic changed: {session.current_topic} -> {topic}")
            session.current_topic = topic
        history = [msg.content for msg in session.messages[-self.moderator.CONTEXT_WINDOW:]]

        user_message = Message(content=text, is_user=True)
        session.add_message(user_message)

        moderation = self.moderator.check(text, TopicContext(
            current_topic=session.current_topic,
            subject=session.subject,
            difficulty=session.context.difficulty,
            session_type=session.context.session_type,
            conversation_history=history,
            concepts_covered=session.concept_names(),
            turn=session.context.message_count,
        ))
        annotation = moderation.to_annotation()
        user_message.moderation = annotation

        if moderation.action == ModerationAction.REDIRECT:
            reply = Message(
                content=moderation.message,
                is_user=False,
                message_type=MessageType.REDIRECT,
                moderation=annotation,
                metadata={"suggestions": list(moderation.suggestions)},
            )
            return await self._finish(session, reply, TurnOutcome.MODERATION_BLOCKED, annotation)

        verdict = self.safety_filter.classify(text)
        if not verdict.approved:
            safety_annotation = {
                "type": "safety",
                "approved": False,
                "category": verdict.category,
                "reason": verdict.reason,
                "relevant_subjects": list(verdict.relevant_subjects),
            }
            user_message.moderation = safety_annotation
            reply = Message(
                content=self.safety_filter.build_moderation_response(verdict),
                is_user=False,
                message_type=MessageType.MODERATED,
                moderation=safety_annotation,
            )
            return await self._finish(session, reply, TurnOutcome.SAFETY_BLOCKED, safety_annotation)

        started = time.monotonic()
        reply_text, retried, used_fallback = await self._generate_reply(session, text, moderation, timeout)
        body, next_topics = split_next_topics(reply_text)
        concepts = extract_concepts(body)

        reminded = moderation.action == ModerationAction.REMIND
        content = f"{moderation.message}\n\n{body}" if reminded else body

        reply = Message(
            content=content,
            is_user=False,
            message_type=MessageType.FALLBACK if used_fallback else MessageType.TEXT,
            moderation=annotation if reminded else None,
            metadata={
                "concepts_identified": concepts,
                "next_topics": next_topics,
                "confidence": REPLY_CONFIDENCE,
                "processing_time_ms": int((time.monotonic() - started) * 1000),
                "retried": retried,
                "suggestions": list(moderation.suggestions) if reminded else [],
            },
        )

        for concept in concepts:
            session.merge_concept(concept, REPLY_CONFIDENCE, reply.timestamp)
        session.add_recommended_topics(next_topics)

        outcome = TurnOutcome.REMINDED if reminded else TurnOutcome.ANSWERED
        return await self._finish(session, reply, outcome, annotation)

    async def _finish(
        self,
        session: ConversationSession,
        reply: Message,
        outcome: TurnOutcome,
        annotation: Optional[Dict[str, Any]]
    ) -> TurnResult:
        session.add_message(reply)
        await self.session_manager.save_session(session)

        logger.success(f"[Orchestrator] Turn {session.context.message_count} {outcome.value}", data={
            "session_id": session.session_id,
            "messages": len(session.messages),
            "concepts": len(session.concepts_covered),
        })
        return TurnResult(outcome=outcome, message=reply, session=session.summary(), moderation=annotation)

    # ------------------------------------------------------------------
    # Model call
    # ------------------------------------------------------------------

    def build_prompt(self, session: ConversationSession, text: str, moderation: ModerationResult) -> str:
        topic = session.current_topic or session.subject
        mode = session.context.teaching_mode
        history = "\n".join(
            f"{'Student' if msg.is_user else 'Tutor'}: {msg.content}"
            for msg in session.recent_history()[:-1]
        )
        guidance = ""
        if moderation.action == ModerationAction.REMIND:
            guidance = (
                f"\nThe student's question drifts from {topic}. Answer it briefly, "
                f"then connect it back to {topic}.\n"
            )

        return f"""You are an expert AI tutor helping a student learn "{topic}" in {session.subject}.

Current Context:
- Topic: {topic}
- Difficulty: {session.context.difficulty}
- Teaching Mode: {mode}
- Previous Concepts: {', '.join(session.context.previous_concepts) or 'none yet'}

Recent conversation:
{history or '(start of conversation)'}
{guidance}
Instructions:
{MODE_INSTRUCTIONS.get(mode, MODE_INSTRUCTIONS['normal'])}
Mark key concepts in **bold**. End with one line "Next topics: <topic>, <topic>".

Student Message: "{text}"
"""

    def build_simplified_prompt(self, session: ConversationSession, text: str) -> str:
        topic = session.current_topic or session.subject
        return (
            f"You are a helpful tutor for {topic}. Answer the student's question clearly "
            f"in a few sentences.\n\nQuestion: {text}"
        )

    async def _generate_reply(
        self,
        session: ConversationSession,
        text: str,
        moderation: ModerationResult,
        timeout: Optional[float]
    ) -> Tuple[str, bool, bool]:
        """
        Primary call, then at most one retry for an empty or short reply.

        Returns:
            (reply, retried, used_fallback)

        Raises:
            ModelUnavailable: If the primary call fails or times out
        """
        timeout = timeout if timeout is not None else self.timeout
        parameters = {"temperature": 0.7, "max_tokens": 1024}

        reply = (await call_model(self.model, self.build_prompt(session, text, moderation), parameters, timeout)).strip()

        retried = False
        if len(reply) < MIN_REPLY_LENGTH and not self.moderator.is_general_message(text):
            retried = True
            logger.warning(f"⚠️ [Orchestrator] Short reply ({len(reply)} chars), retrying once")
            try:
                retry = await call_model(self.model, self.build_simplified_prompt(session, text), parameters, timeout)
            except ModelUnavailable as e:
                logger.warning(f"⚠️ [Orchestrator] Retry failed, keeping original reply: {e}")
                retry = ""
            if len(retry.strip()) > len(reply):
                reply = retry.strip()

        if not reply:
            return FALLBACK_REPLY, retried, True
        return reply, retried, False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _transition(self, session_id: str, user_id: str, action: str) -> ConversationSession:
        async with self._locks.hold(session_id):
            session = await self._get_owned_session(session_id, user_id)
            getattr(session, action)()
            await self.session_manager.save_session(session)
            logger.info(f"💬 [Orchestrator] Session {session_id} -> {session.status.value}")
            return session

    async def pause_session(self, session_id: str, user_id: str) -> ConversationSession:
        return await self._transition(session_id, user_id, "pause")

    async def resume_session(self, session_id: str, user_id: str) -> ConversationSession:
        return await self._transition(session_id, user_id, "resume")

    async def end_session(self, session_id: str, user_id: str) -> ConversationSession:
        """Complete a session; sets end_time and total_duration (minutes)."""
        return await self._transition(session_id, user_id, "end")

    async def archive_session(self, session_id: str, user_id: str) -> ConversationSession:
        return await self._transition(session_id, user_id, "archive")

    async def get_session(self, session_id: str, user_id: str) -> ConversationSession:
        return await self._get_owned_session(session_id, user_id)

    async def list_sessions(self, user_id: str, status: Optional[SessionStatus] = None) -> List[ConversationSession]:
        return await self.session_manager.list_sessions(user_id, status)

    # ------------------------------------------------------------------
    # Assessments
    # ------------------------------------------------------------------

    async def generate_assessment(
        self,
        session_id: str,
        user_id: str,
        question_count: int = 5,
        question_types: Optional[List[str]] = None,
        difficulty: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        """
        Generate an assessment from a session's conversation and record its
        id on the session.

        Raises:
            NotFoundError: Unknown session
            ValidationError: Archived session or no generator configured
            ModelUnavailable: Model failed or timed out
        """
        if self.assessment_generator is None:
            raise ValidationError("No assessment generator configured")

        async with self._locks.hold(session_id):
            session = await self._get_owned_session(session_id, user_id)
            if session.status == SessionStatus.ARCHIVED:
                raise ValidationError(f"Session {session_id} is archived")

            assessment = await self.assessment_generator.generate(
                subject=session.subject,
                topic=session.current_topic,
                difficulty=difficulty or session.context.difficulty,
                question_count=question_count,
                question_types=question_types,
                conversation_summary=conversation_summary(session),
                concepts=session.concept_names(),
                user_id=user_id,
                source_session_id=session.session_id,
                timeout=timeout if timeout is not None else self.timeout,
            )

            session.generated_assessment_ids.append(assessment.assessment_id)
            await self.session_manager.save_session(session)
            return assessment
