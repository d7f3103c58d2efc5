"""
Topic Relevance Moderator

Keeps learners focused on their current topic. Scores a message against the
session topic and subject with keyword-set similarity and decides whether
to allow it, allow it with a reminder, or redirect back to the topic
without calling the model.
"""

import re
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Pattern, Set, Tuple

from anchored_tutor.text_similarity import STOP_WORDS, extract_keywords, jaccard, tokenize

logger = logging.getLogger(__name__)


class ModerationAction(Enum):
    """Moderation outcomes."""
    ALLOW = "allow"
    REMIND = "remind"
    REDIRECT = "redirect"


@dataclass
class TopicContext:
    """Session context needed to judge topic relevance."""
    current_topic: Optional[str]
    subject: Optional[str]
    difficulty: str = "normal"
    session_type: str = "teaching"
    conversation_history: List[str] = field(default_factory=list)  # Oldest first
    concepts_covered: List[str] = field(default_factory=list)
    turn: int = 0  # 1-based learner turn counter


@dataclass
class ModerationResult:
    """Moderator decision for one message."""
    action: ModerationAction
    relevance_score: float
    detected_topic: str
    message: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)
    bypass_reason: Optional[str] = None  # "general", "discovery", "no_topic", "contextual"

    @property
    def allowed(self) -> bool:
        return self.action != ModerationAction.REDIRECT

    def to_annotation(self) -> dict:
        """Serializable annotation attached to messages and turn results."""
        return {
            "type": "topic",
            "action": self.action.value,
            "allowed": self.allowed,
            "relevance_score": round(self.relevance_score, 4),
            "detected_topic": self.detected_topic,
            "message": self.message,
            "suggestions": list(self.suggestions),
            "bypass_reason": self.bypass_reason,
        }


# Greetings, thanks, farewells and meta questions are always allowed
GENERAL_PATTERNS: Tuple[Pattern, ...] = (
    re.compile(r"^(hi|hello|hey|greetings|good morning|good afternoon|good evening)\b", re.IGNORECASE),
    re.compile(r"^(thanks|thank you|thx)\b", re.IGNORECASE),
    re.compile(r"^(bye|goodbye|see you)\b", re.IGNORECASE),
    re.compile(r"can you help", re.IGNORECASE),
    re.compile(r"what can you (do|teach)", re.IGNORECASE),
    re.compile(r"who are you", re.IGNORECASE),
    re.compile(r"how does this work", re.IGNORECASE),
)

# Pronouns and continuation requests that refer back to earlier turns
CONTEXTUAL_PATTERNS: Tuple[Pattern, ...] = (
    re.compile(r"\b(it|this|that|these|those|them|they)\b", re.IGNORECASE),
    re.compile(r"\b(above|previous|earlier|before|mentioned)\b", re.IGNORECASE),
    re.compile(r"\b(same|such)\b", re.IGNORECASE),
    re.compile(r"^(continue|more|explain|elaborate|tell me more)", re.IGNORECASE),
    re.compile(r"\b(for (it|this|that|these|those))\b", re.IGNORECASE),
)

QUESTION_INDICATORS: Tuple[str, ...] = (
    "what", "how", "why", "explain", "tell", "show", "help",
    "understand", "learn", "teach", "define", "describe",
)


class TopicModerator:
    """
    Decides ALLOW / REMIND / REDIRECT for a learner message.

    Algorithm:
    - Bypass (ALLOW) for general messages, the discovery phase, or no topic
    - Contextual follow-ups anchored in recent history are allowed
    - Otherwise score = min(1, 0.6*topic + 0.3*subject + 0.2 question bonus)
    - >= 0.6 ALLOW, >= 0.3 REMIND, below that REDIRECT
    """

    # Relevance bands and thresholds are empirical; keep them exact
    ALLOW_THRESHOLD = 0.6
    REMIND_THRESHOLD = 0.3
    CONTEXT_THRESHOLD = 0.4
    TOPIC_WEIGHT = 0.6
    SUBJECT_WEIGHT = 0.3
    QUESTION_BONUS = 0.2
    DISCOVERY_TURNS = 3
    CONTEXT_WINDOW = 3

    def is_general_message(self, message: str) -> bool:
        """Check if message is a greeting, thanks, farewell or meta question."""
        text = (message or "").strip()
        return any(pattern.search(text) for pattern in GENERAL_PATTERNS)

    def has_contextual_reference(self, message: str) -> bool:
        """Check if message refers back to earlier conversation."""
        text = (message or "").strip()
        return any(pattern.search(text) for pattern in CONTEXTUAL_PATTERNS)

    def has_question_indicator(self, text: str) -> bool:
        tokens = set(tokenize(text))
        return any(indicator in tokens for indicator in QUESTION_INDICATORS)

    def action_for_score(self, score: float) -> ModerationAction:
        """Map a relevance score onto its decision band (low ends inclusive)."""
        if score >= self.ALLOW_THRESHOLD:
            return ModerationAction.ALLOW
        if score >= self.REMIND_THRESHOLD:
            return ModerationAction.REMIND
        return ModerationAction.REDIRECT

    def calculate_relevance(
        self,
        text: str,
        topic_keywords: Set[str],
        subject_keywords: Set[str]
    ) -> float:
        """
        Weighted relevance of text to the topic and subject keyword sets.

        A text without keywords scores 0 plus at most the question bonus.
        """
        keywords = extract_keywords(text, STOP_WORDS)
        bonus = self.QUESTION_BONUS if self.has_question_indicator(text) else 0.0

        if not keywords:
            return min(1.0, bonus)

        topic_score = jaccard(keywords, topic_keywords) if topic_keywords else 0.0
        subject_score = jaccard(keywords, subject_keywords) if subject_keywords else 0.0

        base_score = (topic_score * self.TOPIC_WEIGHT) + (subject_score * self.SUBJECT_WEIGHT)
        return min(1.0, base_score + bonus)

    def check(self, message: str, context: TopicContext) -> ModerationResult:
        """
        Check if a learner message is relevant to the session topic.

        Args:
            message: Raw learner message
            context: Topic, subject, recent history, covered concepts, turn

        Returns:
            ModerationResult with action, score and (for REMIND/REDIRECT) guidance
        """
        topic = context.current_topic

        # Bypass checks
        if self.is_general_message(message):
            return self._bypass(topic, "general")
        if context.turn <= self.DISCOVERY_TURNS:
            return self._bypass(topic, "discovery")
        if not topic:
            return self._bypass(topic, "no_topic")

        subject_keywords = extract_keywords(context.subject, STOP_WORDS)

        # Contextual follow-up anchored in recent history
        if self.has_contextual_reference(message) and context.conversation_history:
            recent_context = " ".join(context.conversation_history[-self.CONTEXT_WINDOW:])
            context_score = self.calculate_relevance(
                recent_context,
                extract_keywords(topic, STOP_WORDS),
                subject_keywords
            )
            if context_score >= self.CONTEXT_THRESHOLD:
                logger.info(
                    f"🧭 [Moderator] Contextual follow-up allowed (context score: {context_score:.2f})"
                )
                return ModerationResult(
                    action=ModerationAction.ALLOW,
                    relevance_score=context_score,
                    detected_topic=topic,
                    bypass_reason="contextual",
                )

        topic_keywords = extract_keywords(topic, STOP_WORDS)
        for concept in context.concepts_covered:
            topic_keywords |= extract_keywords(concept, STOP_WORDS)

        score = self.calculate_relevance(message, topic_keywords, subject_keywords)
        action = self.action_for_score(score)
        logger.info(f"🧭 [Moderator] Topic relevance {score:.2f} for \"{topic}\" -> {action.value}")

        if action == ModerationAction.ALLOW:
            return ModerationResult(action=action, relevance_score=score, detected_topic=topic)

        if action == ModerationAction.REMIND:
            return ModerationResult(
                action=action,
                relevance_score=score,
                detected_topic="related",
                message=self.generate_reminder(context),
                suggestions=self.generate_suggestions(context),
            )

        return ModerationResult(
            action=action,
            relevance_score=score,
            detected_topic="unrelated",
            message=self.generate_redirect(context),
            suggestions=self.generate_suggestions(context),
        )

    def generate_reminder(self, context: TopicContext) -> str:
        """Gentle on-topic reminder (variant picked by turn, not at random)."""
        topic = context.current_topic
        subject = context.subject or "this course"
        messages = [
            f"I'll help with that! Just a reminder - we're focusing on **{topic}** in {subject}. "
            f"Let's keep building on what you're learning!",
            f"Sure! Quick note: We're currently studying **{topic}**. "
            f"I'll answer your question, but let's try to stay focused on our main topic.",
            f"I can help with that, though I notice it's slightly off our main focus of **{topic}**. "
            f"Let me answer, and then we can return to {topic}!",
        ]
        return messages[context.turn % len(messages)]

    def generate_redirect(self, context: TopicContext) -> str:
        topic = context.current_topic
        subject = context.subject or "this course"
        return (
            f"🎯 **Let's stay focused on {topic}!**\n\n"
            f"I notice your question is about a different topic. To help you learn more effectively, "
            f"let's keep our attention on **{topic}** in {subject}.\n\n"
            f"📚 **Why stay focused?**\n"
            f"- Better retention and understanding\n"
            f"- Faster mastery of concepts\n"
            f"- More structured learning path\n\n"
            f"💡 **What would you like to know about {topic}?**\n\n"
            f"If you'd like to learn about a different topic, you can start a new learning session anytime!"
        )

    def generate_suggestions(self, context: TopicContext) -> List[str]:
        topic = context.current_topic
        subject = context.subject or "this subject"
        return [
            f"What are the key concepts in {topic}?",
            f"Can you explain {topic} with examples?",
            f"What are practical applications of {topic}?",
            f"How does {topic} relate to other topics in {subject}?",
            f"Can you give me practice problems for {topic}?",
        ]

    def _bypass(self, topic: Optional[str], reason: str) -> ModerationResult:
        return ModerationResult(
            action=ModerationAction.ALLOW,
            relevance_score=1.0,
            detected_topic=topic or "general",
            bypass_reason=reason,
        )
