"""
Content Safety Filter

Static pattern classifier for explicitly harmful requests. Only explicit
matches are rejected; off-topic but benign text is approved.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Pattern, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SafetyPredicate:
    """One independent harm category and the pattern that detects it."""
    category: str
    pattern: Pattern

    def matches(self, text: str) -> bool:
        return bool(self.pattern.search(text or ""))


@dataclass
class SafetyVerdict:
    """Result of classifying a message."""
    approved: bool
    reason: Optional[str] = None
    category: Optional[str] = None
    response: Optional[str] = None
    relevant_subjects: List[str] = field(default_factory=list)


# Checked in order; the first match decides the category
SAFETY_PREDICATES: Tuple[SafetyPredicate, ...] = (
    SafetyPredicate("violence", re.compile(r"\b(violence|kill|murder|harm|suicide|self[-\s]harm)\b", re.IGNORECASE)),
    SafetyPredicate("illegal_activity", re.compile(r"\b(illegal|drugs|cocaine|heroin|marijuana sale|weapon)\b", re.IGNORECASE)),
    SafetyPredicate("explicit_content", re.compile(r"\b(explicit|pornographic|sexual|nude|xxx)\b", re.IGNORECASE)),
    SafetyPredicate("hate_speech", re.compile(r"\b(hate speech|racist|discrimination|offensive slur)\b", re.IGNORECASE)),
)

DEFAULT_SUBJECTS = [
    "Mathematics", "Science", "Physics", "Chemistry", "Biology",
    "Computer Science", "Programming", "History", "Literature",
    "Geography", "Economics", "Engineering", "Medicine",
    "Psychology", "Sociology", "Philosophy", "Art", "Music",
]

REJECTION_REASON = "I'm designed to help with educational content and cannot assist with inappropriate topics."


class ContentSafetyFilter:
    """
    Classifies text against an ordered set of explicit-harm predicates.

    Stateless: the predicate tuple and subject list are fixed at construction.
    """

    def __init__(
        self,
        predicates: Tuple[SafetyPredicate, ...] = SAFETY_PREDICATES,
        allowed_subjects: Optional[List[str]] = None
    ):
        self.predicates = predicates
        self.allowed_subjects = list(allowed_subjects or DEFAULT_SUBJECTS)

    def classify(self, text: str) -> SafetyVerdict:
        """
        Classify a raw learner message.

        Returns:
            SafetyVerdict with approved=False only for explicit harm matches
        """
        for predicate in self.predicates:
            if predicate.matches(text):
                logger.warning(f"🛡️ [SafetyFilter] Rejected message (category={predicate.category})")
                return SafetyVerdict(
                    approved=False,
                    reason=REJECTION_REASON,
                    category=predicate.category,
                    response="I'm here to help you learn! Let's focus on educational topics that can support your studies.",
                    relevant_subjects=self.allowed_subjects[:5],
                )
        return SafetyVerdict(approved=True, relevant_subjects=list(self.allowed_subjects))

    def build_moderation_response(self, verdict: SafetyVerdict) -> str:
        """Learner-facing text for a rejected message."""
        response = f"I'd be happy to help you learn! However, I can't help with that request. {verdict.reason or ''}".strip()
        if verdict.relevant_subjects:
            response += f"\n\nI can help you with topics related to: {', '.join(verdict.relevant_subjects)}"
        return response
