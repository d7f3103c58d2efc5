"""
Conversation Session Data Model

Defines the ConversationSession dataclass and its lifecycle transitions:
active <-> paused, active -> completed, active/paused -> archived.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from anchored_tutor.errors import ValidationError

TITLE_LENGTH = 50
CONTEXT_SUMMARY_MESSAGES = 10


class SessionStatus(Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class MessageType(Enum):
    TEXT = "text"
    REDIRECT = "redirect"
    MODERATED = "moderated"
    FALLBACK = "fallback"


@dataclass
class Message:
    """One learner or tutor message."""
    content: str
    is_user: bool
    message_type: MessageType = MessageType.TEXT
    timestamp: datetime = field(default_factory=datetime.now)
    moderation: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ConceptCoverage:
    concept: str
    confidence: float  # 0-1
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class SessionContext:
    """Teaching context carried across turns."""
    difficulty: str = "normal"
    teaching_mode: str = "normal"
    previous_concepts: List[str] = field(default_factory=list)  # Ordered, no duplicates
    session_type: str = "teaching"
    message_count: int = 0  # Learner turns processed


@dataclass
class ConversationSession:
    """Tutoring conversation anchored to a subject and current topic."""
    session_id: str
    user_id: str
    subject: str = "General Discussion"
    current_topic: Optional[str] = None
    context: SessionContext = field(default_factory=SessionContext)
    messages: List[Message] = field(default_factory=list)
    concepts_covered: List[ConceptCoverage] = field(default_factory=list)
    status: SessionStatus = SessionStatus.ACTIVE
    title: Optional[str] = None
    recommended_topics: List[str] = field(default_factory=list)
    generated_assessment_ids: List[str] = field(default_factory=list)
    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    total_duration: Optional[int] = None  # Minutes
    last_activity: datetime = field(default_factory=datetime.now)
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def is_open(self) -> bool:
        """Open sessions (active or paused) still accept turns."""
        return self.status in (SessionStatus.ACTIVE, SessionStatus.PAUSED)

    def add_message(self, message: Message):
        self.messages.append(message)
        self.last_activity = message.timestamp

        if not self.title and message.is_user:
            content = message.content
            self.title = content[:TITLE_LENGTH] + ("..." if len(content) > TITLE_LENGTH else "")

    def merge_concept(self, concept: str, confidence: float, timestamp: Optional[datetime] = None):
        """
        Record a covered concept.

        Existing concepts keep the higher confidence and get a fresh
        timestamp; new concepts are appended.
        """
        confidence = max(0.0, min(1.0, confidence))
        timestamp = timestamp or datetime.now()

        for covered in self.concepts_covered:
            if covered.concept.lower() == concept.lower():
                covered.confidence = max(covered.confidence, confidence)
                covered.timestamp = timestamp
                break
        else:
            self.concepts_covered.append(ConceptCoverage(concept=concept, confidence=confidence, timestamp=timestamp))

        if concept.lower() not in (known.lower() for known in self.context.previous_concepts):
            self.context.previous_concepts.append(concept)

    def add_recommended_topics(self, topics: List[str]):
        for topic in topics:
            if topic and topic not in self.recommended_topics:
                self.recommended_topics.append(topic)

    def _require(self, allowed: tuple, action: str):
        if self.status not in allowed:
            raise ValidationError(f"Cannot {action} a session that is {self.status.value}")

    def pause(self):
        self._require((SessionStatus.ACTIVE,), "pause")
        self.status = SessionStatus.PAUSED

    def resume(self):
        self._require((SessionStatus.PAUSED,), "resume")
        self.status = SessionStatus.ACTIVE
        self.last_activity = datetime.now()

    def end(self):
        """Complete the session and compute its duration in minutes."""
        self._require((SessionStatus.ACTIVE,), "end")
        self.status = SessionStatus.COMPLETED
        self.end_time = datetime.now()
        minutes = (self.end_time - self.start_time).total_seconds() / 60
        self.total_duration = int(math.floor(minutes + 0.5))

    def archive(self):
        self._require((SessionStatus.ACTIVE, SessionStatus.PAUSED), "archive")
        self.status = SessionStatus.ARCHIVED

    def concept_names(self) -> List[str]:
        return [covered.concept for covered in self.concepts_covered]

    def recent_history(self, limit: int = CONTEXT_SUMMARY_MESSAGES) -> List[Message]:
        return self.messages[-limit:] if limit > 0 else []

    def context_summary(self) -> Dict[str, Any]:
        """Condensed context handed to the model (last 10 messages)."""
        return {
            "subject": self.subject,
            "current_topic": self.current_topic,
            "recent_messages": [
                {"content": msg.content, "is_user": msg.is_user, "timestamp": msg.timestamp.isoformat()}
                for msg in self.recent_history()
            ],
            "concepts_covered": self.concept_names(),
            "difficulty": self.context.difficulty,
            "teaching_mode": self.context.teaching_mode,
            "session_type": self.context.session_type,
        }

    def summary(self) -> Dict[str, Any]:
        """Caller-facing session summary returned with every turn."""
        return {
            "session_id": self.session_id,
            "title": self.title,
            "subject": self.subject,
            "current_topic": self.current_topic,
            "status": self.status.value,
            "message_count": self.context.message_count,
            "total_messages": len(self.messages),
            "concepts_covered": self.concept_names(),
            "recommended_topics": list(self.recommended_topics),
            "generated_assessment_ids": list(self.generated_assessment_ids),
            "last_activity": self.last_activity.isoformat(),
        }
