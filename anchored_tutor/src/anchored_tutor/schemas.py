"""
Request / Response Models

Pydantic models for the caller-facing surface of the engine. Transport is
left to the caller; these only validate input and shape output.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator


class ChatRequest(BaseModel):
    message: str
    user_id: str = Field(..., min_length=1)
    session_id: Optional[str] = None
    subject: Optional[str] = None
    topic: Optional[str] = None
    difficulty: str = "normal"
    learning_mode: str = "teaching"
    timeout: Optional[float] = Field(None, gt=0)

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Message is required")
        return value


class MessagePayload(BaseModel):
    content: str
    is_user: bool
    message_type: str
    timestamp: datetime
    moderation: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = {}


class SessionSummary(BaseModel):
    session_id: str
    title: Optional[str]
    subject: str
    current_topic: Optional[str]
    status: str
    message_count: int
    total_messages: int
    concepts_covered: List[str]
    recommended_topics: List[str]
    generated_assessment_ids: List[str]
    last_activity: datetime


class ChatResponse(BaseModel):
    outcome: str
    message: MessagePayload
    session: SessionSummary
    moderation: Optional[Dict[str, Any]] = None


class GenerateAssessmentRequest(BaseModel):
    """Either session_id or subject is required."""
    user_id: str = Field(..., min_length=1)
    session_id: Optional[str] = None
    subject: Optional[str] = None
    topic: Optional[str] = None
    difficulty: Optional[str] = None
    question_count: int = Field(5, ge=1)
    question_types: Optional[List[str]] = None
    timeout: Optional[float] = Field(None, gt=0)

    @model_validator(mode="after")
    def session_or_subject(self):
        if not self.session_id and not self.subject:
            raise ValueError("Either session_id or subject is required")
        return self


class AssessmentPayload(BaseModel):
    """Assessment as shown to learners (no answers or explanations)."""
    assessment_id: str
    title: str
    subject: str
    topic: Optional[str]
    difficulty: str
    question_count: int
    time_limit: Optional[int]
    passing_score: float
    max_attempts: int
    used_fallback: bool
    questions: List[Dict[str, Any]]


class AnswerPayload(BaseModel):
    question_id: Optional[str] = None
    user_answer: Union[str, float, bool, None] = None
    time_spent: float = Field(0, ge=0)


class SubmitAttemptRequest(BaseModel):
    assessment_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    answers: List[AnswerPayload]
    attempt_id: Optional[str] = None
    time_spent: float = Field(0, ge=0)


class ScorePayload(BaseModel):
    raw: int
    percentage: float
    grade: str


class AttemptResponse(BaseModel):
    attempt_id: str
    assessment_id: str
    status: str
    score: ScorePayload
    passed: bool
    analysis: Dict[str, Any]
