"""
Error Taxonomy

Exceptions raised by the session engine. Only ValidationError, NotFoundError,
ModelUnavailable and MaxAttemptsExceeded ever reach callers. Moderation and
safety outcomes are returned as tagged turn results (see TurnOutcome) and
parse-repair failures are replaced by fallback content.
"""

from typing import Optional


class TutorError(Exception):
    """Base class for all engine errors."""


class ValidationError(TutorError):
    """Missing or malformed required input."""


class NotFoundError(TutorError):
    """Unknown session, assessment or attempt."""

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class ModelUnavailable(TutorError):
    """The generative model call failed or exceeded its timeout."""

    def __init__(self, message: str = "Failed to process message", cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class MaxAttemptsExceeded(TutorError):
    """The learner already used every allowed attempt."""

    def __init__(self, assessment_id: str, max_attempts: int):
        super().__init__(f"Maximum attempts reached for assessment {assessment_id} ({max_attempts})")
        self.assessment_id = assessment_id
        self.max_attempts = max_attempts


class RepairFailure(TutorError):
    """Model output could not be repaired into structured data.

    Raised inside the parser only; callers receive fallback content instead.
    """
