"""Topic-anchored tutoring session engine"""
from .errors import MaxAttemptsExceeded, ModelUnavailable, NotFoundError, TutorError, ValidationError
from .tutor_orchestrator import TurnOutcome, TutorOrchestrator
from .tutor_service import TutorService

__all__ = [
    "TutorService",
    "TutorOrchestrator",
    "TurnOutcome",
    "TutorError",
    "ValidationError",
    "NotFoundError",
    "ModelUnavailable",
    "MaxAttemptsExceeded",
]
