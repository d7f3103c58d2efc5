"""
Course De-duplication

Detects duplicate courses and topics by title before a new course is
created. Course records are supplied by the caller; catalog storage lives
outside the engine.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from anchored_tutor.text_similarity import similarity

logger = logging.getLogger(__name__)

COURSE_SIMILARITY_THRESHOLD = 0.70
TOPIC_SIMILARITY_THRESHOLD = 0.75


@dataclass
class TopicRecord:
    title: str


@dataclass
class CourseRecord:
    """Minimal view of a catalog course."""
    course_id: str
    title: str
    subject: str
    difficulty: str
    topics: List[TopicRecord] = field(default_factory=list)
    is_active: bool = True


@dataclass
class CourseMatch:
    exists: bool
    course: Optional[CourseRecord] = None
    similarity_score: Optional[float] = None
    reason: Optional[str] = None


@dataclass
class TopicMatch:
    exists: bool
    topic: Optional[TopicRecord] = None
    similarity_score: Optional[float] = None
    reason: Optional[str] = None


@dataclass
class ExtensionCandidate:
    can_extend: bool
    course: Optional[CourseRecord] = None
    reason: Optional[str] = None


class CreationAction(Enum):
    CREATE_NEW = "create_new"
    USE_EXISTING = "use_existing"
    EXTEND_EXISTING = "extend_existing"


@dataclass
class CreationDecision:
    should_create: bool
    action: CreationAction
    message: str
    existing_course: Optional[CourseRecord] = None
    new_topics_to_add: List[str] = field(default_factory=list)


def _percent(score: float) -> int:
    return int(score * 100 + 0.5)


def find_similar_course(title: str, subject: str, courses: List[CourseRecord]) -> CourseMatch:
    """
    Find an active course duplicating the given title within the subject.

    Exact case-insensitive title+subject match wins; otherwise the first
    course in the subject whose title similarity is >= 0.70.
    """
    active = [course for course in courses if course.is_active]

    for course in active:
        if course.title.lower() == title.lower() and course.subject.lower() == subject.lower():
            logger.info(f"📚 [Dedup] Exact course match found: {course.title}")
            return CourseMatch(
                exists=True,
                course=course,
                similarity_score=1.0,
                reason="Exact match: Course with same title and subject already exists",
            )

    for course in active:
        if subject.lower() not in course.subject.lower():
            continue
        score = similarity(title, course.title)
        if score >= COURSE_SIMILARITY_THRESHOLD:
            logger.info(f"📚 [Dedup] Similar course found: \"{course.title}\" ({_percent(score)}% similar to \"{title}\")")
            return CourseMatch(
                exists=True,
                course=course,
                similarity_score=score,
                reason=f"Course \"{course.title}\" is {_percent(score)}% similar",
            )

    return CourseMatch(exists=False)


def find_similar_topic_in_course(topic_title: str, existing_topics: List[TopicRecord]) -> TopicMatch:
    """Find a topic duplicating topic_title (exact match or similarity >= 0.75)."""
    for topic in existing_topics:
        if topic.title.lower() == topic_title.lower():
            return TopicMatch(
                exists=True,
                topic=topic,
                similarity_score=1.0,
                reason=f"Topic \"{topic.title}\" already exists in this course",
            )

        score = similarity(topic_title, topic.title)
        if score >= TOPIC_SIMILARITY_THRESHOLD:
            return TopicMatch(
                exists=True,
                topic=topic,
                similarity_score=score,
                reason=f"Topic \"{topic.title}\" is {_percent(score)}% similar",
            )

    return TopicMatch(exists=False)


def _new_topics(course: CourseRecord, topic_titles: List[str]) -> List[str]:
    return [title for title in topic_titles if not find_similar_topic_in_course(title, course.topics).exists]


def find_course_to_extend(
    subject: str,
    difficulty: str,
    new_topics: List[str],
    courses: List[CourseRecord]
) -> ExtensionCandidate:
    """
    Find a course of the same subject and difficulty that already covers
    some, but not all, of the new topics.
    """
    candidates = [
        course for course in courses
        if course.is_active
        and course.subject.lower() == subject.lower()
        and course.difficulty.lower() == difficulty.lower()
    ]

    for course in candidates:
        truly_new = len(_new_topics(course, new_topics))
        if 0 < truly_new < len(new_topics):
            logger.info(f"📚 [Dedup] Course \"{course.title}\" can be extended with {truly_new} new topics")
            return ExtensionCandidate(
                can_extend=True,
                course=course,
                reason=(
                    f"Course \"{course.title}\" already covers {len(new_topics) - truly_new} topics. "
                    f"Can add {truly_new} new topics."
                ),
            )

    return ExtensionCandidate(can_extend=False)


def check_before_course_creation(
    title: str,
    subject: str,
    difficulty: str,
    topic_titles: List[str],
    courses: List[CourseRecord]
) -> CreationDecision:
    """
    Decide whether to create a new course, reuse a duplicate, or extend an
    overlapping course with only the topics it lacks.
    """
    match = find_similar_course(title, subject, courses)
    if match.exists:
        return CreationDecision(
            should_create=False,
            action=CreationAction.USE_EXISTING,
            existing_course=match.course,
            message=f"{match.reason}. Using existing course instead of creating duplicate.",
        )

    extension = find_course_to_extend(subject, difficulty, topic_titles, courses)
    if extension.can_extend and extension.course:
        return CreationDecision(
            should_create=False,
            action=CreationAction.EXTEND_EXISTING,
            existing_course=extension.course,
            message=extension.reason or "Course can be extended with new topics",
            new_topics_to_add=_new_topics(extension.course, topic_titles),
        )

    return CreationDecision(
        should_create=True,
        action=CreationAction.CREATE_NEW,
        message="No similar course found. Creating new course.",
    )
