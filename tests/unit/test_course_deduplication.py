"""
Unit Tests for Course De-duplication

Tests duplicate course/topic detection and the create / reuse / extend
decision.
"""

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "anchored_tutor", "src"))

from anchored_tutor.course_deduplication import (
    CourseRecord,
    CreationAction,
    TopicRecord,
    check_before_course_creation,
    find_course_to_extend,
    find_similar_course,
    find_similar_topic_in_course,
)


@pytest.fixture
def catalog():
    return [
        CourseRecord(
            course_id="c1",
            title="Introduction to Algebra",
            subject="Mathematics",
            difficulty="beginner",
            topics=[TopicRecord("Variables"), TopicRecord("Linear equations")],
        ),
        CourseRecord(
            course_id="c2",
            title="Calculus I",
            subject="Mathematics",
            difficulty="intermediate",
            topics=[TopicRecord("Limits"), TopicRecord("Derivatives")],
        ),
        CourseRecord(
            course_id="c3",
            title="Basics of Linear Algebra",
            subject="Mathematics",
            difficulty="intermediate",
        ),
        CourseRecord(
            course_id="c4",
            title="Organic Chemistry",
            subject="Chemistry",
            difficulty="advanced",
            is_active=False,
        ),
    ]


class TestFindSimilarCourse:
    """Test suite for course-level duplicate detection."""

    def test_exact_match_case_insensitive(self, catalog):
        match = find_similar_course("calculus i", "MATHEMATICS", catalog)

        assert match.exists
        assert match.course.course_id == "c2"
        assert match.similarity_score == 1.0

    def test_intro_is_not_introduction(self, catalog):
        """Literal token sets differ, so these are not duplicates."""
        match = find_similar_course("Intro to Algebra", "Mathematics", catalog)
        assert not match.exists

    def test_reordered_title_is_duplicate(self, catalog):
        match = find_similar_course("Linear Algebra Basics", "Mathematics", catalog)

        assert match.exists
        assert match.course.course_id == "c3"
        assert "100% similar" in match.reason

    def test_other_subject_ignored(self, catalog):
        assert not find_similar_course("Linear Algebra Basics", "Physics", catalog).exists

    def test_inactive_courses_ignored(self, catalog):
        assert not find_similar_course("Organic Chemistry", "Chemistry", catalog).exists


class TestTopicsAndExtension:
    """Test suite for topic duplicates and course extension."""

    def test_similar_topic(self):
        topics = [TopicRecord("Limits and Continuity")]

        assert find_similar_topic_in_course("continuity and limits", topics).exists
        assert find_similar_topic_in_course("LIMITS AND CONTINUITY", topics).similarity_score == 1.0
        assert not find_similar_topic_in_course("Integrals", topics).exists

    def test_extend_when_some_topics_are_new(self, catalog):
        candidate = find_course_to_extend("Mathematics", "intermediate", ["Limits", "Integrals"], catalog)

        assert candidate.can_extend
        assert candidate.course.course_id == "c2"

    def test_no_extension_when_all_covered_or_all_new(self, catalog):
        assert not find_course_to_extend("Mathematics", "intermediate", ["Limits", "Derivatives"], catalog).can_extend
        assert not find_course_to_extend("Mathematics", "advanced", ["Limits", "Integrals"], catalog).can_extend


class TestCreationDecision:
    """Test suite for check_before_course_creation."""

    def test_use_existing(self, catalog):
        decision = check_before_course_creation("Introduction to Algebra", "Mathematics", "beginner", [], catalog)

        assert not decision.should_create
        assert decision.action == CreationAction.USE_EXISTING
        assert decision.existing_course.course_id == "c1"

    def test_extend_existing(self, catalog):
        decision = check_before_course_creation(
            "Integration Techniques", "Mathematics", "intermediate", ["Limits", "Integrals"], catalog
        )

        assert decision.action == CreationAction.EXTEND_EXISTING
        assert decision.existing_course.course_id == "c2"
        assert decision.new_topics_to_add == ["Integrals"]

    def test_create_new(self, catalog):
        decision = check_before_course_creation("Intro to Algebra", "Mathematics", "beginner", ["Polynomials"], catalog)

        assert decision.should_create
        assert decision.action == CreationAction.CREATE_NEW


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
