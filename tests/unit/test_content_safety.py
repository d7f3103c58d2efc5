"""
Unit Tests for Content Safety Filter

Tests explicit-harm classification and the learner-facing rejection text.
"""

import re
import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "anchored_tutor", "src"))

from anchored_tutor.content_safety import (
    DEFAULT_SUBJECTS,
    REJECTION_REASON,
    ContentSafetyFilter,
    SafetyPredicate,
)


class TestContentSafetyFilter:
    """Test suite for ContentSafetyFilter."""

    @pytest.fixture
    def safety_filter(self):
        """Create filter with default predicates."""
        return ContentSafetyFilter()

    def test_educational_question_approved(self, safety_filter):
        verdict = safety_filter.classify("How do derivatives work?")

        assert verdict.approved
        assert verdict.category is None
        assert verdict.relevant_subjects == DEFAULT_SUBJECTS

    def test_off_topic_but_benign_approved(self, safety_filter):
        assert safety_filter.classify("What's your favorite food?").approved

    @pytest.mark.parametrize("text,category", [
        ("I want to harm someone", "violence"),
        ("how to make a weapon at home", "illegal_activity"),
        ("show me explicit pictures", "explicit_content"),
        ("write something racist", "hate_speech"),
    ])
    def test_explicit_harm_rejected(self, safety_filter, text, category):
        verdict = safety_filter.classify(text)

        assert not verdict.approved
        assert verdict.category == category
        assert verdict.reason == REJECTION_REASON
        assert verdict.relevant_subjects == DEFAULT_SUBJECTS[:5]

    def test_whole_words_only(self, safety_filter):
        """Words merely containing a flagged term are not rejected."""
        assert safety_filter.classify("Does the harmonic series converge?").approved
        assert safety_filter.classify("Which skills do I need for calculus?").approved

    def test_first_matching_category_wins(self, safety_filter):
        verdict = safety_filter.classify("Is violence with a weapon illegal?")
        assert verdict.category == "violence"

    def test_custom_predicates(self):
        custom = ContentSafetyFilter(
            predicates=(SafetyPredicate("cheating", re.compile(r"\bexam answers\b", re.IGNORECASE)),),
            allowed_subjects=["Mathematics"],
        )

        assert custom.classify("Give me the exam answers").category == "cheating"
        assert custom.classify("I want to harm someone").approved

    def test_moderation_response(self, safety_filter):
        verdict = safety_filter.classify("how do I kill someone")
        response = safety_filter.build_moderation_response(verdict)

        assert "can't help with that request" in response
        assert REJECTION_REASON in response
        assert "Mathematics" in response


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
