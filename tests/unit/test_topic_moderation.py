"""
Unit Tests for Topic Relevance Moderator

Tests bypass rules, relevance scoring and the ALLOW / REMIND / REDIRECT bands.
"""

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "anchored_tutor", "src"))

from anchored_tutor.topic_moderation import ModerationAction, TopicContext, TopicModerator


def limits_context(turn=4, history=None, concepts=None, topic="Limits"):
    return TopicContext(
        current_topic=topic,
        subject="Calculus",
        conversation_history=history or [],
        concepts_covered=concepts or [],
        turn=turn,
    )


class TestBypassRules:
    """Test suite for messages that skip scoring."""

    @pytest.fixture
    def moderator(self):
        return TopicModerator()

    @pytest.mark.parametrize("message", ["hi", "Hello there", "Thanks!", "bye", "Who are you?", "what can you teach"])
    def test_general_messages_allowed(self, moderator, message):
        result = moderator.check(message, limits_context(turn=10))

        assert result.action == ModerationAction.ALLOW
        assert result.bypass_reason == "general"

    def test_discovery_phase_allows_anything(self, moderator):
        for turn in (1, 2, 3):
            result = moderator.check("What's your favorite food?", limits_context(turn=turn))
            assert result.action == ModerationAction.ALLOW
            assert result.bypass_reason == "discovery"

    def test_discovery_ends_after_third_turn(self, moderator):
        result = moderator.check("What's your favorite food?", limits_context(turn=4))
        assert result.action == ModerationAction.REDIRECT

    def test_no_topic_allows(self, moderator):
        result = moderator.check("What's your favorite food?", limits_context(turn=5, topic=None))

        assert result.action == ModerationAction.ALLOW
        assert result.bypass_reason == "no_topic"
        assert result.detected_topic == "general"


class TestRelevanceScoring:
    """Test suite for weighted relevance and decision bands."""

    @pytest.fixture
    def moderator(self):
        return TopicModerator()

    def test_band_boundaries(self, moderator):
        assert moderator.action_for_score(0.29) == ModerationAction.REDIRECT
        assert moderator.action_for_score(0.30) == ModerationAction.REMIND
        assert moderator.action_for_score(0.59) == ModerationAction.REMIND
        assert moderator.action_for_score(0.60) == ModerationAction.ALLOW
        assert moderator.action_for_score(1.0) == ModerationAction.ALLOW

    def test_stop_word_only_message(self, moderator):
        topic, subject = {"limits"}, {"calculus"}

        assert moderator.calculate_relevance("is the of", topic, subject) == 0.0
        # "what" is a stop word but still a question indicator
        assert moderator.calculate_relevance("what is the", topic, subject) == pytest.approx(0.2)

    def test_score_capped_at_one(self, moderator):
        score = moderator.calculate_relevance("explain limits calculus", {"limits", "calculus", "explain"}, {"limits", "calculus", "explain"})
        assert score == 1.0

    def test_exact_topic_match_allowed(self, moderator):
        result = moderator.check("Limits?", limits_context())

        assert result.action == ModerationAction.ALLOW
        assert result.relevance_score == pytest.approx(0.6)
        assert result.detected_topic == "Limits"
        assert result.message is None

    def test_partial_match_reminds(self, moderator):
        context = limits_context()
        result = moderator.check("explain limits", context)

        assert result.action == ModerationAction.REMIND
        assert result.relevance_score == pytest.approx(0.5)
        assert result.detected_topic == "related"
        assert "Limits" in result.message
        assert len(result.suggestions) == 5

    def test_unrelated_redirects(self, moderator):
        result = moderator.check("What's your favorite food?", limits_context())

        assert result.action == ModerationAction.REDIRECT
        assert result.relevance_score < 0.3
        assert not result.allowed
        assert "Limits" in result.message
        assert result.suggestions[0] == "What are the key concepts in Limits?"

    def test_covered_concepts_extend_topic(self, moderator):
        without = moderator.check("squeeze theorem", limits_context())
        with_concepts = moderator.check("squeeze theorem", limits_context(concepts=["Squeeze theorem"]))

        assert without.action == ModerationAction.REDIRECT
        assert with_concepts.action == ModerationAction.REMIND


class TestContextualFollowUps:
    """Test suite for pronoun / continuation follow-ups."""

    @pytest.fixture
    def moderator(self):
        return TopicModerator()

    def test_anchored_follow_up_allowed(self, moderator):
        result = moderator.check("Can you elaborate on that?", limits_context(history=["limits calculus"]))

        assert result.action == ModerationAction.ALLOW
        assert result.bypass_reason == "contextual"
        assert result.relevance_score == pytest.approx(0.45)

    def test_unanchored_follow_up_scored_normally(self, moderator):
        result = moderator.check("tell me more about that", limits_context(history=["favorite food pizza"]))

        assert result.action == ModerationAction.REDIRECT
        assert result.bypass_reason is None

    def test_only_recent_history_counts(self, moderator):
        history = ["limits calculus", "pizza toppings", "pasta sauce", "cheese types"]
        result = moderator.check("Can you elaborate on that?", limits_context(history=history))

        assert result.bypass_reason != "contextual"

    def test_has_contextual_reference(self, moderator):
        assert moderator.has_contextual_reference("what about this one")
        assert moderator.has_contextual_reference("continue please")
        assert not moderator.has_contextual_reference("define derivative")


class TestGuidanceText:
    """Test suite for reminders, redirects and annotations."""

    @pytest.fixture
    def moderator(self):
        return TopicModerator()

    def test_reminder_varies_by_turn(self, moderator):
        reminders = {moderator.generate_reminder(limits_context(turn=turn)) for turn in (4, 5, 6)}

        assert len(reminders) == 3
        assert all("**Limits**" in reminder for reminder in reminders)

    def test_reminder_deterministic(self, moderator):
        assert moderator.generate_reminder(limits_context(turn=7)) == moderator.generate_reminder(limits_context(turn=7))

    def test_redirect_names_topic_and_subject(self, moderator):
        text = moderator.generate_redirect(limits_context())
        assert "Let's stay focused on Limits!" in text
        assert "Calculus" in text

    def test_annotation(self, moderator):
        annotation = moderator.check("What's your favorite food?", limits_context()).to_annotation()

        assert annotation["type"] == "topic"
        assert annotation["action"] == "redirect"
        assert annotation["allowed"] is False
        assert annotation["detected_topic"] == "unrelated"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
