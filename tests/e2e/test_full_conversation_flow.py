"""
End-to-End Tests for Full Conversation Flow

Tests a complete tutoring conversation through the service facade:
- Discovery phase → topic-anchored tutoring
- Off-topic redirect without a model call
- Reminder for loosely related questions
- Concept tracking and state persistence across turns
"""

import pytest
import asyncio
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "anchored_tutor", "src"))

from anchored_tutor.tutor_service import TutorService


class ScriptedModel:
    """Model double that replays a scripted tutor conversation."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.prompts = []

    async def generate(self, prompt, parameters=None):
        self.prompts.append(prompt)
        await asyncio.sleep(0)
        return self.replies.pop(0)


TUTOR_REPLIES = [
    "Hi! Today we'll study limits in calculus. Ask me anything about how functions behave near a point.",
    "A **limit** describes the value a function approaches as x approaches a point.\nNext topics: One-sided limits, Continuity",
    "The **squeeze theorem** bounds a tricky function between two simpler ones with the same limit.",
    "We can compute limits algebraically by factoring and cancelling, then substituting the point.",
]


class TestFullConversationFlow:
    """Test complete conversation flows."""

    @pytest.fixture
    def model(self):
        return ScriptedModel(TUTOR_REPLIES)

    @pytest.fixture
    def service(self, model):
        return TutorService.build(model, timeout=1.0)

    @pytest.mark.asyncio
    async def test_calculus_limits_conversation(self, service, model):
        """
        Test complete flow: discovery → tutoring → redirect → reminder.

        Expected:
        1. Turn 1 "hi" is allowed and answered by the model
        2. Turns 2-3 are allowed during discovery
        3. Turn 4 off-topic question is redirected without a model call
        4. Turn 5 loosely related question is answered with a reminder
        """
        user_id = "student_1"

        # Turn 1: greeting during discovery
        response = await service.chat({
            "message": "hi",
            "user_id": user_id,
            "subject": "Calculus",
            "topic": "Limits",
        })
        session_id = response.session.session_id

        assert response.outcome == "answered"
        assert response.session.message_count == 1
        assert len(model.prompts) == 1

        # Turns 2-3: discovery
        response = await service.chat({"message": "What is a limit?", "user_id": user_id, "session_id": session_id})
        assert response.session.concepts_covered == ["limit"]
        assert response.session.recommended_topics == ["One-sided limits", "Continuity"]
        assert "Next topics" not in response.message.content

        response = await service.chat({"message": "Any tricks for limits?", "user_id": user_id, "session_id": session_id})
        assert response.session.concepts_covered == ["limit", "squeeze theorem"]
        assert len(model.prompts) == 3

        # Turn 4: off-topic, redirected without calling the model
        response = await service.chat({
            "message": "What's your favorite food?",
            "user_id": user_id,
            "session_id": session_id,
        })

        assert response.outcome == "moderation_blocked"
        assert response.moderation["action"] == "redirect"
        assert response.moderation["relevance_score"] < 0.3
        assert "Limits" in response.message.content
        assert response.message.message_type == "redirect"
        assert response.session.message_count == 4
        assert len(model.prompts) == 3

        # Turn 5: related question answered with a reminder
        response = await service.chat({"message": "explain limits", "user_id": user_id, "session_id": session_id})

        assert response.outcome == "reminded"
        assert response.message.content.endswith(TUTOR_REPLIES[3])
        assert "**Limits**" in response.message.content
        assert len(model.prompts) == 4

        # State persisted across turns
        summary = await service.session_summary(session_id, user_id)
        assert summary.message_count == 5
        assert summary.total_messages == 10
        assert summary.title == "hi"
        assert summary.status == "active"

    @pytest.mark.asyncio
    async def test_previous_concepts_reach_prompt(self, service, model):
        """Concepts from earlier turns are passed back to the model."""
        first = await service.chat({"message": "hi", "user_id": "student_2", "subject": "Calculus", "topic": "Limits"})
        await service.chat({"message": "What is a limit?", "user_id": "student_2", "session_id": first.session.session_id})
        await service.chat({"message": "Any tricks?", "user_id": "student_2", "session_id": first.session.session_id})

        assert "Previous Concepts: limit" in model.prompts[2]
        assert "Student: What is a limit?" in model.prompts[2]

    @pytest.mark.asyncio
    async def test_sessions_are_isolated(self, service):
        """Two learners never see each other's sessions."""
        first = await service.chat({"message": "hi", "user_id": "student_a", "subject": "Calculus"})
        await service.chat({"message": "hi", "user_id": "student_b", "subject": "Physics"})

        sessions_a = await service.list_sessions("student_a")
        assert [s.session_id for s in sessions_a] == [first.session.session_id]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
