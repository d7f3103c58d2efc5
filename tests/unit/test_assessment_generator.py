"""
Unit Tests for Assessment Generator

Tests request building (count cap, type validation), prompt content,
repair of model output and persistence of the result.
"""

import json
import asyncio
import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "anchored_tutor", "src"))

from anchored_tutor.assessment_generator import AssessmentGenerator, MAX_SAFE_QUESTION_COUNT, cap_question_count
from anchored_tutor.assessment_manager import AssessmentManager
from anchored_tutor.errors import ModelUnavailable, ValidationError


class FakeModel:
    """Model double returning queued replies and recording prompts."""

    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.prompts = []
        self.parameters = []

    async def generate(self, prompt, parameters=None):
        self.prompts.append(prompt)
        self.parameters.append(parameters)
        await asyncio.sleep(0)
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, Exception):
            raise reply
        return reply


def quiz_reply(count):
    return json.dumps({
        "title": "Limits Quiz",
        "questions": [
            {
                "id": f"q{i + 1}",
                "type": "numerical",
                "question": f"What is {i} + 1?",
                "correctAnswer": i + 1,
                "concepts": ["Arithmetic"],
            }
            for i in range(count)
        ],
    })


class TestBuildRequest:
    """Test suite for request validation and capping."""

    @pytest.fixture
    def generator(self):
        return AssessmentGenerator(FakeModel(), AssessmentManager())

    def test_cap_question_count(self):
        assert cap_question_count(20) == MAX_SAFE_QUESTION_COUNT == 6
        assert cap_question_count(4) == 4
        assert cap_question_count(0) == 1

    def test_subject_required(self, generator):
        with pytest.raises(ValidationError):
            generator.build_request(subject="  ")

    def test_unknown_question_type(self, generator):
        with pytest.raises(ValidationError):
            generator.build_request(subject="Calculus", question_types=["essay"])

    def test_defaults(self, generator):
        request = generator.build_request(subject="Calculus", topic="Limits", difficulty="normal")

        assert request.difficulty == "medium"
        assert request.question_count == 5
        assert request.question_types == ["multiple-choice", "numerical", "text"]

    def test_summary_truncated(self, generator):
        request = generator.build_request(subject="Calculus", conversation_summary="x" * 5000)
        assert len(request.conversation_summary) == 1000

    def test_prompt_mentions_request(self, generator):
        request = generator.build_request(
            subject="Calculus", topic="Limits", question_count=3, concepts=["Squeeze theorem"]
        )
        prompt = generator.build_prompt(request)

        assert "Limits (Calculus)" in prompt
        assert "exactly 3 questions" in prompt
        assert "Squeeze theorem" in prompt


class TestGenerate:
    """Test suite for end-to-end generation with a fake model."""

    @pytest.mark.asyncio
    async def test_count_capped_to_six(self):
        model = FakeModel([quiz_reply(8)])
        generator = AssessmentGenerator(model, AssessmentManager())

        assessment = await generator.generate(subject="Calculus", topic="Limits", question_count=20)

        assert "exactly 6 questions" in model.prompts[0]
        assert len(assessment.questions) == 6
        assert assessment.time_limit == 12

    @pytest.mark.asyncio
    async def test_persisted_with_metadata(self):
        manager = AssessmentManager()
        generator = AssessmentGenerator(FakeModel([quiz_reply(2)]), manager)

        assessment = await generator.generate(
            subject="Calculus",
            topic="Limits",
            difficulty="hard",
            question_count=2,
            user_id="user_1",
            source_session_id="session_1",
            concepts=["Limits"],
        )
        stored = await manager.get_assessment(assessment.assessment_id)

        assert stored is not None
        assert stored.title == "Limits Quiz"
        assert stored.passing_score == 70
        assert stored.max_attempts == 3
        assert stored.tags == ["calculus", "limits", "hard"]
        assert stored.created_by == "user_1"
        assert stored.generation_context.source_session_id == "session_1"
        assert not stored.used_fallback
        assert stored.questions[1].is_correct(2)

    @pytest.mark.asyncio
    async def test_unusable_reply_uses_fallback(self):
        generator = AssessmentGenerator(FakeModel(["I'm not able to write that quiz."]), AssessmentManager())

        assessment = await generator.generate(subject="Calculus", topic="Limits", question_count=5)

        assert assessment.used_fallback
        assert len(assessment.questions) == 3
        assert assessment.title == "Calculus Quiz"

    @pytest.mark.asyncio
    async def test_model_failure_saves_nothing(self):
        manager = AssessmentManager()
        generator = AssessmentGenerator(FakeModel([RuntimeError("upstream down")]), manager)

        with pytest.raises(ModelUnavailable):
            await generator.generate(subject="Calculus")

        assert manager._in_memory_assessments == {}

    @pytest.mark.asyncio
    async def test_system_prompt_sent(self):
        model = FakeModel([quiz_reply(1)])
        await AssessmentGenerator(model, AssessmentManager()).generate(subject="Calculus", question_count=1)

        assert "JSON" in model.parameters[0]["system"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
