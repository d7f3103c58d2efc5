"""
Unit Tests for Structured Output Repair

Tests extraction from noisy model text, truncation repair, question
normalization and the fallback question set.
"""

import json
import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "anchored_tutor", "src"))

from anchored_tutor.assessment_models import (
    MultipleChoiceQuestion,
    NumericalQuestion,
    QuestionType,
    TextQuestion,
    TrueFalseQuestion,
)
from anchored_tutor.errors import RepairFailure, ValidationError
from anchored_tutor.grading import score_answer
from anchored_tutor.structured_output import (
    build_fallback_questions,
    extract_structured,
    normalize_difficulty,
    normalize_question,
    parse_question_set,
    remove_trailing_separators,
)


class TestExtractStructured:
    """Test suite for locating and repairing structured data."""

    def test_truncated_list_keeps_complete_elements(self):
        text = '{"questions":[{"id":"q1","question":"A"},{"id":"q2","question":"B"},'

        assert extract_structured(text) == {
            "questions": [{"id": "q1", "question": "A"}, {"id": "q2", "question": "B"}]
        }

    def test_truncated_mid_element_drops_partial(self):
        text = '{"questions":[{"id":"q1","question":"A"},{"id":"q2","quest'

        assert extract_structured(text) == {"questions": [{"id": "q1", "question": "A"}]}

    def test_commentary_and_fences_removed(self):
        text = 'Here is your quiz:\n```json\n{"title": "Limits", "questions": []}\n```\nGood luck!'

        assert extract_structured(text) == {"title": "Limits", "questions": []}

    def test_trailing_commas_removed(self):
        assert extract_structured('{"questions": [{"id": "q1",},],}') == {"questions": [{"id": "q1"}]}

    def test_brackets_inside_strings_ignored(self):
        text = '{"questions":[{"question":"Is {x} a [closed] set?"}]} trailing {junk'

        assert extract_structured(text) == {"questions": [{"question": "Is {x} a [closed] set?"}]}

    def test_escaped_quotes_inside_strings(self):
        text = '{"questions":[{"question":"Say \\"limit\\" twice"}]}'

        assert extract_structured(text)["questions"][0]["question"] == 'Say "limit" twice'

    def test_truncated_inside_first_string(self):
        text = '{"questions":[{"question":"What is'

        assert extract_structured(text) == {"questions": [{"question": "What is"}]}

    def test_top_level_list(self):
        assert extract_structured('Sure! [{"id": "q1"}, {"id": "q2"}]') == [{"id": "q1"}, {"id": "q2"}]

    def test_no_structured_data(self):
        with pytest.raises(RepairFailure):
            extract_structured("I could not write a quiz, sorry.")

    def test_mismatched_brackets(self):
        with pytest.raises(RepairFailure):
            extract_structured('{"questions": [1}')

    def test_remove_trailing_separators(self):
        assert remove_trailing_separators('[1, 2, ]') == '[1, 2]'
        assert remove_trailing_separators('{"a": 1,\n}') == '{"a": 1}'


class TestNormalizeQuestion:
    """Test suite for building validated questions from raw elements."""

    def test_multiple_choice_with_flagged_options(self):
        question = normalize_question({
            "id": "q1",
            "type": "multiple-choice",
            "question": "lim x->0 sin(x)/x?",
            "options": [{"id": "a", "text": "0", "isCorrect": False}, {"id": "b", "text": "1", "isCorrect": True}],
            "difficulty": "Intermediate",
        }, 0)

        assert isinstance(question, MultipleChoiceQuestion)
        assert question.correct_answer == "b"
        assert question.difficulty == "medium"

    def test_string_options_with_letter_answer(self):
        question = normalize_question({
            "question": "Which is continuous everywhere?",
            "options": ["1/x", "x^2", "tan(x)"],
            "correct_answer": "B",
        }, 2)

        assert question.id == "q3"
        assert question.question_type == QuestionType.MULTIPLE_CHOICE
        assert [option.id for option in question.options] == ["a", "b", "c"]
        assert question.correct_option.text == "x^2"

    def test_index_answer(self):
        question = normalize_question({"type": "mcq", "question": "Pick", "options": ["x", "y", "z"], "answer": 2}, 0)
        assert question.correct_answer == "c"

    def test_text_answer_matches_option_text(self):
        question = normalize_question({"type": "choice", "question": "Pick", "options": ["zero", "one"], "correctAnswer": "One"}, 0)
        assert question.correct_answer == "b"

    def test_numerical_string_answer(self):
        question = normalize_question({"type": "Numeric", "question": "Pi to two decimals?", "correctAnswer": " 3.14 "}, 0)

        assert isinstance(question, NumericalQuestion)
        assert question.correct_answer == 3.14

    def test_true_false_alias_and_bool(self):
        question = normalize_question({"type": "True/False", "question": "Every limit exists.", "correctAnswer": False}, 0)

        assert isinstance(question, TrueFalseQuestion)
        assert question.correct_answer == "false"

    def test_unknown_type_without_options_is_text(self):
        question = normalize_question({"type": "essay", "question": "Name the rate of change.", "answer": "derivative"}, 0)
        assert isinstance(question, TextQuestion)

    def test_defaults_for_points_and_time(self):
        question = normalize_question({"type": "text", "question": "Q", "answer": "a", "points": "0", "timeEstimate": "90"}, 0)

        assert question.points == 1
        assert question.time_estimate == 90

    def test_invalid_question_raises(self):
        with pytest.raises(ValidationError):
            normalize_question({"type": "multiple-choice", "question": "No answer", "options": ["a", "b"]}, 0)
        with pytest.raises(ValidationError):
            normalize_question({"type": "numerical", "question": "Q", "correctAnswer": "many"}, 0)
        with pytest.raises(ValidationError):
            normalize_question("not an object", 0)

    @pytest.mark.parametrize("label,expected", [
        ("Advanced", "hard"), ("beginner", "easy"), ("normal", "medium"), (None, "medium"), ("weird", "medium"),
    ])
    def test_normalize_difficulty(self, label, expected):
        assert normalize_difficulty(label) == expected


class TestParseQuestionSet:
    """Test suite for the full parse with fallback."""

    def test_valid_reply(self):
        reply = json.dumps({
            "title": "Limits Quiz",
            "questions": [
                {"type": "text", "question": "Name the rate of change.", "answer": "derivative"},
                {"type": "true-false", "question": "sin(x)/x -> 1 as x -> 0", "answer": "true"},
            ],
        })

        parsed = parse_question_set(reply, "Calculus", "Limits")

        assert not parsed.used_fallback
        assert parsed.title == "Limits Quiz"
        assert [q.id for q in parsed.questions] == ["q1", "q2"]

    def test_invalid_elements_dropped(self):
        reply = json.dumps({"questions": [
            {"type": "multiple-choice", "question": "No correct option", "options": ["a", "b"]},
            {"type": "text", "question": "Name the rate of change.", "answer": "derivative"},
        ]})

        parsed = parse_question_set(reply, "Calculus", "Limits")

        assert parsed.dropped == 1
        assert len(parsed.questions) == 1
        assert parsed.questions[0].id == "q2"

    def test_duplicate_ids_renumbered(self):
        reply = json.dumps([
            {"id": "x", "type": "text", "question": "A", "answer": "a"},
            {"id": "x", "type": "text", "question": "B", "answer": "b"},
        ])

        assert [q.id for q in parse_question_set(reply, "Calculus").questions] == ["x", "q2"]

    def test_garbage_uses_fallback(self):
        parsed = parse_question_set("Sorry, I can't do that.", "Calculus", "Limits", question_count=2)

        assert parsed.used_fallback
        assert len(parsed.questions) == 2
        assert parsed.notes

    def test_all_invalid_uses_fallback(self):
        reply = json.dumps({"questions": [{"question": "No answer at all"}]})

        parsed = parse_question_set(reply, "Calculus", "Limits")

        assert parsed.used_fallback
        assert len(parsed.questions) == 3

    def test_string_correct_flags(self):
        reply = json.dumps({"questions": [{
            "type": "multiple-choice",
            "question": "What is 2 + 2?",
            "options": [
                {"id": "a", "text": "3", "isCorrect": "false"},
                {"id": "b", "text": "4", "isCorrect": "true"},
            ],
        }]})

        question = parse_question_set(reply, "Arithmetic").questions[0]

        assert [option.is_correct for option in question.options] == [False, True]
        assert question.correct_answer == "b"
        assert score_answer(question, "b")
        assert not score_answer(question, "a")

    def test_several_correct_options_dropped(self):
        reply = json.dumps({"questions": [
            {
                "type": "multiple-choice",
                "question": "Pick one",
                "options": [{"text": "x", "isCorrect": True}, {"text": "y", "isCorrect": "TRUE"}],
            },
            {"type": "text", "question": "Name the rate of change.", "answer": "derivative"},
        ]})

        parsed = parse_question_set(reply, "Calculus", "Limits")

        assert parsed.dropped == 1
        assert [q.id for q in parsed.questions] == ["q2"]

    def test_truncated_questions_without_answers_use_fallback(self):
        reply = '{"questions":[{"id":"q1","question":"A"},{"id":"q2","question":"B"},'

        assert [q["id"] for q in extract_structured(reply)["questions"]] == ["q1", "q2"]

        parsed = parse_question_set(reply, "Calculus", "Limits")
        assert parsed.used_fallback
        assert [q.id for q in parsed.questions] == ["q1", "q2", "q3"]

    def test_fallback_questions_are_valid_and_deterministic(self):
        first = build_fallback_questions("Calculus", "Limits")
        second = build_fallback_questions("Calculus", "Limits")

        assert [q.to_dict() for q in first] == [q.to_dict() for q in second]
        assert all("Limits" in q.prompt for q in first)
        assert len(build_fallback_questions("Calculus", None, count=10)) == 3


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
