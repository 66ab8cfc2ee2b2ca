"""
Unit Tests for the Tutor LLM Client

Uses a stub OpenAI client; no network calls are made.
"""

import os
import sys
from types import SimpleNamespace

import pytest

project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "socratic_math_tutor", "src"))

from socratic_math_tutor.config import TutorSettings
from socratic_math_tutor.errors import ConfigurationError, ExternalServiceError
from socratic_math_tutor.models import Problem, Step
from socratic_math_tutor.tutor_llm import (
    HINT_INSTRUCTION,
    TutorLLM,
    parse_json_payload,
    parse_problem_list,
    parse_validation,
    strip_fences,
)


class StubCompletions:
    """Records requests and returns canned content (or raises)."""

    def __init__(self, content="", error=None, total_tokens=42):
        self.content = content
        self.error = error
        self.total_tokens = total_tokens
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))],
            usage=SimpleNamespace(total_tokens=self.total_tokens),
        )


def make_llm(content="", error=None):
    completions = StubCompletions(content=content, error=error)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return TutorLLM(TutorSettings(openai_api_key=None), client=client), completions


@pytest.fixture
def problem():
    return Problem(problem_id="P001", raw_input="2x + 3 = 7", normalized_latex="2x + 3 = 7")


class TestParsing:
    def test_strip_fences(self):
        assert strip_fences("```latex\n2x + 3 = 7\n```") == "2x + 3 = 7"

    def test_parse_fenced_json(self):
        assert parse_json_payload('```json\n{"a": 1}\n```') == {"a": 1}

    def test_parse_json_with_surrounding_text(self):
        assert parse_json_payload('Here you go: [{"a": 1}] hope it helps') == [{"a": 1}]

    def test_problem_list_multiple(self):
        content = "MULTIPLE:\n1. 2x + 3 = 7\n2) 5 + 3\nThese are separate."
        assert parse_problem_list(content, "raw") == ["2x + 3 = 7", "5 + 3"]

    def test_problem_list_single(self):
        assert parse_problem_list("SINGLE: 2x + 3 = 7", "raw") == ["2x + 3 = 7"]

    @pytest.mark.parametrize("content", ["MULTIPLE:\n1. 2x + 3 = 7", "I am not sure", ""])
    def test_problem_list_falls_back_to_raw_text(self, content):
        assert parse_problem_list(content, "raw") == ["raw"]

    def test_validation_valid(self):
        assert parse_validation("VALID - a linear equation").valid == True

    def test_validation_invalid_with_reason(self):
        validation = parse_validation("INVALID: the question is cut off")

        assert validation.valid == False
        assert validation.reason == "the question is cut off"

    def test_validation_unparseable_is_invalid(self):
        validation = parse_validation("maybe")

        assert validation.valid == False
        assert validation.reason == "Problem is not valid or complete"


class TestTutorLLM:
    """Test suite for TutorLLM."""

    def test_requires_api_key_without_client(self):
        with pytest.raises(ConfigurationError):
            TutorLLM(TutorSettings(openai_api_key=None))

    @pytest.mark.asyncio
    async def test_utterance_history_order(self, problem):
        llm, completions = make_llm("What could you subtract from both sides?")
        history = [
            Step(tutor_prompt="What do you notice?", step_number=1),
            Step(tutor_prompt="Good, what next?", student_response="there is a +3", step_number=2),
        ]

        utterance = await llm.generate_tutor_utterance(problem, history, "subtract?", hint_requested=False)

        roles = [m["role"] for m in completions.requests[0]["messages"]]
        assert roles == ["system", "user", "assistant", "user", "assistant", "user"]
        assert utterance.text == "What could you subtract from both sides?"
        assert utterance.hint_included == False
        assert utterance.tokens_used == 42

    @pytest.mark.asyncio
    async def test_hint_instruction_is_appended(self, problem):
        llm, completions = make_llm("Hint: try subtracting 3.")

        utterance = await llm.generate_tutor_utterance(problem, [], "idk", hint_requested=True)

        assert completions.requests[0]["messages"][-1]["content"] == HINT_INSTRUCTION
        assert utterance.hint_included == True

    @pytest.mark.asyncio
    async def test_client_error_becomes_external_service_error(self, problem):
        llm, _ = make_llm(error=RuntimeError("rate limited"))

        with pytest.raises(ExternalServiceError) as exc_info:
            await llm.generate_tutor_utterance(problem, [], "idk", hint_requested=False)
        assert isinstance(exc_info.value.original_error, RuntimeError)

    @pytest.mark.asyncio
    async def test_empty_utterance_is_an_error(self, problem):
        llm, _ = make_llm("   ")

        with pytest.raises(ExternalServiceError):
            await llm.generate_tutor_utterance(problem, [], "idk", hint_requested=False)

    @pytest.mark.asyncio
    async def test_completion_judgment(self, problem):
        llm, _ = make_llm('```json\n{"solution_completed": true, "is_correct": true, "reasoning": "ok"}\n```')

        result = await llm.detect_completion_external("x = 2", problem, [])

        assert result["solution_completed"] == True
        assert result["is_correct"] == True

    @pytest.mark.asyncio
    async def test_malformed_judgment(self, problem):
        llm, _ = make_llm("probably yes")

        with pytest.raises(ExternalServiceError):
            await llm.detect_completion_external("x = 2", problem, [])

    @pytest.mark.asyncio
    async def test_mc_questions_accepts_wrapped_list(self, problem):
        llm, _ = make_llm('{"questions": [{"question": "Q", "options": ["a", "b", "c", "d"], "correct_answer_index": 0}]}')

        questions = await llm.generate_mc_questions(problem, "isolating x", [])

        assert len(questions) == 1
        assert questions[0]["question"] == "Q"

    @pytest.mark.asyncio
    async def test_latex_falls_back_to_raw_text(self):
        llm, _ = make_llm(error=RuntimeError("down"))

        assert await llm.normalize_to_latex("2x + 3 = 7") == "2x + 3 = 7"

    @pytest.mark.asyncio
    async def test_latex_strips_fences(self):
        llm, _ = make_llm("```latex\n2x + 3 = 7\n```")

        assert await llm.normalize_to_latex("2x plus 3 equals 7") == "2x + 3 = 7"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content,expected", [("YES", True), ("yes.", True), ("NO", False)])
    async def test_math_problem_check(self, content, expected):
        llm, completions = make_llm(content)

        assert await llm.has_math_problem("What is 5 + 3?") == expected
        assert completions.requests[0]["max_tokens"] == 10

    @pytest.mark.asyncio
    async def test_math_problem_check_assumes_math_on_error(self):
        llm, _ = make_llm(error=RuntimeError("down"))

        assert await llm.has_math_problem("What is 5 + 3?") == True

    @pytest.mark.asyncio
    async def test_math_problem_check_blank_text(self):
        llm, completions = make_llm("YES")

        assert await llm.has_math_problem("   ") == False
        assert completions.requests == []

    @pytest.mark.asyncio
    async def test_detect_multiple_problems(self):
        llm, _ = make_llm("MULTIPLE:\n1. 2x + 3 = 7\n2. 5 + 3")

        assert await llm.detect_multiple_problems("2x + 3 = 7 and 5 + 3") == ["2x + 3 = 7", "5 + 3"]

    @pytest.mark.asyncio
    async def test_detect_multiple_problems_falls_back_to_single(self):
        llm, _ = make_llm(error=RuntimeError("down"))

        assert await llm.detect_multiple_problems("2x + 3 = 7 and 5 + 3") == ["2x + 3 = 7 and 5 + 3"]

    @pytest.mark.asyncio
    async def test_validate_problem(self):
        llm, _ = make_llm("INVALID: missing the right-hand side")

        validation = await llm.validate_problem("2x + 3 =")

        assert validation.valid == False
        assert validation.reason == "missing the right-hand side"

    @pytest.mark.asyncio
    async def test_validate_problem_assumes_valid_on_error(self):
        llm, _ = make_llm(error=RuntimeError("down"))

        validation = await llm.validate_problem("2x + 3 = 7")

        assert validation.valid == True
