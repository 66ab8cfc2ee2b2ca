"""
Shared test fixtures.

FakeTutorLLM stands in for the OpenAI-backed TutorLLM: replies are queued
per test, and every call is recorded so tests can assert on what context
was sent.
"""

import asyncio
import os
import sys

import pytest

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, os.path.join(project_root, "socratic_math_tutor", "src"))
sys.path.insert(0, os.path.join(project_root, "backend"))

from socratic_math_tutor.config import TutorSettings
from socratic_math_tutor.session_store import SessionStore
from socratic_math_tutor.socratic_tutor import SocraticTutor
from socratic_math_tutor.tutor_llm import ProblemValidation, TutorUtterance

NEUTRAL_REPLY = "What do you think the next step should be?"

VALID_MC_QUESTIONS = [
    {
        "question": "How did we solve this problem?",
        "options": ["Guessed", "Isolated the variable", "Multiplied everything", "Drew a picture"],
        "correct_answer_index": 1,
    },
    {
        "question": "What did we do first?",
        "options": ["Subtracted 3 from both sides", "Divided by 7", "Added 2", "Squared both sides"],
        "correct_answer_index": 0,
    },
    {
        "question": "Why did we divide both sides by 2?",
        "options": ["To make it bigger", "To remove the 3", "It looked nice", "To get x by itself"],
        "correct_answer_index": 3,
    },
]


class FakeTutorLLM:
    """In-memory TutorLLM double."""

    def __init__(self):
        self.replies = []
        self.default_reply = NEUTRAL_REPLY
        self.utterance_error = None
        self.delay = 0.0
        self.completion = {"solution_completed": False, "is_correct": False, "reasoning": "Not finished yet"}
        self.completion_error = None
        self.approach = "Isolating the variable with inverse operations"
        self.mc_questions = [dict(q) for q in VALID_MC_QUESTIONS]
        self.has_math = True
        self.split_problems = None
        self.invalid_problems = {}
        self.calls = []

    async def generate_tutor_utterance(self, problem, history, student_response, hint_requested, correction_context=None):
        self.calls.append({
            "method": "generate_tutor_utterance",
            "student_response": student_response,
            "hint_requested": hint_requested,
            "history_length": len(history),
            "correction_context": correction_context,
        })
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.utterance_error is not None:
            raise self.utterance_error
        text = self.replies.pop(0) if self.replies else self.default_reply
        return TutorUtterance(text=text, hint_included=hint_requested)

    async def detect_completion_external(self, student_response, problem, recent_history):
        self.calls.append({"method": "detect_completion_external", "student_response": student_response})
        if self.completion_error is not None:
            raise self.completion_error
        return dict(self.completion)

    async def extract_approach(self, problem, history):
        self.calls.append({"method": "extract_approach"})
        return self.approach

    async def generate_mc_questions(self, problem, approach, history):
        self.calls.append({"method": "generate_mc_questions", "approach": approach})
        return [dict(q) for q in self.mc_questions]

    async def normalize_to_latex(self, raw_text):
        self.calls.append({"method": "normalize_to_latex"})
        return raw_text

    async def has_math_problem(self, text):
        self.calls.append({"method": "has_math_problem", "text": text})
        return self.has_math

    async def detect_multiple_problems(self, text):
        self.calls.append({"method": "detect_multiple_problems", "text": text})
        return list(self.split_problems) if self.split_problems else [text]

    async def validate_problem(self, text):
        self.calls.append({"method": "validate_problem", "text": text})
        if text in self.invalid_problems:
            return ProblemValidation(valid=False, reason=self.invalid_problems[text])
        return ProblemValidation(valid=True)

    def utterance_calls(self):
        return [c for c in self.calls if c["method"] == "generate_tutor_utterance"]


@pytest.fixture
def settings():
    return TutorSettings(openai_api_key="test-key", llm_timeout_seconds=1.0)


@pytest.fixture
def fake_llm():
    return FakeTutorLLM()


@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def tutor(settings, store, fake_llm):
    return SocraticTutor(settings, store=store, llm=fake_llm)
