"""
Unit Tests for the Step Recorder
"""

import os
import sys

import pytest

project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "socratic_math_tutor", "src"))

from socratic_math_tutor.errors import ConflictError
from socratic_math_tutor.models import Problem, Step
from socratic_math_tutor.step_recorder import record_step, seed_step


@pytest.fixture
def problem():
    return Problem(problem_id="P001", raw_input="2x + 3 = 7", normalized_latex="2x + 3 = 7")


class TestStepRecorder:
    def test_seed_step_is_step_one(self, problem):
        step = seed_step(problem, "What is x being multiplied by?")

        assert step.step_number == 1
        assert step.student_response is None
        assert problem.steps == [step]
        assert problem.hints_used_total == 0

    def test_step_numbers_follow_position(self, problem):
        seed_step(problem, "Opening question")
        for reply in ["idk", "maybe 2", "x = 2"]:
            record_step(problem, Step(tutor_prompt="...", student_response=reply))

        assert [s.step_number for s in problem.steps] == [1, 2, 3, 4]
        assert all(s.timestamp for s in problem.steps)

    def test_hinted_step_increments_total(self, problem):
        seed_step(problem, "Opening question")
        record_step(problem, Step(tutor_prompt="Hint: subtract 3", student_response="idk", hint_used=True))
        record_step(problem, Step(tutor_prompt="Good", student_response="4", progress_made=True))

        assert problem.hints_used_total == 1

    def test_completed_problem_rejects_steps(self, problem):
        problem.completed = True

        with pytest.raises(ConflictError):
            record_step(problem, Step(tutor_prompt="...", student_response="x = 2"))
