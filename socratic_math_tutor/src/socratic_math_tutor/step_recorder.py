"""
Step Recorder

The single write path for tutoring turns. ``seed_step`` is the one
sanctioned bypass: the first tutor prompt is written together with the new
problem, before any student reply exists.
"""

from socratic_math_tutor.errors import ConflictError
from socratic_math_tutor.models import Problem, Step, utc_now_iso


def record_step(problem: Problem, step: Step) -> Problem:
    """
    Append a finalized step to the problem.

    Assigns the step number and timestamp, and bumps the problem's hint
    total when the step used a hint. Nothing else is touched.
    """
    if problem.completed:
        raise ConflictError(f"Problem {problem.problem_id} is already completed")

    step.step_number = len(problem.steps) + 1
    step.timestamp = utc_now_iso()
    problem.steps.append(step)

    if step.hint_used:
        problem.hints_used_total += 1
    return problem


def seed_step(problem: Problem, tutor_prompt: str) -> Step:
    """Attach the opening tutor prompt to a freshly created problem."""
    step = Step(
        tutor_prompt=tutor_prompt,
        student_response=None,
        hint_used=False,
        progress_made=False,
        stuck_turns=0,
        step_number=1,
        timestamp=utc_now_iso(),
    )
    problem.steps = [step]
    return step
