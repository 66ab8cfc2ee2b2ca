"""
Solution-Completion Detector

Decides whether a student reply is a final answer and whether it is
correct. The external judgment is authoritative; when it is unavailable
the local answer patterns can only report "completed, correctness unknown",
which never triggers the learning assessment.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from socratic_math_tutor.errors import ExternalServiceError
from socratic_math_tutor.lexical_patterns import ANSWER_PATTERNS, matched_names, normalize
from socratic_math_tutor.models import Problem, Step

logger = logging.getLogger(__name__)

RECENT_HISTORY_STEPS = 4


@dataclass
class CompletionResult:
    completed: bool
    correct: bool
    reasoning: str = ""
    source: str = "external"  # "external" | "fallback"

    @property
    def triggers_assessment(self) -> bool:
        return self.completed and self.correct


def detect_completion_locally(student_response: str) -> CompletionResult:
    """Pattern fallback: answer announcements, bare numbers, ``x = 5``."""
    text = normalize(student_response)
    signals = matched_names(text, ANSWER_PATTERNS)
    if signals:
        return CompletionResult(
            completed=True,
            correct=False,
            reasoning=f"Answer pattern matched ({', '.join(signals)}); correctness unknown",
            source="fallback",
        )
    return CompletionResult(
        completed=False,
        correct=False,
        reasoning="No answer pattern matched",
        source="fallback",
    )


async def detect_completion(
    student_response: str,
    problem: Problem,
    steps: Sequence[Step],
    llm,
    timeout: Optional[float] = None,
) -> CompletionResult:
    """
    Judge whether the student has finished the problem.

    Args:
        student_response: The student's latest reply
        problem: The active problem
        steps: Steps recorded so far (the most recent few are sent as context)
        llm: Object exposing ``detect_completion_external``
        timeout: Seconds to wait for the external judgment

    Returns:
        CompletionResult; never raises for external failures
    """
    if not student_response or not student_response.strip():
        return CompletionResult(completed=False, correct=False, reasoning="Empty response", source="fallback")

    recent = list(steps)[-RECENT_HISTORY_STEPS:]
    try:
        judgment = await asyncio.wait_for(
            llm.detect_completion_external(student_response, problem, recent),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.warning("⚠️  [Completion] External judgment timed out, using pattern fallback")
        return detect_completion_locally(student_response)
    except ExternalServiceError as e:
        logger.warning(f"⚠️  [Completion] External judgment failed ({e.message}), using pattern fallback")
        return detect_completion_locally(student_response)

    completed = bool(judgment.get("solution_completed", False))
    correct = completed and bool(judgment.get("is_correct", False))
    result = CompletionResult(
        completed=completed,
        correct=correct,
        reasoning=str(judgment.get("reasoning", "")),
        source="external",
    )
    logger.debug(f"[Completion] completed={result.completed} correct={result.correct}: {result.reasoning}")
    return result
