"""
Progress Analyzer

Fast heuristic over the student's raw reply. This is the fallback signal:
the tutor's own utterance (see tutor_validation) overrides it when it
clearly validates the answer.
"""

from dataclasses import dataclass, field
from typing import List, Sequence

from socratic_math_tutor.lexical_patterns import (
    PROGRESS_PATTERNS,
    PURELY_NUMERIC,
    STUCK_PATTERNS,
    matched_names,
    normalize,
)
from socratic_math_tutor.models import Step


@dataclass
class ProgressAnalysis:
    """Result of analyzing one student reply."""
    made_progress: bool
    progress_score: int
    stuck_score: int
    response_length: int
    progress_signals: List[str] = field(default_factory=list)
    stuck_signals: List[str] = field(default_factory=list)


def analyze_progress(student_response: str, prior_steps: Sequence[Step] = ()) -> ProgressAnalysis:
    """
    Classify whether a student reply shows progress.

    Args:
        student_response: The student's reply text
        prior_steps: Steps recorded so far (currently unused by the heuristic)

    Returns:
        ProgressAnalysis with scores and matched signal names
    """
    response = normalize(student_response)

    progress_signals = matched_names(response, PROGRESS_PATTERNS)
    stuck_signals = matched_names(response, STUCK_PATTERNS)
    progress_score = len(progress_signals)
    stuck_score = len(stuck_signals)

    # Single-token numeric replies ("5") are valid answers to narrow questions.
    long_enough = len(response) > 3 or bool(PURELY_NUMERIC.match(response))
    made_progress = progress_score > stuck_score and long_enough

    return ProgressAnalysis(
        made_progress=made_progress,
        progress_score=progress_score,
        stuck_score=stuck_score,
        response_length=len(response),
        progress_signals=progress_signals,
        stuck_signals=stuck_signals,
    )


def count_stuck_turns(steps: Sequence[Step]) -> int:
    """
    Count consecutive non-progress turns ending at the latest step.

    Walks backward: a progress step ends the run, a hinted step is skipped
    (it pauses the count rather than resetting it). The seed step has
    progress_made=False and counts like any other non-progress step.
    """
    stuck_count = 0
    for step in reversed(steps):
        if step.progress_made:
            break
        if step.hint_used:
            continue
        stuck_count += 1
    return stuck_count
