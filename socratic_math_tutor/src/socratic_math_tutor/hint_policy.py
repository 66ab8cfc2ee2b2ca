"""
Hint Policy

State machine over consecutive stuck turns, evaluated in two phases:

    decide_preliminary  ->  generate utterance  ->  reconcile

The preliminary decision (progress heuristic only) is what the utterance
generator is told. Once the utterance exists, the tutor-validation result
may upgrade the progress reading, and the hint flag is recomputed. Since
progress can only be upgraded, the hint flag can only flip True -> False.
"""

from dataclasses import dataclass
from enum import Enum

from socratic_math_tutor.progress_analyzer import ProgressAnalysis

HINT_STUCK_THRESHOLD = 2


class HintState(Enum):
    """Per-problem hint states."""
    EXPLORING = "exploring"
    STUCK_BUILDING = "stuck_building"
    STUCK_CONFIRMED = "stuck_confirmed"
    HINT = "hint"


@dataclass(frozen=True)
class HintDecision:
    """Progress/hint determination for one turn."""
    stuck_turns: int
    progress_made: bool
    hint_requested: bool
    state: HintState
    tutor_validated: bool = False
    reason: str = ""


def should_hint(stuck_turns: int, final_progress_made: bool) -> bool:
    return stuck_turns >= HINT_STUCK_THRESHOLD and not final_progress_made


def hint_state_for(stuck_turns: int, hint_requested: bool = False) -> HintState:
    if hint_requested:
        return HintState.HINT
    if stuck_turns >= HINT_STUCK_THRESHOLD:
        return HintState.STUCK_CONFIRMED
    if stuck_turns == 1:
        return HintState.STUCK_BUILDING
    return HintState.EXPLORING


def decide_preliminary(stuck_turns: int, analysis: ProgressAnalysis) -> HintDecision:
    """Hint decision from the progress heuristic alone."""
    hint = should_hint(stuck_turns, analysis.made_progress)
    if hint:
        reason = f"Stuck for {stuck_turns} turns with no progress"
    elif analysis.made_progress:
        reason = f"Progress heuristic (score {analysis.progress_score} vs {analysis.stuck_score})"
    else:
        reason = f"Only {stuck_turns} stuck turn(s), below threshold {HINT_STUCK_THRESHOLD}"
    return HintDecision(
        stuck_turns=stuck_turns,
        progress_made=analysis.made_progress,
        hint_requested=hint,
        state=hint_state_for(stuck_turns, hint),
        reason=reason,
    )


def reconcile(preliminary: HintDecision, tutor_validated: bool) -> HintDecision:
    """
    Final decision after the utterance was generated.

    Pure function of the preliminary decision and the detector result: a
    validating tutor message marks the turn as progress, which withdraws a
    pending hint.
    """
    progress = preliminary.progress_made or tutor_validated
    hint = should_hint(preliminary.stuck_turns, progress)

    if tutor_validated and not preliminary.progress_made:
        reason = "Tutor validated the answer (overrides heuristic)"
    else:
        reason = preliminary.reason
    if preliminary.hint_requested and not hint:
        reason += "; hint withdrawn"

    return HintDecision(
        stuck_turns=preliminary.stuck_turns,
        progress_made=progress,
        hint_requested=hint,
        state=HintState.EXPLORING if progress else hint_state_for(preliminary.stuck_turns, hint),
        tutor_validated=tutor_validated,
        reason=reason,
    )
