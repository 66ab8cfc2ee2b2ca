"""
Streak Meter

0-100 reward meter for consecutive hint-free progress steps.

- Hinted step: hard reset to 0 (completions untouched).
- Hint-free progress step: +increment, capped at 100. Hitting 100 marks the
  streak completed and schedules the reset for the *next* step, so the
  completing step still reports a full bar.
- Progress on the step right after a hinted step earns no credit; the
  answer was hint-assisted, so the bar stays at 0.
- Anything else: unchanged. Hesitation alone never erases streak credit.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from socratic_math_tutor.models import Session, Step

logger = logging.getLogger(__name__)

STREAK_MAX = 100
DEFAULT_STREAK_INCREMENT = 20

ENCOURAGEMENT = {
    20: "Great start! Your streak is building! 🌟",
    40: "You're halfway there! Keep going! ⭐",
    60: "You're doing great! Keep it up! 🔥",
    80: "Almost there! One more step! 💫",
}
RESET_MESSAGE = "Your streak was reset because you used a hint. Keep working without hints to build it back up! 💪"
COMPLETED_MESSAGE = "🎉 Amazing! You completed your streak! You're making great progress without hints!"


@dataclass
class StreakUpdate:
    """Streak values reported for one step."""
    progress: int
    completions: int
    completed: bool
    previous_progress: int
    reset: bool = False


def update_streak(
    session: Session,
    step: Step,
    increment: int = DEFAULT_STREAK_INCREMENT,
    follows_hint: bool = False,
) -> StreakUpdate:
    """
    Apply one finalized step to the session's streak fields.

    ``follows_hint`` is True when the previous step carried a hint.

    Mutates ``session`` in place and returns the values to report.
    """
    previous = session.streak_progress
    base = previous

    if session.streak_reset_pending:
        base = 0
        session.streak_reset_pending = False

    reset = False
    if step.hint_used:
        progress = 0
        reset = base > 0
    elif step.progress_made and follows_hint:
        progress = 0
    elif step.progress_made:
        progress = min(STREAK_MAX, base + increment)
        if progress >= STREAK_MAX:
            session.streak_completed = True
            session.streak_completions += 1
            session.streak_reset_pending = True
            logger.info(f"🎉 [Streak] Completed (total completions: {session.streak_completions})")
    else:
        progress = base

    session.streak_progress = progress
    step.streak_progress = progress

    logger.debug(f"[Streak] {previous} -> {progress} (hint={step.hint_used}, progress={step.progress_made})")

    return StreakUpdate(
        progress=progress,
        completions=session.streak_completions,
        completed=session.streak_completed,
        previous_progress=base,
        reset=reset,
    )


def consume_streak_completed(session: Session) -> bool:
    """Read and clear the one-shot completion flag."""
    completed = session.streak_completed
    session.streak_completed = False
    return completed


def streak_feedback(update: StreakUpdate) -> Optional[str]:
    """Student-facing message for a streak change, if any."""
    if update.reset:
        return RESET_MESSAGE
    if update.completed:
        return COMPLETED_MESSAGE
    if update.progress > update.previous_progress:
        return ENCOURAGEMENT.get(update.progress)
    return None
