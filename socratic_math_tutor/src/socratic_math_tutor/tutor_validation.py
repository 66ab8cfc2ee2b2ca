"""
Tutor-Validation Detector

Inspects the *generated* tutor utterance and decides whether it positively
validates the student's last answer. The tutor model is the only party that
actually evaluated correctness, so a clear validation overrides the
progress heuristic.

Biased toward false negatives: a false "validated" reading could suppress
a hint the student needs.
"""

import logging

from socratic_math_tutor.lexical_patterns import (
    CORRECTION_PATTERNS,
    OPENING_WINDOW,
    STRONG_AFFIRMATION_PATTERNS,
    WEAK_AFFIRMATION_PATTERNS,
    any_match,
    normalize,
)

logger = logging.getLogger(__name__)


def detects_validation(tutor_utterance: str) -> bool:
    """
    Return True if the tutor message validates the student's answer.

    1. Any correction indicator -> False.
    2. Strong affirmation in the opening of the message -> True.
    3. Otherwise weak encouragement anywhere -> True.
    """
    text = normalize(tutor_utterance)
    if not text:
        return False

    if any_match(text, CORRECTION_PATTERNS):
        return False

    if any_match(text[:OPENING_WINDOW], STRONG_AFFIRMATION_PATTERNS):
        logger.debug("[Validation] Strong affirmation detected")
        return True

    if any_match(text, WEAK_AFFIRMATION_PATTERNS):
        logger.debug("[Validation] Weak affirmation detected")
        return True

    return False
