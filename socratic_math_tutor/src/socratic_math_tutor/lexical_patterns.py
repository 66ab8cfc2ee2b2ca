"""
Lexical Pattern Sets

Named regex sets shared by the progress analyzer, the tutor-validation
detector and the completion fallback. All patterns expect lowercased,
trimmed text (see ``normalize``).
"""

import re
from typing import Dict, Iterable, List, Pattern


def normalize(text: str) -> str:
    """Lowercase, trim and straighten curly apostrophes."""
    if not text:
        return ""
    return text.replace("’", "'").replace("‘", "'").strip().lower()


def _compile(patterns: Iterable[str]) -> List[Pattern]:
    return [re.compile(p) for p in patterns]


# Student reply shows forward motion.
PROGRESS_PATTERNS: Dict[str, Pattern] = {
    "affirmation": re.compile(r"\b(correct|right|yes|that's it|exactly)\b"),
    "reasoning_verb": re.compile(r"\bi (think|believe|know|got|found|figured)\b"),
    "number": re.compile(r"\d+"),
    "causal_connective": re.compile(r"\b(because|since|so|therefore|then)\b"),
}

# Student reply signals being stuck.
STUCK_PATTERNS: Dict[str, Pattern] = {
    "help_seeking": re.compile(
        r"i don'?t know|\bidk\b|i'm stuck|\bstuck\b|i can'?t|no idea|\bhelp\b|no clue|i'm confused"
    ),
    "question_only": re.compile(r"^(what|how|why)\b[^.!]*\?$|^\?+$"),
    # No word characters at all; pure digits never match this.
    "empty": re.compile(r"^\W*$"),
}

PURELY_NUMERIC = re.compile(r"^\d+$")

# Student reply announces a final answer (completion fallback).
ANSWER_PATTERNS: Dict[str, Pattern] = {
    "announcement": re.compile(
        r"\b(the answer is|my answer is|final answer|the solution is|so the answer|i got|it equals|equals)\b"
    ),
    "bare_number": re.compile(r"^-?\d+(\.\d+)?(\s*/\s*\d+)?$"),
    "variable_assignment": re.compile(r"^[a-z]\s*=\s*-?\d+(\.\d+)?(\s*/\s*\d+)?$"),
}

# Tutor utterance corrects the student. Any match vetoes validation.
CORRECTION_PATTERNS: List[Pattern] = _compile([
    r"\bbut\b",
    r"\bhowever\b",
    r"\bnot quite\b",
    r"\balmost\b",
    r"\btry again\b",
    r"\bnot (exactly|correct|right|the answer)\b",
    r"\bisn't (right|correct|quite)\b",
    r"\bincorrect\b",
    r"\bmistake\b",
    r"\bdouble[- ]check\b",
    r"\blet's (check|look) (that|this|again)\b",
    r"\bclose\b",
])

# Tutor utterance clearly validates. Only searched in the opening of the message.
STRONG_AFFIRMATION_PATTERNS: List[Pattern] = _compile([
    r"\b(that's|that is) (correct|right|exactly right|it)\b",
    r"\b(exactly|correct|perfect)[!.,]",
    r"\b(great|good|excellent|nice|awesome|fantastic|wonderful|amazing) (job|work)\b",
    r"\byou('ve| have)? got it\b",
    r"\byou nailed it\b",
    r"\bwell done\b",
    r"\bspot on\b",
])

# General encouragement; only consulted when no strong pattern matched.
WEAK_AFFIRMATION_PATTERNS: List[Pattern] = _compile([
    r"\bgood (answer|thinking|reasoning|observation)\b",
    r"\bnice (answer|thinking|reasoning)\b",
    r"\byou('re| are) (right|correct)\b",
    r"\bthat's the (right|correct) (answer|idea)\b",
    r"\bway to go\b",
])

# How much of the tutor message counts as "near the start".
OPENING_WINDOW = 80


def count_matches(text: str, patterns: Iterable[Pattern]) -> int:
    return sum(1 for pattern in patterns if pattern.search(text))


def any_match(text: str, patterns: Iterable[Pattern]) -> bool:
    return any(pattern.search(text) for pattern in patterns)


def matched_names(text: str, patterns: Dict[str, Pattern]) -> List[str]:
    return [name for name, pattern in patterns.items() if pattern.search(text)]
