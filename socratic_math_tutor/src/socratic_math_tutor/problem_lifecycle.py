"""
Problem Lifecycle Manager

Creates problems inside a session and enforces the single-active-problem
rule. Categorization and difficulty grading are rule-based so that problem
creation never depends on the text-generation service.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from socratic_math_tutor.errors import ConflictError, NotFoundError, ValidationError
from socratic_math_tutor.models import Difficulty, Problem, ProblemCategory, Session, utc_now_iso

logger = logging.getLogger(__name__)

MAX_PROBLEM_LENGTH = 2000

ARITHMETIC_PATTERNS = [
    re.compile(r"\d+\s*[+\-×*÷/]\s*\d+"),
    re.compile(r"\b(multiply|divide|add|subtract|plus|minus)\b"),
    re.compile(r"fraction|percentage|decimal"),
    re.compile(r"\b\d+\s*(times|divided by)\s*\d+\b"),
]

ALGEBRA_PATTERNS = [
    re.compile(r"[a-z]\s*[=+\-×*÷/]"),
    re.compile(r"solve for|find [a-z]|variable|equation"),
    re.compile(r"\b(2x|3y|4z|5a|6b)\b"),
    re.compile(r"\b(linear|quadratic|polynomial)\b"),
]

GEOMETRY_PATTERNS = [
    re.compile(r"\b(triangle|circle|square|rectangle|area|perimeter|angle|radius|diameter)\b"),
    re.compile(r"\b(degrees?|cm\s*²|meters?)\b|°"),
    re.compile(r"\b(pythagorean|hypotenuse|base|height)\b"),
]

WORD_PATTERNS = [
    re.compile(r"\b(has|have|bought|sold|spent|earned|left|remaining|total|altogether)\b"),
    re.compile(r"\b(how many|how much|how long|how far)\b"),
    re.compile(r"\b(if|when|then|after|before)\b.*\bhow\b"),
    re.compile(r"\d+\s*(years?|months?|days?|hours?|minutes?|dollars?|cents?)"),
]

MULTI_STEP_PATTERNS = [
    re.compile(r"\b(first|then|next|finally|step 1|step 2)\b"),
    re.compile(r"\b(and then|after that|also|in addition)\b"),
    re.compile(r"[+\-×*÷/].*[+\-×*÷/]"),
]

SEQUENCE_WORDS = re.compile(r"\b(and|then|also|next|finally)\b")
CONTEXT_WORDS = re.compile(r"\b(has|have|bought|sold|spent|earned)\b")


@dataclass
class ProblemDraft:
    """A validated problem ready to be submitted to a session."""
    raw_input: str
    normalized_latex: str
    category: ProblemCategory
    difficulty: Difficulty


def categorize_problem(text: str, latex: str = "") -> ProblemCategory:
    """Rule-based category; checked in priority order, arithmetic by default."""
    search_text = f"{text} {latex}".lower()

    if any(p.search(search_text) for p in ARITHMETIC_PATTERNS):
        return ProblemCategory.ARITHMETIC
    if any(p.search(search_text) for p in ALGEBRA_PATTERNS):
        return ProblemCategory.ALGEBRA
    if any(p.search(search_text) for p in GEOMETRY_PATTERNS):
        return ProblemCategory.GEOMETRY
    if any(p.search(search_text) for p in WORD_PATTERNS):
        if len(SEQUENCE_WORDS.findall(search_text)) >= 2:
            return ProblemCategory.MULTI_STEP
        return ProblemCategory.WORD
    if any(p.search(search_text) for p in MULTI_STEP_PATTERNS):
        return ProblemCategory.MULTI_STEP
    return ProblemCategory.ARITHMETIC


def classify_difficulty(text: str, category: ProblemCategory) -> Difficulty:
    """Score complexity indicators and bucket the score into a difficulty."""
    search_text = text.lower()
    score = 0

    score += len(re.findall(r"[+\-×*÷/=]", search_text)) * 2

    if category == ProblemCategory.ALGEBRA:
        score += len(re.findall(r"[a-z]", search_text)) * 3

    numbers = [int(n) for n in re.findall(r"\d+", search_text)]
    max_number = max(numbers, default=0)
    if max_number > 1000:
        score += 3
    elif max_number > 100:
        score += 2
    elif max_number > 10:
        score += 1

    if category == ProblemCategory.MULTI_STEP:
        score += 5
    if category == ProblemCategory.WORD:
        score += len(CONTEXT_WORDS.findall(search_text)) * 2

    if score <= 3:
        return Difficulty.VERY_EASY
    if score <= 6:
        return Difficulty.EASY
    if score <= 10:
        return Difficulty.MEDIUM
    if score <= 15:
        return Difficulty.HARD
    return Difficulty.VERY_HARD


def build_problem_draft(raw_text: str, normalized_latex: Optional[str] = None) -> ProblemDraft:
    """Validate the problem text and tag it with category and difficulty."""
    if raw_text is None or not raw_text.strip():
        raise ValidationError("Problem text is required", field="problem_text")
    text = raw_text.strip()
    if len(text) > MAX_PROBLEM_LENGTH:
        raise ValidationError(
            f"Problem text must be at most {MAX_PROBLEM_LENGTH} characters", field="problem_text"
        )

    latex = (normalized_latex or "").strip() or text
    category = categorize_problem(text, latex)
    difficulty = classify_difficulty(text, category)
    logger.info(f"📋 [Problem] Processed problem: category={category.value}, difficulty={difficulty.value}")
    return ProblemDraft(raw_input=text, normalized_latex=latex, category=category, difficulty=difficulty)


def get_active_problem(session: Session) -> Optional[Problem]:
    if not session.current_problem_id:
        return None
    problem = get_problem(session, session.current_problem_id)
    return None if problem.completed else problem


def get_problem(session: Session, problem_id: str) -> Problem:
    for problem in session.problems:
        if problem.problem_id == problem_id:
            return problem
    raise NotFoundError("Problem", field="problem_id")


def ensure_can_submit(session: Session, now: Optional[float] = None) -> None:
    """Raise unless the session is live and has no open problem."""
    if session.is_expired(now):
        raise NotFoundError("Session", field="session_code")

    # Scan every problem rather than trusting current_problem_id.
    if any(not p.completed for p in session.problems):
        raise ConflictError(
            "A problem is already active in this session. Complete it before starting a new one.",
            field="current_problem_id",
        )


def submit_problem(session: Session, draft: ProblemDraft, now: Optional[float] = None) -> Problem:
    """
    Append a new problem and make it the active one.

    Raises:
        NotFoundError: if the session has expired
        ConflictError: if any problem in the session is still open
    """
    ensure_can_submit(session, now)

    problem = Problem(
        problem_id=f"P{len(session.problems) + 1:03d}",
        raw_input=draft.raw_input,
        normalized_latex=draft.normalized_latex,
        category=draft.category,
        difficulty=draft.difficulty,
        completed=False,
        steps=[],
    )
    session.problems.append(problem)
    session.current_problem_id = problem.problem_id
    logger.info(f"➕ [Problem] {problem.problem_id} added to session {session.session_code}")
    return problem


def complete_problem(session: Session, problem_id: str) -> Problem:
    """Close a problem and clear the session's active pointer."""
    problem = get_problem(session, problem_id)
    problem.completed = True
    problem.completed_at = utc_now_iso()
    if session.current_problem_id == problem_id:
        session.current_problem_id = None
    logger.info(f"🏁 [Problem] {problem_id} completed")
    return problem


def retag_problem(
    session: Session,
    problem_id: str,
    category: Optional[str] = None,
    difficulty: Optional[str] = None,
) -> Problem:
    """
    Override the rule-based category and/or difficulty of a problem.

    Raises:
        ValidationError: if neither tag is given or a value is unknown
        NotFoundError: if the problem does not exist
    """
    if not category and not difficulty:
        raise ValidationError("At least one of category or difficulty must be provided")

    try:
        new_category = ProblemCategory(category) if category else None
    except ValueError:
        allowed = ", ".join(c.value for c in ProblemCategory)
        raise ValidationError(f"Invalid category. Must be one of: {allowed}", field="category")
    try:
        new_difficulty = Difficulty(difficulty) if difficulty else None
    except ValueError:
        allowed = ", ".join(d.value for d in Difficulty)
        raise ValidationError(f"Invalid difficulty. Must be one of: {allowed}", field="difficulty")

    problem = get_problem(session, problem_id)
    if new_category is not None:
        problem.category = new_category
    if new_difficulty is not None:
        problem.difficulty = new_difficulty
    logger.info(
        f"🏷️  [Problem] {problem_id} retagged: category={problem.category.value}, "
        f"difficulty={problem.difficulty.value}"
    )
    return problem
