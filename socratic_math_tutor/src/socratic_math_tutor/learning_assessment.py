"""
Learning Assessment Engine

Post-solution multiple-choice quiz over the approach the student used.

Phases per problem:
    not_started -> mc_in_progress -> mc_graded -> closed

A correct, completed solution starts the quiz. Once every question has an
answer the quiz is graded and the problem is closed either way; a failed
quiz only flags the problem for teacher attention.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from socratic_math_tutor.completion_detector import CompletionResult
from socratic_math_tutor.errors import ExternalServiceError, NotFoundError, ValidationError
from socratic_math_tutor.models import LearningAssessment, MCQuestion, Problem, Session, utc_now_iso
from socratic_math_tutor.problem_lifecycle import complete_problem, get_active_problem

logger = logging.getLogger(__name__)

DEFAULT_PASS_THRESHOLD = 0.67
MIN_QUESTIONS = 2
MAX_QUESTIONS = 3

# Confidence weighting when a transfer-problem result exists.
MC_WEIGHT = 0.6
TRANSFER_WEIGHT = 0.4

CATEGORY_APPROACHES = {
    "arithmetic": "Basic arithmetic operations",
    "algebra": "Solving algebraic equations",
    "geometry": "Geometric calculations",
    "word": "Word problem solving",
    "multi-step": "Multi-step problem solving",
}
DEFAULT_APPROACH = "Mathematical problem solving"

GENERIC_QUESTION = {
    "question": "What did we do to solve this problem?",
    "options": [
        "We worked through it step by step",
        "We guessed the answer",
        "We skipped the problem",
        "We asked for help",
    ],
    "correct_answer_index": 0,
}

FALLBACK_QUESTION = {
    "question": "How did we solve this problem?",
    "options": [
        "By working through it step by step",
        "By guessing",
        "By asking for help",
        "By using a calculator",
    ],
    "correct_answer_index": 0,
}

PASSED_PROMPT = "Great job! You passed the quiz! Is there another problem you want to do?"
FAILED_PROMPT = (
    "It looks like you might need more help with this topic. Don't worry - I've let your "
    "teacher know so they can help you. Would you like to try a different problem?"
)


class AssessmentPhase(Enum):
    NOT_STARTED = "not_started"
    MC_IN_PROGRESS = "mc_in_progress"
    MC_GRADED = "mc_graded"
    CLOSED = "closed"


@dataclass
class MCGradeResult:
    """Outcome of one MC answer submission."""
    question_id: str
    correct: bool
    all_answered: bool
    mc_score: float
    next_question_index: Optional[int]
    updated_questions: List[MCQuestion] = field(default_factory=list)
    learning_confidence: Optional[float] = None
    mc_quiz_passed: bool = False
    mc_quiz_failed: bool = False
    problem_completed: bool = False
    new_problem_prompt: Optional[str] = None
    recommendation: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question_id": self.question_id,
            "correct": self.correct,
            "mc_score": self.mc_score,
            "all_answered": self.all_answered,
            "next_question_index": self.next_question_index,
            "learning_confidence": self.learning_confidence,
            "updated_questions": [q.to_dict() for q in self.updated_questions],
            "mc_quiz_passed": self.mc_quiz_passed,
            "mc_quiz_failed": self.mc_quiz_failed,
            "problem_completed": self.problem_completed,
            "new_problem_prompt": self.new_problem_prompt,
            "recommendation": self.recommendation,
        }


def assessment_phase(problem: Problem) -> AssessmentPhase:
    assessment = problem.learning_assessment
    if assessment is None:
        return AssessmentPhase.NOT_STARTED
    if not assessment.all_answered:
        return AssessmentPhase.MC_IN_PROGRESS
    if problem.completed:
        return AssessmentPhase.CLOSED
    return AssessmentPhase.MC_GRADED


def should_start_assessment(problem: Problem, completion: CompletionResult) -> bool:
    """Only a completed and correct solution, once per problem."""
    return (
        completion.triggers_assessment
        and problem.learning_assessment is None
        and not problem.completed
    )


def fallback_approach(problem: Problem) -> str:
    return CATEGORY_APPROACHES.get(problem.category.value, DEFAULT_APPROACH)


def _is_valid_raw_question(raw: Any) -> bool:
    if not isinstance(raw, dict) or not raw.get("question"):
        return False
    options = raw.get("options")
    index = raw.get("correct_answer_index")
    return (
        isinstance(options, list)
        and len(options) == 4
        and isinstance(index, int)
        and not isinstance(index, bool)
        and 0 <= index < 4
    )


def _build_question(problem_id: str, index: int, raw: Dict[str, Any]) -> MCQuestion:
    return MCQuestion(
        question_id=f"mcq-{problem_id}-{index}",
        question=str(raw["question"]),
        options=[str(option) for option in raw["options"]],
        correct_answer_index=raw["correct_answer_index"],
    )


def validate_mc_questions(raw_questions: Sequence[Any], problem_id: str) -> List[MCQuestion]:
    """
    Re-validate generated questions before trusting them.

    Keeps at most three well-formed questions (exactly 4 options, index
    0..3) and pads with the generic question until there are at least two.
    """
    valid = [q for q in raw_questions if _is_valid_raw_question(q)][:MAX_QUESTIONS]
    questions = [_build_question(problem_id, i, q) for i, q in enumerate(valid)]

    if len(questions) < MIN_QUESTIONS:
        logger.warning(f"⚠️  [Assessment] Only {len(questions)} valid MC questions, padding with generic question")
    while len(questions) < MIN_QUESTIONS:
        questions.append(_build_question(problem_id, len(questions), GENERIC_QUESTION))
    return questions


def fallback_mc_questions(problem_id: str) -> List[MCQuestion]:
    return validate_mc_questions([FALLBACK_QUESTION], problem_id)


async def start_assessment(
    problem: Problem,
    llm,
    timeout: Optional[float] = None,
) -> LearningAssessment:
    """
    Extract the approach, generate the quiz and attach it to the problem.

    External failures degrade to the category approach and the fallback
    question set; this never raises for them.
    """
    try:
        approach = await asyncio.wait_for(llm.extract_approach(problem, problem.steps), timeout=timeout)
    except (ExternalServiceError, asyncio.TimeoutError) as e:
        logger.warning(f"⚠️  [Assessment] Approach extraction unavailable ({type(e).__name__}), using category fallback")
        approach = fallback_approach(problem)

    try:
        raw_questions = await asyncio.wait_for(
            llm.generate_mc_questions(problem, approach, problem.steps),
            timeout=timeout,
        )
        questions = validate_mc_questions(raw_questions, problem.problem_id)
    except (ExternalServiceError, asyncio.TimeoutError) as e:
        logger.warning(f"⚠️  [Assessment] MC generation unavailable ({type(e).__name__}), using fallback questions")
        questions = fallback_mc_questions(problem.problem_id)

    assessment = LearningAssessment(approach_extracted=approach, mc_questions=questions)
    problem.learning_assessment = assessment
    logger.info(f"📝 [Assessment] MC quiz triggered for {problem.problem_id} ({len(questions)} questions)")
    return assessment


def calculate_mc_score(questions: Sequence[MCQuestion]) -> float:
    if not questions:
        return 0.0
    return sum(1 for q in questions if q.correct is True) / len(questions)


def calculate_learning_confidence(mc_score: float, transfer_success: Optional[bool] = None) -> float:
    """MC score alone, or 60/40 MC/transfer when a transfer result exists."""
    if transfer_success is None:
        return mc_score
    return mc_score * MC_WEIGHT + (TRANSFER_WEIGHT if transfer_success else 0.0)


def quiz_passed(mc_score: float, threshold: float = DEFAULT_PASS_THRESHOLD) -> bool:
    # Scores are compared at two decimals so 2 of 3 (0.667) meets 0.67.
    return round(mc_score, 2) >= threshold


def adaptive_recommendation(confidence: float) -> Dict[str, Any]:
    if confidence >= 0.8:
        return {
            "action": "continue",
            "message": "Excellent! You've really mastered this approach! Ready to try another problem?",
            "suggest_practice": False,
        }
    if confidence >= 0.5:
        return {
            "action": "optional_practice",
            "message": "Good progress! A bit more practice will make this solid. Want to try another similar problem?",
            "suggest_practice": True,
        }
    return {
        "action": "recommend_practice",
        "message": "Let's practice this approach with one more problem to strengthen your understanding!",
        "suggest_practice": True,
    }


def _find_assessed_problem(session: Session, problem_id: Optional[str]) -> Problem:
    if problem_id is not None:
        problem = next((p for p in session.problems if p.problem_id == problem_id), None)
        if problem is None:
            raise NotFoundError("Problem", field="problem_id")
    else:
        problem = get_active_problem(session)
    if problem is None or problem.learning_assessment is None or not problem.learning_assessment.mc_questions:
        raise ValidationError("No MC questions available", field="assessment")
    if problem.completed:
        raise ValidationError("MC quiz is already graded", field="assessment")
    return problem


def answer_mc_question(
    session: Session,
    question_id: str,
    selected_index: int,
    problem_id: Optional[str] = None,
    pass_threshold: float = DEFAULT_PASS_THRESHOLD,
) -> MCGradeResult:
    """
    Record one MC answer and grade the quiz once every question is answered.

    Mutates ``session`` in place (the question, the assessment and, when
    graded, the problem's completion and ``current_problem_id``).
    """
    if isinstance(selected_index, bool) or not isinstance(selected_index, int) or not 0 <= selected_index <= 3:
        raise ValidationError("selected_index must be an integer 0..3", field="selected_index")

    problem = _find_assessed_problem(session, problem_id)
    assessment = problem.learning_assessment

    question = next((q for q in assessment.mc_questions if q.question_id == question_id), None)
    if question is None:
        raise NotFoundError("MC question", field="question_id")

    question.student_answer_index = selected_index
    question.correct = selected_index == question.correct_answer_index

    running_score = calculate_mc_score(assessment.mc_questions)
    next_index = next(
        (i for i, q in enumerate(assessment.mc_questions) if not q.answered),
        None,
    )
    result = MCGradeResult(
        question_id=question_id,
        correct=question.correct,
        all_answered=next_index is None,
        mc_score=running_score,
        next_question_index=next_index,
        updated_questions=list(assessment.mc_questions),
    )

    if result.all_answered:
        _grade(session, problem, result, pass_threshold)
    return result


def _grade(session: Session, problem: Problem, result: MCGradeResult, pass_threshold: float) -> None:
    assessment = problem.learning_assessment
    assessment.mc_score = result.mc_score
    assessment.learning_confidence = calculate_learning_confidence(
        assessment.mc_score, assessment.transfer_success
    )
    assessment.assessment_completed = True

    passed = quiz_passed(assessment.mc_score, pass_threshold)
    assessment.mc_quiz_passed = passed
    assessment.mc_quiz_failed = not passed

    if passed:
        result.new_problem_prompt = PASSED_PROMPT
        logger.info(
            f"✅ [Assessment] MC quiz passed: {round(assessment.mc_score * 100)}% "
            f"(threshold: {round(pass_threshold * 100)}%)"
        )
    else:
        assessment.mc_quiz_failed_at = utc_now_iso()
        result.new_problem_prompt = FAILED_PROMPT
        logger.warning(
            f"⚠️  [Assessment] MC quiz failed: {round(assessment.mc_score * 100)}% "
            f"(threshold: {round(pass_threshold * 100)}%) - flagged for teacher attention"
        )

    complete_problem(session, problem.problem_id)

    result.learning_confidence = assessment.learning_confidence
    result.recommendation = adaptive_recommendation(assessment.learning_confidence)
    result.mc_quiz_passed = passed
    result.mc_quiz_failed = not passed
    result.problem_completed = True
