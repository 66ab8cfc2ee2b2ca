"""
Tutoring Data Model

Session -> Problem -> Step records, plus the learning-assessment sub-record.
Records are persisted as plain dicts; ``to_dict`` / ``from_dict`` are the
only way in and out of the store, and ``from_dict`` validates the shape.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from socratic_math_tutor.errors import ValidationError


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProblemCategory(str, Enum):
    """Problem categories."""
    ARITHMETIC = "arithmetic"
    ALGEBRA = "algebra"
    GEOMETRY = "geometry"
    WORD = "word"
    MULTI_STEP = "multi-step"


class Difficulty(str, Enum):
    """Ordinal difficulty levels (lowest first)."""
    VERY_EASY = "very_easy"
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    VERY_HARD = "very_hard"

    @property
    def rank(self) -> int:
        return list(Difficulty).index(self)


class Speaker(str, Enum):
    STUDENT = "student"
    TUTOR = "tutor"


def _require(data: Dict[str, Any], key: str, kind: type, record: str):
    if key not in data:
        raise ValidationError(f"{record} record is missing '{key}'", field=key)
    value = data[key]
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise ValidationError(f"{record}.{key} has invalid type {type(value).__name__}", field=key)
    return value


@dataclass
class MCQuestion:
    """A multiple-choice question about the approach used."""
    question_id: str
    question: str
    options: List[str]
    correct_answer_index: int
    student_answer_index: Optional[int] = None
    correct: Optional[bool] = None

    def __post_init__(self):
        if len(self.options) != 4:
            raise ValidationError("MC question must have exactly 4 options", field="options")
        if not 0 <= self.correct_answer_index <= 3:
            raise ValidationError("correct_answer_index must be 0..3", field="correct_answer_index")

    @property
    def answered(self) -> bool:
        return self.student_answer_index is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question_id": self.question_id,
            "question": self.question,
            "options": list(self.options),
            "correct_answer_index": self.correct_answer_index,
            "student_answer_index": self.student_answer_index,
            "correct": self.correct,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MCQuestion":
        return cls(
            question_id=_require(data, "question_id", str, "MCQuestion"),
            question=_require(data, "question", str, "MCQuestion"),
            options=[str(o) for o in _require(data, "options", list, "MCQuestion")],
            correct_answer_index=_require(data, "correct_answer_index", int, "MCQuestion"),
            student_answer_index=data.get("student_answer_index"),
            correct=data.get("correct"),
        )


@dataclass
class LearningAssessment:
    """Post-solution assessment attached to a problem."""
    approach_extracted: str
    mc_questions: List[MCQuestion] = field(default_factory=list)
    mc_score: Optional[float] = None
    transfer_success: Optional[bool] = None
    learning_confidence: Optional[float] = None
    assessment_completed: bool = False
    mc_quiz_passed: bool = False
    mc_quiz_failed: bool = False
    assessed_at: str = field(default_factory=utc_now_iso)
    mc_quiz_failed_at: Optional[str] = None

    @property
    def all_answered(self) -> bool:
        return bool(self.mc_questions) and all(q.answered for q in self.mc_questions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "approach_extracted": self.approach_extracted,
            "mc_questions": [q.to_dict() for q in self.mc_questions],
            "mc_score": self.mc_score,
            "transfer_success": self.transfer_success,
            "learning_confidence": self.learning_confidence,
            "assessment_completed": self.assessment_completed,
            "mc_quiz_passed": self.mc_quiz_passed,
            "mc_quiz_failed": self.mc_quiz_failed,
            "assessed_at": self.assessed_at,
            "mc_quiz_failed_at": self.mc_quiz_failed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LearningAssessment":
        return cls(
            approach_extracted=data.get("approach_extracted") or "",
            mc_questions=[MCQuestion.from_dict(q) for q in data.get("mc_questions") or []],
            mc_score=data.get("mc_score"),
            transfer_success=data.get("transfer_success"),
            learning_confidence=data.get("learning_confidence"),
            assessment_completed=bool(data.get("assessment_completed", False)),
            mc_quiz_passed=bool(data.get("mc_quiz_passed", False)),
            mc_quiz_failed=bool(data.get("mc_quiz_failed", False)),
            assessed_at=data.get("assessed_at") or utc_now_iso(),
            mc_quiz_failed_at=data.get("mc_quiz_failed_at"),
        )


@dataclass
class Step:
    """One tutor/student exchange within a problem."""
    tutor_prompt: str
    student_response: Optional[str] = None
    hint_used: bool = False
    progress_made: bool = False
    stuck_turns: int = 0
    step_number: int = 0  # assigned by the step recorder
    timestamp: Optional[str] = None
    streak_progress: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_number": self.step_number,
            "tutor_prompt": self.tutor_prompt,
            "student_response": self.student_response,
            "hint_used": self.hint_used,
            "progress_made": self.progress_made,
            "stuck_turns": self.stuck_turns,
            "timestamp": self.timestamp,
            "streak_progress": self.streak_progress,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Step":
        return cls(
            tutor_prompt=_require(data, "tutor_prompt", str, "Step"),
            student_response=data.get("student_response"),
            hint_used=bool(data.get("hint_used", False)),
            progress_made=bool(data.get("progress_made", False)),
            stuck_turns=int(data.get("stuck_turns") or 0),
            step_number=_require(data, "step_number", int, "Step"),
            timestamp=data.get("timestamp"),
            streak_progress=data.get("streak_progress"),
        )


@dataclass
class Problem:
    """One math problem within a session."""
    problem_id: str
    raw_input: str
    normalized_latex: str
    category: ProblemCategory = ProblemCategory.ARITHMETIC
    difficulty: Difficulty = Difficulty.EASY
    completed: bool = False
    hints_used_total: int = 0
    steps: List[Step] = field(default_factory=list)
    learning_assessment: Optional[LearningAssessment] = None
    created_at: str = field(default_factory=utc_now_iso)
    completed_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "problem_id": self.problem_id,
            "raw_input": self.raw_input,
            "normalized_latex": self.normalized_latex,
            "category": self.category.value,
            "difficulty": self.difficulty.value,
            "completed": self.completed,
            "hints_used_total": self.hints_used_total,
            "steps": [s.to_dict() for s in self.steps],
            "learning_assessment": (
                self.learning_assessment.to_dict() if self.learning_assessment else None
            ),
            "created_at": self.created_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Problem":
        try:
            category = ProblemCategory(data.get("category", "arithmetic"))
            difficulty = Difficulty(data.get("difficulty", "easy"))
        except ValueError as e:
            raise ValidationError(f"Problem record has invalid enum value: {e}") from e

        assessment = data.get("learning_assessment")
        return cls(
            problem_id=_require(data, "problem_id", str, "Problem"),
            raw_input=_require(data, "raw_input", str, "Problem"),
            normalized_latex=data.get("normalized_latex") or data["raw_input"],
            category=category,
            difficulty=difficulty,
            completed=bool(data.get("completed", False)),
            hints_used_total=int(data.get("hints_used_total") or 0),
            steps=[Step.from_dict(s) for s in data.get("steps") or []],
            learning_assessment=LearningAssessment.from_dict(assessment) if assessment else None,
            created_at=data.get("created_at") or utc_now_iso(),
            completed_at=data.get("completed_at"),
        )


@dataclass
class TranscriptEntry:
    speaker: Speaker
    message: str
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {"speaker": self.speaker.value, "message": self.message, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranscriptEntry":
        try:
            speaker = Speaker(data.get("speaker"))
        except ValueError as e:
            raise ValidationError(f"Transcript entry has invalid speaker: {e}") from e
        return cls(
            speaker=speaker,
            message=_require(data, "message", str, "TranscriptEntry"),
            timestamp=data.get("timestamp") or utc_now_iso(),
        )


@dataclass
class Session:
    """A student's persisted tutoring conversation."""
    session_code: str
    created_at: str = field(default_factory=utc_now_iso)
    expires_at: int = 0  # unix seconds, used as store TTL
    problems: List[Problem] = field(default_factory=list)
    current_problem_id: Optional[str] = None
    transcript: List[TranscriptEntry] = field(default_factory=list)
    streak_progress: int = 0
    streak_completions: int = 0
    streak_completed: bool = False
    streak_reset_pending: bool = False

    def is_expired(self, now: Optional[float] = None) -> bool:
        now = now if now is not None else datetime.now(timezone.utc).timestamp()
        return bool(self.expires_at) and self.expires_at < now

    def add_transcript(self, speaker: Speaker, message: str) -> None:
        self.transcript.append(TranscriptEntry(speaker=speaker, message=message))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_code": self.session_code,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "problems": [p.to_dict() for p in self.problems],
            "current_problem_id": self.current_problem_id,
            "transcript": [t.to_dict() for t in self.transcript],
            "streak_progress": self.streak_progress,
            "streak_completions": self.streak_completions,
            "streak_completed": self.streak_completed,
            "streak_reset_pending": self.streak_reset_pending,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        if not isinstance(data, dict):
            raise ValidationError("Session record must be a mapping")
        progress = int(data.get("streak_progress") or 0)
        if not 0 <= progress <= 100:
            raise ValidationError("streak_progress must be 0..100", field="streak_progress")
        return cls(
            session_code=_require(data, "session_code", str, "Session"),
            created_at=data.get("created_at") or utc_now_iso(),
            expires_at=int(data.get("expires_at") or 0),
            problems=[Problem.from_dict(p) for p in data.get("problems") or []],
            current_problem_id=data.get("current_problem_id"),
            transcript=[TranscriptEntry.from_dict(t) for t in data.get("transcript") or []],
            streak_progress=progress,
            streak_completions=int(data.get("streak_completions") or 0),
            streak_completed=bool(data.get("streak_completed", False)),
            streak_reset_pending=bool(data.get("streak_reset_pending", False)),
        )
