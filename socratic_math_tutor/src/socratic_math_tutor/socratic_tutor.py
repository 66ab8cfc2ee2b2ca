"""
Socratic Tutor - turn orchestration

Public operations of the tutoring core. Each operation loads the session,
computes every change on the in-memory copy and commits it with a single
merge-update; if any awaited call fails, nothing is written.

Per student turn:
    analyze_progress + count_stuck_turns -> decide_preliminary
    -> generate_tutor_utterance -> detects_validation -> reconcile
    -> record_step -> update_streak -> detect_completion
    -> start_assessment (on a correct, completed solution)
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from socratic_math_tutor.completion_detector import detect_completion
from socratic_math_tutor.config import TutorSettings
from socratic_math_tutor.errors import (
    ConflictError,
    ExternalServiceError,
    InvalidProblemError,
    NotMathProblemError,
    TutorTimeoutError,
    ValidationError,
)
from socratic_math_tutor.hint_policy import decide_preliminary, reconcile
from socratic_math_tutor.learning_assessment import (
    MCGradeResult,
    answer_mc_question,
    should_start_assessment,
    start_assessment,
)
from socratic_math_tutor.models import Problem, Session, Speaker, Step
from socratic_math_tutor.problem_lifecycle import (
    build_problem_draft,
    ensure_can_submit,
    get_active_problem,
    retag_problem,
    submit_problem,
)
from socratic_math_tutor.progress_analyzer import analyze_progress, count_stuck_turns
from socratic_math_tutor.session_codes import generate_session_code, is_valid_session_code
from socratic_math_tutor.session_store import SessionStore
from socratic_math_tutor.step_recorder import record_step, seed_step
from socratic_math_tutor.streak_meter import consume_streak_completed, streak_feedback, update_streak
from socratic_math_tutor.tutor_llm import ProblemValidation, TutorLLM
from socratic_math_tutor.tutor_validation import detects_validation

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000
SESSION_CODE_ATTEMPTS = 10

NO_MATH_MESSAGE = "This doesn't appear to be a math problem. Please provide a valid math problem."
INVALID_PROBLEM_MESSAGE = "This doesn't appear to be a valid, complete math problem."


def problem_info(problem: Problem) -> Dict[str, Any]:
    return {
        "problem_id": problem.problem_id,
        "category": problem.category.value,
        "difficulty": problem.difficulty.value,
        "normalized_latex": problem.normalized_latex or None,
    }


@dataclass
class ProblemStart:
    """Result of submitting a new problem: the problem and the opening prompt."""
    session_code: str
    problem: Problem
    tutor_message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_code": self.session_code,
            "tutor_message": self.tutor_message,
            "problem_info": problem_info(self.problem),
        }


@dataclass
class ProblemSelection:
    """Several problems were found in one submission; none has been started."""
    session_code: str
    problems: List[str]
    invalid_problems: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "session_code": self.session_code,
            "multiple_problems": True,
            "problems": self.problems,
        }
        if self.invalid_problems:
            payload["invalid_problems"] = self.invalid_problems
        return payload


@dataclass
class TurnResult:
    """Everything a transport needs to render one tutoring turn."""
    session_code: str
    tutor_message: str
    conversation_context: Dict[str, Any]
    streak: Dict[str, Any]
    problem_info: Dict[str, Any]
    assessment: Optional[Dict[str, Any]] = None
    hint_reason: str = field(default="", repr=False)

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "session_code": self.session_code,
            "tutor_message": self.tutor_message,
            "conversation_context": self.conversation_context,
            "streak": self.streak,
            "problem_info": self.problem_info,
        }
        if self.assessment:
            payload["assessment"] = self.assessment
        return payload


class SocraticTutor:
    """
    Session-level tutoring operations.

    Mutations of one session are serialized by an in-process asyncio lock
    keyed by session code. Writers in other processes are not coordinated;
    the store is last-write-wins across processes.
    """

    def __init__(
        self,
        settings: TutorSettings,
        store: Optional[SessionStore] = None,
        llm: Optional[TutorLLM] = None,
    ):
        self.settings = settings
        self.store = store or SessionStore(table=settings.sessions_table)
        self.llm = llm or TutorLLM(settings)
        self.timeout = settings.llm_timeout_seconds
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @asynccontextmanager
    async def _session_lock(self, session_code: str):
        """
        Hold the lock for one session code.

        The entry is dropped when the last holder or waiter leaves, so codes
        that never resolve to a session do not accumulate locks.
        """
        lock = self._locks.get(session_code)
        if lock is None:
            lock = self._locks[session_code] = asyncio.Lock()
        self._lock_users[session_code] = self._lock_users.get(session_code, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[session_code] -= 1
            if self._lock_users[session_code] == 0:
                del self._lock_users[session_code]
                del self._locks[session_code]

    async def _call(self, awaitable, purpose: str):
        """Await an external call under the configured timeout."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"⏱️  [SocraticTutor] Timed out after {self.timeout}s: {purpose}")
            raise TutorTimeoutError(f"Timed out while trying to {purpose}") from e

    @staticmethod
    def _check_code(session_code: str) -> str:
        code = (session_code or "").strip().upper()
        if not is_valid_session_code(code):
            raise ValidationError("Session code must be 6 characters (A-Z, 0-9)", field="session_code")
        return code

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def create_session(self, session_code: Optional[str] = None, now: Optional[float] = None) -> Session:
        """
        Create a session, or return the existing one when ``session_code``
        names a live session.
        """
        now = now if now is not None else time.time()
        if session_code:
            code = self._check_code(session_code)
            if await self.store.exists(code):
                logger.info(f"🔁 [SocraticTutor] Resuming session {code}")
                return await self.store.get(code)
        else:
            for _ in range(SESSION_CODE_ATTEMPTS):
                code = generate_session_code()
                if not await self.store.exists(code):
                    break
            else:
                raise ConflictError("Could not allocate a unique session code")

        session = Session(
            session_code=code,
            expires_at=int(now + self.settings.session_ttl_days * 24 * 60 * 60),
        )
        await self.store.put(session)
        logger.info(f"✅ [SocraticTutor] Created session {code}")
        return session

    async def get_session(self, session_code: str) -> Session:
        return await self.store.get(self._check_code(session_code))

    async def delete_session(self, session_code: str) -> bool:
        code = self._check_code(session_code)
        async with self._session_lock(code):
            return await self.store.delete(code)

    # ------------------------------------------------------------------
    # Problems
    # ------------------------------------------------------------------

    async def submit_problem(
        self,
        session_code: str,
        problem_text: str,
    ) -> Union[ProblemStart, ProblemSelection]:
        """
        Screen submitted text and start a problem from it.

        Text that is not math, or not a complete problem, is rejected. Text
        holding several problems is not started: the valid ones come back as
        a ProblemSelection and the student picks one via select_problem.
        Otherwise the problem and its seed step are committed together.

        Raises:
            NotMathProblemError: the text contains no math problem
            InvalidProblemError: nothing in the text is a complete problem
            ConflictError: another problem is still open
        """
        code = self._check_code(session_code)
        build_problem_draft(problem_text)  # validate before any external call
        text = problem_text.strip()

        async with self._session_lock(code):
            session = await self.store.get(code)
            ensure_can_submit(session)

            has_math = await self._with_fallback(self.llm.has_math_problem(text), True, "check for a math problem")
            if not has_math:
                raise NotMathProblemError(NO_MATH_MESSAGE, field="problem_text")

            problems = await self._with_fallback(
                self.llm.detect_multiple_problems(text), [text], "detect multiple problems"
            )
            if len(problems) >= 2:
                return await self._selection(code, problems)

            await self._require_valid(text, INVALID_PROBLEM_MESSAGE)
            return await self._start_problem(session, text)

    async def select_problem(self, session_code: str, problem_text: str) -> ProblemStart:
        """Start one of the problems offered by a ProblemSelection."""
        code = self._check_code(session_code)
        build_problem_draft(problem_text)
        text = problem_text.strip()

        async with self._session_lock(code):
            session = await self.store.get(code)
            ensure_can_submit(session)
            await self._require_valid(text, "The selected problem is not valid.")
            return await self._start_problem(session, text)

    async def retag_problem(
        self,
        session_code: str,
        problem_id: str,
        category: Optional[str] = None,
        difficulty: Optional[str] = None,
    ) -> Problem:
        """Dashboard override of a problem's category and/or difficulty."""
        code = self._check_code(session_code)
        async with self._session_lock(code):
            session = await self.store.get(code)
            problem = retag_problem(session, problem_id, category=category, difficulty=difficulty)
            await self.store.update(code, {"problems": [p.to_dict() for p in session.problems]})
        return problem

    async def _with_fallback(self, awaitable, fallback, purpose: str):
        """Await a call that has a local fallback; on timeout use the fallback."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except (asyncio.TimeoutError, ExternalServiceError):
            logger.warning(f"⚠️  [SocraticTutor] Could not {purpose}, continuing with fallback")
            return fallback

    async def _require_valid(self, text: str, default_reason: str) -> None:
        validation = await self._with_fallback(
            self.llm.validate_problem(text), ProblemValidation(valid=True), "validate problem"
        )
        if not validation.valid:
            raise InvalidProblemError(validation.reason or default_reason, field="problem_text")

    async def _selection(self, code: str, problems: List[str]) -> ProblemSelection:
        valid, invalid = [], []
        for candidate in problems:
            validation = await self._with_fallback(
                self.llm.validate_problem(candidate), ProblemValidation(valid=True), "validate problem"
            )
            if validation.valid:
                valid.append(candidate)
            else:
                invalid.append({"text": candidate, "reason": validation.reason or "Invalid problem"})

        logger.info(
            f"🔀 [SocraticTutor] {len(problems)} problems detected in session {code}: "
            f"{len(valid)} valid, {len(invalid)} invalid"
        )
        if not valid:
            raise InvalidProblemError(
                "The extracted problems don't appear to be valid math problems. "
                "Please try typing the problem manually.",
                field="problem_text",
            )
        return ProblemSelection(session_code=code, problems=valid, invalid_problems=invalid)

    async def _start_problem(self, session: Session, text: str) -> ProblemStart:
        """Create the problem, seed it with the opening question and commit. Caller holds the lock."""
        code = session.session_code
        latex = await self._with_fallback(self.llm.normalize_to_latex(text), text, "normalize to LaTeX")

        problem = submit_problem(session, build_problem_draft(text, latex))
        utterance = await self._call(
            self.llm.generate_tutor_utterance(problem, [], None, False),
            "generate the opening question",
        )
        seed_step(problem, utterance.text)
        session.add_transcript(Speaker.STUDENT, text)
        session.add_transcript(Speaker.TUTOR, utterance.text)

        await self.store.update(code, {
            "problems": [p.to_dict() for p in session.problems],
            "current_problem_id": session.current_problem_id,
            "transcript": [t.to_dict() for t in session.transcript],
        })
        return ProblemStart(session_code=code, problem=problem, tutor_message=utterance.text)

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def process_turn(
        self,
        session_code: str,
        student_response: str,
        correction_context: Optional[Dict[str, str]] = None,
    ) -> TurnResult:
        """
        Run one student turn through the tutoring pipeline.

        Args:
            session_code: Session to act on
            student_response: The student's reply
            correction_context: Optional note that the problem text was corrected

        Returns:
            TurnResult with the tutor message, turn context, streak state
            and, when triggered, the MC quiz
        """
        code = self._check_code(session_code)
        if student_response is None or not student_response.strip():
            raise ValidationError("Message is required", field="message")
        message = student_response.strip()
        if len(message) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Message must be at most {MAX_MESSAGE_LENGTH} characters", field="message")

        async with self._session_lock(code):
            session = await self.store.get(code)
            problem = get_active_problem(session)
            if problem is None:
                raise ValidationError("No active problem. Please submit a problem first.", field="current_problem_id")

            prior_steps = list(problem.steps)
            follows_hint = bool(prior_steps) and prior_steps[-1].hint_used

            analysis = analyze_progress(message, prior_steps)
            stuck_turns = count_stuck_turns(prior_steps)
            preliminary = decide_preliminary(stuck_turns, analysis)
            logger.debug(
                f"[SocraticTutor] Preliminary: progress={preliminary.progress_made} "
                f"stuck={stuck_turns} hint={preliminary.hint_requested}"
            )

            utterance = await self._call(
                self.llm.generate_tutor_utterance(
                    problem,
                    prior_steps,
                    message,
                    preliminary.hint_requested,
                    correction_context,
                ),
                "generate tutor response",
            )

            # The generated text is kept even if the hint is withdrawn below.
            final = reconcile(preliminary, detects_validation(utterance.text))
            if final.tutor_validated and not preliminary.progress_made:
                logger.info(f"✅ [SocraticTutor] {final.reason}")

            step = Step(
                tutor_prompt=utterance.text,
                student_response=message,
                hint_used=final.hint_requested,
                progress_made=final.progress_made,
                stuck_turns=final.stuck_turns,
            )
            record_step(problem, step)
            streak = update_streak(session, step, self.settings.streak_increment, follows_hint)

            session.add_transcript(Speaker.STUDENT, message)
            session.add_transcript(Speaker.TUTOR, utterance.text)

            completion = await detect_completion(message, problem, prior_steps, self.llm, self.timeout)

            assessment = None
            if should_start_assessment(problem, completion):
                assessment = await start_assessment(problem, self.llm, self.timeout)

            # The completion flag is reported in this response only.
            consume_streak_completed(session)

            await self.store.update(code, {
                "problems": [p.to_dict() for p in session.problems],
                "transcript": [t.to_dict() for t in session.transcript],
                "streak_progress": session.streak_progress,
                "streak_completions": session.streak_completions,
                "streak_completed": session.streak_completed,
                "streak_reset_pending": session.streak_reset_pending,
            })

            result = TurnResult(
                session_code=code,
                tutor_message=utterance.text,
                conversation_context={
                    "step_number": step.step_number,
                    "hints_used": problem.hints_used_total,
                    "hint_used": step.hint_used,
                    "progress_made": step.progress_made,
                    "stuck_turns": step.stuck_turns,
                    "tutor_validated": final.tutor_validated,
                    "solution_completed": completion.completed,
                    "is_correct": completion.correct,
                },
                streak={
                    "progress": streak.progress,
                    "completions": streak.completions,
                    "completed": streak.completed,
                    "feedback": streak_feedback(streak),
                },
                problem_info=problem_info(problem),
                hint_reason=final.reason,
            )
            if assessment is not None:
                result.assessment = {
                    "triggered": True,
                    "approach": assessment.approach_extracted,
                    "mc_questions": [q.to_dict() for q in assessment.mc_questions],
                    "current_question_index": 0,
                }

        return result

    async def answer_mc_question(
        self,
        session_code: str,
        question_id: str,
        selected_index: int,
        problem_id: Optional[str] = None,
    ) -> MCGradeResult:
        """Record an MC answer; grading closes the problem once all are answered."""
        code = self._check_code(session_code)
        async with self._session_lock(code):
            session = await self.store.get(code)
            result = answer_mc_question(
                session,
                question_id,
                selected_index,
                problem_id=problem_id,
                pass_threshold=self.settings.mc_pass_threshold,
            )
            await self.store.update(code, {
                "problems": [p.to_dict() for p in session.problems],
                "current_problem_id": session.current_problem_id,
            })
        return result
