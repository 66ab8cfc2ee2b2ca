"""
Tutor LLM Client

All calls to the text-generation model go through this class. Each method
raises ExternalServiceError when the call or its response parsing fails;
callers decide whether a local fallback exists.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from openai import AsyncOpenAI

from socratic_math_tutor.config import TutorSettings
from socratic_math_tutor.errors import ConfigurationError, ExternalServiceError
from socratic_math_tutor.models import Problem, Step

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a patient, encouraging math tutor for K-12 students. Your role is to guide students to discover solutions through Socratic questioning.

CRITICAL RULES:
1. NEVER give direct answers or solve problems for the student
2. Ask guiding questions that help students think through the problem
3. If a student is stuck after 2+ turns with no progress, provide a concrete hint (but still guide them to the answer)
4. Use encouraging, supportive language even when students make mistakes
5. Break complex problems into smaller, manageable steps
6. Acknowledge correct thinking and build on it
7. When students provide correct answers, validate them clearly at the start of your reply (e.g. "That's correct!") and explain why

TONE:
- Warm and encouraging
- Patient with mistakes
- Celebrate progress, even small steps
- Use age-appropriate language for K-12 students"""

HINT_INSTRUCTION = (
    "The student has been stuck for 2+ turns. Provide a concrete hint while still "
    "guiding them to discover the answer themselves. Make it encouraging."
)

OPENING_INSTRUCTION = "Start the conversation with a Socratic question to help the student discover the solution."

_FENCE_RE = re.compile(r"```(?:json|latex)?\s*|\s*```")
_NUMBERED_LINE_RE = re.compile(r"^\d+[.)]\s+")


@dataclass
class TutorUtterance:
    """One generated tutor message."""
    text: str
    hint_included: bool
    tokens_used: int = 0


@dataclass
class ProblemValidation:
    """Whether a text is a complete, solvable math problem."""
    valid: bool
    reason: Optional[str] = None


def parse_problem_list(content: str, raw_text: str) -> List[str]:
    """
    Parse a SINGLE:/MULTIPLE: split answer.

    Anything that is not at least two numbered problems is treated as the
    original text being one problem.
    """
    content = (content or "").strip()
    if content.upper().startswith("MULTIPLE:"):
        lines = [line.strip() for line in content[len("MULTIPLE:"):].splitlines()]
        problems = [
            _NUMBERED_LINE_RE.sub("", line).strip()
            for line in lines
            if _NUMBERED_LINE_RE.match(line)
        ]
        problems = [p for p in problems if p]
        if len(problems) >= 2:
            return problems
    elif content.upper().startswith("SINGLE:"):
        single = content[len("SINGLE:"):].strip()
        if single:
            return [single]
    return [raw_text]


def parse_validation(content: str) -> ProblemValidation:
    content = (content or "").strip()
    if content.upper().startswith("VALID"):
        return ProblemValidation(valid=True)
    match = re.search(r"INVALID\s*:?\s*(.+)", content, re.IGNORECASE | re.DOTALL)
    reason = match.group(1).strip() if match else "Problem is not valid or complete"
    return ProblemValidation(valid=False, reason=reason)


def strip_fences(content: str) -> str:
    return _FENCE_RE.sub("", content or "").strip()


def parse_json_payload(content: str) -> Any:
    """Parse a JSON object/array from model output, tolerating code fences."""
    cleaned = strip_fences(content)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        match = re.search(r"(\{.*\}|\[.*\])", cleaned, re.DOTALL)
        if not match:
            raise
        return json.loads(match.group(0))


def _problem_header(problem: Problem) -> str:
    header = f"Problem: {problem.raw_input}"
    if problem.normalized_latex and problem.normalized_latex != problem.raw_input:
        header += f"\nLaTeX: {problem.normalized_latex}"
    return header + f"\nCategory: {problem.category.value}"


def _history_text(steps: Sequence[Step]) -> str:
    lines = []
    for step in steps:
        if step.student_response:
            lines.append(f"Student: {step.student_response}")
        lines.append(f"Tutor: {step.tutor_prompt}")
    return "\n".join(lines)


class TutorLLM:
    """OpenAI-backed text generation for the tutor."""

    def __init__(self, settings: TutorSettings, client: Optional[AsyncOpenAI] = None):
        self.model = settings.openai_model
        if client is not None:
            self.client = client
        else:
            if not settings.openai_api_key:
                raise ConfigurationError("OPENAI_API_KEY not found in environment variables")
            self.client = AsyncOpenAI(api_key=settings.openai_api_key)

    async def _complete(
        self,
        messages: List[Dict[str, str]],
        max_tokens: int,
        temperature: float,
        purpose: str,
    ):
        try:
            return await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except Exception as e:
            logger.error(f"❌ [TutorLLM] {purpose} failed: {e}")
            raise ExternalServiceError(f"Failed to {purpose}", e) from e

    @staticmethod
    def _content(completion) -> str:
        if not completion.choices:
            return ""
        return (completion.choices[0].message.content or "").strip()

    async def generate_tutor_utterance(
        self,
        problem: Problem,
        history: Sequence[Step],
        student_response: Optional[str],
        hint_requested: bool,
        correction_context: Optional[Dict[str, str]] = None,
    ) -> TutorUtterance:
        """
        Generate the tutor's next message.

        Args:
            problem: The active problem
            history: Steps recorded so far
            student_response: Current student reply (None for the opening prompt)
            hint_requested: Whether the reply must include a concrete hint
            correction_context: Optional {"original_text", "corrected_text"} when
                the problem text was corrected mid-conversation
        """
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": f"{_problem_header(problem)}\n\n{OPENING_INSTRUCTION}"},
        ]
        # Each step is the student reply followed by the tutor message answering it.
        for step in history:
            if step.student_response:
                messages.append({"role": "user", "content": step.student_response})
            if step.tutor_prompt:
                messages.append({"role": "assistant", "content": step.tutor_prompt})
        if student_response:
            messages.append({"role": "user", "content": student_response})
        if correction_context:
            messages.append({
                "role": "system",
                "content": (
                    f"Note: the problem text was corrected from \"{correction_context.get('original_text', '')}\" "
                    f"to \"{correction_context.get('corrected_text', '')}\". Briefly acknowledge the correction."
                ),
            })
        if hint_requested:
            messages.append({"role": "system", "content": HINT_INSTRUCTION})

        completion = await self._complete(messages, 200, 0.7, "generate tutor response")
        text = self._content(completion)
        if not text:
            raise ExternalServiceError("Tutor model returned an empty response")

        usage = getattr(completion, "usage", None)
        tokens = getattr(usage, "total_tokens", 0) if usage else 0
        logger.debug(f"[TutorLLM] Generated tutor response: {text[:100]}...")
        return TutorUtterance(text=text, hint_included=hint_requested, tokens_used=tokens or 0)

    async def detect_completion_external(
        self,
        student_response: str,
        problem: Problem,
        recent_history: Sequence[Step],
    ) -> Dict[str, Any]:
        """
        Ask the model whether the reply is a final answer and whether it is right.

        Returns:
            {"solution_completed": bool, "is_correct": bool, "reasoning": str}
        """
        prompt = f"""{_problem_header(problem)}

Recent conversation:
{_history_text(recent_history) or "(none)"}

Student's latest message: "{student_response}"

Is the student's latest message a FINAL answer to the whole problem (not an intermediate step)? If so, is it correct?

Respond with ONLY a JSON object:
{{"solution_completed": true or false, "is_correct": true or false, "reasoning": "brief explanation"}}"""

        completion = await self._complete(
            [
                {"role": "system", "content": "You are an expert at verifying math answers. Respond with valid JSON only."},
                {"role": "user", "content": prompt},
            ],
            150,
            0.1,
            "detect solution completion",
        )
        try:
            result = parse_json_payload(self._content(completion))
        except (json.JSONDecodeError, ValueError) as e:
            raise ExternalServiceError("Completion judgment was not valid JSON", e) from e
        if not isinstance(result, dict) or "solution_completed" not in result:
            raise ExternalServiceError("Completion judgment is missing 'solution_completed'")
        return result

    async def extract_approach(self, problem: Problem, history: Sequence[Step]) -> str:
        """Describe the problem-solving approach used in the conversation."""
        prompt = f"""Analyze this math tutoring conversation and identify the specific problem-solving approach/method that was used.

{_problem_header(problem)}

Conversation:
{_history_text(history)}

Identify the core approach used (e.g., "solving linear equations by isolating variables", "using area formula for rectangles").

Respond with ONLY a brief description of the approach (1-2 sentences max)."""

        completion = await self._complete(
            [
                {
                    "role": "system",
                    "content": "You are an expert at identifying mathematical problem-solving approaches from tutoring conversations. Respond concisely.",
                },
                {"role": "user", "content": prompt},
            ],
            100,
            0.3,
            "extract approach",
        )
        approach = self._content(completion)
        if not approach:
            raise ExternalServiceError("Approach extraction returned an empty response")
        return approach

    async def generate_mc_questions(
        self,
        problem: Problem,
        approach: str,
        history: Sequence[Step],
    ) -> List[Dict[str, Any]]:
        """
        Generate 2-3 raw MC questions as dicts. Callers must re-validate them.
        """
        key_steps = ", ".join(
            [s.student_response for s in history if s.progress_made and s.student_response][-3:]
        ) or "Student worked through the problem step by step"

        prompt = f"""Generate EXACTLY 2-3 multiple choice questions (prefer 3, minimum 2) that test understanding of the problem-solving approach used. Make them age-appropriate for K-12 students.

Problem: {problem.raw_input}
Approach used: {approach}
Key steps taken: {key_steps}

Test different aspects: which method was used, key steps in the approach, and why the approach works.

For each question provide the question text, 4 answer options (one correct, three plausible distractors) and the correct answer index (0-3).

Respond with ONLY a JSON array:
[{{"question": "...", "options": ["...", "...", "...", "..."], "correct_answer_index": 0}}]"""

        completion = await self._complete(
            [
                {"role": "system", "content": "You are an expert at creating educational multiple choice questions. Respond with valid JSON only."},
                {"role": "user", "content": prompt},
            ],
            500,
            0.7,
            "generate MC questions",
        )
        try:
            questions = parse_json_payload(self._content(completion))
        except (json.JSONDecodeError, ValueError) as e:
            raise ExternalServiceError("MC questions were not valid JSON", e) from e
        if isinstance(questions, dict):
            questions = questions.get("questions", [])
        if not isinstance(questions, list):
            raise ExternalServiceError("MC questions payload is not a list")
        return questions

    async def normalize_to_latex(self, raw_text: str) -> str:
        """Convert a problem statement to LaTeX. Falls back to the raw text."""
        if not raw_text or not raw_text.strip():
            return (raw_text or "").strip()

        prompt = f"""Convert this math problem or equation to LaTeX format. Keep the meaning identical. Return only the LaTeX code, nothing else.

Problem: "{raw_text}"

LaTeX:"""
        try:
            completion = await self._complete(
                [
                    {"role": "system", "content": "You are a math notation converter. Convert mathematical expressions to LaTeX format accurately and concisely."},
                    {"role": "user", "content": prompt},
                ],
                200,
                0.3,
                "normalize to LaTeX",
            )
        except ExternalServiceError:
            return raw_text
        return strip_fences(self._content(completion)) or raw_text

    async def has_math_problem(self, text: str) -> bool:
        """YES/NO check that the text contains a math problem. Assumes it does if the model is unavailable."""
        if not text or not text.strip():
            return False

        prompt = f"""Does this text contain a math problem? Respond with only "YES" or "NO".

Text: "{text}"
"""
        try:
            completion = await self._complete(
                [
                    {"role": "system", "content": "You are a math problem detector. Determine if text contains a math problem."},
                    {"role": "user", "content": prompt},
                ],
                10,
                0.1,
                "check for a math problem",
            )
        except ExternalServiceError:
            return True
        has_math = self._content(completion).upper().rstrip(".") == "YES"
        logger.debug(f"[TutorLLM] Math problem check: {'YES' if has_math else 'NO'}")
        return has_math

    async def detect_multiple_problems(self, text: str) -> List[str]:
        """
        Split text into separate math problems.

        Returns one entry per problem; a single entry means the text is one
        problem. Falls back to ``[text]``.
        """
        prompt = f"""Does this text contain one math problem or multiple separate math problems? If multiple, list them numbered.

Text: "{text}"

If there is only ONE problem, respond with: "SINGLE: [the problem text]"
If there are MULTIPLE problems, respond with each problem on a new line numbered: "MULTIPLE:
1. [first problem]
2. [second problem]
..."
"""
        try:
            completion = await self._complete(
                [
                    {
                        "role": "system",
                        "content": "You are a math problem parser. Identify if text contains one or multiple separate math problems.",
                    },
                    {"role": "user", "content": prompt},
                ],
                1000,
                0.3,
                "detect multiple problems",
            )
        except ExternalServiceError:
            return [text]
        problems = parse_problem_list(self._content(completion), text)
        if len(problems) > 1:
            logger.debug(f"[TutorLLM] Detected {len(problems)} problems in text")
        return problems

    async def validate_problem(self, text: str) -> ProblemValidation:
        """Check that the text is a complete, solvable problem. Assumes valid if the model is unavailable."""
        if not text or not text.strip():
            return ProblemValidation(valid=False, reason="Problem text is empty")

        prompt = f"""Is this a valid, complete math problem? Respond with "VALID" or "INVALID" followed by a brief reason.

Problem: "{text}"
"""
        try:
            completion = await self._complete(
                [
                    {
                        "role": "system",
                        "content": "You are a math problem validator. Determine if text is a valid, complete, solvable math problem.",
                    },
                    {"role": "user", "content": prompt},
                ],
                100,
                0.2,
                "validate problem",
            )
        except ExternalServiceError:
            return ProblemValidation(valid=True)
        validation = parse_validation(self._content(completion))
        logger.debug(f"[TutorLLM] Problem validation: valid={validation.valid} reason={validation.reason}")
        return validation
