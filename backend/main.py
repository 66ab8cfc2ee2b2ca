"""
FastAPI Backend for the Socratic Math Tutor

Provides REST API endpoints for:
- Student sessions (short shareable codes, optional school code)
- Problem submission and Socratic chat turns
- Post-solution MC quiz answers
- Password-protected dashboard access to session records
"""

import logging
import os
import sys
import time
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

# Add the socratic_math_tutor package to Python path (lib imports it too)
backend_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(backend_dir)
package_src = os.path.join(project_root, 'socratic_math_tutor', 'src')
if os.path.exists(package_src) and package_src not in sys.path:
    sys.path.insert(0, package_src)

from lib.logger import setup_logging, get_logger

setup_logging(level=logging.INFO, use_colors=True)

logger = get_logger("backend.main")

from socratic_math_tutor.config import TutorSettings
from socratic_math_tutor.errors import NotFoundError, TutorError
from socratic_math_tutor.models import Session
from socratic_math_tutor.session_store import SessionStore
from socratic_math_tutor.socratic_tutor import SocraticTutor

from lib.auth import issue_dashboard_token, require_dashboard_auth, validate_school_code
from lib.supabase_client import get_supabase_client

API_VERSION = "1.0.0"


# ==================== Pydantic Models ====================

class CreateSessionRequest(BaseModel):
    session_code: Optional[str] = None
    school_code: Optional[str] = None


class SubmitProblemRequest(BaseModel):
    problem_text: str


class SelectProblemRequest(BaseModel):
    problem_text: str


class CorrectionContext(BaseModel):
    original_text: str
    corrected_text: str


class ChatRequest(BaseModel):
    message: str
    correction_context: Optional[CorrectionContext] = None


class MCAnswerRequest(BaseModel):
    question_id: str
    selected_index: int
    problem_id: Optional[str] = None


class DashboardLoginRequest(BaseModel):
    password: str


class ProblemTagsRequest(BaseModel):
    category: Optional[str] = None
    difficulty: Optional[str] = None


# ==================== Helper Functions ====================

def session_summary(session: Session) -> Dict[str, Any]:
    """Student-facing view of a session (no transcript)."""
    return {
        "session_code": session.session_code,
        "created_at": session.created_at,
        "expires_at": session.expires_at,
        "current_problem_id": session.current_problem_id,
        "problems": [p.to_dict() for p in session.problems],
        "streak": {
            "progress": session.streak_progress,
            "completions": session.streak_completions,
        },
    }


def build_tutor(settings: TutorSettings) -> SocraticTutor:
    """Wire the store and LLM client from settings."""
    if settings.supabase_configured:
        store = SessionStore(get_supabase_client(settings), table=settings.sessions_table)
        logger.info("💾 Using Supabase session store", data={"table": settings.sessions_table})
    else:
        store = SessionStore(table=settings.sessions_table)
        logger.warning("Supabase not configured - sessions are kept in memory")
    return SocraticTutor(settings, store=store)


def get_tutor(request: Request) -> SocraticTutor:
    """Singleton SocraticTutor, created on first use."""
    state = request.app.state
    if state.tutor is None:
        state.tutor = build_tutor(state.settings)
    return state.tutor


def get_settings(request: Request) -> TutorSettings:
    return request.app.state.settings


# ==================== App Factory ====================

def create_app(settings: Optional[TutorSettings] = None, tutor: Optional[SocraticTutor] = None) -> FastAPI:
    settings = settings or TutorSettings.from_env()

    app = FastAPI(
        title="Socratic Math Tutor API",
        description="REST API for Socratic K-12 math tutoring",
        version=API_VERSION,
    )
    app.state.settings = settings
    app.state.tutor = tutor

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(TutorError)
    async def tutor_error_handler(request: Request, exc: TutorError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed", error=exc)
        else:
            logger.warning(f"{request.method} {request.url.path} rejected: {exc.code} {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        logger.response(response.status_code, request.url.path, duration=time.time() - start_time)
        return response

    # ==================== API Endpoints ====================

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {
            "status": "ok",
            "service": "Socratic Math Tutor API",
            "version": API_VERSION,
            "supabase_configured": settings.supabase_configured,
        }

    @app.post("/api/sessions")
    async def create_session(
        body: CreateSessionRequest,
        tutor: SocraticTutor = Depends(get_tutor),
        settings: TutorSettings = Depends(get_settings),
    ):
        """Create a session, or resume one by code. School code is checked when configured."""
        if settings.session_password:
            validate_school_code(body.school_code, settings)
        session = await tutor.create_session(body.session_code)
        return session_summary(session)

    @app.get("/api/sessions/{session_code}")
    async def get_session(session_code: str, tutor: SocraticTutor = Depends(get_tutor)):
        session = await tutor.get_session(session_code)
        return session_summary(session)

    @app.delete("/api/sessions/{session_code}")
    async def delete_session(session_code: str, tutor: SocraticTutor = Depends(get_tutor)):
        if not await tutor.delete_session(session_code):
            raise NotFoundError("Session", field="session_code")
        return {"status": "deleted", "session_code": session_code.upper()}

    @app.post("/api/sessions/{session_code}/problems")
    async def submit_problem(
        session_code: str,
        body: SubmitProblemRequest,
        tutor: SocraticTutor = Depends(get_tutor),
    ):
        """
        Submit a text problem. Returns the opening Socratic question, or
        ``multiple_problems`` with the candidates when the text holds several.
        """
        logger.request("POST", "/api/sessions/{code}/problems", session_code=session_code, data={
            "problem_length": len(body.problem_text or ""),
        })
        started = await tutor.submit_problem(session_code, body.problem_text)
        return started.to_dict()

    @app.post("/api/sessions/{session_code}/problems/select")
    async def select_problem(
        session_code: str,
        body: SelectProblemRequest,
        tutor: SocraticTutor = Depends(get_tutor),
    ):
        """Start one problem picked from a multiple-problem submission."""
        started = await tutor.select_problem(session_code, body.problem_text)
        return started.to_dict()

    @app.post("/api/sessions/{session_code}/chat")
    async def chat(
        session_code: str,
        body: ChatRequest,
        tutor: SocraticTutor = Depends(get_tutor),
    ):
        """One student turn."""
        logger.section("CHAT REQUEST PROCESSING", {
            "session_code": session_code,
            "message_length": len(body.message or ""),
        })
        correction = None
        if body.correction_context is not None:
            correction = {
                "original_text": body.correction_context.original_text,
                "corrected_text": body.correction_context.corrected_text,
            }
        result = await tutor.process_turn(session_code, body.message, correction)
        logger.success("Turn processed", data={
            "step_number": result.conversation_context["step_number"],
            "hint_used": result.conversation_context["hint_used"],
            "progress_made": result.conversation_context["progress_made"],
            "streak": result.streak["progress"],
            "assessment_triggered": result.assessment is not None,
        })
        return result.to_dict()

    @app.post("/api/sessions/{session_code}/mc-answer")
    async def mc_answer(
        session_code: str,
        body: MCAnswerRequest,
        tutor: SocraticTutor = Depends(get_tutor),
    ):
        result = await tutor.answer_mc_question(
            session_code,
            body.question_id,
            body.selected_index,
            problem_id=body.problem_id,
        )
        return {"session_code": session_code.upper(), "mc_result": result.to_dict()}

    @app.post("/api/dashboard/login")
    async def dashboard_login(body: DashboardLoginRequest, settings: TutorSettings = Depends(get_settings)):
        token = issue_dashboard_token(body.password, settings)
        return {"token": token, "expires_in_hours": settings.dashboard_token_hours}

    @app.get("/api/dashboard/sessions/{session_code}", dependencies=[Depends(require_dashboard_auth)])
    async def dashboard_session(session_code: str, tutor: SocraticTutor = Depends(get_tutor)):
        """Full session record, transcript included."""
        session = await tutor.get_session(session_code)
        return session.to_dict()

    @app.put(
        "/api/dashboard/sessions/{session_code}/problems/{problem_id}",
        dependencies=[Depends(require_dashboard_auth)],
    )
    async def dashboard_retag_problem(
        session_code: str,
        problem_id: str,
        body: ProblemTagsRequest,
        tutor: SocraticTutor = Depends(get_tutor),
    ):
        """Override the category and/or difficulty of a problem."""
        problem = await tutor.retag_problem(
            session_code, problem_id, category=body.category, difficulty=body.difficulty
        )
        return {"success": True, "problem": problem.to_dict()}

    @app.delete("/api/dashboard/sessions/{session_code}", dependencies=[Depends(require_dashboard_auth)])
    async def dashboard_delete_session(session_code: str, tutor: SocraticTutor = Depends(get_tutor)):
        if not await tutor.delete_session(session_code):
            raise NotFoundError("Session", field="session_code")
        logger.info(f"🗑️  Session {session_code.upper()} deleted from dashboard")
        return {"success": True, "message": "Session deleted successfully"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    try:
        uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
    except KeyboardInterrupt:
        logger.info("🛑 Server stopped.")
        sys.exit(0)
