"""
Tutor Configuration

Single settings object built from the environment once at startup and
passed to the services that need it (store, LLM client, auth checks).
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(frozen=True)
class TutorSettings:
    """Runtime configuration for the tutoring backend."""

    # Text generation
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    llm_timeout_seconds: float = 30.0

    # Persistence
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None
    sessions_table: str = "tutoring_sessions"
    session_ttl_days: int = 30

    # Tutoring policy
    streak_increment: int = 20
    mc_pass_threshold: float = 0.67

    # Authentication
    dashboard_password: Optional[str] = None
    session_password: Optional[str] = None  # school code
    session_secret: str = "default-secret-change-in-production"
    dashboard_token_hours: int = 24

    cors_origins: List[str] = field(
        default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"]
    )

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)

    @classmethod
    def from_env(cls) -> "TutorSettings":
        """Load settings from the process environment (and .env files)."""
        load_dotenv()
        load_dotenv('../.env')  # Also try parent directory

        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            llm_timeout_seconds=float(os.getenv("LLM_TIMEOUT_SECONDS", "30")),
            supabase_url=os.getenv("SUPABASE_URL"),
            supabase_service_key=os.getenv("SUPABASE_SERVICE_KEY"),
            sessions_table=os.getenv("SESSIONS_TABLE", "tutoring_sessions"),
            session_ttl_days=int(os.getenv("SESSION_TTL_DAYS", "30")),
            streak_increment=int(os.getenv("STREAK_INCREMENT", "20")),
            mc_pass_threshold=float(os.getenv("MC_PASS_THRESHOLD", "0.67")),
            dashboard_password=os.getenv("DASHBOARD_PASSWORD"),
            session_password=os.getenv("SESSION_PASSWORD"),
            session_secret=os.getenv("SESSION_SECRET", "default-secret-change-in-production"),
            dashboard_token_hours=int(os.getenv("DASHBOARD_TOKEN_HOURS", "24")),
            cors_origins=_env_list(
                "CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"
            ),
        )
