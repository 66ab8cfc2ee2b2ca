"""
Dashboard and school-code authentication

All checks take the injected TutorSettings; nothing here reads the
environment.
"""
import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Header, Request
from jose import JWTError, jwt

from socratic_math_tutor.config import TutorSettings
from socratic_math_tutor.errors import AuthenticationError, ConfigurationError

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
DASHBOARD_TOKEN_TYPE = "dashboard"


def _matches(candidate: Optional[str], expected: str) -> bool:
    return candidate is not None and hmac.compare_digest(candidate.encode(), expected.encode())


def issue_dashboard_token(password: str, settings: TutorSettings, now: Optional[datetime] = None) -> str:
    """
    Exchange the dashboard password for a signed token.

    Raises:
        ConfigurationError: DASHBOARD_PASSWORD is not configured
        AuthenticationError: wrong password
    """
    if not settings.dashboard_password:
        logger.error("DASHBOARD_PASSWORD not set in environment variables")
        raise ConfigurationError("Dashboard authentication not configured")

    if not _matches(password, settings.dashboard_password):
        raise AuthenticationError("Invalid password", field="password")

    issued_at = now or datetime.now(timezone.utc)
    payload = {
        "type": DASHBOARD_TOKEN_TYPE,
        "iat": issued_at,
        "exp": issued_at + timedelta(hours=settings.dashboard_token_hours),
    }
    return jwt.encode(payload, settings.session_secret, algorithm=JWT_ALGORITHM)


def verify_dashboard_token(token: str, settings: TutorSettings) -> bool:
    """True for an unexpired dashboard token signed with our secret."""
    try:
        payload = jwt.decode(token, settings.session_secret, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        logger.debug(f"Token verification failed: {e}")
        return False
    return payload.get("type") == DASHBOARD_TOKEN_TYPE


async def require_dashboard_auth(request: Request, authorization: Optional[str] = Header(None)) -> None:
    """
    FastAPI dependency guarding dashboard routes.

    Settings are read from ``app.state.settings``.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationError("Authentication required", field="authorization")

    token = authorization[len("Bearer "):]
    if not verify_dashboard_token(token, request.app.state.settings):
        raise AuthenticationError("Invalid or expired token", field="authorization")


def validate_school_code(school_code: Optional[str], settings: TutorSettings) -> bool:
    """
    Check the school code (session password) students enter to start.

    Raises:
        ConfigurationError: SESSION_PASSWORD is not configured
        AuthenticationError: missing or wrong code
    """
    if not settings.session_password:
        logger.error("SESSION_PASSWORD not set in environment variables")
        raise ConfigurationError("School code authentication not configured")

    if not school_code or not _matches(school_code, settings.session_password):
        raise AuthenticationError("Invalid school code", field="school_code")
    return True
