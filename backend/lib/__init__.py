"""Backend utilities"""
from .supabase_client import get_supabase_client
from .auth import issue_dashboard_token, require_dashboard_auth, validate_school_code, verify_dashboard_token

__all__ = [
    "get_supabase_client",
    "issue_dashboard_token",
    "require_dashboard_auth",
    "validate_school_code",
    "verify_dashboard_token",
]
