"""
Supabase client for session persistence
"""
from typing import Optional

from supabase import create_client, Client

from socratic_math_tutor.config import TutorSettings
from socratic_math_tutor.errors import ConfigurationError

_supabase_client: Optional[Client] = None


def get_supabase_client(settings: TutorSettings) -> Client:
    """Get or create Supabase client singleton"""
    global _supabase_client

    if _supabase_client is None:
        if not settings.supabase_configured:
            raise ConfigurationError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set in environment")
        # Service role key: the backend is the only writer of session rows
        _supabase_client = create_client(settings.supabase_url, settings.supabase_service_key)

    return _supabase_client
