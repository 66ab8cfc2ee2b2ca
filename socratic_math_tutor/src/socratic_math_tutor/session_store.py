"""
Session Store

Persists Session records in Supabase (table ``tutoring_sessions``, one row
per session code, JSON columns for problems and transcript). Without a
client, records live in an in-process dict, which is what tests and local
runs use.

Every mutation is a merge-update of top-level session fields. There are no
transactions; concurrent writers to the same session are last-write-wins.
"""

import copy
import logging
from typing import Any, Dict, Optional

from socratic_math_tutor.errors import ExternalServiceError, NotFoundError, ValidationError
from socratic_math_tutor.models import Session

logger = logging.getLogger(__name__)

SESSION_FIELDS = frozenset(Session("XXXXXX").to_dict().keys())


class SessionStore:
    """
    Session persistence with an in-memory fallback.

    Records cross this boundary only as dicts; ``Session.from_dict`` is
    applied on every read so a malformed row surfaces as ValidationError.
    """

    def __init__(self, supabase_client=None, table: str = "tutoring_sessions"):
        """
        Initialize SessionStore.

        Args:
            supabase_client: Supabase client instance (optional)
            table: Table holding session rows
        """
        self.supabase = supabase_client
        self.use_supabase = supabase_client is not None
        self.table = table
        self._in_memory_sessions: Dict[str, Dict[str, Any]] = {}

    def _load(self, data: Dict[str, Any], now: Optional[float] = None) -> Session:
        session = Session.from_dict(data)
        if session.is_expired(now):
            logger.info(f"⌛ [SessionStore] Session {session.session_code} expired")
            raise NotFoundError("Session", field="session_code")
        return session

    async def get(self, session_code: str, now: Optional[float] = None) -> Session:
        """
        Load a session.

        Raises:
            NotFoundError: unknown or expired session code
        """
        if not self.use_supabase:
            data = self._in_memory_sessions.get(session_code)
            if data is None:
                raise NotFoundError("Session", field="session_code")
            return self._load(copy.deepcopy(data), now)

        try:
            result = self.supabase.table(self.table).select('*').eq('session_code', session_code).execute()
        except Exception as e:
            logger.error(f"❌ [SessionStore] Error loading session {session_code}: {e}")
            raise ExternalServiceError("Failed to load session", e) from e

        if not result.data:
            raise NotFoundError("Session", field="session_code")
        return self._load(result.data[0], now)

    async def exists(self, session_code: str) -> bool:
        try:
            await self.get(session_code)
        except NotFoundError:
            return False
        return True

    async def put(self, session: Session) -> Session:
        """Insert or replace the whole session record."""
        record = session.to_dict()
        if not self.use_supabase:
            self._in_memory_sessions[session.session_code] = copy.deepcopy(record)
            return session

        try:
            self.supabase.table(self.table).upsert(record, on_conflict='session_code').execute()
        except Exception as e:
            logger.error(f"❌ [SessionStore] Error saving session {session.session_code}: {e}")
            raise ExternalServiceError("Failed to save session", e) from e
        return session

    async def update(self, session_code: str, fields: Dict[str, Any]) -> Session:
        """
        Merge top-level fields into an existing record.

        Args:
            session_code: Session to update
            fields: Subset of Session.to_dict() keys with plain-dict values

        Returns:
            The session as stored after the merge
        """
        unknown = set(fields) - SESSION_FIELDS
        if unknown:
            raise ValidationError(f"Unknown session fields: {', '.join(sorted(unknown))}")
        if "session_code" in fields and fields["session_code"] != session_code:
            raise ValidationError("session_code cannot be changed", field="session_code")

        if not self.use_supabase:
            data = self._in_memory_sessions.get(session_code)
            if data is None:
                raise NotFoundError("Session", field="session_code")
            merged = {**data, **copy.deepcopy(fields)}
            # Validate before committing so a bad merge never lands in the store.
            session = Session.from_dict(copy.deepcopy(merged))
            self._in_memory_sessions[session_code] = merged
            return session

        try:
            result = self.supabase.table(self.table).update(fields).eq('session_code', session_code).execute()
        except Exception as e:
            logger.error(f"❌ [SessionStore] Error updating session {session_code}: {e}")
            raise ExternalServiceError("Failed to update session", e) from e

        if not result.data:
            raise NotFoundError("Session", field="session_code")
        return Session.from_dict(result.data[0])

    async def delete(self, session_code: str) -> bool:
        """Delete a session. Returns False when it did not exist."""
        if not self.use_supabase:
            return self._in_memory_sessions.pop(session_code, None) is not None

        try:
            result = self.supabase.table(self.table).delete().eq('session_code', session_code).execute()
        except Exception as e:
            logger.error(f"❌ [SessionStore] Error deleting session {session_code}: {e}")
            raise ExternalServiceError("Failed to delete session", e) from e
        return bool(result.data)
