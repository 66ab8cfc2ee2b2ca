"""
Unit Tests for the Session Store

Tests the in-memory backend and error mapping for the Supabase backend.
"""

import os
import sys

import pytest

project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "socratic_math_tutor", "src"))

from socratic_math_tutor.errors import ExternalServiceError, NotFoundError, ValidationError
from socratic_math_tutor.models import Session
from socratic_math_tutor.session_store import SessionStore


class FailingQuery:
    """Supabase query builder whose execute() always fails."""

    def __getattr__(self, name):
        return lambda *args, **kwargs: self

    def execute(self):
        raise ConnectionError("connection refused")


class FailingSupabase:
    def table(self, name):
        return FailingQuery()


@pytest.fixture
def store():
    return SessionStore()


class TestInMemoryStore:
    """Test suite for the in-memory backend."""

    @pytest.mark.asyncio
    async def test_put_then_get(self, store):
        await store.put(Session(session_code="ABC123", streak_progress=40))

        session = await store.get("ABC123")

        assert session.session_code == "ABC123"
        assert session.streak_progress == 40

    @pytest.mark.asyncio
    async def test_unknown_code(self, store):
        with pytest.raises(NotFoundError):
            await store.get("NOPE00")
        assert await store.exists("NOPE00") == False

    @pytest.mark.asyncio
    async def test_update_merges_fields(self, store):
        await store.put(Session(session_code="ABC123", streak_completions=3))

        updated = await store.update("ABC123", {"streak_progress": 60})

        assert updated.streak_progress == 60
        assert updated.streak_completions == 3
        assert (await store.get("ABC123")).streak_progress == 60

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_fields(self, store):
        await store.put(Session(session_code="ABC123"))

        with pytest.raises(ValidationError):
            await store.update("ABC123", {"favourite_colour": "blue"})

    @pytest.mark.asyncio
    async def test_update_cannot_change_code(self, store):
        await store.put(Session(session_code="ABC123"))

        with pytest.raises(ValidationError):
            await store.update("ABC123", {"session_code": "XYZ789"})

    @pytest.mark.asyncio
    async def test_invalid_merge_is_not_committed(self, store):
        await store.put(Session(session_code="ABC123", streak_progress=20))

        with pytest.raises(ValidationError):
            await store.update("ABC123", {"streak_progress": 500})
        assert (await store.get("ABC123")).streak_progress == 20

    @pytest.mark.asyncio
    async def test_update_unknown_session(self, store):
        with pytest.raises(NotFoundError):
            await store.update("NOPE00", {"streak_progress": 20})

    @pytest.mark.asyncio
    async def test_returned_sessions_are_copies(self, store):
        await store.put(Session(session_code="ABC123"))

        session = await store.get("ABC123")
        session.streak_progress = 80

        assert (await store.get("ABC123")).streak_progress == 0

    @pytest.mark.asyncio
    async def test_expired_session_is_not_found(self, store):
        await store.put(Session(session_code="OLD001", expires_at=100))

        with pytest.raises(NotFoundError):
            await store.get("OLD001", now=200)

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.put(Session(session_code="ABC123"))

        assert await store.delete("ABC123") == True
        assert await store.delete("ABC123") == False
        assert await store.exists("ABC123") == False


class TestSupabaseErrors:
    @pytest.mark.asyncio
    async def test_failures_surface_as_external_service_errors(self):
        store = SessionStore(supabase_client=FailingSupabase())

        with pytest.raises(ExternalServiceError):
            await store.get("ABC123")
        with pytest.raises(ExternalServiceError):
            await store.put(Session(session_code="ABC123"))
        with pytest.raises(ExternalServiceError):
            await store.update("ABC123", {"streak_progress": 20})
        with pytest.raises(ExternalServiceError):
            await store.delete("ABC123")
