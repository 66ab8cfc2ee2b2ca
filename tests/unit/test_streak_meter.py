"""
Unit Tests for the Streak Meter

Tests increments, hint resets, completion and the deferred reset.
"""

import os
import sys

import pytest

project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "socratic_math_tutor", "src"))

from socratic_math_tutor.models import Session, Step
from socratic_math_tutor.streak_meter import (
    COMPLETED_MESSAGE,
    ENCOURAGEMENT,
    RESET_MESSAGE,
    consume_streak_completed,
    streak_feedback,
    update_streak,
)


def progress_step():
    return Step(tutor_prompt="...", student_response="I think it is 4", progress_made=True)


def hint_step():
    return Step(tutor_prompt="Hint: ...", student_response="idk", hint_used=True)


def neutral_step():
    return Step(tutor_prompt="...", student_response="hmm")


@pytest.fixture
def session():
    return Session(session_code="STRK01")


class TestStreakMeter:
    """Test suite for update_streak."""

    def test_five_progress_steps_complete_the_streak(self, session):
        updates = [update_streak(session, progress_step(), 20) for _ in range(5)]

        assert [u.progress for u in updates] == [20, 40, 60, 80, 100]
        assert [u.completed for u in updates] == [False, False, False, False, True]
        assert session.streak_completions == 1

    def test_hint_resets_to_zero(self, session):
        for _ in range(3):
            update_streak(session, progress_step())

        update = update_streak(session, hint_step())

        assert update.progress == 0
        assert update.reset == True
        assert session.streak_completions == 0

    def test_neutral_step_keeps_progress(self, session):
        update_streak(session, progress_step())
        update_streak(session, progress_step())

        update = update_streak(session, neutral_step())

        assert update.progress == 40
        assert update.reset == False

    def test_reset_happens_on_the_following_step(self, session):
        for _ in range(5):
            update_streak(session, progress_step())
        assert session.streak_progress == 100
        assert session.streak_reset_pending == True

        update = update_streak(session, neutral_step())

        assert update.progress == 0
        assert session.streak_reset_pending == False
        assert session.streak_completions == 1

    def test_progress_after_completion_starts_over(self, session):
        for _ in range(5):
            update_streak(session, progress_step())
        consume_streak_completed(session)

        update = update_streak(session, progress_step())

        assert update.progress == 20
        assert update.completed == False

    def test_progress_right_after_hint_earns_nothing(self, session):
        update_streak(session, progress_step())
        update_streak(session, hint_step())

        update = update_streak(session, progress_step(), follows_hint=True)

        assert update.progress == 0

    def test_step_records_reported_value(self, session):
        step = progress_step()
        update_streak(session, step)

        assert step.streak_progress == 20

    def test_completed_flag_is_one_shot(self, session):
        for _ in range(5):
            update_streak(session, progress_step())

        assert consume_streak_completed(session) == True
        assert consume_streak_completed(session) == False


class TestStreakFeedback:
    def test_encouragement_on_increase(self, session):
        update = update_streak(session, progress_step())
        assert streak_feedback(update) == ENCOURAGEMENT[20]

    def test_reset_message(self, session):
        update_streak(session, progress_step())
        update = update_streak(session, hint_step())
        assert streak_feedback(update) == RESET_MESSAGE

    def test_hint_at_zero_is_silent(self, session):
        update = update_streak(session, hint_step())
        assert streak_feedback(update) is None

    def test_completion_message(self, session):
        for _ in range(4):
            update_streak(session, progress_step())
        update = update_streak(session, progress_step())
        assert streak_feedback(update) == COMPLETED_MESSAGE

    def test_no_message_when_unchanged(self, session):
        update_streak(session, progress_step())
        update = update_streak(session, neutral_step())
        assert streak_feedback(update) is None
