"""
Unit Tests for the Hint Policy

Tests the stuck-turn state machine and the two-phase hint decision.
"""

import os
import sys

import pytest

project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "socratic_math_tutor", "src"))

from socratic_math_tutor.hint_policy import (
    HintState,
    decide_preliminary,
    hint_state_for,
    reconcile,
    should_hint,
)
from socratic_math_tutor.progress_analyzer import ProgressAnalysis


def analysis(made_progress):
    return ProgressAnalysis(
        made_progress=made_progress,
        progress_score=1 if made_progress else 0,
        stuck_score=0 if made_progress else 1,
        response_length=12,
    )


class TestShouldHint:
    def test_threshold(self):
        assert should_hint(2, False) == True
        assert should_hint(3, False) == True
        assert should_hint(1, False) == False

    def test_progress_suppresses_hint(self):
        assert should_hint(5, True) == False


class TestHintStates:
    @pytest.mark.parametrize("stuck_turns,expected", [
        (0, HintState.EXPLORING),
        (1, HintState.STUCK_BUILDING),
        (2, HintState.STUCK_CONFIRMED),
        (4, HintState.STUCK_CONFIRMED),
    ])
    def test_state_from_stuck_turns(self, stuck_turns, expected):
        assert hint_state_for(stuck_turns) == expected

    def test_hint_state(self):
        assert hint_state_for(2, hint_requested=True) == HintState.HINT


class TestTwoPhaseDecision:
    """Test suite for decide_preliminary -> reconcile."""

    def test_preliminary_requests_hint_when_stuck(self):
        decision = decide_preliminary(2, analysis(False))

        assert decision.hint_requested == True
        assert decision.state == HintState.HINT
        assert "Stuck for 2 turns" in decision.reason

    def test_preliminary_no_hint_below_threshold(self):
        decision = decide_preliminary(1, analysis(False))

        assert decision.hint_requested == False
        assert decision.state == HintState.STUCK_BUILDING

    def test_validation_withdraws_hint(self):
        preliminary = decide_preliminary(2, analysis(False))
        final = reconcile(preliminary, tutor_validated=True)

        assert final.hint_requested == False
        assert final.progress_made == True
        assert final.tutor_validated == True
        assert final.state == HintState.EXPLORING
        assert "hint withdrawn" in final.reason

    def test_no_validation_keeps_preliminary(self):
        preliminary = decide_preliminary(2, analysis(False))
        final = reconcile(preliminary, tutor_validated=False)

        assert final.hint_requested == True
        assert final.progress_made == False

    def test_validation_never_adds_a_hint(self):
        preliminary = decide_preliminary(0, analysis(True))
        final = reconcile(preliminary, tutor_validated=False)

        assert final.hint_requested == False
        assert final.progress_made == True

    def test_reconcile_is_pure(self):
        preliminary = decide_preliminary(3, analysis(False))

        first = reconcile(preliminary, True)
        second = reconcile(preliminary, True)

        assert first == second
        assert preliminary.hint_requested == True
