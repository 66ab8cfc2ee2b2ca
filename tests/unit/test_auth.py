"""
Unit Tests for dashboard and school-code authentication
"""

import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "socratic_math_tutor", "src"))
sys.path.insert(0, os.path.join(project_root, "backend"))

from lib.auth import issue_dashboard_token, validate_school_code, verify_dashboard_token
from socratic_math_tutor.config import TutorSettings
from socratic_math_tutor.errors import AuthenticationError, ConfigurationError


@pytest.fixture
def auth_settings():
    return TutorSettings(
        dashboard_password="dashboard-pass",
        session_password="MATH2024",
        session_secret="unit-test-secret",
    )


class TestDashboardToken:
    def test_issue_and_verify(self, auth_settings):
        token = issue_dashboard_token("dashboard-pass", auth_settings)
        assert verify_dashboard_token(token, auth_settings) == True

    def test_wrong_password(self, auth_settings):
        with pytest.raises(AuthenticationError):
            issue_dashboard_token("guess", auth_settings)

    def test_unconfigured_password(self):
        with pytest.raises(ConfigurationError):
            issue_dashboard_token("anything", TutorSettings())

    def test_expired_token(self, auth_settings):
        issued = datetime.now(timezone.utc) - timedelta(hours=48)
        token = issue_dashboard_token("dashboard-pass", auth_settings, now=issued)

        assert verify_dashboard_token(token, auth_settings) == False

    def test_token_signed_with_other_secret(self, auth_settings):
        other = TutorSettings(dashboard_password="dashboard-pass", session_secret="another-secret")
        token = issue_dashboard_token("dashboard-pass", other)

        assert verify_dashboard_token(token, auth_settings) == False

    def test_garbage_token(self, auth_settings):
        assert verify_dashboard_token("not-a-token", auth_settings) == False


class TestSchoolCode:
    def test_valid_code(self, auth_settings):
        assert validate_school_code("MATH2024", auth_settings) == True

    @pytest.mark.parametrize("code", [None, "", "math2024", "WRONG"])
    def test_invalid_code(self, auth_settings, code):
        with pytest.raises(AuthenticationError):
            validate_school_code(code, auth_settings)

    def test_unconfigured_code(self):
        with pytest.raises(ConfigurationError):
            validate_school_code("MATH2024", TutorSettings())
