"""
Error Taxonomy

Exceptions raised by the tutoring core. Each carries the HTTP-equivalent
status code and a machine-readable code so any transport layer can surface
it without knowing the individual classes.
"""

from typing import Optional


class TutorError(Exception):
    """Base class for all tutoring errors."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        payload = {"message": self.message, "code": self.code}
        if self.field:
            payload["field"] = self.field
        return payload


class ValidationError(TutorError):
    """Malformed input (e.g. empty student text). Never retried."""

    status_code = 400
    code = "VALIDATION_ERROR"


class NotMathProblemError(ValidationError):
    """Submitted text does not contain a math problem."""

    code = "NO_MATH_PROBLEM"


class InvalidProblemError(ValidationError):
    """Submitted text is math but not a complete, solvable problem."""

    code = "INVALID_PROBLEM"


class ConflictError(TutorError):
    """Single-active-problem violation."""

    status_code = 409
    code = "CONFLICT"


class NotFoundError(TutorError):
    """Missing session, problem or MC question."""

    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource", field: Optional[str] = None):
        super().__init__(f"{resource} not found", field=field)
        self.resource = resource


class ExternalServiceError(TutorError):
    """A text-generation or judgment call failed."""

    status_code = 502
    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, message: str, original_error: Optional[BaseException] = None):
        super().__init__(message)
        self.original_error = original_error


class TutorTimeoutError(TutorError, TimeoutError):
    """An external call exceeded the configured timeout. Nothing was persisted."""

    status_code = 504
    code = "TIMEOUT"


class AuthenticationError(TutorError):
    """Invalid password, school code or dashboard token."""

    status_code = 401
    code = "AUTH_ERROR"


class ConfigurationError(TutorError):
    """Required configuration (password, secret) is missing."""

    status_code = 500
    code = "CONFIG_ERROR"
