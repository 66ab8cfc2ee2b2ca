"""Short human-shareable session codes (6 characters, A-Z and 0-9)."""

import re
import secrets

SESSION_CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
SESSION_CODE_LENGTH = 6
_SESSION_CODE_RE = re.compile(r"^[A-Z0-9]{6}$")


def generate_session_code() -> str:
    """Generate a random session code, e.g. ``AB12CD``."""
    return "".join(secrets.choice(SESSION_CODE_ALPHABET) for _ in range(SESSION_CODE_LENGTH))


def is_valid_session_code(code) -> bool:
    if not code or not isinstance(code, str):
        return False
    return bool(_SESSION_CODE_RE.match(code))
