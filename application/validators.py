from __future__ import annotations

import re
from typing import Optional

from email_validator import EmailNotValidError, validate_email

_USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_]{3,32}$")

MIN_PASSWORD_LENGTH = 8
MIN_RESET_PASSWORD_LENGTH = 6


def validate_username(username: str) -> Optional[str]:
    if not isinstance(username, str) or not _USERNAME_PATTERN.match(username.strip()):
        return "Username must be 3-32 characters: letters, digits or underscore."
    return None


def normalize_email(email: str) -> Optional[str]:
    """Return the normalized address, or None if it is not a valid email."""

    if not isinstance(email, str):
        return None
    try:
        result = validate_email(email.strip(), check_deliverability=False)
    except EmailNotValidError:
        return None
    return result.normalized.lower()


def validate_password(password: str) -> Optional[str]:
    if (
        not isinstance(password, str)
        or len(password) < MIN_PASSWORD_LENGTH
        or not re.search(r"[A-Z]", password)
        or not re.search(r"[a-z]", password)
        or not re.search(r"[0-9]", password)
    ):
        return (
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters and "
            "contain upper-case, lower-case and a digit."
        )
    return None
