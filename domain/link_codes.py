from __future__ import annotations

import re
import secrets
import time
from typing import Callable, Optional

from .errors import GenerationExhausted, InvalidFormat

# 32 symbols: no 0/O or 1/I.
LINK_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
LINK_CODE_LENGTH = 8
MAX_ATTEMPTS = 50

# Codes produced by the time-based fallback may contain any upper-case
# alphanumeric, so validation accepts the wider set.
LINK_CODE_PATTERN = re.compile(r"^[A-Z0-9]{8}$")

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def random_link_code(choice: Callable[[str], str] = secrets.choice) -> str:
    return "".join(choice(LINK_CODE_ALPHABET) for _ in range(LINK_CODE_LENGTH))


def fallback_link_code(now: Optional[float] = None) -> str:
    """
    Derive a code from the current time plus some randomness.

    The result is exactly `LINK_CODE_LENGTH` upper-case alphanumerics but
    is not restricted to `LINK_CODE_ALPHABET`.
    """

    millis = int((time.time() if now is None else now) * 1000)
    raw = _to_base36(millis)[-4:] + _to_base36(secrets.randbits(32))
    return raw[:LINK_CODE_LENGTH].rjust(LINK_CODE_LENGTH, "0")


def generate_link_code(
    exists: Callable[[str], bool],
    max_attempts: int = MAX_ATTEMPTS,
    choice: Callable[[str], str] = secrets.choice,
) -> str:
    """
    Return a link code not currently assigned to any account.

    `exists` is asked about each candidate. After `max_attempts`
    collisions a time-derived code is tried once; if even that collides,
    `GenerationExhausted` is raised. Persisting the code is the caller's job.
    """

    for _ in range(max_attempts):
        candidate = random_link_code(choice)
        if not exists(candidate):
            return candidate

    candidate = fallback_link_code()
    if not exists(candidate):
        return candidate
    raise GenerationExhausted(
        f"Could not generate a unique link code after {max_attempts} attempts."
    )


def normalize_link_code(raw: str) -> str:
    """Trim and upper-case a user-supplied code, rejecting malformed input."""

    if not isinstance(raw, str):
        raise InvalidFormat("Link code must be a string.")
    code = raw.strip().upper()
    if not LINK_CODE_PATTERN.match(code):
        raise InvalidFormat(
            f"Link code must be {LINK_CODE_LENGTH} letters or digits."
        )
    return code
