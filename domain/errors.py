from __future__ import annotations


class PulseHubError(Exception):
    """Base class for errors raised by the domain and its repositories."""


class ValidationError(PulseHubError):
    """Input was rejected before touching any store."""


class InvalidFormat(ValidationError):
    pass


class ConflictError(PulseHubError):
    """A definitive rejection; retrying with the same input will not help."""


class DuplicateUsername(ConflictError):
    pass


class DuplicateEmail(ConflictError):
    pass


class AlreadyLinked(ConflictError):
    pass


class CodeNotFound(ConflictError):
    pass


class AccountNotFound(PulseHubError):
    pass


class StoreUnavailable(PulseHubError):
    """
    The backing store could not be reached or timed out.

    Callers may retry the operation later.
    """


class GenerationExhausted(PulseHubError):
    """No unique link code could be produced."""
