"""
Error taxonomy for the verification engine.

Only ChannelError and ExpiryError ever reach the guest (as inline status);
ValidationError is surfaced as field messages, PersistenceError and StateError
degrade silently with diagnostics.
"""
from typing import Dict, Optional


class VerificationError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(VerificationError):
    """Rejected user input. Validators return errors as data; this is only
    raised/caught inside channel managers for bad uploads and links."""

    def __init__(self, message: str, fields: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.fields = dict(fields or {})


class ChannelError(VerificationError):
    """Provider or network failure on a verification channel."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, retryable: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class ExpiryError(VerificationError):
    """A time-boxed challenge or session elapsed; needs an explicit re-request."""


class PersistenceError(VerificationError):
    """Storage backend unavailable or over quota."""


class StateError(VerificationError):
    """Programmer error: unknown store section or misuse of the engine API."""
