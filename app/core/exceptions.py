"""
Domain exceptions for the password-reset flow.

The service layer raises these; app/api/exception_handlers.py turns them
into JSON responses. Messages are written to be shown to the client as-is,
so none of them may reveal whether an account exists.
"""

from typing import Optional


class ResetFlowError(Exception):
    """Base exception for all password-reset failures."""

    status_code: int = 400
    default_message: str = "Password reset failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ResetFlowError):
    """
    Malformed email or password.

    Shape validation leaks nothing about account existence, so this is the
    only pre-gate error that may be specific.
    """
    default_message = "Invalid request"


class RateLimited(ResetFlowError):
    """Cooldown or hourly cap hit. The message never says which one."""

    status_code = 429
    default_message = "Too many password reset requests. Please try again later."

    def __init__(self, message: Optional[str] = None, wait_seconds: Optional[int] = None):
        super().__init__(message)
        self.wait_seconds = wait_seconds


class NoActiveRequest(ResetFlowError):
    """Verification called with no live reset record."""
    default_message = "No valid reset request found. Please request a new code."


class InvalidCode(ResetFlowError):
    """OTP mismatch; carries how many attempts are left."""

    def __init__(self, attempts_remaining: int, message: Optional[str] = None):
        super().__init__(message or f"Invalid code. {attempts_remaining} attempts remaining.")
        self.attempts_remaining = attempts_remaining


class LockedOut(ResetFlowError):
    """Attempts exhausted; the record has been burned."""
    default_message = "Too many failed attempts. Please request a new code."


class InvalidOrExpiredToken(ResetFlowError):
    """Reset token mismatch, reuse, or TTL lapse."""
    default_message = "Invalid or expired reset token. Please request a new code."


class InternalError(ResetFlowError):
    """Store or hashing failure. Details are logged, never returned."""

    status_code = 500
    default_message = "An error occurred. Please try again."
