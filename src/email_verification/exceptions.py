"""Verification flow exceptions."""

from __future__ import annotations

from datetime import datetime

from email_verification.store.verification_store import FailureReason


class VerificationError(Exception):
    """Base verification exception with HTTP status."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class InvalidEmailError(VerificationError):
    def __init__(self, message: str = "Valid email address is required"):
        super().__init__(message, status_code=400)


class InvalidCodeFormatError(VerificationError):
    def __init__(self, length: int = 6):
        super().__init__(
            f"Invalid code format. Please enter a {length}-digit code.", status_code=400
        )


class RateLimitedError(VerificationError):
    """Issuance quota for this email is exhausted until ``reset_at``."""

    def __init__(self, reset_at: datetime):
        super().__init__(
            "Too many verification requests. "
            f"Please try again after {reset_at.strftime('%H:%M:%S %Z').strip()}.",
            status_code=429,
        )
        self.reset_at = reset_at


# User-facing text for each store failure reason
FAILURE_MESSAGES = {
    FailureReason.NOT_FOUND: "No verification code found or code expired",
    FailureReason.CODE_MISMATCH: "Invalid verification code",
    FailureReason.ATTEMPTS_EXCEEDED: "Too many failed attempts. Please request a new code.",
}


class VerificationFailedError(VerificationError):
    def __init__(self, reason: FailureReason):
        super().__init__(FAILURE_MESSAGES[reason], status_code=400)
        self.reason = reason


class EmailDeliveryError(VerificationError):
    """The code was issued but the email could not be delivered."""

    def __init__(self, detail: str | None = None):
        super().__init__(
            "Failed to send verification email. Please try again.", status_code=500
        )
        self.detail = detail
