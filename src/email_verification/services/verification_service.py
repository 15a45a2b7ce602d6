"""Verification flow on top of the code store, generator, mailer and database.

Issuance
--------
1. Normalize and validate the email address.
2. Count the request against the issuance rate limit (exactly once).
3. Generate a code (or use the development magic code, when enabled, on
   allowed hosts).
4. Store the code, replacing any pending one.
5. Email the code.

If step 5 fails the code stays issued and usable; the caller is told the
email could not be sent.

Confirmation
------------
The submitted code is format-checked, then verified against the store.
On success the address is recorded as verified and a signed token is
returned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from email_validator import EmailNotValidError, validate_email
from jose import JWTError, jwt

from email_verification.config import Settings, settings as default_settings
from email_verification.database.repository import VerifiedEmailRepository
from email_verification.exceptions import (
    EmailDeliveryError,
    InvalidCodeFormatError,
    InvalidEmailError,
    RateLimitedError,
    VerificationFailedError,
)
from email_verification.services.code_generator import (
    generate_verification_code,
    is_valid_verification_code,
)
from email_verification.services.email_service import EmailService
from email_verification.store.verification_store import Clock, VerificationStore, utc_now

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

TOKEN_ALGORITHM = "HS256"


def normalize_email(email: str | None) -> str:
    """Strip and lower-case *email*; raise ``InvalidEmailError`` if malformed."""
    candidate = (email or "").strip()
    if not candidate:
        raise InvalidEmailError()
    try:
        validated = validate_email(candidate, check_deliverability=False)
    except EmailNotValidError as exc:
        raise InvalidEmailError() from exc
    return validated.normalized.lower()


@dataclass
class CodeRequestOutcome:
    email: str
    expires_at: datetime
    provider: str
    message_id: str | None = None


@dataclass
class VerificationOutcome:
    email: str
    token: str
    verified_at: datetime


class VerificationService:
    """Email verification flow on top of a :class:`VerificationStore`."""

    def __init__(
        self,
        store: VerificationStore,
        email_service: EmailService,
        config: Settings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._email = email_service
        self._settings = config or default_settings
        self._clock = clock

    @property
    def store(self) -> VerificationStore:
        return self._store

    # ── Issuance ─────────────────────────────────────────

    async def request_code(
        self,
        email: str | None,
        organization_name: str | None = None,
        host: str | None = None,
    ) -> CodeRequestOutcome:
        """Issue a fresh code for *email* and send it."""
        email = normalize_email(email)

        rate = self._store.check_rate_limit(email)
        if not rate.allowed:
            raise RateLimitedError(rate.reset_at)

        if self._magic_code_allowed(host):
            code = self._settings.magic_verification_code
            logger.info("Issuing magic verification code for %s (host %s)", email, host)
        else:
            code = generate_verification_code(self._settings.code_length)

        record = self._store.issue_code(email, code)

        result = await self._email.send_verification_code(email, code, organization_name)
        if not result.success:
            # TODO: decide with product whether an undelivered code should be revoked.
            logger.error(
                "Verification email to %s failed via %s: %s (code left active)",
                email,
                result.provider,
                result.error,
            )
            raise EmailDeliveryError(result.error)

        return CodeRequestOutcome(
            email=email,
            expires_at=record.expires_at,
            provider=result.provider,
            message_id=result.message_id,
        )

    # ── Confirmation ─────────────────────────────────────

    async def confirm_code(
        self,
        email: str | None,
        code: str | None,
        host: str | None = None,
        db_session: AsyncSession | None = None,
    ) -> VerificationOutcome:
        """Verify *code* for *email*; record the address as verified on success."""
        email = normalize_email(email)
        code = (code or "").strip()

        bypass = self._magic_code_allowed(host) and code == self._settings.magic_verification_code
        if bypass:
            logger.info("Magic code accepted for %s (host %s)", email, host)
            self._store.clear_code(email)
        else:
            if not is_valid_verification_code(code, self._settings.code_length):
                raise InvalidCodeFormatError(self._settings.code_length)
            result = self._store.verify(email, code)
            if not result.success:
                raise VerificationFailedError(result.reason)

        verified_at = self._clock()
        if db_session is not None:
            await VerifiedEmailRepository(db_session).mark_verified(email, verified_at)

        logger.info("Email %s verified", email)
        return VerificationOutcome(
            email=email,
            token=self.issue_token(email, verified_at),
            verified_at=verified_at,
        )

    async def is_verified(self, email: str | None, db_session: AsyncSession) -> bool:
        email = normalize_email(email)
        row = await VerifiedEmailRepository(db_session).find_by_email(email)
        return row is not None

    # ── Tokens ───────────────────────────────────────────

    def issue_token(self, email: str, verified_at: datetime) -> str:
        """Return an HS256 JWT asserting that *email* was verified at *verified_at*."""
        claims = {"sub": email, "verified": True, "iat": int(verified_at.timestamp())}
        return jwt.encode(claims, self._settings.secret_key, algorithm=TOKEN_ALGORITHM)

    def read_token(self, token: str) -> dict[str, Any] | None:
        """Return the token claims if the signature checks out, else ``None``."""
        try:
            return jwt.decode(token, self._settings.secret_key, algorithms=[TOKEN_ALGORITHM])
        except JWTError:
            logger.debug("Rejected verification token")
            return None

    # ── Private helpers ──────────────────────────────────

    def _magic_code_allowed(self, host: str | None) -> bool:
        if not self._settings.magic_code_enabled:
            return False
        if not host or self._settings.is_production:
            return False
        return host.lower() in self._settings.magic_code_hosts
