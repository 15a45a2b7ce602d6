"""In-memory verification code store with expiry, attempt limits and rate limiting."""

from __future__ import annotations

import enum
import hmac
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# Reference policy values
DEFAULT_CODE_TTL = timedelta(minutes=15)
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_RATE_LIMIT_WINDOW = timedelta(hours=1)
DEFAULT_RATE_LIMIT_MAX_REQUESTS = 5


def utc_now() -> datetime:
    return datetime.now(UTC)


class InvalidIdentityError(ValueError):
    """Raised when an operation is called without a usable identity."""


class FailureReason(enum.StrEnum):
    """Why a verification attempt failed."""

    NOT_FOUND = "no code found or expired"
    ATTEMPTS_EXCEEDED = "too many attempts, request a new code"
    CODE_MISMATCH = "invalid code"


@dataclass
class VerificationRecord:
    """A pending one-time code for one identity."""

    identity: str
    code: str
    created_at: datetime
    expires_at: datetime
    attempts: int = 0
    verified: bool = False

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass
class RateLimitCounter:
    """Issuance requests granted to one identity in the current window."""

    identity: str
    count: int
    reset_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.reset_at


@dataclass(frozen=True)
class VerifyResult:
    success: bool
    reason: FailureReason | None = None


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    reset_at: datetime | None = None


class VerificationStore:
    """Process-local store of pending verification codes and issuance counters.

    Records are keyed by identity (an email address), one per identity.
    Expired entries are purged lazily on access and by :meth:`sweep_expired`,
    which an :class:`~email_verification.store.sweeper.ExpirySweeper` runs
    periodically.  Nothing survives a process restart.

    Every public method runs under a single lock, so each call is atomic
    with respect to the others.
    """

    def __init__(
        self,
        *,
        clock: Clock = utc_now,
        code_ttl: timedelta = DEFAULT_CODE_TTL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        rate_limit_window: timedelta = DEFAULT_RATE_LIMIT_WINDOW,
        rate_limit_max_requests: int = DEFAULT_RATE_LIMIT_MAX_REQUESTS,
    ) -> None:
        self._clock = clock
        self._code_ttl = code_ttl
        self._max_attempts = max_attempts
        self._rate_limit_window = rate_limit_window
        self._rate_limit_max_requests = rate_limit_max_requests

        self._lock = threading.Lock()
        self._codes: dict[str, VerificationRecord] = {}
        self._counters: dict[str, RateLimitCounter] = {}

    # ── Verification codes ───────────────────────────────

    def issue_code(self, identity: str, code: str) -> VerificationRecord:
        """Store *code* for *identity*, replacing any pending code."""
        self._check_identity(identity)
        now = self._clock()
        record = VerificationRecord(
            identity=identity,
            code=code,
            created_at=now,
            expires_at=now + self._code_ttl,
        )
        with self._lock:
            replaced = identity in self._codes
            self._codes[identity] = record
        logger.info(
            "Verification code issued for %s (expires %s%s)",
            identity,
            record.expires_at.isoformat(),
            ", replaced pending code" if replaced else "",
        )
        return record

    def get_active_code(self, identity: str) -> VerificationRecord | None:
        """Return the live record for *identity*, or ``None``.

        An expired record is deleted on the way out.
        """
        with self._lock:
            return self._get_active(identity, self._clock())

    def has_code(self, identity: str) -> bool:
        return self.get_active_code(identity) is not None

    def clear_code(self, identity: str) -> None:
        with self._lock:
            self._codes.pop(identity, None)

    def verify(self, identity: str, submitted_code: str) -> VerifyResult:
        """Check *submitted_code* against the pending code for *identity*.

        Every call against a live record counts as an attempt.  The attempt
        ceiling is checked before the code itself, so the call after the
        last allowed attempt fails even with the right code.  A successful
        match consumes the record.
        """
        with self._lock:
            record = self._get_active(identity, self._clock())
            if record is None:
                logger.info("Verification for %s failed: no active code", identity)
                return VerifyResult(success=False, reason=FailureReason.NOT_FOUND)

            record.attempts += 1

            if record.attempts > self._max_attempts:
                del self._codes[identity]
                logger.warning(
                    "Verification for %s failed: %d attempts, code revoked",
                    identity,
                    record.attempts,
                )
                return VerifyResult(success=False, reason=FailureReason.ATTEMPTS_EXCEEDED)

            if not hmac.compare_digest(
                record.code.encode("utf-8"), submitted_code.encode("utf-8")
            ):
                logger.info(
                    "Verification for %s failed: wrong code (attempt %d/%d)",
                    identity,
                    record.attempts,
                    self._max_attempts,
                )
                return VerifyResult(success=False, reason=FailureReason.CODE_MISMATCH)

            record.verified = True
            del self._codes[identity]

        logger.info("Verification for %s succeeded", identity)
        return VerifyResult(success=True)

    # ── Rate limiting ────────────────────────────────────

    def check_rate_limit(self, identity: str) -> RateLimitResult:
        """Count one issuance request for *identity* against its window.

        Call this exactly once per issuance attempt; the call itself is
        what consumes the quota.
        """
        self._check_identity(identity)
        now = self._clock()
        with self._lock:
            counter = self._counters.get(identity)

            if counter is None or counter.is_expired(now):
                self._counters[identity] = RateLimitCounter(
                    identity=identity,
                    count=1,
                    reset_at=now + self._rate_limit_window,
                )
                return RateLimitResult(allowed=True)

            if counter.count < self._rate_limit_max_requests:
                counter.count += 1
                return RateLimitResult(allowed=True)

            reset_at = counter.reset_at

        logger.warning("Rate limit hit for %s until %s", identity, reset_at.isoformat())
        return RateLimitResult(allowed=False, reset_at=reset_at)

    # ── Housekeeping ─────────────────────────────────────

    def sweep_expired(self) -> int:
        """Delete expired codes and counters; return how many were removed."""
        now = self._clock()
        with self._lock:
            expired_codes = [k for k, r in self._codes.items() if r.is_expired(now)]
            for identity in expired_codes:
                del self._codes[identity]

            expired_counters = [k for k, c in self._counters.items() if c.is_expired(now)]
            for identity in expired_counters:
                del self._counters[identity]

        removed = len(expired_codes) + len(expired_counters)
        if removed:
            logger.debug(
                "Swept %d expired codes and %d rate-limit counters",
                len(expired_codes),
                len(expired_counters),
            )
        return removed

    @property
    def pending_count(self) -> int:
        """Number of stored codes, including expired ones not yet swept."""
        return len(self._codes)

    @property
    def counter_count(self) -> int:
        return len(self._counters)

    # ── Private helpers ──────────────────────────────────

    def _get_active(self, identity: str, now: datetime) -> VerificationRecord | None:
        # Caller holds the lock.
        record = self._codes.get(identity)
        if record is None:
            return None
        if record.is_expired(now):
            del self._codes[identity]
            logger.info("Verification code expired for %s", identity)
            return None
        return record

    @staticmethod
    def _check_identity(identity: str) -> None:
        if not isinstance(identity, str) or not identity.strip():
            raise InvalidIdentityError("identity must be a non-empty string")
