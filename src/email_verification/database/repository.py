"""Data access for completed verifications."""

from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from email_verification.models.verified_email import VerifiedEmail


class VerifiedEmailRepository:
    """Encapsulates all database queries related to verified emails."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find_by_email(self, email: str) -> VerifiedEmail | None:
        """Look up the verification row for *email* (already normalized)."""
        stmt = select(VerifiedEmail).where(VerifiedEmail.email == email)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def mark_verified(self, email: str, when: datetime | None = None) -> VerifiedEmail:
        """Insert or refresh the row for *email*.

        The caller owns the transaction; this only flushes.
        """
        when = when or datetime.now(UTC)
        row = await self.find_by_email(email)
        if row is None:
            row = VerifiedEmail(email=email, first_verified_at=when, verified_at=when)
            self._session.add(row)
        else:
            row.verified_at = when
            row.verification_count += 1
        await self._session.flush()
        return row
