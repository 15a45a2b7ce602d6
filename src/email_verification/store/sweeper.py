"""Background task that periodically purges expired verification state."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from email_verification.store.verification_store import VerificationStore

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Runs :meth:`VerificationStore.sweep_expired` on a fixed interval.

    The sweep only reclaims memory; the store expires entries lazily on
    access as well, so a stopped sweeper never changes any outcome.

    Usage::

        async with ExpirySweeper(store, timedelta(minutes=5)):
            ...
    """

    def __init__(self, store: VerificationStore, interval: timedelta) -> None:
        if interval.total_seconds() <= 0:
            raise ValueError("sweep interval must be positive")
        self._store = store
        self._interval = interval.total_seconds()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the sweep loop on the running event loop (no-op if started)."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="verification-sweeper")
        logger.info("Expiry sweeper started (every %.0fs)", self._interval)

    async def stop(self) -> None:
        """Cancel the sweep loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            # Propagate if stop() itself is being cancelled.
            if asyncio.current_task().cancelling():
                raise
        logger.info("Expiry sweeper stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                self._store.sweep_expired()
            except Exception:
                logger.exception("Expiry sweep failed")

    async def __aenter__(self) -> ExpirySweeper:
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()
