"""
sessions/sweeper.py -- Periodic deletion of expired sessions and verification codes.

run_once(now) is a pure function of `now` and storage state: two DELETE ...
WHERE expires_at < now statements. Running it twice, running two sweepers at
once, or racing it against logins and refreshes is harmless -- deleting a row
that is already gone is a no-op.

Correctness never depends on the sweep cadence. The issuers check expiry
lazily on every access, so the sweeper only keeps the tables small.

run_forever() is the asyncio loop started from an application lifespan (or
`python main.py sweep --loop`). The blocking store calls run in a worker
thread so the event loop stays responsive. CancelledError from task.cancel()
propagates out of asyncio.sleep and unwinds the loop cleanly.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

from core.clock import Clock, SystemClock
from core.config import get_settings
from core.errors import StorageUnavailable
from otp.store import CredentialStore
from sessions.store import SessionStore

logger = logging.getLogger("loginguard.sweeper")


@dataclass(frozen=True)
class SweepResult:
    sessions_deleted: int
    credentials_deleted: int


class ExpirySweeper:
    def __init__(
        self,
        session_store: SessionStore,
        credential_store: CredentialStore,
        clock: Clock | None = None,
    ) -> None:
        self.session_store = session_store
        self.credential_store = credential_store
        self.clock = clock or SystemClock()

    def run_once(self, now: datetime | None = None) -> SweepResult:
        """Delete every session and credential request with expires_at < now."""
        now = now or self.clock.now()
        result = SweepResult(
            sessions_deleted=self.session_store.purge_expired(now),
            credentials_deleted=self.credential_store.purge_expired(now),
        )
        logger.info(
            "Sweep complete: %d expired session(s), %d expired code(s) removed",
            result.sessions_deleted,
            result.credentials_deleted,
        )
        return result

    async def run_forever(self, interval_seconds: float | None = None) -> None:
        """Sweep every interval_seconds until cancelled.

        A failed sweep (storage unavailable) is logged and retried on the next
        tick rather than killing the loop.
        """
        interval = interval_seconds or get_settings().sweep_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                await asyncio.to_thread(self.run_once)
            except StorageUnavailable:
                logger.warning("Sweep skipped: storage unavailable")
