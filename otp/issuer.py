"""
otp/issuer.py -- Issue and verify single-use verification codes.

Flow:
  issue_code(identifier)   -> raw code, handed to the SMS sender by the caller
  verify_code(identifier, candidate) -> Verified | Rejected(reason)

Rules enforced here:
  - One live request per identifier. Issuing replaces the previous request,
    so an older code stops working the moment a new one is sent.
  - Single use. A verification succeeds only if its delete removed the row,
    so two verifiers racing on one code cannot both win.
  - Expiry wins. A code presented after expires_at is rejected as EXPIRED even
    when it is correct, and the row is removed on the spot.
  - A wrong code leaves the row in place so the user can retry until expiry.
    Attempt throttling lives in front of this class (rate limiter).

issue_code and verify_code for the same identifier are serialised through a
KeyedLock shared by every issuer on the same database; different identifiers
never wait on each other.

Logging: identifiers are masked, codes and hashes are never logged.

Layer rule: no imports from sessions/.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import timedelta

from core.clock import Clock, SystemClock
from core.config import get_settings
from core.errors import Reason, Rejected
from core.hashing import Hasher
from core.locks import shared_keyed_lock
from core.phone import mask_phone_number
from otp.models import CredentialRequest, Verified
from otp.store import CredentialStore

logger = logging.getLogger("loginguard.otp")


class CredentialIssuer:
    def __init__(
        self,
        store: CredentialStore,
        hasher: Hasher | None = None,
        clock: Clock | None = None,
        code_length: int | None = None,
        code_ttl_seconds: int | None = None,
        random_bytes: Callable[[int], bytes] = secrets.token_bytes,
    ) -> None:
        settings = get_settings()
        self.store = store
        self.hasher = hasher or Hasher(rounds=settings.hash_rounds)
        self.clock = clock or SystemClock()
        self.code_length = code_length or settings.code_length
        self.code_ttl = timedelta(seconds=code_ttl_seconds or settings.code_ttl_seconds)
        self._random_bytes = random_bytes
        self._locks = shared_keyed_lock(f"otp:{store.engine.url}")
        if not 4 <= self.code_length <= 10:
            raise ValueError("code_length must be between 4 and 10")

    def issue_code(self, identifier: str) -> str:
        """Generate a fresh code for identifier, replacing any outstanding one.

        Returns the raw code. The caller is responsible for delivering it and
        must not persist or log it.
        """
        code = self._generate_code()
        code_hash = self.hasher.hash(code)
        with self._locks.hold(identifier):
            now = self.clock.now()
            self.store.replace(
                CredentialRequest(
                    identifier=identifier,
                    code_hash=code_hash,
                    created_at=now,
                    expires_at=now + self.code_ttl,
                )
            )
        logger.info("Verification code issued for %s", mask_phone_number(identifier))
        return code

    def verify_code(self, identifier: str, candidate: str) -> Verified | Rejected:
        """Check candidate against the live request for identifier.

        Never raises for a bad code: every credential failure is a Rejected
        value. StorageUnavailable still propagates so callers can tell
        "try again" apart from "wrong code".
        """
        candidate = candidate.strip()
        masked = mask_phone_number(identifier)
        with self._locks.hold(identifier):
            request = self.store.get(identifier)
            if request is None:
                # Same bcrypt cost as a real comparison.
                self.hasher.dummy_verify(candidate)
                logger.info("Code rejected for %s: %s", masked, Reason.NOT_FOUND.value)
                return Rejected(Reason.NOT_FOUND)

            if self.clock.now() > request.expires_at:
                self.store.delete(request.id)
                logger.info("Code rejected for %s: %s", masked, Reason.EXPIRED.value)
                return Rejected(Reason.EXPIRED)

            if not self.hasher.verify(candidate, request.code_hash):
                logger.info("Code rejected for %s: %s", masked, Reason.MISMATCH.value)
                return Rejected(Reason.MISMATCH)

            if not self.store.delete(request.id):
                # Consumed by a concurrent verification between get and delete.
                logger.info("Code rejected for %s: %s", masked, Reason.NOT_FOUND.value)
                return Rejected(Reason.NOT_FOUND)
        logger.info("Code verified for %s", masked)
        return Verified(identifier=identifier)

    def _generate_code(self) -> str:
        """Uniform random code with exactly code_length digits (no leading zero).

        Rejection sampling over 64-bit draws keeps the distribution uniform;
        a plain modulo would slightly favour low values.
        """
        low = 10 ** (self.code_length - 1)
        span = 9 * low
        limit = (2**64 // span) * span
        while True:
            value = int.from_bytes(self._random_bytes(8), "big")
            if value < limit:
                return str(low + value % span)
