"""
otp/models.py -- Domain dataclasses for verification codes.

Pattern: Data class (pure data container, zero logic). otp/store.py persists
them, otp/issuer.py does the work.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class CredentialRequest:
    """One outstanding verification code for an identifier.

    code_hash is a bcrypt digest; the raw code is returned to the caller once
    at issue time for SMS delivery and never stored. At most one live request
    exists per identifier -- issuing replaces, it never updates in place.

    id is None before the record is written to the database.
    """

    identifier: str  # normalized phone number, E.164
    code_hash: str
    created_at: datetime
    expires_at: datetime
    id: int | None = None


@dataclass(frozen=True)
class Verified:
    """Successful code verification. The request row has already been consumed."""

    identifier: str
