"""
sessions/models.py -- Domain dataclasses for login sessions and token pairs.

Pattern: Data class (pure data container, zero logic). sessions/store.py
persists Session; sessions/tokens.py produces TokenPair and Refreshed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass
class Session:
    """One logged-in device for a principal.

    refresh_secret_hash is a bcrypt digest of the secret half of the refresh
    value. The raw refresh value is returned once by TokenPairIssuer.issue()
    and never stored or logged.

    ip_address / user_agent are optional display metadata for the
    "manage your devices" view. device_label is whatever the client sent.
    """

    session_id: UUID
    principal_id: UUID
    refresh_secret_hash: str
    created_at: datetime
    expires_at: datetime
    last_seen_at: datetime
    device_label: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class TokenPair:
    """Result of a successful login.

    access  -- signed, stateless, short-lived (access_ttl_seconds)
    refresh -- opaque "<session_id>.<secret>" value, backed by a Session row
    """

    access: str
    refresh: str
    session_id: UUID
    principal_id: UUID
    access_expires_at: datetime
    refresh_expires_at: datetime


@dataclass(frozen=True)
class Refreshed:
    """Result of a successful refresh.

    refresh is None unless rotate_refresh_secrets is enabled, in which case
    it carries the replacement value and the presented one is now dead.
    """

    access: str
    session_id: UUID
    principal_id: UUID
    access_expires_at: datetime
    refresh: str | None = None
