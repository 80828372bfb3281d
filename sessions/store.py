"""
sessions/store.py -- SQLAlchemy Core persistence and invariants for login sessions.

Pattern: Repository + Data Mapper (same as otp/store.py). SessionStore is the
repository; _row_to_session is the mapper.

Bounded concurrency:
  A principal may hold at most max_sessions_per_principal live sessions.
  create_session() enforces this as count -> evict oldest -> insert inside
  ONE write transaction (BEGIN IMMEDIATE on SQLite, FOR UPDATE elsewhere),
  while holding a per-principal lock shared by every SessionStore on the same
  database. Two concurrent logins for the same principal therefore cannot both
  read "K-1 live" and both insert, even through different store objects.

  Session ids are always minted here, never taken from the caller, so a
  deleted id cannot be handed back in.

  Eviction order is oldest created_at first, ties broken by the smallest
  session_id. Timestamps are stored as fixed-width ISO 8601 UTC strings
  (core.clock.to_iso), so string comparison in SQL is time comparison.

Refresh values:
  A refresh value is "<session_id>.<secret>". The session id rides alongside
  the secret so the row can be found without trusting the secret; only the
  bcrypt hash of the secret half is stored. find_by_secret() costs exactly one
  bcrypt verification on every path, so a wrong secret and an unknown session
  are indistinguishable by result and by timing.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Secrets and hashes are never logged; session ids are.

Layer rule: no imports from otp/.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import Column, Index, MetaData, String, Table, Text, func, select

from core.clock import Clock, SystemClock, from_iso, to_iso
from core.config import get_settings
from core.db import create_store_engine, storage_guard, write_transaction
from core.errors import InvariantViolation, StorageUnavailable
from core.hashing import Hasher
from core.locks import shared_keyed_lock
from sessions.models import Session

logger = logging.getLogger("loginguard.sessions")

_REFRESH_SEPARATOR = "."

# Never minted: _new_session_id() always sets the version 4 bits.
_NIL_SESSION_ID = UUID(int=0)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("session_id", String(36), primary_key=True),
    Column("principal_id", String(36), nullable=False),
    Column("refresh_secret_hash", Text, nullable=False),  # bcrypt digest
    Column("device_label", String(255)),
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("last_seen_at", String(32), nullable=False),
    Index("ix_sessions_principal_id", "principal_id"),
    Index("ix_sessions_expires_at", "expires_at"),
)


# ---------------------------------------------------------------------------
# Refresh value encoding
# ---------------------------------------------------------------------------


def encode_refresh_value(session_id: UUID, secret: str) -> str:
    return f"{session_id}{_REFRESH_SEPARATOR}{secret}"


def split_refresh_value(value: str) -> tuple[UUID, str] | None:
    """Return (session_id, secret) or None if value is not a refresh value."""
    head, sep, secret = value.partition(_REFRESH_SEPARATOR)
    if not sep or not secret:
        return None
    try:
        return UUID(head), secret
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SessionStore:
    """Repository for Session rows with the bounded-concurrency invariant.

    Usage:
        store = SessionStore("sqlite:///:memory:", max_sessions=2)
        session = store.create_session(principal_id, secret, "Pixel 8")
        live = store.list_live(principal_id)
        store.delete(session.session_id)
        store.close()
    """

    def __init__(
        self,
        db_url: str | None = None,
        hasher: Hasher | None = None,
        clock: Clock | None = None,
        max_sessions: int | None = None,
        session_ttl_seconds: int | None = None,
        random_bytes: Callable[[int], bytes] = secrets.token_bytes,
    ) -> None:
        settings = get_settings()
        self.engine = create_store_engine(db_url or settings.database_url)
        self.hasher = hasher or Hasher(rounds=settings.hash_rounds)
        self.clock = clock or SystemClock()
        self.max_sessions = max_sessions or settings.max_sessions_per_principal
        self.session_ttl = timedelta(seconds=session_ttl_seconds or settings.session_ttl_seconds)
        self._random_bytes = random_bytes
        self._locks = shared_keyed_lock(f"sessions:{self.engine.url}")
        if self.max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        with storage_guard("schema setup"):
            _metadata.create_all(self.engine)

    def _new_session_id(self) -> UUID:
        """A fresh random (version 4) session id from the CSPRNG."""
        return uuid.UUID(bytes=self._random_bytes(16), version=4)

    # ------------------------------------------------------------------
    # Create (the only operation that needs a per-principal critical section)
    # ------------------------------------------------------------------

    def create_session(
        self,
        principal_id: UUID,
        refresh_secret: str,
        device_label: str | None = None,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Session:
        """Create a session, evicting the principal's oldest ones if at the limit.

        Raises InvariantViolation if the live count is still at the limit after
        eviction on two consecutive attempts.
        """
        # bcrypt is slow; hash before taking the lock.
        secret_hash = self.hasher.hash(refresh_secret)
        session_id = self._new_session_id()
        with self._locks.hold(str(principal_id)):
            try:
                return self._create_locked(
                    principal_id, session_id, secret_hash, device_label, ip_address, user_agent
                )
            except InvariantViolation as exc:
                logger.error("Session invariant violated for principal %s, retrying once: %s", principal_id, exc)
            return self._create_locked(principal_id, session_id, secret_hash, device_label, ip_address, user_agent)

    def _create_locked(
        self,
        principal_id: UUID,
        session_id: UUID,
        secret_hash: str,
        device_label: str | None,
        ip_address: str | None,
        user_agent: str | None,
    ) -> Session:
        now = self.clock.now()
        now_iso = to_iso(now)
        pid = str(principal_id)
        live_filter = (_sessions.c.principal_id == pid) & (_sessions.c.expires_at >= now_iso)

        with storage_guard("session create"), write_transaction(self.engine) as conn:
            live = conn.execute(
                select(_sessions.c.session_id)
                .where(live_filter)
                .order_by(_sessions.c.created_at.asc(), _sessions.c.session_id.asc())
                .with_for_update()
            ).fetchall()

            excess = len(live) - self.max_sessions + 1
            if excess > 0:
                victims = [row.session_id for row in live[:excess]]
                conn.execute(_sessions.delete().where(_sessions.c.session_id.in_(victims)))
                logger.info("Evicted %d session(s) for principal %s: %s", len(victims), pid, ", ".join(victims))

            remaining = conn.execute(select(func.count()).select_from(_sessions).where(live_filter)).scalar() or 0
            if remaining >= self.max_sessions:
                # Raising inside begin() rolls back the evictions as well.
                raise InvariantViolation(f"{remaining} live sessions remain after eviction (limit {self.max_sessions})")

            session = Session(
                session_id=session_id,
                principal_id=principal_id,
                refresh_secret_hash=secret_hash,
                created_at=now,
                expires_at=now + self.session_ttl,
                last_seen_at=now,
                device_label=device_label,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            conn.execute(
                _sessions.insert().values(
                    session_id=str(session_id),
                    principal_id=pid,
                    refresh_secret_hash=secret_hash,
                    device_label=device_label,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    created_at=now_iso,
                    expires_at=to_iso(session.expires_at),
                    last_seen_at=now_iso,
                )
            )
        logger.info("Session %s created for principal %s", session_id, pid)
        return session

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get(self, session_id: UUID) -> Session | None:
        """Look up a session by id regardless of expiry. None if not found."""
        with storage_guard("session lookup"), self.engine.connect() as conn:
            row = conn.execute(select(_sessions).where(_sessions.c.session_id == str(session_id))).fetchone()
        return _row_to_session(row) if row is not None else None

    def find_by_secret(self, candidate: str) -> Session | None:
        """Return the session a refresh value belongs to, or None.

        Malformed value, unknown session and wrong secret all return None after
        one row lookup and one bcrypt verification each. Expiry is NOT checked
        here -- the caller decides what an expired match means.
        """
        parsed = split_refresh_value(candidate)
        if parsed is None:
            self.get(_NIL_SESSION_ID)
            self.hasher.dummy_verify(candidate[:72])
            return None
        session_id, secret = parsed
        session = self.get(session_id)
        if session is None:
            self.hasher.dummy_verify(secret)
            return None
        if not self.hasher.verify(secret, session.refresh_secret_hash):
            return None
        return session

    def list_live(self, principal_id: UUID) -> list[Session]:
        """Return non-expired sessions for principal, newest first."""
        now_iso = to_iso(self.clock.now())
        with storage_guard("session list"), self.engine.connect() as conn:
            rows = conn.execute(
                select(_sessions)
                .where((_sessions.c.principal_id == str(principal_id)) & (_sessions.c.expires_at >= now_iso))
                .order_by(_sessions.c.created_at.desc(), _sessions.c.session_id.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def count_live(self, principal_id: UUID) -> int:
        now_iso = to_iso(self.clock.now())
        with storage_guard("session count"), self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_sessions)
                .where((_sessions.c.principal_id == str(principal_id)) & (_sessions.c.expires_at >= now_iso))
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def touch(self, session_id: UUID) -> None:
        """Stamp last_seen_at. Best-effort: storage errors are logged, not raised."""
        try:
            with storage_guard("session touch"), write_transaction(self.engine) as conn:
                conn.execute(
                    _sessions.update()
                    .where(_sessions.c.session_id == str(session_id))
                    .values(last_seen_at=to_iso(self.clock.now()))
                )
        except StorageUnavailable:
            logger.warning("Could not update last_seen_at for session %s", session_id)

    def rotate(self, session: Session, new_secret: str) -> Session | None:
        """Replace the session's refresh secret hash (compare-and-swap).

        The update only applies if the stored hash is still the one on the
        session passed in. Returns the updated Session, or None if the
        session is gone or another rotation already replaced the hash.
        """
        new_hash = self.hasher.hash(new_secret)
        now = self.clock.now()
        with storage_guard("session rotate"), write_transaction(self.engine) as conn:
            result = conn.execute(
                _sessions.update()
                .where(
                    (_sessions.c.session_id == str(session.session_id))
                    & (_sessions.c.refresh_secret_hash == session.refresh_secret_hash)
                )
                .values(refresh_secret_hash=new_hash, last_seen_at=to_iso(now))
            )
        if result.rowcount == 0:
            return None
        session.refresh_secret_hash = new_hash
        session.last_seen_at = now
        return session

    def delete(self, session_id: UUID) -> bool:
        """Delete one session. Idempotent: False if it was already gone."""
        with storage_guard("session delete"), write_transaction(self.engine) as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.session_id == str(session_id)))
        if result.rowcount:
            logger.info("Session %s deleted", session_id)
        return result.rowcount > 0

    def delete_all_for_principal(self, principal_id: UUID) -> int:
        """Delete every session for principal. Returns number of rows removed."""
        with storage_guard("session delete all"), write_transaction(self.engine) as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.principal_id == str(principal_id)))
        logger.info("Deleted %d session(s) for principal %s", result.rowcount, principal_id)
        return result.rowcount

    def purge_expired(self, now: datetime) -> int:
        """Delete all sessions with expires_at < now. Returns number of rows removed."""
        with storage_guard("session purge"), write_transaction(self.engine) as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at < to_iso(now)))
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_session(row) -> Session:
    return Session(
        session_id=UUID(row.session_id),
        principal_id=UUID(row.principal_id),
        refresh_secret_hash=row.refresh_secret_hash,
        device_label=row.device_label,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=from_iso(row.created_at),
        expires_at=from_iso(row.expires_at),
        last_seen_at=from_iso(row.last_seen_at),
    )
