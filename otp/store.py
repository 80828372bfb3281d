"""
otp/store.py -- SQLAlchemy Core persistence for verification-code requests.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_request is the mapper. The issuer never touches SQL directly.

Single-live-row rule:
  replace() deletes every row for the identifier and inserts the new one in
  ONE transaction. The identifier column is indexed but deliberately not
  UNIQUE: the rule is enforced by this explicit step, so it is visible and
  testable rather than a side effect of a constraint violation.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Only the bcrypt hash of a code is ever written.

Layer rule: no imports from sessions/.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, func, select

from core.clock import from_iso, to_iso
from core.config import get_settings
from core.db import create_store_engine, storage_guard, write_transaction
from otp.models import CredentialRequest

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_credential_requests = Table(
    "credential_requests",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("identifier", String(32), nullable=False),
    Column("code_hash", Text, nullable=False),  # bcrypt digest, never the raw code
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Index("ix_credential_requests_identifier", "identifier"),
    Index("ix_credential_requests_expires_at", "expires_at"),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for CredentialRequest rows.

    Usage:
        store = CredentialStore("sqlite:///:memory:")
        store.replace(CredentialRequest(identifier="+15551234567", code_hash=h, ...))
        request = store.get("+15551234567")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine = create_store_engine(db_url or get_settings().database_url)
        with storage_guard("schema setup"):
            _metadata.create_all(self.engine)

    def replace(self, request: CredentialRequest) -> int:
        """Delete any request for the identifier and insert this one atomically.

        Returns the new row id.
        """
        with storage_guard("credential replace"), write_transaction(self.engine) as conn:
            conn.execute(_credential_requests.delete().where(_credential_requests.c.identifier == request.identifier))
            result = conn.execute(
                _credential_requests.insert().values(
                    identifier=request.identifier,
                    code_hash=request.code_hash,
                    created_at=to_iso(request.created_at),
                    expires_at=to_iso(request.expires_at),
                )
            )
            return result.inserted_primary_key[0]

    def get(self, identifier: str) -> CredentialRequest | None:
        """Return the request for identifier, or None.

        Ordered by id so that, should a second row ever exist, the most
        recently issued one wins.
        """
        with storage_guard("credential lookup"), self.engine.connect() as conn:
            row = conn.execute(
                select(_credential_requests)
                .where(_credential_requests.c.identifier == identifier)
                .order_by(_credential_requests.c.id.desc())
                .limit(1)
            ).fetchone()
        return _row_to_request(row) if row is not None else None

    def delete(self, request_id: int) -> bool:
        """Delete one request by id. Idempotent: False if it was already gone.

        Only one caller can ever get True for a given id, which makes this the
        consume step of a successful verification.
        """
        with storage_guard("credential delete"), write_transaction(self.engine) as conn:
            result = conn.execute(_credential_requests.delete().where(_credential_requests.c.id == request_id))
        return result.rowcount > 0

    def count(self, identifier: str) -> int:
        with storage_guard("credential count"), self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_credential_requests)
                .where(_credential_requests.c.identifier == identifier)
            ).scalar()
        return result or 0

    def purge_expired(self, now: datetime) -> int:
        """Delete all requests with expires_at < now. Returns number of rows removed."""
        with storage_guard("credential purge"), write_transaction(self.engine) as conn:
            result = conn.execute(_credential_requests.delete().where(_credential_requests.c.expires_at < to_iso(now)))
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_request(row) -> CredentialRequest:
    return CredentialRequest(
        id=row.id,
        identifier=row.identifier,
        code_hash=row.code_hash,
        created_at=from_iso(row.created_at),
        expires_at=from_iso(row.expires_at),
    )
