"""
sessions/tokens.py -- Access assertions and refresh values for login sessions.

Security design decisions:
  Access assertions: JWTs via python-jose with HS256, signed with SECRET_KEY.
       They carry sub (principal id), sid (session id), iat, exp, iss, aud
       plus caller attributes. They are stateless and cannot be revoked
       before exp -- revoking a session only stops future refreshes. Keep
       access_ttl_seconds short if that window matters.

  Refresh values: "<session_id>.<secret>" where secret is 32 random bytes,
       urlsafe-base64 encoded. Only a bcrypt hash of the secret is stored
       (sessions/store.py).

  Rotation: with rotate_refresh_secrets=False (the default) a refresh value
       stays valid until its session expires or is revoked. With True, every
       successful refresh returns a new refresh value and kills the presented
       one; of two concurrent refreshes with the same value, exactly one wins.

  The signer is a capability: anything with sign(claims) -> str and
       verify(token) -> dict | None can replace JoseSigner.

Logging: session ids and principal ids only. Never tokens or secrets.
"""

from __future__ import annotations

import base64
import logging
import secrets
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from typing import Any, Protocol
from uuid import UUID

from jose import JWTError, jwt

from core.clock import Clock
from core.config import get_settings
from core.errors import Reason, Rejected
from sessions.models import Refreshed, Session, TokenPair
from sessions.store import SessionStore, encode_refresh_value

logger = logging.getLogger("loginguard.tokens")

_ALGORITHM = "HS256"
_SECRET_BYTES = 32
# Claims owned by the issuer. Caller attributes may not set them.
_RESERVED_CLAIMS = frozenset({"sub", "sid", "iat", "exp", "nbf", "iss", "aud", "jti"})


# ---------------------------------------------------------------------------
# Signer capability
# ---------------------------------------------------------------------------


class Signer(Protocol):
    def sign(self, claims: dict[str, Any]) -> str: ...

    def verify(self, token: str) -> dict[str, Any] | None: ...


class JoseSigner:
    """HS256 JWT signer backed by python-jose.

    verify() returns None on any failure (bad signature, expired, wrong
    issuer or audience). Callers treat None as unauthenticated.
    """

    def __init__(
        self,
        secret_key: str | None = None,
        issuer: str | None = None,
        audience: str | None = None,
    ) -> None:
        settings = get_settings()
        self._secret_key = secret_key or settings.secret_key
        self.issuer = issuer or settings.token_issuer
        self.audience = audience or settings.token_audience

    def sign(self, claims: dict[str, Any]) -> str:
        payload = dict(claims, iss=self.issuer, aud=self.audience)
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify(self, token: str) -> dict[str, Any] | None:
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
            )
        except JWTError:
            return None
        if "sub" not in payload or "sid" not in payload:
            return None
        return payload


# ---------------------------------------------------------------------------
# Token pair issuer
# ---------------------------------------------------------------------------


class TokenPairIssuer:
    """Mints access/refresh pairs on login and access assertions on refresh.

    Usage:
        issuer = TokenPairIssuer(store, principal_exists=users.exists)
        pair = issuer.issue(principal_id, {"role": "host"}, device_label="Pixel 8")
        result = issuer.refresh(pair.refresh)
        if not result:
            return 401, result.public_message
    """

    def __init__(
        self,
        store: SessionStore,
        principal_exists: Callable[[UUID], bool],
        signer: Signer | None = None,
        clock: Clock | None = None,
        access_ttl_seconds: int | None = None,
        rotate_refresh_secrets: bool | None = None,
        random_bytes: Callable[[int], bytes] = secrets.token_bytes,
    ) -> None:
        settings = get_settings()
        self.store = store
        self.principal_exists = principal_exists
        self.signer = signer or JoseSigner()
        self.clock = clock or store.clock
        self.access_ttl = timedelta(seconds=access_ttl_seconds or settings.access_ttl_seconds)
        self.rotate_refresh_secrets = (
            settings.rotate_refresh_secrets if rotate_refresh_secrets is None else rotate_refresh_secrets
        )
        self._random_bytes = random_bytes

    def issue(
        self,
        principal_id: UUID,
        attrs: Mapping[str, Any] | None = None,
        device_label: str | None = None,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> TokenPair | Rejected:
        """Create a session for principal and return its token pair.

        Rejected(NOT_FOUND) if the principal does not exist. Raises ValueError
        if attrs tries to set a reserved claim.
        """
        attrs = dict(attrs or {})
        _check_attrs(attrs)
        if not self.principal_exists(principal_id):
            logger.info("Login rejected: principal %s not found", principal_id)
            return Rejected(Reason.NOT_FOUND)

        secret = self._new_secret()
        session = self.store.create_session(
            principal_id,
            secret,
            device_label,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        access, access_expires_at = self._mint_access(session, attrs)
        return TokenPair(
            access=access,
            refresh=encode_refresh_value(session.session_id, secret),
            session_id=session.session_id,
            principal_id=principal_id,
            access_expires_at=access_expires_at,
            refresh_expires_at=session.expires_at,
        )

    def refresh(self, refresh: str, attrs: Mapping[str, Any] | None = None) -> Refreshed | Rejected:
        """Exchange a refresh value for a fresh access assertion.

        Rejected(INVALID_OR_REVOKED) for unknown, revoked, evicted or tampered
        values and for principals that no longer exist. Rejected(EXPIRED) when
        the backing session has passed expires_at (the session is deleted).
        """
        attrs = dict(attrs or {})
        _check_attrs(attrs)
        session = self.store.find_by_secret(refresh)
        if session is None:
            logger.info("Refresh rejected: %s", Reason.INVALID_OR_REVOKED.value)
            return Rejected(Reason.INVALID_OR_REVOKED)

        if self.clock.now() > session.expires_at:
            self.store.delete(session.session_id)
            logger.info("Refresh rejected for session %s: %s", session.session_id, Reason.EXPIRED.value)
            return Rejected(Reason.EXPIRED)

        if not self.principal_exists(session.principal_id):
            self.store.delete(session.session_id)
            logger.info("Refresh rejected for session %s: principal gone", session.session_id)
            return Rejected(Reason.INVALID_OR_REVOKED)

        new_refresh = None
        if self.rotate_refresh_secrets:
            secret = self._new_secret()
            if self.store.rotate(session, secret) is None:
                logger.info("Refresh rejected for session %s: lost rotation race", session.session_id)
                return Rejected(Reason.INVALID_OR_REVOKED)
            new_refresh = encode_refresh_value(session.session_id, secret)
        else:
            self.store.touch(session.session_id)

        access, access_expires_at = self._mint_access(session, attrs)
        return Refreshed(
            access=access,
            session_id=session.session_id,
            principal_id=session.principal_id,
            access_expires_at=access_expires_at,
            refresh=new_refresh,
        )

    def revoke(self, session_id: UUID) -> bool:
        """Delete one session. Outstanding access assertions stay valid until exp."""
        return self.store.delete(session_id)

    def revoke_all(self, principal_id: UUID) -> int:
        """Delete every session for principal ("log out everywhere")."""
        return self.store.delete_all_for_principal(principal_id)

    def verify_access(self, token: str) -> dict[str, Any] | None:
        """Decode an access assertion. Returns the claims or None on any failure."""
        return self.signer.verify(token)

    def _mint_access(self, session: Session, attrs: dict[str, Any]) -> tuple[str, datetime]:
        now = self.clock.now()
        expires_at = now + self.access_ttl
        claims = dict(
            attrs,
            sub=str(session.principal_id),
            sid=str(session.session_id),
            iat=int(now.timestamp()),
            exp=int(expires_at.timestamp()),
        )
        return self.signer.sign(claims), expires_at

    def _new_secret(self) -> str:
        raw = self._random_bytes(_SECRET_BYTES)
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _check_attrs(attrs: dict[str, Any]) -> None:
    clash = _RESERVED_CLAIMS.intersection(attrs)
    if clash:
        raise ValueError(f"attrs may not set reserved claims: {sorted(clash)}")
