"""
core/hashing.py -- One-way salted digests for verification codes and refresh secrets.

Security design decisions:
  bcrypt, used directly (no passlib wrapper). Verification codes are low
  entropy (a 6-digit code has a million values), so a deliberately slow,
  salted hash is what keeps a leaked credential_requests table from being
  brute-forced in seconds. Refresh secrets are high entropy and would be safe
  with a fast hash, but sharing one primitive keeps a single verify path with
  uniform timing for find_by_secret.

  bcrypt.checkpw compares in constant time. verify() never raises: a corrupt
  stored hash is a failed comparison, not an error the caller must handle.

  dummy_verify() burns the same bcrypt work against a fixed hash. Callers use
  it on lookup misses so "no such row" and "wrong secret" take the same time.

  Inputs longer than bcrypt's 72-byte limit are rejected with ValueError
  instead of being silently truncated. Codes and secrets generated by
  LoginGuard are far below that limit.
"""

from __future__ import annotations

import bcrypt

_BCRYPT_MAX_BYTES = 72


class Hasher:
    """Salted one-way digest + constant-time compare.

    Usage:
        hasher = Hasher(rounds=12)
        digest = hasher.hash("482913")
        hasher.verify("482913", digest)   # True
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # Computed once so the first miss is not measurably slower than later ones.
        self._dummy_hash = self.hash("loginguard_timing_dummy")

    def hash(self, plain: str) -> str:
        raw = _encode(plain)
        return bcrypt.hashpw(raw, bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if plain matches hashed. False on any failure."""
        try:
            return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
        except ValueError:
            return False

    def dummy_verify(self, plain: str) -> bool:
        """Spend one verification's worth of work and return False."""
        self.verify(plain, self._dummy_hash)
        return False


def _encode(plain: str) -> bytes:
    raw = plain.encode("utf-8")
    if len(raw) > _BCRYPT_MAX_BYTES:
        raise ValueError(f"value exceeds bcrypt's {_BCRYPT_MAX_BYTES}-byte input limit")
    return raw
