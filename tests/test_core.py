"""Unit tests for core/ -- hashing, clock, keyed locks, phone helpers, config, errors.

Covers:
- Hasher salts every digest, verifies in both directions, never raises on junk
- ManualClock moves only forward; to_iso/from_iso keep ordering
- KeyedLock serialises one key, leaves other keys free, forgets idle keys
- Phone normalisation, E.164 validation and masking
- Settings SECRET_KEY policy and bounds
- Rejected is falsy and hides its reason in public_message
"""

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from core.clock import ManualClock, SystemClock, from_iso, to_iso
from core.config import Settings, get_settings
from core.errors import Reason, Rejected
from core.hashing import Hasher
from core.locks import KeyedLock
from core.phone import is_valid_e164, mask_phone_number, normalize_phone_number

# ---------------------------------------------------------------------------
# Hasher
# ---------------------------------------------------------------------------


class TestHasher:
    def test_hash_and_verify(self, hasher):
        digest = hasher.hash("482913")
        assert hasher.verify("482913", digest)
        assert not hasher.verify("482914", digest)

    def test_digests_are_salted(self, hasher):
        assert hasher.hash("482913") != hasher.hash("482913")

    def test_corrupt_hash_is_a_failed_match(self, hasher):
        assert hasher.verify("482913", "not-a-bcrypt-hash") is False

    def test_overlong_input_never_matches(self, hasher):
        assert hasher.verify("x" * 100, hasher.hash("x" * 72)) is False
        with pytest.raises(ValueError):
            hasher.hash("x" * 73)

    def test_dummy_verify_is_false(self, hasher):
        assert hasher.dummy_verify("loginguard_timing_dummy") is False

    def test_rounds_respected(self):
        assert Hasher(rounds=5).hash("a").startswith("$2b$05$")


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class TestClock:
    def test_system_clock_is_utc(self):
        assert SystemClock().now().tzinfo is not None
        assert SystemClock().now().utcoffset() == timedelta(0)

    def test_manual_clock_advances(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        clock = ManualClock(start)
        assert clock.advance(minutes=5) == start + timedelta(minutes=5)
        assert clock.now() == start + timedelta(minutes=5)

    def test_manual_clock_rejects_naive_and_backwards(self):
        with pytest.raises(ValueError):
            ManualClock(datetime(2024, 1, 1))
        with pytest.raises(ValueError):
            ManualClock().advance(seconds=-1)

    def test_iso_round_trip_and_width(self):
        dt = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert len(to_iso(dt)) == 32
        assert from_iso(to_iso(dt)) == dt

    def test_iso_strings_sort_like_datetimes(self):
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        values = [base, base + timedelta(microseconds=1), base + timedelta(seconds=1), base + timedelta(days=400)]
        assert sorted(to_iso(v) for v in reversed(values)) == [to_iso(v) for v in values]

    def test_non_utc_input_normalised(self):
        plus_two = timezone(timedelta(hours=2))
        dt = datetime(2024, 1, 1, 14, 0, tzinfo=plus_two)
        assert to_iso(dt) == "2024-01-01T12:00:00.000000+00:00"


# ---------------------------------------------------------------------------
# KeyedLock
# ---------------------------------------------------------------------------


class TestKeyedLock:
    def test_same_key_is_serialised(self):
        locks = KeyedLock()
        active = 0
        peak = 0
        guard = threading.Lock()

        def work() -> None:
            nonlocal active, peak
            with locks.hold("principal"):
                with guard:
                    active += 1
                    peak = max(peak, active)
                time.sleep(0.005)
                with guard:
                    active -= 1

        threads = [threading.Thread(target=work) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert peak == 1

    def test_different_keys_do_not_block(self):
        locks = KeyedLock()
        acquired = threading.Event()

        def other() -> None:
            with locks.hold("b"):
                acquired.set()

        with locks.hold("a"):
            t = threading.Thread(target=other)
            t.start()
            assert acquired.wait(timeout=2)
            t.join()

    def test_idle_keys_are_dropped(self):
        locks = KeyedLock()
        with locks.hold("a"):
            assert len(locks) == 1
        assert len(locks) == 0

    def test_released_on_exception(self):
        locks = KeyedLock()
        with pytest.raises(RuntimeError):
            with locks.hold("a"):
                raise RuntimeError("boom")
        with locks.hold("a"):
            pass
        assert len(locks) == 0


# ---------------------------------------------------------------------------
# Phone helpers
# ---------------------------------------------------------------------------


class TestPhone:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("9876543210", "+919876543210"),
            ("09876543210", "+919876543210"),
            ("+91 98765 43210", "+919876543210"),
            ("+1 (555) 123-4567", "+15551234567"),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_phone_number(raw) == expected

    def test_normalize_with_other_country_code(self):
        assert normalize_phone_number("07700900123", default_country_code="44") == "+447700900123"

    def test_normalize_rejects_garbage(self):
        with pytest.raises(ValueError):
            normalize_phone_number("+")
        with pytest.raises(ValueError):
            normalize_phone_number("+0123456")

    def test_is_valid_e164(self):
        assert is_valid_e164("+15551234567")
        assert not is_valid_e164("15551234567")
        assert not is_valid_e164("+1555123456789012")

    def test_mask(self):
        assert mask_phone_number("+919876543210") == "+91******3210"
        assert mask_phone_number("+1234") == "*****"


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class TestSettings:
    def test_defaults(self):
        s = Settings(debug=True)
        assert s.max_sessions_per_principal == 2
        assert s.session_ttl_seconds == 30 * 24 * 60 * 60
        assert s.code_ttl_seconds == 300
        assert s.code_length == 6
        assert s.access_ttl_seconds == 900
        assert s.rotate_refresh_secrets is False

    def test_debug_generates_secret_key(self):
        s = Settings(debug=True, secret_key="")
        assert len(s.secret_key) >= 32

    def test_production_requires_secret_key(self):
        with pytest.raises(ValueError):
            Settings(debug=False, secret_key="")

    def test_short_secret_key_rejected(self):
        with pytest.raises(ValueError):
            Settings(debug=True, secret_key="too-short")

    def test_bounds_enforced(self):
        with pytest.raises(ValueError):
            Settings(debug=True, max_sessions_per_principal=0)
        with pytest.raises(ValueError):
            Settings(debug=True, code_length=12)

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("MAX_SESSIONS_PER_PRINCIPAL", "5")
        monkeypatch.setenv("ROTATE_REFRESH_SECRETS", "true")
        s = Settings(debug=True)
        assert s.max_sessions_per_principal == 5
        assert s.rotate_refresh_secrets is True

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()


# ---------------------------------------------------------------------------
# Rejected
# ---------------------------------------------------------------------------


class TestRejected:
    def test_rejected_is_falsy(self):
        assert not Rejected(Reason.MISMATCH)

    def test_code_reasons_share_one_message(self):
        messages = {Rejected(r).public_message for r in (Reason.NOT_FOUND, Reason.EXPIRED, Reason.MISMATCH)}
        assert len(messages) == 1
        assert "mismatch" not in messages.pop().lower()
