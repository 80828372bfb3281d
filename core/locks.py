"""
core/locks.py -- In-process mutexes keyed by an arbitrary string.

KeyedLock gives each key (a principal id, a phone number) its own
threading.Lock, so work for different keys never contends. Entries are
reference-counted and dropped when the last holder releases, so the map does
not grow with every principal that ever logged in.

shared_keyed_lock(name) returns one KeyedLock per name for the whole process.
The stores key it by their database URL, so two store objects pointed at the
same database serialise together.

This serialises callers inside one process only. Deployments running several
processes against one database also rely on the write locks the stores take
(BEGIN IMMEDIATE on SQLite, SELECT ... FOR UPDATE elsewhere).
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class _Entry:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


class KeyedLock:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Block until the lock for key is free, hold it for the with-block."""
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.holders += 1
        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._entries[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


_shared: dict[str, KeyedLock] = {}
_shared_guard = threading.Lock()


def shared_keyed_lock(name: str) -> KeyedLock:
    """Process-wide KeyedLock registered under name, created on first use."""
    with _shared_guard:
        locks = _shared.get(name)
        if locks is None:
            locks = _shared[name] = KeyedLock()
        return locks
