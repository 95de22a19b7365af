"""In-process per-owner mutation locks."""

from collections.abc import Iterator
from contextlib import contextmanager
from threading import Lock, RLock
from uuid import UUID


class _OwnerLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = RLock()
        self.users = 0


class OwnerLockRegistry:
    """Hands out one lock per owner so gateway mutations for an owner run one at a time.

    Locks are re-entrant and created lazily. An owner's entry is dropped as
    soon as no thread holds or waits on it, so the registry only tracks owners
    with a mutation in flight.
    """

    def __init__(self) -> None:
        self._locks: dict[str, _OwnerLock] = {}
        self._lock = Lock()

    def _acquire_entry(self, key: str) -> _OwnerLock:
        with self._lock:
            entry = self._locks.get(key)
            if entry is None:
                entry = _OwnerLock()
                self._locks[key] = entry
            entry.users += 1
            return entry

    def _release_entry(self, key: str, entry: _OwnerLock) -> None:
        with self._lock:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(key) is entry:
                del self._locks[key]

    @contextmanager
    def hold(self, owner_id: UUID | str) -> Iterator[None]:
        key = str(owner_id)
        entry = self._acquire_entry(key)
        try:
            with entry.lock:
                yield
        finally:
            self._release_entry(key, entry)

    def tracked(self) -> int:
        """Number of owners that currently have a lock entry."""
        with self._lock:
            return len(self._locks)

    def reset(self) -> None:
        """Clear all tracked state (useful for testing)."""
        with self._lock:
            self._locks.clear()


owner_locks = OwnerLockRegistry()
