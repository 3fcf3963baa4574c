"""
In-memory repository adapters - Implement the repository protocols.

Used for development (``STORAGE_BACKEND=memory``) and tests. Each key has
its own lock, held for the whole transaction, so transactions on the same
key are serialized while different keys proceed in parallel. Writes are
buffered in the unit of work and applied only when the block exits
normally.
"""

import threading
import weakref
from collections.abc import Hashable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from typing import Any

from account_guard.domain.models import (
    Clock,
    DeviceSession,
    UserAccount,
    VerificationRecord,
    utc_now,
)
from account_guard.domain.ports import Purpose


class _KeyLocks:
    """
    Lazily created lock per key.

    Locks are held weakly: an entry lives only while some transaction
    holds a reference, so the table does not grow with every key ever seen.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: weakref.WeakValueDictionary = weakref.WeakValueDictionary()

    def __call__(self, key: Hashable) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class _MemoryUnit:
    """Buffered unit of work over one stored value."""

    def __init__(self, current: Any) -> None:
        self.current = current
        self.dirty = False

    def get(self) -> Any:
        return self.current

    def put(self, value: Any) -> None:
        self.current = value
        self.dirty = True

    def delete(self) -> None:
        self.current = None
        self.dirty = True


def _apply(store: dict, key: Hashable, unit: _MemoryUnit) -> None:
    if not unit.dirty:
        return
    if unit.current is None:
        store.pop(key, None)
    else:
        store[key] = unit.current


class MemoryVerificationRepository:
    """
    Implements VerificationRepository protocol with a process-local dict.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(self) -> None:
        self._records: dict[tuple[Purpose, str], VerificationRecord] = {}
        self._locks = _KeyLocks()

    @contextmanager
    def transaction(self, purpose: Purpose, email: str) -> Iterator[_MemoryUnit]:
        key = (purpose, email)
        with self._locks(key):
            unit = _MemoryUnit(self._records.get(key))
            yield unit
            _apply(self._records, key, unit)

    def get(self, purpose: Purpose, email: str) -> VerificationRecord | None:
        """Read a record outside any transaction (inspection helper)."""
        return self._records.get((purpose, email))


class MemoryDeviceRepository:
    """
    Implements DeviceRepository protocol with process-local dicts.

    Companion device records are stamped with this repository's clock,
    standing in for the storage server's time.
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self._accounts: dict[str, UserAccount] = {}
        self._device_records: dict[tuple[str, str], DeviceSession] = {}
        self._locks = _KeyLocks()
        self._records_lock = threading.Lock()
        self._clock = clock

    @contextmanager
    def transaction(self, user_id: str) -> Iterator[_MemoryUnit]:
        with self._locks(user_id):
            unit = _MemoryUnit(self._accounts.get(user_id))
            yield unit
            _apply(self._accounts, user_id, unit)

    def get_account(self, user_id: str) -> UserAccount | None:
        return self._accounts.get(user_id)

    def upsert_device_record(self, user_id: str, device: DeviceSession) -> None:
        now = self._clock()
        key = (user_id, device.device_id)
        with self._records_lock:
            existing = self._device_records.get(key)
            if existing is None:
                self._device_records[key] = replace(device, logged_in_at=now, last_active_at=now)
            else:
                self._device_records[key] = existing.touched(now)

    def delete_device_record(self, user_id: str, device_id: str) -> None:
        with self._records_lock:
            self._device_records.pop((user_id, device_id), None)

    def device_records(self, user_id: str) -> dict[str, DeviceSession]:
        """Companion records for one user, keyed by device id."""
        with self._records_lock:
            return {
                device_id: record
                for (owner, device_id), record in self._device_records.items()
                if owner == user_id
            }
