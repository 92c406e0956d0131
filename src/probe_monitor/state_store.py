"""Thread-safe store of the last known status of every monitored pod.

The store is the only shared mutable state in the monitor. The reconciler is
its single writer; dashboard and API request handlers are concurrent readers.
Access follows a reader/writer discipline:

- Readers (``get``, ``snapshot``, ``names``, ``addresses``) hold a shared lock
  and never block each other.
- Writers (``upsert``, ``remove``, ``prune_except``, ``commit_cycle``) hold an
  exclusive lock and are serialized.

``commit_cycle`` applies a whole reconciliation cycle (upserts plus prune)
inside one exclusive section, so a reader either sees the state before the
cycle or after it, never a mix of the two.

Records are frozen dataclasses, so the lists returned by ``snapshot`` can be
iterated freely after the lock has been released.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import replace

from probe_monitor.logging import get_logger
from probe_monitor.models import StatusRecord

logger = get_logger(__name__)


class ReadWriteLock:
    """A reader/writer lock with writer preference.

    Any number of readers may hold the lock at the same time. A writer waits
    for active readers to leave, and new readers wait while a writer is
    waiting or active, so the reconciler cannot be starved by a steady
    stream of dashboard requests.

    Not reentrant: a thread holding the write lock must not acquire the read
    lock (or vice versa).

    Usage:
        lock = ReadWriteLock()
        with lock.read():
            ...
        with lock.write():
            ...
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._active_readers = 0
        self._waiting_writers = 0
        self._writer_active = False

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer_active or self._waiting_writers > 0:
                self._cond.wait()
            self._active_readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._active_readers -= 1
            if self._active_readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer_active or self._active_readers > 0:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer_active = True

    def release_write(self) -> None:
        with self._cond:
            self._writer_active = False
            self._cond.notify_all()

    @contextmanager
    def read(self) -> Iterator[None]:
        """Hold the shared lock for the duration of the block."""
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write(self) -> Iterator[None]:
        """Hold the exclusive lock for the duration of the block."""
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


class StateStore:
    """Mapping from pod name to its last known StatusRecord.

    Keeps ``last_checked`` monotonically non-decreasing per pod: a record
    whose timestamp is older than the stored one (e.g. after a wall clock
    step backwards) is stored with the previous timestamp instead.
    """

    def __init__(self) -> None:
        self._records: dict[str, StatusRecord] = {}
        self._lock = ReadWriteLock()

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._records)

    def __contains__(self, name: object) -> bool:
        with self._lock.read():
            return name in self._records

    def get(self, name: str) -> StatusRecord | None:
        """Return the record for a pod, or None if it is not stored."""
        with self._lock.read():
            return self._records.get(name)

    def snapshot(self) -> list[StatusRecord]:
        """Return an independent copy of all records, ordered by pod name."""
        with self._lock.read():
            records = list(self._records.values())
        records.sort(key=lambda r: r.name)
        return records

    def names(self) -> frozenset[str]:
        """Return the set of stored pod names."""
        with self._lock.read():
            return frozenset(self._records)

    def addresses(self) -> frozenset[str]:
        """Return the set of non-empty pod addresses currently stored."""
        with self._lock.read():
            return frozenset(r.address for r in self._records.values() if r.address)

    def upsert(self, record: StatusRecord) -> None:
        """Insert or replace the record for ``record.name``."""
        with self._lock.write():
            self._put(record)

    def remove(self, name: str) -> None:
        """Delete the record for ``name``; no-op if it is not stored."""
        with self._lock.write():
            self._records.pop(name, None)

    def prune_except(self, names: Iterable[str]) -> list[str]:
        """Remove every record whose name is not in ``names``.

        Args:
            names: Pod names to keep.

        Returns:
            Names of the removed records, sorted.
        """
        keep = frozenset(names)
        with self._lock.write():
            return self._prune(keep)

    def commit_cycle(self, records: Iterable[StatusRecord]) -> list[str]:
        """Apply one reconciliation cycle atomically.

        Upserts every record and removes every stored pod that is not among
        them, inside a single exclusive section.

        Args:
            records: Records built during the cycle, one per discovered pod.

        Returns:
            Names of the removed records, sorted.
        """
        records = list(records)
        keep = frozenset(r.name for r in records)
        with self._lock.write():
            for record in records:
                self._put(record)
            return self._prune(keep)

    def _put(self, record: StatusRecord) -> None:
        # Caller must hold the write lock.
        previous = self._records.get(record.name)
        if previous is not None and record.last_checked < previous.last_checked:
            logger.debug(
                "Clamping last_checked for %s (%s < %s)",
                record.name,
                record.last_checked.isoformat(),
                previous.last_checked.isoformat(),
                extra={"diagnostic_tag": "store"},
            )
            record = replace(record, last_checked=previous.last_checked)
        self._records[record.name] = record

    def _prune(self, keep: frozenset[str]) -> list[str]:
        # Caller must hold the write lock.
        removed = sorted(name for name in self._records if name not in keep)
        for name in removed:
            del self._records[name]
        return removed


__all__ = ["ReadWriteLock", "StateStore"]
