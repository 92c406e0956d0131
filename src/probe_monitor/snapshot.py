"""Read-only views of the state store for the dashboard and JSON API."""

from __future__ import annotations

from typing import Any

from probe_monitor.models import StatusRecord
from probe_monitor.state_store import StateStore


class SnapshotReader:
    """Read side of the StateStore.

    Every method takes one snapshot, so the returned data always reflects a
    single complete reconciliation cycle.
    """

    def __init__(self, store: StateStore) -> None:
        self._store = store

    def current_snapshot(self) -> list[StatusRecord]:
        """Return all records, ordered by pod name."""
        return self._store.snapshot()

    def as_mapping(self) -> dict[str, dict[str, Any]]:
        """Return the JSON form of every record keyed by pod name."""
        return {record.name: record.to_dict() for record in self._store.snapshot()}

    def for_display(self) -> list[StatusRecord]:
        """Return all records grouped by group tag, then ordered by pod name."""
        return sorted(self._store.snapshot(), key=lambda r: (r.group_tag, r.name))


__all__ = ["SnapshotReader"]
