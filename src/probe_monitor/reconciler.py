"""Periodic reconciliation of discovered pods into the state store.

Each cycle lists the pods matching the label selector, fetches the
self-reported status of every running pod, and commits the resulting
records to the StateStore in one atomic step. Pods that are no longer
discovered are pruned in the same step.

Failure handling:

- A discovery failure aborts the cycle. The store is left untouched and the
  next tick tries again.
- A fetch failure is recorded on the affected pod's record and does not
  affect any other pod.
- Any other unexpected error in a cycle is logged with its traceback and the
  loop keeps running.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum

from probe_monitor.discovery import DiscoveryClient
from probe_monitor.errors import DiscoveryError, FetchError
from probe_monitor.logging import get_logger
from probe_monitor.models import InstanceDescriptor, StatusRecord
from probe_monitor.naming import GroupTagPolicy, replica_set_id
from probe_monitor.probe_client import ProbeClient
from probe_monitor.state_store import StateStore

logger = get_logger(__name__)

DEFAULT_INTERVAL_SECONDS = 5.0


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(tz=UTC)


class ReconcilerState(StrEnum):
    """Lifecycle state of the reconciliation loop."""

    IDLE = "idle"
    CYCLING = "cycling"
    STOPPED = "stopped"


@dataclass(frozen=True)
class CycleResult:
    """Outcome of a single reconciliation cycle.

    Attributes:
        discovered: Number of pods returned by discovery.
        fetched: Number of status fetches that succeeded.
        failed: Number of status fetches that failed.
        removed: Names of pods pruned from the store.
        error: Discovery error message if the cycle was aborted.
        duration_seconds: Wall time the cycle took.
    """

    discovered: int = 0
    fetched: int = 0
    failed: int = 0
    removed: list[str] = field(default_factory=list)
    error: str | None = None
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        """Whether the cycle reached the commit step."""
        return self.error is None


class Reconciler:
    """Drives the discovery, fetch and merge loop.

    The reconciler is the single writer of the StateStore. It can be driven
    step by step with ``run_once`` or run continuously in a background
    thread with ``start`` / ``stop``.

    Args:
        discovery: Client used to list the pods to monitor.
        probe_client: Client used to fetch each pod's status.
        store: Store that receives the records.
        label_selector: Label selector passed to discovery.
        interval: Seconds between the start of two cycles' waits.
        namespace: Namespace to restrict discovery to; None or "" for all.
        group_tag_fn: Derives the group tag from a pod name.
        fetch_workers: Number of concurrent status fetches per cycle.
        clock: Returns the timestamp stamped on records.
    """

    def __init__(
        self,
        discovery: DiscoveryClient,
        probe_client: ProbeClient,
        store: StateStore,
        label_selector: str,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        namespace: str | None = None,
        group_tag_fn: GroupTagPolicy = replica_set_id,
        fetch_workers: int = 1,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        if fetch_workers < 1:
            raise ValueError(f"fetch_workers must be at least 1, got {fetch_workers}")
        self.discovery = discovery
        self.probe_client = probe_client
        self.store = store
        self.label_selector = label_selector
        self.interval = interval
        self.namespace = namespace or ""
        self.group_tag_fn = group_tag_fn
        self.fetch_workers = fetch_workers
        self.clock = clock

        self._status_lock = threading.Lock()
        self._state = ReconcilerState.IDLE
        self._cycle_count = 0
        self._last_cycle_at: datetime | None = None
        self._last_cycle_duration: float | None = None
        self._last_error: str | None = None
        self._has_completed_cycle = False

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def state(self) -> ReconcilerState:
        with self._status_lock:
            return self._state

    @property
    def cycle_count(self) -> int:
        """Number of cycles attempted so far, aborted ones included."""
        with self._status_lock:
            return self._cycle_count

    @property
    def last_cycle_at(self) -> datetime | None:
        """When the most recent cycle started."""
        with self._status_lock:
            return self._last_cycle_at

    @property
    def last_cycle_duration(self) -> float | None:
        with self._status_lock:
            return self._last_cycle_duration

    @property
    def last_error(self) -> str | None:
        """Error of the most recent cycle, or None if it succeeded."""
        with self._status_lock:
            return self._last_error

    @property
    def has_completed_cycle(self) -> bool:
        """Whether at least one cycle has committed to the store."""
        with self._status_lock:
            return self._has_completed_cycle

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _set_state(self, state: ReconcilerState) -> None:
        with self._status_lock:
            self._state = state

    def _fetch_record(self, record: StatusRecord) -> StatusRecord:
        """Attach the remote status, or the fetch error, to a running pod's record."""
        pod_logger = logger.with_context(pod=record.name, address=record.address)
        try:
            info = self.probe_client.fetch_status(record.address)
        except FetchError as e:
            pod_logger.warning("Error fetching pod info: %s", e)
            return replace(record, error=str(e))
        except Exception as e:
            pod_logger.exception(
                "Unexpected error fetching pod info: %s",
                e,
                extra={"error_type": type(e).__name__},
            )
            return replace(record, error=f"unexpected error: {e}")
        return replace(record, info=info)

    def _build_records(
        self, descriptors: list[InstanceDescriptor], now: datetime
    ) -> list[StatusRecord]:
        records = [
            StatusRecord.from_descriptor(d, self.group_tag_fn(d.name), now) for d in descriptors
        ]
        fetchable = [i for i, d in enumerate(descriptors) if d.is_fetchable]
        if not fetchable:
            return records

        if self.fetch_workers > 1 and len(fetchable) > 1:
            workers = min(self.fetch_workers, len(fetchable))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fetch") as pool:
                fetched = list(pool.map(self._fetch_record, (records[i] for i in fetchable)))
        else:
            fetched = [self._fetch_record(records[i]) for i in fetchable]

        for i, record in zip(fetchable, fetched, strict=True):
            records[i] = record
        return records

    def run_once(self) -> CycleResult:
        """Run a single reconciliation cycle.

        Returns:
            CycleResult describing what the cycle did. A discovery failure is
            reported through ``CycleResult.error`` rather than raised.
        """
        started = time.monotonic()
        now = self.clock()
        with self._status_lock:
            self._cycle_count += 1
            cycle = self._cycle_count
            self._last_cycle_at = now
            if self._state is not ReconcilerState.STOPPED:
                self._state = ReconcilerState.CYCLING

        cycle_logger = logger.with_context(cycle=cycle)
        try:
            try:
                descriptors = self.discovery.list_instances(self.label_selector, self.namespace)
            except DiscoveryError as e:
                cycle_logger.error(
                    "Error listing pods: %s", e, extra={"error_type": type(e).__name__}
                )
                result = CycleResult(error=str(e), duration_seconds=time.monotonic() - started)
                self._finish_cycle(result)
                return result

            logger.debug(
                "Discovered %s pods matching %s",
                len(descriptors),
                self.label_selector,
                extra={"diagnostic_tag": "discovery"},
            )

            records = self._build_records(descriptors, now)
            removed = self.store.commit_cycle(records)
            for name in removed:
                cycle_logger.info("Pod %s no longer discovered, removed", name)

            failed = sum(1 for r in records if r.error is not None)
            fetched = sum(1 for r in records if r.info is not None)
            result = CycleResult(
                discovered=len(descriptors),
                fetched=fetched,
                failed=failed,
                removed=removed,
                duration_seconds=time.monotonic() - started,
            )
            self._finish_cycle(result)
            cycle_logger.debug(
                "Cycle completed: %s pods, %s fetched, %s failed, %s removed in %.3fs",
                result.discovered,
                result.fetched,
                result.failed,
                len(result.removed),
                result.duration_seconds,
                extra={"diagnostic_tag": "cycle"},
            )
            return result
        finally:
            with self._status_lock:
                if self._state is ReconcilerState.CYCLING:
                    self._state = ReconcilerState.IDLE

    def _finish_cycle(self, result: CycleResult) -> None:
        with self._status_lock:
            self._last_cycle_duration = result.duration_seconds
            self._last_error = result.error
            if result.succeeded:
                self._has_completed_cycle = True

    def run(self, stop_event: threading.Event | None = None) -> None:
        """Run cycles until the stop event is set.

        The first cycle starts immediately; each following cycle starts
        ``interval`` seconds after the previous one finished. Setting the
        stop event interrupts the wait.

        Args:
            stop_event: Cancellation signal. Defaults to the reconciler's own
                event, which ``stop`` sets.
        """
        stop = stop_event if stop_event is not None else self._stop_event
        logger.info(
            "Starting reconciler for selector %s in %s, every %ss",
            self.label_selector,
            self.namespace or "all namespaces",
            self.interval,
        )
        self._set_state(ReconcilerState.IDLE)

        while not stop.is_set():
            try:
                self.run_once()
            except Exception as e:
                logger.exception(
                    "Unexpected error in reconciliation cycle: %s",
                    e,
                    extra={"error_type": type(e).__name__},
                )
                with self._status_lock:
                    self._last_error = f"unexpected error: {e}"
            if stop.wait(self.interval):
                break

        self._set_state(ReconcilerState.STOPPED)
        logger.info("Reconciler stopped")

    def start(self) -> None:
        """Run the loop in a background thread named ``reconciler``."""
        if self.is_running:
            logger.warning("Reconciler already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.run,
            args=(self._stop_event,),
            name="reconciler",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """Signal the loop to stop and wait for the background thread.

        In-flight fetches are not interrupted; they end at their own timeout.
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Reconciler thread did not terminate within %ss", timeout)
            else:
                self._thread = None
        self._set_state(ReconcilerState.STOPPED)


__all__ = [
    "CycleResult",
    "Reconciler",
    "ReconcilerState",
    "utc_now",
]
