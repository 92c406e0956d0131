"""Tests for the reconciliation loop."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from probe_monitor.models import ProbeStatus
from probe_monitor.probe_client import ProbeClient
from probe_monitor.reconciler import CycleResult, Reconciler, ReconcilerState
from probe_monitor.state_store import StateStore
from tests.conftest import (
    FIXED_TIME,
    FakeDiscovery,
    PodNetwork,
    info_payload,
    make_descriptor,
)


def make_reconciler(
    discovery: FakeDiscovery,
    probe_client: ProbeClient,
    store: StateStore,
    clock: Callable[[], datetime] | None = None,
    **kwargs: object,
) -> Reconciler:
    return Reconciler(
        discovery=discovery,
        probe_client=probe_client,
        store=store,
        label_selector="app=probe-demo",
        clock=clock or (lambda: FIXED_TIME),
        **kwargs,  # type: ignore[arg-type]
    )


def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class TestRunOnce:
    def test_running_pod_gets_info(
        self,
        fake_discovery: FakeDiscovery,
        probe_client: ProbeClient,
        pod_network: PodNetwork,
        store: StateStore,
    ) -> None:
        fake_discovery.descriptors = [make_descriptor("web-7f8c9d-abcde", "10.0.0.5")]
        pod_network.serve_json("10.0.0.5", info_payload(ready=True))

        result = make_reconciler(fake_discovery, probe_client, store).run_once()

        record = store.get("web-7f8c9d-abcde")
        assert record is not None
        assert record.group_tag == "7f8c9d"
        assert record.error is None
        assert record.info is not None
        assert record.info.probe_status == ProbeStatus(started=True, live=True, ready=True)
        assert record.last_checked == FIXED_TIME
        assert (result.discovered, result.fetched, result.failed) == (1, 1, 0)
        assert result.removed == []
        assert result.succeeded

    def test_pending_pod_is_not_fetched(
        self,
        fake_discovery: FakeDiscovery,
        probe_client: ProbeClient,
        pod_network: PodNetwork,
        store: StateStore,
    ) -> None:
        fake_discovery.descriptors = [
            make_descriptor("web-7f8c9d-abcde", address="", host="", phase="Pending")
        ]

        make_reconciler(fake_discovery, probe_client, store).run_once()

        record = store.get("web-7f8c9d-abcde")
        assert record is not None
        assert record.phase == "Pending"
        assert record.info is None
        assert record.error is None
        assert pod_network.requests == []

    def test_running_pod_without_address_is_not_fetched(
        self,
        fake_discovery: FakeDiscovery,
        probe_client: ProbeClient,
        pod_network: PodNetwork,
        store: StateStore,
    ) -> None:
        fake_discovery.descriptors = [make_descriptor(address="")]

        make_reconciler(fake_discovery, probe_client, store).run_once()

        assert pod_network.requests == []
        record = store.get("web-7f8c9d-abcde")
        assert record is not None and record.info is None and record.error is None

    def test_fetch_failure_is_isolated(
        self,
        fake_discovery: FakeDiscovery,
        probe_client: ProbeClient,
        pod_network: PodNetwork,
        store: StateStore,
    ) -> None:
        fake_discovery.descriptors = [
            make_descriptor("web-7f8c9d-aaaaa", "10.0.0.1"),
            make_descriptor("web-7f8c9d-bbbbb", "10.0.0.2"),
            make_descriptor("web-7f8c9d-ccccc", "10.0.0.3"),
        ]
        pod_network.serve_json("10.0.0.1", info_payload())
        pod_network.fail("10.0.0.2")
        pod_network.serve_raw("10.0.0.3", b"nope", status_code=500)

        result = make_reconciler(fake_discovery, probe_client, store).run_once()

        ok = store.get("web-7f8c9d-aaaaa")
        refused = store.get("web-7f8c9d-bbbbb")
        server_error = store.get("web-7f8c9d-ccccc")
        assert ok is not None and ok.info is not None and ok.error is None
        assert refused is not None and refused.info is None
        assert refused.error is not None and refused.error.startswith("failed to connect: ")
        assert refused.address == "10.0.0.2"
        assert server_error is not None
        assert server_error.error == "unexpected status code: 500"
        assert (result.fetched, result.failed) == (1, 2)

    def test_unexpected_fetch_exception_is_isolated(
        self, fake_discovery: FakeDiscovery, store: StateStore
    ) -> None:
        fake_discovery.descriptors = [
            make_descriptor("web-7f8c9d-aaaaa", "10.0.0.1"),
            make_descriptor("web-7f8c9d-bbbbb", "10.0.0.2"),
        ]
        probe_client = MagicMock(spec=ProbeClient)

        def fetch(address: str) -> object:
            if address == "10.0.0.1":
                raise RuntimeError("decoder exploded")
            return MagicMock(name="status")

        probe_client.fetch_status.side_effect = fetch

        make_reconciler(fake_discovery, probe_client, store).run_once()

        broken = store.get("web-7f8c9d-aaaaa")
        assert broken is not None
        assert broken.error == "unexpected error: decoder exploded"
        healthy = store.get("web-7f8c9d-bbbbb")
        assert healthy is not None and healthy.info is not None

    def test_vanished_pods_are_pruned(
        self,
        fake_discovery: FakeDiscovery,
        probe_client: ProbeClient,
        pod_network: PodNetwork,
        store: StateStore,
    ) -> None:
        pod_network.serve_json("10.0.0.1", info_payload())
        pod_network.serve_json("10.0.0.2", info_payload())
        fake_discovery.descriptors = [
            make_descriptor("web-7f8c9d-aaaaa", "10.0.0.1"),
            make_descriptor("web-7f8c9d-bbbbb", "10.0.0.2"),
        ]
        reconciler = make_reconciler(fake_discovery, probe_client, store)
        reconciler.run_once()

        fake_discovery.descriptors = [make_descriptor("web-7f8c9d-bbbbb", "10.0.0.2")]
        result = reconciler.run_once()

        assert result.removed == ["web-7f8c9d-aaaaa"]
        assert store.names() == frozenset({"web-7f8c9d-bbbbb"})

    def test_empty_discovery_empties_store(
        self,
        fake_discovery: FakeDiscovery,
        probe_client: ProbeClient,
        pod_network: PodNetwork,
        store: StateStore,
    ) -> None:
        pod_network.serve_json("10.0.0.1", info_payload())
        fake_discovery.descriptors = [make_descriptor("web-7f8c9d-aaaaa", "10.0.0.1")]
        reconciler = make_reconciler(fake_discovery, probe_client, store)
        reconciler.run_once()

        fake_discovery.descriptors = []
        reconciler.run_once()

        assert len(store) == 0

    def test_discovery_failure_leaves_store_untouched(
        self,
        fake_discovery: FakeDiscovery,
        probe_client: ProbeClient,
        pod_network: PodNetwork,
        store: StateStore,
    ) -> None:
        pod_network.serve_json("10.0.0.1", info_payload())
        fake_discovery.descriptors = [make_descriptor("web-7f8c9d-aaaaa", "10.0.0.1")]
        reconciler = make_reconciler(fake_discovery, probe_client, store)
        reconciler.run_once()
        before = store.snapshot()

        fake_discovery.error = "Error listing pods: 503 Service Unavailable"
        result = reconciler.run_once()

        assert not result.succeeded
        assert result.error == "Error listing pods: 503 Service Unavailable"
        assert store.snapshot() == before
        assert reconciler.last_error == result.error
        assert reconciler.has_completed_cycle

    def test_recovers_after_discovery_failure(
        self,
        fake_discovery: FakeDiscovery,
        probe_client: ProbeClient,
        store: StateStore,
    ) -> None:
        reconciler = make_reconciler(fake_discovery, probe_client, store)
        fake_discovery.error = "boom"
        reconciler.run_once()
        assert not reconciler.has_completed_cycle

        fake_discovery.error = None
        fake_discovery.descriptors = [make_descriptor(phase="Pending", address="")]
        reconciler.run_once()

        assert reconciler.has_completed_cycle
        assert reconciler.last_error is None
        assert reconciler.cycle_count == 2
        assert len(store) == 1

    def test_passes_selector_and_namespace(
        self, fake_discovery: FakeDiscovery, probe_client: ProbeClient, store: StateStore
    ) -> None:
        make_reconciler(fake_discovery, probe_client, store, namespace="demo").run_once()
        make_reconciler(fake_discovery, probe_client, store).run_once()

        assert fake_discovery.calls == [("app=probe-demo", "demo"), ("app=probe-demo", "")]

    def test_custom_group_tag_policy(
        self, fake_discovery: FakeDiscovery, probe_client: ProbeClient, store: StateStore
    ) -> None:
        fake_discovery.descriptors = [make_descriptor(phase="Pending", address="")]
        reconciler = make_reconciler(
            fake_discovery, probe_client, store, group_tag_fn=lambda name: name.upper()
        )

        reconciler.run_once()

        record = store.get("web-7f8c9d-abcde")
        assert record is not None and record.group_tag == "WEB-7F8C9D-ABCDE"

    def test_last_checked_advances_with_clock(
        self,
        fake_discovery: FakeDiscovery,
        probe_client: ProbeClient,
        store: StateStore,
        ticking_clock: Callable[[], datetime],
    ) -> None:
        fake_discovery.descriptors = [make_descriptor(phase="Pending", address="")]
        reconciler = make_reconciler(fake_discovery, probe_client, store, clock=ticking_clock)

        reconciler.run_once()
        first = store.get("web-7f8c9d-abcde")
        reconciler.run_once()
        second = store.get("web-7f8c9d-abcde")

        assert first is not None and second is not None
        assert second.last_checked > first.last_checked

    def test_parallel_fetches_match_sequential(
        self,
        fake_discovery: FakeDiscovery,
        probe_client: ProbeClient,
        pod_network: PodNetwork,
        store: StateStore,
    ) -> None:
        fake_discovery.descriptors = [
            make_descriptor(f"web-7f8c9d-pod{i}", f"10.0.1.{i}") for i in range(8)
        ]
        for i in range(8):
            if i % 2:
                pod_network.fail(f"10.0.1.{i}")
            else:
                pod_network.serve_json(f"10.0.1.{i}", info_payload(pod_name=f"pod{i}"))

        result = make_reconciler(
            fake_discovery, probe_client, store, fetch_workers=4
        ).run_once()

        assert (result.fetched, result.failed) == (4, 4)
        for i in range(8):
            record = store.get(f"web-7f8c9d-pod{i}")
            assert record is not None
            if i % 2:
                assert record.error is not None and record.info is None
            else:
                assert record.info is not None and record.info.pod_name == f"pod{i}"


class TestCycleResult:
    def test_succeeded(self) -> None:
        assert CycleResult(discovered=2).succeeded
        assert not CycleResult(error="Error listing pods: timeout").succeeded


class TestValidation:
    def test_rejects_non_positive_interval(
        self, fake_discovery: FakeDiscovery, probe_client: ProbeClient, store: StateStore
    ) -> None:
        with pytest.raises(ValueError, match="interval"):
            make_reconciler(fake_discovery, probe_client, store, interval=0)

    def test_rejects_zero_workers(
        self, fake_discovery: FakeDiscovery, probe_client: ProbeClient, store: StateStore
    ) -> None:
        with pytest.raises(ValueError, match="fetch_workers"):
            make_reconciler(fake_discovery, probe_client, store, fetch_workers=0)


class TestLoop:
    def test_start_runs_cycles_until_stopped(
        self, fake_discovery: FakeDiscovery, probe_client: ProbeClient, store: StateStore
    ) -> None:
        reconciler = make_reconciler(fake_discovery, probe_client, store, interval=0.01)

        reconciler.start()
        try:
            assert wait_until(lambda: reconciler.cycle_count >= 3)
            assert reconciler.is_running
        finally:
            reconciler.stop(timeout=2.0)

        assert not reconciler.is_running
        assert reconciler.state is ReconcilerState.STOPPED

    def test_stop_interrupts_long_wait(
        self, fake_discovery: FakeDiscovery, probe_client: ProbeClient, store: StateStore
    ) -> None:
        reconciler = make_reconciler(fake_discovery, probe_client, store, interval=60.0)
        reconciler.start()
        assert wait_until(lambda: reconciler.cycle_count == 1)

        started = time.monotonic()
        reconciler.stop(timeout=2.0)

        assert time.monotonic() - started < 2.0
        assert reconciler.cycle_count == 1

    def test_run_with_external_stop_event(
        self, fake_discovery: FakeDiscovery, probe_client: ProbeClient, store: StateStore
    ) -> None:
        reconciler = make_reconciler(fake_discovery, probe_client, store, interval=0.01)
        stop = threading.Event()
        thread = threading.Thread(target=reconciler.run, args=(stop,))
        thread.start()

        assert wait_until(lambda: reconciler.cycle_count >= 2)
        stop.set()
        thread.join(timeout=2.0)

        assert not thread.is_alive()
        assert reconciler.state is ReconcilerState.STOPPED

    def test_loop_survives_unexpected_cycle_error(
        self, probe_client: ProbeClient, store: StateStore
    ) -> None:
        calls: list[int] = []

        def list_instances(selector: str, namespace: str = "") -> list[object]:
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("kaboom")
            return []

        discovery = MagicMock()
        discovery.list_instances.side_effect = list_instances
        reconciler = make_reconciler(discovery, probe_client, store, interval=0.01)

        reconciler.start()
        try:
            assert wait_until(lambda: reconciler.has_completed_cycle)
        finally:
            reconciler.stop(timeout=2.0)

        assert reconciler.cycle_count >= 2

    def test_state_is_idle_around_single_cycles(
        self, fake_discovery: FakeDiscovery, probe_client: ProbeClient, store: StateStore
    ) -> None:
        reconciler = make_reconciler(fake_discovery, probe_client, store)

        assert reconciler.state is ReconcilerState.IDLE
        reconciler.run_once()
        assert reconciler.state is ReconcilerState.IDLE
        assert reconciler.last_cycle_at == FIXED_TIME
        assert reconciler.last_cycle_duration is not None
