"""Dependency Injection container for the Probe Monitor application.

This module wires the monitor's components together using the
dependency-injector library. There is no module-level state: the state store
is a singleton of the container, shared by the reconciler (writer) and the
snapshot reader and action forwarder (readers).

Usage:
    # Production setup
    container = create_container(config)
    reconciler = container.reconciler()

    # Test setup with a fake cluster
    container = create_container(config)
    container.clients.discovery.override(providers.Object(FakeDiscovery()))
    reconciler = container.reconciler()
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from dependency_injector import containers, providers

if TYPE_CHECKING:
    from probe_monitor.config import Config
    from probe_monitor.discovery import DiscoveryClient
    from probe_monitor.forwarder import ActionForwarder
    from probe_monitor.probe_client import ProbeClient
    from probe_monitor.reconciler import Reconciler
    from probe_monitor.snapshot import SnapshotReader
    from probe_monitor.state_store import StateStore


class ClientsContainer(containers.DeclarativeContainer):
    """Container for the clients that talk to the cluster and to pods.

    Grouped so a whole client set can be swapped for tests.
    """

    config: providers.Dependency[Config] = providers.Dependency()

    # Using Dependency() makes it explicit these must be provided at container creation
    discovery: providers.Dependency[DiscoveryClient] = providers.Dependency()
    probe_client: providers.Dependency[ProbeClient] = providers.Dependency()


class MonitorContainer(containers.DeclarativeContainer):
    """Main dependency injection container for Probe Monitor.

    MonitorContainer
    ├── config (Config)
    ├── clients (ClientsContainer)
    │   ├── discovery
    │   └── probe_client
    ├── store (StateStore)
    ├── reconciler (Reconciler)
    ├── reader (SnapshotReader)
    └── forwarder (ActionForwarder)
    """

    config: providers.Dependency[Config] = providers.Dependency()

    clients = providers.Container(
        ClientsContainer,
        config=config,
    )

    store: providers.Dependency[StateStore] = providers.Dependency()
    reconciler: providers.Dependency[Reconciler] = providers.Dependency()
    reader: providers.Dependency[SnapshotReader] = providers.Dependency()
    forwarder: providers.Dependency[ActionForwarder] = providers.Dependency()


def create_discovery_client(config: Config) -> DiscoveryClient:
    """Create the Kubernetes discovery client.

    Loads in-cluster credentials, falling back to the local kubeconfig.

    Raises:
        DiscoveryError: If no Kubernetes configuration could be loaded.
    """
    from probe_monitor.discovery import KubernetesDiscoveryClient

    return KubernetesDiscoveryClient.from_environment(request_timeout=config.discovery_timeout)


def create_probe_client(config: Config) -> ProbeClient:
    """Create the HTTP client for pod status and probe endpoints."""
    from probe_monitor.probe_client import ProbeClient

    return ProbeClient(instance_port=config.instance_port, timeout=config.request_timeout)


def create_store() -> StateStore:
    from probe_monitor.state_store import StateStore

    return StateStore()


def create_reconciler(
    config: Config,
    discovery: DiscoveryClient,
    probe_client: ProbeClient,
    store: StateStore,
) -> Reconciler:
    """Create the reconciler from configuration and its collaborators.

    Args:
        config: Application configuration.
        discovery: Client used to list pods.
        probe_client: Client used to fetch pod status.
        store: Shared state store.

    Returns:
        Reconciler configured with the selector, namespace, interval and
        fan-out width from config.
    """
    from probe_monitor.reconciler import Reconciler

    return Reconciler(
        discovery=discovery,
        probe_client=probe_client,
        store=store,
        label_selector=config.label_selector,
        interval=config.poll_interval,
        namespace=config.namespace or None,
        fetch_workers=config.fetch_workers,
    )


def create_reader(store: StateStore) -> SnapshotReader:
    from probe_monitor.snapshot import SnapshotReader

    return SnapshotReader(store)


def create_forwarder(
    config: Config,
    probe_client: ProbeClient,
    store: StateStore,
) -> ActionForwarder:
    """Create the action forwarder.

    Target restriction, when enabled, checks against the addresses
    currently in the store.
    """
    from probe_monitor.forwarder import ActionForwarder

    return ActionForwarder(
        probe_client,
        known_addresses=store.addresses,
        restrict_targets=config.proxy_restrict_targets,
        cooldown_seconds=config.proxy_cooldown_seconds,
    )


def create_container(
    config: Config | None = None,
    discovery: DiscoveryClient | None = None,
    probe_client: ProbeClient | None = None,
) -> MonitorContainer:
    """Create and configure the main DI container.

    Args:
        config: Optional configuration. If not provided, loads from environment.
        discovery: Optional discovery client. If not provided, a Kubernetes
            client is created on first use.
        probe_client: Optional probe client. If not provided, one is created
            from config on first use.

    Returns:
        Fully configured MonitorContainer ready for use.

    Example:
        container = create_container(config, discovery=FakeDiscovery())
        container.reconciler().run_once()
    """
    from probe_monitor.config import load_config

    if config is None:
        config = load_config()

    container = MonitorContainer()
    container.config.override(providers.Object(config))

    if discovery is not None:
        container.clients.discovery.override(providers.Object(discovery))
    else:
        container.clients.discovery.override(providers.Singleton(create_discovery_client, config))

    if probe_client is not None:
        container.clients.probe_client.override(providers.Object(probe_client))
    else:
        container.clients.probe_client.override(providers.Singleton(create_probe_client, config))

    container.store.override(providers.Singleton(create_store))

    container.reconciler.override(
        providers.Singleton(
            create_reconciler,
            config=config,
            discovery=container.clients.discovery,
            probe_client=container.clients.probe_client,
            store=container.store,
        )
    )
    container.reader.override(providers.Singleton(create_reader, store=container.store))
    container.forwarder.override(
        providers.Singleton(
            create_forwarder,
            config=config,
            probe_client=container.clients.probe_client,
            store=container.store,
        )
    )

    return container


__all__ = [
    "ClientsContainer",
    "MonitorContainer",
    "create_container",
    "create_discovery_client",
    "create_forwarder",
    "create_probe_client",
    "create_reader",
    "create_reconciler",
    "create_store",
]
