"""Pod discovery through the Kubernetes API.

The reconciler depends only on the abstract ``DiscoveryClient``; the
``KubernetesDiscoveryClient`` adapter is wired in by the container. Any
failure of the cluster query surfaces as ``DiscoveryError`` so the
reconciler can abort the cycle without knowing about the Kubernetes client's
own exception types.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from probe_monitor.errors import DiscoveryError
from probe_monitor.logging import get_logger
from probe_monitor.models import InstanceDescriptor

logger = get_logger(__name__)

DEFAULT_DISCOVERY_TIMEOUT = 10.0


class DiscoveryClient(ABC):
    """Abstract interface for listing the pods to monitor.

    This allows the reconciler to be tested without a cluster.
    """

    @abstractmethod
    def list_instances(self, selector: str, namespace: str = "") -> list[InstanceDescriptor]:
        """List pods matching a label selector.

        Args:
            selector: Kubernetes label selector (e.g. "app=probe-demo").
            namespace: Namespace to search; empty string searches all namespaces.

        Returns:
            One descriptor per matching pod.

        Raises:
            DiscoveryError: If the cluster could not be queried.
        """
        pass


def default_kubeconfig_path() -> Path:
    """Return the kubeconfig path from ``KUBECONFIG`` or ``~/.kube/config``."""
    env_path = os.getenv("KUBECONFIG", "")
    if env_path:
        return Path(env_path)
    return Path.home() / ".kube" / "config"


def load_kubernetes_config(kubeconfig: Path | None = None) -> None:
    """Load Kubernetes client configuration.

    Tries the in-cluster service account first, then falls back to a
    kubeconfig file for local development.

    Args:
        kubeconfig: Optional kubeconfig path. Defaults to default_kubeconfig_path().

    Raises:
        DiscoveryError: If neither configuration source is usable.
    """
    try:
        k8s_config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes configuration")
        return
    except ConfigException as e:
        logger.debug("In-cluster configuration not available: %s", e)

    path = kubeconfig or default_kubeconfig_path()
    try:
        k8s_config.load_kube_config(config_file=str(path))
    except (ConfigException, OSError) as e:
        raise DiscoveryError(f"failed to get kubernetes config: {e}") from e
    logger.info("Loaded Kubernetes configuration from %s", path)


def descriptor_from_pod(pod: Any) -> InstanceDescriptor:
    """Convert a ``V1Pod`` into an InstanceDescriptor.

    Missing status or spec fields (e.g. an unscheduled pod without an IP)
    become empty strings.
    """
    metadata = pod.metadata
    status = pod.status
    spec = pod.spec
    return InstanceDescriptor(
        name=metadata.name,
        namespace=metadata.namespace or "",
        address=(status.pod_ip if status is not None else None) or "",
        host=(spec.node_name if spec is not None else None) or "",
        phase=(status.phase if status is not None else None) or "",
    )


class KubernetesDiscoveryClient(DiscoveryClient):
    """Discovery client backed by ``CoreV1Api``.

    Args:
        api: Configured CoreV1Api instance.
        request_timeout: Timeout in seconds for each list request.
    """

    def __init__(
        self,
        api: k8s_client.CoreV1Api,
        request_timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
    ) -> None:
        self.api = api
        self.request_timeout = request_timeout

    @classmethod
    def from_environment(
        cls,
        request_timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
        kubeconfig: Path | None = None,
    ) -> KubernetesDiscoveryClient:
        """Load cluster credentials and create a client.

        Raises:
            DiscoveryError: If no Kubernetes configuration could be loaded.
        """
        load_kubernetes_config(kubeconfig)
        return cls(k8s_client.CoreV1Api(), request_timeout=request_timeout)

    def list_instances(self, selector: str, namespace: str = "") -> list[InstanceDescriptor]:
        try:
            if namespace:
                pod_list = self.api.list_namespaced_pod(
                    namespace,
                    label_selector=selector,
                    _request_timeout=self.request_timeout,
                )
            else:
                pod_list = self.api.list_pod_for_all_namespaces(
                    label_selector=selector,
                    _request_timeout=self.request_timeout,
                )
        except ApiException as e:
            raise DiscoveryError(f"Error listing pods: {e.status} {e.reason}") from e
        except (Urllib3HTTPError, OSError) as e:
            raise DiscoveryError(f"Error listing pods: {e}") from e

        return [descriptor_from_pod(pod) for pod in pod_list.items or []]


__all__ = [
    "DiscoveryClient",
    "KubernetesDiscoveryClient",
    "default_kubeconfig_path",
    "descriptor_from_pod",
    "load_kubernetes_config",
]
