"""Data model for pods, their self-reported status and the dashboard records.

Three layers of data flow through the monitor:

- InstanceDescriptor: what the cluster says about a pod (name, IP, node, phase).
- RemoteStatus: what the pod says about itself on ``/api/info``.
- StatusRecord: what the monitor stores and shows, combining the two.

JSON produced by ``StatusRecord.to_dict`` keeps the field names used by the
``/api/pods`` endpoint consumers (``Name``, ``IP``, ``Info`` and so on), and
``RemoteStatus.to_dict`` mirrors the pod's own ``/api/info`` names.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class PodPhase(StrEnum):
    """Kubernetes pod lifecycle phases.

    Inherits from StrEnum so a phase compares equal to the string the
    Kubernetes API returns (``PodPhase.RUNNING == "Running"``).
    """

    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: str | None) -> PodPhase:
        """Map a raw phase string to a PodPhase, defaulting to UNKNOWN.

        Args:
            value: Phase string from the Kubernetes API, possibly None.

        Returns:
            The matching PodPhase, or UNKNOWN for empty or unrecognised values.
        """
        if value and value in cls._value2member_map_:
            return cls(value)
        return cls.UNKNOWN


@dataclass(frozen=True)
class InstanceDescriptor:
    """A pod as reported by the discovery client.

    Attributes:
        name: Pod name. Unique within the queried scope and used as identity.
        address: Pod IP, empty while the pod has none assigned.
        host: Name of the node the pod is scheduled on, empty if unscheduled.
        phase: Raw lifecycle phase string (e.g. "Running", "Pending").
        namespace: Namespace the pod lives in.
    """

    name: str
    address: str = ""
    host: str = ""
    phase: str = PodPhase.UNKNOWN.value
    namespace: str = ""

    @property
    def pod_phase(self) -> PodPhase:
        """The phase as a PodPhase enum member."""
        return PodPhase.parse(self.phase)

    @property
    def is_fetchable(self) -> bool:
        """Whether the pod's status endpoint should be queried."""
        return self.pod_phase is PodPhase.RUNNING and bool(self.address)


def _require_object(data: Any, name: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ValueError(f"{name}: expected object, got {type(data).__name__}")
    return data


def _get_bool(data: dict[str, Any], key: str) -> bool:
    value = data.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValueError(f"{key}: expected boolean, got {type(value).__name__}")
    return value


def _get_int(data: dict[str, Any], key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    # bool is a subclass of int; JSON true/false is not a number
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key}: expected integer, got {type(value).__name__}")
    return value


def _get_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"{key}: expected string, got {type(value).__name__}")
    return value


@dataclass(frozen=True)
class ProbeStatus:
    """The three independent probe flags a pod reports about itself."""

    started: bool = False
    live: bool = False
    ready: bool = False

    @classmethod
    def from_api_response(cls, data: Any) -> ProbeStatus:
        """Decode the ``probeStatus`` object of an ``/api/info`` payload.

        Raises:
            ValueError: If the value is not an object of booleans.
        """
        obj = _require_object(data, "probeStatus")
        return cls(
            started=_get_bool(obj, "started"),
            live=_get_bool(obj, "live"),
            ready=_get_bool(obj, "ready"),
        )

    def to_dict(self) -> dict[str, bool]:
        """Convert to the wire representation."""
        return {"started": self.started, "live": self.live, "ready": self.ready}


@dataclass(frozen=True)
class RemoteStatus:
    """Status a pod reports on its own ``/api/info`` endpoint.

    The monitor does not interpret ``start_time``, ``startup_delay`` or
    ``startup_ready``; they are passed through to the dashboard as received.

    Attributes:
        pod_name: Pod name as seen by the pod itself.
        pod_ip: Pod IP as seen by the pod itself.
        node_hostname: Node hostname as seen by the pod itself.
        container_age_ns: Time since container start, in nanoseconds.
        start_time: Container start timestamp (ISO-8601 string).
        probe_status: Current probe flags.
        startup_delay: Configured startup delay in seconds.
        startup_ready: Free-form startup readiness description.
    """

    pod_name: str = ""
    pod_ip: str = ""
    node_hostname: str = ""
    container_age_ns: int = 0
    start_time: str = ""
    probe_status: ProbeStatus = field(default_factory=ProbeStatus)
    startup_delay: int = 0
    startup_ready: str = ""

    @classmethod
    def from_api_response(cls, data: Any) -> RemoteStatus:
        """Create a RemoteStatus from a decoded ``/api/info`` JSON payload.

        Missing keys take their zero value. Keys with the wrong JSON type
        make the whole payload invalid.

        Args:
            data: Decoded JSON payload.

        Returns:
            RemoteStatus instance.

        Raises:
            ValueError: If the payload does not have the expected structure.
        """
        obj = _require_object(data, "payload")
        probe_data = obj.get("probeStatus")
        probe_status = (
            ProbeStatus() if probe_data is None else ProbeStatus.from_api_response(probe_data)
        )
        return cls(
            pod_name=_get_str(obj, "podName"),
            pod_ip=_get_str(obj, "podIP"),
            node_hostname=_get_str(obj, "nodeHostname"),
            container_age_ns=_get_int(obj, "containerAge"),
            start_time=_get_str(obj, "startTime"),
            probe_status=probe_status,
            startup_delay=_get_int(obj, "startupDelay"),
            startup_ready=_get_str(obj, "startupReady"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the ``/api/info`` wire representation."""
        return {
            "podName": self.pod_name,
            "podIP": self.pod_ip,
            "nodeHostname": self.node_hostname,
            "containerAge": self.container_age_ns,
            "startTime": self.start_time,
            "probeStatus": self.probe_status.to_dict(),
            "startupDelay": self.startup_delay,
            "startupReady": self.startup_ready,
        }


@dataclass(frozen=True)
class StatusRecord:
    """Last known state of one pod, as kept in the StateStore.

    ``info`` and ``error`` are mutually exclusive: a running pod has one of
    them after a fetch, a pod in any other phase has neither.

    Attributes:
        name: Pod name (identity).
        address: Pod IP.
        host: Node name.
        phase: Raw lifecycle phase string.
        group_tag: Label derived from the pod name (usually the ReplicaSet hash).
        last_checked: When this record was built (timezone-aware UTC).
        info: Status fetched from the pod, if the fetch succeeded.
        error: Description of the fetch failure, if it failed.
        namespace: Namespace the pod lives in.
    """

    name: str
    address: str
    host: str
    phase: str
    group_tag: str
    last_checked: datetime
    info: RemoteStatus | None = None
    error: str | None = None
    namespace: str = ""

    def __post_init__(self) -> None:
        if self.info is not None and self.error is not None:
            raise ValueError(f"StatusRecord for {self.name} cannot carry both info and error")

    @classmethod
    def from_descriptor(
        cls,
        descriptor: InstanceDescriptor,
        group_tag: str,
        last_checked: datetime,
    ) -> StatusRecord:
        """Build a record without remote status from a discovered pod."""
        return cls(
            name=descriptor.name,
            address=descriptor.address,
            host=descriptor.host,
            phase=descriptor.phase,
            group_tag=group_tag,
            last_checked=last_checked,
            namespace=descriptor.namespace,
        )

    @property
    def is_ready(self) -> bool:
        """Whether the pod reported itself ready on the last fetch."""
        return self.info is not None and self.info.probe_status.ready

    def to_dict(self) -> dict[str, Any]:
        """Convert to the ``/api/pods`` JSON representation."""
        return {
            "Name": self.name,
            "Namespace": self.namespace,
            "IP": self.address,
            "Node": self.host,
            "Status": self.phase,
            "Info": self.info.to_dict() if self.info is not None else None,
            "Error": self.error or "",
            "LastCheck": self.last_checked.isoformat(),
            "ReplicaSetID": self.group_tag,
        }


__all__ = [
    "InstanceDescriptor",
    "PodPhase",
    "ProbeStatus",
    "RemoteStatus",
    "StatusRecord",
]
