"""Group tag policies derived from pod names.

A group tag clusters pods that belong to the same rollout on the dashboard.
It is a best-effort label, not a unique key: it relies on the naming scheme
Deployments use for their pods (``<deployment>-<replicaset-hash>-<pod-suffix>``),
which this monitor does not control.

The reconciler takes the policy as a plain callable, so a different naming
scheme only needs a different function here.
"""

from __future__ import annotations

from collections.abc import Callable

# Type alias for a group tag policy: pod name in, tag out.
GroupTagPolicy = Callable[[str], str]

POD_NAME_DELIMITER = "-"


def replica_set_id(pod_name: str, delimiter: str = POD_NAME_DELIMITER) -> str:
    """Extract the ReplicaSet hash from a Deployment-generated pod name.

    Takes the second-to-last segment when the name has at least two
    segments, otherwise returns an empty string.

    Args:
        pod_name: The pod name to parse.
        delimiter: Segment delimiter (default: "-").

    Returns:
        The derived group tag, or "" when the name has a single segment.

    Examples:
        >>> replica_set_id("web-7f8c9d-abcde")
        '7f8c9d'
        >>> replica_set_id("single")
        ''
        >>> replica_set_id("a-b")
        'a'
    """
    parts = pod_name.split(delimiter)
    if len(parts) >= 2:
        return parts[-2]
    return ""


__all__ = ["GroupTagPolicy", "POD_NAME_DELIMITER", "replica_set_id"]
