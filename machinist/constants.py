"""Constants shared across machinist.

Annotation and label keys form the wire protocol between the actuator and
the rest of the orchestration system. They are only read or written by
``machinist.wire``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

# =============================================================================
# Cluster / Machine wire protocol
# =============================================================================

INFRASTRUCTURE_READY_ANNOTATION: Final = "infrastructure-ready"
CONTROL_PLANE_READY_ANNOTATION: Final = "control-plane-ready"
READY_VALUE: Final = "ready"

ROLE_LABEL: Final = "role"
CONTROL_PLANE_ROLE_VALUE: Final = "controlplane"

MANAGED_ANNOTATION: Final = "cluster-api-provider-aws"
MANAGED_VALUE: Final = "true"

LAST_APPLIED_TAGS_ANNOTATION: Final = "sigs.k8s.io/cluster-api-provider-aws-last-applied-tags"
LAST_APPLIED_SECURITY_GROUPS_ANNOTATION: Final = (
    "sigs.k8s.io/cluster-api-provider-aws-last-applied-security-groups"
)


# =============================================================================
# EC2 Instance States
# =============================================================================


class InstanceState(StrEnum):
    """EC2 instance state names."""

    PENDING = "pending"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"
    STOPPING = "stopping"
    STOPPED = "stopped"


ALIVE_STATES: Final = frozenset({InstanceState.RUNNING, InstanceState.PENDING})
GONE_STATES: Final = frozenset({InstanceState.SHUTTING_DOWN, InstanceState.TERMINATED})


# =============================================================================
# Tags
# =============================================================================


class MachinistTag(StrEnum):
    """AWS resource tag keys written on instances."""

    NAME = "Name"
    ROLE = "machinist:role"
    CLUSTER_PREFIX = "kubernetes.io/cluster/"


OWNED_TAG_VALUE: Final = "owned"


# =============================================================================
# Timing (seconds)
# =============================================================================

INFRASTRUCTURE_READY_REQUEUE: Final = 15.0
CONTROL_PLANE_EXISTENCE_REQUEUE: Final = 5.0
CONTROL_PLANE_READY_REQUEUE: Final = 5.0
TIMEOUT_REQUEUE: Final = 10.0
DEFAULT_TOKEN_TTL: Final = 600.0

API_SERVER_PORT: Final = 6443
DEFAULT_PROVIDER_NAME: Final = "aws"
