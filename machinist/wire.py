"""Translation between annotations/labels and the typed data model.

Annotations and labels are the wire format shared with the rest of the
orchestration system. Nothing outside this module reads or writes them by
key; the actuator works with ``ClusterPhase`` and ``MachineRole``.
"""

from __future__ import annotations

import json
from typing import Any

from machinist.constants import (
    CONTROL_PLANE_READY_ANNOTATION,
    CONTROL_PLANE_ROLE_VALUE,
    INFRASTRUCTURE_READY_ANNOTATION,
    MANAGED_ANNOTATION,
    MANAGED_VALUE,
    READY_VALUE,
    ROLE_LABEL,
)
from machinist.core.exceptions import ConfigurationError
from machinist.types import Cluster, ClusterPhase, Machine, MachineRole


def cluster_phase(cluster: Cluster) -> ClusterPhase:
    """Derive the readiness phase from the cluster's annotations.

    The control-plane marker dominates: a cluster whose control plane is
    ready is reported as such even if the infrastructure marker is missing.
    """
    annotations = cluster.annotations
    if annotations.get(CONTROL_PLANE_READY_ANNOTATION) == READY_VALUE:
        return ClusterPhase.CONTROL_PLANE_READY
    if annotations.get(INFRASTRUCTURE_READY_ANNOTATION) == READY_VALUE:
        return ClusterPhase.INFRASTRUCTURE_READY
    return ClusterPhase.NOT_READY


def mark_cluster_phase(cluster: Cluster, phase: ClusterPhase) -> None:
    """Write the annotations that encode ``phase``."""
    annotations = cluster.annotations
    annotations.pop(INFRASTRUCTURE_READY_ANNOTATION, None)
    annotations.pop(CONTROL_PLANE_READY_ANNOTATION, None)
    if phase >= ClusterPhase.INFRASTRUCTURE_READY:
        annotations[INFRASTRUCTURE_READY_ANNOTATION] = READY_VALUE
    if phase >= ClusterPhase.CONTROL_PLANE_READY:
        annotations[CONTROL_PLANE_READY_ANNOTATION] = READY_VALUE


def machine_role(machine: Machine) -> MachineRole:
    if machine.labels.get(ROLE_LABEL) == CONTROL_PLANE_ROLE_VALUE:
        return MachineRole.CONTROL_PLANE
    return MachineRole.WORKER


def mark_machine_role(machine: Machine, role: MachineRole) -> None:
    match role:
        case MachineRole.CONTROL_PLANE:
            machine.labels[ROLE_LABEL] = CONTROL_PLANE_ROLE_VALUE
        case MachineRole.WORKER:
            machine.labels.pop(ROLE_LABEL, None)


def mark_managed(machine: Machine) -> None:
    machine.annotations[MANAGED_ANNOTATION] = MANAGED_VALUE


def is_managed(machine: Machine) -> bool:
    return machine.annotations.get(MANAGED_ANNOTATION) == MANAGED_VALUE


def format_provider_id(provider: str, instance_id: str) -> str:
    return f"{provider}:////{instance_id}"


def read_last_applied(machine: Machine, key: str) -> dict[str, Any]:
    """Decode a JSON object stored in a machine annotation.

    Returns an empty dict when the annotation is absent.

    Raises:
        ConfigurationError: If the annotation is not a JSON object.
    """
    raw = machine.annotations.get(key)
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"annotation {key!r} on machine {machine.key} is not valid JSON") from e
    if not isinstance(value, dict):
        raise ConfigurationError(f"annotation {key!r} on machine {machine.key} is not a JSON object")
    return value


def write_last_applied(machine: Machine, key: str, value: dict[str, Any]) -> None:
    machine.annotations[key] = json.dumps(value, sort_keys=True)
