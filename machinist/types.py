"""Data model for clusters, machines and cloud instances."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum, StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING

from machinist.core.exceptions import InstanceIdConflictError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from machinist.constants import InstanceState

__all__ = [
    "Cluster",
    "ClusterNetwork",
    "ClusterPhase",
    "Instance",
    "Machine",
    "MachineProviderSpec",
    "MachineProviderStatus",
    "MachineRole",
    "SecurityGroupRole",
]


# =============================================================================
# Enumerations
# =============================================================================


class ClusterPhase(IntEnum):
    """Readiness of a cluster, ordered from least to most ready."""

    NOT_READY = 0
    INFRASTRUCTURE_READY = 1
    CONTROL_PLANE_READY = 2


class MachineRole(StrEnum):
    CONTROL_PLANE = "control-plane"
    WORKER = "worker"


class SecurityGroupRole(StrEnum):
    CONTROL_PLANE = "controlplane"
    NODE = "node"
    BASTION = "bastion"
    LB = "lb"


# =============================================================================
# Cluster
# =============================================================================


@dataclass(frozen=True, slots=True)
class ClusterNetwork:
    """Network resources created for a cluster by the infrastructure reconciler."""

    vpc_id: str = ""
    private_subnet_ids: tuple[str, ...] = ()
    public_subnet_ids: tuple[str, ...] = ()
    security_groups: Mapping[SecurityGroupRole, str] = field(
        default_factory=lambda: MappingProxyType({}),
    )
    api_server_elb_name: str | None = None


@dataclass(slots=True)
class Cluster:
    namespace: str
    name: str
    annotations: dict[str, str] = field(default_factory=dict)
    network: ClusterNetwork = field(default_factory=ClusterNetwork)

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"


# =============================================================================
# Machine
# =============================================================================


@dataclass(frozen=True, slots=True)
class MachineProviderSpec:
    """Desired instance configuration for a machine.

    Optional fields use ``None`` for "unset", which the immutable-field
    validator treats as "don't care" where documented. A zero
    ``root_device_size`` and an empty ``subnet_id`` also count as unset.
    """

    instance_type: str
    iam_instance_profile: str = ""
    key_name: str | None = None
    root_device_size: int | None = None
    subnet_id: str | None = None
    public_ip: bool | None = None
    ami: str | None = None
    additional_security_groups: tuple[str, ...] = ()
    additional_tags: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(slots=True)
class MachineProviderStatus:
    instance_id: str | None = None
    instance_state: InstanceState | None = None

    def link_instance(self, instance: Instance) -> None:
        """Record the instance backing this machine.

        Raises:
            InstanceIdConflictError: If a different instance is already linked.
        """
        if self.instance_id and self.instance_id != instance.id:
            raise InstanceIdConflictError(self.instance_id, instance.id)
        self.instance_id = instance.id
        self.instance_state = instance.state


@dataclass(slots=True)
class Machine:
    namespace: str
    name: str
    spec: MachineProviderSpec
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    status: MachineProviderStatus = field(default_factory=MachineProviderStatus)
    provider_id: str | None = None
    deletion_timestamp: datetime | None = None

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def deleted(self) -> bool:
        return self.deletion_timestamp is not None


# =============================================================================
# Instance
# =============================================================================


@dataclass(frozen=True, slots=True)
class Instance:
    """Observed state of a cloud compute instance."""

    id: str
    type: str
    state: InstanceState
    iam_profile: str = ""
    key_name: str | None = None
    root_device_size: int = 0
    subnet_id: str = ""
    public_ip: str | None = None
    private_ip: str | None = None
    tags: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    security_group_ids: frozenset[str] = frozenset()

    @property
    def has_public_ip(self) -> bool:
        return bool(self.public_ip)
