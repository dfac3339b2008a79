"""Protocols for the actuator's collaborators.

The actuator owns no cloud or cluster-store logic. Everything it talks to is
described here and injected at construction time, so tests can swap in
in-memory fakes and deployments can swap in other backends.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from machinist.scope import MachineScope
    from machinist.types import Cluster, Instance, Machine


@dataclass(frozen=True, slots=True)
class ControlPlaneClient:
    """Connection details for an existing control plane's API server."""

    url: str
    kubeconfig: str


# =============================================================================
# Cloud
# =============================================================================


@runtime_checkable
class InstanceService(Protocol):
    """Instance lifecycle operations against the cloud provider."""

    async def create_or_get(self, scope: MachineScope, bootstrap_token: str) -> Instance:
        """Return the machine's instance, launching it if none exists.

        Must be idempotent: repeated calls for the same scope return the
        same instance instead of launching duplicates. A recorded instance id
        that no longer resolves raises ``InstanceNotFoundError``; nothing is
        launched in its place.
        """
        ...

    async def instance_if_exists(self, instance_id: str | None) -> Instance | None:
        """Describe an instance by id, or return None if it is absent."""
        ...

    async def instance_by_tags(self, scope: MachineScope) -> Instance | None:
        """Find a live instance tagged for this machine and cluster."""
        ...

    async def terminate(self, instance_id: str) -> None: ...

    async def security_groups(self, instance_id: str) -> frozenset[str]:
        """Security group ids currently attached to the instance."""
        ...

    async def core_security_groups(self, scope: MachineScope) -> frozenset[str]:
        """Security group ids every machine of this role must carry."""
        ...

    async def update_security_groups(self, instance_id: str, group_ids: frozenset[str]) -> None:
        """Replace the instance's security groups with ``group_ids``."""
        ...

    async def update_tags(
        self,
        instance_id: str,
        create: Mapping[str, str],
        remove: Mapping[str, str],
    ) -> None: ...


@runtime_checkable
class LoadBalancerService(Protocol):
    async def register_instance(self, cluster: Cluster, instance_id: str) -> None:
        """Register with the cluster's API server load balancer. Idempotent."""
        ...


# =============================================================================
# Control plane access
# =============================================================================


@runtime_checkable
class ClusterAccessor(Protocol):
    """Locates a cluster's control plane."""

    async def get_ip(self, cluster: Cluster) -> str: ...

    async def get_kubeconfig(self, cluster: Cluster) -> str: ...


@runtime_checkable
class TokenIssuer(Protocol):
    async def new_bootstrap_token(self, client: ControlPlaneClient, ttl: float) -> str:
        """Issue a bootstrap token valid for ``ttl`` seconds."""
        ...


# =============================================================================
# Cluster store
# =============================================================================


@runtime_checkable
class MachineClient(Protocol):
    """Read/write access to Machine resources in the cluster store."""

    async def list_machines(self, cluster: Cluster) -> list[Machine]: ...

    async def update(self, machine: Machine) -> None:
        """Persist labels, annotations and provider id."""
        ...

    async def update_status(self, machine: Machine) -> None:
        """Persist the provider status."""
        ...


# =============================================================================
# Control-plane init lock
# =============================================================================


@runtime_checkable
class ControlPlaneInitLocker(Protocol):
    async def acquire(self, cluster: Cluster) -> bool:
        """Claim the right to initialise the cluster's control plane.

        Returns True for exactly one caller per cluster. There is no
        release; the claim lasts for the life of the cluster.
        """
        ...


@runtime_checkable
class ConfigStore(Protocol):
    """Namespaced key store with create-if-absent semantics."""

    async def exists(self, namespace: str, name: str) -> bool: ...

    async def create(self, namespace: str, name: str, owner: str) -> bool:
        """Create an entry. Returns False if it already exists."""
        ...
