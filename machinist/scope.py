"""Per-invocation reconciliation scope.

A MachineScope bundles one (Cluster, Machine) pair with derived views and
persists the machine back to the cluster store when it is released. It is
created at the start of each actuator verb and never outlives it.

Usage:
    async with MachineScope(cluster, machine, client) as scope:
        scope.status.instance_id = "i-0123"
    # machine spec/annotations and status are written back here
"""

from __future__ import annotations

from types import TracebackType
from typing import TYPE_CHECKING

from loguru import logger

from machinist import wire
from machinist.core.exceptions import ConfigurationError, ProviderError
from machinist.types import ClusterPhase, MachineRole

if TYPE_CHECKING:
    from loguru import Logger

    from machinist.protocols import MachineClient
    from machinist.types import Cluster, Machine, MachineProviderSpec, MachineProviderStatus


class MachineScope:
    def __init__(
        self,
        cluster: Cluster,
        machine: Machine,
        client: MachineClient,
        *,
        log: Logger | None = None,
    ) -> None:
        if machine.namespace != cluster.namespace:
            raise ConfigurationError(
                f"machine {machine.key} is not in the namespace of cluster {cluster.key}"
            )
        self.cluster = cluster
        self.machine = machine
        self.client = client
        self.log = log or logger.bind(
            cluster=cluster.name, machine=machine.name, namespace=machine.namespace,
        )
        self._closed = False

    @property
    def name(self) -> str:
        return self.machine.name

    @property
    def namespace(self) -> str:
        return self.machine.namespace

    @property
    def cluster_name(self) -> str:
        return self.cluster.name

    @property
    def config(self) -> MachineProviderSpec:
        return self.machine.spec

    @property
    def status(self) -> MachineProviderStatus:
        return self.machine.status

    @property
    def role(self) -> MachineRole:
        return wire.machine_role(self.machine)

    @property
    def phase(self) -> ClusterPhase:
        return wire.cluster_phase(self.cluster)

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        """Persist the machine and its status. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        try:
            await self.client.update(self.machine)
        except Exception as e:
            raise ProviderError("update machine", self.machine.key, e) from e

        try:
            await self.client.update_status(self.machine)
        except Exception as e:
            raise ProviderError("store machine provider status", self.machine.key, e) from e

    async def __aenter__(self) -> MachineScope:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc is None:
            await self.close()
            return

        # The verb already failed; its error is the one the caller must see.
        try:
            await self.close()
        except ProviderError:
            self.log.exception("Failed to persist machine state after error: {error}", error=exc)
