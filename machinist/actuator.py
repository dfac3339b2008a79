"""Machine actuator: converges cloud instances toward Machine resources.

The controller framework calls one verb per (Cluster, Machine) pair:

    create  -> launch (or adopt) the machine's instance
    delete  -> terminate it unless it is already going away
    update  -> reject immutable drift, then reconcile security groups/tags
    exists  -> report whether a live instance backs the machine

Verbs may run concurrently for different machines of the same cluster and
be repeated for the same machine. ``RequeueAfterError`` is routine control
flow, not failure: the caller reschedules after ``requeue_after`` seconds.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from loguru import logger

from machinist import wire
from machinist.config import ActuatorConfig
from machinist.constants import ALIVE_STATES, API_SERVER_PORT, GONE_STATES
from machinist.core.exceptions import (
    ConfigurationError,
    ImmutableFieldError,
    InstanceNotFoundError,
    ReconcileTimeoutError,
    RequeueAfterError,
    provider_call,
)
from machinist.join import control_plane_machines, decide_join
from machinist.protocols import ControlPlaneClient
from machinist.reconcile import ensure_security_groups, ensure_tags, reconcile_lb_attachment
from machinist.scope import MachineScope
from machinist.types import ClusterPhase
from machinist.validation import outdated_fields

if TYPE_CHECKING:
    from loguru import Logger

    from machinist.protocols import (
        ClusterAccessor,
        ControlPlaneInitLocker,
        InstanceService,
        LoadBalancerService,
        MachineClient,
        TokenIssuer,
    )
    from machinist.types import Cluster, Instance, Machine


class Actuator:
    """Performs machine reconciliation against a cloud provider."""

    def __init__(
        self,
        *,
        instances: InstanceService,
        load_balancers: LoadBalancerService,
        machines: MachineClient,
        locker: ControlPlaneInitLocker,
        accessor: ClusterAccessor,
        tokens: TokenIssuer,
        config: ActuatorConfig | None = None,
    ) -> None:
        self.instances = instances
        self.load_balancers = load_balancers
        self.machines = machines
        self.locker = locker
        self.accessor = accessor
        self.tokens = tokens
        self.config = config or ActuatorConfig()

    # -------------------------------------------------------------------------
    # Verbs
    # -------------------------------------------------------------------------

    async def create(self, cluster: Cluster | None, machine: Machine) -> None:
        cluster = _require_cluster(cluster, machine)
        log = _bind(cluster, machine)
        log.info("Processing machine creation")

        if wire.cluster_phase(cluster) < ClusterPhase.INFRASTRUCTURE_READY:
            log.info("Cluster infrastructure is not ready yet - requeuing machine")
            raise RequeueAfterError(
                self.config.infrastructure_ready_requeue,
                f"infrastructure for cluster {cluster.key} is not ready",
            )

        async with self._deadline("create", machine), self._scope(cluster, machine, log) as scope:
            await self._create(scope)

        log.info("Create completed")

    async def delete(self, cluster: Cluster | None, machine: Machine) -> None:
        cluster = _require_cluster(cluster, machine)
        log = _bind(cluster, machine)
        log.info("Deleting machine in cluster")

        async with self._deadline("delete", machine), self._scope(cluster, machine, log) as scope:
            instance = await self._recorded_instance(scope)
            if instance is None:
                with provider_call("query instance by tags", machine.key):
                    instance = await self.instances.instance_by_tags(scope)

            if instance is None:
                log.debug("Instance does not exist, nothing to delete")
                return

            # Instances already on their way out are left to the cloud's own
            # lifecycle.
            if instance.state in GONE_STATES:
                log.info("Machine instance {id} is {state}", id=instance.id, state=instance.state)
                return

            log.info("Terminating instance {id}", id=instance.id)
            with provider_call("terminate instance", instance.id):
                await self.instances.terminate(instance.id)

    async def update(self, cluster: Cluster | None, machine: Machine) -> None:
        """Reconcile mutable instance state.

        Raises:
            ImmutableFieldError: If any create-time-only field drifted. Nothing
                is mutated in that case.
            InstanceNotFoundError: If the machine has no live instance.
        """
        cluster = _require_cluster(cluster, machine)
        log = _bind(cluster, machine)
        log.info("Updating machine in cluster")

        async with self._deadline("update", machine), self._scope(cluster, machine, log) as scope:
            instance = await self._recorded_instance(scope)
            if instance is None:
                raise InstanceNotFoundError(machine.key, scope.status.instance_id)

            if violations := outdated_fields(scope.config, instance):
                raise ImmutableFieldError(machine.name, violations)

            with provider_call("get instance security groups", instance.id):
                existing = await self.instances.security_groups(instance.id)

            await ensure_security_groups(scope, instance.id, self.instances, existing)
            await ensure_tags(scope, instance.id, self.instances)

    async def exists(self, cluster: Cluster | None, machine: Machine) -> bool:
        cluster = _require_cluster(cluster, machine)
        log = _bind(cluster, machine)
        log.info("Checking if machine exists in cluster")

        async with self._deadline("exists", machine), self._scope(cluster, machine, log) as scope:
            if not scope.status.instance_id:
                return False

            instance = await self._recorded_instance(scope)
            if instance is None:
                return False

            log.info("Found instance {id} for machine in state {state}", id=instance.id, state=instance.state)
            if instance.state not in ALIVE_STATES:
                return False

            scope.status.instance_state = instance.state

            await reconcile_lb_attachment(scope, instance, self.load_balancers)

            if not scope.machine.provider_id:
                scope.machine.provider_id = wire.format_provider_id(self.config.provider_name, instance.id)

            return True

    # -------------------------------------------------------------------------
    # Create internals
    # -------------------------------------------------------------------------

    async def _create(self, scope: MachineScope) -> None:
        log = scope.log

        # A recorded instance that is gone is never replaced by a fresh launch.
        if scope.status.instance_id and await self._recorded_instance(scope) is None:
            raise InstanceNotFoundError(scope.machine.key, scope.status.instance_id)

        log.info("Retrieving machines for cluster")
        with provider_call("retrieve machines in cluster", scope.cluster.key):
            cluster_machines = await self.machines.list_machines(scope.cluster)

        if not control_plane_machines(cluster_machines):
            log.info("No control plane machines exist yet - requeuing")
            raise RequeueAfterError(
                self.config.control_plane_existence_requeue,
                "no control plane machines exist yet",
            )

        decision = await decide_join(scope.cluster, scope.machine, self.locker, self.config)
        if decision.requeue_after is not None:
            log.info("{reason} - requeuing", reason=decision.reason.capitalize())
        decision.raise_for_requeue()

        bootstrap_token = ""
        if decision.join:
            log.info("Machine will join the cluster")
            bootstrap_token = await self._bootstrap_token(scope.cluster)
        else:
            log.info("Machine will init the cluster")

        with provider_call("create or get instance", scope.machine.key):
            instance = await self.instances.create_or_get(scope, bootstrap_token)

        scope.status.link_instance(instance)
        wire.mark_managed(scope.machine)

        await reconcile_lb_attachment(scope, instance, self.load_balancers)

    async def _control_plane_client(self, cluster: Cluster) -> ControlPlaneClient:
        with provider_call("retrieve control plane address", cluster.key):
            address = await self.accessor.get_ip(cluster)
        with provider_call("retrieve kubeconfig", cluster.key):
            kubeconfig = await self.accessor.get_kubeconfig(cluster)
        return ControlPlaneClient(url=f"https://{address}:{API_SERVER_PORT}", kubeconfig=kubeconfig)

    async def _bootstrap_token(self, cluster: Cluster) -> str:
        client = await self._control_plane_client(cluster)
        with provider_call("create new bootstrap token", cluster.key):
            return await self.tokens.new_bootstrap_token(client, self.config.token_ttl)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _recorded_instance(self, scope: MachineScope) -> Instance | None:
        instance_id = scope.status.instance_id
        if not instance_id:
            return None
        with provider_call("get instance", instance_id):
            return await self.instances.instance_if_exists(instance_id)

    def _scope(self, cluster: Cluster, machine: Machine, log: Logger) -> MachineScope:
        return MachineScope(cluster, machine, self.machines, log=log)

    @asynccontextmanager
    async def _deadline(self, verb: str, machine: Machine) -> AsyncIterator[None]:
        try:
            async with asyncio.timeout(self.config.request_timeout):
                yield
        except TimeoutError as e:
            raise ReconcileTimeoutError(
                self.config.timeout_requeue,
                f"{verb} timed out for machine {machine.key}",
            ) from e


def _require_cluster(cluster: Cluster | None, machine: Machine) -> Cluster:
    if cluster is None:
        raise ConfigurationError(f"missing cluster for machine {machine.key}")
    return cluster


def _bind(cluster: Cluster, machine: Machine) -> Logger:
    return logger.bind(cluster=cluster.name, machine=machine.name, namespace=machine.namespace)
