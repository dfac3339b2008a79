from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Any

import pytest

from machinist import wire
from machinist.actuator import Actuator
from machinist.config import ActuatorConfig
from machinist.constants import InstanceState
from machinist.core.exceptions import InstanceNotFoundError
from machinist.locker import ConfigStoreInitLocker, InMemoryConfigStore
from machinist.protocols import ControlPlaneClient
from machinist.scope import MachineScope
from machinist.types import (
    Cluster,
    ClusterNetwork,
    ClusterPhase,
    Instance,
    Machine,
    MachineProviderSpec,
    MachineRole,
    SecurityGroupRole,
)

BOOTSTRAP_TOKEN = "abcdef.0123456789abcdef"


# =============================================================================
# Fakes
# =============================================================================


class FakeInstanceService:
    """In-memory InstanceService that records every call."""

    def __init__(self) -> None:
        self.instances: dict[str, Instance] = {}
        self.tagged: Instance | None = None
        self.security_group_ids: dict[str, frozenset[str]] = {}
        self.core_groups: frozenset[str] = frozenset({"sg-node", "sg-lb"})
        self.calls: list[tuple[Any, ...]] = []
        self.failures: dict[str, BaseException] = {}
        self.delays: dict[str, float] = {}
        self._next_id = 0

    def add(self, instance: Instance) -> Instance:
        self.instances[instance.id] = instance
        return instance

    def called(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    def args(self, name: str) -> list[tuple[Any, ...]]:
        return [call[1:] for call in self.calls if call[0] == name]

    async def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        if name in self.delays:
            await asyncio.sleep(self.delays[name])
        if name in self.failures:
            raise self.failures[name]

    async def create_or_get(self, scope: MachineScope, bootstrap_token: str) -> Instance:
        await self._record("create_or_get", bootstrap_token)
        if recorded := scope.status.instance_id:
            if recorded not in self.instances:
                raise InstanceNotFoundError(scope.machine.key, recorded)
            return self.instances[recorded]
        if self.tagged is not None:
            return self.tagged
        self._next_id += 1
        return self.add(Instance(
            id=f"i-{self._next_id:04d}",
            type=scope.config.instance_type,
            state=InstanceState.PENDING,
            iam_profile=scope.config.iam_instance_profile,
            key_name=scope.config.key_name,
        ))

    async def instance_if_exists(self, instance_id: str | None) -> Instance | None:
        await self._record("instance_if_exists", instance_id)
        return self.instances.get(instance_id) if instance_id else None

    async def instance_by_tags(self, scope: MachineScope) -> Instance | None:
        await self._record("instance_by_tags", scope.name)
        return self.tagged

    async def terminate(self, instance_id: str) -> None:
        await self._record("terminate", instance_id)
        instance = self.instances[instance_id]
        self.instances[instance_id] = Instance(
            id=instance.id, type=instance.type, state=InstanceState.SHUTTING_DOWN,
        )

    async def security_groups(self, instance_id: str) -> frozenset[str]:
        await self._record("security_groups", instance_id)
        return self.security_group_ids.get(instance_id, frozenset())

    async def core_security_groups(self, scope: MachineScope) -> frozenset[str]:
        await self._record("core_security_groups", scope.name)
        return self.core_groups

    async def update_security_groups(self, instance_id: str, group_ids: frozenset[str]) -> None:
        await self._record("update_security_groups", instance_id, group_ids)
        self.security_group_ids[instance_id] = group_ids

    async def update_tags(
        self,
        instance_id: str,
        create: Mapping[str, str],
        remove: Mapping[str, str],
    ) -> None:
        await self._record("update_tags", instance_id, dict(create), dict(remove))


class FakeLoadBalancerService:
    def __init__(self) -> None:
        self.registered: set[tuple[str, str]] = set()
        self.calls = 0
        self.failure: BaseException | None = None

    async def register_instance(self, cluster: Cluster, instance_id: str) -> None:
        self.calls += 1
        if self.failure is not None:
            raise self.failure
        self.registered.add((cluster.key, instance_id))


class FakeTokenIssuer:
    def __init__(self) -> None:
        self.token = BOOTSTRAP_TOKEN
        self.calls: list[tuple[ControlPlaneClient, float]] = []
        self.failure: BaseException | None = None

    async def new_bootstrap_token(self, client: ControlPlaneClient, ttl: float) -> str:
        self.calls.append((client, ttl))
        if self.failure is not None:
            raise self.failure
        return self.token


class FakeClusterAccessor:
    def __init__(self, ip: str = "10.0.0.10", kubeconfig: str = "apiVersion: v1\nkind: Config\n") -> None:
        self.ip = ip
        self.kubeconfig = kubeconfig

    async def get_ip(self, cluster: Cluster) -> str:
        return self.ip

    async def get_kubeconfig(self, cluster: Cluster) -> str:
        return self.kubeconfig


class FakeMachineClient:
    def __init__(self) -> None:
        self.machines: list[Machine] = []
        self.updates: list[str] = []
        self.status_updates: list[tuple[str, str | None]] = []
        self.failure: BaseException | None = None

    async def list_machines(self, cluster: Cluster) -> list[Machine]:
        return [m for m in self.machines if m.namespace == cluster.namespace]

    async def update(self, machine: Machine) -> None:
        if self.failure is not None:
            raise self.failure
        self.updates.append(machine.name)

    async def update_status(self, machine: Machine) -> None:
        self.status_updates.append((machine.name, machine.status.instance_id))


# =============================================================================
# Builders
# =============================================================================


def build_cluster(phase: ClusterPhase = ClusterPhase.CONTROL_PLANE_READY, name: str = "test") -> Cluster:
    cluster = Cluster(
        namespace="default",
        name=name,
        network=ClusterNetwork(
            vpc_id="vpc-0001",
            private_subnet_ids=("subnet-private-a",),
            security_groups=MappingProxyType({
                SecurityGroupRole.NODE: "sg-node",
                SecurityGroupRole.LB: "sg-lb",
                SecurityGroupRole.CONTROL_PLANE: "sg-controlplane",
            }),
        ),
    )
    wire.mark_cluster_phase(cluster, phase)
    return cluster


def build_machine(
    name: str = "worker-0",
    role: MachineRole = MachineRole.WORKER,
    instance_id: str | None = None,
    **spec: Any,
) -> Machine:
    spec.setdefault("instance_type", "m5.large")
    machine = Machine(namespace="default", name=name, spec=MachineProviderSpec(**spec))
    wire.mark_machine_role(machine, role)
    machine.status.instance_id = instance_id
    return machine


def build_instance(
    instance_id: str = "i-0001",
    state: InstanceState = InstanceState.RUNNING,
    **fields: Any,
) -> Instance:
    fields.setdefault("type", "m5.large")
    return Instance(id=instance_id, state=state, **fields)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def make_cluster() -> Callable[..., Cluster]:
    return build_cluster


@pytest.fixture
def make_machine() -> Callable[..., Machine]:
    return build_machine


@pytest.fixture
def make_instance() -> Callable[..., Instance]:
    return build_instance


@pytest.fixture
def instances() -> FakeInstanceService:
    return FakeInstanceService()


@pytest.fixture
def load_balancers() -> FakeLoadBalancerService:
    return FakeLoadBalancerService()


@pytest.fixture
def tokens() -> FakeTokenIssuer:
    return FakeTokenIssuer()


@pytest.fixture
def accessor() -> FakeClusterAccessor:
    return FakeClusterAccessor()


@pytest.fixture
def machine_client() -> FakeMachineClient:
    return FakeMachineClient()


@pytest.fixture
def store() -> InMemoryConfigStore:
    return InMemoryConfigStore()


@pytest.fixture
def locker(store: InMemoryConfigStore) -> ConfigStoreInitLocker:
    return ConfigStoreInitLocker(store)


@pytest.fixture
def config() -> ActuatorConfig:
    # Distinct delays so tests can tell which condition triggered a requeue.
    return ActuatorConfig(
        infrastructure_ready_requeue=15.0,
        control_plane_existence_requeue=5.0,
        control_plane_ready_requeue=3.0,
    )


@pytest.fixture
def actuator(
    instances: FakeInstanceService,
    load_balancers: FakeLoadBalancerService,
    machine_client: FakeMachineClient,
    locker: ConfigStoreInitLocker,
    accessor: FakeClusterAccessor,
    tokens: FakeTokenIssuer,
    config: ActuatorConfig,
) -> Actuator:
    return Actuator(
        instances=instances,
        load_balancers=load_balancers,
        machines=machine_client,
        locker=locker,
        accessor=accessor,
        tokens=tokens,
        config=config,
    )
